import asyncio
import mimetypes
import os
from pathlib import Path
from typing import Any, BinaryIO, Optional, Union

from ._http import HttpClient, MultipartBody, MultipartField, path_segment
from .errors import ClientValidationError
from .types import FileDeleteReceipt, MediaObject

FileInput = Union[bytes, bytearray, memoryview, str, "os.PathLike[str]", BinaryIO]


def _parse_media_object(data: dict[str, Any]) -> MediaObject:
    return MediaObject(
        media_id=data["mediaId"],
        content_type=data.get("contentType", "application/octet-stream"),
        created_at=data.get("createdAt"),
        filename=data.get("filename"),
        size_bytes=data.get("sizeBytes"),
    )


def _infer_filename(file: FileInput) -> Optional[str]:
    if isinstance(file, (str, os.PathLike)):
        return Path(file).name
    name = getattr(file, "name", None)
    if isinstance(name, str) and name:
        return os.path.basename(name)
    return None


def _guess_content_type(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    content_type, _ = mimetypes.guess_type(filename)
    return content_type


async def _read_bytes(file: FileInput) -> bytes:
    if isinstance(file, (bytes, bytearray, memoryview)):
        return bytes(file)
    if isinstance(file, (str, os.PathLike)):
        return await asyncio.to_thread(Path(file).read_bytes)
    if hasattr(file, "read"):
        data = await asyncio.to_thread(file.read)
        if isinstance(data, (bytes, bytearray)):
            return bytes(data)
    raise ClientValidationError(f"Unsupported file type for upload: {type(file).__name__}")


class FilesAPI:
    """Namespace for media uploads. Accessed via ``client.files``.

    Uploads use multipart/form-data with the fields ``file``,
    ``contentType`` and (optionally) ``filename``.
    """

    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def upload(
        self,
        file: FileInput,
        *,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> MediaObject:
        """POST /v1/files — Upload media bytes, a file path or a binary file object.

        ``content_type`` is guessed from the filename when omitted.
        """
        inferred_name = _infer_filename(file)
        content_type = content_type or _guess_content_type(filename or inferred_name)
        if not content_type:
            raise ClientValidationError(
                "content_type is required when it cannot be inferred from the filename"
            )

        payload = await _read_bytes(file)
        fields = [
            MultipartField(
                "file",
                payload,
                filename=filename or inferred_name or "upload",
                content_type=content_type,
            ),
            MultipartField("contentType", content_type),
        ]
        if filename:
            fields.append(MultipartField("filename", filename))

        resp = await self._http.request(
            "POST",
            "/v1/files",
            form=MultipartBody(tuple(fields)),
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        return _parse_media_object(resp.data)

    async def delete(
        self,
        media_id: str,
        *,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> FileDeleteReceipt:
        """DELETE /v1/files/{media_id} — Remove an uploaded file."""
        if not media_id:
            raise ClientValidationError("media_id is required")

        resp = await self._http.request(
            "DELETE",
            f"/v1/files/{path_segment(media_id)}",
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        data = resp.data or {}
        return FileDeleteReceipt(
            media_id=data.get("mediaId", media_id),
            deleted=bool(data.get("deleted", True)),
        )
