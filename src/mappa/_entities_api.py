import asyncio
import re
from typing import Any, AsyncIterator, Optional, Sequence

from ._http import HttpClient, path_segment
from .errors import ClientValidationError
from .types import EntitiesPage, Entity, EntityTagsResult

TAG_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
MAX_TAGS_PER_REQUEST = 10


def validate_tag(tag: str) -> None:
    if not isinstance(tag, str):
        raise ClientValidationError("Tags must be strings")
    if not TAG_PATTERN.match(tag):
        raise ClientValidationError(
            f"Invalid tag {tag!r}: must be 1-64 characters of letters, digits, '_' or '-'"
        )


def validate_tags(tags: Sequence[str]) -> None:
    if isinstance(tags, str) or not isinstance(tags, Sequence):
        raise ClientValidationError("tags must be a list of strings")
    if len(tags) > MAX_TAGS_PER_REQUEST:
        raise ClientValidationError(f"Too many tags: maximum {MAX_TAGS_PER_REQUEST} per request")
    for tag in tags:
        validate_tag(tag)


def _require_entity_id(entity_id: str) -> None:
    if not entity_id or not isinstance(entity_id, str):
        raise ClientValidationError("entity_id must be a non-empty string")


def _parse_entity(data: dict[str, Any]) -> Entity:
    return Entity(
        id=data["id"],
        tags=list(data.get("tags") or []),
        created_at=data.get("createdAt"),
        media_count=data.get("mediaCount"),
        last_seen_at=data.get("lastSeenAt"),
    )


def _parse_tags_result(data: dict[str, Any], entity_id: str) -> EntityTagsResult:
    return EntityTagsResult(
        entity_id=data.get("entityId", entity_id),
        tags=list(data.get("tags") or []),
    )


class EntitiesAPI:
    """Namespace for speaker entities and their tags. Accessed via ``client.entities``.

    Tags are 1-64 characters of ``[a-zA-Z0-9_-]``, at most 10 per request.
    Invalid tags raise :class:`ClientValidationError` before any request.
    """

    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def get(
        self,
        entity_id: str,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> Entity:
        _require_entity_id(entity_id)
        resp = await self._http.request(
            "GET",
            f"/v1/entities/{path_segment(entity_id)}",
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        return _parse_entity(resp.data)

    async def list(
        self,
        *,
        tags: Optional[Sequence[str]] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> EntitiesPage:
        """GET /v1/entities — One page of entities, optionally filtered by tags."""
        query: dict[str, Any] = {"cursor": cursor or None, "limit": limit}
        if tags:
            validate_tags(tags)
            query["tags"] = ",".join(tags)

        resp = await self._http.request(
            "GET",
            "/v1/entities",
            query=query,
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        data = resp.data
        return EntitiesPage(
            entities=[_parse_entity(e) for e in data.get("entities") or []],
            cursor=data.get("cursor"),
            has_more=bool(data.get("hasMore", False)),
        )

    async def iter_all(
        self,
        *,
        tags: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[Entity]:
        """Yield entities across all pages, following the cursor."""
        cursor: Optional[str] = None
        while True:
            page = await self.list(
                tags=tags, cursor=cursor, limit=limit, request_id=request_id, signal=signal
            )
            for entity in page.entities:
                yield entity
            if not page.has_more or not page.cursor:
                break
            cursor = page.cursor

    async def get_by_tag(
        self,
        tag: str,
        *,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> EntitiesPage:
        validate_tag(tag)
        return await self.list(
            tags=[tag], cursor=cursor, limit=limit, request_id=request_id, signal=signal
        )

    async def add_tags(
        self,
        entity_id: str,
        tags: Sequence[str],
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> EntityTagsResult:
        """POST /v1/entities/{entity_id}/tags"""
        return await self._tags("POST", entity_id, tags, request_id, signal, allow_empty=False)

    async def remove_tags(
        self,
        entity_id: str,
        tags: Sequence[str],
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> EntityTagsResult:
        """DELETE /v1/entities/{entity_id}/tags"""
        return await self._tags("DELETE", entity_id, tags, request_id, signal, allow_empty=False)

    async def set_tags(
        self,
        entity_id: str,
        tags: Sequence[str],
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> EntityTagsResult:
        """PUT /v1/entities/{entity_id}/tags — Replace all tags; an empty list clears them."""
        return await self._tags("PUT", entity_id, tags, request_id, signal, allow_empty=True)

    async def _tags(
        self,
        method: str,
        entity_id: str,
        tags: Sequence[str],
        request_id: Optional[str],
        signal: Optional[asyncio.Event],
        *,
        allow_empty: bool,
    ) -> EntityTagsResult:
        _require_entity_id(entity_id)
        validate_tags(tags)
        if not tags and not allow_empty:
            raise ClientValidationError("At least one tag is required")

        resp = await self._http.request(
            method,
            f"/v1/entities/{path_segment(entity_id)}/tags",
            json_body={"tags": list(tags)},
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        return _parse_tags_result(resp.data, entity_id)
