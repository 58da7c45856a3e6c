import asyncio
from typing import Any, Optional, Sequence

from ._http import HttpClient
from .errors import ClientValidationError
from .types import FeedbackRating, FeedbackReceipt

_RATINGS = ("thumbs_up", "thumbs_down", "1", "2", "3", "4", "5")


class FeedbackAPI:
    """Namespace for report feedback. Accessed via ``client.feedback``."""

    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def create(
        self,
        rating: FeedbackRating,
        *,
        report_id: Optional[str] = None,
        job_id: Optional[str] = None,
        tags: Optional[Sequence[str]] = None,
        comment: Optional[str] = None,
        corrections: Optional[Sequence[dict[str, Any]]] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> FeedbackReceipt:
        """POST /v1/feedback — Rate a report, addressed by exactly one of report or job id.

        ``corrections`` items look like ``{"path": ..., "expected": ..., "observed": ...}``.
        """
        if bool(report_id) == bool(job_id):
            raise ClientValidationError("Provide exactly one of report_id or job_id")
        if rating not in _RATINGS:
            raise ClientValidationError(f"rating must be one of {', '.join(_RATINGS)}")

        body: dict[str, Any] = {"rating": rating}
        if report_id:
            body["reportId"] = report_id
        if job_id:
            body["jobId"] = job_id
        if tags is not None:
            body["tags"] = list(tags)
        if comment is not None:
            body["comment"] = comment
        if corrections is not None:
            body["corrections"] = list(corrections)

        resp = await self._http.request(
            "POST",
            "/v1/feedback",
            json_body=body,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        data = resp.data
        target = data.get("target") or {}
        return FeedbackReceipt(
            id=data["id"],
            rating=data.get("rating", rating),
            created_at=data.get("createdAt"),
            report_id=target.get("reportId", data.get("reportId")),
            job_id=target.get("jobId", data.get("jobId")),
            tags=data.get("tags"),
            comment=data.get("comment"),
            credits=data.get("credits"),
        )
