from typing import Any, Optional


class MappaError(Exception):
    """Base exception for all Mappa SDK errors.

    ``str(err)`` includes whatever context the error carries (status, code,
    request id, job id) so it can be logged as-is. The bare message is
    available as ``err.message``.
    """

    def __init__(
        self,
        message: str,
        *,
        request_id: Optional[str] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.code = code

    def _context(self) -> dict[str, Any]:
        return {"code": self.code, "request_id": self.request_id}

    def __str__(self) -> str:
        context = ", ".join(
            f"{key}={value}" for key, value in self._context().items() if value is not None
        )
        return f"{self.message} ({context})" if context else self.message

    def __repr__(self) -> str:
        parts = [f"{type(self).__name__}({self.message!r}"]
        for key, value in self._context().items():
            if value is not None:
                parts.append(f", {key}={value!r}")
        parts.append(")")
        return "".join(parts)


class ClientValidationError(MappaError, ValueError):
    """Invalid input detected before any request was sent."""


class ApiError(MappaError):
    """HTTP API error with status code and optional server details."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        request_id: Optional[str] = None,
        code: Optional[str] = None,
        details: Any = None,
    ) -> None:
        super().__init__(message, request_id=request_id, code=code)
        self.status_code = status_code
        self.details = details

    def _context(self) -> dict[str, Any]:
        return {"status_code": self.status_code, **super()._context()}


class AuthError(ApiError):
    """401/403 — missing, invalid or revoked API key."""


class ValidationError(ApiError):
    """422 — the server rejected the request parameters."""


class RateLimitError(ApiError):
    """429 — too many requests. ``retry_after`` is in seconds when the server sent one."""

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after

    def _context(self) -> dict[str, Any]:
        return {**super()._context(), "retry_after": self.retry_after}


class InsufficientCreditsError(ApiError):
    """402 — not enough credits to run the job."""

    def __init__(self, message: str, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        details = self.details if isinstance(self.details, dict) else {}
        self.required: Optional[float] = details.get("required")
        self.available: Optional[float] = details.get("available")


class NotFoundError(ApiError):
    """404 — job, report or resource not found."""


class ServerError(ApiError):
    """5xx — server-side error."""


class NetworkError(MappaError):
    """Connection or transport-level failure (DNS, socket reset, protocol error)."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.__cause__ = cause


class AbortError(MappaError):
    """The operation was canceled by the caller's signal or hit a timeout.

    ``reason`` is ``"canceled"`` or ``"timeout"``.
    """

    def __init__(self, message: str = "The operation was aborted", *, reason: str = "canceled") -> None:
        super().__init__(message)
        self.reason = reason

    def _context(self) -> dict[str, Any]:
        return {"reason": self.reason}


class JobFailedError(MappaError):
    """The job reached ``failed``, or waiting for it timed out."""

    def __init__(self, job_id: str, message: str, *, error: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.job_id = job_id
        self.error = error

    def _context(self) -> dict[str, Any]:
        return {"job_id": self.job_id, **super()._context()}


class JobCanceledError(MappaError):
    """The job reached ``canceled``."""

    def __init__(self, job_id: str, message: str = "Job canceled", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.job_id = job_id

    def _context(self) -> dict[str, Any]:
        return {"job_id": self.job_id, **super()._context()}


class StreamError(MappaError):
    """The job event stream could not be kept alive within the reconnect budget."""

    def __init__(
        self,
        message: str,
        *,
        job_id: str,
        last_event_id: Optional[str] = None,
        retry_count: int = 0,
    ) -> None:
        super().__init__(message)
        self.job_id = job_id
        self.last_event_id = last_event_id
        self.retry_count = retry_count

    def _context(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "last_event_id": self.last_event_id,
            "retry_count": self.retry_count,
        }


class WebhookVerificationError(MappaError):
    """Webhook signature header missing, malformed, expired or not matching."""
