import asyncio
import contextlib
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Iterator, Mapping, Optional, Union
from urllib.parse import quote, urlencode

import aiohttp

from ._abort import race, raise_if_aborted, sleep
from ._constants import (
    API_KEY_HEADER,
    IDEMPOTENCY_KEY_HEADER,
    LAST_EVENT_ID_HEADER,
    REQUEST_ID_HEADER,
    USER_AGENT,
)
from ._retry import RetryPolicy
from ._sse import SSEDecoder
from .errors import (
    AbortError,
    ApiError,
    AuthError,
    InsufficientCreditsError,
    MappaError,
    NetworkError,
    NotFoundError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from .types import (
    ErrorInfo,
    RequestInfo,
    ResponseInfo,
    SSEEvent,
    Telemetry,
    TransportResponse,
)

logger = logging.getLogger("mappa")

QueryValue = Union[str, int, float, bool, None]


def new_id(prefix: str = "req") -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def path_segment(value: str) -> str:
    """Percent-encode a single path segment (ids may contain ``/``)."""
    return quote(value, safe="")


@dataclass(frozen=True, slots=True)
class MultipartField:
    name: str
    value: Union[str, bytes]
    filename: Optional[str] = None
    content_type: Optional[str] = None


@dataclass(frozen=True, slots=True)
class MultipartBody:
    """A multipart/form-data payload.

    ``aiohttp.FormData`` can only be sent once, so a fresh one is built for
    every attempt.
    """

    fields: tuple[MultipartField, ...]

    def to_form(self) -> aiohttp.FormData:
        form = aiohttp.FormData()
        for f in self.fields:
            form.add_field(f.name, f.value, filename=f.filename, content_type=f.content_type)
        return form


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def _parse_body(text: str) -> Any:
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


async def _coerce_api_error(resp: aiohttp.ClientResponse, request_id: Optional[str]) -> ApiError:
    """Map an error response to the matching :class:`ApiError` subclass.

    Accepts ``{"error": {code, message, details}}`` as well as a flat
    ``{code, message, details}`` envelope.
    """
    parsed = _parse_body(await resp.text())
    request_id = resp.headers.get(REQUEST_ID_HEADER) or request_id

    code: Optional[str] = None
    message = f"Request failed with status {resp.status}"
    details: Any = parsed

    if isinstance(parsed, str):
        message = parsed
    elif isinstance(parsed, dict):
        envelope = parsed.get("error", parsed)
        if isinstance(envelope, dict):
            if isinstance(envelope.get("message"), str):
                message = envelope["message"]
            if isinstance(envelope.get("code"), str):
                code = envelope["code"]
            if "details" in envelope:
                details = envelope["details"]
        elif isinstance(envelope, str) and isinstance(parsed.get("message"), str):
            code = envelope
            message = parsed["message"]

    kwargs: dict[str, Any] = {
        "status_code": resp.status,
        "request_id": request_id,
        "code": code,
        "details": details,
    }
    if resp.status in (401, 403):
        return AuthError(message, **kwargs)
    if resp.status == 422:
        return ValidationError(message, **kwargs)
    if resp.status == 402 and code == "insufficient_credits":
        return InsufficientCreditsError(message, **kwargs)
    if resp.status == 404:
        return NotFoundError(message, **kwargs)
    if resp.status == 429:
        return RateLimitError(
            message, retry_after=_parse_retry_after(resp.headers.get("Retry-After")), **kwargs
        )
    if resp.status >= 500:
        return ServerError(message, **kwargs)
    return ApiError(message, **kwargs)


@contextlib.contextmanager
def _translate_errors(timeout: float) -> Iterator[None]:
    """Convert aiohttp/asyncio failures into SDK exceptions."""
    try:
        yield
    except asyncio.TimeoutError as exc:
        raise AbortError(f"Request timed out after {timeout}s", reason="timeout") from exc
    except aiohttp.ClientError as exc:
        raise NetworkError(f"Network error: {exc}", cause=exc) from exc


class HttpClient:
    """Internal HTTP transport shared by every resource.

    Manages an aiohttp session, adds auth and correlation headers, retries
    retryable failures and maps HTTP status codes to SDK exceptions. Also
    opens the Server-Sent-Events streams used for job progress.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        default_headers: Optional[Mapping[str, str]] = None,
        user_agent: Optional[str] = None,
        telemetry: Optional[Telemetry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._max_retries = max(0, max_retries)
        self._default_headers = dict(default_headers or {})
        self._user_agent = user_agent or USER_AGENT
        self._telemetry = telemetry or Telemetry()
        self._retry = retry_policy or RetryPolicy()
        self._session = session
        self._owns_session = session is None

    @property
    def api_key(self) -> str:
        return self._api_key

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    def build_url(self, path: str, query: Optional[Mapping[str, QueryValue]] = None) -> str:
        url = f"{self._base_url}/{path.lstrip('/')}"
        if query:
            params = {
                k: (str(v).lower() if isinstance(v, bool) else str(v))
                for k, v in query.items()
                if v is not None
            }
            if params:
                url = f"{url}?{urlencode(params)}"
        return url

    def _headers(self, request_id: str) -> dict[str, str]:
        return {
            API_KEY_HEADER: self._api_key,
            REQUEST_ID_HEADER: request_id,
            "User-Agent": self._user_agent,
            **self._default_headers,
        }

    # ── Telemetry ────────────────────────────────────────────────────

    def _emit(self, hook: Optional[Callable[[Any], Any]], info: Any) -> None:
        if hook is None:
            return
        try:
            hook(info)
        except Exception as exc:
            logger.warning("Telemetry hook %s failed: %s", getattr(hook, "__name__", hook), exc)

    # ── Requests ─────────────────────────────────────────────────────

    async def request(
        self,
        method: str,
        path: str,
        *,
        query: Optional[Mapping[str, QueryValue]] = None,
        headers: Optional[Mapping[str, Optional[str]]] = None,
        json_body: Any = None,
        form: Optional[MultipartBody] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
        retryable: bool = False,
    ) -> TransportResponse:
        """Make an HTTP request and return the parsed response.

        Retries rate limits, 5xx responses and network failures when
        ``retryable`` is set. Raises SDK-specific exceptions otherwise.
        """
        raise_if_aborted(signal)

        url = self.build_url(path, query)
        request_id = request_id or new_id("req")
        req_headers = self._headers(request_id)
        if idempotency_key:
            req_headers[IDEMPOTENCY_KEY_HEADER] = idempotency_key
        for key, value in (headers or {}).items():
            if value is not None:
                req_headers[key] = value
        if json_body is not None and form is None:
            req_headers["Content-Type"] = "application/json"

        started = time.monotonic()
        attempts = self._max_retries + 1

        for attempt in range(1, attempts + 1):
            raise_if_aborted(signal)
            self._emit(self._telemetry.on_request, RequestInfo(method, url, request_id))
            try:
                resp = await race(
                    self._attempt(method, url, req_headers, json_body, form, request_id), signal
                )
            except MappaError as exc:
                self._emit(
                    self._telemetry.on_error,
                    ErrorInfo(url, exc, exc.request_id or request_id),
                )
                delay = self._retry_delay(exc, attempt, retryable)
                if delay is None:
                    raise
                logger.warning(
                    "%s %s failed (%s); retrying in %.2fs (attempt %d of %d)",
                    method, path, exc, delay, attempt + 1, attempts,
                )
                await self._backoff(delay, signal)
                continue

            self._emit(
                self._telemetry.on_response,
                ResponseInfo(resp.status, url, time.monotonic() - started, resp.request_id),
            )
            return resp

        raise MappaError("Unexpected transport exit")  # pragma: no cover

    async def _attempt(
        self,
        method: str,
        url: str,
        headers: dict[str, str],
        json_body: Any,
        form: Optional[MultipartBody],
        request_id: str,
    ) -> TransportResponse:
        session = await self._ensure_session()
        kwargs: dict[str, Any] = {"headers": headers, "timeout": self._timeout}
        if form is not None:
            kwargs["data"] = form.to_form()
        elif json_body is not None:
            kwargs["json"] = json_body

        logger.debug("%s %s (%s)", method, url, request_id)
        with _translate_errors(self._timeout_seconds):
            async with session.request(method, url, **kwargs) as resp:
                if not resp.ok:
                    raise await _coerce_api_error(resp, request_id)

                content_type = resp.headers.get("Content-Type", "")
                if "application/json" in content_type:
                    data = _parse_body(await resp.text())
                else:
                    data = await resp.text()

                return TransportResponse(
                    data=data,
                    status=resp.status,
                    request_id=resp.headers.get(REQUEST_ID_HEADER) or request_id,
                    headers=resp.headers,
                )

    def _retry_delay(self, exc: MappaError, attempt: int, retryable: bool) -> Optional[float]:
        """Seconds to wait before the next attempt, or None to give up."""
        if not retryable or attempt > self._max_retries:
            return None
        if isinstance(exc, RateLimitError):
            if exc.retry_after is not None:
                return exc.retry_after
            return self._retry.delay(attempt)
        if isinstance(exc, ApiError):
            return self._retry.delay(attempt) if 500 <= exc.status_code <= 599 else None
        if isinstance(exc, NetworkError):
            return self._retry.delay(attempt)
        return None

    async def _backoff(self, delay: float, signal: Optional[asyncio.Event]) -> None:
        await sleep(delay, signal)

    # ── Server-Sent Events ───────────────────────────────────────────

    async def stream_sse(
        self,
        path: str,
        *,
        signal: Optional[asyncio.Event] = None,
        last_event_id: Optional[str] = None,
    ) -> AsyncIterator[SSEEvent]:
        """Open one event stream and yield frames as they arrive.

        The generator ends when the server closes the connection. It never
        reconnects by itself; pass the last seen ``id`` as ``last_event_id``
        to resume.
        """
        raise_if_aborted(signal)

        url = self.build_url(path)
        request_id = new_id("req")
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            **self._headers(request_id),
        }
        if last_event_id:
            headers[LAST_EVENT_ID_HEADER] = last_event_id

        self._emit(self._telemetry.on_request, RequestInfo("GET", url, request_id))
        try:
            with _translate_errors(self._timeout_seconds):
                resp = await race(
                    self._open(url, headers), signal, on_discard=aiohttp.ClientResponse.close
                )
        except MappaError as exc:
            self._emit(self._telemetry.on_error, ErrorInfo(url, exc, request_id))
            raise

        try:
            if not resp.ok:
                api_error = await _coerce_api_error(resp, request_id)
                self._emit(self._telemetry.on_error, ErrorInfo(url, api_error, api_error.request_id))
                raise api_error
            if resp.content is None:
                raise MappaError("SSE response has no body", request_id=request_id)

            logger.debug("Event stream open: %s (last_event_id=%s)", url, last_event_id)
            decoder = SSEDecoder()
            while True:
                with _translate_errors(self._timeout_seconds):
                    chunk = await race(resp.content.readany(), signal)
                if not chunk:
                    break
                for event in decoder.feed(chunk):
                    yield event
            for event in decoder.flush():
                yield event
        finally:
            resp.close()

    async def _open(self, url: str, headers: dict[str, str]) -> aiohttp.ClientResponse:
        session = await self._ensure_session()
        return await session.get(url, headers=headers, timeout=self._timeout)

    # ── Plain downloads ──────────────────────────────────────────────

    async def download(
        self, url: str, *, signal: Optional[asyncio.Event] = None
    ) -> tuple[bytes, Optional[str]]:
        """Fetch a remote file without API credentials.

        Returns the body and the response Content-Type.
        """
        session = await self._ensure_session()

        async def fetch() -> tuple[bytes, Optional[str]]:
            with _translate_errors(self._timeout_seconds):
                async with session.get(url, timeout=self._timeout) as resp:
                    if not resp.ok:
                        raise MappaError(f"Download of {url} failed with status {resp.status}")
                    return await resp.read(), resp.headers.get("Content-Type")

        return await race(fetch(), signal)

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
        self._session = None
