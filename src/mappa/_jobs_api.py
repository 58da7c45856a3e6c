import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterator, Callable, Optional

from ._abort import AbortController, raise_if_aborted, sleep
from ._constants import DEFAULT_WAIT_TIMEOUT
from ._http import HttpClient, path_segment
from ._retry import ReconnectPolicy
from .errors import (
    AbortError,
    JobCanceledError,
    JobFailedError,
    MappaError,
    StreamError,
)
from .types import (
    Job,
    JobError,
    JobEvent,
    LogEvent,
    SSEEvent,
    StageEvent,
    StatusEvent,
    TerminalEvent,
    Usage,
)

logger = logging.getLogger("mappa")

OnJobEvent = Callable[[JobEvent], Any]


def _parse_usage(data: Optional[dict[str, Any]]) -> Optional[Usage]:
    if not data:
        return None
    return Usage(
        credits_used=data.get("creditsUsed", 0),
        credits_net_used=data.get("creditsNetUsed", 0),
        credits_discounted=data.get("creditsDiscounted"),
        duration_ms=data.get("durationMs"),
        model_version=data.get("modelVersion"),
    )


def _parse_job(data: dict[str, Any]) -> Job:
    """Parse the raw JSON dict into a Job."""
    error = None
    if data.get("error"):
        err = data["error"]
        error = JobError(
            code=err.get("code", "unknown"),
            message=err.get("message", "Job failed"),
            details=err.get("details"),
            retryable=err.get("retryable"),
        )

    return Job(
        id=data["id"],
        status=data["status"],
        type=data.get("type", "report.generate"),
        stage=data.get("stage"),
        progress=data.get("progress"),
        created_at=data.get("createdAt"),
        updated_at=data.get("updatedAt"),
        report_id=data.get("reportId"),
        usage=_parse_usage(data.get("usage")),
        error=error,
        request_id=data.get("requestId"),
    )


def _to_job_event(frame: SSEEvent) -> JobEvent:
    """Map one SSE frame to a JobEvent.

    Payloads are either ``{"job": {...}, ...}`` or the job itself. Event
    names this client does not know are treated as status updates.
    """
    data = frame.data
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    if frame.event == "log":
        return LogEvent(message=str(data.get("message", "")), ts=data.get("ts"))

    job = _parse_job(data.get("job", data))
    if frame.event == "stage":
        return StageEvent(
            stage=data.get("stage", job.stage),
            progress=data.get("progress", job.progress),
            job=job,
        )
    if frame.event == "terminal":
        return TerminalEvent(job=job)
    return StatusEvent(job=job)


def _error_frame(frame: SSEEvent, job_id: str) -> MappaError:
    data = frame.data if isinstance(frame.data, dict) else {"message": frame.data}
    envelope = data.get("error", data) if isinstance(data.get("error"), dict) else data
    return MappaError(
        str(envelope.get("message") or f"Event stream for job {job_id} reported an error"),
        code=envelope.get("code"),
        request_id=envelope.get("requestId"),
    )


class JobsAPI:
    """Namespace for job operations. Accessed via ``client.jobs``."""

    def __init__(
        self,
        http: HttpClient,
        *,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        self._http = http
        self._reconnect = reconnect_policy or ReconnectPolicy()
        self._wait_timeout = wait_timeout

    async def get(
        self,
        job_id: str,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> Job:
        """GET /v1/jobs/{job_id} — Fetch the current job snapshot."""
        resp = await self._http.request(
            "GET",
            f"/v1/jobs/{path_segment(job_id)}",
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        return _parse_job(resp.data)

    async def cancel(
        self,
        job_id: str,
        *,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> Job:
        """POST /v1/jobs/{job_id}/cancel — Ask the server to cancel a job."""
        resp = await self._http.request(
            "POST",
            f"/v1/jobs/{path_segment(job_id)}/cancel",
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        return _parse_job(resp.data)

    async def stream(
        self,
        job_id: str,
        *,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> AsyncIterator[JobEvent]:
        """Yield job events until the job reaches a terminal state.

        Dropped connections are resumed from the last seen event id, up to
        ``ReconnectPolicy.max_retries`` consecutive failures. The counter is
        reset by every event delivered. A ``terminal`` event is always the
        last one yielded.

        Raises:
            AbortError: ``signal`` was set.
            MappaError: the server sent an ``error`` event.
            StreamError: the reconnect budget was exhausted.
        """
        raise_if_aborted(signal)
        path = f"/v1/jobs/{path_segment(job_id)}/stream"
        policy = self._reconnect
        last_event_id: Optional[str] = None
        retries = 0

        while retries <= policy.max_retries:
            fatal: Optional[Exception] = None
            try:
                frames = self._http.stream_sse(path, signal=signal, last_event_id=last_event_id)
                async with aclosing(frames):
                    async for frame in frames:
                        if frame.id:
                            last_event_id = frame.id
                        if frame.event == "error":
                            fatal = _error_frame(frame, job_id)
                            break
                        if frame.event == "heartbeat":
                            continue
                        try:
                            event = _to_job_event(frame)
                        except (AttributeError, KeyError, TypeError, ValueError) as exc:
                            logger.warning(
                                "Skipping malformed %r event for job %s: %s", frame.event, job_id, exc
                            )
                            continue

                        if on_event is not None:
                            try:
                                on_event(event)
                            except Exception as exc:
                                # Raised below, outside the reconnect handler.
                                fatal = exc
                                break
                        yield event
                        retries = 0

                        if isinstance(event, TerminalEvent):
                            return
            except MappaError as exc:
                if signal is not None and signal.is_set():
                    if isinstance(exc, AbortError):
                        raise
                    raise AbortError() from exc
                retries += 1
                if retries > policy.max_retries:
                    raise StreamError(
                        f"Event stream for job {job_id} failed after {retries} attempts: {exc}",
                        job_id=job_id,
                        last_event_id=last_event_id,
                        retry_count=retries,
                    ) from exc
                delay = policy.delay(retries)
                logger.warning(
                    "Event stream for job %s failed (%s); reconnecting in %.2fs", job_id, exc, delay
                )
                await sleep(delay, signal)
                continue

            if fatal is not None:
                raise fatal

            # Closed without a terminal event (idle timeout, proxy, deploy).
            raise_if_aborted(signal)
            retries += 1
            if retries <= policy.max_retries:
                delay = policy.delay(retries)
                logger.debug(
                    "Event stream for job %s ended early; reconnecting in %.2fs from %s",
                    job_id, delay, last_event_id,
                )
                await sleep(delay, signal)

        raise StreamError(
            f"Event stream for job {job_id} ended {retries} times without a terminal event",
            job_id=job_id,
            last_event_id=last_event_id,
            retry_count=retries,
        )

    async def wait(
        self,
        job_id: str,
        *,
        timeout: Optional[float] = None,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> Job:
        """Wait until the job finishes and return its final snapshot.

        ``timeout`` bounds the whole wait, across reconnects. It is separate
        from the per-request transport timeout.

        Raises:
            JobFailedError: the job failed, or no terminal state was seen in time.
            JobCanceledError: the job was canceled.
            AbortError: ``signal`` was set.
        """
        raise_if_aborted(signal)
        timeout = self._wait_timeout if timeout is None else timeout

        controller = AbortController()
        controller.follow(signal)
        controller.abort_after(timeout)
        try:
            events = self.stream(job_id, signal=controller.signal, on_event=on_event)
            async with aclosing(events):
                async for event in events:
                    if not isinstance(event, TerminalEvent):
                        continue
                    job = event.job
                    if job.status == "succeeded":
                        return job
                    if job.status == "failed":
                        raise JobFailedError(
                            job_id,
                            job.error.message if job.error else "Job failed",
                            error=job.error,
                            code=job.error.code if job.error else None,
                            request_id=job.request_id,
                        )
                    if job.status == "canceled":
                        raise JobCanceledError(job_id, request_id=job.request_id)
                    logger.warning(
                        "Terminal event for job %s carried non-terminal status %r", job_id, job.status
                    )
                    break
        except AbortError:
            if controller.reason != "timeout":
                raise
        finally:
            controller.close()

        raise JobFailedError(
            job_id,
            f"Timed out waiting for job {job_id} after {timeout}s",
            code="timeout",
        )
