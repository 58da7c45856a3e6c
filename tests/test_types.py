"""Tests for mappa.types, mappa.errors and the retry policies."""
import asyncio
import dataclasses
from unittest.mock import MagicMock

import pytest

from mappa import (
    AbortController,
    Job,
    LogEvent,
    MarkdownReport,
    ReconnectPolicy,
    ReportOutput,
    RetryPolicy,
    StageEvent,
    StatusEvent,
    TerminalEvent,
    UrlMediaRef,
    is_json_report,
    is_markdown_report,
)
from mappa._abort import race
from mappa.errors import (
    AbortError,
    ApiError,
    ClientValidationError,
    JobFailedError,
    MappaError,
    RateLimitError,
    StreamError,
)


def test_job_defaults_and_terminal_flag():
    job = Job(id="job-1", status="queued")
    assert job.type == "report.generate"
    assert job.stage is None
    assert not job.is_terminal
    assert Job(id="job-1", status="canceled").is_terminal


def test_types_are_frozen():
    job = Job(id="job-1", status="queued")
    with pytest.raises(dataclasses.FrozenInstanceError):
        job.status = "running"


def test_event_type_tags():
    job = Job(id="job-1", status="running")
    assert StatusEvent(job=job).type == "status"
    assert StageEvent(stage="scoring", job=job).type == "stage"
    assert TerminalEvent(job=job).type == "terminal"
    assert LogEvent(message="hello").type == "log"


def test_url_media_ref_defaults():
    ref = UrlMediaRef("https://cdn.example.com/a.mp4")
    assert ref.content_type is None
    assert ref.filename is None


def test_report_type_guards():
    report = MarkdownReport(id="rep-1", output=ReportOutput(type="markdown"), markdown="# hi")
    assert is_markdown_report(report)
    assert not is_json_report(report)


# ── Errors ───────────────────────────────────────────────────────────

def test_error_hierarchy():
    assert issubclass(ClientValidationError, MappaError)
    assert issubclass(ClientValidationError, ValueError)
    assert issubclass(RateLimitError, ApiError)
    assert issubclass(AbortError, MappaError)


def test_error_str_and_repr():
    err = RateLimitError("slow down", status_code=429, request_id="req_1", retry_after=2.0)
    assert err.message == "slow down"
    assert str(err) == "slow down (status_code=429, request_id=req_1, retry_after=2.0)"
    assert repr(err).startswith("RateLimitError('slow down'")


def test_plain_error_str_has_no_context():
    assert str(MappaError("boom")) == "boom"


def test_job_and_stream_errors_carry_context():
    failed = JobFailedError("job-1", "Timed out", code="timeout")
    assert "job_id=job-1" in str(failed)
    assert "code=timeout" in str(failed)

    stream = StreamError("gave up", job_id="job-1", last_event_id="7", retry_count=3)
    assert "last_event_id=7" in str(stream)
    assert "retry_count=3" in str(stream)


# ── Policies ─────────────────────────────────────────────────────────

def test_retry_policy_jitter_bounds():
    policy = RetryPolicy(base_delay=0.5, max_delay=4.0, jitter=0.2)
    for attempt, base in [(1, 0.5), (2, 1.0), (3, 2.0), (4, 4.0), (8, 4.0)]:
        delay = policy.delay(attempt)
        assert base * 0.8 <= delay <= base * 1.2


def test_reconnect_policy_only_lengthens():
    policy = ReconnectPolicy(base_delay=1.0, max_delay=10.0, jitter=0.5)
    for attempt, base in [(1, 1.0), (2, 2.0), (5, 10.0)]:
        delay = policy.delay(attempt)
        assert base <= delay <= base * 1.5


# ── AbortController ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_abort_controller_timeout():
    controller = AbortController()
    controller.abort_after(0.01)
    await asyncio.wait_for(controller.signal.wait(), 1.0)
    assert controller.reason == "timeout"
    controller.close()


@pytest.mark.asyncio
async def test_abort_controller_follows_parent():
    parent = asyncio.Event()
    controller = AbortController()
    controller.follow(parent)
    controller.abort_after(10.0)
    parent.set()
    await asyncio.wait_for(controller.signal.wait(), 1.0)
    assert controller.reason == "canceled"
    controller.close()


@pytest.mark.asyncio
async def test_first_abort_reason_wins():
    controller = AbortController()
    controller.abort("timeout")
    controller.abort("canceled")
    assert controller.reason == "timeout"
    assert controller.aborted


@pytest.mark.asyncio
async def test_race_releases_result_that_lost_to_abort():
    signal = asyncio.Event()
    resource = MagicMock()

    async def open_then_abort():
        signal.set()
        return resource

    with pytest.raises(AbortError):
        await race(open_then_abort(), signal, on_discard=lambda r: r.close())

    resource.close.assert_called_once()


@pytest.mark.asyncio
async def test_race_returns_result_when_not_aborted():
    resource = MagicMock()

    async def open_resource():
        return resource

    assert await race(open_resource(), asyncio.Event(), on_discard=lambda r: r.close()) is resource
    resource.close.assert_not_called()
