import asyncio
import logging
import os
from typing import Any, AsyncIterator, Optional
from urllib.parse import urlparse

from ._files_api import FileInput, FilesAPI
from ._http import HttpClient, new_id, path_segment
from ._jobs_api import JobsAPI, OnJobEvent, _parse_usage
from .errors import ClientValidationError, MappaError
from .types import (
    Job,
    JobEvent,
    JsonReport,
    MarkdownReport,
    MediaIdRef,
    MediaRef,
    PdfReport,
    Report,
    ReportEntity,
    ReportJobReceipt,
    ReportOptions,
    ReportOutput,
    ReportSection,
    Subject,
    UrlMediaRef,
    UrlReport,
)

logger = logging.getLogger("mappa")

_OUTPUT_TYPES = ("markdown", "json", "pdf", "url")


# ── Request serialization ────────────────────────────────────────────

def _validate_media(media: MediaRef) -> None:
    if isinstance(media, MediaIdRef):
        if not isinstance(media.media_id, str) or not media.media_id:
            raise ClientValidationError("media.media_id must be a non-empty string")
        return
    if isinstance(media, UrlMediaRef):
        if not isinstance(media.url, str) or not media.url:
            raise ClientValidationError("media.url must be a non-empty string")
        return
    raise ClientValidationError("media must be exactly one of MediaIdRef or UrlMediaRef")


def _validate_output(output: ReportOutput) -> None:
    if not isinstance(output, ReportOutput):
        raise ClientValidationError("output must be a ReportOutput")
    if output.type not in _OUTPUT_TYPES:
        raise ClientValidationError(
            f"output.type must be one of {', '.join(_OUTPUT_TYPES)}, got {output.type!r}"
        )


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _media_to_wire(media: MediaRef) -> dict[str, Any]:
    if isinstance(media, MediaIdRef):
        return {"mediaId": media.media_id}
    return _compact(
        {"url": media.url, "contentType": media.content_type, "filename": media.filename}
    )


def _output_to_wire(output: ReportOutput) -> dict[str, Any]:
    sections = None
    if output.sections is not None:
        sections = [
            _compact(
                {
                    "id": s.id,
                    "enabled": s.enabled,
                    "order": s.order,
                    "params": s.params,
                    "titleOverride": s.title_override,
                }
            )
            for s in output.sections
        ]
    return _compact({"type": output.type, "template": output.template, "sections": sections})


def _subject_to_wire(subject: Subject) -> dict[str, Any]:
    return _compact(
        {"id": subject.id, "externalRef": subject.external_ref, "metadata": subject.metadata}
    )


def _options_to_wire(options: ReportOptions) -> dict[str, Any]:
    return _compact(
        {
            "language": options.language,
            "timezone": options.timezone,
            "includeMetrics": options.include_metrics,
            "includeRawModelOutput": options.include_raw_model_output,
        }
    )


# ── Response parsing ─────────────────────────────────────────────────

def _parse_subject(data: Optional[dict[str, Any]]) -> Optional[Subject]:
    if not data:
        return None
    return Subject(
        id=data.get("id"),
        external_ref=data.get("externalRef"),
        metadata=data.get("metadata"),
    )


def _parse_report(data: dict[str, Any]) -> Report:
    """Parse the raw JSON dict into the Report variant named by ``output.type``."""
    output_data = data.get("output") or {}
    output_type = output_data.get("type")
    output = ReportOutput(type=output_type, template=output_data.get("template"))

    entity = None
    if data.get("entity"):
        entity = ReportEntity(id=data["entity"]["id"], tags=list(data["entity"].get("tags") or []))

    common: dict[str, Any] = dict(
        id=data["id"],
        output=output,
        created_at=data.get("createdAt"),
        job_id=data.get("jobId"),
        subject=_parse_subject(data.get("subject")),
        media=data.get("media"),
        entity=entity,
        usage=_parse_usage(data.get("usage")),
        metrics=data.get("metrics"),
        raw=data.get("raw"),
    )

    if output_type == "markdown":
        return MarkdownReport(**common, markdown=data.get("markdown", ""))
    if output_type == "json":
        sections = [
            ReportSection(
                id=s["id"],
                title=s.get("title", ""),
                content=s.get("content"),
                data=s.get("data"),
            )
            for s in data.get("sections") or []
        ]
        return JsonReport(**common, sections=sections)
    if output_type == "pdf":
        return PdfReport(**common, pdf_url=data.get("pdfUrl", ""), markdown=data.get("markdown"))
    if output_type == "url":
        return UrlReport(**common, report_url=data.get("reportUrl", ""), markdown=data.get("markdown"))
    raise MappaError(f"Unknown report output type: {output_type!r}")


def _filename_from_url(url: str) -> Optional[str]:
    name = os.path.basename(urlparse(url).path)
    return name or None


# ── Handle ───────────────────────────────────────────────────────────

class ReportRunHandle:
    """Follow-up operations for one report job.

    Returned on every :class:`ReportJobReceipt` created by this client.
    """

    def __init__(self, reports: "ReportsAPI", job_id: str) -> None:
        self._reports = reports
        self.job_id = job_id

    def __repr__(self) -> str:
        return f"ReportRunHandle(job_id={self.job_id!r})"

    def stream(
        self,
        *,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> AsyncIterator[JobEvent]:
        return self._reports._jobs.stream(self.job_id, signal=signal, on_event=on_event)

    async def wait(
        self,
        *,
        timeout: Optional[float] = None,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> Report:
        """Wait for the job to succeed, then fetch its report."""
        job = await self._reports._jobs.wait(
            self.job_id, timeout=timeout, signal=signal, on_event=on_event
        )
        if not job.report_id:
            raise MappaError(
                f"Job {self.job_id} succeeded but no report id was returned",
                request_id=job.request_id,
            )
        return await self._reports.get(job.report_id, signal=signal)

    async def cancel(self, *, signal: Optional[asyncio.Event] = None) -> Job:
        return await self._reports._jobs.cancel(self.job_id, signal=signal)

    async def job(self, *, signal: Optional[asyncio.Event] = None) -> Job:
        return await self._reports._jobs.get(self.job_id, signal=signal)

    async def report(self, *, signal: Optional[asyncio.Event] = None) -> Optional[Report]:
        return await self._reports.get_by_job(self.job_id, signal=signal)


# ── Resource ─────────────────────────────────────────────────────────

class ReportsAPI:
    """Namespace for report operations. Accessed via ``client.reports``.

    Usage::

        receipt = await client.reports.create_job(
            MediaIdRef("media_123"), ReportOutput(type="markdown")
        )
        report = await receipt.handle.wait()
    """

    def __init__(self, http: HttpClient, jobs: JobsAPI, files: FilesAPI) -> None:
        self._http = http
        self._jobs = jobs
        self._files = files

    async def create_job(
        self,
        media: MediaRef,
        output: ReportOutput,
        *,
        subject: Optional[Subject] = None,
        options: Optional[ReportOptions] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> ReportJobReceipt:
        """POST /v1/reports/jobs — Start an asynchronous report job.

        A random idempotency key is generated when none is given, so that
        transport retries never create duplicate jobs.

        Raises:
            ClientValidationError: ``media`` or ``output`` is invalid.
        """
        _validate_media(media)
        _validate_output(output)

        body: dict[str, Any] = {
            "media": _media_to_wire(media),
            "output": _output_to_wire(output),
        }
        if subject is not None:
            body["subject"] = _subject_to_wire(subject)
        if options is not None:
            body["options"] = _options_to_wire(options)

        resp = await self._http.request(
            "POST",
            "/v1/reports/jobs",
            json_body=body,
            idempotency_key=idempotency_key or new_id("idem"),
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        data = resp.data
        receipt = ReportJobReceipt(
            job_id=data["jobId"],
            status=data.get("status", "queued"),
            stage=data.get("stage"),
            estimated_wait_sec=data.get("estimatedWaitSec"),
            request_id=resp.request_id or data.get("requestId"),
        )
        receipt.handle = self.make_handle(receipt.job_id)
        logger.info("Report job created: %s (%s)", receipt.job_id, receipt.request_id)
        return receipt

    async def create_job_from_file(
        self,
        file: FileInput,
        *,
        output: ReportOutput,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        subject: Optional[Subject] = None,
        options: Optional[ReportOptions] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> ReportJobReceipt:
        """Upload ``file`` and start a report job for it.

        ``idempotency_key`` and ``request_id`` apply to both requests.
        """
        _validate_output(output)
        upload = await self._files.upload(
            file,
            content_type=content_type,
            filename=filename,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
        )
        return await self.create_job(
            MediaIdRef(upload.media_id),
            output,
            subject=subject,
            options=options,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
        )

    async def create_job_from_url(
        self,
        url: str,
        *,
        output: ReportOutput,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        subject: Optional[Subject] = None,
        options: Optional[ReportOptions] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> ReportJobReceipt:
        """Download remote media, upload it, and start a report job for it.

        The download is sent without API credentials.
        """
        if not isinstance(url, str) or not url:
            raise ClientValidationError("url must be a non-empty string")
        if urlparse(url).scheme not in ("http", "https"):
            raise ClientValidationError(f"url must be http(s), got {url!r}")
        _validate_output(output)

        payload, remote_type = await self._http.download(url, signal=signal)
        if remote_type:
            remote_type = remote_type.split(";", 1)[0].strip() or None
        return await self.create_job_from_file(
            payload,
            output=output,
            content_type=content_type or remote_type,
            filename=filename or _filename_from_url(url),
            subject=subject,
            options=options,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
        )

    async def get(
        self,
        report_id: str,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> Report:
        """GET /v1/reports/{report_id}"""
        resp = await self._http.request(
            "GET",
            f"/v1/reports/{path_segment(report_id)}",
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        return _parse_report(resp.data)

    async def get_by_job(
        self,
        job_id: str,
        *,
        request_id: Optional[str] = None,
        signal: Optional[asyncio.Event] = None,
    ) -> Optional[Report]:
        """GET /v1/reports/by-job/{job_id} — None while the job has no report."""
        resp = await self._http.request(
            "GET",
            f"/v1/reports/by-job/{path_segment(job_id)}",
            request_id=request_id,
            signal=signal,
            retryable=True,
        )
        if not resp.data:
            return None
        return _parse_report(resp.data)

    async def generate(
        self,
        media: MediaRef,
        output: ReportOutput,
        *,
        subject: Optional[Subject] = None,
        options: Optional[ReportOptions] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        timeout: Optional[float] = None,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> Report:
        """Create a job, wait for it and return the report.

        Convenient for scripts. Services should prefer ``create_job`` plus
        webhooks or ``stream``.
        """
        receipt = await self.create_job(
            media,
            output,
            subject=subject,
            options=options,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
        )
        return await self._finish(receipt, timeout, signal, on_event)

    async def generate_from_file(
        self,
        file: FileInput,
        *,
        output: ReportOutput,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        subject: Optional[Subject] = None,
        options: Optional[ReportOptions] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        timeout: Optional[float] = None,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> Report:
        receipt = await self.create_job_from_file(
            file,
            output=output,
            content_type=content_type,
            filename=filename,
            subject=subject,
            options=options,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
        )
        return await self._finish(receipt, timeout, signal, on_event)

    async def generate_from_url(
        self,
        url: str,
        *,
        output: ReportOutput,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        subject: Optional[Subject] = None,
        options: Optional[ReportOptions] = None,
        idempotency_key: Optional[str] = None,
        request_id: Optional[str] = None,
        timeout: Optional[float] = None,
        signal: Optional[asyncio.Event] = None,
        on_event: Optional[OnJobEvent] = None,
    ) -> Report:
        receipt = await self.create_job_from_url(
            url,
            output=output,
            content_type=content_type,
            filename=filename,
            subject=subject,
            options=options,
            idempotency_key=idempotency_key,
            request_id=request_id,
            signal=signal,
        )
        return await self._finish(receipt, timeout, signal, on_event)

    def make_handle(self, job_id: str) -> ReportRunHandle:
        return ReportRunHandle(self, job_id)

    async def _finish(
        self,
        receipt: ReportJobReceipt,
        timeout: Optional[float],
        signal: Optional[asyncio.Event],
        on_event: Optional[OnJobEvent],
    ) -> Report:
        handle = receipt.handle or self.make_handle(receipt.job_id)
        return await handle.wait(timeout=timeout, signal=signal, on_event=on_event)
