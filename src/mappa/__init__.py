"""Mappa Python SDK — behavioral analysis reports from audio and video."""

import os
from typing import Any, Mapping, Optional

import aiohttp

from ._version import __version__
from ._constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT,
    DEFAULT_WAIT_TIMEOUT,
    ENV_API_KEY,
    ENV_BASE_URL,
)
from ._abort import AbortController
from ._http import HttpClient
from ._retry import ReconnectPolicy, RetryPolicy
from ._files_api import FilesAPI
from ._jobs_api import JobsAPI
from ._reports_api import ReportRunHandle, ReportsAPI
from ._credits_api import CreditsAPI
from ._entities_api import EntitiesAPI
from ._feedback_api import FeedbackAPI
from ._health_api import HealthAPI
from ._webhooks_api import WebhooksAPI

# Jobs
from .types import (
    Job,
    JobError,
    JobEvent,
    JobStage,
    JobStatus,
    LogEvent,
    SSEEvent,
    StageEvent,
    StatusEvent,
    TerminalEvent,
    Usage,
    TERMINAL_STATUSES,
    # Report requests
    MediaIdRef,
    MediaRef,
    ReportJobReceipt,
    ReportOptions,
    ReportOutput,
    ReportOutputType,
    ReportSectionSelection,
    Subject,
    UrlMediaRef,
    # Reports
    JsonReport,
    MarkdownReport,
    PdfReport,
    Report,
    ReportEntity,
    ReportSection,
    UrlReport,
    has_entity,
    is_json_report,
    is_markdown_report,
    is_pdf_report,
    is_url_report,
    # Resources
    CreditBalance,
    CreditTransaction,
    CreditUsage,
    EntitiesPage,
    Entity,
    EntityTagsResult,
    FeedbackRating,
    FeedbackReceipt,
    FileDeleteReceipt,
    HealthStatus,
    MediaObject,
    TransactionsPage,
    WebhookEvent,
    # Transport
    ErrorInfo,
    RequestInfo,
    ResponseInfo,
    Telemetry,
    TransportResponse,
)

# Errors
from .errors import (
    MappaError,
    ClientValidationError,
    ApiError,
    AuthError,
    ValidationError,
    RateLimitError,
    InsufficientCreditsError,
    NotFoundError,
    ServerError,
    NetworkError,
    AbortError,
    JobFailedError,
    JobCanceledError,
    StreamError,
    WebhookVerificationError,
)


class Mappa:
    """Mappa API client.

    High-level entry point for report generation. Use
    ``client.reports.create_job()`` to start a job and the returned handle to
    follow it, or ``client.reports.generate()`` to do it all in one call.

    ``api_key`` falls back to the ``MAPPA_API_KEY`` environment variable and
    ``base_url`` to ``MAPPA_BASE_URL``.

    Usage::

        import mappa

        client = mappa.Mappa(api_key="sk-...")

        receipt = await client.reports.create_job(
            mappa.MediaIdRef("media_123"),
            mappa.ReportOutput(type="markdown"),
        )
        async for event in receipt.handle.stream():
            print(event.type)

        await client.close()
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        default_headers: Optional[Mapping[str, str]] = None,
        user_agent: Optional[str] = None,
        telemetry: Optional[Telemetry] = None,
        session: Optional[aiohttp.ClientSession] = None,
        retry_policy: Optional[RetryPolicy] = None,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        wait_timeout: float = DEFAULT_WAIT_TIMEOUT,
    ) -> None:
        api_key = api_key or os.environ.get(ENV_API_KEY)
        if not api_key:
            raise ValueError(
                f"api_key is required: pass it explicitly or set {ENV_API_KEY}"
            )
        base_url = base_url or os.environ.get(ENV_BASE_URL) or DEFAULT_BASE_URL

        self._options: dict[str, Any] = dict(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            default_headers=default_headers,
            user_agent=user_agent,
            telemetry=telemetry,
            session=session,
            retry_policy=retry_policy,
            reconnect_policy=reconnect_policy,
            wait_timeout=wait_timeout,
        )

        self._http = HttpClient(
            api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            default_headers=default_headers,
            user_agent=user_agent,
            telemetry=telemetry,
            retry_policy=retry_policy,
            session=session,
        )
        self.files = FilesAPI(self._http)
        self.jobs = JobsAPI(
            self._http, reconnect_policy=reconnect_policy, wait_timeout=wait_timeout
        )
        self.reports = ReportsAPI(self._http, self.jobs, self.files)
        self.credits = CreditsAPI(self._http)
        self.entities = EntitiesAPI(self._http)
        self.feedback = FeedbackAPI(self._http)
        self.webhooks = WebhooksAPI()
        self.health = HealthAPI(self._http)

    @property
    def base_url(self) -> str:
        return self._http.base_url

    def with_options(self, **overrides: Any) -> "Mappa":
        """Return a new client with some options replaced.

        ``default_headers`` are merged with the current ones. The new client
        opens its own HTTP session unless ``session`` was given.
        """
        unknown = set(overrides) - set(self._options)
        if unknown:
            raise TypeError(f"Unknown client options: {', '.join(sorted(unknown))}")

        options = {**self._options, **overrides}
        if "default_headers" in overrides:
            options["default_headers"] = {
                **(self._options["default_headers"] or {}),
                **(overrides["default_headers"] or {}),
            }
        return Mappa(**options)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self._http.close()

    async def __aenter__(self) -> "Mappa":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


__all__ = [
    # Version
    "__version__",
    # Clients
    "Mappa",
    "HttpClient",
    "AbortController",
    "RetryPolicy",
    "ReconnectPolicy",
    "ReportRunHandle",
    # Resources
    "FilesAPI",
    "JobsAPI",
    "ReportsAPI",
    "CreditsAPI",
    "EntitiesAPI",
    "FeedbackAPI",
    "HealthAPI",
    "WebhooksAPI",
    # Jobs
    "Job",
    "JobError",
    "JobEvent",
    "JobStage",
    "JobStatus",
    "LogEvent",
    "SSEEvent",
    "StageEvent",
    "StatusEvent",
    "TerminalEvent",
    "Usage",
    "TERMINAL_STATUSES",
    # Report requests
    "MediaIdRef",
    "MediaRef",
    "ReportJobReceipt",
    "ReportOptions",
    "ReportOutput",
    "ReportOutputType",
    "ReportSectionSelection",
    "Subject",
    "UrlMediaRef",
    # Reports
    "JsonReport",
    "MarkdownReport",
    "PdfReport",
    "Report",
    "ReportEntity",
    "ReportSection",
    "UrlReport",
    "has_entity",
    "is_json_report",
    "is_markdown_report",
    "is_pdf_report",
    "is_url_report",
    # Resources
    "CreditBalance",
    "CreditTransaction",
    "CreditUsage",
    "EntitiesPage",
    "Entity",
    "EntityTagsResult",
    "FeedbackRating",
    "FeedbackReceipt",
    "FileDeleteReceipt",
    "HealthStatus",
    "MediaObject",
    "TransactionsPage",
    "WebhookEvent",
    # Transport
    "ErrorInfo",
    "RequestInfo",
    "ResponseInfo",
    "Telemetry",
    "TransportResponse",
    # Errors
    "MappaError",
    "ClientValidationError",
    "ApiError",
    "AuthError",
    "ValidationError",
    "RateLimitError",
    "InsufficientCreditsError",
    "NotFoundError",
    "ServerError",
    "NetworkError",
    "AbortError",
    "JobFailedError",
    "JobCanceledError",
    "StreamError",
    "WebhookVerificationError",
]
