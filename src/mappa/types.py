from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Literal, Mapping, Optional, Union

if TYPE_CHECKING:
    from ._reports_api import ReportRunHandle


# ── Job lifecycle ────────────────────────────────────────────────────

JobStatus = Literal["queued", "running", "succeeded", "failed", "canceled"]
JobStage = Literal[
    "uploaded",
    "queued",
    "transcoding",
    "extracting",
    "scoring",
    "rendering",
    "finalizing",
]
ReportOutputType = Literal["markdown", "json", "pdf", "url"]
FeedbackRating = Literal["thumbs_up", "thumbs_down", "1", "2", "3", "4", "5"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"succeeded", "failed", "canceled"})


@dataclass(frozen=True, slots=True)
class Usage:
    """Credit usage attached to a job or report."""

    credits_used: float
    credits_net_used: float
    credits_discounted: Optional[float] = None
    duration_ms: Optional[float] = None
    model_version: Optional[str] = None


@dataclass(frozen=True, slots=True)
class JobError:
    """Failure details of a ``failed`` job."""

    code: str
    message: str
    details: Any = None
    retryable: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class Job:
    """Server-side snapshot of an asynchronous job."""

    id: str
    status: JobStatus
    type: str = "report.generate"
    stage: Optional[JobStage] = None
    progress: Optional[float] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    report_id: Optional[str] = None
    usage: Optional[Usage] = None
    error: Optional[JobError] = None
    request_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        """True once the job is succeeded, failed or canceled."""
        return self.status in TERMINAL_STATUSES


# ── Streaming ────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class SSEEvent:
    """One decoded Server-Sent-Events frame."""

    event: str = "message"
    data: Any = None
    id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StatusEvent:
    job: Job
    type: Literal["status"] = "status"


@dataclass(frozen=True, slots=True)
class StageEvent:
    stage: Optional[JobStage]
    job: Job
    progress: Optional[float] = None
    type: Literal["stage"] = "stage"


@dataclass(frozen=True, slots=True)
class TerminalEvent:
    job: Job
    type: Literal["terminal"] = "terminal"


@dataclass(frozen=True, slots=True)
class LogEvent:
    message: str
    ts: Optional[str] = None
    type: Literal["log"] = "log"


JobEvent = Union[StatusEvent, StageEvent, TerminalEvent, LogEvent]


# ── Media & report requests ─────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MediaIdRef:
    """Media previously uploaded with ``client.files.upload()``."""

    media_id: str


@dataclass(frozen=True, slots=True)
class UrlMediaRef:
    """Media the server fetches from a public URL."""

    url: str
    content_type: Optional[str] = None
    filename: Optional[str] = None


MediaRef = Union[MediaIdRef, UrlMediaRef]


@dataclass(frozen=True, slots=True)
class ReportSectionSelection:
    id: str
    enabled: Optional[bool] = None
    order: Optional[int] = None
    params: Optional[dict[str, Any]] = None
    title_override: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ReportOutput:
    """Requested report format."""

    type: ReportOutputType
    template: Optional[str] = None
    sections: Optional[list[ReportSectionSelection]] = None


@dataclass(frozen=True, slots=True)
class Subject:
    """Who the report is about, from the caller's point of view."""

    id: Optional[str] = None
    external_ref: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


@dataclass(frozen=True, slots=True)
class ReportOptions:
    language: Optional[str] = None
    timezone: Optional[str] = None
    include_metrics: Optional[bool] = None
    include_raw_model_output: Optional[bool] = None


@dataclass(slots=True)
class ReportJobReceipt:
    """Response from POST /v1/reports/jobs, plus a handle to follow the job."""

    job_id: str
    status: JobStatus
    stage: Optional[JobStage] = None
    estimated_wait_sec: Optional[float] = None
    request_id: Optional[str] = None
    handle: Optional["ReportRunHandle"] = None


# ── Reports ─────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class ReportEntity:
    """Speaker identified in the analyzed media."""

    id: str
    tags: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class ReportSection:
    id: str
    title: str
    content: Any = None
    data: Any = None


@dataclass(frozen=True, slots=True)
class _ReportBase:
    id: str
    output: ReportOutput
    created_at: Optional[str] = None
    job_id: Optional[str] = None
    subject: Optional[Subject] = None
    media: Optional[dict[str, Any]] = None
    entity: Optional[ReportEntity] = None
    usage: Optional[Usage] = None
    metrics: Optional[dict[str, Any]] = None
    raw: Any = None


@dataclass(frozen=True, slots=True)
class MarkdownReport(_ReportBase):
    markdown: str = ""


@dataclass(frozen=True, slots=True)
class JsonReport(_ReportBase):
    sections: list[ReportSection] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class PdfReport(_ReportBase):
    pdf_url: str = ""
    markdown: Optional[str] = None


@dataclass(frozen=True, slots=True)
class UrlReport(_ReportBase):
    report_url: str = ""
    markdown: Optional[str] = None


Report = Union[MarkdownReport, JsonReport, PdfReport, UrlReport]


def is_markdown_report(report: Report) -> bool:
    return isinstance(report, MarkdownReport)


def is_json_report(report: Report) -> bool:
    return isinstance(report, JsonReport)


def is_pdf_report(report: Report) -> bool:
    return isinstance(report, PdfReport)


def is_url_report(report: Report) -> bool:
    return isinstance(report, UrlReport)


def has_entity(report: Report) -> bool:
    """True when the report identifies the analyzed speaker."""
    return report.entity is not None


# ── Files ───────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MediaObject:
    """Response from POST /v1/files."""

    media_id: str
    content_type: str
    created_at: Optional[str] = None
    filename: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass(frozen=True, slots=True)
class FileDeleteReceipt:
    """Response from DELETE /v1/files/{media_id}."""

    media_id: str
    deleted: bool


# ── Credits ─────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class CreditBalance:
    balance: float
    reserved: float
    available: float


@dataclass(frozen=True, slots=True)
class CreditTransaction:
    id: str
    type: str
    amount: float
    created_at: Optional[str] = None
    job_id: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True, slots=True)
class TransactionsPage:
    transactions: list[CreditTransaction]
    limit: int
    offset: int
    total: int


@dataclass(frozen=True, slots=True)
class CreditUsage:
    job_id: str
    credits_used: float
    credits_net_used: float
    credits_discounted: Optional[float] = None
    duration_ms: Optional[float] = None
    model_version: Optional[str] = None


# ── Entities ────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Entity:
    id: str
    tags: list[str] = field(default_factory=list)
    created_at: Optional[str] = None
    media_count: Optional[int] = None
    last_seen_at: Optional[str] = None


@dataclass(frozen=True, slots=True)
class EntitiesPage:
    entities: list[Entity]
    cursor: Optional[str] = None
    has_more: bool = False


@dataclass(frozen=True, slots=True)
class EntityTagsResult:
    entity_id: str
    tags: list[str]


# ── Feedback / health / webhooks ────────────────────────────────────

@dataclass(frozen=True, slots=True)
class FeedbackReceipt:
    """Response from POST /v1/feedback."""

    id: str
    rating: FeedbackRating
    created_at: Optional[str] = None
    report_id: Optional[str] = None
    job_id: Optional[str] = None
    tags: Optional[list[str]] = None
    comment: Optional[str] = None
    credits: Optional[dict[str, Any]] = None


@dataclass(frozen=True, slots=True)
class HealthStatus:
    ok: bool
    time: Optional[str] = None


@dataclass(frozen=True, slots=True)
class WebhookEvent:
    """Parsed webhook envelope."""

    type: str
    timestamp: str
    data: Any = None
    id: Optional[str] = None


# ── Transport ───────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class TransportResponse:
    """One successful HTTP exchange."""

    data: Any
    status: int
    request_id: Optional[str]
    headers: Mapping[str, str]


@dataclass(frozen=True, slots=True)
class RequestInfo:
    method: str
    url: str
    request_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ResponseInfo:
    status: int
    url: str
    duration: float
    request_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ErrorInfo:
    url: str
    error: BaseException
    request_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Telemetry:
    """Observational hooks. Exceptions raised by a hook are logged and ignored."""

    on_request: Optional[Callable[[RequestInfo], Any]] = None
    on_response: Optional[Callable[[ResponseInfo], Any]] = None
    on_error: Optional[Callable[[ErrorInfo], Any]] = None
