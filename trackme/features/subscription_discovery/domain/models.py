"""
Domain models for the subscription discovery pipeline.

Plain dataclasses mapped from queue and table rows. Repositories build them;
workers pass them between stages.
"""

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    DUPLICATE = "duplicate"


NON_TERMINAL_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class ScanType(StrEnum):
    DEEP = "deep-365-day"
    DAILY = "daily-2-day"
    MANUAL = "manual"

    @property
    def priority(self) -> int:
        """Manual scans jump the queue."""
        return 1 if self is ScanType.MANUAL else 5

    @classmethod
    def parse(cls, value: str | None, default: "ScanType | None" = None) -> "ScanType":
        try:
            return cls(value)
        except ValueError:
            return default or cls.DEEP


class BillingCycle(StrEnum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SuggestionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_MERGED = "auto_merged"


class IntegrationStatus(StrEnum):
    ACTIVE = "active"
    REVOKED = "revoked"
    ERROR = "error"


@dataclass(slots=True)
class Integration:
    """A user_integrations row with tokens already decrypted."""

    id: str
    user_id: str
    provider: str
    status: str
    access_token: str | None
    refresh_token: str | None
    token_expires_at: datetime | None
    provider_user_id: str | None = None
    scopes: list[str] = field(default_factory=list)
    last_scan_at: datetime | None = None
    last_error: str | None = None

    def is_token_expired(self, now: datetime) -> bool:
        if not self.access_token:
            return True
        if self.token_expires_at is None:
            return False
        return self.token_expires_at <= now


@dataclass(slots=True)
class ScanJob:
    """A queue_scan row."""

    id: int
    user_id: str
    scan_type: str
    priority: int
    status: str
    worker_id: str | None
    attempts: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None


@dataclass(slots=True)
class ParseJob:
    """A queue_parse row: one candidate message from one scan pass."""

    id: int
    user_id: str
    scan_job_id: int | None
    message_id: str
    subject: str
    snippet: str
    sender: str
    message_date: datetime | None
    status: str
    worker_id: str | None
    attempts: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None


@dataclass(slots=True)
class ParsedData:
    """Extraction payload carried from parse to ingest (queue_ingest.parsed_data)."""

    service_name: str
    price: float
    currency: str
    billing_cycle: str
    confidence: float
    message_id: str
    subject: str = ""
    snippet: str = ""
    sender: str = ""
    message_date: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ParsedData":
        return cls(
            service_name=str(data["service_name"]),
            price=float(data["price"]),
            currency=str(data.get("currency") or ""),
            billing_cycle=str(data["billing_cycle"]),
            confidence=float(data.get("confidence") or 0.0),
            message_id=str(data["message_id"]),
            subject=data.get("subject") or "",
            snippet=data.get("snippet") or "",
            sender=data.get("sender") or "",
            message_date=data.get("message_date"),
        )


@dataclass(slots=True)
class IngestJob:
    """A queue_ingest row."""

    id: int
    user_id: str
    parse_job_id: int | None
    scan_job_id: int | None
    parsed_data: ParsedData
    status: str
    worker_id: str | None
    attempts: int
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None
    result: dict[str, Any] | None = None


@dataclass(slots=True)
class EmailCandidate:
    """The three fields a classifier looks at."""

    subject: str
    snippet: str
    sender: str

    @property
    def text(self) -> str:
        return f"{self.subject} {self.snippet}"


@dataclass(slots=True)
class ExtractedFields:
    service_name: str | None = None
    price: float | None = None
    currency: str | None = None
    billing_cycle: str | None = None

    def missing_required(self) -> list[str]:
        missing = []
        if not self.service_name:
            missing.append("service_name")
        if not self.price:
            missing.append("price")
        if not self.billing_cycle:
            missing.append("billing_cycle")
        return missing


@dataclass(slots=True)
class Classification:
    is_subscription: bool
    fields: ExtractedFields
    confidence: float


@dataclass(slots=True)
class Suggestion:
    """A subscription_suggestions row written by the ingest stage."""

    user_id: str
    message_id: str
    service_name: str
    price: float
    currency: str
    billing_cycle: str
    next_payment_date: date
    confidence: float
    status: str
    subscription_id: str | None = None
    subject: str = ""
    snippet: str = ""
    sender: str = ""
    message_date: datetime | None = None
    id: str | None = None


@dataclass(slots=True)
class Subscription:
    """Read-only view of an active subscriptions row."""

    id: str
    user_id: str
    name: str
    price: float
    currency: str | None
    billing_cycle: str
    status: str = "active"


@dataclass(slots=True)
class Device:
    user_id: str
    device_token: str


@dataclass(slots=True)
class WorkerRunResult:
    """Per-invocation counters returned by every worker's run_once()."""

    worker_id: str
    claimed: int = 0
    completed: int = 0
    skipped: int = 0
    duplicates: int = 0
    failed: int = 0

    @property
    def idle(self) -> bool:
        return self.claimed == 0

    def record(self, status: JobStatus) -> None:
        if status == JobStatus.COMPLETED:
            self.completed += 1
        elif status == JobStatus.SKIPPED:
            self.skipped += 1
        elif status == JobStatus.DUPLICATE:
            self.duplicates += 1
        elif status == JobStatus.FAILED:
            self.failed += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "claimed": self.claimed,
            "completed": self.completed,
            "skipped": self.skipped,
            "duplicates": self.duplicates,
            "failed": self.failed,
        }
