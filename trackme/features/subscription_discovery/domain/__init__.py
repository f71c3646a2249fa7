"""
Domain subpackage for subscription discovery.
"""

from .errors import (
    ClassificationError,
    NoActiveIntegrationError,
    PipelineError,
    TokenRefreshError,
    truncate_reason,
)
from .models import (
    NON_TERMINAL_STATUSES,
    BillingCycle,
    Classification,
    Device,
    EmailCandidate,
    ExtractedFields,
    IngestJob,
    Integration,
    IntegrationStatus,
    JobStatus,
    ParseJob,
    ParsedData,
    ScanJob,
    ScanType,
    Subscription,
    Suggestion,
    SuggestionStatus,
    WorkerRunResult,
)

__all__ = [
    "NON_TERMINAL_STATUSES",
    "BillingCycle",
    "Classification",
    "ClassificationError",
    "Device",
    "EmailCandidate",
    "ExtractedFields",
    "IngestJob",
    "Integration",
    "IntegrationStatus",
    "JobStatus",
    "NoActiveIntegrationError",
    "ParseJob",
    "ParsedData",
    "PipelineError",
    "ScanJob",
    "ScanType",
    "Subscription",
    "Suggestion",
    "SuggestionStatus",
    "TokenRefreshError",
    "WorkerRunResult",
    "truncate_reason",
]
