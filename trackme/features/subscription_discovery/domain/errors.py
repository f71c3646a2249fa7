"""
Pipeline error types.

A PipelineError's message is what ends up in the job's error_message column.
"""

MAX_REASON_LENGTH = 500


def truncate_reason(reason: str | None) -> str:
    return (reason or "Unknown error")[:MAX_REASON_LENGTH]


class PipelineError(Exception):
    """Base class for failures that terminate a pipeline job."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.message = message
        self.recoverable = recoverable


class NoActiveIntegrationError(PipelineError):
    def __init__(self, message: str = "No active Google integration"):
        super().__init__(message)


class TokenRefreshError(PipelineError):
    """The access token was expired and could not be refreshed."""


class ClassificationError(PipelineError):
    """The classifier could not produce a result (model call or reply decoding failed)."""
