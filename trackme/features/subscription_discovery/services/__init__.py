"""
Service layer for the subscription discovery feature.
"""

from .connection_service import (
    ConnectionServiceError,
    GmailConnectionService,
    gmail_connection_service,
)

__all__ = [
    "ConnectionServiceError",
    "GmailConnectionService",
    "gmail_connection_service",
]
