"""
Repositories for the subscription discovery feature.
"""

from .device_repository import DeviceRepository
from .integration_repository import (
    GOOGLE_PROVIDER,
    IntegrationRepository,
    IntegrationRepositoryError,
)
from .scan_history_repository import ScanHistoryRepository
from .subscription_repository import SubscriptionRepository, escape_like
from .suggestion_repository import SuggestionRepository

__all__ = [
    "GOOGLE_PROVIDER",
    "DeviceRepository",
    "IntegrationRepository",
    "IntegrationRepositoryError",
    "ScanHistoryRepository",
    "SubscriptionRepository",
    "SuggestionRepository",
    "escape_like",
]
