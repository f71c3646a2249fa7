"""
Wiring for the discovery pipeline.

Builds workers from environment settings for the worker runtime and the API.
Tests construct workers directly with fakes instead.
"""

from trackme.config import PipelineConfig, settings
from trackme.features.subscription_discovery.pipeline.ingest import IngestWorker
from trackme.features.subscription_discovery.pipeline.notify import NotificationWorker
from trackme.features.subscription_discovery.pipeline.parse import ParseWorker, build_classifier
from trackme.features.subscription_discovery.pipeline.scan import CredentialsRefresher, ScanWorker
from trackme.features.subscription_discovery.queue import IngestQueue, ParseQueue, ScanQueue
from trackme.features.subscription_discovery.repository import (
    DeviceRepository,
    IntegrationRepository,
    ScanHistoryRepository,
    SubscriptionRepository,
    SuggestionRepository,
)
from trackme.features.subscription_discovery.services import (
    GmailConnectionService,
    gmail_connection_service,
)
from trackme.services.fcm_push_service import FcmPushService
from trackme.services.google_gmail_service import GoogleGmailService
from trackme.services.google_oauth_service import google_oauth_service
from trackme.services.infrastructure.redis_client import fast_redis


def pipeline_config() -> PipelineConfig:
    return settings.pipeline_config()


def build_scan_worker(config: PipelineConfig | None = None) -> ScanWorker:
    config = config or pipeline_config()
    refresher = CredentialsRefresher(
        google_oauth_service,
        IntegrationRepository,
        fast_redis,
        lock_ttl_seconds=config.token_refresh_lock_ttl_seconds,
    )
    return ScanWorker(
        config,
        ScanQueue(config.scan_claim_batch_size),
        ParseQueue(config.parse_batch_size),
        IntegrationRepository,
        ScanHistoryRepository,
        GoogleGmailService(timeout=config.http_timeout_seconds),
        refresher,
    )


def build_parse_worker(config: PipelineConfig | None = None) -> ParseWorker:
    config = config or pipeline_config()
    return ParseWorker(
        config,
        ParseQueue(config.parse_batch_size),
        IngestQueue(config.ingest_batch_size),
        build_classifier(config),
    )


def build_ingest_worker(config: PipelineConfig | None = None) -> IngestWorker:
    config = config or pipeline_config()
    return IngestWorker(
        config,
        IngestQueue(config.ingest_batch_size),
        SuggestionRepository,
        SubscriptionRepository,
        ScanHistoryRepository,
    )


def build_notification_worker(config: PipelineConfig | None = None) -> NotificationWorker:
    config = config or pipeline_config()
    return NotificationWorker(
        config,
        SuggestionRepository,
        DeviceRepository,
        lambda: FcmPushService.from_settings(timeout=config.http_timeout_seconds),
    )


def build_queues(config: PipelineConfig | None = None) -> list:
    config = config or pipeline_config()
    return [
        ScanQueue(config.scan_claim_batch_size),
        ParseQueue(config.parse_batch_size),
        IngestQueue(config.ingest_batch_size),
    ]


# FastAPI dependencies


def get_connection_service() -> GmailConnectionService:
    return gmail_connection_service


def get_notification_worker() -> NotificationWorker:
    return build_notification_worker()
