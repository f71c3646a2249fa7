"""
Scan stage: turn one scan job into a batch of parse jobs.

For the job's user it resolves the active Google integration, makes sure the
access token is fresh, searches the mailbox for likely receipts and fetches
metadata for each hit. One parse job is queued per fetched message.
"""

import asyncio
from typing import Any

from trackme.config import PipelineConfig
from trackme.features.subscription_discovery.domain import (
    JobStatus,
    NoActiveIntegrationError,
    ScanJob,
)
from trackme.features.subscription_discovery.pipeline.base import QueueWorker
from trackme.features.subscription_discovery.pipeline.scan.credentials import CredentialsRefresher
from trackme.features.subscription_discovery.pipeline.scan.query import build_gmail_query
from trackme.features.subscription_discovery.queue import ParseQueue, ScanQueue
from trackme.infrastructure.observability.logging import get_logger
from trackme.models.domain.gmail_domain import GmailMessageMetadata
from trackme.services.google_gmail_service import GoogleGmailError, GoogleGmailService

logger = get_logger(__name__)


class ScanWorker(QueueWorker[ScanJob]):
    stage = "scan"

    def __init__(
        self,
        config: PipelineConfig,
        queue: ScanQueue,
        parse_queue: ParseQueue,
        integrations,
        scan_history,
        gmail: GoogleGmailService,
        refresher: CredentialsRefresher,
        worker_id: str | None = None,
        sleep=asyncio.sleep,
    ):
        super().__init__(config, queue, worker_id)
        self.parse_queue = parse_queue
        self.integrations = integrations
        self.scan_history = scan_history
        self.gmail = gmail
        self.refresher = refresher
        self.sleep = sleep

    def batch_size(self) -> int:
        return self.config.scan_claim_batch_size

    async def process(self, job: ScanJob) -> JobStatus:
        integration = await self.integrations.get_active(job.user_id)
        if integration is None:
            raise NoActiveIntegrationError()

        integration = await self.refresher.ensure_fresh(integration)
        access_token = integration.access_token

        query = build_gmail_query(
            job.scan_type,
            deep_days=self.config.deep_scan_days,
            incremental_days=self.config.incremental_scan_days,
        )
        message_ids = await self.gmail.search_message_ids(
            access_token,
            query,
            max_messages=self.config.scan_max_messages,
            page_size=self.config.gmail_page_size,
        )

        messages = await self.fetch_metadata(access_token, message_ids)
        parse_jobs_created = await self.parse_queue.enqueue_many(job.user_id, job.id, messages)

        outcome: dict[str, Any] = {
            "emails_scanned": len(messages),
            "parse_jobs_created": parse_jobs_created,
        }

        await self._close_history(job, len(messages))
        await self.integrations.touch_last_scan(job.user_id)
        await self.queue.complete(job.id, outcome)

        logger.info(
            "Scan job completed",
            job_id=job.id,
            user_id=job.user_id,
            scan_type=job.scan_type,
            messages_found=len(message_ids),
            **outcome,
        )
        return JobStatus.COMPLETED

    async def fetch_metadata(
        self, access_token: str, message_ids: list[str]
    ) -> list[GmailMessageMetadata]:
        """
        Fetch metadata in fixed-size batches with a pause between batches.

        A message that cannot be fetched is logged and left out.
        """
        batch_size = self.config.scan_fetch_batch_size
        messages: list[GmailMessageMetadata] = []
        failures = 0

        for start in range(0, len(message_ids), batch_size):
            if start > 0:
                await self.sleep(self.config.scan_inter_batch_delay_seconds)

            for message_id in message_ids[start : start + batch_size]:
                try:
                    messages.append(await self.gmail.get_message_metadata(access_token, message_id))
                except GoogleGmailError as e:
                    failures += 1
                    logger.warning(
                        "Skipping message that could not be fetched",
                        message_id=message_id,
                        status_code=e.status_code,
                        error=e.message,
                    )

        if failures:
            logger.warning("Some messages were skipped", failed=failures, fetched=len(messages))
        return messages

    async def _close_history(self, job: ScanJob, emails_scanned: int) -> None:
        try:
            await self.scan_history.mark_completed(job.id, emails_scanned)
        except Exception as e:
            logger.warning("Could not close scan history", job_id=job.id, error=str(e))

    async def on_failure(self, job: ScanJob, reason: str) -> None:
        await self.scan_history.mark_failed(job.id)
