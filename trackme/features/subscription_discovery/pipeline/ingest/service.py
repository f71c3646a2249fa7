"""
Ingest stage: persist parsed receipts as suggestions.

Each ingest job becomes at most one subscription_suggestions row per
(user, message). When the user already tracks a matching subscription at the
same price and cycle, the suggestion is auto-merged and linked to it;
otherwise it waits for the user's review as pending.
"""

import calendar
from datetime import UTC, date, datetime, timedelta

from trackme.config import PipelineConfig
from trackme.features.subscription_discovery.domain import (
    BillingCycle,
    IngestJob,
    JobStatus,
    ParsedData,
    Subscription,
    Suggestion,
    SuggestionStatus,
)
from trackme.features.subscription_discovery.pipeline.base import QueueWorker
from trackme.features.subscription_discovery.queue import IngestQueue
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def _add_months(start: date, months: int) -> date:
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def next_payment_date(billing_cycle: str | None, from_date: date | None = None) -> date:
    """
    Expected next charge date after from_date (today, UTC, by default).

    Monthly keeps the day of month, clamped to the end of shorter months.
    Yearly maps Feb 29 to Feb 28. An unrecognized cycle is treated as monthly.
    """
    start = from_date or datetime.now(UTC).date()

    if billing_cycle == BillingCycle.WEEKLY:
        return start + timedelta(days=7)
    if billing_cycle == BillingCycle.YEARLY:
        return _add_months(start, 12)
    return _add_months(start, 1)


def is_same_plan(parsed: ParsedData, subscription: Subscription, epsilon: float) -> bool:
    if abs(float(subscription.price) - parsed.price) > epsilon:
        return False
    return (subscription.billing_cycle or "").lower() == parsed.billing_cycle.lower()


def _parse_message_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


class IngestWorker(QueueWorker[IngestJob]):
    stage = "ingest"

    def __init__(
        self,
        config: PipelineConfig,
        queue: IngestQueue,
        suggestions,
        subscriptions,
        scan_history,
        worker_id: str | None = None,
        today=None,
    ):
        super().__init__(config, queue, worker_id)
        self.suggestions = suggestions
        self.subscriptions = subscriptions
        self.scan_history = scan_history
        self.today = today or (lambda: datetime.now(UTC).date())

    def batch_size(self) -> int:
        return self.config.ingest_batch_size

    async def build_suggestion(self, job: IngestJob) -> Suggestion:
        parsed = job.parsed_data
        match = await self.subscriptions.find_active_match(job.user_id, parsed.service_name)

        if match is not None and is_same_plan(parsed, match, self.config.merge_price_epsilon):
            status, subscription_id = SuggestionStatus.AUTO_MERGED, match.id
        else:
            status, subscription_id = SuggestionStatus.PENDING, None
            if match is not None:
                logger.info(
                    "Existing subscription differs, leaving for review",
                    job_id=job.id,
                    subscription_id=match.id,
                    existing_price=match.price,
                    parsed_price=parsed.price,
                )

        return Suggestion(
            user_id=job.user_id,
            message_id=parsed.message_id,
            service_name=parsed.service_name,
            price=parsed.price,
            currency=parsed.currency or self.config.default_currency,
            billing_cycle=parsed.billing_cycle,
            next_payment_date=next_payment_date(parsed.billing_cycle, self.today()),
            confidence=parsed.confidence,
            status=status.value,
            subscription_id=subscription_id,
            subject=parsed.subject,
            snippet=parsed.snippet,
            sender=parsed.sender,
            message_date=_parse_message_date(parsed.message_date),
        )

    async def process(self, job: IngestJob) -> JobStatus:
        message_id = job.parsed_data.message_id

        if await self.suggestions.exists(job.user_id, message_id):
            await self.queue.mark_duplicate(job.id)
            logger.info("Suggestion already exists", job_id=job.id, message_id=message_id)
            return JobStatus.DUPLICATE

        suggestion = await self.build_suggestion(job)
        suggestion_id = await self.suggestions.insert_if_absent(suggestion)
        if suggestion_id is None:
            await self.queue.mark_duplicate(job.id)
            logger.info("Lost suggestion insert race", job_id=job.id, message_id=message_id)
            return JobStatus.DUPLICATE

        await self._count_suggestion(job)
        await self.queue.complete(
            job.id, {"suggestion_id": suggestion_id, "status": suggestion.status}
        )

        logger.info(
            "Suggestion created",
            job_id=job.id,
            suggestion_id=suggestion_id,
            status=suggestion.status,
            service_name=suggestion.service_name,
        )
        return JobStatus.COMPLETED

    async def _count_suggestion(self, job: IngestJob) -> None:
        if job.scan_job_id is None:
            return
        try:
            await self.scan_history.increment_suggestions(job.scan_job_id)
        except Exception as e:
            logger.warning(
                "Could not update scan history counter", scan_job_id=job.scan_job_id, error=str(e)
            )
