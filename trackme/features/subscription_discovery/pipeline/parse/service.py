"""
Parse stage: classify one candidate message and hand confirmed receipts to ingest.
"""

from trackme.config import PipelineConfig
from trackme.features.subscription_discovery.domain import (
    Classification,
    EmailCandidate,
    JobStatus,
    ParsedData,
    ParseJob,
)
from trackme.features.subscription_discovery.pipeline.base import QueueWorker
from trackme.features.subscription_discovery.pipeline.parse.classifier import (
    SubscriptionClassifier,
)
from trackme.features.subscription_discovery.queue import IngestQueue, ParseQueue
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

NOT_SUBSCRIPTION_REASON = "Not a subscription"
MISSING_FIELDS_REASON = "Missing required fields"


class ParseWorker(QueueWorker[ParseJob]):
    stage = "parse"

    def __init__(
        self,
        config: PipelineConfig,
        queue: ParseQueue,
        ingest_queue: IngestQueue,
        classifier: SubscriptionClassifier,
        worker_id: str | None = None,
    ):
        super().__init__(config, queue, worker_id)
        self.ingest_queue = ingest_queue
        self.classifier = classifier

    def batch_size(self) -> int:
        return self.config.parse_batch_size

    def rejection_reason(self, classification: Classification) -> str | None:
        """Why a classification is not good enough to ingest, or None if it is."""
        if not classification.is_subscription:
            return NOT_SUBSCRIPTION_REASON
        if classification.confidence < self.classifier.min_confidence:
            return f"Low confidence: {classification.confidence:.2f}"
        missing = classification.fields.missing_required()
        if missing:
            return f"{MISSING_FIELDS_REASON}: {', '.join(missing)}"
        return None

    def to_parsed_data(self, job: ParseJob, classification: Classification) -> ParsedData:
        fields = classification.fields
        return ParsedData(
            service_name=fields.service_name,
            price=float(fields.price),
            currency=fields.currency or self.config.default_currency,
            billing_cycle=fields.billing_cycle,
            confidence=classification.confidence,
            message_id=job.message_id,
            subject=job.subject,
            snippet=job.snippet,
            sender=job.sender,
            message_date=job.message_date.isoformat() if job.message_date else None,
        )

    async def process(self, job: ParseJob) -> JobStatus:
        candidate = EmailCandidate(subject=job.subject, snippet=job.snippet, sender=job.sender)
        classification = await self.classifier.classify(candidate)

        reason = self.rejection_reason(classification)
        if reason:
            await self.queue.skip(job.id, reason)
            logger.info(
                "Parse job skipped",
                job_id=job.id,
                message_id=job.message_id,
                reason=reason,
                classifier=self.classifier.name,
            )
            return JobStatus.SKIPPED

        parsed = self.to_parsed_data(job, classification)
        ingest_job_id = await self.ingest_queue.enqueue(
            job.user_id, job.id, job.scan_job_id, parsed
        )
        await self.queue.complete(job.id)

        logger.info(
            "Subscription detected",
            job_id=job.id,
            ingest_job_id=ingest_job_id,
            service_name=parsed.service_name,
            confidence=parsed.confidence,
            classifier=self.classifier.name,
        )
        return JobStatus.COMPLETED
