"""
Shared claim-and-process loop for the queue-driven pipeline stages.
"""

import uuid
from abc import ABC, abstractmethod
from typing import ClassVar, Generic, TypeVar

from trackme.config import PipelineConfig
from trackme.features.subscription_discovery.domain import JobStatus, WorkerRunResult
from trackme.features.subscription_discovery.queue import JobQueue
from trackme.infrastructure.observability.logging import get_logger, worker_log_context

logger = get_logger(__name__)

T = TypeVar("T")


def new_worker_id(stage: str) -> str:
    return f"{stage}-worker-{uuid.uuid4().hex[:8]}"


def failure_reason(error: BaseException) -> str:
    """Human-readable reason stored on a failed job."""
    message = getattr(error, "message", None) or str(error)
    return message or type(error).__name__


class QueueWorker(ABC, Generic[T]):
    """
    One stateless worker invocation.

    Every run_once() gets a fresh worker_id unless one was pinned at
    construction. It claims a batch, hands each job to process() and turns any
    exception into a failed job, so one bad job never stops the rest of the
    batch.
    """

    stage: ClassVar[str]

    def __init__(self, config: PipelineConfig, queue: JobQueue[T], worker_id: str | None = None):
        self.config = config
        self.queue = queue
        self.pinned_worker_id = worker_id
        self.worker_id = worker_id or new_worker_id(self.stage)

    @abstractmethod
    def batch_size(self) -> int:
        """How many jobs one invocation claims."""

    @abstractmethod
    async def process(self, job: T) -> JobStatus:
        """Handle one claimed job and move it to its terminal status."""

    async def on_failure(self, job: T, reason: str) -> None:
        """Hook for stage-specific bookkeeping after a job fails."""

    async def run_once(self) -> WorkerRunResult:
        self.worker_id = self.pinned_worker_id or new_worker_id(self.stage)
        with worker_log_context(worker_id=self.worker_id, stage=self.stage):
            jobs = await self.queue.claim(self.worker_id, self.batch_size())
            result = WorkerRunResult(worker_id=self.worker_id, claimed=len(jobs))

            if not jobs:
                logger.debug("No pending jobs")
                return result

            for job in jobs:
                try:
                    status = await self.process(job)
                except Exception as e:
                    status = await self._fail(job, e)
                result.record(status)

            logger.info("Worker run finished", **result.to_dict())
            return result

    async def _fail(self, job: T, error: Exception) -> JobStatus:
        reason = failure_reason(error)
        logger.error(
            "Job processing failed",
            job_id=job.id,
            user_id=job.user_id,
            error=reason,
            error_type=type(error).__name__,
        )

        try:
            await self.queue.fail(job.id, reason)
        except Exception as fail_error:
            # Left in processing; the reaper will pick it up
            logger.error(
                "Could not record job failure", job_id=job.id, error=str(fail_error)
            )

        try:
            await self.on_failure(job, reason)
        except Exception as hook_error:
            logger.warning("Failure bookkeeping failed", job_id=job.id, error=str(hook_error))

        return JobStatus.FAILED
