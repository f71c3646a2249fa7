"""
Durable Postgres-backed work queues for the discovery pipeline.

Every stage owns one table (queue_scan, queue_parse, queue_ingest). Claiming
is a single UPDATE ... FROM (SELECT ... FOR UPDATE SKIP LOCKED) statement, so
two workers polling the same table can never receive the same row. Terminal
transitions are guarded by the current status, which makes them idempotent:
repeating one on a finished job changes nothing and returns False.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, TypeVar

from psycopg.types.json import Jsonb

from trackme.db.helpers import execute_many, execute_query, fetch_all, fetch_one
from trackme.features.subscription_discovery.domain import (
    IngestJob,
    JobStatus,
    ParsedData,
    ParseJob,
    ScanJob,
    ScanType,
    truncate_reason,
)
from trackme.infrastructure.observability.logging import get_logger
from trackme.models.domain.gmail_domain import GmailMessageMetadata

logger = get_logger(__name__)

T = TypeVar("T")

STALE_JOB_REASON = "Processing timed out"


class JobQueue(ABC, Generic[T]):
    """Claim/complete/fail/skip contract shared by every stage queue."""

    table: ClassVar[str]
    stage: ClassVar[str]
    terminal_statuses: ClassVar[frozenset[JobStatus]] = frozenset(
        {JobStatus.COMPLETED, JobStatus.FAILED}
    )
    has_result_column: ClassVar[bool] = False

    def __init__(self, default_batch_size: int = 1):
        if default_batch_size < 1:
            raise ValueError("default_batch_size must be at least 1")
        self.default_batch_size = default_batch_size

    @abstractmethod
    def _row_to_job(self, row: dict[str, Any]) -> T:
        """Map a queue row to its domain dataclass."""

    def claim_query(self) -> str:
        return f"""
            WITH next_jobs AS (
                SELECT id
                FROM {self.table}
                WHERE status = 'pending'
                ORDER BY created_at, id
                LIMIT %s
                FOR UPDATE SKIP LOCKED
            )
            UPDATE {self.table} AS q
            SET status = 'processing',
                worker_id = %s,
                started_at = NOW(),
                completed_at = NULL,
                attempts = q.attempts + 1
            FROM next_jobs
            WHERE q.id = next_jobs.id
            RETURNING q.*
        """

    async def claim(self, worker_id: str, batch_size: int | None = None) -> list[T]:
        """
        Atomically move up to batch_size pending jobs to processing for worker_id.

        Returns:
            Claimed jobs, oldest first (ties broken by id). Empty when idle.
        """
        # Never retried here; the UPDATE may have committed before the error surfaced
        limit = batch_size or self.default_batch_size
        rows = await fetch_all(self.claim_query(), (limit, worker_id))

        jobs = [self._row_to_job(row) for row in rows]
        jobs.sort(key=lambda job: (job.created_at, job.id))

        if jobs:
            logger.info(
                "Jobs claimed",
                stage=self.stage,
                worker_id=worker_id,
                claimed=len(jobs),
                job_ids=[job.id for job in jobs],
            )
        return jobs

    async def _transition(
        self,
        job_id: int,
        status: JobStatus,
        error_message: str | None = None,
        result: dict[str, Any] | None = None,
    ) -> bool:
        if status not in self.terminal_statuses:
            raise ValueError(f"{self.table} does not support terminal status '{status}'")

        assignments = ["status = %s", "completed_at = NOW()", "error_message = %s"]
        params: list[Any] = [status.value, error_message]
        if self.has_result_column:
            assignments.append("result = %s")
            params.append(Jsonb(result) if result is not None else None)

        query = f"""
            UPDATE {self.table}
            SET {", ".join(assignments)}
            WHERE id = %s
              AND status IN ('pending', 'processing')
        """
        params.append(job_id)

        affected = await execute_query(query, tuple(params))
        if affected == 0:
            logger.warning(
                "Job already in a terminal state, transition ignored",
                stage=self.stage,
                job_id=job_id,
                requested_status=status.value,
            )
            return False
        return True

    async def complete(self, job_id: int, result: dict[str, Any] | None = None) -> bool:
        return await self._transition(job_id, JobStatus.COMPLETED, result=result)

    async def fail(self, job_id: int, reason: str) -> bool:
        reason = truncate_reason(reason)
        updated = await self._transition(job_id, JobStatus.FAILED, error_message=reason)
        if updated:
            logger.warning("Job failed", stage=self.stage, job_id=job_id, error=reason)
        return updated

    async def skip(self, job_id: int, reason: str) -> bool:
        return await self._transition(
            job_id, JobStatus.SKIPPED, error_message=truncate_reason(reason)
        )

    async def reclaim_stale(self, timeout_seconds: int, max_attempts: int) -> dict[str, int]:
        """
        Recover jobs whose worker died mid-processing.

        Rows stuck in processing for longer than timeout_seconds go back to
        pending, or are failed once they have used max_attempts claims.
        """
        query = f"""
            WITH stale AS (
                SELECT id
                FROM {self.table}
                WHERE status = 'processing'
                  AND started_at < NOW() - make_interval(secs => %s)
                FOR UPDATE SKIP LOCKED
            )
            UPDATE {self.table} AS q
            SET status = CASE WHEN q.attempts >= %s THEN 'failed' ELSE 'pending' END,
                error_message = CASE WHEN q.attempts >= %s THEN %s ELSE q.error_message END,
                completed_at = CASE WHEN q.attempts >= %s THEN NOW() ELSE NULL END,
                worker_id = CASE WHEN q.attempts >= %s THEN q.worker_id ELSE NULL END
            FROM stale
            WHERE q.id = stale.id
            RETURNING q.id, q.status
        """
        params = (
            timeout_seconds,
            max_attempts,
            max_attempts,
            STALE_JOB_REASON,
            max_attempts,
            max_attempts,
        )
        rows = await fetch_all(query, params)

        summary = {
            "requeued": sum(1 for row in rows if row["status"] == JobStatus.PENDING),
            "failed": sum(1 for row in rows if row["status"] == JobStatus.FAILED),
        }
        if rows:
            logger.warning("Stale jobs reclaimed", stage=self.stage, **summary)
        return summary


class ScanQueue(JobQueue[ScanJob]):
    table = "queue_scan"
    stage = "scan"
    has_result_column = True

    def _row_to_job(self, row: dict[str, Any]) -> ScanJob:
        return ScanJob(
            id=row["id"],
            user_id=str(row["user_id"]),
            scan_type=row["scan_type"],
            priority=row.get("priority") or 5,
            status=row["status"],
            worker_id=row.get("worker_id"),
            attempts=row.get("attempts") or 0,
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            error_message=row.get("error_message"),
            result=row.get("result"),
        )

    async def enqueue(self, user_id: str, scan_type: ScanType) -> ScanJob:
        row = await fetch_one(
            """
            INSERT INTO queue_scan (user_id, scan_type, priority, status)
            VALUES (%s, %s, %s, 'pending')
            RETURNING *
            """,
            (user_id, scan_type.value, scan_type.priority),
        )
        job = self._row_to_job(row)
        logger.info("Scan job enqueued", job_id=job.id, user_id=user_id, scan_type=scan_type.value)
        return job

    async def find_open_job(self, user_id: str) -> ScanJob | None:
        """Return the user's oldest pending or processing scan, if any."""
        row = await fetch_one(
            """
            SELECT * FROM queue_scan
            WHERE user_id = %s AND status IN ('pending', 'processing')
            ORDER BY created_at, id
            LIMIT 1
            """,
            (user_id,),
        )
        return self._row_to_job(row) if row else None

    async def cancel_for_user(self, user_id: str, reason: str) -> int:
        """Fail every non-terminal scan job for a user."""
        affected = await execute_query(
            """
            UPDATE queue_scan
            SET status = 'failed',
                completed_at = NOW(),
                error_message = %s
            WHERE user_id = %s
              AND status IN ('pending', 'processing')
            """,
            (truncate_reason(reason), user_id),
        )
        if affected:
            logger.info("Scan jobs cancelled", user_id=user_id, cancelled=affected)
        return affected


class ParseQueue(JobQueue[ParseJob]):
    table = "queue_parse"
    stage = "parse"
    terminal_statuses = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.SKIPPED})

    def _row_to_job(self, row: dict[str, Any]) -> ParseJob:
        return ParseJob(
            id=row["id"],
            user_id=str(row["user_id"]),
            scan_job_id=row.get("scan_job_id"),
            message_id=row["message_id"],
            subject=row.get("subject") or "",
            snippet=row.get("snippet") or "",
            sender=row.get("sender") or "",
            message_date=row.get("message_date"),
            status=row["status"],
            worker_id=row.get("worker_id"),
            attempts=row.get("attempts") or 0,
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            error_message=row.get("error_message"),
        )

    async def enqueue_many(
        self, user_id: str, scan_job_id: int, messages: list[GmailMessageMetadata]
    ) -> int:
        """
        Bulk insert one pending parse job per message.

        Messages repeated within the batch are dropped before insert, and the
        (scan_job_id, message_id) unique key absorbs anything that slips past.

        Returns:
            Number of rows inserted
        """
        seen: set[str] = set()
        payload = []
        for message in messages:
            if not message.id or message.id in seen:
                continue
            seen.add(message.id)
            payload.append(
                (
                    user_id,
                    scan_job_id,
                    message.id,
                    message.subject,
                    message.snippet,
                    message.sender,
                    message.message_date,
                )
            )

        if not payload:
            return 0

        inserted = await execute_many(
            """
            INSERT INTO queue_parse (
                user_id, scan_job_id, message_id, subject, snippet, sender, message_date, status
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s, 'pending')
            ON CONFLICT (scan_job_id, message_id) DO NOTHING
            """,
            payload,
        )
        logger.info(
            "Parse jobs enqueued",
            user_id=user_id,
            scan_job_id=scan_job_id,
            requested=len(payload),
            inserted=inserted,
        )
        return inserted


class IngestQueue(JobQueue[IngestJob]):
    table = "queue_ingest"
    stage = "ingest"
    terminal_statuses = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.DUPLICATE})
    has_result_column = True

    def _row_to_job(self, row: dict[str, Any]) -> IngestJob:
        return IngestJob(
            id=row["id"],
            user_id=str(row["user_id"]),
            parse_job_id=row.get("parse_job_id"),
            scan_job_id=row.get("scan_job_id"),
            parsed_data=ParsedData.from_dict(row["parsed_data"]),
            status=row["status"],
            worker_id=row.get("worker_id"),
            attempts=row.get("attempts") or 0,
            created_at=row["created_at"],
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            error_message=row.get("error_message"),
            result=row.get("result"),
        )

    async def enqueue(
        self,
        user_id: str,
        parse_job_id: int,
        scan_job_id: int | None,
        parsed_data: ParsedData,
    ) -> int:
        row = await fetch_one(
            """
            INSERT INTO queue_ingest (user_id, parse_job_id, scan_job_id, parsed_data, status)
            VALUES (%s, %s, %s, %s, 'pending')
            RETURNING id
            """,
            (user_id, parse_job_id, scan_job_id, Jsonb(parsed_data.to_dict())),
        )
        return row["id"]

    async def mark_duplicate(self, job_id: int, reason: str = "Suggestion already exists") -> bool:
        return await self._transition(
            job_id, JobStatus.DUPLICATE, error_message=truncate_reason(reason)
        )
