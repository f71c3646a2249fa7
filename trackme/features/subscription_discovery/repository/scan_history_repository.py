"""
scan_history rows: a user-facing record of each scan, opened when the scan
is enqueued and closed by the scan worker.
"""

from trackme.db.helpers import execute_query
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class ScanHistoryRepository:
    @classmethod
    async def create(cls, user_id: str, scan_job_id: int, scan_type: str) -> None:
        await execute_query(
            """
            INSERT INTO scan_history (user_id, scan_job_id, scan_type, status)
            VALUES (%s, %s, %s, 'running')
            """,
            (user_id, scan_job_id, scan_type),
        )

    @classmethod
    async def mark_completed(cls, scan_job_id: int, emails_scanned: int) -> None:
        await execute_query(
            """
            UPDATE scan_history
            SET status = 'completed', emails_scanned = %s, scan_completed_at = NOW()
            WHERE scan_job_id = %s
            """,
            (emails_scanned, scan_job_id),
        )

    @classmethod
    async def mark_failed(cls, scan_job_id: int) -> None:
        await execute_query(
            """
            UPDATE scan_history
            SET status = 'failed', scan_completed_at = NOW()
            WHERE scan_job_id = %s
            """,
            (scan_job_id,),
        )

    @classmethod
    async def increment_suggestions(cls, scan_job_id: int) -> None:
        await execute_query(
            """
            UPDATE scan_history
            SET suggestions_created = COALESCE(suggestions_created, 0) + 1
            WHERE scan_job_id = %s
            """,
            (scan_job_id,),
        )
