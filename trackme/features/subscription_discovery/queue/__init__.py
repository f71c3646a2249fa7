"""
Stage queues for the discovery pipeline.
"""

from .job_queue import STALE_JOB_REASON, IngestQueue, JobQueue, ParseQueue, ScanQueue

__all__ = ["STALE_JOB_REASON", "IngestQueue", "JobQueue", "ParseQueue", "ScanQueue"]
