import asyncio
import re

import pytest
from conftest import InMemoryQueue, make_parse_job

from trackme.features.subscription_discovery.domain import JobStatus
from trackme.features.subscription_discovery.pipeline.base import (
    QueueWorker,
    failure_reason,
    new_worker_id,
)


class RecordingWorker(QueueWorker):
    stage = "test"

    def __init__(self, config, queue, batch=2, explode_on=(), worker_id=None):
        super().__init__(config, queue, worker_id)
        self.batch = batch
        self.explode_on = set(explode_on)
        self.processed = []
        self.failures = []

    def batch_size(self) -> int:
        return self.batch

    async def process(self, job):
        await asyncio.sleep(0)
        if job.id in self.explode_on:
            raise RuntimeError(f"boom {job.id}")
        self.processed.append(job.id)
        await self.queue.complete(job.id)
        return JobStatus.COMPLETED

    async def on_failure(self, job, reason):
        self.failures.append((job.id, reason))


def test_worker_id_format():
    assert re.fullmatch(r"parse-worker-[0-9a-f]{8}", new_worker_id("parse"))


def test_failure_reason_prefers_message_attribute():
    class WithMessage(Exception):
        message = "No active Google integration"

    assert failure_reason(WithMessage()) == "No active Google integration"
    assert failure_reason(ValueError("bad value")) == "bad value"
    assert failure_reason(KeyError()) == "KeyError"


@pytest.mark.asyncio
async def test_each_run_claims_under_a_fresh_worker_id(config):
    queue = InMemoryQueue([make_parse_job(i, status="pending") for i in range(1, 3)])
    worker = RecordingWorker(config, queue, batch=1)

    first = await worker.run_once()
    second = await worker.run_once()

    assert first.worker_id != second.worker_id
    assert queue.jobs[1].worker_id == first.worker_id
    assert queue.jobs[2].worker_id == second.worker_id


@pytest.mark.asyncio
async def test_pinned_worker_id_is_kept_across_runs(config):
    queue = InMemoryQueue([make_parse_job(i, status="pending") for i in range(1, 3)])
    worker = RecordingWorker(config, queue, batch=1, worker_id="parse-worker-pinned")

    results = [await worker.run_once(), await worker.run_once()]

    assert [result.worker_id for result in results] == ["parse-worker-pinned"] * 2


@pytest.mark.asyncio
async def test_concurrent_workers_never_share_a_job(config):
    queue = InMemoryQueue([make_parse_job(i, status="pending") for i in range(1, 8)])
    workers = [RecordingWorker(config, queue, batch=3) for _ in range(4)]

    results = await asyncio.gather(*(worker.run_once() for worker in workers))

    claimed = [job_id for worker in workers for job_id in worker.processed]
    assert sorted(claimed) == list(range(1, 8))
    assert len(claimed) == len(set(claimed))
    assert sum(result.claimed for result in results) == min(7, 4 * 3)


@pytest.mark.asyncio
async def test_one_bad_job_does_not_stop_the_batch(config):
    queue = InMemoryQueue([make_parse_job(i, status="pending") for i in range(1, 4)])
    worker = RecordingWorker(config, queue, batch=3, explode_on={2})

    result = await worker.run_once()

    assert result.completed == 2
    assert result.failed == 1
    assert queue.status_of(2) == "failed"
    assert queue.jobs[2].error_message == "boom 2"
    assert worker.failures == [(2, "boom 2")]
    assert worker.processed == [1, 3]


@pytest.mark.asyncio
async def test_failure_bookkeeping_errors_are_contained(config):
    queue = InMemoryQueue([make_parse_job(1, status="pending")])

    async def broken_fail(job_id, reason):
        raise RuntimeError("database down")

    queue.fail = broken_fail
    worker = RecordingWorker(config, queue, batch=1, explode_on={1})

    result = await worker.run_once()

    assert result.failed == 1
    assert queue.status_of(1) == "processing"


@pytest.mark.asyncio
async def test_idle_run(config):
    worker = RecordingWorker(config, InMemoryQueue([]))

    result = await worker.run_once()

    assert result.idle
    assert result.to_dict()["claimed"] == 0
