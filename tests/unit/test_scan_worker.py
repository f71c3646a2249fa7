from datetime import UTC, datetime

import pytest
from conftest import (
    FakeIntegrations,
    FakeScanHistory,
    InMemoryQueue,
    make_integration,
    make_scan_job,
    no_sleep,
)

from trackme.features.subscription_discovery.pipeline.scan import ScanWorker
from trackme.models.domain.gmail_domain import GmailMessageMetadata
from trackme.services.google_gmail_service import GoogleGmailError


def _metadata(message_id: str) -> GmailMessageMetadata:
    return GmailMessageMetadata(
        {
            "id": message_id,
            "snippet": "You were charged $9.99",
            "internalDate": "1768467600000",
            "payload": {
                "headers": [
                    {"name": "Subject", "value": f"Receipt {message_id}"},
                    {"name": "From", "value": "Netflix <info@netflix.com>"},
                ]
            },
        }
    )


class FakeGmail:
    def __init__(self, message_ids, broken=()):
        self.message_ids = list(message_ids)
        self.broken = set(broken)
        self.queries = []
        self.tokens = set()

    async def search_message_ids(self, access_token, query, max_messages=500, page_size=100):
        self.queries.append(query)
        self.tokens.add(access_token)
        return self.message_ids[:max_messages]

    async def get_message_metadata(self, access_token, message_id):
        self.tokens.add(access_token)
        if message_id in self.broken:
            raise GoogleGmailError("Email message not found.", status_code=404)
        return _metadata(message_id)


class PassthroughRefresher:
    def __init__(self):
        self.seen = []

    async def ensure_fresh(self, integration):
        self.seen.append(integration.id)
        return integration


def _worker(config, integrations, gmail, history=None, jobs=None):
    queue = InMemoryQueue(jobs or [make_scan_job(1, status="pending")])
    parse_queue = InMemoryQueue()
    history = history or FakeScanHistory()
    worker = ScanWorker(
        config,
        queue,
        parse_queue,
        integrations,
        history,
        gmail,
        PassthroughRefresher(),
        sleep=no_sleep,
    )
    return worker, queue, parse_queue, history


@pytest.mark.asyncio
async def test_missing_integration_fails_scan(config):
    worker, queue, parse_queue, history = _worker(
        config, FakeIntegrations(active=None), FakeGmail([])
    )

    result = await worker.run_once()

    assert result.failed == 1
    assert queue.status_of(1) == "failed"
    assert queue.jobs[1].error_message == "No active Google integration"
    assert history.failed == [1]
    assert parse_queue.enqueued == []


@pytest.mark.asyncio
async def test_scan_queues_one_parse_job_per_message(config):
    integrations = FakeIntegrations(active=make_integration())
    gmail = FakeGmail(["m1", "m2", "m3"])
    worker, queue, parse_queue, history = _worker(config, integrations, gmail)

    result = await worker.run_once()

    assert result.completed == 1
    assert [message.id for message in parse_queue.enqueued] == ["m1", "m2", "m3"]
    assert queue.results[1] == {"emails_scanned": 3, "parse_jobs_created": 3}
    assert history.completed == [(1, 3)]
    assert integrations.touched == ["user-123"]
    assert gmail.tokens == {"access-old"}
    assert "-in:spam" in gmail.queries[0]


@pytest.mark.asyncio
async def test_unfetchable_messages_are_left_out(config):
    integrations = FakeIntegrations(active=make_integration())
    gmail = FakeGmail(["m1", "m2", "m3"], broken={"m2"})
    worker, queue, parse_queue, _ = _worker(config, integrations, gmail)

    await worker.run_once()

    assert queue.status_of(1) == "completed"
    assert [message.id for message in parse_queue.enqueued] == ["m1", "m3"]
    assert queue.results[1]["emails_scanned"] == 2


@pytest.mark.asyncio
async def test_empty_mailbox_completes_with_zero_counts(config):
    worker, queue, _, _ = _worker(
        config, FakeIntegrations(active=make_integration()), FakeGmail([])
    )

    await worker.run_once()

    assert queue.results[1] == {"emails_scanned": 0, "parse_jobs_created": 0}


@pytest.mark.asyncio
async def test_metadata_is_fetched_in_batches(config):
    from dataclasses import replace

    pauses = []

    async def record_pause(seconds):
        pauses.append(seconds)

    gmail = FakeGmail([f"m{i}" for i in range(5)])
    worker = ScanWorker(
        replace(config, scan_fetch_batch_size=2, scan_inter_batch_delay_seconds=0.1),
        InMemoryQueue(),
        InMemoryQueue(),
        FakeIntegrations(),
        FakeScanHistory(),
        gmail,
        PassthroughRefresher(),
        sleep=record_pause,
    )

    messages = await worker.fetch_metadata("token", gmail.message_ids)

    assert len(messages) == 5
    assert pauses == [0.1, 0.1]


def test_message_date_prefers_internal_date():
    message = _metadata("m1")

    assert message.message_date == datetime(2026, 1, 15, 9, 0, tzinfo=UTC)
    assert message.subject == "Receipt m1"
