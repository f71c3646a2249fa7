from datetime import date

import psycopg
import pytest
from conftest import BASE_TIME

from trackme.db.helpers import DatabaseError
from trackme.features.subscription_discovery.domain import Suggestion
from trackme.features.subscription_discovery.repository import (
    DeviceRepository,
    IntegrationRepository,
    SubscriptionRepository,
    SuggestionRepository,
    escape_like,
)
from trackme.security.hashing import hash_oauth_token
from trackme.services.infrastructure.encryption_service import encrypt_oauth_tokens

REPOSITORY = "trackme.features.subscription_discovery.repository"


class Recorder:
    def __init__(self, *returns):
        self.returns = list(returns)
        self.calls = []

    async def __call__(self, query, params=(), **kwargs):
        self.calls.append((query, params, kwargs))
        return self.returns.pop(0) if self.returns else None


class FakeConnection:
    def __init__(self):
        self.executed = []

    async def execute(self, query, params=()):
        self.executed.append((query, params))


class FakeTransaction:
    def __init__(self, connection):
        self.connection = connection

    async def __aenter__(self):
        return self.connection

    async def __aexit__(self, *exc):
        return False


def _suggestion() -> Suggestion:
    return Suggestion(
        user_id="user-123",
        message_id="msg-1",
        subject="Your Netflix receipt",
        snippet="Charged $9.99",
        sender="Netflix <info@netflix.com>",
        message_date=BASE_TIME,
        service_name="Netflix",
        price=9.99,
        currency="USD",
        billing_cycle="monthly",
        next_payment_date=date(2026, 2, 15),
        confidence=0.85,
        status="pending",
    )


@pytest.mark.asyncio
async def test_integration_row_is_decrypted(monkeypatch):
    access, refresh = encrypt_oauth_tokens("ya29.access", "1//refresh")
    fetch_one = Recorder(
        {
            "id": "integration-1",
            "user_id": "user-123",
            "provider": "google",
            "status": "active",
            "access_token": access,
            "refresh_token": refresh,
            "token_expires_at": BASE_TIME,
            "scopes": ["https://www.googleapis.com/auth/gmail.readonly"],
        }
    )
    monkeypatch.setattr(f"{REPOSITORY}.integration_repository.fetch_one", fetch_one)

    integration = await IntegrationRepository.get_active("user-123")

    assert integration.access_token == "ya29.access"
    assert integration.refresh_token == "1//refresh"
    assert integration.token_expires_at == BASE_TIME
    assert fetch_one.calls[0][1] == ("user-123", "google")


@pytest.mark.asyncio
async def test_find_by_token_uses_fingerprint(monkeypatch):
    fetch_one = Recorder(None)
    monkeypatch.setattr(f"{REPOSITORY}.integration_repository.fetch_one", fetch_one)

    assert await IntegrationRepository.find_by_token("1//refresh") is None

    query, params, _ = fetch_one.calls[0]
    assert "access_token_hash = %s OR refresh_token_hash = %s" in query
    assert params == (hash_oauth_token("1//refresh"),) * 2


@pytest.mark.asyncio
async def test_mark_revoked_clears_tokens(monkeypatch):
    execute_query = Recorder(1)
    monkeypatch.setattr(f"{REPOSITORY}.integration_repository.execute_query", execute_query)

    assert await IntegrationRepository.mark_revoked("integration-1") is True

    query, params, _ = execute_query.calls[0]
    assert "refresh_token = NULL" in query
    assert params[0] == "revoked"
    assert params[-1] == "integration-1"


def test_escape_like_neutralizes_wildcards():
    assert escape_like("100%_off\\") == "100\\%\\_off\\\\"


@pytest.mark.asyncio
async def test_subscription_match_is_substring_and_case_insensitive(monkeypatch):
    fetch_one = Recorder(
        {
            "id": 3,
            "user_id": "user-123",
            "name": "Netflix Standard",
            "price": "9.99",
            "currency": "USD",
            "billing_cycle": "monthly",
            "status": "active",
        }
    )
    monkeypatch.setattr(f"{REPOSITORY}.subscription_repository.fetch_one", fetch_one)

    subscription = await SubscriptionRepository.find_active_match("user-123", " Netflix ")

    query, params, _ = fetch_one.calls[0]
    assert "ILIKE" in query
    assert params == ("user-123", "%Netflix%")
    assert subscription.id == "3"
    assert subscription.price == pytest.approx(9.99)


@pytest.mark.asyncio
async def test_insert_takes_advisory_lock_before_checking(monkeypatch):
    connection = FakeConnection()

    async def transaction():
        return FakeTransaction(connection)

    fetch_val = Recorder(None)
    fetch_one = Recorder({"id": 17})
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.get_db_transaction", transaction)
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.fetch_val", fetch_val)
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.fetch_one", fetch_one)

    suggestion_id = await SuggestionRepository.insert_if_absent(_suggestion())

    assert suggestion_id == "17"
    assert connection.executed[0][1] == ("suggestion:user-123:msg-1",)
    assert fetch_val.calls[0][2] == {"connection": connection}
    assert fetch_one.calls[0][1][:2] == ("user-123", "msg-1")


@pytest.mark.asyncio
async def test_insert_returns_none_when_already_present(monkeypatch):
    async def transaction():
        return FakeTransaction(FakeConnection())

    fetch_one = Recorder()
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.get_db_transaction", transaction)
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.fetch_val", Recorder("existing"))
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.fetch_one", fetch_one)

    assert await SuggestionRepository.insert_if_absent(_suggestion()) is None
    assert fetch_one.calls == []


@pytest.mark.asyncio
async def test_count_pending_handles_null(monkeypatch):
    monkeypatch.setattr(f"{REPOSITORY}.suggestion_repository.fetch_val", Recorder(None))

    assert await SuggestionRepository.count_pending("user-123") == 0


@pytest.mark.asyncio
async def test_devices_are_mapped(monkeypatch):
    fetch_all = Recorder([{"user_id": "user-123", "device_token": "fcm-a"}])
    monkeypatch.setattr(f"{REPOSITORY}.device_repository.fetch_all", fetch_all)

    devices = await DeviceRepository.list_logged_in("user-123")

    assert [device.device_token for device in devices] == ["fcm-a"]
    assert "logged_in = true" in fetch_all.calls[0][0]


@pytest.mark.asyncio
async def test_get_active_retries_transient_connection_errors(monkeypatch):
    attempts = []

    async def flaky_fetch_one(query, params=(), **kwargs):
        attempts.append(params)
        if len(attempts) == 1:
            raise DatabaseError("connection lost") from psycopg.OperationalError("reset")
        return None

    monkeypatch.setattr(f"{REPOSITORY}.integration_repository.fetch_one", flaky_fetch_one)

    assert await IntegrationRepository.get_active("user-123") is None
    assert len(attempts) == 2
