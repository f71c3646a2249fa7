import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from trackme.features.subscription_discovery.domain import ClassificationError, EmailCandidate
from trackme.features.subscription_discovery.pipeline.parse.llm import (
    SYSTEM_PROMPT,
    LLMClassifier,
    ModelReply,
    build_user_prompt,
)
from trackme.services.openai_service import OpenAIService, OpenAIServiceError

CANDIDATE = EmailCandidate(
    subject="Your Spotify Premium receipt",
    snippet="Rs. 119 charged for Premium Individual, monthly",
    sender="Spotify <no-reply@spotify.com>",
)


class FakeOpenAI:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def complete_json(self, system_message, user_message):
        self.calls.append((system_message, user_message))
        if self.error:
            raise self.error
        return self.reply


def _chat_client(content: str):
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(total_tokens=42),
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=response)
    return client


def test_prompt_includes_message_fields():
    prompt = build_user_prompt(CANDIDATE)

    assert "Subject: Your Spotify Premium receipt" in prompt
    assert "From: Spotify <no-reply@spotify.com>" in prompt
    assert "Rs. 119 charged" in prompt
    assert "If unsure, set is_subscription to false." in prompt


@pytest.mark.asyncio
async def test_reply_is_validated_into_classification():
    openai = FakeOpenAI(
        reply={
            "is_subscription": True,
            "service_name": "Spotify Premium",
            "price": "₹119.00",
            "currency": "inr",
            "billing_cycle": "Monthly",
            "confidence": 0.92,
        }
    )

    result = await LLMClassifier(openai).classify(CANDIDATE)

    assert openai.calls[0][0] == SYSTEM_PROMPT
    assert result.is_subscription is True
    assert result.fields.service_name == "Spotify Premium"
    assert result.fields.price == pytest.approx(119.0)
    assert result.fields.currency == "INR"
    assert result.fields.billing_cycle == "monthly"
    assert result.confidence == pytest.approx(0.92)


@pytest.mark.asyncio
async def test_unknown_cycle_and_out_of_range_confidence_are_normalized():
    openai = FakeOpenAI(
        reply={
            "is_subscription": True,
            "service_name": "Adobe",
            "price": 54.99,
            "currency": None,
            "billing_cycle": "quarterly",
            "confidence": 1.7,
        }
    )

    result = await LLMClassifier(openai).classify(CANDIDATE)

    assert result.fields.billing_cycle is None
    assert result.fields.currency is None
    assert result.confidence == 1.0


@pytest.mark.parametrize(
    "price,expected",
    [
        ("1.299,00", 1299.0),
        ("1,299.00", 1299.0),
        ("USD 9.99", 9.99),
        ("€12,50", 12.5),
        (54.99, 54.99),
    ],
)
def test_reply_price_keeps_decimal_separator(price, expected):
    reply = ModelReply.model_validate({"is_subscription": True, "price": price})

    assert reply.price == pytest.approx(expected)


@pytest.mark.parametrize("price", ["-5", -5, 0, 999999, "999999", "9.99 or 19.99", "free", True])
def test_reply_price_outside_accepted_range_is_dropped(price):
    reply = ModelReply.model_validate({"is_subscription": True, "price": price})

    assert reply.price is None


@pytest.mark.asyncio
async def test_api_failure_becomes_classification_error():
    openai = FakeOpenAI(error=OpenAIServiceError("OpenAI API failed after 3 attempts"))

    with pytest.raises(ClassificationError) as exc_info:
        await LLMClassifier(openai).classify(CANDIDATE)

    assert "OpenAI API failed" in exc_info.value.message


@pytest.mark.asyncio
async def test_malformed_reply_becomes_classification_error():
    openai = FakeOpenAI(reply={"service_name": "Netflix"})

    with pytest.raises(ClassificationError):
        await LLMClassifier(openai).classify(CANDIDATE)


@pytest.mark.asyncio
async def test_openai_service_uses_json_mode():
    client = _chat_client(json.dumps({"is_subscription": False, "confidence": 0.1}))
    service = OpenAIService(client=client, max_retries=0)

    result = await service.complete_json("system", "user")

    assert result == {"is_subscription": False, "confidence": 0.1}
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["model"] == "gpt-4o-mini"
    assert kwargs["temperature"] == pytest.approx(0.1)
    assert kwargs["max_tokens"] == 300


@pytest.mark.asyncio
async def test_openai_service_rejects_non_json():
    service = OpenAIService(client=_chat_client("not json at all"), max_retries=0)

    with pytest.raises(OpenAIServiceError):
        await service.complete_json("system", "user")
