"""
Language-model subscription classifier.

Sends subject, sender and snippet to a chat model in JSON mode and validates
the reply into a Classification. Anything the model gets wrong (bad JSON,
wrong types, API failure) surfaces as ClassificationError so the parse job
fails with a readable reason.
"""

import re

from pydantic import BaseModel, ValidationError, field_validator

from trackme.features.subscription_discovery.domain import (
    BillingCycle,
    Classification,
    ClassificationError,
    EmailCandidate,
    ExtractedFields,
)
from trackme.features.subscription_discovery.pipeline.parse.heuristic import MAX_PRICE, MIN_PRICE
from trackme.infrastructure.observability.logging import get_logger
from trackme.services.openai_service import OpenAIService, OpenAIServiceError

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at identifying subscription payment receipts from email data. "
    "You respond ONLY with valid JSON."
)

USER_PROMPT_TEMPLATE = """Analyze this email and decide whether it is a subscription receipt.

Subject: {subject}
From: {sender}
Snippet: {snippet}

Respond with a JSON object with exactly these fields:
{{
  "is_subscription": true or false,
  "service_name": "name of the service" or null,
  "price": numeric amount or null,
  "currency": "3-letter currency code" or null,
  "billing_cycle": "monthly" | "yearly" | "weekly" | null,
  "confidence": number between 0 and 1
}}

Rules:
- is_subscription is true ONLY for a payment receipt for a recurring service
- service_name is the product or company, e.g. "Netflix", "Spotify Premium", "Adobe Creative Cloud"
- price is the numeric amount only, without currency symbols
- currency is an ISO code such as USD, INR, EUR, GBP
- billing_cycle is how often the charge recurs
- confidence is how sure you are, from 0 to 1

Subscription examples:
- Netflix monthly payment receipt
- Spotify Premium renewal
- Adobe Creative Cloud subscription charge
- AWS monthly bill
- GitHub Pro payment

NOT subscriptions:
- One-time purchases
- Shipping or delivery notifications
- Promotional emails
- Order confirmations for physical goods
- Free trial notifications unless a charge was made

Be conservative. If unsure, set is_subscription to false."""

_CYCLE_ALIASES = {
    "week": BillingCycle.WEEKLY,
    "weekly": BillingCycle.WEEKLY,
    "month": BillingCycle.MONTHLY,
    "monthly": BillingCycle.MONTHLY,
    "year": BillingCycle.YEARLY,
    "yearly": BillingCycle.YEARLY,
    "annual": BillingCycle.YEARLY,
    "annually": BillingCycle.YEARLY,
}


_NUMBER_PATTERN = re.compile(r"-?\d[\d.,]*")


def _parse_price_text(text: str) -> float | None:
    """
    The single amount in a price string, or None.

    The last separator followed by one or two digits is the decimal point;
    other separators group thousands ("1.299,00" and "1,299.00" are both 1299.0).
    """
    numbers = _NUMBER_PATTERN.findall(text.replace(" ", ""))
    if len(numbers) != 1:
        return None

    number = numbers[0].rstrip(".,")
    sign = -1.0 if number.startswith("-") else 1.0
    digits = number.lstrip("-")

    last_sep = max(digits.rfind("."), digits.rfind(","))
    if last_sep != -1 and 0 < len(digits) - last_sep - 1 <= 2:
        whole, fraction = digits[:last_sep], digits[last_sep + 1 :]
    else:
        whole, fraction = digits, ""
    whole = whole.replace(".", "").replace(",", "")

    try:
        return sign * float(f"{whole}.{fraction}" if fraction else whole)
    except ValueError:
        return None


class ModelReply(BaseModel):
    """Shape of the JSON object the model is asked to return."""

    is_subscription: bool
    service_name: str | None = None
    price: float | None = None
    currency: str | None = None
    billing_cycle: str | None = None
    confidence: float = 0.0

    @field_validator("service_name", "currency", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("price", mode="before")
    @classmethod
    def parse_price(cls, value):
        if isinstance(value, str):
            value = _parse_price_text(value)
        if value is None or isinstance(value, bool):
            return None
        try:
            amount = float(value)
        except (TypeError, ValueError):
            return None
        return amount if MIN_PRICE < amount < MAX_PRICE else None

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, value: str | None) -> str | None:
        return value.upper() if value else None

    @field_validator("billing_cycle", mode="before")
    @classmethod
    def normalize_cycle(cls, value):
        if not isinstance(value, str):
            return None
        cycle = _CYCLE_ALIASES.get(value.strip().lower())
        return cycle.value if cycle else None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        if value is None:
            return 0.0
        return min(max(float(value), 0.0), 1.0)


def build_user_prompt(candidate: EmailCandidate) -> str:
    return USER_PROMPT_TEMPLATE.format(
        subject=candidate.subject or "(no subject)",
        sender=candidate.sender or "(unknown sender)",
        snippet=candidate.snippet or "",
    )


class LLMClassifier:
    name = "llm"

    def __init__(self, openai_service: OpenAIService, min_confidence: float = 0.7):
        self.openai_service = openai_service
        self.min_confidence = min_confidence

    async def classify(self, candidate: EmailCandidate) -> Classification:
        try:
            raw = await self.openai_service.complete_json(
                SYSTEM_PROMPT, build_user_prompt(candidate)
            )
        except OpenAIServiceError as e:
            raise ClassificationError(
                f"Classification failed: {e.message}", recoverable=e.recoverable
            ) from e

        try:
            reply = ModelReply.model_validate(raw)
        except ValidationError as e:
            logger.warning("Model reply failed validation", errors=e.error_count())
            raise ClassificationError("Classification failed: malformed model reply") from e

        return Classification(
            is_subscription=reply.is_subscription,
            fields=ExtractedFields(
                service_name=reply.service_name,
                price=reply.price,
                currency=reply.currency,
                billing_cycle=reply.billing_cycle,
            ),
            confidence=reply.confidence,
        )
