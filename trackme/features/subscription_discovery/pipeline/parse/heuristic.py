"""
Rule-based subscription receipt scorer.

The score is a sum of fixed signal weights over the subject and snippet,
clamped to [0, 1]. Anything under NOT_SUBSCRIPTION_BELOW is rejected outright.
Field extraction runs independently, and every field found adds a fixed bonus
to the final confidence, which never exceeds MAX_CONFIDENCE.
"""

import re
from email.utils import parseaddr

from trackme.features.subscription_discovery.domain import (
    BillingCycle,
    Classification,
    EmailCandidate,
    ExtractedFields,
)
from trackme.features.subscription_discovery.pipeline.scan.query import KNOWN_SENDERS

# Signal weights
HIGH_KEYWORD_WEIGHT = 0.40
MEDIUM_KEYWORD_WEIGHT = 0.20
BILLING_CYCLE_WEIGHT = 0.15
PRICE_PATTERN_WEIGHT = 0.15
KNOWN_SENDER_WEIGHT = 0.20
NEGATIVE_PENALTY = 0.30
NOT_SUBSCRIPTION_BELOW = 0.30

# Field bonuses
SERVICE_NAME_BONUS = 0.10
PRICE_BONUS = 0.10
CURRENCY_BONUS = 0.05
BILLING_CYCLE_BONUS = 0.10
MAX_CONFIDENCE = 0.95

MIN_PRICE = 0.0
MAX_PRICE = 50000.0

HIGH_CONFIDENCE_KEYWORDS = (
    "subscription",
    "renewal",
    "renewed",
    "auto-renew",
    "recurring payment",
    "membership",
    "billed monthly",
    "billed annually",
    "your plan",
)

MEDIUM_CONFIDENCE_KEYWORDS = (
    "receipt",
    "invoice",
    "payment",
    "charged",
    "billing",
    "premium",
    "plan",
)

NEGATIVE_KEYWORDS = (
    "free trial",
    "trial ends",
    "trial ending",
    "order confirmation",
    "your order",
    "has shipped",
    "shipping",
    "delivery",
    "password reset",
    "reset your password",
    "verify your email",
    "security alert",
    "newsletter",
    "refund",
)

BILLING_CYCLE_KEYWORDS = {
    BillingCycle.WEEKLY: ("weekly", "per week", "every week", "/week", "/wk"),
    BillingCycle.MONTHLY: ("monthly", "per month", "every month", "a month", "/month", "/mo"),
    BillingCycle.YEARLY: (
        "yearly",
        "annually",
        "annual",
        "per year",
        "every year",
        "a year",
        "/year",
        "/yr",
    ),
}

SUPPORTED_CURRENCIES = ("USD", "INR", "EUR", "GBP", "JPY")
CURRENCY_SYMBOLS = {"$": "USD", "₹": "INR", "€": "EUR", "£": "GBP", "¥": "JPY", "rs": "INR"}

GENERIC_SENDER_WORDS = {
    "team",
    "support",
    "billing",
    "payments",
    "payment",
    "noreply",
    "no-reply",
    "no",
    "reply",
    "do",
    "not",
    "notifications",
    "notification",
    "account",
    "accounts",
    "info",
    "help",
    "service",
    "customer",
    "care",
    "receipts",
    "receipt",
    "invoice",
    "invoices",
    "orders",
    "mail",
    "the",
}

GENERIC_MAIL_DOMAINS = {
    "gmail.com",
    "googlemail.com",
    "yahoo.com",
    "outlook.com",
    "hotmail.com",
    "live.com",
    "icloud.com",
    "me.com",
    "aol.com",
    "protonmail.com",
    "proton.me",
    "mail.com",
    "zoho.com",
    "yandex.com",
}

SUBJECT_STOPWORDS = {
    "Your",
    "You",
    "We",
    "Hi",
    "Hello",
    "Thank",
    "Thanks",
    "The",
    "For",
    "From",
    "New",
    "Re",
    "Fwd",
    "Receipt",
    "Invoice",
    "Payment",
    "Subscription",
    "Order",
    "Monthly",
    "Annual",
    "Yearly",
    "Weekly",
    "Renewal",
    "Confirmation",
    "Welcome",
    "Billing",
    "Reminder",
    "Account",
    "Membership",
}

_AMOUNT = r"(?P<amount>\d{1,3}(?:,\d{3})+(?:\.\d{1,2})?|\d+(?:\.\d{1,2})?)"

PRICE_PATTERNS = (
    # $15.99, ₹199, Rs. 499
    re.compile(r"(?P<symbol>[$₹€£¥]|\brs\.?)\s?" + _AMOUNT, re.IGNORECASE),
    # 15.99 USD
    re.compile(_AMOUNT + r"\s?(?P<code>usd|inr|eur|gbp|jpy)\b", re.IGNORECASE),
    # charged 15.99, amount: 15.99
    re.compile(
        r"\b(?:charged|paid|payment of|amount|total|price|billed)\b\s*(?:of|:)?\s*"
        r"(?P<code>usd|inr|eur|gbp|jpy)?\s?" + _AMOUNT,
        re.IGNORECASE,
    ),
    # invoice ... 15.99 (decimals required so invoice numbers are not read as prices)
    re.compile(
        r"\b(?:invoice|receipt|bill)\b[^\d]{0,30}?(?P<amount>\d+(?:,\d{3})*\.\d{2})",
        re.IGNORECASE,
    ),
)

_SUBJECT_NAME = re.compile(r"\b[A-Z][A-Za-z0-9+&]*(?:\s+[A-Z][A-Za-z0-9+&]*)*")
_CURRENCY_CODE = re.compile(r"\b(usd|inr|eur|gbp|jpy)\b", re.IGNORECASE)


def _phrase_pattern(phrase: str) -> re.Pattern:
    """Whole-phrase match; word boundaries only where the phrase starts/ends with a word char."""
    prefix = r"(?<!\w)" if phrase[0].isalnum() else ""
    suffix = r"(?!\w)" if phrase[-1].isalnum() else ""
    return re.compile(prefix + re.escape(phrase) + suffix, re.IGNORECASE)


def _compile_all(phrases) -> tuple[re.Pattern, ...]:
    return tuple(_phrase_pattern(phrase) for phrase in phrases)


_HIGH = _compile_all(HIGH_CONFIDENCE_KEYWORDS)
_MEDIUM = _compile_all(MEDIUM_CONFIDENCE_KEYWORDS)
_NEGATIVE = _compile_all(NEGATIVE_KEYWORDS)
_CYCLES = {cycle: _compile_all(words) for cycle, words in BILLING_CYCLE_KEYWORDS.items()}


def _any_match(patterns: tuple[re.Pattern, ...], text: str) -> bool:
    return any(pattern.search(text) for pattern in patterns)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return round(min(max(value, low), high), 4)


def sender_domain(sender: str) -> str:
    _, address = parseaddr(sender or "")
    if "@" not in address:
        return ""
    return address.rsplit("@", 1)[1].strip().lower()


def is_known_sender(domain: str) -> bool:
    return any(domain == known or domain.endswith(f".{known}") for known in KNOWN_SENDERS)


def _parse_amount(raw: str) -> float | None:
    try:
        value = float(raw.replace(",", ""))
    except ValueError:
        return None
    if MIN_PRICE < value < MAX_PRICE:
        return value
    return None


def extract_price(text: str) -> tuple[float | None, str | None]:
    """
    First valid amount by pattern priority, with the currency the match implies.

    Returns:
        (price, currency) where either may be None
    """
    for pattern in PRICE_PATTERNS:
        for match in pattern.finditer(text):
            amount = _parse_amount(match.group("amount"))
            if amount is None:
                continue

            groups = match.groupdict()
            currency = None
            if groups.get("symbol"):
                currency = CURRENCY_SYMBOLS.get(groups["symbol"].lower().rstrip("."))
            elif groups.get("code"):
                currency = groups["code"].upper()
            return amount, currency
    return None, None


def extract_currency(text: str) -> str | None:
    code = _CURRENCY_CODE.search(text)
    if code:
        return code.group(1).upper()
    for symbol, currency in CURRENCY_SYMBOLS.items():
        if symbol.isalpha():
            if re.search(rf"\b{symbol}\.?\s?\d", text, re.IGNORECASE):
                return currency
        elif symbol in text:
            return currency
    return None


def extract_billing_cycle(text: str) -> str | None:
    """The cycle whose keyword appears earliest in the text."""
    best: tuple[int, str] | None = None
    for cycle, patterns in _CYCLES.items():
        for pattern in patterns:
            match = pattern.search(text)
            if match and (best is None or match.start() < best[0]):
                best = (match.start(), cycle.value)
    return best[1] if best else None


def _name_from_display(sender: str) -> str | None:
    display_name, _ = parseaddr(sender or "")
    words = re.findall(r"[A-Za-z0-9+&'.-]+", display_name)
    kept = [word for word in words if word.lower().strip(".-'") not in GENERIC_SENDER_WORDS]
    name = " ".join(kept).strip(" .-")
    return name or None


def _name_from_domain(domain: str) -> str | None:
    if not domain or domain in GENERIC_MAIL_DOMAINS:
        return None
    labels = [label for label in domain.split(".") if label]
    if len(labels) < 2:
        return None
    # netflix.co.uk -> netflix, mail.spotify.com -> spotify
    if len(labels) >= 3 and labels[-2] in {"co", "com", "net", "org", "ac"}:
        base = labels[-3]
    else:
        base = labels[-2]
    return base.capitalize()


def _name_from_subject(subject: str) -> str | None:
    for match in _SUBJECT_NAME.finditer(subject or ""):
        words = [word for word in match.group(0).split() if word not in SUBJECT_STOPWORDS]
        if words:
            return " ".join(words)
    return None


def extract_service_name(sender: str, subject: str) -> str | None:
    return (
        _name_from_display(sender)
        or _name_from_domain(sender_domain(sender))
        or _name_from_subject(subject)
    )


class HeuristicClassifier:
    """Keyword and pattern scorer; no external calls."""

    name = "heuristic"

    def __init__(self, min_confidence: float = 0.6):
        self.min_confidence = min_confidence

    def score(self, candidate: EmailCandidate) -> float:
        text = candidate.text
        score = 0.0

        if _any_match(_HIGH, text):
            score += HIGH_KEYWORD_WEIGHT
        if _any_match(_MEDIUM, text):
            score += MEDIUM_KEYWORD_WEIGHT
        if extract_billing_cycle(text):
            score += BILLING_CYCLE_WEIGHT
        if extract_price(text)[0] is not None:
            score += PRICE_PATTERN_WEIGHT
        if is_known_sender(sender_domain(candidate.sender)):
            score += KNOWN_SENDER_WEIGHT
        if _any_match(_NEGATIVE, text):
            score -= NEGATIVE_PENALTY

        return _clamp(score)

    def extract(self, candidate: EmailCandidate) -> ExtractedFields:
        text = candidate.text
        price, price_currency = extract_price(text)
        return ExtractedFields(
            service_name=extract_service_name(candidate.sender, candidate.subject),
            price=price,
            currency=price_currency or extract_currency(text),
            billing_cycle=extract_billing_cycle(text),
        )

    async def classify(self, candidate: EmailCandidate) -> Classification:
        base = self.score(candidate)
        if base < NOT_SUBSCRIPTION_BELOW:
            return Classification(is_subscription=False, fields=ExtractedFields(), confidence=base)

        fields = self.extract(candidate)
        confidence = base
        if fields.service_name:
            confidence += SERVICE_NAME_BONUS
        if fields.price is not None:
            confidence += PRICE_BONUS
        if fields.currency:
            confidence += CURRENCY_BONUS
        if fields.billing_cycle:
            confidence += BILLING_CYCLE_BONUS

        return Classification(
            is_subscription=True,
            fields=fields,
            confidence=_clamp(confidence, high=MAX_CONFIDENCE),
        )
