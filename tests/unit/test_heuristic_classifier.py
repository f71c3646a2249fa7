import pytest

from trackme.features.subscription_discovery.domain import EmailCandidate
from trackme.features.subscription_discovery.pipeline.parse.heuristic import (
    HeuristicClassifier,
    extract_billing_cycle,
    extract_price,
    extract_service_name,
)


def _candidate(subject: str, snippet: str = "", sender: str = "") -> EmailCandidate:
    return EmailCandidate(subject=subject, snippet=snippet, sender=sender)


@pytest.mark.asyncio
async def test_netflix_receipt_extracts_fields_and_adds_bonuses():
    classifier = HeuristicClassifier()
    candidate = _candidate("Netflix charged $15.99 monthly")

    assert classifier.score(candidate) == pytest.approx(0.50)

    result = await classifier.classify(candidate)

    assert result.is_subscription is True
    assert result.fields.service_name == "Netflix"
    assert result.fields.price == pytest.approx(15.99)
    assert result.fields.currency == "USD"
    assert result.fields.billing_cycle == "monthly"
    # 0.50 base + 0.10 name + 0.10 price + 0.05 currency + 0.10 cycle
    assert result.confidence == pytest.approx(0.85)


@pytest.mark.asyncio
async def test_confidence_is_capped():
    classifier = HeuristicClassifier()
    candidate = _candidate(
        "Your Netflix subscription renewal",
        "You were charged $15.99 for your monthly plan",
        "Netflix <info@netflix.com>",
    )

    result = await classifier.classify(candidate)

    assert classifier.score(candidate) == pytest.approx(1.0)
    assert result.confidence == pytest.approx(0.95)


@pytest.mark.asyncio
async def test_shipping_notice_is_not_a_subscription():
    classifier = HeuristicClassifier()
    candidate = _candidate(
        "Your order has shipped",
        "Order total $25.00, arriving Tuesday",
        "Amazon <shipment-tracking@amazon.com>",
    )

    result = await classifier.classify(candidate)

    assert result.is_subscription is False
    assert result.confidence < 0.30


@pytest.mark.asyncio
async def test_free_trial_penalty_applies():
    classifier = HeuristicClassifier()
    with_penalty = classifier.score(
        _candidate("Your free trial ends soon", "Premium plan, $9.99 per month")
    )
    without_penalty = classifier.score(
        _candidate("Your account update", "Premium plan, $9.99 per month")
    )

    assert without_penalty == pytest.approx(0.50)
    assert with_penalty == pytest.approx(0.20)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("Netflix charged $15.99 monthly", (15.99, "USD")),
        ("Rs. 499 has been debited for your plan", (499.0, "INR")),
        ("₹119 paid to Spotify", (119.0, "INR")),
        ("Total: 1,299.00 INR", (1299.0, "INR")),
        ("Amount: 349", (349.0, None)),
        ("Invoice for March - 42.50 due", (42.5, None)),
    ],
)
def test_price_extraction(text, expected):
    price, currency = extract_price(text)
    assert price == pytest.approx(expected[0])
    assert currency == expected[1]


@pytest.mark.parametrize(
    "text",
    [
        "Invoice #12345 for your plan",
        "Renewal of $75,000.00 enterprise license",
        "Your plan is active",
    ],
)
def test_price_extraction_rejects(text):
    assert extract_price(text) == (None, None)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("$9.99/mo", "monthly"),
        ("billed annually", "yearly"),
        ("charged every week", "weekly"),
        ("renews yearly, or switch to paying monthly", "yearly"),
        ("thanks for your payment", None),
    ],
)
def test_billing_cycle_extraction(text, expected):
    assert extract_billing_cycle(text) == expected


@pytest.mark.parametrize(
    "sender,subject,expected",
    [
        ("Spotify Billing Team <no-reply@spotify.com>", "", "Spotify"),
        ("billing@mail.spotify.com", "", "Spotify"),
        ("receipts@netflix.co.uk", "", "Netflix"),
        ("someone@gmail.com", "Your Dropbox Plus receipt", "Dropbox Plus"),
        ("", "", None),
    ],
)
def test_service_name_fallbacks(sender, subject, expected):
    assert extract_service_name(sender, subject) == expected
