"""
Gmail search query construction for subscription receipts.
"""

from datetime import UTC, date, datetime, timedelta

from trackme.features.subscription_discovery.domain import ScanType

KNOWN_SENDERS = (
    "netflix.com",
    "spotify.com",
    "adobe.com",
    "microsoft.com",
    "apple.com",
    "amazon.com",
    "github.com",
    "digitalocean.com",
    "aws.amazon.com",
    "google.com",
    "dropbox.com",
    "zoom.us",
    "slack.com",
    "notion.so",
    "figma.com",
    "canva.com",
    "grammarly.com",
    "evernote.com",
    "trello.com",
    "asana.com",
)

SUBJECT_KEYWORDS = (
    "subscription",
    "billed monthly",
    "billed annually",
    "recurring payment",
    "auto-renewal",
    "membership fee",
    "monthly charge",
    "annual charge",
    "payment confirmation",
    "invoice",
    "receipt",
    "your payment",
)


def scan_window_days(scan_type: str, deep_days: int = 365, incremental_days: int = 2) -> int:
    """Look-back window for a scan type; manual and unknown types get the deep window."""
    if scan_type == ScanType.DAILY:
        return incremental_days
    return deep_days


def after_date(scan_type: str, today: date | None = None, **window: int) -> date:
    today = today or datetime.now(UTC).date()
    return today - timedelta(days=scan_window_days(scan_type, **window))


def build_gmail_query(
    scan_type: str,
    today: date | None = None,
    senders: tuple[str, ...] = KNOWN_SENDERS,
    keywords: tuple[str, ...] = SUBJECT_KEYWORDS,
    **window: int,
) -> str:
    """
    Build the search string, e.g.

        (from:netflix.com OR from:spotify.com) OR subject:("invoice" OR "receipt")
        -in:spam -in:promotions after:2025/01/31
    """
    sender_query = " OR ".join(f"from:{sender}" for sender in senders)
    keyword_query = " OR ".join(f'"{keyword}"' for keyword in keywords)
    since = after_date(scan_type, today, **window).strftime("%Y/%m/%d")

    return f"({sender_query}) OR subject:({keyword_query}) -in:spam -in:promotions after:{since}"
