"""
Gmail Domain Models
Metadata-only view of Gmail messages used by the scan stage.
"""

from datetime import UTC, datetime
from email.utils import parseaddr, parsedate_to_datetime


class GmailMessageMetadata:
    """Domain model for a message fetched with format=metadata."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = data.get("snippet", "")
        self.internal_date = data.get("internalDate")
        self.payload = data.get("payload", {})

        self._parse_headers()

    def _parse_headers(self):
        headers = self.payload.get("headers", [])
        self.headers = {h["name"].lower(): h["value"] for h in headers}

        self.subject = self.headers.get("subject", "")
        self.sender = self.headers.get("from", "")
        self.date = self.headers.get("date", "")

        name, address = parseaddr(self.sender)
        self.sender_name = name.strip().strip('"')
        self.sender_email = address.strip().lower()

    @property
    def message_date(self) -> datetime | None:
        """
        When the message was received.

        Prefers Gmail's internalDate (epoch millis) and falls back to the
        Date header; returns None when neither parses.
        """
        if self.internal_date:
            try:
                return datetime.fromtimestamp(int(self.internal_date) / 1000, tz=UTC)
            except (TypeError, ValueError):
                pass

        if self.date:
            try:
                parsed = parsedate_to_datetime(self.date)
            except (TypeError, ValueError):
                return None
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

        return None

    def __repr__(self) -> str:
        return f"GmailMessageMetadata(id={self.id}, subject={self.subject[:50]!r})"
