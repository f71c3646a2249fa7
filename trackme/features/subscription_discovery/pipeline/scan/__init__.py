"""
Scan stage: mailbox search and parse job fan-out.
"""

from .credentials import CredentialsRefresher
from .query import KNOWN_SENDERS, SUBJECT_KEYWORDS, build_gmail_query
from .service import ScanWorker

__all__ = [
    "KNOWN_SENDERS",
    "SUBJECT_KEYWORDS",
    "CredentialsRefresher",
    "ScanWorker",
    "build_gmail_query",
]
