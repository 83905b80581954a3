"""Transport adapters for Google mailbox and identity APIs."""

from .gmail_client import GmailClient
from .google_oauth import GoogleOAuthClient
from .payloads import HistoryPage, TokenGrant, WatchRegistration

__all__ = [
    "GmailClient",
    "GoogleOAuthClient",
    "HistoryPage",
    "TokenGrant",
    "WatchRegistration",
]
