"""Session sanitization and upload to the devark backend."""

from .api_client import DevarkApiClient
from .auth import TokenStore
from .pipeline import SyncProgress, SyncResult, SyncService, filter_eligible_sessions
from .sanitizer import sanitize, sanitize_messages, to_sanitized_session
from .state import SyncStateStore

__all__ = [
    "DevarkApiClient",
    "SyncProgress",
    "SyncResult",
    "SyncService",
    "SyncStateStore",
    "TokenStore",
    "filter_eligible_sessions",
    "sanitize",
    "sanitize_messages",
    "to_sanitized_session",
]
