"""Email Tracker: poll an IMAP mailbox and push new mail to WebSocket clients.

Public API re-exported here for convenience::

    from email_tracker import IngestionPipeline, LivenessTracker, Settings
"""

from .broadcast import NEW_EMAIL_EVENT, BroadcastSink
from .config import DatabaseConfig, ImapConfig, LivenessConfig, RetryConfig, Settings
from .exceptions import (
    AuthError,
    BroadcastError,
    EmailTrackerError,
    MailboxError,
    MailboxTimeoutError,
    NetworkError,
    PersistenceError,
    ProtocolError,
)
from .imap_client import AsyncImapClient, BodyChunk, HeaderChunk
from .liveness import HEARTBEAT_ACK_EVENT, HEARTBEAT_EVENT, LivenessTracker, Session, SessionRegistry
from .logging import setup_logging
from .models import CycleResult, CycleState, EmailCreate, EmailFilter, StoredEmail, TagsUpdate
from .parser import HeaderFields, parse_body_block, parse_header_block
from .pipeline import IngestionPipeline, PartialMessage
from .store import EmailStore

__all__ = [
    "HEARTBEAT_ACK_EVENT",
    "HEARTBEAT_EVENT",
    "NEW_EMAIL_EVENT",
    "AsyncImapClient",
    "AuthError",
    "BodyChunk",
    "BroadcastError",
    "BroadcastSink",
    "CycleResult",
    "CycleState",
    "DatabaseConfig",
    "EmailCreate",
    "EmailFilter",
    "EmailStore",
    "EmailTrackerError",
    "HeaderChunk",
    "HeaderFields",
    "ImapConfig",
    "IngestionPipeline",
    "LivenessConfig",
    "LivenessTracker",
    "MailboxError",
    "MailboxTimeoutError",
    "NetworkError",
    "PartialMessage",
    "PersistenceError",
    "ProtocolError",
    "RetryConfig",
    "Session",
    "SessionRegistry",
    "Settings",
    "StoredEmail",
    "TagsUpdate",
    "parse_body_block",
    "parse_header_block",
    "setup_logging",
]
