"""Exception hierarchy for the email tracker.

Mailbox errors are fatal for the current poll cycle only; the next
scheduled cycle is the retry.  Persistence and broadcast errors are
per-message and never abort a cycle.
"""

from __future__ import annotations


class EmailTrackerError(Exception):
    """Base class for all errors raised by this package."""


class MailboxError(EmailTrackerError):
    """A failure of the remote mailbox session."""


class AuthError(MailboxError):
    """The IMAP server rejected the configured credentials."""


class NetworkError(MailboxError):
    """The IMAP server could not be reached or the connection dropped."""


class MailboxTimeoutError(MailboxError):
    """The connection or the LOGIN exchange did not finish in time."""


class ProtocolError(MailboxError):
    """SELECT, SEARCH or FETCH returned a non-OK status."""


class PersistenceError(EmailTrackerError):
    """The record store failed to write or read a record."""


class BroadcastError(EmailTrackerError):
    """An event could not be delivered to a real-time session."""
