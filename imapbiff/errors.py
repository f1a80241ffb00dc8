"""
Error hierarchy for imapbiff.

Failures fall into four groups, each handled at a different level:
configuration errors stop the process, transport errors recycle the
account's session, protocol errors are reported to the user and retried,
and decode errors only degrade a single notification.
"""
from imapclient.exceptions import IMAPClientAbortError


class ImapBiffError(Exception):
    """Base exception class for all imapbiff errors."""
    pass


class ConfigurationError(ImapBiffError):
    """Raised when an account cannot be configured (e.g. no password)."""
    pass


class TransportError(ImapBiffError):
    """Raised when the connection to the mail server is lost or unusable."""
    pass


class ProtocolOperationError(ImapBiffError):
    """Raised when the server answers a command in an unexpected way."""
    pass


class DecodeError(ImapBiffError):
    """Raised when a message summary cannot be built."""
    pass


# Socket, TLS and IMAP abort failures all mean the session is gone.
TRANSPORT_ERRORS = (TransportError, OSError, IMAPClientAbortError)
