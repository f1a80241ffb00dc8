"""Data models for notifications and IDLE events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

HTML_BODY = "HTML message"
UNREADABLE_BODY = "Unable to read message"


@dataclass
class MessageSummary:
    """Just enough of a message to notify about it."""
    sender: str = ""
    subject: str = ""
    body: str = UNREADABLE_BODY


@dataclass(frozen=True)
class NotifyRequest:
    """A single notification handed to the notification sink."""
    title: str
    message: str
    group: str = "imapbiff"
    subtitle: Optional[str] = None
    sender_tag: Optional[str] = None
    label_prefix: Optional[str] = None


class IdleEventKind(Enum):
    NEW_MESSAGES = "new_messages"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class IdleEvent:
    """Outcome of one blocking IDLE wait."""
    kind: IdleEventKind
    message_ids: Tuple[int, ...] = field(default_factory=tuple)
    detail: str = ""

    @classmethod
    def new_messages(cls, message_ids) -> "IdleEvent":
        return cls(IdleEventKind.NEW_MESSAGES, tuple(message_ids))

    @classmethod
    def timeout(cls) -> "IdleEvent":
        return cls(IdleEventKind.TIMEOUT)

    @classmethod
    def error(cls, detail: str) -> "IdleEvent":
        return cls(IdleEventKind.ERROR, detail=detail)
