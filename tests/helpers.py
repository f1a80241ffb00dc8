from __future__ import annotations

import re
from dataclasses import dataclass, field

from imapclient.response_types import BodyData

from imapbiff.config import AccountConfig


def make_account(**overrides) -> AccountConfig:
    values = {
        "hostname": "mail.example.com",
        "username": "user@example.com",
        "password": "secret",
    }
    values.update(overrides)
    return AccountConfig(**values)


def text_part(subtype: bytes = b"PLAIN", encoding: bytes = b"7BIT", charset: bytes = b"utf-8") -> BodyData:
    return BodyData((b"TEXT", subtype, (b"CHARSET", charset), None, None, encoding, 100, 3))


def multipart(*parts: BodyData, subtype: bytes = b"ALTERNATIVE") -> BodyData:
    return BodyData((list(parts), subtype))


@dataclass
class FakeMessage:
    flags: tuple = ()
    sender: str = "A Sender <a@x.com>"
    subject: str = "Hi"
    structure: BodyData = field(default_factory=text_part)
    parts: dict = field(default_factory=dict)


class RecordingNotifier:
    def __init__(self) -> None:
        self.requests = []

    def notify(self, request) -> None:
        self.requests.append(request)


class FakeIMAPClient:
    """Mimics the return shapes of imapclient.IMAPClient (sequence-number mode)."""

    _PARTIAL_RE = re.compile(r"^BODY\.PEEK\[([0-9.]+)\]<0\.(\d+)>$")
    _HEADER_RE = re.compile(r"^BODY\.PEEK\[HEADER\.FIELDS \((\w+)\)\]$")

    def __init__(
        self,
        messages: dict | None = None,
        idle_script: list | None = None,
        done_script: list | None = None,
        exists: int | None = None,
    ) -> None:
        self.messages = messages or {}
        self.idle_script = list(idle_script or [])
        # responses handed back by idle_done(), one entry per call
        self.done_script = list(done_script or [])
        self.exists = exists
        self.calls: list[tuple] = []
        self.fetch_calls: list[tuple] = []
        self.logged_in_as = None
        self.in_idle = False
        self.shut_down = False

    def login(self, username, password):
        self.calls.append(("login", username))
        self.logged_in_as = username
        return b"LOGIN completed"

    def select_folder(self, folder, readonly=False):
        self.calls.append(("select_folder", folder, readonly))
        exists = len(self.messages) if self.exists is None else self.exists
        return {b"EXISTS": exists, b"READ-ONLY": [b""]}

    def idle(self):
        self.calls.append(("idle",))
        self.in_idle = True

    def idle_check(self, timeout=None):
        self.calls.append(("idle_check", timeout))
        if not self.idle_script:
            raise ConnectionResetError("connection reset by peer")
        step = self.idle_script.pop(0)
        if isinstance(step, BaseException):
            raise step
        return step

    def idle_done(self):
        self.calls.append(("idle_done",))
        self.in_idle = False
        responses = self.done_script.pop(0) if self.done_script else []
        return (b"IDLE terminated", responses)

    def get_flags(self, messages):
        self.calls.append(("get_flags", tuple(messages)))
        return {msgid: self.messages[msgid].flags for msgid in messages if msgid in self.messages}

    def fetch(self, messages, data):
        item = data[0]
        self.fetch_calls.append((tuple(messages), item))
        result = {}
        for msgid in messages:
            message = self.messages.get(msgid)
            if message is None:
                continue
            result[msgid] = {b"SEQ": msgid, **self._fetch_item(message, item)}
        return result

    def _fetch_item(self, message: FakeMessage, item: str) -> dict:
        if item == "BODYSTRUCTURE":
            return {b"BODYSTRUCTURE": message.structure}

        header = self._HEADER_RE.match(item)
        if header:
            name = header.group(1).upper()
            value = message.sender if name == "FROM" else message.subject
            raw = f"{name.capitalize()}: {value}\r\n\r\n".encode("utf-8")
            return {item.replace("BODY.PEEK", "BODY").encode("ascii"): raw}

        partial = self._PARTIAL_RE.match(item)
        if partial:
            path, length = partial.group(1), int(partial.group(2))
            key = f"BODY[{path}]<0>".encode("ascii")
            return {key: message.parts.get(path, b"")[:length]}

        raise AssertionError(f"Unsupported fetch item in test fake: {item}")

    def shutdown(self):
        self.calls.append(("shutdown",))
        self.shut_down = True
