"""Build a short summary of a message without downloading it."""

import base64
import binascii
import logging
import quopri
import re
from email.header import decode_header
from typing import Any, Dict, Optional, Tuple

from imapclient import IMAPClient

from .errors import DecodeError
from .models import HTML_BODY, MessageSummary

logger = logging.getLogger(__name__)

PREVIEW_BYTES = 200

_FIELD_PREFIX_RE = re.compile(r"^[^:]+: ?")
_FOLDING_RE = re.compile(r"\r?\n[ \t]+")


def _to_text(value: Any, charset: Optional[str] = None) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return bytes(value).decode(charset or "utf-8", errors="ignore")
    except LookupError:
        return bytes(value).decode("utf-8", errors="ignore")


def decode_header_value(header_value: str) -> str:
    """Decode email header value (handles encoded words)."""
    if not header_value:
        return ""

    decoded_string = ""
    for part, encoding in decode_header(header_value):
        if isinstance(part, bytes):
            decoded_string += _to_text(part, encoding)
        else:
            decoded_string += part

    return decoded_string.strip()


def parse_header_field(raw: Any) -> str:
    """
    Turn a raw ``BODY[HEADER.FIELDS (X)]`` response into the field value.

    Unfolds continuation lines, strips the ``Name:`` prefix and decodes
    encoded words.
    """
    text = _FOLDING_RE.sub(" ", _to_text(raw)).strip()
    text = _FIELD_PREFIX_RE.sub("", text, count=1)
    return decode_header_value(text)


def _lower(value: Any) -> str:
    return _to_text(value).lower()


def _charset_from_params(params: Any) -> Optional[str]:
    """BODYSTRUCTURE parameters are a flat (name, value, name, value...) list."""
    if not params:
        return None
    items = list(params)
    for name, value in zip(items[::2], items[1::2]):
        if _lower(name) == "charset":
            return _to_text(value)
    return None


def find_text_part(structure: Any, prefix: str = "") -> Optional[Tuple[str, str, Optional[str]]]:
    """
    Locate the first text/plain part of a message.

    Args:
        structure: The message BODYSTRUCTURE, as parsed by imapclient.
        prefix: Part path of ``structure`` within the whole message.

    Returns:
        A (part path, content-transfer-encoding, charset) tuple, or None if
        the message has no text/plain part.
    """
    if not structure:
        return None

    if isinstance(structure[0], list):
        for index, part in enumerate(structure[0], start=1):
            path = f"{prefix}.{index}" if prefix else str(index)
            found = find_text_part(part, path)
            if found:
                return found
        return None

    if _lower(structure[0]) == "text" and _lower(structure[1]) == "plain":
        encoding = _lower(structure[5]) if len(structure) > 5 else ""
        charset = _charset_from_params(structure[2]) if len(structure) > 2 else None
        return prefix or "1", encoding, charset

    return None


def decode_preview(raw: bytes, encoding: str, charset: Optional[str] = None) -> str:
    """
    Decode the first bytes of a body part according to its transfer encoding.

    The input is a partial fetch, so base64 data is cut back to a whole
    number of 4-character groups before decoding.
    """
    if encoding == "quoted-printable":
        data = quopri.decodestring(raw)
    elif encoding == "base64":
        compact = re.sub(rb"\s+", b"", raw)
        compact = compact[:len(compact) - len(compact) % 4]
        try:
            data = base64.b64decode(compact)
        except binascii.Error as e:
            raise DecodeError(f"Invalid base64 body: {e}") from e
    else:
        data = raw
    return _to_text(data, charset).strip()


def _single_response(response: Dict[int, Dict[bytes, Any]], msgid: int) -> Dict[bytes, Any]:
    data = response.get(msgid)
    if data is None:
        raise DecodeError(f"Server returned no data for message {msgid}")
    return data


def _body_section(data: Dict[bytes, Any]) -> Any:
    """Return the value of the BODY[...] item, whatever its exact key."""
    for key, value in data.items():
        if bytes(key).upper().startswith(b"BODY["):
            return value
    raise DecodeError("Response is missing the requested BODY section")


class MessageDecoder:
    """Fetches and decodes sender, subject and a body preview."""

    def __init__(self, client: IMAPClient, preview_bytes: int = PREVIEW_BYTES):
        self.client = client
        self.preview_bytes = preview_bytes

    def fetch_header(self, msgid: int, name: str) -> str:
        response = self.client.fetch([msgid], [f"BODY.PEEK[HEADER.FIELDS ({name.upper()})]"])
        return parse_header_field(_body_section(_single_response(response, msgid)))

    def fetch_body_preview(self, msgid: int) -> str:
        response = self.client.fetch([msgid], ["BODYSTRUCTURE"])
        structure = _single_response(response, msgid).get(b"BODYSTRUCTURE")
        if not structure:
            raise DecodeError(f"No BODYSTRUCTURE for message {msgid}")

        text_part = find_text_part(structure)
        if text_part is None:
            logger.debug(f"Message {msgid} has no text/plain part")
            return HTML_BODY

        path, encoding, charset = text_part
        logger.debug(f"Previewing part {path} ({encoding}, {charset}) of message {msgid}")
        response = self.client.fetch([msgid], [f"BODY.PEEK[{path}]<0.{self.preview_bytes}>"])
        raw = _body_section(_single_response(response, msgid)) or b""
        return decode_preview(bytes(raw)[:self.preview_bytes], encoding, charset)

    def decode(self, msgid: int, summary: MessageSummary) -> MessageSummary:
        """
        Fill ``summary`` in place for message ``msgid``.

        Fields are assigned as soon as they are fetched, so on failure the
        caller still holds whatever was read before the error.
        """
        summary.sender = self.fetch_header(msgid, "from")
        summary.subject = self.fetch_header(msgid, "subject")
        summary.body = self.fetch_body_preview(msgid)
        return summary
