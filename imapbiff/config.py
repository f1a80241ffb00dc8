"""Configuration management."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path.home() / ".imapbiffrc"
DEFAULT_MAILBOX = "inbox"
DEFAULT_BACKOFF_SECONDS = 5
# RFC 2177: clients should re-issue IDLE at least every 29 minutes
DEFAULT_IDLE_TIMEOUT_SECONDS = 29 * 60
# socket timeouts for everything except the IDLE wait itself
DEFAULT_CONNECT_TIMEOUT_SECONDS = 30
DEFAULT_READ_TIMEOUT_SECONDS = 120
DEFAULT_TERMINAL_NOTIFIER = (
    "/Applications/terminal-notifier.app/Contents/MacOS/terminal-notifier"
)


@dataclass
class AccountConfig:
    """One mailbox to watch."""
    hostname: str
    username: str
    password: Optional[str] = None  # filled in by credential lookup when absent
    mailbox: str = DEFAULT_MAILBOX
    label: Optional[str] = None     # prefixed to notification titles

    @property
    def group_key(self) -> str:
        """Notification grouping key, ``username@hostname``."""
        return f"{self.username}@{self.hostname}"


@dataclass
class NotifierConfig:
    """Desktop notification configuration."""
    terminal_notifier_path: str = DEFAULT_TERMINAL_NOTIFIER
    sender_tag: str = "com.apple.Mail"


@dataclass
class AppConfig:
    """Complete application configuration."""
    config_path: Path
    accounts: List[AccountConfig]
    backoff_seconds: int = DEFAULT_BACKOFF_SECONDS
    idle_timeout_seconds: int = DEFAULT_IDLE_TIMEOUT_SECONDS
    connect_timeout_seconds: int = DEFAULT_CONNECT_TIMEOUT_SECONDS
    read_timeout_seconds: int = DEFAULT_READ_TIMEOUT_SECONDS
    notifier: NotifierConfig = field(default_factory=NotifierConfig)


def _parse_int_env(key: str, default: int) -> int:
    """Parse a positive integer from an environment variable."""
    value = os.getenv(key, "").strip()
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    if parsed <= 0:
        raise ConfigurationError(f"{key} must be positive, got {parsed}")
    return parsed


def _normalize_keys(raw: Any) -> Any:
    """
    Strip a single leading ':' from mapping keys, recursively.

    Older rc files use symbol-style keys (``:accounts:``, ``:hostname:``),
    which YAML loads as ``":accounts"``.
    """
    if isinstance(raw, dict):
        normalized = {}
        for key, value in raw.items():
            if isinstance(key, str) and key.startswith(":"):
                key = key[1:]
            normalized[key] = _normalize_keys(value)
        return normalized
    if isinstance(raw, list):
        return [_normalize_keys(item) for item in raw]
    return raw


def _optional_string(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def parse_accounts(document: Dict[str, Any]) -> List[AccountConfig]:
    """
    Build account descriptors from a parsed config document.

    Args:
        document: Parsed YAML mapping with an ``accounts`` list.

    Returns:
        AccountConfig objects, in the order they appear in the document.

    Raises:
        ConfigurationError: If the document does not describe any usable account.
    """
    document = _normalize_keys(document)
    if not isinstance(document, dict) or "accounts" not in document:
        raise ConfigurationError("Config file must contain an 'accounts' list")

    raw_accounts = document["accounts"]
    if not isinstance(raw_accounts, list) or not raw_accounts:
        raise ConfigurationError("'accounts' must be a non-empty list")

    accounts = []
    for index, raw in enumerate(raw_accounts):
        if not isinstance(raw, dict):
            raise ConfigurationError(f"accounts[{index}] must be a mapping")

        missing = [key for key in ("hostname", "username") if not raw.get(key)]
        if missing:
            raise ConfigurationError(
                f"accounts[{index}] is missing required keys: {', '.join(missing)}"
            )

        accounts.append(AccountConfig(
            hostname=str(raw["hostname"]),
            username=str(raw["username"]),
            password=_optional_string(raw.get("password")) or None,
            label=_optional_string(raw.get("label")),
        ))
    return accounts


def load_config(path: Optional[Path] = None) -> AppConfig:
    """
    Load configuration from the YAML config file and environment variables.

    Raises:
        ConfigurationError: If the config file is missing or invalid.
    """
    load_dotenv()

    if path is None:
        path = Path(os.getenv("IMAPBIFF_CONFIG", str(DEFAULT_CONFIG_PATH))).expanduser()

    try:
        with open(path, encoding="utf-8") as handle:
            document = yaml.safe_load(handle)
    except FileNotFoundError:
        raise ConfigurationError(f"Config file not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}")

    if document is None:
        raise ConfigurationError(f"Config file is empty: {path}")

    notifier = NotifierConfig(
        terminal_notifier_path=os.getenv(
            "IMAPBIFF_TERMINAL_NOTIFIER", DEFAULT_TERMINAL_NOTIFIER
        ),
    )

    return AppConfig(
        config_path=Path(path),
        accounts=parse_accounts(document),
        backoff_seconds=_parse_int_env("IMAPBIFF_BACKOFF_SECONDS", DEFAULT_BACKOFF_SECONDS),
        idle_timeout_seconds=_parse_int_env(
            "IMAPBIFF_IDLE_TIMEOUT_SECONDS", DEFAULT_IDLE_TIMEOUT_SECONDS
        ),
        connect_timeout_seconds=_parse_int_env(
            "IMAPBIFF_CONNECT_TIMEOUT_SECONDS", DEFAULT_CONNECT_TIMEOUT_SECONDS
        ),
        read_timeout_seconds=_parse_int_env(
            "IMAPBIFF_READ_TIMEOUT_SECONDS", DEFAULT_READ_TIMEOUT_SECONDS
        ),
        notifier=notifier,
    )
