from __future__ import annotations

import pytest

from imapbiff.config import (
    DEFAULT_BACKOFF_SECONDS,
    DEFAULT_CONNECT_TIMEOUT_SECONDS,
    load_config,
    parse_accounts,
)
from imapbiff.errors import ConfigurationError


def clear_imapbiff_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "IMAPBIFF_CONFIG",
        "IMAPBIFF_BACKOFF_SECONDS",
        "IMAPBIFF_IDLE_TIMEOUT_SECONDS",
        "IMAPBIFF_CONNECT_TIMEOUT_SECONDS",
        "IMAPBIFF_READ_TIMEOUT_SECONDS",
        "IMAPBIFF_TERMINAL_NOTIFIER",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_config_reads_accounts_in_order(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    clear_imapbiff_env(monkeypatch)
    path = tmp_path / "imapbiffrc"
    path.write_text(
        "accounts:\n"
        "- hostname: mail.example.com\n"
        "  username: user@example.com\n"
        "  password: hunter2\n"
        "- hostname: mail2.example.com\n"
        "  username: user2@example.com\n"
        "  label: \"[user2 mail] \"\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert [(a.hostname, a.username) for a in config.accounts] == [
        ("mail.example.com", "user@example.com"),
        ("mail2.example.com", "user2@example.com"),
    ]
    assert config.accounts[0].password == "hunter2"
    assert config.accounts[0].mailbox == "inbox"
    assert config.accounts[1].password is None
    assert config.accounts[1].label == "[user2 mail] "
    assert config.backoff_seconds == DEFAULT_BACKOFF_SECONDS


def test_load_config_accepts_ruby_symbol_keys(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    clear_imapbiff_env(monkeypatch)
    path = tmp_path / "imapbiffrc"
    path.write_text(
        "---\n"
        ":accounts:\n"
        "- :hostname: mail.example.com\n"
        "  :username: user@example.com\n",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.accounts[0].hostname == "mail.example.com"
    assert config.accounts[0].group_key == "user@example.com@mail.example.com"


def test_load_config_uses_path_from_env(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    clear_imapbiff_env(monkeypatch)
    path = tmp_path / "custom.yml"
    path.write_text("accounts:\n- {hostname: h, username: u}\n", encoding="utf-8")
    monkeypatch.setenv("IMAPBIFF_CONFIG", str(path))
    monkeypatch.setenv("IMAPBIFF_BACKOFF_SECONDS", "12")
    monkeypatch.setenv("IMAPBIFF_READ_TIMEOUT_SECONDS", "90")

    config = load_config()

    assert config.config_path == path
    assert config.backoff_seconds == 12
    assert config.read_timeout_seconds == 90
    assert config.connect_timeout_seconds == DEFAULT_CONNECT_TIMEOUT_SECONDS


def test_load_config_missing_file(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    clear_imapbiff_env(monkeypatch)

    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "missing")


def test_load_config_rejects_bad_backoff(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    clear_imapbiff_env(monkeypatch)
    path = tmp_path / "imapbiffrc"
    path.write_text("accounts:\n- {hostname: h, username: u}\n", encoding="utf-8")
    monkeypatch.setenv("IMAPBIFF_BACKOFF_SECONDS", "soon")

    with pytest.raises(ConfigurationError, match="IMAPBIFF_BACKOFF_SECONDS"):
        load_config(path)


@pytest.mark.parametrize(
    "document, message",
    [
        ({}, "accounts"),
        ({"accounts": []}, "non-empty"),
        ({"accounts": ["mail.example.com"]}, "mapping"),
        ({"accounts": [{"hostname": "mail.example.com"}]}, "username"),
    ],
)
def test_parse_accounts_rejects_invalid_documents(document, message) -> None:
    with pytest.raises(ConfigurationError, match=message):
        parse_accounts(document)
