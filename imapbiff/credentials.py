"""Password lookup from the OS secret store."""

import logging
import re
import subprocess
import sys
from typing import Optional

import keyring
from keyring.errors import KeyringError

logger = logging.getLogger(__name__)

SECURITY_TOOL = "/usr/bin/security"
_SECURITY_PASSWORD_RE = re.compile(r'^password: "(.+)"$')


def _lookup_keyring(hostname: str, username: str) -> Optional[str]:
    try:
        return keyring.get_password(hostname, username)
    except KeyringError as e:
        logger.warning(f"Keyring lookup failed for {username}@{hostname}: {e}")
        return None


def _lookup_macos_internet_password(hostname: str, username: str) -> Optional[str]:
    """
    Read an internet password (as saved by Mail.app) from the macOS Keychain.

    ``security`` prints the password on stderr, so both streams are read.
    """
    try:
        result = subprocess.run(
            [SECURITY_TOOL, "find-internet-password", "-g",
             "-a", username, "-s", hostname],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"Could not run {SECURITY_TOOL}: {e}")
        return None

    for line in result.stdout.splitlines():
        match = _SECURITY_PASSWORD_RE.match(line.strip())
        if match:
            return match.group(1)
    return None


def lookup_password(hostname: str, username: str) -> Optional[str]:
    """
    Look up the password for an account in the OS secret store.

    Args:
        hostname: Mail server hostname, used as the keyring service name.
        username: Account username.

    Returns:
        The stored password, or None if nothing was found.
    """
    password = _lookup_keyring(hostname, username)
    if not password and sys.platform == "darwin":
        password = _lookup_macos_internet_password(hostname, username)

    if password:
        logger.info(f"Found stored password for {username}@{hostname}")
    else:
        logger.debug(f"No stored password for {username}@{hostname}")
    return password or None
