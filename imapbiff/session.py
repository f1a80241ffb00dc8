"""Authenticated IMAP session for one account."""

import logging
from functools import partial
from typing import Callable, Optional

from imapclient import IMAPClient, SocketTimeout
from imapclient.exceptions import LoginError

from .config import AccountConfig
from .errors import TRANSPORT_ERRORS, ConfigurationError, TransportError
from .models import NotifyRequest

logger = logging.getLogger(__name__)

IMAPS_PORT = 993


def _default_client_factory(hostname: str, timeout: Optional[SocketTimeout] = None) -> IMAPClient:
    # EXISTS responses carry sequence numbers, so the session works in
    # sequence-number space rather than UIDs.
    return IMAPClient(hostname, port=IMAPS_PORT, ssl=True, use_uid=False, timeout=timeout)


class Session:
    """
    Lazily established connection to one mail server as one user.

    The underlying client is memoized: ``ensure_connected()`` returns the
    same handle until ``invalidate()`` drops it after a transport failure.
    """

    def __init__(
        self,
        account: AccountConfig,
        notify: Callable[[NotifyRequest], None],
        client_factory: Optional[Callable[[str], IMAPClient]] = None,
        timeout: Optional[SocketTimeout] = None,
    ):
        """
        Args:
            account: Account to connect as. Its password must be resolved.
            notify: Callback receiving the "connected" notification.
            client_factory: Builds a connected client for a hostname.
            timeout: Connect/read socket timeouts for the default IMAPS client.
        """
        self.account = account
        self._notify = notify
        self._client_factory = client_factory or partial(_default_client_factory, timeout=timeout)
        self._client: Optional[IMAPClient] = None

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def ensure_connected(self) -> IMAPClient:
        """
        Return an authenticated client, connecting first if necessary.

        Raises:
            ConfigurationError: If the account has no password.
            TransportError: If the connection or login fails.
        """
        if self._client is not None:
            return self._client

        if not self.account.password:
            raise ConfigurationError(
                f"No password for {self.account.username}@{self.account.hostname}"
            )

        logger.info(f"Connecting to {self.account.hostname} as {self.account.username}")
        try:
            client = self._client_factory(self.account.hostname)
        except TRANSPORT_ERRORS as e:
            raise TransportError(f"Could not connect to {self.account.hostname}: {e}") from e

        try:
            client.login(self.account.username, self.account.password)
        except LoginError as e:
            logger.error(
                f"IMAP authentication failed for {self.account.username}@{self.account.hostname}: {e}"
            )
            self._close_quietly(client)
            raise TransportError(f"Login failed for {self.account.username}: {e}") from e
        except TRANSPORT_ERRORS as e:
            self._close_quietly(client)
            raise TransportError(f"Connection to {self.account.hostname} lost during login: {e}") from e

        self._client = client
        logger.info(f"Connected to {self.account.hostname} as {self.account.username}")
        self._notify(NotifyRequest(
            title="imapbiff",
            message=f"Connected to {self.account.hostname} as {self.account.username}",
        ))
        return client

    def invalidate(self) -> None:
        """Drop the current client so the next use reconnects."""
        client, self._client = self._client, None
        if client is not None:
            self._close_quietly(client)

    @staticmethod
    def _close_quietly(client: IMAPClient) -> None:
        # The socket is usually already dead here.
        try:
            client.shutdown()
        except Exception as e:
            logger.debug(f"Error shutting down IMAP connection (may be disconnected): {e}")
