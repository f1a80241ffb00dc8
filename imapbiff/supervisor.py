"""Start and supervise one watcher thread per configured account."""

import logging
import os
import threading
from typing import Callable, List, Optional

from imapclient import SocketTimeout

from .config import AccountConfig, AppConfig
from .credentials import lookup_password
from .errors import ConfigurationError
from .models import NotifyRequest
from .watcher import MailboxWatcher

logger = logging.getLogger(__name__)


class Supervisor:
    """
    Owns the configured accounts and their watchers.

    Every watcher is built before any of them starts, so an account
    without a usable password stops the process before anything runs.
    Watchers never return; ``run()`` blocks until the process is killed.
    """

    def __init__(
        self,
        config: AppConfig,
        notifier,
        lookup: Callable[[str, str], Optional[str]] = lookup_password,
        watcher_factory: Callable[..., MailboxWatcher] = MailboxWatcher,
    ):
        self.config = config
        self.notifier = notifier
        self._lookup = lookup
        self._watcher_factory = watcher_factory
        self.watchers: List[MailboxWatcher] = []
        self.threads: List[threading.Thread] = []

    def resolve_password(self, account: AccountConfig) -> None:
        """
        Fill in ``account.password`` from the secret store if it is missing.

        Raises:
            ConfigurationError: If no password can be found.
        """
        if not account.password:
            account.password = self._lookup(account.hostname, account.username) or None

        if not account.password:
            self.notifier.notify(NotifyRequest(
                title="imapbiff",
                message=f"failed to initialize {account.group_key}: no password found",
            ))
            raise ConfigurationError(f"No password found for {account.group_key}")

    def build_watchers(self) -> List[MailboxWatcher]:
        """
        Build one watcher per account, in configuration order.

        Raises:
            ConfigurationError: If any account has no resolvable password.
        """
        watchers = []
        for account in self.config.accounts:
            self.resolve_password(account)
            watchers.append(self._watcher_factory(
                account,
                self.notifier,
                backoff_seconds=self.config.backoff_seconds,
                idle_timeout_seconds=self.config.idle_timeout_seconds,
                socket_timeout=SocketTimeout(
                    connect=self.config.connect_timeout_seconds,
                    read=self.config.read_timeout_seconds,
                ),
            ))
        self.watchers = watchers
        logger.info(f"Configured {len(watchers)} account(s)")
        return watchers

    def handle_thread_crash(self, args) -> None:
        """
        ``threading.excepthook`` replacement: a watcher that dies takes the
        whole process down rather than leaving its account silently unwatched.
        """
        thread_name = args.thread.name if args.thread is not None else "unknown thread"
        logger.critical(
            f"Unhandled error in {thread_name}: {args.exc_value!r}",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),
        )
        self.notifier.notify(NotifyRequest(
            title="imapbiff crashed",
            message=f"{thread_name}: {args.exc_type.__name__}: {args.exc_value}",
        ))
        os._exit(1)

    def start(self) -> List[threading.Thread]:
        """Start a thread for every built watcher."""
        threading.excepthook = self.handle_thread_crash

        threads = []
        for watcher in self.watchers:
            thread = threading.Thread(
                target=watcher.run_forever,
                name=f"imapbiff-{watcher.name}",
                daemon=True,
            )
            thread.start()
            threads.append(thread)
        self.threads = threads
        return threads

    def run(self) -> None:
        """Build all watchers, start them, and wait for them forever."""
        self.build_watchers()
        for thread in self.start():
            thread.join()
