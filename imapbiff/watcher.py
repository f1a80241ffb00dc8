"""Per-account IDLE loop: wait for new mail, summarize it, notify."""

import logging
import time
from typing import Callable, List, Optional

from imapclient import IMAPClient, SocketTimeout
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError

from .config import AccountConfig, DEFAULT_BACKOFF_SECONDS, DEFAULT_IDLE_TIMEOUT_SECONDS
from .decoder import MessageDecoder
from .errors import TRANSPORT_ERRORS, ConfigurationError, ProtocolOperationError, TransportError
from .models import (
    IdleEvent,
    IdleEventKind,
    MessageSummary,
    NotifyRequest,
    UNREADABLE_BODY,
)
from .session import Session

logger = logging.getLogger(__name__)

SEEN_FLAG = b"\\Seen"


class MailboxWatcher:
    """
    Watches one mailbox of one account for new unread mail.

    The watcher cycles through connect, select (read-only), IDLE, and for
    each new message: re-select, check flags, summarize, notify. Transport
    failures drop the session; any other failure is reported as a
    notification. Either way the watcher sleeps for the backoff interval
    and starts over, forever.

    Messages are tracked by sequence number. Every number above the last
    one handled, up to the newest EXISTS count, is checked once, so mail
    announced while the watcher was busy (or while leaving IDLE) is not
    skipped.
    """

    def __init__(
        self,
        account: AccountConfig,
        notifier,
        session: Optional[Session] = None,
        backoff_seconds: int = DEFAULT_BACKOFF_SECONDS,
        idle_timeout_seconds: int = DEFAULT_IDLE_TIMEOUT_SECONDS,
        socket_timeout: Optional[SocketTimeout] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            account: Account and mailbox to watch.
            notifier: Shared notification sink (anything with ``notify(NotifyRequest)``).
            session: Session to use; built from ``account`` when omitted.
            backoff_seconds: Pause before restarting after a failure.
            idle_timeout_seconds: Longest single IDLE before it is re-issued.
            socket_timeout: Connect/read timeouts for a session built here.
            sleep: Sleep function, replaceable in tests.
            clock: Monotonic clock used for the IDLE deadline.
        """
        self.account = account
        self.notifier = notifier
        self.session = session or Session(account, self.notify, timeout=socket_timeout)
        self.backoff_seconds = backoff_seconds
        self.idle_timeout_seconds = idle_timeout_seconds
        self._sleep = sleep
        self._clock = clock
        self.last_handled = 0   # highest sequence number already checked
        self.mailbox_size = 0   # EXISTS count from the latest select

    @property
    def name(self) -> str:
        return self.account.group_key

    def notify(self, request: NotifyRequest) -> None:
        """Send a notification tagged with this account's group and label."""
        self.notifier.notify(NotifyRequest(
            title=request.title,
            subtitle=request.subtitle,
            message=request.message,
            group=self.account.group_key,
            sender_tag=request.sender_tag,
            label_prefix=self.account.label or None,
        ))

    def run_forever(self) -> None:
        """Watch until the process exits."""
        logger.info(f"Watching {self.account.mailbox} for {self.name}")
        while True:
            self.run_cycle()

    def run_cycle(self) -> None:
        """
        Run the watch loop from a disconnected start until it fails, then
        recover: drop the session on transport errors, or report anything
        else, and back off.

        Configuration errors are not recovered from.
        """
        try:
            self._watch()
        except ConfigurationError:
            raise
        except TRANSPORT_ERRORS as e:
            logger.warning(f"Connection to {self.account.hostname} failed ({self.name}): {e}")
            self.session.invalidate()
            self._sleep(self.backoff_seconds)
        except Exception as e:
            logger.error(f"Unexpected error watching {self.name}: {e}", exc_info=True)
            self.notify(NotifyRequest(
                title=f"[{self.account.hostname}] error: {type(e).__name__}",
                message=str(e),
            ))
            self._sleep(self.backoff_seconds)

    def _watch(self) -> None:
        client = self.session.ensure_connected()
        self._select(client)
        # mail already in the mailbox is not new
        self.last_handled = self.mailbox_size

        while True:
            event = self.wait_for_event(client)

            if event.kind is IdleEventKind.TIMEOUT:
                logger.debug(f"IDLE timed out for {self.name}, re-issuing")
                continue
            if event.kind is IdleEventKind.ERROR:
                raise TransportError(f"IDLE ended by server: {event.detail}")

            self.catch_up(client, max(event.message_ids))

    def catch_up(self, client: IMAPClient, exists: int) -> None:
        """Check every message numbered above ``last_handled``, up to ``exists``."""
        while self.last_handled < exists:
            self.last_handled += 1
            self.handle_new_message(client, self.last_handled)
            # the re-select may report mail that arrived meanwhile
            exists = max(exists, self.mailbox_size)

    def _select(self, client: IMAPClient) -> None:
        # EXAMINE: never changes flags
        try:
            response = client.select_folder(self.account.mailbox, readonly=True)
        except IMAPClientAbortError:
            raise
        except IMAPClientError as e:
            raise ProtocolOperationError(f"Could not select {self.account.mailbox}: {e}") from e
        self.mailbox_size = int(response.get(b"EXISTS", 0))
        logger.debug(
            f"Selected {self.account.mailbox} read-only for {self.name} ({self.mailbox_size} messages)"
        )

    def wait_for_event(self, client: IMAPClient) -> IdleEvent:
        """
        Block in IDLE until the server reports something of interest.

        Responses that arrive while IDLE is being ended count too.

        Returns:
            NEW_MESSAGES with the sequence numbers from EXISTS responses,
            TIMEOUT if nothing arrived within the idle timeout, or ERROR if
            the server said BYE.
        """
        new_ids: List[int] = []
        bye: Optional[str] = None
        deadline = self._clock() + self.idle_timeout_seconds

        client.idle()
        try:
            while not new_ids and bye is None:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                responses = client.idle_check(timeout=remaining)
                if not responses:
                    break
                logger.debug(f"IDLE responses for {self.name}: {responses}")
                bye = self._scan_responses(responses, new_ids)
        finally:
            _, done_responses = client.idle_done()

        if bye is None and done_responses:
            logger.debug(f"Responses while leaving IDLE for {self.name}: {done_responses}")
            bye = self._scan_responses(done_responses, new_ids)

        if bye is not None:
            return IdleEvent.error(bye)
        if new_ids:
            return IdleEvent.new_messages(new_ids)
        return IdleEvent.timeout()

    def _scan_responses(self, responses, new_ids: List[int]) -> Optional[str]:
        """
        Collect EXISTS counts into ``new_ids`` and keep ``last_handled`` in
        step with EXPUNGE. Returns the BYE text if the server said BYE.
        """
        for response in responses:
            if len(response) >= 2 and response[1] == b"EXISTS":
                new_ids.append(int(response[0]))
            elif len(response) >= 2 and response[1] == b"EXPUNGE":
                if int(response[0]) <= self.last_handled:
                    self.last_handled -= 1
            elif response and response[0] == b"BYE":
                detail = response[1] if len(response) > 1 else b""
                if isinstance(detail, bytes):
                    return detail.decode("utf-8", "replace")
                return str(detail)
        return None

    def handle_new_message(self, client: IMAPClient, msgid: int) -> Optional[MessageSummary]:
        """
        Notify about message ``msgid`` unless it has already been read.

        Returns:
            The summary that was sent, or None if the message was skipped.
        """
        self._select(client)

        try:
            flags = client.get_flags([msgid]).get(msgid)
        except IMAPClientAbortError:
            raise
        except IMAPClientError as e:
            raise ProtocolOperationError(f"Could not read flags of message {msgid}: {e}") from e
        if flags is None:
            logger.debug(f"Message {msgid} disappeared before it could be read ({self.name})")
            return None
        if SEEN_FLAG in flags:
            logger.debug(f"Message {msgid} already seen, skipping ({self.name})")
            return None

        summary = MessageSummary()
        try:
            MessageDecoder(client).decode(msgid, summary)
        except TRANSPORT_ERRORS:
            raise
        except Exception as e:
            logger.warning(f"Could not read message {msgid} for {self.name}: {e}")
            summary.body = UNREADABLE_BODY

        self.notify(NotifyRequest(
            title=summary.sender,
            subtitle=summary.subject,
            message=summary.body,
        ))
        return summary
