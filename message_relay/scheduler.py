"""
Background scheduler that relays pending outbox messages to the webhook.

One loop thread per scheduler. Each tick fetches a batch of pending messages
(oldest first), sends them one by one, marks each accepted message SENT and
writes it through to the cache. A message whose send fails stays PENDING and
is retried on the next tick; there is no attempt limit and no backoff.
"""

import logging
import threading
from typing import Optional

from message_relay.errors import CacheError, DispatchError, RelayError
from message_relay.logging_utils import SCHEDULER_THREAD_NAME, dispatch_context
from message_relay.metrics import record_dispatch_outcome, record_tick
from message_relay.models import MessageStatus
from message_relay.schemas import SentMessageCache
from message_relay.utils import utc_now

logger = logging.getLogger(__name__)


class MessageScheduler:
    """
    Start/stop handle around the dispatch loop.

    start() is non-blocking and a no-op while running. stop() blocks until the
    loop thread has exited, so no dispatch happens after it returns.
    """

    def __init__(
        self,
        repository,
        sender,
        cache=None,
        interval_seconds: float = 120.0,
        batch_size: int = 2,
    ):
        self.repository = repository
        self.sender = sender
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.batch_size = batch_size

        self._lock = threading.Lock()
        self._running = False
        self._stop_event: Optional[threading.Event] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def start(self) -> bool:
        """
        Launch the dispatch loop on a background thread.

        Returns:
            True if the loop was started, False if it was already running
        """
        with self._lock:
            if self._running:
                logger.warning("Message scheduler is already running")
                return False

            self._running = True
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._loop,
                args=(self._stop_event,),
                name=SCHEDULER_THREAD_NAME,
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "Message scheduler started",
            extra={"interval_seconds": self.interval_seconds, "batch_size": self.batch_size},
        )
        return True

    def stop(self) -> bool:
        """
        Signal the loop to exit and wait for it.

        A tick already in progress runs to completion first.

        Returns:
            True if a running loop was stopped, False if it was not running
        """
        with self._lock:
            if not self._running:
                return False
            self._stop_event.set()
            thread = self._thread

        thread.join()
        logger.info("Message scheduler stopped")
        return True

    def _loop(self, stop_event: threading.Event) -> None:
        try:
            # first tick runs immediately unless stop() already got in
            while not stop_event.is_set():
                self._safe_tick()
                if stop_event.wait(self.interval_seconds):
                    break
        finally:
            with self._lock:
                self._running = False
                self._thread = None

    def _safe_tick(self) -> None:
        try:
            self.run_once()
        except Exception:
            logger.exception("Unexpected error in scheduler tick")

    def run_once(self) -> None:
        """Run a single dispatch cycle over up to batch_size pending messages."""
        record_tick()

        try:
            messages = self.repository.get_pending_messages(self.batch_size)
        except RelayError as e:
            logger.error(f"Failed to retrieve unsent messages: {e}")
            return

        if not messages:
            logger.debug("No pending messages to dispatch")
            return

        logger.info(f"Dispatching {len(messages)} pending messages")
        for message in messages:
            with dispatch_context(message.id):
                self._dispatch(message)

    def _dispatch(self, message) -> None:
        try:
            response = self.sender.send(message.to, message.content)
        except DispatchError as e:
            record_dispatch_outcome("failed")
            logger.error(f"Failed to send message: {e}")
            return

        record_dispatch_outcome("sent")
        sent_at = utc_now()

        try:
            self.repository.update_message_status(
                message.id,
                MessageStatus.SENT,
                external_message_id=response.message_id,
                sent_at=sent_at,
            )
        except RelayError as e:
            logger.error(
                f"Failed to mark message as sent: {e}",
                extra={"external_message_id": response.message_id},
            )
            return

        logger.info(
            "Message sent",
            extra={"external_message_id": response.message_id},
        )

        if self.cache is None:
            return

        entry = SentMessageCache(
            message_id=message.id,
            external_message_id=response.message_id,
            to=message.to,
            content=message.content,
            sent_at=sent_at,
        )
        try:
            self.cache.cache_sent_message(entry)
        except CacheError as e:
            logger.error(f"Failed to cache sent message: {e}")
