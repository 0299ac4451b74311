import logging
from typing import List

from message_relay.errors import CacheError, InvalidLimitError, StoreError
from message_relay.metrics import record_read_source
from message_relay.schemas import SentMessageCache, SentMessageResponse

logger = logging.getLogger(__name__)


def _newest_first(entries: List[SentMessageCache]) -> List[SentMessageCache]:
    return sorted(entries, key=lambda e: (e.sent_at, e.message_id), reverse=True)


def _unique_by_id(entries: List[SentMessageCache]) -> List[SentMessageCache]:
    unique = {}
    for entry in entries:
        unique.setdefault(entry.message_id, entry)
    return list(unique.values())


def _to_responses(entries: List[SentMessageCache]) -> List[SentMessageResponse]:
    return [SentMessageResponse.from_cache_entry(e) for e in entries]


class MessageService:
    """
    Application service behind the HTTP handlers.

    Owns the read path for sent messages and forwards scheduler control.
    """

    def __init__(self, repository, cache, scheduler=None):
        self.repository = repository
        self.cache = cache
        self.scheduler = scheduler

    def create_message(self, to: str, content: str):
        return self.repository.create_message(to, content)

    def start_scheduler(self) -> bool:
        return self.scheduler.start()

    def stop_scheduler(self) -> bool:
        return self.scheduler.stop()

    def scheduler_state(self) -> str:
        return "started" if self.scheduler.is_running else "stopped"

    def list_sent_messages(self, limit: int) -> List[SentMessageResponse]:
        """
        List up to `limit` sent messages, newest first.

        The cache is read first. The store is asked only for the shortfall, and
        its rows are added unless the cache already holds the same message id.
        A store failure is tolerated when the cache produced anything.

        Raises:
            InvalidLimitError: limit is not positive
            StoreError: the store failed and the cache had nothing to offer
        """
        if limit <= 0:
            raise InvalidLimitError(limit)

        entries: List[SentMessageCache] = []
        if self.cache is not None:
            try:
                entries = _unique_by_id(self.cache.get_all_sent_messages(limit))
            except CacheError as e:
                logger.warning(f"Failed to get messages from cache, falling back to database: {e}")
            else:
                logger.debug("Retrieved messages from cache", extra={"count": len(entries)})

        if len(entries) >= limit:
            record_read_source("cache")
            return _to_responses(_newest_first(entries)[:limit])

        remaining = limit - len(entries)
        logger.debug("Fetching additional messages from database", extra={"remaining_limit": remaining})

        try:
            stored = self.repository.get_sent_messages(remaining)
        except StoreError as e:
            logger.error(f"Failed to get sent messages from database: {e}")
            record_read_source("store_error")
            if entries:
                return _to_responses(_newest_first(entries))
            raise

        record_read_source("store")
        cached_ids = {e.message_id for e in entries}
        for message in stored:
            if len(entries) >= limit:
                break
            if message.id in cached_ids:
                continue
            entries.append(SentMessageCache.from_message(message))

        return _to_responses(_newest_first(entries))
