"""
Redis cache of recently sent messages.

Entries live under `sent_message:<id>` as JSON with a TTL. The cache is
best-effort: it may be incomplete, and enumeration order follows Redis SCAN,
so readers must sort what they get back.
"""

import logging
from datetime import timedelta
from typing import List, Optional, Union

import redis
from pydantic import ValidationError

from message_relay.errors import CacheError
from message_relay.schemas import SentMessageCache

logger = logging.getLogger(__name__)

SENT_MESSAGE_KEY_PREFIX = "sent_message:"
SENT_MESSAGE_KEY = SENT_MESSAGE_KEY_PREFIX + "{id}"


def create_redis_client(url: str) -> redis.Redis:
    return redis.Redis.from_url(url, decode_responses=True)


class MessageCacheRepository:
    """
    Write-through cache of sent messages, keyed by message id.

    Args:
        client: Redis client created with decode_responses=True
        ttl_seconds: default time-to-live for new entries
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 3600):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def cache_sent_message(
        self,
        entry: SentMessageCache,
        ttl: Optional[Union[int, timedelta]] = None,
    ) -> None:
        """
        Upsert the entry for a sent message and (re)set its expiry.

        Raises:
            CacheError: Redis rejected the write or could not be reached
        """
        key = SENT_MESSAGE_KEY.format(id=entry.message_id)
        expiry = ttl if ttl is not None else self.ttl_seconds

        try:
            self.client.set(key, entry.model_dump_json(), ex=expiry)
        except redis.RedisError as e:
            logger.error(f"Failed to cache sent message: {e}", extra={"message_id": entry.message_id})
            raise CacheError(f"failed to cache sent message: {e}") from e

        logger.debug(
            "Message cached successfully",
            extra={
                "message_id": entry.message_id,
                "external_message_id": entry.external_message_id,
            },
        )

    def get_all_sent_messages(self, limit: int) -> List[SentMessageCache]:
        """
        Return up to `limit` live cache entries, in no particular order.

        Keys are enumerated with SCAN; a key returned twice is read once. Keys
        that expire between SCAN and GET and values that fail to deserialize
        are skipped.

        Raises:
            CacheError: the scan or a read failed at the connection level
        """
        messages: List[SentMessageCache] = []
        # SCAN may return a key more than once
        seen_keys = set()
        cursor = 0
        pattern = SENT_MESSAGE_KEY_PREFIX + "*"

        try:
            while True:
                cursor, keys = self.client.scan(cursor=cursor, match=pattern, count=limit)

                for key in keys:
                    if len(messages) >= limit:
                        break

                    if key in seen_keys:
                        continue
                    seen_keys.add(key)

                    raw = self.client.get(key)
                    if raw is None:
                        logger.debug(f"Cached message expired before read, skipping: {key}")
                        continue

                    try:
                        messages.append(SentMessageCache.model_validate_json(raw))
                    except ValidationError as e:
                        logger.warning(f"Failed to unmarshal cache data, skipping: {key}: {e}")

                if cursor == 0 or len(messages) >= limit:
                    break
        except redis.RedisError as e:
            logger.error(f"Failed to scan cache keys: {e}")
            raise CacheError(f"failed to scan cache keys: {e}") from e

        logger.debug(f"Retrieved {len(messages)} cached sent messages")
        return messages

    def ping(self) -> bool:
        """Return True if Redis answers PING."""
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
