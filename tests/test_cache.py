"""
Tests for the Redis cache of sent messages (backed by fakeredis).
"""

from datetime import timedelta

import pytest

from message_relay.cache import SENT_MESSAGE_KEY, MessageCacheRepository
from message_relay.errors import CacheError
from message_relay.schemas import SentMessageCache
from message_relay.utils import utc_now


def make_entry(message_id: int, hours_ago: int = 0, external_id: str = None) -> SentMessageCache:
    return SentMessageCache(
        message_id=message_id,
        external_message_id=external_id or f"ext-{message_id}",
        to="+905551111111",
        content=f"message {message_id}",
        sent_at=utc_now() - timedelta(hours=hours_ago),
    )


class TestCacheSentMessage:
    """Test writes to the cache."""

    def test_entry_is_stored_as_json(self, cache, redis_client):
        entry = make_entry(1)

        cache.cache_sent_message(entry)

        raw = redis_client.get(SENT_MESSAGE_KEY.format(id=1))
        assert SentMessageCache.model_validate_json(raw) == entry

    def test_default_ttl(self, cache, redis_client):
        cache.cache_sent_message(make_entry(1))

        ttl = redis_client.ttl(SENT_MESSAGE_KEY.format(id=1))
        assert 0 < ttl <= 3600

    def test_explicit_ttl(self, cache, redis_client):
        cache.cache_sent_message(make_entry(1), ttl=60)

        ttl = redis_client.ttl(SENT_MESSAGE_KEY.format(id=1))
        assert 0 < ttl <= 60

    def test_overwrite_replaces_entry(self, cache):
        cache.cache_sent_message(make_entry(1, external_id="first"))
        cache.cache_sent_message(make_entry(1, external_id="second"))

        entries = cache.get_all_sent_messages(10)

        assert len(entries) == 1
        assert entries[0].external_message_id == "second"

    def test_write_failure_raises_cache_error(self, broken_redis_client):
        cache = MessageCacheRepository(broken_redis_client)

        with pytest.raises(CacheError):
            cache.cache_sent_message(make_entry(1))


class TestGetAllSentMessages:
    """Test enumeration of cached entries."""

    def test_empty_cache(self, cache):
        assert cache.get_all_sent_messages(10) == []

    def test_returns_all_entries(self, cache):
        for message_id in (1, 2, 3):
            cache.cache_sent_message(make_entry(message_id, hours_ago=message_id))

        entries = cache.get_all_sent_messages(10)

        assert sorted(e.message_id for e in entries) == [1, 2, 3]

    def test_respects_limit(self, cache):
        for message_id in range(1, 26):
            cache.cache_sent_message(make_entry(message_id))

        entries = cache.get_all_sent_messages(5)

        assert len(entries) == 5
        assert len({e.message_id for e in entries}) == 5

    def test_ignores_other_keys(self, cache, redis_client):
        redis_client.set("unrelated:1", "value")
        cache.cache_sent_message(make_entry(1))

        entries = cache.get_all_sent_messages(10)

        assert [e.message_id for e in entries] == [1]

    def test_skips_undecodable_entries(self, cache, redis_client):
        redis_client.set(SENT_MESSAGE_KEY.format(id=99), "{not json")
        redis_client.set(SENT_MESSAGE_KEY.format(id=98), '{"message_id": 98}')
        cache.cache_sent_message(make_entry(1))

        entries = cache.get_all_sent_messages(10)

        assert [e.message_id for e in entries] == [1]

    def test_expired_entries_are_not_returned(self, cache, redis_client):
        cache.cache_sent_message(make_entry(1))
        cache.cache_sent_message(make_entry(2))
        redis_client.delete(SENT_MESSAGE_KEY.format(id=2))

        entries = cache.get_all_sent_messages(10)

        assert [e.message_id for e in entries] == [1]

    def test_key_reported_twice_by_scan_is_read_once(self, repeating_scan_redis_client):
        cache = MessageCacheRepository(repeating_scan_redis_client)
        cache.cache_sent_message(make_entry(1))
        cache.cache_sent_message(make_entry(2))

        entries = cache.get_all_sent_messages(4)

        assert sorted(e.message_id for e in entries) == [1, 2]

    def test_read_failure_raises_cache_error(self, broken_redis_client):
        cache = MessageCacheRepository(broken_redis_client)

        with pytest.raises(CacheError):
            cache.get_all_sent_messages(10)


class TestPing:

    def test_ping(self, cache, broken_redis_client):
        assert cache.ping() is True
        assert MessageCacheRepository(broken_redis_client).ping() is False
