import asyncio

import pytest

from server.api.services.ConversationStore import ConversationStore
from shared.models.conversation import MessageRole


class BrokenCache:
    async def get(self, key):
        raise ConnectionError("redis down")

    async def set(self, key, value, ttl_ms=None):
        raise ConnectionError("redis down")


class FlakyCache:
    """Wraps a cache and fails the next get calls."""

    def __init__(self, cache, failures: int = 1):
        self._cache = cache
        self.failures = failures

    async def get(self, key):
        if self.failures:
            self.failures -= 1
            raise ConnectionError("redis timeout")
        return await self._cache.get(key)

    async def set(self, key, value, ttl_ms=None):
        await self._cache.set(key, value, ttl_ms=ttl_ms)


class TestConversationStore:
    async def test_missing_user_has_no_history(self, conversation_store):
        assert await conversation_store.get("u-1") is None

    async def test_append_creates_history(self, conversation_store):
        await conversation_store.append("u-1", MessageRole.USER, "Mất điện ở đâu?")
        history = await conversation_store.get("u-1")
        assert history.user_id == "u-1"
        assert [(m.role, m.content) for m in history.messages] == [(MessageRole.USER, "Mất điện ở đâu?")]

    async def test_keeps_newest_turns(self, env, helper_config, cache):
        env.setenv("CONVERSATION_MAX_MESSAGES", "3")
        store = ConversationStore(helper_config, cache=cache)
        for i in range(4):
            await store.append("u-1", MessageRole.USER, f"m{i}")
        history = await store.get("u-1")
        assert [m.content for m in history.messages] == ["m1", "m2", "m3"]

    async def test_write_sets_idle_ttl(self, conversation_store, redis_client):
        await conversation_store.append("u-1", MessageRole.USER, "xin chào")
        ttl = await redis_client.pttl("conversation:u-1")
        assert 1_700_000 < ttl <= 1_800_000

    async def test_expired_conversation_is_absent(self, env, helper_config, cache):
        env.setenv("CONVERSATION_TTL_SECONDS", "0.05")
        store = ConversationStore(helper_config, cache=cache)
        await store.append("u-1", MessageRole.USER, "xin chào")
        assert await store.get("u-1") is not None
        await asyncio.sleep(0.2)
        assert await store.get("u-1") is None

    async def test_cache_failure_degrades_to_no_history(self, helper_config):
        store = ConversationStore(helper_config, cache=BrokenCache())
        assert await store.get("u-1") is None

    async def test_clear(self, conversation_store):
        await conversation_store.append("u-1", MessageRole.USER, "xin chào")
        await conversation_store.clear("u-1")
        assert await conversation_store.get("u-1") is None

    async def test_failed_read_does_not_overwrite_history(self, helper_config, cache):
        store = ConversationStore(helper_config, cache=cache)
        for i in range(4):
            await store.append("u-1", MessageRole.USER, f"m{i}")

        flaky = ConversationStore(helper_config, cache=FlakyCache(cache))
        with pytest.raises(ConnectionError):
            await flaky.append_many("u-1", [(MessageRole.USER, "q"), (MessageRole.ASSISTANT, "a")])

        history = await store.get("u-1")
        assert [m.content for m in history.messages] == ["m0", "m1", "m2", "m3"]

        await flaky.append_many("u-1", [(MessageRole.USER, "q"), (MessageRole.ASSISTANT, "a")])
        assert [m.content for m in (await store.get("u-1")).messages] == ["m0", "m1", "m2", "m3", "q", "a"]
