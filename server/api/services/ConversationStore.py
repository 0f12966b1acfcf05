"""Short-term per-user conversation memory on top of the Redis cache."""

from datetime import datetime, timezone

from shared.clients.cache.CacheClientRedis import CacheClientRedis
from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import ConversationHistory, ConversationMessage, MessageRole


class ConversationStore:
    """Keeps the last CONVERSATION_MAX_MESSAGES turns of each user.

    Every write resets the expiry to CONVERSATION_TTL_SECONDS, so a conversation
    disappears after that long without activity.
    """

    KEY_PREFIX = "conversation"

    def __init__(self, helper_config: HelperConfig, cache: CacheClientRedis) -> None:
        self.logging = helper_config.get_logger()
        self._cache = cache
        self.ttl_ms = int(helper_config.get_float_val("CONVERSATION_TTL_SECONDS", default=1800) * 1000)
        self.max_messages = helper_config.get_int_val("CONVERSATION_MAX_MESSAGES", default=20, minimum=1)

    def _key(self, user_id: str) -> str:
        return f"{self.KEY_PREFIX}:{user_id}"

    async def _load(self, user_id: str) -> ConversationHistory | None:
        raw = await self._cache.get(self._key(user_id))
        return ConversationHistory.model_validate(raw) if raw else None

    async def get(self, user_id: str) -> ConversationHistory | None:
        """Current history of a user, or None. Never raises."""
        try:
            return await self._load(user_id)
        except Exception as exc:
            self.logging.warning("Could not load conversation of user %s, continuing without memory: %s", user_id, exc)
            return None

    async def append(self, user_id: str, role: MessageRole, content: str) -> ConversationHistory:
        return await self.append_many(user_id, [(role, content)])

    async def append_many(self, user_id: str, turns: list[tuple[MessageRole, str]]) -> ConversationHistory:
        """Append turns, trim to the newest max_messages and rewrite with a fresh TTL.

        Raises:
            Exception: If the cache read or write fails. The stored history is left untouched.
        """
        now = datetime.now(timezone.utc)
        history = await self._load(user_id) or ConversationHistory(user_id=user_id, created_at=now, updated_at=now)
        for role, content in turns:
            history.messages.append(ConversationMessage(role=role, content=content, timestamp=now))
        history.messages = history.messages[-self.max_messages:]
        history.updated_at = now
        await self._cache.set(self._key(user_id), history.model_dump(mode="json"), ttl_ms=self.ttl_ms)
        return history

    async def clear(self, user_id: str) -> None:
        await self._cache.delete(self._key(user_id))
