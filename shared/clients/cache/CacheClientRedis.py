import json
from typing import Any

import redis.asyncio as redis

from shared.helper.HelperConfig import HelperConfig


class CacheClientRedis:
    """JSON key/value cache on Redis with millisecond TTLs."""

    def __init__(self, helper_config: HelperConfig, client: redis.Redis | None = None):
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self.redis_url = helper_config.get_string_val("REDIS_URL", default="redis://localhost:6379/0")

        # a pre-built client (e.g. fakeredis in tests) is used as-is
        self._client: redis.Redis | None = client

    ##########################################
    ############ CORE REQUESTS ###############
    ##########################################

    async def boot(self) -> None:
        """Connect to Redis unless a client was injected."""
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def get_client(self) -> redis.Redis:
        if self._client is None:
            raise RuntimeError("Redis cache not booted. Call boot() before making requests.")
        return self._client

    async def is_healthy(self) -> bool:
        try:
            return bool(await self.get_client().ping())
        except Exception as exc:
            self.logging.error("Redis health check failed: %s", exc)
            return False

    ##########################################
    ############### REQUESTS #################
    ##########################################

    async def get(self, key: str) -> Any | None:
        """Return the decoded value stored under key, or None if absent or expired."""
        raw = await self.get_client().get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        """Store a JSON-serialisable value; ttl_ms restarts the expiry window."""
        await self.get_client().set(key, json.dumps(value, default=str), px=ttl_ms)

    async def delete(self, key: str) -> None:
        await self.get_client().delete(key)
