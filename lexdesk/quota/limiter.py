"""Once-per-period flags with Redis backend"""

from datetime import datetime
from typing import Optional, Set

import redis.asyncio as redis


class PeriodFlags:
    """Remembers that a quota event already fired in a billing period"""

    def __init__(self, ttl_seconds: int = 45 * 24 * 3600):
        self.redis_client: Optional[redis.Redis] = None
        self.ttl_seconds = ttl_seconds
        self._local: Set[str] = set()

    async def connect(self, redis_host: str = "localhost", redis_port: int = 6379):
        """Connect to Redis"""
        self.redis_client = await redis.from_url(
            f"redis://{redis_host}:{redis_port}/2",
            decode_responses=True,
        )

    async def disconnect(self):
        """Disconnect"""
        if self.redis_client:
            await self.redis_client.close()

    @staticmethod
    def key(tenant_id: str, period_start: datetime, flag: str) -> str:
        return f"quota_flag:{tenant_id}:{period_start.date().isoformat()}:{flag}"

    async def set_once(self, tenant_id: str, period_start: datetime, flag: str) -> bool:
        """
        Set the flag for this period

        Returns:
            True only for the call that set it
        """
        key = self.key(tenant_id, period_start, flag)

        if not self.redis_client:
            if key in self._local:
                return False
            self._local.add(key)
            return True

        created = await self.redis_client.set(key, "1", nx=True, ex=self.ttl_seconds)
        return bool(created)
