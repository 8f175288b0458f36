"""
CronJob Controller - Redis Lease Lock

Lease used for leader election between controller replicas.
Uses atomic operations so at most one replica holds a lease at a time.

Key features:
- SET NX EX for atomic acquire
- Lua scripts for atomic renew/release with holder verification
- Holder identity is hostname plus a random suffix, so a restarted pod
  never mistakes an old lease for its own
"""

import socket
import uuid
from typing import Optional

import redis.asyncio as aioredis
import structlog

from config import get_settings

logger = structlog.get_logger(__name__)


# Extend the TTL only if we still hold the lease
# KEYS[1] = lease key, ARGV[1] = holder identity, ARGV[2] = TTL seconds
# Returns 1 if renewed, 0 otherwise
RENEW_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('EXPIRE', KEYS[1], ARGV[2])
    return 1
end
return 0
"""

# Delete the lease only if we still hold it
# KEYS[1] = lease key, ARGV[1] = holder identity
# Returns 1 if released, 0 otherwise
RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    redis.call('DEL', KEYS[1])
    return 1
end
return 0
"""


def default_identity() -> str:
    """Holder identity for this process."""
    return f"{socket.gethostname()}_{uuid.uuid4().hex[:8]}"


class RedisLock:
    """
    Lease lock stored in Redis.

    Usage:
        lock = RedisLock(redis_url)

        if await lock.acquire("cronjob-controller-leader", ttl_seconds=15):
            try:
                ...  # lead, renewing every ttl/3
                await lock.renew("cronjob-controller-leader", ttl_seconds=15)
            finally:
                await lock.release("cronjob-controller-leader")
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        identity: Optional[str] = None,
    ):
        """
        Initialize the lease lock.

        Args:
            redis_url: Redis connection URL. Defaults to the redis_url setting.
            identity: Holder identity. Defaults to hostname plus random suffix.
        """
        self.redis_url = redis_url if redis_url is not None else get_settings().redis_url
        self.identity = identity or default_identity()
        self._client: Optional[aioredis.Redis] = None
        self._renew_script = None
        self._release_script = None

    async def _get_client(self) -> Optional[aioredis.Redis]:
        """Get or create Redis client."""
        if not self.redis_url:
            return None

        if self._client is None:
            try:
                self._client = aioredis.from_url(self.redis_url, decode_responses=True)
                self._renew_script = self._client.register_script(RENEW_SCRIPT)
                self._release_script = self._client.register_script(RELEASE_SCRIPT)
            except Exception as e:
                logger.error("lease_connection_failed", error=str(e))
                return None

        return self._client

    async def is_available(self) -> bool:
        """Check if Redis is reachable."""
        if not self.redis_url:
            return False

        try:
            client = await self._get_client()
            if client:
                await client.ping()
                return True
        except Exception as e:
            logger.warning("lease_backend_unavailable", error=str(e))

        return False

    async def acquire(self, lease_key: str, ttl_seconds: int = 15) -> bool:
        """
        Try to take the lease.

        Returns:
            True if this identity now holds the lease
        """
        client = await self._get_client()
        if not client:
            logger.warning("lease_acquire_no_client", lease_key=lease_key)
            return False

        try:
            result = await client.set(lease_key, self.identity, nx=True, ex=ttl_seconds)
        except Exception as e:
            logger.error("lease_acquire_error", lease_key=lease_key, error=str(e))
            return False

        acquired = result is True
        logger.debug(
            "lease_acquire_attempt",
            lease_key=lease_key,
            acquired=acquired,
            identity=self.identity,
            ttl_seconds=ttl_seconds,
        )
        return acquired

    async def renew(self, lease_key: str, ttl_seconds: int = 15) -> bool:
        """
        Extend the lease TTL.

        Returns:
            True if renewed, False if not the holder or on error
        """
        client = await self._get_client()
        if not client or not self._renew_script:
            logger.warning("lease_renew_no_client", lease_key=lease_key)
            return False

        try:
            result = await self._renew_script(keys=[lease_key], args=[self.identity, ttl_seconds])
        except Exception as e:
            logger.error("lease_renew_error", lease_key=lease_key, error=str(e))
            return False

        renewed = result == 1
        if not renewed:
            logger.warning("lease_renew_not_holder", lease_key=lease_key, identity=self.identity)
        return renewed

    async def release(self, lease_key: str) -> bool:
        """
        Give the lease up.

        Returns:
            True if released, False if not the holder or on error
        """
        client = await self._get_client()
        if not client or not self._release_script:
            logger.warning("lease_release_no_client", lease_key=lease_key)
            return False

        try:
            result = await self._release_script(keys=[lease_key], args=[self.identity])
        except Exception as e:
            logger.error("lease_release_error", lease_key=lease_key, error=str(e))
            return False

        released = result == 1
        if released:
            logger.info("lease_released", lease_key=lease_key, identity=self.identity)
        else:
            logger.warning("lease_release_not_holder", lease_key=lease_key, identity=self.identity)
        return released

    async def get_holder(self, lease_key: str) -> Optional[str]:
        """Identity currently holding the lease, or None."""
        client = await self._get_client()
        if not client:
            return None

        try:
            return await client.get(lease_key)
        except Exception as e:
            logger.error("lease_get_holder_error", lease_key=lease_key, error=str(e))
            return None

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None
            self._renew_script = None
            self._release_script = None
