"""
CronJob Controller - Leader Election

Only the replica holding the lease runs the controller. The lease is
renewed every third of its TTL. Once renewals have failed for long enough
that the lease may have expired, another replica may already be leading,
so the on_lost callback stops this one.
"""

from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from services.cronjob.clock import Clock, SystemClock
from services.locking.redis_lock import RedisLock

logger = structlog.get_logger()


class LeaderElector:
    """Acquires and keeps a lease for the controller."""

    def __init__(
        self,
        lock: RedisLock,
        lease_key: str,
        lease_seconds: int = 15,
        clock: Optional[Clock] = None,
        on_lost: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """
        Initialize leader elector.

        Args:
            lock: Lease lock implementation
            lease_key: Lease name shared by all replicas
            lease_seconds: Lease TTL
            clock: Clock implementation (defaults to SystemClock)
            on_lost: Awaited once when the lease is lost
        """
        self.lock = lock
        self.lease_key = lease_key
        self.lease_seconds = lease_seconds
        self.clock = clock or SystemClock()
        self.on_lost = on_lost

        self.is_leader = False
        self.total_attempts = 0
        self.last_renewed_at: Optional[datetime] = None

    @property
    def retry_period(self) -> float:
        return self.lease_seconds / 3

    async def acquire(self) -> None:
        """Block until this replica holds the lease."""
        while not self.is_leader:
            self.total_attempts += 1
            if await self.lock.acquire(self.lease_key, ttl_seconds=self.lease_seconds):
                self.is_leader = True
                self.last_renewed_at = self.clock.now()
                logger.info(
                    "leader_elected",
                    lease_key=self.lease_key,
                    identity=self.lock.identity,
                    attempts=self.total_attempts,
                )
                return

            holder = await self.lock.get_holder(self.lease_key)
            logger.info(
                "leader_lease_held_elsewhere",
                lease_key=self.lease_key,
                current_holder=holder,
                retry_in=self.retry_period,
            )
            await self.clock.sleep(self.retry_period)

    async def keep_alive(self) -> None:
        """
        Renew the lease until it is lost or released.

        A failed renewal is retried while the last successful one still
        covers the next attempt. Leadership ends once that deadline passes.
        """
        while self.is_leader:
            await self.clock.sleep(self.retry_period)
            if not self.is_leader:
                return
            if await self.lock.renew(self.lease_key, ttl_seconds=self.lease_seconds):
                self.last_renewed_at = self.clock.now()
                continue

            elapsed = (self.clock.now() - self.last_renewed_at).total_seconds()
            if elapsed + self.retry_period < self.lease_seconds:
                logger.warning(
                    "leader_renew_failed",
                    lease_key=self.lease_key,
                    seconds_since_renew=elapsed,
                    retry_in=self.retry_period,
                )
                continue

            self.is_leader = False
            logger.error("leader_lease_lost", lease_key=self.lease_key, identity=self.lock.identity)
            if self.on_lost is not None:
                await self.on_lost()
            return

    async def release(self) -> None:
        """Give up leadership."""
        if not self.is_leader:
            return
        self.is_leader = False
        await self.lock.release(self.lease_key)
