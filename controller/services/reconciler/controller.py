"""
CronJob Controller - Controller Loop

Lists and watches CronJobs, turns every notification into a keyed request
on the work queue, and runs workers that invoke the reconciler.

Delivery is at-least-once: the same key may be reconciled many times, and
a DELETED event is enqueued like any other (the reconciler tolerates the
missing object). The queue never hands one key to two workers at once.
"""

import asyncio
from datetime import datetime
from typing import Optional

import structlog

from config import get_settings
from services.cluster.base import ClusterClient, ResourceExpiredError
from services.cronjob.clock import Clock, SystemClock
from services.cronjob.types import NamespacedName, format_time
from services.locking.leader import LeaderElector
from services.reconciler.reconciler import CronJobReconciler, Request
from services.reconciler.workqueue import ExponentialBackoffRateLimiter, WorkQueue

logger = structlog.get_logger()


class CronJobController:
    """
    Watch-driven controller for CronJobs.

    Runs one watch task and max_concurrent_reconciles worker tasks until
    stop() is called or leadership is lost.
    """

    def __init__(
        self,
        reconciler: CronJobReconciler,
        client: Optional[ClusterClient] = None,
        clock: Optional[Clock] = None,
        queue: Optional[WorkQueue] = None,
        max_concurrent_reconciles: Optional[int] = None,
        reconcile_timeout: Optional[float] = None,
        namespace: Optional[str] = None,
        watch_retry_seconds: Optional[float] = None,
        elector: Optional[LeaderElector] = None,
    ):
        """
        Initialize controller.

        Args:
            reconciler: Reconciler invoked for every key
            client: Cluster client to watch (defaults to the reconciler's)
            clock: Clock implementation (defaults to the reconciler's)
            queue: Work queue (defaults to one with configured backoff)
            max_concurrent_reconciles: Worker count (defaults to config)
            reconcile_timeout: Seconds before a reconcile is cancelled
            namespace: Namespace to watch; None or "" watches all
            watch_retry_seconds: Delay before re-listing after a watch error
            elector: Leader elector; when set, work starts only once elected
        """
        settings = get_settings()

        self.reconciler = reconciler
        self.client = client or reconciler.client
        self.clock = clock or reconciler.clock or SystemClock()
        self.queue = queue or WorkQueue(
            clock=self.clock,
            rate_limiter=ExponentialBackoffRateLimiter(
                base_delay=settings.backoff_base_seconds,
                max_delay=settings.backoff_max_seconds,
            ),
        )
        self.max_concurrent_reconciles = max_concurrent_reconciles or settings.max_concurrent_reconciles
        self.reconcile_timeout = reconcile_timeout or settings.reconcile_timeout_seconds
        self.namespace = (namespace if namespace is not None else settings.watch_namespace) or None
        self.watch_retry_seconds = watch_retry_seconds or settings.watch_retry_seconds
        self.elector = elector
        if elector is not None and elector.on_lost is None:
            elector.on_lost = self._on_lease_lost

        self._running = False
        self._stopped = asyncio.Event()
        self.lost_leadership = False
        self._tasks: list[asyncio.Task] = []

        # Stats
        self.total_reconciles = 0
        self.total_errors = 0
        self.total_requeues = 0
        self.total_events = 0
        self.total_watch_errors = 0
        self.last_sync_at: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the controller and block until it stops."""
        if self._running:
            logger.warning("controller_already_running")
            return

        self._running = True
        self._stopped.clear()

        if self.elector is not None:
            await self.elector.acquire()
            self._tasks.append(asyncio.create_task(self.elector.keep_alive(), name="leader_keep_alive"))

        self._tasks.append(asyncio.create_task(self._watch_loop(), name="cronjob_watch"))
        for i in range(self.max_concurrent_reconciles):
            self._tasks.append(asyncio.create_task(self._worker(i), name=f"cronjob_worker_{i}"))

        logger.info(
            "controller_started",
            namespace=self.namespace or "*",
            workers=self.max_concurrent_reconciles,
            reconcile_timeout=self.reconcile_timeout,
        )

        try:
            await self._stopped.wait()
        except asyncio.CancelledError:
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop watching, let workers finish their current key, then exit."""
        if not self._running:
            return
        logger.info("controller_stop_requested")
        self._running = False

        await self.queue.shutdown()

        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            if not task.get_name().startswith("cronjob_worker_"):
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self.elector is not None:
            await self.elector.release()

        self._stopped.set()
        logger.info("controller_stopped")

    async def _on_lease_lost(self) -> None:
        """Stop for good; the liveness probe then fails so the process is restarted."""
        self.lost_leadership = True
        logger.error("controller_lease_lost")
        await self.stop()

    async def enqueue(self, key: NamespacedName) -> None:
        """Request a reconcile of key."""
        await self.queue.add(key)

    async def process_next_item(self) -> bool:
        """
        Take one key off the queue and reconcile it.

        Returns:
            False once the queue has shut down, True otherwise
        """
        key = await self.queue.get()
        if key is None:
            return False
        try:
            await self._reconcile_key(key)
        finally:
            await self.queue.done(key)
        return True

    async def _worker(self, worker_id: int) -> None:
        logger.debug("controller_worker_started", worker=worker_id)
        while await self.process_next_item():
            pass
        logger.debug("controller_worker_stopped", worker=worker_id)

    async def _reconcile_key(self, key: NamespacedName) -> None:
        self.total_reconciles += 1
        try:
            result = await asyncio.wait_for(
                self.reconciler.reconcile(Request(key)),
                timeout=self.reconcile_timeout,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.total_errors += 1
            self.last_error = str(e) or type(e).__name__
            delay = self.queue.add_rate_limited(key)
            logger.error(
                "reconcile_failed",
                key=str(key),
                error=self.last_error,
                retry_in=delay,
                failures=self.queue.num_requeues(key),
            )
            return

        if result.requeue_after:
            self.total_requeues += 1
            self.queue.forget(key)
            self.queue.add_after(key, result.requeue_after)
        elif result.requeue:
            self.total_requeues += 1
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)

    async def _watch_loop(self) -> None:
        """List, then watch from the list's resource version, forever."""
        while self._running:
            try:
                listing = await self.client.list_cronjobs(self.namespace)
                for cronjob in listing.items:
                    await self.enqueue(cronjob.key)
                self.last_sync_at = self.clock.now()
                logger.info("cronjob_list_synced", count=len(listing.items), resource_version=listing.resource_version)

                resource_version = listing.resource_version
                while self._running:
                    async for event in self.client.watch_cronjobs(self.namespace, resource_version):
                        self.total_events += 1
                        resource_version = event.cronjob.metadata.resource_version or resource_version
                        logger.debug("cronjob_event", type=event.type.value, key=str(event.cronjob.key))
                        await self.enqueue(event.cronjob.key)
            except ResourceExpiredError:
                logger.info("cronjob_watch_expired", action="relisting")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.total_watch_errors += 1
                logger.error("cronjob_watch_failed", error=str(e), retry_in=self.watch_retry_seconds)
                await self.clock.sleep(self.watch_retry_seconds)

    def get_stats(self) -> dict:
        """Get cumulative stats."""
        return {
            "running": self._running,
            "leader": self.elector.is_leader if self.elector is not None else None,
            "lost_leadership": self.lost_leadership,
            "namespace": self.namespace or "*",
            "workers": self.max_concurrent_reconciles,
            "queue_depth": len(self.queue),
            "total_reconciles": self.total_reconciles,
            "total_errors": self.total_errors,
            "total_requeues": self.total_requeues,
            "total_events": self.total_events,
            "total_watch_errors": self.total_watch_errors,
            "last_sync_at": format_time(self.last_sync_at) if self.last_sync_at else None,
            "last_error": self.last_error,
        }
