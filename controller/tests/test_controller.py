"""
Tests for the CronJob controller loop.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from services.cluster import ClusterError, InMemoryClusterClient, ResourceExpiredError
from services.cronjob.clock import FakeClock
from services.cronjob.types import CronJob, CronJobSpec, NamespacedName, ObjectMeta
from services.locking.leader import LeaderElector
from services.reconciler import CronJobController, CronJobReconciler, Request, Result

KEY = NamespacedName("default", "nightly")


def make_cronjob(name="nightly", namespace="default") -> CronJob:
    return CronJob(
        metadata=ObjectMeta(name=name, namespace=namespace),
        spec=CronJobSpec(schedule="*/1 * * * *"),
    )


class RecordingReconciler(CronJobReconciler):
    """Reconciler that remembers every request it was given."""

    def __init__(self, client, clock):
        super().__init__(client=client, clock=clock)
        self.requests: list[Request] = []

    async def reconcile(self, request: Request) -> Result:
        self.requests.append(request)
        return await super().reconcile(request)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll predicate until it holds or timeout passes."""
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met in time")


def make_controller(reconcile_result=None, side_effect=None, **kwargs):
    clock = FakeClock(start_time=datetime(2024, 1, 1, tzinfo=timezone.utc))
    reconciler = MagicMock()
    reconciler.client = InMemoryClusterClient()
    reconciler.clock = clock
    reconciler.reconcile = AsyncMock(return_value=reconcile_result or Result(), side_effect=side_effect)
    controller = CronJobController(reconciler=reconciler, namespace="", **kwargs)
    return controller, reconciler, clock


class TestProcessNextItem:
    """Tests for a single dispatch step."""

    @pytest.mark.asyncio
    async def test_success_forgets_key(self):
        controller, reconciler, _ = make_controller()
        await controller.enqueue(KEY)

        assert await controller.process_next_item() is True

        reconciler.reconcile.assert_awaited_once_with(Request(KEY))
        assert controller.queue.num_requeues(KEY) == 0
        assert len(controller.queue) == 0
        assert controller.queue.processing == frozenset()
        assert controller.total_reconciles == 1

    @pytest.mark.asyncio
    async def test_error_requeues_with_backoff(self):
        """A failed reconcile is retried after an exponential delay."""
        controller, _, clock = make_controller(side_effect=ClusterError("connection refused"))
        await controller.enqueue(KEY)

        await controller.process_next_item()
        await wait_until(lambda: len(controller.queue) == 1)

        assert controller.total_errors == 1
        assert controller.last_error == "connection refused"
        assert controller.queue.num_requeues(KEY) == 1
        assert clock.sleep_calls == [pytest.approx(0.005)]

    @pytest.mark.asyncio
    async def test_repeated_errors_grow_delay(self):
        controller, _, clock = make_controller(side_effect=ClusterError("down"))
        await controller.enqueue(KEY)

        for _ in range(3):
            await controller.process_next_item()
            await wait_until(lambda: len(controller.queue) == 1)

        assert clock.sleep_calls == [pytest.approx(0.005), pytest.approx(0.01), pytest.approx(0.02)]

    @pytest.mark.asyncio
    async def test_success_after_error_resets_backoff(self):
        controller, reconciler, _ = make_controller()
        reconciler.reconcile.side_effect = [ClusterError("blip"), Result()]
        await controller.enqueue(KEY)

        await controller.process_next_item()
        await wait_until(lambda: len(controller.queue) == 1)
        await controller.process_next_item()

        assert controller.queue.num_requeues(KEY) == 0

    @pytest.mark.asyncio
    async def test_requeue_after(self):
        """requeue_after schedules another pass on the clock."""
        controller, _, clock = make_controller(reconcile_result=Result(requeue_after=30))
        await controller.enqueue(KEY)

        await controller.process_next_item()
        await wait_until(lambda: len(controller.queue) == 1)

        assert clock.sleep_calls == [30]
        assert controller.total_requeues == 1
        assert controller.queue.num_requeues(KEY) == 0

    @pytest.mark.asyncio
    async def test_requeue(self):
        controller, _, clock = make_controller(reconcile_result=Result(requeue=True))
        await controller.enqueue(KEY)

        await controller.process_next_item()
        await wait_until(lambda: len(controller.queue) == 1)

        assert controller.queue.num_requeues(KEY) == 1

    @pytest.mark.asyncio
    async def test_timeout_is_an_error(self):
        """A reconcile that overruns its timeout is cancelled and retried."""

        async def slow(request):
            await asyncio.sleep(10)

        controller, _, _ = make_controller(side_effect=slow, reconcile_timeout=0.01)
        await controller.enqueue(KEY)

        await asyncio.wait_for(controller.process_next_item(), timeout=2)

        assert controller.total_errors == 1
        assert controller.queue.num_requeues(KEY) == 1

    @pytest.mark.asyncio
    async def test_returns_false_after_shutdown(self):
        controller, reconciler, _ = make_controller()
        await controller.queue.shutdown()

        assert await controller.process_next_item() is False
        reconciler.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stats(self):
        controller, _, _ = make_controller(side_effect=ClusterError("nope"))
        await controller.enqueue(KEY)
        await controller.process_next_item()

        stats = controller.get_stats()

        assert stats["running"] is False
        assert stats["leader"] is None
        assert stats["namespace"] == "*"
        assert stats["total_reconciles"] == 1
        assert stats["total_errors"] == 1
        assert stats["last_error"] == "nope"


class TestControllerRun:
    """Tests for the full watch and worker loop."""

    def setup_method(self):
        self.clock = FakeClock(start_time=datetime(2024, 1, 1, tzinfo=timezone.utc))
        self.client = InMemoryClusterClient()
        self.reconciler = RecordingReconciler(self.client, self.clock)

    def _controller(self, **kwargs):
        kwargs.setdefault("max_concurrent_reconciles", 2)
        kwargs.setdefault("watch_retry_seconds", 5)
        return CronJobController(
            reconciler=self.reconciler,
            client=self.client,
            clock=self.clock,
            namespace="",
            **kwargs,
        )

    def _reconciled(self) -> list[NamespacedName]:
        return [request.namespaced_name for request in self.reconciler.requests]

    @pytest.mark.asyncio
    async def test_initial_list_and_watch(self):
        """Existing CronJobs and later events are all reconciled."""
        self.client.apply_cronjob(make_cronjob("existing"))
        controller = self._controller()
        task = asyncio.create_task(controller.start())

        await wait_until(lambda: NamespacedName("default", "existing") in self._reconciled())
        assert controller.running
        assert controller.last_sync_at == self.clock.now()

        self.client.apply_cronjob(make_cronjob("added"))
        await wait_until(lambda: NamespacedName("default", "added") in self._reconciled())

        await controller.stop()
        await asyncio.wait_for(task, timeout=2)

        assert not controller.running
        assert self.client.mutations == []

    @pytest.mark.asyncio
    async def test_deleted_event_is_reconciled(self):
        """DELETED events reach the reconciler, which tolerates the absence."""
        created = self.client.apply_cronjob(make_cronjob())
        controller = self._controller()
        task = asyncio.create_task(controller.start())
        await wait_until(lambda: len(self.reconciler.requests) == 1)

        self.client.remove_cronjob(created.key)
        await wait_until(lambda: len(self.reconciler.requests) == 2)

        await controller.stop()
        await asyncio.wait_for(task, timeout=2)
        assert controller.total_errors == 0

    @pytest.mark.asyncio
    async def test_watch_error_retries_on_clock(self):
        self.client.fail_next("list_cronjobs", ClusterError("apiserver unavailable"))
        self.client.apply_cronjob(make_cronjob())
        controller = self._controller()
        task = asyncio.create_task(controller.start())

        await wait_until(lambda: len(self.reconciler.requests) == 1)

        assert controller.total_watch_errors == 1
        assert 5 in self.clock.sleep_calls

        await controller.stop()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_expired_watch_relists(self):
        self.client.fail_next("watch_cronjobs", ResourceExpiredError("too old"))
        self.client.apply_cronjob(make_cronjob())
        controller = self._controller()
        task = asyncio.create_task(controller.start())

        await wait_until(lambda: self.client.calls.count("list_cronjobs") == 2)

        assert controller.total_watch_errors == 0

        await controller.stop()
        await asyncio.wait_for(task, timeout=2)

    @pytest.mark.asyncio
    async def test_cancel_stops(self):
        controller = self._controller()
        task = asyncio.create_task(controller.start())
        await wait_until(lambda: controller.last_sync_at is not None)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not controller.running

    @pytest.mark.asyncio
    async def test_lease_loss_stops_controller(self):
        """Renewals failing past the lease deadline stop the controller and mark it lost."""
        lock = MagicMock()
        lock.identity = "replica-a"
        lock.acquire = AsyncMock(return_value=True)
        lock.renew = AsyncMock(return_value=False)
        lock.release = AsyncMock(return_value=True)
        elector = LeaderElector(lock=lock, lease_key="lease", lease_seconds=15, clock=self.clock)
        controller = self._controller(elector=elector)

        await asyncio.wait_for(controller.start(), timeout=2)

        assert not controller.running
        assert controller.lost_leadership
        assert controller.get_stats()["lost_leadership"] is True
        assert not elector.is_leader
        assert lock.renew.await_count == 2
        lock.renew.assert_awaited_with("lease", ttl_seconds=15)
        lock.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_is_not_lease_loss(self):
        controller = self._controller()
        task = asyncio.create_task(controller.start())
        await wait_until(lambda: controller.last_sync_at is not None)

        await controller.stop()
        await asyncio.wait_for(task, timeout=2)

        assert not controller.lost_leadership

    @pytest.mark.asyncio
    async def test_malformed_cronjob_does_not_block_others(self):
        """One undecodable CronJob fails on its own key; the rest still reconcile."""
        self.client.apply_cronjob(make_cronjob("good"))
        odd_policy = make_cronjob("odd-policy").to_dict()
        odd_policy["spec"]["concurrencyPolicy"] = "Sometimes"
        self.client.apply_cronjob(odd_policy)
        broken = make_cronjob("broken").to_dict()
        broken["status"] = {"lastScheduleTime": "garbage"}
        self.client.apply_cronjob(broken)
        controller = self._controller()
        task = asyncio.create_task(controller.start())

        expected = {NamespacedName("default", n) for n in ("good", "odd-policy", "broken")}
        await wait_until(lambda: expected <= set(self._reconciled()))
        await wait_until(lambda: controller.total_errors >= 1)

        assert controller.total_watch_errors == 0
        assert "garbage" in controller.last_error

        await controller.stop()
        await asyncio.wait_for(task, timeout=2)
