"""
CronJob Controller - In-Memory Cluster Client

In-memory implementation for testing and development.
All data is lost when the process restarts.

Objects are stored in wire form and every read returns a fresh copy, so
callers see the same isolation they would get from the API server.
"""

import asyncio
import copy
from typing import AsyncIterator, Optional, Union
from uuid import uuid4

import structlog

from services.cluster.base import (
    ClusterClient,
    ConflictError,
    NotFoundError,
    ResourceExpiredError,
)
from services.cronjob.types import (
    CronJob,
    CronJobList,
    Job,
    NamespacedName,
    WatchEvent,
    WatchEventType,
)

logger = structlog.get_logger()

_STOP = object()

DEFAULT_HISTORY_LIMIT = 1000


class InMemoryClusterClient(ClusterClient):
    """
    In-memory cluster client.

    Features:
    - Resource versions and uids assigned like the API server
    - Every client call recorded in `calls`, every write in `mutations`
    - One-shot failure injection per operation via fail_next()
    - Watch subscribers fed by writes, with the last `history_limit` events
      kept for replay; older resource versions expire like a compacted etcd
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self.history_limit = max(1, history_limit)
        self._cronjobs: dict[NamespacedName, dict] = {}
        self._jobs: dict[NamespacedName, dict] = {}
        self._resource_version = 0
        self._compacted_before = 0
        self._failures: dict[str, list[Exception]] = {}
        self._watchers: list[tuple[Optional[str], asyncio.Queue]] = []
        self._history: list[tuple[int, WatchEventType, dict]] = []

        self.calls: list[str] = []
        self.mutations: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Test helpers (external actors, not recorded as controller writes)
    # ------------------------------------------------------------------

    def apply_cronjob(self, cronjob: Union[CronJob, dict]) -> CronJob:
        """Create or replace a CronJob as a user would."""
        if isinstance(cronjob, CronJob):
            data = cronjob.to_dict()
        else:
            # Stored as given, like the API server stores an unvalidated spec
            data = copy.deepcopy(cronjob)
            data.setdefault("metadata", {})
            data["metadata"]["namespace"] = data["metadata"].get("namespace") or "default"
        key = NamespacedName(data["metadata"]["namespace"], data["metadata"]["name"])

        existing = self._cronjobs.get(key)
        if existing is not None:
            data["metadata"]["uid"] = existing["metadata"]["uid"]
            event_type = WatchEventType.MODIFIED
        else:
            data["metadata"].setdefault("uid", str(uuid4()))
            event_type = WatchEventType.ADDED

        data["metadata"]["resourceVersion"] = self._next_resource_version()
        self._cronjobs[key] = data
        logger.debug("memory_cronjob_applied", key=str(key), event_type=event_type.value)
        self._notify(event_type, data)
        return CronJob.from_listing(data)

    def remove_cronjob(self, key: NamespacedName) -> None:
        """Delete a CronJob as a user would."""
        data = self._cronjobs.pop(key, None)
        if data is None:
            return
        data["metadata"]["resourceVersion"] = self._next_resource_version()
        self._notify(WatchEventType.DELETED, data)

    def add_job(self, job: Job) -> Job:
        """Seed a Job directly into the store."""
        data = job.to_dict()
        data["metadata"].setdefault("uid", str(uuid4()))
        data["metadata"]["resourceVersion"] = self._next_resource_version()
        self._jobs[job.key] = data
        return Job.from_dict(data)

    def fail_next(self, operation: str, error: Exception) -> None:
        """Make the next call to `operation` raise `error`."""
        self._failures.setdefault(operation, []).append(error)

    def compact(self) -> None:
        """Expire every resource version issued so far."""
        self._compacted_before = self._resource_version + 1
        self._history.clear()

    async def close_watches(self) -> None:
        """End every open watch stream."""
        for _, queue in self._watchers:
            await queue.put(_STOP)

    def clear(self):
        """Clear all state and end open watches (for testing)."""
        for _, queue in self._watchers:
            queue.put_nowait(_STOP)
        self._watchers.clear()
        self._cronjobs.clear()
        self._jobs.clear()
        self._failures.clear()
        self._history.clear()
        self._resource_version = 0
        self._compacted_before = 0
        self.calls.clear()
        self.mutations.clear()

    # ------------------------------------------------------------------
    # ClusterClient
    # ------------------------------------------------------------------

    async def get_cronjob(self, key: NamespacedName) -> CronJob:
        self._record("get_cronjob")
        data = self._cronjobs.get(key)
        if data is None:
            raise NotFoundError(f'cronjobs.batch.tutorial.kubebuilder.io "{key.name}" not found')
        return CronJob.from_dict(data)

    async def list_cronjobs(self, namespace: Optional[str] = None) -> CronJobList:
        self._record("list_cronjobs")
        items = [
            CronJob.from_listing(data)
            for key, data in sorted(self._cronjobs.items(), key=lambda kv: str(kv[0]))
            if namespace is None or key.namespace == namespace
        ]
        return CronJobList(items=items, resource_version=str(self._resource_version))

    async def watch_cronjobs(
        self,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> AsyncIterator[WatchEvent]:
        self._record("watch_cronjobs")
        if resource_version is not None and int(resource_version) < self._compacted_before:
            raise ResourceExpiredError(f"too old resource version: {resource_version}")

        queue: asyncio.Queue = asyncio.Queue()
        if resource_version is not None:
            # Replay what happened since the caller's list, before any await
            since = int(resource_version)
            for version, event_type, data in self._history:
                if version > since and (namespace is None or data["metadata"]["namespace"] == namespace):
                    queue.put_nowait(WatchEvent(type=event_type, cronjob=CronJob.from_listing(data)))
        watcher = (namespace, queue)
        self._watchers.append(watcher)
        try:
            while True:
                item = await queue.get()
                if item is _STOP:
                    return
                yield item
        finally:
            if watcher in self._watchers:
                self._watchers.remove(watcher)

    async def update_cronjob_status(self, cronjob: CronJob) -> CronJob:
        self._record("update_cronjob_status")
        key = cronjob.key
        data = self._cronjobs.get(key)
        if data is None:
            raise NotFoundError(f'cronjobs.batch.tutorial.kubebuilder.io "{key.name}" not found')
        if cronjob.metadata.resource_version and cronjob.metadata.resource_version != data["metadata"]["resourceVersion"]:
            raise ConflictError(
                f'Operation cannot be fulfilled on cronjobs "{key.name}": '
                "the object has been modified; please apply your changes to the latest version"
            )

        data["status"] = cronjob.status.to_dict()
        data["metadata"]["resourceVersion"] = self._next_resource_version()
        self.mutations.append(("update_cronjob_status", str(key)))
        self._notify(WatchEventType.MODIFIED, data)
        return CronJob.from_dict(data)

    async def list_jobs(self, namespace: str, owner_uid: Optional[str] = None) -> list[Job]:
        self._record("list_jobs")
        jobs = [
            Job.from_dict(data)
            for key, data in sorted(self._jobs.items(), key=lambda kv: str(kv[0]))
            if key.namespace == namespace
        ]
        if owner_uid is not None:
            jobs = [job for job in jobs if job.is_owned_by(owner_uid)]
        return jobs

    async def get_job(self, key: NamespacedName) -> Job:
        self._record("get_job")
        data = self._jobs.get(key)
        if data is None:
            raise NotFoundError(f'jobs.batch "{key.name}" not found')
        return Job.from_dict(data)

    async def create_job(self, job: Job) -> Job:
        self._record("create_job")
        key = job.key
        if key in self._jobs:
            raise ConflictError(f'jobs.batch "{key.name}" already exists')

        data = job.to_dict()
        data["metadata"]["uid"] = str(uuid4())
        data["metadata"]["resourceVersion"] = self._next_resource_version()
        self._jobs[key] = data
        self.mutations.append(("create_job", str(key)))
        logger.debug("memory_job_created", key=str(key))
        return Job.from_dict(data)

    async def delete_job(self, key: NamespacedName) -> None:
        self._record("delete_job")
        if self._jobs.pop(key, None) is None:
            raise NotFoundError(f'jobs.batch "{key.name}" not found')
        self.mutations.append(("delete_job", str(key)))

    # ------------------------------------------------------------------

    def _record(self, operation: str) -> None:
        self.calls.append(operation)
        pending = self._failures.get(operation)
        if pending:
            raise pending.pop(0)

    def _next_resource_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _notify(self, event_type: WatchEventType, data: dict) -> None:
        self._history.append((int(data["metadata"]["resourceVersion"]), event_type, copy.deepcopy(data)))
        if len(self._history) > self.history_limit:
            del self._history[: len(self._history) - self.history_limit]
            # Watches must resume from a version whose successors are all retained
            self._compacted_before = max(self._compacted_before, self._history[0][0] - 1)
        namespace = data["metadata"]["namespace"]
        for watch_namespace, queue in self._watchers:
            if watch_namespace is None or watch_namespace == namespace:
                queue.put_nowait(WatchEvent(type=event_type, cronjob=CronJob.from_listing(data)))
