"""
CronJob Controller - Reconciler

Moves the observed state of a CronJob toward its desired state.

Reconcile is level-triggered: a request says only "this CronJob may have
changed". Existence and content are established by a fresh fetch on every
call, and every step must be safe to repeat.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog

from services.cluster.base import ClusterClient, ClusterError, ConflictError, NotFoundError
from services.cronjob.clock import Clock, SystemClock
from services.cronjob.marker import (
    build_job_for_cronjob,
    find_job_for_scheduled_time,
    format_scheduled_time,
    get_scheduled_time_for_job,
)
from services.cronjob.types import CronJob, Job, NamespacedName, format_time, parse_time

logger = structlog.get_logger()


@dataclass(frozen=True)
class Request:
    """A reconciliation request. Carries the identifier and nothing else."""
    namespaced_name: NamespacedName

    @property
    def namespace(self) -> str:
        return self.namespaced_name.namespace

    @property
    def name(self) -> str:
        return self.namespaced_name.name

    def __str__(self) -> str:
        return str(self.namespaced_name)


@dataclass(frozen=True)
class Result:
    """
    Outcome of a reconcile.

    An empty Result means no further action is needed now. requeue_after
    asks for another pass after the given number of seconds; requeue asks
    for one with the usual backoff.
    """
    requeue: bool = False
    requeue_after: Optional[float] = None

    @property
    def is_zero(self) -> bool:
        return not self.requeue and not self.requeue_after


class CronJobReconciler:
    """
    Reconciler for CronJob resources.

    Errors other than not-found propagate unmodified; retry and backoff
    belong to the caller.
    """

    def __init__(
        self,
        client: Optional[ClusterClient] = None,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize reconciler.

        Args:
            client: Shared cluster client (defaults to singleton)
            clock: Clock implementation (defaults to SystemClock)
        """
        if client is None:
            from services.cluster import get_cluster_client
            client = get_cluster_client()
        self.client = client
        self.clock = clock or SystemClock()

    async def reconcile(self, request: Request) -> Result:
        """
        Reconcile one CronJob.

        Returns:
            Result() when nothing more is needed, including when the CronJob
            no longer exists

        Raises:
            ClusterError: If the fetch fails for any reason but not-found
        """
        log = logger.bind(namespace=request.namespace, name=request.name)

        try:
            cronjob = await self.client.get_cronjob(request.namespaced_name)
        except NotFoundError:
            # Deleted after the event was emitted, or the delete was the event.
            # A requeue cannot fix it; the next notification will.
            log.debug("cronjob_not_found")
            return Result()
        except ClusterError as e:
            log.error("cronjob_fetch_failed", error=str(e), status=e.status)
            raise

        return await self._converge(cronjob)

    async def _converge(self, cronjob: CronJob) -> Result:
        """Apply the delta between desired and observed state."""
        # Only status and children may ever be written from here, never spec.
        logger.debug(
            "cronjob_observed",
            namespace=cronjob.namespace,
            name=cronjob.name,
            resource_version=cronjob.metadata.resource_version,
            active=len(cronjob.status.active),
            observed_at=format_time(self.clock.now()),
        )
        return Result()

    async def ensure_job_for_scheduled_time(self, cronjob: CronJob, scheduled_time: datetime) -> Job:
        """
        Make sure exactly one child Job exists for a scheduled tick.

        Existing children are scanned for the scheduled-time marker first,
        so a redelivered request or a retry after a crash creates nothing.

        Returns:
            The existing or newly created Job

        Raises:
            ValueError: If the CronJob has no uid, so its children cannot be told apart
            InvalidMarkerError: If a child carries a malformed marker
            ConflictError: If the Job name is taken by a Job this CronJob
                did not create for the tick
            ClusterError: On cluster access failures
        """
        if not cronjob.uid:
            raise ValueError(f"cronjob {cronjob.key} has no uid; cannot select its Jobs")

        marker = format_scheduled_time(scheduled_time)
        log = logger.bind(namespace=cronjob.namespace, name=cronjob.name, scheduled_at=marker)

        children = await self.client.list_jobs(cronjob.namespace, owner_uid=cronjob.uid)
        existing = find_job_for_scheduled_time(children, scheduled_time)
        if existing is not None:
            log.debug("job_for_schedule_exists", job=existing.name)
            return existing

        job = build_job_for_cronjob(cronjob, scheduled_time)
        try:
            created = await self.client.create_job(job)
        except ConflictError:
            # The name is derived from the tick; only our own marked child
            # for this tick counts as already created
            existing = await self.client.get_job(job.key)
            ours = existing.is_owned_by(cronjob.uid)
            if not ours or get_scheduled_time_for_job(existing) != parse_time(marker):
                log.error("job_name_taken", job=job.name)
                raise ConflictError(f"job {job.key} exists but was not created by {cronjob.key} for {marker}")
            log.info("job_for_schedule_already_created", job=job.name)
            return existing

        log.info("job_for_schedule_created", job=created.name)
        return created
