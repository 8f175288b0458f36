"""
CronJob Controller - Scheduled-Time Marker

Each child Job carries an annotation recording the scheduled tick it was
created for. The annotation is the idempotency key: before creating a Job
for tick T, existing children are scanned for marker T. The value is read
back from the children on every pass, never trusted from status alone.
"""

import copy
from datetime import datetime
from typing import Iterable, Optional

from services.cronjob.types import (
    API_GROUP,
    API_GROUP_VERSION,
    CRONJOB_KIND,
    CronJob,
    Job,
    ObjectMeta,
    OwnerReference,
    format_time,
    parse_time,
)


SCHEDULED_TIME_ANNOTATION = f"{API_GROUP}/scheduled-at"

# Job names end up in pod labels, which are limited to one DNS label
MAX_JOB_NAME_LENGTH = 63


class InvalidMarkerError(ValueError):
    """Raised when a scheduled-time marker cannot be parsed."""

    def __init__(self, value: str, job_name: Optional[str] = None):
        target = f" on job {job_name}" if job_name else ""
        super().__init__(f"invalid {SCHEDULED_TIME_ANNOTATION} value{target}: {value!r}")
        self.value = value
        self.job_name = job_name


def format_scheduled_time(scheduled_time: datetime) -> str:
    """Render a tick as the marker value (RFC 3339, UTC, seconds)."""
    return format_time(scheduled_time)


def parse_scheduled_time(value: str) -> datetime:
    """
    Parse a marker value.

    Raises:
        InvalidMarkerError: If the value is not an RFC 3339 timestamp
    """
    try:
        return parse_time(value)
    except (TypeError, ValueError) as e:
        raise InvalidMarkerError(value) from e


def get_scheduled_time_for_job(job: Job) -> Optional[datetime]:
    """
    Read the scheduled tick a Job was created for.

    Returns:
        The tick, or None if the Job carries no marker

    Raises:
        InvalidMarkerError: If the marker is present but malformed
    """
    raw = job.metadata.annotations.get(SCHEDULED_TIME_ANNOTATION)
    if raw is None:
        return None
    try:
        return parse_time(raw)
    except (TypeError, ValueError) as e:
        raise InvalidMarkerError(raw, job_name=job.name) from e


def find_job_for_scheduled_time(jobs: Iterable[Job], scheduled_time: datetime) -> Optional[Job]:
    """Return the first Job marked with the given tick, if any."""
    wanted = parse_time(format_scheduled_time(scheduled_time))
    for job in jobs:
        if get_scheduled_time_for_job(job) == wanted:
            return job
    return None


def job_name_for_scheduled_time(cronjob: CronJob, scheduled_time: datetime) -> str:
    """
    Deterministic child name: <cronjob>-<unix seconds>.

    Long CronJob names are cut so the result fits MAX_JOB_NAME_LENGTH; the
    timestamp suffix is always kept whole.
    """
    tick = parse_time(format_scheduled_time(scheduled_time))
    suffix = f"-{int(tick.timestamp())}"
    prefix = cronjob.name[: MAX_JOB_NAME_LENGTH - len(suffix)].rstrip("-.")
    return prefix + suffix


def build_job_for_cronjob(cronjob: CronJob, scheduled_time: datetime) -> Job:
    """
    Build the child Job for one scheduled tick from the CronJob's template.

    The Job copies the template's labels, annotations and spec, gets the
    marker annotation and a controller owner reference back to the CronJob.

    Raises:
        ValueError: If the CronJob has no uid to own the Job by
    """
    if not cronjob.uid:
        raise ValueError(f"cronjob {cronjob.key} has no uid; cannot own a Job")

    template = cronjob.spec.job_template or {}
    template_meta = template.get("metadata") or {}

    annotations = dict(template_meta.get("annotations") or {})
    annotations[SCHEDULED_TIME_ANNOTATION] = format_scheduled_time(scheduled_time)

    owner = OwnerReference(
        api_version=API_GROUP_VERSION,
        kind=CRONJOB_KIND,
        name=cronjob.name,
        uid=cronjob.uid,
        controller=True,
        block_owner_deletion=True,
    )

    return Job(
        metadata=ObjectMeta(
            name=job_name_for_scheduled_time(cronjob, scheduled_time),
            namespace=cronjob.namespace,
            labels=dict(template_meta.get("labels") or {}),
            annotations=annotations,
            owner_references=[owner],
        ),
        spec=copy.deepcopy(template.get("spec") or {}),
    )
