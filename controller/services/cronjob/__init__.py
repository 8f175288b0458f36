# CronJob Controller - CronJob Domain Package

from services.cronjob.clock import Clock, FakeClock, SystemClock
from services.cronjob.marker import (
    SCHEDULED_TIME_ANNOTATION,
    InvalidMarkerError,
    build_job_for_cronjob,
    find_job_for_scheduled_time,
    format_scheduled_time,
    get_scheduled_time_for_job,
    job_name_for_scheduled_time,
    parse_scheduled_time,
)
from services.cronjob.types import (
    API_GROUP,
    API_GROUP_VERSION,
    API_VERSION,
    CRONJOB_KIND,
    CRONJOB_PLURAL,
    ConcurrencyPolicy,
    CronJob,
    CronJobList,
    CronJobSpec,
    CronJobStatus,
    Job,
    NamespacedName,
    ObjectMeta,
    ObjectReference,
    OwnerReference,
    WatchEvent,
    WatchEventType,
)

__all__ = [
    # Clock
    "Clock",
    "FakeClock",
    "SystemClock",
    # Types
    "API_GROUP",
    "API_GROUP_VERSION",
    "API_VERSION",
    "CRONJOB_KIND",
    "CRONJOB_PLURAL",
    "ConcurrencyPolicy",
    "CronJob",
    "CronJobList",
    "CronJobSpec",
    "CronJobStatus",
    "Job",
    "NamespacedName",
    "ObjectMeta",
    "ObjectReference",
    "OwnerReference",
    "WatchEvent",
    "WatchEventType",
    # Scheduled-time marker
    "SCHEDULED_TIME_ANNOTATION",
    "InvalidMarkerError",
    "build_job_for_cronjob",
    "find_job_for_scheduled_time",
    "format_scheduled_time",
    "get_scheduled_time_for_job",
    "job_name_for_scheduled_time",
    "parse_scheduled_time",
]
