"""
CronJob Controller - Resource Types

Data classes for the CronJob custom resource and the batch/v1 Jobs it owns.
Codecs read and write the Kubernetes JSON shape (camelCase keys).
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


API_GROUP = "batch.tutorial.kubebuilder.io"
API_VERSION = "v1"
API_GROUP_VERSION = f"{API_GROUP}/{API_VERSION}"
CRONJOB_KIND = "CronJob"
CRONJOB_PLURAL = "cronjobs"

JOB_API_VERSION = "batch/v1"
JOB_KIND = "Job"

# RFC 3339, second precision, always UTC
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


def format_time(value: datetime) -> str:
    """Format a datetime as an RFC 3339 UTC timestamp."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIME_FORMAT)


def parse_time(value: str) -> datetime:
    """
    Parse an RFC 3339 timestamp into an aware UTC datetime.

    Raises:
        ValueError: If the value is not a valid timestamp
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f"invalid timestamp: {value!r}")
    raw = value.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class ConcurrencyPolicy(str, Enum):
    """How to treat concurrent executions of a job."""
    ALLOW = "Allow"
    FORBID = "Forbid"
    REPLACE = "Replace"


class WatchEventType(str, Enum):
    """Kinds of watch notifications."""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass(frozen=True)
class NamespacedName:
    """A (namespace, name) pair uniquely addressing a resource."""
    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, key: str) -> "NamespacedName":
        """
        Parse a "namespace/name" key, the inverse of str().

        The controller passes NamespacedName values end to end and never
        calls this; it is for callers that receive keys as text.

        Raises:
            ValueError: If key is not exactly namespace/name
        """
        namespace, sep, name = key.partition("/")
        if not sep or not namespace or not name or "/" in name:
            raise ValueError(f"invalid namespaced name: {key!r}")
        return cls(namespace=namespace, name=name)


@dataclass
class ObjectReference:
    """Reference to another object, as stored in status.active."""
    name: str
    namespace: Optional[str] = None
    kind: Optional[str] = None
    api_version: Optional[str] = None
    uid: Optional[str] = None
    resource_version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ObjectReference":
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace"),
            kind=data.get("kind"),
            api_version=data.get("apiVersion"),
            uid=data.get("uid"),
            resource_version=data.get("resourceVersion"),
        )

    def to_dict(self) -> dict:
        out = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "resourceVersion": self.resource_version,
        }
        return {k: v for k, v in out.items() if v is not None}


@dataclass
class OwnerReference:
    """Back-reference from a child to the object that owns it."""
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool = False
    block_owner_deletion: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "OwnerReference":
        return cls(
            api_version=data.get("apiVersion", ""),
            kind=data.get("kind", ""),
            name=data.get("name", ""),
            uid=data.get("uid", ""),
            controller=bool(data.get("controller", False)),
            block_owner_deletion=bool(data.get("blockOwnerDeletion", False)),
        )

    def to_dict(self) -> dict:
        return {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
            "controller": self.controller,
            "blockOwnerDeletion": self.block_owner_deletion,
        }


@dataclass
class ObjectMeta:
    """Subset of Kubernetes object metadata the controller uses."""
    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    resource_version: Optional[str] = None
    generation: Optional[int] = None
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    owner_references: list[OwnerReference] = field(default_factory=list)
    creation_timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "ObjectMeta":
        created = data.get("creationTimestamp")
        if isinstance(created, datetime):
            created_at = created.astimezone(timezone.utc)
        elif created:
            created_at = parse_time(created)
        else:
            created_at = None
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace") or "default",
            uid=data.get("uid"),
            resource_version=data.get("resourceVersion"),
            generation=data.get("generation"),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            owner_references=[
                OwnerReference.from_dict(ref) for ref in data.get("ownerReferences") or []
            ],
            creation_timestamp=created_at,
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"name": self.name, "namespace": self.namespace}
        if self.uid:
            out["uid"] = self.uid
        if self.resource_version:
            out["resourceVersion"] = self.resource_version
        if self.generation is not None:
            out["generation"] = self.generation
        if self.labels:
            out["labels"] = dict(self.labels)
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        if self.owner_references:
            out["ownerReferences"] = [ref.to_dict() for ref in self.owner_references]
        if self.creation_timestamp:
            out["creationTimestamp"] = format_time(self.creation_timestamp)
        return out


def _concurrency_policy(value: Optional[str]) -> Union[ConcurrencyPolicy, str]:
    if not value:
        return ConcurrencyPolicy.ALLOW
    try:
        return ConcurrencyPolicy(value)
    except ValueError:
        return value


# Keys of CronJobSpec understood by the controller; anything else is kept in extra
_SPEC_KEYS = {
    "schedule",
    "startingDeadlineSeconds",
    "concurrencyPolicy",
    "suspend",
    "jobTemplate",
    "successfulJobsHistoryLimit",
    "failedJobsHistoryLimit",
}


@dataclass
class CronJobSpec:
    """Desired state of a CronJob. Not interpreted by the reconciler."""
    schedule: str = ""
    job_template: dict = field(default_factory=dict)
    starting_deadline_seconds: Optional[int] = None
    # Unknown values are kept verbatim
    concurrency_policy: Union[ConcurrencyPolicy, str] = ConcurrencyPolicy.ALLOW
    suspend: Optional[bool] = None
    successful_jobs_history_limit: Optional[int] = None
    failed_jobs_history_limit: Optional[int] = None
    extra: dict = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "CronJobSpec":
        return cls(
            schedule=data.get("schedule", ""),
            job_template=copy.deepcopy(data.get("jobTemplate") or {}),
            starting_deadline_seconds=data.get("startingDeadlineSeconds"),
            concurrency_policy=_concurrency_policy(data.get("concurrencyPolicy")),
            suspend=data.get("suspend"),
            successful_jobs_history_limit=data.get("successfulJobsHistoryLimit"),
            failed_jobs_history_limit=data.get("failedJobsHistoryLimit"),
            extra={k: copy.deepcopy(v) for k, v in data.items() if k not in _SPEC_KEYS},
        )

    def to_dict(self) -> dict:
        out = copy.deepcopy(self.extra)
        out["schedule"] = self.schedule
        out["jobTemplate"] = copy.deepcopy(self.job_template)
        out["concurrencyPolicy"] = getattr(self.concurrency_policy, "value", self.concurrency_policy)
        optional = {
            "startingDeadlineSeconds": self.starting_deadline_seconds,
            "suspend": self.suspend,
            "successfulJobsHistoryLimit": self.successful_jobs_history_limit,
            "failedJobsHistoryLimit": self.failed_jobs_history_limit,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        return out


@dataclass
class CronJobStatus:
    """Observed state of a CronJob."""
    active: list[ObjectReference] = field(default_factory=list)
    last_schedule_time: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: dict) -> "CronJobStatus":
        last = data.get("lastScheduleTime")
        return cls(
            active=[ObjectReference.from_dict(ref) for ref in data.get("active") or []],
            last_schedule_time=parse_time(last) if last else None,
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        if self.active:
            out["active"] = [ref.to_dict() for ref in self.active]
        if self.last_schedule_time:
            out["lastScheduleTime"] = format_time(self.last_schedule_time)
        return out


@dataclass
class CronJob:
    """The tracked resource."""
    metadata: ObjectMeta
    spec: CronJobSpec = field(default_factory=CronJobSpec)
    status: CronJobStatus = field(default_factory=CronJobStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.uid

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    @classmethod
    def from_dict(cls, data: dict) -> "CronJob":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=CronJobSpec.from_dict(data.get("spec") or {}),
            status=CronJobStatus.from_dict(data.get("status") or {}),
        )

    @classmethod
    def from_listing(cls, data: dict) -> "CronJob":
        """
        Decode a list or watch item.

        An item that cannot be decoded comes back carrying its identity
        only, so one bad object never hides the others. The full decode
        fails again, per key, when that object is fetched for reconcile.
        """
        try:
            return cls.from_dict(data)
        except (TypeError, ValueError):
            meta = data.get("metadata") or {}
            return cls(
                metadata=ObjectMeta(
                    name=meta.get("name", ""),
                    namespace=meta.get("namespace") or "default",
                    uid=meta.get("uid"),
                    resource_version=meta.get("resourceVersion"),
                ),
            )

    def to_dict(self) -> dict:
        return {
            "apiVersion": API_GROUP_VERSION,
            "kind": CRONJOB_KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }


@dataclass
class CronJobList:
    """Result of a list call: items plus the collection resource version."""
    items: list[CronJob] = field(default_factory=list)
    resource_version: Optional[str] = None


@dataclass
class Job:
    """A child batch/v1 Job. Spec and status are kept as raw mappings."""
    metadata: ObjectMeta
    spec: dict = field(default_factory=dict)
    status: dict = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> NamespacedName:
        return NamespacedName(namespace=self.namespace, name=self.name)

    def controller_owner(self) -> Optional[OwnerReference]:
        """Return the owner reference flagged as controller, if any."""
        for ref in self.metadata.owner_references:
            if ref.controller:
                return ref
        return None

    def is_owned_by(self, owner_uid: str) -> bool:
        return any(ref.uid == owner_uid for ref in self.metadata.owner_references)

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        return cls(
            metadata=ObjectMeta.from_dict(data.get("metadata") or {}),
            spec=copy.deepcopy(data.get("spec") or {}),
            status=copy.deepcopy(data.get("status") or {}),
        )

    def to_dict(self) -> dict:
        out = {
            "apiVersion": JOB_API_VERSION,
            "kind": JOB_KIND,
            "metadata": self.metadata.to_dict(),
            "spec": copy.deepcopy(self.spec),
        }
        if self.status:
            out["status"] = copy.deepcopy(self.status)
        return out


@dataclass
class WatchEvent:
    """A single notification from a CronJob watch."""
    type: WatchEventType
    cronjob: CronJob
