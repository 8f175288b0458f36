"""
CronJob Controller - Cluster Client Interface

Abstract interface for the state-access operations the controller performs.
Implementations: InMemory (for testing/dev), Kubernetes (for production).

The client is shared by every worker in the process. Callers must not
assume exclusive access and must not cache what it returns.
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from services.cronjob.types import (
    CronJob,
    CronJobList,
    Job,
    NamespacedName,
    WatchEvent,
)


class ClusterError(Exception):
    """Base exception for cluster access errors."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ClusterError):
    """Raised when the requested object does not exist."""

    def __init__(self, message: str):
        super().__init__(message, status=404)


class ForbiddenError(ClusterError):
    """Raised when the controller is not permitted to perform an operation."""

    def __init__(self, message: str):
        super().__init__(message, status=403)


class ConflictError(ClusterError):
    """Raised when an object already exists or was modified concurrently."""

    def __init__(self, message: str):
        super().__init__(message, status=409)


class ResourceExpiredError(ClusterError):
    """Raised when a watch resource version is too old to resume from."""

    def __init__(self, message: str):
        super().__init__(message, status=410)


class ClusterClient(ABC):
    """
    Abstract base class for cluster state access.

    Implementations:
    - InMemoryClusterClient: dict-backed store for tests and local dev
    - KubernetesClusterClient: Kubernetes API server
    """

    @abstractmethod
    async def get_cronjob(self, key: NamespacedName) -> CronJob:
        """
        Fetch a CronJob by namespaced name.

        Raises:
            NotFoundError: If the CronJob does not exist
            ClusterError: On any other failure
        """
        pass

    @abstractmethod
    async def list_cronjobs(self, namespace: Optional[str] = None) -> CronJobList:
        """List CronJobs in a namespace, or in all namespaces when None."""
        pass

    @abstractmethod
    def watch_cronjobs(
        self,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> AsyncIterator[WatchEvent]:
        """
        Stream CronJob change notifications.

        The stream may end at any time; callers re-list and watch again.

        Raises:
            ResourceExpiredError: If resource_version is too old
        """
        pass

    @abstractmethod
    async def update_cronjob_status(self, cronjob: CronJob) -> CronJob:
        """
        Write the status subresource of a CronJob. Spec is never written.

        The reconciler only reads status. This is the extension point for
        status bookkeeping and is not called by the controller.
        """
        pass

    @abstractmethod
    async def list_jobs(self, namespace: str, owner_uid: Optional[str] = None) -> list[Job]:
        """List Jobs in a namespace, optionally only those owned by owner_uid."""
        pass

    @abstractmethod
    async def get_job(self, key: NamespacedName) -> Job:
        """
        Fetch a Job by namespaced name.

        Raises:
            NotFoundError: If the Job does not exist
        """
        pass

    @abstractmethod
    async def create_job(self, job: Job) -> Job:
        """
        Create a Job.

        Raises:
            ConflictError: If a Job with the same name already exists
        """
        pass

    @abstractmethod
    async def delete_job(self, key: NamespacedName) -> None:
        """
        Delete a Job and its pods (background propagation).

        History pruning is outside this controller. This is its extension
        point and is not called by the controller.

        Raises:
            NotFoundError: If the Job does not exist
        """
        pass

    async def health_check(self) -> bool:
        """Check whether the cluster is reachable."""
        return True

    async def close(self) -> None:
        """Release any connections held by the client."""
        return None
