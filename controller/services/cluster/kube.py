"""
CronJob Controller - Kubernetes Cluster Client

Production implementation backed by the Kubernetes API server.

The official client is synchronous, so every call runs in a worker thread
and carries a request timeout. A cancelled reconcile therefore never leaves
a call running without bound.
"""

import asyncio
import functools
import json
import socket
from typing import Any, AsyncIterator, Callable, Optional

import structlog
from kubernetes import client, config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.watch.watch import iter_resp_lines

from services.cluster.base import (
    ClusterClient,
    ClusterError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceExpiredError,
)
from services.cronjob.types import (
    API_GROUP,
    API_VERSION,
    CRONJOB_PLURAL,
    CronJob,
    CronJobList,
    Job,
    NamespacedName,
    WatchEvent,
    WatchEventType,
)

logger = structlog.get_logger()

DEFAULT_REQUEST_TIMEOUT = 10.0
DEFAULT_WATCH_TIMEOUT = 300


def load_kube_config(kubeconfig: Optional[str] = None, context: Optional[str] = None) -> str:
    """
    Load cluster credentials into the kubernetes client.

    In-cluster service account config is preferred unless an explicit
    kubeconfig path is given; otherwise falls back to kubeconfig loading rules.

    Returns:
        "incluster" or "kubeconfig", whichever was loaded
    """
    if not kubeconfig:
        try:
            config.load_incluster_config()
            logger.info("kube_config_loaded", source="incluster")
            return "incluster"
        except ConfigException:
            pass

    kwargs: dict[str, Any] = {}
    if kubeconfig:
        kwargs["config_file"] = kubeconfig
    if context:
        kwargs["context"] = context
    config.load_kube_config(**kwargs)
    logger.info("kube_config_loaded", source="kubeconfig", path=kubeconfig, context=context)
    return "kubeconfig"


def translate_api_exception(e: ApiException) -> ClusterError:
    """Map an ApiException onto the cluster error taxonomy."""
    message = f"{e.status} {e.reason}".strip() if e.reason else str(e)
    if e.status == 404:
        return NotFoundError(message)
    if e.status == 403:
        return ForbiddenError(message)
    if e.status == 409:
        return ConflictError(message)
    if e.status == 410:
        return ResourceExpiredError(message)
    return ClusterError(message, status=e.status)


def abort_response(response: Any) -> None:
    """
    Tear down a streaming response from any thread.

    Shutting the socket down wakes a worker thread blocked reading from it,
    so a cancelled watch returns its thread promptly instead of waiting out
    the server-side timeout.
    """
    connection = getattr(response, "connection", None)
    sock = getattr(connection, "sock", None)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass  # already closed
    response.close()
    response.release_conn()


class KubernetesClusterClient(ClusterClient):
    """
    Cluster client for the Kubernetes API.

    CronJobs are read through CustomObjectsApi, child Jobs through BatchV1Api.
    """

    def __init__(
        self,
        api_client: Optional[client.ApiClient] = None,
        custom_api: Optional[client.CustomObjectsApi] = None,
        batch_api: Optional[client.BatchV1Api] = None,
        request_timeout: Optional[float] = None,
        watch_timeout: Optional[int] = None,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
    ):
        """
        Initialize the client.

        Args:
            api_client: Shared ApiClient (created from loaded config if omitted)
            custom_api: CustomObjectsApi override (for testing)
            batch_api: BatchV1Api override (for testing)
            request_timeout: Per-request timeout in seconds
            watch_timeout: Server-side watch duration in seconds
            kubeconfig: Optional kubeconfig path
            context: Optional kubeconfig context
        """
        if api_client is None and (custom_api is None or batch_api is None):
            load_kube_config(kubeconfig=kubeconfig, context=context)
            api_client = client.ApiClient()

        self._api_client = api_client
        self._custom = custom_api or client.CustomObjectsApi(api_client)
        self._batch = batch_api or client.BatchV1Api(api_client)
        self.request_timeout = request_timeout or DEFAULT_REQUEST_TIMEOUT
        self.watch_timeout = watch_timeout or DEFAULT_WATCH_TIMEOUT

    async def _call(self, fn: Callable, *args, **kwargs) -> Any:
        """Run a blocking API call in a thread, translating API errors."""
        kwargs.setdefault("_request_timeout", self.request_timeout)
        try:
            return await asyncio.to_thread(functools.partial(fn, *args, **kwargs))
        except ApiException as e:
            raise translate_api_exception(e) from e

    def _serialize(self, obj: Any) -> dict:
        if isinstance(obj, dict):
            return obj
        if self._api_client is not None:
            return self._api_client.sanitize_for_serialization(obj)
        return obj.to_dict()

    # ------------------------------------------------------------------
    # CronJobs
    # ------------------------------------------------------------------

    async def get_cronjob(self, key: NamespacedName) -> CronJob:
        data = await self._call(
            self._custom.get_namespaced_custom_object,
            API_GROUP,
            API_VERSION,
            key.namespace,
            CRONJOB_PLURAL,
            key.name,
        )
        return CronJob.from_dict(data)

    async def list_cronjobs(self, namespace: Optional[str] = None) -> CronJobList:
        if namespace:
            data = await self._call(
                self._custom.list_namespaced_custom_object,
                API_GROUP,
                API_VERSION,
                namespace,
                CRONJOB_PLURAL,
            )
        else:
            data = await self._call(
                self._custom.list_cluster_custom_object,
                API_GROUP,
                API_VERSION,
                CRONJOB_PLURAL,
            )
        return CronJobList(
            items=[CronJob.from_listing(item) for item in data.get("items") or []],
            resource_version=(data.get("metadata") or {}).get("resourceVersion"),
        )

    async def watch_cronjobs(
        self,
        namespace: Optional[str] = None,
        resource_version: Optional[str] = None,
    ) -> AsyncIterator[WatchEvent]:
        if namespace:
            func = self._custom.list_namespaced_custom_object
            args: tuple = (API_GROUP, API_VERSION, namespace, CRONJOB_PLURAL)
        else:
            func = self._custom.list_cluster_custom_object
            args = (API_GROUP, API_VERSION, CRONJOB_PLURAL)

        kwargs: dict[str, Any] = {
            "watch": True,
            "_preload_content": False,
            "timeout_seconds": self.watch_timeout,
            "_request_timeout": self.watch_timeout + self.request_timeout,
        }
        if resource_version:
            kwargs["resource_version"] = resource_version

        # The raw response is held here so cancellation can abort the read
        # blocking in the worker thread
        response = await self._call(func, *args, **kwargs)
        try:
            lines = iter_resp_lines(response)
            while True:
                line = await asyncio.to_thread(next, lines, None)
                if line is None:
                    return
                if isinstance(line, bytes):
                    line = line.decode("utf-8")
                if not line.strip():
                    continue

                raw = json.loads(line)
                event_type = raw.get("type")
                obj = raw.get("object") or {}
                if event_type == "ERROR":
                    code = obj.get("code")
                    message = obj.get("message", "watch error")
                    if code == 410:
                        raise ResourceExpiredError(message)
                    raise ClusterError(message, status=code)
                if event_type not in WatchEventType.__members__:
                    logger.debug("kube_watch_event_ignored", type=event_type)
                    continue

                yield WatchEvent(type=WatchEventType(event_type), cronjob=CronJob.from_listing(obj))
        finally:
            abort_response(response)

    async def update_cronjob_status(self, cronjob: CronJob) -> CronJob:
        data = await self._call(
            self._custom.replace_namespaced_custom_object_status,
            API_GROUP,
            API_VERSION,
            cronjob.namespace,
            CRONJOB_PLURAL,
            cronjob.name,
            cronjob.to_dict(),
        )
        return CronJob.from_dict(data)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def list_jobs(self, namespace: str, owner_uid: Optional[str] = None) -> list[Job]:
        result = await self._call(self._batch.list_namespaced_job, namespace)
        jobs = [Job.from_dict(self._serialize(item)) for item in result.items or []]
        if owner_uid is not None:
            jobs = [job for job in jobs if job.is_owned_by(owner_uid)]
        return jobs

    async def get_job(self, key: NamespacedName) -> Job:
        result = await self._call(self._batch.read_namespaced_job, key.name, key.namespace)
        return Job.from_dict(self._serialize(result))

    async def create_job(self, job: Job) -> Job:
        result = await self._call(
            self._batch.create_namespaced_job,
            job.namespace,
            job.to_dict(),
        )
        logger.info("kube_job_created", namespace=job.namespace, name=job.name)
        return Job.from_dict(self._serialize(result))

    async def delete_job(self, key: NamespacedName) -> None:
        await self._call(
            self._batch.delete_namespaced_job,
            key.name,
            key.namespace,
            propagation_policy="Background",
        )
        logger.info("kube_job_deleted", namespace=key.namespace, name=key.name)

    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        try:
            await self._call(client.VersionApi(self._api_client).get_code)
            return True
        except Exception as e:
            logger.warning("kube_health_check_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._api_client is not None:
            self._api_client.close()
