"""
CronJob Controller - Cluster Access Package

Factory function for the shared cluster client.

Client Selection Logic:
- If USE_MEMORY_CLUSTER=true: Use the in-memory client (for testing/dev)
- Otherwise: Use the Kubernetes API (in-cluster config, then kubeconfig)
"""

from typing import Optional

import structlog

from config import get_settings
from services.cluster.base import (
    ClusterClient,
    ClusterError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ResourceExpiredError,
)
from services.cluster.memory import InMemoryClusterClient

logger = structlog.get_logger()


# Singleton instance, shared by every worker in the process
_cluster_client: Optional[ClusterClient] = None


def get_cluster_client() -> ClusterClient:
    """Get the process-wide cluster client instance."""
    global _cluster_client
    if _cluster_client is None:
        settings = get_settings()
        if settings.use_memory_cluster:
            logger.info("cluster_client_init", type="memory")
            _cluster_client = InMemoryClusterClient()
        else:
            from services.cluster.kube import KubernetesClusterClient
            logger.info("cluster_client_init", type="kubernetes")
            _cluster_client = KubernetesClusterClient(
                request_timeout=settings.request_timeout_seconds,
                watch_timeout=settings.watch_timeout_seconds,
                kubeconfig=settings.kubeconfig,
                context=settings.kube_context,
            )
    return _cluster_client


def reset_cluster_client():
    """Reset the client singleton (for testing)."""
    global _cluster_client
    _cluster_client = None


__all__ = [
    # Interface and errors
    "ClusterClient",
    "ClusterError",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "ResourceExpiredError",
    # Implementations
    "InMemoryClusterClient",
    # Factory functions
    "get_cluster_client",
    "reset_cluster_client",
]
