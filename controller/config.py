"""
CronJob Controller - Configuration
Environment-based settings management
"""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Controller settings from environment variables."""

    # Core
    debug: bool = False
    log_level: str = "info"
    log_format: str = "console"  # console | json

    # Health probe server
    probe_host: str = "0.0.0.0"
    probe_port: int = 8081

    # Cluster access
    use_memory_cluster: bool = False
    kubeconfig: Optional[str] = None
    kube_context: Optional[str] = None
    watch_namespace: str = ""  # empty = all namespaces
    request_timeout_seconds: float = 10.0
    watch_timeout_seconds: int = 300

    # Controller
    controller_enabled: bool = True
    max_concurrent_reconciles: int = 1
    reconcile_timeout_seconds: float = 30.0
    watch_retry_seconds: float = 5.0

    # Per-item exponential backoff for failed reconciles
    backoff_base_seconds: float = 0.005
    backoff_max_seconds: float = 1000.0

    # Leader election
    leader_elect: bool = False
    leader_election_id: str = "cronjob-controller-leader"
    leader_lease_seconds: int = 15
    redis_url: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience accessors
settings = get_settings()
