"""
Tests for settings and logging configuration.
"""

import logging

import structlog

from config import Settings, get_settings
from services.log_config import configure_logging


class TestSettings:
    """Tests for environment-driven settings."""

    def test_defaults(self, monkeypatch):
        """Defaults describe a single-worker, all-namespace controller."""
        for name in ("WATCH_NAMESPACE", "MAX_CONCURRENT_RECONCILES", "LEADER_ELECT", "REDIS_URL"):
            monkeypatch.delenv(name, raising=False)

        settings = Settings(_env_file=None)

        assert settings.watch_namespace == ""
        assert settings.max_concurrent_reconciles == 1
        assert settings.backoff_base_seconds == 0.005
        assert settings.backoff_max_seconds == 1000.0
        assert settings.leader_elect is False
        assert settings.leader_election_id == "cronjob-controller-leader"
        assert settings.probe_port == 8081

    def test_environment_overrides(self, monkeypatch):
        """Environment variables are read case-insensitively."""
        monkeypatch.setenv("WATCH_NAMESPACE", "batch")
        monkeypatch.setenv("max_concurrent_reconciles", "4")
        monkeypatch.setenv("USE_MEMORY_CLUSTER", "true")

        settings = Settings(_env_file=None)

        assert settings.watch_namespace == "batch"
        assert settings.max_concurrent_reconciles == 4
        assert settings.use_memory_cluster is True

    def test_get_settings_cached(self):
        assert get_settings() is get_settings()


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_sets_level(self):
        configure_logging(level="warning", format="json", force=True)

        assert logging.getLogger().level == logging.WARNING
        assert structlog.is_configured()

    def test_second_call_is_noop(self):
        configure_logging(level="debug", force=True)
        configure_logging(level="error")

        assert logging.getLogger().level == logging.DEBUG

    def test_kubernetes_logger_quieted(self):
        configure_logging(level="debug", force=True)

        assert logging.getLogger("kubernetes").level == logging.INFO
