"""
Tests for CronJob and Job resource types.
"""

from datetime import datetime, timezone

import pytest

from services.cronjob.types import (
    API_GROUP_VERSION,
    ConcurrencyPolicy,
    CronJob,
    CronJobSpec,
    Job,
    NamespacedName,
    format_time,
    parse_time,
)


def _cronjob_dict():
    return {
        "apiVersion": API_GROUP_VERSION,
        "kind": "CronJob",
        "metadata": {
            "name": "nightly",
            "namespace": "batch",
            "uid": "uid-1",
            "resourceVersion": "42",
            "labels": {"app": "nightly"},
            "creationTimestamp": "2024-01-01T00:00:00Z",
        },
        "spec": {
            "schedule": "*/1 * * * *",
            "concurrencyPolicy": "Forbid",
            "startingDeadlineSeconds": 60,
            "jobTemplate": {"spec": {"template": {"spec": {"restartPolicy": "OnFailure"}}}},
            "timeZone": "Etc/UTC",
        },
        "status": {
            "active": [{"name": "nightly-1704067200", "namespace": "batch", "kind": "Job"}],
            "lastScheduleTime": "2024-01-01T00:00:00Z",
        },
    }


class TestTimeFormat:
    """Tests for RFC 3339 helpers."""

    def test_parse_zulu(self):
        """Z suffix parses as UTC."""
        assert parse_time("2024-01-01T00:00:00Z") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_parse_offset_normalizes_to_utc(self):
        """Offsets are converted to UTC."""
        assert parse_time("2024-01-01T02:00:00+02:00") == datetime(2024, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("value", ["", "yesterday", None, 17])
    def test_parse_rejects_invalid(self, value):
        """Non-timestamps raise ValueError."""
        with pytest.raises(ValueError):
            parse_time(value)

    def test_format_drops_subseconds(self):
        """Formatted times have second precision."""
        value = datetime(2024, 1, 1, 0, 0, 0, 999999, tzinfo=timezone.utc)
        assert format_time(value) == "2024-01-01T00:00:00Z"


class TestNamespacedName:
    """Tests for NamespacedName."""

    def test_str(self):
        assert str(NamespacedName("default", "missing")) == "default/missing"

    def test_parse(self):
        assert NamespacedName.parse("default/missing") == NamespacedName("default", "missing")

    @pytest.mark.parametrize("key", ["missing", "/missing", "default/", "a/b/c"])
    def test_parse_rejects_invalid(self, key):
        """Keys must be exactly namespace/name."""
        with pytest.raises(ValueError):
            NamespacedName.parse(key)

    def test_hashable(self):
        """Equal names collapse in sets."""
        assert len({NamespacedName("a", "b"), NamespacedName("a", "b")}) == 1


class TestCronJob:
    """Tests for CronJob decoding and encoding."""

    def test_from_dict(self):
        """Reads the wire shape."""
        cronjob = CronJob.from_dict(_cronjob_dict())

        assert cronjob.key == NamespacedName("batch", "nightly")
        assert cronjob.uid == "uid-1"
        assert cronjob.metadata.resource_version == "42"
        assert cronjob.spec.schedule == "*/1 * * * *"
        assert cronjob.spec.concurrency_policy == ConcurrencyPolicy.FORBID
        assert cronjob.spec.starting_deadline_seconds == 60
        assert cronjob.status.active[0].name == "nightly-1704067200"
        assert cronjob.status.last_schedule_time == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_unknown_spec_fields_are_kept(self):
        """Fields the controller does not model survive a round trip."""
        cronjob = CronJob.from_dict(_cronjob_dict())

        assert cronjob.spec.extra == {"timeZone": "Etc/UTC"}
        assert cronjob.to_dict()["spec"]["timeZone"] == "Etc/UTC"

    def test_to_dict_matches_input(self):
        """Encoding reproduces the decoded document."""
        data = _cronjob_dict()
        assert CronJob.from_dict(data).to_dict() == data

    def test_unknown_concurrency_policy_kept_verbatim(self):
        """A policy value this controller does not know is carried, not rejected."""
        data = _cronjob_dict()
        data["spec"]["concurrencyPolicy"] = "Sometimes"

        cronjob = CronJob.from_dict(data)

        assert cronjob.spec.concurrency_policy == "Sometimes"
        assert cronjob.to_dict()["spec"]["concurrencyPolicy"] == "Sometimes"

    def test_from_listing_decodes_good_item(self):
        assert CronJob.from_listing(_cronjob_dict()) == CronJob.from_dict(_cronjob_dict())

    def test_from_listing_keeps_identity_of_bad_item(self):
        """An undecodable list item still names the object it came from."""
        data = _cronjob_dict()
        data["status"]["lastScheduleTime"] = "garbage"

        with pytest.raises(ValueError):
            CronJob.from_dict(data)
        cronjob = CronJob.from_listing(data)

        assert cronjob.key == NamespacedName("batch", "nightly")
        assert cronjob.uid == "uid-1"
        assert cronjob.metadata.resource_version == "42"

    def test_defaults(self):
        """Missing fields fall back to API defaults."""
        cronjob = CronJob.from_dict({"metadata": {"name": "bare"}})

        assert cronjob.namespace == "default"
        assert cronjob.spec.concurrency_policy == ConcurrencyPolicy.ALLOW
        assert cronjob.status.active == []
        assert cronjob.status.last_schedule_time is None

    def test_spec_always_has_required_fields(self):
        """schedule and jobTemplate are always emitted."""
        out = CronJobSpec().to_dict()
        assert out == {"schedule": "", "jobTemplate": {}, "concurrencyPolicy": "Allow"}


class TestJob:
    """Tests for Job helpers."""

    def test_controller_owner(self):
        """Finds the controlling owner reference."""
        job = Job.from_dict({
            "metadata": {
                "name": "nightly-1",
                "namespace": "batch",
                "ownerReferences": [
                    {"apiVersion": "v1", "kind": "ConfigMap", "name": "cm", "uid": "other"},
                    {"apiVersion": API_GROUP_VERSION, "kind": "CronJob", "name": "nightly",
                     "uid": "uid-1", "controller": True},
                ],
            },
        })

        owner = job.controller_owner()
        assert owner is not None
        assert owner.uid == "uid-1"
        assert job.is_owned_by("uid-1")
        assert job.is_owned_by("other")
        assert not job.is_owned_by("uid-2")

    def test_to_dict_kind(self):
        """Jobs encode as batch/v1 Job."""
        out = Job.from_dict({"metadata": {"name": "j"}}).to_dict()
        assert out["apiVersion"] == "batch/v1"
        assert out["kind"] == "Job"
        assert "status" not in out
