"""
Unit tests for pod status classification.
"""

from datetime import datetime, timedelta, timezone

import pytest

from servelane.k8s.pods import PodStatus, get_pod_status, is_pod_ready, parse_timestamp

NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


def pod(phase="Running", ready=False, scheduled=True, created=NOW, deleting=False,
        state=None, last_state=None, reason=None):
    status = {
        "phase": phase,
        "conditions": [
            {"type": "PodScheduled", "status": "True" if scheduled else "False"},
            {"type": "Ready", "status": "True" if ready else "False"},
        ],
        "containerStatuses": [{"name": "api", "state": state or {}, "lastState": last_state or {}}],
    }
    if reason:
        status["reason"] = reason
    metadata = {"name": "api-iris-0", "creationTimestamp": created.isoformat().replace("+00:00", "Z")}
    if deleting:
        metadata["deletionTimestamp"] = NOW.isoformat()
    return {"metadata": metadata, "status": status}


class TestParseTimestamp:
    """Test API server timestamp parsing."""

    def test_rfc3339_string(self):
        assert parse_timestamp("2030-01-01T12:00:00Z") == NOW

    def test_naive_datetime_assumed_utc(self):
        assert parse_timestamp(datetime(2030, 1, 1, 12, 0)) == NOW

    def test_none(self):
        assert parse_timestamp(None) is None


class TestPodStatus:
    """Test classification of pods into status buckets."""

    def test_ready(self):
        p = pod(ready=True)
        assert is_pod_ready(p)
        assert get_pod_status(p, now=NOW) == PodStatus.READY

    def test_terminating_pod_is_not_ready(self):
        p = pod(ready=True, deleting=True)
        assert not is_pod_ready(p)
        assert get_pod_status(p, now=NOW) == PodStatus.TERMINATING

    @pytest.mark.parametrize("reason", ["ErrImagePull", "ImagePullBackOff"])
    def test_image_pull_errors(self, reason):
        p = pod(phase="Pending", state={"waiting": {"reason": reason}})
        assert get_pod_status(p, now=NOW) == PodStatus.ERR_IMAGE_PULL

    def test_oom_killed_in_last_state(self):
        p = pod(state={"waiting": {"reason": "CrashLoopBackOff"}},
                last_state={"terminated": {"reason": "OOMKilled"}})
        assert get_pod_status(p, now=NOW) == PodStatus.KILLED_OOM

    def test_crash_loop(self):
        p = pod(state={"waiting": {"reason": "CrashLoopBackOff"}},
                last_state={"terminated": {"reason": "Error"}})
        assert get_pod_status(p, now=NOW) == PodStatus.KILLED

    def test_container_exited_with_error(self):
        """A crashed container counts as failed before the kubelet backs off."""
        p = pod(state={"terminated": {"reason": "Error", "exitCode": 1}})
        assert get_pod_status(p, now=NOW) == PodStatus.FAILED

    def test_container_killed(self):
        p = pod(state={"terminated": {"reason": "Error", "exitCode": 137}})
        assert get_pod_status(p, now=NOW) == PodStatus.KILLED

    def test_container_oom_killed(self):
        p = pod(state={"terminated": {"reason": "OOMKilled", "exitCode": 137}})
        assert get_pod_status(p, now=NOW) == PodStatus.KILLED_OOM

    def test_completed_init_container_is_not_a_failure(self):
        p = pod(phase="Pending", state={"terminated": {"reason": "Completed", "exitCode": 0}})
        assert get_pod_status(p, now=NOW) == PodStatus.PENDING

    def test_evicted(self):
        assert get_pod_status(pod(phase="Failed", reason="Evicted"), now=NOW) == PodStatus.KILLED

    def test_failed(self):
        assert get_pod_status(pod(phase="Failed"), now=NOW) == PodStatus.FAILED

    def test_pending(self):
        assert get_pod_status(pod(phase="Pending", scheduled=False), now=NOW) == PodStatus.PENDING

    def test_stalled_when_unschedulable_for_too_long(self):
        p = pod(phase="Pending", scheduled=False, created=NOW - timedelta(minutes=20))
        assert get_pod_status(p, now=NOW) == PodStatus.STALLED

    def test_old_scheduled_pending_pod_is_not_stalled(self):
        p = pod(phase="Pending", scheduled=True, created=NOW - timedelta(minutes=20))
        assert get_pod_status(p, now=NOW) == PodStatus.PENDING

    def test_container_creating(self):
        p = pod(phase="Pending", state={"waiting": {"reason": "ContainerCreating"}})
        assert get_pod_status(p, now=NOW) == PodStatus.INITIALIZING

    def test_running_but_not_ready(self):
        assert get_pod_status(pod(phase="Running"), now=NOW) == PodStatus.INITIALIZING

    def test_unknown_phase(self):
        assert get_pod_status(pod(phase="Unknown"), now=NOW) == PodStatus.UNKNOWN
