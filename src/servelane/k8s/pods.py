"""
Pod status classification.

Pods are read as manifest dictionaries; each one is placed in exactly one
status bucket so replica counts can be derived from a pod listing.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional

# a pod pending for longer than this is considered unschedulable
STALLED_SCHEDULING_TIMEOUT = timedelta(minutes=15)

_IMAGE_PULL_REASONS = {"ErrImagePull", "ImagePullBackOff", "InvalidImageName", "ErrImageNeverPull"}
_INITIALIZING_REASONS = {"ContainerCreating", "PodInitializing"}
_SIGKILL_EXIT_CODE = 137


class PodStatus(Enum):
    """Coarse status of a single pod."""
    UNKNOWN = "unknown"
    PENDING = "pending"
    STALLED = "stalled"
    INITIALIZING = "initializing"
    READY = "ready"
    TERMINATING = "terminating"
    FAILED = "failed"
    KILLED = "killed"
    KILLED_OOM = "killed_oom"
    ERR_IMAGE_PULL = "err_image_pull"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an API server timestamp (datetime or RFC 3339 string)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_pod_ready(pod: Dict[str, Any]) -> bool:
    """A pod is ready when its Ready condition is true and it is not being deleted."""
    if (pod.get("metadata") or {}).get("deletionTimestamp"):
        return False

    for condition in (pod.get("status") or {}).get("conditions") or []:
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


def _container_statuses(pod: Dict[str, Any]):
    status = pod.get("status") or {}
    yield from status.get("initContainerStatuses") or []
    yield from status.get("containerStatuses") or []


def get_pod_status(pod: Dict[str, Any], now: Optional[datetime] = None) -> PodStatus:
    """Classify a pod into a single status bucket."""
    if is_pod_ready(pod):
        return PodStatus.READY

    metadata = pod.get("metadata") or {}
    if metadata.get("deletionTimestamp"):
        return PodStatus.TERMINATING

    status = pod.get("status") or {}
    phase = status.get("phase")

    for container in _container_statuses(pod):
        state = container.get("state") or {}
        waiting = state.get("waiting") or {}
        if waiting.get("reason") in _IMAGE_PULL_REASONS:
            return PodStatus.ERR_IMAGE_PULL

        terminated = state.get("terminated") or (container.get("lastState") or {}).get("terminated") or {}
        if terminated.get("reason") == "OOMKilled":
            return PodStatus.KILLED_OOM
        if waiting.get("reason") == "CrashLoopBackOff":
            return PodStatus.KILLED

        exited = state.get("terminated") or {}
        if exited and exited.get("reason") != "Completed" and exited.get("exitCode") != 0:
            if exited.get("exitCode") == _SIGKILL_EXIT_CODE:
                return PodStatus.KILLED
            return PodStatus.FAILED

    if phase == "Failed":
        if status.get("reason") == "Evicted":
            return PodStatus.KILLED
        return PodStatus.FAILED

    if phase == "Pending":
        created = parse_timestamp(metadata.get("creationTimestamp"))
        now = now or datetime.now(timezone.utc)
        if created is not None and now - created > STALLED_SCHEDULING_TIMEOUT:
            scheduled = any(
                condition.get("type") == "PodScheduled" and condition.get("status") == "True"
                for condition in status.get("conditions") or []
            )
            if not scheduled:
                return PodStatus.STALLED
        for container in _container_statuses(pod):
            waiting = (container.get("state") or {}).get("waiting") or {}
            if waiting.get("reason") in _INITIALIZING_REASONS:
                return PodStatus.INITIALIZING
        return PodStatus.PENDING

    if phase == "Running":
        return PodStatus.INITIALIZING

    return PodStatus.UNKNOWN
