"""
Rollout status tracking.

Splits an API's live pods into those that belong to the current rollout
(same identity labels and pod compute as the Deployment's template) and
stale ones, counts them by status, and decides whether a rollout is still
converging.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

from servelane.deployment.models import API_NAME_LABEL, APIIdentity, autoscaling_from_object, template_spec
from servelane.k8s.compute import pod_computes_equal
from servelane.k8s.pods import PodStatus, get_pod_status


@dataclass
class SubReplicaCounts:
    """Pod counts by status for one partition of an API's pods."""

    ready: int = 0
    pending: int = 0
    stalled: int = 0
    initializing: int = 0
    terminating: int = 0
    failed: int = 0
    killed: int = 0
    killed_oom: int = 0
    err_image_pull: int = 0
    unknown: int = 0

    def total_failed(self) -> int:
        """Pods that will not become ready on their own."""
        return self.failed + self.killed + self.killed_oom + self.err_image_pull + self.stalled

    def total(self) -> int:
        """All pods in this partition."""
        return sum(getattr(self, f.name) for f in fields(self))

    def add(self, status: PodStatus) -> None:
        """Count one pod with the given status."""
        attribute = status.value
        setattr(self, attribute, getattr(self, attribute) + 1)

    def to_dict(self) -> Dict[str, int]:
        """Counts as a plain dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ReplicaCounts:
    """Point-in-time pod counts for an API, split by rollout revision."""

    updated: SubReplicaCounts = field(default_factory=SubReplicaCounts)
    stale: SubReplicaCounts = field(default_factory=SubReplicaCounts)
    requested: int = 0


def is_pod_spec_latest(deployment: Mapping[str, Any], pod: Mapping[str, Any]) -> bool:
    """Check whether a pod belongs to the Deployment's current rollout."""
    return (
        APIIdentity.of_template(deployment) == APIIdentity.of(pod)
        and pod_computes_equal(template_spec(deployment), pod.get("spec") or {})
    )


def get_replica_counts(deployment: Mapping[str, Any],
                       pods: Iterable[Mapping[str, Any]],
                       now: Optional[datetime] = None) -> ReplicaCounts:
    """Count an API's pods by revision and status."""
    api_name = APIIdentity.of(deployment).api_name
    counts = ReplicaCounts(requested=(deployment.get("spec") or {}).get("replicas") or 0)

    for pod in pods:
        pod_labels = (pod.get("metadata") or {}).get("labels") or {}
        if pod_labels.get(API_NAME_LABEL) != api_name:
            continue

        partition = counts.updated if is_pod_spec_latest(deployment, pod) else counts.stale
        partition.add(get_pod_status(pod, now=now))

    return counts


def is_rollout_converging(counts: ReplicaCounts, min_replicas: int) -> bool:
    """
    Check whether a rollout is still in progress.

    A rollout converges until ``min_replicas`` current pods are ready. Any
    failed current pod means the rollout is stuck rather than in progress, so
    it is reported as not converging and does not block further updates.
    """
    return counts.updated.ready < min_replicas and counts.updated.total_failed() == 0


async def is_api_updating(gateway: Any, deployment: Mapping[str, Any]) -> bool:
    """Check whether the rollout of a live Deployment is still converging."""
    api_name = APIIdentity.of(deployment).api_name
    pods = await gateway.list_pods_by_label(API_NAME_LABEL, api_name)
    counts = get_replica_counts(deployment, pods)
    autoscaling = autoscaling_from_object(deployment)
    return is_rollout_converging(counts, autoscaling.min_replicas)


__all__ = [
    "SubReplicaCounts",
    "ReplicaCounts",
    "is_pod_spec_latest",
    "get_replica_counts",
    "is_rollout_converging",
    "is_api_updating",
]
