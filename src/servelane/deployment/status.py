"""
Status summaries of deployed APIs.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from servelane.deployment.models import API_NAME_LABEL, APIIdentity, autoscaling_from_object
from servelane.deployment.rollout import ReplicaCounts, get_replica_counts
from servelane.k8s.compute import k8s_name


class StatusCode(Enum):
    """Overall state of a realtime API."""
    LIVE = "live"
    UPDATING = "updating"
    PENDING = "pending"
    STOPPED = "stopped"
    ERROR = "error"
    ERROR_OOM = "error_oom"
    ERROR_IMAGE_PULL = "error_image_pull"
    STALLED = "stalled"


@dataclass
class APIStatus:
    """Status of one API at a point in time."""

    api_name: str
    api_id: str
    deployment_id: str
    code: StatusCode
    replica_counts: ReplicaCounts

    def to_dict(self) -> Dict[str, Any]:
        """Plain representation for output."""
        return {
            "api_name": self.api_name,
            "api_id": self.api_id,
            "deployment_id": self.deployment_id,
            "status": self.code.value,
            "requested": self.replica_counts.requested,
            "updated": self.replica_counts.updated.to_dict(),
            "stale": self.replica_counts.stale.to_dict(),
        }


def get_status_code(counts: ReplicaCounts, min_replicas: int) -> StatusCode:
    """
    Derive the status code from replica counts.

    An API scaled to zero with no pods left is stopped. When the current
    revision has pods but none of them got past scheduling or container
    creation yet, the API is pending.
    """
    updated = counts.updated
    if counts.requested == 0 and updated.total() == 0 and counts.stale.total() == 0:
        return StatusCode.STOPPED
    if updated.ready >= min_replicas:
        return StatusCode.LIVE
    if updated.err_image_pull > 0:
        return StatusCode.ERROR_IMAGE_PULL
    if updated.failed > 0 or updated.killed > 0:
        return StatusCode.ERROR
    if updated.killed_oom > 0:
        return StatusCode.ERROR_OOM
    if updated.stalled > 0:
        return StatusCode.STALLED
    if updated.total() > 0 and updated.pending + updated.initializing == updated.total():
        return StatusCode.PENDING
    return StatusCode.UPDATING


def status_from_objects(deployment: Mapping[str, Any], pods: List[Mapping[str, Any]]) -> APIStatus:
    """Build a status from a Deployment and the API's pods."""
    identity = APIIdentity.of(deployment)
    counts = get_replica_counts(deployment, pods)
    min_replicas = autoscaling_from_object(deployment).min_replicas
    return APIStatus(
        api_name=identity.api_name,
        api_id=identity.api_id,
        deployment_id=identity.deployment_id,
        code=get_status_code(counts, min_replicas),
        replica_counts=counts,
    )


async def get_status(gateway: Any, api_name: str) -> Optional[APIStatus]:
    """Status of one API, or None if it is not deployed."""
    deployment = await gateway.get_deployment(k8s_name(api_name))
    if deployment is None:
        return None
    pods = await gateway.list_pods_by_label(API_NAME_LABEL, api_name)
    return status_from_objects(deployment, pods)


async def get_all_statuses(gateway: Any) -> List[APIStatus]:
    """Statuses of every deployed API, sorted by name."""
    deployments = await gateway.list_deployments_with_label(API_NAME_LABEL)

    async def _status(deployment: Mapping[str, Any]) -> APIStatus:
        api_name = APIIdentity.of(deployment).api_name
        pods = await gateway.list_pods_by_label(API_NAME_LABEL, api_name)
        return status_from_objects(deployment, pods)

    statuses = await asyncio.gather(*(_status(d) for d in deployments))
    return sorted(statuses, key=lambda status: status.api_name)


__all__ = [
    "StatusCode",
    "APIStatus",
    "get_status_code",
    "status_from_objects",
    "get_status",
    "get_all_statuses",
]
