"""
Equality of workload definitions.

Decides whether applying a freshly rendered Deployment over the live one
would change anything that matters. Only operator-owned annotations take
part; annotations added by the platform or other controllers are ignored.
"""

from typing import Any, Dict, Mapping

from servelane.deployment.models import ANNOTATION_PREFIX, APIIdentity, get_annotations, template_spec
from servelane.k8s.compute import deployment_strategies_match, pod_computes_equal


def extract_reserved_annotations(obj: Mapping[str, Any]) -> Dict[str, str]:
    """Annotations of ``obj`` whose key carries the operator prefix."""
    return {
        key: value
        for key, value in get_annotations(obj).items()
        if key.startswith(ANNOTATION_PREFIX)
    }


def reserved_annotations_match(obj1: Mapping[str, Any], obj2: Mapping[str, Any]) -> bool:
    """Check whether two objects carry the same operator annotations."""
    return extract_reserved_annotations(obj1) == extract_reserved_annotations(obj2)


def are_apis_equal(deployment1: Mapping[str, Any], deployment2: Mapping[str, Any]) -> bool:
    """
    Check whether two Deployments describe the same effective API deployment.

    Compares pod compute, rollout strategy, the identity labels and the
    operator annotations. Used to decide whether an apply is a no-op, never
    to judge rollout health.
    """
    return (
        pod_computes_equal(template_spec(deployment1), template_spec(deployment2))
        and deployment_strategies_match(
            (deployment1.get("spec") or {}).get("strategy"),
            (deployment2.get("spec") or {}).get("strategy"),
        )
        and APIIdentity.of(deployment1) == APIIdentity.of(deployment2)
        and reserved_annotations_match(deployment1, deployment2)
    )


__all__ = ["are_apis_equal", "extract_reserved_annotations", "reserved_annotations_match"]
