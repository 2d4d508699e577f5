"""
Semantic comparison helpers for Kubernetes object definitions.

Objects are handled as plain manifest dictionaries in the camelCase shape the
API server returns. Fields the server or admission controllers inject (for
example the service-account token volume) are ignored so that a live object
compares equal to the definition it was created from.
"""

import secrets
import string
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from kubernetes.utils import parse_quantity

K8S_NAME_PREFIX = "api-"

# volumes injected into every pod by the service account admission plugin
INJECTED_VOLUME_PREFIXES = ("kube-api-access-", "default-token-")

DEFAULT_MAX_SURGE = "25%"
DEFAULT_MAX_UNAVAILABLE = "25%"

_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


def k8s_name(api_name: str) -> str:
    """Name of the cluster objects backing an API."""
    return K8S_NAME_PREFIX + api_name


def random_name(length: int = 20) -> str:
    """Random DNS-label-safe identifier that always starts with a letter."""
    first = secrets.choice(string.ascii_lowercase)
    rest = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(length - 1))
    return first + rest


def normalize_quantity(value: Any) -> Optional[Decimal]:
    """Parse a resource quantity ("500m", "1Gi", 2) into a comparable Decimal."""
    if value is None:
        return None
    return parse_quantity(value)


def _normalize_resources(resources: Optional[Dict[str, Any]]) -> Dict[str, Dict[str, Decimal]]:
    resources = resources or {}
    normalized = {}
    for section in ("requests", "limits"):
        values = resources.get(section) or {}
        normalized[section] = {
            name: normalize_quantity(quantity)
            for name, quantity in values.items()
        }
    return normalized


def _is_injected_volume(name: str) -> bool:
    return any(name.startswith(prefix) for prefix in INJECTED_VOLUME_PREFIXES)


def _normalize_env(env: Optional[List[Dict[str, Any]]]) -> List[Tuple[str, Any]]:
    normalized = []
    for var in env or []:
        if "valueFrom" in var and var["valueFrom"] is not None:
            source = var["valueFrom"]
            normalized.append((var["name"], tuple(sorted(source.keys()))))
        else:
            normalized.append((var["name"], var.get("value") or ""))
    return sorted(normalized, key=lambda item: item[0])


def _normalize_container(container: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": container.get("name"),
        "image": container.get("image"),
        "command": list(container.get("command") or []),
        "args": list(container.get("args") or []),
        "env": _normalize_env(container.get("env")),
        "ports": sorted(
            (port.get("containerPort"), port.get("protocol") or "TCP")
            for port in container.get("ports") or []
        ),
        "resources": _normalize_resources(container.get("resources")),
        "volumeMounts": sorted(
            (mount.get("name"), mount.get("mountPath"))
            for mount in container.get("volumeMounts") or []
            if not _is_injected_volume(mount.get("name") or "")
        ),
    }


def _normalize_volumes(volumes: Optional[List[Dict[str, Any]]]) -> List[Tuple[str, Tuple[str, ...]]]:
    normalized = []
    for volume in volumes or []:
        name = volume.get("name") or ""
        if _is_injected_volume(name):
            continue
        sources = tuple(sorted(key for key, value in volume.items() if key != "name" and value is not None))
        normalized.append((name, sources))
    return sorted(normalized)


def _normalize_pod_compute(pod_spec: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    pod_spec = pod_spec or {}
    containers = sorted(
        (_normalize_container(c) for c in pod_spec.get("containers") or []),
        key=lambda c: c["name"] or "",
    )
    init_containers = sorted(
        (_normalize_container(c) for c in pod_spec.get("initContainers") or []),
        key=lambda c: c["name"] or "",
    )
    return {
        "containers": containers,
        "initContainers": init_containers,
        "volumes": _normalize_volumes(pod_spec.get("volumes")),
        "nodeSelector": dict(pod_spec.get("nodeSelector") or {}),
    }


def pod_computes_equal(spec1: Optional[Dict[str, Any]], spec2: Optional[Dict[str, Any]]) -> bool:
    """
    Check whether two pod specs describe the same compute.

    Containers (image, command, args, env, ports, resources, mounts), init
    containers, volumes and node selectors are compared; resource quantities
    are compared by value, so "1000m" equals "1" and "1Gi" equals "1073741824".
    """
    return _normalize_pod_compute(spec1) == _normalize_pod_compute(spec2)


def _normalize_int_or_string(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


def _normalize_strategy(strategy: Optional[Dict[str, Any]]) -> Tuple[str, Optional[str], Optional[str]]:
    strategy = strategy or {}
    strategy_type = strategy.get("type") or "RollingUpdate"
    if strategy_type != "RollingUpdate":
        return strategy_type, None, None

    rolling = strategy.get("rollingUpdate") or {}
    return (
        strategy_type,
        _normalize_int_or_string(rolling.get("maxSurge"), DEFAULT_MAX_SURGE),
        _normalize_int_or_string(rolling.get("maxUnavailable"), DEFAULT_MAX_UNAVAILABLE),
    )


def deployment_strategies_match(strategy1: Optional[Dict[str, Any]], strategy2: Optional[Dict[str, Any]]) -> bool:
    """Check whether two deployment strategies are equivalent after applying server defaults."""
    return _normalize_strategy(strategy1) == _normalize_strategy(strategy2)


__all__ = [
    "k8s_name",
    "random_name",
    "normalize_quantity",
    "pod_computes_equal",
    "deployment_strategies_match",
]
