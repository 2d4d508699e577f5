"""
Spec materialization.

Turns a desired config into a persisted ``APISpec`` and renders the three
cluster objects (Deployment, Service, VirtualService) an API is made of.
"""

import copy
import hashlib
import json
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from servelane.core.exceptions import ObjectStorageError, ServelaneError
from servelane.deployment.models import (
    API_KIND_LABEL,
    ANNOTATION_PREFIX,
    REALTIME_API_KIND,
    SPEC_FORMAT_VERSION,
    APISpec,
    DesiredConfig,
)
from servelane.k8s.compute import k8s_name
from servelane.storage.object_store import ObjectStore

logger = structlog.get_logger(__name__)

SERVICE_PORT = 80
ISTIO_GATEWAY = "apis-gateway"
TERMINATION_GRACE_PERIOD_SECONDS = 60

Manifest = Dict[str, Any]


def api_spec_key(api_name: str, api_id: str) -> str:
    """Object storage key of a persisted spec."""
    return f"apis/{api_name}/{api_id}/spec.json"


def api_prefix(api_name: str) -> str:
    """Object storage prefix holding every persisted spec of an API."""
    return f"apis/{api_name}"


def compute_api_id(config: DesiredConfig, project_id: str) -> str:
    """Content hash identifying a config materialized for a project."""
    payload = json.dumps(config.model_dump(mode="json"), sort_keys=True)
    digest = hashlib.sha256(f"{config.name}\n{payload}\n{project_id}".encode("utf-8"))
    return digest.hexdigest()[:40]


def get_api_spec(config: DesiredConfig, project_id: str, deployment_id: str) -> APISpec:
    """Materialize a desired config for a project and rollout generation."""
    api_id = compute_api_id(config, project_id)
    return APISpec(
        api=config,
        id=api_id,
        project_id=project_id,
        deployment_id=deployment_id,
        key=api_spec_key(config.name, api_id),
    )


def encode_api_spec(api: APISpec) -> bytes:
    """Serialize a spec for object storage."""
    return api.model_dump_json().encode("utf-8")


def decode_api_spec(data: bytes) -> APISpec:
    """Deserialize a spec written by ``encode_api_spec``."""
    try:
        raw = json.loads(data)
    except ValueError as e:
        raise ServelaneError(f"invalid api spec: {e}") from e

    version = raw.get("format_version")
    if version != SPEC_FORMAT_VERSION:
        raise ServelaneError(f"unsupported api spec format version {version}")

    try:
        return APISpec.model_validate(raw)
    except ValidationError as e:
        raise ServelaneError(f"invalid api spec: {e}") from e


async def upload_api_spec(store: ObjectStore, bucket: str, api: APISpec) -> None:
    """Persist a spec under its key."""
    await store.put(encode_api_spec(api), bucket, api.key)
    logger.debug("API spec uploaded", api_name=api.name, key=api.key)


async def download_api_spec(store: ObjectStore, bucket: str, api_name: str, api_id: str) -> APISpec:
    """Read back a persisted spec by API name and id."""
    key = api_spec_key(api_name, api_id)
    data = await store.get(bucket, key)
    if data is None:
        raise ObjectStorageError(f"download api spec {api_name}", FileNotFoundError(f"s3://{bucket}/{key}"))
    return decode_api_spec(data)


def _labels(api: APISpec) -> Dict[str, str]:
    return {API_KIND_LABEL: REALTIME_API_KIND, **api.identity.to_labels()}


def _desired_replicas(api: APISpec, prev_deployment: Optional[Manifest]) -> int:
    autoscaling = api.api.autoscaling
    replicas = autoscaling.init_replicas
    if prev_deployment is not None:
        prev_replicas = (prev_deployment.get("spec") or {}).get("replicas")
        if prev_replicas is not None:
            replicas = prev_replicas
    return max(autoscaling.min_replicas, min(replicas, autoscaling.max_replicas))


def _container(api: APISpec) -> Manifest:
    config = api.api
    requests: Dict[str, Any] = {"cpu": config.compute.cpu}
    limits: Dict[str, Any] = {}
    if config.compute.mem:
        requests["memory"] = config.compute.mem
    if config.compute.gpu > 0:
        requests["nvidia.com/gpu"] = str(config.compute.gpu)
        limits["nvidia.com/gpu"] = str(config.compute.gpu)

    container: Manifest = {
        "name": "api",
        "image": config.predictor.image,
        "ports": [{"name": "http", "containerPort": config.predictor.port, "protocol": "TCP"}],
        "env": [
            {"name": name, "value": value}
            for name, value in sorted(config.predictor.env.items())
        ],
        "resources": {"requests": requests, "limits": limits},
        "readinessProbe": {
            "tcpSocket": {"port": config.predictor.port},
            "initialDelaySeconds": 1,
            "periodSeconds": 5,
        },
    }
    if config.predictor.command:
        container["command"] = list(config.predictor.command)
    if config.predictor.args:
        container["args"] = list(config.predictor.args)
    return container


def deployment_spec(api: APISpec, prev_deployment: Optional[Manifest] = None) -> Manifest:
    """
    Render the Deployment for an API.

    The live replica count of ``prev_deployment`` is kept (clamped to the
    autoscaling bounds) so that an update does not reset autoscaler decisions.
    """
    name = k8s_name(api.name)
    labels = _labels(api)
    annotations = {
        **api.api.autoscaling.to_annotations(),
        ANNOTATION_PREFIX + "endpoint": api.api.route,
    }

    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": name,
            "labels": dict(labels),
            "annotations": annotations,
        },
        "spec": {
            "replicas": _desired_replicas(api, prev_deployment),
            "selector": {"matchLabels": {"apiName": api.name}},
            "strategy": {
                "type": "RollingUpdate",
                "rollingUpdate": {
                    "maxSurge": api.api.update_strategy.max_surge,
                    "maxUnavailable": api.api.update_strategy.max_unavailable,
                },
            },
            "template": {
                "metadata": {"labels": copy.deepcopy(labels)},
                "spec": {
                    "containers": [_container(api)],
                    "terminationGracePeriodSeconds": TERMINATION_GRACE_PERIOD_SECONDS,
                },
            },
        },
    }


def service_spec(api: APISpec) -> Manifest:
    """Render the Service fronting an API's pods."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {
            "name": k8s_name(api.name),
            "labels": _labels(api),
        },
        "spec": {
            "type": "ClusterIP",
            "selector": {"apiName": api.name},
            "ports": [{
                "name": "http",
                "port": SERVICE_PORT,
                "targetPort": api.api.predictor.port,
                "protocol": "TCP",
            }],
        },
    }


def virtual_service_spec(api: APISpec) -> Manifest:
    """Render the VirtualService routing the API's endpoint to its Service."""
    name = k8s_name(api.name)
    return {
        "apiVersion": "networking.istio.io/v1beta1",
        "kind": "VirtualService",
        "metadata": {
            "name": name,
            "labels": _labels(api),
        },
        "spec": {
            "hosts": ["*"],
            "gateways": [ISTIO_GATEWAY],
            "http": [{
                "match": [{"uri": {"exact": api.api.route}}],
                "rewrite": {"uri": "/"},
                "route": [{
                    "destination": {
                        "host": name,
                        "port": {"number": SERVICE_PORT},
                    },
                }],
            }],
        },
    }


__all__ = [
    "api_spec_key",
    "api_prefix",
    "compute_api_id",
    "get_api_spec",
    "encode_api_spec",
    "decode_api_spec",
    "upload_api_spec",
    "download_api_spec",
    "deployment_spec",
    "service_spec",
    "virtual_service_spec",
]
