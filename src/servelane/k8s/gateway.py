"""
Cluster Object Gateway.

Thin async facade over the official Kubernetes client for the three object
kinds an API is made of (Deployment, Service, Istio VirtualService) plus pod
listing. Every call is a single round trip; blocking client calls run in
worker threads so callers can fan out freely. Reads return ``None`` for
missing objects, deletes return whether the object existed.
"""

import asyncio
import copy
from typing import Any, Callable, Dict, List, Optional

import structlog
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from servelane.core.exceptions import ConfigurationError, GatewayError

logger = structlog.get_logger(__name__)

VIRTUAL_SERVICE_GROUP = "networking.istio.io"
VIRTUAL_SERVICE_VERSION = "v1beta1"
VIRTUAL_SERVICE_PLURAL = "virtualservices"

Manifest = Dict[str, Any]


class KubernetesGateway:
    """
    Read/create/update/delete access to the cluster objects backing an API.

    All objects go in and come out as camelCase manifest dictionaries.
    """

    def __init__(self,
                 namespace: str = "default",
                 api_client: Optional[client.ApiClient] = None):
        """Initialize the gateway around an existing API client."""

        self.namespace = namespace
        self.api_client = api_client or client.ApiClient()
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.apps_v1 = client.AppsV1Api(self.api_client)
        self.custom_objects = client.CustomObjectsApi(self.api_client)

        logger.info("KubernetesGateway initialized", namespace=namespace)

    @classmethod
    def from_environment(cls, namespace: str = "default", in_cluster: bool = True) -> "KubernetesGateway":
        """Build a gateway from in-cluster credentials, falling back to the local kubeconfig."""
        try:
            if in_cluster:
                config.load_incluster_config()
            else:
                config.load_kube_config()
        except config.ConfigException:
            try:
                config.load_kube_config()
            except config.ConfigException as e:
                raise ConfigurationError(f"could not load kubernetes config: {e}") from e

        return cls(namespace=namespace)

    async def _call(self, step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ApiException as e:
            logger.error("Kubernetes API call failed", step=step, status=e.status, reason=e.reason)
            raise GatewayError(step, e) from e

    async def _get(self, step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Optional[Any]:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                return None
            logger.error("Kubernetes API call failed", step=step, status=e.status, reason=e.reason)
            raise GatewayError(step, e) from e

    async def _delete(self, step: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> bool:
        try:
            await asyncio.to_thread(fn, *args, **kwargs)
        except ApiException as e:
            if e.status == 404:
                return False
            logger.error("Kubernetes API call failed", step=step, status=e.status, reason=e.reason)
            raise GatewayError(step, e) from e
        return True

    def _to_manifest(self, obj: Any) -> Optional[Manifest]:
        if obj is None:
            return None
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    # Deployments

    async def get_deployment(self, name: str) -> Optional[Manifest]:
        """Read a deployment, or None if it does not exist."""
        deployment = await self._get(
            f"get deployment {name}",
            self.apps_v1.read_namespaced_deployment, name=name, namespace=self.namespace
        )
        return self._to_manifest(deployment)

    async def create_deployment(self, deployment: Manifest) -> Manifest:
        """Create a deployment."""
        name = deployment["metadata"]["name"]
        created = await self._call(
            f"create deployment {name}",
            self.apps_v1.create_namespaced_deployment, namespace=self.namespace, body=deployment
        )
        logger.info("Deployment created", name=name)
        return self._to_manifest(created)

    async def update_deployment(self, deployment: Manifest) -> Manifest:
        """Replace a deployment with a new definition."""
        name = deployment["metadata"]["name"]
        updated = await self._call(
            f"update deployment {name}",
            self.apps_v1.replace_namespaced_deployment, name=name, namespace=self.namespace, body=deployment
        )
        logger.info("Deployment updated", name=name)
        return self._to_manifest(updated)

    async def delete_deployment(self, name: str) -> bool:
        """Delete a deployment; returns False if it did not exist."""
        deleted = await self._delete(
            f"delete deployment {name}",
            self.apps_v1.delete_namespaced_deployment,
            name=name,
            namespace=self.namespace,
            body=client.V1DeleteOptions(propagation_policy="Background"),
        )
        if deleted:
            logger.info("Deployment deleted", name=name)
        return deleted

    async def list_deployments_with_label(self, key: str) -> List[Manifest]:
        """List deployments carrying a label key, regardless of its value."""
        deployments = await self._call(
            f"list deployments with label {key}",
            self.apps_v1.list_namespaced_deployment, namespace=self.namespace, label_selector=key
        )
        return [self._to_manifest(item) for item in deployments.items]

    # Services

    async def get_service(self, name: str) -> Optional[Manifest]:
        """Read a service, or None if it does not exist."""
        service = await self._get(
            f"get service {name}",
            self.core_v1.read_namespaced_service, name=name, namespace=self.namespace
        )
        return self._to_manifest(service)

    async def create_service(self, service: Manifest) -> Manifest:
        """Create a service."""
        name = service["metadata"]["name"]
        created = await self._call(
            f"create service {name}",
            self.core_v1.create_namespaced_service, namespace=self.namespace, body=service
        )
        logger.info("Service created", name=name)
        return self._to_manifest(created)

    async def update_service(self, prev_service: Manifest, service: Manifest) -> Manifest:
        """
        Replace a service, keeping the fields the cluster assigned to the live object.

        The resource version and cluster IPs of ``prev_service`` are carried
        over so the replace is accepted and the service address is stable.
        """
        body = merge_service(prev_service, service)
        name = body["metadata"]["name"]
        updated = await self._call(
            f"update service {name}",
            self.core_v1.replace_namespaced_service, name=name, namespace=self.namespace, body=body
        )
        logger.info("Service updated", name=name)
        return self._to_manifest(updated)

    async def delete_service(self, name: str) -> bool:
        """Delete a service; returns False if it did not exist."""
        deleted = await self._delete(
            f"delete service {name}",
            self.core_v1.delete_namespaced_service, name=name, namespace=self.namespace
        )
        if deleted:
            logger.info("Service deleted", name=name)
        return deleted

    # Virtual services

    async def get_virtual_service(self, name: str) -> Optional[Manifest]:
        """Read a virtual service, or None if it does not exist."""
        return await self._get(
            f"get virtual service {name}",
            self.custom_objects.get_namespaced_custom_object,
            group=VIRTUAL_SERVICE_GROUP,
            version=VIRTUAL_SERVICE_VERSION,
            namespace=self.namespace,
            plural=VIRTUAL_SERVICE_PLURAL,
            name=name,
        )

    async def create_virtual_service(self, virtual_service: Manifest) -> Manifest:
        """Create a virtual service."""
        name = virtual_service["metadata"]["name"]
        created = await self._call(
            f"create virtual service {name}",
            self.custom_objects.create_namespaced_custom_object,
            group=VIRTUAL_SERVICE_GROUP,
            version=VIRTUAL_SERVICE_VERSION,
            namespace=self.namespace,
            plural=VIRTUAL_SERVICE_PLURAL,
            body=virtual_service,
        )
        logger.info("Virtual service created", name=name)
        return created

    async def update_virtual_service(self, prev_virtual_service: Manifest, virtual_service: Manifest) -> Manifest:
        """Replace a virtual service, keeping the live object's resource version."""
        body = merge_resource_version(prev_virtual_service, virtual_service)
        name = body["metadata"]["name"]
        updated = await self._call(
            f"update virtual service {name}",
            self.custom_objects.replace_namespaced_custom_object,
            group=VIRTUAL_SERVICE_GROUP,
            version=VIRTUAL_SERVICE_VERSION,
            namespace=self.namespace,
            plural=VIRTUAL_SERVICE_PLURAL,
            name=name,
            body=body,
        )
        logger.info("Virtual service updated", name=name)
        return updated

    async def delete_virtual_service(self, name: str) -> bool:
        """Delete a virtual service; returns False if it did not exist."""
        deleted = await self._delete(
            f"delete virtual service {name}",
            self.custom_objects.delete_namespaced_custom_object,
            group=VIRTUAL_SERVICE_GROUP,
            version=VIRTUAL_SERVICE_VERSION,
            namespace=self.namespace,
            plural=VIRTUAL_SERVICE_PLURAL,
            name=name,
        )
        if deleted:
            logger.info("Virtual service deleted", name=name)
        return deleted

    # Pods

    async def list_pods_by_label(self, key: str, value: str) -> List[Manifest]:
        """List pods whose label ``key`` equals ``value``."""
        pods = await self._call(
            f"list pods with {key}={value}",
            self.core_v1.list_namespaced_pod, namespace=self.namespace, label_selector=f"{key}={value}"
        )
        return [self._to_manifest(item) for item in pods.items]


def merge_resource_version(prev: Manifest, new: Manifest) -> Manifest:
    """Copy of ``new`` carrying the resource version of the live object ``prev``."""
    body = copy.deepcopy(new)
    resource_version = (prev.get("metadata") or {}).get("resourceVersion")
    if resource_version:
        body.setdefault("metadata", {})["resourceVersion"] = resource_version
    return body


def merge_service(prev: Manifest, new: Manifest) -> Manifest:
    """Copy of ``new`` carrying the resource version and cluster IPs of the live service ``prev``."""
    body = merge_resource_version(prev, new)
    prev_spec = prev.get("spec") or {}
    spec = body.setdefault("spec", {})
    for field in ("clusterIP", "clusterIPs"):
        if prev_spec.get(field):
            spec[field] = copy.deepcopy(prev_spec[field])
    return body


__all__ = ["KubernetesGateway", "merge_resource_version", "merge_service"]
