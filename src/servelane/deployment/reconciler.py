"""
API reconciliation.

Entry points for deploying, refreshing and deleting realtime APIs. Each
operation reads the live Deployment/Service/VirtualService of an API,
decides what to do from the equality check and the rollout status, and
converges the cluster through the gateway while keeping the autoscaler
registry in step with the applied Deployment.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Set, Tuple

import structlog

from servelane.config.settings import Settings, validate_required_settings
from servelane.core.exceptions import (
    APINotDeployedError,
    APIUpdatingError,
    GatewayError,
    ObjectStorageError,
)
from servelane.core.logging import bind_api_context, log_execution_time
from servelane.core.parallel import run_first_error
from servelane.core.telemetry import ErrorReporter
from servelane.deployment.autoscaler import AutoscalerFactory, AutoscalerRegistry, bounds_autoscaler_factory
from servelane.deployment.equality import are_apis_equal
from servelane.deployment.materializer import (
    api_prefix,
    deployment_spec,
    download_api_spec,
    get_api_spec,
    service_spec,
    upload_api_spec,
    virtual_service_spec,
)
from servelane.deployment.models import (
    API_ID_LABEL,
    API_NAME_LABEL,
    DEPLOYMENT_ID_LABEL,
    APISpec,
    DesiredConfig,
    get_label,
)
from servelane.deployment.rollout import is_api_updating
from servelane.deployment.status import get_all_statuses
from servelane.k8s.compute import k8s_name, random_name
from servelane.k8s.gateway import KubernetesGateway
from servelane.monitoring.dashboard import DashboardClient
from servelane.storage.object_store import ObjectStore

logger = structlog.get_logger(__name__)

Manifest = Dict[str, Any]


@dataclass
class ClusterObjects:
    """The live cluster objects of one API; each may be absent."""

    deployment: Optional[Manifest] = None
    service: Optional[Manifest] = None
    virtual_service: Optional[Manifest] = None


class APIReconciler:
    """
    Converges the cluster objects of realtime APIs to their desired config.

    Collaborators are injected so that a reconciler (and its autoscaler
    registry) can be built in isolation, e.g. against in-memory fakes.
    """

    def __init__(self,
                 gateway: KubernetesGateway,
                 object_store: ObjectStore,
                 bucket: str,
                 cluster_name: str,
                 autoscalers: AutoscalerRegistry,
                 dashboard: Optional[DashboardClient] = None,
                 error_reporter: Optional[ErrorReporter] = None):
        """Initialize the reconciler with its collaborators."""

        self.gateway = gateway
        self.object_store = object_store
        self.bucket = bucket
        self.cluster_name = cluster_name
        self.autoscalers = autoscalers
        self.dashboard = dashboard
        self.error_reporter = error_reporter or autoscalers.error_reporter

        # detached best-effort work (rollbacks), kept referenced until done
        self._background_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls,
                      settings: Settings,
                      autoscaler_factory: Optional[AutoscalerFactory] = None) -> "APIReconciler":
        """
        Wire a reconciler to the real cluster, object storage and dashboard.

        Without an ``autoscaler_factory`` each API gets the bounds-keeping
        autoscale function.
        """
        validate_required_settings(settings)

        gateway = KubernetesGateway.from_environment(
            namespace=settings.cluster.namespace,
            in_cluster=settings.cluster.in_cluster,
        )
        error_reporter = ErrorReporter()
        autoscalers = AutoscalerRegistry(
            autoscaler_factory or bounds_autoscaler_factory(gateway),
            tick_interval=settings.cluster.autoscaling_tick_interval,
            error_reporter=error_reporter,
        )
        dashboard = DashboardClient.from_settings(settings.dashboard) if settings.dashboard.enabled else None

        return cls(
            gateway=gateway,
            object_store=ObjectStore.from_settings(settings.storage),
            bucket=settings.cluster.bucket,
            cluster_name=settings.cluster.cluster_name,
            autoscalers=autoscalers,
            dashboard=dashboard,
            error_reporter=error_reporter,
        )

    async def close(self) -> None:
        """Stop autoscalers, wait for detached work and release clients."""
        await self.wait_for_background_tasks()
        await self.autoscalers.shutdown()
        if self.dashboard is not None:
            await self.dashboard.aclose()

    # Entry operations

    @log_execution_time("update_api")
    async def update_api(self, config: DesiredConfig, project_id: str, force: bool = False) -> Tuple[APISpec, str]:
        """
        Deploy or update an API.

        Returns the materialized spec and a short status message. Raises
        ``APIUpdatingError`` when the config changed while a rollout is still
        converging and ``force`` is not set.
        """
        with bind_api_context(config.name, "update_api"):
            prev = await self.get_cluster_objects(config.name)

            deployment_id = random_name()
            if prev.deployment is not None:
                labels = (prev.deployment.get("metadata") or {}).get("labels") or {}
                if labels.get(DEPLOYMENT_ID_LABEL):
                    deployment_id = labels[DEPLOYMENT_ID_LABEL]

            api = get_api_spec(config, project_id, deployment_id)

            if prev.deployment is None:
                await self._upload_api_spec(api)
                try:
                    await self.apply_resources(api, prev)
                except Exception:
                    self._spawn_rollback(api.name)
                    raise

                await self._add_to_dashboard(api.name)
                logger.info("API creating", api_id=api.id, deployment_id=api.deployment_id)
                return api, f"creating {api.name}"

            if not are_apis_equal(prev.deployment, deployment_spec(api, prev.deployment)):
                if await is_api_updating(self.gateway, prev.deployment) and not force:
                    raise APIUpdatingError(api.name)

                await self._upload_api_spec(api)
                await self.apply_resources(api, prev)
                logger.info("API updating", api_id=api.id, deployment_id=api.deployment_id, force=force)
                return api, f"updating {api.name}"

            if await is_api_updating(self.gateway, prev.deployment):
                return api, f"{api.name} is already updating"
            return api, f"{api.name} is up to date"

    @log_execution_time("refresh_api")
    async def refresh_api(self, api_name: str, force: bool = False) -> str:
        """
        Force a rolling restart of an API without changing its config.

        The persisted spec is re-materialized with a new deployment id and
        only the Deployment is re-applied.
        """
        with bind_api_context(api_name, "refresh_api"):
            prev_deployment = await self.gateway.get_deployment(k8s_name(api_name))
            if prev_deployment is None:
                raise APINotDeployedError(api_name)

            if await is_api_updating(self.gateway, prev_deployment) and not force:
                raise APIUpdatingError(api_name)

            api_id = get_label(prev_deployment, API_ID_LABEL)
            prev_api = await download_api_spec(self.object_store, self.bucket, api_name, api_id)

            api = get_api_spec(prev_api.api, prev_api.project_id, random_name())

            await self._upload_api_spec(api)
            await self.apply_deployment(api, prev_deployment)

            logger.info("API refreshing", api_id=api.id, deployment_id=api.deployment_id, force=force)
            return f"updating {api.name}"

    @log_execution_time("delete_api")
    async def delete_api(self, api_name: str, keep_cache: bool = False) -> None:
        """
        Tear down an API.

        Cluster objects and the autoscaler task are removed; cached specs
        (unless ``keep_cache``) and the dashboard entry are cleaned up on a
        best-effort basis. Only cluster deletion failures are raised.
        """
        with bind_api_context(api_name, "delete_api"):
            async def delete_cached_specs() -> None:
                if keep_cache:
                    return
                await self._delete_cached_specs(api_name)

            await run_first_error(
                lambda: self.delete_resources(api_name),
                delete_cached_specs,
                lambda: self._remove_from_dashboard(api_name),
            )

            logger.info("API deleted", keep_cache=keep_cache)

    async def is_api_deployed(self, api_name: str) -> bool:
        """Check whether an API's routing rule exists."""
        virtual_service = await self.gateway.get_virtual_service(k8s_name(api_name))
        return virtual_service is not None

    async def sync_autoscalers(self) -> None:
        """
        Register autoscalers for the APIs in the cluster and drop those of deleted APIs.

        A process that only runs autoscalers never sees the applies made by
        other processes, so it calls this periodically.
        """
        deployments = await self.gateway.list_deployments_with_label(API_NAME_LABEL)
        await self.autoscalers.sync(deployments)

    # Fetching and applying

    async def get_cluster_objects(self, api_name: str) -> ClusterObjects:
        """Read the three live objects of an API concurrently."""
        name = k8s_name(api_name)
        objects = ClusterObjects()

        async def get_deployment() -> None:
            objects.deployment = await self.gateway.get_deployment(name)

        async def get_service() -> None:
            objects.service = await self.gateway.get_service(name)

        async def get_virtual_service() -> None:
            objects.virtual_service = await self.gateway.get_virtual_service(name)

        await run_first_error(get_deployment, get_service, get_virtual_service)
        return objects

    async def apply_resources(self, api: APISpec, prev: ClusterObjects) -> None:
        """Create or update all three objects of an API concurrently."""
        await run_first_error(
            lambda: self.apply_deployment(api, prev.deployment),
            lambda: self.apply_service(api, prev.service),
            lambda: self.apply_virtual_service(api, prev.virtual_service),
        )

    async def apply_deployment(self, api: APISpec, prev_deployment: Optional[Manifest]) -> None:
        """
        Create or update an API's Deployment and refresh its autoscaler.

        A Deployment that never had a ready replica is deleted and recreated
        rather than updated in place.
        """
        deployment = deployment_spec(api, prev_deployment)

        if prev_deployment is None:
            await self.gateway.create_deployment(deployment)
        elif not ((prev_deployment.get("status") or {}).get("readyReplicas") or 0):
            logger.info("Replacing deployment that never became ready", deployment=k8s_name(api.name))
            await self.gateway.delete_deployment(k8s_name(api.name))
            await self.gateway.create_deployment(deployment)
        else:
            await self.gateway.update_deployment(deployment)

        await self.autoscalers.refresh_registration(deployment)

    async def apply_service(self, api: APISpec, prev_service: Optional[Manifest]) -> None:
        """Create an API's Service, or update it on top of the live one."""
        service = service_spec(api)
        if prev_service is None:
            await self.gateway.create_service(service)
        else:
            await self.gateway.update_service(prev_service, service)

    async def apply_virtual_service(self, api: APISpec, prev_virtual_service: Optional[Manifest]) -> None:
        """Create an API's VirtualService, or update it on top of the live one."""
        virtual_service = virtual_service_spec(api)
        if prev_virtual_service is None:
            await self.gateway.create_virtual_service(virtual_service)
        else:
            await self.gateway.update_virtual_service(prev_virtual_service, virtual_service)

    # Teardown

    async def delete_resources(self, api_name: str) -> None:
        """
        Cancel an API's autoscaler and delete its three cluster objects.

        Steps run one after another; every deletion is attempted and the
        first failure is raised afterwards.
        """
        name = k8s_name(api_name)
        await self.autoscalers.cancel(api_name)

        first_error: Optional[BaseException] = None
        for delete in (self.gateway.delete_deployment,
                       self.gateway.delete_service,
                       self.gateway.delete_virtual_service):
            try:
                await delete(name)
            except Exception as e:
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error

    async def _delete_cached_specs(self, api_name: str) -> None:
        try:
            await self.object_store.delete_dir(self.bucket, api_prefix(api_name), recursive=True)
        except Exception as e:
            self.error_reporter.report(e, "delete cached api specs")

    async def _remove_from_dashboard(self, api_name: str) -> None:
        if self.dashboard is None:
            return
        try:
            statuses = await get_all_statuses(self.gateway)
        except Exception as e:
            self.error_reporter.report(e, "failed to get API statuses")
            return

        all_api_names = [status.api_name for status in statuses]
        try:
            await self.dashboard.remove(all_api_names, self.cluster_name, api_name)
        except Exception as e:
            self.error_reporter.report(e, "remove api from dashboard")

    async def _add_to_dashboard(self, api_name: str) -> None:
        if self.dashboard is None:
            return
        try:
            await self.dashboard.add(self.cluster_name, api_name)
        except Exception as e:
            self.error_reporter.report(e, "add api to dashboard")

    async def _upload_api_spec(self, api: APISpec) -> None:
        try:
            await upload_api_spec(self.object_store, self.bucket, api)
        except GatewayError as e:
            raise ObjectStorageError("upload api spec", e) from e

    # Background work

    def _spawn_rollback(self, api_name: str) -> asyncio.Task:
        """Start a detached, best-effort teardown of a partially created API."""
        async def rollback() -> None:
            try:
                await self.delete_resources(api_name)
            except Exception as e:
                self.error_reporter.report(e, f"rollback {api_name}")
            else:
                logger.info("Partially created API rolled back", api_name=api_name)

        task = asyncio.create_task(rollback(), name=f"{api_name}-rollback")
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def wait_for_background_tasks(self) -> None:
        """Wait for detached work (e.g. rollbacks) started so far to finish."""
        while self._background_tasks:
            await asyncio.gather(*list(self._background_tasks), return_exceptions=True)


__all__ = ["APIReconciler", "ClusterObjects"]
