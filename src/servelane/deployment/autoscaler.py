"""
Autoscaler task registry.

Keeps exactly one recurring autoscaler task per deployed API. A task is bound
to the Deployment it was registered for: it captures that object's replica
bounds and target metric, so every apply of a Deployment must refresh the
registration. The scaling decision itself is supplied by an
``AutoscalerFactory``.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import structlog

from servelane.core.exceptions import LabelNotFoundError
from servelane.core.telemetry import ErrorReporter
from servelane.deployment.equality import extract_reserved_annotations
from servelane.deployment.models import API_NAME_LABEL, APIIdentity, autoscaling_from_object, object_name

logger = structlog.get_logger(__name__)

Manifest = Dict[str, Any]
AutoscaleFn = Callable[[], Union[Awaitable[None], None]]
AutoscalerFactory = Callable[[Manifest], AutoscaleFn]

DEFAULT_TICK_INTERVAL = 10.0


class AutoscalerRegistry:
    """
    Registry of running autoscaler tasks, keyed by API name.

    Registration and cancellation are serialized by a single lock, so there
    is never a moment with two live tasks for one API and a cancel can never
    drop a task registered after it.
    """

    def __init__(self,
                 autoscaler_factory: AutoscalerFactory,
                 tick_interval: float = DEFAULT_TICK_INTERVAL,
                 error_reporter: Optional[ErrorReporter] = None):
        """Initialize an empty registry."""

        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive")

        self.autoscaler_factory = autoscaler_factory
        self.tick_interval = tick_interval
        self.error_reporter = error_reporter or ErrorReporter()

        self._tasks: Dict[str, asyncio.Task] = {}
        # what each task was bound to at registration
        self._bindings: Dict[str, Tuple[APIIdentity, Dict[str, str]]] = {}
        self._lock = asyncio.Lock()

    def get(self, api_name: str) -> Optional[asyncio.Task]:
        """Task currently registered for an API, if any."""
        return self._tasks.get(api_name)

    def api_names(self) -> List[str]:
        """Names of APIs with a registered task."""
        return sorted(self._tasks)

    def __contains__(self, api_name: object) -> bool:
        return api_name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def refresh_registration(self, deployment: Mapping[str, Any]) -> asyncio.Task:
        """
        (Re)start the autoscaler task of the API a Deployment belongs to.

        Any previous task is cancelled and awaited before the replacement is
        scheduled. If building the new autoscale function fails, the API is
        left without a task and the error propagates.
        """
        api_name = APIIdentity.of(deployment).api_name
        if not api_name:
            raise LabelNotFoundError(API_NAME_LABEL, object_name(deployment))

        async with self._lock:
            previous = self._tasks.pop(api_name, None)
            self._bindings.pop(api_name, None)
            if previous is not None:
                await _cancel_task(previous)

            autoscale_fn = self.autoscaler_factory(dict(deployment))
            task = asyncio.create_task(
                self._run(api_name, autoscale_fn),
                name=f"{api_name}-autoscaler",
            )
            self._tasks[api_name] = task
            self._bindings[api_name] = _binding(deployment)

        logger.info("Autoscaler registered", api_name=api_name,
                    replaced=previous is not None, interval=self.tick_interval)
        return task

    async def cancel(self, api_name: str) -> bool:
        """Cancel and remove an API's task; returns False if none was registered."""
        async with self._lock:
            task = self._tasks.pop(api_name, None)
            self._bindings.pop(api_name, None)
            if task is None:
                return False
            await _cancel_task(task)

        logger.info("Autoscaler cancelled", api_name=api_name)
        return True

    async def shutdown(self) -> None:
        """Cancel every registered task."""
        async with self._lock:
            tasks = list(self._tasks.values())
            self._tasks.clear()
            self._bindings.clear()
            for task in tasks:
                await _cancel_task(task)

        logger.info("Autoscaler registry shut down", cancelled=len(tasks))

    async def sync(self, deployments: Iterable[Mapping[str, Any]]) -> Tuple[List[str], List[str]]:
        """
        Align the registry with the Deployments currently in the cluster.

        Used by long-running processes that did not apply the Deployments
        themselves. New Deployments, and ones whose identity labels or reserved
        annotations changed since registration, are (re)registered; tasks of
        APIs whose Deployment is gone are cancelled. Returns the registered
        and cancelled API names.
        """
        live: Dict[str, Mapping[str, Any]] = {}
        for deployment in deployments:
            api_name = APIIdentity.of(deployment).api_name
            if api_name:
                live[api_name] = deployment

        cancelled = [api_name for api_name in list(self._tasks) if api_name not in live]
        for api_name in cancelled:
            await self.cancel(api_name)

        registered = []
        for api_name, deployment in sorted(live.items()):
            task = self._tasks.get(api_name)
            if task is None or task.done() or self._bindings.get(api_name) != _binding(deployment):
                await self.refresh_registration(deployment)
                registered.append(api_name)

        if registered or cancelled:
            logger.info("Autoscalers synced", registered=registered, cancelled=cancelled)
        return registered, cancelled

    async def _run(self, api_name: str, autoscale_fn: AutoscaleFn) -> None:
        """Tick loop; a failed tick is reported and the schedule continues."""
        while True:
            try:
                result = autoscale_fn()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.error_reporter.report(e, f"{api_name} autoscaler cron failed")

            await asyncio.sleep(self.tick_interval)


def _binding(deployment: Mapping[str, Any]) -> Tuple[APIIdentity, Dict[str, str]]:
    return APIIdentity.of(deployment), extract_reserved_annotations(deployment)


async def _cancel_task(task: asyncio.Task) -> None:
    if task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


def bounds_autoscaler_factory(gateway: Any) -> AutoscalerFactory:
    """
    Factory for an autoscale function that keeps replicas within the annotated bounds.

    The bounds are read from the Deployment at registration time; each tick
    re-reads the live object and scales it back into range if needed.
    """
    def factory(deployment: Manifest) -> AutoscaleFn:
        autoscaling = autoscaling_from_object(deployment)
        name = object_name(deployment)

        async def autoscale() -> None:
            live = await gateway.get_deployment(name)
            if live is None:
                return

            spec = live.setdefault("spec", {})
            current = spec.get("replicas") or 0
            target = max(autoscaling.min_replicas, min(current, autoscaling.max_replicas))
            if target == current:
                return

            spec["replicas"] = target
            await gateway.update_deployment(live)
            logger.info("Replicas brought within bounds", deployment=name,
                        from_replicas=current, to_replicas=target)

        return autoscale

    return factory


__all__ = [
    "AutoscaleFn",
    "AutoscalerFactory",
    "AutoscalerRegistry",
    "bounds_autoscaler_factory",
]
