"""
Grafana dashboard registration.

Each cluster gets one dashboard (uid = cluster name) with a row of panels per
deployed API. Registration is best-effort from the operator's point of view:
callers log failures and carry on.
"""

from typing import Any, Dict, Iterable, List, Optional

import httpx
import structlog

from servelane.config.settings import DashboardSettings
from servelane.core.exceptions import DashboardError

logger = structlog.get_logger(__name__)

PANEL_WIDTH = 12
PANEL_HEIGHT = 8

_PANEL_QUERIES = {
    "Requests per second": 'sum(rate(servelane_requests_total{{api_name="{api_name}"}}[1m]))',
    "Replicas": 'sum(kube_deployment_status_replicas_available{{deployment="api-{api_name}"}})',
}


def build_api_panels(api_name: str, row: int) -> List[Dict[str, Any]]:
    """Panels displayed for a single API, laid out on grid row ``row``."""
    panels = []
    for column, (title, query) in enumerate(_PANEL_QUERIES.items()):
        panels.append({
            "type": "timeseries",
            "title": f"{api_name}: {title.lower()}",
            "gridPos": {
                "x": column * PANEL_WIDTH,
                "y": row * PANEL_HEIGHT,
                "w": PANEL_WIDTH,
                "h": PANEL_HEIGHT,
            },
            "targets": [{"expr": query.format(api_name=api_name), "refId": "A"}],
            "options": {"legend": {"showLegend": False}},
            "servelaneAPI": api_name,
        })
    return panels


def build_dashboard(cluster_name: str, api_names: Iterable[str]) -> Dict[str, Any]:
    """Full dashboard definition for a cluster and its APIs."""
    panels: List[Dict[str, Any]] = []
    for row, api_name in enumerate(sorted(set(api_names))):
        panels.extend(build_api_panels(api_name, row))
    for panel_id, panel in enumerate(panels, start=1):
        panel["id"] = panel_id
    return {
        "uid": cluster_name,
        "title": f"servelane: {cluster_name}",
        "tags": ["servelane"],
        "panels": panels,
        "schemaVersion": 39,
    }


def dashboard_api_names(dashboard: Dict[str, Any]) -> List[str]:
    """Names of the APIs that currently have panels on a dashboard."""
    names = {
        panel["servelaneAPI"]
        for panel in dashboard.get("panels") or []
        if panel.get("servelaneAPI")
    }
    return sorted(names)


class DashboardClient:
    """Adds and removes API panels on a cluster's Grafana dashboard."""

    def __init__(self, http_client: httpx.AsyncClient):
        """Initialize around an HTTP client already pointed at Grafana."""
        self.client = http_client

    @classmethod
    def from_settings(cls, settings: DashboardSettings) -> "DashboardClient":
        """Build a client from dashboard settings."""
        headers = {"Content-Type": "application/json"}
        if settings.api_key:
            headers["Authorization"] = f"Bearer {settings.api_key.get_secret_value()}"
        http_client = httpx.AsyncClient(
            base_url=settings.url,
            headers=headers,
            timeout=settings.timeout_seconds,
        )
        return cls(http_client)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def _get_dashboard(self, cluster_name: str) -> Optional[Dict[str, Any]]:
        try:
            response = await self.client.get(f"/api/dashboards/uid/{cluster_name}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DashboardError(f"get dashboard {cluster_name}", e) from e
        return response.json()["dashboard"]

    async def _save_dashboard(self, dashboard: Dict[str, Any]) -> None:
        payload = {"dashboard": dashboard, "overwrite": True}
        try:
            response = await self.client.post("/api/dashboards/db", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DashboardError(f"save dashboard {dashboard['uid']}", e) from e

    async def add(self, cluster_name: str, api_name: str) -> None:
        """Add panels for ``api_name``; a no-op when they already exist."""
        dashboard = await self._get_dashboard(cluster_name)
        current = dashboard_api_names(dashboard) if dashboard else []
        if api_name in current:
            return

        updated = build_dashboard(cluster_name, current + [api_name])
        if dashboard and dashboard.get("version") is not None:
            updated["version"] = dashboard["version"]
        await self._save_dashboard(updated)

        logger.info("API added to dashboard", cluster=cluster_name, api_name=api_name)

    async def remove(self, all_api_names: Iterable[str], cluster_name: str, api_name: str) -> None:
        """Rebuild the dashboard for every known API except ``api_name``."""
        remaining = [name for name in all_api_names if name != api_name]
        dashboard = await self._get_dashboard(cluster_name)

        updated = build_dashboard(cluster_name, remaining)
        if dashboard and dashboard.get("version") is not None:
            updated["version"] = dashboard["version"]
        await self._save_dashboard(updated)

        logger.info("API removed from dashboard", cluster=cluster_name, api_name=api_name,
                    remaining=len(set(remaining)))


__all__ = ["DashboardClient", "build_dashboard", "build_api_panels", "dashboard_api_names"]
