"""
Unit tests for Grafana dashboard registration.
"""

import json

import httpx
import pytest
import pytest_asyncio

from servelane.config.settings import DashboardSettings
from servelane.core.exceptions import DashboardError
from servelane.monitoring.dashboard import (
    DashboardClient,
    build_dashboard,
    dashboard_api_names,
)


class FakeGrafana:
    """Minimal dashboard API backed by a dict."""

    def __init__(self, fail_save=False):
        self.dashboards = {}
        self.saved = []
        self.fail_save = fail_save

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET" and request.url.path.startswith("/api/dashboards/uid/"):
            uid = request.url.path.rsplit("/", 1)[-1]
            if uid not in self.dashboards:
                return httpx.Response(404, json={"message": "Dashboard not found"})
            return httpx.Response(200, json={"dashboard": self.dashboards[uid], "meta": {}})

        if request.method == "POST" and request.url.path == "/api/dashboards/db":
            if self.fail_save:
                return httpx.Response(500, json={"message": "database locked"})
            payload = json.loads(request.content)
            dashboard = payload["dashboard"]
            dashboard["version"] = dashboard.get("version", 0) + 1
            self.dashboards[dashboard["uid"]] = dashboard
            self.saved.append(payload)
            return httpx.Response(200, json={"status": "success", "uid": dashboard["uid"]})

        return httpx.Response(405)


@pytest.fixture
def grafana():
    return FakeGrafana()


@pytest_asyncio.fixture
async def dashboard_client(grafana):
    http_client = httpx.AsyncClient(base_url="http://grafana:3000", transport=httpx.MockTransport(grafana.handler))
    dashboard_client = DashboardClient(http_client)
    yield dashboard_client
    await dashboard_client.aclose()


class TestBuildDashboard:
    """Test dashboard definitions."""

    def test_one_row_per_api(self):
        dashboard = build_dashboard("prod", ["b", "a", "a"])

        assert dashboard["uid"] == "prod"
        assert dashboard_api_names(dashboard) == ["a", "b"]
        assert [p["id"] for p in dashboard["panels"]] == list(range(1, len(dashboard["panels"]) + 1))
        rows = {p["servelaneAPI"]: p["gridPos"]["y"] for p in dashboard["panels"]}
        assert rows["a"] < rows["b"]

    def test_empty(self):
        assert build_dashboard("prod", [])["panels"] == []


class TestDashboardClient:
    """Test add/remove against a fake Grafana."""

    @pytest.mark.asyncio
    async def test_add_creates_dashboard(self, dashboard_client, grafana):
        await dashboard_client.add("prod", "iris")

        assert dashboard_api_names(grafana.dashboards["prod"]) == ["iris"]
        assert grafana.saved[0]["overwrite"] is True

    @pytest.mark.asyncio
    async def test_add_is_idempotent(self, dashboard_client, grafana):
        await dashboard_client.add("prod", "iris")
        await dashboard_client.add("prod", "iris")

        assert len(grafana.saved) == 1

    @pytest.mark.asyncio
    async def test_add_keeps_existing_apis(self, dashboard_client, grafana):
        await dashboard_client.add("prod", "iris")
        await dashboard_client.add("prod", "mnist")

        assert dashboard_api_names(grafana.dashboards["prod"]) == ["iris", "mnist"]
        assert grafana.saved[-1]["dashboard"]["version"] == 2

    @pytest.mark.asyncio
    async def test_remove_rebuilds_from_known_apis(self, dashboard_client, grafana):
        await dashboard_client.add("prod", "iris")
        await dashboard_client.add("prod", "mnist")

        await dashboard_client.remove(["iris", "mnist", "bert"], "prod", "iris")

        assert dashboard_api_names(grafana.dashboards["prod"]) == ["bert", "mnist"]

    @pytest.mark.asyncio
    async def test_save_failure(self, grafana):
        grafana.fail_save = True
        http_client = httpx.AsyncClient(base_url="http://grafana:3000", transport=httpx.MockTransport(grafana.handler))
        client = DashboardClient(http_client)
        try:
            with pytest.raises(DashboardError, match="save dashboard prod"):
                await client.add("prod", "iris")
        finally:
            await client.aclose()

    @pytest.mark.asyncio
    async def test_from_settings_sets_auth_header(self):
        settings = DashboardSettings(url="http://grafana.local", api_key="secret-token")
        client = DashboardClient.from_settings(settings)
        try:
            assert client.client.headers["Authorization"] == "Bearer secret-token"
            assert client.client.base_url.host == "grafana.local"
        finally:
            await client.aclose()
