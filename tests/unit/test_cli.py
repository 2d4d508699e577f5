"""
Unit tests for the command line interface.
"""

import pytest
import yaml
from typer.testing import CliRunner

from servelane import cli
from servelane.config.settings import get_settings
from servelane.deployment.autoscaler import AutoscalerRegistry
from servelane.deployment.reconciler import APIReconciler
from tests.fakes import TEST_BUCKET, TEST_CLUSTER, FakeDashboard, FakeGateway, FakeObjectStore

runner = CliRunner()


@pytest.fixture
def cluster(monkeypatch):
    """Point the CLI at in-memory collaborators that outlive a single command."""
    gateway = FakeGateway()
    object_store = FakeObjectStore()

    def init():
        autoscalers = AutoscalerRegistry(lambda deployment: (lambda: None), tick_interval=60)
        return APIReconciler(gateway, object_store, TEST_BUCKET, TEST_CLUSTER, autoscalers, FakeDashboard())

    monkeypatch.setattr(cli, "_init", init)
    return gateway


@pytest.fixture
def config_file(temp_dir, sample_config_data):
    path = temp_dir / "iris.yaml"
    path.write_text(yaml.safe_dump(sample_config_data), encoding="utf-8")
    return path


class TestCommands:
    """Test CLI commands."""

    def test_version(self):
        result = runner.invoke(cli.app, ["version"])
        assert result.exit_code == 0
        assert "Servelane v" in result.output

    def test_validate_config(self, test_settings):
        result = runner.invoke(cli.app, ["validate-config"])
        assert result.exit_code == 0
        assert "Configuration validation successful" in result.output

    def test_validate_config_missing_bucket(self, test_settings, monkeypatch):
        monkeypatch.delenv("SERVELANE_BUCKET")
        get_settings.cache_clear()

        result = runner.invoke(cli.app, ["validate-config"])

        assert result.exit_code == 1
        assert "SERVELANE_BUCKET" in result.output

    def test_load_config(self, config_file):
        config = cli.load_config(config_file)
        assert config.name == "iris"
        assert config.compute.mem == "1Gi"

    def test_deploy_invalid_config(self, temp_dir, cluster):
        path = temp_dir / "bad.yaml"
        path.write_text("name: Not_Valid\n", encoding="utf-8")

        result = runner.invoke(cli.app, ["deploy", str(path)])

        assert result.exit_code == 1
        assert "Invalid API config" in result.output
        assert cluster.writes == []

    def test_deploy_status_delete(self, config_file, cluster):
        result = runner.invoke(cli.app, ["deploy", str(config_file)])
        assert result.exit_code == 0, result.output
        assert "creating iris" in result.output
        assert cluster.object_count() == 3

        result = runner.invoke(cli.app, ["status"])
        assert result.exit_code == 0, result.output
        assert "iris" in result.output
        assert "updating" in result.output

        result = runner.invoke(cli.app, ["deploy", str(config_file)])
        assert result.exit_code == 0
        assert "iris is already updating" in result.output

        result = runner.invoke(cli.app, ["delete", "iris"])
        assert result.exit_code == 0, result.output
        assert cluster.object_count() == 0

    def test_refresh_not_deployed(self, cluster):
        result = runner.invoke(cli.app, ["refresh", "iris"])
        assert result.exit_code == 1
        assert "iris is not deployed" in result.output

    def test_status_not_deployed(self, cluster):
        result = runner.invoke(cli.app, ["status", "iris"])
        assert result.exit_code == 1
        assert "iris is not deployed" in result.output
