"""
Pytest configuration and fixtures for Servelane tests.

This module provides the in-memory collaborators and the reconciler wiring
shared by the test suite.
"""

import os
import tempfile
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from servelane.config.settings import Settings
from servelane.core.logging import setup_logging
from servelane.core.telemetry import ErrorReporter
from servelane.deployment.autoscaler import AutoscalerRegistry
from servelane.deployment.models import DesiredConfig
from servelane.deployment.reconciler import APIReconciler
from tests.fakes import TEST_BUCKET, TEST_CLUSTER, FakeDashboard, FakeGateway, FakeObjectStore


@pytest.fixture(scope="session", autouse=True)
def setup_test_logging():
    """Set up logging for tests."""
    setup_logging(log_level="DEBUG", environment="development")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def test_settings() -> Generator[Settings, None, None]:
    """Create test settings from a controlled environment."""
    test_env = {
        "ENVIRONMENT": "development",
        "LOG_LEVEL": "DEBUG",
        "SERVELANE_BUCKET": TEST_BUCKET,
        "SERVELANE_CLUSTER_NAME": TEST_CLUSTER,
        "SERVELANE_AUTOSCALING_TICK_INTERVAL": "0.5",
        "MINIO_ENDPOINT": "localhost:9000",
        "GRAFANA_ENABLED": "false",
    }

    original_env = {}
    for key, value in test_env.items():
        original_env[key] = os.environ.get(key)
        os.environ[key] = value

    from servelane.config.settings import get_settings
    try:
        get_settings.cache_clear()
        yield get_settings()
    finally:
        for key, value in original_env.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value
        get_settings.cache_clear()


@pytest.fixture
def error_reporter() -> ErrorReporter:
    """Error reporter with an isolated metrics registry."""
    return ErrorReporter(registry=CollectorRegistry())


@pytest.fixture
def gateway() -> FakeGateway:
    """In-memory cluster."""
    return FakeGateway()


@pytest.fixture
def object_store() -> FakeObjectStore:
    """In-memory object storage."""
    return FakeObjectStore()


@pytest.fixture
def dashboard() -> FakeDashboard:
    """In-memory dashboard."""
    return FakeDashboard()


@pytest.fixture
def autoscaled() -> list:
    """Deployments handed to the autoscaler factory, in registration order."""
    return []


@pytest_asyncio.fixture
async def autoscalers(autoscaled, error_reporter):
    """Registry whose autoscale functions only record that they ran."""
    def factory(deployment):
        autoscaled.append(deployment)

        async def autoscale():
            return None

        return autoscale

    registry = AutoscalerRegistry(factory, tick_interval=0.01, error_reporter=error_reporter)
    yield registry
    await registry.shutdown()


@pytest_asyncio.fixture
async def reconciler(gateway, object_store, dashboard, autoscalers, error_reporter):
    """Reconciler wired to the in-memory collaborators."""
    reconciler = APIReconciler(
        gateway=gateway,
        object_store=object_store,
        bucket=TEST_BUCKET,
        cluster_name=TEST_CLUSTER,
        autoscalers=autoscalers,
        dashboard=dashboard,
        error_reporter=error_reporter,
    )
    yield reconciler
    await reconciler.wait_for_background_tasks()


@pytest.fixture
def sample_config_data():
    """Sample desired API config as it would appear in a config file."""
    return {
        "name": "iris",
        "predictor": {
            "image": "registry.example.com/iris:1.0",
            "port": 8080,
            "env": {"MODEL_PATH": "/models/iris", "LOG_LEVEL": "info"},
        },
        "compute": {"cpu": "500m", "mem": "1Gi"},
        "autoscaling": {"min_replicas": 1, "max_replicas": 5, "init_replicas": 2},
    }


@pytest.fixture
def sample_config(sample_config_data) -> DesiredConfig:
    """Sample desired API config."""
    return DesiredConfig.model_validate(sample_config_data)


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers based on file location."""
    for item in items:
        if "unit" in str(item.path):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.path):
            item.add_marker(pytest.mark.integration)
