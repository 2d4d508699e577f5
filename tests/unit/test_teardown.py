"""
Unit tests for API teardown.
"""

import pytest

from servelane.core.exceptions import GatewayError
from tests.fakes import TEST_BUCKET, TEST_CLUSTER, TEST_PROJECT_ID, storage_error


class TestDeleteAPI:
    """Test the three concurrent teardown actions."""

    @pytest.mark.asyncio
    async def test_delete_removes_everything(self, reconciler, gateway, object_store, dashboard, sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)

        await reconciler.delete_api("iris")

        assert gateway.object_count() == 0
        assert "iris" not in reconciler.autoscalers
        assert object_store.keys(TEST_BUCKET) == []
        assert object_store.deleted_prefixes == [(TEST_BUCKET, "apis/iris")]
        assert "iris" not in dashboard.apis[TEST_CLUSTER]

    @pytest.mark.asyncio
    async def test_keep_cache_skips_storage(self, reconciler, gateway, object_store, sample_config):
        api, _ = await reconciler.update_api(sample_config, TEST_PROJECT_ID)

        await reconciler.delete_api("iris", keep_cache=True)

        assert gateway.object_count() == 0
        assert object_store.deleted_prefixes == []
        assert object_store.keys(TEST_BUCKET) == [api.key]

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self, reconciler, gateway, object_store, error_reporter,
                                                sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        object_store.fail_delete = storage_error()

        await reconciler.delete_api("iris")

        assert object_store.deleted_prefixes == [(TEST_BUCKET, "apis/iris")]
        assert gateway.object_count() == 0
        assert error_reporter.error_count("delete cached api specs") == 1

    @pytest.mark.asyncio
    async def test_dashboard_failure_is_swallowed(self, reconciler, gateway, dashboard, error_reporter,
                                                  sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        dashboard.fail_remove = True

        await reconciler.delete_api("iris")

        assert gateway.object_count() == 0
        assert error_reporter.error_count("remove api from dashboard") == 1

    @pytest.mark.asyncio
    async def test_status_listing_failure_is_swallowed(self, reconciler, gateway, dashboard, error_reporter,
                                                       sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        gateway.failures["list_deployments_with_label"] = GatewayError("list deployments", RuntimeError("timeout"))

        await reconciler.delete_api("iris")

        assert gateway.object_count() == 0
        assert dashboard.removed == []
        assert error_reporter.error_count("failed to get API statuses") == 1

    @pytest.mark.asyncio
    async def test_cluster_failure_propagates(self, reconciler, gateway, object_store, sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        gateway.failures["delete_service"] = GatewayError("delete service api-iris", RuntimeError("denied"))

        with pytest.raises(GatewayError, match="delete service"):
            await reconciler.delete_api("iris")

        # the other deletions were still attempted
        assert gateway.deployments == {}
        assert gateway.virtual_services == {}
        assert "iris" not in reconciler.autoscalers
        assert object_store.keys(TEST_BUCKET) == []

    @pytest.mark.asyncio
    async def test_first_cluster_failure_wins(self, reconciler, gateway, sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        gateway.failures["delete_deployment"] = GatewayError("delete deployment api-iris")
        gateway.failures["delete_virtual_service"] = GatewayError("delete virtual service api-iris")

        with pytest.raises(GatewayError, match="delete deployment"):
            await reconciler.delete_api("iris")

    @pytest.mark.asyncio
    async def test_unexpected_failure_still_attempts_every_deletion(self, reconciler, gateway, sample_config):
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        gateway.failures["delete_deployment"] = TimeoutError("api server timed out")

        with pytest.raises(TimeoutError):
            await reconciler.delete_api("iris")

        assert gateway.services == {}
        assert gateway.virtual_services == {}
        assert "iris" not in reconciler.autoscalers

    @pytest.mark.asyncio
    async def test_delete_absent_api(self, reconciler, gateway, object_store):
        await reconciler.delete_api("iris")

        assert gateway.object_count() == 0
        assert object_store.deleted_prefixes == [(TEST_BUCKET, "apis/iris")]

    @pytest.mark.asyncio
    async def test_other_apis_stay_on_dashboard(self, reconciler, dashboard, sample_config):
        other = sample_config.model_copy(update={"name": "other"})
        await reconciler.update_api(sample_config, TEST_PROJECT_ID)
        await reconciler.update_api(other, TEST_PROJECT_ID)

        await reconciler.delete_api("iris")

        assert dashboard.apis[TEST_CLUSTER] == {"other"}
