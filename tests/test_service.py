"""Tests for the lifecycle service state machine."""

from unittest.mock import AsyncMock

import pytest

from lifecycle.errors import ConvergenceFailed, PatchRejected, ResourceNotFound
from lifecycle.models import (
    AuditLogFilterRuleConfig,
    DedicatedClusterConfig,
    LifecycleState,
    ResourceKind,
    StorageNodeSetting,
    TidbNodeSetting,
)
from lifecycle.service import LifecycleService
from lifecycle.settings import Settings

KIND = ResourceKind.DEDICATED_CLUSTER
REF = {"cluster_id": "c1"}

OBSERVED = {
    "clusterId": "c1",
    "displayName": "orders",
    "regionId": "aws-us-east-1",
    "state": "ACTIVE",
    "tidbNodeSetting": {"nodeSpecKey": "8C16G", "nodeCount": 2},
    "tikvNodeSetting": {"nodeSpecKey": "8C32G", "nodeCount": 3, "storageSizeGi": 100},
}


def desired(**overrides):
    fields = dict(
        display_name="orders",
        region_id="aws-us-east-1",
        tidb_node_setting=TidbNodeSetting(node_spec_key="8C16G", node_count=2),
        tikv_node_setting=StorageNodeSetting(node_spec_key="8C32G", node_count=3, storage_size_gi=100),
    )
    fields.update(overrides)
    return DedicatedClusterConfig(**fields)


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def service(client, fast_polling):
    settings = Settings(default_interval=0.01, default_timeout=5.0, not_found_retry_budget=3)
    return LifecycleService(client=client, settings=settings)


class TestCreate:
    """Absent -> Pending -> Ready."""

    @pytest.mark.asyncio
    async def test_create_waits_for_target_state(self, service, client):
        client.create.return_value = {"clusterId": "c1", "state": "CREATING"}
        client.get.side_effect = [
            ResourceNotFound("not yet", status_code=404),
            {"clusterId": "c1", "state": "CREATING"},
            {"clusterId": "c1", "state": "ACTIVE"},
        ]

        result = await service.create(KIND, {}, desired())

        assert result.state == LifecycleState.READY
        assert result.ref == REF
        assert result.remote_state == "ACTIVE"
        assert result.snapshot == {"clusterId": "c1", "state": "ACTIVE"}
        assert client.get.await_count == 3
        assert service.state_of(KIND, REF) == LifecycleState.READY

    @pytest.mark.asyncio
    async def test_synchronous_kind_is_not_polled(self, service, client):
        client.create.return_value = {"auditLogFilterRuleId": "r1"}
        config = AuditLogFilterRuleConfig(cluster_id="c1", user_expr="%", db_expr="%", table_expr="%")

        result = await service.create(ResourceKind.DEDICATED_AUDIT_LOG_FILTER_RULE, {"cluster_id": "c1"}, config)

        assert result.state == LifecycleState.READY
        assert result.ref == {"cluster_id": "c1", "audit_log_filter_rule_id": "r1"}
        client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_state_records_error(self, service, client):
        client.create.return_value = {"clusterId": "c1"}
        client.get.return_value = {"clusterId": "c1", "state": "BROKEN"}

        with pytest.raises(ConvergenceFailed):
            await service.create(KIND, {}, desired())

        assert service.state_of(KIND, REF) == LifecycleState.ERROR


class TestUpdate:
    """Ready -> Pending -> Ready, or no-op."""

    @pytest.mark.asyncio
    async def test_empty_plan_makes_no_call(self, service, client):
        result = await service.update(KIND, REF, desired(), observed=OBSERVED)

        assert result.state == LifecycleState.READY
        assert result.plan.is_empty
        client.get.assert_not_awaited()
        client.patch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_plan_makes_no_call(self, service, client):
        with pytest.raises(PatchRejected):
            await service.update(KIND, REF, desired(region_id="aws-us-west-2"), observed=OBSERVED)

        client.patch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_patch_then_converge(self, service, client):
        client.patch.return_value = {}
        client.get.side_effect = [
            {**OBSERVED, "state": "MODIFYING"},
            {**OBSERVED, "displayName": "orders-v2"},
        ]

        result = await service.update(KIND, REF, desired(display_name="orders-v2"), observed=OBSERVED)

        kind, ref, patch = client.patch.await_args.args
        assert (kind, ref) == (KIND, REF)
        assert patch.payload == {"display_name": "orders-v2"}
        assert result.state == LifecycleState.READY
        assert result.plan.touched_fields == ["display_name"]

    @pytest.mark.asyncio
    async def test_reads_observed_when_not_given(self, service, client):
        client.get.return_value = OBSERVED

        result = await service.update(KIND, REF, desired())

        assert result.plan.is_empty
        client.get.assert_awaited_once_with(KIND, REF)


class TestDelete:
    """Any -> Deleting -> Absent."""

    @pytest.mark.asyncio
    async def test_delete_waits_until_gone(self, service, client):
        client.delete.return_value = {}
        client.get.side_effect = [
            {"clusterId": "c1", "state": "DELETING"},
            ResourceNotFound("gone", status_code=404),
        ]

        result = await service.delete(KIND, REF)

        assert result.state == LifecycleState.ABSENT
        assert result.remote_state == "DELETED"
        assert service.state_of(KIND, REF) == LifecycleState.ABSENT

    @pytest.mark.asyncio
    async def test_delete_without_wait(self, service, client):
        client.delete.return_value = {}

        result = await service.delete(KIND, REF, wait=False)

        assert result.state == LifecycleState.DELETING
        client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_deleted(self, service, client):
        client.delete.side_effect = ResourceNotFound("gone", status_code=404)

        result = await service.delete(KIND, REF)

        assert result.state == LifecycleState.ABSENT
        client.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delete_forgets_resource(self, service, client):
        client.create.return_value = {"clusterId": "c1", "state": "ACTIVE"}
        client.get.return_value = {"clusterId": "c1", "state": "ACTIVE"}
        await service.create(KIND, {}, desired())
        client.delete.return_value = {}
        client.get.side_effect = [ResourceNotFound("gone", status_code=404)]

        await service.delete(KIND, REF)

        assert service._states == {}
        assert service.state_of(KIND, REF) == LifecycleState.ABSENT
