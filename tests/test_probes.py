"""Tests for HTTP refresh probes."""

import asyncio
import time
from unittest.mock import AsyncMock

import httpx
import pytest

from lifecycle.errors import ControlPlaneError, ConvergenceCancelled, ConvergenceTimeout, ResourceNotFound
from lifecycle.models import ResourceKind
from lifecycle.poller import ConvergenceSpec, PollContext, await_convergence
from lifecycle.probes import NotFoundPolicy, RefreshProbe
from lifecycle.states import Failed, NotFound, Observed


@pytest.fixture
def ctx():
    return PollContext(deadline=float("inf"), cancel_event=asyncio.Event())


def not_found():
    return ResourceNotFound("not found", status_code=404)


class TestStateReading:
    """Probe reads the kind's state field."""

    @pytest.mark.asyncio
    async def test_observed(self, ctx):
        fetch = AsyncMock(return_value={"clusterId": "c1", "state": "ACTIVE"})
        probe = RefreshProbe(fetch, ResourceKind.DEDICATED_CLUSTER)

        result = await probe(ctx)

        assert result == Observed(snapshot={"clusterId": "c1", "state": "ACTIVE"}, state="ACTIVE")

    @pytest.mark.asyncio
    async def test_private_endpoint_state_field(self, ctx):
        fetch = AsyncMock(return_value={"endpointState": "PENDING"})
        probe = RefreshProbe(fetch, ResourceKind.DEDICATED_PRIVATE_ENDPOINT_CONNECTION)

        result = await probe(ctx)

        assert result.state == "PENDING"

    @pytest.mark.asyncio
    async def test_legacy_cluster_state_field(self, ctx):
        fetch = AsyncMock(return_value={"id": "1", "status": {"cluster_status": "AVAILABLE"}})
        probe = RefreshProbe(fetch, ResourceKind.CLUSTER)

        result = await probe(ctx)

        assert result.state == "AVAILABLE"

    @pytest.mark.asyncio
    async def test_missing_state_field_fails(self, ctx):
        probe = RefreshProbe(AsyncMock(return_value={"clusterId": "c1"}), ResourceKind.DEDICATED_CLUSTER)

        result = await probe(ctx)

        assert isinstance(result, Failed)


class TestNotFoundPolicy:
    """404 handling."""

    @pytest.mark.asyncio
    async def test_retry_until_budget_exhausted(self, ctx):
        fetch = AsyncMock(side_effect=not_found())
        probe = RefreshProbe(fetch, ResourceKind.DEDICATED_CLUSTER, budget=2)

        results = [await probe(ctx) for _ in range(3)]

        assert isinstance(results[0], NotFound)
        assert isinstance(results[1], NotFound)
        assert isinstance(results[2], Failed)
        assert isinstance(results[2].error, ResourceNotFound)

    @pytest.mark.asyncio
    async def test_budget_counts_consecutive_misses(self, ctx):
        fetch = AsyncMock(side_effect=[not_found(), {"state": "CREATING"}, not_found(), not_found()])
        probe = RefreshProbe(fetch, ResourceKind.DEDICATED_CLUSTER, budget=2)

        results = [await probe(ctx) for _ in range(4)]

        assert [type(r) for r in results] == [NotFound, Observed, NotFound, NotFound]

    @pytest.mark.asyncio
    async def test_fail_policy(self, ctx):
        probe = RefreshProbe(
            AsyncMock(side_effect=not_found()),
            ResourceKind.DEDICATED_CLUSTER,
            not_found=NotFoundPolicy.FAIL,
        )

        assert isinstance(await probe(ctx), Failed)

    @pytest.mark.asyncio
    async def test_absent_policy(self, ctx):
        probe = RefreshProbe(
            AsyncMock(side_effect=not_found()),
            ResourceKind.SERVERLESS_BRANCH,
            not_found=NotFoundPolicy.ABSENT,
        )

        assert await probe(ctx) == Observed(snapshot=None, state="DELETED")


class TestTransientErrors:
    """Transport errors and 429/5xx share the retry budget."""

    @pytest.mark.asyncio
    async def test_server_error_retried(self, ctx):
        fetch = AsyncMock(side_effect=[ControlPlaneError("busy", status_code=503), {"state": "ACTIVE"}])
        probe = RefreshProbe(fetch, ResourceKind.DEDICATED_CLUSTER)

        assert isinstance(await probe(ctx), NotFound)
        assert isinstance(await probe(ctx), Observed)

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, ctx):
        fetch = AsyncMock(side_effect=httpx.ConnectError("connection refused"))
        probe = RefreshProbe(fetch, ResourceKind.DEDICATED_CLUSTER, budget=1)

        assert isinstance(await probe(ctx), NotFound)
        assert isinstance(await probe(ctx), Failed)

    @pytest.mark.asyncio
    async def test_client_error_fails(self, ctx):
        error = ControlPlaneError("bad request", status_code=400)
        probe = RefreshProbe(AsyncMock(side_effect=error), ResourceKind.DEDICATED_CLUSTER)

        result = await probe(ctx)

        assert isinstance(result, Failed)
        assert result.error is error


async def slow_fetch():
    await asyncio.sleep(2)
    return {"state": "ACTIVE"}


class TestFetchBounds:
    """A fetch never outlives the wait's deadline or cancellation."""

    @pytest.mark.asyncio
    async def test_fetch_abandoned_at_deadline(self):
        ctx = PollContext(deadline=time.monotonic() + 0.1, cancel_event=asyncio.Event())
        probe = RefreshProbe(slow_fetch, ResourceKind.DEDICATED_CLUSTER, budget=0)

        started = time.monotonic()
        result = await probe(ctx)

        assert time.monotonic() - started < 1
        assert result == NotFound(reason="deadline reached")
        assert probe.misses == 0

    @pytest.mark.asyncio
    async def test_fetch_abandoned_on_cancel(self):
        ctx = PollContext(deadline=time.monotonic() + 60, cancel_event=asyncio.Event())
        probe = RefreshProbe(slow_fetch, ResourceKind.DEDICATED_CLUSTER)
        asyncio.get_running_loop().call_later(0.05, ctx.cancel_event.set)

        started = time.monotonic()
        result = await probe(ctx)

        assert time.monotonic() - started < 1
        assert result == NotFound(reason="cancelled")

    @pytest.mark.asyncio
    async def test_slow_fetch_times_out_the_wait(self, fast_polling):
        probe = RefreshProbe(slow_fetch, ResourceKind.DEDICATED_CLUSTER)
        spec = ConvergenceSpec.for_kind(ResourceKind.DEDICATED_CLUSTER, probe, timeout=0.3, interval=0.01)

        started = time.monotonic()
        with pytest.raises(ConvergenceTimeout):
            await await_convergence(spec)

        assert time.monotonic() - started < 1

    @pytest.mark.asyncio
    async def test_slow_fetch_cancels_the_wait(self, fast_polling):
        probe = RefreshProbe(slow_fetch, ResourceKind.DEDICATED_CLUSTER)
        spec = ConvergenceSpec.for_kind(ResourceKind.DEDICATED_CLUSTER, probe, timeout=60, interval=0.01)
        cancel_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel_event.set)

        with pytest.raises(ConvergenceCancelled):
            await asyncio.wait_for(await_convergence(spec, cancel_event), timeout=1)
