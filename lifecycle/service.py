"""Lifecycle service.

Runs create, update and delete for any resource kind: send the request, then
wait for the remote operation to converge. Updates are planned first and never
reach the network when the plan is empty or rejected.
"""

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from lifecycle.client import ENDPOINTS, ControlPlaneClient, get_control_plane_client
from lifecycle.errors import ControlPlaneError, ConvergenceError, ResourceNotFound
from lifecycle.models import CONFIG_MODELS, LifecycleResult, LifecycleState, PatchPlan, ResourceKind
from lifecycle.planner import plan as plan_patch
from lifecycle.poller import POLL_INTERVALS, ConvergenceSpec, await_convergence
from lifecycle.probes import NotFoundPolicy, RefreshProbe
from lifecycle.rules import rule_table
from lifecycle.settings import Settings, get_settings
from lifecycle.states import is_pollable

logger = logging.getLogger(__name__)


class LifecycleService:
    """Service for resource lifecycle operations."""

    def __init__(
        self,
        client: Optional[ControlPlaneClient] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client or get_control_plane_client()
        self._states: dict[tuple, LifecycleState] = {}

    def state_of(self, kind: ResourceKind, ref: dict[str, str]) -> LifecycleState:
        """Last lifecycle state recorded for a resource in this process."""
        return self._states.get(self._key(kind, ref), LifecycleState.ABSENT)

    async def create(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        config: BaseModel,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LifecycleResult:
        """Create a resource and wait until it is ready.

        Args:
            kind: Resource kind.
            ref: Parent identifiers, e.g. ``{"cluster_id": ...}`` for a node group.
            config: Desired configuration.

        Returns:
            LifecycleResult whose ref includes the new resource id.
        """
        response = await self.client.create(kind, ref, config)
        ref = self._with_id(kind, ref, response)

        if not is_pollable(kind):
            return self._record(kind, ref, LifecycleState.READY, snapshot=response, message="created")

        self._record(kind, ref, LifecycleState.PENDING)
        return await self._converge(kind, ref, timeout, cancel_event)

    async def update(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        desired: BaseModel,
        observed: BaseModel | dict[str, Any] | None = None,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LifecycleResult:
        """Plan and apply a partial update.

        The current state is read from the API when ``observed`` is not given.

        Raises:
            PatchRejected: the change is invalid; nothing was sent.
        """
        if observed is None:
            observed = await self.client.get(kind, ref)

        patch = plan_patch(desired, self._observed_config(kind, observed), rule_table(kind))
        if patch.is_empty:
            return self._record(kind, ref, LifecycleState.READY, plan=patch, message="no changes")

        logger.info(f"Updating {kind.value} {self._label(kind, ref)}: {', '.join(patch.touched_fields)}")
        response = await self.client.patch(kind, ref, patch)

        if not is_pollable(kind):
            return self._record(kind, ref, LifecycleState.READY, snapshot=response, plan=patch, message="updated")

        self._record(kind, ref, LifecycleState.PENDING)
        return await self._converge(kind, ref, timeout, cancel_event, plan=patch)

    async def delete(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        wait: bool = True,
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LifecycleResult:
        """Delete a resource, optionally waiting until it is gone."""
        try:
            await self.client.delete(kind, ref)
        except ResourceNotFound:
            logger.info(f"{kind.value} {self._label(kind, ref)} already deleted")
            return self._record(kind, ref, LifecycleState.ABSENT, message="already deleted")

        if not is_pollable(kind):
            return self._record(kind, ref, LifecycleState.ABSENT, message="deleted")

        if not wait:
            return self._record(kind, ref, LifecycleState.DELETING, message="delete requested")
        self._record(kind, ref, LifecycleState.DELETING)
        return await self._converge(kind, ref, timeout, cancel_event, deleting=True)

    async def wait_ready(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        timeout: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LifecycleResult:
        """Wait for an existing resource to reach a stable state."""
        return await self._converge(kind, ref, timeout, cancel_event)

    async def _converge(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        timeout: Optional[float],
        cancel_event: Optional[asyncio.Event],
        deleting: bool = False,
        plan: Optional[PatchPlan] = None,
    ) -> LifecycleResult:
        async def fetch() -> dict[str, Any]:
            return await self.client.get(kind, ref)

        probe = RefreshProbe(
            fetch,
            kind,
            not_found=NotFoundPolicy.ABSENT if deleting else NotFoundPolicy.RETRY,
            budget=self.settings.not_found_retry_budget,
        )
        spec = ConvergenceSpec.for_kind(
            kind,
            probe,
            timeout=timeout or self.settings.default_timeout,
            interval=POLL_INTERVALS.get(kind, self.settings.default_interval),
            deleting=deleting,
            label=f"{kind.value} {self._label(kind, ref)}",
        )

        try:
            convergence = await await_convergence(spec, cancel_event)
        except ConvergenceError as e:
            logger.error(f"{e.label} did not converge: {e}")
            self._record(kind, ref, LifecycleState.ERROR, snapshot=e.last_snapshot, message=str(e))
            raise

        if deleting:
            return self._record(kind, ref, LifecycleState.ABSENT, remote_state=convergence.state, message="deleted")
        return self._record(
            kind,
            ref,
            LifecycleState.READY,
            remote_state=convergence.state,
            snapshot=convergence.snapshot,
            plan=plan,
            message=f"reached {convergence.state}",
        )

    def _observed_config(self, kind: ResourceKind, observed: BaseModel | dict[str, Any]) -> BaseModel:
        if isinstance(observed, BaseModel):
            return observed
        try:
            return CONFIG_MODELS[kind].model_validate(observed)
        except ValidationError as e:
            raise ControlPlaneError(f"unexpected {kind.value} response: {e}") from e

    def _with_id(self, kind: ResourceKind, ref: dict[str, str], response: dict[str, Any]) -> dict[str, str]:
        endpoint = ENDPOINTS[kind]
        if endpoint.id_field is None:
            return dict(ref)
        resource_id = response.get(endpoint.id_field)
        if not resource_id:
            raise ControlPlaneError(f"{kind.value} create response has no {endpoint.id_field!r}")
        return {**ref, endpoint.ref_key: str(resource_id)}

    def _record(
        self,
        kind: ResourceKind,
        ref: dict[str, str],
        state: LifecycleState,
        **fields: Any,
    ) -> LifecycleResult:
        key = self._key(kind, ref)
        if state == LifecycleState.ABSENT:
            # state_of defaults to ABSENT
            self._states.pop(key, None)
        else:
            self._states[key] = state
        return LifecycleResult(kind=kind, ref=ref, state=state, **fields)

    def _key(self, kind: ResourceKind, ref: dict[str, str]) -> tuple:
        return (kind, tuple(sorted(ref.items())))

    def _label(self, kind: ResourceKind, ref: dict[str, str]) -> str:
        return ref.get(ENDPOINTS[kind].ref_key, "")


lifecycle_service = LifecycleService()
