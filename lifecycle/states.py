"""Remote resource states and their classification.

Every pollable resource kind has a StateTable: a pending set (still converging)
and a target set (stable). Anything outside both sets is unknown and must stop
polling. Kinds without a table are synchronous and never polled.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Union

from lifecycle.models import ResourceKind

DELETED = "DELETED"


# =============================================================================
# REMOTE STATE ENUMS
# =============================================================================


class ClusterState(str, Enum):
    """Dedicated and serverless cluster states."""

    CREATING = "CREATING"
    MODIFYING = "MODIFYING"
    RESUMING = "RESUMING"
    IMPORTING = "IMPORTING"
    PAUSING = "PAUSING"
    UPGRADING = "UPGRADING"
    DELETING = "DELETING"
    RESTORING = "RESTORING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    MAINTENANCE = "MAINTENANCE"
    DELETED = DELETED


class LegacyClusterState(str, Enum):
    CREATING = "CREATING"
    MODIFYING = "MODIFYING"
    RESUMING = "RESUMING"
    PAUSING = "PAUSING"
    IMPORTING = "IMPORTING"
    MAINTAINING = "MAINTAINING"
    AVAILABLE = "AVAILABLE"
    PAUSED = "PAUSED"


class NodeGroupState(str, Enum):
    MODIFYING = "MODIFYING"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"


class EndpointState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DELETING = "DELETING"
    FAILED = "FAILED"
    DISCOVERED = "DISCOVERED"


class VpcPeeringState(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"


class NetworkContainerState(str, Enum):
    INACTIVE = "INACTIVE"
    ACTIVE = "ACTIVE"


class BranchState(str, Enum):
    CREATING = "CREATING"
    RESTORING = "RESTORING"
    ACTIVE = "ACTIVE"
    DELETED = DELETED
    MAINTENANCE = "MAINTENANCE"


class ExportState(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELED = "CANCELED"


# =============================================================================
# CLASSIFICATION
# =============================================================================


class Classification(str, Enum):
    PENDING = "pending"
    TARGET = "target"
    UNKNOWN = "unknown"


def _values(states: Iterable[Any]) -> frozenset[str]:
    return frozenset(s.value if isinstance(s, Enum) else str(s) for s in states)


@dataclass(frozen=True)
class StateTable:
    """Disjoint pending and target state sets for one resource kind."""

    pending: frozenset[str]
    target: frozenset[str]
    state_field: str = "state"

    def __post_init__(self):
        object.__setattr__(self, "pending", _values(self.pending))
        object.__setattr__(self, "target", _values(self.target))
        overlap = self.pending & self.target
        if overlap:
            raise ValueError(f"States {sorted(overlap)} are both pending and target")
        if not self.target:
            raise ValueError("A state table needs at least one target state")

    def classify(self, state: str, tolerated: frozenset[str] = frozenset()) -> Classification:
        if state in self.target:
            return Classification.TARGET
        if state in self.pending or state in tolerated:
            return Classification.PENDING
        return Classification.UNKNOWN

    def for_deletion(self) -> "StateTable":
        """Table for waiting on a delete: every known state is pending until DELETED."""
        return StateTable(
            pending=(self.pending | self.target | {ClusterState.DELETING.value}) - {DELETED},
            target=frozenset({DELETED}),
            state_field=self.state_field,
        )


STATE_TABLES: dict[ResourceKind, StateTable] = {
    ResourceKind.CLUSTER: StateTable(
        pending=frozenset({
            LegacyClusterState.CREATING,
            LegacyClusterState.MODIFYING,
            LegacyClusterState.RESUMING,
            LegacyClusterState.PAUSING,
            LegacyClusterState.IMPORTING,
            LegacyClusterState.MAINTAINING,
        }),
        target=frozenset({LegacyClusterState.AVAILABLE, LegacyClusterState.PAUSED}),
        state_field="status.cluster_status",
    ),
    ResourceKind.DEDICATED_CLUSTER: StateTable(
        pending=frozenset({
            ClusterState.CREATING,
            ClusterState.MODIFYING,
            ClusterState.RESUMING,
            ClusterState.IMPORTING,
            ClusterState.PAUSING,
            ClusterState.UPGRADING,
            ClusterState.DELETING,
        }),
        target=frozenset({ClusterState.ACTIVE, ClusterState.PAUSED, ClusterState.MAINTENANCE}),
    ),
    ResourceKind.DEDICATED_NODE_GROUP: StateTable(
        pending=frozenset({NodeGroupState.MODIFYING}),
        target=frozenset({NodeGroupState.ACTIVE, NodeGroupState.PAUSED}),
    ),
    ResourceKind.DEDICATED_PRIVATE_ENDPOINT_CONNECTION: StateTable(
        pending=frozenset({EndpointState.PENDING}),
        target=frozenset({
            EndpointState.ACTIVE,
            EndpointState.DELETING,
            EndpointState.FAILED,
            EndpointState.DISCOVERED,
        }),
        state_field="endpointState",
    ),
    ResourceKind.DEDICATED_VPC_PEERING: StateTable(
        pending=frozenset({VpcPeeringState.PENDING}),
        target=frozenset({VpcPeeringState.ACTIVE, VpcPeeringState.FAILED}),
    ),
    ResourceKind.DEDICATED_NETWORK_CONTAINER: StateTable(
        pending=frozenset({NetworkContainerState.INACTIVE}),
        target=frozenset({NetworkContainerState.ACTIVE}),
    ),
    ResourceKind.SERVERLESS_CLUSTER: StateTable(
        pending=frozenset({ClusterState.CREATING, ClusterState.RESTORING}),
        target=frozenset({ClusterState.ACTIVE, ClusterState.DELETED}),
    ),
    ResourceKind.SERVERLESS_BRANCH: StateTable(
        pending=frozenset({BranchState.CREATING, BranchState.RESTORING}),
        target=frozenset({BranchState.ACTIVE, BranchState.DELETED, BranchState.MAINTENANCE}),
    ),
    ResourceKind.SERVERLESS_EXPORT: StateTable(
        pending=frozenset({ExportState.RUNNING}),
        target=frozenset({ExportState.SUCCEEDED, ExportState.FAILED, ExportState.CANCELED}),
    ),
}


def state_table(kind: ResourceKind) -> StateTable:
    try:
        return STATE_TABLES[kind]
    except KeyError:
        raise ValueError(f"{kind.value} is synchronous and has no state table") from None


def is_pollable(kind: ResourceKind) -> bool:
    return kind in STATE_TABLES


def read_state(snapshot: Any, state_field: str) -> str | None:
    """Read a dotted state field (``status.cluster_status``) from a snapshot mapping."""
    value = snapshot
    for part in state_field.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return None if value is None else str(value)


# =============================================================================
# PROBE RESULTS
# =============================================================================


@dataclass(frozen=True)
class Observed:
    """The probe read the resource and got a state tag."""

    snapshot: Any
    state: str


@dataclass(frozen=True)
class NotFound:
    """The resource is not visible yet; poll again."""

    reason: str = "resource not found yet"


@dataclass(frozen=True)
class Failed:
    """The probe gave up. Polling stops."""

    error: BaseException = field(compare=False)


ProbeResult = Union[Observed, NotFound, Failed]
