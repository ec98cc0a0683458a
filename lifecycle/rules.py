"""Field rules: what may change in an update, and how.

A FieldRuleTable maps dotted config paths to rules. Lookup walks from the
changed path up to its ancestors and uses the nearest declared rule, so a rule
on ``region`` also covers ``region.name``. Collection element keys
(``ip_access_list[10.0.0.0/8]``) are stripped before lookup.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from pydantic.alias_generators import to_camel

from lifecycle.models import ResourceKind

_ELEMENT_KEY = re.compile(r"\[[^\]]*\]")


class Mutability(str, Enum):
    MUTABLE = "mutable"
    IMMUTABLE = "immutable"


@dataclass(frozen=True)
class FieldRule:
    """Rule for one field.

    group: mutually exclusive group id; at most one member may change per update.
    isolated: the field may only change when nothing else changes.
    key: identity key for a collection of objects. Collections of scalars set
        ``collection=True`` and are keyed by the element value.
    fixed_cardinality: elements may be modified in place, never added or removed.
    opaque: user-defined map compared and sent as a whole value, so removed
        keys show up as a change.
    """

    mutability: Mutability = Mutability.MUTABLE
    group: Optional[str] = None
    isolated: bool = False
    collection: bool = False
    key: Optional[str] = None
    fixed_cardinality: bool = False
    opaque: bool = False

    @property
    def immutable(self) -> bool:
        return self.mutability == Mutability.IMMUTABLE


MUTABLE = FieldRule()
IMMUTABLE = FieldRule(mutability=Mutability.IMMUTABLE)
ISOLATED = FieldRule(isolated=True)


def exclusive(group: str) -> FieldRule:
    return FieldRule(group=group)


def collection(
    key: Optional[str] = None,
    fixed_cardinality: bool = False,
    immutable: bool = False,
) -> FieldRule:
    return FieldRule(
        mutability=Mutability.IMMUTABLE if immutable else Mutability.MUTABLE,
        collection=True,
        key=key,
        fixed_cardinality=fixed_cardinality,
    )


def opaque(immutable: bool = False) -> FieldRule:
    return FieldRule(
        mutability=Mutability.IMMUTABLE if immutable else Mutability.MUTABLE,
        opaque=True,
    )


def schema_path(path: str) -> str:
    """``a[x].b`` -> ``a.b``"""
    return _ELEMENT_KEY.sub("", path)


def _ancestors(path: str):
    parts = path.split(".")
    for i in range(len(parts), 0, -1):
        yield ".".join(parts[:i])


@dataclass(frozen=True)
class FieldRuleTable:
    """Read-only rules for one resource kind."""

    rules: Mapping[str, FieldRule] = field(default_factory=dict)
    ignored: frozenset[str] = frozenset()
    masks: Mapping[str, str] = field(default_factory=dict)
    default: FieldRule = MUTABLE

    def resolve(self, path: str) -> tuple[str, FieldRule]:
        """Return (declaring path, rule) for a changed path."""
        for candidate in _ancestors(schema_path(path)):
            rule = self.rules.get(candidate)
            if rule is not None:
                return candidate, rule
        return schema_path(path), self.default

    def rule_for(self, path: str) -> FieldRule:
        return self.resolve(path)[1]

    def collection_rule(self, path: str) -> Optional[FieldRule]:
        rule = self.rules.get(schema_path(path))
        if rule is not None and rule.collection:
            return rule
        return None

    def is_opaque(self, path: str) -> bool:
        rule = self.rules.get(schema_path(path))
        return rule is not None and rule.opaque

    def is_ignored(self, path: str) -> bool:
        return any(p in self.ignored for p in _ancestors(schema_path(path)))

    def mask_for(self, path: str) -> str:
        for candidate in _ancestors(schema_path(path)):
            if candidate in self.masks:
                return self.masks[candidate]
        return to_camel(schema_path(path).split(".", 1)[0])


EMPTY_RULES = FieldRuleTable()

_IP_ACCESS_LIST = collection(key="cidr_notation")

RULE_TABLES: dict[ResourceKind, FieldRuleTable] = {
    ResourceKind.CLUSTER: FieldRuleTable(
        rules={
            "project_id": IMMUTABLE,
            "name": IMMUTABLE,
            "cluster_type": IMMUTABLE,
            "cloud_provider": IMMUTABLE,
            "region": IMMUTABLE,
            "config.port": IMMUTABLE,
            "config.components.tidb.node_size": IMMUTABLE,
            "config.components.tikv.node_size": IMMUTABLE,
            "config.components.tikv.storage_size_gib": IMMUTABLE,
            "config.components.tiflash.node_size": IMMUTABLE,
            "config.components.tiflash.storage_size_gib": IMMUTABLE,
            "config.ip_access_list": collection(key="cidr", immutable=True),
        },
        ignored=frozenset({"id", "status", "create_timestamp"}),
    ),
    ResourceKind.DEDICATED_CLUSTER: FieldRuleTable(
        rules={
            "project_id": IMMUTABLE,
            "region_id": IMMUTABLE,
            "cloud_provider": IMMUTABLE,
            "port": IMMUTABLE,
            "paused": ISOLATED,
            "labels": opaque(),
            "tidb_node_setting.public_endpoint_setting.ip_access_list": _IP_ACCESS_LIST,
        },
        ignored=frozenset({
            "cluster_id",
            "state",
            "version",
            "created_by",
            "create_time",
            "update_time",
            "region_display_name",
            "annotations",
            "pause_plan",
            "tidb_node_setting.node_group_id",
            "tidb_node_setting.endpoints",
        }),
    ),
    ResourceKind.DEDICATED_NODE_GROUP: FieldRuleTable(
        rules={
            "cluster_id": IMMUTABLE,
            "node_spec_key": IMMUTABLE,
            "public_endpoint_setting.ip_access_list": _IP_ACCESS_LIST,
        },
        ignored=frozenset({"node_group_id", "state", "endpoints", "is_default_group"}),
    ),
    ResourceKind.DEDICATED_PRIVATE_ENDPOINT_CONNECTION: FieldRuleTable(
        rules={
            "cluster_id": IMMUTABLE,
            "node_group_id": IMMUTABLE,
            "endpoint_id": IMMUTABLE,
            "labels": opaque(),
        },
        ignored=frozenset({"private_endpoint_connection_id", "endpoint_state", "message"}),
    ),
    ResourceKind.DEDICATED_VPC_PEERING: FieldRuleTable(
        rules={"labels": opaque()},
        ignored=frozenset({"vpc_peering_id", "state", "aws_vpc_peering_connection_id"}),
        default=IMMUTABLE,
    ),
    ResourceKind.DEDICATED_NETWORK_CONTAINER: FieldRuleTable(
        rules={"region_id": IMMUTABLE, "cidr_notion": IMMUTABLE, "labels": opaque()},
        ignored=frozenset({"network_container_id", "state", "vpc_id"}),
    ),
    ResourceKind.DEDICATED_AUDIT_LOG_CONFIG: FieldRuleTable(
        rules={"cluster_id": IMMUTABLE},
        ignored=frozenset({"bucket_write_check"}),
    ),
    ResourceKind.DEDICATED_AUDIT_LOG_FILTER_RULE: FieldRuleTable(
        rules={"access_type_list": collection(immutable=True)},
        ignored=frozenset({"audit_log_filter_rule_id"}),
        default=IMMUTABLE,
    ),
    ResourceKind.SERVERLESS_CLUSTER: FieldRuleTable(
        rules={
            "region": IMMUTABLE,
            "encryption_config": IMMUTABLE,
            "labels": opaque(),
            "spending_limit": exclusive("capacity"),
            "auto_scaling": exclusive("capacity"),
        },
        ignored=frozenset({
            "cluster_id",
            "state",
            "create_time",
            "update_time",
            "user_prefix",
            "usage",
            "annotations",
        }),
        masks={
            "display_name": "displayName",
            "labels": "labels",
            "endpoints.public.disabled": "endpoints.public.disabled",
            "spending_limit": "spendingLimit.monthly",
            "automated_backup_policy": "automatedBackupPolicy",
            "auto_scaling": "autoScaling",
        },
    ),
    ResourceKind.SERVERLESS_BRANCH: FieldRuleTable(
        rules={
            "cluster_id": IMMUTABLE,
            "parent_id": IMMUTABLE,
            "parent_timestamp": IMMUTABLE,
        },
        ignored=frozenset({"branch_id", "state", "create_time", "update_time", "usage"}),
    ),
    ResourceKind.SERVERLESS_EXPORT: FieldRuleTable(
        rules={"export_options": opaque(immutable=True), "target": opaque(immutable=True)},
        ignored=frozenset({
            "export_id",
            "state",
            "create_time",
            "update_time",
            "complete_time",
            "snapshot_time",
            "expire_time",
            "reason",
        }),
        default=IMMUTABLE,
    ),
}


def rule_table(kind: ResourceKind) -> FieldRuleTable:
    return RULE_TABLES.get(kind, EMPTY_RULES)
