"""Patch planning: desired config vs observed state -> minimal partial update.

plan() is pure. It compares every managed field, collects every violation and
either returns a PatchPlan or raises one PatchRejected listing all of them.
"""

import json
import logging
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel

from lifecycle.errors import (
    CollectionCardinalityViolation,
    ConflictingFieldChange,
    DuplicateElementKey,
    ImmutableFieldViolation,
    PatchRejected,
    PlanViolation,
)
from lifecycle.models import ChangeKind, FieldChange, PatchPlan
from lifecycle.rules import EMPTY_RULES, FieldRule, FieldRuleTable

logger = logging.getLogger(__name__)

Config = Union[BaseModel, Mapping[str, Any], None]


def plan(desired: Config, observed: Config, rules: FieldRuleTable = EMPTY_RULES) -> PatchPlan:
    """Compute the partial update that moves ``observed`` to ``desired``.

    Args:
        desired: Desired configuration. Fields left unset (or None) are not managed.
        observed: Last observed state, as a model of the same type or a snake_case mapping.
        rules: Field rules for the resource kind.

    Returns:
        The validated PatchPlan; empty when nothing changed.

    Raises:
        PatchRejected: one or more fields violate the rules. No request may be sent.
    """
    want = _normalize(desired, is_desired=True)
    have = _normalize(observed, is_desired=False)

    differ = _Differ(rules)
    differ.diff_mapping("", want, have)
    changes = differ.changes
    violations = differ.violations + _check_rules(changes, rules)

    if violations:
        logger.debug(f"Rejected plan with {len(violations)} violation(s)")
        raise PatchRejected(violations)

    if not changes:
        logger.info("Desired configuration matches observed state, nothing to update")
        return PatchPlan()

    return PatchPlan(
        changes=changes,
        payload=_build_payload(changes, want),
        touched_fields=_dedupe(c.top_level for c in changes),
        update_mask=_dedupe(rules.mask_for(c.path) for c in changes),
    )


# =============================================================================
# NORMALIZATION
# =============================================================================


def _normalize(value: Config, is_desired: bool) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, BaseModel):
        # Desired: only what the caller set. Observed: defaults fill absent fields.
        return value.model_dump(mode="json", exclude_unset=is_desired)
    if isinstance(value, Mapping):
        return dict(value)
    raise TypeError(f"Expected a pydantic model or mapping, got {type(value).__name__}")


def _absent(value: Any) -> bool:
    return value is None or (isinstance(value, dict) and not value)


def _identity(element: Any, key: Optional[str]) -> Any:
    if key is not None and isinstance(element, Mapping):
        return element.get(key)
    if isinstance(element, (dict, list)):
        return json.dumps(element, sort_keys=True)
    return element


def _dedupe(items) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return list(seen)


# =============================================================================
# DIFF
# =============================================================================


class _Differ:
    """Walks desired against observed, collecting changes and collection violations."""

    def __init__(self, rules: FieldRuleTable):
        self.rules = rules
        self.changes: list[FieldChange] = []
        self.violations: list[PlanViolation] = []

    def diff_mapping(self, prefix: str, want: Mapping[str, Any], have: Any) -> None:
        have = have if isinstance(have, Mapping) else {}
        for name, new in want.items():
            path = f"{prefix}.{name}" if prefix else name
            if self.rules.is_ignored(path):
                continue
            self.diff_value(path, new, have.get(name))

    def diff_value(self, path: str, new: Any, old: Any) -> None:
        if self.rules.is_opaque(path):
            # An explicit {} clears the map
            if new is not None and new != (old or {}):
                self.changes.append(FieldChange(path=path, old=old, new=new))
            return

        if _absent(new):
            return

        rule = self.rules.collection_rule(path)
        if rule is not None and isinstance(new, list):
            self.diff_collection(path, new, old if isinstance(old, list) else [], rule)
            return

        if isinstance(new, Mapping) and isinstance(old, Mapping):
            self.diff_mapping(path, new, old)
            return

        if new != old:
            self.changes.append(FieldChange(path=path, old=old, new=new))

    def diff_collection(self, path: str, new: list, old: list, rule: FieldRule) -> None:
        wanted: dict[Any, Any] = {}
        for element in new:
            key = _identity(element, rule.key)
            if key in wanted:
                self.violations.append(DuplicateElementKey(path, key))
                continue
            wanted[key] = element
        existing = {_identity(element, rule.key): element for element in old}

        added = [k for k in wanted if k not in existing]
        removed = [k for k in existing if k not in wanted]
        if rule.fixed_cardinality and (added or removed):
            self.violations.append(CollectionCardinalityViolation(path, added, removed))

        for key, element in wanted.items():
            element_path = f"{path}[{key}]"
            if key in existing:
                previous = existing[key]
                if isinstance(element, Mapping) and isinstance(previous, Mapping):
                    self.diff_mapping(element_path, element, previous)
            elif not rule.fixed_cardinality:
                self.changes.append(
                    FieldChange(path=element_path, old=None, new=element, kind=ChangeKind.INSERT)
                )

        if not rule.fixed_cardinality:
            for key in removed:
                self.changes.append(
                    FieldChange(
                        path=f"{path}[{key}]",
                        old=existing[key],
                        new=None,
                        kind=ChangeKind.REMOVE,
                    )
                )


# =============================================================================
# RULES
# =============================================================================


def _check_rules(changes: list[FieldChange], rules: FieldRuleTable) -> list[PlanViolation]:
    violations: list[PlanViolation] = []
    groups: dict[str, list[str]] = {}
    isolated: list[str] = []
    owners: list[str] = []

    for change in changes:
        owner, rule = rules.resolve(change.path)
        owners.append(owner)
        if rule.immutable:
            violations.append(ImmutableFieldViolation(change.path, change.old, change.new))
        if rule.group is not None:
            members = groups.setdefault(rule.group, [])
            if owner not in members:
                members.append(owner)
        if rule.isolated and owner not in isolated:
            isolated.append(owner)

    for group, members in groups.items():
        if len(members) > 1:
            violations.append(ConflictingFieldChange(group, members))

    for owner in isolated:
        others = _dedupe(o for o in owners if o != owner and not o.startswith(f"{owner}."))
        if others:
            violations.append(ConflictingFieldChange(owner, [owner] + others))

    return violations


# =============================================================================
# PAYLOAD
# =============================================================================


def _lookup(data: Mapping[str, Any], path: str) -> Any:
    value: Any = data
    for part in path.split("."):
        value = value.get(part) if isinstance(value, Mapping) else None
    return value


def _assign(payload: dict[str, Any], path: str, value: Any) -> None:
    parts = path.split(".")
    node = payload
    for part in parts[:-1]:
        node = node.setdefault(part, {})
    node[parts[-1]] = value


def _build_payload(changes: list[FieldChange], want: Mapping[str, Any]) -> dict[str, Any]:
    payload: dict[str, Any] = {}
    for change in changes:
        if "[" in change.path:
            # List fields are replaced wholesale by partial-update APIs
            collection_path = change.path.split("[", 1)[0]
            _assign(payload, collection_path, _lookup(want, collection_path))
        else:
            _assign(payload, change.path, change.new)
    return payload
