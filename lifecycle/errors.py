"""Lifecycle errors.

Everything here is a normal return path for callers: convergence errors carry
the last observed snapshot, plan violations are aggregated into one
PatchRejected so a single validation pass reports every problem.
"""

from typing import Any, Optional


class LifecycleError(Exception):
    """Base error for the lifecycle core."""

    pass


# =============================================================================
# CONVERGENCE
# =============================================================================


class ConvergenceError(LifecycleError):
    """Polling stopped before the resource reached a target state."""

    def __init__(
        self,
        message: str,
        last_snapshot: Any = None,
        elapsed: float = 0.0,
        label: str = "",
    ):
        super().__init__(message)
        self.last_snapshot = last_snapshot
        self.elapsed = elapsed
        self.label = label


class ConvergenceTimeout(ConvergenceError):
    """Deadline exceeded while the resource stayed pending.

    Recoverable: the caller may keep polling externally.
    """

    pass


class ConvergenceFailed(ConvergenceError):
    """Probe reported an unknown state or a non-retryable error."""

    def __init__(
        self,
        message: str,
        last_snapshot: Any = None,
        elapsed: float = 0.0,
        label: str = "",
        state: Optional[str] = None,
    ):
        super().__init__(message, last_snapshot, elapsed, label)
        self.state = state


class ConvergenceCancelled(ConvergenceError):
    """Caller cancelled the wait."""

    pass


# =============================================================================
# PATCH PLANNING
# =============================================================================


class PlanViolation(LifecycleError):
    """A single local validation failure found while planning a patch."""

    pass


class ImmutableFieldViolation(PlanViolation):
    def __init__(self, field: str, old: Any, new: Any):
        super().__init__(f"{field} can not be changed ({old!r} -> {new!r})")
        self.field = field
        self.old = old
        self.new = new


class ConflictingFieldChange(PlanViolation):
    def __init__(self, group: str, fields: list[str]):
        super().__init__(
            f"fields {', '.join(fields)} can not be changed in the same update (group '{group}')"
        )
        self.group = group
        self.fields = fields


class CollectionCardinalityViolation(PlanViolation):
    def __init__(self, field: str, added: list[Any], removed: list[Any]):
        parts = []
        if added:
            parts.append(f"added {added}")
        if removed:
            parts.append(f"removed {removed}")
        super().__init__(
            f"{field} elements may only be modified in place, not {' and '.join(parts)}"
        )
        self.field = field
        self.added = added
        self.removed = removed


class DuplicateElementKey(PlanViolation):
    def __init__(self, field: str, key: Any):
        super().__init__(f"{field} contains duplicate element {key!r}")
        self.field = field
        self.key = key


class PatchRejected(LifecycleError):
    """Aggregated plan violations. No request may be sent."""

    def __init__(self, violations: list[PlanViolation]):
        lines = "\n".join(f"  - {v}" for v in violations)
        super().__init__(f"invalid update, {len(violations)} violation(s):\n{lines}")
        self.violations = violations


# =============================================================================
# CONTROL PLANE
# =============================================================================


class ControlPlaneError(LifecycleError):
    """Remote API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail

    @property
    def is_transient(self) -> bool:
        return self.status_code is not None and (
            self.status_code == 429 or self.status_code >= 500
        )


class ResourceNotFound(ControlPlaneError):
    """Remote API returned 404."""

    pass
