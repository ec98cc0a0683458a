"""Convergence poller.

Drives an asynchronous remote operation to a stable state by calling a refresh
probe until it reports a target state, an unknown state, an error, the
deadline passes or the caller cancels.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from lifecycle.errors import ConvergenceCancelled, ConvergenceFailed, ConvergenceTimeout
from lifecycle.models import ResourceKind
from lifecycle.states import (
    Classification,
    Failed,
    NotFound,
    Observed,
    ProbeResult,
    StateTable,
    state_table,
)

logger = logging.getLogger(__name__)

# Floor on the spacing between two probes, in seconds
MIN_POLL_INTERVAL = 0.5

POLL_INTERVALS: dict[ResourceKind, float] = {
    ResourceKind.SERVERLESS_CLUSTER: 2.0,
    ResourceKind.DEDICATED_PRIVATE_ENDPOINT_CONNECTION: 5.0,
    ResourceKind.SERVERLESS_BRANCH: 10.0,
}
DEFAULT_POLL_INTERVAL = 10.0


@dataclass
class PollContext:
    """Shared with every probe call of one convergence wait."""

    deadline: float
    cancel_event: asyncio.Event

    def remaining(self) -> float:
        return self.deadline - time.monotonic()

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


Refresh = Callable[[PollContext], Awaitable[ProbeResult]]


@dataclass(frozen=True)
class ConvergenceSpec:
    """What to poll, and what counts as done.

    Args:
        pending: States that mean the operation is still in progress.
        target: States that mean the resource is stable.
        interval: Seconds between probes (floored at MIN_POLL_INTERVAL).
        timeout: Seconds from the first probe until the wait gives up.
        refresh: Async probe returning Observed, NotFound or Failed.
        tolerated: Extra states treated as pending.
        label: Used in logs and error messages.
    """

    pending: frozenset[str]
    target: frozenset[str]
    interval: float
    timeout: float
    refresh: Refresh
    tolerated: frozenset[str] = frozenset()
    label: str = "resource"
    table: StateTable = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        table = StateTable(pending=self.pending, target=self.target)
        object.__setattr__(self, "table", table)
        object.__setattr__(self, "pending", table.pending)
        object.__setattr__(self, "target", table.target)
        object.__setattr__(
            self,
            "tolerated",
            frozenset(getattr(s, "value", s) for s in self.tolerated),
        )

    @classmethod
    def for_kind(
        cls,
        kind: ResourceKind,
        refresh: Refresh,
        timeout: float,
        interval: Optional[float] = None,
        deleting: bool = False,
        label: str = "",
    ) -> "ConvergenceSpec":
        table = state_table(kind)
        if deleting:
            table = table.for_deletion()
        return cls(
            pending=table.pending,
            target=table.target,
            interval=interval if interval is not None else POLL_INTERVALS.get(kind, DEFAULT_POLL_INTERVAL),
            timeout=timeout,
            refresh=refresh,
            label=label or kind.value,
        )

    def classify(self, state: str) -> Classification:
        return self.table.classify(state, self.tolerated)


@dataclass(frozen=True)
class Convergence:
    """The observation that reached a target state."""

    snapshot: Any
    state: str
    attempts: int
    elapsed: float


async def await_convergence(
    spec: ConvergenceSpec,
    cancel_event: Optional[asyncio.Event] = None,
) -> Convergence:
    """Poll ``spec.refresh`` until the resource reaches a target state.

    Returns:
        Convergence built from the probe result that reported the target state.

    Raises:
        ConvergenceFailed: unknown state, Failed probe result or the probe raised.
        ConvergenceTimeout: still pending when the deadline passed.
        ConvergenceCancelled: ``cancel_event`` was set.
    """
    if cancel_event is None:
        cancel_event = asyncio.Event()
    interval = max(spec.interval, MIN_POLL_INTERVAL)
    started = time.monotonic()
    ctx = PollContext(deadline=started + spec.timeout, cancel_event=cancel_event)

    last_snapshot: Any = None
    attempts = 0

    def elapsed() -> float:
        return time.monotonic() - started

    def cancelled() -> ConvergenceCancelled:
        return ConvergenceCancelled(
            f"{spec.label}: wait cancelled after {attempts} attempt(s)",
            last_snapshot,
            elapsed(),
            spec.label,
        )

    while True:
        if ctx.cancelled:
            raise cancelled()

        attempts += 1
        try:
            result = await spec.refresh(ctx)
        except Exception as exc:
            raise ConvergenceFailed(
                f"{spec.label}: refresh failed: {exc}",
                last_snapshot,
                elapsed(),
                spec.label,
            ) from exc

        if isinstance(result, Failed):
            raise ConvergenceFailed(
                f"{spec.label}: refresh failed: {result.error}",
                last_snapshot,
                elapsed(),
                spec.label,
            ) from result.error

        if isinstance(result, Observed):
            last_snapshot = result.snapshot
            classification = spec.classify(result.state)
            if classification == Classification.TARGET:
                took = elapsed()
                logger.info(f"{spec.label} reached {result.state} after {attempts} attempt(s) in {took:.1f}s")
                return Convergence(
                    snapshot=result.snapshot,
                    state=result.state,
                    attempts=attempts,
                    elapsed=took,
                )
            if classification == Classification.UNKNOWN:
                raise ConvergenceFailed(
                    f"{spec.label}: unexpected state {result.state!r}",
                    last_snapshot,
                    elapsed(),
                    spec.label,
                    state=result.state,
                )
            logger.debug(f"{spec.label} is {result.state}, attempt {attempts}")
        elif isinstance(result, NotFound):
            logger.debug(f"{spec.label} not found yet ({result.reason}), attempt {attempts}")
        else:
            raise ConvergenceFailed(
                f"{spec.label}: refresh returned {type(result).__name__}",
                last_snapshot,
                elapsed(),
                spec.label,
            )

        remaining = ctx.remaining()
        if remaining <= 0:
            raise ConvergenceTimeout(
                f"{spec.label}: timeout after {spec.timeout}s waiting for {sorted(spec.target)}",
                last_snapshot,
                elapsed(),
                spec.label,
            )

        if ctx.cancelled:
            raise cancelled()
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=min(interval, remaining))
        except asyncio.TimeoutError:
            pass
        if ctx.cancelled:
            raise cancelled()
