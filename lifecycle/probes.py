"""Refresh probes over the control-plane API."""

import asyncio
import logging
import math
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from lifecycle import poller
from lifecycle.errors import ControlPlaneError, ResourceNotFound
from lifecycle.models import ResourceKind
from lifecycle.poller import PollContext
from lifecycle.states import DELETED, Failed, NotFound, Observed, ProbeResult, StateTable, read_state, state_table

logger = logging.getLogger(__name__)

DEFAULT_NOT_FOUND_BUDGET = 20


class NotFoundPolicy(str, Enum):
    """What a 404 from the control plane means for one probe."""

    RETRY = "retry"  # eventual consistency after create; bounded by the budget
    FAIL = "fail"
    ABSENT = "absent"  # waiting on a delete; 404 is the target


class RefreshProbe:
    """Reads a resource and reports its state to the poller.

    Not-found responses and transient failures (transport errors, 429, 5xx)
    are retried until ``budget`` consecutive misses, then the probe fails.

    Args:
        fetch: Async callable returning the resource as a dict.
        kind: Resource kind, selects the state table.
        not_found: How a 404 is reported.
        budget: Consecutive misses tolerated before giving up.
        table: Overrides the kind's state table.
    """

    def __init__(
        self,
        fetch: Callable[[], Awaitable[dict[str, Any]]],
        kind: ResourceKind,
        not_found: NotFoundPolicy = NotFoundPolicy.RETRY,
        budget: int = DEFAULT_NOT_FOUND_BUDGET,
        table: Optional[StateTable] = None,
    ):
        self.fetch = fetch
        self.kind = kind
        self.not_found = not_found
        self.budget = budget
        self.table = table or state_table(kind)
        self.misses = 0

    async def __call__(self, ctx: PollContext) -> ProbeResult:
        fetch = asyncio.ensure_future(self.fetch())
        if not await _settled(fetch, ctx):
            # Not a miss; the poller reports the timeout or cancellation itself
            return NotFound(reason="cancelled" if ctx.cancelled else "deadline reached")
        try:
            snapshot = fetch.result()
        except ResourceNotFound as e:
            if self.not_found == NotFoundPolicy.ABSENT:
                self.misses = 0
                return Observed(snapshot=None, state=DELETED)
            if self.not_found == NotFoundPolicy.FAIL:
                return Failed(e)
            return self._miss(e, "not found")
        except ControlPlaneError as e:
            if not e.is_transient:
                return Failed(e)
            return self._miss(e, f"HTTP {e.status_code}")
        except httpx.TransportError as e:
            return self._miss(e, type(e).__name__)

        self.misses = 0
        state = read_state(snapshot, self.table.state_field)
        if state is None:
            return Failed(
                ControlPlaneError(f"{self.kind.value} response has no {self.table.state_field!r} field")
            )
        return Observed(snapshot=snapshot, state=state)

    def _miss(self, error: Exception, reason: str) -> ProbeResult:
        self.misses += 1
        if self.misses > self.budget:
            return Failed(error)
        logger.warning(f"{self.kind.value}: {reason}, retry {self.misses}/{self.budget}")
        return NotFound(reason=reason)


async def _settled(fetch: "asyncio.Future[Any]", ctx: PollContext) -> bool:
    """Wait for ``fetch`` until the deadline or cancellation; False means it was abandoned.

    The last probe at the deadline still gets MIN_POLL_INTERVAL to answer.
    """
    timeout: Optional[float] = max(ctx.remaining(), poller.MIN_POLL_INTERVAL)
    if math.isinf(timeout):
        timeout = None

    cancelled = asyncio.ensure_future(ctx.cancel_event.wait())
    try:
        done, _ = await asyncio.wait({fetch, cancelled}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    finally:
        cancelled.cancel()
        if not fetch.done():
            fetch.cancel()
    return fetch in done
