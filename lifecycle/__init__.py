"""Lifecycle reconciliation core: convergence polling and patch planning."""

from lifecycle.client import ENDPOINTS, ControlPlaneClient
from lifecycle.planner import plan
from lifecycle.poller import Convergence, ConvergenceSpec, PollContext, await_convergence
from lifecycle.probes import NotFoundPolicy, RefreshProbe
from lifecycle.rules import RULE_TABLES, FieldRule, FieldRuleTable
from lifecycle.service import LifecycleService
from lifecycle.states import STATE_TABLES, Failed, NotFound, Observed, StateTable

__all__ = [
    "ENDPOINTS",
    "ControlPlaneClient",
    "plan",
    "Convergence",
    "ConvergenceSpec",
    "PollContext",
    "await_convergence",
    "NotFoundPolicy",
    "RefreshProbe",
    "RULE_TABLES",
    "FieldRule",
    "FieldRuleTable",
    "LifecycleService",
    "STATE_TABLES",
    "Failed",
    "NotFound",
    "Observed",
    "StateTable",
]
