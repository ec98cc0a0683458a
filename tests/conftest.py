import time

import pytest

from lifecycle import poller
from lifecycle.states import Observed


class ScriptedProbe:
    """Refresh probe that replays a fixed script; the last entry repeats forever.

    Entries are probe results or exceptions to raise.
    """

    def __init__(self, *script):
        self.script = list(script)
        self.calls = 0
        self.contexts = []
        self.called_at = []

    async def __call__(self, ctx):
        self.calls += 1
        self.contexts.append(ctx)
        self.called_at.append(time.monotonic())
        entry = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(entry, BaseException):
            raise entry
        return entry


@pytest.fixture
def fast_polling(monkeypatch):
    """Lower the poll interval floor so tests can poll every few milliseconds."""
    monkeypatch.setattr(poller, "MIN_POLL_INTERVAL", 0.01)


@pytest.fixture
def scripted_probe():
    return ScriptedProbe


@pytest.fixture
def observed():
    def make(state, **snapshot):
        return Observed(snapshot={"state": state, **snapshot}, state=state)

    return make

