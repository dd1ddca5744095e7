"""Shared test fixtures."""

import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from core.errors import CommandError
from core.models import HostFacts, Outcome, ProvisionContext
from core.providers import Provider, register_provider
from providers.commands import CommandResult

SCHEMA_PATH = Path(__file__).parent.parent / "db" / "schema.sql"


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeRunner:
    """Records every command instead of running it.

    ``responses`` maps a command prefix (tuple) to ``(returncode, stdout)``.
    Unmatched commands succeed with no output.
    """

    def __init__(self, responses: Optional[Dict[tuple, tuple]] = None):
        self.responses = dict(responses or {})
        self.commands: List[List[str]] = []
        self.inputs: List[Optional[bytes]] = []

    def _response(self, argv: List[str]) -> tuple:
        best = None
        for prefix, response in self.responses.items():
            if tuple(argv[:len(prefix)]) == prefix:
                if best is None or len(prefix) > len(best[0]):
                    best = (prefix, response)
        return best[1] if best else (0, b"")

    async def run(self, cmd, check=True, input=None, privileged=True, timeout=None):
        argv = list(cmd)
        self.commands.append(argv)
        self.inputs.append(input)
        returncode, stdout = self._response(argv)
        if check and returncode != 0:
            raise CommandError(argv, returncode, "simulated failure")
        return CommandResult(argv, returncode, stdout)

    async def succeeds(self, cmd, privileged=True) -> bool:
        result = await self.run(cmd, check=False, privileged=privileged)
        return result.ok

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[:len(prefix)]) == prefix for c in self.commands)

    def count(self, *prefix: str) -> int:
        return sum(1 for c in self.commands if tuple(c[:len(prefix)]) == prefix)


class ScriptedProvider(Provider):
    """Provider whose successive apply() results come from a script.

    Script items are Outcomes (returned) or exceptions (raised). Once the
    script is used up every call succeeds.
    """

    name = "scripted"

    def __init__(self, script: Optional[list] = None, settings: Optional[Dict[str, Any]] = None,
                 calls: Optional[List[str]] = None, label: str = ""):
        self.script = list(script or [])
        self._settings = settings or {}
        self.calls = 0
        self.log = calls
        self.label = label

    def settings(self) -> Dict[str, Any]:
        return self._settings

    async def apply(self, ctx, params):
        self.calls += 1
        if self.log is not None:
            self.log.append(self.label)
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return Outcome.success(f"{self.label or 'step'} done")


@register_provider("test_noop")
class NoopProvider(Provider):
    """Registered type used by manifest-driven tests."""

    applied: List[str] = []

    async def apply(self, ctx, params):
        NoopProvider.applied.append(params.get("tag", ""))
        return Outcome.success("noop")

    async def verify(self, ctx, params):
        return f"noop {params.get('tag', '')}".strip()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def in_memory_db():
    """Fresh in-memory SQLite database with schema applied."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.executescript(SCHEMA_PATH.read_text(encoding="utf-8"))
    yield conn
    conn.close()


@pytest.fixture
def facts() -> HostFacts:
    return HostFacts(os_codename="noble", architecture="amd64", os_version="24.04")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def ctx(runner, facts) -> ProvisionContext:
    return ProvisionContext(runner=runner, facts=facts)


@pytest.fixture
def scripted():
    """The ScriptedProvider class, for building providers inline."""
    return ScriptedProvider


@pytest.fixture(autouse=True)
def reset_noop_provider():
    NoopProvider.applied = []
    yield
