"""Shared pytest fixtures for lorekeeper tests.

Fixtures are organized by category:
- Repository fixtures: small sample repositories written to tmp_path
- Agent fixtures: scripted completion agents, one per role
- Configuration fixtures: configs with short retry delays
- Storage fixtures: in-memory state databases
"""

import time
from collections.abc import Iterator
from pathlib import Path

import pytest

from lorekeeper.config import AnalysisConfig, LorekeeperConfig
from lorekeeper.llm.client import AgentSet
from lorekeeper.llm.prompts import ROLES
from lorekeeper.storage.db import Database

# =============================================================================
# Test Doubles
# =============================================================================


class ScriptedAgent:
    """Completion agent returning scripted responses.

    Each entry of ``responses`` is returned (or raised, if it is an exception)
    by one call; once exhausted, ``default`` is returned.
    """

    def __init__(
        self,
        responses: list[str | Exception] | None = None,
        default: str = "analysis output",
    ) -> None:
        self.responses = list(responses or [])
        self.default = default
        self.calls: list[tuple[str, str]] = []

    def complete(self, prompt: str, context: str) -> str:
        self.calls.append((prompt, context))
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self.default


class RecordingSleep:
    """Stand-in for time.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


# =============================================================================
# Repository Fixtures
# =============================================================================


SAMPLE_FILES = {
    "pyproject.toml": '[project]\nname = "demo"\nversion = "0.1.0"\ndependencies = ["requests"]\n',
    "README.md": "# Demo\n\nA small demo service that greets users.\n",
    "LICENSE": "MIT License\n",
    "src/demo/__init__.py": '"""Demo package."""\n',
    "src/demo/main.py": 'def main() -> None:\n    print("hello")\n',
    "src/demo/greeting.py": "def greet(name: str) -> str:\n    return f'Hello {name}'\n",
    "tests/test_greeting.py": "from demo.greeting import greet\n\n\ndef test_greet():\n    assert greet('a') == 'Hello a'\n",
    "docs/guide.md": "# Guide\n\nRun `demo` to greet.\n",
    "node_modules/left-pad/index.js": "module.exports = () => {}\n",
}


def write_files(root: Path, files: dict[str, str]) -> Path:
    """Write a mapping of relative path to content under root."""
    for relative, content in files.items():
        path = root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
    return root


@pytest.fixture
def sample_repo(tmp_path: Path) -> Path:
    """Create a small Python repository with docs and tests."""
    return write_files(tmp_path / "demo", SAMPLE_FILES)


@pytest.fixture
def bare_repo(tmp_path: Path) -> Path:
    """Create a repository with one source file and no documentation."""
    return write_files(tmp_path / "bare", {"main.go": "package main\n\nfunc main() {}\n"})


# =============================================================================
# Agent Fixtures
# =============================================================================


@pytest.fixture
def agents() -> dict[str, ScriptedAgent]:
    """Return one scripted agent per role, keyed by role name."""
    return {role: ScriptedAgent(default=f"{role} output") for role in ROLES}


@pytest.fixture
def agent_set(agents: dict[str, ScriptedAgent]) -> AgentSet:
    """Wrap the scripted agents in an AgentSet."""
    return AgentSet(agents=dict(agents))


@pytest.fixture
def recording_sleep(monkeypatch: pytest.MonkeyPatch) -> RecordingSleep:
    """Replace time.sleep, which backoff sleeps through between retries."""
    sleep = RecordingSleep()
    monkeypatch.setattr(time, "sleep", sleep)
    return sleep


# =============================================================================
# Configuration Fixtures
# =============================================================================


@pytest.fixture
def fast_config() -> LorekeeperConfig:
    """Return a config with a small retry delay (never actually slept)."""
    return LorekeeperConfig(analysis=AnalysisConfig(retry_delay_seconds=1.0))


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from real credentials and user-level config."""
    for var in ("LOREKEEPER_API_KEY", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "OPENROUTER_API_KEY"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))


# =============================================================================
# Storage Fixtures
# =============================================================================


@pytest.fixture
def db() -> Iterator[Database]:
    """Return an in-memory state database."""
    database = Database.in_memory()
    yield database
    database.close()
