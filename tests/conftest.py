"""Shared test fixtures for macdiet engine tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from macdiet.audit import AuditLogStore
from macdiet.confirmation import begin, start, submit
from macdiet.context import ExecutionContext
from macdiet.errors import ExecutionTimeoutError
from macdiet.executor import ActionExecutor
from macdiet.models import Action, ActionKind, CommandOutput, Report, RiskLevel


class FakeRunner:
    """Stands in for the OS-process collaborator; records every spawn."""

    def __init__(self, outputs: list[Any] | None = None):
        self.outputs = list(outputs or [])
        self.calls: list[dict[str, Any]] = []

    def __call__(self, cmd, args, timeout, *, env=None, run_as=None):
        self.calls.append({"cmd": cmd, "args": tuple(args), "timeout": timeout, "env": env, "run_as": run_as})
        out = self.outputs.pop(0) if self.outputs else CommandOutput(0, "", "")
        if isinstance(out, BaseException):
            raise out
        return out


def run_cmd_action(action_id: str, cmd: str, *args: str, risk: RiskLevel = RiskLevel.R1, **kwargs: Any) -> Action:
    return Action(id=action_id, title=action_id, kind=ActionKind.RUN_CMD, risk_level=risk, cmd=cmd, args=args, **kwargs)


def trash_action(action_id: str, *paths: str, **kwargs: Any) -> Action:
    return Action(
        id=action_id, title=action_id, kind=ActionKind.TRASH_MOVE, risk_level=RiskLevel.R1, paths=paths, **kwargs
    )


def ready(action_id: str, tokens: tuple[str, str]):
    state = begin(start(action_id, tokens))
    state = submit(state, tokens[0])
    return submit(state, tokens[1])


BREW = run_cmd_action("homebrew-cache-cleanup", "brew", "cleanup")
NPM = run_cmd_action("npm-cache-cleanup", "npm", "cache", "clean", "--force")
YARN = run_cmd_action("yarn-cache-cleanup", "yarn", "cache", "clean")


@pytest.fixture
def home(tmp_path: Path) -> Path:
    h = tmp_path / "home" / "alice"
    h.mkdir(parents=True)
    return h


@pytest.fixture
def context(home: Path) -> ExecutionContext:
    return ExecutionContext(home_dir=home, user_name="alice", uid=501, gid=20, elevated=False)


@pytest.fixture
def audit_store(home: Path) -> AuditLogStore:
    return AuditLogStore(home / ".config" / "macdiet" / "logs")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def executor(context, audit_store, runner) -> ActionExecutor:
    return ActionExecutor(context, audit_store, max_risk=RiskLevel.R2, timeout=5, runner=runner)


@pytest.fixture
def timeout_error() -> ExecutionTimeoutError:
    return ExecutionTimeoutError("Timeout after 5s: brew cleanup", stdout="partial", stderr="", duration_sec=5.0)


@pytest.fixture
def report() -> Report:
    return Report.from_dict(
        {
            "schema_version": "1.0",
            "tool_version": "0.3.0",
            "generated_at": "2026-10-19T00:00:00+00:00",
            "findings": [
                {
                    "id": "homebrew-cache",
                    "type": "cache",
                    "title": "Homebrew cache",
                    "estimated_bytes": 2_000_000,
                    "confidence": 0.9,
                    "risk_level": "R1",
                    "evidence": [{"kind": "path", "value": "~/Library/Caches/Homebrew"}],
                    "recommended_actions": [{"id": "homebrew-cache-cleanup"}, {"id": "homebrew-cache-trash"}],
                },
                {
                    "id": "npm-cache",
                    "type": "cache",
                    "title": "npm cache",
                    "estimated_bytes": 500_000,
                    "confidence": 0.8,
                    "risk_level": "R1",
                    "recommended_actions": [{"id": "npm-cache-cleanup"}],
                },
            ],
            "actions": [
                {
                    "id": "homebrew-cache-cleanup",
                    "title": "brew cleanup",
                    "risk_level": "R1",
                    "estimated_reclaimed_bytes": 1_500_000,
                    "related_findings": ["homebrew-cache"],
                    "kind": {"kind": "RUN_CMD", "cmd": "brew", "args": ["cleanup"]},
                },
                {
                    "id": "homebrew-cache-trash",
                    "title": "Move Homebrew cache to Trash",
                    "risk_level": "R1",
                    "estimated_reclaimed_bytes": 2_000_000,
                    "related_findings": ["homebrew-cache"],
                    "kind": {"kind": "TRASH_MOVE", "paths": ["~/Library/Caches/Homebrew"]},
                },
                {
                    "id": "npm-cache-cleanup",
                    "title": "npm cache clean",
                    "risk_level": "<=R1",
                    "estimated_reclaimed_bytes": 500_000,
                    "related_findings": ["npm-cache"],
                    "kind": {"kind": "RUN_CMD", "cmd": "npm", "args": ["cache", "clean", "--force"]},
                },
                {
                    "id": "docker-howto",
                    "title": "How to shrink Docker.raw",
                    "risk_level": "R0",
                    "kind": {"kind": "SHOW_INSTRUCTIONS", "markdown": "Open Docker Desktop settings"},
                },
            ],
        }
    )
