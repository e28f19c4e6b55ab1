"""End-to-end tests of the engine session: confirm, execute, reconcile."""

from __future__ import annotations

import pytest

from conftest import FakeRunner
from macdiet.config import EngineConfig
from macdiet.confirmation import Stage
from macdiet.errors import ConfirmationError, ContextResolutionError, ValidationError
from macdiet.models import CommandOutput, ExecutionStatus, RiskLevel
from macdiet.session import EngineSession


@pytest.fixture
def session(report, context, tmp_path):
    config = EngineConfig(fix_default_risk_max=RiskLevel.R2, log_dir=tmp_path / "logs")
    return EngineSession(report, config, context, runner=FakeRunner())


def _confirm(session, action_id, tokens):
    session.open_confirmation(action_id)
    for token in tokens:
        session.submit_token(action_id, token)


def test_execute_reconciles_plan_without_refresh(session):
    session.toggle_selection("npm-cache-cleanup")
    _confirm(session, "homebrew-cache-cleanup", ("cleanup", "run"))

    result = session.execute("homebrew-cache-cleanup")

    assert result.status is ExecutionStatus.OK
    assert "homebrew-cache-cleanup" not in session.pending_actions()
    assert session.plan.item("npm-cache-cleanup").selected
    assert len(session.audit_entries()) == 1


def test_confirmation_is_consumed_by_execution(session):
    _confirm(session, "npm-cache-cleanup", ("npm", "run"))
    session.execute("npm-cache-cleanup")
    assert session.confirmation("npm-cache-cleanup") is None
    with pytest.raises(ValidationError):
        session.open_confirmation("npm-cache-cleanup")


def test_failed_execution_keeps_action_pending(report, context, tmp_path):
    runner = FakeRunner([CommandOutput(1, "", "npm ERR! EACCES")])
    session = EngineSession(report, EngineConfig(log_dir=tmp_path / "logs"), context, runner=runner)
    _confirm(session, "npm-cache-cleanup", ("npm", "run"))
    result = session.execute("npm-cache-cleanup")
    assert result.status is ExecutionStatus.FAILED
    assert "npm-cache-cleanup" in session.pending_actions()


def test_reopening_starts_a_fresh_confirmation(session):
    _confirm(session, "npm-cache-cleanup", ("npm",))
    state = session.open_confirmation("npm-cache-cleanup")
    assert state.stage is Stage.AWAITING_STAGE1


def test_navigate_away_discards_confirmations(session):
    _confirm(session, "npm-cache-cleanup", ("npm", "run"))
    session.navigate_away()
    with pytest.raises(ConfirmationError):
        session.execute("npm-cache-cleanup")


def test_cancelled_confirmation_cannot_execute(session):
    _confirm(session, "npm-cache-cleanup", ("npm", "run"))
    assert session.cancel_confirmation("npm-cache-cleanup").stage is Stage.CANCELLED
    with pytest.raises(ConfirmationError):
        session.execute("npm-cache-cleanup")


def test_submit_without_open_confirmation_fails(session):
    with pytest.raises(ConfirmationError):
        session.submit_token("npm-cache-cleanup", "npm")


def test_show_instructions_cannot_be_confirmed(session):
    with pytest.raises(ValidationError):
        session.open_confirmation("docker-howto")
    assert not session.plan.item("docker-howto").executable


def test_unknown_action_id_is_rejected(session):
    with pytest.raises(ValidationError):
        session.open_confirmation("ghost")
    with pytest.raises(ValidationError):
        session.execute("ghost")


def test_dry_run_refuses_execution(report, context, tmp_path):
    config = EngineConfig(dry_run=True, log_dir=tmp_path / "logs")
    runner = FakeRunner()
    session = EngineSession(report, config, context, runner=runner)
    _confirm(session, "npm-cache-cleanup", ("npm", "run"))
    with pytest.raises(ValidationError):
        session.execute("npm-cache-cleanup")
    assert runner.calls == []


def test_context_failure_blocks_every_dispatch(report):
    error = ContextResolutionError("No account found for SUDO_UID=777")
    session = EngineSession(report, EngineConfig(), None, context_error=error)
    assert not any(item.executable for item in session.plan.items)
    with pytest.raises(ContextResolutionError):
        session.open_confirmation("npm-cache-cleanup")
    with pytest.raises(ContextResolutionError):
        session.execute("npm-cache-cleanup")


def test_create_stores_context_failure(report):
    session = EngineSession.create(report, EngineConfig(), env={"SUDO_UID": "not-a-number"}, euid=0)
    assert session.context is None
    assert isinstance(session.context_error, ContextResolutionError)
