"""Engine session: threads the plan, selection and confirmations together.

Presentation layers (CLI, local HTTP API) talk to one EngineSession. It
resolves the execution context once, keeps at most one live
ConfirmationState per action, and reconciles the plan after every
execution without an explicit refresh call. Executions are serialized per
session: at most one action runs at a time.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Any, Mapping

from .allowlist import confirmation_tokens
from .audit import AuditLogStore
from .confirmation import ConfirmationState, begin, cancel, start, submit
from .config import EngineConfig
from .context import ExecutionContext, resolve_execution_context
from .errors import ConfirmationError, ContextResolutionError, ValidationError
from .executor import ActionExecutor
from .models import Action, ExecutionResult, Report
from .plan import Plan, build_plan, reconcile, toggle
from .process import CommandRunner, run_command
from .utils import get_logger


class EngineSession:
    def __init__(
        self,
        report: Report,
        config: EngineConfig,
        context: ExecutionContext | None,
        *,
        context_error: ContextResolutionError | None = None,
        runner: CommandRunner = run_command,
        logger: logging.Logger | None = None,
    ):
        if context is None and context_error is None:
            raise ValueError("either a context or a context error is required")
        self.report = report
        self.config = config
        self.context = context
        self.context_error = context_error
        self.logger = logger or get_logger()
        self.audit_store: AuditLogStore | None = None
        self.executor: ActionExecutor | None = None

        if context is not None:
            self.audit_store = AuditLogStore(config.audit_dir_for(context.home_dir), self.logger)
            self.executor = ActionExecutor(
                context,
                self.audit_store,
                max_risk=config.fix_default_risk_max,
                timeout=config.command_timeout_sec,
                trash_dir=config.trash_dir_for(context.home_dir),
                runner=runner,
                max_output_bytes=config.max_output_bytes,
                logger=self.logger,
            )

        self._confirmations: dict[str, ConfirmationState] = {}
        self._execute_lock = threading.Lock()
        self.last_results: dict[str, ExecutionResult] = {}
        self.plan: Plan = build_plan(report, check=self._check)

    @classmethod
    def create(
        cls,
        report: Report,
        config: EngineConfig,
        *,
        env: Mapping[str, str] | None = None,
        euid: int | None = None,
        runner: CommandRunner = run_command,
        logger: logging.Logger | None = None,
    ) -> "EngineSession":
        """Resolve the execution context once and build a session around it.

        A resolution failure does not prevent browsing the plan; it is raised
        again on every dispatch attempt.
        """
        try:
            context = resolve_execution_context(env=env if env is not None else os.environ, euid=euid)
        except ContextResolutionError as exc:
            (logger or get_logger()).error("context_resolution_failed err=%s", exc.message)
            return cls(report, config, None, context_error=exc, runner=runner, logger=logger)
        return cls(report, config, context, runner=runner, logger=logger)

    # -------------------------------- Helpers ------------------------------- #

    def _check(self, action: Action) -> None:
        if self.executor is None:
            raise self.context_error  # type: ignore[misc]
        self.executor.check_executable(action)

    def _action(self, action_id: str) -> Action:
        action = self.report.action(action_id)
        if action is None:
            raise ValidationError(f"Unknown action id: {action_id}", details={"action_id": action_id})
        return action

    # --------------------------------- Plan --------------------------------- #

    def pending_actions(self) -> tuple[str, ...]:
        return self.plan.pending_ids

    def toggle_selection(self, action_id: str) -> Plan:
        self._action(action_id)
        self.plan = toggle(self.plan, action_id, check=self._check)
        return self.plan

    def refresh(self) -> Plan:
        self.plan = build_plan(
            self.report, completed=self.plan.completed, selection=self.plan.selection, check=self._check
        )
        return self.plan

    # ----------------------------- Confirmation ----------------------------- #

    def open_confirmation(self, action_id: str) -> ConfirmationState:
        """Start a fresh two-stage confirmation; any earlier attempt is discarded."""
        action = self._action(action_id)
        if action.id in self.plan.completed:
            raise ValidationError(f"Action {action_id} has already been executed", details={"action_id": action_id})
        self._check(action)
        state = begin(start(action.id, confirmation_tokens(action)))
        self._confirmations[action.id] = state
        return state

    def confirmation(self, action_id: str) -> ConfirmationState | None:
        return self._confirmations.get(action_id)

    def submit_token(self, action_id: str, token: str) -> ConfirmationState:
        state = self._confirmations.get(action_id)
        if state is None:
            raise ConfirmationError(
                f"No confirmation in progress for {action_id}",
                details={"action_id": action_id},
                next_steps=["Open the confirmation first"],
            )
        state = submit(state, token)
        self._confirmations[action_id] = state
        return state

    def cancel_confirmation(self, action_id: str) -> ConfirmationState | None:
        state = self._confirmations.pop(action_id, None)
        return cancel(state) if state is not None else None

    def navigate_away(self) -> None:
        self._confirmations.clear()

    # ------------------------------- Execution ------------------------------ #

    def execute(self, action_id: str) -> ExecutionResult:
        if self.config.dry_run:
            raise ValidationError(
                "Execution is disabled in dry-run mode",
                details={"action_id": action_id},
                next_steps=["Unset MACDIET_DRY_RUN or drop --dry-run to execute"],
            )
        action = self._action(action_id)
        if self.executor is None:
            raise self.context_error  # type: ignore[misc]

        with self._execute_lock:
            result = self.executor.run(action, self._confirmations.get(action.id))
            # A READY confirmation authorizes exactly one dispatch.
            self._confirmations.pop(action.id, None)
            self.last_results[action.id] = result
            self.plan = reconcile(self.plan, result, check=self._check)
        return result

    def audit_entries(self, limit: int | None = 50) -> list[dict[str, Any]]:
        if self.audit_store is None:
            raise self.context_error  # type: ignore[misc]
        return self.audit_store.list_entries(limit)

    def read_audit_entry(self, name: str) -> dict[str, Any]:
        if self.audit_store is None:
            raise self.context_error  # type: ignore[misc]
        return self.audit_store.read_entry(name)

    def summary(self) -> dict[str, Any]:
        return {
            "report": {
                "schema_version": self.report.schema_version,
                "tool_version": self.report.tool_version,
                "generated_at": self.report.generated_at,
            },
            "context": self.context.summary() if self.context else None,
            "context_error": self.context_error.to_dict() if self.context_error else None,
            "config": self.config.to_dict(),
            "plan": self.plan.to_dict(),
        }


__all__ = ["EngineSession"]
