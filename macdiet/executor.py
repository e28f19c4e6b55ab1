"""Action executor: the only place where side effects happen.

Order of gates for one dispatch:

1. kind check (SHOW_INSTRUCTIONS is never executable)
2. risk gate against the configured maximum tier
3. allowlist lookup (RUN_CMD) or target validation for every path (TRASH_MOVE)
4. typed confirmation must be READY for this exact action
5. perform the effect, classify the outcome
6. append exactly one audit entry before returning

Gates 1-4 raise before anything is spawned or moved. Failures in step 5 are
captured in the ExecutionResult. A failed audit write turns the result into
FAILED, since an unlogged destructive effect must not count as applied.
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path
from typing import Iterable

from .allowlist import (
    AllowlistEntry,
    classify,
    confirmation_tokens,
    lookup_action,
    suggest_repairs,
    validate_trash_paths,
)
from .audit import AuditLogEntry, AuditLogStore
from .confirmation import ConfirmationState, require_ready
from .config import DEFAULT_COMMAND_TIMEOUT_SEC, DEFAULT_MAX_OUTPUT_BYTES
from .context import ExecutionContext
from .errors import ExecutionTimeoutError, PersistenceError, ValidationError
from .models import Action, ActionKind, ExecutionResult, ExecutionStatus, RiskLevel
from .process import CommandRunner, run_command
from .utils import get_logger, now_utc_iso, truncate_text


def unique_trash_dest(trash_dir: Path, name: str) -> Path:
    dest = trash_dir / name
    if not dest.exists() and not dest.is_symlink():
        return dest
    for i in range(1, 1001):
        candidate = trash_dir / f"{name}.macdiet-{i}"
        if not candidate.exists() and not candidate.is_symlink():
            return candidate
    raise OSError(f"Could not find a unique name in {trash_dir} for {name}")


class ActionExecutor:
    """Validate, confirm-check, execute and audit one action at a time."""

    def __init__(
        self,
        context: ExecutionContext,
        audit_store: AuditLogStore,
        *,
        max_risk: RiskLevel = RiskLevel.R1,
        timeout: float = DEFAULT_COMMAND_TIMEOUT_SEC,
        trash_dir: Path | None = None,
        runner: CommandRunner = run_command,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        logger: logging.Logger | None = None,
    ):
        self.context = context
        self.audit_store = audit_store
        self.max_risk = max_risk
        self.timeout = timeout
        self.trash_dir = trash_dir if trash_dir is not None else context.home_dir / ".Trash"
        self.runner = runner
        self.max_output_bytes = max_output_bytes
        self.logger = logger or get_logger()

    # ------------------------------ Validation ------------------------------ #

    def check_executable(self, action: Action) -> AllowlistEntry | None:
        """Raise ValidationError unless ``action`` could be dispatched.

        Returns the allowlist entry for RUN_CMD actions, None for TRASH_MOVE.
        """
        if action.kind is ActionKind.SHOW_INSTRUCTIONS:
            raise ValidationError(
                f"SHOW_INSTRUCTIONS action {action.id} cannot be executed",
                details={"action_id": action.id},
                next_steps=["Follow the instructions manually"],
            )
        if action.risk_level > self.max_risk:
            raise ValidationError(
                f"Action {action.id} is {action.risk_level}, above the allowed maximum {self.max_risk}",
                details={"action_id": action.id, "risk_level": str(action.risk_level), "max_risk": str(self.max_risk)},
                next_steps=[f"Raise the maximum risk to {action.risk_level} to allow this action"],
            )
        if action.kind is ActionKind.RUN_CMD:
            entry = lookup_action(action)
            if entry is None:
                raise ValidationError(
                    f"RUN_CMD is not in the allowlist (action_id={action.id})",
                    details={"action_id": action.id, "cmd": action.cmd, "args": list(action.args)},
                )
            return entry
        validate_trash_paths(action.paths, self.context.home_dir)
        return None

    # ------------------------------- Dispatch ------------------------------- #

    def run(self, action: Action, confirmation: ConfirmationState | None) -> ExecutionResult:
        entry = self.check_executable(action)
        require_ready(confirmation, action.id, confirmation_tokens(action))

        self.logger.info("execute_start action=%s kind=%s risk=%s", action.id, action.kind.value, action.risk_level)
        if entry is not None:
            result = self._run_cmd(action, entry)
        else:
            result = self._trash_move(action)
        return self._record(action, result)

    def run_many(self, pairs: Iterable[tuple[Action, ConfirmationState | None]]) -> list[ExecutionResult]:
        """Run confirmed actions one after another; each outcome is independent."""
        return [self.run(action, confirmation) for action, confirmation in pairs]

    def _run_cmd(self, action: Action, entry: AllowlistEntry) -> ExecutionResult:
        started_at = now_utc_iso()
        env = self.context.subprocess_env() if entry.user_scoped else None
        run_as = self.context.run_as() if entry.user_scoped else None

        t0 = time.monotonic()
        try:
            output = self.runner(action.cmd, action.args, self.timeout, env=env, run_as=run_as)
        except ExecutionTimeoutError as exc:
            self.logger.error("execute_timeout action=%s timeout=%s", action.id, self.timeout)
            return ExecutionResult(
                action_id=action.id,
                kind=action.kind,
                status=ExecutionStatus.FAILED,
                detail=f"Timeout: {exc.message}",
                started_at=started_at,
                finished_at=now_utc_iso(),
                stdout=truncate_text(exc.stdout, self.max_output_bytes),
                stderr=truncate_text(exc.stderr, self.max_output_bytes),
                duration_sec=exc.duration_sec or time.monotonic() - t0,
                timed_out=True,
            )
        except OSError as exc:
            self.logger.error("execute_spawn_failed action=%s err=%s", action.id, exc)
            return ExecutionResult(
                action_id=action.id,
                kind=action.kind,
                status=ExecutionStatus.FAILED,
                detail=f"Failed to start {action.cmd}: {exc}",
                started_at=started_at,
                finished_at=now_utc_iso(),
                duration_sec=time.monotonic() - t0,
            )

        outcome = classify(entry, output)
        suggestions = []
        if outcome.status is ExecutionStatus.FAILED:
            suggestions = suggest_repairs(entry, action, output, self.context)

        return ExecutionResult(
            action_id=action.id,
            kind=action.kind,
            status=outcome.status,
            detail=outcome.detail,
            started_at=started_at,
            finished_at=now_utc_iso(),
            exit_code=output.exit_code,
            stdout=truncate_text(output.stdout, self.max_output_bytes),
            stderr=truncate_text(output.stderr, self.max_output_bytes),
            duration_sec=output.duration_sec or time.monotonic() - t0,
            suggested_actions=suggestions,
        )

    def _trash_move(self, action: Action) -> ExecutionResult:
        started_at = now_utc_iso()
        t0 = time.monotonic()
        sources = validate_trash_paths(action.paths, self.context.home_dir)

        moves: list[dict[str, str]] = []
        skipped: list[str] = []
        errors: list[dict[str, str]] = []

        for src in sources:
            if not src.exists() and not src.is_symlink():
                skipped.append(str(src))
                continue
            try:
                self.trash_dir.mkdir(parents=True, exist_ok=True)
                dest = unique_trash_dest(self.trash_dir, src.name)
                shutil.move(str(src), str(dest))
                moves.append({"from": str(src), "to": str(dest)})
                self.logger.info("trash_move action=%s from=%s to=%s", action.id, src, dest)
            except OSError as exc:
                errors.append({"path": str(src), "error": str(exc)})
                self.logger.error("trash_move_failed action=%s path=%s err=%s", action.id, src, exc)

        if errors:
            status = ExecutionStatus.FAILED
            detail = f"Moved {len(moves)} path(s); {len(errors)} failed"
        elif skipped:
            status = ExecutionStatus.OK_WITH_WARNINGS
            detail = f"Moved {len(moves)} path(s); {len(skipped)} already missing"
        else:
            status = ExecutionStatus.OK
            detail = f"Moved {len(moves)} path(s) to {self.trash_dir}"

        return ExecutionResult(
            action_id=action.id,
            kind=action.kind,
            status=status,
            detail=detail,
            started_at=started_at,
            finished_at=now_utc_iso(),
            duration_sec=time.monotonic() - t0,
            moves=moves,
            skipped_missing=skipped,
            errors=errors,
        )

    def _record(self, action: Action, result: ExecutionResult) -> ExecutionResult:
        entry = AuditLogEntry.from_result(action, result, self.context.summary())
        try:
            result.audit_path = str(self.audit_store.append(entry))
        except PersistenceError as exc:
            self.logger.error("audit_failed action=%s err=%s", action.id, exc.message)
            result.status = ExecutionStatus.FAILED
            result.audit_error = exc.message
            result.detail = f"{result.detail}; audit log write failed: {exc.message}"
        self.logger.info("execute_done action=%s status=%s", action.id, result.status.value)
        return result


__all__ = ["ActionExecutor", "unique_trash_dest"]
