"""Append-only audit log store.

One JSON file per execution attempt under ``~/.config/macdiet/logs``.
Entries are written to a temporary file in the same directory, fsynced,
then hard-linked to a unique final name so an existing entry can never be
overwritten. The engine never rewrites or deletes entries.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any

from . import __version__
from .errors import PersistenceError, ValidationError
from .models import Action, ActionKind, ExecutionResult
from .utils import get_logger, utc_stamp

AUDIT_SCHEMA_VERSION = "1.0"
TRASH_ROLLBACK_HINT = "TRASH_MOVE is recoverable via ~/.Trash (move back if needed)."

_FILE_PREFIX = {
    ActionKind.TRASH_MOVE: "fix-apply",
    ActionKind.RUN_CMD: "fix-run-cmd",
}


@dataclasses.dataclass(slots=True)
class AuditLogEntry:
    entry_id: str
    started_at: str
    finished_at: str
    action_id: str
    action_title: str
    kind: str
    risk_level: str
    inputs: dict[str, Any]
    context: dict[str, Any]
    status: str
    detail: str
    exit_code: int | None = None
    duration_sec: float = 0.0
    timed_out: bool = False
    stdout: str = ""
    stderr: str = ""
    moves: list[dict[str, str]] = dataclasses.field(default_factory=list)
    skipped_missing: list[str] = dataclasses.field(default_factory=list)
    errors: list[dict[str, str]] = dataclasses.field(default_factory=list)
    suggested_action_ids: list[str] = dataclasses.field(default_factory=list)
    rollback_hint: str | None = None
    schema_version: str = AUDIT_SCHEMA_VERSION
    tool_version: str = __version__

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_result(cls, action: Action, result: ExecutionResult, context: dict[str, Any]) -> "AuditLogEntry":
        if action.kind is ActionKind.TRASH_MOVE:
            inputs: dict[str, Any] = {"paths": list(action.paths)}
        else:
            inputs = {"cmd": action.cmd, "args": list(action.args)}
        return cls(
            entry_id=uuid.uuid4().hex,
            started_at=result.started_at,
            finished_at=result.finished_at,
            action_id=action.id,
            action_title=action.title,
            kind=action.kind.value,
            risk_level=str(action.risk_level),
            inputs=inputs,
            context=context,
            status=result.status.value,
            detail=result.detail,
            exit_code=result.exit_code,
            duration_sec=round(result.duration_sec, 3),
            timed_out=result.timed_out,
            stdout=result.stdout,
            stderr=result.stderr,
            moves=list(result.moves),
            skipped_missing=list(result.skipped_missing),
            errors=list(result.errors),
            suggested_action_ids=[a.id for a in result.suggested_actions],
            rollback_hint=TRASH_ROLLBACK_HINT if action.kind is ActionKind.TRASH_MOVE else None,
        )


class AuditLogStore:
    """Durable, append-only directory of audit entries."""

    def __init__(self, log_dir: Path, logger: logging.Logger | None = None):
        self.log_dir = Path(log_dir)
        self.logger = logger or get_logger()

    def append(self, entry: AuditLogEntry) -> Path:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(
                f"Cannot create audit log directory {self.log_dir}: {exc}",
                details={"log_dir": str(self.log_dir)},
            ) from exc

        payload = json.dumps(entry.to_dict(), indent=2, ensure_ascii=False).encode("utf-8")
        prefix = _FILE_PREFIX.get(ActionKind(entry.kind), "fix")

        tmp_path: str | None = None
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.log_dir, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())

            for _ in range(5):
                target = self.log_dir / f"{prefix}-{utc_stamp()}-{os.getpid()}-{uuid.uuid4().hex[:8]}.json"
                try:
                    os.link(tmp_path, target)
                    break
                except FileExistsError:
                    continue
            else:
                raise PersistenceError(f"Could not allocate a unique audit log name in {self.log_dir}")
        except OSError as exc:
            raise PersistenceError(
                f"Failed to write audit log entry for {entry.action_id}: {exc}",
                details={"log_dir": str(self.log_dir), "action_id": entry.action_id},
            ) from exc
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass

        # The entry is already published under its final name.
        try:
            self._fsync_dir()
        except OSError as exc:
            self.logger.warning("audit_dir_fsync_failed path=%s err=%s", target, exc)

        self.logger.info("audit_written action=%s status=%s path=%s", entry.action_id, entry.status, target)
        return target

    def _fsync_dir(self) -> None:
        dir_fd = os.open(self.log_dir, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def list_entries(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Summaries of stored entries, newest first."""
        if not self.log_dir.is_dir():
            return []
        files = [p for p in self.log_dir.glob("*.json") if not p.name.startswith(".")]
        files.sort(key=lambda p: (p.stat().st_mtime, p.name), reverse=True)
        if limit is not None:
            files = files[:limit]

        out = []
        for path in files:
            data = self._load(path)
            out.append(
                {
                    "name": path.name,
                    "path": str(path),
                    "action_id": data.get("action_id"),
                    "kind": data.get("kind"),
                    "status": data.get("status"),
                    "finished_at": data.get("finished_at"),
                }
            )
        return out

    def read_entry(self, name: str) -> dict[str, Any]:
        if not name or "/" in name or os.sep in name or name.startswith("."):
            raise ValidationError(f"Invalid audit log name: {name!r}", details={"name": name})
        path = self.log_dir / name
        if not path.is_file():
            raise ValidationError(f"Audit log not found: {name}", details={"name": name})
        return self._load(path)

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Cannot read audit log {path}: {exc}", details={"path": str(path)}) from exc


__all__ = ["AUDIT_SCHEMA_VERSION", "AuditLogEntry", "AuditLogStore", "TRASH_ROLLBACK_HINT"]
