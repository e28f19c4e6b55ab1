"""Core data model: risk tiers, findings, actions, reports, execution results.

Findings and actions are immutable once loaded. A diagnostic run produces a
fresh Report; the engine never edits one in place.
"""

from __future__ import annotations

import dataclasses
import enum
from pathlib import Path
from typing import Any

from .errors import ValidationError
from .utils import read_json

# ------------------------------- Risk Tiers --------------------------------- #


class RiskLevel(enum.IntEnum):
    R0 = 0
    R1 = 1
    R2 = 2
    R3 = 3

    def __str__(self) -> str:
        return self.name


def parse_risk_level(value: str | RiskLevel) -> RiskLevel:
    """Parse ``R0``..``R3`` (case-insensitive, optional ``<=`` prefix)."""
    if isinstance(value, RiskLevel):
        return value
    text = str(value).strip()
    if text.startswith("<="):
        text = text[2:].strip()
    try:
        return RiskLevel[text.upper()]
    except KeyError:
        raise ValidationError(
            f"Invalid risk level: {value!r}",
            details={"value": value},
            next_steps=["Use one of R0, R1, R2, R3"],
        ) from None


class ActionKind(str, enum.Enum):
    TRASH_MOVE = "TRASH_MOVE"
    RUN_CMD = "RUN_CMD"
    SHOW_INSTRUCTIONS = "SHOW_INSTRUCTIONS"


class ExecutionStatus(str, enum.Enum):
    OK = "OK"
    OK_WITH_WARNINGS = "OK_WITH_WARNINGS"
    FAILED = "FAILED"

    @property
    def succeeded(self) -> bool:
        return self is not ExecutionStatus.FAILED


# ------------------------------ Data Models --------------------------------- #


@dataclasses.dataclass(frozen=True, slots=True)
class Evidence:
    kind: str
    value: str
    masked: bool = False


@dataclasses.dataclass(frozen=True, slots=True)
class Finding:
    id: str
    type: str
    title: str
    estimated_bytes: int
    confidence: float
    risk_level: RiskLevel
    evidence: tuple[Evidence, ...] = ()
    recommended_actions: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Finding":
        try:
            return cls(
                id=str(data["id"]),
                type=str(data.get("type", "")),
                title=str(data.get("title", "")),
                estimated_bytes=int(data.get("estimated_bytes", 0)),
                confidence=float(data.get("confidence", 0.0)),
                risk_level=parse_risk_level(data.get("risk_level", "R0")),
                evidence=tuple(
                    Evidence(kind=str(e["kind"]), value=str(e["value"]), masked=bool(e.get("masked", False)))
                    for e in data.get("evidence", [])
                ),
                recommended_actions=tuple(
                    str(r["id"]) if isinstance(r, dict) else str(r) for r in data.get("recommended_actions", [])
                ),
                notes=tuple(str(n) for n in data.get("notes", [])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed finding: {exc}", details={"finding": data.get("id")}) from exc


@dataclasses.dataclass(frozen=True, slots=True)
class Action:
    """One remediation step. The payload fields used depend on ``kind``."""

    id: str
    title: str
    kind: ActionKind
    risk_level: RiskLevel
    estimated_reclaimed_bytes: int = 0
    related_findings: tuple[str, ...] = ()
    paths: tuple[str, ...] = ()
    cmd: str = ""
    args: tuple[str, ...] = ()
    markdown: str = ""
    notes: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise ValidationError("Action id must not be empty")
        if self.kind is ActionKind.TRASH_MOVE:
            if not self.paths or self.cmd or self.args:
                raise ValidationError(
                    f"TRASH_MOVE action {self.id} needs paths and no command",
                    details={"action_id": self.id},
                )
        elif self.kind is ActionKind.RUN_CMD:
            if not self.cmd or self.paths:
                raise ValidationError(
                    f"RUN_CMD action {self.id} needs cmd and no paths",
                    details={"action_id": self.id},
                )
        elif self.kind is ActionKind.SHOW_INSTRUCTIONS:
            if self.paths or self.cmd or self.args:
                raise ValidationError(
                    f"SHOW_INSTRUCTIONS action {self.id} carries only markdown",
                    details={"action_id": self.id},
                )

    def payload(self) -> dict[str, Any]:
        if self.kind is ActionKind.TRASH_MOVE:
            return {"kind": self.kind.value, "paths": list(self.paths)}
        if self.kind is ActionKind.RUN_CMD:
            return {"kind": self.kind.value, "cmd": self.cmd, "args": list(self.args)}
        return {"kind": self.kind.value, "markdown": self.markdown}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "risk_level": str(self.risk_level),
            "estimated_reclaimed_bytes": self.estimated_reclaimed_bytes,
            "related_findings": list(self.related_findings),
            "kind": self.payload(),
            "notes": list(self.notes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Action":
        kind_obj = data.get("kind")
        if not isinstance(kind_obj, dict) or "kind" not in kind_obj:
            raise ValidationError(f"Action {data.get('id')!r} has no kind payload", details={"action": data.get("id")})
        try:
            kind = ActionKind(kind_obj["kind"])
        except ValueError:
            raise ValidationError(
                f"Unsupported action kind: {kind_obj['kind']}",
                details={"action": data.get("id"), "kind": kind_obj["kind"]},
            ) from None
        try:
            return cls(
                id=str(data["id"]),
                title=str(data.get("title", "")),
                kind=kind,
                risk_level=parse_risk_level(data.get("risk_level", "R0")),
                estimated_reclaimed_bytes=int(data.get("estimated_reclaimed_bytes", 0)),
                related_findings=tuple(str(f) for f in data.get("related_findings", [])),
                paths=tuple(str(p) for p in kind_obj.get("paths", [])),
                cmd=str(kind_obj.get("cmd", "")),
                args=tuple(str(a) for a in kind_obj.get("args", [])),
                markdown=str(kind_obj.get("markdown", "")),
                notes=tuple(str(n) for n in data.get("notes", [])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed action: {exc}", details={"action": data.get("id")}) from exc


@dataclasses.dataclass(frozen=True, slots=True)
class Report:
    schema_version: str
    tool_version: str
    generated_at: str
    findings: tuple[Finding, ...]
    actions: tuple[Action, ...]

    def action(self, action_id: str) -> Action | None:
        for a in self.actions:
            if a.id == action_id:
                return a
        return None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Report":
        if not isinstance(data, dict):
            raise ValidationError("Report must be a JSON object")
        actions = tuple(Action.from_dict(a) for a in data.get("actions", []))
        seen: set[str] = set()
        for a in actions:
            if a.id in seen:
                raise ValidationError(f"Duplicate action id in report: {a.id}", details={"action_id": a.id})
            seen.add(a.id)
        return cls(
            schema_version=str(data.get("schema_version", "1.0")),
            tool_version=str(data.get("tool_version", "")),
            generated_at=str(data.get("generated_at", "")),
            findings=tuple(Finding.from_dict(f) for f in data.get("findings", [])),
            actions=actions,
        )


def load_report(path: str | Path) -> Report:
    try:
        data = read_json(path)
    except (OSError, ValueError) as exc:
        raise ValidationError(f"Cannot read report {path}: {exc}", details={"path": str(path)}) from exc
    return Report.from_dict(data)


# ---------------------------- Execution Results ----------------------------- #


@dataclasses.dataclass(frozen=True, slots=True)
class CommandOutput:
    exit_code: int
    stdout: str
    stderr: str
    duration_sec: float = 0.0


@dataclasses.dataclass(frozen=True, slots=True)
class Outcome:
    status: ExecutionStatus
    detail: str


@dataclasses.dataclass(slots=True)
class ExecutionResult:
    action_id: str
    kind: ActionKind
    status: ExecutionStatus
    detail: str
    started_at: str
    finished_at: str
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_sec: float = 0.0
    timed_out: bool = False
    moves: list[dict[str, str]] = dataclasses.field(default_factory=list)
    skipped_missing: list[str] = dataclasses.field(default_factory=list)
    errors: list[dict[str, str]] = dataclasses.field(default_factory=list)
    suggested_actions: list[Action] = dataclasses.field(default_factory=list)
    audit_path: str | None = None
    audit_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_id": self.action_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "detail": self.detail,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "duration_sec": round(self.duration_sec, 3),
            "timed_out": self.timed_out,
            "moves": self.moves,
            "skipped_missing": self.skipped_missing,
            "errors": self.errors,
            "suggested_actions": [a.to_dict() for a in self.suggested_actions],
            "audit_path": self.audit_path,
            "audit_error": self.audit_error,
        }


__all__ = [
    "Action",
    "ActionKind",
    "CommandOutput",
    "Evidence",
    "ExecutionResult",
    "ExecutionStatus",
    "Finding",
    "Outcome",
    "Report",
    "RiskLevel",
    "load_report",
    "parse_risk_level",
]
