"""Pending-work plan and its reconciliation after execution.

A Plan is a pure function of (report, completed action ids, selection,
executability check), so rebuilding it with unchanged inputs always yields
an equal value. Selection is keyed by action id, never by list position.
"""

from __future__ import annotations

import dataclasses
from typing import Any, Callable

from .errors import EngineError
from .models import Action, ExecutionResult, Report
from .utils import human_bytes

# Raises when the action can never be dispatched under the current session.
ExecutableCheck = Callable[[Action], Any]


@dataclasses.dataclass(frozen=True, slots=True)
class PlanItem:
    action: Action
    executable: bool
    reason: str | None
    selected: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "executable": self.executable,
            "reason": self.reason,
            "selected": self.selected,
            "estimated_reclaimed_human": human_bytes(self.action.estimated_reclaimed_bytes),
        }


@dataclasses.dataclass(frozen=True, slots=True)
class Plan:
    report: Report
    items: tuple[PlanItem, ...]
    completed: frozenset[str]
    selection: frozenset[str]
    resolved_findings: tuple[str, ...]

    def item(self, action_id: str) -> PlanItem | None:
        for it in self.items:
            if it.action.id == action_id:
                return it
        return None

    @property
    def pending_ids(self) -> tuple[str, ...]:
        return tuple(it.action.id for it in self.items)

    @property
    def pending_findings(self) -> tuple[str, ...]:
        return tuple(f.id for f in self.report.findings if f.id not in self.resolved_findings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": [it.to_dict() for it in self.items],
            "completed": sorted(self.completed),
            "selection": sorted(self.selection),
            "pending_findings": list(self.pending_findings),
            "resolved_findings": list(self.resolved_findings),
        }


def _executability(action: Action, check: ExecutableCheck | None) -> tuple[bool, str | None]:
    if check is None:
        return True, None
    try:
        check(action)
    except EngineError as exc:
        return False, exc.message
    return True, None


def build_plan(
    report: Report,
    *,
    completed: frozenset[str] | set[str] = frozenset(),
    selection: frozenset[str] | set[str] = frozenset(),
    check: ExecutableCheck | None = None,
) -> Plan:
    completed = frozenset(completed)
    pending = [a for a in report.actions if a.id not in completed]
    pending.sort(key=lambda a: (-a.estimated_reclaimed_bytes, a.id))
    pending_ids = {a.id for a in pending}
    # Stale selections (executed or unknown ids) are dropped, never remapped.
    selection = frozenset(s for s in selection if s in pending_ids)

    items = []
    for action in pending:
        executable, reason = _executability(action, check)
        items.append(PlanItem(action=action, executable=executable, reason=reason, selected=action.id in selection))

    resolved = tuple(
        f.id
        for f in report.findings
        if f.recommended_actions and all(a in completed for a in f.recommended_actions)
    )
    return Plan(
        report=report,
        items=tuple(items),
        completed=completed,
        selection=selection,
        resolved_findings=resolved,
    )


def reconcile(plan: Plan, result: ExecutionResult, check: ExecutableCheck | None = None) -> Plan:
    """Fold one execution result into the plan.

    Successful results (OK or OK_WITH_WARNINGS) mark the action completed.
    Failed results leave the plan's content unchanged.
    """
    completed = plan.completed
    if result.status.succeeded:
        completed = completed | {result.action_id}
    return build_plan(plan.report, completed=completed, selection=plan.selection, check=check)


def toggle(plan: Plan, action_id: str, check: ExecutableCheck | None = None) -> Plan:
    selection = set(plan.selection)
    if action_id in selection:
        selection.discard(action_id)
    else:
        selection.add(action_id)
    return build_plan(plan.report, completed=plan.completed, selection=selection, check=check)


__all__ = ["Plan", "PlanItem", "build_plan", "reconcile", "toggle"]
