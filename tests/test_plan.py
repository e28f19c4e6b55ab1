"""Tests for plan construction and reconciliation after execution."""

from __future__ import annotations

from macdiet.errors import ValidationError
from macdiet.models import ActionKind, ExecutionResult, ExecutionStatus
from macdiet.plan import build_plan, reconcile, toggle


def _result(action_id: str, status: ExecutionStatus) -> ExecutionResult:
    return ExecutionResult(
        action_id=action_id,
        kind=ActionKind.RUN_CMD,
        status=status,
        detail="",
        started_at="2026-10-19T10:00:00+00:00",
        finished_at="2026-10-19T10:00:01+00:00",
    )


def test_pending_items_are_ordered_by_size_then_id(report):
    plan = build_plan(report)
    assert plan.pending_ids == (
        "homebrew-cache-trash",
        "homebrew-cache-cleanup",
        "npm-cache-cleanup",
        "docker-howto",
    )


def test_rebuilding_without_execution_is_idempotent(report):
    first = build_plan(report, selection={"npm-cache-cleanup"})
    second = build_plan(report, selection={"npm-cache-cleanup"})
    assert first == second
    assert first.to_dict() == second.to_dict()


def test_success_drops_action_and_keeps_other_selection(report):
    plan = build_plan(report)
    plan = toggle(plan, "homebrew-cache-cleanup")
    plan = toggle(plan, "npm-cache-cleanup")

    plan = reconcile(plan, _result("homebrew-cache-cleanup", ExecutionStatus.OK_WITH_WARNINGS))

    assert "homebrew-cache-cleanup" not in plan.pending_ids
    assert plan.item("npm-cache-cleanup").selected
    assert plan.selection == frozenset({"npm-cache-cleanup"})


def test_failure_leaves_plan_unchanged(report):
    plan = toggle(build_plan(report), "homebrew-cache-cleanup")
    after = reconcile(plan, _result("homebrew-cache-cleanup", ExecutionStatus.FAILED))
    assert after == plan


def test_reconciling_the_same_result_twice_is_stable(report):
    plan = build_plan(report)
    once = reconcile(plan, _result("npm-cache-cleanup", ExecutionStatus.OK))
    twice = reconcile(once, _result("npm-cache-cleanup", ExecutionStatus.OK))
    assert once == twice


def test_finding_resolves_only_when_all_recommended_actions_complete(report):
    plan = reconcile(build_plan(report), _result("homebrew-cache-cleanup", ExecutionStatus.OK))
    assert "homebrew-cache" in plan.pending_findings

    plan = reconcile(plan, _result("homebrew-cache-trash", ExecutionStatus.OK))
    assert "homebrew-cache" in plan.resolved_findings
    assert plan.pending_findings == ("npm-cache",)


def test_executability_is_reported_per_item(report):
    def check(action):
        if action.kind is ActionKind.SHOW_INSTRUCTIONS:
            raise ValidationError("instructions only")

    plan = build_plan(report, check=check)
    howto = plan.item("docker-howto")
    assert not howto.executable
    assert howto.reason == "instructions only"
    assert plan.item("npm-cache-cleanup").executable


def test_unknown_selection_ids_are_dropped(report):
    plan = build_plan(report, selection={"ghost"})
    assert plan.selection == frozenset()
