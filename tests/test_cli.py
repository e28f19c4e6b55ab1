"""Tests for the command-line front end."""

from __future__ import annotations

import json

import pytest

from macdiet import cli


@pytest.fixture
def report_file(tmp_path, report):
    path = tmp_path / "report.json"
    path.write_text(
        json.dumps(
            {
                "schema_version": report.schema_version,
                "tool_version": report.tool_version,
                "generated_at": report.generated_at,
                "findings": [],
                "actions": [a.to_dict() for a in report.actions],
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture(autouse=True)
def plain_env(monkeypatch, home, tmp_path):
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USER", "alice")
    monkeypatch.setenv("MACDIET_APP_LOG", str(tmp_path / "engine.log"))
    for key in ("SUDO_UID", "SUDO_GID", "SUDO_USER", "MACDIET_CONFIG", "MACDIET_DRY_RUN", "MACDIET_LOG_DIR",
                "MACDIET_TRASH_DIR", "MACDIET_FIX_DEFAULT_RISK_MAX"):
        monkeypatch.delenv(key, raising=False)


def _feed(*answers):
    it = iter(answers)
    return lambda _prompt: next(it)


def test_plan_lists_pending_actions(report_file, capsys):
    assert cli.main(["--report", str(report_file), "plan"]) == cli.EXIT_OK
    out = json.loads(capsys.readouterr().out)
    assert [p["action"]["id"] for p in out["data"]["plan"]["pending"]][0] == "homebrew-cache-trash"


def test_confirm_tokens(report_file, capsys):
    cli.main(["--report", str(report_file), "confirm-tokens", "homebrew-cache-cleanup"])
    assert json.loads(capsys.readouterr().out)["data"]["tokens"] == ["cleanup", "run"]


def test_apply_trash_move_with_typed_confirmation(report_file, home, capsys):
    cache = home / "Library/Caches/Homebrew"
    cache.mkdir(parents=True)
    code = cli.main(["--report", str(report_file), "apply", "homebrew-cache-trash"], input_fn=_feed("yes", "trash"))
    assert code == cli.EXIT_OK
    assert not cache.exists()
    assert (home / ".Trash" / "Homebrew").exists()
    out = json.loads(capsys.readouterr().out)
    assert out["data"]["results"][0]["status"] == "OK"


def test_apply_cancelled_by_empty_input(report_file, home, capsys):
    cache = home / "Library/Caches/Homebrew"
    cache.mkdir(parents=True)
    cli.main(["--report", str(report_file), "apply", "homebrew-cache-trash"], input_fn=_feed("yes", ""))
    assert cache.exists()
    assert json.loads(capsys.readouterr().out)["data"]["results"][0]["status"] == "CANCELLED"


def test_dry_run_apply_only_previews(report_file, home, capsys):
    cache = home / "Library/Caches/Homebrew"
    cache.mkdir(parents=True)
    code = cli.main(["--report", str(report_file), "--dry-run", "apply", "homebrew-cache-trash"])
    assert code == cli.EXIT_OK
    assert cache.exists()
    assert json.loads(capsys.readouterr().out)["data"]["dry_run"] is True


def test_invalid_risk_flag_exits_2(report_file, capsys):
    assert cli.main(["--report", str(report_file), "--risk-max", "R7", "plan"]) == cli.EXIT_INVALID_ARGS
    assert json.loads(capsys.readouterr().out)["error"]["code"] == "E_VALIDATION"


def test_logs_without_report(capsys):
    assert cli.main(["logs"]) == cli.EXIT_OK
    assert json.loads(capsys.readouterr().out)["data"]["entries"] == []


def test_apply_keeps_earlier_results_when_a_later_id_is_rejected(report_file, home, capsys):
    cache = home / "Library/Caches/Homebrew"
    cache.mkdir(parents=True)
    code = cli.main(
        ["--report", str(report_file), "apply", "homebrew-cache-trash", "ghost"], input_fn=_feed("yes", "trash")
    )
    assert code == cli.EXIT_INVALID_ARGS
    assert not cache.exists()

    results = json.loads(capsys.readouterr().out)["data"]["results"]
    assert results[0]["status"] == "OK"
    assert results[0]["moves"][0]["from"] == str(cache)
    assert results[0]["audit_path"]
    assert results[1]["action_id"] == "ghost"
    assert results[1]["status"] == "REJECTED"
    assert results[1]["error"]["code"] == "E_VALIDATION"
