#!/usr/bin/env python3
"""Command-line front end for the macdiet action engine.

Examples:
    macdiet-engine --report report.json plan
    macdiet-engine --report report.json confirm-tokens homebrew-cache-cleanup
    macdiet-engine --report report.json --risk-max R2 apply docker-builder-prune
    macdiet-engine logs --limit 10

``apply`` asks for both typed confirmation tokens on stdin for every
action; there is no flag that skips confirmation.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Callable

from .allowlist import confirmation_tokens
from .config import EngineConfig, load_config
from .context import resolve_execution_context
from .errors import ConfirmationError, ContextResolutionError, EngineError, ValidationError
from .models import ActionKind, ExecutionStatus, Report, load_report, parse_risk_level
from .session import EngineSession
from .utils import now_utc_iso, setup_logger

EXIT_OK = 0
EXIT_INVALID_ARGS = 2
EXIT_FAILED = 10
EXIT_EXTERNAL_CMD_FAILED = 20

InputFn = Callable[[str], str]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="macdiet-engine",
        description="Gated, audited execution of macdiet remediation actions",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--report", default=None, help="Report JSON produced by a diagnostic run")
    parser.add_argument("--config", default=None, help="Config JSON file (default ~/.config/macdiet/config.json)")
    parser.add_argument("--risk-max", default=None, help="Maximum risk tier allowed to execute (R0..R3, '<=R2' ok)")
    parser.add_argument("--timeout", type=float, default=None, help="Time budget per external command in seconds")
    parser.add_argument("--dry-run", action="store_true", help="Show what would run; never execute")
    parser.add_argument("--log-file", default=None, help="Application log file")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("plan", help="List pending actions with executability and selection")

    p = sub.add_parser("confirm-tokens", help="Show the two tokens an action requires")
    p.add_argument("action_id")

    p = sub.add_parser("apply", help="Confirm and execute actions one at a time")
    p.add_argument("action_ids", nargs="+", metavar="ACTION_ID")

    p = sub.add_parser("logs", help="List audit log entries, newest first")
    p.add_argument("--limit", type=int, default=20)

    p = sub.add_parser("show-log", help="Print one audit log entry")
    p.add_argument("name")

    return parser


def build_config(args: argparse.Namespace, home_dir: Path) -> EngineConfig:
    cfg = load_config(home_dir, args.config)
    if args.risk_max:
        cfg.fix_default_risk_max = parse_risk_level(args.risk_max)
    if args.timeout is not None:
        if args.timeout <= 0:
            raise ValidationError("--timeout must be positive")
        cfg.command_timeout_sec = args.timeout
    if args.dry_run:
        cfg.dry_run = True
    if args.log_file:
        cfg.app_log_file = Path(args.log_file).expanduser()
    return cfg


def _require_report(args: argparse.Namespace) -> Report:
    if not args.report:
        raise ValidationError(f"--report is required for `{args.command}`")
    return load_report(args.report)


def confirm_interactively(session: EngineSession, action_id: str, input_fn: InputFn) -> bool:
    """Walk the two-stage confirmation on stdin. Empty input cancels."""
    state = session.open_confirmation(action_id)
    while not state.is_ready:
        print(state.prompt(), file=sys.stderr)
        try:
            typed = input_fn("> ")
        except EOFError:
            typed = ""
        if not typed.strip():
            session.cancel_confirmation(action_id)
            return False
        state = session.submit_token(action_id, typed)
        if state.error:
            print(state.error, file=sys.stderr)
    return True


def command_plan(session: EngineSession, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    return EXIT_OK, session.summary()


def command_confirm_tokens(session: EngineSession, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    action = session.report.action(args.action_id)
    if action is None:
        raise ValidationError(f"Unknown action id: {args.action_id}")
    tokens = confirmation_tokens(action)
    return EXIT_OK, {"action_id": action.id, "risk_level": str(action.risk_level), "tokens": list(tokens)}


def command_apply(
    session: EngineSession, args: argparse.Namespace, input_fn: InputFn
) -> tuple[int, dict[str, Any]]:
    if session.config.dry_run:
        preview = []
        for action_id in args.action_ids:
            item = session.plan.item(action_id)
            if item is None:
                raise ValidationError(f"Unknown or already executed action id: {action_id}")
            preview.append(item.to_dict())
        return EXIT_OK, {"dry_run": True, "would_execute": preview}

    results = []
    code = EXIT_OK
    for action_id in args.action_ids:
        try:
            if not confirm_interactively(session, action_id, input_fn):
                results.append({"action_id": action_id, "status": "CANCELLED"})
                continue
            result = session.execute(action_id)
        except (ValidationError, ConfirmationError, ContextResolutionError) as exc:
            # Earlier actions already ran; keep their results in the output.
            results.append({"action_id": action_id, "status": "REJECTED", "error": exc.to_dict()})
            code = max(code, EXIT_INVALID_ARGS)
            continue
        results.append(result.to_dict())
        if result.status is ExecutionStatus.FAILED:
            external = result.kind is ActionKind.RUN_CMD and result.audit_error is None
            code = max(code, EXIT_EXTERNAL_CMD_FAILED if external else EXIT_FAILED)
    return code, {"results": results, "plan": session.plan.to_dict()}


def command_logs(session: EngineSession, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    return EXIT_OK, {"entries": session.audit_entries(args.limit)}


def command_show_log(session: EngineSession, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    return EXIT_OK, session.read_audit_entry(args.name)


def dispatch(session: EngineSession, args: argparse.Namespace, input_fn: InputFn) -> tuple[int, dict[str, Any]]:
    cmd = args.command
    if cmd == "plan":
        return command_plan(session, args)
    if cmd == "confirm-tokens":
        return command_confirm_tokens(session, args)
    if cmd == "apply":
        return command_apply(session, args, input_fn)
    if cmd == "logs":
        return command_logs(session, args)
    if cmd == "show-log":
        return command_show_log(session, args)
    raise ValidationError(f"Unknown command: {cmd}")


def main(argv: list[str] | None = None, input_fn: InputFn = input) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        context = resolve_execution_context()
        config = build_config(args, context.home_dir)
        setup_logger(config.app_log_for(context.home_dir))
        if args.command in {"logs", "show-log"} and not args.report:
            report = Report(schema_version="1.0", tool_version="", generated_at="", findings=(), actions=())
        else:
            report = _require_report(args)
        session = EngineSession(report, config, context)
        code, data = dispatch(session, args, input_fn)
        print(json.dumps({
            "status": "ok" if code == EXIT_OK else "error",
            "command": args.command,
            "timestamp": now_utc_iso(),
            "data": data,
        }, indent=2, ensure_ascii=False))
        return code
    except EngineError as exc:
        print(json.dumps({
            "status": "error",
            "command": getattr(args, "command", None),
            "timestamp": now_utc_iso(),
            "error": exc.to_dict(),
        }, indent=2, ensure_ascii=False))
        return EXIT_INVALID_ARGS if isinstance(exc, ValidationError) else EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
