#!/usr/bin/env python3
"""Local macdiet engine server (FastAPI).

Thin HTTP presentation layer over one EngineSession:
- pending plan and selection
- two-stage typed confirmation per action
- execution of confirmed actions with audit logging
- audit log listing

Binds 127.0.0.1 by default. The report is loaded from MACDIET_REPORT or
``--report`` at startup.
"""

from __future__ import annotations

import argparse
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .config import load_config
from .context import resolve_execution_context
from .errors import (
    ConfirmationError,
    ContextResolutionError,
    EngineError,
    ValidationError,
)
from .models import load_report
from .session import EngineSession
from .utils import APP_NAME, now_utc_iso, setup_logger

LOGGER = logging.getLogger(APP_NAME)
_SESSION: EngineSession | None = None


def set_session(session: EngineSession | None) -> None:
    global _SESSION
    _SESSION = session


def get_session() -> EngineSession:
    if _SESSION is None:
        raise ValidationError(
            "No report loaded",
            next_steps=["Start the server with --report or set MACDIET_REPORT"],
        )
    return _SESSION


# ---------------------------- API Models ------------------------------------ #


class SelectionRequest(BaseModel):
    action_ids: list[str] = Field(default_factory=list)


class TokenRequest(BaseModel):
    token: str


# ---------------------------- Response Helpers ------------------------------ #


def api_ok(data: Any, *, meta: dict[str, Any] | None = None, warnings: list[str] | None = None) -> JSONResponse:
    body = {
        "status": "ok",
        "timestamp": now_utc_iso(),
        "meta": meta or {},
        "warnings": warnings or [],
        "data": data,
    }
    return JSONResponse(body)


def api_error(code: str, message: str, status_code: int = 400, details: dict[str, Any] | None = None,
              next_steps: list[str] | None = None) -> JSONResponse:
    body = {
        "status": "error",
        "timestamp": now_utc_iso(),
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
            "nextSteps": next_steps or [],
        },
    }
    return JSONResponse(body, status_code=status_code)


# ------------------------------- App Setup ---------------------------------- #


app = FastAPI(
    title="macdiet Engine Server",
    version=__version__,
    description="Local API for confirmed, audited macOS storage remediation.",
)


@app.exception_handler(EngineError)
async def engine_error_handler(_: Request, exc: EngineError):
    if isinstance(exc, (ValidationError, ConfirmationError, ContextResolutionError)):
        status_code = 400
    else:
        status_code = 500
    LOGGER.warning("request_rejected code=%s msg=%s", exc.code, exc.message)
    return api_error(exc.code, exc.message, status_code=status_code, details=exc.details, next_steps=exc.next_steps)


@app.exception_handler(Exception)
async def unhandled_exception_handler(_: Request, exc: Exception):
    LOGGER.exception("Unhandled server error: %s", exc)
    return api_error("INTERNAL_SERVER_ERROR", str(exc), status_code=500)


# ------------------------------- Plan APIs ---------------------------------- #


@app.get("/api/v1/plan", summary="Pending actions, selection and resolved findings")
async def get_plan():
    session = get_session()
    return api_ok(session.plan.to_dict(), meta={"context": session.context.summary() if session.context else None})


@app.post("/api/v1/plan/selection", summary="Toggle selection of actions by id")
async def toggle_selection(req: SelectionRequest):
    session = get_session()
    for action_id in req.action_ids:
        session.toggle_selection(action_id)
    return api_ok(session.plan.to_dict())


# --------------------------- Confirmation APIs ------------------------------ #


@app.post("/api/v1/confirmations/{action_id}/open", summary="Start a fresh typed confirmation")
async def open_confirmation(action_id: str):
    state = get_session().open_confirmation(action_id)
    return api_ok(state.to_dict())


@app.post("/api/v1/confirmations/{action_id}/submit", summary="Submit one confirmation token")
async def submit_token(action_id: str, req: TokenRequest):
    state = get_session().submit_token(action_id, req.token)
    warnings = [state.error] if state.error else []
    return api_ok(state.to_dict(), warnings=warnings)


@app.post("/api/v1/confirmations/{action_id}/cancel", summary="Cancel a confirmation in progress")
async def cancel_confirmation(action_id: str):
    state = get_session().cancel_confirmation(action_id)
    return api_ok(state.to_dict() if state else {"action_id": action_id, "stage": "CANCELLED"})


# ------------------------------ Action APIs --------------------------------- #


@app.post("/api/v1/actions/{action_id}/execute", summary="Execute a READY action")
def execute_action(action_id: str):
    # Plain def: FastAPI runs it in the worker threadpool so a long command
    # or a large move never stalls the event loop.
    session = get_session()
    result = session.execute(action_id)
    warnings = []
    if result.suggested_actions:
        warnings.append("Suggested repair actions were returned; they are not executed automatically.")
    return api_ok({"result": result.to_dict(), "plan": session.plan.to_dict()}, warnings=warnings)


@app.get("/api/v1/audit", summary="List audit log entries, newest first")
async def list_audit(limit: int = 50):
    return api_ok({"entries": get_session().audit_entries(limit)})


@app.get("/api/v1/audit/{name}", summary="Read one audit log entry")
async def read_audit(name: str):
    return api_ok(get_session().read_audit_entry(name))


# ------------------------------ Health & Root ------------------------------- #


@app.get("/healthz", summary="Liveness endpoint")
async def healthz():
    return api_ok({"service": "macdiet-engine-server", "healthy": True, "report_loaded": _SESSION is not None})


# --------------------------------- Runner ---------------------------------- #


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the macdiet engine FastAPI server")
    parser.add_argument("--host", default=os.getenv("MACDIET_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("MACDIET_PORT", "8017")))
    parser.add_argument("--report", default=os.getenv("MACDIET_REPORT"))
    parser.add_argument("--config", default=None)
    return parser.parse_args(argv)


def load_session(report_path: str, config_path: str | None = None) -> EngineSession:
    report = load_report(report_path)
    try:
        context = resolve_execution_context()
    except ContextResolutionError as exc:
        home = Path(os.getenv("HOME") or tempfile.gettempdir())
        return EngineSession(report, load_config(home, config_path), None, context_error=exc)
    return EngineSession(report, load_config(context.home_dir, config_path), context)


def main(argv: list[str] | None = None) -> None:
    import uvicorn

    args = parse_args(argv)
    home = Path(os.getenv("HOME") or tempfile.gettempdir())
    setup_logger(home / ".local" / "share" / APP_NAME / "server.log")
    if args.report:
        set_session(load_session(args.report, args.config))
    LOGGER.info("Starting macdiet engine server host=%s port=%s", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level="info")


if __name__ == "__main__":
    main()
