"""Error taxonomy shared by every engine component.

Each error carries a stable code, a human-readable message, structured
details and optional next steps, so the CLI and the HTTP API can render
the same envelope.
"""

from __future__ import annotations

from typing import Any


class EngineError(Exception):
    """Base class for all engine failures."""

    code = "E_ENGINE"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        next_steps: list[str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.next_steps = next_steps or []

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "nextSteps": self.next_steps,
        }


class ValidationError(EngineError):
    """Request rejected before any side effect (allowlist, path, risk, payload)."""

    code = "E_VALIDATION"


class ConfigError(ValidationError):
    code = "E_CONFIG"


class ConfirmationError(EngineError):
    """Typed confirmation missing, wrong, or for another action."""

    code = "E_CONFIRMATION"


class ExecutionError(EngineError):
    """External command or filesystem operation failed."""

    code = "E_EXECUTION"


class ExecutionTimeoutError(ExecutionError):
    code = "E_TIMEOUT"

    def __init__(self, message: str, *, stdout: str = "", stderr: str = "", duration_sec: float = 0.0, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.stdout = stdout
        self.stderr = stderr
        self.duration_sec = duration_sec


class ContextResolutionError(EngineError):
    """The invoking user's identity or home directory could not be determined."""

    code = "E_CONTEXT"


class PersistenceError(EngineError):
    """Audit log entry could not be durably written or read."""

    code = "E_PERSISTENCE"


__all__ = [
    "ConfigError",
    "ConfirmationError",
    "ContextResolutionError",
    "EngineError",
    "ExecutionError",
    "ExecutionTimeoutError",
    "PersistenceError",
    "ValidationError",
]
