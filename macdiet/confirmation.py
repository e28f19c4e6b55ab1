"""Two-stage typed confirmation protocol.

A pure state machine: every transition returns a new ConfirmationState and
nothing here performs I/O. READY is reachable only by typing the action's
first token and then its second token, exactly, in that order. A wrong
token keeps the current stage and records an error so the operator can
retry. CANCELLED and READY are terminal.
"""

from __future__ import annotations

import dataclasses
import enum

from .errors import ConfirmationError


class Stage(str, enum.Enum):
    IDLE = "IDLE"
    AWAITING_STAGE1 = "AWAITING_STAGE1"
    AWAITING_STAGE2 = "AWAITING_STAGE2"
    READY = "READY"
    CANCELLED = "CANCELLED"


@dataclasses.dataclass(frozen=True, slots=True)
class ConfirmationState:
    action_id: str
    tokens: tuple[str, str]
    error: str | None = None
    # Not a constructor argument: stages change only through the transitions below.
    stage: Stage = dataclasses.field(default=Stage.IDLE, init=False)

    @property
    def expected_token(self) -> str | None:
        if self.stage is Stage.AWAITING_STAGE1:
            return self.tokens[0]
        if self.stage is Stage.AWAITING_STAGE2:
            return self.tokens[1]
        return None

    @property
    def is_ready(self) -> bool:
        return self.stage is Stage.READY

    def prompt(self) -> str:
        expected = self.expected_token
        if expected is None:
            return ""
        step = 1 if self.stage is Stage.AWAITING_STAGE1 else 2
        return f"Type `{expected}` to confirm step {step} of 2 for {self.action_id}"

    def to_dict(self) -> dict:
        return {
            "action_id": self.action_id,
            "stage": self.stage.value,
            "expected_token": self.expected_token,
            "prompt": self.prompt(),
            "error": self.error,
        }


def _moved(state: ConfirmationState, stage: Stage, error: str | None = None) -> ConfirmationState:
    new = ConfirmationState(action_id=state.action_id, tokens=state.tokens, error=error)
    object.__setattr__(new, "stage", stage)
    return new


def start(action_id: str, tokens: tuple[str, str]) -> ConfirmationState:
    if len(tokens) != 2 or not all(tokens):
        raise ValueError("confirmation needs exactly two non-empty tokens")
    return ConfirmationState(action_id=action_id, tokens=(tokens[0], tokens[1]))


def begin(state: ConfirmationState) -> ConfirmationState:
    if state.stage is not Stage.IDLE:
        return state
    return _moved(state, Stage.AWAITING_STAGE1)


def submit(state: ConfirmationState, token: str) -> ConfirmationState:
    expected = state.expected_token
    if expected is None:
        return _moved(state, state.stage, f"No confirmation input expected in stage {state.stage.value}")
    if token.strip() != expected:
        return _moved(state, state.stage, f"Input did not match. Type `{expected}` exactly.")
    nxt = Stage.AWAITING_STAGE2 if state.stage is Stage.AWAITING_STAGE1 else Stage.READY
    return _moved(state, nxt)


def cancel(state: ConfirmationState) -> ConfirmationState:
    return _moved(state, Stage.CANCELLED)


def require_ready(state: ConfirmationState | None, action_id: str, tokens: tuple[str, str]) -> None:
    """Raise ConfirmationError unless ``state`` authorizes this exact action."""
    if state is None:
        raise ConfirmationError(
            f"Action {action_id} has not been confirmed",
            details={"action_id": action_id},
            next_steps=[f"Type `{tokens[0]}` then `{tokens[1]}` to confirm"],
        )
    if state.action_id != action_id or state.tokens != tuple(tokens):
        raise ConfirmationError(
            f"Confirmation belongs to {state.action_id}, not {action_id}",
            details={"action_id": action_id, "confirmed_action_id": state.action_id},
        )
    if not state.is_ready:
        raise ConfirmationError(
            f"Action {action_id} is not confirmed (stage={state.stage.value})",
            details={"action_id": action_id, "stage": state.stage.value},
            next_steps=[state.prompt()] if state.prompt() else [],
        )


__all__ = ["ConfirmationState", "Stage", "begin", "cancel", "require_ready", "start", "submit"]
