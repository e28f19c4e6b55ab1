"""Tests for the two-stage typed confirmation state machine."""

from __future__ import annotations

import pytest

from macdiet.confirmation import ConfirmationState, Stage, begin, cancel, require_ready, start, submit
from macdiet.errors import ConfirmationError

TOKENS = ("cleanup", "run")


def _feed(*inputs: str):
    state = begin(start("homebrew-cache-cleanup", TOKENS))
    for text in inputs:
        state = submit(state, text)
    return state


def test_exact_sequence_reaches_ready():
    assert _feed("cleanup", "run").stage is Stage.READY


def test_surrounding_whitespace_is_ignored():
    assert _feed("  cleanup\n", " run ").stage is Stage.READY


@pytest.mark.parametrize(
    "inputs",
    [
        ("cleanup", "ru"),
        ("run", "cleanup"),
        ("cleanu", "run"),
        ("CLEANUP", "RUN"),
        ("cleanup run",),
        ("run",),
    ],
)
def test_wrong_sequences_never_reach_ready(inputs):
    assert _feed(*inputs).stage is not Stage.READY


def test_wrong_token_keeps_stage_and_records_error():
    state = _feed("cleanup")
    assert state.stage is Stage.AWAITING_STAGE2
    wrong = submit(state, "nope")
    assert wrong.stage is Stage.AWAITING_STAGE2
    assert wrong.error and "`run`" in wrong.error
    assert submit(wrong, "run").stage is Stage.READY


def test_stage1_token_at_stage2_does_not_regress():
    state = _feed("cleanup", "cleanup")
    assert state.stage is Stage.AWAITING_STAGE2


def test_idle_state_accepts_no_tokens():
    state = start("homebrew-cache-cleanup", TOKENS)
    assert submit(state, "cleanup").stage is Stage.IDLE


def test_cancel_is_terminal():
    state = cancel(_feed("cleanup"))
    assert state.stage is Stage.CANCELLED
    assert submit(state, "run").stage is Stage.CANCELLED


def test_ready_is_terminal():
    state = _feed("cleanup", "run")
    assert submit(state, "run").stage is Stage.READY
    assert state.expected_token is None


def test_require_ready_accepts_only_matching_ready_state():
    state = _feed("cleanup", "run")
    require_ready(state, "homebrew-cache-cleanup", TOKENS)

    with pytest.raises(ConfirmationError):
        require_ready(state, "npm-cache-cleanup", ("npm", "run"))
    with pytest.raises(ConfirmationError):
        require_ready(_feed("cleanup"), "homebrew-cache-cleanup", TOKENS)
    with pytest.raises(ConfirmationError):
        require_ready(None, "homebrew-cache-cleanup", TOKENS)


def test_start_requires_two_tokens():
    with pytest.raises(ValueError):
        start("x", ("only",))  # type: ignore[arg-type]


def test_ready_state_cannot_be_constructed_directly():
    with pytest.raises(TypeError):
        ConfirmationState(action_id="a", tokens=("cleanup", "run"), stage=Stage.READY)
    with pytest.raises(ConfirmationError):
        require_ready(ConfirmationState(action_id="a", tokens=("cleanup", "run")), "a", ("cleanup", "run"))
