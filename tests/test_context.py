"""Tests for execution-context resolution under plain and elevated invocation."""

from __future__ import annotations

from pathlib import Path

import pytest

from macdiet.context import PasswdEntry, resolve_execution_context
from macdiet.errors import ContextResolutionError

ROOT = PasswdEntry(name="root", uid=0, gid=0, home="/var/root")
ALICE = PasswdEntry(name="alice", uid=501, gid=20, home="/Users/alice")
ACCOUNTS = {0: ROOT, 501: ALICE}


def by_uid(uid):
    return ACCOUNTS.get(uid)


def by_name(name):
    return next((e for e in ACCOUNTS.values() if e.name == name), None)


def resolve(env, euid):
    return resolve_execution_context(env=env, euid=euid, egid=0, passwd_by_uid=by_uid, passwd_by_name=by_name)


def test_plain_invocation_uses_home_env():
    ctx = resolve({"HOME": "/Users/alice", "USER": "alice"}, euid=501)
    assert ctx.home_dir == Path("/Users/alice")
    assert ctx.user_name == "alice"
    assert not ctx.elevated
    assert ctx.run_as() is None


def test_elevated_invocation_targets_invoking_user():
    """Under sudo, HOME may point at root's home; the invoking user's wins."""
    env = {"HOME": "/var/root", "USER": "root", "SUDO_UID": "501", "SUDO_GID": "20", "SUDO_USER": "alice"}
    ctx = resolve(env, euid=0)
    assert ctx.elevated
    assert ctx.home_dir == Path("/Users/alice")
    assert ctx.run_as() == (501, 20)

    sub_env = ctx.subprocess_env(env)
    assert sub_env["HOME"] == "/Users/alice"
    assert sub_env["USER"] == "alice"
    assert sub_env["LOGNAME"] == "alice"
    assert "SUDO_UID" not in sub_env


def test_elevated_with_only_sudo_user_resolves_by_name():
    ctx = resolve({"HOME": "/var/root", "SUDO_USER": "alice"}, euid=0)
    assert ctx.home_dir == Path("/Users/alice")
    assert (ctx.uid, ctx.gid) == (501, 20)


def test_sudo_gid_defaults_to_account_gid():
    ctx = resolve({"SUDO_UID": "501"}, euid=0)
    assert ctx.gid == 20


@pytest.mark.parametrize(
    "env",
    [
        {"SUDO_UID": "abc"},
        {"SUDO_UID": "777"},
        {"SUDO_USER": "mallory"},
        {"SUDO_UID": "501", "SUDO_GID": "-1"},
    ],
)
def test_unresolvable_elevation_markers_fail(env):
    """Never fall back to root's identity when the invoking user is unknown."""
    with pytest.raises(ContextResolutionError):
        resolve({"HOME": "/var/root", **env}, euid=0)


def test_sudo_markers_without_root_are_ignored():
    ctx = resolve({"HOME": "/Users/alice", "SUDO_UID": "0"}, euid=501)
    assert not ctx.elevated
    assert ctx.home_dir == Path("/Users/alice")


def test_missing_home_falls_back_to_account_database():
    ctx = resolve({}, euid=501)
    assert ctx.home_dir == Path("/Users/alice")
    assert ctx.user_name == "alice"


def test_missing_home_and_account_fails():
    with pytest.raises(ContextResolutionError):
        resolve({}, euid=4242)
