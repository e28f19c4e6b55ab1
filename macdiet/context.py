"""Execution context resolution (plain vs. elevated invocation).

When the engine runs under ``sudo``, user-scoped work must still target the
invoking user's home directory and identity. Resolution happens once per
session and is a pure function of the environment, effective ids and
account-database lookups, so it can be exercised without real elevation.
"""

from __future__ import annotations

import dataclasses
import os
import pwd
from pathlib import Path
from typing import Any, Callable, Mapping

from .errors import ContextResolutionError


@dataclasses.dataclass(frozen=True, slots=True)
class PasswdEntry:
    name: str
    uid: int
    gid: int
    home: str


PasswdByUid = Callable[[int], "PasswdEntry | None"]
PasswdByName = Callable[[str], "PasswdEntry | None"]


def _from_pwd(entry: Any) -> PasswdEntry:
    return PasswdEntry(name=entry.pw_name, uid=entry.pw_uid, gid=entry.pw_gid, home=entry.pw_dir)


def system_passwd_by_uid(uid: int) -> PasswdEntry | None:
    try:
        return _from_pwd(pwd.getpwuid(uid))
    except KeyError:
        return None


def system_passwd_by_name(name: str) -> PasswdEntry | None:
    try:
        return _from_pwd(pwd.getpwnam(name))
    except KeyError:
        return None


@dataclasses.dataclass(frozen=True, slots=True)
class ExecutionContext:
    home_dir: Path
    user_name: str
    uid: int
    gid: int
    elevated: bool

    def run_as(self) -> tuple[int, int] | None:
        """Identity to drop to for user-scoped commands, or None to inherit."""
        if self.elevated and self.uid != 0:
            return self.uid, self.gid
        return None

    def subprocess_env(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        env["HOME"] = str(self.home_dir)
        if self.user_name:
            env["USER"] = self.user_name
            env["LOGNAME"] = self.user_name
        if self.elevated:
            for key in ("SUDO_UID", "SUDO_GID", "SUDO_USER", "SUDO_COMMAND"):
                env.pop(key, None)
        return env

    def summary(self) -> dict[str, Any]:
        return {
            "home_dir": str(self.home_dir),
            "user": self.user_name,
            "uid": self.uid,
            "gid": self.gid,
            "elevated": self.elevated,
        }


def _parse_id(value: str, name: str) -> int:
    try:
        parsed = int(value.strip())
    except ValueError:
        raise ContextResolutionError(
            f"{name} is not a numeric id: {value!r}",
            details={"variable": name, "value": value},
        ) from None
    if parsed < 0:
        raise ContextResolutionError(f"{name} must not be negative", details={"variable": name, "value": value})
    return parsed


def _resolve_elevated(env: Mapping[str, str], by_uid: PasswdByUid, by_name: PasswdByName) -> ExecutionContext:
    sudo_uid = env.get("SUDO_UID", "").strip()
    sudo_user = env.get("SUDO_USER", "").strip()

    if sudo_uid:
        uid = _parse_id(sudo_uid, "SUDO_UID")
        entry = by_uid(uid)
        if entry is None:
            raise ContextResolutionError(
                f"No account found for SUDO_UID={uid}",
                details={"uid": uid},
                next_steps=["Run without sudo, or check the account database"],
            )
    else:
        entry = by_name(sudo_user)
        if entry is None:
            raise ContextResolutionError(
                f"No account found for SUDO_USER={sudo_user!r}",
                details={"user": sudo_user},
                next_steps=["Run without sudo, or check the account database"],
            )
        uid = entry.uid

    sudo_gid = env.get("SUDO_GID", "").strip()
    gid = _parse_id(sudo_gid, "SUDO_GID") if sudo_gid else entry.gid

    if not entry.home or not entry.home.strip():
        raise ContextResolutionError(
            f"Account {entry.name!r} has no home directory",
            details={"uid": uid},
        )

    return ExecutionContext(
        home_dir=Path(entry.home),
        user_name=sudo_user or entry.name,
        uid=uid,
        gid=gid,
        elevated=True,
    )


def resolve_execution_context(
    env: Mapping[str, str] | None = None,
    euid: int | None = None,
    egid: int | None = None,
    passwd_by_uid: PasswdByUid = system_passwd_by_uid,
    passwd_by_name: PasswdByName = system_passwd_by_name,
) -> ExecutionContext:
    """Determine whose home and identity user-scoped actions operate on.

    Elevated means effective uid 0 with sudo markers present. In that case the
    invoking user is required; there is no fallback to root's own identity.
    """
    env = os.environ if env is None else env
    euid = os.geteuid() if euid is None else euid
    egid = os.getegid() if egid is None else egid

    if euid == 0 and (env.get("SUDO_UID", "").strip() or env.get("SUDO_USER", "").strip()):
        return _resolve_elevated(env, passwd_by_uid, passwd_by_name)

    entry = passwd_by_uid(euid)
    home = env.get("HOME", "").strip() or (entry.home if entry else "")
    if not home:
        raise ContextResolutionError(
            "Cannot determine home directory: HOME is unset and no account entry exists",
            details={"uid": euid},
            next_steps=["Set HOME to your home directory"],
        )
    user = env.get("USER", "").strip() or env.get("LOGNAME", "").strip() or (entry.name if entry else "")
    return ExecutionContext(
        home_dir=Path(home),
        user_name=user,
        uid=euid,
        gid=entry.gid if entry else egid,
        elevated=False,
    )


__all__ = [
    "ExecutionContext",
    "PasswdEntry",
    "resolve_execution_context",
    "system_passwd_by_name",
    "system_passwd_by_uid",
]
