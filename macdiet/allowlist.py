"""Risk & allowlist model.

The allowlist is the closed set of external commands the engine may ever
spawn. Each entry is keyed by an exact command signature (action id, command,
arguments) and carries its risk tier, the ordered pair of typed confirmation
tokens, an outcome evaluator and an optional repair-suggestion rule.

TRASH_MOVE targets are governed by a separate closed list of base
directories under the user's home.
"""

from __future__ import annotations

import dataclasses
import enum
import os
from pathlib import Path
from typing import Callable, Sequence

from .context import ExecutionContext
from .errors import ValidationError
from .models import Action, ActionKind, CommandOutput, ExecutionStatus, Outcome, RiskLevel

TRASH_CONFIRM_TOKENS = ("yes", "trash")
CELLAR_BASES = ("/opt/homebrew/Cellar", "/usr/local/Cellar")


class CommandKind(str, enum.Enum):
    SIMCTL_DELETE_UNAVAILABLE = "simctl-delete-unavailable"
    DOCKER_BUILDER_PRUNE = "docker-builder-prune"
    DOCKER_SYSTEM_PRUNE = "docker-system-prune"
    DOCKER_SYSTEM_DF = "docker-system-df"
    BREW_CLEANUP = "brew-cleanup"
    NPM_CACHE_CLEAN = "npm-cache-clean"
    YARN_CACHE_CLEAN = "yarn-cache-clean"
    PNPM_STORE_PRUNE = "pnpm-store-prune"
    CELLAR_CHMOD = "cellar-chmod"
    CELLAR_CHOWN = "cellar-chown"


@dataclasses.dataclass(frozen=True, slots=True)
class CommandSignature:
    action_id: str
    cmd: str
    args: tuple[str, ...]

    @classmethod
    def of(cls, action: Action) -> "CommandSignature":
        return cls(action_id=action.id, cmd=action.cmd, args=tuple(action.args))


Evaluator = Callable[[CommandOutput], Outcome]
RepairRule = Callable[[Action, CommandOutput, ExecutionContext], "list[Action]"]


@dataclasses.dataclass(frozen=True, slots=True)
class AllowlistEntry:
    action_id: str
    command_kind: CommandKind
    risk_level: RiskLevel
    cmd: str
    args_match: Callable[[tuple[str, ...]], bool]
    confirm_tokens: tuple[str, str]
    evaluator: Evaluator
    user_scoped: bool = True
    repair: RepairRule | None = None

    def matches(self, signature: CommandSignature) -> bool:
        return (
            signature.action_id == self.action_id
            and signature.cmd == self.cmd
            and self.args_match(signature.args)
        )


# ---------------------------- Argument Matchers ----------------------------- #


def exact_args(*expected: str) -> Callable[[tuple[str, ...]], bool]:
    def match(args: tuple[str, ...]) -> bool:
        return tuple(args) == expected

    return match


def is_safe_posix_owner(owner: str) -> bool:
    if not owner or owner.startswith("-") or ":" in owner:
        return False
    return all(c.isascii() and (c.isalnum() or c in "_-.") for c in owner)


def is_cellar_path(path: str) -> bool:
    if ".." in Path(path).parts:
        return False
    norm = os.path.normpath(path)
    return any(norm.startswith(base + os.sep) for base in CELLAR_BASES)


def _chmod_args(args: tuple[str, ...]) -> bool:
    return len(args) >= 3 and args[0] == "-R" and args[1] == "u+rwX" and all(is_cellar_path(p) for p in args[2:])


def _chown_args(args: tuple[str, ...]) -> bool:
    return (
        len(args) >= 3
        and args[0] == "-R"
        and is_safe_posix_owner(args[1])
        and all(is_cellar_path(p) for p in args[2:])
    )


# ------------------------------- Evaluators --------------------------------- #


def _generic_failure(output: CommandOutput) -> Outcome:
    return Outcome(ExecutionStatus.FAILED, f"Command failed (exit_code={output.exit_code})")


def evaluate_default(output: CommandOutput) -> Outcome:
    if output.exit_code == 0:
        return Outcome(ExecutionStatus.OK, "Completed")
    return _generic_failure(output)


def evaluate_docker(output: CommandOutput) -> Outcome:
    if output.exit_code == 0:
        return Outcome(ExecutionStatus.OK, "Completed")
    if "Cannot connect to the Docker daemon" in output.stderr or "Is the docker daemon running" in output.stderr:
        return Outcome(
            ExecutionStatus.FAILED,
            "Cannot connect to the Docker daemon. Start Docker Desktop, check that `docker system df` works, then retry.",
        )
    if "permission denied" in output.stderr.lower():
        return Outcome(
            ExecutionStatus.FAILED,
            "Docker failed with a permission error. Check Docker Desktop settings and socket/group permissions, then retry.",
        )
    return _generic_failure(output)


def brew_output_has_hard_error(output: CommandOutput) -> bool:
    for text in (output.stdout, output.stderr):
        if "Error:" in text:
            return True
        if any(line.lstrip().startswith("fatal:") for line in text.splitlines()):
            return True
    return False


def brew_output_has_warning(output: CommandOutput) -> bool:
    for text in (output.stdout, output.stderr):
        if any(line.lstrip().startswith("Warning:") for line in text.splitlines()):
            return True
    return False


def brew_first_error_line(output: CommandOutput) -> str | None:
    for text in (output.stderr, output.stdout):
        for line in text.splitlines():
            stripped = line.strip()
            if stripped.startswith("Error:"):
                return stripped
    return None


def brew_permission_fix_paths(output: CommandOutput) -> list[str]:
    """Paths listed under Homebrew's ``Fix your permissions on:`` block."""
    paths: list[str] = []
    in_section = False
    for line in output.stderr.splitlines():
        if not in_section:
            if "Fix your permissions on:" in line:
                in_section = True
            continue
        stripped = line.strip()
        if not stripped:
            break
        if line.startswith((" ", "\t")) or stripped.startswith("/"):
            paths.append(stripped)
        else:
            break
    return paths


def evaluate_brew_cleanup(output: CommandOutput) -> Outcome:
    if output.exit_code == 0:
        return Outcome(ExecutionStatus.OK, "Completed")

    # brew cleanup exits 1 when it only printed warnings
    if output.exit_code == 1 and brew_output_has_warning(output) and not brew_output_has_hard_error(output):
        return Outcome(
            ExecutionStatus.OK_WITH_WARNINGS,
            "`brew cleanup` exited 1 with warnings only. Review the Warning lines in the captured output.",
        )

    if "Running Homebrew as root is extremely dangerous" in output.stderr:
        return Outcome(
            ExecutionStatus.FAILED,
            "`brew cleanup` refuses to run as root. Run the engine without sudo and retry.",
        )

    msg = f"`brew cleanup` failed (exit_code={output.exit_code})"
    if "Fix your permissions on:" in output.stderr or "Permission denied" in output.stderr:
        msg += " (possible permission issue)"
    error_line = brew_first_error_line(output)
    if error_line:
        msg += f": {error_line}"
    paths = brew_permission_fix_paths(output)
    if paths:
        msg += f" Paths to fix: {', '.join(paths)}"
    msg += " Hint: run `brew doctor` and follow its ownership/permission instructions."
    return Outcome(ExecutionStatus.FAILED, msg)


def _permission_evaluator(tool: str, hint: str) -> Evaluator:
    def evaluate(output: CommandOutput) -> Outcome:
        if output.exit_code == 0:
            return Outcome(ExecutionStatus.OK, "Completed")
        if "Operation not permitted" in output.stderr or "Permission denied" in output.stderr:
            return Outcome(ExecutionStatus.FAILED, f"`{tool}` failed. {hint}")
        return _generic_failure(output)

    return evaluate


evaluate_chmod = _permission_evaluator(
    "chmod",
    "The target may be owned by root. Raise the maximum risk to R3 and try the ownership repair (chown), "
    "or start the engine with sudo.",
)
evaluate_chown = _permission_evaluator(
    "chown",
    "This usually needs sudo, which the engine never adds by itself. Start the engine with sudo and retry.",
)


# --------------------------- Repair Suggestions ----------------------------- #


def preferred_owner(context: ExecutionContext) -> str | None:
    candidates = [context.user_name, context.home_dir.name]
    root_fallback = None
    for owner in candidates:
        owner = (owner or "").strip()
        if not is_safe_posix_owner(owner):
            continue
        if owner == "root":
            root_fallback = owner
            continue
        return owner
    return root_fallback


def suggest_brew_permission_repairs(action: Action, output: CommandOutput, context: ExecutionContext) -> list[Action]:
    if output.exit_code == 0:
        return []
    paths = brew_permission_fix_paths(output)
    if not paths or not all(is_cellar_path(p) for p in paths):
        return []

    out = [
        Action(
            id="homebrew-cellar-permissions-chmod",
            title="Repair Homebrew Cellar permissions (`chmod -R u+rwX`) (R2)",
            kind=ActionKind.RUN_CMD,
            risk_level=RiskLevel.R2,
            related_findings=action.related_findings,
            cmd="chmod",
            args=("-R", "u+rwX", *paths),
            notes=(
                "Makes the listed Cellar paths writable so Homebrew can remove old kegs.",
                "If the owner is root this alone will not help and sudo may be required.",
                "Next: run `brew cleanup` again.",
            ),
        )
    ]

    ownership_issue = "Permission denied @ apply2files" in output.stderr or "Operation not permitted" in output.stderr
    owner = preferred_owner(context) if ownership_issue else None
    if owner:
        out.append(
            Action(
                id="homebrew-cellar-permissions-chown",
                title=f"Repair Homebrew Cellar ownership (`sudo chown -R {owner}`) (R3)",
                kind=ActionKind.RUN_CMD,
                risk_level=RiskLevel.R3,
                related_findings=action.related_findings,
                cmd="chown",
                args=("-R", owner, *paths),
                notes=(
                    "Restores ownership when paths ended up owned by root.",
                    "R3: the engine never adds sudo; start it with sudo explicitly to run this.",
                    "Next: run `brew cleanup` again.",
                ),
            )
        )
    return out


# -------------------------------- Registry ---------------------------------- #


ALLOWLIST: tuple[AllowlistEntry, ...] = (
    AllowlistEntry(
        "coresimulator-simctl-delete-unavailable",
        CommandKind.SIMCTL_DELETE_UNAVAILABLE,
        RiskLevel.R2,
        "xcrun",
        exact_args("simctl", "delete", "unavailable"),
        ("unavailable", "run"),
        evaluate_default,
    ),
    AllowlistEntry(
        "docker-builder-prune",
        CommandKind.DOCKER_BUILDER_PRUNE,
        RiskLevel.R2,
        "docker",
        exact_args("builder", "prune"),
        ("builder-prune", "run"),
        evaluate_docker,
    ),
    AllowlistEntry(
        "docker-system-prune",
        CommandKind.DOCKER_SYSTEM_PRUNE,
        RiskLevel.R2,
        "docker",
        exact_args("system", "prune"),
        ("system-prune", "run"),
        evaluate_docker,
    ),
    AllowlistEntry(
        "docker-storage-df",
        CommandKind.DOCKER_SYSTEM_DF,
        RiskLevel.R2,
        "docker",
        exact_args("system", "df"),
        ("df", "run"),
        evaluate_docker,
    ),
    AllowlistEntry(
        "homebrew-cache-cleanup",
        CommandKind.BREW_CLEANUP,
        RiskLevel.R1,
        "brew",
        exact_args("cleanup"),
        ("cleanup", "run"),
        evaluate_brew_cleanup,
        repair=suggest_brew_permission_repairs,
    ),
    AllowlistEntry(
        "npm-cache-cleanup",
        CommandKind.NPM_CACHE_CLEAN,
        RiskLevel.R1,
        "npm",
        exact_args("cache", "clean", "--force"),
        ("npm", "run"),
        evaluate_default,
    ),
    AllowlistEntry(
        "yarn-cache-cleanup",
        CommandKind.YARN_CACHE_CLEAN,
        RiskLevel.R1,
        "yarn",
        exact_args("cache", "clean"),
        ("yarn", "run"),
        evaluate_default,
    ),
    AllowlistEntry(
        "pnpm-store-prune",
        CommandKind.PNPM_STORE_PRUNE,
        RiskLevel.R1,
        "pnpm",
        exact_args("store", "prune"),
        ("pnpm", "run"),
        evaluate_default,
    ),
    AllowlistEntry(
        "homebrew-cellar-permissions-chmod",
        CommandKind.CELLAR_CHMOD,
        RiskLevel.R2,
        "chmod",
        _chmod_args,
        ("chmod", "run"),
        evaluate_chmod,
        user_scoped=False,
    ),
    AllowlistEntry(
        "homebrew-cellar-permissions-chown",
        CommandKind.CELLAR_CHOWN,
        RiskLevel.R3,
        "chown",
        _chown_args,
        ("chown", "run"),
        evaluate_chown,
        user_scoped=False,
    ),
)


def lookup(signature: CommandSignature) -> AllowlistEntry | None:
    for entry in ALLOWLIST:
        if entry.matches(signature):
            return entry
    return None


def lookup_action(action: Action) -> AllowlistEntry | None:
    """Entry for a RUN_CMD action whose signature and risk tier both match."""
    if action.kind is not ActionKind.RUN_CMD:
        return None
    entry = lookup(CommandSignature.of(action))
    if entry is None or entry.risk_level != action.risk_level:
        return None
    return entry


def classify(entry: AllowlistEntry, output: CommandOutput) -> Outcome:
    return entry.evaluator(output)


def suggest_repairs(
    entry: AllowlistEntry, action: Action, output: CommandOutput, context: ExecutionContext
) -> list[Action]:
    if entry.repair is None:
        return []
    return entry.repair(action, output, context)


def confirmation_tokens(action: Action) -> tuple[str, str]:
    if action.kind is ActionKind.TRASH_MOVE:
        return TRASH_CONFIRM_TOKENS
    if action.kind is ActionKind.SHOW_INSTRUCTIONS:
        raise ValidationError(
            f"SHOW_INSTRUCTIONS action {action.id} is not executable",
            details={"action_id": action.id},
            next_steps=["Follow the instructions manually"],
        )
    entry = lookup_action(action)
    if entry is None:
        raise ValidationError(
            f"RUN_CMD is not in the allowlist (action_id={action.id})",
            details={"action_id": action.id, "cmd": action.cmd, "args": list(action.args)},
        )
    return entry.confirm_tokens


# --------------------------- TRASH_MOVE Targets ----------------------------- #


def allowed_trash_targets(home_dir: Path) -> list[Path]:
    return [
        home_dir / "Library/Developer/Xcode/DerivedData",
        home_dir / "Library/Developer/Shared/Documentation/DocSets",
        home_dir / "Library/Developer/Xcode/iOS Device Logs",
        home_dir / "Library/Caches/Homebrew",
        home_dir / ".cargo/registry",
        home_dir / ".cargo/git",
        home_dir / ".gradle/caches",
        home_dir / ".npm",
        home_dir / "Library/Caches/Yarn",
        home_dir / "Library/pnpm/store",
        home_dir / ".pnpm-store",
    ]


def allowed_trash_target_prefixes(home_dir: Path) -> list[Path]:
    """Bases whose strict descendants are allowed, never the base itself."""
    return [
        home_dir / "Library/Developer/Xcode/Archives",
        home_dir / "Library/Developer/Xcode/iOS DeviceSupport",
        home_dir / "Library/Developer/CoreSimulator/Devices",
    ]


def expand_tilde(path: str, home_dir: Path) -> Path:
    path = path.strip()
    if path == "~":
        return home_dir
    if path.startswith("~/"):
        return home_dir / path[2:]
    return Path(path)


def _is_within(path: Path, base: Path) -> bool:
    try:
        path.relative_to(base)
        return True
    except ValueError:
        return False


def validate_trash_target(path: str, home_dir: Path) -> Path:
    """Return the expanded target or raise ValidationError.

    Comparison is component-wise: ``Archives`` does not admit ``ArchivesOld``.
    """
    expanded = expand_tilde(path, home_dir)
    if not expanded.is_absolute():
        raise ValidationError(f"Path must be absolute or start with ~/: {path}", details={"path": path})
    if expanded == Path("/"):
        raise ValidationError(f"Refusing to operate on the root path: {path}", details={"path": path})
    if ".." in expanded.parts:
        raise ValidationError(f"Path must not contain '..': {path}", details={"path": path})
    if not _is_within(expanded, home_dir):
        raise ValidationError(f"Path must be under the home directory: {path}", details={"path": path})

    if expanded not in allowed_trash_targets(home_dir):
        if not any(
            _is_within(expanded, base) and expanded != base for base in allowed_trash_target_prefixes(home_dir)
        ):
            raise ValidationError(
                f"Path is not in the TRASH_MOVE allowlist: {path}",
                details={"path": path},
                next_steps=["Only known developer caches under your home can be moved to the Trash"],
            )

    real_parent = Path(os.path.realpath(expanded.parent))
    real_home = Path(os.path.realpath(home_dir))
    if not _is_within(real_parent, real_home):
        raise ValidationError(
            f"Path resolves outside the home directory through a symlink: {path}",
            details={"path": path, "resolved_parent": str(real_parent)},
        )
    return expanded


def validate_trash_paths(paths: Sequence[str], home_dir: Path) -> list[Path]:
    return [validate_trash_target(p, home_dir) for p in paths]


__all__ = [
    "ALLOWLIST",
    "AllowlistEntry",
    "CommandKind",
    "CommandSignature",
    "TRASH_CONFIRM_TOKENS",
    "allowed_trash_target_prefixes",
    "allowed_trash_targets",
    "brew_permission_fix_paths",
    "classify",
    "confirmation_tokens",
    "is_safe_posix_owner",
    "lookup",
    "lookup_action",
    "suggest_repairs",
    "validate_trash_paths",
    "validate_trash_target",
]
