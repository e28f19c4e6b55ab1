"""Engine configuration: defaults, optional JSON file, environment overrides.

Precedence is defaults < config file < environment < explicit CLI flags.
The config file lives at ``~/.config/macdiet/config.json`` unless
``MACDIET_CONFIG`` points elsewhere. Example::

    {
      "fix": {"default_risk_max": "R2"},
      "engine": {"command_timeout_sec": 60, "dry_run": false}
    }
"""

from __future__ import annotations

import dataclasses
import os
from pathlib import Path
from typing import Any, Mapping

from .errors import ConfigError, ValidationError
from .models import RiskLevel, parse_risk_level
from .utils import APP_NAME, read_json

DEFAULT_COMMAND_TIMEOUT_SEC = 30.0
DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024


@dataclasses.dataclass(slots=True)
class EngineConfig:
    fix_default_risk_max: RiskLevel = RiskLevel.R1
    command_timeout_sec: float = DEFAULT_COMMAND_TIMEOUT_SEC
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    dry_run: bool = False
    # None means "derive from the execution context's home directory".
    log_dir: Path | None = None
    trash_dir: Path | None = None
    app_log_file: Path | None = None
    config_path: str | None = None

    def audit_dir_for(self, home_dir: Path) -> Path:
        return self.log_dir if self.log_dir is not None else default_log_dir(home_dir)

    def trash_dir_for(self, home_dir: Path) -> Path:
        return self.trash_dir if self.trash_dir is not None else home_dir / ".Trash"

    def app_log_for(self, home_dir: Path) -> Path:
        if self.app_log_file is not None:
            return self.app_log_file
        return home_dir / ".local" / "share" / APP_NAME / "engine.log"

    def to_dict(self) -> dict[str, Any]:
        return {
            "fix_default_risk_max": str(self.fix_default_risk_max),
            "command_timeout_sec": self.command_timeout_sec,
            "max_output_bytes": self.max_output_bytes,
            "dry_run": self.dry_run,
            "log_dir": str(self.log_dir) if self.log_dir else None,
            "trash_dir": str(self.trash_dir) if self.trash_dir else None,
            "app_log_file": str(self.app_log_file) if self.app_log_file else None,
            "config_path": self.config_path,
        }


def default_config_path(home_dir: Path) -> Path:
    return home_dir / ".config" / APP_NAME / "config.json"


def default_log_dir(home_dir: Path) -> Path:
    return home_dir / ".config" / APP_NAME / "logs"


def parse_bool(value: str, name: str) -> bool:
    text = value.strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(
        f"Invalid boolean for {name}: {value!r}",
        details={"name": name, "value": value},
        next_steps=["Use one of true, false, 1, 0, yes, no, on, off"],
    )


def _positive_float(value: Any, name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid number for {name}: {value!r}", details={"name": name}) from None
    if number <= 0:
        raise ConfigError(f"{name} must be positive", details={"name": name, "value": value})
    return number


def _risk(value: Any, name: str) -> RiskLevel:
    try:
        return parse_risk_level(str(value))
    except ValidationError as exc:
        raise ConfigError(f"Invalid risk level for {name}: {value!r}", details={"name": name}) from exc


def apply_file_config(cfg: EngineConfig, raw: Mapping[str, Any]) -> None:
    fix = raw.get("fix") or {}
    engine = raw.get("engine") or {}
    if not isinstance(fix, dict) or not isinstance(engine, dict):
        raise ConfigError("Config sections 'fix' and 'engine' must be objects")

    if "default_risk_max" in fix:
        cfg.fix_default_risk_max = _risk(fix["default_risk_max"], "fix.default_risk_max")
    if "command_timeout_sec" in engine:
        cfg.command_timeout_sec = _positive_float(engine["command_timeout_sec"], "engine.command_timeout_sec")
    if "max_output_bytes" in engine:
        cfg.max_output_bytes = int(_positive_float(engine["max_output_bytes"], "engine.max_output_bytes"))
    if "dry_run" in engine:
        if not isinstance(engine["dry_run"], bool):
            raise ConfigError("engine.dry_run must be a boolean")
        cfg.dry_run = engine["dry_run"]
    if engine.get("log_dir"):
        cfg.log_dir = Path(str(engine["log_dir"])).expanduser()
    if engine.get("trash_dir"):
        cfg.trash_dir = Path(str(engine["trash_dir"])).expanduser()
    if engine.get("app_log_file"):
        cfg.app_log_file = Path(str(engine["app_log_file"])).expanduser()


def apply_env_overrides(cfg: EngineConfig, env: Mapping[str, str]) -> None:
    if "MACDIET_FIX_DEFAULT_RISK_MAX" in env:
        cfg.fix_default_risk_max = _risk(env["MACDIET_FIX_DEFAULT_RISK_MAX"], "MACDIET_FIX_DEFAULT_RISK_MAX")
    if "MACDIET_COMMAND_TIMEOUT_SEC" in env:
        cfg.command_timeout_sec = _positive_float(env["MACDIET_COMMAND_TIMEOUT_SEC"], "MACDIET_COMMAND_TIMEOUT_SEC")
    if "MACDIET_DRY_RUN" in env:
        cfg.dry_run = parse_bool(env["MACDIET_DRY_RUN"], "MACDIET_DRY_RUN")
    if env.get("MACDIET_LOG_DIR"):
        cfg.log_dir = Path(env["MACDIET_LOG_DIR"]).expanduser()
    if env.get("MACDIET_TRASH_DIR"):
        cfg.trash_dir = Path(env["MACDIET_TRASH_DIR"]).expanduser()
    if env.get("MACDIET_APP_LOG"):
        cfg.app_log_file = Path(env["MACDIET_APP_LOG"]).expanduser()


def load_config(
    home_dir: Path,
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> EngineConfig:
    env = os.environ if env is None else env
    cfg = EngineConfig()

    explicit = config_path or env.get("MACDIET_CONFIG")
    path = Path(explicit).expanduser() if explicit else default_config_path(home_dir)
    if path.exists():
        try:
            raw = read_json(path)
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Cannot read config file {path}: {exc}", details={"path": str(path)}) from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {path} must hold a JSON object", details={"path": str(path)})
        apply_file_config(cfg, raw)
        cfg.config_path = str(path)
    elif explicit:
        raise ConfigError(f"Config file not found: {path}", details={"path": str(path)})

    apply_env_overrides(cfg, env)
    return cfg


__all__ = [
    "DEFAULT_COMMAND_TIMEOUT_SEC",
    "DEFAULT_MAX_OUTPUT_BYTES",
    "EngineConfig",
    "apply_env_overrides",
    "default_config_path",
    "default_log_dir",
    "load_config",
    "parse_bool",
]
