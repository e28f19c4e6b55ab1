"""Small shared helpers: timestamps, JSON reading, byte formatting, logging."""

from __future__ import annotations

import datetime as dt
import json
import logging
import tempfile
from pathlib import Path
from typing import Any

APP_NAME = "macdiet"


def now_utc_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).replace(microsecond=0).isoformat()


def utc_stamp() -> str:
    """Compact UTC timestamp usable in file and directory names."""
    return dt.datetime.now(dt.timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def human_bytes(size: int) -> str:
    val = float(max(size, 0))
    for unit in ["B", "KB", "MB", "GB", "TB", "PB"]:
        if val < 1024.0 or unit == "PB":
            if unit == "B":
                return f"{int(val)} {unit}"
            return f"{val:.2f} {unit}"
        val /= 1024.0
    return f"{size} B"


def read_json(path: str | Path) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def truncate_text(text: str, max_bytes: int) -> str:
    raw = text.encode("utf-8", errors="replace")
    if len(raw) <= max_bytes:
        return text
    head = raw[:max_bytes].decode("utf-8", errors="ignore")
    return f"{head}\n...(truncated, total={len(raw)} bytes)"


def setup_logger(log_file: Path) -> logging.Logger:
    logger = logging.getLogger(APP_NAME)
    if logger.handlers:
        return logger

    chosen = log_file
    try:
        ensure_parent(log_file)
    except OSError:
        chosen = Path(tempfile.gettempdir()) / APP_NAME / "engine.log"
        ensure_parent(chosen)

    logger.setLevel(logging.INFO)
    fh = logging.FileHandler(chosen, encoding="utf-8")
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    fh.setFormatter(fmt)
    logger.addHandler(fh)
    return logger


def get_logger() -> logging.Logger:
    return logging.getLogger(APP_NAME)
