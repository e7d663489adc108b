"""Utility functions for containerdisks."""

from __future__ import annotations

import os
import random
import string
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

try:
    import bcrypt  # type: ignore
except ImportError as exc:  # pragma: no cover
    raise SystemExit("bcrypt is required but not installed") from exc

from containerdisks.constants import (
    _LOG_VERBOSE,
    BOOL_FALSE,
    BOOL_TRUE,
    TIMESTAMP_TAG_FORMAT,
    TRUTHY,
)
from containerdisks.exceptions import PipelineError


def log(level: str, message: str) -> None:
    """Lightweight structured logging compatible with existing colour expectation."""
    if level == "DEBUG" and not _LOG_VERBOSE:
        return
    colours = {
        "INFO": "\033[0;34m",
        "WARN": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "SUCCESS": "\033[0;32m",
        "DEBUG": "\033[0;90m",
    }
    colour = colours.get(level, "")
    reset = "\033[0m" if colour else ""
    print(f"{colour}[{level}]{reset} {message}", flush=True)


class ArtifactLogger:
    """``log`` bound to one artifact so concurrent worker output stays attributable."""

    def __init__(self, key: str) -> None:
        self.key = key

    def _emit(self, level: str, message: str) -> None:
        log(level, f"[{self.key}] {message}")

    def debug(self, message: str) -> None:
        self._emit("DEBUG", message)

    def info(self, message: str) -> None:
        self._emit("INFO", message)

    def warn(self, message: str) -> None:
        self._emit("WARN", message)

    def error(self, message: str) -> None:
        self._emit("ERROR", message)

    def success(self, message: str) -> None:
        self._emit("SUCCESS", message)


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.environ.get(name, default)


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.lower() in TRUTHY


def parse_int_env(name: str, default: str, min_val: int = 1, max_val: Optional[int] = None) -> int:
    raw = get_env(name, default)
    assert raw is not None
    try:
        value = int(raw)
    except ValueError:
        raise PipelineError(f"{name} must be an integer (got '{raw}')")
    if value < min_val:
        raise PipelineError(f"{name} must be >= {min_val} (got {value})")
    if max_val is not None and value > max_val:
        raise PipelineError(f"{name} must be <= {max_val} (got {value})")
    return value


def parse_bool(raw: str) -> bool:
    """Parse a boolean the way Go's strconv.ParseBool does; raise ValueError otherwise."""
    if raw in BOOL_TRUE:
        return True
    if raw in BOOL_FALSE:
        return False
    raise ValueError(f"invalid boolean '{raw}'")


def ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def random_suffix(length: int = 5) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choice(alphabet) for _ in range(length))


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """Compact UTC timestamp used for audit-trail tags."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime(TIMESTAMP_TAG_FORMAT)


def hash_password(password: str) -> str:
    """Generate a bcrypt hash for cloud-init and ignition user definitions."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def run(cmd: List[str], check: bool = True, **kwargs) -> subprocess.CompletedProcess:
    """Run command with logging."""
    log("DEBUG", f"Running: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, text=True, **kwargs)
    return result
