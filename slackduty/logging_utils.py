# slackduty/logging_utils.py
"""
Structured JSONL activity/error logs.

Every sync stage and job run emits one small JSON record. Files roll daily by
name (``activity-YYYY-MM-DD.jsonl``) and optionally by size. Records are
redacted before they hit disk, so API keys passed around in settings never
leak into logs.
"""

from __future__ import annotations

import contextlib
import datetime as _dt
import json
import logging
import os
import socket
from collections.abc import Iterable
from typing import Any

LOG = logging.getLogger(__name__)

_DEFAULT_LOG_DIR = os.path.join(os.path.expanduser("~"), ".slackduty", "logs")

_DEFAULT_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "cookie",
}

_HOSTNAME = socket.gethostname()
_PID = os.getpid()

# Explicit overrides set via configure(); env is consulted when unset.
_overrides: dict[str, Any] = {}


# ---- Public API --------------------------------------------------------------


def configure(
    log_dir: str | None = None,
    activity_prefix: str | None = None,
    error_prefix: str | None = None,
    max_bytes: int | None = None,
) -> None:
    """Override log locations for this process (CLI flags, tests)."""
    for key, value in (
        ("log_dir", log_dir),
        ("activity_prefix", activity_prefix),
        ("error_prefix", error_prefix),
        ("max_bytes", max_bytes),
    ):
        if value is not None:
            _overrides[key] = value


def reset() -> None:
    _overrides.clear()


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Persist a single structured activity record.

    May raise on I/O or serialization errors; use activity() for the
    never-raising variant. The passed-in dict is not mutated.
    """
    _write_jsonl(_log_path_for_today(_activity_prefix()), record)


def write_error_log(record: dict[str, Any]) -> None:
    _write_jsonl(_log_path_for_today(_error_prefix()), record)


def activity(record: dict[str, Any]) -> None:
    """Write an activity record, falling back to stdlib logging if the file write fails."""
    try:
        write_activity_log(record)
    except Exception:
        LOG.debug("write_activity_log failed", exc_info=True)
        logging.getLogger("slackduty.activity").info(redact(record))


def error(record: dict[str, Any]) -> None:
    """Write an error record, falling back to stdlib logging if the file write fails."""
    try:
        write_error_log(record)
    except Exception:
        LOG.debug("write_error_log failed", exc_info=True)
        logging.getLogger("slackduty.error").error(redact(record))


def get_activity_log_path() -> str:
    return _log_path_for_today(_activity_prefix())


def get_error_log_path() -> str:
    return _log_path_for_today(_error_prefix())


def redact(record: dict[str, Any], keys: set[str] | None = None) -> dict[str, Any]:
    """
    Redacted deep copy of ``record``: values whose KEYS contain any of ``keys``
    (case-insensitive substring) are replaced. Input is not mutated.
    """
    return _redact_deep(record, keys or _DEFAULT_REDACT_KEYS)


# ---- Internal helpers --------------------------------------------------------


def _log_dir() -> str:
    return str(_overrides.get("log_dir") or os.getenv("LOG_DIR") or _DEFAULT_LOG_DIR)


def _activity_prefix() -> str:
    return str(_overrides.get("activity_prefix") or os.getenv("ACTIVITY_LOG_PREFIX") or "activity")


def _error_prefix() -> str:
    return str(_overrides.get("error_prefix") or os.getenv("ERROR_LOG_PREFIX") or "error")


def _max_bytes() -> int:
    if "max_bytes" in _overrides:
        return int(_overrides["max_bytes"])
    try:
        return int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return 0


def _log_path_for_today(prefix: str) -> str:
    today = _dt.date.today().isoformat()
    return os.path.join(_log_dir(), f"{prefix}-{today}.jsonl")


def _ensure_dir(path: str) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)


def _rotate_file_if_needed(path: str) -> None:
    """Size-based rotation; date rotation is inherent in the filename."""
    limit = _max_bytes()
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    ts = _dt.datetime.now().strftime("%Y%m%d-%H%M%S")
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{ts}")


def _safe_bearer_scrub(value: str) -> str:
    """Keep the scheme of 'Bearer <token>' / 'Token token=<key>' strings, drop the secret."""
    lower = value.lower()
    if lower.startswith("bearer ") or lower.startswith("token token="):
        scheme = value.split(" ", 1)[0]
        return f"{scheme} ***REDACTED***"
    return value


def _key_matches(name: str, patterns: Iterable[str]) -> bool:
    n = name.lower()
    return any(pat in n for pat in patterns)


def _redact_deep(value: Any, patterns: Iterable[str]) -> Any:
    if isinstance(value, dict):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if isinstance(k, str) and _key_matches(k, patterns):
                out[k] = "***REDACTED***"
            else:
                out[k] = _redact_deep(v, patterns)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_deep(v, patterns) for v in value]
    if isinstance(value, str):
        return _safe_bearer_scrub(value)
    return value


def _write_jsonl(path: str, record: dict[str, Any]) -> None:
    """
    Redact, stamp host/pid, rotate if needed and append one line with
    O_APPEND (atomic per write on POSIX). Retries once on OSError.
    """
    _ensure_dir(path)
    _rotate_file_if_needed(path)

    payload = _redact_deep(record, _DEFAULT_REDACT_KEYS)
    payload["_meta"] = {"host": _HOSTNAME, "pid": _PID}
    data = (json.dumps(payload, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    flags = os.O_CREAT | os.O_APPEND | os.O_WRONLY

    def _append_once() -> None:
        fd = os.open(path, flags, 0o644)
        try:
            os.write(fd, data)
        finally:
            os.close(fd)

    try:
        _append_once()
    except OSError:
        _ensure_dir(path)
        _append_once()
