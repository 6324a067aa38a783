# slackduty/runner.py
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from . import logging_utils

log = logging.getLogger(__name__)

T = TypeVar("T")


def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def run_once(
    name: str,
    fn: Callable[[], T],
    *,
    trigger_type: str = "oneshot",
    job_context: dict[str, Any] | None = None,
) -> T:
    """
    Invoke ``fn()`` exactly once and record the outcome.

    One activity record is written per invocation (run id, job name, trigger
    type, ok flag, duration). Exceptions from ``fn`` are recorded in the
    error log as well and then re-raised unchanged; deciding whether to
    surface them is the caller's job.
    """
    run_id = uuid.uuid4().hex
    started_at = now_iso()
    t0 = time.monotonic()

    context: dict[str, Any] = {"run_id": run_id, "job": name, "trigger_type": trigger_type, "started_at": started_at}
    if job_context:
        context.update({k: v for k, v in job_context.items() if k not in context})

    log.info("Job[%s] starting (trigger=%s, run_id=%s)", name, trigger_type, run_id)
    try:
        result = fn()
    except BaseException as e:
        duration_ms = int((time.monotonic() - t0) * 1000)
        logging_utils.activity({
            "ts": now_iso(),
            "event": "job_run",
            **context,
            "ok": False,
            "duration_ms": duration_ms,
            "exception_type": type(e).__name__,
        })
        logging_utils.error({
            "ts": now_iso(),
            "where": "runner.run_once",
            **context,
            "error": repr(e),
            "duration_ms": duration_ms,
        })
        raise

    duration_ms = int((time.monotonic() - t0) * 1000)
    log.info("Job[%s] finished in %.3fs", name, duration_ms / 1000)
    logging_utils.activity({
        "ts": now_iso(),
        "event": "job_run",
        **context,
        "ok": True,
        "duration_ms": duration_ms,
        "result_type": type(result).__name__ if result is not None else None,
    })
    return result
