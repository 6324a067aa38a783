# slackduty/scheduler.py
from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

import pytz
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

LOG = logging.getLogger(__name__)

_DESCRIPTORS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * sun",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}
_DURATION_PART_RE = re.compile(r"(\d+)(h|m|s)")
# crontab counts weekdays from Sunday (0 and 7), APScheduler from Monday
_CRONTAB_DOW_NUMERIC_RE = re.compile(r"\*|\d+|\d+-\d+")
_CRONTAB_DOW_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


# ---- Public controller ------------------------------------------------------


class SchedulerController:
    """
    A small façade around APScheduler so the orchestrator/CLI can manage
    lifecycle cleanly.
    """

    def __init__(self, scheduler: BackgroundScheduler) -> None:
        self.scheduler = scheduler
        self._stopped_evt = threading.Event()

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            LOG.info("Scheduler started (timezone=%s).", self.scheduler.timezone)

    def stop(self) -> None:
        """
        Shut down promptly. Firings already running are allowed to finish;
        no new ones start.
        """
        if self.scheduler.running:
            LOG.info("Shutting down scheduler...")
            self.scheduler.shutdown(wait=False)
        self._stopped_evt.set()
        LOG.info("Scheduler shut down complete.")

    def join(self, timeout: float | None = None) -> bool:
        """Block until stop() has run (or timeout). True if stopped."""
        return self._stopped_evt.wait(timeout=timeout)

    def get_job_ids(self) -> Iterable[str]:
        return (job.id for job in self.scheduler.get_jobs())


# ---- Module API -------------------------------------------------------------


def build_scheduler(timezone: Any = None, executor_workers: int = 10) -> BackgroundScheduler:
    """
    One shared BackgroundScheduler for every recurring group job.

    ``coalesce``/``max_instances=1``: a group never overlaps with itself, and a
    backlog of missed firings collapses into one run.
    """
    return BackgroundScheduler(
        timezone=resolve_timezone(timezone),
        job_defaults={"coalesce": True, "max_instances": 1},
        executors={"default": ThreadPoolExecutor(max(1, int(executor_workers)))},
        jobstores={"default": MemoryJobStore()},
    )


def resolve_timezone(tz: Any = None):
    """
    APScheduler 3.x expects a pytz timezone. Accepts a tz name, a tzinfo, or
    None (UTC). Unknown names fall back to UTC with a warning.
    """
    if tz is None or tz == "":
        return pytz.UTC
    if not isinstance(tz, str):
        return tz
    try:
        return pytz.timezone(tz)
    except pytz.UnknownTimeZoneError:
        LOG.warning("Falling back to UTC timezone (invalid tz '%s')", tz)
        return pytz.UTC


def build_trigger(pattern: str, tz: Any = None) -> Any:
    """
    Build an APScheduler trigger from a cron-style pattern.

    Supported shapes:
      "*/5 * * * *"        standard 5-field crontab
      "0 */5 * * * *"      6 fields, seconds first
      "@hourly", "@daily", "@weekly", "@monthly", "@yearly" (and aliases)
      "@every 1h30m"       fixed interval (h/m/s units)
    """
    if not isinstance(pattern, str) or not pattern.strip():
        raise ValueError("schedule pattern must be a non-empty string")
    tzinfo = resolve_timezone(tz)
    spec = pattern.strip()

    if spec.startswith("@every"):
        return IntervalTrigger(seconds=_parse_duration(spec[len("@every"):].strip()), timezone=tzinfo)

    if spec.startswith("@"):
        if spec not in _DESCRIPTORS:
            raise ValueError(f"unknown schedule descriptor {spec!r}")
        spec = _DESCRIPTORS[spec]

    fields = spec.replace("?", "*").split()
    if len(fields) == 5:
        fields[4] = _crontab_day_of_week(fields[4])
        return CronTrigger.from_crontab(" ".join(fields), timezone=tzinfo)
    if len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
        day_of_week = _crontab_day_of_week(day_of_week)
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone=tzinfo,
        )
    raise ValueError(f"cron pattern must have 5 or 6 fields (got {len(fields)}): {pattern!r}")


def preview_trigger(trigger: Any, tz: Any = None, count: int = 3, start: datetime | None = None) -> list[datetime]:
    """
    Next ``count`` fire times, for list-groups output and logs. Seeds
    previous_fire_time = now = ``start`` and steps 1µs past each hit.
    """
    now = start or datetime.now(tz=resolve_timezone(tz))
    prev = None if isinstance(trigger, IntervalTrigger) else now
    times: list[datetime] = []
    for _ in range(count):
        nxt = trigger.get_next_fire_time(prev, now)
        if nxt is None:
            break
        times.append(nxt)
        prev = nxt
        now = nxt + timedelta(microseconds=1)
    return times


# ---- Helpers ----------------------------------------------------------------


def _crontab_day_of_week(field: str) -> str:
    """
    Expand numeric crontab weekdays into an explicit list of names:
    '0-4' -> 'sun,mon,tue,wed,thu', '*/2' -> 'sun,tue,thu,sat'. APScheduler
    ranges run Monday..Sunday, so a range starting at Sunday cannot be passed
    through as-is. Items that already use names are kept verbatim.
    """
    if field == "*":
        return field

    out: list[str] = []
    for part in field.split(","):
        base, _, step_raw = part.partition("/")
        if not _CRONTAB_DOW_NUMERIC_RE.fullmatch(base):
            out.append(part)
            continue

        if base == "*":
            lo, hi = 0, 6
        elif "-" in base:
            lo_raw, hi_raw = base.split("-", 1)
            lo, hi = int(lo_raw), int(hi_raw)
        else:
            lo = int(base)
            hi = 6 if step_raw else lo
        step = int(step_raw) if step_raw else 1

        if not (0 <= lo <= 7 and 0 <= hi <= 7) or lo > hi:
            raise ValueError(f"day-of-week out of range: {part!r}")
        if step < 1:
            raise ValueError(f"day-of-week step must be >= 1: {part!r}")

        out.extend(_CRONTAB_DOW_NAMES[d] for d in range(lo, hi + 1, step))

    return ",".join(dict.fromkeys(out))


def _parse_duration(text: str) -> int:
    """'1h30m' -> 5400. Whole seconds only."""
    if not text:
        raise ValueError("@every requires a duration, e.g. '@every 5m'")
    pos = 0
    total = 0
    for m in _DURATION_PART_RE.finditer(text):
        if m.start() != pos:
            break
        n, unit = int(m.group(1)), m.group(2)
        total += n * {"h": 3600, "m": 60, "s": 1}[unit]
        pos = m.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {text!r} (use h/m/s units, e.g. '1h30m')")
    if total <= 0:
        raise ValueError("@every duration must be greater than 0")
    return total
