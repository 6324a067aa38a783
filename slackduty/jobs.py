# slackduty/jobs.py
"""
Execution modes for a unit of work (one group's reconcile pipeline).

    OneShotJob    created -> run() -> done. For external triggers
                  (crontab, Cloud Scheduler, CI).
    RecurringJob  idle -> (schedule fires) -> running -> idle, until stopped.
                  Registered on a shared APScheduler BackgroundScheduler.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.base import BaseScheduler

from . import runner
from .scheduler import build_trigger

LOG = logging.getLogger(__name__)

_POLL_SEC = 0.5


class Job(ABC):
    name: str

    @abstractmethod
    def run(self, cancel: threading.Event | None = None) -> Any:
        raise NotImplementedError


class OneShotJob(Job):
    """Invokes the wrapped function exactly once."""

    def __init__(self, fn: Callable[[], Any], name: str = "job") -> None:
        self.fn = fn
        self.name = name
        self.state = "created"

    def run(self, cancel: threading.Event | None = None) -> Any:
        """
        Invoke the function and return its result; errors propagate.

        ``cancel`` is accepted for interface parity but not observed: the
        invocation is not preemptible once started.
        """
        if self.state == "done":
            raise RuntimeError(f"one-shot job {self.name!r} has already run")
        self.state = "done"
        return runner.run_once(self.name, self.fn, trigger_type="oneshot")


class RecurringJob(Job):
    def __init__(
        self,
        fn: Callable[[], Any],
        schedule: str,
        scheduler: BaseScheduler,
        name: str = "job",
    ) -> None:
        if not schedule:
            raise ValueError(f"recurring job {name!r} requires a schedule pattern")
        self.fn = fn
        self.schedule = schedule
        self.scheduler = scheduler
        self.name = name
        self.job_id = f"slackduty:{name}"
        self.trigger = build_trigger(schedule, scheduler.timezone)

        self.state = "idle"
        self.fire_count = 0
        self.error_count = 0
        self.last_error: BaseException | None = None
        self._stop = threading.Event()
        self._lock = threading.Lock()

    def run(self, cancel: threading.Event | None = None) -> None:
        """
        Register with the scheduler, then block until ``cancel`` (or stop())
        is set. Firing errors are logged, never raised here. On return the
        job is unregistered; a firing already in progress is not interrupted.
        """
        self.scheduler.add_job(
            func=self._fire,
            trigger=self.trigger,
            id=self.job_id,
            name=self.name,
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        LOG.info("Registered job[%s] schedule=%r", self.name, self.schedule)

        try:
            self._wait(cancel)
        finally:
            try:
                self.scheduler.remove_job(self.job_id)
            except JobLookupError:
                LOG.debug("Job[%s] already removed from scheduler", self.name)
            LOG.info("Job[%s] stopped after %d firing(s)", self.name, self.fire_count)

    def stop(self) -> None:
        self._stop.set()

    def _wait(self, cancel: threading.Event | None) -> None:
        if cancel is None:
            self._stop.wait()
            return
        while not self._stop.is_set():
            if cancel.wait(timeout=_POLL_SEC):
                return

    def _fire(self) -> None:
        with self._lock:
            self.fire_count += 1
            self.state = "running"
        try:
            runner.run_once(self.name, self.fn, trigger_type="scheduled", job_context={"schedule": self.schedule})
        except Exception as e:
            with self._lock:
                self.error_count += 1
                self.last_error = e
            LOG.exception("Job[%s] firing failed; later firings are unaffected.", self.name)
        finally:
            with self._lock:
                self.state = "idle"


def new_job(
    fn: Callable[[], Any],
    *,
    name: str = "job",
    schedule: str | None = None,
    scheduler: BaseScheduler | None = None,
) -> Job:
    """RecurringJob when both ``schedule`` and ``scheduler`` are given, else OneShotJob."""
    if schedule and scheduler is not None:
        return RecurringJob(fn, schedule, scheduler, name=name)
    return OneShotJob(fn, name=name)
