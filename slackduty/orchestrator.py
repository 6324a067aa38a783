# slackduty/orchestrator.py
"""
Per-group reconcile pipeline and the top-level driver.

    precheck -> aggregate -> filter -> (empty? stop) -> update

Each group runs as its own Job. A failing group is logged and skipped for
that firing; it never affects other groups or later firings.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field

from apscheduler.schedulers.base import BaseScheduler

from . import logging_utils
from .aggregator import Aggregator
from .clients.pagerduty import PagerDutyClient
from .clients.slack import SlackClient
from .config_schema import ConfigError, Group, Settings, usergroup_handles
from .errors import EmptyMembershipWarning, SyncCancelled, UnsupportedKindError, UsergroupNotFoundError
from .jobs import Job, new_job
from .members import MembershipSet, filter_members, flatten_members
from .resolver import PagerDutyAPI, RosterResolver, SlackAPI
from .scheduler import SchedulerController, build_scheduler
from .selector import USERGROUP_KINDS, Selector, SelectorKind

LOG = logging.getLogger(__name__)


@dataclass
class SyncResult:
    group: str
    status: str  # "updated" | "empty"
    member_ids: list[str] = field(default_factory=list)
    usergroups: list[str] = field(default_factory=list)
    duration_s: float = 0.0


class Orchestrator:
    def __init__(
        self,
        settings: Settings,
        *,
        pagerduty: PagerDutyAPI | None = None,
        slack: SlackAPI | None = None,
        external_trigger: bool = False,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self.settings = settings
        self.external_trigger = external_trigger
        self.pagerduty = pagerduty or PagerDutyClient(settings.pagerduty_api_key)
        self.slack = slack or SlackClient(settings.slack_api_key)

        gate = threading.BoundedSemaphore(settings.max_concurrency) if settings.max_concurrency else None
        self.resolver = RosterResolver(
            self.pagerduty,
            self.slack,
            max_workers=settings.max_concurrency,
            gate=gate,
        )
        self.aggregator = Aggregator(self.resolver, max_workers=settings.max_concurrency)

        self.controller: SchedulerController | None = None
        if not external_trigger:
            self.controller = SchedulerController(
                scheduler or build_scheduler(settings.timezone, settings.executor_workers)
            )

    # ---- Top-level ------------------------------------------------------------

    def run(self, cancel: threading.Event | None = None, groups: Sequence[Group] | None = None) -> None:
        """
        Launch one job per group and wait for all of them.

        External trigger: every group syncs once, then run() returns.
        Otherwise: every group is registered on the shared scheduler and
        run() blocks until ``cancel`` is set, then shuts the scheduler down.
        Group failures are logged and recorded, never raised.
        """
        groups = list(self.settings.groups if groups is None else groups)
        if not groups:
            LOG.warning("No groups configured; nothing to do.")
            return

        cancel = cancel or threading.Event()
        if self.controller is not None:
            self.controller.start()
            LOG.info("start cronjob (group count=%d)", len(groups))
        else:
            LOG.info("start job (group count=%d)", len(groups))

        threads = [
            threading.Thread(target=self._run_group_job, args=(g, cancel), name=f"slackduty-group-{g.name}")
            for g in groups
        ]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()
        finally:
            if self.controller is not None:
                self.controller.stop()

    def build_job(self, group: Group, cancel: threading.Event | None = None) -> Job:
        if self.controller is None:
            return new_job(lambda: self.sync_group(group, cancel), name=group.name)
        if not group.schedule:
            raise ConfigError(f"Group '{group.name}': 'schedule' is required unless run with an external trigger.")
        return new_job(
            lambda: self.sync_group(group, cancel),
            name=group.name,
            schedule=group.schedule,
            scheduler=self.controller.scheduler,
        )

    def _run_group_job(self, group: Group, cancel: threading.Event) -> None:
        try:
            job = self.build_job(group, cancel)
            job.run(cancel)
        except Exception as e:
            LOG.exception("failed to update Slack usergroup (group=%s, external_trigger=%s)", group.name, self.external_trigger)
            logging_utils.error({
                "where": "orchestrator.run",
                "group": group.name,
                "external_trigger": self.external_trigger,
                "error": repr(e),
            })
            return
        LOG.info("successfully ran a job for updating Slack usergroup (group=%s, external_trigger=%s)", group.name, self.external_trigger)

    # ---- Pipeline -------------------------------------------------------------

    def sync_group(self, group: Group, cancel: threading.Event | None = None) -> SyncResult:
        started = time.perf_counter()
        LOG.info("start to run configure group job (group=%s, schedule=%s)", group.name, group.schedule)

        _checkpoint(cancel, group, "precheck")
        usergroup_ids = self.precheck(group)

        _checkpoint(cancel, group, "aggregate")
        members = self.aggregator.aggregate(group.members)
        _activity(group, "aggregate", count=len(members))

        _checkpoint(cancel, group, "filter")
        members = filter_members(members, group.exclude)
        _activity(group, "filter", count=len(members), excluded=[str(s) for s in group.exclude])

        if len(members) == 0:
            warning = EmptyMembershipWarning(f"group '{group.name}' resolved to no members; usergroups left unchanged")
            LOG.warning("%s", warning)
            _activity(group, "empty")
            return SyncResult(group=group.name, status="empty", duration_s=time.perf_counter() - started)

        _checkpoint(cancel, group, "update")
        updated = self.update_usergroups(group, members, usergroup_ids)

        result = SyncResult(
            group=group.name,
            status="updated",
            member_ids=members.ids(),
            usergroups=updated,
            duration_s=time.perf_counter() - started,
        )
        _activity(group, "summary", members=len(result.member_ids), usergroups=updated, duration_s=round(result.duration_s, 3))
        return result

    def precheck(self, group: Group) -> dict[str, str]:
        """
        Check that the configured usergroup handles exist. Returns the
        handle -> id map for the update step (empty when only ids are used).
        """
        for sel in group.usergroups:
            sel.validate_kind(USERGROUP_KINDS, "usergroup")

        handles = usergroup_handles(group)
        if not handles:
            return {}

        LOG.info("precheck started (group=%s)", group.name)
        by_handle = {ug.handle: ug.id for ug in self.slack.list_usergroups()}
        if not any(h in by_handle for h in handles):
            raise UsergroupNotFoundError(", ".join(handles))

        _activity(group, "precheck", handles=handles)
        LOG.info("precheck success (group=%s)", group.name)
        return by_handle

    def update_usergroups(
        self,
        group: Group,
        members: MembershipSet,
        usergroup_ids: dict[str, str] | None = None,
    ) -> list[str]:
        """
        Full-replace every configured usergroup with ``members``, in config
        order. The first failure aborts the remaining usergroups.
        """
        flat = flatten_members(members)
        updated: list[str] = []
        for sel in group.usergroups:
            usergroup_id = self._usergroup_id(sel, usergroup_ids or {})
            self.slack.update_usergroup_members(usergroup_id, flat)
            updated.append(str(sel))
            _activity(group, "update", usergroup=str(sel), members=len(members))
            LOG.info("updated a slack usergroup (group=%s, usergroup=%s)", group.name, sel)
        return updated

    def _usergroup_id(self, sel: Selector, known: dict[str, str]) -> str:
        if sel.kind is SelectorKind.ID:
            return sel.value
        if sel.kind is SelectorKind.HANDLE:
            if sel.value not in known:
                known.update({ug.handle: ug.id for ug in self.slack.list_usergroups()})
            if sel.value not in known:
                raise UsergroupNotFoundError(sel.value)
            return known[sel.value]
        raise UnsupportedKindError(sel.kind.value, sel.value, allowed=("handle", "id"), context="usergroup")


def _checkpoint(cancel: threading.Event | None, group: Group, stage: str) -> None:
    if cancel is not None and cancel.is_set():
        raise SyncCancelled(f"group '{group.name}' cancelled before {stage}")


def _activity(group: Group, op: str, **fields) -> None:
    logging_utils.activity({"component": "slackduty.orchestrator", "op": op, "group": group.name, **fields})
