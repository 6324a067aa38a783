# slackduty/resolver.py
"""
Turn one selector from one roster category into Slack members.

PagerDuty entities are expanded down to users, and every PagerDuty user is
bridged to Slack by email (``users.lookupByEmail``). Any failure along the
way fails the whole resolution: there is no best-effort partial result.
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable, Sequence
from enum import Enum
from typing import Any, Protocol, TypeVar

from .clients.pagerduty import PagerDutySchedule, PagerDutyService, PagerDutyTeam, PagerDutyUser
from .clients.slack import SlackUser, Usergroup
from .errors import AmbiguousLookupError, NotFoundError, UnsupportedKindError
from .fanout import fan_out
from .members import Member
from .selector import (
    PAGERDUTY_USER_KINDS,
    SCHEDULE_KINDS,
    SERVICE_KINDS,
    SLACK_USER_KINDS,
    TEAM_KINDS,
    Selector,
    SelectorKind,
)

LOG = logging.getLogger(__name__)

T = TypeVar("T")


class PagerDutyAPI(Protocol):
    def get_schedule(self, schedule_id: str) -> PagerDutySchedule: ...
    def list_schedules(self, query: str) -> list[PagerDutySchedule]: ...
    def get_service(self, service_id: str) -> PagerDutyService: ...
    def list_services(self, query: str) -> list[PagerDutyService]: ...
    def list_teams(self, query: str) -> list[PagerDutyTeam]: ...
    def list_team_members(self, team_id: str) -> list[str]: ...
    def get_user(self, user_id: str) -> PagerDutyUser: ...
    def list_users(self, query: str) -> list[PagerDutyUser]: ...


class SlackAPI(Protocol):
    def lookup_user_by_email(self, email: str) -> SlackUser: ...
    def list_usergroups(self) -> list[Usergroup]: ...
    def update_usergroup_members(self, usergroup_id: str, users: str) -> None: ...


class SourceCategory(str, Enum):
    SCHEDULE = "schedules"
    SERVICE = "services"
    TEAM = "teams"
    USER = "users"
    SLACK = "slack"


class RosterResolver:
    """
    Resolves selectors against PagerDuty/Slack.

    ``max_workers`` bounds each nested fan-out (team members, service teams).
    ``gate`` is an optional semaphore every external call passes through, so a
    deployment can cap in-flight API requests across the whole aggregation.
    """

    def __init__(
        self,
        pagerduty: PagerDutyAPI,
        slack: SlackAPI,
        *,
        max_workers: int | None = None,
        gate: threading.Semaphore | None = None,
    ) -> None:
        self.pagerduty = pagerduty
        self.slack = slack
        self.max_workers = max_workers
        self._gate = gate if gate is not None else contextlib.nullcontext()

    def resolve(self, category: SourceCategory, selector: Selector) -> list[Member]:
        if category is SourceCategory.SCHEDULE:
            return self.resolve_schedule(selector)
        if category is SourceCategory.SERVICE:
            return self.resolve_service(selector)
        if category is SourceCategory.TEAM:
            return self.resolve_team(selector)
        if category is SourceCategory.USER:
            return self.resolve_user(selector)
        if category is SourceCategory.SLACK:
            return self.resolve_slack_user(selector)
        raise ValueError(f"unknown roster category: {category!r}")

    # ---- PagerDuty --------------------------------------------------------

    def resolve_schedule(self, selector: Selector) -> list[Member]:
        selector.validate_kind(SCHEDULE_KINDS, "PagerDuty schedule")
        if selector.kind is SelectorKind.ID:
            schedule = self._call(self.pagerduty.get_schedule, selector.value)
        elif selector.kind is SelectorKind.NAME:
            schedule = _exactly_one(self._call(self.pagerduty.list_schedules, selector.value), selector, "schedule")
        else:
            raise _unsupported(selector, SCHEDULE_KINDS, "PagerDuty schedule")

        LOG.debug("Schedule %s has %d user(s)", selector, len(schedule.user_ids))
        return self._members_for_user_ids(schedule.user_ids)

    def resolve_service(self, selector: Selector) -> list[Member]:
        selector.validate_kind(SERVICE_KINDS, "PagerDuty service")
        if selector.kind is SelectorKind.ID:
            service = self._call(self.pagerduty.get_service, selector.value)
        elif selector.kind is SelectorKind.NAME:
            service = _exactly_one(self._call(self.pagerduty.list_services, selector.value), selector, "service")
        else:
            raise _unsupported(selector, SERVICE_KINDS, "PagerDuty service")

        LOG.debug("Service %s has %d team(s)", selector, len(service.team_ids))
        per_team = fan_out(
            lambda team_id: self.resolve_team(Selector(SelectorKind.ID, team_id)),
            service.team_ids,
            max_workers=self.max_workers,
            label="service-teams",
        )
        return [m for members in per_team for m in members]

    def resolve_team(self, selector: Selector) -> list[Member]:
        selector.validate_kind(TEAM_KINDS, "PagerDuty team")
        if selector.kind is SelectorKind.ID:
            team_id = selector.value
        elif selector.kind is SelectorKind.NAME:
            team_id = _exactly_one(self._call(self.pagerduty.list_teams, selector.value), selector, "team").id
        else:
            raise _unsupported(selector, TEAM_KINDS, "PagerDuty team")

        user_ids = self._call(self.pagerduty.list_team_members, team_id)
        LOG.debug("Team %s has %d member(s)", selector, len(user_ids))
        return self._members_for_user_ids(user_ids)

    def resolve_user(self, selector: Selector) -> list[Member]:
        selector.validate_kind(PAGERDUTY_USER_KINDS, "PagerDuty user")
        if selector.kind is SelectorKind.ID:
            user = self._call(self.pagerduty.get_user, selector.value)
        elif selector.kind in (SelectorKind.NAME, SelectorKind.EMAIL):
            user = _exactly_one(self._call(self.pagerduty.list_users, selector.value), selector, "user")
        else:
            raise _unsupported(selector, PAGERDUTY_USER_KINDS, "PagerDuty user")
        return [self._bridge(user)]

    # ---- Slack ------------------------------------------------------------

    def resolve_slack_user(self, selector: Selector) -> list[Member]:
        selector.validate_kind(SLACK_USER_KINDS, "Slack user")
        if selector.kind is SelectorKind.ID:
            # Updating a usergroup only needs the id; no lookup required.
            return [Member(id=selector.value, email="")]
        if selector.kind is SelectorKind.EMAIL:
            user = self._call(self.slack.lookup_user_by_email, selector.value)
            return [Member(id=user.id, email=selector.value)]
        raise _unsupported(selector, SLACK_USER_KINDS, "Slack user")

    # ---- helpers ----------------------------------------------------------

    def _members_for_user_ids(self, user_ids: Sequence[str]) -> list[Member]:
        return fan_out(self._member_for_user_id, user_ids, max_workers=self.max_workers, label="users")

    def _member_for_user_id(self, user_id: str) -> Member:
        return self._bridge(self._call(self.pagerduty.get_user, user_id))

    def _bridge(self, user: PagerDutyUser) -> Member:
        """PagerDuty user -> Slack member, matched on the PagerDuty email."""
        if not user.email:
            raise NotFoundError("id", user.id, what="email for PagerDuty user")
        slack_user = self._call(self.slack.lookup_user_by_email, user.email)
        return Member(id=slack_user.id, email=user.email)

    def _call(self, fn: Callable[..., T], *args: Any) -> T:
        with self._gate:
            return fn(*args)


def _exactly_one(results: Sequence[T], selector: Selector, what: str) -> T:
    if len(results) == 0:
        raise NotFoundError(selector.kind.value, selector.value, what=what)
    if len(results) > 1:
        raise AmbiguousLookupError(selector.kind.value, selector.value, len(results), what=what)
    return results[0]


def _unsupported(selector: Selector, allowed: frozenset[SelectorKind], context: str) -> UnsupportedKindError:
    return UnsupportedKindError(
        selector.kind.value, selector.value, allowed=tuple(sorted(k.value for k in allowed)), context=context
    )
