# slackduty/clients/pagerduty.py
"""
Minimal PagerDuty REST v2 client.

Only the reads the resolver needs. Each method is a single API operation;
all selector/ambiguity policy lives in slackduty.resolver.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .http_client import HttpClient

LOG = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.pagerduty.com"
_PAGE_SIZE = 100


@dataclass(frozen=True)
class PagerDutyUser:
    id: str
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class PagerDutySchedule:
    id: str
    name: str = ""
    user_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PagerDutyService:
    id: str
    name: str = ""
    team_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PagerDutyTeam:
    id: str
    name: str = ""


class PagerDutyClient:
    def __init__(self, api_key: str, *, base_url: str = DEFAULT_BASE_URL, timeout: float = 15.0, **http_kwargs: Any):
        self.http = HttpClient(
            base_url,
            "pagerduty",
            headers={
                "Authorization": f"Token token={api_key}",
                "Accept": "application/vnd.pagerduty+json;version=2",
            },
            timeout=timeout,
            **http_kwargs,
        )

    # ---- schedules ----
    def get_schedule(self, schedule_id: str) -> PagerDutySchedule:
        body = self.http.get_json(f"/schedules/{schedule_id}")
        return _schedule(body.get("schedule") or {})

    def list_schedules(self, query: str) -> list[PagerDutySchedule]:
        return [_schedule(s) for s in self._paginate("/schedules", "schedules", {"query": query})]

    # ---- services ----
    def get_service(self, service_id: str) -> PagerDutyService:
        body = self.http.get_json(f"/services/{service_id}")
        return _service(body.get("service") or {})

    def list_services(self, query: str) -> list[PagerDutyService]:
        return [_service(s) for s in self._paginate("/services", "services", {"query": query})]

    # ---- teams ----
    def list_teams(self, query: str) -> list[PagerDutyTeam]:
        return [
            PagerDutyTeam(id=str(t.get("id", "")), name=str(t.get("name", "")))
            for t in self._paginate("/teams", "teams", {"query": query})
        ]

    def list_team_members(self, team_id: str) -> list[str]:
        """Return the user ids of every member of the team (all pages)."""
        ids: list[str] = []
        for m in self._paginate(f"/teams/{team_id}/members", "members"):
            user = m.get("user") or {}
            if user.get("id"):
                ids.append(str(user["id"]))
        return ids

    # ---- users ----
    def get_user(self, user_id: str) -> PagerDutyUser:
        body = self.http.get_json(f"/users/{user_id}", params={"include[]": "contact_methods"})
        return _user(body.get("user") or {})

    def list_users(self, query: str) -> list[PagerDutyUser]:
        return [
            _user(u)
            for u in self._paginate("/users", "users", {"query": query, "include[]": "contact_methods"})
        ]

    def close(self) -> None:
        self.http.close()

    # ---- helpers ----
    def _paginate(self, path: str, key: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Follow PagerDuty's classic offset/limit/more pagination."""
        items: list[dict[str, Any]] = []
        offset = 0
        while True:
            page_params = {**(params or {}), "limit": _PAGE_SIZE, "offset": offset}
            body = self.http.get_json(path, params=page_params)
            page = body.get(key) or []
            items.extend(page)
            if not body.get("more") or not page:
                return items
            offset += len(page)


def _schedule(raw: Mapping[str, Any]) -> PagerDutySchedule:
    return PagerDutySchedule(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        user_ids=[str(u["id"]) for u in raw.get("users") or [] if u.get("id")],
    )


def _service(raw: Mapping[str, Any]) -> PagerDutyService:
    return PagerDutyService(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        team_ids=[str(t["id"]) for t in raw.get("teams") or [] if t.get("id")],
    )


def _user(raw: Mapping[str, Any]) -> PagerDutyUser:
    return PagerDutyUser(
        id=str(raw.get("id", "")),
        name=str(raw.get("name", "")),
        email=str(raw.get("email") or ""),
    )
