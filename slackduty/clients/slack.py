# slackduty/clients/slack.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..errors import ExternalCallError
from .http_client import HttpClient

LOG = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://slack.com/api"


@dataclass(frozen=True)
class SlackUser:
    id: str
    email: str = ""


@dataclass(frozen=True)
class Usergroup:
    id: str
    handle: str
    name: str = ""


class SlackClient:
    """
    Slack Web API calls used by the sync. Slack answers HTTP 200 with
    ``{"ok": false, "error": "..."}`` on API errors; those are raised as
    ExternalCallError carrying Slack's error code.
    """

    def __init__(self, token: str, *, base_url: str = DEFAULT_BASE_URL, timeout: float = 15.0, **http_kwargs: Any):
        self.http = HttpClient(
            base_url,
            "slack",
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            **http_kwargs,
        )

    def lookup_user_by_email(self, email: str) -> SlackUser:
        body = self._call("GET", "users.lookupByEmail", params={"email": email})
        user = body.get("user") or {}
        profile = user.get("profile") or {}
        return SlackUser(id=str(user.get("id", "")), email=str(profile.get("email") or email))

    def list_usergroups(self) -> list[Usergroup]:
        body = self._call("GET", "usergroups.list", params={"include_disabled": "false"})
        return [
            Usergroup(id=str(g.get("id", "")), handle=str(g.get("handle", "")), name=str(g.get("name", "")))
            for g in body.get("usergroups") or []
        ]

    def update_usergroup_members(self, usergroup_id: str, users: str) -> None:
        """Full replace: ``users`` is the comma-joined list of Slack user ids."""
        self._call("POST", "usergroups.users.update", data={"usergroup": usergroup_id, "users": users})

    def close(self) -> None:
        self.http.close()

    def _call(self, method: str, api_method: str, **kwargs: Any) -> dict[str, Any]:
        body = self.http.request_json(method, api_method, **kwargs)
        if not isinstance(body, dict):
            raise ExternalCallError("slack", f"{api_method}: unexpected response type {type(body).__name__}")
        if not body.get("ok", False):
            raise ExternalCallError("slack", str(body.get("error") or f"{api_method} failed"))
        return body
