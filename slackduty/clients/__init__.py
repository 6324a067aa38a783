# slackduty/clients/__init__.py
from __future__ import annotations

from .http_client import HttpClient
from .pagerduty import PagerDutyClient, PagerDutySchedule, PagerDutyService, PagerDutyTeam, PagerDutyUser
from .slack import SlackClient, SlackUser, Usergroup

__all__ = [
    "HttpClient",
    "PagerDutyClient",
    "PagerDutySchedule",
    "PagerDutyService",
    "PagerDutyTeam",
    "PagerDutyUser",
    "SlackClient",
    "SlackUser",
    "Usergroup",
]
