# tests/conftest.py
import json
import threading
from collections import Counter

import pytest
from freezegun import freeze_time

from slackduty import logging_utils
from slackduty.clients.pagerduty import PagerDutySchedule, PagerDutyService, PagerDutyTeam, PagerDutyUser
from slackduty.clients.slack import SlackUser, Usergroup
from slackduty.errors import ExternalCallError


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("ACTIVITY_LOG_MAX_BYTES", raising=False)
    monkeypatch.delenv("SLACKDUTY_CONFIG", raising=False)
    monkeypatch.delenv("SLACKDUTY_PAGERDUTY_API_KEY", raising=False)
    monkeypatch.delenv("SLACKDUTY_SLACK_API_KEY", raising=False)
    logging_utils.reset()
    yield
    logging_utils.reset()


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


@pytest.fixture
def read_jsonl():
    def _read(path):
        with open(path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]

    return _read


# ---------------------------------------------------------------------
# In-memory PagerDuty / Slack
# ---------------------------------------------------------------------
class FakePagerDuty:
    """
    Holds a tiny PagerDuty world. ``fail`` maps (method, arg) to an exception
    raised when that call is made. Every call is counted.
    """

    def __init__(self):
        self.users = {}  # id -> PagerDutyUser
        self.schedules = {}  # id -> PagerDutySchedule
        self.services = {}  # id -> PagerDutyService
        self.teams = {}  # id -> (PagerDutyTeam, [user ids])
        self.fail = {}
        self.calls = Counter()
        self._lock = threading.Lock()

    # -- setup helpers --
    def add_user(self, uid, email, name=None):
        self.users[uid] = PagerDutyUser(id=uid, name=name or uid, email=email)
        return self.users[uid]

    def add_schedule(self, sid, name, user_ids):
        self.schedules[sid] = PagerDutySchedule(id=sid, name=name, user_ids=list(user_ids))

    def add_team(self, tid, name, user_ids):
        self.teams[tid] = (PagerDutyTeam(id=tid, name=name), list(user_ids))

    def add_service(self, sid, name, team_ids):
        self.services[sid] = PagerDutyService(id=sid, name=name, team_ids=list(team_ids))

    def _record(self, method, arg):
        with self._lock:
            self.calls[method] += 1
        exc = self.fail.get((method, arg))
        if exc is not None:
            raise exc

    # -- PagerDutyAPI --
    def get_schedule(self, schedule_id):
        self._record("get_schedule", schedule_id)
        if schedule_id not in self.schedules:
            raise ExternalCallError("pagerduty", f"GET /schedules/{schedule_id}", status=404)
        return self.schedules[schedule_id]

    def list_schedules(self, query):
        self._record("list_schedules", query)
        return [s for s in self.schedules.values() if query in s.name]

    def get_service(self, service_id):
        self._record("get_service", service_id)
        if service_id not in self.services:
            raise ExternalCallError("pagerduty", f"GET /services/{service_id}", status=404)
        return self.services[service_id]

    def list_services(self, query):
        self._record("list_services", query)
        return [s for s in self.services.values() if query in s.name]

    def list_teams(self, query):
        self._record("list_teams", query)
        return [t for t, _ in self.teams.values() if query in t.name]

    def list_team_members(self, team_id):
        self._record("list_team_members", team_id)
        if team_id not in self.teams:
            raise ExternalCallError("pagerduty", f"GET /teams/{team_id}/members", status=404)
        return list(self.teams[team_id][1])

    def get_user(self, user_id):
        self._record("get_user", user_id)
        if user_id not in self.users:
            raise ExternalCallError("pagerduty", f"GET /users/{user_id}", status=404)
        return self.users[user_id]

    def list_users(self, query):
        self._record("list_users", query)
        return [u for u in self.users.values() if query in u.name or query in u.email]


class FakeSlack:
    """Email -> Slack id directory plus usergroups; records every update."""

    def __init__(self):
        self.directory = {}  # email -> slack id
        self.usergroups = []
        self.updates = []  # (usergroup id, "U1,U2")
        self.fail = {}
        self.calls = Counter()
        self._lock = threading.Lock()

    def add_usergroup(self, ug_id, handle):
        self.usergroups.append(Usergroup(id=ug_id, handle=handle, name=handle))

    def _record(self, method, arg):
        with self._lock:
            self.calls[method] += 1
        exc = self.fail.get((method, arg))
        if exc is not None:
            raise exc

    def lookup_user_by_email(self, email):
        self._record("lookup_user_by_email", email)
        if email not in self.directory:
            raise ExternalCallError("slack", "users_not_found")
        return SlackUser(id=self.directory[email], email=email)

    def list_usergroups(self):
        self._record("list_usergroups", None)
        return list(self.usergroups)

    def update_usergroup_members(self, usergroup_id, users):
        self._record("update_usergroup_members", usergroup_id)
        with self._lock:
            self.updates.append((usergroup_id, users))


@pytest.fixture
def fake_pd():
    return FakePagerDuty()


@pytest.fixture
def fake_slack():
    return FakeSlack()


@pytest.fixture
def oncall_world(fake_pd, fake_slack):
    """
    Schedule S1 "backend-primary" -> PD users P1, P2.
    Team T1 "backend" -> P2, P3 (P2 overlaps the schedule).
    Service SV1 -> team T1.
    """
    for uid, email, slack_id in (
        ("P1", "alice@example.com", "U1"),
        ("P2", "bob@example.com", "U2"),
        ("P3", "carol@example.com", "U3"),
    ):
        fake_pd.add_user(uid, email, name=email.split("@")[0])
        fake_slack.directory[email] = slack_id
    fake_pd.add_schedule("S1", "backend-primary", ["P1", "P2"])
    fake_pd.add_team("T1", "backend", ["P2", "P3"])
    fake_pd.add_service("SV1", "checkout", ["T1"])
    fake_slack.add_usergroup("SG1", "backend-oncall")
    fake_slack.add_usergroup("SG2", "backend-all")
    return fake_pd, fake_slack


# ---------------------------------------------------------------------
# Config files
# ---------------------------------------------------------------------
MIN_CONFIG_YAML = """\
timezone: UTC
max_concurrency: 4
groups:
  - name: backend on-call
    schedule: "*/5 * * * *"
    usergroups: [handle:backend-oncall]
    members:
      pagerduty:
        schedules: [name:backend-primary]
        teams: [id:T1]
      slack: [id:U9]
    exclude: [email:bob@example.com]
  - name: checkout
    usergroups: [id:SG2]
    members:
      pagerduty:
        services: [id:SV1]
"""


@pytest.fixture
def write_min_config(tmp_path, monkeypatch):
    p = tmp_path / "config.yml"
    p.write_text(MIN_CONFIG_YAML, encoding="utf-8")
    monkeypatch.setenv("SLACKDUTY_CONFIG", str(p))
    return p


@pytest.fixture
def api_keys_env(monkeypatch):
    monkeypatch.setenv("SLACKDUTY_PAGERDUTY_API_KEY", "pd-test-key")
    monkeypatch.setenv("SLACKDUTY_SLACK_API_KEY", "xoxb-test")
