# slackduty/config_schema.py
from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import yaml

from .errors import SelectorError
from .selector import (
    EXCLUDE_KINDS,
    PAGERDUTY_USER_KINDS,
    SCHEDULE_KINDS,
    SERVICE_KINDS,
    SLACK_USER_KINDS,
    TEAM_KINDS,
    USERGROUP_KINDS,
    Selector,
    SelectorKind,
    parse,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join("~", ".slackduty", "config.yml")
CONFIG_ENV = "SLACKDUTY_CONFIG"
PAGERDUTY_KEY_ENV = "SLACKDUTY_PAGERDUTY_API_KEY"
SLACK_KEY_ENV = "SLACKDUTY_SLACK_API_KEY"


class ConfigError(ValueError):
    """Raised when the config is invalid."""


# ---- Models -----------------------------------------------------------------


@dataclass(frozen=True)
class RosterSources:
    """Where a group's members come from. Empty lists are skipped."""

    schedules: list[Selector] = field(default_factory=list)
    services: list[Selector] = field(default_factory=list)
    teams: list[Selector] = field(default_factory=list)
    users: list[Selector] = field(default_factory=list)
    slack: list[Selector] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.schedules or self.services or self.teams or self.users or self.slack)


@dataclass(frozen=True)
class Group:
    """One sync rule: a set of roster sources pushed to one or more usergroups."""

    name: str
    usergroups: list[Selector]
    members: RosterSources = field(default_factory=RosterSources)
    exclude: list[Selector] = field(default_factory=list)
    schedule: str | None = None


@dataclass(frozen=True)
class Settings:
    """
    Everything the orchestrator needs, passed explicitly at construction.
    API keys are filled in by the CLI from the environment; nothing below
    the CLI reads os.environ for them.
    """

    groups: list[Group] = field(default_factory=list)
    pagerduty_api_key: str = field(default="", repr=False)
    slack_api_key: str = field(default="", repr=False)
    timezone: str = "UTC"
    max_concurrency: int | None = None
    executor_workers: int = 10
    source: str | None = None

    def group(self, name: str) -> Group:
        for g in self.groups:
            if g.name == name:
                return g
        raise KeyError(name)


# ---- Loading ----------------------------------------------------------------


def resolve_config_path(path: str | None = None) -> str:
    """
    Resolution order:
      1) explicit ``path``
      2) $SLACKDUTY_CONFIG
      3) ~/.slackduty/config.yml
    """
    raw = path or os.environ.get(CONFIG_ENV) or DEFAULT_CONFIG_PATH
    return os.path.expanduser(raw)


def load_config(path: str | None = None, **overrides: Any) -> Settings:
    """
    Load and parse the config file into Settings.

    Selector strings are parsed here, so format errors surface at load time
    with the group and field in the message. Per-context kind checks are
    done by validate(). ``overrides`` (e.g. API keys) win over file values.
    """
    resolved = resolve_config_path(path)
    raw = _read_any(resolved)
    return from_dict(raw, source=resolved, **overrides)


def from_dict(raw: Mapping[str, Any], *, source: str | None = None, **overrides: Any) -> Settings:
    if not isinstance(raw, Mapping):
        raise ConfigError("Config must be a mapping/object.")

    groups_raw = raw.get("groups")
    if groups_raw is None:
        groups_raw = []
    if not isinstance(groups_raw, list):
        raise ConfigError("'groups' must be a list.")

    groups = [_parse_group(g, idx) for idx, g in enumerate(groups_raw)]

    tz = raw.get("timezone")
    if tz is not None and not isinstance(tz, str):
        raise ConfigError("'timezone' must be a string if provided.")

    values: dict[str, Any] = {
        "groups": groups,
        "timezone": (tz or "").strip() or os.environ.get("TZ", "UTC"),
        "max_concurrency": _optional_int(raw.get("max_concurrency"), "max_concurrency"),
        "executor_workers": _optional_int(raw.get("executor_workers"), "executor_workers") or 10,
        "source": source,
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return Settings(**values)


def validate(settings: Settings, *, recurring: bool = False) -> None:
    """
    Check every selector against the kinds its context accepts, that group
    names are unique, and (for recurring mode) that every group has a
    schedule the scheduler can parse. Raises ConfigError on the first problem.
    """
    from .scheduler import build_trigger  # local import; scheduler pulls in APScheduler

    seen: set[str] = set()
    for group in settings.groups:
        if group.name in seen:
            raise ConfigError(f"Duplicate group name '{group.name}'.")
        seen.add(group.name)

        if not group.usergroups:
            raise ConfigError(f"Group '{group.name}': 'usergroups' must list at least one usergroup.")
        if group.members.is_empty():
            raise ConfigError(f"Group '{group.name}': 'members' must name at least one roster source.")

        checks = (
            ("usergroups", group.usergroups, USERGROUP_KINDS),
            ("members.pagerduty.schedules", group.members.schedules, SCHEDULE_KINDS),
            ("members.pagerduty.services", group.members.services, SERVICE_KINDS),
            ("members.pagerduty.teams", group.members.teams, TEAM_KINDS),
            ("members.pagerduty.users", group.members.users, PAGERDUTY_USER_KINDS),
            ("members.slack", group.members.slack, SLACK_USER_KINDS),
            ("exclude", group.exclude, EXCLUDE_KINDS),
        )
        for field_name, selectors, allowed in checks:
            for sel in selectors:
                try:
                    sel.validate_kind(allowed, field_name)
                except SelectorError as e:
                    raise ConfigError(f"Group '{group.name}': {e}") from e

        if recurring:
            if not group.schedule:
                raise ConfigError(f"Group '{group.name}': 'schedule' is required unless run with an external trigger.")
            try:
                build_trigger(group.schedule, settings.timezone)
            except ValueError as e:
                raise ConfigError(f"Group '{group.name}': invalid schedule {group.schedule!r}: {e}") from e

    if settings.max_concurrency is not None and settings.max_concurrency < 1:
        raise ConfigError("'max_concurrency' must be >= 1 when provided.")
    if settings.executor_workers < 1:
        raise ConfigError("'executor_workers' must be >= 1.")


def api_keys_from_env(environ: Mapping[str, str] | None = None) -> tuple[str, str]:
    """Read (pagerduty_key, slack_key); raise ConfigError when either is missing."""
    env = os.environ if environ is None else environ
    pd_key = (env.get(PAGERDUTY_KEY_ENV) or "").strip()
    if not pd_key:
        raise ConfigError(f"{PAGERDUTY_KEY_ENV} is not configured")
    slack_key = (env.get(SLACK_KEY_ENV) or "").strip()
    if not slack_key:
        raise ConfigError(f"{SLACK_KEY_ENV} is not configured")
    return pd_key, slack_key


# ---- Helpers ----------------------------------------------------------------


def _parse_group(raw: Any, idx: int) -> Group:
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Group at index {idx} must be an object/dict.")

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        name = f"group_{idx}"
    name = name.strip()

    schedule = raw.get("schedule")
    if schedule is not None and not isinstance(schedule, str):
        raise ConfigError(f"Group '{name}': 'schedule' must be a string if provided.")

    members_raw = raw.get("members") or {}
    if not isinstance(members_raw, Mapping):
        raise ConfigError(f"Group '{name}': 'members' must be an object.")
    pd_raw = members_raw.get("pagerduty") or {}
    if not isinstance(pd_raw, Mapping):
        raise ConfigError(f"Group '{name}': 'members.pagerduty' must be an object.")

    members = RosterSources(
        schedules=_selectors(pd_raw.get("schedules"), name, "members.pagerduty.schedules"),
        services=_selectors(pd_raw.get("services"), name, "members.pagerduty.services"),
        teams=_selectors(pd_raw.get("teams"), name, "members.pagerduty.teams"),
        users=_selectors(pd_raw.get("users"), name, "members.pagerduty.users"),
        slack=_selectors(members_raw.get("slack"), name, "members.slack"),
    )

    return Group(
        name=name,
        usergroups=_selectors(raw.get("usergroups"), name, "usergroups"),
        members=members,
        exclude=_selectors(raw.get("exclude"), name, "exclude"),
        schedule=(schedule or "").strip() or None,
    )


def _selectors(value: Any, group: str, field_name: str) -> list[Selector]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ConfigError(f"Group '{group}': '{field_name}' must be a string or list of strings.")
    out: list[Selector] = []
    for i, item in enumerate(value):
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"Group '{group}': {field_name}[{i}] must be a non-empty string.")
        try:
            out.append(parse(item.strip()))
        except SelectorError as e:
            raise ConfigError(f"Group '{group}': {field_name}[{i}]: {e}") from e
    return out


def _optional_int(value: Any, field_name: str) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"'{field_name}' must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field_name}' must be an integer.") from err


def _read_any(path: str) -> dict[str, Any]:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".json"):
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    else:
        # .yml/.yaml and anything else: YAML is a superset of JSON
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Top-level config in {path} must be a mapping/object.")
    logger.debug("Loaded config from %s (%d group(s))", path, len(data.get("groups") or []))
    return data


def usergroup_handles(group: Group) -> list[str]:
    return [s.value for s in group.usergroups if s.kind is SelectorKind.HANDLE]
