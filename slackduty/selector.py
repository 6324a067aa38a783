# slackduty/selector.py
"""
Selectors are the '<kind>:<value>' strings used everywhere in the config to
point at a roster entity, e.g. ``name:backend-primary`` or ``email:a@x.com``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from .errors import FormatError, UnsupportedKindError

SEPARATOR = ":"


class SelectorKind(str, Enum):
    ID = "id"
    NAME = "name"
    EMAIL = "email"
    HANDLE = "handle"


# Kinds accepted per context
SCHEDULE_KINDS = frozenset({SelectorKind.ID, SelectorKind.NAME})
SERVICE_KINDS = frozenset({SelectorKind.ID, SelectorKind.NAME})
TEAM_KINDS = frozenset({SelectorKind.ID, SelectorKind.NAME})
PAGERDUTY_USER_KINDS = frozenset({SelectorKind.ID, SelectorKind.NAME, SelectorKind.EMAIL})
SLACK_USER_KINDS = frozenset({SelectorKind.ID, SelectorKind.EMAIL})
USERGROUP_KINDS = frozenset({SelectorKind.ID, SelectorKind.HANDLE})
EXCLUDE_KINDS = frozenset({SelectorKind.ID, SelectorKind.EMAIL})


@dataclass(frozen=True)
class Selector:
    kind: SelectorKind
    value: str

    def __str__(self) -> str:
        return f"{self.kind.value}{SEPARATOR}{self.value}"

    def validate_kind(self, allowed: Iterable[SelectorKind], context: str = "") -> Selector:
        """Raise UnsupportedKindError unless ``kind`` is in ``allowed``; returns self."""
        allowed = frozenset(allowed)
        if self.kind not in allowed:
            raise UnsupportedKindError(
                self.kind.value,
                self.value,
                allowed=tuple(sorted(k.value for k in allowed)),
                context=context,
            )
        return self


def parse(raw: str) -> Selector:
    """
    Parse ``'<kind>:<value>'``.

    Exactly one separator is allowed, so ``'idonly'`` and ``'a:b:c'`` both
    fail with FormatError. The kind is case-insensitive; the value is kept
    verbatim.
    """
    if not isinstance(raw, str):
        raise FormatError(repr(raw), "must be a string")
    parts = raw.split(SEPARATOR)
    if len(parts) != 2:
        raise FormatError(raw)
    kind_raw, value = parts[0].strip().lower(), parts[1]
    if not kind_raw or not value:
        raise FormatError(raw, "kind and value must both be non-empty")
    try:
        kind = SelectorKind(kind_raw)
    except ValueError as err:
        raise UnsupportedKindError(kind_raw, value, allowed=tuple(k.value for k in SelectorKind)) from err
    return Selector(kind=kind, value=value)


def parse_all(raws: Iterable[str]) -> list[Selector]:
    return [parse(r) for r in raws]
