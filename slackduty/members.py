# slackduty/members.py
from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass

from .errors import UnsupportedKindError
from .selector import EXCLUDE_KINDS, Selector, SelectorKind


@dataclass(frozen=True)
class Member:
    """
    One resolved person. ``id`` is the Slack user id and defines identity;
    ``email`` is the address the person was bridged through (may be empty
    when the config named a Slack id directly).
    """

    id: str
    email: str = ""


class MembershipSet:
    """
    Thread-safe, insertion-ordered collection of members, unique on ``id``.

    Built empty for one aggregation, filled concurrently via add(), then read.
    """

    def __init__(self, members: Iterable[Member] = ()) -> None:
        self._lock = threading.Lock()
        self._members: list[Member] = []
        for m in members:
            self.add(m)

    def add(self, member: Member) -> bool:
        """Append ``member`` unless one with the same id is present. Returns True if appended."""
        with self._lock:
            for existing in self._members:
                if existing.id == member.id:
                    return False
            self._members.append(member)
            return True

    @property
    def members(self) -> tuple[Member, ...]:
        with self._lock:
            return tuple(self._members)

    def ids(self) -> list[str]:
        return [m.id for m in self.members]

    def __len__(self) -> int:
        with self._lock:
            return len(self._members)

    def __iter__(self) -> Iterator[Member]:
        return iter(self.members)

    def __contains__(self, item: object) -> bool:
        if isinstance(item, Member):
            item = item.id
        return any(m.id == item for m in self.members)

    def __repr__(self) -> str:
        return f"MembershipSet({list(self.members)!r})"


def filter_members(members: MembershipSet, exclude: Sequence[Selector]) -> MembershipSet:
    """
    Drop every member matching an exclude selector (``id:`` or ``email:``).

    With no excludes the input set is returned as-is. Kinds are checked up
    front so an unsupported selector filters nothing.
    """
    if not exclude:
        return members

    for sel in exclude:
        if sel.kind not in EXCLUDE_KINDS:
            raise UnsupportedKindError(
                sel.kind.value,
                sel.value,
                allowed=tuple(sorted(k.value for k in EXCLUDE_KINDS)),
                context="exclude",
            )

    excluded_ids = {s.value for s in exclude if s.kind is SelectorKind.ID}
    excluded_emails = {s.value for s in exclude if s.kind is SelectorKind.EMAIL}

    return MembershipSet(
        m for m in members if m.id not in excluded_ids and not (m.email and m.email in excluded_emails)
    )


def flatten_members(members: Iterable[Member]) -> str:
    """Comma-joined ids in order; the format usergroups.users.update expects."""
    return ",".join(m.id for m in members)
