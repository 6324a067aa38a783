# slackduty/aggregator.py
"""
Fan-out/fan-in across a group's roster sources.

One task per non-empty category (schedules, services, teams, users, slack),
and inside each category one task per selector. Every resolved member lands
in a single MembershipSet, which does the dedup.
"""

from __future__ import annotations

import logging
import time

from .config_schema import RosterSources
from .fanout import fan_out
from .members import MembershipSet
from .resolver import RosterResolver, SourceCategory
from .selector import Selector

LOG = logging.getLogger(__name__)


class Aggregator:
    def __init__(self, resolver: RosterResolver, *, max_workers: int | None = None) -> None:
        self.resolver = resolver
        self.max_workers = max_workers

    def aggregate(self, sources: RosterSources) -> MembershipSet:
        """
        Resolve every configured source into one deduplicated MembershipSet.

        All tasks run to completion; if any failed, the first error observed
        is raised and the partially filled set is discarded.
        """
        members = MembershipSet()
        by_category = _non_empty_categories(sources)
        if not by_category:
            return members

        started = time.perf_counter()

        def _run_category(item: tuple[SourceCategory, list[Selector]]) -> None:
            category, selectors = item
            try:
                fan_out(
                    lambda sel: self._resolve_into(members, category, sel),
                    selectors,
                    max_workers=self.max_workers,
                    label=category.value,
                )
            except Exception as e:
                LOG.error("Failed to get %s members: %s", category.value, e)
                raise

        fan_out(_run_category, list(by_category.items()), label="categories")

        LOG.debug(
            "Aggregated %d member(s) from %s in %.3fs",
            len(members),
            ", ".join(c.value for c in by_category),
            time.perf_counter() - started,
        )
        return members

    def _resolve_into(self, members: MembershipSet, category: SourceCategory, selector: Selector) -> int:
        added = 0
        for member in self.resolver.resolve(category, selector):
            if members.add(member):
                added += 1
        LOG.debug("%s %s -> %d new member(s)", category.value, selector, added)
        return added


def _non_empty_categories(sources: RosterSources) -> dict[SourceCategory, list[Selector]]:
    pairs = (
        (SourceCategory.SCHEDULE, sources.schedules),
        (SourceCategory.SERVICE, sources.services),
        (SourceCategory.TEAM, sources.teams),
        (SourceCategory.USER, sources.users),
        (SourceCategory.SLACK, sources.slack),
    )
    return {category: list(selectors) for category, selectors in pairs if selectors}
