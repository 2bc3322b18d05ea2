"""
League match lists.

Each league's SMC match list is fetched once per TTL window through the same
single-flight cache the resolver uses, then every match is split into live,
upcoming and finished with the resolver's lifecycle rules. A league that fails
is listed in ``missing``; the other leagues still render.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional, Sequence

from shared.config import Settings
from shared.models.domain import ExternalMatchRecord, MatchList
from shared.models.enums import LifecycleCategory, Venue
from shared.utils.logging import get_logger

from builder.branches import gather_branches
from ingest.providers.smc import SMCSource
from resolver.cache import TieredCache
from resolver.service import external_category

logger = get_logger(__name__)


def _unique(records: Iterable[ExternalMatchRecord]) -> list[ExternalMatchRecord]:
    by_id: dict[str, ExternalMatchRecord] = {}
    for record in records:
        by_id[record.match_id] = record
    return list(by_id.values())


def split_matches(
    records: Iterable[ExternalMatchRecord],
    now: datetime,
    finished_after: timedelta = timedelta(hours=3),
) -> MatchList:
    """
    Split by lifecycle. Anything neither live nor finished is upcoming.
    Upcoming is soonest kickoff first, finished is most recent first, and
    matches without a kickoff sort last in both.
    """
    live: list[ExternalMatchRecord] = []
    upcoming: list[ExternalMatchRecord] = []
    finished: list[ExternalMatchRecord] = []
    for record in records:
        category = external_category(record, now, finished_after)
        if category == LifecycleCategory.LIVE:
            live.append(record)
        elif category == LifecycleCategory.FINISHED:
            finished.append(record)
        else:
            upcoming.append(record)

    upcoming.sort(key=lambda r: (r.kickoff is None, r.kickoff or now))
    finished.sort(key=lambda r: (r.kickoff is not None, r.kickoff or now), reverse=True)
    return MatchList(live=live, upcoming=upcoming, finished=finished, all=live + upcoming + finished)


class MatchListBuilder:
    def __init__(
        self,
        settings: Settings,
        external: SMCSource,
        now_fn: Callable[[], datetime] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._external = external
        self._finished_after = timedelta(hours=settings.finished_after_kickoff_h)
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        # Every list is kept for the TTL regardless of what it contains.
        self._cache: TieredCache[list[ExternalMatchRecord]] = TieredCache(
            classify_fn=lambda _: LifecycleCategory.UPCOMING,
            upcoming_ttl_s=settings.match_list_ttl_s,
            clock=clock,
        )

    async def _fetch_league(
        self,
        league_id: str,
        team_id: Optional[str],
        venue: Optional[Venue],
    ) -> Optional[list[ExternalMatchRecord]]:
        if team_id is None:
            return await self._external.list_matches(league_id)
        if venue == Venue.HOME:
            return await self._external.list_matches(league_id, home_team_id=team_id)
        if venue == Venue.AWAY:
            return await self._external.list_matches(league_id, away_team_id=team_id)
        home = await self._external.list_matches(league_id, home_team_id=team_id)
        away = await self._external.list_matches(league_id, away_team_id=team_id)
        return _unique([*(home or []), *(away or [])])

    async def _league(
        self,
        league_id: str,
        team_id: Optional[str],
        venue: Optional[Venue],
    ) -> list[ExternalMatchRecord]:
        key = (league_id, f"{team_id or '*'}:{venue.value if venue else '*'}")
        records = await self._cache.get_or_fetch(key, lambda: self._fetch_league(league_id, team_id, venue))
        return records or []

    async def build(
        self,
        league_ids: Sequence[str],
        team_id: Optional[str] = None,
        venue: Optional[Venue] = None,
    ) -> MatchList:
        """All matches of ``league_ids``, deduplicated by match id and split by lifecycle."""
        values, missing = await gather_branches(
            "matches",
            {league_id: self._league(league_id, team_id, venue) for league_id in dict.fromkeys(league_ids)},
            team_id=team_id,
        )
        records = _unique(r for league in values.values() if league for r in league)
        result = split_matches(records, self._now(), self._finished_after)
        if missing:
            logger.info("match_list_partial", missing=missing, leagues=len(values))
        return result.model_copy(update={"missing": missing})

    async def reset(self) -> None:
        await self._cache.reset()

    async def close(self) -> None:
        await self._cache.close()
