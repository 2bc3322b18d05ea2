"""
Team page builder.
News, squad, standings and season statistics are independent of each other
and are fetched in parallel; one failing source never blanks the others.
"""
from __future__ import annotations

from shared.config import Settings
from shared.models.domain import TeamPage
from shared.utils.logging import get_logger

from builder.branches import gather_branches
from ingest.providers.frontspace import FrontspaceSource
from ingest.providers.sportomedia import SportomediaSource

logger = get_logger(__name__)


class TeamPageBuilder:
    def __init__(self, settings: Settings, cms: FrontspaceSource, feed: SportomediaSource) -> None:
        self._settings = settings
        self._cms = cms
        self._feed = feed

    async def build(self, team: str | None = None) -> TeamPage:
        s = self._settings
        team = team or s.team_squad_code
        values, missing = await gather_branches(
            "team",
            {
                "news": self._cms.list_news(s.team_news_limit),
                "squad": self._feed.get_squad(team, s.team_season),
                "standings": self._feed.get_standings(s.team_league, s.team_season),
                "team_stats": self._feed.get_team_stats(s.team_league, s.team_season, s.team_stats_id),
            },
            team=team,
        )
        if missing:
            logger.info("team_page_partial", team=team, missing=missing)
        return TeamPage(team=team, missing=missing, **values)
