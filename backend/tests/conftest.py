"""Shared fixtures: deterministic settings and sample source records."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from shared.config import Settings
from shared.models.domain import CMSMatchRecord, ExternalMatchRecord, LineupRef, Player


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        cms_endpoint="https://cms.test/graphql",
        cms_store_id="store-1",
        smc_base_url="https://smc.test",
        smc_secret="secret",
        sportomedia_base_url="https://feed.test/v1",
        sportomedia_api_key="key",
        provider_max_retries=0,
        poll_jitter_factor=0.0,
        metrics_enabled=False,
    )


@pytest.fixture
def cms_record() -> CMSMatchRecord:
    return CMSMatchRecord(
        cms_id="post-1",
        cms_slug="oif-vs-afc",
        match_id="M1",
        external_match_id="M1",
        league_id="L1",
        league_name="Superettan",
        season="2025",
        arena="Behrn Arena",
        kickoff=datetime(2025, 6, 1, 13, 0, tzinfo=timezone.utc),
        status="Scheduled",
        home_team="Örebro SK",
        away_team="AFC Eskilstuna",
        home_team_logo="https://cdn.test/osk.png",
        goals_home=0,
        goals_away=0,
        ticket_url="https://tickets.test/cms",
        ticket_text="Köp biljett",
        sold_tickets=4100,
    )


@pytest.fixture
def external_record() -> ExternalMatchRecord:
    return ExternalMatchRecord(
        match_id="M1",
        feed_match_id="9001",
        league_id="L1",
        league_name="Superettan",
        season="2025",
        arena="Behrn Arena",
        kickoff=datetime(2025, 6, 1, 13, 0, tzinfo=timezone.utc),
        status="In progress",
        home_team="Örebro SK",
        away_team="AFC Eskilstuna",
        home_team_id="19",
        away_team_id="42",
        goals_home=2,
        goals_away=1,
        home_lineup=LineupRef(
            formation="4-4-2",
            players=[Player(player_id="7", name="Jake Larsson", shirt_number=7)],
        ),
        away_lineup=LineupRef(
            formation="4-3-3",
            players=[Player(player_id="10", name="Ahmed Bonnah", shirt_number=10)],
        ),
        ticket_url="https://tickets.test/external",
    )
