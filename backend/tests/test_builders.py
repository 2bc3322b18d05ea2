"""
Unit tests for the page builders: live snapshot and team page branch
isolation, live id selection, category promotion and league match lists.

Run: pytest backend/tests/test_builders.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.config import Settings
from shared.errors import MalformedRecord, UpstreamUnavailable
from shared.models.domain import (
    ExternalMatchRecord,
    GoalDetail,
    LiveStats,
    NewsItem,
    PhaseUpdate,
    Resolution,
    StandingEntry,
    TimelineEvent,
    UnifiedMatch,
)
from shared.models.enums import LifecycleCategory, ResolutionSource, Venue
from builder.branches import gather_branches
from builder.live import LiveSnapshotBuilder, live_ids, snapshot_category
from builder.match_list import MatchListBuilder, split_matches
from builder.team_page import TeamPageBuilder
from resolver.scope import RequestScope
from resolver.service import MatchRequest

NOW = datetime(2025, 6, 1, 15, 0, tzinfo=timezone.utc)


def _resolution(
    source: ResolutionSource = ResolutionSource.MERGED,
    category: LifecycleCategory = LifecycleCategory.LIVE,
    **match_fields: object,
) -> Resolution:
    fields: dict[str, object] = {
        "match_id": "M1",
        "league_id": "L1",
        "external_match_id": "M1",
        "feed_match_id": "9001",
        "league_name": "Superettan",
        "season": "2025",
        "status": "In progress",
    }
    fields.update(match_fields)
    return Resolution(match=UnifiedMatch(**fields), source=source, category=category)


@pytest.fixture
def external() -> MagicMock:
    source = MagicMock()
    source.get_events = AsyncMock(return_value=[TimelineEvent(timestamp="T1", event_type="goal", minute=12)])
    source.get_goal_events = AsyncMock(return_value=[GoalDetail(timestamp="T1", player_id="7")])
    source.get_live_stats = AsyncMock(return_value=LiveStats(home_score=1, match_phase="first-half"))
    source.get_match_phase = AsyncMock(return_value=PhaseUpdate(phase="first-half"))
    return source


@pytest.fixture
def feed() -> MagicMock:
    source = MagicMock()
    source.get_live_report = AsyncMock(return_value=[])
    return source


def _builder(resolution: Resolution | None, external: MagicMock, feed: MagicMock) -> LiveSnapshotBuilder:
    resolver = MagicMock()
    resolver.resolve = AsyncMock(return_value=resolution)
    return LiveSnapshotBuilder(resolver, external, feed, now_fn=lambda: NOW)


# ── gather_branches ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_branch_source_error_is_isolated() -> None:
    async def ok() -> int:
        return 1

    async def broken() -> int:
        raise UpstreamUnavailable("smc", "timeout")

    values, missing = await gather_branches("test", {"a": ok(), "b": broken()})

    assert values == {"a": 1, "b": None}
    assert missing == ["b"]


@pytest.mark.asyncio
async def test_branch_programming_error_propagates() -> None:
    async def bug() -> int:
        raise KeyError("oops")

    with pytest.raises(KeyError):
        await gather_branches("test", {"a": bug()})


# ── live_ids / snapshot_category ────────────────────────────────────────

def test_live_ids_for_merged_match() -> None:
    assert live_ids(_resolution()) == ("L1", "M1")


def test_no_live_ids_for_custom_or_cms_only() -> None:
    assert live_ids(_resolution(ResolutionSource.CUSTOM)) is None
    assert live_ids(_resolution(ResolutionSource.CMS_ONLY)) is None
    assert live_ids(_resolution(league_id=None)) is None


def test_live_phase_promotes_upcoming_to_live() -> None:
    resolution = _resolution(category=LifecycleCategory.UPCOMING, status="Scheduled")
    assert snapshot_category(resolution, LiveStats(match_phase="first-half"), None) == LifecycleCategory.LIVE
    assert snapshot_category(resolution, None, PhaseUpdate(phase="half-time")) == LifecycleCategory.LIVE
    assert snapshot_category(resolution, LiveStats(match_phase="not-started"), None) == LifecycleCategory.UPCOMING


def test_finished_is_never_demoted() -> None:
    resolution = _resolution(category=LifecycleCategory.FINISHED, status="Over")
    assert snapshot_category(resolution, LiveStats(match_phase="second-half"), None) == LifecycleCategory.FINISHED


# ── LiveSnapshotBuilder ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_snapshot_merges_all_branches(external: MagicMock, feed: MagicMock) -> None:
    builder = _builder(_resolution(), external, feed)

    snapshot = await builder.build(MatchRequest.for_pair("L1", "M1"), RequestScope())

    assert snapshot is not None
    assert snapshot.missing == []
    assert snapshot.category == LifecycleCategory.LIVE
    assert snapshot.fetched_at == NOW
    assert len(snapshot.timeline) == 1
    assert snapshot.timeline[0].clock == "12m"
    assert snapshot.timeline[0].event.goal is not None
    assert snapshot.live_stats is not None and snapshot.live_stats.home_score == 1


@pytest.mark.asyncio
async def test_failed_live_branch_is_listed_as_missing(external: MagicMock, feed: MagicMock) -> None:
    external.get_goal_events.side_effect = UpstreamUnavailable("smc", "timeout")
    builder = _builder(_resolution(), external, feed)

    snapshot = await builder.build(MatchRequest.for_pair("L1", "M1"), RequestScope())

    assert snapshot is not None
    assert snapshot.missing == ["goals"]
    assert len(snapshot.timeline) == 1
    assert snapshot.timeline[0].event.goal is None
    assert snapshot.phase is not None


@pytest.mark.asyncio
async def test_custom_game_snapshot_makes_no_live_calls(external: MagicMock, feed: MagicMock) -> None:
    resolution = _resolution(ResolutionSource.CUSTOM, LifecycleCategory.UPCOMING, status="Scheduled")
    builder = _builder(resolution, external, feed)

    snapshot = await builder.build(MatchRequest.for_cms("post-1"), RequestScope())

    assert snapshot is not None
    assert snapshot.timeline == []
    assert snapshot.category == LifecycleCategory.UPCOMING
    assert external.get_events.await_count == 0
    assert external.get_live_stats.await_count == 0


@pytest.mark.asyncio
async def test_unresolvable_match_has_no_snapshot(external: MagicMock, feed: MagicMock) -> None:
    builder = _builder(None, external, feed)
    assert await builder.build(MatchRequest.for_pair("L1", "M404"), RequestScope()) is None


@pytest.mark.asyncio
async def test_live_report_failure_degrades_to_none(external: MagicMock, feed: MagicMock) -> None:
    feed.get_live_report.side_effect = MalformedRecord("sportomedia", "match payload is not an object")
    builder = _builder(_resolution(), external, feed)

    assert await builder.live_report(MatchRequest.for_pair("L1", "M1"), RequestScope()) is None
    feed.get_live_report.assert_awaited_once_with("Superettan", "2025", "9001")


@pytest.mark.asyncio
async def test_live_report_needs_feed_id(external: MagicMock, feed: MagicMock) -> None:
    builder = _builder(_resolution(feed_match_id=None), external, feed)

    assert await builder.report_for(_resolution(feed_match_id=None), RequestScope()) is None
    assert feed.get_live_report.await_count == 0


# ── TeamPageBuilder ─────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_team_page_survives_one_failing_source(settings: Settings) -> None:
    cms = MagicMock()
    cms.list_news = AsyncMock(return_value=[NewsItem(id="n1", title="Seger", slug="seger")])
    feed = MagicMock()
    feed.get_squad = AsyncMock(return_value=[])
    feed.get_standings = AsyncMock(
        return_value=[StandingEntry(team_id="t1", position=1, display_name="ÖSK")]
    )
    feed.get_team_stats = AsyncMock(side_effect=UpstreamUnavailable("sportomedia", "server error 503", 503))

    page = await TeamPageBuilder(settings, cms, feed).build()

    assert page.team == settings.team_squad_code
    assert page.missing == ["team_stats"]
    assert page.team_stats is None
    assert page.news is not None and page.news[0].title == "Seger"
    assert page.squad == []
    assert page.standings is not None and len(page.standings) == 1
    feed.get_squad.assert_awaited_once_with(settings.team_squad_code, settings.team_season)
    feed.get_team_stats.assert_awaited_once_with(
        settings.team_league, settings.team_season, settings.team_stats_id
    )


@pytest.mark.asyncio
async def test_team_page_for_explicit_team(settings: Settings) -> None:
    cms = MagicMock()
    cms.list_news = AsyncMock(return_value=[])
    feed = MagicMock()
    feed.get_squad = AsyncMock(return_value=[])
    feed.get_standings = AsyncMock(return_value=[])
    feed.get_team_stats = AsyncMock(return_value=None)

    page = await TeamPageBuilder(settings, cms, feed).build("AFC")

    assert page.team == "AFC"
    assert page.missing == []
    feed.get_squad.assert_awaited_once_with("AFC", settings.team_season)


# ── Match lists ─────────────────────────────────────────────────────────

def _record(match_id: str, status: str, hours_from_now: float | None = None) -> ExternalMatchRecord:
    kickoff = None if hours_from_now is None else NOW + timedelta(hours=hours_from_now)
    return ExternalMatchRecord(match_id=match_id, league_id="L1", status=status, kickoff=kickoff)


def test_split_matches_orders_each_bucket() -> None:
    records = [
        _record("old", "Over", -72),
        _record("next-week", "Scheduled", 168),
        _record("now", "In progress", -0.5),
        _record("recent", "Over", -24),
        _record("tomorrow", "Scheduled", 24),
        _record("undated", "Scheduled"),
        _record("postponed", "Postponed", -48),
    ]

    result = split_matches(records, NOW)

    assert [r.match_id for r in result.live] == ["now"]
    assert [r.match_id for r in result.upcoming] == ["postponed", "tomorrow", "next-week", "undated"]
    assert [r.match_id for r in result.finished] == ["recent", "old"]
    assert [r.match_id for r in result.all] == [
        "now", "postponed", "tomorrow", "next-week", "undated", "recent", "old",
    ]


def test_split_matches_infers_unknown_status_from_kickoff() -> None:
    result = split_matches([_record("stale", "", -10), _record("on", "", -1)], NOW)

    assert [r.match_id for r in result.finished] == ["stale"]
    assert [r.match_id for r in result.live] == ["on"]


@pytest.fixture
def smc_lists() -> MagicMock:
    source = MagicMock()
    source.list_matches = AsyncMock(return_value=[_record("m1", "Over", -24), _record("m2", "Scheduled", 24)])
    return source


@pytest.mark.asyncio
async def test_match_list_is_cached_per_league(settings: Settings, smc_lists: MagicMock) -> None:
    clock = [1_000.0]
    builder = MatchListBuilder(settings, smc_lists, now_fn=lambda: NOW, clock=lambda: clock[0])

    first = await builder.build(["L1"])
    await builder.build(["L1", "L1"])
    assert smc_lists.list_matches.await_count == 1

    clock[0] += settings.match_list_ttl_s + 1
    await builder.build(["L1"])
    assert smc_lists.list_matches.await_count == 2

    assert [r.match_id for r in first.upcoming] == ["m2"]
    assert [r.match_id for r in first.finished] == ["m1"]
    assert first.missing == []


@pytest.mark.asyncio
async def test_failing_league_is_listed_as_missing(settings: Settings, smc_lists: MagicMock) -> None:
    async def list_matches(league_id: str, **filters: str) -> list[ExternalMatchRecord] | None:
        if league_id == "L2":
            raise UpstreamUnavailable("smc", "timeout")
        if league_id == "L3":
            return None
        return [_record("m1", "In progress", -1)]

    smc_lists.list_matches = AsyncMock(side_effect=list_matches)
    builder = MatchListBuilder(settings, smc_lists, now_fn=lambda: NOW)

    result = await builder.build(["L1", "L2", "L3"])

    assert result.missing == ["L2"]
    assert [r.match_id for r in result.all] == ["m1"]


@pytest.mark.asyncio
async def test_team_filter_without_venue_merges_home_and_away(
    settings: Settings,
    smc_lists: MagicMock,
) -> None:
    smc_lists.list_matches = AsyncMock(
        side_effect=[
            [_record("h1", "Scheduled", 24), _record("both", "Over", -24)],
            [_record("both", "Over", -24), _record("a1", "Scheduled", 48)],
        ]
    )
    builder = MatchListBuilder(settings, smc_lists, now_fn=lambda: NOW)

    result = await builder.build(["L1"], team_id="19")

    assert [r.match_id for r in result.all] == ["h1", "a1", "both"]
    smc_lists.list_matches.assert_any_await("L1", home_team_id="19")
    smc_lists.list_matches.assert_any_await("L1", away_team_id="19")


@pytest.mark.asyncio
async def test_team_filter_with_venue_uses_one_side(settings: Settings, smc_lists: MagicMock) -> None:
    builder = MatchListBuilder(settings, smc_lists, now_fn=lambda: NOW)

    await builder.build(["L1"], team_id="19", venue=Venue.AWAY)

    smc_lists.list_matches.assert_awaited_once_with("L1", away_team_id="19")
