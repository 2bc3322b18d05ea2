"""
Live snapshot builder.
Resolves a match, then fetches the live feeds for it in parallel and merges
them into one presentation-ready snapshot. This is the poll controller's tick.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional

from shared.errors import SourceError
from shared.models.domain import LiveReportEvent, LiveSnapshot, LiveStats, PhaseUpdate, Resolution
from shared.models.enums import LifecycleCategory, ResolutionSource
from shared.utils.logging import get_logger
from shared.utils.metrics import BRANCH_FAILURES

from builder.branches import gather_branches
from builder.timeline.merger import build_timeline
from ingest.providers.smc import SMCSource
from ingest.providers.sportomedia import SportomediaSource
from resolver.lifecycle import is_match_live
from resolver.scope import RequestScope
from resolver.service import MatchRequest, MatchResolver

logger = get_logger(__name__)


def live_ids(resolution: Resolution) -> Optional[tuple[str, str]]:
    """External (league id, match id) to poll, or None for custom and CMS-only matches."""
    if resolution.source in (ResolutionSource.CUSTOM, ResolutionSource.CMS_ONLY):
        return None
    match = resolution.match
    if not match.league_id or not match.external_match_id:
        return None
    return match.league_id, match.external_match_id


def snapshot_category(
    resolution: Resolution,
    live_stats: Optional[LiveStats],
    phase: Optional[PhaseUpdate],
) -> LifecycleCategory:
    """A live-stats or phase feed that shows play in progress promotes the match to live."""
    if resolution.category == LifecycleCategory.FINISHED:
        return resolution.category
    live_phase = live_stats.match_phase if live_stats is not None else None
    if live_phase is None and phase is not None:
        live_phase = phase.phase
    if is_match_live(resolution.match.status, live_phase):
        return LifecycleCategory.LIVE
    return resolution.category


class LiveSnapshotBuilder:
    def __init__(
        self,
        resolver: MatchResolver,
        external: SMCSource,
        feed: SportomediaSource,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._resolver = resolver
        self._external = external
        self._feed = feed
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    async def build(self, request: MatchRequest, scope: RequestScope) -> Optional[LiveSnapshot]:
        """
        Resolve the match and attach its timeline, live stats and phase.

        Returns None when the match is not found. Each live branch fails on
        its own: a failed branch leaves its field empty and is listed in
        ``missing`` while the rest of the snapshot is still returned.
        """
        resolution = await self._resolver.resolve(request, scope)
        if resolution is None:
            return None

        ids = live_ids(resolution)
        if ids is None:
            return LiveSnapshot(
                resolution=resolution,
                category=snapshot_category(resolution, None, None),
                missing=list(resolution.missing),
                fetched_at=self._now(),
            )

        league_id, match_id = ids
        values, failed = await gather_branches(
            "live",
            {
                "timeline": self._external.get_events(league_id, match_id),
                "goals": self._external.get_goal_events(league_id, match_id),
                "live_stats": self._external.get_live_stats(league_id, match_id),
                "phase": self._external.get_match_phase(league_id, match_id),
            },
            match_id=match_id,
            request_id=scope.request_id,
        )

        match = resolution.match
        timeline = build_timeline(
            values["timeline"] or [],
            values["goals"] or [],
            match.lineup_players,
        )
        live_stats: Optional[LiveStats] = values["live_stats"]
        phase: Optional[PhaseUpdate] = values["phase"]
        return LiveSnapshot(
            resolution=resolution,
            timeline=timeline,
            live_stats=live_stats,
            phase=phase,
            category=snapshot_category(resolution, live_stats, phase),
            missing=list(resolution.missing) + failed,
            fetched_at=self._now(),
        )

    async def live_report(self, request: MatchRequest, scope: RequestScope) -> Optional[list[LiveReportEvent]]:
        """Narrative live-report events; None when unresolvable or the feed fails."""
        resolution = await self._resolver.resolve(request, scope)
        if resolution is None:
            return None
        return await self.report_for(resolution, scope)

    async def report_for(self, resolution: Resolution, scope: RequestScope) -> Optional[list[LiveReportEvent]]:
        match = resolution.match
        if not match.league_name or not match.season or not match.feed_match_id:
            return None
        try:
            return await self._feed.get_live_report(match.league_name, match.season, match.feed_match_id)
        except SourceError as exc:
            self._partial("live_report", exc, match.match_id, scope)
            return None

    async def stats_for(self, resolution: Resolution, scope: RequestScope) -> Optional[LiveStats]:
        ids = live_ids(resolution)
        if ids is None:
            return None
        try:
            return await self._external.get_live_stats(*ids)
        except SourceError as exc:
            self._partial("live_stats", exc, resolution.match.match_id, scope)
            return None

    @staticmethod
    def _partial(field: str, exc: SourceError, match_id: str, scope: RequestScope) -> None:
        BRANCH_FAILURES.labels(page="live", branch=field).inc()
        logger.warning(
            "partial_data",
            field=field,
            match_id=match_id,
            error=str(exc),
            request_id=scope.request_id,
        )
