"""
Match resolver.

Decides which upstream is authoritative for a match and produces the unified
record:

1. The CMS is always consulted first (by CMS id, else by match id).
2. A CMS custom game is returned as-is; the external API is never called.
3. Otherwise the external record is fetched through the tiered cache and
   merged over the CMS record. External failure degrades to the CMS record.
4. Without a CMS record the external record stands alone; if that also
   fails the match is not found.

Ordinary absence is reported as ``None``, never raised.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from shared.errors import PartialData, SourceError
from shared.models.domain import (
    CMSMatchRecord,
    ExternalMatchRecord,
    Lineup,
    Resolution,
    UnifiedMatch,
)
from shared.models.enums import LifecycleCategory, ResolutionSource
from shared.utils.logging import get_logger
from shared.utils.metrics import RESOLUTIONS

from ingest.providers.frontspace import FrontspaceSource
from ingest.providers.smc import SMCSource
from ingest.providers.sportomedia import SportomediaSource
from resolver.cache import TieredCache
from resolver.lifecycle import classify, classify_with_kickoff
from resolver.merge import from_external, merge_external
from resolver.scope import RequestScope

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchRequest:
    """Either a single CMS identifier or a (league, match) pair."""

    cms_id: Optional[str] = None
    league_id: Optional[str] = None
    match_id: Optional[str] = None

    @classmethod
    def for_cms(cls, cms_id: str) -> "MatchRequest":
        return cls(cms_id=cms_id)

    @classmethod
    def for_pair(cls, league_id: str, match_id: str) -> "MatchRequest":
        return cls(league_id=league_id, match_id=match_id)

    @property
    def is_pair(self) -> bool:
        return self.cms_id is None and bool(self.league_id) and bool(self.match_id)

    @property
    def cms_identifier(self) -> Optional[str]:
        return self.cms_id or self.match_id

    def describe(self) -> str:
        return f"cms:{self.cms_id}" if self.cms_id else f"{self.league_id}/{self.match_id}"


def external_category(
    record: ExternalMatchRecord,
    now: datetime,
    finished_after: timedelta = timedelta(hours=3),
) -> LifecycleCategory:
    """Lifecycle of an external record: its status, else its kickoff time."""
    return classify_with_kickoff(record.status, record.kickoff, now, finished_after)


class MatchResolver:
    """
    Resolves a MatchRequest into a Resolution.

    The tiered cache is the only state shared between calls; everything else
    lives in the per-request scope passed to ``resolve``.
    """

    def __init__(
        self,
        cms: FrontspaceSource,
        external: SMCSource,
        feed: SportomediaSource,
        cache: TieredCache[ExternalMatchRecord],
        finished_after: timedelta = timedelta(hours=3),
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self._cms = cms
        self._external = external
        self._feed = feed
        self._cache = cache
        self._finished_after = finished_after
        self._now = now_fn or (lambda: datetime.now(timezone.utc))

    async def resolve(self, request: MatchRequest, scope: RequestScope) -> Optional[Resolution]:
        log = logger.bind(request=request.describe(), request_id=scope.request_id)

        cms_record = await self._lookup_cms(request, scope)
        if cms_record is not None:
            return await self._resolve_from_cms(request, cms_record, scope)

        if not request.is_pair:
            log.info("match_not_found", reason="cms_miss_without_pair")
            RESOLUTIONS.labels(outcome="not_found").inc()
            return None

        league_id, match_id = str(request.league_id), str(request.match_id)
        external = await self._fetch_external(league_id, match_id)
        if external is None:
            log.info("match_not_found", reason="cms_and_external_miss")
            RESOLUTIONS.labels(outcome="not_found").inc()
            return None

        match = from_external(external, league_id, match_id)
        lineup, missing = await self._fetch_lineup(match, scope)
        RESOLUTIONS.labels(outcome=ResolutionSource.EXTERNAL_ONLY.value).inc()
        return self._resolution(match, ResolutionSource.EXTERNAL_ONLY, lineup, missing)

    async def _resolve_from_cms(
        self,
        request: MatchRequest,
        record: CMSMatchRecord,
        scope: RequestScope,
    ) -> Resolution:
        base = UnifiedMatch.from_cms(record)

        if record.is_custom_game:
            RESOLUTIONS.labels(outcome=ResolutionSource.CUSTOM.value).inc()
            return self._resolution(base, ResolutionSource.CUSTOM)

        league_id = request.league_id or record.league_id
        match_id = (request.match_id if request.league_id else None) or record.external_match_id
        if not league_id or not match_id:
            logger.warning("external_ids_missing", cms_id=record.cms_id, request_id=scope.request_id)
            RESOLUTIONS.labels(outcome=ResolutionSource.CMS_ONLY.value).inc()
            return self._resolution(base, ResolutionSource.CMS_ONLY, missing=["lineup"])

        external = await self._fetch_external(league_id, match_id, category_hint=classify(record.status))
        if external is None:
            logger.warning(
                "external_fallback_to_cms",
                cms_id=record.cms_id,
                league_id=league_id,
                match_id=match_id,
                request_id=scope.request_id,
            )
            RESOLUTIONS.labels(outcome=ResolutionSource.CMS_ONLY.value).inc()
            return self._resolution(base, ResolutionSource.CMS_ONLY, missing=["lineup"])

        merged = merge_external(base, external, league_id, match_id)
        lineup, missing = await self._fetch_lineup(merged, scope)
        RESOLUTIONS.labels(outcome=ResolutionSource.MERGED.value).inc()
        return self._resolution(merged, ResolutionSource.MERGED, lineup, missing)

    def _resolution(
        self,
        match: UnifiedMatch,
        source: ResolutionSource,
        lineup: Optional[Lineup] = None,
        missing: Optional[list[str]] = None,
    ) -> Resolution:
        category = classify_with_kickoff(match.status, match.kickoff, self._now(), self._finished_after)
        return Resolution(match=match, lineup=lineup, source=source, category=category, missing=missing or [])

    async def _lookup_cms(self, request: MatchRequest, scope: RequestScope) -> Optional[CMSMatchRecord]:
        identifier = request.cms_identifier
        if not identifier:
            return None
        try:
            return await scope.memo(("cms", identifier), lambda: self._cms.get_match(identifier))
        except SourceError as exc:
            logger.warning("cms_lookup_failed", identifier=identifier, error=str(exc))
            return None

    async def _fetch_external(
        self,
        league_id: str,
        match_id: str,
        category_hint: Optional[LifecycleCategory] = None,
    ) -> Optional[ExternalMatchRecord]:
        """External record via the tiered cache; failures are logged and read as absent."""
        try:
            return await self._cache.get_or_fetch(
                (league_id, match_id),
                lambda: self._external.get_match(league_id, match_id),
                category_hint=category_hint,
            )
        except SourceError as exc:
            logger.warning(
                "external_fetch_failed",
                league_id=league_id,
                match_id=match_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

    async def _fetch_lineup(self, match: UnifiedMatch, scope: RequestScope) -> tuple[Optional[Lineup], list[str]]:
        """Lineup from the live-report feed. Any failure leaves it None."""
        league, season, feed_id = match.league_name, match.season, match.feed_match_id
        if not league or not season or not feed_id:
            return None, ["lineup"]
        try:
            lineup = await scope.memo(
                ("lineup", league.lower(), season, feed_id),
                lambda: self._feed.get_lineup(league, season, feed_id),
            )
        except SourceError as exc:
            logger.warning("partial_data", **_partial_context(PartialData("lineup", exc), match))
            return None, ["lineup"]
        return lineup, ([] if lineup is not None else ["lineup"])


def _partial_context(partial: PartialData, match: UnifiedMatch) -> dict[str, Optional[str]]:
    return {
        "field": partial.field,
        "error": str(partial.cause) if partial.cause else None,
        "match_id": match.match_id,
        "league_id": match.league_id,
    }
