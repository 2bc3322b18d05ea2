"""
Match REST endpoints.

GET /v1/matches?league_id=...                        - League match lists split by lifecycle.
GET /v1/matches/by-cms/{cms_id}                      - Resolved match by CMS id or slug.
GET /v1/matches/{league_id}/{match_id}               - Resolved match by external ids.
GET /v1/matches/{league_id}/{match_id}/timeline      - Live snapshot with the merged timeline.
GET /v1/matches/{league_id}/{match_id}/lineup        - Lineup from the live-report feed.
GET /v1/matches/{league_id}/{match_id}/live-stats    - Current score, phase and minute.
GET /v1/matches/{league_id}/{match_id}/live-report   - Narrative live-report events.

Unknown matches are 404; missing secondary data is ``null``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from shared.errors import MatchNotFound
from shared.models.domain import Lineup, LiveReportEvent, LiveSnapshot, LiveStats, MatchList, Resolution
from shared.models.enums import Venue
from shared.utils.logging import get_logger

from api.container import ServiceContainer
from api.dependencies import get_container, get_request_scope
from resolver.scope import RequestScope
from resolver.service import MatchRequest

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/matches", tags=["matches"])


async def _resolve(container: ServiceContainer, request: MatchRequest, scope: RequestScope) -> Resolution:
    resolution = await container.resolver.resolve(request, scope)
    if resolution is None:
        raise MatchNotFound(request.describe())
    return resolution


@router.get("", response_model=MatchList)
async def list_matches(
    league_id: list[str] = Query(...),
    team_id: Optional[str] = None,
    venue: Optional[Venue] = None,
    container: ServiceContainer = Depends(get_container),
) -> MatchList:
    """
    Matches of one or more leagues as live, upcoming and finished lists.

    ``team_id`` narrows each league to that team's fixtures, ``venue`` to its
    home or away games. Leagues that could not be fetched are listed in ``missing``.
    """
    return await container.match_list.build(league_id, team_id=team_id, venue=venue)


@router.get("/by-cms/{cms_id}", response_model=Resolution)
async def get_match_by_cms(
    cms_id: str,
    container: ServiceContainer = Depends(get_container),
    scope: RequestScope = Depends(get_request_scope),
) -> Resolution:
    """Resolve a match from its CMS post id, slug or legacy numeric id."""
    return await _resolve(container, MatchRequest.for_cms(cms_id), scope)


@router.get("/{league_id}/{match_id}", response_model=Resolution)
async def get_match(
    league_id: str,
    match_id: str,
    container: ServiceContainer = Depends(get_container),
    scope: RequestScope = Depends(get_request_scope),
) -> Resolution:
    return await _resolve(container, MatchRequest.for_pair(league_id, match_id), scope)


@router.get("/{league_id}/{match_id}/timeline", response_model=LiveSnapshot)
async def get_match_timeline(
    league_id: str,
    match_id: str,
    container: ServiceContainer = Depends(get_container),
    scope: RequestScope = Depends(get_request_scope),
) -> LiveSnapshot:
    """
    Resolved match plus its merged timeline, most recent event first.

    Failed live branches are listed in ``missing``.
    """
    request = MatchRequest.for_pair(league_id, match_id)
    snapshot = await container.live.build(request, scope)
    if snapshot is None:
        raise MatchNotFound(request.describe())
    return snapshot


@router.get("/{league_id}/{match_id}/lineup", response_model=Optional[Lineup])
async def get_match_lineup(
    league_id: str,
    match_id: str,
    container: ServiceContainer = Depends(get_container),
    scope: RequestScope = Depends(get_request_scope),
) -> Optional[Lineup]:
    resolution = await _resolve(container, MatchRequest.for_pair(league_id, match_id), scope)
    return resolution.lineup


@router.get("/{league_id}/{match_id}/live-stats", response_model=Optional[LiveStats])
async def get_match_live_stats(
    league_id: str,
    match_id: str,
    container: ServiceContainer = Depends(get_container),
    scope: RequestScope = Depends(get_request_scope),
) -> Optional[LiveStats]:
    resolution = await _resolve(container, MatchRequest.for_pair(league_id, match_id), scope)
    return await container.live.stats_for(resolution, scope)


@router.get("/{league_id}/{match_id}/live-report", response_model=Optional[list[LiveReportEvent]])
async def get_match_live_report(
    league_id: str,
    match_id: str,
    container: ServiceContainer = Depends(get_container),
    scope: RequestScope = Depends(get_request_scope),
) -> Optional[list[LiveReportEvent]]:
    resolution = await _resolve(container, MatchRequest.for_pair(league_id, match_id), scope)
    return await container.live.report_for(resolution, scope)
