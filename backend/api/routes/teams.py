"""
Team REST endpoints.

GET /v1/teams/{team} - News, squad, standings and season stats in one page.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from shared.models.domain import TeamPage

from api.container import ServiceContainer
from api.dependencies import get_container

router = APIRouter(prefix="/v1/teams", tags=["teams"])


@router.get("/{team}", response_model=TeamPage)
async def get_team_page(
    team: str,
    container: ServiceContainer = Depends(get_container),
) -> TeamPage:
    """Each section is fetched independently; failed sections are ``null`` and listed in ``missing``."""
    return await container.team_page.build(team)
