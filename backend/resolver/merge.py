"""
Field-level merge of a CMS-derived match with the external provider's record.

Resolution order per field:

    override fields (tickets, CTA buttons)  CMS value, else none
    score, status, season, arena, kickoff,
    modified date, lineups, referees,
    team ids, feed match id                 external, else CMS
    team names, league name                 external when non-empty, else CMS
    logos, cms id/slug, custom-game flag    CMS only
    league id, external match id            the ids the external lookup used
"""
from __future__ import annotations

from typing import Any

from shared.models.domain import ExternalMatchRecord, UnifiedMatch

EXTERNAL_AUTHORITATIVE = (
    "goals_home",
    "goals_away",
    "status",
    "season",
    "arena",
    "kickoff",
    "modified_date",
    "home_lineup",
    "away_lineup",
    "home_team_id",
    "away_team_id",
    "feed_match_id",
)

EXTERNAL_WHEN_PRESENT = ("home_team", "away_team", "league_name")


def merge_external(base: UnifiedMatch, external: ExternalMatchRecord, league_id: str, match_id: str) -> UnifiedMatch:
    """Overlay ``external`` onto the CMS-derived ``base``. Neither input is mutated."""
    updates: dict[str, Any] = {}

    for field in EXTERNAL_AUTHORITATIVE:
        value = getattr(external, field)
        if value is not None and value != "":
            updates[field] = value

    for field in EXTERNAL_WHEN_PRESENT:
        value = getattr(external, field)
        if value:
            updates[field] = value

    if external.referees:
        updates["referees"] = external.referees

    updates["league_id"] = league_id
    updates["external_match_id"] = match_id
    return base.model_copy(update=updates, deep=True)


def from_external(external: ExternalMatchRecord, league_id: str, match_id: str) -> UnifiedMatch:
    """A UnifiedMatch built from the external record alone (no CMS entry)."""
    match = UnifiedMatch.from_external(external)
    return match.model_copy(update={"league_id": league_id, "external_match_id": match_id})
