"""
Sportomedia connector (the live-report feed).
Lineups, narrative live-report events, squads, standings and team statistics.
Payloads are camelCase; auth via the ``x-api-key`` header.
"""
from __future__ import annotations

from typing import Any, Optional

from shared.config import Settings
from shared.errors import MalformedRecord
from shared.models.domain import (
    LiveReportEvent,
    Lineup,
    LineupPlayer,
    SquadMember,
    StandingEntry,
    StandingStat,
    TeamLineup,
    TeamStats,
    VideoRef,
)
from shared.models.enums import SourceName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import BaseSource, to_opt_int, to_opt_str

logger = get_logger(__name__)


def _parse_lineup_player(raw: dict[str, Any]) -> Optional[LineupPlayer]:
    player_id = to_opt_str(raw.get("id"))
    if player_id is None:
        return None
    given, surname = to_opt_str(raw.get("givenName")), to_opt_str(raw.get("surName"))
    name = raw.get("displayName") or " ".join(p for p in (given, surname) if p)
    return LineupPlayer(
        player_id=player_id,
        name=str(name or ""),
        given_name=given,
        surname=surname,
        shirt_number=to_opt_int(raw.get("shirtNumber", raw.get("number"))),
        position=to_opt_str(raw.get("position")),
        is_captain=bool(raw.get("isCaptain")),
    )


def _parse_team_lineup(raw: Any) -> Optional[TeamLineup]:
    if not isinstance(raw, dict):
        return None

    def players(key: str) -> list[LineupPlayer]:
        parsed = (_parse_lineup_player(p) for p in raw.get(key) or [] if isinstance(p, dict))
        return [p for p in parsed if p is not None]

    return TeamLineup(
        formation=str(raw.get("formation") or raw.get("formationDescription") or ""),
        formation_id=to_opt_int(raw.get("formationId")),
        starting=players("starting"),
        substitutes=players("substitutes"),
    )


def parse_lineup(payload: Any) -> Lineup:
    if not isinstance(payload, dict):
        raise MalformedRecord(SourceName.SPORTOMEDIA.value, "lineup payload is not an object")
    return Lineup(
        home=_parse_team_lineup(payload.get("homeTeamLineup")),
        visiting=_parse_team_lineup(payload.get("visitingTeamLineup")),
    )


def parse_live_report_event(raw: dict[str, Any]) -> Optional[LiveReportEvent]:
    event_type = to_opt_str(raw.get("type"))
    if event_type is None:
        return None
    video = raw.get("video")
    video_ref = None
    if isinstance(video, dict) and video.get("embedVideoUrl"):
        video_ref = VideoRef(thumbnail=to_opt_str(video.get("thumbnail")), embed_url=str(video["embedVideoUrl"]))
    by_home = raw.get("byHomeTeam")
    return LiveReportEvent(
        event_type=event_type,
        type_label=str(raw.get("typeString") or ""),
        description=str(raw.get("description") or ""),
        home_score=to_opt_int(raw.get("homeTeamScore")),
        visiting_score=to_opt_int(raw.get("visitingTeamScore")),
        player_name=to_opt_str(raw.get("playerName")),
        team_name=to_opt_str(raw.get("teamName")),
        by_home_team=None if by_home is None else bool(by_home),
        video=video_ref,
    )


def parse_standings(payload: Any) -> list[StandingEntry]:
    """
    Keep entries with a string id, numeric position, display name and stats
    list; everything else is dropped. Sorted by table position.
    """
    raw_entries = list(payload.values()) if isinstance(payload, dict) else payload
    if not isinstance(raw_entries, list):
        raise MalformedRecord(SourceName.SPORTOMEDIA.value, "standings payload is not a collection")

    entries: list[StandingEntry] = []
    for raw in raw_entries:
        if not isinstance(raw, dict):
            continue
        team_id, position = raw.get("id"), raw.get("position")
        stats = raw.get("stats")
        if (
            not isinstance(team_id, str)
            or isinstance(position, bool)
            or not isinstance(position, (int, float))
            or not raw.get("displayName")
            or not isinstance(stats, list)
        ):
            continue
        entries.append(
            StandingEntry(
                team_id=team_id,
                position=int(position),
                display_name=str(raw["displayName"]),
                abbrv=to_opt_str(raw.get("abbrv")),
                logo_url=to_opt_str(raw.get("logoImageUrl")),
                stats=[
                    StandingStat(name=str(s["name"]), value=float(s["value"]))
                    for s in stats
                    if isinstance(s, dict) and s.get("name") and isinstance(s.get("value"), (int, float))
                ],
            )
        )
    dropped = len(raw_entries) - len(entries)
    if dropped:
        logger.debug("standings_entries_dropped", dropped=dropped)
    return sorted(entries, key=lambda e: e.position)


def parse_squad(payload: Any, team_name: Optional[str] = None) -> list[SquadMember]:
    """Squad members with an id and display name, optionally restricted to ``team_name``."""
    raw_players = payload.get("squad") if isinstance(payload, dict) else payload
    if not isinstance(raw_players, list):
        raise MalformedRecord(SourceName.SPORTOMEDIA.value, "squad payload has no player list")

    members: list[SquadMember] = []
    for raw in raw_players:
        if not isinstance(raw, dict):
            continue
        player_id = to_opt_str(raw.get("smcId") or raw.get("id"))
        name = raw.get("displayName") or raw.get("fullName")
        if player_id is None or not name:
            continue
        if team_name and not any(
            isinstance(s, dict) and s.get("teamName") == team_name for s in raw.get("stats") or []
        ):
            continue
        clubs = raw.get("currentClub") or []
        shirt = next((c.get("shirtNumber") for c in clubs if isinstance(c, dict) and c.get("active")), None)
        position = raw.get("position")
        images = raw.get("images") or {}
        members.append(
            SquadMember(
                player_id=player_id,
                name=str(name),
                shirt_number=to_opt_int(shirt),
                position=to_opt_str(position.get("primary") if isinstance(position, dict) else position),
                nationality=to_opt_str(raw.get("nationality")),
                image_url=to_opt_str(images.get("sefImagePng") or images.get("fogisImage"))
                if isinstance(images, dict)
                else None,
            )
        )
    return members


class SportomediaSource(BaseSource):
    """Sportomedia v1 REST API."""

    def __init__(self, settings: Settings, http_client: ProviderHTTPClient | None = None) -> None:
        self._settings = settings
        http_client = http_client or ProviderHTTPClient(
            source=SourceName.SPORTOMEDIA.value,
            base_url=settings.sportomedia_base_url,
            headers={"x-api-key": settings.sportomedia_api_key, "Accept": "application/json"},
            timeout_s=settings.sportomedia_timeout_s,
            max_retries=settings.provider_max_retries,
        )
        super().__init__(SourceName.SPORTOMEDIA, http_client)

    async def get_lineup(self, league: str, season: str, external_match_id: str) -> Optional[Lineup]:
        async def call() -> Optional[Lineup]:
            payload = await self._http.get_json(
                f"/lineups/{league.lower()}/{season}/{external_match_id}", endpoint="lineup"
            )
            return None if payload is None else parse_lineup(payload)

        return await self._fetch("get_lineup", call, league=league, external_match_id=external_match_id)

    async def get_live_report(self, league: str, season: str, match_id: str) -> Optional[list[LiveReportEvent]]:
        """Narrative match events in feed order."""

        async def call() -> Optional[list[LiveReportEvent]]:
            payload = await self._http.get_json(
                f"/matches/{league.lower()}/{season}/{match_id}", endpoint="live_report"
            )
            if payload is None:
                return None
            if not isinstance(payload, dict):
                raise MalformedRecord(self._name.value, "match payload is not an object")
            events = (parse_live_report_event(e) for e in payload.get("matchEvents") or [] if isinstance(e, dict))
            return [e for e in events if e is not None]

        return await self._fetch("get_live_report", call, league=league, match_id=match_id)

    async def get_squad(self, team: str, season: str, team_name: Optional[str] = None) -> list[SquadMember]:
        async def call() -> list[SquadMember]:
            payload = await self._http.get_json(
                f"/squad/{team}/{season}", params={"full": "true"}, endpoint="squad"
            )
            return [] if payload is None else parse_squad(payload, team_name)

        return await self._fetch("get_squad", call, team=team)

    async def get_standings(self, league: str, season: str) -> list[StandingEntry]:
        async def call() -> list[StandingEntry]:
            payload = await self._http.get_json(f"/standings/{league}/{season}/total", endpoint="standings")
            return [] if payload is None else parse_standings(payload)

        return await self._fetch("get_standings", call, league=league)

    async def get_team_stats(self, league: str, season: str, team_id: str) -> Optional[TeamStats]:
        """Season statistics for the team whose SMC id is ``team_id``."""

        async def call() -> Optional[TeamStats]:
            payload = await self._http.get_json(f"/statistics/teams/{league}/{season}", endpoint="team_stats")
            if payload is None:
                return None
            if not isinstance(payload, list):
                raise MalformedRecord(self._name.value, "team statistics payload is not a list")
            for raw in payload:
                if isinstance(raw, dict) and to_opt_str(raw.get("smcId")) == team_id:
                    values = {k: v for k, v in raw.items() if isinstance(v, (int, float, str))}
                    return TeamStats(
                        team_id=team_id,
                        name=str(raw.get("displayName") or raw.get("name") or ""),
                        values=values,
                    )
            return None

        return await self._fetch("get_team_stats", call, league=league, team_id=team_id)
