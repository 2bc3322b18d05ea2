"""
SMC match API connector (the external match provider).
League match lists, match details, the generic event feed, goal details, live stats
and match phase.
Auth is a raw secret in the Authorization header; all fields are kebab-case.
"""
from __future__ import annotations

from typing import Any, Optional

from shared.config import Settings
from shared.errors import MalformedRecord
from shared.models.domain import (
    ExternalMatchRecord,
    GoalDetail,
    LineupRef,
    LiveStats,
    PhaseUpdate,
    Player,
    Referee,
    TimelineEvent,
)
from shared.models.enums import SourceName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import BaseSource, parse_kickoff, to_int, to_opt_int, to_opt_str

logger = get_logger(__name__)


def _parse_player(raw: dict[str, Any]) -> Optional[Player]:
    player_id = to_opt_str(raw.get("player-id"))
    if player_id is None:
        return None
    return Player(
        player_id=player_id,
        ext_player_id=to_opt_str(raw.get("ext-player-id")),
        name=str(raw.get("player-name") or ""),
        given_name=to_opt_str(raw.get("given-name")),
        surname=to_opt_str(raw.get("surname")),
        position=to_opt_str(raw.get("position")),
        shirt_number=to_opt_int(raw.get("shirt-number")),
    )


def _parse_lineup(raw: Any) -> Optional[LineupRef]:
    if not isinstance(raw, dict):
        return None
    players = [p for p in (_parse_player(r) for r in raw.get("players") or [] if isinstance(r, dict)) if p]
    return LineupRef(formation=str(raw.get("formation") or ""), players=players)


def _parse_referees(raw: Any) -> list[Referee]:
    if not isinstance(raw, list):
        return []
    return [
        Referee(
            referee_id=to_opt_str(r.get("referee-id")),
            ext_referee_id=to_opt_str(r.get("ext-referee-id")),
            name=str(r.get("referee-name") or ""),
            role=to_opt_str(r.get("role-name")),
            is_main=bool(r.get("main-referee")),
        )
        for r in raw
        if isinstance(r, dict)
    ]


def parse_match(details: dict[str, Any]) -> ExternalMatchRecord:
    """One kebab-case match object, as found in match-details and in league match lists."""
    match_id = to_opt_str(details.get("match-id"))
    if match_id is None:
        raise MalformedRecord(SourceName.SMC.value, "match without match-id", field="match-id")

    return ExternalMatchRecord(
        match_id=match_id,
        feed_match_id=to_opt_str(details.get("ext-match-id")),
        league_id=to_opt_str(details.get("league-id")),
        league_name=str(details.get("league-name") or ""),
        season=str(details.get("season") or ""),
        arena=str(details.get("arena-name") or ""),
        kickoff=parse_kickoff(details.get("kickoff")),
        modified_date=to_opt_str(details.get("modified-date")),
        status=str(details.get("status") or ""),
        home_team=str(details.get("home-team") or details.get("home-engaging-team") or ""),
        away_team=str(details.get("away-team") or details.get("away-engaging-team") or ""),
        home_team_id=to_opt_str(details.get("home-team-id")),
        away_team_id=to_opt_str(details.get("away-team-id")),
        goals_home=to_int(details.get("goals-home")),
        goals_away=to_int(details.get("goals-away")),
        home_lineup=_parse_lineup(details.get("home-lineup")),
        away_lineup=_parse_lineup(details.get("away-lineup")),
        referees=_parse_referees(details.get("referees")),
        ticket_url=to_opt_str(details.get("ticket-url")),
    )


def parse_match_details(payload: Any) -> ExternalMatchRecord:
    """Normalize a ``match-details`` payload; raises MalformedRecord when it is unusable."""
    details = payload.get("match-details") if isinstance(payload, dict) else None
    if not isinstance(details, dict):
        raise MalformedRecord(SourceName.SMC.value, "missing match-details", field="match-details")
    return parse_match(details)


def parse_match_list(payload: Any) -> list[ExternalMatchRecord]:
    """
    Normalize a league match list. Entries without a match id are dropped,
    and a match id listed twice keeps its last entry.
    """
    if not isinstance(payload, list):
        raise MalformedRecord(SourceName.SMC.value, "match list is not an array")
    records: dict[str, ExternalMatchRecord] = {}
    dropped = 0
    for raw in payload:
        if not isinstance(raw, dict) or to_opt_str(raw.get("match-id")) is None:
            dropped += 1
            continue
        record = parse_match(raw)
        records[record.match_id] = record
    if dropped:
        logger.debug("smc_match_list_entries_dropped", dropped=dropped)
    return list(records.values())


def parse_event(raw: dict[str, Any]) -> TimelineEvent:
    return TimelineEvent(
        event_id=to_opt_str(raw.get("event-id")),
        event_type=str(raw.get("event-name") or ""),
        timestamp=to_opt_str(raw.get("event-timestamp")),
        description=str(raw.get("description") or ""),
        status=to_opt_str(raw.get("status")),
        match_phase=to_opt_str(raw.get("match-phase")),
        minute=to_opt_int(raw.get("game-clock-in-min")),
        second=to_opt_int(raw.get("game-clock-in-sec")),
        home_score=to_opt_int(raw.get("home-team-score")),
        away_score=to_opt_int(raw.get("away-team-score")),
    )


def parse_goal(raw: dict[str, Any]) -> Optional[GoalDetail]:
    """Goal records without a scorer are discarded."""
    player_id = to_opt_str(raw.get("player-id"))
    if player_id is None:
        return None
    general = raw.get("general-event-data")
    timestamp = general.get("event-timestamp") if isinstance(general, dict) else None
    set_piece = raw.get("after-set-piece")
    return GoalDetail(
        timestamp=to_opt_str(timestamp),
        player_id=player_id,
        assist_player_id=to_opt_str(raw.get("player-id-assist")),
        goal_type=to_opt_str(raw.get("goal-type")),
        shot_position=to_opt_str(raw.get("shot-position")),
        goal_position=to_opt_str(raw.get("goal-position")),
        after_set_piece=None if set_piece is None else bool(set_piece),
        team_id=to_opt_str(raw.get("player-team-id")),
    )


class SMCSource(BaseSource):
    """SMC 2.0 REST API. League and match ids may be ULIDs or legacy numbers."""

    def __init__(self, settings: Settings, http_client: ProviderHTTPClient | None = None) -> None:
        self._settings = settings
        http_client = http_client or ProviderHTTPClient(
            source=SourceName.SMC.value,
            base_url=settings.smc_base_url,
            headers={"Authorization": settings.smc_secret, "Accept": "application/json"},
            timeout_s=settings.smc_events_timeout_s,
            max_retries=settings.provider_max_retries,
        )
        super().__init__(SourceName.SMC, http_client)

    @staticmethod
    def _match_path(league_id: str, match_id: str) -> str:
        return f"/leagues/{league_id}/matches/{match_id}"

    async def get_match(self, league_id: str, match_id: str) -> Optional[ExternalMatchRecord]:
        """Fetch and normalize match details. None when SMC has no such match."""

        async def call() -> Optional[ExternalMatchRecord]:
            payload = await self._http.get_json(
                self._match_path(league_id, match_id),
                endpoint="match",
                timeout_s=self._settings.smc_match_timeout_s,
            )
            if payload is None:
                return None
            return parse_match_details(payload)

        return await self._fetch("get_match", call, league_id=league_id, match_id=match_id)

    async def list_matches(
        self,
        league_id: str,
        home_team_id: str | None = None,
        away_team_id: str | None = None,
    ) -> Optional[list[ExternalMatchRecord]]:
        """Every match of a league, optionally filtered by home or away team. None for an unknown league."""
        params: dict[str, str] = {}
        if home_team_id:
            params["home-team-id"] = home_team_id
        if away_team_id:
            params["away-team-id"] = away_team_id

        async def call() -> Optional[list[ExternalMatchRecord]]:
            payload = await self._http.get_json(
                f"/leagues/{league_id}/matches",
                params=params or None,
                endpoint="matches",
                timeout_s=self._settings.smc_match_timeout_s,
            )
            if payload is None:
                return None
            return parse_match_list(payload)

        return await self._fetch(
            "list_matches",
            call,
            league_id=league_id,
            home_team_id=home_team_id,
            away_team_id=away_team_id,
        )

    async def get_events(self, league_id: str, match_id: str) -> Optional[list[TimelineEvent]]:
        """The generic event feed, in the chronological order SMC returns it."""

        async def call() -> Optional[list[TimelineEvent]]:
            payload = await self._http.get_json(
                f"{self._match_path(league_id, match_id)}/events", endpoint="events"
            )
            if payload is None:
                return None
            if not isinstance(payload, dict):
                raise MalformedRecord(self._name.value, "events payload is not an object")
            return [parse_event(e) for e in payload.get("Events") or [] if isinstance(e, dict)]

        return await self._fetch("get_events", call, league_id=league_id, match_id=match_id)

    async def get_goal_events(self, league_id: str, match_id: str) -> Optional[list[GoalDetail]]:
        async def call() -> Optional[list[GoalDetail]]:
            payload = await self._http.get_json(
                f"{self._match_path(league_id, match_id)}/events/goal", endpoint="goal_events"
            )
            if payload is None:
                return None
            raw_goals = payload if isinstance(payload, list) else [payload]
            goals = [g for g in (parse_goal(r) for r in raw_goals if isinstance(r, dict)) if g]
            if len(goals) < len(raw_goals):
                logger.debug(
                    "smc_goal_records_dropped",
                    match_id=match_id,
                    dropped=len(raw_goals) - len(goals),
                )
            return goals

        return await self._fetch("get_goal_events", call, league_id=league_id, match_id=match_id)

    async def get_live_stats(self, league_id: str, match_id: str) -> Optional[LiveStats]:
        async def call() -> Optional[LiveStats]:
            payload = await self._http.get_json(
                f"{self._match_path(league_id, match_id)}/live-stats", endpoint="live_stats"
            )
            if payload is None:
                return None
            if not isinstance(payload, dict):
                raise MalformedRecord(self._name.value, "live-stats payload is not an object")
            return LiveStats(
                home_score=to_int(payload.get("home-team-score")),
                away_score=to_int(payload.get("away-team-score")),
                match_phase=to_opt_str(payload.get("match-phase")),
                minute=to_opt_int(payload.get("game-clock-in-min")),
            )

        return await self._fetch("get_live_stats", call, league_id=league_id, match_id=match_id)

    async def get_match_phase(self, league_id: str, match_id: str) -> Optional[PhaseUpdate]:
        """Latest match-phase event, if any."""

        async def call() -> Optional[PhaseUpdate]:
            payload = await self._http.get_json(
                f"{self._match_path(league_id, match_id)}/events/match-phase", endpoint="match_phase"
            )
            records = payload if isinstance(payload, list) else [payload] if payload else []
            for record in reversed(records):
                general = record.get("general-event-data") if isinstance(record, dict) else None
                if isinstance(general, dict) and general.get("match-phase"):
                    return PhaseUpdate(
                        phase=str(general["match-phase"]),
                        timestamp=to_opt_str(general.get("event-timestamp")),
                    )
            return None

        return await self._fetch("get_match_phase", call, league_id=league_id, match_id=match_id)
