"""
Pydantic v2 domain models shared across Matchcenter.
These are the canonical wire/internal representations produced by the
source adapters and consumed by the resolver, builders and API.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import (
    LifecycleCategory,
    LinkType,
    ResolutionSource,
    WSClientOp,
    WSServerMsgType,
)

# CMS-only fields; never taken from the external record.
OVERRIDE_FIELDS: tuple[str, ...] = (
    "ticket_url",
    "ticket_text",
    "sold_tickets",
    "max_tickets",
    "custom_button_text",
    "custom_button_link",
    "link_buttons",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


# ── People ──────────────────────────────────────────────────────────────
class Player(DomainModel):
    """A player as listed in the external match lineup."""
    player_id: str
    ext_player_id: Optional[str] = None
    name: str = ""
    given_name: Optional[str] = None
    surname: Optional[str] = None
    position: Optional[str] = None
    shirt_number: Optional[int] = None


class LineupRef(DomainModel):
    formation: str = ""
    players: list[Player] = Field(default_factory=list)


class Referee(DomainModel):
    referee_id: Optional[str] = None
    ext_referee_id: Optional[str] = None
    name: str = ""
    role: Optional[str] = None
    is_main: bool = False


class LinkButton(DomainModel):
    type: LinkType
    text: str
    url: str


# ── Source records ──────────────────────────────────────────────────────
class CMSMatchRecord(DomainModel):
    """A content-managed fixture as normalized from the CMS."""
    cms_id: str
    cms_slug: Optional[str] = None
    match_id: str
    external_match_id: Optional[str] = None
    league_id: Optional[str] = None
    league_name: str = ""
    season: str = ""
    arena: str = ""
    kickoff: Optional[datetime] = None
    modified_date: Optional[str] = None
    status: str = "Scheduled"
    home_team: str = ""
    away_team: str = ""
    home_team_logo: Optional[str] = None
    away_team_logo: Optional[str] = None
    goals_home: int = 0
    goals_away: int = 0
    is_custom_game: bool = False
    ticket_url: Optional[str] = None
    ticket_text: Optional[str] = None
    sold_tickets: Optional[int] = None
    max_tickets: Optional[int] = None
    custom_button_text: Optional[str] = None
    custom_button_link: Optional[str] = None
    link_buttons: list[LinkButton] = Field(default_factory=list)


class ExternalMatchRecord(DomainModel):
    """A match as reported by the external match API."""
    match_id: str
    # ext-match-id; the live-report feed keys lineups and reports by it.
    feed_match_id: Optional[str] = None
    league_id: Optional[str] = None
    league_name: str = ""
    season: str = ""
    arena: str = ""
    kickoff: Optional[datetime] = None
    modified_date: Optional[str] = None
    status: str = ""
    home_team: str = ""
    away_team: str = ""
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    goals_home: int = 0
    goals_away: int = 0
    home_lineup: Optional[LineupRef] = None
    away_lineup: Optional[LineupRef] = None
    referees: list[Referee] = Field(default_factory=list)
    # Carried by some feeds; the CMS owns ticketing, so this never reaches UnifiedMatch.
    ticket_url: Optional[str] = None


class UnifiedMatch(DomainModel):
    """Resolved, presentation-ready match record."""
    match_id: str
    league_id: Optional[str] = None
    league_name: str = ""
    external_match_id: Optional[str] = None
    feed_match_id: Optional[str] = None
    kickoff: Optional[datetime] = None
    modified_date: Optional[str] = None
    status: str = ""
    season: str = ""
    arena: str = ""
    home_team: str = ""
    away_team: str = ""
    home_team_id: Optional[str] = None
    away_team_id: Optional[str] = None
    home_team_logo: Optional[str] = None
    away_team_logo: Optional[str] = None
    goals_home: int = 0
    goals_away: int = 0
    home_lineup: Optional[LineupRef] = None
    away_lineup: Optional[LineupRef] = None
    referees: list[Referee] = Field(default_factory=list)
    cms_id: Optional[str] = None
    cms_slug: Optional[str] = None
    is_custom_game: bool = False
    # Override fields
    ticket_url: Optional[str] = None
    ticket_text: Optional[str] = None
    sold_tickets: Optional[int] = None
    max_tickets: Optional[int] = None
    custom_button_text: Optional[str] = None
    custom_button_link: Optional[str] = None
    link_buttons: list[LinkButton] = Field(default_factory=list)

    @classmethod
    def from_cms(cls, record: CMSMatchRecord) -> "UnifiedMatch":
        return cls.model_validate(record.model_dump())

    @classmethod
    def from_external(cls, record: ExternalMatchRecord) -> "UnifiedMatch":
        return cls.model_validate(record.model_dump(exclude=set(OVERRIDE_FIELDS)))

    @property
    def lineup_players(self) -> list[Player]:
        players: list[Player] = []
        for lineup in (self.home_lineup, self.away_lineup):
            if lineup is not None:
                players.extend(lineup.players)
        return players


# ── Lineup (live-report feed) ───────────────────────────────────────────
class LineupPlayer(DomainModel):
    player_id: str
    name: str = ""
    given_name: Optional[str] = None
    surname: Optional[str] = None
    shirt_number: Optional[int] = None
    position: Optional[str] = None
    is_captain: bool = False


class TeamLineup(DomainModel):
    formation: str = ""
    formation_id: Optional[int] = None
    starting: list[LineupPlayer] = Field(default_factory=list)
    substitutes: list[LineupPlayer] = Field(default_factory=list)


class Lineup(DomainModel):
    home: Optional[TeamLineup] = None
    visiting: Optional[TeamLineup] = None


# ── Timeline ────────────────────────────────────────────────────────────
class GoalDetail(DomainModel):
    timestamp: Optional[str] = None
    player_id: str
    assist_player_id: Optional[str] = None
    goal_type: Optional[str] = None
    shot_position: Optional[str] = None
    goal_position: Optional[str] = None
    after_set_piece: Optional[bool] = None
    team_id: Optional[str] = None


class TimelineEvent(DomainModel):
    event_id: Optional[str] = None
    event_type: str = ""
    timestamp: Optional[str] = None
    description: str = ""
    status: Optional[str] = None
    match_phase: Optional[str] = None
    minute: Optional[int] = None
    second: Optional[int] = None
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    goal: Optional[GoalDetail] = None


class ResolvedPlayer(DomainModel):
    player_id: Optional[str] = None
    name: str
    shirt_number: Optional[int] = None
    available: bool = True


class TimelineEntry(DomainModel):
    """A merged event with display-ready clock and player identity."""
    event: TimelineEvent
    clock: str
    scorer: Optional[ResolvedPlayer] = None
    assist: Optional[ResolvedPlayer] = None


# ── Live data ───────────────────────────────────────────────────────────
class LiveStats(DomainModel):
    home_score: int = 0
    away_score: int = 0
    match_phase: Optional[str] = None
    minute: Optional[int] = None


class PhaseUpdate(DomainModel):
    phase: str
    timestamp: Optional[str] = None


class VideoRef(DomainModel):
    thumbnail: Optional[str] = None
    embed_url: str


class LiveReportEvent(DomainModel):
    event_type: str
    type_label: str = ""
    description: str = ""
    home_score: Optional[int] = None
    visiting_score: Optional[int] = None
    player_name: Optional[str] = None
    team_name: Optional[str] = None
    by_home_team: Optional[bool] = None
    video: Optional[VideoRef] = None


# ── Resolution ──────────────────────────────────────────────────────────
class Resolution(DomainModel):
    match: UnifiedMatch
    lineup: Optional[Lineup] = None
    source: ResolutionSource
    category: LifecycleCategory
    missing: list[str] = Field(default_factory=list)


class LiveSnapshot(DomainModel):
    resolution: Resolution
    timeline: list[TimelineEntry] = Field(default_factory=list)
    live_stats: Optional[LiveStats] = None
    phase: Optional[PhaseUpdate] = None
    category: LifecycleCategory
    missing: list[str] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=_utcnow)


# ── Match lists ─────────────────────────────────────────────────────────
class MatchList(DomainModel):
    """A league fixture list split by lifecycle. ``all`` is live, then upcoming, then finished."""
    live: list[ExternalMatchRecord] = Field(default_factory=list)
    upcoming: list[ExternalMatchRecord] = Field(default_factory=list)
    finished: list[ExternalMatchRecord] = Field(default_factory=list)
    all: list[ExternalMatchRecord] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)


# ── Team page ───────────────────────────────────────────────────────────
class NewsItem(DomainModel):
    id: str
    title: str
    slug: str
    published_at: Optional[str] = None
    excerpt: Optional[str] = None


class SquadMember(DomainModel):
    player_id: str
    name: str
    shirt_number: Optional[int] = None
    position: Optional[str] = None
    nationality: Optional[str] = None
    image_url: Optional[str] = None


class StandingStat(DomainModel):
    name: str
    value: float


class StandingEntry(DomainModel):
    team_id: str
    position: int
    display_name: str
    abbrv: Optional[str] = None
    logo_url: Optional[str] = None
    stats: list[StandingStat] = Field(default_factory=list)


class TeamStats(DomainModel):
    team_id: str
    name: str
    values: dict[str, Any] = Field(default_factory=dict)


class TeamPage(DomainModel):
    team: str
    news: Optional[list[NewsItem]] = None
    squad: Optional[list[SquadMember]] = None
    standings: Optional[list[StandingEntry]] = None
    team_stats: Optional[TeamStats] = None
    missing: list[str] = Field(default_factory=list)


# ── WebSocket messages ──────────────────────────────────────────────────
class WSClientMessage(DomainModel):
    op: WSClientOp
    cms_id: Optional[str] = None
    league_id: Optional[str] = None
    match_id: Optional[str] = None


class WSEnvelope(DomainModel):
    """Server → client message envelope."""
    type: WSServerMsgType
    generation: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)
    data: Any = None

