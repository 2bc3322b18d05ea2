"""
Live event merger.

Reconciles the generic event feed with the goal-detail feed and enriches goal
events with player identity from the match lineups.

The event feed arrives chronologically; the merged timeline is returned
most-recent-first. Goal details attach by exact timestamp equality only, not
by event type. A goal record whose timestamp matches no event is dropped.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

from shared.models.domain import (
    GoalDetail,
    Player,
    ResolvedPlayer,
    TimelineEntry,
    TimelineEvent,
)

PLAYER_UNAVAILABLE = "Spelare ej tillgänglig"
CLOCK_UNAVAILABLE = "N/A"


def merge_goal_details(
    events: Sequence[TimelineEvent],
    goals: Optional[Sequence[GoalDetail]],
) -> list[TimelineEvent]:
    """
    Attach each event's timestamp-matching goal detail, then reverse once.

    Events without a match pass through unchanged. Inputs are not mutated.
    """
    by_timestamp: dict[str, GoalDetail] = {}
    for goal in goals or ():
        # First record wins when a feed repeats a timestamp.
        if goal.timestamp is not None and goal.timestamp not in by_timestamp:
            by_timestamp[goal.timestamp] = goal

    merged: list[TimelineEvent] = []
    for event in events:
        goal = by_timestamp.get(event.timestamp) if event.timestamp is not None else None
        merged.append(event.model_copy(update={"goal": goal}) if goal is not None else event)
    merged.reverse()
    return merged


def resolve_player(player_id: Optional[str], players: Iterable[Player]) -> Optional[ResolvedPlayer]:
    """
    Look ``player_id`` up among ``players``.

    Returns None when there is no id to resolve and a placeholder when the id
    is not in the lineups.
    """
    if player_id is None:
        return None
    for player in players:
        if player.player_id == player_id:
            return ResolvedPlayer(
                player_id=player.player_id,
                name=player.name or " ".join(p for p in (player.given_name, player.surname) if p),
                shirt_number=player.shirt_number,
            )
    return ResolvedPlayer(player_id=player_id, name=PLAYER_UNAVAILABLE, available=False)


def game_clock_label(minute: Optional[int], second: Optional[int]) -> str:
    """
    ``"{m}m"`` when the minute is set and non-zero, else ``"{s}s"`` when the
    second is set, else ``"N/A"``. A zero minute counts as absent.
    """
    if minute is not None and minute != 0:
        return f"{minute}m"
    if second is not None:
        return f"{second}s"
    return CLOCK_UNAVAILABLE


def build_timeline(
    events: Sequence[TimelineEvent],
    goals: Optional[Sequence[GoalDetail]] = None,
    players: Sequence[Player] = (),
) -> list[TimelineEntry]:
    """Merge, reverse and enrich: the full most-recent-first timeline."""
    entries: list[TimelineEntry] = []
    for event in merge_goal_details(events, goals):
        scorer = assist = None
        if event.goal is not None:
            scorer = resolve_player(event.goal.player_id, players)
            assist = resolve_player(event.goal.assist_player_id, players)
        entries.append(
            TimelineEntry(
                event=event,
                clock=game_clock_label(event.minute, event.second),
                scorer=scorer,
                assist=assist,
            )
        )
    return entries
