"""
Lifecycle classification of match status strings.

Upstreams disagree on vocabulary (SMC, Sportomedia, the CMS, Swedish editors),
so classification is a case-insensitive substring match against synonym sets.
Sets are checked live → finished → upcoming so "1st overtime" is live even
though it contains "over".
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from shared.models.enums import LifecycleCategory

LIVE_SYNONYMS: tuple[str, ...] = (
    "in progress",
    "in-progress",
    "inprogress",
    "in_play",
    "live",
    "pågår",
    "pågående",
    "ongoing",
    "playing",
    "1st half",
    "2nd half",
    "halftime",
    "half-time",
    "half time",
    "paus",
    "overtime",
    "extra time",
    "penalties",
)

FINISHED_SYNONYMS: tuple[str, ...] = (
    "over",
    "finished",
    "slutspelad",
    "avslutad",
    "full time",
    "full-time",
    "fulltime",
    "match ended",
    "completed",
    "final",
)

UPCOMING_SYNONYMS: tuple[str, ...] = (
    "scheduled",
    "not started",
    "not-started",
    "not_started",
    "upcoming",
    "kommande",
    "planerad",
    "ej startad",
    "pre-match",
    "fixture",
)

_ORDERED_SETS: tuple[tuple[LifecycleCategory, tuple[str, ...]], ...] = (
    (LifecycleCategory.LIVE, LIVE_SYNONYMS),
    (LifecycleCategory.FINISHED, FINISHED_SYNONYMS),
    (LifecycleCategory.UPCOMING, UPCOMING_SYNONYMS),
)

# Interrupted fixtures stay OTHER even once kickoff has passed.
INTERRUPTED_MARKERS: tuple[str, ...] = (
    "postponed",
    "cancelled",
    "canceled",
    "suspended",
    "abandoned",
    "uppskjuten",
    "inställd",
    "avbruten",
)

# Live-stats phases that mean the ball is not rolling.
_IDLE_PHASES = frozenset({"finished", "not-started", "not started"})


def classify(status: Optional[str]) -> LifecycleCategory:
    """Map a raw status string to its lifecycle category; unknown input is OTHER."""
    if not status:
        return LifecycleCategory.OTHER
    needle = status.strip().casefold()
    for category, synonyms in _ORDERED_SETS:
        if any(s in needle for s in synonyms):
            return category
    return LifecycleCategory.OTHER


def classify_with_kickoff(
    status: Optional[str],
    kickoff: Optional[datetime],
    now: datetime,
    finished_after: timedelta = timedelta(hours=3),
) -> LifecycleCategory:
    """
    Classify by status, falling back to the kickoff time when the status is
    unrecognised. Postponed or cancelled fixtures are never inferred from
    the clock. ``now`` is explicit so the function stays pure.
    """
    category = classify(status)
    if category != LifecycleCategory.OTHER or kickoff is None:
        return category
    if status and any(m in status.casefold() for m in INTERRUPTED_MARKERS):
        return category
    if now < kickoff:
        return LifecycleCategory.UPCOMING
    if now > kickoff + finished_after:
        return LifecycleCategory.FINISHED
    return LifecycleCategory.LIVE


def is_match_live(status: Optional[str], live_phase: Optional[str] = None) -> bool:
    """Live by status, or by a live-stats phase other than not-started/finished."""
    if classify(status) == LifecycleCategory.LIVE:
        return True
    if live_phase:
        return live_phase.strip().lower() not in _IDLE_PHASES
    return False
