"""
Unit tests for poll interval computation.

Run: pytest backend/tests/test_polling_engine.py -v
"""
from __future__ import annotations

import random

import pytest

from shared.config import Settings
from shared.models.enums import LifecycleCategory
from scheduler.engine.polling import AdaptivePollingEngine


@pytest.fixture
def polling_engine(settings: Settings) -> AdaptivePollingEngine:
    return AdaptivePollingEngine(settings, rng=random.Random(7))


# ── Base intervals ──────────────────────────────────────────────────────

def test_finished_stops_polling(polling_engine: AdaptivePollingEngine) -> None:
    assert polling_engine.interval_for(LifecycleCategory.FINISHED) is None
    assert polling_engine.interval_for(LifecycleCategory.FINISHED, consecutive_errors=3) is None


def test_category_base_intervals(polling_engine: AdaptivePollingEngine, settings: Settings) -> None:
    assert polling_engine.interval_for(LifecycleCategory.LIVE) == settings.poll_live_interval_s
    assert polling_engine.interval_for(LifecycleCategory.UPCOMING) == settings.poll_upcoming_interval_s
    assert polling_engine.interval_for(LifecycleCategory.OTHER) == settings.poll_other_interval_s


def test_live_polls_faster_than_upcoming(polling_engine: AdaptivePollingEngine) -> None:
    live = polling_engine.interval_for(LifecycleCategory.LIVE)
    upcoming = polling_engine.interval_for(LifecycleCategory.UPCOMING)
    assert live is not None and upcoming is not None
    assert live < upcoming


# ── Error backoff ───────────────────────────────────────────────────────

def test_errors_back_off_exponentially(polling_engine: AdaptivePollingEngine) -> None:
    assert polling_engine.interval_for(LifecycleCategory.LIVE, 1) == 30.0
    assert polling_engine.interval_for(LifecycleCategory.LIVE, 2) == 60.0


def test_backoff_is_capped(polling_engine: AdaptivePollingEngine, settings: Settings) -> None:
    assert polling_engine.interval_for(LifecycleCategory.LIVE, 10) == settings.poll_error_backoff_max_s


# ── Clamping and jitter ─────────────────────────────────────────────────

def test_interval_is_clamped_to_minimum(settings: Settings) -> None:
    fast = settings.model_copy(update={"poll_live_interval_s": 1.0})
    engine = AdaptivePollingEngine(fast)
    assert engine.interval_for(LifecycleCategory.LIVE) == settings.poll_min_interval_s


def test_jitter_stays_within_range(settings: Settings) -> None:
    jittery = settings.model_copy(update={"poll_jitter_factor": 0.2})
    engine = AdaptivePollingEngine(jittery, rng=random.Random(1))
    for _ in range(50):
        interval = engine.interval_for(LifecycleCategory.LIVE)
        assert interval is not None
        assert 12.0 <= interval <= 18.0
