"""
Adaptive polling engine for live match views.
Computes the next poll interval from the match's lifecycle category and the
recent error streak.
"""
from __future__ import annotations

import random
from typing import Optional

from shared.config import Settings, get_settings
from shared.models.enums import LifecycleCategory
from shared.utils.logging import get_logger
from shared.utils.metrics import POLL_INTERVAL

logger = get_logger(__name__)


class AdaptivePollingEngine:
    """
    Computes polling intervals per lifecycle category.

    The interval formula:

        base     = category_base[category]      (None for finished: stop polling)
        backoff  = base * 2 ** consecutive_errors, capped at error_backoff_max
        interval = clamp(backoff, min_poll, max_poll)
        interval += jitter(interval * jitter_factor)
    """

    def __init__(self, settings: Settings | None = None, rng: random.Random | None = None) -> None:
        self._settings = settings or get_settings()
        self._rng = rng or random.Random()
        self._base: dict[LifecycleCategory, Optional[float]] = {
            LifecycleCategory.LIVE: self._settings.poll_live_interval_s,
            LifecycleCategory.UPCOMING: self._settings.poll_upcoming_interval_s,
            LifecycleCategory.OTHER: self._settings.poll_other_interval_s,
            LifecycleCategory.FINISHED: None,
        }

    def base_interval(self, category: LifecycleCategory) -> Optional[float]:
        return self._base.get(category)

    def interval_for(self, category: LifecycleCategory, consecutive_errors: int = 0) -> Optional[float]:
        """
        Next poll delay in seconds, or None when polling should stop.

        Errors back off exponentially from the category's base interval.
        """
        base = self._base.get(category)
        if base is None:
            return None

        interval = base
        if consecutive_errors > 0:
            interval = min(base * (2 ** consecutive_errors), self._settings.poll_error_backoff_max_s)

        min_interval = self._settings.poll_min_interval_s
        max_interval = self._settings.poll_max_interval_s
        interval = max(min_interval, min(max_interval, interval))

        jitter_range = interval * self._settings.poll_jitter_factor
        interval = max(min_interval, interval + self._rng.uniform(-jitter_range, jitter_range))

        POLL_INTERVAL.labels(category=category.value).observe(interval)
        logger.debug(
            "interval_computed",
            category=category.value,
            base=base,
            errors=consecutive_errors,
            final_interval=round(interval, 2),
        )
        return interval
