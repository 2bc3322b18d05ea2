"""
Poll controller for a single live match view.

State machine ``idle -> polling -> idle``. Each started or switched view gets
a new generation number; a tick result is applied only while its generation
is still current, so a slow response for a superseded view can never
overwrite fresher data.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from shared.models.enums import LifecycleCategory, PollState
from shared.utils.logging import get_logger
from shared.utils.metrics import POLL_SESSIONS, POLL_TICKS

from scheduler.engine.polling import AdaptivePollingEngine

logger = get_logger(__name__)

V = TypeVar("V")
R = TypeVar("R")


@dataclass
class PollSession(Generic[V]):
    """One view being polled. Superseded sessions keep their old generation."""

    view: V
    generation: int
    consecutive_errors: int = 0
    ticks: int = 0
    in_tick: bool = False
    last_category: LifecycleCategory = LifecycleCategory.OTHER
    task: Optional[asyncio.Task[None]] = field(default=None, repr=False)


class PollController(Generic[V, R]):
    """
    Drives ``tick_fn`` for the current view at the interval the polling
    engine picks for the last observed lifecycle category.

    ``on_result(session, result)`` receives every non-stale result. A None
    result means the view no longer resolves; polling stops after it is
    delivered, as it does after a finished category. ``on_stopped`` is told
    why a session ended on its own.
    """

    def __init__(
        self,
        tick_fn: Callable[[V], Awaitable[Optional[R]]],
        on_result: Callable[[PollSession[V], Optional[R]], Awaitable[None]],
        engine: AdaptivePollingEngine,
        category_fn: Callable[[R], LifecycleCategory] = lambda r: r.category,  # type: ignore[attr-defined]
        on_error: Callable[[PollSession[V], Exception], Awaitable[None]] | None = None,
        on_stopped: Callable[[PollSession[V], str], Awaitable[None]] | None = None,
    ) -> None:
        self._tick_fn = tick_fn
        self._on_result = on_result
        self._engine = engine
        self._category_fn = category_fn
        self._on_error = on_error
        self._on_stopped = on_stopped
        self._generation = 0
        self._session: Optional[PollSession[V]] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def state(self) -> PollState:
        session = self._session
        if session is not None and session.task is not None and not session.task.done():
            return PollState.POLLING
        return PollState.IDLE

    @property
    def session(self) -> Optional[PollSession[V]]:
        return self._session

    def start(self, view: V) -> PollSession[V]:
        """Begin polling ``view``. Any current view is superseded."""
        return self._begin(view, "start")

    def switch(self, view: V) -> PollSession[V]:
        """
        Replace the current view. A tick already in flight for the old view
        is allowed to finish but its result is discarded.
        """
        return self._begin(view, "switch")

    async def stop(self) -> None:
        """Stop polling now. The running task is cancelled and awaited."""
        self._generation += 1
        session, self._session = self._session, None
        if session is None or session.task is None or session.task.done():
            return
        session.task.cancel()
        await asyncio.gather(session.task, return_exceptions=True)
        logger.info("poll_stopped", view=describe_view(session.view), generation=session.generation)

    def _begin(self, view: V, reason: str) -> PollSession[V]:
        previous = self._session
        self._generation += 1
        if previous is not None and previous.task is not None and not previous.task.done():
            if not previous.in_tick:
                previous.task.cancel()
            logger.info(
                "poll_view_superseded",
                view=describe_view(previous.view),
                generation=previous.generation,
                in_tick=previous.in_tick,
            )

        session: PollSession[V] = PollSession(view=view, generation=self._generation)
        session.task = asyncio.create_task(self._run(session))
        self._session = session
        logger.info("poll_started", view=describe_view(view), generation=session.generation, reason=reason)
        return session

    def _is_current(self, session: PollSession[V]) -> bool:
        return session.generation == self._generation

    async def _run(self, session: PollSession[V]) -> None:
        POLL_SESSIONS.inc()
        try:
            while self._is_current(session):
                stop_reason = await self._tick(session)
                if not self._is_current(session):
                    return
                if stop_reason is not None:
                    logger.info("poll_session_ended", view=describe_view(session.view), reason=stop_reason)
                    if self._on_stopped is not None:
                        await self._on_stopped(session, stop_reason)
                    return

                interval = self._engine.interval_for(session.last_category, session.consecutive_errors)
                if interval is None:
                    return
                await asyncio.sleep(interval)
        finally:
            POLL_SESSIONS.dec()

    async def _tick(self, session: PollSession[V]) -> Optional[str]:
        """Run one tick. Returns a reason when the session should end."""
        session.in_tick = True
        session.ticks += 1
        try:
            result = await self._tick_fn(session.view)
        except Exception as exc:
            if not self._is_current(session):
                self._discard(session)
                return None
            session.consecutive_errors += 1
            POLL_TICKS.labels(outcome="error").inc()
            logger.warning(
                "poll_tick_failed",
                view=describe_view(session.view),
                generation=session.generation,
                consecutive_errors=session.consecutive_errors,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            if self._on_error is not None:
                await self._on_error(session, exc)
            return None
        finally:
            session.in_tick = False

        if not self._is_current(session):
            self._discard(session)
            return None

        session.consecutive_errors = 0
        POLL_TICKS.labels(outcome="applied").inc()
        await self._on_result(session, result)

        if result is None:
            return "not_found"
        session.last_category = self._category_fn(result)
        if session.last_category.is_terminal:
            return "finished"
        return None

    def _discard(self, session: PollSession[V]) -> None:
        POLL_TICKS.labels(outcome="stale").inc()
        logger.info(
            "poll_tick_discarded",
            view=describe_view(session.view),
            tick_generation=session.generation,
            current_generation=self._generation,
        )


def describe_view(view: Any) -> str:
    return getattr(view, "describe", lambda: str(view))()
