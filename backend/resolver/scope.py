"""Request-scoped memoization of upstream lookups."""
from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Hashable, Optional, TypeVar

T = TypeVar("T")


class RequestScope:
    """
    Memo table for one request. Repeated lookups with the same key inside the
    request share one call; concurrent awaits share the same task. Failed calls
    are forgotten so a later lookup in the same scope may retry.

    Scopes are created per request by the API layer and passed explicitly to
    the resolver and builders; nothing here outlives the request.
    """

    def __init__(self, request_id: Optional[str] = None) -> None:
        self.request_id = request_id or uuid.uuid4().hex
        self._memo: dict[Hashable, asyncio.Task[Any]] = {}

    async def memo(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        task = self._memo.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._memo[key] = task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._memo.get(key) is task and task.done():
                del self._memo[key]
            raise

    def __len__(self) -> int:
        return len(self._memo)

    def __repr__(self) -> str:
        return f"RequestScope(request_id={self.request_id!r}, entries={len(self._memo)})"
