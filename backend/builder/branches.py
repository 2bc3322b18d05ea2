"""Concurrent, failure-isolated fetch branches for page builders."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from shared.errors import SourceError
from shared.utils.logging import get_logger
from shared.utils.metrics import BRANCH_FAILURES

logger = get_logger(__name__)


async def gather_branches(
    page: str,
    branches: dict[str, Awaitable[Any]],
    **context: Any,
) -> tuple[dict[str, Any], list[str]]:
    """
    Await named fetches concurrently and return ``(values, missing)``.

    A branch that raises SourceError yields None and its name is appended to
    ``missing``; the other branches are unaffected. Any other exception is a
    bug and is re-raised once every branch has settled.
    """
    names = list(branches)
    results = await asyncio.gather(*branches.values(), return_exceptions=True)

    values: dict[str, Any] = {}
    missing: list[str] = []
    for name, result in zip(names, results):
        if isinstance(result, SourceError):
            BRANCH_FAILURES.labels(page=page, branch=name).inc()
            logger.warning(
                "branch_failed",
                page=page,
                branch=name,
                error=str(result),
                error_type=type(result).__name__,
                **context,
            )
            values[name] = None
            missing.append(name)
        elif isinstance(result, BaseException):
            raise result
        else:
            values[name] = result
    return values, missing
