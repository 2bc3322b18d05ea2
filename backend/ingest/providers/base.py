"""
Abstract base class for upstream source adapters.
Defines the contract every adapter (CMS, external match API, live-report feed)
implements, plus the small coercion helpers their parsers share.
"""
from __future__ import annotations

import abc
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar
from zoneinfo import ZoneInfo

from shared.errors import SourceError
from shared.models.enums import SourceName
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Naive upstream timestamps are local Swedish time.
LOCAL_TZ = ZoneInfo("Europe/Stockholm")


def to_int(value: Any, default: int = 0) -> int:
    """Parse a loosely typed number; unparseable input yields ``default``."""
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def to_opt_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def to_opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_kickoff(value: Any) -> Optional[datetime]:
    """Parse an ISO-ish timestamp; naive values are taken as local time."""
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt.astimezone(timezone.utc)


class BaseSource(abc.ABC):
    """
    Abstract base class for upstream sources.

    Adapters return ``None`` for ordinary absence and raise SourceError
    subclasses for transport or payload failures. The base class owns the
    HTTP lifecycle and wraps fetches with timing and failure logging.
    """

    def __init__(self, name: SourceName, http_client: ProviderHTTPClient) -> None:
        self._name = name
        self._http = http_client

    @property
    def name(self) -> SourceName:
        return self._name

    async def start(self) -> None:
        """Initialize the source HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the source HTTP client."""
        await self._http.close()

    async def _fetch(self, operation: str, call: Callable[[], Awaitable[T]], **context: Any) -> T:
        """Run ``call``, logging failures with the operation name before re-raising."""
        start = time.perf_counter()
        try:
            return await call()
        except SourceError as exc:
            logger.warning(
                "source_fetch_failed",
                source=self._name.value,
                operation=operation,
                error=str(exc),
                error_type=type(exc).__name__,
                latency_ms=round((time.perf_counter() - start) * 1000, 2),
                **context,
            )
            raise
