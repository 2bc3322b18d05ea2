"""Domain enumerations for Matchcenter."""
from __future__ import annotations

from enum import Enum


class LifecycleCategory(str, Enum):
    FINISHED = "finished"
    LIVE = "live"
    UPCOMING = "upcoming"
    OTHER = "other"

    @property
    def is_terminal(self) -> bool:
        return self == LifecycleCategory.FINISHED


class SourceName(str, Enum):
    FRONTSPACE = "frontspace"
    SMC = "smc"
    SPORTOMEDIA = "sportomedia"


class ResolutionSource(str, Enum):
    """Which upstream(s) produced a resolved match."""
    CUSTOM = "custom"
    MERGED = "merged"
    CMS_ONLY = "cms_only"
    EXTERNAL_ONLY = "external_only"


class Venue(str, Enum):
    HOME = "home"
    AWAY = "away"


class LinkType(str, Enum):
    TICKET = "ticket"
    CUSTOM = "custom"


class PollState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"


class WSClientOp(str, Enum):
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    PING = "ping"


class WSServerMsgType(str, Enum):
    SNAPSHOT = "snapshot"
    NOT_FOUND = "not_found"
    STOPPED = "stopped"
    PONG = "pong"
    ERROR = "error"
