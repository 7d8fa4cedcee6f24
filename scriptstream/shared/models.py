"""
MODULE OVERVIEW:
The strictly typed data structures shared by the client layer and the
development server, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
Wire payloads use camelCase (`isComplete`, `estimatedTimeRemaining`) because the
backend speaks JavaScript. The models accept those aliases and expose snake_case
attributes, so nothing past this module has to care about the wire spelling.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from scriptstream.shared.config import settings

Stage = Literal["analyzing", "generating", "optimizing", "saving", "completed"]
Section = Literal["title", "hook", "script", "cta"]
SECTIONS: tuple[str, ...] = ("title", "hook", "script", "cta")

DEFAULT_RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


# WHAT IS HAPPENING HERE:
# The pair is frozen. A refresh never edits it in place, it builds a new one
# and swaps it into the store in a single assignment, so readers only ever
# observe a complete old pair or a complete new pair.
class TokenPair(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str | None = None


class RetryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: int = Field(default=1000, gt=0)
    multiplier: float = Field(default=2.0, gt=1.0)
    retryable_statuses: frozenset[int] = DEFAULT_RETRYABLE_STATUSES

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the failed attempt with index `attempt`."""
        return self.base_delay_ms * (self.multiplier ** attempt) / 1000.0

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_retries=settings.HTTP_MAX_RETRIES,
            base_delay_ms=settings.HTTP_BASE_DELAY_MS,
            multiplier=settings.HTTP_BACKOFF_MULTIPLIER,
        )


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class StageInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stage: Stage
    message: str = ""
    progress: float = Field(ge=0, le=100)
    estimated_time_remaining: float | None = Field(default=None, alias="estimatedTimeRemaining")


class ContentChunk(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    section: Section
    content: str
    is_complete: bool = Field(alias="isComplete")
    total_progress: float | None = Field(default=None, alias="totalProgress")


class SectionContent(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str = ""
    is_complete: bool = False


class GenerationSnapshot(BaseModel):
    stage: StageInfo | None = None
    sections: dict[str, SectionContent]


# WHAT IS HAPPENING HERE:
# Every websocket frame, in both directions, is one JSON envelope naming the
# event and carrying its payload. It mirrors `socket.emit(event, data)`.
class SocketMessage(BaseModel):
    event: str
    data: dict[str, Any] = Field(default_factory=dict)


class ApiErrorBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    status_code: int | None = Field(default=None, alias="statusCode")
    message: str | list[str] | None = None
    error: str | None = None


class Generation(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    title: str = ""
    hook: str = ""
    script: str = ""
    cta: str | None = None
    platform: str | None = None
    niche: str | None = None
    target_audience: str | None = None
    status: Literal["pending", "completed", "failed"] = "pending"
    is_demo: bool = False
    is_favorite: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AuthUser(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    email: str
    name: str | None = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: str | None = None
    user: AuthUser | None = None


class ConnectionStats(BaseModel):
    active_sockets: int
    active_generations: int
    total_events_dispatched: int
    uptime_s: float
    server_time: datetime
