"""Pydantic request and response schemas for the HTTP API."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

from rethink.auth.keys import APIKeyRecord
from rethink.thinking.engine import ThinkingResult, ThinkingRound

# =============================================================================
# SYSTEM
# =============================================================================


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    """Health status for a single component."""

    name: str = Field(..., description="Component name")
    status: HealthStatus = Field(..., description="Component health status")
    message: str | None = Field(default=None, description="Additional status message")


class HealthResponse(BaseModel):
    """Health check response."""

    status: HealthStatus = Field(..., description="Overall system health")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Health check timestamp",
    )
    version: str = Field(default="0.1.0", description="Application version")


class ProviderStatus(BaseModel):
    """Circuit and ranking state for one configured provider."""

    name: str
    model: str
    priority: int
    circuit_state: str = Field(..., description="closed, open or half_open")
    failure_count: int = Field(..., description="Failures inside the current window")
    cooldown_seconds: float
    degraded: bool = Field(default=False, description="Demoted by adaptive ranking")


class SystemStatus(BaseModel):
    """Detailed system status response."""

    status: HealthStatus = Field(..., description="Overall system health")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Status check timestamp",
    )
    version: str = Field(default="0.1.0", description="Application version")
    environment: str = Field(..., description="Current environment")
    components: list[ComponentHealth] = Field(default_factory=list)
    providers: list[ProviderStatus] = Field(default_factory=list)
    features: dict[str, bool] = Field(default_factory=dict, description="Feature flag values")
    uptime_seconds: float | None = Field(default=None)


# =============================================================================
# CHAT
# =============================================================================


class ContextMessage(BaseModel):
    """One prior conversation turn."""

    role: Literal["system", "user", "assistant"] = "user"
    content: str


class ChatRequest(BaseModel):
    """Request body for POST /chat."""

    prompt: str = Field(..., min_length=1, max_length=100_000, description="The question to think about")
    context: list[ContextMessage] = Field(default_factory=list, description="Prior conversation")
    thinking_rounds: int | None = Field(
        default=None,
        ge=1,
        description="Per-call round cap (bounded by the server's hard cap)",
    )
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    enable_streaming: bool = Field(default=False, description="Stream rounds as Server-Sent Events")
    target_quality: float | None = Field(default=None, ge=0.0, le=1.0)
    max_thinking_time: float | None = Field(default=None, gt=0.0, le=3600.0)


class ThinkingRoundResponse(BaseModel):
    """One entry of thinking_history."""

    round: int
    branch: int = 0
    response: str
    critique: str
    quality: float
    elapsed_seconds: float
    provider: str | None = None

    @classmethod
    def from_round(cls, r: ThinkingRound) -> "ThinkingRoundResponse":
        return cls(
            round=r.index,
            branch=r.branch,
            response=r.response,
            critique=r.critique,
            quality=r.quality,
            elapsed_seconds=round(r.elapsed_seconds, 3),
            provider=r.provider,
        )


class ChatResponse(BaseModel):
    """Response body for POST /chat."""

    response: str = Field(..., description="Best answer found")
    thinking_rounds: int = Field(..., description="Number of rounds completed")
    final_quality: float
    improvement: float = Field(..., description="final_quality minus the first round's quality")
    stop_reason: str
    satisfied: bool = Field(..., description="Whether the quality target was met")
    total_time_seconds: float
    thinking_history: list[ThinkingRoundResponse] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ThinkingResult) -> "ChatResponse":
        return cls(
            response=result.response,
            thinking_rounds=len(result.rounds),
            final_quality=result.final_quality,
            improvement=result.improvement,
            stop_reason=result.stop_reason.value,
            satisfied=result.satisfied,
            total_time_seconds=round(result.total_time_seconds, 3),
            thinking_history=[ThinkingRoundResponse.from_round(r) for r in result.rounds],
        )


# =============================================================================
# API KEYS
# =============================================================================


class APIKeyCreate(BaseModel):
    """Request body for POST /keys."""

    name: str = Field(..., min_length=1, max_length=100)
    scopes: list[str] = Field(default_factory=lambda: ["chat"], min_length=1)
    expires_in_days: int | None = Field(default=None, ge=1, le=3650)


class APIKeyResponse(BaseModel):
    """Key metadata. Never includes the secret."""

    key_id: str
    name: str
    scopes: list[str]
    created_at: datetime
    expires_at: datetime | None = None
    revoked_at: datetime | None = None

    @classmethod
    def from_record(cls, record: APIKeyRecord) -> "APIKeyResponse":
        return cls(
            key_id=record.key_id,
            name=record.name,
            scopes=sorted(record.scopes),
            created_at=record.created_at,
            expires_at=record.expires_at,
            revoked_at=record.revoked_at,
        )


class APIKeyCreatedResponse(APIKeyResponse):
    """Returned once, on creation, with the raw secret."""

    secret: str = Field(..., description="Raw API key; store it now, it cannot be shown again")


class APIKeyListResponse(BaseModel):
    keys: list[APIKeyResponse]
    total: int
