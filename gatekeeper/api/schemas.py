"""Pydantic response models for OpenAPI documentation."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Structured error returned by non-2xx responses."""

    error: bool = Field(True, description="Always true for error responses")
    status_code: int = Field(..., description="HTTP status code")
    detail: str = Field(..., description="Human-readable error message")


class RateLimitedResponse(BaseModel):
    """Body of a 429 answer from the rate limiter."""

    error: bool = Field(True, description="Always true for error responses")
    status_code: int = Field(429, description="HTTP status code")
    message: str = Field(
        ..., description="Which window was exceeded, rendered from its template"
    )


class WelcomeResponse(BaseModel):
    message: str


class WindowHealth(BaseModel):
    """One configured rate-limit window."""

    duration_ms: int = Field(..., description="Window length in milliseconds")
    max_requests: int = Field(..., description="Requests admitted per window")


class RateLimiterHealth(BaseModel):
    active_keys: int = Field(..., description="Number of tracked client keys")
    short_window: WindowHealth
    long_window: WindowHealth


class HealthResponse(BaseModel):
    status: str = Field(..., description="Always 'ok' while the process serves")
    rate_limiter: RateLimiterHealth
    uptime_seconds: float = Field(..., description="Seconds since the process started")
