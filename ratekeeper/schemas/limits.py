"""Pydantic schemas for the rate limit decision and admin endpoints."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class RateLimitCheckRequest(BaseModel):
    """Body of a decision request sent by another service."""

    key: str | None = Field(
        default=None,
        min_length=1,
        max_length=512,
        description="Explicit limiter key; derived from the caller's address when omitted.",
    )
    outcome: bool | None = Field(
        default=None,
        description="Outcome of the guarded action: true=success, false=failure, null=unknown.",
    )


class RateLimitCheckResponse(BaseModel):
    """Admission decision for one check."""

    limiter: str = Field(..., description="Preset name that evaluated the check.")
    allowed: bool
    limit: int = Field(..., description="Effective limit applied to this check.")
    remaining: int = Field(..., ge=0)
    reset_at: str = Field(..., description="ISO-8601 UTC time the window frees up.")
    retry_after_seconds: int | None = Field(
        default=None, description="Present only when the check was denied."
    )


class RateLimitStatsResponse(BaseModel):
    """State currently held for one key."""

    limiter: str
    key: str
    count: int = Field(..., ge=0, description="Requests recorded in the current window.")
    failure_count: int | None = Field(
        default=None, description="Failed attempts counted (fixed-window limiters only)."
    )
    window_start: str | None = None
    reset_at: str | None = None
    timestamps: List[str] = Field(
        default_factory=list,
        description="Recorded request times (sliding-window limiters only).",
    )


class LimiterInfo(BaseModel):
    name: str
    window_ms: int
    max_requests: int
    count_successes: bool
    count_failures: bool
