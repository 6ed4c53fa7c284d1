"""
Rate limiting models.

LimiterResponse is the internal outcome of a limiter call; denial is a
value, not an exception. RateLimitResult and RateLimitStatus are what the
rate limit service hands back to request handlers.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class LimitType(str, Enum):
    """Which unauthenticated budget rejected a request."""
    PERSONAL = "personal"
    GLOBAL = "global"


@dataclass(frozen=True)
class LimiterResponse:
    """Outcome of a limiter consume/get for one key."""
    allowed: bool
    remaining_points: int
    ms_before_next: int
    consumed_points: int


class RateLimitResult(BaseModel):
    """Decision returned by a rate limit check."""
    allowed: bool
    ms_before_next: Optional[int] = None
    remaining_points: Optional[int] = None
    reset_at: Optional[datetime] = None
    limit_type: Optional[LimitType] = None

    @property
    def retry_after_seconds(self) -> int:
        """Whole seconds a client should wait, for the Retry-After header."""
        if not self.ms_before_next:
            return 0
        return max(1, math.ceil(self.ms_before_next / 1000))


class RateLimitStatus(BaseModel):
    """Read-only view of a user's remaining budget."""
    remaining_points: int
    ms_before_next: int
    reset_at: datetime


class RateLimitStatusResponse(BaseModel):
    """Response for the rate limit status endpoint."""
    enabled: bool
    status: Optional[RateLimitStatus] = None
    suggestions: list[dict] = Field(default_factory=list)
