"""Business logic services."""

from .errors import (
    Conflict,
    Forbidden,
    InvalidArgument,
    NotFound,
    RelationshipError,
    TooManyRequests,
)
from .rate_limiter import (
    RateLimiter,
    get_rate_limiter,
    set_rate_limiter,
)
from .relationship_validator import validate_users

__all__ = [
    "RelationshipError",
    "NotFound",
    "InvalidArgument",
    "Conflict",
    "Forbidden",
    "TooManyRequests",
    "RateLimiter",
    "get_rate_limiter",
    "set_rate_limiter",
    "validate_users",
]
