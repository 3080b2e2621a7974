from typing import Any, TypedDict


class JWTPayloadDict(TypedDict, total=False):
    """JWT payload structure for encoding/decoding."""

    sub: str  # Subject (principal name)
    aud: str  # Audience tag of the token type
    iat: int  # Issued at timestamp
    exp: int  # Expiration timestamp


class RateLimitInfo(TypedDict):
    """Rate limit information returned by acquire operations"""

    limit: int
    remaining: int
    # The store could not answer; the fail policy decided the outcome
    store_unavailable: bool


class BucketResult(TypedDict):
    """Outcome of one atomic refill-check-subtract against the bucket store"""

    allowed: bool
    tokens: float


RESERVED_CLAIMS = frozenset(JWTPayloadDict.__annotations__)

ClaimsDict = dict[str, Any]
