from datetime import datetime
from types import MappingProxyType
from typing import Annotated, Any, Mapping

from pydantic import AfterValidator, Field, PlainSerializer

from app.core.token_types import TokenType
from app.schemas.base import BaseSchema

# Custom claims, read only once validated; serialized back as a plain dict
ReadOnlyClaims = Annotated[
    Mapping[str, Any],
    AfterValidator(lambda claims: MappingProxyType(dict(claims))),
    PlainSerializer(dict),
]


class DecodedToken(BaseSchema):
    """Verified content of a signed token, as returned by the codec"""

    subject: str
    audience: str
    issued_at: datetime
    expires_at: datetime
    claims: ReadOnlyClaims = Field(default_factory=lambda: MappingProxyType({}))


class ValidatedClaims(BaseSchema):
    """
    Result of a successful token validation.

    Signature, audience and expiry have been checked. `validation_claim` is the
    type specific marker embedded at issuance; comparing it with stored state is
    left to the caller.
    """

    subject: str
    audience: str
    token_type: TokenType
    issued_at: datetime
    expires_at: datetime
    validation_claim: str | None = None
    claims: ReadOnlyClaims = Field(default_factory=lambda: MappingProxyType({}))


class IssuedToken(BaseSchema):
    """Signed token together with its lifetime, for cookies and login responses"""

    token: str
    token_type: TokenType
    max_age_seconds: int
