from datetime import datetime
from enum import StrEnum

from app.core.token_types import TokenType
from app.schemas.base import BaseSchema
from app.schemas.token import ValidatedClaims

API_SUBSCRIBER_ROLE = "API_SUBSCRIBER"


class AuthMethod(StrEnum):
    TOKEN = "token"
    API_KEY = "api_key"


class ApiCredential(BaseSchema):
    """
    Stored API key of a principal.

    Only the SHA-256 hex digest of the secret is kept.
    """

    subject: str
    api_key: str
    secret_hash: str
    roles: frozenset[str] = frozenset()


class ApiKeyPrincipal(BaseSchema):
    """Caller authenticated by API key and secret headers"""

    subject: str
    roles: frozenset[str] = frozenset()


# What the admission pipeline stores in `request.state.principal`
Principal = ValidatedClaims | ApiKeyPrincipal


class PrincipalResponse(BaseSchema):
    """Current principal as seen by the API"""

    subject: str
    auth_method: AuthMethod
    token_type: TokenType | None = None
    expires_at: datetime | None = None
    roles: list[str] = []
