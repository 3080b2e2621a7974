import hmac
from typing import Awaitable, Callable, Protocol

from loguru import logger

from app.core.exceptions.principals import ApiKeyRejected
from app.core.token_types import TokenType
from app.core.utils import sha256_hex
from app.schemas.principal import ApiCredential, ApiKeyPrincipal
from app.schemas.token import ValidatedClaims

# Returns the stored validation secret of a principal, or None if it does not exist
SecretLookup = Callable[[str, TokenType], Awaitable[str | None]]

# Returns the stored credential of an API key, or None if it does not exist
ApiKeyLookup = Callable[[str], Awaitable[ApiCredential | None]]


class PrincipalVerifier(Protocol):
    async def __call__(self, claims: ValidatedClaims) -> bool: ...


class ClaimHashVerifier:
    """
    Accept a token only while its validation claim matches the principal's
    current validation secret.

    The token carries sha256(secret). Rotating the stored secret makes every
    outstanding token of that type fail this check.
    """

    def __init__(self, lookup: SecretLookup):
        self.lookup = lookup

    async def __call__(self, claims: ValidatedClaims) -> bool:
        if claims.validation_claim is None:
            logger.debug(f"{claims.token_type} token of {claims.subject} has no validation claim")
            return False

        secret = await self.lookup(claims.subject, claims.token_type)
        if secret is None:
            logger.debug(f"No validation secret stored for {claims.subject}")
            return False

        return hmac.compare_digest(sha256_hex(secret), claims.validation_claim)


class ApiKeyAuthenticator:
    """Authenticate machine callers by an API key and its secret"""

    def __init__(self, lookup: ApiKeyLookup):
        self.lookup = lookup

    async def __call__(self, api_key: str, api_secret: str | None) -> ApiKeyPrincipal:
        """
        Resolve the principal owning `api_key`.

        Raises:
            ApiKeyRejected: If the secret is missing, the key unknown or the secret wrong
        """
        if not api_secret:
            raise ApiKeyRejected("API secret header missing")

        credential = await self.lookup(api_key)
        if credential is None:
            raise ApiKeyRejected("Unknown API key")

        key_matches = hmac.compare_digest(credential.api_key.encode(), api_key.encode())
        secret_matches = hmac.compare_digest(credential.secret_hash, sha256_hex(api_secret))
        if not (key_matches and secret_matches):
            raise ApiKeyRejected("API key secret mismatch", subject=credential.subject)

        return ApiKeyPrincipal(subject=credential.subject, roles=credential.roles)
