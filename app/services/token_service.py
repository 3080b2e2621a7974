from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from loguru import logger

from app.core.auth import decode_token, encode_token
from app.core.exceptions.tokens import (
    TokenCodecError,
    TokenExpired,
    TokenValidationError,
)
from app.core.token_types import TokenType, TokenTypeSpec, get_token_type_spec
from app.core.utils import sha256_hex, utc_now
from app.schemas.token import IssuedToken, ValidatedClaims


class TokenService:
    """
    Issues and validates purpose-bound tokens.

    Stateless apart from its configuration: the signing secret, the algorithm, the
    token type table and the clock. Safe to share between concurrent requests.

    Raises domain exceptions (TokenValidationError, TokenExpired, TokenEncodingError)
    which are translated to HTTP responses by the authentication middleware.
    """

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        token_types: Optional[Mapping[TokenType, TokenTypeSpec]] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.token_types = token_types
        self.clock = clock

    def issue(self, subject: str, claims: Mapping[str, Any], token_type: TokenType) -> str:
        """
        Issue a signed token.

        Args:
            subject: Principal the token is issued to
            claims: Additional claims
            token_type: Purpose of the token

        Returns:
            str: Compact signed token

        Raises:
            TokenEncodingError: If the token cannot be encoded
        """
        token = encode_token(
            subject,
            claims,
            token_type,
            now=self.clock(),
            secret_key=self.secret_key,
            algorithm=self.algorithm,
            token_types=self.token_types,
        )
        logger.debug(f"Issued {token_type} token for {subject}")
        return token

    def issue_with_validation_claim(
        self, subject: str, token_type: TokenType, validation_secret: str
    ) -> IssuedToken:
        """
        Issue a token carrying the hashed validation secret of the principal.

        The secret itself never leaves the server; the token carries its SHA-256
        digest under the type's validation claim name. Changing the stored secret
        invalidates every token issued against the old one.

        Args:
            subject: Principal the token is issued to
            token_type: Purpose of the token
            validation_secret: Per-principal secret stored by the caller

        Returns:
            IssuedToken: Token together with its max age, usable as cookie lifetime
        """
        spec = get_token_type_spec(token_type, self.token_types)
        token = self.issue(subject, {spec.validation_claim: sha256_hex(validation_secret)}, token_type)

        return IssuedToken(token=token, token_type=token_type, max_age_seconds=spec.max_age_seconds)

    def validate(self, token: str, token_type: TokenType) -> ValidatedClaims:
        """
        Validate a token presented as the given type.

        Args:
            token: Compact signed token
            token_type: Type the caller expects

        Returns:
            ValidatedClaims: Verified claims of a token that has not expired

        Raises:
            TokenValidationError: If the token is malformed, forged or of another type.
                The codec failure is kept as the cause.
            TokenExpired: If the token is otherwise valid but past its expiry
        """
        spec = get_token_type_spec(token_type, self.token_types)

        try:
            decoded = decode_token(
                token,
                token_type,
                secret_key=self.secret_key,
                algorithm=self.algorithm,
                token_types=self.token_types,
            )
        except TokenCodecError as e:
            raise TokenValidationError(f"Invalid {token_type} token", e)

        if not self.clock() < decoded.expires_at:
            raise TokenExpired(f"{token_type} token expired at {decoded.expires_at.isoformat()}")

        validation_claim = decoded.claims.get(spec.validation_claim)

        return ValidatedClaims(
            subject=decoded.subject,
            audience=decoded.audience,
            token_type=token_type,
            issued_at=decoded.issued_at,
            expires_at=decoded.expires_at,
            validation_claim=validation_claim if isinstance(validation_claim, str) else None,
            claims=decoded.claims,
        )


token_service = TokenService()
