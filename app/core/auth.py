import json
from datetime import UTC, datetime
from typing import Any, Mapping, Optional

from jose import jws, jwt
from jose.exceptions import JOSEError

from app.core.config import settings
from app.core.exceptions.tokens import (
    AudienceMismatch,
    MalformedToken,
    SignatureMismatch,
    TokenEncodingError,
)
from app.core.token_types import TokenType, TokenTypeSpec, get_token_type_spec
from app.core.types import RESERVED_CLAIMS, JWTPayloadDict
from app.core.utils import utc_now
from app.schemas.token import DecodedToken


def encode_token(
    subject: str,
    claims: Mapping[str, Any],
    token_type: TokenType,
    *,
    now: Optional[datetime] = None,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
    token_types: Optional[Mapping[TokenType, TokenTypeSpec]] = None,
) -> str:
    """
    Create a signed token of the given type
    Args:
        subject: Principal the token is issued to
        claims: Additional claims, must not use registered claim names
        token_type: Purpose of the token, selects max age and audience
        now: Issue time, defaults to the current time
        secret_key: Signing secret, defaults to settings.secret_key
        algorithm: HMAC algorithm, defaults to settings.jwt_algorithm
        token_types: Token type table, defaults to the configured one

    Returns:
        Encoded JWT token

    Raises:
        TokenEncodingError: If the subject is empty, claims collide with registered
            names or cannot be serialized
    """
    spec = get_token_type_spec(token_type, token_types)

    if not subject:
        raise TokenEncodingError("Token subject must not be empty")

    reserved = RESERVED_CLAIMS.intersection(claims)
    if reserved:
        raise TokenEncodingError(f"Claims use registered claim names: {sorted(reserved)}")

    issued_at = int((now or utc_now()).timestamp())
    registered: JWTPayloadDict = {
        "sub": subject,
        "aud": spec.audience,
        "iat": issued_at,
        "exp": issued_at + spec.max_age_seconds,
    }
    to_encode = {**claims, **registered}

    try:
        return jwt.encode(
            to_encode,
            secret_key or settings.secret_key,
            algorithm=algorithm or settings.jwt_algorithm,
        )
    except (JOSEError, TypeError, ValueError) as e:
        raise TokenEncodingError(f"Unable to encode {token_type} token", e)


def decode_token(
    token: str,
    expected_type: TokenType,
    *,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
    token_types: Optional[Mapping[TokenType, TokenTypeSpec]] = None,
) -> DecodedToken:
    """
    Verify a signed token and return its claims
    Args:
        token: Compact serialized token
        expected_type: Type the token is presented as
        secret_key: Signing secret, defaults to settings.secret_key
        algorithm: HMAC algorithm, defaults to settings.jwt_algorithm
        token_types: Token type table, defaults to the configured one

    Returns:
        Verified token content. Expiry is not checked here.

    Raises:
        MalformedToken: If the structure or the verified claim set is unreadable
        SignatureMismatch: If the signature or algorithm does not match
        AudienceMismatch: If the token was issued for another type
    """
    spec = get_token_type_spec(expected_type, token_types)
    algorithm = algorithm or settings.jwt_algorithm

    if not isinstance(token, str) or token.count(".") != 2:
        raise MalformedToken("Token must have three dot separated segments")

    try:
        header = jws.get_unverified_header(token)
    except JOSEError as e:
        raise MalformedToken("Unable to parse token structure", e)

    if header.get("alg") != algorithm:
        raise SignatureMismatch(f"Unexpected signing algorithm {header.get('alg')!r}")

    # Nothing from the claim set is read before this point
    try:
        payload_bytes = jws.verify(token, secret_key or settings.secret_key, algorithms=[algorithm])
    except JOSEError as e:
        raise SignatureMismatch(exception=e)

    try:
        payload = json.loads(payload_bytes)
    except ValueError as e:
        raise MalformedToken("Claim set is not valid JSON", e)

    if not isinstance(payload, dict):
        raise MalformedToken("Claim set must be a JSON object")

    subject = payload.get("sub")
    audience = payload.get("aud")
    issued_at = payload.get("iat")
    expires_at = payload.get("exp")

    if not isinstance(subject, str) or not subject:
        raise MalformedToken("Token has no subject")
    if not isinstance(audience, str):
        raise MalformedToken("Token has no audience")
    if not _is_timestamp(issued_at) or not _is_timestamp(expires_at):
        raise MalformedToken("Token has invalid iat or exp claims")

    if audience != spec.audience:
        raise AudienceMismatch(f"Token is not a {expected_type} token")

    try:
        issued_at_dt = datetime.fromtimestamp(issued_at, UTC)
        expires_at_dt = datetime.fromtimestamp(expires_at, UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedToken("Token timestamps are out of range", e)

    return DecodedToken(
        subject=subject,
        audience=audience,
        issued_at=issued_at_dt,
        expires_at=expires_at_dt,
        claims={key: value for key, value in payload.items() if key not in RESERVED_CLAIMS},
    )


def _is_timestamp(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)
