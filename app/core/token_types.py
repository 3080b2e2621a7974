from dataclasses import dataclass, replace
from enum import StrEnum
from types import MappingProxyType
from typing import Mapping

from app.core.config import settings

TOKEN_NAMESPACE = "token-gate"


class TokenType(StrEnum):
    """Purposes a token can be issued for."""

    APP_AUTH = "APP_AUTH"
    APP_AUTH_REFRESH = "APP_AUTH_REFRESH"
    PW_RESET = "PW_RESET"
    PW_AUTH = "PW_AUTH"
    VERIFICATION = "VERIFICATION"


@dataclass(frozen=True, slots=True)
class TokenTypeSpec:
    """
    Static description of a token type.

    Attributes:
        token_type: The type this entry describes
        max_age_seconds: Lifetime of every token of this type
        audience: Tag embedded as the `aud` claim, unique per type
        validation_claim: Name of the claim carrying the hashed validation secret
        cookie_name: Cookie used when the token travels as a cookie
        description: Human readable purpose
    """

    token_type: TokenType
    max_age_seconds: int
    audience: str
    validation_claim: str
    cookie_name: str
    description: str


def _default_spec(token_type: TokenType, max_age_seconds: int, description: str) -> TokenTypeSpec:
    slug = token_type.value.lower()
    return TokenTypeSpec(
        token_type=token_type,
        max_age_seconds=max_age_seconds,
        audience=f"{TOKEN_NAMESPACE}:{slug}",
        validation_claim=f"{slug}_claim",
        cookie_name=f"{TOKEN_NAMESPACE}-{slug}-token",
        description=description,
    )


DEFAULT_TOKEN_TYPES: tuple[TokenTypeSpec, ...] = (
    _default_spec(TokenType.APP_AUTH, 5 * 60, "Auth token"),
    _default_spec(TokenType.APP_AUTH_REFRESH, 24 * 60 * 60, "Auth refresh token"),
    _default_spec(TokenType.PW_RESET, 24 * 60 * 60, "Password reset token"),
    _default_spec(TokenType.PW_AUTH, 5 * 60, "Password reset auth token"),
    _default_spec(TokenType.VERIFICATION, 365 * 24 * 60 * 60, "Email verification token"),
)


def build_token_type_table(
    specs: tuple[TokenTypeSpec, ...] = DEFAULT_TOKEN_TYPES,
    max_age_overrides: Mapping[str, int] | None = None,
) -> Mapping[TokenType, TokenTypeSpec]:
    """
    Build the read-only token type table.

    Args:
        specs: One entry per token type
        max_age_overrides: Max ages in seconds keyed by token type name

    Returns:
        Mapping[TokenType, TokenTypeSpec]: Immutable lookup table

    Raises:
        ValueError: If a type is missing or duplicated, an audience is reused,
            a max age is not positive, or an override names an unknown type
    """
    overrides = dict(max_age_overrides or {})
    table: dict[TokenType, TokenTypeSpec] = {}
    audiences: set[str] = set()

    for spec in specs:
        if spec.token_type in table:
            raise ValueError(f"Token type {spec.token_type} is defined more than once")

        if spec.token_type.value in overrides:
            spec = replace(spec, max_age_seconds=overrides.pop(spec.token_type.value))

        if spec.max_age_seconds <= 0:
            raise ValueError(
                f"Max age for token type {spec.token_type} must be positive, "
                f"got {spec.max_age_seconds}"
            )
        if spec.audience in audiences:
            raise ValueError(f"Audience {spec.audience} is used by more than one token type")

        audiences.add(spec.audience)
        table[spec.token_type] = spec

    if overrides:
        raise ValueError(f"Unknown token types in max age overrides: {sorted(overrides)}")

    missing = set(TokenType) - set(table)
    if missing:
        raise ValueError(f"Token types without a definition: {sorted(missing)}")

    return MappingProxyType(table)


TOKEN_TYPES = build_token_type_table(max_age_overrides=settings.token_max_age_overrides)


def get_token_type_spec(
    token_type: TokenType, table: Mapping[TokenType, TokenTypeSpec] | None = None
) -> TokenTypeSpec:
    """Look up the static description of a token type."""
    return (table if table is not None else TOKEN_TYPES)[token_type]
