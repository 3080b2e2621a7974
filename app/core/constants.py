class RateLimitPrefix:
    """
    Centralized registry of all rate limit key prefixes.

    All rate limit keys follow the pattern: ratelimit:{limiter}:{kind}:{identifier}
    where kind is `user` for authenticated principals and `ip` for anonymous callers.

    Example:
        ```python
        from app.core.constants import RateLimitPrefix

        key = f"{RateLimitPrefix.API}{RateLimitPrefix.IP}192.168.1.1"
        # Result: "ratelimit:api:ip:192.168.1.1"
        ```
    """

    # Login, registration, password reset and verification routes
    AUTH = "ratelimit:auth:"

    # Everything else
    API = "ratelimit:api:"

    # Identifier kinds
    USER = "user:"
    IP = "ip:"

    @classmethod
    def all_prefixes(cls) -> set[str]:
        """
        Get all registered limiter prefixes.

        Returns:
            set[str]: Set of all registered rate limit prefixes
        """
        return {
            value
            for key, value in cls.__dict__.items()
            if isinstance(value, str) and value.startswith("ratelimit:")
        }

    @classmethod
    def for_limiter(cls, name: str) -> str:
        """
        Get the key prefix of a named limiter.

        Raises:
            ValueError: If no prefix is registered for the limiter
        """
        prefix = f"ratelimit:{name}:"
        if prefix not in cls.all_prefixes():
            raise ValueError(
                f"No rate limit prefix registered for limiter '{name}'. "
                f"Existing prefixes: {cls.all_prefixes()}"
            )
        return prefix


class LogEvent:
    """Event types written to the security log and the error counter"""

    MALFORMED_TOKEN = "MalformedToken"
    SIGNATURE_MISMATCH = "SignatureMismatch"
    AUDIENCE_MISMATCH = "AudienceMismatch"
    TOKEN_EXPIRED = "TokenExpired"
    PRINCIPAL_REJECTED = "PrincipalRejected"
    API_KEY_REJECTED = "ApiKeyRejected"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    STORE_UNAVAILABLE = "StoreUnavailable"
    TOKEN_ENCODING_ERROR = "TokenEncodingError"
