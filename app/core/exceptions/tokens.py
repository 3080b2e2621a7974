from app.core.exceptions.base import AppException, CustomException

# =============================================================================
# Codec failures (raised by app.core.auth.decode_token)
# =============================================================================


class TokenCodecError(AppException):
    """
    Base exception for token decoding failures
    """

    def __init__(self, message: str, exception: Exception | None = None):
        super().__init__(message, exception)


class MalformedToken(TokenCodecError):
    """
    Token structure or claim set is unreadable
    """

    def __init__(self, message: str = "Malformed token", exception: Exception | None = None):
        super().__init__(message, exception)


class SignatureMismatch(TokenCodecError):
    """
    Token signature does not verify against the shared secret
    """

    def __init__(
        self, message: str = "Signature verification failed", exception: Exception | None = None
    ):
        super().__init__(message, exception)


class AudienceMismatch(TokenCodecError):
    """
    Token was issued for another purpose than the one it is presented for
    """

    def __init__(self, message: str = "Audience mismatch", exception: Exception | None = None):
        super().__init__(message, exception)


# =============================================================================
# Service failures (raised by TokenService.validate)
# =============================================================================


class TokenValidationError(AppException):
    """
    Token cannot be trusted. The underlying codec failure, if any, is kept in `exception`.
    """

    def __init__(self, message: str = "Token validation failed", exception: Exception | None = None):
        super().__init__(message, exception)

    @property
    def category(self) -> str:
        """Name of the most specific failure, used for logs and error counters only."""
        if self.exception is not None:
            return type(self.exception).__name__

        return type(self).__name__


class TokenExpired(TokenValidationError):
    """
    Token signature and audience are valid but its expiry has passed
    """

    def __init__(self, message: str = "Token is expired", exception: Exception | None = None):
        super().__init__(message, exception)


# =============================================================================
# Issuance failures
# =============================================================================


class TokenEncodingError(CustomException):
    """
    Token could not be encoded. Indicates a programming or configuration error.
    """

    def __init__(self, message: str, exception: Exception | None = None):
        super().__init__(message, exception)
