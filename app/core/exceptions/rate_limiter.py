from app.core.exceptions.base import CustomException


class RateLimiterException(CustomException):
    """
    Base exception for token bucket rate limiting
    """

    def __init__(self, message, exception: Exception | None = None):
        super().__init__(message, exception)


class RateLimitExceeded(RateLimiterException):
    """
    Bucket of a key holds fewer tokens than the request costs
    """

    def __init__(self, message, exception: Exception | None = None):
        super().__init__(message, exception)


class RateLimitConfigurationError(RateLimiterException):
    """
    Limiter built with a non positive capacity or cost, or a negative refill rate
    """

    def __init__(self, message, exception: Exception | None = None):
        super().__init__(message, exception)


class StoreUnavailable(RateLimiterException):
    """
    Bucket store unreachable, failing or too slow to answer. Never reaches the
    client; the limiter's fail policy decides the outcome.
    """

    def __init__(self, message, exception: Exception | None = None):
        super().__init__(message, exception)
