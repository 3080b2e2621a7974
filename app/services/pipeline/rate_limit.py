from typing import Callable

from fastapi import Request, Response
from loguru import logger

from app.core.config import settings
from app.core.constants import LogEvent, RateLimitPrefix
from app.core.exceptions.http_exceptions import TooManyRequestsException
from app.core.utils import get_client_ip, path_matches
from app.schemas.principal import API_SUBSCRIBER_ROLE, ApiKeyPrincipal, Principal
from app.services.cache.rate_limiter import RateLimiter
from app.services.error_counter import ErrorStatusCounter
from app.services.pipeline.base import PipelineStage

TOO_MANY_REQUESTS_DETAIL = "Too many requests"

# Returns True for principals that are never rate limited
RateLimitExemption = Callable[[Principal], bool]


def exempt_api_subscribers(principal: Principal) -> bool:
    """API key callers holding the API_SUBSCRIBER role bypass the limiters"""
    return isinstance(principal, ApiKeyPrincipal) and API_SUBSCRIBER_ROLE in principal.roles


def rate_limit_key(request: Request) -> str:
    """
    Identity a request is rate limited under.

    Authenticated requests are keyed by principal, anonymous ones by client IP.
    """
    principal: Principal | None = getattr(request.state, "principal", None)
    if principal is not None:
        return f"{RateLimitPrefix.USER}{principal.subject}"

    return f"{RateLimitPrefix.IP}{get_client_ip(request)}"


class RateLimitStage(PipelineStage):
    """
    Admit or throttle every request that passed authentication.

    Login, registration, password reset and verification routes use the strict
    `auth` limiter; all other routes use the `api` limiter. Principals accepted
    by `exempt` skip both. Rejections end the request with 429 and carry no
    detail about the bucket.
    """

    def __init__(
        self,
        limiters: dict[str, RateLimiter],
        error_counter: ErrorStatusCounter | None = None,
        auth_path_prefixes: list[str] | None = None,
        enabled: bool = settings.rate_limit_enabled,
        exempt: RateLimitExemption | None = exempt_api_subscribers,
    ):
        super().__init__(error_counter)
        self.limiters = limiters
        self.auth_path_prefixes = (
            auth_path_prefixes
            if auth_path_prefixes is not None
            else settings.auth_path_prefixes_list
        )
        self.enabled = enabled
        self.exempt = exempt

    def select_limiter(self, request: Request) -> RateLimiter:
        if path_matches(request.url.path, [], self.auth_path_prefixes):
            return self.limiters["auth"]

        return self.limiters["api"]

    async def __call__(self, request: Request) -> Response | None:
        if not self.enabled:
            return None

        principal: Principal | None = getattr(request.state, "principal", None)
        if principal is not None and self.exempt is not None and self.exempt(principal):
            logger.trace(f"{principal.subject} is exempt from rate limiting")
            return None

        limiter = self.select_limiter(request)
        key = rate_limit_key(request)

        is_allowed, info = await limiter.try_acquire(key)

        if not is_allowed:
            # Outages are already reported by the limiter as StoreUnavailable
            if not info["store_unavailable"]:
                self.report(
                    LogEvent.RATE_LIMIT_EXCEEDED,
                    request,
                    principal.subject if principal else None,
                    f"Rate limit {limiter.name} exceeded for {key}",
                )
            raise TooManyRequestsException(detail=TOO_MANY_REQUESTS_DETAIL)

        return None
