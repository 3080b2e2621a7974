from .base import PipelineStage
from .bearer_token import BearerTokenStage
from .oauth2 import OAuth2Delegate, OAuth2DelegateStage
from .rate_limit import RateLimitExemption, RateLimitStage, exempt_api_subscribers

__all__ = [
    "PipelineStage",
    "BearerTokenStage",
    "RateLimitExemption",
    "RateLimitStage",
    "exempt_api_subscribers",
    "OAuth2Delegate",
    "OAuth2DelegateStage",
]
