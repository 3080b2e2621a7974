from .base import BaseSchema
from .health_check import HealthCheckResponse
from .principal import ApiCredential, ApiKeyPrincipal, Principal, PrincipalResponse
from .token import DecodedToken, IssuedToken, ValidatedClaims

__all__ = [
    "BaseSchema",
    "HealthCheckResponse",
    "ApiCredential",
    "ApiKeyPrincipal",
    "Principal",
    "PrincipalResponse",
    "DecodedToken",
    "IssuedToken",
    "ValidatedClaims",
]
