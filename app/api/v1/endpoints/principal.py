from typing import Annotated

from fastapi import APIRouter, Depends, status

from app.api.v1.deps.auth import get_current_principal
from app.core import responses
from app.schemas.principal import ApiKeyPrincipal, AuthMethod, Principal, PrincipalResponse

router = APIRouter()


@router.get(
    "",
    response_model=PrincipalResponse,
    responses={
        status.HTTP_401_UNAUTHORIZED: {"model": responses.UnauthorizedResponse},
        status.HTTP_429_TOO_MANY_REQUESTS: {"model": responses.TooManyRequestsResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": responses.InternalServerErrorResponse},
    },
    summary="Read current principal",
    description=(
        "Get the caller's subject and how it authenticated: token type and expiry "
        "for tokens, roles for API keys."
    ),
)
async def read_principal(principal: Annotated[Principal, Depends(get_current_principal)]):
    if isinstance(principal, ApiKeyPrincipal):
        return PrincipalResponse(
            subject=principal.subject,
            auth_method=AuthMethod.API_KEY,
            roles=sorted(principal.roles),
        )

    return PrincipalResponse(
        subject=principal.subject,
        auth_method=AuthMethod.TOKEN,
        token_type=principal.token_type,
        expires_at=principal.expires_at,
    )
