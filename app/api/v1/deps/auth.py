from fastapi import Request
from loguru import logger

from app.schemas.principal import Principal
from app.services.pipeline.bearer_token import credentials_exception


async def get_current_principal(request: Request) -> Principal:
    """
    Get the principal authenticated by the admission pipeline

    Args:
        request: FastAPI request object

    Returns:
        Validated token claims or the API key principal of the caller

    Raises:
        UnauthorizedException: If the caller is anonymous
    """
    principal: Principal | None = getattr(request.state, "principal", None)

    if principal is None:
        logger.debug(f"Anonymous request to protected route {request.url.path}")
        raise credentials_exception()

    return principal
