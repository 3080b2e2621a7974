from fastapi import APIRouter, Depends

from app.api.v1.deps.auth import get_current_principal
from app.api.v1.endpoints import principal

api_v1_router = APIRouter(prefix="/api/v1")


api_v1_router.include_router(
    principal.router,
    prefix="/principal",
    tags=["Principal"],
    dependencies=[Depends(get_current_principal)],
)
