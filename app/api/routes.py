from fastapi import APIRouter, Request

from app.api.v1.router import api_v1_router
from app.schemas.health_check import HealthCheckResponse

api_router = APIRouter()


@api_router.get(
    "/health",
    response_model=HealthCheckResponse,
    tags=["Health"],
    summary="Health Check",
)
async def health_check(request: Request):
    counts = request.app.state.error_counter.snapshot()
    return HealthCheckResponse(
        status="healthy",
        details={f"{category}Count": count for category, count in sorted(counts.items())},
    )


api_router.include_router(
    api_v1_router,
)
