from pydantic import Field

from app.schemas.base import BaseSchema


class HealthCheckResponse(BaseSchema):
    """Schema for health check response"""

    status: str
    details: dict[str, int] = Field(default_factory=dict)
