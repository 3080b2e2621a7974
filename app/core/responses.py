from pydantic import BaseModel


class InternalServerErrorResponse(BaseModel):
    detail: str = "Internal server error"


class TooManyRequestsResponse(BaseModel):
    detail: str = "Too many requests"


class UnauthorizedResponse(BaseModel):
    detail: str = "Could not validate credentials"
