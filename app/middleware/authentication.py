from typing import Callable, Sequence

from fastapi import HTTPException, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.services.pipeline import PipelineStage


class AuthenticationPipelineMiddleware(BaseHTTPMiddleware):
    """
    Run every request through the admission stages before routing.

    Stages run in the given order: bearer token, rate limit, OAuth2 delegate.
    A stage rejecting the request or answering it ends the pipeline; the
    remaining stages and the routes are not reached.

    Example:
        ```python
        # In app/main.py
        app.add_middleware(
            AuthenticationPipelineMiddleware,
            stages=[bearer_stage, rate_limit_stage, oauth2_stage],
        )
        ```
    """

    def __init__(self, app: ASGIApp, stages: Sequence[PipelineStage]):
        super().__init__(app)
        self.stages = list(stages)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.principal = None

        for stage in self.stages:
            try:
                response = await stage(request)
            except HTTPException as e:
                return JSONResponse(
                    content={"detail": e.detail},
                    status_code=e.status_code,
                    headers=e.headers,
                )

            if response is not None:
                return response

        return await call_next(request)
