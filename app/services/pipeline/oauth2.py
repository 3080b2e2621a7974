from typing import Awaitable, Callable

from fastapi import Request, Response
from loguru import logger

from app.core.utils import path_matches
from app.services.pipeline.base import PipelineStage

# Handles the third party login handshake and answers the request itself
OAuth2Delegate = Callable[[Request], Awaitable[Response]]

OAUTH2_PATHS = ["/oauth2/authorize"]
OAUTH2_PATH_PREFIXES = ["/oauth2/callback"]


class OAuth2DelegateStage(PipelineStage):
    """
    Hand OAuth2 authorization and callback requests to an external delegate.

    The delegate's response ends the pipeline. Without a delegate the requests
    continue to routing like any other.
    """

    def __init__(
        self,
        delegate: OAuth2Delegate | None = None,
        paths: list[str] = OAUTH2_PATHS,
        path_prefixes: list[str] = OAUTH2_PATH_PREFIXES,
    ):
        super().__init__()
        self.delegate = delegate
        self.paths = paths
        self.path_prefixes = path_prefixes

    async def __call__(self, request: Request) -> Response | None:
        if self.delegate is None:
            return None

        if not path_matches(request.url.path, self.paths, self.path_prefixes):
            return None

        logger.debug(f"Delegating {request.method} {request.url.path} to OAuth2 handler")
        return await self.delegate(request)
