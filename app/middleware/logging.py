import time
import uuid
from typing import Callable

from fastapi import Request, Response
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.logger import request_id_var
from app.core.utils import get_client_ip


def _principal_name(request: Request) -> str:
    principal = getattr(request.state, "principal", None)
    return principal.subject if principal is not None else "-"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Outermost middleware: tags the request with a short id and logs it.

    The id is kept in `request.state.request_id` and in `request_id_var` for the
    duration of the request, so every log line written while handling it carries
    the id. It is returned to the client in `X-Request-ID`.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())[:8]

        request.state.request_id = request_id
        context_token = request_id_var.set(request_id)

        started = time.perf_counter()

        logger.trace(
            f"{request.method} {request.url.path} - "
            f"Client: {get_client_ip(request)} - "
            f"User-Agent: {request.headers.get('user-agent', 'unknown')}",
        )

        try:
            response: Response = await call_next(request)

            logger.trace(
                f"{request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Principal: {_principal_name(request)} - "
                f"Time: {time.perf_counter() - started:.3f}s",
            )

            response.headers["X-Request-ID"] = request_id

            return response

        except Exception as e:
            logger.error(
                f"{request.method} {request.url.path} - "
                f"Error: {type(e).__name__}: {e} - "
                f"Time: {time.perf_counter() - started:.3f}s",
                request_query_params=dict(request.query_params),
            )
            raise

        finally:
            request_id_var.reset(context_token)
