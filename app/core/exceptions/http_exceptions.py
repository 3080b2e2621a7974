from typing import Any, Optional

from starlette import status

from app.core.exceptions.base import HTTPException


class TooManyRequestsException(HTTPException):
    def __init__(
        self,
        detail: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """
        The caller's bucket is empty. No remaining or reset values are sent back
        so that clients cannot time their retries against the limiter.
        :param detail: Body `detail`, a fixed message.
        :param headers: Optional headers to include in the response.
        """
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers=headers,
        )


class UnauthorizedException(HTTPException):
    def __init__(
        self,
        detail: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """
        A token was presented and cannot be trusted, or a protected route was
        called anonymously. Every cause gets the same body; the cause itself is
        only logged.
        :param detail: Body `detail`, a fixed message.
        :param headers: Challenge headers, `WWW-Authenticate: Bearer`.
        """
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers=headers,
        )
