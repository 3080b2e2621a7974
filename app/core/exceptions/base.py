from typing import Any, Optional

from fastapi import HTTPException as FastAPIHTTPException


class CustomException(Exception):
    """
    Root of the gateway's own exceptions.

    `exception` keeps the lower level error that caused this one, if any, and is
    appended to the string form for logs.
    """

    def __init__(self, message, exception: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.exception = exception

    def __str__(self):
        if self.exception:
            return f"{self.message}\nException: {self.exception}"

        return self.message


class AppException(CustomException):
    """
    Expected failure of a token or rate limit operation, mapped to an HTTP status by
    the pipeline
    """


class HTTPException(FastAPIHTTPException):
    def __init__(
        self,
        status_code: int,
        detail: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Rejection of a request, turned into a JSON response by the admission pipeline
        or by FastAPI inside routes.
        :param status_code: HTTP status of the rejection.
        :param detail: Body `detail` shown to the client.
        :param headers: Response headers, e.g. `WWW-Authenticate`.
        """
        super().__init__(status_code=status_code, detail=detail, headers=headers)
