from app.core.exceptions.base import AppException


class PrincipalRejected(AppException):
    """
    Credentials are readable but do not match the principal's stored state.
    `subject` names the principal they claim, when known.
    """

    def __init__(
        self, message: str, subject: str | None = None, exception: Exception | None = None
    ):
        super().__init__(message, exception)
        self.subject = subject

    @property
    def category(self) -> str:
        """Name of the failure, used for logs and error counters only."""
        return type(self).__name__


class ApiKeyRejected(PrincipalRejected):
    """
    API key is unknown, or its secret is missing or does not match
    """
