from abc import ABC, abstractmethod

from fastapi import Request, Response

from app.core.logger import log_security_event
from app.services.error_counter import ErrorStatusCounter


class PipelineStage(ABC):
    """
    One step of the request admission pipeline.

    A stage returns None to hand the request to the next stage, returns a
    response to end the pipeline with it, or raises an HTTPException to reject
    the request.
    """

    def __init__(self, error_counter: ErrorStatusCounter | None = None):
        self.error_counter = error_counter

    @abstractmethod
    async def __call__(self, request: Request) -> Response | None: ...

    def report(self, category: str, request: Request, subject: str | None, message: str) -> None:
        """Write a security event to the log and the error counter"""
        log_security_event(category, request.url.path, message, subject=subject)
        if self.error_counter is not None:
            self.error_counter.increment(category)
