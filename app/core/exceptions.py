import functools
import logging
from typing import Any, Awaitable, Callable, TypeVar

from fastapi import status

logger = logging.getLogger(__name__)

T = TypeVar("T")

INTERNAL_ERROR_MESSAGE = "Internal server error"


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def service_boundary(action: str) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator for public service operations.

    ServiceError passes through untouched; anything else is logged and
    converted into a generic 500 ServiceError, so routers only ever handle
    ServiceError.

    Example:
        @service_boundary("creating qualification")
        async def create_qualification(...): ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except ServiceError:
                raise
            except Exception as e:
                logger.exception("Error %s", action)
                raise ServiceError(INTERNAL_ERROR_MESSAGE, status.HTTP_500_INTERNAL_SERVER_ERROR) from e

        return wrapper

    return decorator
