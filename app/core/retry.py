"""Bounded whole-transaction retry for bulk database writes."""

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_fixed

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient_db_error(exc: BaseException) -> bool:
    """Connection drops, lock timeouts and deadlocks; never integrity or validation errors."""
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Transient database error on attempt %s, retrying: %s",
        retry_state.attempt_number,
        exc,
    )


async def retry_database_operation(operation: Callable[[], Awaitable[T]], attempts: int) -> T:
    """Run `operation` up to `attempts` times while it fails with a transient database error."""
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(0.2),
        retry=retry_if_exception(is_transient_db_error),
        before_sleep=_log_retry,
        reraise=True,
    ):
        with attempt:
            return await operation()
    raise RuntimeError("unreachable")  # pragma: no cover
