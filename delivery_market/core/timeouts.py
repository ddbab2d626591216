"""
Caller-side timeouts for state-advancing operations.

A timeout means "outcome unknown", not "failed": the write may have been
committed after we stopped waiting.
"""
import asyncio
from typing import Awaitable, TypeVar

from delivery_market.core.config import settings
from delivery_market.core.exceptions import OperationTimeoutError
from delivery_market.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def run_with_timeout(
    awaitable: Awaitable[T],
    operation: str,
    timeout_seconds: float | None = None,
) -> T:
    """Await `awaitable`, raising OperationTimeoutError if it takes too long."""
    timeout = timeout_seconds if timeout_seconds is not None else settings.OPERATION_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "פעולה חרגה מזמן ההמתנה - התוצאה לא ידועה",
            extra_data={"operation": operation, "timeout_seconds": timeout},
        )
        raise OperationTimeoutError(operation, timeout) from None
