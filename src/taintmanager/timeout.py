"""Timeout class for Kubernetes operations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from safir.datetime import current_datetime

from .exceptions import OperationTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    The only bounded wait in the taint manager is the initial cache sync,
    which covers a list of every node and every pod in the cluster. This
    class encapsulates that deadline and translates its expiration into an
    exception carrying the operation name and timing.

    Parameters
    ----------
    operation
        Human-readable name of operation, for error reporting.
    timeout
        Duration of the timeout.
    """

    def __init__(self, operation: str, timeout: timedelta) -> None:
        self._operation = operation
        self._timeout = timeout
        self._start = current_datetime(microseconds=True)

    @asynccontextmanager
    async def enforce(self) -> AsyncIterator[None]:
        """Enforce the timeout and translate `TimeoutError`.

        Raises
        ------
        OperationTimeoutError
            Raised if `TimeoutError` was raised inside the enclosed operation.
        """
        try:
            async with asyncio.timeout(self.left()):
                yield
        except TimeoutError as e:
            now = current_datetime(microseconds=True)
            raise OperationTimeoutError(
                self._operation, started_at=self._start, failed_at=now
            ) from e

    def left(self) -> float:
        """Return the amount of time remaining in seconds.

        Returns
        -------
        float
            Time remaining in the timeout in seconds.

        Raises
        ------
        OperationTimeoutError
            Raised if the timeout has expired.
        """
        now = current_datetime(microseconds=True)
        left = (self._timeout - (now - self._start)).total_seconds()
        if left <= 0.0:
            raise OperationTimeoutError(
                self._operation, started_at=self._start, failed_at=now
            )
        return left
