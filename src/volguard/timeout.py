"""Timeout class for capacity checks and volume operations."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from safir.datetime import current_datetime

from .exceptions import OperationTimeoutError

__all__ = ["Timeout"]


class Timeout:
    """Track a cumulative timeout on a series of operations.

    An admission review performs several Kubernetes calls and one capacity
    query per node, all of which must complete within one overall timeout.
    Likewise a reconciliation pass bounds each resize. This class
    encapsulates that type of timeout and provides methods to retrieve
    timeouts for individual operations.

    Parameters
    ----------
    operation
        Human-readable name of operation, for error reporting.
    timeout
        Duration of the timeout.
    namespace
        If given, namespace associated with the operation, for error
        reporting.
    """

    def __init__(
        self, operation: str, timeout: timedelta, namespace: str | None = None
    ) -> None:
        self._operation = operation
        self._timeout = timeout
        self._namespace = namespace
        self._start = current_datetime(microseconds=True)

    def elapsed(self) -> float:
        """Elapsed time since the timeout started.

        Returns
        -------
        float
            Seconds elapsed since the object was created.
        """
        now = current_datetime(microseconds=True)
        return (now - self._start).total_seconds()

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
        except (OperationTimeoutError, TimeoutError) as e:
            raise self._error() from e

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
            raise self._error()
        return left

    def _error(self) -> OperationTimeoutError:
        return OperationTimeoutError(
            self._operation,
            self._namespace,
            started_at=self._start,
            failed_at=current_datetime(microseconds=True),
        )
