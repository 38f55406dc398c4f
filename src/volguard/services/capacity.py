"""Capacity oracle reporting free volume group space per node."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from typing import override

from structlog.stdlib import BoundLogger

from ..exceptions import CapacityQueryError
from ..storage.prometheus import PrometheusClient
from ..timeout import Timeout

__all__ = [
    "CapacityOracle",
    "FixedCapacityOracle",
    "PrometheusCapacityOracle",
]


class CapacityOracle(metaclass=ABCMeta):
    """Report the free capacity of the volume groups on a node.

    The value is always looked up when requested and never cached, so the
    caller controls how fresh it is.
    """

    async def free_capacity(self, node: str, timeout: Timeout) -> int:
        """Return the free volume group capacity of a node.

        Parameters
        ----------
        node
            Name of the node.
        timeout
            Timeout on the query.

        Returns
        -------
        int
            Free capacity in bytes, never negative.

        Raises
        ------
        CapacityQueryError
            Raised if the node name is empty or its capacity could not be
            determined. A node with no data is an error, not zero capacity.
        OperationTimeoutError
            Raised if the query did not complete within the timeout.
        """
        if not node:
            raise CapacityQueryError("Cannot query capacity of empty node")
        free = await self._query(node, timeout)
        return max(free, 0)

    @abstractmethod
    async def _query(self, node: str, timeout: Timeout) -> int:
        """Query the free capacity of a non-empty node name."""


class FixedCapacityOracle(CapacityOracle):
    """Report the same free capacity for every node.

    This is an explicit operating mode for clusters without volume group
    metrics, not a fallback for query failures.

    Parameters
    ----------
    free_bytes
        Free capacity to report.
    """

    def __init__(self, free_bytes: int) -> None:
        self._free_bytes = free_bytes

    @override
    async def _query(self, node: str, timeout: Timeout) -> int:
        return self._free_bytes


class PrometheusCapacityOracle(CapacityOracle):
    """Query free capacity from the metrics published by the node agent.

    Parameters
    ----------
    client
        Prometheus client.
    query
        PromQL template with a ``{node}`` placeholder.
    logger
        Logger to use.
    """

    def __init__(
        self, client: PrometheusClient, query: str, logger: BoundLogger
    ) -> None:
        self._client = client
        self._query_template = query
        self._logger = logger

    @override
    async def _query(self, node: str, timeout: Timeout) -> int:
        query = self._query_template.format(node=node)
        free = await self._client.query_scalar(query, timeout, node=node)
        self._logger.debug("Queried node capacity", node=node, free=free)
        return int(free)
