"""Publish volume group capacity of the local node as metrics."""

from __future__ import annotations

from datetime import timedelta

from prometheus_client import CollectorRegistry, Gauge
from structlog.stdlib import BoundLogger

from ..storage.lvm import VolumeBackend
from ..timeout import Timeout

__all__ = ["VolumeGroupCollector"]


class VolumeGroupCollector:
    """Maintain gauges of total and free volume group space on a node.

    These gauges are the source of the default capacity oracle query, so
    their names and labels must stay stable.

    Parameters
    ----------
    node
        Name of the local node, used as the ``node`` label.
    backend
        Volume backend of the local node.
    registry
        Prometheus registry in which to create the gauges.
    timeout
        Timeout for listing volume groups.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        node: str,
        backend: VolumeBackend,
        registry: CollectorRegistry,
        timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._node = node
        self._backend = backend
        self._timeout = timeout
        self._logger = logger
        self._capacity = Gauge(
            "lvm_vgs_total_capacity",
            "Total size of the volume groups on the node in bytes",
            ["node"],
            registry=registry,
        )
        self._free = Gauge(
            "lvm_vgs_total_free",
            "Free space in the volume groups on the node in bytes",
            ["node"],
            registry=registry,
        )

    async def collect(self) -> None:
        """Refresh the gauges from the current volume groups.

        Raises
        ------
        OperationTimeoutError
            Raised if the volume groups could not be listed in time.
        VolumeBackendError
            Raised if the volume groups could not be listed.
        """
        timeout = Timeout("Listing volume groups", self._timeout)
        vgs = await self._backend.list_volume_groups(timeout)
        capacity = sum(vg.size_bytes for vg in vgs)
        free = sum(vg.free_bytes for vg in vgs)
        self._capacity.labels(node=self._node).set(capacity)
        self._free.labels(node=self._node).set(free)
        self._logger.debug(
            "Updated volume group metrics", capacity=capacity, free=free
        )
