"""Reconcile logical volume sizes with their persistent volume claims."""

from __future__ import annotations

import asyncio
from datetime import timedelta

from structlog.stdlib import BoundLogger

from ..models.domain.volumes import VolumeClaimRecord
from ..storage.kubernetes.pvc import PersistentVolumeClaimStorage
from ..storage.lvm import VolumeBackend
from ..timeout import Timeout
from .locks import NamespaceLocks

__all__ = ["VolumeReconciler"]


class VolumeReconciler:
    """Grow logical volumes that are smaller than their claims.

    A logical volume can end up smaller than the capacity its claim reports
    if a resize was applied to the claim but never fully reached the node,
    for example across a node reboot. Each reconciliation pass finds such
    volumes on the local node and grows them. Volumes are never shrunk, and
    claims in the middle of an expansion are left alone.

    Parameters
    ----------
    node
        Name of the local node.
    pvc_storage
        Storage for persistent volume claims.
    backend
        Volume backend of the local node.
    locks
        Per-namespace locks, held while resizing a volume of that namespace.
    kubernetes_timeout
        Timeout for listing claims.
    resize_timeout
        Timeout for listing volumes and for each resize.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        node: str,
        pvc_storage: PersistentVolumeClaimStorage,
        backend: VolumeBackend,
        locks: NamespaceLocks,
        kubernetes_timeout: timedelta,
        resize_timeout: timedelta,
        logger: BoundLogger,
    ) -> None:
        self._node = node
        self._pvc_storage = pvc_storage
        self._backend = backend
        self._locks = locks
        self._kubernetes_timeout = kubernetes_timeout
        self._resize_timeout = resize_timeout
        self._logger = logger.bind(node=node)
        self._lock = asyncio.Lock()

    async def reconcile(self) -> list[str]:
        """Run one reconciliation pass.

        Passes are serialized, so a pass requested while another is running
        starts once the first one finishes.

        Returns
        -------
        list of str
            Sorted names of the logical volumes that were resized.

        Raises
        ------
        KubernetesError
            Raised if the claims could not be listed.
        OperationTimeoutError
            Raised if listing or resizing took too long.
        VolumeBackendError
            Raised if listing or resizing volumes failed. The first failed
            resize aborts the pass.
        """
        async with self._lock:
            return await self._reconcile()

    async def _reconcile(self) -> list[str]:
        timeout = Timeout("Listing claims", self._kubernetes_timeout)
        claims = await self._pvc_storage.list_for_node(self._node, timeout)
        eligible = self._eligible_claims(claims)

        timeout = Timeout("Listing logical volumes", self._resize_timeout)
        volumes = await self._backend.list_logical_volumes(timeout)

        resized: set[str] = set()
        for volume in volumes:
            if volume.size_bytes == 0 or volume.name in resized:
                continue
            claim = eligible.get(volume.name)
            if not claim or volume.size_bytes >= claim.capacity_bytes:
                continue
            logger = self._logger.bind(
                volume=volume.name,
                namespace=claim.namespace,
                claim=claim.name,
                size=volume.size_bytes,
                target=claim.capacity_bytes,
            )
            logger.info("Resizing logical volume")
            timeout = Timeout(
                f"Resizing logical volume {volume.name}",
                self._resize_timeout,
                claim.namespace,
            )
            async with timeout.enforce():
                async with self._locks.lock(claim.namespace):
                    await self._backend.resize(
                        volume, claim.capacity_bytes, timeout
                    )
            logger.info("Resized logical volume", elapsed=timeout.elapsed())
            resized.add(volume.name)

        if resized:
            self._logger.info("Reconciled volumes", resized=sorted(resized))
        else:
            self._logger.debug("All volumes up to date")
        return sorted(resized)

    def _eligible_claims(
        self, claims: list[VolumeClaimRecord]
    ) -> dict[str, VolumeClaimRecord]:
        """Map volume names to the claims eligible for reconciliation."""
        return {
            c.volume_name: c
            for c in claims
            if c.volume_name and c.node == self._node and c.is_settled
        }
