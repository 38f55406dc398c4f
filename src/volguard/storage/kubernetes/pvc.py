"""Storage layer for Kubernetes persistent volume claims."""

from __future__ import annotations

from kubernetes_asyncio import client
from kubernetes_asyncio.client import (
    ApiClient,
    ApiException,
    V1PersistentVolumeClaim,
)
from structlog.stdlib import BoundLogger

from ...constants import SELECTED_NODE_ANNOTATION
from ...exceptions import KubernetesError
from ...models.domain.volumes import ClaimPhase, VolumeClaimRecord
from ...timeout import Timeout
from ...units import quantity_to_bytes

__all__ = ["PersistentVolumeClaimStorage"]


class PersistentVolumeClaimStorage:
    """Storage layer for persistent volume claims.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def list_for_node(
        self, node: str, timeout: Timeout
    ) -> list[VolumeClaimRecord]:
        """List the claims the scheduler placed on a node.

        Parameters
        ----------
        node
            Name of the node.
        timeout
            Timeout on operation.

        Returns
        -------
        list of VolumeClaimRecord
            Claims in any namespace whose selected node is ``node``. Claims
            whose sizes cannot be parsed are logged and skipped.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        OperationTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Listing persistent volume claims", node=node)
        list_pvcs = self._api.list_persistent_volume_claim_for_all_namespaces
        try:
            async with timeout.enforce():
                pvcs = await list_pvcs(_request_timeout=timeout.left())
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing persistent volume claims",
                e,
                kind="PersistentVolumeClaim",
            ) from e

        results = []
        for pvc in pvcs.items:
            annotations = pvc.metadata.annotations or {}
            if annotations.get(SELECTED_NODE_ANNOTATION) != node:
                continue
            try:
                record = self._to_record(pvc, node)
            except ValueError as e:
                self._logger.warning(
                    "Ignoring persistent volume claim with invalid size",
                    name=pvc.metadata.name,
                    namespace=pvc.metadata.namespace,
                    error=str(e),
                )
                continue
            results.append(record)
        return results

    def _to_record(
        self, pvc: V1PersistentVolumeClaim, node: str
    ) -> VolumeClaimRecord:
        """Convert a Kubernetes claim to the fields used for reconciliation.

        Raises
        ------
        ValueError
            Raised if the phase or one of the sizes is invalid.
        """
        requests = {}
        if pvc.spec and pvc.spec.resources and pvc.spec.resources.requests:
            requests = pvc.spec.resources.requests
        capacity = {}
        phase = ClaimPhase.PENDING
        if pvc.status:
            capacity = pvc.status.capacity or {}
            if pvc.status.phase:
                phase = ClaimPhase(pvc.status.phase)
        requested = requests.get("storage")
        current = capacity.get("storage")
        return VolumeClaimRecord(
            namespace=pvc.metadata.namespace,
            name=pvc.metadata.name,
            volume_name=(pvc.spec.volume_name if pvc.spec else None) or "",
            node=node,
            requested_bytes=quantity_to_bytes(requested) if requested else 0,
            capacity_bytes=quantity_to_bytes(current) if current else 0,
            phase=phase,
        )
