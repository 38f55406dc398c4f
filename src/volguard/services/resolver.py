"""Compute the volume expansion requested by an admission request."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ValidationError
from structlog.stdlib import BoundLogger

from ..constants import (
    CLUSTER_INSTANCE_LABEL,
    CLUSTER_MANAGED_BY_LABEL,
    CLUSTER_MANAGER,
    RESIZE_ANNOTATION,
)
from ..exceptions import ExpansionValidationError, MissingObjectError
from ..models.domain.expansion import ExpansionRequest, ResourceKind
from ..models.domain.kubeblocks import (
    ClaimSpec,
    Cluster,
    OpsRequest,
    StatefulSet,
)
from ..models.v1.admission import AdmissionRequest
from ..storage.kubernetes.custom import ClusterStorage
from ..storage.kubernetes.pod import PodStorage
from ..timeout import Timeout
from ..units import quantity_to_bytes

__all__ = ["ExpansionResolver"]

_VOLUME_EXPANSION = "VolumeExpansion"
"""``OpsRequest`` type that expands volumes."""


class ExpansionResolver:
    """Normalize admission requests into expansion requests.

    Each kind of object expresses a volume expansion differently, so each
    has its own resolver method, selected by the kind tag of the request.
    The result is an `~volguard.models.domain.expansion.ExpansionRequest`
    carrying the signed size change and the nodes running affected pods.
    Nodes are only looked up if the size grows.

    Parameters
    ----------
    cluster_storage
        Storage for KubeBlocks ``Cluster`` objects.
    pod_storage
        Storage for pods, used to find the affected nodes.
    logger
        Logger to use.
    """

    def __init__(
        self,
        cluster_storage: ClusterStorage,
        pod_storage: PodStorage,
        logger: BoundLogger,
    ) -> None:
        self._clusters = cluster_storage
        self._pods = pod_storage
        self._logger = logger

    async def resolve(
        self, kind: ResourceKind, request: AdmissionRequest, timeout: Timeout
    ) -> ExpansionRequest | None:
        """Compute the expansion requested by an admission request.

        Parameters
        ----------
        kind
            Kind of the admitted object.
        request
            Admission request.
        timeout
            Timeout for the Kubernetes lookups.

        Returns
        -------
        ExpansionRequest or None
            The requested expansion, or `None` if the request does not
            change the size of any volume.

        Raises
        ------
        ExpansionValidationError
            Raised if the object cannot be decoded or its resize annotation
            cannot be parsed.
        KubernetesError
            Raised if a Kubernetes lookup failed.
        MissingObjectError
            Raised if the cluster, component, or volume claim template
            referenced by an ``OpsRequest`` does not exist.
        OperationTimeoutError
            Raised if the Kubernetes lookups did not complete in time.
        """
        match kind:
            case ResourceKind.CLUSTER:
                return await self._resolve_cluster(request, timeout)
            case ResourceKind.OPS_REQUEST:
                return await self._resolve_ops_request(request, timeout)
            case ResourceKind.STATEFUL_SET:
                return await self._resolve_stateful_set(request, timeout)

    async def _resolve_cluster(
        self, request: AdmissionRequest, timeout: Timeout
    ) -> ExpansionRequest | None:
        """Compare the primary volume claim template of two clusters."""
        new = self._decode(Cluster, request.object, ResourceKind.CLUSTER)
        old = self._decode(Cluster, request.old_object, ResourceKind.CLUSTER)
        new_template = new.primary_template
        old_template = old.primary_template
        if not new_template or not old_template:
            return None
        new_size = self._storage_of(new_template.spec, ResourceKind.CLUSTER)
        old_size = self._storage_of(old_template.spec, ResourceKind.CLUSTER)
        namespace = new.metadata.namespace or request.namespace
        name = new.metadata.name or request.name
        return await self._build(
            ResourceKind.CLUSTER,
            namespace,
            name,
            new_size - old_size,
            self._cluster_labels(name),
            timeout,
        )

    async def _resolve_ops_request(
        self, request: AdmissionRequest, timeout: Timeout
    ) -> ExpansionRequest | None:
        """Compare an ``OpsRequest`` with the live cluster it references."""
        kind = ResourceKind.OPS_REQUEST
        ops = self._decode(OpsRequest, request.object, kind)
        if ops.spec.type != _VOLUME_EXPANSION:
            return None
        if not ops.spec.volume_expansion:
            return None
        expansion = ops.spec.volume_expansion[0]
        if not expansion.volume_claim_templates:
            return None
        target = expansion.volume_claim_templates[0]
        try:
            requested = quantity_to_bytes(target.storage)
        except ValueError as e:
            msg = (
                f"Invalid storage {target.storage} in {kind.value}"
                f" {request.namespace}/{request.name}"
            )
            raise ExpansionValidationError(msg) from e

        namespace = ops.metadata.namespace or request.namespace
        name = ops.metadata.name or request.name
        cluster_name = ops.spec.cluster_ref
        obj = await self._clusters.read(cluster_name, namespace, timeout)
        if obj is None:
            msg = f"Cluster {namespace}/{cluster_name} not found"
            raise MissingObjectError(
                msg, kind="Cluster", namespace=namespace, name=cluster_name
            )
        cluster = self._decode(Cluster, obj, ResourceKind.CLUSTER)
        template = cluster.find_template(expansion.component_name, target.name)
        if not template:
            msg = (
                f"Volume claim template {target.name} of component"
                f" {expansion.component_name} not found in cluster"
                f" {namespace}/{cluster_name}"
            )
            raise MissingObjectError(
                msg,
                kind="VolumeClaimTemplate",
                namespace=namespace,
                name=f"{expansion.component_name}/{target.name}",
            )
        current = self._storage_of(template.spec, ResourceKind.CLUSTER)
        return await self._build(
            kind,
            namespace,
            name,
            requested - current,
            self._cluster_labels(cluster_name),
            timeout,
        )

    async def _resolve_stateful_set(
        self, request: AdmissionRequest, timeout: Timeout
    ) -> ExpansionRequest | None:
        """Compare the resize annotation with the current template size."""
        kind = ResourceKind.STATEFUL_SET
        sts = self._decode(StatefulSet, request.object, kind)
        resize = sts.metadata.annotations.get(RESIZE_ANNOTATION, "").strip()
        if not resize or not sts.spec.volume_claim_templates:
            return None
        namespace = sts.metadata.namespace or request.namespace
        name = sts.metadata.name or request.name
        try:
            requested = quantity_to_bytes(resize)
        except ValueError as e:
            msg = (
                f"Invalid {RESIZE_ANNOTATION} annotation {resize} on"
                f" StatefulSet {namespace}/{name}"
            )
            raise ExpansionValidationError(msg) from e
        template = sts.spec.volume_claim_templates[0]
        current = self._storage_of(template.spec, kind)
        return await self._build(
            kind,
            namespace,
            name,
            requested - current,
            sts.spec.selector.match_labels,
            timeout,
        )

    async def _build(
        self,
        kind: ResourceKind,
        namespace: str,
        name: str,
        delta: int,
        labels: dict[str, str],
        timeout: Timeout,
    ) -> ExpansionRequest | None:
        """Build the expansion request, looking up nodes if it grows."""
        if delta == 0:
            return None
        nodes = []
        if delta > 0:
            nodes = await self._pods.list_nodes(namespace, labels, timeout)
        return ExpansionRequest(
            namespace=namespace,
            name=name,
            kind=kind,
            delta_bytes=delta,
            nodes=nodes,
        )

    def _cluster_labels(self, cluster: str) -> dict[str, str]:
        return {
            CLUSTER_INSTANCE_LABEL: cluster,
            CLUSTER_MANAGED_BY_LABEL: CLUSTER_MANAGER,
        }

    def _decode[T: BaseModel](
        self, model: type[T], obj: dict[str, Any] | None, kind: ResourceKind
    ) -> T:
        """Decode an object, wrapping errors with the kind of the object."""
        if obj is None:
            raise ExpansionValidationError(f"Missing {kind.value} object")
        try:
            return model.model_validate(obj)
        except ValidationError as e:
            msg = f"Cannot decode {kind.value}: {e!s}"
            raise ExpansionValidationError(msg) from e

    def _storage_of(self, spec: ClaimSpec, kind: ResourceKind) -> int:
        try:
            return spec.storage_bytes
        except ValueError as e:
            msg = f"Invalid storage request in {kind.value}: {e!s}"
            raise ExpansionValidationError(msg) from e
