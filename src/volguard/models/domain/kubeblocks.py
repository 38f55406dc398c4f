"""Models for the objects that can carry a volume expansion.

Only the fields needed to compute an expansion are modeled. Everything else
in the admitted object is ignored, so these models parse any version of the
object that still has these fields.
"""

from __future__ import annotations

from typing import Annotated

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
)
from pydantic.alias_generators import to_camel

from ...units import quantity_to_bytes

__all__ = [
    "ClaimSpec",
    "Cluster",
    "ClusterComponent",
    "ClusterVolumeClaimTemplate",
    "ObjectMetadata",
    "OpsRequest",
    "OpsVolumeClaimTemplate",
    "StatefulSet",
    "VolumeExpansion",
]


def _stringify(v: object) -> object:
    """Accept integer quantities, which Kubernetes allows for storage."""
    if isinstance(v, int | float):
        return str(v)
    return v


Quantity = Annotated[str, BeforeValidator(_stringify)]
"""A Kubernetes resource quantity such as ``10Gi``."""


class _KubernetesBase(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


class ObjectMetadata(_KubernetesBase):
    """Metadata common to all Kubernetes objects."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)


class ResourceRequirements(_KubernetesBase):
    """Resource requests of a claim."""

    requests: dict[str, Quantity] = Field(default_factory=dict)


class ClaimSpec(_KubernetesBase):
    """Spec of a persistent volume claim or claim template."""

    resources: ResourceRequirements = Field(
        default_factory=ResourceRequirements
    )

    @property
    def storage_bytes(self) -> int:
        """Requested storage in bytes, or 0 if no storage is requested.

        Raises
        ------
        ValueError
            Raised if the storage request is not a valid quantity.
        """
        storage = self.resources.requests.get("storage")
        return quantity_to_bytes(storage) if storage else 0


class ClusterVolumeClaimTemplate(_KubernetesBase):
    """Volume claim template of a KubeBlocks cluster component."""

    name: str
    spec: ClaimSpec = Field(default_factory=ClaimSpec)


class ClusterComponent(_KubernetesBase):
    """One component of a KubeBlocks cluster."""

    name: str
    volume_claim_templates: list[ClusterVolumeClaimTemplate] = Field(
        default_factory=list
    )


class ClusterSpec(_KubernetesBase):
    component_specs: list[ClusterComponent] = Field(default_factory=list)


class Cluster(_KubernetesBase):
    """KubeBlocks ``Cluster`` object."""

    metadata: ObjectMetadata = Field(default_factory=ObjectMetadata)
    spec: ClusterSpec = Field(default_factory=ClusterSpec)

    def find_template(
        self, component: str, template: str
    ) -> ClusterVolumeClaimTemplate | None:
        """Find a volume claim template by component and template name.

        Parameters
        ----------
        component
            Name of the component.
        template
            Name of the volume claim template within that component.

        Returns
        -------
        ClusterVolumeClaimTemplate or None
            The matching template, or `None` if there is none.
        """
        for spec in self.spec.component_specs:
            if spec.name != component:
                continue
            for vct in spec.volume_claim_templates:
                if vct.name == template:
                    return vct
        return None

    @property
    def primary_template(self) -> ClusterVolumeClaimTemplate | None:
        """First volume claim template of the first component, if any."""
        if not self.spec.component_specs:
            return None
        templates = self.spec.component_specs[0].volume_claim_templates
        return templates[0] if templates else None


class OpsVolumeClaimTemplate(_KubernetesBase):
    """Target size of one volume claim template in an ``OpsRequest``."""

    name: str
    storage: Quantity


class VolumeExpansion(_KubernetesBase):
    """Volume expansion of one cluster component in an ``OpsRequest``."""

    component_name: str
    volume_claim_templates: list[OpsVolumeClaimTemplate] = Field(
        default_factory=list
    )


class OpsRequestSpec(_KubernetesBase):
    cluster_ref: str = Field(
        validation_alias=AliasChoices("clusterRef", "clusterName")
    )
    type: str
    volume_expansion: list[VolumeExpansion] | None = Field(
        None,
        validation_alias=AliasChoices(
            "volumeExpansion", "volumeExpansionList"
        ),
    )


class OpsRequest(_KubernetesBase):
    """KubeBlocks ``OpsRequest`` object."""

    metadata: ObjectMetadata = Field(default_factory=ObjectMetadata)
    spec: OpsRequestSpec


class PersistentVolumeClaimTemplate(_KubernetesBase):
    metadata: ObjectMetadata = Field(default_factory=ObjectMetadata)
    spec: ClaimSpec = Field(default_factory=ClaimSpec)


class LabelSelector(_KubernetesBase):
    match_labels: dict[str, str] = Field(default_factory=dict)


class StatefulSetSpec(_KubernetesBase):
    selector: LabelSelector = Field(default_factory=LabelSelector)
    volume_claim_templates: list[PersistentVolumeClaimTemplate] = Field(
        default_factory=list
    )


class StatefulSet(_KubernetesBase):
    """Kubernetes ``StatefulSet`` object."""

    metadata: ObjectMetadata = Field(default_factory=ObjectMetadata)
    spec: StatefulSetSpec = Field(default_factory=StatefulSetSpec)
