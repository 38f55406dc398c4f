"""Domain models for persistent volume claims and logical volumes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

__all__ = [
    "ClaimPhase",
    "LogicalVolumeRecord",
    "VolumeClaimRecord",
    "VolumeGroupRecord",
]


class ClaimPhase(str, Enum):
    """One of the valid phases of a ``PersistentVolumeClaim``."""

    PENDING = "Pending"
    BOUND = "Bound"
    LOST = "Lost"


@dataclass(frozen=True, slots=True)
class VolumeClaimRecord:
    """The parts of a ``PersistentVolumeClaim`` used for reconciliation."""

    namespace: str
    """Namespace of the claim."""

    name: str
    """Name of the claim."""

    volume_name: str
    """Name of the bound volume, also the name of the logical volume."""

    node: str | None
    """Node selected by the scheduler for the claim, if any."""

    requested_bytes: int
    """Storage requested in the claim spec."""

    capacity_bytes: int
    """Storage capacity reported in the claim status."""

    phase: ClaimPhase
    """Phase of the claim."""

    @property
    def is_settled(self) -> bool:
        """Whether the claim is bound with no resize in progress.

        Claims in the middle of an expansion have a requested size that
        differs from their status capacity and must be left alone so that
        reconciliation does not race the expansion.
        """
        return (
            self.phase == ClaimPhase.BOUND
            and self.requested_bytes == self.capacity_bytes
        )


@dataclass(frozen=True, slots=True)
class LogicalVolumeRecord:
    """A logical volume on the local node."""

    name: str
    """Name of the logical volume."""

    vg_name: str
    """Name of the volume group containing the logical volume."""

    size_bytes: int
    """Size of the logical volume in bytes."""


@dataclass(frozen=True, slots=True)
class VolumeGroupRecord:
    """A volume group on the local node."""

    name: str
    """Name of the volume group."""

    size_bytes: int
    """Total size of the volume group in bytes."""

    free_bytes: int
    """Unallocated space in the volume group in bytes."""
