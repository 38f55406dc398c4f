"""Domain models for volume expansion admission decisions."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "AdmissionDecision",
    "AdmissionOperation",
    "DecisionState",
    "ExpansionRequest",
    "LockMode",
    "ResourceKind",
    "ShrinkPolicy",
]


class AdmissionOperation(str, Enum):
    """Operation being admitted."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class ResourceKind(str, Enum):
    """Kinds of objects that can express a volume expansion.

    The admission engine dispatches on this tag to select the resolver for
    the request. Objects of any other kind are admitted without a check.
    """

    CLUSTER = "Cluster"
    OPS_REQUEST = "OpsRequest"
    STATEFUL_SET = "StatefulSet"


class DecisionState(Enum):
    """Terminal state of an admission review."""

    ALLOWED = "allowed"
    """Request admitted, either after a capacity check or without one."""

    DENIED = "denied"
    """Capacity check found insufficient space or could not be completed."""

    ERRORED = "errored"
    """Request failed validation before any capacity check."""


class LockMode(str, Enum):
    """Behavior when a namespace already has a review in progress."""

    BLOCKING = "blocking"
    """Wait for the earlier review to finish."""

    REJECT = "reject"
    """Deny the new request immediately as retriable."""


class ShrinkPolicy(str, Enum):
    """How to treat a request that reduces volume size."""

    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True, slots=True)
class ExpansionRequest:
    """Normalized view of a volume expansion in an admission request.

    Built fresh for every admission review and never stored.
    """

    namespace: str
    """Namespace of the object being admitted."""

    name: str
    """Name of the object being admitted."""

    kind: ResourceKind
    """Kind of the object being admitted."""

    delta_bytes: int
    """Requested change in volume size in bytes (negative for a shrink)."""

    nodes: list[str] = field(default_factory=list)
    """Names of the nodes running pods affected by the change."""


@dataclass(slots=True)
class AdmissionDecision:
    """Result of an admission review."""

    state: DecisionState
    """Terminal state of the review."""

    message: str | None = None
    """Reason for a denial, returned verbatim to the requester."""

    retriable: bool = False
    """Whether a denial was caused by a transient failure."""

    @property
    def allowed(self) -> bool:
        """Whether the request is admitted."""
        return self.state == DecisionState.ALLOWED
