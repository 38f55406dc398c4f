"""Models for the Kubernetes admission webhook API."""

from __future__ import annotations

from typing import Annotated, Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..domain.expansion import AdmissionDecision, AdmissionOperation

__all__ = [
    "AdmissionRequest",
    "AdmissionResponse",
    "AdmissionReview",
    "AdmissionReviewResponse",
    "AdmissionStatus",
    "GroupVersionKind",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


class GroupVersionKind(_CamelModel):
    """Fully-qualified kind of the object being admitted."""

    group: Annotated[str, Field(title="API group")] = ""

    version: Annotated[str, Field(title="API version")] = ""

    kind: Annotated[str, Field(title="Object kind", examples=["Cluster"])]


class AdmissionRequest(_CamelModel):
    """Request portion of an ``AdmissionReview``."""

    uid: Annotated[
        str,
        Field(
            title="Request UID",
            description="Must be copied to the response",
        ),
    ]

    kind: Annotated[GroupVersionKind, Field(title="Kind of object")]

    name: Annotated[str, Field(title="Name of object")] = ""

    namespace: Annotated[str, Field(title="Namespace of object")] = ""

    operation: Annotated[
        AdmissionOperation,
        Field(title="Operation", examples=[AdmissionOperation.UPDATE]),
    ]

    object: Annotated[
        dict[str, Any] | None,
        Field(title="New object", description="Absent for deletes"),
    ] = None

    old_object: Annotated[
        dict[str, Any] | None,
        Field(title="Old object", description="Only present for updates"),
    ] = None


class AdmissionReview(_CamelModel):
    """``AdmissionReview`` sent by the Kubernetes API server."""

    api_version: Annotated[str, Field(title="API version")] = (
        "admission.k8s.io/v1"
    )

    kind: Annotated[str, Field(title="Kind")] = "AdmissionReview"

    request: Annotated[AdmissionRequest, Field(title="Admission request")]


class AdmissionStatus(_CamelModel):
    """Status explaining a denial."""

    code: Annotated[int, Field(title="HTTP status code")]

    message: Annotated[
        str, Field(title="Reason", description="Shown to the requester")
    ]

    reason: Annotated[
        str,
        Field(
            title="Machine-readable reason",
            description=(
                "``ServiceUnavailable`` if the denial was caused by a"
                " transient failure and the request may be retried,"
                " otherwise ``Forbidden``"
            ),
        ),
    ]


class AdmissionResponse(_CamelModel):
    """Response portion of an ``AdmissionReview``."""

    uid: Annotated[str, Field(title="Request UID")]

    allowed: Annotated[bool, Field(title="Whether request is allowed")]

    status: Annotated[
        AdmissionStatus | None, Field(title="Reason for denial")
    ] = None


class AdmissionReviewResponse(_CamelModel):
    """``AdmissionReview`` returned to the Kubernetes API server."""

    api_version: Annotated[str, Field(title="API version")] = (
        "admission.k8s.io/v1"
    )

    kind: Annotated[Literal["AdmissionReview"], Field(title="Kind")] = (
        "AdmissionReview"
    )

    response: Annotated[AdmissionResponse, Field(title="Admission response")]

    @classmethod
    def from_decision(cls, uid: str, decision: AdmissionDecision) -> Self:
        """Build the response to an admission review.

        Parameters
        ----------
        uid
            UID of the admission request.
        decision
            Decision of the admission engine.

        Returns
        -------
        AdmissionReviewResponse
            Corresponding response.
        """
        status = None
        if not decision.allowed and decision.retriable:
            status = AdmissionStatus(
                code=503,
                message=decision.message or "Volume expansion denied",
                reason="ServiceUnavailable",
            )
        elif not decision.allowed:
            status = AdmissionStatus(
                code=403,
                message=decision.message or "Volume expansion denied",
                reason="Forbidden",
            )
        response = AdmissionResponse(
            uid=uid, allowed=decision.allowed, status=status
        )
        return cls(response=response)
