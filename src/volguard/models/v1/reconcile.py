"""Models for the reconcile API."""

from __future__ import annotations

from typing import Annotated

from pydantic import BaseModel, Field

__all__ = ["ReconcileResult"]


class ReconcileResult(BaseModel):
    """Result of an on-demand reconciliation pass."""

    node: Annotated[
        str,
        Field(title="Node", description="Node that was reconciled"),
    ]

    resized: Annotated[
        list[str],
        Field(
            title="Resized volumes",
            description="Names of the logical volumes that were resized",
            examples=[["pvc-0b1c2d3e-4f50-6172-8394-a5b6c7d8e9f0"]],
        ),
    ]
