"""Routes for on-demand volume reconciliation."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from safir.models import ErrorModel
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..exceptions import (
    KubernetesError,
    OperationTimeoutError,
    VolumeBackendError,
)
from ..models.v1.reconcile import ReconcileResult

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

__all__ = ["router"]


@router.post(
    "/reconcile",
    responses={
        404: {"description": "Node agent disabled", "model": ErrorModel},
        500: {"description": "Reconciliation failed", "model": ErrorModel},
    },
    summary="Reconcile volume sizes",
    tags=["agent"],
)
async def post_reconcile(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> ReconcileResult:
    reconciler = context.reconciler
    try:
        resized = await reconciler.reconcile()
    except (KubernetesError, OperationTimeoutError, VolumeBackendError) as e:
        context.logger.exception("Reconciliation failed")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=[
                {
                    "msg": f"Reconciliation failed: {e!s}",
                    "type": "reconcile_failed",
                }
            ],
        ) from e
    node = context.config.node_name or ""
    return ReconcileResult(node=node, resized=resized)
