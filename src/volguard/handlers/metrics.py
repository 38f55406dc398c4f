"""Prometheus metrics exposition."""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount at the root of the application URL space."""

__all__ = ["router"]


@router.get(
    "/metrics",
    description=(
        "Volume group capacity metrics of the node, in the Prometheus text"
        " exposition format. Empty unless the node agent is enabled."
    ),
    include_in_schema=False,
    response_class=Response,
    summary="Prometheus metrics",
)
async def get_metrics(
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> Response:
    body = generate_latest(context.registry)
    return Response(content=body, media_type=CONTENT_TYPE_LATEST)
