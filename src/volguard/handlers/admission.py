"""Routes for the volume expansion admission webhook."""

from typing import Annotated

from fastapi import APIRouter, Depends
from safir.slack.webhook import SlackRouteErrorHandler

from ..dependencies.context import RequestContext, context_dependency
from ..models.v1.admission import AdmissionReview, AdmissionReviewResponse

router = APIRouter(route_class=SlackRouteErrorHandler)
"""Router to mount into the application."""

__all__ = ["router"]


@router.post(
    "/admission/validate",
    description=(
        "Validating admission webhook for KubeBlocks clusters, KubeBlocks"
        " operation requests, and stateful sets. Requests that would expand"
        " a volume beyond the free capacity of the node running it are"
        " denied."
    ),
    response_model_exclude_none=True,
    summary="Review volume expansion",
    tags=["admission"],
)
async def post_admission_review(
    review: AdmissionReview,
    context: Annotated[RequestContext, Depends(context_dependency)],
) -> AdmissionReviewResponse:
    request = review.request
    context.rebind_logger(uid=request.uid)
    engine = context.factory.create_admission_engine()
    decision = await engine.review(request)
    return AdmissionReviewResponse.from_decision(request.uid, decision)
