"""Workflow-engine (n8n) endpoints.

Both endpoints require the shared secret in the x-n8n-secret header; the
check runs before the body is read.
"""

import pydantic
import structlog
from fastapi import APIRouter, Depends, Request

from adgen.api.dependencies import get_services, verify_n8n_secret
from adgen.api.errors import to_http_exception
from adgen.container import Services
from adgen.models.job import InvalidStateTransition
from adgen.models.n8n import BatchGenerationBody, CallbackBody
from adgen.services.exceptions import ServiceError

logger = structlog.get_logger(__name__)
router = APIRouter(
    prefix="/api/n8n", tags=["n8n"], dependencies=[Depends(verify_n8n_secret)]
)


@router.post("/callback")
async def receive_callback(request: Request, services: Services = Depends(get_services)):
    """Fold a workflow callback into its job.

    HTTP Status Codes:
        200: {"success": true, ...}
        400: Invalid JSON, missing job id, payload_ready without prompt
        401: Missing or wrong x-n8n-secret
        404: Unknown job
        409: Output delivered for a job that already finished
        500: Persisting the change failed
    """
    try:
        body = CallbackBody.model_validate_json(await request.body())
    except pydantic.ValidationError as e:
        logger.warning("callback.invalid_body", error_count=e.error_count())
        raise to_http_exception(e)

    try:
        result = await services.callbacks.handle(body)
    except (ServiceError, InvalidStateTransition) as e:
        logger.warning(
            "callback.rejected",
            job_id=body.job_id,
            parent_job_id=body.parent_job_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise to_http_exception(e)

    return result.body


@router.post("/batch-video-generation")
async def batch_video_generation(request: Request, services: Services = Depends(get_services)):
    """Start in-process generation for a batch of workflow-prepared prompts.

    Returns as soon as the units are scheduled; each unit settles into the
    parent job on its own.

    HTTP Status Codes:
        200: {"success": true, "message": "Started generation for K of N videos", "job_id": ...}
        400: Invalid body or empty payload list
        401: Missing or wrong x-n8n-secret
        404: Unknown parent job
        409: Parent job already finished
    """
    try:
        body = BatchGenerationBody.model_validate_json(await request.body())
    except pydantic.ValidationError as e:
        logger.warning("batch.invalid_body", error_count=e.error_count())
        raise to_http_exception(e)

    logger.info(
        "batch.received",
        job_id=body.parent_job_id,
        total_videos=body.total_videos,
        payloads=len(body.payloads),
    )

    try:
        result = await services.dispatcher.dispatch(body.parent_job_id, body.payloads)
    except (ServiceError, InvalidStateTransition) as e:
        logger.warning(
            "batch.rejected",
            job_id=body.parent_job_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        raise to_http_exception(e)

    return {"success": True, "message": result.message, "job_id": result.job_id}
