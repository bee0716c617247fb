"""Campaign job API endpoints.

- POST /api/submit - Create a job from a multipart campaign form
- GET /api/status?job_id= - Poll job status and generated media
- GET /api/jobs/{job_id} - Full job record including the submitted payload
- POST /api/download-selected - Download selected media outputs (file or ZIP)
"""

from datetime import datetime
from typing import Any, Optional

import pydantic
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from adgen.api.dependencies import get_services
from adgen.api.errors import to_http_exception
from adgen.container import Services
from adgen.models.job import AdJob
from adgen.services.exceptions import ServiceError
from adgen.services.submission import UploadedFile

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api", tags=["jobs"])


# Request/Response Models


class SubmitResponse(BaseModel):
    job_id: str


class JobStatusResponse(BaseModel):
    """Status view polled by the UI."""

    job_id: str
    status: str
    video_url: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None
    media_outputs: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: AdJob) -> "JobStatusResponse":
        return cls(
            job_id=job.job_id,
            status=job.status.value,
            video_url=job.video_url,
            created_at=job.created_at,
            completed_at=job.completed_at,
            media_outputs=job.media_outputs,
        )


class JobDetailResponse(JobStatusResponse):
    """Full job record."""

    payload: dict[str, Any] = Field(default_factory=dict)
    n8n_raw: Optional[dict[str, Any]] = None

    @classmethod
    def from_job(cls, job: AdJob) -> "JobDetailResponse":
        return cls(
            **JobStatusResponse.from_job(job).model_dump(),
            payload=job.payload or {},
            n8n_raw=job.n8n_raw,
        )


class DownloadRequest(BaseModel):
    job_id: Optional[str] = None
    media_ids: Optional[list[str]] = None


# Endpoints


@router.post("/submit", response_model=SubmitResponse)
async def submit_campaign(request: Request, services: Services = Depends(get_services)):
    """Accept a campaign form and create a job.

    Text fields become the job payload; files are stored under the job's
    uploads directory.

    HTTP Status Codes:
        200: {"job_id": ...} (also when forwarding to the workflow failed)
        400: Malformed form, or direct mode without a prompt
        500: Missing N8N_WEBHOOK_URL or storage failure
    """
    try:
        form = await request.form()
    except Exception as e:
        logger.warning("submit.invalid_form", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid form data: {e}"
        )

    fields: dict[str, str] = {}
    files: list[UploadedFile] = []
    for name, value in form.multi_items():
        if isinstance(value, UploadFile):
            content = await value.read()
            files.append(
                UploadedFile(
                    field_name=name,
                    filename=value.filename or name,
                    content=content,
                    content_type=value.content_type or "application/octet-stream",
                )
            )
        else:
            fields[name] = value

    try:
        job_id = await services.submissions.submit(fields, files)
    except ServiceError as e:
        raise to_http_exception(e)

    return SubmitResponse(job_id=job_id)


@router.get("/status", response_model=JobStatusResponse)
async def get_status(
    job_id: Optional[str] = Query(default=None),
    services: Services = Depends(get_services),
):
    """Current status and media outputs of a job.

    HTTP Status Codes:
        200: Job status
        400: job_id query parameter missing
        404: Unknown job
    """
    if not job_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="job_id required")

    try:
        job = await services.job_store.get_job(job_id)
    except ServiceError as e:
        raise to_http_exception(e)

    return JobStatusResponse.from_job(job)


@router.get("/jobs/{job_id}", response_model=JobDetailResponse)
async def get_job(job_id: str, services: Services = Depends(get_services)):
    """Full job record (404 for unknown jobs)."""
    try:
        job = await services.job_store.get_job(job_id)
    except ServiceError as e:
        raise to_http_exception(e)

    return JobDetailResponse.from_job(job)


@router.post("/download-selected")
async def download_selected(request: Request, services: Services = Depends(get_services)):
    """Download the selected media outputs of a job.

    One selected output is returned as the file itself; several are
    packaged as campaign_<job_id[:8]>.zip.

    HTTP Status Codes:
        200: File or ZIP attachment
        400: Invalid JSON or missing job_id / media_ids
        404: Unknown job, no matching media ids, or file not stored locally
    """
    try:
        body = DownloadRequest.model_validate_json(await request.body())
    except pydantic.ValidationError as e:
        raise to_http_exception(e)

    try:
        artifact = await services.downloads.prepare(body.job_id or "", body.media_ids or [])
    except ServiceError as e:
        raise to_http_exception(e)

    if artifact.path is not None:
        return FileResponse(
            artifact.path, media_type=artifact.content_type, filename=artifact.filename
        )
    return Response(
        content=artifact.content,
        media_type=artifact.content_type,
        headers={"Content-Disposition": f'attachment; filename="{artifact.filename}"'},
    )
