"""Campaign submission: create the job and hand it to the workflow or the worker."""

from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional
from uuid import uuid4

import structlog

from adgen.core.config import Settings
from adgen.models.media_output import MediaType
from adgen.services.exceptions import ConfigurationError, ValidationError, WorkflowForwardError
from adgen.services.job_store import JobStore
from adgen.services.media_generation.asset_storage import AssetStorage
from adgen.services.media_generation.request import GenerationRequest
from adgen.services.workflow.n8n_client import ForwardedFile, N8nClient
from adgen.workers.media_generation_worker import MediaGenerationWorker
from adgen.workers.supervisor import TaskSupervisor

logger = structlog.get_logger(__name__)

# Payload keys owned by the service, never taken from the form
RESERVED_PAYLOAD_KEYS = frozenset({"media_outputs", "uploaded_images"})


@dataclass
class UploadedFile:
    """A file received with the submission form."""

    field_name: str
    filename: str
    content: bytes
    content_type: str

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")

    def metadata(self, url: Optional[str] = None) -> dict:
        meta: dict = {"name": self.filename, "size": len(self.content), "type": self.content_type}
        if url:
            meta["url"] = url
        return meta


class SubmissionService:
    """Creates jobs from submitted campaign forms."""

    def __init__(
        self,
        job_store: JobStore,
        storage: AssetStorage,
        workflow: N8nClient,
        worker: MediaGenerationWorker,
        supervisor: TaskSupervisor,
        settings: Settings,
    ):
        self.job_store = job_store
        self.storage = storage
        self.workflow = workflow
        self.worker = worker
        self.supervisor = supervisor
        self.settings = settings

    async def submit(self, fields: dict[str, str], files: list[UploadedFile]) -> str:
        """Persist a submission and start processing it.

        In workflow mode the submission is forwarded to n8n; a forwarding
        failure is logged and the job stays 'submitted'. In direct mode a
        generation unit is started in-process.

        Args:
            fields: Text form fields
            files: Uploaded files

        Returns:
            The new job_id

        Raises:
            ConfigurationError: Workflow mode without N8N_WEBHOOK_URL
            ValidationError: Direct mode without a prompt field, or a field
                named after a reserved payload key
            StorageError: Job or upload could not be persisted
        """
        direct = self.settings.submission_mode == "direct"
        if not direct and not self.workflow.configured:
            logger.error("submission.missing_webhook_url")
            raise ConfigurationError("Server configuration error: N8N_WEBHOOK_URL is not set")
        if direct and not fields.get("prompt", "").strip():
            raise ValidationError("Direct generation requires a prompt field")
        names = [*fields, *(upload.field_name for upload in files)]
        reserved = sorted(RESERVED_PAYLOAD_KEYS.intersection(names))
        if reserved:
            raise ValidationError(f"Reserved field names: {', '.join(reserved)}")

        payload: dict = dict(fields)
        for upload in files:
            payload[upload.field_name] = upload.metadata()

        job_id = await self.job_store.create_job(payload)
        log = logger.bind(job_id=job_id)

        uploaded_images = await self._store_uploads(job_id, files)

        if direct:
            await self._start_direct_generation(job_id, fields, uploaded_images)
            log.info("submission.accepted", mode="direct")
            return job_id

        forwarded = [
            ForwardedFile(f.field_name, f.filename, f.content, f.content_type) for f in files
        ]
        try:
            await self.workflow.forward_submission(job_id, fields, forwarded)
        except WorkflowForwardError as e:
            # The job is saved; the client still gets its job_id
            log.warning("submission.forward_failed", error=str(e))
        log.info("submission.accepted", mode="workflow")
        return job_id

    async def _store_uploads(self, job_id: str, files: list[UploadedFile]) -> list[str]:
        if not files:
            return []

        stored: list[tuple[UploadedFile, str]] = []
        for upload in files:
            suffix = PurePath(upload.filename).suffix.lower()
            url = await self.storage.save(job_id, f"{uuid4()}{suffix}", upload.content, "uploads")
            stored.append((upload, url))

        image_urls = [url for upload, url in stored if upload.is_image]

        def _attach(job) -> None:
            payload = dict(job.payload or {})
            for upload, url in stored:
                payload[upload.field_name] = upload.metadata(url)
            payload["uploaded_images"] = image_urls
            job.payload = payload

        await self.job_store.mutate(job_id, _attach)
        return image_urls

    async def _start_direct_generation(
        self, job_id: str, fields: dict[str, str], uploaded_images: list[str]
    ) -> None:
        kind = MediaType.IMAGE if fields.get("media_type") == "image" else MediaType.VIDEO
        source_image = uploaded_images[0] if kind == MediaType.IMAGE and uploaded_images else None
        request = GenerationRequest(
            kind=kind,
            prompt=fields["prompt"].strip(),
            angle_name=fields.get("angle_name") or None,
            placement=fields.get("placement") or None,
            source_image=source_image,
        )
        await self.job_store.mutate(job_id, lambda job: job.begin_batch(1))
        self.supervisor.submit(f"direct:{job_id}", self.worker.run(job_id, request, is_last=True))
