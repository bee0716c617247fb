"""n8n webhook client for forwarding submissions to the workflow engine."""

from dataclasses import dataclass

import httpx
import structlog

from adgen.services.exceptions import WorkflowForwardError

logger = structlog.get_logger(__name__)


@dataclass
class ForwardedFile:
    """A submitted file re-sent to the workflow as a multipart part."""

    field_name: str
    filename: str
    content: bytes
    content_type: str


class N8nClient:
    """Posts submissions to the n8n webhook as multipart form data."""

    def __init__(self, http_client: httpx.AsyncClient, webhook_url: str, timeout: float = 30.0):
        """Initialize n8n client.

        Args:
            http_client: Shared AsyncClient owned by the application lifespan
            webhook_url: Workflow webhook URL (from N8N_WEBHOOK_URL env var)
            timeout: Request timeout in seconds
        """
        self.http_client = http_client
        self.webhook_url = webhook_url
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    async def forward_submission(
        self, job_id: str, fields: dict[str, str], files: list[ForwardedFile]
    ) -> None:
        """Send submitted fields and files plus the job_id to the workflow.

        The workflow echoes job_id back in its callbacks.

        Raises:
            WorkflowForwardError: Network failure or non-2xx response
        """
        form: list[tuple[str, tuple]] = [(name, (None, value)) for name, value in fields.items()]
        form.extend(
            (f.field_name, (f.filename, f.content, f.content_type or "application/octet-stream"))
            for f in files
        )
        form.append(("job_id", (None, job_id)))

        try:
            response = await self.http_client.post(
                self.webhook_url, files=form, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise WorkflowForwardError(f"Workflow webhook timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise WorkflowForwardError(f"Workflow webhook network error: {e}") from e

        if not response.is_success:
            raise WorkflowForwardError(
                f"Workflow webhook returned {response.status_code}: {response.text[:500]}"
            )

        logger.info(
            "workflow.forwarded",
            job_id=job_id,
            field_count=len(fields),
            file_count=len(files),
            status_code=response.status_code,
        )
