"""Service error hierarchy for job lifecycle and media generation.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- Request errors (AuthError, ValidationError, JobNotFoundError): surfaced to
  the caller synchronously, no side effects
- StorageError: persistence failures
- ProviderError: generation provider failures, settled into the job status
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class AuthError(ServiceError):
    """Missing or mismatched shared secret (401)."""

    pass


class ValidationError(ServiceError):
    """Missing or malformed required fields (400)."""

    pass


class ConfigurationError(ServiceError):
    """Server-side configuration required by the operation is missing (500)."""

    pass


class JobNotFoundError(ServiceError):
    """No job exists with the given identifier (404)."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


# Persistence errors
class StorageError(ServiceError):
    """Base exception for persistence failures (500)."""

    pass


class JobUpdateError(StorageError):
    """Writing a job failed."""

    pass


class ConcurrentUpdateError(JobUpdateError):
    """Optimistic-concurrency retries exhausted for a job write."""

    pass


class AssetStorageError(StorageError):
    """Writing a generated or uploaded asset failed."""

    pass


# Provider errors
class ProviderError(ServiceError):
    """Base exception for generation provider failures."""

    pass


class ProviderSubmissionError(ProviderError):
    """Provider rejected the generation request (non-2xx)."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Provider submission failed: {status_code} - {body}")
        self.status_code = status_code
        self.body = body


class MissingHandleError(ProviderError):
    """Provider response lacked the generation handle (video id or image url)."""

    pass


class GenerationTimeoutError(ProviderError):
    """Polling ceiling reached without a ready result."""

    def __init__(self, attempts: int, interval_seconds: float):
        super().__init__(
            f"Generation timed out after {attempts} attempts "
            f"({attempts * interval_seconds:.0f}s)"
        )
        self.attempts = attempts


# Workflow engine errors
class WorkflowForwardError(ServiceError):
    """Forwarding a submission to the workflow engine failed."""

    pass


class MediaNotFoundError(ServiceError):
    """No downloadable asset matched the request (404)."""

    pass
