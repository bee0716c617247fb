"""Translation of service errors into HTTP errors."""

import pydantic
import structlog
from fastapi import HTTPException, status

from adgen.models.job import InvalidStateTransition
from adgen.services.exceptions import (
    AuthError,
    ConfigurationError,
    JobNotFoundError,
    MediaNotFoundError,
    ServiceError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def to_http_exception(exc: Exception) -> HTTPException:
    """Map a service-layer exception to the HTTP error returned to the caller.

    HTTP Status Codes:
        400: ValidationError, malformed request body
        401: AuthError
        404: JobNotFoundError, MediaNotFoundError
        409: InvalidStateTransition (job already terminal)
        500: ConfigurationError, StorageError and anything unexpected
    """
    if isinstance(exc, (ValidationError, pydantic.ValidationError)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, AuthError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))
    if isinstance(exc, (JobNotFoundError, MediaNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidStateTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))
    if isinstance(exc, ServiceError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
        )

    logger.error("api.unexpected_error", error=str(exc), error_type=type(exc).__name__)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error"
    )
