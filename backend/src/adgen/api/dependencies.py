"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Access to the service bundle built by the application lifespan
- Shared-secret validation of workflow-engine requests
"""

import hmac
from typing import Annotated

import structlog
from fastapi import Depends, Header, Request

from adgen.api.errors import to_http_exception
from adgen.container import Services
from adgen.core.config import Settings
from adgen.services.exceptions import AuthError

logger = structlog.get_logger(__name__)


def get_services(request: Request) -> Services:
    """Get the service bundle from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(services: Services = Depends(get_services)):
        ...     job = await services.job_store.get_job(job_id)
    """
    return request.app.state.services


def get_settings(services: Services = Depends(get_services)) -> Settings:
    """Settings the services were built with."""
    return services.settings


def secret_matches(provided: str | None, expected: str) -> bool:
    """Constant-time comparison; an unset expected secret matches nothing."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


async def verify_n8n_secret(
    request: Request,
    x_n8n_secret: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject workflow-engine requests without the shared secret.

    Runs before the body is parsed, so a rejected request never touches
    a job.

    Raises:
        HTTPException: 401 Unauthorized if the x-n8n-secret header is missing or wrong
    """
    if not secret_matches(x_n8n_secret, settings.n8n_callback_secret):
        logger.warning(
            "n8n.unauthorized",
            path=request.url.path,
            header_present=x_n8n_secret is not None,
        )
        raise to_http_exception(AuthError("Unauthorized"))
