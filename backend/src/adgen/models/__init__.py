"""SQLModel database entities and payload models.

All table models are imported here to ensure they're registered with SQLModel
metadata for Alembic.
"""

from adgen.models.job import TERMINAL_STATUSES, AdJob, InvalidStateTransition, JobStatus
from adgen.models.media_output import MediaOutput, MediaType

__all__ = [
    "AdJob",
    "JobStatus",
    "TERMINAL_STATUSES",
    "InvalidStateTransition",
    "MediaOutput",
    "MediaType",
]
