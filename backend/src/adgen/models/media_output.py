"""MediaOutput - one generated asset recorded in a job's payload."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from adgen.core.timezone import utcnow


class MediaType(str, Enum):
    """Kind of generated asset."""

    VIDEO = "video"
    IMAGE = "image"


class MediaOutput(BaseModel):
    """Generated video or image, stored as an element of payload.media_outputs.

    Outputs are immutable once appended; `id` is the selection key used by
    downloads and is unique within a job.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: MediaType
    url: str = Field(min_length=1)
    angle_id: Optional[int | str] = None
    angle_name: Optional[str] = None
    prompt: str = ""
    duration: Optional[str] = None  # video only, e.g. "12s"
    placement: Optional[str] = None  # image only, e.g. "meta_feed"
    variant: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    def to_payload(self) -> dict:
        """Serialize for JSON storage, dropping unset optional fields."""
        return self.model_dump(mode="json", exclude_none=True)
