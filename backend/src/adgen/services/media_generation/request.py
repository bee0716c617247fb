"""Generation request - everything one worker run needs to produce one asset."""

from typing import Optional

from pydantic import BaseModel, Field

from adgen.models.media_output import MediaType


class GenerationRequest(BaseModel):
    """One unit of generation work for one prompt.

    Fields left as None fall back to the worker's configured defaults.
    """

    kind: MediaType = MediaType.VIDEO
    prompt: str = Field(min_length=1)
    seconds: Optional[int] = Field(default=None, ge=1)
    duration: Optional[str] = None  # label stored on the output, e.g. "15s"
    size: Optional[str] = None
    model: Optional[str] = None
    angle_id: Optional[int | str] = None
    angle_name: Optional[str] = None
    placement: Optional[str] = None
    variant: Optional[str] = None
    source_image: Optional[str] = None  # stored upload URL for image-to-image
    max_poll_attempts: Optional[int] = Field(default=None, ge=1)
