"""Workflow-engine (n8n) payload models.

Known fields are typed and validated at the API boundary; anything else the
workflow sends is kept in the model's extra bag so new fields pass through
without code changes.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def coerce_identifier(value: Any) -> Any:
    """Accept numeric identifiers by converting them to strings."""
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def coerce_text(value: Any) -> Optional[str]:
    """Free-form workflow value as a label: None and "" stay unset, anything else is str()."""
    if value is None or value == "":
        return None
    return value if isinstance(value, str) else str(value)


def coerce_angle_id(value: Any) -> Optional[int | str]:
    """Angle ids are kept as ints or strings; other JSON values become strings."""
    if value is None or value == "":
        return None
    if isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool)):
        return value
    return str(value)


class UnitMetadata(BaseModel):
    """Per-unit metadata attached by the workflow to a batch payload."""

    model_config = ConfigDict(extra="allow")

    variant_job_id: Optional[str] = None
    angle_id: Optional[int | str] = None
    angle_name: Optional[str] = None
    is_last_video: bool = False

    @field_validator("variant_job_id", mode="before")
    @classmethod
    def validate_variant_job_id(cls, v: Any) -> Any:
        return coerce_identifier(v)

    @field_validator("angle_id", mode="before")
    @classmethod
    def validate_angle_id(cls, v: Any) -> Any:
        return coerce_angle_id(v)

    @field_validator("angle_name", mode="before")
    @classmethod
    def validate_angle_name(cls, v: Any) -> Any:
        return coerce_text(v)


class BatchUnitPayload(BaseModel):
    """One video to generate inside a batch."""

    model_config = ConfigDict(extra="allow")

    prompt: str = Field(min_length=1)
    seconds: Optional[int] = Field(default=None, ge=1)
    size: Optional[str] = None
    n8n_metadata: UnitMetadata = Field(default_factory=UnitMetadata)


class BatchGenerationBody(BaseModel):
    """Body of POST /api/n8n/batch-video-generation."""

    model_config = ConfigDict(extra="allow")

    parent_job_id: str = Field(min_length=1)
    total_videos: Optional[int] = None
    payloads: list[BatchUnitPayload]

    @field_validator("parent_job_id", mode="before")
    @classmethod
    def validate_parent_job_id(cls, v: Any) -> Any:
        return coerce_identifier(v)


class CallbackBody(BaseModel):
    """Body of POST /api/n8n/callback.

    Fields beyond the five routing fields (angle_id, prompt, is_last_video,
    n_frames, ...) are available through `rest`.
    """

    model_config = ConfigDict(extra="allow")

    job_id: Optional[str] = None
    parent_job_id: Optional[str] = None
    status: Optional[str] = None
    video_url: Optional[str] = None
    variant_info: Optional[str] = None

    @field_validator("job_id", "parent_job_id", mode="before")
    @classmethod
    def validate_identifiers(cls, v: Any) -> Any:
        return coerce_identifier(v)

    @property
    def rest(self) -> dict[str, Any]:
        return dict(self.model_extra or {})
