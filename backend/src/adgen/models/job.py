"""AdJob entity - campaign generation job with lifecycle status tracking."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Text
from sqlalchemy import Enum as SAEnum
from sqlmodel import Field, SQLModel

from adgen.core.timezone import utcnow
from adgen.models.media_output import MediaOutput


class JobStatus(str, Enum):
    """Job lifecycle status."""

    SUBMITTED = "submitted"
    PROCESSING = "processing"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})


class InvalidStateTransition(Exception):
    """Raised when attempting an invalid job state transition."""

    pass


class AdJob(SQLModel, table=True):
    """AdJob is one campaign submission and the media generated for it.

    `payload` holds the submitted form fields plus the append-only
    `media_outputs` list. `version` is bumped on every write and is the
    compare-and-swap token used by JobStore.mutate().

    `expected_units` / `settled_units` form the batch ledger: every
    in-process generation unit is registered before it starts, and the job
    reaches a terminal status only after all registered units have settled.
    """

    __tablename__ = "ad_jobs"  # type: ignore[assignment]

    job_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=64)
    status: JobStatus = Field(
        default=JobStatus.SUBMITTED,
        sa_column=Column(
            SAEnum(
                JobStatus,
                native_enum=False,
                length=32,
                values_callable=lambda statuses: [s.value for s in statuses],
            ),
            nullable=False,
            index=True,
        ),
    )
    payload: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    video_url: Optional[str] = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    completed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    # Stamped by every repository write
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    n8n_raw: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    version: int = Field(default=1)
    expected_units: Optional[int] = Field(default=None)
    settled_units: int = Field(default=0)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def media_outputs(self) -> list[dict]:
        return list((self.payload or {}).get("media_outputs") or [])

    def append_media_output(self, output: MediaOutput) -> None:
        """Append a generated asset to payload.media_outputs.

        Args:
            output: Asset to record

        Raises:
            InvalidStateTransition: If the job already reached a terminal status
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot append media output to job in terminal state {self.status.value}."
            )
        payload = dict(self.payload or {})
        payload["media_outputs"] = [*self.media_outputs, output.to_payload()]
        self.payload = payload

    def advance_to_processing(self) -> None:
        """Move submitted -> processing; any other status is left as is."""
        if self.status == JobStatus.SUBMITTED:
            self.status = JobStatus.PROCESSING

    def mark_generating(self, raw: Optional[dict] = None) -> None:
        """Transition a non-terminal job to generating.

        Args:
            raw: Optional workflow-engine body to keep for audit in n8n_raw

        Raises:
            InvalidStateTransition: If the job already reached a terminal status
        """
        if self.is_terminal:
            raise InvalidStateTransition(
                f"Cannot mark generating from terminal state {self.status.value}."
            )
        self.status = JobStatus.GENERATING
        if raw is not None:
            self.n8n_raw = raw

    def begin_batch(self, units: int, raw: Optional[dict] = None) -> None:
        """Mark generating and register `units` more in-process generation units.

        Every in-process unit (batch, payload_ready, direct submission) is
        registered here before it starts, including units started while
        others are still in flight.
        """
        if units < 1:
            raise ValueError("units must be positive")
        self.mark_generating(raw=raw)
        self.expected_units = (self.expected_units or 0) + units

    def mark_completed(self, video_url: Optional[str] = None) -> None:
        self.status = JobStatus.COMPLETED
        self.completed_at = utcnow()
        if video_url is not None:
            self.video_url = video_url

    def mark_failed(self, error: Optional[dict] = None) -> None:
        if error is not None:
            self.record_error(error)
        self.status = JobStatus.FAILED

    def record_error(self, error: dict) -> None:
        """Append an error entry to n8n_raw['errors'] for diagnostics."""
        raw = dict(self.n8n_raw or {})
        raw["errors"] = [*(raw.get("errors") or []), error]
        self.n8n_raw = raw

    def complete_legacy(self, video_url: Optional[str], raw: dict) -> None:
        """Single-asset completion from the workflow engine.

        Unconditional overwrite: delivering the same completion twice leaves
        the job completed with the second delivery's values.
        """
        self.status = JobStatus.COMPLETED
        self.video_url = video_url
        self.completed_at = utcnow()
        self.n8n_raw = raw

    def record_external_output(self, output: MediaOutput, is_last: bool) -> None:
        """Fold an output produced outside this process (workflow callback)."""
        self.append_media_output(output)
        if is_last:
            self.mark_completed()
        else:
            self.advance_to_processing()

    def settle_unit(
        self,
        output: Optional[MediaOutput] = None,
        error: Optional[dict] = None,
        is_last: bool = True,
    ) -> bool:
        """Record the outcome of one in-process generation unit.

        With a batch ledger the job finishes once every started unit has
        settled. Without one it finishes when the unit is flagged last or
        when the unit failed. A finished job is completed if it holds any
        output (partial success is kept), otherwise failed.

        Args:
            output: Generated asset on success
            error: Error details on failure
            is_last: Caller-supplied "final unit" flag

        Returns:
            True if the job is terminal after this call

        Raises:
            InvalidStateTransition: If an output arrives for a terminal job
        """
        if output is not None:
            self.append_media_output(output)

        if self.is_terminal:
            # Only reachable for failures, which are kept for diagnostics
            if error is not None:
                self.record_error(error)
            return True

        if error is not None:
            self.record_error(error)

        if self.expected_units is not None:
            self.settled_units += 1
            finished = self.settled_units >= self.expected_units
        else:
            finished = is_last or error is not None

        if finished:
            self._finish()
        elif output is not None:
            self.advance_to_processing()
        return finished

    def abandon_pending_units(self, reason: str) -> int:
        """Settle every unsettled batch unit as failed and finish the job.

        Returns:
            Number of units abandoned (0 if nothing was pending)
        """
        if self.is_terminal or self.expected_units is None:
            return 0
        pending = self.expected_units - self.settled_units
        if pending <= 0:
            return 0
        self.record_error({"error": reason, "error_type": "Interrupted", "units": pending})
        self.settled_units = self.expected_units
        self._finish()
        return pending

    def _finish(self) -> None:
        outputs = self.media_outputs
        if outputs:
            self.mark_completed(video_url=outputs[-1]["url"])
        else:
            self.status = JobStatus.FAILED
