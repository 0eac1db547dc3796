"""
Wire format of a unit of work.
"""

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    ValidationError,
    model_validator,
)

from jobqueue.errors import MalformedEnvelope


def new_task_id() -> str:
    """Generate a globally unique task identifier."""
    return uuid4().hex


class TaskEnvelope(BaseModel):
    """
    A single dispatchable unit of work and its delivery metadata.

    The envelope is immutable; retries produce a copy through
    ``next_attempt``. Payload bytes travel as base64 inside the JSON body.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        ser_json_bytes="base64",
        val_json_bytes="base64",
    )

    id: str = Field(default_factory=new_task_id, min_length=1)
    type: str = Field(..., min_length=1)
    payload: bytes = b""
    queue: str = Field(..., min_length=1)
    max_retries: int = Field(..., ge=0)
    attempt: int = Field(default=0, ge=0)
    timeout_seconds: PositiveFloat
    correlation_id: str = ""
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def check_attempt_bound(self) -> "TaskEnvelope":
        if self.attempt > self.max_retries:
            raise ValueError(
                f"attempt {self.attempt} exceeds max_retries {self.max_retries}"
            )
        return self

    @property
    def is_last_attempt(self) -> bool:
        """True when a failure of this attempt cannot be retried."""
        return self.attempt >= self.max_retries

    def next_attempt(self) -> "TaskEnvelope":
        """Return a copy for the following retry attempt."""
        # model_copy skips validation, so the bound is re-checked here
        if self.attempt + 1 > self.max_retries:
            raise ValueError(f"task {self.id} has no retries remaining")
        return self.model_copy(update={"attempt": self.attempt + 1})

    def encode(self) -> bytes:
        """Serialize the envelope to bytes for the broker."""
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def decode(cls, data: bytes | str) -> "TaskEnvelope":
        """
        Parse broker bytes into an envelope.

        Raises:
            MalformedEnvelope: If the data does not match the schema or
                violates an envelope invariant.
        """
        try:
            return cls.model_validate_json(data)
        except ValidationError as e:
            raise MalformedEnvelope(f"Invalid task envelope: {e.error_count()} error(s)") from e
