"""Core contracts for the document approval workflow."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    """Immutable value accepting both snake_case and camelCase field names."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )


class DocumentProperties(_Record):
    """Workflow input describing the document under review."""

    title: str
    created_date: datetime
    creator: str
    application_id: str

    @field_validator("title", "creator", "application_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("created_date")
    @classmethod
    def _aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class _Feedback(_Record):
    feedback: str
    is_passed: bool


class InterviewFeedback(_Feedback):
    """Feedback from the interview panel."""


class BackgroundCheckFeedback(_Feedback):
    """Feedback from the background check provider."""


class ContractFeedback(_Feedback):
    """Feedback from contract review."""


class WorkDocument(_Record):
    """Aggregate handed to the submission activity once all feedback is in."""

    properties: DocumentProperties
    interview_feedback: InterviewFeedback
    background_check_feedback: BackgroundCheckFeedback
    contract_feedback: ContractFeedback


class RuntimeState(str, Enum):
    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RuntimeState.COMPLETED, RuntimeState.FAILED)


class DeliveryResult(str, Enum):
    """Outcome of handing a signal to an instance."""

    ACCEPTED = "Accepted"
    UNKNOWN_INSTANCE = "UnknownInstance"
    ALREADY_SATISFIED = "AlreadySatisfied"
    INSTANCE_CLOSED = "InstanceClosed"


class Suspended(BaseModel):
    state: Literal["suspended"] = "suspended"
    waiting_for: List[str] = Field(default_factory=list)


class Completed(BaseModel):
    state: Literal["completed"] = "completed"
    output: str


class Failed(BaseModel):
    state: Literal["failed"] = "failed"
    error: str


ResumeOutcome = Union[Suspended, Completed, Failed]


class InstanceSummary(BaseModel):
    """Read-only projection of an instance held by the directory."""

    model_config = ConfigDict(frozen=True)

    instance_id: str
    runtime_state: RuntimeState
    custom_status: Optional[str] = None
    created_at: datetime
    last_updated_at: datetime
    title: Optional[str] = None
    output: Optional[str] = None


class InstanceStatus(BaseModel):
    """Answer to a status query."""

    instance_id: str
    runtime_state: RuntimeState
    custom_status: Optional[str] = None
    output: Optional[str] = None
    failure: Optional[str] = None
    created_at: datetime
    pending_signals: List[str] = Field(default_factory=list)


class InstancePage(BaseModel):
    items: List[InstanceSummary] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class Envelope(BaseModel):
    """Message exchanged over a transport.

    ``kind`` is ``"signal"`` for inbound reviewer/approver signals and
    ``"approval_request"`` for the outbound notification to the approver.
    """

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: Literal["signal", "approval_request"] = "signal"
    instance_id: str
    name: str
    payload: Any = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # 1 on first delivery, bumped each time a consumer hands it back
    attempt: int = Field(default=1, ge=1)

    def to_json(self) -> str:
        """Serialize envelope to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "Envelope":
        """Deserialize envelope from JSON."""
        return cls.model_validate_json(data)
