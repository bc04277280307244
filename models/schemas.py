"""
Core data models for the notification dispatch service.
These are the types shared by the queue, the transports and the API.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class JobStatus(str, Enum):
    QUEUED = "queued"
    DISPATCHING = "dispatching"
    SENT = "sent"
    RETRYING = "retrying"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SENT, JobStatus.FAILED)


class MessagePriority(IntEnum):
    """Priority tiers. Lower value dispatches first."""
    HIGH = 1
    NORMAL = 2
    LOW = 3


class FailureKind(str, Enum):
    PERMANENT = "permanent"
    TRANSIENT = "transient"


def priority_from_label(label: Optional[str]) -> int:
    """Map a notice-style priority label onto a dispatch tier."""
    if label == "high":
        return MessagePriority.HIGH
    if label == "medium":
        return MessagePriority.NORMAL
    return MessagePriority.LOW


def new_job_id() -> str:
    return f"msg_{uuid.uuid4().hex[:12]}"


# ──────────────────────────────────────────────────────────────
#  Transport result
# ──────────────────────────────────────────────────────────────

class SendResult(BaseModel):
    """Outcome of a single Transport.send call."""
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    failure_kind: FailureKind = FailureKind.TRANSIENT
    raw: dict[str, Any] = {}

    @classmethod
    def ok(cls, message_id: Optional[str] = None, **raw: Any) -> SendResult:
        return cls(success=True, message_id=message_id, raw=raw)

    @classmethod
    def failed(cls, error: str, permanent: bool = False) -> SendResult:
        kind = FailureKind.PERMANENT if permanent else FailureKind.TRANSIENT
        return cls(success=False, error=error, failure_kind=kind)


# ──────────────────────────────────────────────────────────────
#  Admission
# ──────────────────────────────────────────────────────────────

class MessageRequest(BaseModel):
    """Shape a producer must supply to enqueue a message."""
    destination: str = Field(min_length=1)
    payload: str = Field(min_length=1)
    metadata: dict[str, Any] = {}
    priority: Optional[int] = None
    max_attempts: Optional[int] = Field(default=None, ge=1)

    @field_validator("destination", "payload")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    @field_validator("priority", mode="before")
    @classmethod
    def _priority_label(cls, v: Any) -> Any:
        """Accept "high" / "medium" / "low" alongside numeric tiers."""
        if isinstance(v, str) and not v.strip().lstrip("-").isdigit():
            return int(priority_from_label(v.strip().lower()))
        return v


# ──────────────────────────────────────────────────────────────
#  MessageJob — one unit of outbound work
# ──────────────────────────────────────────────────────────────

class MessageJob(BaseModel):
    id: str = Field(default_factory=new_job_id)
    destination: str
    payload: str
    metadata: dict[str, Any] = {}
    priority: int = MessagePriority.NORMAL
    status: JobStatus = JobStatus.QUEUED
    attempts: int = 0
    max_attempts: int = 3
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_result: Optional[dict[str, Any]] = None
    non_retryable: bool = False

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def view(self) -> JobView:
        return JobView(
            id=self.id,
            status=self.status,
            priority=self.priority,
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            enqueued_at=self.enqueued_at,
            metadata=self.metadata,
            last_result=self.last_result,
        )


# ──────────────────────────────────────────────────────────────
#  Observation snapshots
# ──────────────────────────────────────────────────────────────

class JobView(BaseModel):
    """Read-only projection of a job; never carries the payload."""
    id: str
    status: JobStatus
    priority: int
    attempts: int
    max_attempts: int
    enqueued_at: datetime
    metadata: dict[str, Any] = {}
    last_result: Optional[dict[str, Any]] = None


class QueueStats(BaseModel):
    total_queued: int = 0
    total_sent: int = 0
    total_failed: int = 0
    total_retried: int = 0
    current_queue_length: int = 0
    processing: bool = False
    paused: bool = False
    average_processing_time_ms: float = 0.0
    last_processed_at: Optional[datetime] = None
    estimated_time_remaining_ms: int = 0
    messages_per_minute: int = 256
    delay_ms: int = 0


class QueueStatus(BaseModel):
    queue_length: int
    processing: bool
    paused: bool = False
    in_flight: Optional[JobView] = None
    items: list[JobView] = []
