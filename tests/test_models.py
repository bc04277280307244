"""Tests for data models."""
import pytest
from pydantic import ValidationError

from models.schemas import (
    FailureKind, JobStatus, MessageJob, MessagePriority, MessageRequest,
    SendResult, priority_from_label,
)


class TestJobStatus:
    def test_terminal_states(self):
        assert JobStatus.SENT.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.QUEUED.is_terminal
        assert not JobStatus.RETRYING.is_terminal
        assert not JobStatus.DISPATCHING.is_terminal


class TestPriority:
    def test_tiers_order(self):
        assert MessagePriority.HIGH < MessagePriority.NORMAL < MessagePriority.LOW

    @pytest.mark.parametrize("label,tier", [
        ("high", 1), ("medium", 2), ("low", 3), (None, 3), ("urgent", 3),
    ])
    def test_from_label(self, label, tier):
        assert priority_from_label(label) == tier


class TestSendResult:
    def test_ok(self):
        r = SendResult.ok("wamid.1", rate_limit_remaining="10")
        assert r.success
        assert r.message_id == "wamid.1"
        assert r.raw == {"rate_limit_remaining": "10"}

    def test_failed_defaults_to_transient(self):
        assert SendResult.failed("503").failure_kind == FailureKind.TRANSIENT
        assert SendResult.failed("422", permanent=True).failure_kind == FailureKind.PERMANENT


class TestMessageRequest:
    def test_minimal(self):
        req = MessageRequest(destination="+254700000001", payload="hi")
        assert req.metadata == {}
        assert req.priority is None
        assert req.max_attempts is None

    @pytest.mark.parametrize("field", ["destination", "payload"])
    def test_blank_rejected(self, field):
        data = {"destination": "+254700000001", "payload": "hi", field: "  "}
        with pytest.raises(ValidationError):
            MessageRequest(**data)

    @pytest.mark.parametrize("label,tier", [
        ("high", 1), ("Medium", 2), ("low", 3), ("urgent", 3), ("2", 2), (1, 1),
    ])
    def test_priority_labels(self, label, tier):
        req = MessageRequest(destination="+2547", payload="hi", priority=label)
        assert req.priority == tier

    def test_max_attempts_positive(self):
        with pytest.raises(ValidationError):
            MessageRequest(destination="+2547", payload="hi", max_attempts=0)


class TestMessageJob:
    def test_defaults(self):
        job = MessageJob(destination="+2547", payload="hi")
        assert job.id.startswith("msg_")
        assert job.status == JobStatus.QUEUED
        assert job.priority == 2
        assert job.attempts == 0
        assert job.max_attempts == 3
        assert job.attempts_remaining == 3

    def test_ids_unique(self):
        ids = {MessageJob(destination="a", payload="b").id for _ in range(50)}
        assert len(ids) == 50

    def test_view_hides_payload(self):
        job = MessageJob(destination="+2547", payload="secret", metadata={"type": "otp"})
        view = job.view()
        assert view.id == job.id
        assert view.metadata == {"type": "otp"}
        assert "payload" not in view.model_dump()
        assert "destination" not in view.model_dump()

    def test_attempts_remaining_floor(self):
        job = MessageJob(destination="a", payload="b", max_attempts=1)
        job.attempts = 2
        assert job.attempts_remaining == 0
