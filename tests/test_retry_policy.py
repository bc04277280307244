"""Tests for failure classification and retry decisions."""
import pytest

from channels.base import (
    PermanentTransportError, TransientTransportError, TransportError,
)
from dispatch_queue.retry_policy import RetryAction, RetryPolicy
from models.schemas import MessageJob, SendResult


@pytest.fixture
def policy():
    return RetryPolicy()


def job_after(attempts, max_attempts=3):
    j = MessageJob(destination="+254700000001", payload="x", max_attempts=max_attempts)
    j.attempts = attempts
    return j


class TestClassification:
    def test_typed_errors(self, policy):
        assert policy.is_permanent(PermanentTransportError("bad number"))
        assert not policy.is_permanent(TransientTransportError("status 422 lookalike"))
        assert policy.is_permanent(TransportError("x", retryable=False))

    @pytest.mark.parametrize("message", [
        "Request failed with status 422",
        "Number does not exist on WhatsApp",
        "invalid_phone",
        "Invalid phone number format",
        "service_disabled",
    ])
    def test_untyped_signatures(self, policy, message):
        assert policy.is_permanent(RuntimeError(message))

    @pytest.mark.parametrize("message", [
        "Request failed with status 500",
        "connection reset by peer",
        "",
    ])
    def test_untyped_transient(self, policy, message):
        assert not policy.is_permanent(RuntimeError(message))

    def test_results(self, policy):
        assert policy.is_permanent_result(SendResult.failed("x", permanent=True))
        assert not policy.is_permanent_result(SendResult.failed("status 422"))

    def test_custom_signatures(self):
        policy = RetryPolicy(["Blocked Sender"])
        assert policy.is_permanent(RuntimeError("blocked sender"))
        assert not policy.is_permanent(RuntimeError("status 422"))


class TestDecide:
    def test_permanent_fails_on_first_attempt(self, policy):
        d = policy.decide_for_exception(job_after(1), PermanentTransportError("nope"))
        assert d.action == RetryAction.FAIL
        assert d.non_retryable
        assert d.error == "nope"

    def test_transient_retries_while_budget_left(self, policy):
        assert policy.decide_for_exception(job_after(1), TransientTransportError("t")).should_retry
        assert policy.decide_for_exception(job_after(2), TransientTransportError("t")).should_retry

    def test_transient_exhausted(self, policy):
        d = policy.decide_for_exception(job_after(3), TransientTransportError("t"))
        assert d.action == RetryAction.FAIL
        assert not d.non_retryable

    def test_single_attempt_budget(self, policy):
        assert not policy.decide_for_exception(
            job_after(1, max_attempts=1), TransientTransportError("t")
        ).should_retry

    def test_result_without_error_text(self, policy):
        d = policy.decide_for_result(job_after(3), SendResult(success=False))
        assert d.error == "Unknown error"

    def test_exception_without_message_uses_type(self, policy):
        d = policy.decide_for_exception(job_after(1), TimeoutError())
        assert d.error == "TimeoutError"
        assert d.should_retry
