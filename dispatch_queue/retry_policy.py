"""
Retry Policy — decides what happens to a job after a failed send.

Classification is by type first: PermanentTransportError (or any
TransportError with retryable=False) and failed SendResults marked
PERMANENT never retry. Exceptions from outside the transport hierarchy are
matched against known permanent-failure phrases; anything else is transient.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from channels.base import TransportError
from config.settings import DEFAULT_PERMANENT_SIGNATURES
from models.schemas import FailureKind, MessageJob, SendResult


class RetryAction(str, Enum):
    RETRY = "retry"
    FAIL = "fail"


@dataclass
class RetryDecision:
    action: RetryAction
    non_retryable: bool
    error: str

    @property
    def should_retry(self) -> bool:
        return self.action == RetryAction.RETRY


class RetryPolicy:

    def __init__(self, permanent_signatures: Optional[Iterable[str]] = None):
        if permanent_signatures is None:
            permanent_signatures = DEFAULT_PERMANENT_SIGNATURES
        self.permanent_signatures = [s.lower() for s in permanent_signatures]

    def matches_signature(self, text: Optional[str]) -> bool:
        if not text:
            return False
        text = text.lower()
        return any(sig in text for sig in self.permanent_signatures)

    def is_permanent(self, error: BaseException) -> bool:
        if isinstance(error, TransportError):
            return not error.retryable
        return self.matches_signature(str(error))

    def is_permanent_result(self, result: SendResult) -> bool:
        return result.failure_kind == FailureKind.PERMANENT

    def decide(self, job: MessageJob, permanent: bool, error: str) -> RetryDecision:
        """Given a failed attempt already counted in job.attempts."""
        if permanent:
            return RetryDecision(RetryAction.FAIL, non_retryable=True, error=error)
        if job.attempts < job.max_attempts:
            return RetryDecision(RetryAction.RETRY, non_retryable=False, error=error)
        return RetryDecision(RetryAction.FAIL, non_retryable=False, error=error)

    def decide_for_exception(self, job: MessageJob, error: BaseException) -> RetryDecision:
        return self.decide(job, self.is_permanent(error), str(error) or type(error).__name__)

    def decide_for_result(self, job: MessageJob, result: SendResult) -> RetryDecision:
        return self.decide(job, self.is_permanent_result(result),
                           result.error or "Unknown error")
