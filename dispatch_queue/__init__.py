"""
Dispatch Queue — the single paced pipeline every outbound notification
goes through.

- Producers enqueue messages with a priority tier
- One drain task sends them through the configured transport
- Transient failures are retried at the tail, permanent ones fail fast
"""
from dispatch_queue.clock import Clock
from dispatch_queue.rate_limiter import FixedIntervalRateLimiter, compute_delay_ms
from dispatch_queue.retry_policy import RetryAction, RetryDecision, RetryPolicy
from dispatch_queue.service import DispatchQueue, InvalidJobError
from dispatch_queue.store import JobStore

__all__ = [
    "Clock", "DispatchQueue", "InvalidJobError", "JobStore",
    "FixedIntervalRateLimiter", "compute_delay_ms",
    "RetryAction", "RetryDecision", "RetryPolicy",
]
