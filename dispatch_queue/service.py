"""
Dispatch Queue — serializes every outbound notification through one
rate-limited transport.

Producers (fee reminders, receipts, notices, attendance reports) call
enqueue()/enqueue_bulk(); a single drain task owned by the queue takes the
head job, sends it, and lets the retry policy decide whether it is done,
requeued at the tail, or failed. All store mutations happen between awaits
on the event loop thread, so admissions and the drain loop never interleave
inside a mutation.

Lifecycle of a job:
  queued ──▶ dispatching ──▶ sent                    (terminal)
                 │
                 ├──▶ retrying ──▶ (tail of store) ──▶ dispatching …
                 │
                 └──▶ failed                         (terminal)
"""
from __future__ import annotations

import asyncio
import structlog
from collections import deque
from typing import Any, Iterable, Mapping, Optional, Union

from pydantic import ValidationError

from channels.base import MessageTransport, TransientTransportError
from config.settings import DispatchConfig
from dispatch_queue.clock import Clock
from dispatch_queue.rate_limiter import FixedIntervalRateLimiter
from dispatch_queue.retry_policy import RetryDecision, RetryPolicy
from dispatch_queue.store import JobStore
from models.schemas import (
    FailureKind, JobStatus, JobView, MessageJob, MessageRequest,
    QueueStats, QueueStatus, SendResult,
)

logger = structlog.get_logger()

JobInput = Union[MessageRequest, Mapping[str, Any]]


class InvalidJobError(ValueError):
    """Raised at admission when a job is missing its destination or payload."""
    pass


class DispatchQueue:
    """
    In-memory priority queue with a single paced dispatcher.

    Usage:
        queue = DispatchQueue(transport, settings.dispatch)
        job_id = await queue.enqueue("+254712345678", "Fee reminder …",
                                     {"type": "fee_reminder"}, priority=1)
        queue.get_stats()
        await queue.shutdown()
    """

    def __init__(
        self,
        transport: MessageTransport,
        config: Optional[DispatchConfig] = None,
        clock: Optional[Clock] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.transport = transport
        self.config = config or DispatchConfig()
        self._clock = clock or Clock()
        self._limiter = FixedIntervalRateLimiter(
            messages_per_minute=self.config.messages_per_minute,
            safety_margin=self.config.safety_margin,
            clock=self._clock,
        )
        self._retry = retry_policy or RetryPolicy(self.config.permanent_signatures)

        self._store = JobStore()
        self._in_flight: Optional[MessageJob] = None
        self._history: deque[MessageJob] = deque(maxlen=max(0, self.config.history_size))
        self._drain_task: Optional[asyncio.Task] = None
        self._paused = False

        self.total_queued = 0
        self.total_sent = 0
        self.total_failed = 0
        self.total_retried = 0
        self._processed = 0
        self._avg_processing_ms = 0.0
        self._last_processed_at = None

        logger.info("dispatch_queue_initialized",
                    transport=getattr(transport, "name", type(transport).__name__),
                    messages_per_minute=self.config.messages_per_minute,
                    delay_ms=self._limiter.delay_ms)

    # ── Properties ────────────────────────────────────────────

    @property
    def messages_per_minute(self) -> int:
        return self._limiter.messages_per_minute

    @property
    def delay_ms(self) -> int:
        return self._limiter.delay_ms

    @property
    def processing(self) -> bool:
        return self._loop_alive() and not self._paused

    @property
    def paused(self) -> bool:
        return self._paused

    def __len__(self) -> int:
        return len(self._store)

    # ── Admission ─────────────────────────────────────────────

    def _build_job(self, item: JobInput) -> MessageJob:
        if isinstance(item, MessageRequest):
            request = item
        elif not isinstance(item, Mapping):
            raise InvalidJobError(
                f"Invalid message job: expected a mapping, got {type(item).__name__}"
            )
        else:
            data = dict(item)
            if data.get("metadata") is None:
                data["metadata"] = {}
            try:
                request = MessageRequest.model_validate(data)
            except ValidationError as e:
                fields = ", ".join(
                    ".".join(str(p) for p in err["loc"]) for err in e.errors()
                )
                raise InvalidJobError(f"Invalid message job ({fields})") from e

        priority = request.priority
        if priority is None:
            priority = self.config.default_priority
        return MessageJob(
            destination=request.destination,
            payload=request.payload,
            metadata=dict(request.metadata),
            priority=int(priority),
            max_attempts=request.max_attempts or max(1, self.config.max_attempts),
            enqueued_at=self._clock.now(),
        )

    def _admit(self, job: MessageJob) -> str:
        self._store.admit(job)
        self.total_queued += 1
        logger.info("message_queued",
                    job_id=job.id,
                    priority=job.priority,
                    queue_length=len(self._store))
        self._start_drain()
        return job.id

    async def enqueue(
        self,
        destination: str,
        payload: str,
        metadata: Optional[dict[str, Any]] = None,
        priority: Optional[Union[int, str]] = None,
        max_attempts: Optional[int] = None,
    ) -> str:
        """Admit one message. Returns its job id without waiting for delivery."""
        job = self._build_job({
            "destination": destination,
            "payload": payload,
            "metadata": metadata,
            "priority": priority,
            "max_attempts": max_attempts,
        })
        return self._admit(job)

    async def enqueue_bulk(self, jobs: Iterable[JobInput]) -> list[str]:
        """
        Admit each job in input order, exactly like repeated enqueue() calls.

        Not atomic: if a later item is invalid, the items before it stay queued
        and InvalidJobError is raised for the offending one.
        """
        job_ids = []
        for item in jobs:
            job_ids.append(self._admit(self._build_job(item)))
        logger.info("bulk_messages_queued",
                    count=len(job_ids),
                    queue_length=len(self._store))
        return job_ids

    # ── Dispatcher ────────────────────────────────────────────

    def _loop_alive(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    def _start_drain(self) -> None:
        if self._paused or not self._store:
            return
        if self._loop_alive():
            # mid-send or mid-wait; it re-checks the store on wake
            return
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        logger.info("dispatch_drain_started", pending=len(self._store))
        try:
            while self._store and not self._paused:
                await self._limiter.wait()
                if self._paused:
                    break
                job = self._store.pop_head()
                if job is None:
                    break
                await self._process(job)
        finally:
            logger.info("dispatch_drain_complete",
                        sent=self.total_sent,
                        failed=self.total_failed,
                        pending=len(self._store),
                        paused=self._paused)

    async def _process(self, job: MessageJob) -> None:
        self._in_flight = job
        job.status = JobStatus.DISPATCHING
        job.attempts += 1
        job.last_attempt_at = self._clock.now()
        started = self._clock.monotonic()

        logger.info("dispatch_attempt",
                    job_id=job.id,
                    attempt=job.attempts,
                    max_attempts=job.max_attempts)

        try:
            result = await self._send(job)
        except asyncio.CancelledError:
            job.status = JobStatus.RETRYING
            self._store.requeue_tail(job)
            raise
        except Exception as e:
            if not hasattr(e, "retryable"):
                logger.error("dispatch_unexpected_error",
                             job_id=job.id, error=str(e), exc_info=True)
            self._handle_failure(job, self._retry.decide_for_exception(job, e))
        else:
            if result.success:
                self._handle_success(job, result)
            else:
                self._handle_failure(
                    job, self._retry.decide_for_result(job, result), result
                )
        finally:
            self._in_flight = None
            self._record_processing(self._clock.monotonic() - started)
            self._limiter.mark()

    async def _send(self, job: MessageJob) -> SendResult:
        call = self.transport.send(job.destination, job.payload, job.metadata)
        timeout = self.config.send_timeout
        if timeout:
            try:
                raw = await asyncio.wait_for(call, timeout)
            except asyncio.TimeoutError as e:
                raise TransientTransportError(
                    f"send timed out after {timeout}s"
                ) from e
        else:
            raw = await call
        return self._coerce_result(raw)

    def _coerce_result(self, raw: Any) -> SendResult:
        """Accept SendResult or a plain {"success", "id", "error"} dict."""
        if isinstance(raw, SendResult):
            return raw
        if isinstance(raw, Mapping):
            success = bool(raw.get("success"))
            error = None if success else str(
                raw.get("error") or raw.get("reason") or "Unknown error"
            )
            permanent = raw.get("permanent") or self._retry.matches_signature(error)
            kind = FailureKind.PERMANENT if permanent else FailureKind.TRANSIENT
            msg_id = raw.get("message_id") or raw.get("id")
            return SendResult(
                success=success,
                message_id=str(msg_id) if msg_id is not None else None,
                error=error,
                failure_kind=kind,
                raw=dict(raw),
            )
        raise TypeError(f"Transport returned unsupported result: {type(raw).__name__}")

    def _handle_success(self, job: MessageJob, result: SendResult) -> None:
        job.status = JobStatus.SENT
        job.last_result = result.model_dump(mode="json")
        job.completed_at = self._clock.now()
        self.total_sent += 1
        self._history.append(job)
        logger.info("message_sent",
                    job_id=job.id,
                    message_id=result.message_id,
                    attempts=job.attempts)

    def _handle_failure(
        self,
        job: MessageJob,
        decision: RetryDecision,
        result: Optional[SendResult] = None,
    ) -> None:
        job.last_result = {
            "success": False,
            "error": decision.error,
            "non_retryable": decision.non_retryable,
        }
        if result is not None and result.raw:
            job.last_result["raw"] = result.raw

        if decision.should_retry:
            job.status = JobStatus.RETRYING
            self._store.requeue_tail(job)
            self.total_retried += 1
            logger.warning("message_retry_scheduled",
                           job_id=job.id,
                           error=decision.error,
                           attempts_remaining=job.attempts_remaining)
            return

        job.status = JobStatus.FAILED
        job.non_retryable = decision.non_retryable
        job.completed_at = self._clock.now()
        self.total_failed += 1
        self._history.append(job)
        logger.error("message_failed",
                     job_id=job.id,
                     error=decision.error,
                     attempts=job.attempts,
                     non_retryable=decision.non_retryable)

    def _record_processing(self, seconds: float) -> None:
        self._processed += 1
        elapsed_ms = seconds * 1000.0
        self._avg_processing_ms += (elapsed_ms - self._avg_processing_ms) / self._processed
        self._last_processed_at = self._clock.now()

    # ── Control ───────────────────────────────────────────────

    async def pause(self) -> None:
        """Stop after the in-flight send (if any). Admissions still queue."""
        if self._paused:
            return
        self._paused = True
        logger.info("queue_paused",
                    pending=len(self._store),
                    in_flight=self._in_flight.id if self._in_flight else None)

    async def resume(self) -> None:
        if not self._paused and self._loop_alive():
            return
        self._paused = False
        if self._loop_alive():
            # the loop finishing its in-flight send carries on from here
            logger.info("queue_resumed", pending=len(self._store), in_flight=True)
            return
        if not self._store:
            logger.info("queue_resume_nothing_pending")
            return
        logger.info("queue_resumed", pending=len(self._store))
        self._start_drain()

    async def clear(self) -> int:
        """Discard every pending job. The in-flight send is left alone."""
        count = self._store.clear()
        logger.warning("queue_cleared",
                       removed=count,
                       in_flight=self._in_flight.id if self._in_flight else None)
        return count

    async def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait for the drain loop to stop. Returns False on timeout."""

        async def _wait():
            while self._drain_task is not None and not self._drain_task.done():
                await asyncio.shield(self._drain_task)

        try:
            await asyncio.wait_for(_wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        await self.pause()
        if not await self.wait_until_idle(timeout):
            logger.warning("dispatch_shutdown_timeout", timeout=timeout)
            self._drain_task.cancel()
            try:
                await self._drain_task
            except asyncio.CancelledError:
                pass
        logger.info("dispatch_queue_stopped", pending=len(self._store))

    async def send_immediate(
        self,
        destination: str,
        payload: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> SendResult:
        """Bypass the queue and its pacing. Transport errors reach the caller."""
        logger.info("send_immediate", destination=destination)
        raw = await self.transport.send(destination, payload, metadata or {})
        return self._coerce_result(raw)

    # ── Observation ───────────────────────────────────────────

    def get_stats(self) -> QueueStats:
        pending = len(self._store)
        return QueueStats(
            total_queued=self.total_queued,
            total_sent=self.total_sent,
            total_failed=self.total_failed,
            total_retried=self.total_retried,
            current_queue_length=pending,
            processing=self.processing,
            paused=self._paused,
            average_processing_time_ms=round(self._avg_processing_ms, 2),
            last_processed_at=self._last_processed_at,
            estimated_time_remaining_ms=self._limiter.estimate_ms(pending),
            messages_per_minute=self.messages_per_minute,
            delay_ms=self.delay_ms,
        )

    def get_queue_status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._store),
            processing=self.processing,
            paused=self._paused,
            in_flight=self._in_flight.view() if self._in_flight else None,
            items=[job.view() for job in self._store],
        )

    def get_job(self, job_id: str) -> Optional[JobView]:
        if self._in_flight is not None and self._in_flight.id == job_id:
            return self._in_flight.view()
        job = self._store.get(job_id)
        if job is not None:
            return job.view()
        for done in reversed(self._history):
            if done.id == job_id:
                return done.view()
        return None
