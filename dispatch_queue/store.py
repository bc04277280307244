"""
Job Store — pending dispatch jobs, kept in priority order.

Ordering is recomputed with a full stable sort every time a job is admitted,
so equal-priority jobs keep their arrival order. Jobs requeued by the
dispatcher after a transient failure go to the tail without a sort; they
regain their priority position on the next admission.
"""
from __future__ import annotations

from typing import Iterator, Optional

from models.schemas import MessageJob


class JobStore:
    """Ordered collection of pending jobs. Only the owning queue mutates it."""

    def __init__(self):
        self._jobs: list[MessageJob] = []

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        return bool(self._jobs)

    def __iter__(self) -> Iterator[MessageJob]:
        return iter(list(self._jobs))

    def admit(self, job: MessageJob) -> None:
        """Insert a new job and re-sort by priority."""
        self._jobs.append(job)
        self._jobs.sort(key=lambda j: j.priority)

    def requeue_tail(self, job: MessageJob) -> None:
        """Append a retrying job after everything else; no re-sort."""
        self._jobs.append(job)

    def pop_head(self) -> Optional[MessageJob]:
        if not self._jobs:
            return None
        return self._jobs.pop(0)

    def get(self, job_id: str) -> Optional[MessageJob]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    def clear(self) -> int:
        count = len(self._jobs)
        self._jobs = []
        return count

