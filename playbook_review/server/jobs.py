"""In-memory job tracking for background reviews.

Job state lives here only; the workflow reports steps through callbacks and
never touches the store.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from playbook_review.server.sse import EventBus


logger = logging.getLogger(__name__)

JobStatus = Literal["pending", "done", "error"]


@dataclass(slots=True)
class JobProgress:
    current_step: int
    total_steps: int
    step_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentStep": self.current_step,
            "totalSteps": self.total_steps,
            "stepName": self.step_name,
        }


@dataclass(slots=True)
class Job:
    job_id: str
    bus: EventBus
    status: JobStatus = "pending"
    progress: Optional[JobProgress] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    events: List[Dict[str, Any]] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started: float = field(default_factory=time.monotonic)

    @property
    def finished(self) -> bool:
        return self.status != "pending"

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "progress": self.progress.to_dict() if self.progress else None,
            "result": self.result,
            "error": self.error,
            "events": self.events,
        }


def _normalize_ttl(ttl_seconds: float | None) -> float | None:
    return ttl_seconds if ttl_seconds and ttl_seconds > 0 else None


class JobStore:
    """Jobs keyed by id, expired ``ttl_seconds`` after creation."""

    def __init__(self, *, ttl_seconds: float | None = 3600, heartbeat_interval: float | None = None) -> None:
        self.ttl_seconds = _normalize_ttl(ttl_seconds)
        self._heartbeat = heartbeat_interval
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    def set_ttl(self, ttl_seconds: float | None) -> None:
        """Change the expiry window of existing and future jobs."""

        ttl = _normalize_ttl(ttl_seconds)
        if ttl != self.ttl_seconds:
            logger.info("Job TTL changed from %s to %s seconds", self.ttl_seconds, ttl)
            self.ttl_seconds = ttl

    async def create(self, job_id: str) -> Job:
        async with self._lock:
            if job_id in self._jobs:
                raise ValueError(f"Job already exists: {job_id}")
            job = Job(job_id=job_id, bus=EventBus(heartbeat_interval=self._heartbeat))
            self._jobs[job_id] = job
        logger.info("Created job %s", job_id)
        return job

    async def get(self, job_id: str) -> Job:
        async with self._lock:
            if job_id not in self._jobs:
                raise KeyError(job_id)
            return self._jobs[job_id]

    async def update_progress(self, job_id: str, current_step: int, total_steps: int, step_name: str) -> None:
        job = await self.get(job_id)
        job.progress = JobProgress(current_step, total_steps, step_name)

    async def record_event(self, job_id: str, event: str, payload: Dict[str, Any]) -> None:
        job = await self.get(job_id)
        job.events.append(payload)
        await job.bus.send(event, payload)

    async def complete(self, job_id: str, result: Dict[str, Any]) -> None:
        job = await self.get(job_id)
        job.status = "done"
        job.result = result
        logger.info("Job %s completed", job_id)

    async def fail(self, job_id: str, error: str) -> None:
        job = await self.get(job_id)
        job.status = "error"
        job.error = error
        logger.error("Job %s failed: %s", job_id, error)

    async def cleanup(self, now: float | None = None) -> int:
        """Drop jobs older than the TTL and return how many were removed."""

        if not self.ttl_seconds:
            return 0
        now = time.monotonic() if now is None else now
        async with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if now - job.started > self.ttl_seconds]
            for job_id in expired:
                job = self._jobs.pop(job_id)
                await job.bus.close()
        if expired:
            logger.info("Cleaned up %d expired jobs", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._jobs)


__all__ = ["Job", "JobProgress", "JobStatus", "JobStore"]
