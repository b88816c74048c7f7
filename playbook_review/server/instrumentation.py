from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Dict, Optional

from playbook_review.orchestration.windows import ProgressUpdate


def _ts() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True)
class EventFactory:
    """Builds the structured progress events streamed for a review job."""

    job_id: str

    def event(
        self,
        *,
        phase: str,
        type: str,
        name: str,
        summary: str,
        detail: Optional[Dict[str, Any]] = None,
        metrics: Optional[Dict[str, Any]] = None,
        severity: str = "info",
        step_id: str | None = None,
    ) -> Dict[str, Any]:
        return {
            "version": 1,
            "ts": _ts(),
            "job_id": self.job_id,
            "phase": phase,
            "type": type,
            "name": name,
            "summary": summary,
            "detail": detail or {},
            "metrics": metrics or {},
            "severity": severity,
            "step_id": step_id,
        }

    def progress(self, update: ProgressUpdate, step_id: str | None = None) -> Dict[str, Any]:
        return self.event(
            phase=update.phase,
            type="progress",
            name=f"review.{update.phase}",
            summary=update.message,
            metrics={"completed": update.completed, "total": update.total},
            step_id=step_id,
        )

    def step(self, *, index: int, total: int, name: str) -> "StepTracker":
        return StepTracker(factory=self, index=index, total=total, name=name)


@dataclass(slots=True)
class StepTracker:
    """One of the workflow steps; emits paired start/end events with latency."""

    factory: EventFactory
    index: int
    total: int
    name: str
    step_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    start_time: float = field(default_factory=perf_counter)

    def _detail(self) -> Dict[str, Any]:
        return {"current_step": self.index, "total_steps": self.total, "step_name": self.name}

    def start_event(self) -> Dict[str, Any]:
        return self.factory.event(
            phase="workflow",
            type="start",
            name=f"workflow.step.{self.index}",
            summary=self.name,
            detail=self._detail(),
            step_id=self.step_id,
        )

    def end_event(self) -> Dict[str, Any]:
        duration_ms = int((perf_counter() - self.start_time) * 1000)
        return self.factory.event(
            phase="workflow",
            type="end",
            name=f"workflow.step.{self.index}",
            summary=f"{self.name} done",
            detail=self._detail(),
            metrics={"latency_ms": duration_ms},
            step_id=self.step_id,
        )

    def error_event(self, message: str, detail: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return self.factory.event(
            phase="workflow",
            type="error",
            name=f"workflow.step.{self.index}",
            summary=message,
            detail={**self._detail(), **(detail or {})},
            severity="error",
            step_id=self.step_id,
        )


__all__ = ["EventFactory", "StepTracker"]
