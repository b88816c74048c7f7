from __future__ import annotations

import uuid
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, Field

from playbook_review.amendments.rerun import RerunSection
from playbook_review.models.configs import ReviewConfig, ReviewRequestFile
from playbook_review.models.section import SectionNode, outline_from_dicts
from playbook_review.server.settings import Settings

RerunKind = Literal["amendment", "instruction_request"]


class ReviewJobCreate(ReviewRequestFile):
    """Client payload for launching a background review job."""

    job_id: str | None = Field(default=None, description="Optional client-provided job_id for idempotency")


class MapRulesRequest(ReviewRequestFile):
    """Synchronous mapping of one rule family against the outline."""

    instruction: bool = Field(default=False, description="Map instruction-request rules positionally")


class RerunRequest(BaseModel):
    sections: List[Dict[str, Any]] = Field(min_length=1)
    structure: List[Dict[str, Any]]
    kind: RerunKind = "amendment"
    config: ReviewConfig | None = None

    def outline(self) -> List[SectionNode]:
        return outline_from_dicts(self.structure)

    def rerun_sections(self) -> List[RerunSection]:
        return [RerunSection.from_dict(item) for item in self.sections]


def resolve_config(payload: ReviewRequestFile | RerunRequest, settings: Settings) -> ReviewConfig:
    """A request-level config block replaces the environment defaults."""

    return payload.config or settings.review_config()


def new_job_id(payload: ReviewJobCreate) -> str:
    return payload.job_id or str(uuid.uuid4())


class DoneEvent(BaseModel):
    status: Literal["done", "error"]
    failed_sections: int = 0
    error: Dict[str, Any] | None = None


__all__ = [
    "DoneEvent",
    "MapRulesRequest",
    "RerunKind",
    "RerunRequest",
    "ReviewJobCreate",
    "new_job_id",
    "resolve_config",
]
