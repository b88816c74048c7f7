from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

from playbook_review.models.rules import Rule
from playbook_review.models.section import SectionNode, outline_from_dicts


class ModelSelection(BaseModel):
    mapping: str = "o3-mini"
    amendment: str = "o3-mini"
    instruction: str = "gpt-4o"
    temperature: float | None = None
    max_tokens: int | None = None


class ReviewConfig(BaseModel):
    """Pipeline knobs shared by the mapper, scheduler and inserter."""

    batch_size: int = Field(default=10, gt=0)
    max_concurrent: int = Field(default=3, gt=0)
    enable_second_pass: bool = True
    use_enhanced_prompts: bool = False
    timeout_seconds: float | None = Field(default=180.0, description="Per-call deadline; None disables it")
    reject_duplicate_reruns: bool = False
    models: ModelSelection = Field(default_factory=ModelSelection)


class ReviewRequestFile(BaseModel):
    """On-disk review request: the parsed outline plus the playbook rules."""

    structure: List[Dict[str, Any]]
    rules: List[Dict[str, Any]]
    config: ReviewConfig | None = None

    def outline(self) -> List[SectionNode]:
        return outline_from_dicts(self.structure)

    def rule_objects(self) -> List[Rule]:
        return [Rule.from_dict(item) for item in self.rules]


__all__ = ["ModelSelection", "ReviewConfig", "ReviewRequestFile"]
