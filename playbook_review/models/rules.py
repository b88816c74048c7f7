from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from playbook_review.models.section import SectionNode, outline_to_dicts


INSTRUCTION_RULE_PREFIX = "IR"


class MappingStatus(str, Enum):
    MAPPED = "mapped"
    NOT_APPLICABLE = "not_applicable"
    NEEDS_NEW_SECTION = "needs_new_section"


@dataclass(slots=True, frozen=True)
class Rule:
    """A playbook rule the document must comply with."""

    id: str
    content: str
    example: Optional[str] = None

    @property
    def is_instruction_request(self) -> bool:
        return self.id.startswith(INSTRUCTION_RULE_PREFIX)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Rule":
        rule_id = payload.get("id") or payload.get("rule_number") or ""
        return cls(
            id=str(rule_id),
            content=str(payload.get("content", "")),
            example=payload.get("example") or None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "content": self.content}
        if self.example:
            data["example"] = self.example
        return data


@dataclass(slots=True)
class RuleStatus:
    """Mapping outcome for a single rule."""

    rule_id: str
    status: MappingStatus
    locations: List[str] = field(default_factory=list)
    suggested_location: Optional[str] = None
    suggested_heading: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"ruleId": self.rule_id, "status": self.status.value}
        if self.locations:
            data["locations"] = list(self.locations)
        if self.suggested_location is not None:
            data["suggestedLocation"] = self.suggested_location
        if self.suggested_heading is not None:
            data["suggestedHeading"] = self.suggested_heading
        if self.reason is not None:
            data["reason"] = self.reason
        return data


@dataclass(slots=True, frozen=True)
class NewSectionLocation:
    rule_id: str
    suggested_location: str
    suggested_heading: str

    @classmethod
    def from_status(cls, status: RuleStatus) -> "NewSectionLocation":
        return cls(
            rule_id=status.rule_id,
            suggested_location=status.suggested_location or "",
            suggested_heading=status.suggested_heading or f"Section for Rule {status.rule_id}",
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "suggestedLocation": self.suggested_location,
            "suggestedHeading": self.suggested_heading,
        }


@dataclass(slots=True)
class MappingSummary:
    mapped_rules: int = 0
    not_applicable_rules: int = 0
    needs_new_section: int = 0

    @classmethod
    def from_statuses(cls, statuses: List[RuleStatus]) -> "MappingSummary":
        return cls(
            mapped_rules=sum(1 for s in statuses if s.status is MappingStatus.MAPPED),
            not_applicable_rules=sum(1 for s in statuses if s.status is MappingStatus.NOT_APPLICABLE),
            needs_new_section=sum(1 for s in statuses if s.status is MappingStatus.NEEDS_NEW_SECTION),
        )

    def to_dict(self) -> Dict[str, int]:
        return {
            "mappedRules": self.mapped_rules,
            "notApplicableRules": self.not_applicable_rules,
            "needsNewSection": self.needs_new_section,
        }


@dataclass(slots=True)
class MappingResult:
    """Merged output of the rule mapping phase."""

    annotated_outline: List[SectionNode]
    rule_status: List[RuleStatus]
    new_sections: List[NewSectionLocation]
    processing_order: List[str]
    summary: MappingSummary

    @classmethod
    def empty(cls, structure: List[SectionNode]) -> "MappingResult":
        return cls(
            annotated_outline=list(structure),
            rule_status=[],
            new_sections=[],
            processing_order=[],
            summary=MappingSummary(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "annotatedOutline": outline_to_dicts(self.annotated_outline),
            "ruleStatus": [status.to_dict() for status in self.rule_status],
            "newSections": [location.to_dict() for location in self.new_sections],
            "processingOrder": list(self.processing_order),
            "summary": self.summary.to_dict(),
        }


__all__ = [
    "INSTRUCTION_RULE_PREFIX",
    "MappingResult",
    "MappingStatus",
    "MappingSummary",
    "NewSectionLocation",
    "Rule",
    "RuleStatus",
]
