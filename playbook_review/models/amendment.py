from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union


class ResultKind(str, Enum):
    AMENDMENT = "amendment"
    NEW_SECTION = "new_section"
    RERUN_AMENDMENT = "rerun_amendment"
    NEW_SECTION_AMENDMENT = "new_section_amendment"


@dataclass(slots=True, frozen=True)
class NoChanges:
    """The generator left the section untouched."""

    def to_dict(self) -> Dict[str, Any]:
        return {"noChanges": True}


@dataclass(slots=True)
class Amendment:
    original: str
    amended: str
    applied_rules: List[str] = field(default_factory=list)
    is_full_deletion: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amendment": {
                "original": self.original,
                "amended": self.amended,
                "appliedRules": list(self.applied_rules),
                "isFullDeletion": self.is_full_deletion,
            }
        }


AmendmentOutcome = Union[NoChanges, Amendment]


@dataclass(slots=True)
class AmendmentResult:
    """Per-section (or per insertion point) outcome of a generation call."""

    section_number: str
    success: bool
    result: Optional[AmendmentOutcome] = None
    error: Optional[str] = None
    kind: ResultKind = ResultKind.AMENDMENT

    @classmethod
    def ok(cls, section_number: str, outcome: AmendmentOutcome, kind: ResultKind = ResultKind.AMENDMENT) -> "AmendmentResult":
        return cls(section_number=section_number, success=True, result=outcome, kind=kind)

    @classmethod
    def failed(cls, section_number: str, error: str, kind: ResultKind = ResultKind.AMENDMENT) -> "AmendmentResult":
        return cls(section_number=section_number, success=False, error=error, kind=kind)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sectionNumber": self.section_number,
            "success": self.success,
            "type": self.kind.value,
        }
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class InstructionRequest:
    rule_id: str
    issue: str
    relevant_language: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "issue": self.issue,
            "relevantLanguage": self.relevant_language,
        }


@dataclass(slots=True)
class InstructionRequestResult:
    section_number: str
    success: bool
    requests: List[InstructionRequest] = field(default_factory=list)
    error: Optional[str] = None
    kind: str = "instruction_request"

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sectionNumber": self.section_number,
            "success": self.success,
            "type": self.kind,
            "instructionRequests": [request.to_dict() for request in self.requests],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(slots=True)
class SectionWithRules:
    """A section carrying mapped rules, ready for amendment generation."""

    section_number: str
    text: str
    locked_parents: List[str]
    rules: List[str]
    previous_attempts: List[str] = field(default_factory=list)


__all__ = [
    "Amendment",
    "AmendmentOutcome",
    "AmendmentResult",
    "InstructionRequest",
    "InstructionRequestResult",
    "NoChanges",
    "ResultKind",
    "SectionWithRules",
]
