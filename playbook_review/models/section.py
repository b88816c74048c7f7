from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class SectionNode:
    """A numbered section of the outline produced by the document parser."""

    section_number: str
    text: str
    level: int
    section_heading: Optional[str] = None
    additional_paragraphs: List[str] = field(default_factory=list)
    children: List["SectionNode"] = field(default_factory=list)
    rules: Optional[List[str]] = None

    def add_child(self, child: "SectionNode") -> None:
        """Attach a child node one level below this one."""

        child.level = self.level + 1
        self.children.append(child)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "SectionNode":
        children = [cls.from_dict(child) for child in payload.get("children") or []]
        rules = payload.get("rules")
        return cls(
            section_number=str(payload.get("sectionNumber", "")),
            text=str(payload.get("text", "")),
            level=int(payload.get("level", 0)),
            section_heading=payload.get("sectionHeading"),
            additional_paragraphs=list(payload.get("additionalParagraphs") or []),
            children=children,
            rules=list(rules) if rules else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "sectionNumber": self.section_number,
            "text": self.text,
            "level": self.level,
        }
        if self.section_heading is not None:
            data["sectionHeading"] = self.section_heading
        if self.additional_paragraphs:
            data["additionalParagraphs"] = list(self.additional_paragraphs)
        if self.children:
            data["children"] = [child.to_dict() for child in self.children]
        if self.rules:
            data["rules"] = list(self.rules)
        return data


def outline_from_dicts(payload: List[Dict[str, Any]]) -> List[SectionNode]:
    return [SectionNode.from_dict(item) for item in payload]


def outline_to_dicts(structure: List[SectionNode]) -> List[Dict[str, Any]]:
    return [node.to_dict() for node in structure]


__all__ = ["SectionNode", "outline_from_dicts", "outline_to_dicts"]
