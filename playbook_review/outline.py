"""Pure helpers over the section tree.

None of these functions mutate the outline they are given; the annotator
returns a rewritten copy carrying the ``rules`` field.
"""

from __future__ import annotations

import re
from dataclasses import replace
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from playbook_review.models.amendment import SectionWithRules
from playbook_review.models.rules import MappingStatus, RuleStatus
from playbook_review.models.section import SectionNode


_AFTER_PATTERN = re.compile(r"After Section\s+([\w.]+)", re.IGNORECASE)
_PART_PATTERN = re.compile(r"(\d+)|([A-Za-z]+)")


def walk(structure: Iterable[SectionNode]) -> Iterator[SectionNode]:
    """Yield every node in document (pre-order) order."""

    for node in structure:
        yield node
        if node.children:
            yield from walk(node.children)


def flatten_section_numbers(structure: Iterable[SectionNode]) -> List[str]:
    return [node.section_number for node in walk(structure)]


def find_section(section_number: str, structure: Iterable[SectionNode]) -> Optional[SectionNode]:
    for node in walk(structure):
        if node.section_number == section_number:
            return node
    return None


def find_level(section_number: str, structure: Iterable[SectionNode]) -> Optional[int]:
    node = find_section(section_number, structure)
    return node.level if node is not None else None


def find_top_level_section(section_number: str, structure: Sequence[SectionNode]) -> Optional[SectionNode]:
    for top_level in structure:
        if find_section(section_number, [top_level]) is not None:
            return top_level
    return None


def last_section_number(structure: Iterable[SectionNode]) -> Optional[str]:
    """Return the last node visited in a full pre-order traversal."""

    last: Optional[str] = None
    for node in walk(structure):
        last = node.section_number
    return last


def previous_section_number(section_number: str, structure: Iterable[SectionNode]) -> Optional[str]:
    """Return the section immediately preceding ``section_number`` in document order."""

    ordered = flatten_section_numbers(structure)
    try:
        index = ordered.index(section_number)
    except ValueError:
        return None
    return ordered[index - 1] if index > 0 else None


def build_section_text_with_children(node: SectionNode) -> str:
    parts = [node.text or ""]
    parts.extend(node.additional_paragraphs)
    parts.extend(build_section_text_with_children(child) for child in node.children)
    return "\n".join(parts)


def build_full_section_text(node: SectionNode) -> str:
    """Like ``build_section_text_with_children`` but each node keeps its number."""

    parts = [f"{node.section_number} {node.text}"]
    parts.extend(node.additional_paragraphs)
    parts.extend(build_full_section_text(child) for child in node.children)
    return "\n".join(parts)


def render_outline(structure: Iterable[SectionNode], indent: int = 0) -> str:
    lines: List[str] = []
    for node in structure:
        prefix = "  " * indent
        lines.append(f"{prefix}{node.section_number} {node.text}")
        for paragraph in node.additional_paragraphs:
            lines.append(f"{prefix}  {paragraph}")
        if node.children:
            lines.append(render_outline(node.children, indent + 1))
    return "\n".join(line for line in lines if line)


def _mapped_locations(rule_status: Iterable[RuleStatus]) -> Set[str]:
    mapped: Set[str] = set()
    for status in rule_status:
        if status.status is MappingStatus.MAPPED:
            mapped.update(status.locations)
    return mapped


def annotate_outline(structure: Sequence[SectionNode], rule_status: Sequence[RuleStatus]) -> List[SectionNode]:
    """Return a copy of the outline with each node's ``rules`` set from mapped statuses."""

    annotated: List[SectionNode] = []
    for node in structure:
        matching = [
            status.rule_id
            for status in rule_status
            if status.status is MappingStatus.MAPPED and node.section_number in status.locations
        ]
        annotated.append(
            replace(
                node,
                rules=matching or None,
                children=annotate_outline(node.children, rule_status) if node.children else [],
                additional_paragraphs=list(node.additional_paragraphs),
            )
        )
    return annotated


def calculate_processing_order(structure: Sequence[SectionNode], rule_status: Sequence[RuleStatus]) -> List[str]:
    """Children-before-parents order of every section carrying a mapped rule."""

    mapped = _mapped_locations(rule_status)
    order: List[str] = []

    def collect(node: SectionNode) -> None:
        for child in node.children:
            collect(child)
        if node.section_number in mapped:
            order.append(node.section_number)

    for top_level in structure:
        collect(top_level)
    return order


def extract_sections_with_rules(annotated_outline: Sequence[SectionNode]) -> List[SectionWithRules]:
    sections: List[SectionWithRules] = []

    def traverse(nodes: Sequence[SectionNode], parent_path: List[str]) -> None:
        for node in nodes:
            if node.rules:
                sections.append(
                    SectionWithRules(
                        section_number=node.section_number,
                        text=build_section_text_with_children(node),
                        locked_parents=[f"{{{label}}}" for label in parent_path],
                        rules=list(node.rules),
                    )
                )
            if node.children:
                traverse(node.children, [*parent_path, f"{node.section_number} {node.text}"])

    traverse(annotated_outline, [])
    return sections


def section_sort_key(value: str) -> Tuple[Tuple[Tuple[int, int | str], ...], int]:
    """Sort key placing ``After Section X`` right after ``X``."""

    after = _AFTER_PATTERN.search(value)
    raw = after.group(1) if after else value
    parts: List[Tuple[int, int | str]] = []
    for number, letters in _PART_PATTERN.findall(raw):
        parts.append((0, int(number)) if number else (1, letters.upper()))
    return tuple(parts), 1 if after else 0


def compare_section_numbers(a: str, b: str) -> int:
    key_a, key_b = section_sort_key(a), section_sort_key(b)
    return (key_a > key_b) - (key_a < key_b)


__all__ = [
    "annotate_outline",
    "build_full_section_text",
    "build_section_text_with_children",
    "calculate_processing_order",
    "compare_section_numbers",
    "extract_sections_with_rules",
    "find_level",
    "find_section",
    "find_top_level_section",
    "flatten_section_numbers",
    "last_section_number",
    "previous_section_number",
    "render_outline",
    "section_sort_key",
    "walk",
]
