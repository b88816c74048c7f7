from __future__ import annotations

import logging
import re
from typing import List, Optional, Sequence

from playbook_review.models.rules import MappingStatus, RuleStatus
from playbook_review.models.section import SectionNode
from playbook_review.outline import last_section_number, previous_section_number


logger = logging.getLogger(__name__)

_NUM = r"([\d.A-Za-z]+?)\.?"

_AFTER_PATTERN = re.compile(rf"^After\s+Section\s+{_NUM}$", re.IGNORECASE)
_BETWEEN_PATTERN = re.compile(
    rf"^Between\s+Section\s+{_NUM}\s+and\s+Section\s+{_NUM}$",
    re.IGNORECASE,
)
_AT_END_PATTERN = re.compile(rf"^At\s+the\s+end(?:\s+of\s+Section\s+{_NUM})?$", re.IGNORECASE)
_BEFORE_PATTERN = re.compile(rf"^Before\s+Section\s+{_NUM}$", re.IGNORECASE)

_SECTION_TOKEN = re.compile(r"\bSection\s+(\d[\d.A-Za-z]*)", re.IGNORECASE)
_RECOGNIZED_FORMS = (_AFTER_PATTERN, _BETWEEN_PATTERN, _AT_END_PATTERN, _BEFORE_PATTERN)
_ANY_SECTION = re.compile(r"(?:After|Before)?\s*Section\s+([\d.A-Za-z]+)", re.IGNORECASE)
_BARE_NUMBER = re.compile(r"^([\d.]+)$")
_SECTION_PREFIX = re.compile(r"^Section\s+", re.IGNORECASE)


def with_period(section_number: str) -> str:
    """Enforce a single trailing period on a section number."""

    return section_number if section_number.endswith(".") else f"{section_number}."


def canonical_location(section_number: str) -> str:
    return f"After Section {with_period(section_number)}"


def normalize_insertion_location(raw: str, structure: Sequence[SectionNode]) -> Optional[str]:
    """Parse a free-form insertion phrase into ``After Section <N>.`` or ``None``."""

    location = (raw or "").strip()
    if not location:
        return None

    match = _AFTER_PATTERN.match(location)
    if match:
        return canonical_location(match.group(1))

    match = _BETWEEN_PATTERN.match(location)
    if match:
        return canonical_location(match.group(1))

    match = _AT_END_PATTERN.match(location)
    if match:
        if match.group(1):
            return canonical_location(match.group(1))
        last = last_section_number(structure)
        return canonical_location(last) if last else None

    match = _BEFORE_PATTERN.match(location)
    if match:
        target = with_period(match.group(1))
        previous = previous_section_number(target, structure)
        if previous:
            return canonical_location(previous)
        logger.warning("No section precedes %s; cannot place content before it", target)

    return None


def extract_bare_section_token(raw: str) -> Optional[str]:
    """Return the first ``Section <N>`` token of a phrase that is not a recognized insertion form.

    A recognized form that still failed to normalize (``Before Section 1.``)
    has no usable anchor, so it yields ``None``.
    """

    text = (raw or "").strip()
    if any(pattern.match(text) for pattern in _RECOGNIZED_FORMS):
        return None
    match = _SECTION_TOKEN.search(text)
    return with_period(match.group(1)) if match else None


def extract_section_number(location: str) -> Optional[str]:
    """Pull any section number out of a location phrase or a bare number."""

    text = (location or "").strip()
    match = _ANY_SECTION.search(text)
    if match:
        return with_period(match.group(1))
    match = _BARE_NUMBER.match(text)
    if match:
        return with_period(match.group(1))
    return None


def normalize_plain_location(location: str) -> Optional[str]:
    loc = _SECTION_PREFIX.sub("", (location or "").strip())
    return with_period(loc) if loc else None


def fix_new_section_locations(statuses: Sequence[RuleStatus], structure: Sequence[SectionNode]) -> List[RuleStatus]:
    """Normalize every needs-new-section location, downgrading what cannot be parsed."""

    fixed: List[RuleStatus] = []
    for status in statuses:
        if status.status is not MappingStatus.NEEDS_NEW_SECTION:
            fixed.append(status)
            continue

        raw = status.suggested_location or ""
        normalized = normalize_insertion_location(raw, structure)
        if normalized:
            if normalized != raw:
                logger.debug("Normalized location %r -> %r for rule %s", raw, normalized, status.rule_id)
            fixed.append(
                RuleStatus(
                    rule_id=status.rule_id,
                    status=MappingStatus.NEEDS_NEW_SECTION,
                    suggested_location=normalized,
                    suggested_heading=status.suggested_heading,
                    reason=status.reason,
                )
            )
            continue

        section_number = extract_bare_section_token(raw)
        if section_number:
            logger.warning("Rule %s: unparseable location %r, mapping to %s", status.rule_id, raw, section_number)
            fixed.append(
                RuleStatus(
                    rule_id=status.rule_id,
                    status=MappingStatus.MAPPED,
                    locations=[section_number],
                    reason=f"Converted from unparseable location: {raw}",
                )
            )
        else:
            logger.warning("Rule %s: unparseable location %r, marking not applicable", status.rule_id, raw)
            fixed.append(
                RuleStatus(
                    rule_id=status.rule_id,
                    status=MappingStatus.NOT_APPLICABLE,
                    reason=f"Invalid location format: {raw}",
                )
            )
    return fixed


__all__ = [
    "canonical_location",
    "extract_bare_section_token",
    "extract_section_number",
    "fix_new_section_locations",
    "normalize_insertion_location",
    "normalize_plain_location",
    "with_period",
]
