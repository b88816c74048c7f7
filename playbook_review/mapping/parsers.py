from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from playbook_review.errors import GenerationParseError
from playbook_review.mapping.locations import (
    extract_section_number,
    fix_new_section_locations,
    normalize_plain_location,
)
from playbook_review.mapping.rule_ids import normalize_rule_id
from playbook_review.models.amendment import Amendment, AmendmentOutcome, NoChanges
from playbook_review.models.rules import MappingStatus, Rule, RuleStatus
from playbook_review.models.section import SectionNode


logger = logging.getLogger(__name__)

MISSING_RESULT_REASON = "No result returned from generator"

_GENERIC_HEADING = re.compile(r"^(?:Section|Article)\s+[\d.]+(?:\([a-z0-9ivxlc]+\))?\s*", re.IGNORECASE)
_GENERIC_NUMBER = re.compile(r"^\d+(?:\.\d+)*\.(?:\([a-z0-9ivxlc]+\))?\s+")
_GENERIC_COLON = re.compile(r"^\d+(?:\.\d+)*:\s+")


def _coerce_status(value: Any) -> MappingStatus:
    try:
        return MappingStatus(str(value or "").strip().lower())
    except ValueError:
        return MappingStatus.NOT_APPLICABLE


def _clean_locations(raw: Any) -> List[str]:
    if isinstance(raw, str):
        raw = [raw]
    locations: List[str] = []
    for item in raw or []:
        location = normalize_plain_location(str(item))
        if location and location not in locations:
            locations.append(location)
    return locations


def _status_from_payload(item: Dict[str, Any], rule_id: str) -> RuleStatus:
    status = _coerce_status(item.get("status"))
    if status is MappingStatus.MAPPED:
        locations = _clean_locations(item.get("locations"))
        if not locations:
            return RuleStatus(rule_id=rule_id, status=MappingStatus.NOT_APPLICABLE, reason="Mapped without locations")
        return RuleStatus(rule_id=rule_id, status=status, locations=locations, reason=item.get("reason"))
    if status is MappingStatus.NEEDS_NEW_SECTION:
        return RuleStatus(
            rule_id=rule_id,
            status=status,
            suggested_location=str(item.get("suggestedLocation") or ""),
            suggested_heading=item.get("suggestedHeading") or None,
            reason=item.get("reason"),
        )
    return RuleStatus(rule_id=rule_id, status=MappingStatus.NOT_APPLICABLE, reason=item.get("reason"))


def parse_rule_mapping_response(
    payload: Any,
    structure: Sequence[SectionNode],
    rules: Sequence[Rule],
) -> List[RuleStatus]:
    """Decode a first-pass mapping response keyed by rule id.

    The returned list holds exactly one status per rule in ``rules``, in rule
    order. Ids the generator invented are dropped; rules it skipped become
    ``not_applicable``.
    """

    if not isinstance(payload, dict):
        raise GenerationParseError("Rule mapping response must be a JSON object", str(payload))
    entries = payload.get("ruleStatus")
    if entries is None:
        entries = []
    if not isinstance(entries, list):
        raise GenerationParseError("ruleStatus must be a list", str(entries))

    known_ids = {rule.id for rule in rules}
    by_id: Dict[str, RuleStatus] = {}
    for item in entries:
        if not isinstance(item, dict):
            continue
        rule_id = normalize_rule_id(item.get("ruleId"), rules)
        if rule_id not in known_ids:
            logger.warning("Dropping mapping for unknown rule id %r", item.get("ruleId"))
            continue
        if rule_id in by_id:
            logger.debug("Ignoring duplicate mapping entry for rule %s", rule_id)
            continue
        by_id[rule_id] = _status_from_payload(item, rule_id)

    statuses = fix_new_section_locations(list(by_id.values()), structure)
    resolved = {status.rule_id: status for status in statuses}
    return [
        resolved.get(rule.id) or RuleStatus(rule_id=rule.id, status=MappingStatus.NOT_APPLICABLE)
        for rule in rules
    ]


def parse_instruction_rule_mapping_response(payload: Any, rules: Sequence[Rule]) -> List[RuleStatus]:
    """Decode a positional mapping response; element ``i`` belongs to ``rules[i]``."""

    if isinstance(payload, list):
        results = payload
    elif isinstance(payload, dict):
        results = payload.get("results") or []
    else:
        raise GenerationParseError("Instruction rule mapping response must be JSON", str(payload))

    statuses: List[RuleStatus] = []
    for index, rule in enumerate(rules):
        item = results[index] if index < len(results) else None
        if not isinstance(item, dict):
            logger.warning("No mapping result for rule %s at index %d", rule.id, index)
            statuses.append(
                RuleStatus(rule_id=rule.id, status=MappingStatus.NOT_APPLICABLE, reason=MISSING_RESULT_REASON)
            )
            continue
        statuses.append(_instruction_status(item, rule.id))
    return statuses


def _instruction_status(item: Dict[str, Any], rule_id: str) -> RuleStatus:
    status = _coerce_status(item.get("status"))
    if status is MappingStatus.NEEDS_NEW_SECTION:
        location = str(item.get("suggestedLocation") or "")
        section_number = extract_section_number(location)
        if section_number:
            logger.info("Instruction rule %s: converting needs_new_section to mapped at %s", rule_id, section_number)
            return RuleStatus(rule_id=rule_id, status=MappingStatus.MAPPED, locations=[section_number])
        return RuleStatus(
            rule_id=rule_id,
            status=MappingStatus.NOT_APPLICABLE,
            reason=f"Invalid location format: {location}",
        )
    if status is MappingStatus.MAPPED:
        locations = _clean_locations(item.get("locations"))
        if locations:
            return RuleStatus(rule_id=rule_id, status=MappingStatus.MAPPED, locations=locations)
        return RuleStatus(rule_id=rule_id, status=MappingStatus.NOT_APPLICABLE, reason="No valid locations")
    return RuleStatus(rule_id=rule_id, status=MappingStatus.NOT_APPLICABLE, reason=item.get("reason"))


def parse_additional_mappings(payload: Any, *, key: str) -> Dict[Any, List[str]]:
    """Collect second-pass additions keyed by ``ruleId`` or ``ruleIndex``."""

    if not isinstance(payload, dict):
        raise GenerationParseError("Second-pass response must be a JSON object", str(payload))
    additions: Dict[Any, List[str]] = {}
    for item in payload.get("additionalMappings") or []:
        if not isinstance(item, dict) or item.get(key) is None:
            continue
        locations = _clean_locations(item.get("additionalLocations"))
        if locations:
            bucket = additions.setdefault(item[key], [])
            bucket.extend(loc for loc in locations if loc not in bucket)
    return additions


def parse_additional_sections(payload: Any) -> List[str]:
    if not isinstance(payload, dict):
        raise GenerationParseError("Mapping check response must be a JSON object", str(payload))
    return _clean_locations(payload.get("additionalSections"))


def strip_section_number(text: str, known_section: Optional[str] = None) -> str:
    """Remove a leading section number or ``Section``/``Article`` label from ``text``."""

    cleaned = (text or "").strip()
    if known_section:
        bare = re.escape(known_section.rstrip("."))
        for pattern in (
            rf"^Section\s+{bare}\.?\s*",
            rf"^Article\s+{bare}\.?\s*",
            rf"^{bare}\.?:?\s+",
        ):
            cleaned = re.sub(pattern, "", cleaned, flags=re.IGNORECASE)

    cleaned = _GENERIC_HEADING.sub("", cleaned)
    cleaned = _GENERIC_NUMBER.sub("", cleaned)
    cleaned = _GENERIC_COLON.sub("", cleaned)
    return cleaned.strip()


def parse_amendment_response(
    payload: Any,
    rules: Sequence[Rule],
    *,
    original: str = "",
    section_number: Optional[str] = None,
) -> AmendmentOutcome:
    """Decode an amendment response into ``NoChanges`` or ``Amendment``."""

    if not isinstance(payload, dict):
        raise GenerationParseError("Invalid amendments response format", str(payload))
    if payload.get("noChanges") is True:
        return NoChanges()

    body = payload.get("amendment")
    if not isinstance(body, dict) or not isinstance(body.get("amended"), str):
        raise GenerationParseError("Invalid amendments response format", str(payload))

    applied = body.get("appliedRules") or []
    if isinstance(applied, str):
        applied = [applied]
    applied_rules: List[str] = []
    for raw_id in applied:
        rule_id = normalize_rule_id(raw_id, rules)
        if rule_id and rule_id not in applied_rules:
            applied_rules.append(rule_id)

    return Amendment(
        original=original,
        amended=strip_section_number(body["amended"], section_number),
        applied_rules=applied_rules,
    )


__all__ = [
    "MISSING_RESULT_REASON",
    "parse_additional_mappings",
    "parse_additional_sections",
    "parse_amendment_response",
    "parse_instruction_rule_mapping_response",
    "parse_rule_mapping_response",
    "strip_section_number",
]
