from __future__ import annotations

import pytest

from playbook_review.errors import GenerationParseError
from playbook_review.mapping.parsers import (
    MISSING_RESULT_REASON,
    parse_additional_mappings,
    parse_additional_sections,
    parse_amendment_response,
    parse_instruction_rule_mapping_response,
    parse_rule_mapping_response,
    strip_section_number,
)
from playbook_review.models.amendment import Amendment, NoChanges
from playbook_review.models.rules import MappingStatus, Rule


def test_rule_mapping_has_one_status_per_rule(outline, rules):
    payload = {
        "ruleStatus": [
            {"ruleId": "Rule R1", "status": "mapped", "locations": ["2.1", "Section 2.1.", "3."]},
            {"ruleId": "R1", "status": "not_applicable"},
            {"ruleId": "R99", "status": "mapped", "locations": ["1."]},
            {"ruleId": "R2", "status": "needs_new_section", "suggestedLocation": "At the end", "suggestedHeading": "Force Majeure"},
        ]
    }

    statuses = parse_rule_mapping_response(payload, outline, rules)

    assert [status.rule_id for status in statuses] == ["R1", "R2", "R3"]
    assert statuses[0].status is MappingStatus.MAPPED
    assert statuses[0].locations == ["2.1.", "3."]
    assert statuses[1].status is MappingStatus.NEEDS_NEW_SECTION
    assert statuses[1].suggested_location == "After Section 3."
    assert statuses[1].suggested_heading == "Force Majeure"
    assert statuses[2].status is MappingStatus.NOT_APPLICABLE


def test_rule_mapping_mapped_without_locations_is_not_applicable(outline, rules):
    statuses = parse_rule_mapping_response({"ruleStatus": [{"ruleId": "R1", "status": "mapped"}]}, outline, rules)
    assert statuses[0].status is MappingStatus.NOT_APPLICABLE
    assert statuses[0].reason == "Mapped without locations"


def test_rule_mapping_unknown_status_is_not_applicable(outline, rules):
    statuses = parse_rule_mapping_response({"ruleStatus": [{"ruleId": "R1", "status": "maybe"}]}, outline, rules)
    assert statuses[0].status is MappingStatus.NOT_APPLICABLE


@pytest.mark.parametrize("payload", [[], "text", {"ruleStatus": "oops"}])
def test_rule_mapping_rejects_bad_shapes(outline, rules, payload):
    with pytest.raises(GenerationParseError):
        parse_rule_mapping_response(payload, outline, rules)


def test_instruction_mapping_is_positional(rules):
    payload = {
        "results": [
            {"status": "mapped", "locations": ["Section 1.1", "1.1."]},
            {"status": "needs_new_section", "suggestedLocation": "After Section 3"},
        ]
    }

    statuses = parse_instruction_rule_mapping_response(payload, rules)

    assert [status.rule_id for status in statuses] == ["R1", "R2", "R3"]
    assert statuses[0].locations == ["1.1."]
    assert statuses[1].status is MappingStatus.MAPPED
    assert statuses[1].locations == ["3."]
    assert statuses[2].status is MappingStatus.NOT_APPLICABLE
    assert statuses[2].reason == MISSING_RESULT_REASON


def test_instruction_mapping_never_needs_new_section(rules):
    payload = [
        {"status": "needs_new_section", "suggestedLocation": "somewhere"},
        {"status": "mapped", "locations": []},
        {"status": "not_applicable", "reason": "n/a"},
    ]

    statuses = parse_instruction_rule_mapping_response(payload, rules)

    assert all(status.status is not MappingStatus.NEEDS_NEW_SECTION for status in statuses)
    assert statuses[0].reason == "Invalid location format: somewhere"
    assert statuses[1].reason == "No valid locations"
    assert statuses[2].reason == "n/a"


def test_additional_mappings_dedupe_per_key():
    payload = {
        "additionalMappings": [
            {"ruleId": "R1", "additionalLocations": ["3", "3."]},
            {"ruleId": "R1", "additionalLocations": ["Section 1.2"]},
            {"ruleId": "R2", "additionalLocations": []},
            {"additionalLocations": ["2."]},
        ]
    }
    assert parse_additional_mappings(payload, key="ruleId") == {"R1": ["3.", "1.2."]}


def test_additional_sections():
    assert parse_additional_sections({"additionalSections": ["2.1", "Section 3."]}) == ["2.1.", "3."]
    assert parse_additional_sections({}) == []
    with pytest.raises(GenerationParseError):
        parse_additional_sections(["2.1."])


@pytest.mark.parametrize(
    "text, known, expected",
    [
        ("2.1. Invoices are payable within 45 days.", "2.1.", "Invoices are payable within 45 days."),
        ("Section 2.1 Invoices are payable.", "2.1.", "Invoices are payable."),
        ("Article 4. Governing law.", None, "Governing law."),
        ("12.3.(a) The supplier shall...", None, "The supplier shall..."),
        ("4.2: Notices in writing.", None, "Notices in writing."),
        ("30 days after delivery.", None, "30 days after delivery."),
        ("The Company shall pay.", "1.", "The Company shall pay."),
    ],
)
def test_strip_section_number(text, known, expected):
    assert strip_section_number(text, known) == expected


def test_amendment_response_no_changes(rules):
    assert isinstance(parse_amendment_response({"noChanges": True}, rules), NoChanges)


def test_amendment_response_normalizes_rules_and_text(rules):
    payload = {"amendment": {"amended": "2.1. Invoices are payable within 45 days.", "appliedRules": ["Rule R1", "R1", "R3"]}}

    outcome = parse_amendment_response(payload, rules, original="Invoices are payable within 30 days.", section_number="2.1.")

    assert isinstance(outcome, Amendment)
    assert outcome.original == "Invoices are payable within 30 days."
    assert outcome.amended == "Invoices are payable within 45 days."
    assert outcome.applied_rules == ["R1", "R3"]
    assert outcome.is_full_deletion is False


@pytest.mark.parametrize("payload", [[], {"amendment": {}}, {"amendment": {"amended": 3}}, {"noChanges": False}])
def test_amendment_response_invalid_shape(rules, payload):
    with pytest.raises(GenerationParseError, match="Invalid amendments response format"):
        parse_amendment_response(payload, rules)


def test_rule_from_dict_accepts_rule_number():
    rule = Rule.from_dict({"rule_number": 5, "content": "x", "example": ""})
    assert rule.id == "5"
    assert rule.example is None
    assert not rule.is_instruction_request
    assert Rule.from_dict({"id": "IR2", "content": "ask"}).is_instruction_request
