from __future__ import annotations

import pytest

from playbook_review.mapping.locations import (
    extract_bare_section_token,
    extract_section_number,
    fix_new_section_locations,
    normalize_insertion_location,
    normalize_plain_location,
)
from playbook_review.models.rules import MappingStatus, RuleStatus


@pytest.mark.parametrize("raw", ["After Section 2.1", "After Section 2.1.", "after section 2.1."])
def test_after_section_is_canonical_and_idempotent(outline, raw):
    assert normalize_insertion_location(raw, outline) == "After Section 2.1."


def test_between_degrades_to_earlier_boundary(outline):
    assert normalize_insertion_location("Between Section 3. and Section 4.", outline) == "After Section 3."


def test_at_the_end_of_section(outline):
    assert normalize_insertion_location("At the end of Section 2", outline) == "After Section 2."


def test_at_the_end_uses_last_preorder_node(outline):
    assert normalize_insertion_location("At the end", outline) == "After Section 3."


def test_at_the_end_on_nested_tail():
    from playbook_review.models.section import SectionNode

    structure = [
        SectionNode("1.", "One", 1),
        SectionNode("2.", "Two", 1, children=[SectionNode("2.1.", "Two one", 2)]),
    ]
    assert normalize_insertion_location("At the end", structure) == "After Section 2.1."


def test_before_section_resolves_predecessor(outline):
    assert normalize_insertion_location("Before Section 2.", outline) == "After Section 1.2."
    assert normalize_insertion_location("Before Section 2.1.1", outline) == "After Section 2.1."


def test_before_first_section_fails(outline):
    assert normalize_insertion_location("Before Section 1.", outline) is None


@pytest.mark.parametrize("raw", ["", "   ", "somewhere near the end", "Section 2."])
def test_unrecognized_forms_return_none(outline, raw):
    assert normalize_insertion_location(raw, outline) is None


def test_bare_token_skips_recognized_forms():
    assert extract_bare_section_token("Before Section 1.") is None
    assert extract_bare_section_token("Put it in Section 2.1 please") == "2.1."
    assert extract_bare_section_token("Between Section 3 and Section 4") is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("After Section 2.1 (Payment Terms)", "2.1."),
        ("After Section 4.2, under heading X", "4.2."),
        ("Immediately after Section 3", "3."),
    ],
)
def test_bare_token_from_canonical_phrase_with_trailing_text(raw, expected):
    assert extract_bare_section_token(raw) == expected


def test_near_canonical_location_downgrades_to_mapped(outline):
    fixed = fix_new_section_locations(
        [RuleStatus("R1", MappingStatus.NEEDS_NEW_SECTION, suggested_location="After Section 2.1 (Payment Terms)")],
        outline,
    )

    assert fixed[0].status is MappingStatus.MAPPED
    assert fixed[0].locations == ["2.1."]


def test_extract_section_number_variants():
    assert extract_section_number("After Section 8.1") == "8.1."
    assert extract_section_number("Before Section 3.") == "3."
    assert extract_section_number("Section 4.2.") == "4.2."
    assert extract_section_number("8.1") == "8.1."
    assert extract_section_number("the end") is None


def test_normalize_plain_location():
    assert normalize_plain_location("Section 2.1") == "2.1."
    assert normalize_plain_location("3.") == "3."
    assert normalize_plain_location("  ") is None


def test_fix_new_section_locations_fallbacks(outline):
    statuses = [
        RuleStatus("R1", MappingStatus.NEEDS_NEW_SECTION, suggested_location="After Section 2.1", suggested_heading="X"),
        RuleStatus("R2", MappingStatus.NEEDS_NEW_SECTION, suggested_location="Before Section 1."),
        RuleStatus("R3", MappingStatus.NEEDS_NEW_SECTION, suggested_location="Somewhere in Section 3"),
        RuleStatus("R4", MappingStatus.MAPPED, locations=["1.1."]),
    ]

    fixed = fix_new_section_locations(statuses, outline)

    assert [status.rule_id for status in fixed] == ["R1", "R2", "R3", "R4"]
    assert fixed[0].status is MappingStatus.NEEDS_NEW_SECTION
    assert fixed[0].suggested_location == "After Section 2.1."
    assert fixed[0].suggested_heading == "X"

    assert fixed[1].status is MappingStatus.NOT_APPLICABLE
    assert fixed[1].reason == "Invalid location format: Before Section 1."

    assert fixed[2].status is MappingStatus.MAPPED
    assert fixed[2].locations == ["3."]
    assert fixed[2].reason == "Converted from unparseable location: Somewhere in Section 3"

    assert fixed[3] is statuses[3]
