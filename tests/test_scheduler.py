from __future__ import annotations

import pytest

from conftest import AMEND, RERUN_AMEND
from playbook_review.amendments.scheduler import AmendmentScheduler, group_by_level, is_full_deletion, resolve_rules
from playbook_review.models.amendment import Amendment, NoChanges, ResultKind, SectionWithRules
from playbook_review.models.configs import ModelSelection, ReviewConfig
from playbook_review.models.rules import MappingStatus, RuleStatus
from playbook_review.orchestration.windows import ProgressUpdate
from playbook_review.outline import annotate_outline, calculate_processing_order, extract_sections_with_rules


@pytest.mark.parametrize(
    "text",
    ["[DELETED]", "[Deleted]", "deleted", "  [reserved] ", "Intentionally Deleted", "[INTENTIONALLY OMITTED]", "intentionally omitted"],
)
def test_full_deletion_markers(text):
    assert is_full_deletion(text) is True


@pytest.mark.parametrize("text", ["The Company shall pay within 45 days.", "", "[DELETED] except clause (b)"])
def test_regular_text_is_not_full_deletion(text):
    assert is_full_deletion(text) is False


def test_group_by_level_skips_unknown_sections(outline, caplog):
    groups = group_by_level(["2.1.1.", "2.1.", "9.", "3.", "1.1."], outline)
    assert groups == {3: ["2.1.1."], 2: ["2.1.", "1.1."], 1: ["3."]}
    assert "9." in caplog.text


def test_resolve_rules_keeps_section_order(rules):
    assert [rule.id for rule in resolve_rules(["R3", "missing", "R1"], rules)] == ["R3", "R1"]


def _sections(outline):
    statuses = [
        RuleStatus("R1", MappingStatus.MAPPED, locations=["2.1.", "3."]),
        RuleStatus("R3", MappingStatus.MAPPED, locations=["2.1.1."]),
    ]
    annotated = annotate_outline(outline, statuses)
    return extract_sections_with_rules(annotated), calculate_processing_order(outline, statuses)


@pytest.mark.asyncio
async def test_amendments_run_deepest_level_first(scripted, outline, rules):
    def amend(prompt: str):
        if "Late payments accrue interest" in prompt and "# SECTIONS TO BE AMENDED\nLate" in prompt:
            return {"amendment": {"amended": "[Deleted]", "appliedRules": ["R3"]}}
        if "Either party may terminate" in prompt:
            return {"noChanges": True}
        return {"amendment": {"amended": "2.1. Invoices are payable within 60 days.", "appliedRules": ["Rule R1"]}}

    generator = scripted([(AMEND, amend)])
    sections, order = _sections(outline)
    scheduler = AmendmentScheduler(generator, ReviewConfig(models=ModelSelection(amendment="gpt-test")))

    results = await scheduler.generate_amendments(sections, rules, order, outline)

    assert [result.section_number for result in results] == ["2.1.1.", "2.1.", "3."]
    assert all(result.success and result.kind is ResultKind.AMENDMENT for result in results)

    deletion = results[0].result
    assert isinstance(deletion, Amendment) and deletion.is_full_deletion
    assert deletion.applied_rules == ["R3"]

    amended = results[1].result
    assert isinstance(amended, Amendment)
    assert amended.amended == "Invoices are payable within 60 days."
    assert amended.applied_rules == ["R1"]
    assert amended.original.startswith("Invoices are payable within 30 days.")
    assert amended.is_full_deletion is False

    assert isinstance(results[2].result, NoChanges)
    assert set(generator.models) == {"gpt-test"}


@pytest.mark.asyncio
async def test_amendment_prompt_carries_locked_parents_and_only_mapped_rules(scripted, outline, rules):
    generator = scripted([(AMEND, {"noChanges": True})])
    sections, order = _sections(outline)

    await AmendmentScheduler(generator).generate_amendments(sections, rules, order, outline)

    deepest = generator.prompts[0]
    assert "{2. Payment}" in deepest
    assert "{2.1. Invoices are payable within 30 days.}" in deepest
    assert "Rule R3:" in deepest
    assert "Rule R1:" not in deepest


@pytest.mark.asyncio
async def test_section_failure_is_isolated(scripted, outline, rules):
    def amend(prompt: str):
        if "Either party may terminate" in prompt:
            return "this is not json at all"
        return {"noChanges": True}

    generator = scripted([(AMEND, amend)])
    sections, order = _sections(outline)

    results = await AmendmentScheduler(generator, ReviewConfig(max_concurrent=1)).generate_amendments(
        sections, rules, order, outline
    )

    assert [result.success for result in results] == [True, True, False]
    assert results[2].section_number == "3."
    assert results[2].error
    assert results[2].to_dict()["success"] is False


@pytest.mark.asyncio
async def test_previous_attempts_switch_to_rerun_prompt(scripted, rules):
    generator = scripted([(RERUN_AMEND, {"amendment": {"amended": "Invoices are payable within 45 days.", "appliedRules": ["R1"]}})])
    section = SectionWithRules(
        section_number="2.1.",
        text="Invoices are payable within 30 days.",
        locked_parents=[],
        rules=["R1"],
        previous_attempts=["Invoices are payable within 60 days.", "noChanges: true"],
    )

    result = await AmendmentScheduler(generator).safe_amend(section, rules, kind=ResultKind.RERUN_AMENDMENT)

    assert result.success
    assert result.kind is ResultKind.RERUN_AMENDMENT
    prompt = generator.prompts[0]
    assert "Attempt 1:\nInvoices are payable within 60 days." in prompt
    assert "No changes were made" in prompt


@pytest.mark.asyncio
async def test_progress_total_counts_only_scheduled_sections(scripted, outline, rules):
    updates: list[ProgressUpdate] = []

    async def reporter(update: ProgressUpdate) -> None:
        updates.append(update)

    generator = scripted([(AMEND, {"noChanges": True})])
    sections, order = _sections(outline)
    scheduler = AmendmentScheduler(generator, ReviewConfig(), reporter=reporter)

    results = await scheduler.generate_amendments(sections, rules, [*order, "1.1."], outline)

    assert len(results) == 3
    assert [update.total for update in updates] == [3, 3, 3]
    assert updates[-1].completed == updates[-1].total
