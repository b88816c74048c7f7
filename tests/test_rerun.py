from __future__ import annotations

import pytest

from conftest import AMEND, INSTRUCTION_REQUEST, INSTRUCTION_RERUN, MAPPING_CHECK, RERUN_AMEND
from playbook_review.amendments.rerun import (
    DUPLICATE_RERUN_ERROR,
    RerunCoordinator,
    RerunSection,
    attempt_text,
    is_duplicate_attempt,
)
from playbook_review.models.amendment import Amendment, NoChanges, ResultKind
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import Rule


def _section(*attempts: str, mapped: tuple[str, ...] = ("2.1.",)) -> RerunSection:
    return RerunSection(
        section_number="2.1.",
        section_text="Invoices are payable within 30 days.",
        rules=[Rule(id="R1", content="Payment terms must not exceed 60 days.")],
        previous_attempts=list(attempts),
        current_mapped_sections=list(mapped),
    )


def test_rerun_section_from_dict():
    section = RerunSection.from_dict(
        {
            "sectionNumber": "2.1.",
            "sectionText": "Invoices are payable within 30 days.",
            "rules": [{"id": "R1", "content": "Payment terms must not exceed 60 days."}],
            "previousAttempts": ["first", "second"],
            "currentMappedSections": ["2.1."],
        }
    )
    assert section.rerun_number == 2
    assert section.rules[0].id == "R1"
    assert section.locked_parents == []
    assert section.current_mapped_sections == ["2.1."]


def test_attempt_text_and_duplicates():
    assert attempt_text(NoChanges()) == "noChanges: true"
    assert attempt_text(Amendment(original="a", amended="b")) == "b"
    assert is_duplicate_attempt("Invoices are  payable\nwithin 60 DAYS.", ["Invoices are payable within 60 days."])
    assert not is_duplicate_attempt("Invoices are payable within 45 days.", ["Invoices are payable within 60 days."])


@pytest.mark.asyncio
async def test_first_rerun_uses_rerun_prompt_without_mapping_check(scripted, outline):
    generator = scripted([(RERUN_AMEND, {"amendment": {"amended": "Invoices are payable within 45 days.", "appliedRules": ["R1"]}})])

    results = await RerunCoordinator(generator).rerun_amendments([_section("Invoices are payable within 60 days.")], outline)

    assert len(results) == 1
    assert results[0].kind is ResultKind.RERUN_AMENDMENT
    assert results[0].result.amended == "Invoices are payable within 45 days."
    assert generator.calls(MAPPING_CHECK) == []


@pytest.mark.asyncio
async def test_second_rerun_amends_additional_sections(scripted, outline):
    generator = scripted(
        [
            (MAPPING_CHECK, {"additionalSections": ["2.1.", "3"]}),
            (AMEND, {"amendment": {"amended": "Either party may terminate on 60 days notice.", "appliedRules": ["R1"]}}),
        ]
    )
    section = _section("first try", "second try")

    results = await RerunCoordinator(generator).rerun_amendments([section], outline)

    assert [result.section_number for result in results] == ["3."]
    assert results[0].kind is ResultKind.NEW_SECTION_AMENDMENT
    assert results[0].result.original == "Either party may terminate on 30 days notice."
    assert "Currently mapped to: 2.1." in generator.calls(MAPPING_CHECK)[0]
    assert generator.calls(RERUN_AMEND) == []


@pytest.mark.asyncio
async def test_second_rerun_without_additional_sections_falls_back(scripted, outline):
    generator = scripted(
        [
            (MAPPING_CHECK, {"additionalSections": []}),
            (RERUN_AMEND, {"noChanges": True}),
        ]
    )

    results = await RerunCoordinator(generator).rerun_amendments([_section("first try", "second try")], outline)

    assert results[0].kind is ResultKind.RERUN_AMENDMENT
    assert isinstance(results[0].result, NoChanges)
    assert len(generator.calls(MAPPING_CHECK)) == 1


@pytest.mark.asyncio
async def test_mapping_check_failure_fails_the_section(scripted, outline):
    generator = scripted([(MAPPING_CHECK, "not json")])

    results = await RerunCoordinator(generator).rerun_amendments([_section("a", "b")], outline)

    assert results[0].success is False
    assert results[0].kind is ResultKind.RERUN_AMENDMENT


@pytest.mark.asyncio
async def test_duplicates_are_returned_unless_rejected(scripted, outline):
    response = {"amendment": {"amended": "Invoices are payable within 60 days.", "appliedRules": ["R1"]}}
    section = _section("Invoices are payable within 60 days.")

    lenient = scripted([(RERUN_AMEND, response)])
    results = await RerunCoordinator(lenient).rerun_amendments([section], outline)
    assert results[0].success
    assert len(lenient.prompts) == 1

    strict = scripted([(RERUN_AMEND, response)])
    results = await RerunCoordinator(strict, ReviewConfig(reject_duplicate_reruns=True)).rerun_amendments([section], outline)
    assert results[0].success is False
    assert results[0].error == DUPLICATE_RERUN_ERROR
    assert len(strict.prompts) == 2


@pytest.mark.asyncio
async def test_strict_retry_can_recover(scripted, outline):
    answers = iter(
        [
            {"noChanges": True},
            {"amendment": {"amended": "Invoices are payable within 45 days.", "appliedRules": ["R1"]}},
        ]
    )
    generator = scripted([(RERUN_AMEND, lambda prompt: next(answers))])
    coordinator = RerunCoordinator(generator, ReviewConfig(reject_duplicate_reruns=True))

    results = await coordinator.rerun_amendments([_section("noChanges: true")], outline)

    assert results[0].success
    assert results[0].result.amended == "Invoices are payable within 45 days."


@pytest.mark.asyncio
async def test_instruction_rerun_prompts(scripted, outline):
    generator = scripted([(INSTRUCTION_RERUN, [{"issue": "please confirm whether 30 days is acceptable."}])])
    section = RerunSection(
        section_number="3.",
        section_text="Either party may terminate on 30 days notice.",
        rules=[Rule(id="IR1", content="Confirm the termination notice period.")],
        previous_attempts=["Please confirm the notice period."],
    )

    results = await RerunCoordinator(generator).rerun_instruction_requests([section], outline)

    assert results[0].kind == "rerun_instruction_request"
    assert results[0].requests[0].issue == "Please confirm whether 30 days is acceptable."


@pytest.mark.asyncio
async def test_instruction_rerun_maps_additional_sections(scripted, outline):
    generator = scripted(
        [
            (MAPPING_CHECK, {"additionalSections": ["1.2."]}),
            (INSTRUCTION_REQUEST, [{"issue": "Please confirm the definition."}]),
        ]
    )
    section = RerunSection(
        section_number="3.",
        section_text="Either party may terminate on 30 days notice.",
        rules=[Rule(id="IR1", content="Confirm the confidentiality scope.")],
        previous_attempts=["one", "two"],
        current_mapped_sections=["3."],
    )

    results = await RerunCoordinator(generator).rerun_instruction_requests([section], outline)

    assert [result.section_number for result in results] == ["1.2."]
    assert results[0].kind == "new_section_instruction_request"
    assert "an instruction request rule" in generator.calls(MAPPING_CHECK)[0]
