"""Rerun handling for amendments and instruction requests.

Prior attempts are supplied by the caller on every request; nothing is kept
between invocations. The first rerun of a section only switches to the rerun
prompt. From the second rerun on, each rule is first checked for additional
sections it should have been mapped to; if any turn up, those sections get a
fresh regular pass instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from playbook_review.amendments.instructions import InstructionRequestGenerator
from playbook_review.amendments.scheduler import AmendmentScheduler
from playbook_review.interfaces.generator import BaseGenerator, ModelOptions
from playbook_review.mapping.parsers import parse_additional_sections
from playbook_review.models.amendment import (
    AmendmentOutcome,
    AmendmentResult,
    InstructionRequest,
    InstructionRequestResult,
    NoChanges,
    ResultKind,
    SectionWithRules,
)
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import Rule
from playbook_review.models.section import SectionNode
from playbook_review.orchestration.windows import run_in_windows
from playbook_review.outline import build_section_text_with_children, find_section
from playbook_review.prompts import NO_CHANGES_ATTEMPT, rerun_mapping_check_prompt, truncate_outline_for_log


logger = logging.getLogger(__name__)

DUPLICATE_RERUN_ERROR = "Rerun produced a duplicate of a previous attempt"


@dataclass(slots=True)
class RerunSection:
    section_number: str
    section_text: str
    rules: List[Rule]
    previous_attempts: List[str]
    locked_parents: List[str] = field(default_factory=list)
    current_mapped_sections: List[str] = field(default_factory=list)

    @property
    def rerun_number(self) -> int:
        return len(self.previous_attempts)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "RerunSection":
        return cls(
            section_number=str(payload["sectionNumber"]),
            section_text=str(payload.get("sectionText", "")),
            rules=[Rule.from_dict(rule) for rule in payload.get("rules") or []],
            previous_attempts=[str(attempt) for attempt in payload.get("previousAttempts") or []],
            locked_parents=list(payload.get("lockedParents") or []),
            current_mapped_sections=list(payload.get("currentMappedSections") or []),
        )


def _normalize_attempt(text: str) -> str:
    return " ".join((text or "").split()).casefold()


def attempt_text(outcome: AmendmentOutcome) -> str:
    """The form in which an outcome is passed back as a prior attempt."""

    if isinstance(outcome, NoChanges):
        return NO_CHANGES_ATTEMPT
    return outcome.amended


def is_duplicate_attempt(candidate: str, previous_attempts: Sequence[str]) -> bool:
    normalized = _normalize_attempt(candidate)
    return any(normalized == _normalize_attempt(attempt) for attempt in previous_attempts)


class RerunCoordinator:
    def __init__(
        self,
        generator: BaseGenerator,
        config: ReviewConfig | None = None,
        *,
        scheduler: AmendmentScheduler | None = None,
        instructions: InstructionRequestGenerator | None = None,
    ) -> None:
        self.generator = generator
        self.config = config or ReviewConfig()
        self.scheduler = scheduler or AmendmentScheduler(generator, self.config)
        self.instructions = instructions or InstructionRequestGenerator(generator, self.config)
        models = self.config.models
        self._check_options = ModelOptions(
            model=models.mapping,
            temperature=models.temperature,
            max_tokens=models.max_tokens,
        )

    async def rerun_amendments(
        self,
        sections: Sequence[RerunSection],
        structure: Sequence[SectionNode],
    ) -> List[AmendmentResult]:
        logger.info("Rerunning amendments for %d sections", len(sections))

        async def run(section: RerunSection) -> List[AmendmentResult]:
            try:
                return await self._rerun_section(section, structure)
            except Exception as exc:
                logger.error("Rerun of section %s failed: %s", section.section_number, exc)
                return [AmendmentResult.failed(section.section_number, str(exc), kind=ResultKind.RERUN_AMENDMENT)]

        grouped = await run_in_windows(list(sections), run, self.config.max_concurrent)
        results = [result for group in grouped for result in group]
        logger.info("Rerun complete: %d of %d succeeded", sum(1 for r in results if r.success), len(results))
        return results

    async def rerun_instruction_requests(
        self,
        sections: Sequence[RerunSection],
        structure: Sequence[SectionNode],
    ) -> List[InstructionRequestResult]:
        logger.info("Rerunning instruction requests for %d sections", len(sections))

        async def run(section: RerunSection) -> List[InstructionRequestResult]:
            try:
                return await self._rerun_instruction_section(section, structure)
            except Exception as exc:
                logger.error("Instruction rerun of section %s failed: %s", section.section_number, exc)
                return [
                    InstructionRequestResult(
                        section_number=section.section_number,
                        success=False,
                        error=str(exc),
                        kind="rerun_instruction_request",
                    )
                ]

        grouped = await run_in_windows(list(sections), run, self.config.max_concurrent)
        return [result for group in grouped for result in group]

    async def find_additional_sections(
        self,
        rules: Sequence[Rule],
        current_mapped_sections: Sequence[str],
        structure: Sequence[SectionNode],
        *,
        instruction: bool = False,
    ) -> List[str]:
        """Ask rule by rule for sections missing from ``current_mapped_sections``."""

        found: List[str] = []
        for rule in rules:
            prompt = rerun_mapping_check_prompt(structure, rule, current_mapped_sections, instruction=instruction)
            logger.debug("Mapping check for rule %s:\n%s", rule.id, truncate_outline_for_log(prompt))
            payload = await self.generator.generate_json("", prompt, options=self._check_options)
            for section_number in parse_additional_sections(payload):
                if section_number not in current_mapped_sections and section_number not in found:
                    found.append(section_number)
        return found

    async def _rerun_section(self, section: RerunSection, structure: Sequence[SectionNode]) -> List[AmendmentResult]:
        if section.rerun_number > 1:
            additional = await self.find_additional_sections(
                section.rules,
                section.current_mapped_sections,
                structure,
            )
            if additional:
                logger.info(
                    "Rerun #%d of %s found additional sections %s",
                    section.rerun_number,
                    section.section_number,
                    additional,
                )
                return await self._amend_additional(additional, section.rules, structure)
            logger.info("Rerun #%d of %s: no additional sections", section.rerun_number, section.section_number)

        return [await self._rerun_prompt_amendment(section)]

    async def _rerun_prompt_amendment(self, section: RerunSection) -> AmendmentResult:
        target = SectionWithRules(
            section_number=section.section_number,
            text=section.section_text,
            locked_parents=list(section.locked_parents),
            rules=[rule.id for rule in section.rules],
            previous_attempts=list(section.previous_attempts),
        )
        result = await self.scheduler.safe_amend(target, section.rules, kind=ResultKind.RERUN_AMENDMENT)
        if not self.config.reject_duplicate_reruns or not self._is_duplicate(result, section.previous_attempts):
            return result

        logger.warning("Rerun of %s repeated a previous attempt; retrying once", section.section_number)
        retry = await self.scheduler.safe_amend(target, section.rules, kind=ResultKind.RERUN_AMENDMENT)
        if self._is_duplicate(retry, section.previous_attempts):
            return AmendmentResult.failed(section.section_number, DUPLICATE_RERUN_ERROR, kind=ResultKind.RERUN_AMENDMENT)
        return retry

    @staticmethod
    def _is_duplicate(result: AmendmentResult, previous_attempts: Sequence[str]) -> bool:
        if not result.success or result.result is None:
            return False
        return is_duplicate_attempt(attempt_text(result.result), previous_attempts)

    async def _amend_additional(
        self,
        section_numbers: Sequence[str],
        rules: Sequence[Rule],
        structure: Sequence[SectionNode],
    ) -> List[AmendmentResult]:
        results: List[AmendmentResult] = []
        for section_number in section_numbers:
            node = find_section(section_number, structure)
            if node is None:
                logger.warning("Additional section %s not found in outline", section_number)
                continue
            target = SectionWithRules(
                section_number=section_number,
                text=build_section_text_with_children(node),
                locked_parents=[],
                rules=[rule.id for rule in rules],
            )
            results.append(await self.scheduler.safe_amend(target, rules, kind=ResultKind.NEW_SECTION_AMENDMENT))
        return results

    async def _rerun_instruction_section(
        self,
        section: RerunSection,
        structure: Sequence[SectionNode],
    ) -> List[InstructionRequestResult]:
        if section.rerun_number > 1:
            additional = await self.find_additional_sections(
                section.rules,
                section.current_mapped_sections,
                structure,
                instruction=True,
            )
            if additional:
                results: List[InstructionRequestResult] = []
                for section_number in additional:
                    node = find_section(section_number, structure)
                    if node is None:
                        logger.warning("Additional section %s not found in outline", section_number)
                        continue
                    results.append(
                        await self.instructions.safe_request(
                            section_number,
                            build_section_text_with_children(node),
                            section.rules,
                            kind="new_section_instruction_request",
                        )
                    )
                return results

        result = await self._request_rerun(section)
        if self.config.reject_duplicate_reruns and _repeats_attempt(result.requests, section.previous_attempts):
            logger.warning("Instruction rerun of %s repeated a previous attempt; retrying once", section.section_number)
            result = await self._request_rerun(section)
            if _repeats_attempt(result.requests, section.previous_attempts):
                result = InstructionRequestResult(
                    section_number=section.section_number,
                    success=False,
                    error=DUPLICATE_RERUN_ERROR,
                    kind="rerun_instruction_request",
                )
        return [result]

    async def _request_rerun(self, section: RerunSection) -> InstructionRequestResult:
        return await self.instructions.safe_request(
            section.section_number,
            section.section_text,
            section.rules,
            previous_attempts=section.previous_attempts,
            kind="rerun_instruction_request",
        )


def _repeats_attempt(requests: Sequence[InstructionRequest], previous_attempts: Sequence[str]) -> bool:
    return any(is_duplicate_attempt(request.issue, previous_attempts) for request in requests)


__all__ = [
    "DUPLICATE_RERUN_ERROR",
    "RerunCoordinator",
    "RerunSection",
    "attempt_text",
    "is_duplicate_attempt",
]
