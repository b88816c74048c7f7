from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from playbook_review.amendments.instructions import InstructionRequestGenerator
from playbook_review.amendments.new_sections import NewSectionInserter
from playbook_review.amendments.scheduler import AmendmentScheduler
from playbook_review.interfaces.generator import BaseGenerator
from playbook_review.mapping.mapper import RuleMapper, build_mapping_result
from playbook_review.models.amendment import AmendmentResult, InstructionRequestResult
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import MappingResult, Rule
from playbook_review.models.section import SectionNode
from playbook_review.orchestration.windows import ProgressReporter
from playbook_review.outline import extract_sections_with_rules


logger = logging.getLogger(__name__)

WORKFLOW_STEPS = (
    "Mapping rules to sections",
    "Generating amendments",
    "Generating instruction requests",
    "Formatting results",
    "Completing",
)

StepCallback = Callable[[int, int, str], Awaitable[None]]


@dataclass(slots=True)
class ReviewOutcome:
    amendment_mapping: MappingResult
    instruction_mapping: MappingResult
    amendments: List[AmendmentResult] = field(default_factory=list)
    new_sections: List[AmendmentResult] = field(default_factory=list)
    instruction_requests: List[InstructionRequestResult] = field(default_factory=list)

    @property
    def failed_sections(self) -> int:
        results: List[Any] = [*self.amendments, *self.new_sections, *self.instruction_requests]
        return sum(1 for result in results if not result.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amendmentMapping": self.amendment_mapping.to_dict(),
            "instructionMapping": self.instruction_mapping.to_dict(),
            "amendments": [result.to_dict() for result in self.amendments],
            "newSections": [result.to_dict() for result in self.new_sections],
            "instructionRequests": [result.to_dict() for result in self.instruction_requests],
            "failedSections": self.failed_sections,
        }


def split_rules(rules: Sequence[Rule]) -> tuple[List[Rule], List[Rule]]:
    """Return (compliance-amendment rules, instruction-request rules)."""

    amendment_rules = [rule for rule in rules if not rule.is_instruction_request]
    instruction_rules = [rule for rule in rules if rule.is_instruction_request]
    return amendment_rules, instruction_rules


class ReviewWorkflow:
    """Runs mapping, amendment, new-section and instruction-request generation for one request."""

    def __init__(
        self,
        generator: BaseGenerator,
        config: ReviewConfig | None = None,
        *,
        reporter: Optional[ProgressReporter] = None,
        on_step: Optional[StepCallback] = None,
    ) -> None:
        self.config = config or ReviewConfig()
        self.on_step = on_step
        self.mapper = RuleMapper(generator, self.config, reporter=reporter)
        self.scheduler = AmendmentScheduler(generator, self.config, reporter=reporter)
        self.inserter = NewSectionInserter(generator, self.config, reporter=reporter)
        self.instructions = InstructionRequestGenerator(generator, self.config, reporter=reporter)

    async def _step(self, index: int) -> None:
        name = WORKFLOW_STEPS[index - 1]
        logger.info("Step %d/%d: %s", index, len(WORKFLOW_STEPS), name)
        if self.on_step is not None:
            await self.on_step(index, len(WORKFLOW_STEPS), name)

    async def run(self, structure: Sequence[SectionNode], rules: Sequence[Rule]) -> ReviewOutcome:
        amendment_rules, instruction_rules = split_rules(rules)
        logger.info(
            "Review started: %d top-level sections, %d amendment rules, %d instruction rules",
            len(structure),
            len(amendment_rules),
            len(instruction_rules),
        )

        await self._step(1)
        amendment_mapping = (
            await self.mapper.map_rules(structure, amendment_rules)
            if amendment_rules
            else build_mapping_result(structure, [])
        )
        instruction_mapping = (
            await self.mapper.map_instruction_rules(structure, instruction_rules)
            if instruction_rules
            else build_mapping_result(structure, [], allow_new_sections=False)
        )

        await self._step(2)
        amendment_sections = extract_sections_with_rules(amendment_mapping.annotated_outline)
        amendments, new_sections = await asyncio.gather(
            self.scheduler.generate_amendments(
                amendment_sections,
                amendment_rules,
                amendment_mapping.processing_order,
                structure,
            ),
            self.inserter.generate_new_sections(amendment_mapping.new_sections, amendment_rules, structure),
        )

        await self._step(3)
        instruction_sections = extract_sections_with_rules(instruction_mapping.annotated_outline)
        instruction_requests = await self.instructions.generate(instruction_sections, instruction_rules)

        await self._step(4)
        outcome = ReviewOutcome(
            amendment_mapping=amendment_mapping,
            instruction_mapping=instruction_mapping,
            amendments=amendments,
            new_sections=new_sections,
            instruction_requests=instruction_requests,
        )

        await self._step(5)
        logger.info("Review completed with %d failed sections", outcome.failed_sections)
        return outcome


__all__ = ["ReviewOutcome", "ReviewWorkflow", "WORKFLOW_STEPS", "split_rules"]
