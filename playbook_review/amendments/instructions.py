from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from playbook_review.amendments.scheduler import resolve_rules
from playbook_review.interfaces.generator import BaseGenerator, ModelOptions
from playbook_review.models.amendment import InstructionRequest, InstructionRequestResult, SectionWithRules
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import Rule
from playbook_review.orchestration.windows import ProgressCounter, ProgressReporter, run_in_windows
from playbook_review.prompts import instruction_request_prompt, rerun_instruction_request_prompt


logger = logging.getLogger(__name__)

FALLBACK_ISSUE = "Please review this section and provide confirmation or instruction."


def _capitalize_first(text: str) -> str:
    return text[:1].upper() + text[1:] if text else text


def build_instruction_requests(payload: Any, rules: Sequence[Rule]) -> List[InstructionRequest]:
    """Pair response items with ``rules`` by position, filling gaps with a fallback issue."""

    items = payload if isinstance(payload, list) else []
    requests: List[InstructionRequest] = []
    for index, rule in enumerate(rules):
        item = items[index] if index < len(items) and isinstance(items[index], dict) else None
        if item is None:
            logger.warning("Instruction request for rule %s missing at index %d; using fallback", rule.id, index)
            item = {}
        issue = _capitalize_first(str(item.get("issue") or "").strip())
        requests.append(
            InstructionRequest(
                rule_id=rule.id,
                issue=issue or FALLBACK_ISSUE,
                relevant_language=str(item.get("relevant_language") or "").strip(),
            )
        )
    return requests


class InstructionRequestGenerator:
    """Turns instruction-request rules mapped to a section into questions for the client."""

    def __init__(
        self,
        generator: BaseGenerator,
        config: ReviewConfig | None = None,
        *,
        reporter: Optional[ProgressReporter] = None,
    ) -> None:
        self.generator = generator
        self.config = config or ReviewConfig()
        self.reporter = reporter
        models = self.config.models
        self._options = ModelOptions(
            model=models.instruction,
            temperature=models.temperature,
            max_tokens=models.max_tokens,
        )

    async def generate(
        self,
        sections: Sequence[SectionWithRules],
        rules: Sequence[Rule],
    ) -> List[InstructionRequestResult]:
        logger.info("Generating instruction requests for %d sections", len(sections))
        counter = ProgressCounter("instruction_requests", len(sections), self.reporter)

        async def run(section: SectionWithRules) -> InstructionRequestResult:
            result = await self.safe_request(section.section_number, section.text, resolve_rules(section.rules, rules))
            await counter.advance("section")
            return result

        results = await run_in_windows(list(sections), run, self.config.max_concurrent)
        succeeded = sum(1 for result in results if result.success)
        logger.info("Instruction request generation complete: %d of %d succeeded", succeeded, len(results))
        return results

    async def safe_request(
        self,
        section_number: str,
        section_text: str,
        rules: Sequence[Rule],
        *,
        previous_attempts: Sequence[str] = (),
        kind: str = "instruction_request",
    ) -> InstructionRequestResult:
        try:
            requests = await self.request_for_section(
                section_number,
                section_text,
                rules,
                previous_attempts=previous_attempts,
            )
        except Exception as exc:
            logger.error("Instruction requests for section %s failed: %s", section_number, exc)
            return InstructionRequestResult(section_number=section_number, success=False, error=str(exc), kind=kind)
        return InstructionRequestResult(section_number=section_number, success=True, requests=requests, kind=kind)

    async def request_for_section(
        self,
        section_number: str,
        section_text: str,
        rules: Sequence[Rule],
        *,
        previous_attempts: Sequence[str] = (),
    ) -> List[InstructionRequest]:
        if not rules:
            return []
        if previous_attempts:
            prompt = rerun_instruction_request_prompt(section_number, section_text, rules, previous_attempts)
        else:
            prompt = instruction_request_prompt(section_number, section_text, rules)
        payload = await self.generator.generate_json("", prompt, options=self._options)
        return build_instruction_requests(payload, rules)


__all__ = ["FALLBACK_ISSUE", "InstructionRequestGenerator", "build_instruction_requests"]
