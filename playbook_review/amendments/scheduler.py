from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence

from playbook_review.interfaces.generator import BaseGenerator, ModelOptions
from playbook_review.mapping.parsers import parse_amendment_response
from playbook_review.models.amendment import (
    Amendment,
    AmendmentOutcome,
    AmendmentResult,
    ResultKind,
    SectionWithRules,
)
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import Rule
from playbook_review.models.section import SectionNode
from playbook_review.orchestration.windows import ProgressCounter, ProgressReporter, run_in_windows
from playbook_review.outline import find_level
from playbook_review.prompts import amendment_prompt, rerun_amendment_prompt, truncate_outline_for_log


logger = logging.getLogger(__name__)

DELETION_MARKERS = (
    "[DELETED]",
    "[INTENTIONALLY DELETED]",
    "[RESERVED]",
    "INTENTIONALLY DELETED",
    "RESERVED",
    "[INTENTIONALLY OMITTED]",
)
_DELETION_TEXTS = frozenset(
    variant for marker in DELETION_MARKERS for variant in (marker.upper(), marker.strip("[]").upper())
)


def is_full_deletion(amended_text: str) -> bool:
    """True when the amended text is a bare deletion marker such as ``[Deleted]``."""

    return (amended_text or "").strip().upper() in _DELETION_TEXTS


def resolve_rules(rule_ids: Sequence[str], rules: Sequence[Rule]) -> List[Rule]:
    by_id = {rule.id: rule for rule in rules}
    return [by_id[rule_id] for rule_id in rule_ids if rule_id in by_id]


def group_by_level(processing_order: Sequence[str], structure: Sequence[SectionNode]) -> Dict[int, List[str]]:
    """Bucket section numbers by tree depth, keeping processing order inside each bucket."""

    groups: Dict[int, List[str]] = {}
    for section_number in processing_order:
        level = find_level(section_number, structure)
        if level is None:
            logger.warning("Section %s in processing order not found in outline; skipping", section_number)
            continue
        groups.setdefault(level, []).append(section_number)
    return groups


class AmendmentScheduler:
    """Generates section amendments level by level, deepest sections first."""

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
            model=models.amendment,
            temperature=models.temperature,
            max_tokens=models.max_tokens,
        )

    async def generate_amendments(
        self,
        sections: Sequence[SectionWithRules],
        rules: Sequence[Rule],
        processing_order: Sequence[str],
        structure: Sequence[SectionNode],
    ) -> List[AmendmentResult]:
        section_map = {section.section_number: section for section in sections}
        groups = group_by_level(processing_order, structure)
        levels = sorted(groups, reverse=True)
        logger.info(
            "Amending %d sections across levels %s (max_concurrent=%d)",
            len(sections),
            levels,
            self.config.max_concurrent,
        )

        scheduled_by_level = {
            level: [section_map[number] for number in groups[level] if number in section_map] for level in levels
        }
        counter = ProgressCounter("amendments", sum(len(batch) for batch in scheduled_by_level.values()), self.reporter)
        results: List[AmendmentResult] = []
        for level in levels:
            scheduled = scheduled_by_level[level]
            logger.info("Processing level %d: %s", level, [section.section_number for section in scheduled])

            async def run(section: SectionWithRules) -> AmendmentResult:
                result = await self.safe_amend(section, rules)
                await counter.advance("section")
                return result

            results.extend(await run_in_windows(scheduled, run, self.config.max_concurrent))

        succeeded = sum(1 for result in results if result.success)
        logger.info("Amendment generation complete: %d of %d succeeded", succeeded, len(results))
        return results

    async def safe_amend(
        self,
        section: SectionWithRules,
        rules: Sequence[Rule],
        *,
        kind: ResultKind = ResultKind.AMENDMENT,
    ) -> AmendmentResult:
        try:
            outcome = await self.amend_section(section, rules)
        except Exception as exc:
            logger.error("Section %s failed: %s", section.section_number, exc)
            return AmendmentResult.failed(section.section_number, str(exc), kind=kind)
        return AmendmentResult.ok(section.section_number, outcome, kind=kind)

    async def amend_section(self, section: SectionWithRules, rules: Sequence[Rule]) -> AmendmentOutcome:
        """One generation call for one section; raises on call or parse failure."""

        section_rules = resolve_rules(section.rules, rules)
        if section.previous_attempts:
            prompt = rerun_amendment_prompt(section.text, section.locked_parents, section_rules, section.previous_attempts)
            logger.debug(
                "Amendment prompt for %s (rerun #%d):\n%s",
                section.section_number,
                len(section.previous_attempts),
                truncate_outline_for_log(prompt),
            )
        else:
            prompt = amendment_prompt(section.text, section.locked_parents, section_rules)
            logger.debug("Amendment prompt for %s:\n%s", section.section_number, truncate_outline_for_log(prompt))

        payload = await self.generator.generate_json("", prompt, options=self._options)
        outcome = parse_amendment_response(
            payload,
            section_rules,
            original=section.text,
            section_number=section.section_number,
        )
        if isinstance(outcome, Amendment):
            outcome.is_full_deletion = is_full_deletion(outcome.amended)
            logger.info(
                "Section %s: %s",
                section.section_number,
                "full deletion" if outcome.is_full_deletion else "amended",
            )
        else:
            logger.info("Section %s: no changes", section.section_number)
        return outcome


__all__ = [
    "AmendmentScheduler",
    "DELETION_MARKERS",
    "group_by_level",
    "is_full_deletion",
    "resolve_rules",
]
