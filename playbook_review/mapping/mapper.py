from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from playbook_review.errors import MappingBatchError
from playbook_review.interfaces.generator import BaseGenerator, ModelOptions
from playbook_review.mapping.parsers import (
    parse_additional_mappings,
    parse_instruction_rule_mapping_response,
    parse_rule_mapping_response,
)
from playbook_review.mapping.rule_ids import normalize_rule_id
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import (
    MappingResult,
    MappingStatus,
    MappingSummary,
    NewSectionLocation,
    Rule,
    RuleStatus,
)
from playbook_review.models.section import SectionNode
from playbook_review.orchestration.windows import ProgressCounter, ProgressReporter, run_in_windows
from playbook_review.outline import annotate_outline, calculate_processing_order
from playbook_review.prompts import (
    instruction_rule_mapping_prompt,
    instruction_second_pass_prompt,
    rule_mapping_prompt,
    second_pass_mapping_prompt,
    truncate_outline_for_log,
)


logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class RuleBatch:
    number: int
    offset: int
    rules: Sequence[Rule]


def merge_additional_locations(status: RuleStatus, additional: Sequence[str]) -> RuleStatus:
    """Append unseen locations to ``status``; any gain upgrades it to ``mapped``."""

    new_locations = [location for location in additional if location not in status.locations]
    if not new_locations:
        return status
    return RuleStatus(
        rule_id=status.rule_id,
        status=MappingStatus.MAPPED,
        locations=[*status.locations, *new_locations],
        reason=status.reason,
    )


class RuleMapper:
    """Classifies rules against the outline with batched, windowed generation calls."""

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
            model=models.mapping,
            temperature=models.temperature,
            max_tokens=models.max_tokens,
        )

    def batches(self, rules: Sequence[Rule]) -> List[RuleBatch]:
        size = self.config.batch_size
        return [
            RuleBatch(number=index // size + 1, offset=index, rules=list(rules[index : index + size]))
            for index in range(0, len(rules), size)
        ]

    async def map_rules(self, structure: Sequence[SectionNode], rules: Sequence[Rule]) -> MappingResult:
        """Map compliance-amendment rules by id, then look for missed sections."""

        batches = self.batches(rules)
        logger.info(
            "Mapping %d rules in %d batches (max_concurrent=%d, second_pass=%s)",
            len(rules),
            len(batches),
            self.config.max_concurrent,
            self.config.enable_second_pass,
        )
        counter = ProgressCounter("mapping", len(batches), self.reporter)

        async def first_pass(batch: RuleBatch) -> List[RuleStatus]:
            prompt = rule_mapping_prompt(structure, batch.rules, enhanced=self.config.use_enhanced_prompts)
            logger.debug("Rule mapping batch %d prompt:\n%s", batch.number, truncate_outline_for_log(prompt))
            try:
                payload = await self.generator.generate_json("", prompt, options=self._options)
                statuses = parse_rule_mapping_response(payload, structure, batch.rules)
            except Exception as exc:
                raise MappingBatchError(batch.number, "first-pass", exc) from exc
            await counter.advance("batch")
            return statuses

        statuses = _flatten(await run_in_windows(batches, first_pass, self.config.max_concurrent))

        if self.config.enable_second_pass and statuses:
            statuses = await self._second_pass_by_id(structure, batches, statuses)

        return build_mapping_result(structure, statuses)

    async def map_instruction_rules(self, structure: Sequence[SectionNode], rules: Sequence[Rule]) -> MappingResult:
        """Positional variant for instruction-request rules; never yields new sections."""

        batches = self.batches(rules)
        logger.info("Mapping %d instruction rules in %d batches", len(rules), len(batches))
        counter = ProgressCounter("instruction_mapping", len(batches), self.reporter)

        async def first_pass(batch: RuleBatch) -> List[RuleStatus]:
            prompt = instruction_rule_mapping_prompt(structure, batch.rules)
            logger.debug("Instruction mapping batch %d prompt:\n%s", batch.number, truncate_outline_for_log(prompt))
            try:
                payload = await self.generator.generate_json("", prompt, options=self._options)
                statuses = parse_instruction_rule_mapping_response(payload, batch.rules)
            except Exception as exc:
                raise MappingBatchError(batch.number, "first-pass", exc) from exc
            await counter.advance("batch")
            return statuses

        statuses = _flatten(await run_in_windows(batches, first_pass, self.config.max_concurrent))

        if self.config.enable_second_pass and statuses:
            statuses = await self._second_pass_by_index(structure, batches, statuses)

        return build_mapping_result(structure, statuses, allow_new_sections=False)

    async def _second_pass_by_id(
        self,
        structure: Sequence[SectionNode],
        batches: Sequence[RuleBatch],
        initial: List[RuleStatus],
    ) -> List[RuleStatus]:
        by_id = {status.rule_id: status for status in initial}

        async def second_pass(batch: RuleBatch) -> Dict[str, List[str]]:
            batch_initial = [by_id[rule.id] for rule in batch.rules if rule.id in by_id]
            prompt = second_pass_mapping_prompt(structure, batch.rules, batch_initial)
            logger.debug("Second-pass batch %d prompt:\n%s", batch.number, truncate_outline_for_log(prompt))
            try:
                payload = await self.generator.generate_json("", prompt, options=self._options)
                raw = parse_additional_mappings(payload, key="ruleId")
            except Exception:
                logger.warning("Second-pass batch %d failed; keeping first-pass results", batch.number, exc_info=True)
                return {}
            return {normalize_rule_id(rule_id, batch.rules): locations for rule_id, locations in raw.items()}

        additions: Dict[str, List[str]] = {}
        for found in await run_in_windows(batches, second_pass, self.config.max_concurrent):
            for rule_id, locations in found.items():
                additions.setdefault(rule_id, []).extend(locations)

        merged = [merge_additional_locations(status, additions.get(status.rule_id, [])) for status in initial]
        _log_additions(initial, merged)
        return merged

    async def _second_pass_by_index(
        self,
        structure: Sequence[SectionNode],
        batches: Sequence[RuleBatch],
        initial: List[RuleStatus],
    ) -> List[RuleStatus]:
        async def second_pass(batch: RuleBatch) -> Dict[int, List[str]]:
            batch_initial = initial[batch.offset : batch.offset + len(batch.rules)]
            prompt = instruction_second_pass_prompt(structure, batch.rules, batch_initial)
            try:
                payload = await self.generator.generate_json("", prompt, options=self._options)
                raw = parse_additional_mappings(payload, key="ruleIndex")
            except Exception:
                logger.warning("Instruction second-pass batch %d failed", batch.number, exc_info=True)
                return {}
            found: Dict[int, List[str]] = {}
            for local_index, locations in raw.items():
                index = _coerce_index(local_index)
                if index is None or not 0 <= index < len(batch.rules):
                    logger.warning("Ignoring out-of-range rule index %r in batch %d", local_index, batch.number)
                    continue
                found[batch.offset + index] = locations
            return found

        additions: Dict[int, List[str]] = {}
        for found in await run_in_windows(batches, second_pass, self.config.max_concurrent):
            for index, locations in found.items():
                additions.setdefault(index, []).extend(locations)

        merged = [merge_additional_locations(status, additions.get(index, [])) for index, status in enumerate(initial)]
        _log_additions(initial, merged)
        return merged


def build_mapping_result(
    structure: Sequence[SectionNode],
    statuses: List[RuleStatus],
    *,
    allow_new_sections: bool = True,
) -> MappingResult:
    new_sections = (
        [NewSectionLocation.from_status(s) for s in statuses if s.status is MappingStatus.NEEDS_NEW_SECTION]
        if allow_new_sections
        else []
    )
    return MappingResult(
        annotated_outline=annotate_outline(structure, statuses),
        rule_status=statuses,
        new_sections=new_sections,
        processing_order=calculate_processing_order(structure, statuses),
        summary=MappingSummary.from_statuses(statuses),
    )


def _flatten(groups: Sequence[List[RuleStatus]]) -> List[RuleStatus]:
    return [status for group in groups for status in group]


def _coerce_index(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _log_additions(initial: Sequence[RuleStatus], merged: Sequence[RuleStatus]) -> None:
    added = sum(1 for before, after in zip(initial, merged) if len(after.locations) > len(before.locations))
    logger.info("Second pass added locations to %d rules", added)


__all__ = ["RuleBatch", "RuleMapper", "build_mapping_result", "merge_additional_locations"]
