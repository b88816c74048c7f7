from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Sequence

from playbook_review.errors import GenerationParseError
from playbook_review.interfaces.generator import BaseGenerator, ModelOptions
from playbook_review.models.amendment import Amendment, AmendmentResult, ResultKind
from playbook_review.models.configs import ReviewConfig
from playbook_review.models.rules import NewSectionLocation, Rule
from playbook_review.models.section import SectionNode
from playbook_review.orchestration.windows import ProgressCounter, ProgressReporter, run_in_windows
from playbook_review.outline import build_section_text_with_children, find_section
from playbook_review.prompts import new_sections_prompt, truncate_outline_for_log


logger = logging.getLogger(__name__)

_ANCHOR_PATTERN = re.compile(r"After Section\s+([\d.A-Za-z]+)", re.IGNORECASE)

UNPARSEABLE_ANCHOR_ERROR = "Could not parse section number from suggestedLocation"
MISSING_ANCHOR_ERROR = "Section before insertion point not found"


def group_by_location(new_sections: Sequence[NewSectionLocation]) -> Dict[str, List[NewSectionLocation]]:
    groups: Dict[str, List[NewSectionLocation]] = {}
    for location in new_sections:
        groups.setdefault(location.suggested_location, []).append(location)
    return groups


def anchor_section_number(location: str) -> Optional[str]:
    match = _ANCHOR_PATTERN.search(location or "")
    return match.group(1) if match else None


class NewSectionInserter:
    """Drafts brand-new sections, one generation call per insertion point."""

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

    async def generate_new_sections(
        self,
        new_sections: Sequence[NewSectionLocation],
        rules: Sequence[Rule],
        structure: Sequence[SectionNode],
    ) -> List[AmendmentResult]:
        groups = group_by_location(new_sections)
        logger.info(
            "Drafting %d new sections at %d insertion points",
            len(new_sections),
            len(groups),
        )
        counter = ProgressCounter("new_sections", len(groups), self.reporter)

        async def run(entry: tuple[str, List[NewSectionLocation]]) -> AmendmentResult:
            location, members = entry
            result = await self._insert(location, members, rules, structure)
            await counter.advance("location")
            return result

        results = await run_in_windows(list(groups.items()), run, self.config.max_concurrent)
        succeeded = sum(1 for result in results if result.success)
        logger.info("New section generation complete: %d of %d succeeded", succeeded, len(results))
        return results

    async def _insert(
        self,
        location: str,
        members: Sequence[NewSectionLocation],
        rules: Sequence[Rule],
        structure: Sequence[SectionNode],
    ) -> AmendmentResult:
        anchor_number = anchor_section_number(location)
        if not anchor_number:
            return AmendmentResult.failed(location, UNPARSEABLE_ANCHOR_ERROR, kind=ResultKind.NEW_SECTION)
        anchor = find_section(anchor_number, structure)
        if anchor is None:
            logger.warning("Insertion anchor %s not found in outline", anchor_number)
            return AmendmentResult.failed(location, MISSING_ANCHOR_ERROR, kind=ResultKind.NEW_SECTION)

        member_ids = {member.rule_id for member in members}
        group_rules = [rule for rule in rules if rule.id in member_ids]
        try:
            prompt = new_sections_prompt(members, anchor, group_rules, anchor_number, structure)
            logger.debug("New sections prompt for %s:\n%s", location, truncate_outline_for_log(prompt))
            payload = await self.generator.generate_json("", prompt, options=self._options)
            if not isinstance(payload, dict):
                raise GenerationParseError("New sections response must be a JSON object", str(payload))
        except Exception as exc:
            logger.error("Location %s failed: %s", location, exc)
            return AmendmentResult.failed(location, str(exc), kind=ResultKind.NEW_SECTION)

        amended = payload.get("amended")
        amendment = Amendment(
            original=build_section_text_with_children(anchor),
            amended=amended if isinstance(amended, str) else "",
            applied_rules=[member.rule_id for member in members],
        )
        return AmendmentResult.ok(location, amendment, kind=ResultKind.NEW_SECTION)


__all__ = [
    "MISSING_ANCHOR_ERROR",
    "NewSectionInserter",
    "UNPARSEABLE_ANCHOR_ERROR",
    "anchor_section_number",
    "group_by_location",
]
