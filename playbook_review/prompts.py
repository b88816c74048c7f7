from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence

from playbook_review.models.rules import MappingStatus, NewSectionLocation, Rule, RuleStatus
from playbook_review.models.section import SectionNode
from playbook_review.outline import build_full_section_text, find_top_level_section, render_outline


NO_CHANGES_ATTEMPT = "noChanges: true"

_JSON_ONLY = "- Return ONLY the JSON, no markdown, no explanations"

_RULE_MAPPING_PROMPT = """You are analyzing an agreement to map compliance rules to relevant sections.

# DOCUMENT OUTLINE
{outline}

# RULES TO MAP
{rules}

# YOUR TASK
For each rule, determine:
1. **MAPPED**: If ANY existing section relates to the rule's topic (can be multiple sections). Mark as "mapped" when: (i) the wording needs changes; or (ii) the wording does not need changes but is relevant to the rule
2. **NEEDS_NEW_SECTION**: If the rule requires including certain language in the agreement, but it is not appropriate to add that language to any existing section

**CRITICAL: When marking NEEDS_NEW_SECTION:**
- suggestedLocation MUST use this format:
"After Section X" (e.g., "After Section 12.5.")

# OUTPUT FORMAT (JSON)
Return ONLY valid JSON in this exact format:

{{
  "ruleStatus": [
    {{"ruleId": "25", "status": "mapped", "locations": ["8.1.", "8.2."]}},
    {{"ruleId": "27", "status": "needs_new_section", "suggestedLocation": "After Section 12.5.", "suggestedHeading": "Force Majeure"}}
  ]
}}

# IMPORTANT RULES
- Use EXACT section numbers from the outline (with periods: "8.1." not "8.1")
- For "mapped" status, you MUST list at least one location in "locations"
- For "needs_new_section", suggestedLocation must be EXACTLY "After Section X" format
- Be thorough: one rule can apply to multiple sections
{json_only}"""

_RETRY_INSTRUCTIONS = """

--- RETRY INSTRUCTION ---

IMPORTANT: You did NOT provide mapping for these rules in your previous response. Please reconsider them carefully:

- Even minor or subtle relevance counts
- Consider indirect relationships to sections
- Look for any section that could potentially be modified to accommodate this rule
- If you genuinely cannot find ANY relevant section after thorough review, mark as "needs_new_section"

Be significantly more permissive than your first attempt. Every rule should receive either "mapped" or "needs_new_section" status."""

_SECOND_PASS_PROMPT = """You are performing a SECOND-PASS review of rule-to-section mapping for an agreement.

# DOCUMENT OUTLINE
{outline}

# RULES WITH INITIAL MAPPING RESULTS
{rules}

# YOUR TASK
The initial mapping has been completed. Your job is to find ANY ADDITIONAL sections that were MISSED.

For each rule:
1. Review the initial mapping shown in brackets
2. Carefully scan ALL sections in the outline
3. Identify any ADDITIONAL sections that also relate to this rule
4. Many rules legitimately apply to several sections (notice requirements, consent clauses, liability caps)

# OUTPUT FORMAT (JSON)
Return ONLY the additional mappings found. If a rule has no additional sections, omit it.

{{
  "additionalMappings": [
    {{"ruleId": "25", "additionalLocations": ["12.3.", "15.1."]}}
  ]
}}

# IMPORTANT
- Only return NEWLY FOUND sections, not the ones from the initial mapping
- Use EXACT section numbers from the outline (with periods)
- If no additional sections are found for any rule, return: {{"additionalMappings": []}}
{json_only}"""

_INSTRUCTION_MAPPING_PROMPT = """You are analyzing an agreement to map instruction request rules to relevant sections.

# DOCUMENT OUTLINE
{outline}

# RULES TO MAP
{rules}

# YOUR TASK
For each rule, determine which sections (if any) relate to the rule's topic.

# CRITICAL RULES
- DO NOT use "After Section X" or "Before Section X" formats
- Map rules directly to section numbers (e.g., "8.1.", "8.2.")
- Use EXACT section numbers from the outline (with trailing periods: "8.1." not "8.1")

# OUTPUT FORMAT (JSON)
Return a JSON object with a "results" array containing exactly {count} element(s), one for each rule IN THE SAME ORDER as listed above:

{{
  "results": [
    {{"status": "mapped", "locations": ["8.1.", "8.2."]}},
    {{"status": "not_applicable"}}
  ]
}}

- First element = result for Rule 1, second element = result for Rule 2, etc.
- Use "mapped" with a locations array if the rule applies to any section(s)
- Use "not_applicable" if the rule doesn't apply to any section
{json_only}"""

_INSTRUCTION_SECOND_PASS_PROMPT = """You are performing a SECOND-PASS review of instruction request rule mapping for an agreement.

# DOCUMENT OUTLINE
{outline}

# RULES WITH INITIAL MAPPING RESULTS
{rules}

# YOUR TASK
The initial mapping has been completed. Your job is to find ANY ADDITIONAL sections that were MISSED.

For each rule:
1. Review the initial mapping shown in brackets
2. Carefully scan ALL sections in the outline
3. Identify any ADDITIONAL sections that also relate to this rule

# OUTPUT FORMAT (JSON)
Return ONLY the additional mappings found (by rule index, 0-based). If a rule has no additional sections, omit it.

{{
  "additionalMappings": [
    {{"ruleIndex": 0, "additionalLocations": ["12.3.", "15.1."]}}
  ]
}}

# IMPORTANT
- Use rule INDEX (0-based), not rule ID
- Only return NEWLY FOUND sections, not the ones from the initial mapping
- Use EXACT section numbers from the outline (with periods)
- DO NOT use "After Section X" format; map directly to section numbers
- If no additional sections are found for any rule, return: {{"additionalMappings": []}}
{json_only}"""

_AMENDMENT_OUTPUT = """# OUTPUT FORMAT
Return ONLY valid JSON in ONE of these formats:

**If changes needed:**
{{"amendment": {{"amended": "modified text with rules incorporated here", "appliedRules": ["25", "26"]}}}}

**If entire section should be deleted:**
{{"amendment": {{"amended": "[DELETED]", "appliedRules": ["25"]}}}}
"""

_AMENDMENT_PROMPT = """You are amending certain sections in an agreement to comply with the rules to apply which are quoted below.

{parents}
# SECTIONS TO BE AMENDED
{section}

# RULES TO APPLY
{rules}

# YOUR TASK
1. Review the section text and all rules
2. Determine which rules can be applied to this section
3. If ANY rules can be applied, create amended language that incorporates them
4. If NO rules can be applied (for example, if the section is already compliant), indicate no changes
5. If a rule requires DELETING the entire section, return "[DELETED]" as the amended text

Important: Respect the original agreement language to the extent possible. If the example language differs in wording but conveys the same substantive meaning, do not alter the original agreement language. For example, do not change "1%" to "one percent". Do not change "written" to "in writing".

{output}
**If no changes needed:**
{{"noChanges": true}}

# IMPORTANT RULES
- DO NOT include section numbers in the amended text
{json_only}"""

_RERUN_AMENDMENT_PROMPT = """You are re-amending a section in an agreement. The user was NOT satisfied with previous attempt(s) and wants a DIFFERENT interpretation.

{parents}
# SECTION TO BE AMENDED
{section}

# RULES TO APPLY
{rules}

# PREVIOUS ATTEMPTS (user is NOT satisfied with these)
{attempts}

# YOUR TASK
Generate a NEW amendment with a DIFFERENT interpretation. Consider:

1. **If previous attempts made minimal changes:** consider more substantive rewording or restructuring the clause
2. **If previous attempts made significant changes:** consider a more conservative approach that preserves more original language
3. **Alternative interpretations:** is there a different way to satisfy the rule, a different position in the section, or an alternative phrasing?
4. **If a rule requires DELETING the entire section:** return "[DELETED]" as the amended text

Important:
- You MUST provide a DIFFERENT result than ALL previous attempts
- Respect the original agreement language where possible
- Do not change "1%" to "one percent" or "written" to "in writing"

{output}
# IMPORTANT RULES
- DO NOT include section numbers in the amended text
- DO NOT repeat any previous attempt
{json_only}"""

_NEW_SECTIONS_PROMPT = """You are drafting {count} new section(s) for an agreement to comply with the rules to apply which are quoted below.

# CONTEXT: Below is the section preceding the new sections to be inserted. It is provided for context only. Do not amend it.
{context}

# INSERTION POINT
After Section {anchor}

# NEW SECTIONS TO BE INSERTED
{rules}

# YOUR TASK
Draft {count} consecutive new sections that use numbering: {anchor}A, {anchor}B, {anchor}C, etc.

# OUTPUT FORMAT
Return ONLY valid JSON in this format:

{{"amended": "{anchor}A [Heading 1]\\n[Content 1]\\n\\n{anchor}B [Heading 2]\\n[Content 2]..."}}

# IMPORTANT RULES
- Create ALL {count} sections in sequence (A, B, C...)
{json_only}"""

_INSTRUCTION_GUIDELINES = """1. Maintain a polite and professional tone without unnecessary verbosity.
2. Ask for confirmation or instruction directly.
3. Do not ask recipients to amend the text; their role is solely to provide confirmation or instruction.
4. The Issue should be specific to the contract language found in this section."""

_INSTRUCTION_OUTPUT = """## OUTPUT FORMAT
Return a JSON array with exactly {count} element(s), one for each rule IN THE SAME ORDER as listed above:

[
  {{"issue": "...", "relevant_language": "..."}},
  {{"issue": "...", "relevant_language": "..."}}
]

- First element = instruction request for Rule 1, second = Rule 2, etc.
{json_only}"""

_INSTRUCTION_REQUEST_PROMPT = """You are a legal expert reviewing a contract section against instruction request rules.

## SECTION
Section Number: {section_number}

Section Text:
{section}

## INSTRUCTION REQUEST RULES
{rules}

## TASK
For each rule, generate a clear, professional instruction request (the "Issue") that should be sent to the client or relevant party for confirmation or clarification.

## GUIDELINES
{guidelines}
5. You MUST generate an instruction request for every rule.

{output}"""

_RERUN_INSTRUCTION_REQUEST_PROMPT = """You are re-generating instruction requests for a contract section. The user was NOT satisfied with previous attempt(s) and wants a DIFFERENT interpretation.

## SECTION
Section Number: {section_number}

Section Text:
{section}

## INSTRUCTION REQUEST RULES
{rules}

## PREVIOUS ATTEMPTS (user is NOT satisfied with these)
{attempts}

## TASK
Generate NEW instruction requests with DIFFERENT interpretations. If previous attempts were too specific, ask about the general principle. If they were too general, reference specific clauses or terms in the section. Consider other aspects of the rule or related concerns not addressed before.

## GUIDELINES
{guidelines}
5. You MUST generate a DIFFERENT instruction request than ALL previous attempts.

{output}
- DO NOT repeat any previous attempt"""

_MAPPING_CHECK_PROMPT = """You are checking if {subject} should be mapped to ADDITIONAL sections in an agreement.

# DOCUMENT OUTLINE
{outline}

# RULE TO CHECK
{rule}

# CURRENT MAPPING
Currently mapped to: {current}

# YOUR TASK
Carefully scan ALL sections in the outline and identify any ADDITIONAL sections that:
1. Are NOT already in the current mapping
2. Relate to this rule's topic
3. {purpose}

# OUTPUT FORMAT (JSON)
{{"additionalSections": ["8.3.", "12.1."]}}

If no additional sections are found:
{{"additionalSections": []}}

# IMPORTANT
- Only return sections NOT in the current mapping
- Use EXACT section numbers from the outline (with periods)
- DO NOT use "After Section X" format; map directly to section numbers
{json_only}"""

_OUTLINE_START_MARKERS = ("# DOCUMENT OUTLINE", "# CONTEXT:")
_OUTLINE_END_MARKERS = ("# RULES", "# INSERTION POINT", "# YOUR TASK", "# SECTIONS")


def format_rule(rule: Rule, label: Optional[str] = None) -> str:
    text = f"Rule {label or rule.id}: {rule.content}"
    if rule.example:
        text += f"\nExample: {rule.example}"
    return text


def format_rules(rules: Iterable[Rule]) -> str:
    return "\n\n".join(format_rule(rule) for rule in rules)


def _positional_rules(rules: Sequence[Rule], *, with_examples: bool = True, separator: str = "\n\n") -> str:
    lines = []
    for index, rule in enumerate(rules, start=1):
        if with_examples:
            lines.append(format_rule(rule, label=str(index)))
        else:
            lines.append(f"Rule {index}: {rule.content}")
    return separator.join(lines)


def _parents_block(locked_parents: Sequence[str], heading: str) -> str:
    if not locked_parents:
        return ""
    parents = "\n\n".join(f"Parent {index}:\n{parent}" for index, parent in enumerate(locked_parents, start=1))
    return f"{heading}\n{parents}\n"


def _attempts_block(previous_attempts: Sequence[str]) -> str:
    blocks = []
    for index, attempt in enumerate(previous_attempts, start=1):
        text = attempt
        if attempt.strip() == NO_CHANGES_ATTEMPT:
            text = "(No changes were made; the section was judged already compliant)"
        blocks.append(f"Attempt {index}:\n{text}")
    return "\n\n".join(blocks)


def rule_mapping_prompt(outline: Sequence[SectionNode], rules: Sequence[Rule], *, enhanced: bool = False) -> str:
    prompt = _RULE_MAPPING_PROMPT.format(
        outline=render_outline(outline),
        rules=format_rules(rules),
        json_only=_JSON_ONLY,
    )
    return prompt + _RETRY_INSTRUCTIONS if enhanced else prompt


def second_pass_mapping_prompt(
    outline: Sequence[SectionNode],
    rules: Sequence[Rule],
    initial_statuses: Sequence[RuleStatus],
) -> str:
    by_id = {status.rule_id: status for status in initial_statuses}
    blocks = []
    for rule in rules:
        initial = by_id.get(rule.id)
        if initial is not None and initial.locations:
            note = f"Initially mapped to: {', '.join(initial.locations)}"
        elif initial is not None and initial.status is MappingStatus.NEEDS_NEW_SECTION:
            note = "Initially marked as: needs_new_section"
        else:
            note = "Initially marked as: not mapped"
        blocks.append(f"{format_rule(rule)}\n[{note}]")
    return _SECOND_PASS_PROMPT.format(outline=render_outline(outline), rules="\n\n".join(blocks), json_only=_JSON_ONLY)


def instruction_rule_mapping_prompt(outline: Sequence[SectionNode], rules: Sequence[Rule]) -> str:
    return _INSTRUCTION_MAPPING_PROMPT.format(
        outline=render_outline(outline),
        rules=_positional_rules(rules),
        count=len(rules),
        json_only=_JSON_ONLY,
    )


def instruction_second_pass_prompt(
    outline: Sequence[SectionNode],
    rules: Sequence[Rule],
    initial_statuses: Sequence[RuleStatus],
) -> str:
    blocks = []
    for index, rule in enumerate(rules):
        initial = initial_statuses[index] if index < len(initial_statuses) else None
        if initial is not None and initial.locations:
            note = f"Initially mapped to: {', '.join(initial.locations)}"
        else:
            note = "Initially marked as: not_applicable"
        blocks.append(f"{format_rule(rule, label=str(index + 1))}\n[{note}]")
    return _INSTRUCTION_SECOND_PASS_PROMPT.format(
        outline=render_outline(outline),
        rules="\n\n".join(blocks),
        json_only=_JSON_ONLY,
    )


def amendment_prompt(section_text: str, locked_parents: Sequence[str], rules: Sequence[Rule]) -> str:
    return _AMENDMENT_PROMPT.format(
        parents=_parents_block(
            locked_parents,
            "# Below are the parent sections of the sections to be amended. "
            "They are provided for context only. Do not amend them.",
        ),
        section=section_text,
        rules=format_rules(rules),
        output=_AMENDMENT_OUTPUT.format(),
        json_only=_JSON_ONLY,
    )


def rerun_amendment_prompt(
    section_text: str,
    locked_parents: Sequence[str],
    rules: Sequence[Rule],
    previous_attempts: Sequence[str],
) -> str:
    return _RERUN_AMENDMENT_PROMPT.format(
        parents=_parents_block(locked_parents, "# PARENT SECTIONS (for context only, do not amend)"),
        section=section_text,
        rules=format_rules(rules),
        attempts=_attempts_block(previous_attempts),
        output=_AMENDMENT_OUTPUT.format(),
        json_only=_JSON_ONLY,
    )


def new_sections_prompt(
    new_sections: Sequence[NewSectionLocation],
    anchor: SectionNode,
    rules: Sequence[Rule],
    anchor_number: str,
    structure: Sequence[SectionNode],
) -> str:
    top_level = find_top_level_section(anchor_number, structure)
    context = build_full_section_text(top_level) if top_level else f"{anchor.section_number} {anchor.text}"

    by_id = {rule.id: rule for rule in rules}
    blocks: List[str] = []
    for location in new_sections:
        rule = by_id.get(location.rule_id)
        if rule is None:
            continue
        block = f'Rule {rule.id}: {rule.content}\n   Suggested Heading: "{location.suggested_heading}"'
        if rule.example:
            block += f"\n   Example: {rule.example}"
        blocks.append(block)

    return _NEW_SECTIONS_PROMPT.format(
        count=len(new_sections),
        context=context,
        anchor=anchor_number,
        rules="\n\n".join(blocks),
        json_only=_JSON_ONLY,
    )


def instruction_request_prompt(section_number: str, section_text: str, rules: Sequence[Rule]) -> str:
    return _INSTRUCTION_REQUEST_PROMPT.format(
        section_number=section_number,
        section=section_text,
        rules=_positional_rules(rules, with_examples=False, separator="\n"),
        guidelines=_INSTRUCTION_GUIDELINES,
        output=_INSTRUCTION_OUTPUT.format(count=len(rules), json_only=_JSON_ONLY),
    )


def rerun_instruction_request_prompt(
    section_number: str,
    section_text: str,
    rules: Sequence[Rule],
    previous_attempts: Sequence[str],
) -> str:
    attempts = "\n\n".join(f"Attempt {index}:\n{attempt}" for index, attempt in enumerate(previous_attempts, start=1))
    return _RERUN_INSTRUCTION_REQUEST_PROMPT.format(
        section_number=section_number,
        section=section_text,
        rules=_positional_rules(rules, with_examples=False, separator="\n"),
        attempts=attempts,
        guidelines=_INSTRUCTION_GUIDELINES,
        output=_INSTRUCTION_OUTPUT.format(count=len(rules), json_only=_JSON_ONLY),
    )


def rerun_mapping_check_prompt(
    outline: Sequence[SectionNode],
    rule: Rule,
    current_mapped_sections: Sequence[str],
    *,
    instruction: bool = False,
) -> str:
    if instruction:
        subject = "an instruction request rule"
        purpose = "May need instruction requests for confirmation or clarification"
        rule_text = f"Rule {rule.id}: {rule.content}"
    else:
        subject = "a rule"
        purpose = "May need amendments to comply with this rule"
        rule_text = format_rule(rule)
    return _MAPPING_CHECK_PROMPT.format(
        subject=subject,
        outline=render_outline(outline),
        rule=rule_text,
        current=", ".join(current_mapped_sections) if current_mapped_sections else "(none)",
        purpose=purpose,
        json_only=_JSON_ONLY,
    )


def truncate_outline_for_log(prompt: str, max_outline_words: int = 100) -> str:
    """Shorten the outline block of a prompt so it can be logged."""

    for start_marker in _OUTLINE_START_MARKERS:
        start = prompt.find(start_marker)
        if start == -1:
            continue
        body_start = start + len(start_marker)
        end = len(prompt)
        for end_marker in _OUTLINE_END_MARKERS:
            idx = prompt.find(end_marker, body_start)
            if idx != -1 and idx < end:
                end = idx
        words = re.split(r"\s+", prompt[body_start:end].strip())
        if len(words) > max_outline_words:
            truncated = " ".join(words[:max_outline_words])
            return f"{prompt[:body_start]}\n{truncated}\n... [DOCUMENT OUTLINE TRUNCATED] ...\n\n{prompt[end:]}"
        break
    return prompt


__all__ = [
    "NO_CHANGES_ATTEMPT",
    "amendment_prompt",
    "format_rule",
    "format_rules",
    "instruction_request_prompt",
    "instruction_rule_mapping_prompt",
    "instruction_second_pass_prompt",
    "new_sections_prompt",
    "rerun_amendment_prompt",
    "rerun_instruction_request_prompt",
    "rerun_mapping_check_prompt",
    "rule_mapping_prompt",
    "second_pass_mapping_prompt",
    "truncate_outline_for_log",
]
