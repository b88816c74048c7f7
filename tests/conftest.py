from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Sequence, Tuple

import pytest

from playbook_review.interfaces.generator import BaseGenerator, ModelOptions
from playbook_review.models.rules import Rule
from playbook_review.models.section import SectionNode

FIRST_PASS = "map compliance rules to relevant sections"
SECOND_PASS = "SECOND-PASS review of rule-to-section"
INSTRUCTION_MAP = "map instruction request rules to relevant sections"
INSTRUCTION_SECOND_PASS = "SECOND-PASS review of instruction request"
AMEND = "You are amending certain sections"
RERUN_AMEND = "You are re-amending a section"
NEW_SECTIONS = "You are drafting"
INSTRUCTION_REQUEST = "reviewing a contract section against instruction request rules"
INSTRUCTION_RERUN = "re-generating instruction requests"
MAPPING_CHECK = "mapped to ADDITIONAL sections"

Response = Any
Route = Tuple[str, Response]


class ScriptedGenerator(BaseGenerator):
    """Answers each prompt with the first route whose marker appears in it.

    A route response may be a string, a JSON-able value, an exception to raise,
    or a callable taking the prompt and returning any of those.
    """

    def __init__(self, routes: Sequence[Route], *, timeout_seconds: float | None = None) -> None:
        super().__init__("scripted", timeout_seconds=timeout_seconds)
        self.routes = list(routes)
        self.prompts: List[str] = []
        self.models: List[str] = []

    def calls(self, marker: str) -> List[str]:
        return [prompt for prompt in self.prompts if marker in prompt]

    async def _generate(
        self,
        system_prompt: str,
        user_content: str,
        *,
        options: ModelOptions,
    ) -> tuple[str, Dict[str, Any]]:
        self.prompts.append(user_content)
        self.models.append(options.model)
        for marker, response in self.routes:
            if marker not in user_content:
                continue
            value = response(user_content) if callable(response) else response
            if isinstance(value, BaseException):
                raise value
            text = value if isinstance(value, str) else json.dumps(value)
            return text, {}
        raise AssertionError(f"No scripted response for prompt: {user_content[:80]!r}")


@pytest.fixture
def scripted() -> Callable[..., ScriptedGenerator]:
    return ScriptedGenerator


def _node(number: str, text: str, level: int, *children: SectionNode, **extra: Any) -> SectionNode:
    return SectionNode(section_number=number, text=text, level=level, children=list(children), **extra)


@pytest.fixture
def outline() -> List[SectionNode]:
    return [
        _node(
            "1.",
            "Definitions",
            1,
            _node("1.1.", '"Affiliate" means any entity controlling a party.', 2),
            _node("1.2.", '"Confidential Information" means non-public information.', 2),
        ),
        _node(
            "2.",
            "Payment",
            1,
            _node(
                "2.1.",
                "Invoices are payable within 30 days.",
                2,
                _node("2.1.1.", "Late payments accrue interest at 1% per month.", 3),
            ),
            additional_paragraphs=["All amounts are in US dollars."],
        ),
        _node("3.", "Either party may terminate on 30 days notice.", 1),
    ]


@pytest.fixture
def rules() -> List[Rule]:
    return [
        Rule(id="R1", content="Payment terms must not exceed 60 days."),
        Rule(id="R2", content="Include a force majeure clause.", example="Neither party is liable for..."),
        Rule(id="R3", content="Interest on late payments is not permitted."),
    ]
