from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

from dotenv import load_dotenv

from playbook_review.amendments.rerun import RerunCoordinator
from playbook_review.mapping.mapper import RuleMapper
from playbook_review.models.configs import ReviewConfig
from playbook_review.orchestration.config_loader import load_review_config, load_review_request, load_structured_file
from playbook_review.orchestration.windows import ProgressUpdate
from playbook_review.orchestration.workflow import ReviewWorkflow
from playbook_review.server.models import RerunRequest
from playbook_review.server.review_service import build_generator
from playbook_review.server.settings import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Review a parsed document outline against playbook rules.")
    parser.add_argument("--config", type=Path, help="ReviewConfig file (YAML, TOML or JSON) overriding env defaults")
    parser.add_argument("--output", type=Path, help="Write JSON results here instead of stdout")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    map_parser = subparsers.add_parser("map", help="Map rules to sections only")
    map_parser.add_argument("request", type=Path, help="Request file with structure and rules")
    map_parser.add_argument("--instruction", action="store_true", help="Map instruction-request rules positionally")

    review_parser = subparsers.add_parser("review", help="Run mapping, amendments and instruction requests")
    review_parser.add_argument("request", type=Path, help="Request file with structure and rules")

    rerun_parser = subparsers.add_parser("rerun", help="Rerun amendments for sections with prior attempts")
    rerun_parser.add_argument("request", type=Path, help="File with structure and sections to rerun")
    rerun_parser.add_argument("--instruction", action="store_true", help="Rerun instruction requests instead")

    return parser


async def _print_progress(update: ProgressUpdate) -> None:
    print(f"[{update.phase}] {update.message}", file=sys.stderr)


async def _print_step(index: int, total: int, name: str) -> None:
    print(f"Step {index}/{total}: {name}", file=sys.stderr)


async def _run(args: argparse.Namespace, settings: Settings) -> Dict[str, Any]:
    generator = await build_generator(settings)
    base_config: ReviewConfig = load_review_config(args.config) if args.config else settings.review_config()

    if args.command == "rerun":
        rerun_request = RerunRequest.model_validate(load_structured_file(args.request))
        structure = rerun_request.outline()
        sections = rerun_request.rerun_sections()
        coordinator = RerunCoordinator(generator, rerun_request.config or base_config)
        if args.instruction:
            results: list[Any] = await coordinator.rerun_instruction_requests(sections, structure)
        else:
            results = await coordinator.rerun_amendments(sections, structure)
        return {"results": [result.to_dict() for result in results]}

    request = load_review_request(args.request)
    config = request.config or base_config
    structure = request.outline()
    rules = request.rule_objects()

    if args.command == "map":
        mapper = RuleMapper(generator, config, reporter=_print_progress)
        if args.instruction:
            result = await mapper.map_instruction_rules(structure, rules)
        else:
            result = await mapper.map_rules(structure, rules)
        return result.to_dict()

    workflow = ReviewWorkflow(generator, config, reporter=_print_progress, on_step=_print_step)
    outcome = await workflow.run(structure, rules)
    return outcome.to_dict()


def main(argv: list[str] | None = None) -> int:
    if Path(".env").exists():
        load_dotenv(".env", override=False)
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    payload = asyncio.run(_run(args, Settings()))
    text = json.dumps(payload, indent=2, ensure_ascii=False)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(text + "\n", encoding="utf-8")
        print(f"Wrote results to {args.output}")
    else:
        print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
