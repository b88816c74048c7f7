from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Dict

from openai import AsyncOpenAI
from starlette.requests import Request

from playbook_review.amendments.rerun import RerunCoordinator
from playbook_review.errors import ReviewError
from playbook_review.generation.clients import LlamaIndexGenerator, OpenAIGenerator
from playbook_review.interfaces.generator import BaseGenerator
from playbook_review.mapping.mapper import RuleMapper
from playbook_review.orchestration.windows import ProgressUpdate
from playbook_review.orchestration.workflow import ReviewWorkflow
from .instrumentation import EventFactory, StepTracker
from .jobs import Job, JobStore
from .models import DoneEvent, MapRulesRequest, RerunRequest, ReviewJobCreate, new_job_id, resolve_config
from .settings import Settings


logger = logging.getLogger(__name__)

_STORE: JobStore | None = None
_TASKS: set[asyncio.Task[None]] = set()
_CLIENT: AsyncOpenAI | None = None
_CLIENT_LOCK = asyncio.Lock()


async def start_review_job(
    payload: ReviewJobCreate | Dict[str, Any],
    *,
    settings: Settings,
    generator: BaseGenerator,
) -> str:
    """Validate payload, register the job and run the review in the background."""

    request_model = payload if isinstance(payload, ReviewJobCreate) else ReviewJobCreate.model_validate(payload)
    store = get_job_store(settings)
    await store.cleanup()
    job = await store.create(new_job_id(request_model))

    task = asyncio.create_task(_execute_job(job, request_model, settings, generator, store))
    _TASKS.add(task)
    task.add_done_callback(_TASKS.discard)
    return job.job_id


async def stream_job(job_id: str, request: Request, *, settings: Settings) -> AsyncIterator[Any]:
    job = await get_job_store(settings).get(job_id)
    async for event in job.bus.subscribe(request):
        yield event


async def get_job_snapshot(job_id: str, settings: Settings) -> dict[str, Any]:
    job = await get_job_store(settings).get(job_id)
    return job.to_public_dict()


async def map_rules(
    payload: MapRulesRequest | Dict[str, Any],
    *,
    settings: Settings,
    generator: BaseGenerator,
) -> dict[str, Any]:
    request_model = payload if isinstance(payload, MapRulesRequest) else MapRulesRequest.model_validate(payload)
    mapper = RuleMapper(generator, resolve_config(request_model, settings))
    structure = request_model.outline()
    rules = request_model.rule_objects()
    if request_model.instruction:
        result = await mapper.map_instruction_rules(structure, rules)
    else:
        result = await mapper.map_rules(structure, rules)
    return result.to_dict()


async def rerun(
    payload: RerunRequest | Dict[str, Any],
    *,
    settings: Settings,
    generator: BaseGenerator,
) -> dict[str, Any]:
    request_model = payload if isinstance(payload, RerunRequest) else RerunRequest.model_validate(payload)
    coordinator = RerunCoordinator(generator, resolve_config(request_model, settings))
    sections = request_model.rerun_sections()
    structure = request_model.outline()
    if request_model.kind == "instruction_request":
        results: list[Any] = await coordinator.rerun_instruction_requests(sections, structure)
    else:
        results = await coordinator.rerun_amendments(sections, structure)
    return {
        "results": [result.to_dict() for result in results],
        "failedSections": sum(1 for result in results if not result.success),
    }


async def build_generator(settings: Settings) -> BaseGenerator:
    if not settings.openai_api_key:
        raise ReviewError("OPENAI_API_KEY must be set to run reviews")
    if settings.generator_backend == "llama-index":
        return LlamaIndexGenerator.for_openai(settings.openai_api_key, timeout_seconds=settings.generation_timeout_seconds)
    client = await _ensure_client(settings)
    return OpenAIGenerator(client, timeout_seconds=settings.generation_timeout_seconds)


async def _execute_job(
    job: Job,
    payload: ReviewJobCreate,
    settings: Settings,
    generator: BaseGenerator,
    store: JobStore,
) -> None:
    factory = EventFactory(job_id=job.job_id)
    config = resolve_config(payload, settings)
    tracker: StepTracker | None = None
    done: DoneEvent | None = None

    async def on_step(index: int, total: int, name: str) -> None:
        nonlocal tracker
        if tracker is not None:
            await store.record_event(job.job_id, "event", tracker.end_event())
        tracker = factory.step(index=index, total=total, name=name)
        await store.update_progress(job.job_id, index, total, name)
        await store.record_event(job.job_id, "event", tracker.start_event())

    async def reporter(update: ProgressUpdate) -> None:
        step_id = tracker.step_id if tracker is not None else None
        await store.record_event(job.job_id, "progress", factory.progress(update, step_id))

    workflow = ReviewWorkflow(generator, config, reporter=reporter, on_step=on_step)
    await store.record_event(
        job.job_id,
        "event",
        factory.event(
            phase="system",
            type="start",
            name="system.job",
            summary="Review started",
            detail={
                "sections": len(payload.structure),
                "rules": len(payload.rules),
                "models": config.models.model_dump(),
            },
        ),
    )

    try:
        outcome = await workflow.run(payload.outline(), payload.rule_objects())
    except Exception as exc:
        logger.exception("Review job %s failed", job.job_id)
        detail = {"exc_type": exc.__class__.__name__}
        if tracker is not None:
            error_event = tracker.error_event(str(exc), detail)
        else:
            error_event = factory.event(
                phase="system",
                type="error",
                name="system.job",
                summary=str(exc),
                detail=detail,
                severity="error",
            )
        await store.record_event(job.job_id, "event", error_event)
        await store.fail(job.job_id, str(exc))
        done = DoneEvent(status="error", error={"message": str(exc), "type": exc.__class__.__name__})
    else:
        if tracker is not None:
            await store.record_event(job.job_id, "event", tracker.end_event())
        await store.complete(job.job_id, outcome.to_dict())
        await store.record_event(
            job.job_id,
            "event",
            factory.event(
                phase="system",
                type="end",
                name="system.job",
                summary="Review completed",
                metrics={"failed_sections": outcome.failed_sections},
            ),
        )
        done = DoneEvent(status="done", failed_sections=outcome.failed_sections)
    finally:
        done = done or DoneEvent(status="error", error={"message": "Job interrupted", "type": "CancelledError"})
        await job.bus.send("done", done.model_dump())
        await job.bus.close()


async def _ensure_client(settings: Settings) -> AsyncOpenAI:
    global _CLIENT
    if _CLIENT is not None:
        return _CLIENT

    async with _CLIENT_LOCK:
        if _CLIENT is None:
            _CLIENT = AsyncOpenAI(api_key=settings.openai_api_key)
    return _CLIENT


def get_job_store(settings: Settings) -> JobStore:
    global _STORE
    if _STORE is None:
        _STORE = JobStore(ttl_seconds=settings.job_ttl_seconds, heartbeat_interval=settings.sse_heartbeat_interval)
    else:
        _STORE.set_ttl(settings.job_ttl_seconds)
    return _STORE


__all__ = [
    "build_generator",
    "get_job_snapshot",
    "get_job_store",
    "map_rules",
    "rerun",
    "start_review_job",
    "stream_job",
]
