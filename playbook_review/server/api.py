from __future__ import annotations

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from sse_starlette import EventSourceResponse

from playbook_review.errors import ReviewError
from playbook_review.interfaces.generator import BaseGenerator
from .models import MapRulesRequest, RerunRequest, ReviewJobCreate
from .review_service import build_generator, get_job_snapshot, map_rules, rerun, start_review_job, stream_job
from .settings import Settings, get_settings

app = FastAPI(title="Playbook Review API", version="0.1.0")
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def get_generator(settings: Settings = Depends(get_settings)) -> BaseGenerator:
    try:
        return await build_generator(settings)
    except ReviewError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.post("/api/review/jobs")
async def create_job(
    payload: ReviewJobCreate,
    settings: Settings = Depends(get_settings),
    generator: BaseGenerator = Depends(get_generator),
) -> dict[str, str]:
    try:
        job_id = await start_review_job(payload, settings=settings, generator=generator)
    except ValueError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"job_id": job_id}


@app.get("/api/review/jobs/{job_id}")
async def get_job(job_id: str, settings: Settings = Depends(get_settings)) -> dict[str, object]:
    try:
        return await get_job_snapshot(job_id, settings)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Job not found: {exc.args[0]}") from exc


@app.get("/api/review/jobs/{job_id}/events")
async def job_events(job_id: str, request: Request, settings: Settings = Depends(get_settings)):
    try:
        await get_job_snapshot(job_id, settings)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Job not found: {exc.args[0]}") from exc

    return EventSourceResponse(stream_job(job_id, request, settings=settings))


@app.post("/api/review/map-rules")
async def map_rules_endpoint(
    payload: MapRulesRequest,
    settings: Settings = Depends(get_settings),
    generator: BaseGenerator = Depends(get_generator),
) -> dict[str, object]:
    try:
        return await map_rules(payload, settings=settings, generator=generator)
    except ReviewError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.post("/api/review/rerun")
async def rerun_endpoint(
    payload: RerunRequest,
    settings: Settings = Depends(get_settings),
    generator: BaseGenerator = Depends(get_generator),
) -> dict[str, object]:
    return await rerun(payload, settings=settings, generator=generator)


@app.get("/api/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


__all__ = ["app", "get_generator"]
