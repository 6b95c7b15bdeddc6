"""FastAPI application — thin HTTP adapter over the crawl pipeline.

Endpoints:
    GET    /health                   — Health check
    POST   /crawl                    — Trigger a multi-language crawl (202, returns run_id)
    GET    /crawl/{run_id}/progress  — Per-language progress snapshots
    GET    /crawl/{run_id}           — Final result (202 with progress while running)
    GET    /schedules                — List schedules
    POST   /schedules                — Create a schedule
    GET    /schedules/{id}           — One schedule
    PUT    /schedules/{id}           — Edit a schedule
    DELETE /schedules/{id}           — Remove a schedule
    POST   /batch-jobs               — Submit a bulk refine/publish job (202)
    GET    /batch-jobs               — List jobs, newest first
    GET    /batch-jobs/{id}          — One job
    POST   /batch-jobs/{id}/cancel   — Cancel a pending job
    DELETE /batch-jobs/{id}          — Delete a finished job
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from news_refinery.errors import InvalidState, NotFoundError, ScheduleConfigInvalid, StorageUnavailable
from news_refinery.models import BatchOperation, BatchStatus, RunRequest, ScheduleConfig
from news_refinery.services import Services, build_services, shutdown_services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire services on startup unless already provided, release them on shutdown."""
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = await build_services(recover_batches=True)
    yield
    if owned:
        await shutdown_services()
        app.state.services = None


app = FastAPI(
    title="News Refinery API",
    description="Multi-language news crawl and AI refinement pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _services(request: Request) -> Services:
    return request.app.state.services


# --- Error mapping ---

@app.exception_handler(NotFoundError)
async def _not_found(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"error": str(exc)})


@app.exception_handler(InvalidState)
async def _conflict(_request: Request, exc: InvalidState):
    return JSONResponse(status_code=409, content={"error": str(exc)})


@app.exception_handler(ScheduleConfigInvalid)
async def _bad_schedule(_request: Request, exc: ScheduleConfigInvalid):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(ValueError)
async def _bad_value(_request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(StorageUnavailable)
async def _storage_down(_request: Request, exc: StorageUnavailable):
    return JSONResponse(status_code=503, content={"error": str(exc)})


# --- Request bodies ---

class ScheduleCreate(BaseModel):
    name: str
    description: str = ""
    active: bool = True
    cron_expression: str
    ai_model: str = ""
    source_ids: list[str] = Field(default_factory=list)
    target_languages: list[str]
    quality_threshold: int = Field(default=0, ge=0, le=100)  # minimum content score
    max_articles_per_source: int = Field(default=10, ge=1)
    budget_per_language: int = Field(default=5, ge=1)
    refine: bool = True


class BatchJobCreate(BaseModel):
    operation: BatchOperation
    target_ids: list[str]
    config_id: str | None = None


# --- Health ---

@app.get("/health")
async def health(request: Request):
    services = _services(request)
    return {
        "status": "ok",
        "sources": len(services.registry.all()),
        "active_languages": sorted(services.tracker.active_languages()),
    }


# --- Crawl runs ---

@app.post("/crawl", status_code=202)
async def trigger_crawl(body: RunRequest, request: Request):
    """Start a crawl in the background; poll progress with the returned run id."""
    run_id = _services(request).orchestrator.trigger(body)
    return {"run_id": run_id}


@app.get("/crawl/{run_id}/progress")
async def crawl_progress(run_id: str, request: Request):
    progress = _services(request).orchestrator.progress(run_id)
    return {"run_id": run_id, "languages": [p.model_dump(mode="json") for p in progress]}


@app.get("/crawl/{run_id}")
async def crawl_result(run_id: str, request: Request):
    orchestrator = _services(request).orchestrator
    result = orchestrator.result(run_id)
    if result is None:
        progress = orchestrator.progress(run_id)
        return JSONResponse(
            status_code=202,
            content={"run_id": run_id, "finished": False, "languages": [p.model_dump(mode="json") for p in progress]},
        )
    return {"finished": True, **result.model_dump(mode="json")}


# --- Schedules ---

@app.get("/schedules")
async def list_schedules(request: Request):
    schedules = await _services(request).schedules.list()
    return {"schedules": [s.model_dump(mode="json") for s in schedules]}


@app.post("/schedules", status_code=201)
async def create_schedule(body: ScheduleCreate, request: Request):
    created = await _services(request).schedules.create(ScheduleConfig(**body.model_dump()))
    return created.model_dump(mode="json")


@app.get("/schedules/{schedule_id}")
async def get_schedule(schedule_id: str, request: Request):
    schedule = await _services(request).schedules.get(schedule_id)
    return schedule.model_dump(mode="json")


@app.put("/schedules/{schedule_id}")
async def update_schedule(schedule_id: str, changes: dict, request: Request):
    updated = await _services(request).schedules.update(schedule_id, changes)
    return updated.model_dump(mode="json")


@app.delete("/schedules/{schedule_id}", status_code=204)
async def delete_schedule(schedule_id: str, request: Request):
    await _services(request).schedules.delete(schedule_id)


# --- Batch jobs ---

@app.post("/batch-jobs", status_code=202)
async def submit_batch_job(body: BatchJobCreate, request: Request):
    job = await _services(request).batches.submit(body.target_ids, body.operation, config_id=body.config_id)
    return {"job_id": job.id, "status": job.status}


@app.get("/batch-jobs")
async def list_batch_jobs(
    request: Request,
    status: BatchStatus | None = Query(None, description="Filter by job status"),
    limit: int = Query(20, ge=1, le=100),
):
    jobs = await _services(request).batches.list(status=status, limit=limit)
    return {"jobs": [j.model_dump(mode="json") for j in jobs], "count": len(jobs)}


@app.get("/batch-jobs/{job_id}")
async def get_batch_job(job_id: str, request: Request):
    job = await _services(request).batches.get(job_id)
    return job.model_dump(mode="json")


@app.post("/batch-jobs/{job_id}/cancel")
async def cancel_batch_job(job_id: str, request: Request):
    job = await _services(request).batches.cancel(job_id)
    return job.model_dump(mode="json")


@app.delete("/batch-jobs/{job_id}", status_code=204)
async def delete_batch_job(job_id: str, request: Request):
    await _services(request).batches.delete(job_id)
