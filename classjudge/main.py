"""FastAPI entrypoint for the grading service."""

from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from classjudge.core.config import get_settings
from classjudge.features.activities.endpoints import router as activities_router
from classjudge.features.corrections.endpoints import router as corrections_router
from classjudge.features.statuses.endpoints import router as statuses_router
from classjudge.features.submissions.endpoints import router as submissions_router
from classjudge.jobs.grading import GradingPipeline
from classjudge.jobs.queue import get_job_queue
from classjudge.jobs.worker import GradingWorker

app = FastAPI(title="classjudge")
_settings = get_settings()
_START_TIME = datetime.now(timezone.utc)
_worker: Optional[GradingWorker] = None
_worker_task: Optional[asyncio.Task] = None

logging.basicConfig(
    level=_settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


# ------------------------
# CORS Setup
# ------------------------
def _split_csv(raw: str):
    return [o.strip().rstrip("/") for o in raw.split(",") if o.strip()]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_split_csv(_settings.allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    incoming = request.headers.get("X-Request-Id") or request.headers.get("X-Request-ID")
    req_id = incoming or str(uuid.uuid4())
    request.state.request_id = req_id
    logger = logging.getLogger("request")
    logger.info("request.start request_id=%s method=%s path=%s", req_id, request.method, request.url.path)
    t0 = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-Id"] = req_id
    logger.info(
        "request.end request_id=%s method=%s path=%s status_code=%s duration_ms=%d",
        req_id,
        request.method,
        request.url.path,
        response.status_code,
        int((time.perf_counter() - t0) * 1000),
    )
    return response


# ------------------------
# Routers
# ------------------------
app.include_router(submissions_router)
app.include_router(corrections_router)
app.include_router(activities_router)
app.include_router(statuses_router)


# ------------------------
# Meta endpoints
# ------------------------
@app.get("/", tags=["meta"], summary="API Root")
async def root():
    return {
        "name": "classjudge",
        "status": "ok",
        "docs": "/docs",
        "health": "/healthz",
    }


@app.get("/healthz", tags=["meta"], summary="Liveness and readiness check")
async def healthz() -> Dict[str, Any]:
    from classjudge.db.session import engine

    now = datetime.now(timezone.utc)
    db_status: str = "unknown"
    db_latency_ms: float | None = None
    try:
        start = time.perf_counter()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_latency_ms = round((time.perf_counter() - start) * 1000, 2)
        db_status = "ok"
    except SQLAlchemyError as e:
        db_status = f"error:{type(e).__name__}"

    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "time_utc": now.isoformat(),
        "uptime_seconds": round((now - _START_TIME).total_seconds(), 2),
        "version": os.getenv("APP_VERSION", "dev"),
        "environment": "debug" if _settings.debug else "prod",
        "components": {
            "database": (
                {"status": db_status, "latency_ms": db_latency_ms}
                if db_status == "ok"
                else {"status": db_status}
            ),
            "judge0": "configured" if _settings.judge0_api_url else "missing-config",
            "worker": "running" if _worker is not None and _worker.running else "external",
        },
    }


# ------------------------
# Background Tasks
# ------------------------
@app.on_event("startup")
async def _start_background_tasks():
    global _worker, _worker_task
    logger = logging.getLogger("grading_worker")

    if not _settings.run_embedded_worker:
        logger.info("Embedded grading worker disabled; expecting an external worker")
        return
    queue = get_job_queue()
    _worker = GradingWorker(queue, GradingPipeline(queue, settings=_settings), settings=_settings)
    _worker_task = asyncio.create_task(_worker.run_forever())


@app.on_event("shutdown")
async def _stop_background_tasks():
    global _worker_task
    if _worker is not None:
        _worker.stop()
    if _worker_task is not None:
        _worker_task.cancel()
        try:
            await _worker_task
        except asyncio.CancelledError:
            pass
        _worker_task = None
