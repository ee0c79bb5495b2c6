"""FastAPI application for the acquisition analysis engine."""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
import json
import logging
from datetime import datetime, timezone
import asyncio

from .models import (
    BusinessRecord,
    HealthCheckResponse,
    InvocationRequest,
    InvocationResponse,
    RunStatus,
)
from .config import Config
from .database import DatabaseManager
from .errors import RecordStoreError
from .progress import ProgressBroker, TERMINAL_STATUSES, is_terminal
from .rate_limiter import ProviderRateLimits
from .scan_runner import AnalysisRunner

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL),
    format=Config.LOG_FORMAT
)

logger = logging.getLogger(__name__)

# Seconds between liveness checks while a stream waits for progress
STREAM_POLL_SECONDS = 15.0


@asynccontextmanager
async def lifespan(app):
    """Startup/shutdown lifecycle for the FastAPI application."""
    # Startup: start the recurring scan scheduler if enabled
    if Config.SCAN_SCHEDULER_ENABLED:
        from .scheduler import ScanScheduler
        scheduler = ScanScheduler(runner=runner)
        app.state.scheduler = scheduler
        await scheduler.start()
    yield
    # Shutdown: stop the scheduler if running
    if hasattr(app.state, "scheduler"):
        await app.state.scheduler.stop()


# Create FastAPI app
app = FastAPI(
    title="Acquisition Analysis Engine API",
    description="Multi-provider financial, strategic, market and risk analysis of acquisition candidates",
    version="0.1.0",
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize database
db_manager = DatabaseManager(Config.DATABASE_PATH)

# Shared run infrastructure (persists across requests)
progress_broker = ProgressBroker(max_queue_size=Config.PROGRESS_QUEUE_SIZE)
provider_rate_limits = ProviderRateLimits(requests_per_minute=Config.PROVIDER_RATE_LIMIT_PER_MINUTE)
runner = AnalysisRunner(
    db_manager=db_manager,
    broker=progress_broker,
    rate_limits=provider_rate_limits,
)


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Acquisition Analysis Engine API",
        "version": "0.1.0",
        "endpoints": {
            "invoke": "POST /api/invoke",
            "runs": "GET /api/runs",
            "run": "GET /api/runs/{run_id}",
            "stream": "GET /api/runs/{run_id}/stream",
            "businesses": "POST/GET /api/businesses",
            "business": "GET /api/businesses/{business_id}",
            "latest": "GET /api/businesses/{business_id}/assessments/latest",
            "history": "GET /api/businesses/{business_id}/assessments",
            "health": "GET /health"
        }
    }


@app.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint."""
    config_valid = Config.validate_config()

    # Test database connection
    db_connected = False
    try:
        db_manager.get_recent_runs(limit=1)
        db_connected = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")

    return HealthCheckResponse(
        status="healthy" if (config_valid and db_connected) else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        database_connected=db_connected,
        config_valid=config_valid
    )


@app.post("/api/invoke", response_model=InvocationResponse)
async def invoke(body: InvocationRequest):
    """
    Start an analysis run.

    Actions:
        start_scan: analyze every active business in batches
        analyze_one: analyze the business named by ``business_id``

    Returns the run ID immediately; follow progress on
    ``GET /api/runs/{run_id}/stream``.
    """
    try:
        run_id = await runner.invoke(body.action, body.model_dump(exclude={"action"}))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RecordStoreError as e:
        logger.error(f"Could not start {body.action}: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Record store unavailable")

    return InvocationResponse(success=True, run_id=run_id, action=body.action)


@app.get("/api/runs")
async def list_runs(limit: int = Query(default=20, ge=1, le=100)):
    """List recent analysis runs, newest first."""
    runs = db_manager.get_recent_runs(limit=limit)
    return {"runs": [RunStatus(**run).model_dump() for run in runs], "total_count": len(runs)}


@app.get("/api/runs/{run_id}", response_model=RunStatus)
async def get_run(run_id: str):
    """Get status and counts for one run."""
    run = db_manager.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")
    return RunStatus(**run)


@app.get("/api/runs/{run_id}/stream")
async def stream_run(run_id: str):
    """
    Stream run progress via Server-Sent Events (SSE).

    Streams:
    - ``progress`` events as batches and businesses advance
    - ``complete`` event when the run finishes
    - ``error`` event if the run fails
    """
    if not db_manager.get_run(run_id):
        raise HTTPException(status_code=404, detail=f"Run {run_id} not found")

    def _event_for(status: str) -> str:
        if status == "completed":
            return "complete"
        if status == "failed":
            return "error"
        return "progress"

    async def event_generator():
        queue = progress_broker.subscribe(run_id)
        try:
            while True:
                try:
                    update = await asyncio.wait_for(queue.get(), timeout=STREAM_POLL_SECONDS)
                except asyncio.TimeoutError:
                    # No live updates: the run may have finished elsewhere
                    run = db_manager.get_run(run_id)
                    if run and run.get("status") in TERMINAL_STATUSES:
                        payload = RunStatus(**run).model_dump()
                        yield f"event: {_event_for(run['status'])}\ndata: {json.dumps(payload, default=str)}\n\n"
                        break
                    yield ": keepalive\n\n"
                    continue

                yield f"event: {_event_for(update.status)}\ndata: {update.model_dump_json()}\n\n"
                if is_terminal(update):
                    break
        finally:
            progress_broker.unsubscribe(run_id, queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.post("/api/businesses")
async def upsert_business(body: BusinessRecord):
    """Ingest a candidate business from the upstream discovery step."""
    created = db_manager.upsert_business(body)
    return {"success": True, "business_id": body.business_id, "created": created}


@app.get("/api/businesses")
async def list_businesses(active_only: bool = Query(default=True)):
    """List stored businesses."""
    businesses = db_manager.list_businesses(active_only=active_only)
    return {"businesses": [b.model_dump() for b in businesses], "total_count": len(businesses)}


@app.get("/api/businesses/{business_id}")
async def get_business(business_id: str):
    """Get one business record."""
    record = db_manager.get_business(business_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Business {business_id} not found")
    return record.model_dump()


@app.get("/api/businesses/{business_id}/assessments/latest")
async def get_latest_assessment(business_id: str):
    """Get the most recent assessment for a business."""
    assessment = db_manager.get_latest_assessment(business_id)
    if not assessment:
        raise HTTPException(status_code=404, detail=f"No assessment found for {business_id}")
    return assessment


@app.get("/api/businesses/{business_id}/assessments")
async def get_assessment_history(
    business_id: str,
    limit: int = Query(default=10, ge=1, le=100),
):
    """Get assessment history for a business, newest first."""
    if db_manager.get_business(business_id) is None:
        raise HTTPException(status_code=404, detail=f"Business {business_id} not found")
    history = db_manager.get_assessment_history(business_id, limit=limit)
    return {"business_id": business_id, "assessments": history, "total_count": len(history)}
