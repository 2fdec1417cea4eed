from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from datetime import datetime, timezone
from typing import Optional
import asyncio
import logging
import math

from api.config import settings
from api.database import SessionLocal, QueueSessionLocal, engine, queue_engine, init_db
from api.logging_setup import configure_logging
from api.ratelimit import job_rate_limiter
from api.schemas import JobSubmission, JobCreated, JobStatus, JobData
from worker.jobs import JobQueue, JobRecord
from worker.persistence import ListingStore

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def get_queue() -> JobQueue:
    return JobQueue.from_settings(settings, QueueSessionLocal)


def get_store() -> ListingStore:
    return ListingStore(SessionLocal)


def _millis(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


async def cleanup_resources():
    """Clean up all resources on shutdown."""
    logger.info("Closing database connections...")
    try:
        await asyncio.wait_for(
            asyncio.to_thread(lambda: [e.dispose(close=True) for e in {engine, queue_engine}]),
            timeout=2.0,
        )
        logger.info("Database connections closed")
    except asyncio.TimeoutError:
        logger.warning("Database cleanup timed out, forcing close")
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    configure_logging()
    logger.info("=" * 60)
    logger.info("Estate Scraper API Starting Up")
    logger.info("=" * 60)
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    settings.data_dir.mkdir(exist_ok=True)
    init_db()
    logger.info("Database initialized successfully")

    yield  # Application runs here

    logger.info("Estate Scraper API Shutting Down")
    try:
        await asyncio.wait_for(cleanup_resources(), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Shutdown cleanup timed out, forcing exit")
    logger.info("Shutdown complete")


app = FastAPI(
    title="Estate Scraper API",
    version=API_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    """Every HTTP error, unknown routes included, uses the API's error shape."""
    if exc.status_code == 404:
        content = {
            "success": False,
            "error": "Not found",
            "message": f"Route {request.method} {request.url.path} not found",
        }
    else:
        content = {"success": False, "error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, 'headers', None))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed submissions are rejected with 400 and never reach the queue."""
    errors = [
        {'loc': list(err.get('loc', [])), 'msg': err.get('msg')}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "error": errors})


def require_job_token(x_job_token: Optional[str] = Header(None)):
    if settings.job_token and x_job_token != settings.job_token:
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_admin(x_admin_token: Optional[str] = Header(None)):
    if settings.admin_token and x_admin_token != settings.admin_token:
        raise HTTPException(status_code=403, detail="Forbidden")


def limit_job_requests(request: Request):
    client_key = request.client.host if request.client else 'unknown'
    retry_after = job_rate_limiter.hit(client_key, settings.rate_limit_max, settings.rate_limit_window_seconds)
    if retry_after is not None:
        logger.warning(f"Rate limit exceeded for {client_key} on {request.url.path}")
        raise HTTPException(
            status_code=429,
            detail="Too many requests, please try again later.",
            headers={"Retry-After": str(math.ceil(retry_after))},
        )


@app.get("/")
async def root():
    return {"message": "Estate Scraper API", "version": API_VERSION}


@app.post("/jobs", response_model=JobCreated, dependencies=[Depends(require_job_token), Depends(limit_job_requests)])
async def create_job(submission: JobSubmission, queue: JobQueue = Depends(get_queue)):
    """Queue a scrape job. AU jobs are prioritised over NZ jobs."""
    try:
        job = await asyncio.to_thread(queue.enqueue, submission.to_job_data())
    except ValueError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    except Exception as e:
        logger.error(f"Failed to create job: {e}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to create job", "message": str(e)},
        )

    return JobCreated(
        jobId=job.id,
        country=submission.country,
        client=submission.client_name,
        area=submission.area_name,
    )


def job_status(job: JobRecord) -> JobStatus:
    return JobStatus(
        id=job.id,
        status=job.state,
        progress=job.progress,
        result=job.result,
        error=job.failed_reason,
        createdAt=_millis(job.created_at),
        processedAt=_millis(job.processed_at),
        completedAt=_millis(job.finished_at),
        data=JobData(
            client=job.data.get('client_name'),
            area=job.data.get('area_name'),
            country=job.data.get('country'),
        ),
    )


@app.get("/jobs/{job_id}", response_model=JobStatus, dependencies=[Depends(require_job_token), Depends(limit_job_requests)])
async def get_job(job_id: str, queue: JobQueue = Depends(get_queue)):
    job = await asyncio.to_thread(queue.get_job, job_id)
    if job is None:
        return JSONResponse(status_code=404, content={"success": False, "error": "Job not found"})
    return job_status(job)


@app.get("/health")
async def health(queue: JobQueue = Depends(get_queue), store: ListingStore = Depends(get_store)):
    """Queue and database are probed separately so partial outages are visible."""
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        await asyncio.to_thread(queue.ping)
        counts = await asyncio.to_thread(queue.get_counts)
    except Exception as e:
        logger.error(f"Queue health check failed: {e}")
        return JSONResponse(status_code=500, content={
            "success": False,
            "status": "unhealthy",
            "error": "Queue connection failed",
            "timestamp": timestamp,
        })

    database = 'connected' if await asyncio.to_thread(store.test_connection) else 'failed'
    return {
        "success": True,
        "status": "healthy" if database == 'connected' else "degraded",
        "timestamp": timestamp,
        "version": API_VERSION,
        "queue_store": "connected",
        "database": database,
        "queue": counts,
    }


@app.get("/queue/status", dependencies=[Depends(require_admin)])
async def queue_status(queue: JobQueue = Depends(get_queue)):
    """Most recent jobs per state, with minimal identifying fields."""
    def summarize(job: JobRecord, **extra):
        return {"id": job.id, "client": job.data.get('client_name'), "area": job.data.get('area_name'), **extra}

    waiting = await asyncio.to_thread(queue.list_jobs, "waiting")
    active = await asyncio.to_thread(queue.list_jobs, "active")
    completed = await asyncio.to_thread(queue.list_jobs, "completed")
    failed = await asyncio.to_thread(queue.list_jobs, "failed")
    return {
        "success": True,
        "queue": {
            "waiting": [summarize(j) for j in waiting],
            "active": [summarize(j, progress=j.progress) for j in active],
            "recentCompleted": [summarize(j) for j in completed],
            "recentFailed": [summarize(j, error=j.failed_reason) for j in failed],
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_debug,
    )
