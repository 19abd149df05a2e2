import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.api.files import router as files_router
from app.api.photos import router as photos_router
from app.core.config import settings
from app.core.database import AsyncSessionLocal, engine
from app.core.errors import (
    InvalidTransitionError,
    PhotoNotFoundError,
    ProcessingError,
    StorageError,
    ValidationError,
)
from app.core.rate_limit import limiter
from app.jobs.queue import ProcessingQueue
from app.jobs.workers import ProcessingWorker, requeue_stalled_photos
from app.services.catalog import CatalogStore
from app.services.storage import build_storage_gateway

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)
scheduler = AsyncIOScheduler()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.catalog = CatalogStore(AsyncSessionLocal)
    app.state.storage = build_storage_gateway()
    app.state.queue = ProcessingQueue.from_url()

    worker = ProcessingWorker(app.state.catalog, app.state.storage, app.state.queue)
    worker_task = asyncio.create_task(worker.run_forever())
    scheduler.add_job(
        requeue_stalled_photos,
        "interval",
        minutes=settings.STALLED_SWEEP_MINUTES,
        args=[app.state.catalog, app.state.queue],
        id="requeue_stalled_photos",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("processing worker and stalled-photo sweep started")

    yield

    if scheduler.running:
        scheduler.shutdown(wait=False)
    worker_task.cancel()
    with suppress(asyncio.CancelledError):
        await worker_task
    await engine.dispose()


app = FastAPI(title="Print Catalog", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


def _allowed_origins() -> list[str]:
    origins = [settings.FRONTEND_URL.rstrip("/")]
    if settings.FRONTEND_URLS:
        extra = [item.strip().rstrip("/") for item in settings.FRONTEND_URLS.split(",") if item.strip()]
        origins.extend(extra)
    return list(dict.fromkeys(origins))


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content={"detail": exc.message, "field": exc.field})


@app.exception_handler(PhotoNotFoundError)
async def not_found_handler(request: Request, exc: PhotoNotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Photo not found"})


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError):
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.current})


@app.exception_handler(ProcessingError)
async def processing_error_handler(request: Request, exc: ProcessingError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.warning("storage failure path=%s error=%s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": exc.retryable})


app.include_router(photos_router)
app.include_router(files_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
