"""Main FastAPI application for Starpath Progress Service."""

from contextlib import asynccontextmanager
import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text
import structlog

from starpath.core.config import settings
from starpath.core.database import get_session_factory, init_db
from starpath.core.dependencies import get_redis_cache
from starpath.core.exceptions import ProgressionError
from starpath.core.logging import bind_request_context, clear_request_context, setup_logging
from starpath.gamification.badge_catalog import seed_badge_catalog
from starpath.routers import books, gamification, notifications, progress, recordings, videos

# Setup structured logging
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle manager."""
    logger.info("Starting Starpath Progress Service", version=settings.APP_VERSION)

    await init_db()

    if settings.SEED_BADGE_CATALOG:
        async with get_session_factory()() as db:
            await seed_badge_catalog(db)

    app.state.redis_cache = await get_redis_cache()

    logger.info("Progress service initialized successfully")

    yield

    logger.info("Shutting down Starpath Progress Service")


app = FastAPI(
    title="Starpath Progress Service",
    description="Course progression, star rewards and badges for young learners",
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production() else None,
    redoc_url="/redoc" if not settings.is_production() else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Metrics routes must be registered before the app starts serving
if settings.ENABLE_METRICS:
    Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request id to every log line emitted while handling the request."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    bind_request_context(request_id=request_id, method=request.method, path=request.url.path)
    try:
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response
    finally:
        clear_request_context()


@app.exception_handler(ProgressionError)
async def progression_error_handler(request: Request, exc: ProgressionError):
    if exc.status_code >= 500:
        logger.error("Request failed", error=exc.code, message=exc.message, path=request.url.path)
    else:
        logger.info("Request rejected", error=exc.code, message=exc.message, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


app.include_router(progress.router, prefix="/api/course-progress", tags=["course-progress"])
app.include_router(books.router, prefix="/api/books", tags=["books"])
app.include_router(videos.router, prefix="/api/videos", tags=["videos"])
app.include_router(recordings.audio_router, prefix="/api/audio-assignments", tags=["audio-assignments"])
app.include_router(recordings.chant_router, prefix="/api/chants", tags=["chants"])
app.include_router(gamification.router, prefix="/api/gamification", tags=["gamification"])
app.include_router(notifications.router, prefix="/api/gamification/notifications", tags=["notifications"])


@app.get("/", tags=["root"])
async def root():
    """Root endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "status": "operational"
    }


@app.get("/health", tags=["health"])
async def health_check(request: Request):
    """Health check endpoint."""
    health_status = {
        "status": "healthy",
        "service": settings.SERVICE_NAME,
        "version": settings.APP_VERSION,
        "checks": {}
    }

    try:
        async with get_session_factory()() as db:
            await db.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except Exception as e:
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"
        health_status["status"] = "degraded"

    cache = getattr(request.app.state, "redis_cache", None)
    if cache is not None:
        try:
            await cache.exists("health_check")
            health_status["checks"]["cache"] = "healthy"
        except Exception as e:
            health_status["checks"]["cache"] = f"unhealthy: {str(e)}"
            health_status["status"] = "degraded"

    status_code = 200 if health_status["status"] == "healthy" else 503
    return JSONResponse(content=health_status, status_code=status_code)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "starpath.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
        reload=settings.ENVIRONMENT == "development",
        log_config=None  # Use structlog instead
    )
