"""
StoryReel - AI Story Video Generation
Main FastAPI Application Entry Point
"""

from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .container import build_services
from .utils.exceptions import StoryReelError
from .utils.logger import setup_logger
from .routers import jobs_router, providers_router


# Set up logging
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    settings = get_settings()
    Path(settings.temp_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    services = build_services(settings)
    app.state.services = services

    await services.store.initialize()
    recovery = await services.recover()
    await services.consumer.start()

    logger.info("=" * 60)
    logger.info(
        f"StoryReel queue '{settings.queue_name}': {settings.job_worker_concurrency} worker(s), "
        f"{settings.job_max_attempts} attempt(s), recovered {recovery.requeued}, "
        f"failed {len(recovery.dead_lettered)} stalled"
    )
    _log_check(services.runner.check_available(), "FFmpeg", "rendering will fail")
    _log_check(bool(settings.gemini_api_key), "Gemini", "storyboard planning disabled")
    _log_check(bool(settings.aws_access_key_id and settings.s3_bucket_name), "AWS S3 / Bedrock", "uploads will fail")
    _log_check(bool(settings.elevenlabs_api_key), "ElevenLabs", "narration will fail")
    _log_check(bool(settings.fal_api_key), "fal.ai", "fal models and music disabled")
    _log_check(bool(settings.api_key), "API key authentication", "routes are open")
    logger.info("=" * 60)

    yield

    logger.info("Shutting down StoryReel...")
    await services.close()


def _log_check(ok: bool, name: str, consequence: str):
    if ok:
        logger.info(f"[OK] {name}")
    else:
        logger.warning(f"[!] {name} not configured ({consequence})")


# Create FastAPI app
app = FastAPI(
    title="StoryReel",
    description="Turns a story idea into a narrated, captioned short video",
    version=get_settings().app_version,
    lifespan=lifespan
)

# CORS middleware
settings = get_settings()
cors_origins = settings.cors_allowed_origins or ["http://localhost:8000", "http://127.0.0.1:8000"]
cors_allow_credentials = "*" not in cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}

ERROR_STATUS = {
    "VALIDATION_ERROR": 422,
    "INCOMPATIBLE_CAPABILITY": 422,
    "NOT_FOUND": 404,
    "JOB_CONFLICT": 409,
    "INVALID_TRANSITION": 409,
    "API_KEY_ERROR": 503,
}


def _extract_api_key(request: Request) -> str:
    api_key = request.headers.get("x-api-key", "").strip()
    if api_key:
        return api_key

    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return ""


@app.middleware("http")
async def api_key_auth_middleware(request: Request, call_next):
    settings = get_settings()
    if not settings.api_key:
        return await call_next(request)

    if request.url.path in PUBLIC_PATHS:
        return await call_next(request)

    if _extract_api_key(request) != settings.api_key:
        return JSONResponse(status_code=401, content={"detail": "invalid or missing API key"})

    return await call_next(request)


@app.exception_handler(StoryReelError)
async def storyreel_exception_handler(request: Request, exc: StoryReelError):
    """Handle all StoryReel custom exceptions"""
    status_code = ERROR_STATUS.get(exc.code, 400 if exc.recoverable else 500)
    if status_code >= 500:
        logger.error(f"StoryReelError [{exc.code}]: {exc.message}")
    else:
        logger.warning(f"StoryReelError [{exc.code}]: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(ValueError)
async def validation_exception_handler(request: Request, exc: ValueError):
    logger.warning(f"Validation error: {exc}")
    return JSONResponse(
        status_code=400,
        content={"error": "VALIDATION_ERROR", "message": str(exc), "recoverable": False},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "An unexpected error occurred", "recoverable": True},
    )


# Include routers
app.include_router(jobs_router)
app.include_router(providers_router)


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy", "app": "StoryReel"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("storyreel.main:app", host="0.0.0.0", port=8000)
