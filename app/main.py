import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.exceptions import (
    MatchEngineError,
    NotFoundError,
    MatchExpiredError,
    NotParticipantError,
    QuotaExceededError,
    CoLocationRequiredError,
    RateLimitedError,
    InvalidRequestError,
    StoreUnavailableError,
)
from app.api.matches import router as matches_router
from app.api.admin import router as admin_router

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    NotFoundError: 404,
    MatchExpiredError: 409,
    NotParticipantError: 403,
    QuotaExceededError: 429,
    CoLocationRequiredError: 409,
    RateLimitedError: 429,
    InvalidRequestError: 400,
    StoreUnavailableError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting up FastAPI...")
    if settings.SCHEDULER_ENABLED:
        from app.core.scheduler import start_scheduler
        await start_scheduler()
    yield
    if settings.SCHEDULER_ENABLED:
        from app.core.scheduler import shutdown_scheduler
        await shutdown_scheduler()
    logger.info("Shutting down FastAPI...")


app = FastAPI(
    title="Venue Match API",
    docs_url="/docs" if not settings.APP_DOMAIN else None,
    redoc_url=None,
    lifespan=lifespan,
)

# Include routers
app.include_router(matches_router)
app.include_router(admin_router)


@app.exception_handler(MatchEngineError)
async def match_engine_error_handler(request: Request, exc: MatchEngineError):
    status_code = ERROR_STATUS.get(type(exc), 500)
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "detail": exc.user_message},
        headers=headers,
    )


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.get("/")
async def root():
    return {"message": "Venue Match API", "version": "1.0"}
