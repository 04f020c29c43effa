"""FastAPI application entry point."""
import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.api import api_router, ws_router
from app.core.config import settings
from app.core.exceptions import AppException

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    # ── Startup ──
    background_tasks: list[asyncio.Task] = []
    await _startup(background_tasks)
    yield
    # ── Shutdown ──
    await _shutdown(background_tasks)


app = FastAPI(
    title="Support Circles API",
    description="Time-boxed voice support circles with party games",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# CORS origins come from CORS_ORIGINS (comma-separated)
# Credentials are off whenever "*" is allowed
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "Origin", "X-Requested-With"],
)

app.include_router(api_router)
app.include_router(ws_router)


# ── Global Exception Handlers ──

@app.exception_handler(AppException)
async def app_exception_handler(request: Request, exc: AppException):
    """Convert AppException subclasses to structured JSON responses."""
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all handler to prevent stack trace leaking in production."""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred." if not settings.DEBUG else str(exc),
            "details": {},
        },
    )


async def _startup(background_tasks: list[asyncio.Task]):
    """Validate configuration, prepare storage and start background services."""
    logger.info("Support Circles API starting up...")

    config_warnings, config_errors = settings.validate_startup()

    for warning in config_warnings:
        logger.warning(f"Config Warning: {warning}")

    if config_errors:
        logger.error("=" * 60)
        logger.error("FATAL: Configuration errors detected")
        logger.error("=" * 60)
        for i, error in enumerate(config_errors, 1):
            logger.error(f"  {i}. {error}")
        logger.error("=" * 60)
        logger.error("Please fix the above errors in your .env file before starting.")
        logger.error("In development, set DEBUG=true to bypass strict validation.")
        logger.error("=" * 60)
        raise RuntimeError(
            f"Critical configuration errors ({len(config_errors)} issues). "
            "Check logs for details."
        )

    from app.core.database_async import init_async_db
    await init_async_db()

    # Cross-instance signaling (Redis Pub/Sub)
    from app.services.signaling import signaling_hub
    from app.storage.signal_relay import SignalRelay
    import app.storage.signal_relay as relay_module
    relay = SignalRelay(signaling_hub)
    await relay.start()
    if relay.enabled:
        signaling_hub.attach_relay(relay)
    relay_module.signal_relay = relay

    if settings.CIRCLE_SWEEP_ENABLED:
        from app.core.database_async import AsyncSessionLocal
        from app.services.circle_manager import circle_manager
        from app.services.circle_sweeper import CircleExpirySweeper
        sweeper = CircleExpirySweeper(AsyncSessionLocal, circle_manager)
        background_tasks.append(sweeper.start())
    else:
        logger.info("Circle expiry sweeper disabled")


async def _shutdown(background_tasks: list[asyncio.Task]):
    """Cancel background tasks and close connections."""
    logger.info("Support Circles API shutting down...")

    if background_tasks:
        logger.info(f"Cancelling {len(background_tasks)} background task(s)...")
        for task in background_tasks:
            task.cancel()

        # Wait for all tasks to complete cancellation
        await asyncio.gather(*background_tasks, return_exceptions=True)
        logger.info("Background tasks cancelled")

    from app.storage.signal_relay import signal_relay
    from app.services.signaling import signaling_hub
    if signal_relay:
        signaling_hub.attach_relay(None)
        try:
            await signal_relay.stop()
        except Exception as e:
            logger.warning(f"Error stopping signal relay: {e}")

    from app.core.database_async import close_async_db
    try:
        await close_async_db()
    except Exception as e:
        logger.warning(f"Error closing async database: {e}")

    logger.info("Shutdown complete")


@app.get("/")
def root():
    """Root endpoint - health check."""
    return {
        "status": "ok",
        "message": "Support Circles API is running",
        "version": "1.0.0",
    }


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=True)
