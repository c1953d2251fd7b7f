"""
Main FastAPI application for the Pick Integrity API.
"""
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from pathlib import Path

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy import text

from pick_integrity.core.config import settings
from pick_integrity.core.auth import get_api_key
from pick_integrity.core.database import SessionLocal
from pick_integrity.core.errors import register_exception_handlers
from pick_integrity.core.logging import configure_logging, get_logger
from pick_integrity.core.middleware import CorrelationIdMiddleware
from pick_integrity.core.rate_limit import limiter
from pick_integrity.core import metrics
from pick_integrity.api.routes import picks, creators, odds, grading

# Load environment variables from .env file
from dotenv import load_dotenv
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

configure_logging(
    level=settings.LOG_LEVEL,
    json_output=settings.LOG_JSON
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Application lifespan events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")

    if settings.SCHEDULER_ENABLED and not settings.is_test():
        from pick_integrity.core.scheduler import start_scheduler
        await start_scheduler()
        logger.info("Automation scheduler started")
    metrics.update_scheduler_metrics()

    logger.info("Application started")

    yield

    from pick_integrity.core.scheduler import stop_scheduler
    await stop_scheduler()
    logger.info("Shutting down application")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Pick locking, hash-chained audit ledger, fraud heuristics, transparency scores and grading",
    lifespan=lifespan
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

# Add correlation ID middleware (must be added before CORS for proper header handling)
app.add_middleware(CorrelationIdMiddleware)

# Initialize Prometheus metrics BEFORE including routes
instrumentator = Instrumentator()
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API v1 - creator and public routes
app.include_router(picks.router, prefix="/api/v1")
app.include_router(creators.router, prefix="/api/v1")
app.include_router(odds.router, prefix="/api/v1")
# Admin routes - not versioned
app.include_router(grading.router, prefix="/api/admin")


@app.get("/")
@limiter.limit("60/minute")
async def root(request: Request):
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "picks": "/api/v1/picks",
            "creators": "/api/v1/creators/{creator_id}/stats",
            "transparency": "/api/v1/creators/{creator_id}/transparency",
            "odds": "/api/v1/odds/parlay",
            "grading": "/api/admin/grading/run",
            "docs": "/docs",
            "health": "/health"
        }
    }


@app.get("/health")
@limiter.limit("120/minute")  # Higher limit for health checks
async def health_check(request: Request):
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/api/health", dependencies=[Depends(get_api_key)])
@limiter.limit("60/minute")
def api_health(request: Request):
    """Detailed health check with database, scheduler and circuit breaker status."""
    from pick_integrity.core.scheduler import get_scheduler
    from pick_integrity.services.circuit_breaker import get_all_breaker_states

    health_status = {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "components": {}
    }

    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["components"]["database"] = {"status": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}
        health_status["status"] = "degraded"

    scheduler = get_scheduler()
    if scheduler and scheduler.running:
        jobs = scheduler.scheduler.get_jobs() if scheduler.scheduler else []
        health_status["components"]["scheduler"] = {
            "status": "running",
            "jobs": [{"id": j.id, "name": j.name} for j in jobs]
        }
    else:
        health_status["components"]["scheduler"] = {"status": "stopped"}
    metrics.update_scheduler_metrics()

    health_status["components"]["circuit_breakers"] = get_all_breaker_states()
    return health_status


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pick_integrity.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
