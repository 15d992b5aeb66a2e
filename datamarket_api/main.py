"""Data Market API - Main FastAPI application."""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from datamarket_api import __version__
from datamarket_api.db.base import Base
from datamarket_api.db.session import SessionLocal, engine
from datamarket_api.errors import MarketError
from datamarket_api.middleware.correlation import CorrelationIDMiddleware
from datamarket_api.middleware.session import SessionMiddleware
from datamarket_api.routes import market, sessions, storage
from datamarket_api.security.session import get_session_store, sweep_expired_sessions
from datamarket_api.settings import get_settings

settings = get_settings()

# Configure logging
if settings.log_format == "json":
    log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "message": "%(message)s", "module": "%(name)s"}'
else:
    log_format = "%(asctime)s %(levelname)s %(name)s: %(message)s"
logging.basicConfig(
    level=settings.log_level,
    format=log_format,
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Data Market API...")
    try:
        settings.validate_production_settings()
    except ValueError as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    import datamarket_api.models  # noqa: F401  (registers tables)

    Base.metadata.create_all(bind=engine)
    logger.info(f"Ledger provider: {settings.ledger_provider}")

    sweeper = asyncio.create_task(
        sweep_expired_sessions(get_session_store(), settings.session_sweep_interval_seconds)
    )

    yield
    sweeper.cancel()
    with suppress(asyncio.CancelledError):
        await sweeper
    # Key material must not outlive the process
    get_session_store().close_all()
    logger.info("Shutting down Data Market API...")


# Create FastAPI app
app = FastAPI(
    title="Data Market API",
    description="Consumer node for the IoT measurement marketplace",
    version=__version__,
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Custom middleware (order matters - last added is first executed)
app.add_middleware(SessionMiddleware)
app.add_middleware(CorrelationIDMiddleware)

# Prometheus metrics
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# Register routers
app.include_router(sessions.router)
app.include_router(market.router)
app.include_router(storage.router)


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    """Render protocol errors with their error code."""
    logger.info(
        f"Request failed: {exc.error_code}",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", None),
            "path": request.url.path,
        },
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health_check():
    """Health check endpoint (basic liveness)."""
    return {
        "status": "healthy",
        "service": "datamarket-api",
        "version": __version__,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness check endpoint (verifies ledger and database)."""
    from datamarket_api.ledger.source import get_event_source

    checks = {"database": False, "ledger": False}

    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except SQLAlchemyError as e:
        logger.error(f"Database check failed: {e}")
    finally:
        db.close()

    try:
        await run_in_threadpool(get_event_source().latest_block)
        checks["ledger"] = True
    except MarketError as e:
        logger.error(f"Ledger check failed: {e.error_code}")
    except (ValueError, OSError) as e:
        logger.error(f"Ledger client misconfigured: {e}")

    all_ready = all(checks.values())
    return JSONResponse(
        content={"status": "ready" if all_ready else "not_ready", "checks": checks},
        status_code=200 if all_ready else 503,
    )


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "Data Market API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health",
    }
