"""FastAPI application entry point."""

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text

from app.api.routes import api_router
from app.core.cache import redis_cache
from app.core.config import settings
from app.core.email import configure_email_from_settings
from app.core.exceptions import CheckoutError
from app.core.rate_limit import limiter
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.services.cart_lock_service import get_cart_lock_manager
from app.services.cart_service import CartCleanupService
from app.services.checkout_service import get_checkout_service

# Configure logging - use JSON format in production, human-readable in dev
root_logger = logging.getLogger()
root_logger.setLevel(getattr(logging, settings.log_level))
root_logger.handlers.clear()

if settings.debug:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
else:
    import json as _json

    class JSONFormatter(logging.Formatter):
        def format(self, record):
            return _json.dumps({
                "ts": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "module": record.module,
                "line": record.lineno,
            })

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())

root_logger.addHandler(handler)
logger = logging.getLogger(__name__)
request_logger = logging.getLogger("requests")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all HTTP requests and responses."""

    async def dispatch(self, request: Request, call_next):
        # Skip logging for health checks and docs
        if request.url.path in ["/health", "/", "/docs", "/openapi.json"]:
            return await call_next(request)

        start_time = time.time()
        client_ip = request.client.host if request.client else "unknown"
        request_logger.info(f"Request: {request.method} {request.url.path} - Client: {client_ip}")

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            request_logger.error(
                f"Error: {request.method} {request.url.path} - "
                f"Exception: {str(e)} - Time: {process_time:.3f}s - Client: {client_ip}"
            )
            raise

        process_time = time.time() - start_time
        log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
        request_logger.log(
            log_level,
            f"Response: {request.method} {request.url.path} - "
            f"Status: {response.status_code} - Time: {process_time:.3f}s - Client: {client_ip}"
        )
        return response


def run_cart_lock_sweep() -> int:
    return get_cart_lock_manager().cleanup_expired()


def run_cart_cleanup() -> dict:
    db = SessionLocal()
    try:
        return CartCleanupService(db).cleanup_abandoned_carts()
    finally:
        db.close()


async def _periodic(name: str, interval_seconds: float, job):
    """Run ``job`` every ``interval_seconds`` until cancelled."""
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            await asyncio.to_thread(job)
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning(f"Periodic {name} error: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Nightlife Checkout API")

    # Create tables if they don't exist (for SQLite dev)
    # In production with PostgreSQL, use Alembic migrations
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Database tables created (SQLite mode)")

    redis_cache.initialize(settings.redis_url)
    configure_email_from_settings()

    background = [
        asyncio.create_task(
            _periodic("cart lock sweep", settings.cart_lock_sweep_interval_seconds, run_cart_lock_sweep)
        ),
        asyncio.create_task(
            _periodic("abandoned cart cleanup", settings.cart_max_age_minutes * 60, run_cart_cleanup)
        ),
    ]
    logger.info(
        f"Background jobs started (lock sweep every {settings.cart_lock_sweep_interval_seconds}s, "
        f"cart cleanup every {settings.cart_max_age_minutes}m)"
    )

    yield

    # Cancel background tasks on shutdown
    for task in background:
        task.cancel()
    for task in background:
        try:
            await task
        except asyncio.CancelledError:
            pass
    await get_checkout_service().shutdown()
    logger.info("Shutting down Nightlife Checkout API")


app = FastAPI(
    title="Nightlife Checkout API",
    description="Carts, dynamic pricing and checkout for club tickets and menus",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# Rate limiting setup
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(request: Request, exc: CheckoutError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


# Request logging middleware
app.add_middleware(RequestLoggingMiddleware)

# CORS middleware - added last so it runs first (Starlette LIFO order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "Authorization",
        "Accept",
        "Origin",
        "X-Requested-With",
        "X-Session-Id",
    ],
    max_age=600,
)

# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
def health_check():
    """Liveness check with database and store backends."""
    checks = {"database": "unknown", "cache": redis_cache.backend}
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error(f"Health check database error: {e}")
        checks["database"] = "error"
    finally:
        db.close()
    checks["cart_locks"] = get_cart_lock_manager().stats()
    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, "version": "1.0.0", "checks": checks}
