"""
LumberTrack - Shift Ledger Backend API
FastAPI with pluggable storage: Apps Script webhook, Google Sheets (direct), or local only

Install dependencies:
pip install -e .

Run server:
uvicorn main:app --host 0.0.0.0 --port 8000
"""

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from collections import defaultdict
from typing import Optional
from zoneinfo import ZoneInfo
import contextvars
import logging
import os
import time
import uuid

from settings import get_settings
from adapters.json import JsonHistoryStore
from core.ledger import LedgerConfig, LedgerRegistry

# ========== Request Context for Tracing ==========
request_id_var = contextvars.ContextVar('request_id', default=None)
request_start_time_var = contextvars.ContextVar('request_start_time', default=None)

# ========== Metrics Storage ==========
request_metrics = {
    "total_requests": defaultdict(int),  # by endpoint
    "total_latency": defaultdict(float),  # by endpoint
    "status_codes": defaultdict(int),  # by status code
}
# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# ============================================================================
# BACKEND CONFIGURATION
# ============================================================================
settings = get_settings()

STORAGE_BACKEND = settings.storage_backend.lower()
LOCAL_TZ = ZoneInfo(settings.local_timezone)

logger.info(f"🔧 Storage Backend: {STORAGE_BACKEND.upper()}")

# ============================================================================
# STORAGE ADAPTER INITIALIZATION
# ============================================================================

storage_adapter = None
history_store = JsonHistoryStore(data_dir=settings.data_dir)
ledger_registry = LedgerRegistry(ttl=settings.shift_ttl_seconds)
ledger_config = LedgerConfig.from_settings(settings)


# ---- DI helpers (used by routers/*) ----
def get_storage_adapter(_=None):
    return storage_adapter


def get_history_store():
    return history_store


def get_ledger_registry():
    return ledger_registry


def get_ledger_config():
    return ledger_config


if STORAGE_BACKEND == "webhook":
    from adapters.webhook import WebhookShiftStore

    if not settings.webhook_url:
        raise ValueError("Webhook backend requires WEBHOOK_URL")

    storage_adapter = WebhookShiftStore(
        url=settings.webhook_url,
        timeout=settings.http_timeout_seconds,
        cache_ttl=settings.catalog_cache_ttl,
        tz=LOCAL_TZ,
    )
    logger.info("✓ Webhook adapter initialized")

elif STORAGE_BACKEND == "sheets":
    try:
        from adapters.sheets import SheetsShiftStore

        google_sa_json = settings.resolved_google_sa_json()  # Uses base64 if available
        if not google_sa_json or not settings.sheets_spreadsheet_id:
            raise ValueError("Google Sheets requires GOOGLE_SA_JSON and SHEETS_SPREADSHEET_ID")

        logger.info("Initializing Google Sheets adapter...")
        storage_adapter = SheetsShiftStore(
            google_sa_json=google_sa_json,
            spreadsheet_id=settings.sheets_spreadsheet_id,
            tabs={
                "history": settings.sheets_history_tab,
                "products": settings.sheets_products_tab,
                "partitions": settings.sheets_partitions_tab,
                "users": settings.sheets_users_tab,
                "settings": settings.sheets_settings_tab,
            },
            tz=LOCAL_TZ,
        )
        logger.info("✓ Google Sheets adapter initialized")

    except Exception as e:
        logger.error(f"✗ Failed to initialize Google Sheets: {e}")
        raise

elif STORAGE_BACKEND == "none":
    logger.warning("No remote store configured: shifts are saved on this server only")

else:
    raise ValueError(f"Unknown STORAGE_BACKEND: {STORAGE_BACKEND}")

# ============================================================================
# FASTAPI APP
# ============================================================================

app = FastAPI(
    title="LumberTrack API",
    description="Shift ledger for board processing: earnings, yield and KPI per board",
    version="1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


# ========== Request Tracing Middleware ==========
@app.middleware("http")
async def request_tracing_middleware(request, call_next):
    """Add request_id and timing to all requests."""
    request_id = str(uuid.uuid4())[:8]
    request_id_var.set(request_id)
    request_start_time_var.set(time.time())

    response = await call_next(request)

    latency = time.time() - request_start_time_var.get()

    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code}",
        extra={
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round(latency * 1000, 2),
        }
    )

    endpoint = f"{request.method} {request.url.path}"
    request_metrics["total_requests"][endpoint] += 1
    request_metrics["total_latency"][endpoint] += latency
    request_metrics["status_codes"][response.status_code] += 1

    response.headers["X-Request-ID"] = request_id
    return response


ALLOWED_ORIGINS = settings.get_origins_list()

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"}
    )

# ============================================================================
# ENDPOINTS
# ============================================================================


@app.get("/healthz")
async def healthz():
    """
    Liveness probe. Returns 200 if the application is running.
    """
    return {
        "status": "ok",
        "timestamp": time.time(),
        "version": "1.0"
    }


@app.get("/readyz")
def readyz():
    """
    Readiness probe: local history is readable and, when a remote store
    is configured, its catalog answers. Returns 503 if not ready.
    """
    try:
        local_entries = len(history_store.load())
        catalog_size: Optional[int] = None
        if storage_adapter is not None:
            catalog_size = len(storage_adapter.fetch_catalog())
            if catalog_size == 0:
                raise RuntimeError("remote catalog is empty or unreachable")

        return {
            "status": "ready",
            "backend": STORAGE_BACKEND,
            "local_entries": local_entries,
            "catalog_size": catalog_size,
            "open_shifts": len(ledger_registry),
            "timestamp": time.time()
        }

    except (OSError, RuntimeError) as e:
        logger.error(f"Readiness check failed: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "not_ready",
                "backend": STORAGE_BACKEND,
                "error": str(e),
                "timestamp": time.time()
            }
        )


@app.get("/metrics")
async def get_metrics():
    """Request counts, latencies and open shifts."""
    avg_latencies = {}
    for endpoint, total_latency in request_metrics["total_latency"].items():
        count = request_metrics["total_requests"][endpoint]
        avg_latencies[endpoint] = round((total_latency / count) * 1000, 2) if count > 0 else 0

    total = sum(request_metrics["total_requests"].values())
    return {
        "timestamp": time.time(),
        "uptime_seconds": round(time.time() - startup_time, 2),
        "backend": STORAGE_BACKEND,
        "requests": {
            "by_endpoint": dict(request_metrics["total_requests"]),
            "by_status": dict(request_metrics["status_codes"]),
            "total": total,
        },
        "latency": {
            "by_endpoint_ms": avg_latencies,
            "average_ms": round(
                sum(request_metrics["total_latency"].values()) / total * 1000, 2
            ) if total > 0 else 0,
        },
        "open_shifts": len(ledger_registry),
    }


@app.get("/")
async def root():
    """API root endpoint"""
    return {
        "message": "LumberTrack API",
        "version": "1.0",
        "backend": STORAGE_BACKEND,
        "status": "running",
        "docs": "/docs"
    }


from routers import auth as auth_router
app.include_router(auth_router.router)

from routers import catalog as catalog_router
app.include_router(catalog_router.router)

from routers import shifts as shifts_router
app.include_router(shifts_router.router)

from routers import history as history_router
app.include_router(history_router.router)

from routers import analytics as analytics_router
app.include_router(analytics_router.router)

startup_time = time.time()


@app.on_event("startup")
async def startup_event():
    global startup_time
    startup_time = time.time()
    logger.info("LumberTrack API starting up...")
    logger.info(f"Storage Backend: {STORAGE_BACKEND.upper()}")
    if STORAGE_BACKEND == "sheets":
        logger.info(f"Spreadsheet ID: {settings.sheets_spreadsheet_id}")
    logger.info(f"Local history: {history_store.history_file}")
    logger.info(
        f"Yield gate: {'on' if settings.yield_control_enabled else 'off'} "
        f"[{settings.min_yield:g}, {settings.max_yield:g}]"
    )
    logger.info(f"Allowed origins: {ALLOWED_ORIGINS}")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("LumberTrack API shutting down...")
    close = getattr(storage_adapter, "close", None)
    if close is not None:
        close()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level="info")
