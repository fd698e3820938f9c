import time

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from clearance.core.config import ALLOWED_ORIGINS, LOG_LEVEL, UPSTREAM_API_TOKEN
from clearance.core.logging import get_logger, set_trace_id, setup_logging
from clearance.db.session import SessionLocal
from clearance.deps import get_cache
from clearance.routers.admin import router as admin_router
from clearance.routers.deals import router as deals_router
from clearance.services.cache_service import CacheService
from clearance.services.health import get_health_status

setup_logging(level=LOG_LEVEL)
logger = get_logger(__name__)

# =============================================================================
# APP CONFIGURATION
# =============================================================================

API_VERSION = "1.0.0"
API_TITLE = "Clearance Deals API"

app = FastAPI(
    title=API_TITLE,
    version=API_VERSION,
    description="Markdown deal ingestion & catalog API",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)

# =============================================================================
# MIDDLEWARE - Request tracking & timing
# =============================================================================

@app.middleware("http")
async def add_request_context(request: Request, call_next):
    """Add trace_id and timing to all requests."""
    trace_id = set_trace_id()
    start_time = time.perf_counter()

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    response.headers["X-Request-ID"] = trace_id
    response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

    if request.url.path != "/health":
        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )

    return response


# =============================================================================
# SYSTEM ENDPOINTS - Health & Info
# =============================================================================

@app.get("/health")
def health(cache: CacheService = Depends(get_cache)):
    """Health check endpoint for load balancers & monitoring."""
    status = get_health_status(SessionLocal, cache, UPSTREAM_API_TOKEN)
    code = 503 if status["status"] == "unhealthy" else 200
    return JSONResponse(status_code=code, content=status)


@app.get("/v1/info")
def api_info():
    return {"name": API_TITLE, "version": API_VERSION}


app.include_router(deals_router)
app.include_router(admin_router)
