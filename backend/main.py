import time
import uuid
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import AsyncSessionLocal, close_db, get_db, init_db
from routers import (
    controller_router,
    templates_router,
    devices_router,
    groups_router,
    ipam_router,
    catalog_router,
)
from services.errors import EngineError
from services.health import run_health_checks
from utils.logging_utils import setup_logging, get_logger
from utils.audit import audit

setup_logging(level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger = get_logger(__name__)

PROBLEM_JSON = "application/problem+json"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    logger.info("=" * 60)
    logger.info("PROVISIO STARTING UP")
    logger.info(f"App: {settings.APP_NAME} v{settings.APP_VERSION}")

    start = time.perf_counter()
    await init_db()
    logger.info(
        f"Database initialized in {(time.perf_counter() - start) * 1000:.1f}ms"
    )

    if settings.SHARED_SECRET == "change-me-in-production":
        logger.warning("SHARED_SECRET is the built-in default; set it before exposing /controller")

    async with AsyncSessionLocal() as db:
        health = await run_health_checks(db)
    for check in health.checks:
        status_icon = "+" if check.status == "ok" else "!"
        detail = ""
        if check.message:
            detail += f" ({check.message})"
        if check.response_time_ms is not None:
            detail += f" [{check.response_time_ms:.1f}ms]"
        logger.info(f"  {status_icon} {check.name}: {check.status}{detail}")
    if health.status != "healthy":
        logger.warning(f"STARTUP HEALTH: {health.status.upper()} - some checks failed")

    logger.info("STARTUP COMPLETE - Ready to accept requests")
    logger.info("=" * 60)

    yield

    logger.info("PROVISIO SHUTTING DOWN")
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)


# ── Error handlers ────────────────────────────────────────────────────

@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    """Render domain errors as application/problem+json."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path}: {exc.title}: {exc.detail}")
    else:
        logger.info(f"{request.method} {request.url.path}: {exc.title}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_problem(),
        media_type=PROBLEM_JSON,
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    """
    Turn request validation failures into a problem response with one
    entry per offending field.
    """
    errors = []
    for error in exc.errors():
        # Dotted field path without the "body"/"query"/"path" prefix
        loc_parts = [str(x) for x in error.get("loc", [])]
        if loc_parts and loc_parts[0] in ("body", "query", "path", "header"):
            loc_parts = loc_parts[1:]
        field = ".".join(loc_parts) if loc_parts else "unknown"

        msg = error.get("msg", "Validation error")
        # Pydantic wraps custom ValueError messages in "Value error, ..."
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]

        errors.append({
            "field": field,
            "message": msg,
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=422,
        content={
            "type": "about:blank",
            "title": "Validation failed",
            "status": 422,
            "detail": errors[0]["message"] if len(errors) == 1 else f"{len(errors)} fields failed validation",
            "errors": errors,
        },
        media_type=PROBLEM_JSON,
    )


# ── Request ID + request logging middleware ───────────────────────────

@app.middleware("http")
async def request_lifecycle(request: Request, call_next):
    """Assign a request ID, log timing, and add the ID to response headers."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    audit.set_request_id(request_id)
    audit.set_actor("admin")

    start_time = time.perf_counter()
    logger.debug(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    status_indicator = "+" if response.status_code < 400 else "!"
    logger.info(
        f"{status_indicator} {request.method} {request.url.path} "
        f"[{response.status_code}] {duration_ms:.1f}ms rid={request_id[:8]}"
    )

    response.headers["X-Request-ID"] = request_id
    if request.url.path.startswith("/controller/"):
        response.headers["X-Openwisp-Controller"] = "true"
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
    expose_headers=["ETag", "X-Request-ID", "X-Openwisp-Archive-Sha256"],
)

app.include_router(controller_router)
app.include_router(templates_router)
app.include_router(devices_router)
app.include_router(groups_router)
app.include_router(ipam_router)
app.include_router(catalog_router)


@app.get("/healthz", tags=["health"])
async def liveness():
    """The process is up and serving requests."""
    return {"status": "ok"}


@app.get("/readyz", tags=["health"])
async def readiness(db: AsyncSession = Depends(get_db)):
    """Component checks; 503 when the database is unreachable."""
    health = await run_health_checks(db)
    status_code = 200 if health.status in ("healthy", "degraded") else 503
    return JSONResponse(content=health.model_dump(), status_code=status_code)


@app.get("/api/v1", tags=["root"])
async def api_root():
    """API root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "openapi": "/openapi.json",
        "endpoints": {
            "templates": "/api/v1/templates",
            "devices": "/api/v1/devices",
            "groups": "/api/v1/groups",
            "ipam": "/api/v1/ipam",
            "catalog": "/api/v1/vars/catalog",
            "controller": "/controller",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
