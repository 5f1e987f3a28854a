"""
Health checks for Provisio.

Liveness only says the process answers. Readiness checks the database and
the template engine, and reports uptime and cache occupancy.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel
from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import ConfigCache
from services import template_engine

logger = logging.getLogger(__name__)

# Captured at module load, used to compute uptime
_start_time = time.monotonic()


class ComponentHealth(BaseModel):
    name: str
    status: str  # "ok" | "error"
    message: Optional[str] = None
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    status: str  # "healthy" | "degraded" | "unhealthy"
    app: str
    version: str
    uptime_seconds: float
    checks: list[ComponentHealth]
    timestamp: str


async def check_database(db: AsyncSession) -> ComponentHealth:
    """Run SELECT 1 and count cached bundles."""
    start = time.perf_counter()
    try:
        await db.execute(text("SELECT 1"))
        cached = await db.scalar(select(func.count()).select_from(ConfigCache).where(ConfigCache.checksum != ""))
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentHealth(
            name="database",
            status="ok",
            message=f"{cached or 0} cached bundle(s)",
            response_time_ms=round(elapsed, 1),
        )
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        logger.error(f"Database health check failed: {e}")
        return ComponentHealth(
            name="database",
            status="error",
            message=str(e),
            response_time_ms=round(elapsed, 1),
        )


def check_template_engine() -> ComponentHealth:
    """Render a trivial template end to end."""
    start = time.perf_counter()
    try:
        output = template_engine.render_body("{{ vars.probe }}", {"vars": {"probe": "ok"}})
        elapsed = (time.perf_counter() - start) * 1000
        if output != "ok":
            return ComponentHealth(name="template_engine", status="error", message=f"unexpected output {output!r}")
        return ComponentHealth(name="template_engine", status="ok", response_time_ms=round(elapsed, 1))
    except Exception as e:
        return ComponentHealth(name="template_engine", status="error", message=str(e))


async def run_health_checks(db: AsyncSession) -> HealthResponse:
    checks = [
        await check_database(db),
        check_template_engine(),
    ]

    # The database is critical; anything else only degrades the service
    critical_names = {"database"}
    has_critical_error = any(
        c.status == "error" and c.name in critical_names for c in checks
    )
    has_any_error = any(c.status == "error" for c in checks)

    if has_critical_error:
        overall = "unhealthy"
    elif has_any_error:
        overall = "degraded"
    else:
        overall = "healthy"

    return HealthResponse(
        status=overall,
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        uptime_seconds=round(time.monotonic() - _start_time, 1),
        checks=checks,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
