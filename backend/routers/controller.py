"""
Agent-facing controller endpoints.

Wire-compatible with the OpenWISP config agent: form-encoded requests,
line-based text responses, and the bundle served as a gzip'd tar with its
SHA-256 as a strong ETag.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Header, Query
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from schemas import DebugConfigResponse
from services import cache, registry, renderer
from services.var_catalog import missing_required

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/controller", tags=["controller"])

CACHE_CONTROL = "private, max-age=0, must-revalidate"


def _preview(content: str, limit: int) -> str:
    if len(content) <= limit:
        return content
    return content[:limit] + "...(truncated)"


@router.post("/register/")
async def register_device(
    secret: Optional[str] = Form(None),
    name: Optional[str] = Form(None),
    backend: Optional[str] = Form(None),
    mac_address: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
):
    """Register a device, or return the identity it already has."""
    registration = await registry.register(db, secret, name, backend, mac_address)
    body = (
        f"uuid: {registration.uuid}\n"
        f"key: {registration.key}\n"
        f"hostname: {registration.name or ''}\n"
        f"is-new: {int(registration.is_new)}\n"
    )
    return PlainTextResponse(body, status_code=201)


@router.get("/checksum/{device_uuid}/")
async def get_checksum(
    device_uuid: str,
    key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """SHA-256 of the bundle download-config would return right now."""
    device = await registry.authenticate(db, device_uuid, key)
    checksum = await cache.checksum(db, device)
    return PlainTextResponse(f"{checksum}\n")


@router.get("/download-config/{device_uuid}/")
async def download_config(
    device_uuid: str,
    key: Optional[str] = Query(None),
    if_none_match: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
):
    device = await registry.authenticate(db, device_uuid, key)
    result = await cache.download(db, device, if_none_match)

    headers = {
        "ETag": result.bundle.etag,
        "X-Openwisp-Archive-Sha256": result.bundle.checksum,
        "Cache-Control": CACHE_CONTROL,
    }
    if result.not_modified:
        return Response(status_code=304, headers=headers)

    headers["Content-Disposition"] = "attachment; filename=configuration.tar.gz"
    return Response(
        content=result.bundle.archive,
        media_type="application/gzip",
        headers=headers,
    )


@router.get("/debug-config/{device_uuid}/", response_model=DebugConfigResponse)
async def debug_config(
    device_uuid: str,
    key: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Render without touching the cache and show what the device would get.

    Render errors surface as problem responses so the failing template can
    be found.
    """
    device = await registry.authenticate(db, device_uuid, key)
    bundle = await renderer.render(db, device)
    limit = settings.DEBUG_PREVIEW_CHARS

    return {
        "checksum": bundle.checksum,
        "variables": bundle.variables,
        "missing_required": missing_required(bundle.variables),
        "templates": bundle.templates,
        "files": [
            {
                "path": path,
                "size": len(content.encode("utf-8")),
                "preview": _preview(content, limit),
            }
            for path, content in bundle.files
        ],
    }


@router.post("/report-status/{device_uuid}/")
async def report_status(
    device_uuid: str,
    key: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    config_sha: Optional[str] = Form(None),
    error: Optional[str] = Form(None),
    db: AsyncSession = Depends(get_db),
):
    device = await registry.authenticate(db, device_uuid, key)
    await registry.report_status(db, device, status, config_sha, error)
    return PlainTextResponse("ok\n")
