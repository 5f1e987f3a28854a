"""
Bundle cache and conditional responses.

One ConfigCache row per device holds the last bundle and its checksum
(the ETag). Mutations mark rows stale; a fresh row answers checksum polls
and matching If-None-Match requests without rendering. Renders for one
device are single-flight: concurrent callers share the in-flight result,
so two renders never interleave their store step.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import ConfigCache, Device
from services.errors import RenderError
from services.renderer import RenderedBundle, render
from utils.audit import audit

logger = logging.getLogger(__name__)

_inflight: dict[str, asyncio.Future] = {}


@dataclass(frozen=True)
class CachedBundle:
    checksum: str
    archive: bytes
    fallback: bool = False

    @property
    def etag(self) -> str:
        return f'"{self.checksum}"'


@dataclass(frozen=True)
class DownloadResult:
    bundle: CachedBundle
    not_modified: bool


def etag_matches(if_none_match: Optional[str], checksum: Optional[str]) -> bool:
    """
    If-None-Match test against a checksum.

    Accepts a comma-separated list of quoted or bare tags, weak tags, and
    ``*`` (matches whenever a bundle exists).
    """
    if not if_none_match or not checksum:
        return False
    for candidate in if_none_match.split(","):
        tag = candidate.strip()
        if tag == "*":
            return True
        if tag.startswith("W/"):
            tag = tag[2:]
        if tag.strip('"') == checksum:
            return True
    return False


async def _load_row(db: AsyncSession, device_uuid: str) -> Optional[ConfigCache]:
    result = await db.execute(
        select(ConfigCache)
        .where(ConfigCache.device_uuid == device_uuid)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _has_bundle(row: Optional[ConfigCache]) -> bool:
    return row is not None and bool(row.checksum)


async def _claim_row(db: AsyncSession, device: Device) -> ConfigCache:
    """
    Commit an empty stale row before a device's first render.

    Invalidations that land while the render runs then have a generation
    to bump.
    """
    device_uuid = device.uuid
    row = ConfigCache(device_uuid=device_uuid, checksum="", bundle=b"", stale=True, generation=0)
    db.add(row)
    try:
        await db.commit()
    except IntegrityError:
        # Another process claimed it first
        await db.rollback()
        await db.refresh(device)
        row = await _load_row(db, device_uuid)
    return row


async def _store(db: AsyncSession, device_uuid: str, bundle: RenderedBundle, generation: int) -> None:
    row = await _load_row(db, device_uuid)
    if row is None:
        # Dropped while rendering; nothing vouches for this bundle
        row = ConfigCache(device_uuid=device_uuid, generation=0)
        db.add(row)
        still_current = False
    else:
        still_current = row.generation == generation

    row.checksum = bundle.checksum
    row.bundle = bundle.archive
    row.rendered_at = datetime.utcnow()
    # A mutation that landed mid-render leaves the row stale for the next caller
    row.stale = not still_current
    await db.commit()


async def _render_and_store(db: AsyncSession, device: Device) -> CachedBundle:
    device_uuid = device.uuid
    row = await _load_row(db, device_uuid)
    if row is None:
        row = await _claim_row(db, device)
    # -1 never matches, so a row lost in between is stored stale
    generation = row.generation if row is not None else -1

    bundle = await render(db, device)
    await _store(db, device_uuid, bundle, generation)
    audit.log_render(device_uuid, "success", checksum=bundle.checksum)
    return CachedBundle(bundle.checksum, bundle.archive)


async def refresh(db: AsyncSession, device: Device) -> CachedBundle:
    """Render and store, joining an in-flight render for the same device."""
    device_uuid = device.uuid
    pending = _inflight.get(device_uuid)
    if pending is not None:
        logger.debug(f"Joining in-flight render for {device_uuid}")
        return await asyncio.shield(pending)

    future = asyncio.get_running_loop().create_future()
    _inflight[device_uuid] = future
    try:
        result = await _render_and_store(db, device)
    except asyncio.CancelledError:
        future.cancel()
        raise
    except Exception as e:
        future.set_exception(e)
        # Mark retrieved; waiters (if any) still receive it
        future.exception()
        raise
    else:
        future.set_result(result)
        return result
    finally:
        _inflight.pop(device_uuid, None)


async def _fallback(db: AsyncSession, device_uuid: str, error: RenderError) -> CachedBundle:
    """Serve the last good bundle after a failed render, or re-raise."""
    row = await _load_row(db, device_uuid)
    if not _has_bundle(row):
        audit.log_render(device_uuid, "failure", error_message=error.detail)
        raise error
    logger.warning(
        f"Render failed for {device_uuid}, serving previous bundle: {error.detail}",
        extra={"checksum": row.checksum},
    )
    audit.log_render(device_uuid, "fallback", checksum=row.checksum, error_message=error.detail)
    return CachedBundle(row.checksum, row.bundle, fallback=True)


async def current_bundle(db: AsyncSession, device: Device) -> CachedBundle:
    """Fresh cached bundle, or a new render, or the last good bundle."""
    device_uuid = device.uuid
    row = await _load_row(db, device_uuid)
    if _has_bundle(row) and not row.stale:
        return CachedBundle(row.checksum, row.bundle)
    try:
        return await refresh(db, device)
    except RenderError as e:
        return await _fallback(db, device_uuid, e)


async def checksum(db: AsyncSession, device: Device) -> str:
    return (await current_bundle(db, device)).checksum


async def download(db: AsyncSession, device: Device, if_none_match: Optional[str] = None) -> DownloadResult:
    row = await _load_row(db, device.uuid)
    if _has_bundle(row) and not row.stale and etag_matches(if_none_match, row.checksum):
        logger.debug(f"Bundle for {device.uuid} not modified")
        return DownloadResult(CachedBundle(row.checksum, b""), not_modified=True)

    bundle = await current_bundle(db, device)
    return DownloadResult(bundle, not_modified=etag_matches(if_none_match, bundle.checksum))
