"""
Cache invalidation hooks.

Mutations call these inside their own transaction so the stale flag
commits together with the change that caused it.
"""

from typing import Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from models import ConfigCache, DeviceGroup


async def invalidate_devices(db: AsyncSession, device_uuids: Iterable[str]) -> None:
    uuids = list(device_uuids)
    if not uuids:
        return
    await db.execute(
        update(ConfigCache)
        .where(ConfigCache.device_uuid.in_(uuids))
        .values(stale=True, generation=ConfigCache.generation + 1)
    )


async def invalidate_group(db: AsyncSession, group_id: int) -> None:
    """Mark every member of a group stale."""
    members = select(DeviceGroup.device_uuid).where(DeviceGroup.group_id == group_id)
    await db.execute(
        update(ConfigCache)
        .where(ConfigCache.device_uuid.in_(members))
        .values(stale=True, generation=ConfigCache.generation + 1)
    )


async def invalidate_all(db: AsyncSession) -> None:
    await db.execute(update(ConfigCache).values(stale=True, generation=ConfigCache.generation + 1))
