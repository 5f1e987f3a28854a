"""Group store and device membership."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import Device, DeviceGroup, Group
from services.errors import NotFoundError, ValidationError
from services.invalidation import invalidate_devices
from utils.audit import audit

logger = logging.getLogger(__name__)


async def get_group(db: AsyncSession, group_id: int) -> Group:
    group = await db.get(Group, group_id)
    if group is None:
        raise NotFoundError("group not found", group_id=group_id)
    return group


async def create_group(
    db: AsyncSession,
    name: str,
    description: Optional[str] = None,
) -> tuple[Group, bool]:
    """Create a group, or return the existing one with that name."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("group name is required")

    result = await db.execute(select(Group).where(Group.name == name))
    existing = result.scalar_one_or_none()
    if existing is not None:
        return existing, False

    group = Group(name=name, description=description)
    db.add(group)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        result = await db.execute(select(Group).where(Group.name == name))
        return result.scalar_one(), False

    await db.refresh(group)
    logger.info(f"Created group {group.id} '{name}'")
    audit.log("CREATE", "Group", str(group.id), details={"name": name})
    return group, True


async def list_groups(db: AsyncSession) -> list[Group]:
    result = await db.execute(select(Group).order_by(Group.id))
    return list(result.scalars().all())


async def device_group_ids(db: AsyncSession, device_uuid: str) -> list[int]:
    """Ids of the groups a device belongs to, ascending."""
    result = await db.execute(
        select(DeviceGroup.group_id)
        .where(DeviceGroup.device_uuid == device_uuid)
        .order_by(DeviceGroup.group_id)
    )
    return list(result.scalars().all())


async def device_groups(db: AsyncSession, device_uuid: str) -> list[Group]:
    result = await db.execute(
        select(Group)
        .join(DeviceGroup, DeviceGroup.group_id == Group.id)
        .where(DeviceGroup.device_uuid == device_uuid)
        .order_by(Group.id)
    )
    return list(result.scalars().all())


async def group_members(db: AsyncSession, group_id: int) -> list[Device]:
    result = await db.execute(
        select(Device)
        .join(DeviceGroup, DeviceGroup.device_uuid == Device.uuid)
        .where(DeviceGroup.group_id == group_id)
        .order_by(Device.created_at, Device.uuid)
    )
    return list(result.scalars().all())


async def add_member(db: AsyncSession, device_uuid: str, group_id: int) -> bool:
    """Add a device to a group. Returns False if it was already a member."""
    await get_group(db, group_id)
    result = await db.execute(
        select(DeviceGroup).where(
            DeviceGroup.device_uuid == device_uuid,
            DeviceGroup.group_id == group_id,
        )
    )
    if result.scalar_one_or_none() is not None:
        return False

    db.add(DeviceGroup(device_uuid=device_uuid, group_id=group_id))
    await invalidate_devices(db, [device_uuid])
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        return False

    logger.info(f"Device {device_uuid} joined group {group_id}")
    audit.log_membership_change("ADD", device_uuid, group_id)
    return True


async def remove_member(db: AsyncSession, device_uuid: str, group_id: int) -> None:
    await get_group(db, group_id)
    result = await db.execute(
        select(DeviceGroup).where(
            DeviceGroup.device_uuid == device_uuid,
            DeviceGroup.group_id == group_id,
        )
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise NotFoundError("device is not a member of this group", group_id=group_id)

    await db.delete(membership)
    await invalidate_devices(db, [device_uuid])
    await db.commit()

    logger.info(f"Device {device_uuid} left group {group_id}")
    audit.log_membership_change("REMOVE", device_uuid, group_id)
