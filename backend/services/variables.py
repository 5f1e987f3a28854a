"""
Variable store and resolver.

Variables live at two scopes. Resolution for a device applies the
variables of each of its groups in ascending group id (a later group
overwrites an earlier one on the same key) and then the device's own
variables, which always win.
"""

import logging
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import DeviceGroup, DeviceVariable, GroupVariable
from services import var_catalog
from services.errors import NotFoundError, ValidationError
from services.invalidation import invalidate_devices, invalidate_group
from utils.audit import audit

logger = logging.getLogger(__name__)


def validate_pairs(pairs: Mapping[str, object]) -> dict[str, str]:
    """
    Normalize every pair or raise one ValidationError listing all failures.

    Nothing is written by callers unless the whole mapping validates.
    """
    if not pairs:
        raise ValidationError("no variables supplied")

    normalized: dict[str, str] = {}
    errors: list[dict[str, str]] = []
    for key, value in pairs.items():
        try:
            normalized[key] = var_catalog.normalize(
                key,
                value if value is None else str(value),
                strict=settings.STRICT_VARIABLE_CATALOG,
            )
        except ValueError as e:
            errors.append({"field": key, "message": str(e), "type": "value_error"})
    if errors:
        detail = errors[0]["message"] if len(errors) == 1 else f"{len(errors)} variables failed validation"
        raise ValidationError(detail, errors=errors)
    return normalized


# ── Resolution ───────────────────────────────────────────────────────

async def device_variables(db: AsyncSession, device_uuid: str) -> dict[str, str]:
    result = await db.execute(
        select(DeviceVariable.key, DeviceVariable.value)
        .where(DeviceVariable.device_uuid == device_uuid)
        .order_by(DeviceVariable.key)
    )
    return {key: value for key, value in result.all()}


async def group_variables(db: AsyncSession, group_id: int) -> dict[str, str]:
    result = await db.execute(
        select(GroupVariable.key, GroupVariable.value)
        .where(GroupVariable.group_id == group_id)
        .order_by(GroupVariable.key)
    )
    return {key: value for key, value in result.all()}


async def resolve(db: AsyncSession, device_uuid: str) -> dict[str, str]:
    """Merged variables for a device: groups by ascending id, then device."""
    result = await db.execute(
        select(GroupVariable.key, GroupVariable.value)
        .join(DeviceGroup, DeviceGroup.group_id == GroupVariable.group_id)
        .where(DeviceGroup.device_uuid == device_uuid)
        .order_by(GroupVariable.group_id, GroupVariable.key)
    )
    merged: dict[str, str] = {}
    for key, value in result.all():
        merged[key] = value

    merged.update(await device_variables(db, device_uuid))
    return merged


# ── Device scope ─────────────────────────────────────────────────────

async def write_device_variables(db: AsyncSession, device_uuid: str, values: Mapping[str, str]) -> None:
    """Upsert already-normalized values without committing."""
    result = await db.execute(
        select(DeviceVariable).where(
            DeviceVariable.device_uuid == device_uuid,
            DeviceVariable.key.in_(list(values)),
        )
    )
    existing = {row.key: row for row in result.scalars().all()}
    for key, value in values.items():
        row = existing.get(key)
        if row is None:
            db.add(DeviceVariable(device_uuid=device_uuid, key=key, value=value))
        else:
            row.value = value
    await invalidate_devices(db, [device_uuid])


async def upsert_device_variables(
    db: AsyncSession,
    device_uuid: str,
    pairs: Mapping[str, object],
) -> dict[str, str]:
    normalized = validate_pairs(pairs)
    await write_device_variables(db, device_uuid, normalized)
    await db.commit()

    logger.info(f"Set {len(normalized)} variable(s) on device {device_uuid}")
    audit.log_variable_change("UPSERT", "device", device_uuid, list(normalized))
    return await device_variables(db, device_uuid)


async def delete_device_variable(db: AsyncSession, device_uuid: str, key: str) -> None:
    result = await db.execute(
        select(DeviceVariable).where(
            DeviceVariable.device_uuid == device_uuid,
            DeviceVariable.key == key,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"variable '{key}' not set on device", uuid=device_uuid)
    await db.delete(row)
    await invalidate_devices(db, [device_uuid])
    await db.commit()
    audit.log_variable_change("DELETE", "device", device_uuid, [key])


async def remove_device_variables_if(
    db: AsyncSession,
    device_uuid: str,
    expected: Mapping[str, Optional[str]],
) -> list[str]:
    """
    Delete device variables whose current value equals the expected one.

    Used when releasing an address so that values the operator changed by
    hand are left alone. Does not commit.
    """
    result = await db.execute(
        select(DeviceVariable).where(
            DeviceVariable.device_uuid == device_uuid,
            DeviceVariable.key.in_(list(expected)),
        )
    )
    removed = []
    for row in result.scalars().all():
        if expected.get(row.key) is not None and row.value == expected[row.key]:
            await db.delete(row)
            removed.append(row.key)
    if removed:
        await invalidate_devices(db, [device_uuid])
    return removed


# ── Group scope ──────────────────────────────────────────────────────

async def write_group_variables(db: AsyncSession, group_id: int, values: Mapping[str, str]) -> None:
    result = await db.execute(
        select(GroupVariable).where(
            GroupVariable.group_id == group_id,
            GroupVariable.key.in_(list(values)),
        )
    )
    existing = {row.key: row for row in result.scalars().all()}
    for key, value in values.items():
        row = existing.get(key)
        if row is None:
            db.add(GroupVariable(group_id=group_id, key=key, value=value))
        else:
            row.value = value
    await invalidate_group(db, group_id)


async def upsert_group_variables(
    db: AsyncSession,
    group_id: int,
    pairs: Mapping[str, object],
) -> dict[str, str]:
    normalized = validate_pairs(pairs)
    await write_group_variables(db, group_id, normalized)
    await db.commit()

    logger.info(f"Set {len(normalized)} variable(s) on group {group_id}")
    audit.log_variable_change("UPSERT", "group", str(group_id), list(normalized))
    return await group_variables(db, group_id)


async def delete_group_variable(db: AsyncSession, group_id: int, key: str) -> None:
    result = await db.execute(
        select(GroupVariable).where(
            GroupVariable.group_id == group_id,
            GroupVariable.key == key,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(f"variable '{key}' not set on group", group_id=group_id)
    await db.delete(row)
    await invalidate_group(db, group_id)
    await db.commit()
    audit.log_variable_change("DELETE", "group", str(group_id), [key])
