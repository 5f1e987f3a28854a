"""
Device registry.

Registration is idempotent on (backend, mac_address): the first call mints
a uuid and key, later calls get the same pair back. Concurrent first calls
for one natural key are serialized in-process by a keyed lock and across
processes by the unique constraint on the devices table.
"""

import hmac
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import Device, DeviceStatusReport
from services.errors import (
    AuthError,
    ConflictError,
    NotFoundError,
    SecretMismatch,
    ValidationError,
)
from services.invalidation import invalidate_devices
from utils.audit import audit
from utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

MAC_RE = re.compile(r"^([0-9a-f]{2})[:\-]?([0-9a-f]{2})[:\-]?([0-9a-f]{2})[:\-]?"
                    r"([0-9a-f]{2})[:\-]?([0-9a-f]{2})[:\-]?([0-9a-f]{2})$")

# Agent-reported status -> stored status
STATUS_ALIASES = {
    "running": "applied",
    "applied": "applied",
    "ok": "applied",
    "success": "applied",
    "error": "error",
    "failed": "error",
    "rollbacked": "error",
    "deactivating": "deactivating",
}

_registration_locks = KeyedLocks()


@dataclass(frozen=True)
class Registration:
    uuid: str
    key: str
    name: Optional[str]
    is_new: bool


def normalize_mac(value: Optional[str]) -> str:
    """Return a MAC in lowercase colon-separated form."""
    s = (value or "").strip().lower()
    match = MAC_RE.match(s)
    if not match:
        raise ValidationError(
            f"Invalid MAC address '{value}'. Expected six pairs of hex digits, "
            "e.g. 00:11:22:aa:bb:cc"
        )
    return ":".join(match.groups())


def _secret_matches(supplied: Optional[str]) -> bool:
    return hmac.compare_digest(
        (supplied or "").encode("utf-8"),
        settings.SHARED_SECRET.encode("utf-8"),
    )


async def _find_by_natural_key(db: AsyncSession, backend: str, mac: str) -> Optional[Device]:
    result = await db.execute(
        select(Device).where(Device.backend == backend, Device.mac_address == mac)
    )
    return result.scalar_one_or_none()


async def register(
    db: AsyncSession,
    secret: Optional[str],
    name: Optional[str],
    backend: Optional[str],
    mac_address: Optional[str],
) -> Registration:
    backend = (backend or "").strip()
    name = (name or "").strip() or None

    if not _secret_matches(secret):
        audit.log_registration_denied(backend, mac_address or "")
        logger.warning(f"Registration refused for {mac_address}: unrecognized secret")
        raise SecretMismatch("unrecognized secret")
    if not backend:
        raise ValidationError("backend is required")
    mac = normalize_mac(mac_address)

    async with _registration_locks.hold((backend, mac)):
        device = await _find_by_natural_key(db, backend, mac)
        if device is not None:
            if name and name != device.name:
                logger.info(f"Device {device.uuid} renamed {device.name!r} -> {name!r}")
                device.name = name
                # The name is part of the render context
                await invalidate_devices(db, [device.uuid])
                await db.commit()
            audit.log_registration(device.uuid, backend, mac, is_new=False)
            return Registration(device.uuid, device.key, device.name, is_new=False)

        device = Device(
            uuid=str(uuid4()),
            key=uuid4().hex,
            name=name,
            backend=backend,
            mac_address=mac,
            status="pending",
        )
        db.add(device)
        try:
            await db.commit()
        except IntegrityError:
            # Another process registered the same device first
            await db.rollback()
            device = await _find_by_natural_key(db, backend, mac)
            if device is None:
                raise ConflictError(f"registration of {mac} conflicted and no device was stored")
            audit.log_registration(device.uuid, backend, mac, is_new=False)
            return Registration(device.uuid, device.key, device.name, is_new=False)

    logger.info(f"Registered new device {device.uuid} ({backend} {mac})")
    audit.log_registration(device.uuid, backend, mac, is_new=True)
    return Registration(device.uuid, device.key, device.name, is_new=True)


async def get_device(db: AsyncSession, device_uuid: str) -> Device:
    device = await db.get(Device, device_uuid)
    if device is None:
        raise NotFoundError("device not found", uuid=device_uuid)
    return device


async def authenticate(db: AsyncSession, device_uuid: str, key: Optional[str]) -> Device:
    """Return the device if ``key`` is its key. Unknown uuid is NotFound."""
    device = await get_device(db, device_uuid)
    if not key or not hmac.compare_digest(key.encode("utf-8"), device.key.encode("utf-8")):
        logger.warning(f"Rejected key for device {device_uuid}")
        raise AuthError("invalid key", uuid=device_uuid)
    audit.set_actor(f"device:{device_uuid}")
    return device


async def list_devices(db: AsyncSession) -> list[Device]:
    result = await db.execute(select(Device).order_by(Device.created_at, Device.uuid))
    return list(result.scalars().all())


def normalize_status(status: Optional[str]) -> str:
    s = (status or "").strip().lower()
    if s not in STATUS_ALIASES:
        raise ValidationError(
            f"Unknown status '{status}'. "
            f"Allowed values: {', '.join(sorted(STATUS_ALIASES))}"
        )
    return STATUS_ALIASES[s]


async def report_status(
    db: AsyncSession,
    device: Device,
    status: Optional[str],
    config_sha: Optional[str] = None,
    error: Optional[str] = None,
) -> DeviceStatusReport:
    normalized = normalize_status(status)
    config_sha = (config_sha or "").strip().lower() or None
    error = (error or "").strip() or None

    device.status = normalized
    device.last_seen = datetime.utcnow()
    if config_sha:
        device.last_config_sha = config_sha
    device.last_error = error if normalized == "error" else None

    report = DeviceStatusReport(
        device_uuid=device.uuid,
        status=normalized,
        config_sha=config_sha,
        error=error,
    )
    db.add(report)
    await db.commit()

    if normalized == "error":
        logger.warning(f"Device {device.uuid} reported error: {error or 'no details'}")
    else:
        logger.info(f"Device {device.uuid} reported {normalized}")
    audit.log_status_report(device.uuid, normalized, config_sha)
    return report


async def status_history(db: AsyncSession, device_uuid: str, limit: int = 20) -> list[DeviceStatusReport]:
    result = await db.execute(
        select(DeviceStatusReport)
        .where(DeviceStatusReport.device_uuid == device_uuid)
        .order_by(DeviceStatusReport.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
