"""
Device administration endpoints.

Variables, group membership and per-device template overrides. Devices
themselves are only created by the controller's register endpoint.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from schemas import (
    DeviceDetailResponse,
    DeviceResponse,
    GroupResponse,
    StatusReportResponse,
    VariableUpsert,
)
from services import groups, registry, templates, variables

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/devices", tags=["devices"])


@router.get("", response_model=list[DeviceResponse])
async def list_devices(db: AsyncSession = Depends(get_db)):
    return await registry.list_devices(db)


@router.get("/{device_uuid}", response_model=DeviceDetailResponse)
async def get_device(device_uuid: str, db: AsyncSession = Depends(get_db)):
    device = await registry.get_device(db, device_uuid)
    member_of = await groups.device_groups(db, device_uuid)
    history = await registry.status_history(db, device_uuid)

    detail = DeviceDetailResponse.model_validate(device)
    detail.groups = [GroupResponse.model_validate(g) for g in member_of]
    detail.status_history = [StatusReportResponse.model_validate(r) for r in history]
    return detail


# ── Variables ────────────────────────────────────────────────────────

@router.get("/{device_uuid}/vars")
async def get_device_vars(device_uuid: str, db: AsyncSession = Depends(get_db)) -> Dict[str, str]:
    await registry.get_device(db, device_uuid)
    return await variables.device_variables(db, device_uuid)


@router.post("/{device_uuid}/vars")
async def set_device_var(
    device_uuid: str,
    payload: VariableUpsert,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    await registry.get_device(db, device_uuid)
    return await variables.upsert_device_variables(db, device_uuid, {payload.key: payload.value})


@router.post("/{device_uuid}/vars/bulk")
async def set_device_vars_bulk(
    device_uuid: str,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    """Upsert a map of variables. Nothing is written unless every pair is valid."""
    await registry.get_device(db, device_uuid)
    return await variables.upsert_device_variables(db, device_uuid, payload)


@router.get("/{device_uuid}/vars/resolved")
async def get_resolved_vars(device_uuid: str, db: AsyncSession = Depends(get_db)) -> Dict[str, str]:
    """Variables after merging group values under device values."""
    await registry.get_device(db, device_uuid)
    return await variables.resolve(db, device_uuid)


@router.delete("/{device_uuid}/vars/{key}", status_code=204)
async def delete_device_var(device_uuid: str, key: str, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    await variables.delete_device_variable(db, device_uuid, key)
    return Response(status_code=204)


# ── Groups ───────────────────────────────────────────────────────────

@router.get("/{device_uuid}/groups", response_model=list[GroupResponse])
async def get_device_groups(device_uuid: str, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    return await groups.device_groups(db, device_uuid)


@router.post("/{device_uuid}/groups/{group_id}")
async def add_device_to_group(device_uuid: str, group_id: int, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    added = await groups.add_member(db, device_uuid, group_id)
    return JSONResponse(
        status_code=201 if added else 200,
        content={"device_uuid": device_uuid, "group_id": group_id, "member": True},
    )


@router.delete("/{device_uuid}/groups/{group_id}", status_code=204)
async def remove_device_from_group(device_uuid: str, group_id: int, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    await groups.remove_member(db, device_uuid, group_id)
    return Response(status_code=204)


# ── Templates ────────────────────────────────────────────────────────

@router.get("/{device_uuid}/templates")
async def get_device_templates(device_uuid: str, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    """Group assignments reaching this device, with block flags."""
    await registry.get_device(db, device_uuid)
    return await templates.list_device_templates(db, device_uuid)


@router.get("/{device_uuid}/templates/resolved")
async def get_resolved_templates(device_uuid: str, db: AsyncSession = Depends(get_db)) -> list[Dict[str, Any]]:
    """Templates in the order they are rendered."""
    await registry.get_device(db, device_uuid)
    resolved = await templates.resolve_templates(db, device_uuid)
    return [entry.to_dict() for entry in resolved]


@router.post("/{device_uuid}/templates/{template_id}/block")
async def block_template(device_uuid: str, template_id: int, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    await templates.block_template(db, device_uuid, template_id)
    return {"device_uuid": device_uuid, "template_id": template_id, "blocked": True}


@router.post("/{device_uuid}/templates/{template_id}/unblock")
async def unblock_template(device_uuid: str, template_id: int, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    await templates.unblock_template(db, device_uuid, template_id)
    return {"device_uuid": device_uuid, "template_id": template_id, "blocked": False}
