"""Group administration: create/list, variables, template assignments."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from schemas import AssignmentCreate, DeviceResponse, GroupCreate, GroupResponse, VariableUpsert
from services import groups, templates, variables

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/groups", tags=["groups"])


@router.post("")
async def create_group(payload: GroupCreate, db: AsyncSession = Depends(get_db)):
    """Create a group. An existing group with the same name is returned with 200."""
    group, created = await groups.create_group(db, payload.name, payload.description)
    return JSONResponse(
        status_code=201 if created else 200,
        content=GroupResponse.model_validate(group).model_dump(mode="json"),
    )


@router.get("", response_model=list[GroupResponse])
async def list_groups(db: AsyncSession = Depends(get_db)):
    return await groups.list_groups(db)


@router.get("/{group_id}")
async def get_group(group_id: int, db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    group = await groups.get_group(db, group_id)
    members = await groups.group_members(db, group_id)
    data = GroupResponse.model_validate(group).model_dump(mode="json")
    data["members"] = [DeviceResponse.model_validate(d).model_dump(mode="json") for d in members]
    return data


# ── Variables ────────────────────────────────────────────────────────

@router.get("/{group_id}/vars")
async def get_group_vars(group_id: int, db: AsyncSession = Depends(get_db)) -> Dict[str, str]:
    await groups.get_group(db, group_id)
    return await variables.group_variables(db, group_id)


@router.post("/{group_id}/vars")
async def set_group_var(
    group_id: int,
    payload: VariableUpsert,
    db: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    await groups.get_group(db, group_id)
    return await variables.upsert_group_variables(db, group_id, {payload.key: payload.value})


@router.post("/{group_id}/vars/bulk")
async def set_group_vars_bulk(
    group_id: int,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
) -> Dict[str, str]:
    await groups.get_group(db, group_id)
    return await variables.upsert_group_variables(db, group_id, payload)


@router.delete("/{group_id}/vars/{key}", status_code=204)
async def delete_group_var(group_id: int, key: str, db: AsyncSession = Depends(get_db)):
    await groups.get_group(db, group_id)
    await variables.delete_group_variable(db, group_id, key)
    return Response(status_code=204)


# ── Template assignments ─────────────────────────────────────────────

@router.post("/{group_id}/templates")
async def assign_template(
    group_id: int,
    payload: AssignmentCreate,
    db: AsyncSession = Depends(get_db),
):
    assignment, created = await templates.assign_to_group(
        db, group_id, payload.template_id, payload.order, payload.enabled
    )
    return JSONResponse(
        status_code=201 if created else 200,
        content={
            "group_id": assignment.group_id,
            "template_id": assignment.template_id,
            "order": assignment.order,
            "enabled": assignment.enabled,
        },
    )


@router.get("/{group_id}/templates")
async def list_group_templates(group_id: int, db: AsyncSession = Depends(get_db)) -> list[Dict[str, Any]]:
    return await templates.list_group_assignments(db, group_id)


@router.delete("/{group_id}/templates/{template_id}", status_code=204)
async def unassign_template(group_id: int, template_id: int, db: AsyncSession = Depends(get_db)):
    await groups.get_group(db, group_id)
    await templates.unassign_from_group(db, group_id, template_id)
    return Response(status_code=204)
