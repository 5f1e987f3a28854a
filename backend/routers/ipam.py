"""
IPAM endpoints.

Root prefixes are created explicitly; child prefixes are carved for groups
and addresses for devices. Assignments also land in the variable store.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from schemas import AllocationResponse, PrefixCreate, PrefixDetailResponse, PrefixResponse
from services import ipam, registry
from services.errors import ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/ipam", tags=["ipam"])


@router.post("/prefixes", response_model=PrefixResponse, status_code=201)
async def create_prefix(payload: PrefixCreate, db: AsyncSession = Depends(get_db)):
    """Create a top-level prefix. Overlapping an existing one is a conflict."""
    prefix = await ipam.create_root(db, payload.cidr, payload.note)
    return ipam.prefix_to_dict(prefix)


@router.get("/prefixes", response_model=list[PrefixResponse])
async def list_prefixes(db: AsyncSession = Depends(get_db)):
    return [ipam.prefix_to_dict(p) for p in await ipam.list_prefixes(db)]


@router.get("/prefixes/{prefix_id}", response_model=PrefixDetailResponse)
async def get_prefix(prefix_id: int, db: AsyncSession = Depends(get_db)):
    prefix = await ipam.get_prefix(db, prefix_id)
    data = ipam.prefix_to_dict(prefix)
    data["children"] = [ipam.prefix_to_dict(c) for c in await ipam.children_of(db, prefix_id)]
    return data


@router.post("/prefixes/{prefix_id}/allocate", response_model=PrefixResponse, status_code=201)
async def allocate_child(
    prefix_id: int,
    new_prefix_len: int = Query(..., ge=0, le=128),
    note: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    child = await ipam.assign_child(db, prefix_id, new_prefix_len, note)
    return ipam.prefix_to_dict(child)


@router.post("/assign/group/{group_id}", response_model=PrefixResponse, status_code=201)
async def assign_group_prefix(
    group_id: int,
    parent: int = Query(..., description="Parent prefix id"),
    prefix_len: int = Query(..., alias="len", ge=0, le=128),
    note: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    child = await ipam.assign_prefix_to_group(db, group_id, parent, prefix_len, note)
    return ipam.prefix_to_dict(child)


@router.get("/groups/{group_id}/prefixes", response_model=list[PrefixResponse])
async def list_group_prefixes(group_id: int, db: AsyncSession = Depends(get_db)):
    return [ipam.prefix_to_dict(p) for p in await ipam.group_prefixes(db, group_id)]


@router.post("/assign/device/{device_uuid}", response_model=AllocationResponse, status_code=201)
async def assign_device_address(
    device_uuid: str,
    group: Optional[int] = Query(None, description="Allocate from this group's first prefix"),
    prefix: Optional[int] = Query(None, description="Allocate from this prefix"),
    db: AsyncSession = Depends(get_db),
):
    await registry.get_device(db, device_uuid)
    if prefix is not None:
        return await ipam.assign_address(db, prefix, device_uuid)
    if group is not None:
        return await ipam.assign_address_by_group(db, group, device_uuid)
    raise ValidationError("either 'group' or 'prefix' is required")


@router.get("/devices/{device_uuid}/ips", response_model=list[AllocationResponse])
async def list_device_ips(device_uuid: str, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    return await ipam.list_device_allocations(db, device_uuid)


@router.delete("/devices/{device_uuid}/ips/{allocation_id}", status_code=204)
async def release_device_ip(device_uuid: str, allocation_id: int, db: AsyncSession = Depends(get_db)):
    await registry.get_device(db, device_uuid)
    await ipam.release(db, allocation_id, device_uuid)
    return Response(status_code=204)
