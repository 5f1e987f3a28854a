"""
Template catalog endpoints.

Bodies are syntax-checked on create and update; undefined variables are
only detected at render time, since they depend on the device.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from schemas import TemplateCreate, TemplateResponse, TemplateUpdate
from services import templates

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/templates", tags=["templates"])


@router.get("", response_model=list[TemplateResponse])
async def list_templates(db: AsyncSession = Depends(get_db)):
    return await templates.list_templates(db)


@router.post("", response_model=TemplateResponse, status_code=201)
async def create_template(payload: TemplateCreate, db: AsyncSession = Depends(get_db)):
    return await templates.create_template(
        db,
        name=payload.name,
        path=payload.path,
        body=payload.body,
        template_type=payload.type,
        required=payload.required,
        default=payload.default,
    )


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(template_id: int, db: AsyncSession = Depends(get_db)):
    return await templates.get_template(db, template_id)


@router.put("/{template_id}", response_model=TemplateResponse)
async def replace_template(template_id: int, payload: TemplateCreate, db: AsyncSession = Depends(get_db)):
    return await templates.update_template(db, template_id, payload.model_dump())


@router.patch("/{template_id}", response_model=TemplateResponse)
async def update_template(template_id: int, payload: TemplateUpdate, db: AsyncSession = Depends(get_db)):
    return await templates.update_template(db, template_id, payload.model_dump(exclude_unset=True))


@router.delete("/{template_id}", status_code=204)
async def delete_template(template_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a template along with its group assignments and device blocks."""
    await templates.delete_template(db, template_id)
    return Response(status_code=204)
