"""
Template catalog, group assignments, device overrides and resolution.

Resolution for a device:
  1. enabled group assignments across the device's groups, sorted by
     (order, template_id)
  2. first occurrence of each template id wins
  3. required/default templates not yet present, ascending id
  4. minus every template the device blocks
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from models import DeviceTemplateOverride, GroupTemplateAssignment, Template
from services.errors import ConflictError, NotFoundError, ValidationError
from services.groups import device_group_ids, get_group
from services.invalidation import invalidate_all, invalidate_devices, invalidate_group
from services.template_engine import TEMPLATE_TYPES, check_syntax
from utils.audit import audit

logger = logging.getLogger(__name__)

DEFAULT_ORDER = 100


@dataclass
class ResolvedTemplate:
    template: Template
    source: str  # group | required | default
    group_id: Optional[int] = None
    order: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.template.id,
            "name": self.template.name,
            "path": self.template.path,
            "type": self.template.type,
            "source": self.source,
            "group_id": self.group_id,
            "order": self.order,
        }


def template_to_dict(template: Template, include_body: bool = True) -> dict[str, Any]:
    data = {
        "id": template.id,
        "name": template.name,
        "path": template.path,
        "type": template.type,
        "required": bool(template.required),
        "default": bool(template.default),
        "created_at": template.created_at.isoformat() if template.created_at else None,
        "updated_at": template.updated_at.isoformat() if template.updated_at else None,
    }
    if include_body:
        data["body"] = template.body
    return data


# ── Validation ───────────────────────────────────────────────────────

def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("template name is required", field="name")
    return name


def _clean_path(path: Optional[str]) -> str:
    cleaned = (path or "").strip().lstrip("/")
    if not cleaned:
        raise ValidationError("template path is required", field="path")
    segments = cleaned.split("/")
    if any(seg in ("", ".", "..") for seg in segments):
        raise ValidationError(
            f"Invalid template path '{path}'. Use a relative path like etc/config/network",
            field="path",
        )
    return cleaned


def _clean_type(template_type: Optional[str]) -> str:
    t = (template_type or "jinja").strip().lower()
    if t not in TEMPLATE_TYPES:
        raise ValidationError(
            f"Invalid template type '{template_type}'. Allowed values: {', '.join(TEMPLATE_TYPES)}",
            field="type",
        )
    return t


def _check_body(body: str) -> None:
    try:
        check_syntax(body)
    except ValueError as e:
        raise ValidationError(str(e), field="body")


# ── Catalog ──────────────────────────────────────────────────────────

async def get_template(db: AsyncSession, template_id: int) -> Template:
    template = await db.get(Template, template_id)
    if template is None:
        raise NotFoundError("template not found", template_id=template_id)
    return template


async def list_templates(db: AsyncSession) -> list[Template]:
    result = await db.execute(select(Template).order_by(Template.id))
    return list(result.scalars().all())


async def create_template(
    db: AsyncSession,
    name: str,
    path: str,
    body: str = "",
    template_type: str = "jinja",
    required: bool = False,
    default: bool = False,
) -> Template:
    template = Template(
        name=_clean_name(name),
        path=_clean_path(path),
        body=body or "",
        type=_clean_type(template_type),
        required=bool(required),
        default=bool(default),
    )
    _check_body(template.body)

    existing = await db.execute(select(Template.id).where(Template.name == template.name))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"template '{template.name}' already exists")

    db.add(template)
    if template.required or template.default:
        await invalidate_all(db)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"template '{template.name}' already exists")
    await db.refresh(template)

    logger.info(f"Created template {template.id} '{template.name}' -> {template.path}")
    audit.log_template_change("CREATE", template.id, template.name)
    return template


async def update_template(db: AsyncSession, template_id: int, changes: dict[str, Any]) -> Template:
    """Apply a partial update. Keys absent from ``changes`` are left alone."""
    template = await get_template(db, template_id)

    if "name" in changes:
        name = _clean_name(changes["name"])
        if name != template.name:
            clash = await db.execute(
                select(Template.id).where(Template.name == name, Template.id != template_id)
            )
            if clash.scalar_one_or_none() is not None:
                raise ConflictError(f"template '{name}' already exists")
        template.name = name
    if "path" in changes:
        template.path = _clean_path(changes["path"])
    if "type" in changes:
        template.type = _clean_type(changes["type"])
    if "body" in changes:
        body = changes["body"] or ""
        _check_body(body)
        template.body = body
    if "required" in changes:
        template.required = bool(changes["required"])
    if "default" in changes:
        template.default = bool(changes["default"])

    await invalidate_all(db)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(f"template '{changes.get('name')}' already exists")
    await db.refresh(template)

    logger.info(f"Updated template {template.id} ({', '.join(sorted(changes)) or 'no fields'})")
    audit.log_template_change("UPDATE", template.id, template.name)
    return template


async def delete_template(db: AsyncSession, template_id: int) -> None:
    """Delete a template together with its assignments and overrides."""
    template = await get_template(db, template_id)
    await db.execute(
        delete(GroupTemplateAssignment).where(GroupTemplateAssignment.template_id == template_id)
    )
    await db.execute(
        delete(DeviceTemplateOverride).where(DeviceTemplateOverride.template_id == template_id)
    )
    await db.delete(template)
    await invalidate_all(db)
    await db.commit()

    logger.info(f"Deleted template {template_id} '{template.name}'")
    audit.log_template_change("DELETE", template_id, template.name)


# ── Group assignments ────────────────────────────────────────────────

async def assign_to_group(
    db: AsyncSession,
    group_id: int,
    template_id: Optional[int],
    order: Optional[int] = None,
    enabled: Optional[bool] = None,
) -> tuple[GroupTemplateAssignment, bool]:
    """Create or replace the assignment of a template to a group."""
    await get_group(db, group_id)
    if template_id is None or await db.get(Template, template_id) is None:
        raise ValidationError(f"unknown template {template_id}", field="template_id")

    result = await db.execute(
        select(GroupTemplateAssignment).where(
            GroupTemplateAssignment.group_id == group_id,
            GroupTemplateAssignment.template_id == template_id,
        )
    )
    assignment = result.scalar_one_or_none()
    created = assignment is None
    if created:
        assignment = GroupTemplateAssignment(group_id=group_id, template_id=template_id)
        db.add(assignment)
    assignment.order = DEFAULT_ORDER if order is None else order
    assignment.enabled = True if enabled is None else bool(enabled)

    await invalidate_group(db, group_id)
    await db.commit()
    await db.refresh(assignment)

    audit.log_assignment_change(
        "ASSIGN" if created else "UPDATE", group_id, template_id, assignment.order, assignment.enabled
    )
    return assignment, created


async def list_group_assignments(db: AsyncSession, group_id: int) -> list[dict[str, Any]]:
    await get_group(db, group_id)
    result = await db.execute(
        select(GroupTemplateAssignment, Template)
        .join(Template, Template.id == GroupTemplateAssignment.template_id)
        .where(GroupTemplateAssignment.group_id == group_id)
        .order_by(GroupTemplateAssignment.order, GroupTemplateAssignment.template_id)
    )
    return [
        {
            "group_id": assignment.group_id,
            "template_id": template.id,
            "name": template.name,
            "order": assignment.order,
            "enabled": assignment.enabled,
        }
        for assignment, template in result.all()
    ]


async def unassign_from_group(db: AsyncSession, group_id: int, template_id: int) -> None:
    result = await db.execute(
        select(GroupTemplateAssignment).where(
            GroupTemplateAssignment.group_id == group_id,
            GroupTemplateAssignment.template_id == template_id,
        )
    )
    assignment = result.scalar_one_or_none()
    if assignment is None:
        raise NotFoundError("template is not assigned to this group", group_id=group_id)
    await invalidate_group(db, group_id)
    await db.delete(assignment)
    await db.commit()
    audit.log_assignment_change("UNASSIGN", group_id, template_id)


# ── Device overrides ─────────────────────────────────────────────────

async def block_template(db: AsyncSession, device_uuid: str, template_id: int) -> DeviceTemplateOverride:
    await get_template(db, template_id)
    result = await db.execute(
        select(DeviceTemplateOverride).where(
            DeviceTemplateOverride.device_uuid == device_uuid,
            DeviceTemplateOverride.template_id == template_id,
        )
    )
    override = result.scalar_one_or_none()
    if override is None:
        override = DeviceTemplateOverride(device_uuid=device_uuid, template_id=template_id)
        db.add(override)
    override.blocked = True

    await invalidate_devices(db, [device_uuid])
    await db.commit()

    logger.info(f"Blocked template {template_id} for device {device_uuid}")
    audit.log_override_change("BLOCK", device_uuid, template_id)
    return override


async def unblock_template(db: AsyncSession, device_uuid: str, template_id: int) -> bool:
    """Drop the override row. Does not add the template by itself."""
    await get_template(db, template_id)
    result = await db.execute(
        delete(DeviceTemplateOverride).where(
            DeviceTemplateOverride.device_uuid == device_uuid,
            DeviceTemplateOverride.template_id == template_id,
        )
    )
    removed = result.rowcount > 0
    if removed:
        await invalidate_devices(db, [device_uuid])
    await db.commit()

    if removed:
        logger.info(f"Unblocked template {template_id} for device {device_uuid}")
        audit.log_override_change("UNBLOCK", device_uuid, template_id)
    return removed


async def blocked_template_ids(db: AsyncSession, device_uuid: str) -> set[int]:
    result = await db.execute(
        select(DeviceTemplateOverride.template_id).where(
            DeviceTemplateOverride.device_uuid == device_uuid,
            DeviceTemplateOverride.blocked.is_(True),
        )
    )
    return set(result.scalars().all())


# ── Resolution ───────────────────────────────────────────────────────

async def resolve_templates(db: AsyncSession, device_uuid: str) -> list[ResolvedTemplate]:
    group_ids = await device_group_ids(db, device_uuid)

    resolved: list[ResolvedTemplate] = []
    seen: set[int] = set()

    if group_ids:
        result = await db.execute(
            select(GroupTemplateAssignment, Template)
            .join(Template, Template.id == GroupTemplateAssignment.template_id)
            .where(
                GroupTemplateAssignment.group_id.in_(group_ids),
                GroupTemplateAssignment.enabled.is_(True),
            )
            .order_by(
                GroupTemplateAssignment.order,
                GroupTemplateAssignment.template_id,
                GroupTemplateAssignment.group_id,
            )
        )
        for assignment, template in result.all():
            if template.id in seen:
                continue
            seen.add(template.id)
            resolved.append(
                ResolvedTemplate(template, "group", assignment.group_id, assignment.order)
            )

    result = await db.execute(
        select(Template)
        .where(or_(Template.required.is_(True), Template.default.is_(True)))
        .order_by(Template.id)
    )
    for template in result.scalars().all():
        if template.id in seen:
            continue
        seen.add(template.id)
        resolved.append(ResolvedTemplate(template, "required" if template.required else "default"))

    blocked = await blocked_template_ids(db, device_uuid)
    return [entry for entry in resolved if entry.template.id not in blocked]


async def list_device_templates(db: AsyncSession, device_uuid: str) -> dict[str, Any]:
    """Unresolved view: every group assignment reaching the device plus its overrides."""
    group_ids = await device_group_ids(db, device_uuid)
    blocked = await blocked_template_ids(db, device_uuid)

    assignments = []
    if group_ids:
        result = await db.execute(
            select(GroupTemplateAssignment, Template)
            .join(Template, Template.id == GroupTemplateAssignment.template_id)
            .where(GroupTemplateAssignment.group_id.in_(group_ids))
            .order_by(
                GroupTemplateAssignment.group_id,
                GroupTemplateAssignment.order,
                GroupTemplateAssignment.template_id,
            )
        )
        assignments = [
            {
                "template_id": template.id,
                "name": template.name,
                "path": template.path,
                "group_id": assignment.group_id,
                "order": assignment.order,
                "enabled": assignment.enabled,
                "blocked": template.id in blocked,
            }
            for assignment, template in result.all()
        ]

    result = await db.execute(
        select(DeviceTemplateOverride)
        .where(DeviceTemplateOverride.device_uuid == device_uuid)
        .order_by(DeviceTemplateOverride.template_id)
    )
    overrides = [
        {"template_id": o.template_id, "blocked": o.blocked}
        for o in result.scalars().all()
    ]
    return {"assignments": assignments, "overrides": overrides}
