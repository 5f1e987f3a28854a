"""Variable catalog endpoint."""

from typing import Any, Dict

from fastapi import APIRouter

from config import settings
from services.var_catalog import CATALOG

router = APIRouter(prefix="/api/v1/vars", tags=["variables"])


@router.get("/catalog")
async def get_catalog() -> Dict[str, Any]:
    """Well-known variable keys with type, example and requirement."""
    return {
        "strict": settings.STRICT_VARIABLE_CATALOG,
        "variables": [definition.to_dict() for definition in CATALOG],
    }
