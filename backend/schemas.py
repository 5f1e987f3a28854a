"""
Pydantic v2 request and response schemas for the admin API.

  - *Fields classes: plain field definitions shared by input and output.
  - *Create / *Update classes add validators so bad input is rejected with
    a message the caller can act on.
  - *Response classes carry no validators so stored rows always serialize.

Domain checks that need the database (unknown template ids, overlapping
prefixes) happen in the services; these schemas only check shape.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.template_engine import TEMPLATE_TYPES
from services.var_catalog import IDENTIFIER_RE


def _validate_var_key(value: str) -> str:
    if not IDENTIFIER_RE.match(value):
        raise ValueError(
            f"Invalid variable name '{value}'. "
            "Use letters, digits and underscores, not starting with a digit"
        )
    return value


def _validate_template_type(value: str) -> str:
    lower = value.strip().lower()
    if lower not in TEMPLATE_TYPES:
        raise ValueError(
            f"Invalid template type '{value}'. "
            f"Allowed values: {', '.join(TEMPLATE_TYPES)}"
        )
    return lower


# ═══════════════════════════════════════════════════════════════════════
# VARIABLES
# ═══════════════════════════════════════════════════════════════════════

class VariableUpsert(BaseModel):
    """Single variable upsert. Values are coerced to strings."""

    key: str = Field(..., min_length=1, max_length=128)
    value: Any

    @field_validator("key")
    @classmethod
    def validate_key(cls, v: str) -> str:
        return _validate_var_key(v)

    @field_validator("value")
    @classmethod
    def validate_value(cls, v: Any) -> str:
        if v is None:
            raise ValueError("Value is required")
        if isinstance(v, (dict, list)):
            raise ValueError("Value must be a string, number or boolean")
        return str(v)


# ═══════════════════════════════════════════════════════════════════════
# TEMPLATES
# ═══════════════════════════════════════════════════════════════════════

class TemplateFields(BaseModel):
    """Pure field definitions for templates.  No validators."""

    name: str = Field(..., max_length=255)
    path: str = Field(..., max_length=512)
    body: str = ""
    type: str = "jinja"
    required: bool = False
    default: bool = False


class _TemplateValidators:
    """Mixin-style validators reused by TemplateCreate and TemplateUpdate."""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.strip():
            raise ValueError("Template name cannot be empty")
        return v.strip()

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        if not v.strip().lstrip("/"):
            raise ValueError("Template path cannot be empty")
        return v.strip()

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_template_type(v)


class TemplateCreate(TemplateFields, _TemplateValidators):
    """Schema for creating a template."""
    pass


class TemplateUpdate(BaseModel, _TemplateValidators):
    """Partial update; only fields present in the request change."""

    name: Optional[str] = Field(None, max_length=255)
    path: Optional[str] = Field(None, max_length=512)
    body: Optional[str] = None
    type: Optional[str] = None
    required: Optional[bool] = None
    default: Optional[bool] = None


class TemplateResponse(TemplateFields):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ═══════════════════════════════════════════════════════════════════════
# GROUPS
# ═══════════════════════════════════════════════════════════════════════

class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Group name cannot be empty")
        return v.strip()


class GroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class AssignmentCreate(BaseModel):
    """Attach a template to a group."""

    template_id: int
    order: int = Field(100, ge=-1_000_000, le=1_000_000)
    enabled: bool = True


# ═══════════════════════════════════════════════════════════════════════
# DEVICES
# ═══════════════════════════════════════════════════════════════════════

class DeviceResponse(BaseModel):
    """Device as shown to operators. The device key is never returned."""

    model_config = ConfigDict(from_attributes=True)

    uuid: str
    name: Optional[str] = None
    backend: str
    mac_address: str
    status: Optional[str] = None
    last_seen: Optional[datetime] = None
    last_config_sha: Optional[str] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None


class StatusReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    config_sha: Optional[str] = None
    error: Optional[str] = None
    reported_at: Optional[datetime] = None


class DeviceDetailResponse(DeviceResponse):
    groups: List[GroupResponse] = []
    status_history: List[StatusReportResponse] = []


# ═══════════════════════════════════════════════════════════════════════
# IPAM
# ═══════════════════════════════════════════════════════════════════════

class PrefixCreate(BaseModel):
    cidr: str = Field(..., min_length=1, max_length=64)
    note: Optional[str] = Field(None, max_length=2000)


class PrefixResponse(BaseModel):
    id: int
    cidr: str
    family: int
    parent_id: Optional[int] = None
    note: Optional[str] = None
    prefix_len: int
    network: str
    netmask: Optional[str] = None
    gateway: Optional[str] = None


class PrefixDetailResponse(PrefixResponse):
    children: List[PrefixResponse] = []


class AllocationResponse(BaseModel):
    id: int
    prefix_id: int
    prefix_cidr: str
    device_uuid: str
    address: str
    prefix_len: int
    netmask: Optional[str] = None
    gateway: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════
# CONTROLLER
# ═══════════════════════════════════════════════════════════════════════

class DebugFile(BaseModel):
    path: str
    size: int
    preview: str


class DebugConfigResponse(BaseModel):
    checksum: str
    variables: Dict[str, str]
    missing_required: List[str]
    templates: List[Dict[str, Any]]
    files: List[DebugFile]
