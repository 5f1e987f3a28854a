"""
Tests for the Pydantic request schemas.

Covers:
- VariableUpsert key and value coercion
- TemplateCreate / TemplateUpdate validators
- GroupCreate, AssignmentCreate and PrefixCreate bounds
- Response schemas built from ORM-like objects
"""

from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from schemas import (
    AssignmentCreate,
    GroupCreate,
    PrefixCreate,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
    VariableUpsert,
)


# ============================================================================
# VariableUpsert
# ============================================================================

class TestVariableUpsert:
    @pytest.mark.parametrize("value, stored", [("eth0", "eth0"), (5, "5"), (True, "True"), (1.5, "1.5")])
    def test_scalars_become_strings(self, value, stored):
        assert VariableUpsert(key="wan_iface", value=value).value == stored

    @pytest.mark.parametrize("value", [None, {"a": 1}, ["a"]])
    def test_rejected_values(self, value):
        with pytest.raises(ValidationError):
            VariableUpsert(key="x", value=value)

    @pytest.mark.parametrize("key", ["1abc", "with-dash", "has space", ""])
    def test_rejected_keys(self, key):
        with pytest.raises(ValidationError):
            VariableUpsert(key=key, value="v")


# ============================================================================
# Templates
# ============================================================================

class TestTemplateCreate:
    def test_defaults(self):
        t = TemplateCreate(name="base", path="etc/config/system")
        assert t.type == "jinja"
        assert t.body == ""
        assert t.required is False
        assert t.default is False

    def test_type_is_lowercased(self):
        assert TemplateCreate(name="n", path="p", type="NetJSON").type == "netjson"

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc_info:
            TemplateCreate(name="n", path="p", type="mustache")
        assert "Allowed values" in str(exc_info.value)

    def test_blank_name(self):
        with pytest.raises(ValidationError):
            TemplateCreate(name="   ", path="p")

    def test_root_only_path(self):
        with pytest.raises(ValidationError):
            TemplateCreate(name="n", path="/")

    def test_name_is_stripped(self):
        assert TemplateCreate(name="  base ", path="p").name == "base"


class TestTemplateUpdate:
    def test_partial_update_only_sets_given_fields(self):
        update = TemplateUpdate(body="new")
        assert update.model_dump(exclude_unset=True) == {"body": "new"}

    def test_validators_still_apply(self):
        with pytest.raises(ValidationError):
            TemplateUpdate(type="xml")


class TestTemplateResponse:
    def test_from_orm_like_object(self):
        row = SimpleNamespace(
            id=3, name="base", path="etc/x", body="", type="jinja",
            required=True, default=False, created_at=None, updated_at=None,
        )
        response = TemplateResponse.model_validate(row)
        assert response.id == 3
        assert response.required is True


# ============================================================================
# Groups, assignments, prefixes
# ============================================================================

class TestOtherInputs:
    def test_group_name_required(self):
        with pytest.raises(ValidationError):
            GroupCreate(name="")

    def test_assignment_defaults(self):
        a = AssignmentCreate(template_id=7)
        assert a.order == 100
        assert a.enabled is True

    def test_assignment_order_bounds(self):
        with pytest.raises(ValidationError):
            AssignmentCreate(template_id=7, order=10_000_000)

    def test_prefix_cidr_required(self):
        with pytest.raises(ValidationError):
            PrefixCreate(cidr="")
