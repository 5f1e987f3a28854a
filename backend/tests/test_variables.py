"""
Variable store and resolver tests.

Covers:
- Device > group precedence, group ties broken by ascending group id
- Catalog normalization on write
- Bulk upserts are all-or-nothing
- Admin API for device and group variables
"""

import pytest
from httpx import AsyncClient

from config import settings
from services import groups, variables
from services.errors import ValidationError


class TestResolution:
    """Merged variables for a device."""

    @pytest.mark.asyncio
    async def test_device_value_overrides_group(self, db_session, device):
        group, _ = await groups.create_group(db_session, "site")
        await groups.add_member(db_session, device.uuid, group.id)
        await variables.upsert_group_variables(db_session, group.id, {"hostname": "bar"})
        await variables.upsert_device_variables(db_session, device.uuid, {"hostname": "foo"})

        resolved = await variables.resolve(db_session, device.uuid)
        assert resolved["hostname"] == "foo"

    @pytest.mark.asyncio
    async def test_higher_group_id_wins(self, db_session, device):
        g1, _ = await groups.create_group(db_session, "g1")
        g2, _ = await groups.create_group(db_session, "g2")
        assert g1.id < g2.id
        # Join in reverse order; membership order must not matter
        await groups.add_member(db_session, device.uuid, g2.id)
        await groups.add_member(db_session, device.uuid, g1.id)
        await variables.upsert_group_variables(db_session, g1.id, {"x": "1"})
        await variables.upsert_group_variables(db_session, g2.id, {"x": "2"})

        resolved = await variables.resolve(db_session, device.uuid)
        assert resolved["x"] == "2"

    @pytest.mark.asyncio
    async def test_device_value_beats_both_groups(self, db_session, device):
        g1, _ = await groups.create_group(db_session, "g1")
        g2, _ = await groups.create_group(db_session, "g2")
        await groups.add_member(db_session, device.uuid, g1.id)
        await groups.add_member(db_session, device.uuid, g2.id)
        await variables.upsert_group_variables(db_session, g1.id, {"x": "1"})
        await variables.upsert_group_variables(db_session, g2.id, {"x": "2"})
        await variables.upsert_device_variables(db_session, device.uuid, {"x": "3"})

        resolved = await variables.resolve(db_session, device.uuid)
        assert resolved["x"] == "3"

    @pytest.mark.asyncio
    async def test_non_member_group_is_ignored(self, db_session, device):
        group, _ = await groups.create_group(db_session, "other")
        await variables.upsert_group_variables(db_session, group.id, {"x": "1"})
        assert await variables.resolve(db_session, device.uuid) == {}

    @pytest.mark.asyncio
    async def test_group_keys_merge(self, db_session, device):
        g1, _ = await groups.create_group(db_session, "g1")
        g2, _ = await groups.create_group(db_session, "g2")
        await groups.add_member(db_session, device.uuid, g1.id)
        await groups.add_member(db_session, device.uuid, g2.id)
        await variables.upsert_group_variables(db_session, g1.id, {"a": "1"})
        await variables.upsert_group_variables(db_session, g2.id, {"b": "2"})

        assert await variables.resolve(db_session, device.uuid) == {"a": "1", "b": "2"}


class TestUpsert:
    """Writes through the variable service."""

    @pytest.mark.asyncio
    async def test_upsert_replaces_value(self, db_session, device):
        await variables.upsert_device_variables(db_session, device.uuid, {"x": "1"})
        result = await variables.upsert_device_variables(db_session, device.uuid, {"x": "2"})
        assert result == {"x": "2"}

    @pytest.mark.asyncio
    async def test_catalog_values_are_normalized(self, db_session, device):
        result = await variables.upsert_device_variables(
            db_session,
            device.uuid,
            {"hostname": "AP-01", "ipv6_enable": "yes", "ipv4_netmask": "24", "dns_servers": "1.1.1.1, 8.8.8.8"},
        )
        assert result["hostname"] == "ap-01"
        assert result["ipv6_enable"] == "1"
        assert result["ipv4_netmask"] == "255.255.255.0"
        assert result["dns_servers"] == "1.1.1.1,8.8.8.8"

    @pytest.mark.asyncio
    async def test_bulk_is_all_or_nothing(self, db_session, device):
        with pytest.raises(ValidationError) as excinfo:
            await variables.upsert_device_variables(
                db_session, device.uuid, {"hostname": "ok", "wifi_psk": "short"}
            )
        assert [e["field"] for e in excinfo.value.errors] == ["wifi_psk"]
        assert await variables.device_variables(db_session, device.uuid) == {}

    @pytest.mark.asyncio
    async def test_invalid_key_rejected(self, db_session, device):
        with pytest.raises(ValidationError):
            await variables.upsert_device_variables(db_session, device.uuid, {"bad-key": "1"})

    @pytest.mark.asyncio
    async def test_strict_catalog_rejects_unknown_keys(self, db_session, device, monkeypatch):
        monkeypatch.setattr(settings, "STRICT_VARIABLE_CATALOG", True)
        with pytest.raises(ValidationError):
            await variables.upsert_device_variables(db_session, device.uuid, {"custom": "1"})

    @pytest.mark.asyncio
    async def test_empty_bulk_rejected(self, db_session, device):
        with pytest.raises(ValidationError):
            await variables.upsert_device_variables(db_session, device.uuid, {})


class TestVariablesAPI:
    """/api/v1/devices/{uuid}/vars and /api/v1/groups/{gid}/vars"""

    @pytest.mark.asyncio
    async def test_set_and_get_device_vars(self, async_client: AsyncClient, register_device):
        dev = await register_device()
        response = await async_client.post(
            f"/api/v1/devices/{dev['uuid']}/vars", json={"key": "lan_vlan_id", "value": 10}
        )
        assert response.status_code == 200
        assert response.json() == {"lan_vlan_id": "10"}

        response = await async_client.get(f"/api/v1/devices/{dev['uuid']}/vars")
        assert response.json() == {"lan_vlan_id": "10"}

    @pytest.mark.asyncio
    async def test_bulk_device_vars(self, async_client: AsyncClient, register_device):
        dev = await register_device()
        response = await async_client.post(
            f"/api/v1/devices/{dev['uuid']}/vars/bulk",
            json={"hostname": "Edge", "wan_proto": "DHCP", "site_code": "mil1"},
        )
        assert response.status_code == 200
        assert response.json() == {"hostname": "edge", "site_code": "mil1", "wan_proto": "dhcp"}

    @pytest.mark.asyncio
    async def test_bulk_errors_listed(self, async_client: AsyncClient, register_device):
        dev = await register_device()
        response = await async_client.post(
            f"/api/v1/devices/{dev['uuid']}/vars/bulk",
            json={"wan_proto": "carrier-pigeon", "ipv4_address": "999.1.1.1", "ok": "1"},
        )
        assert response.status_code == 422
        body = response.json()
        assert body["title"] == "Validation failed"
        assert sorted(e["field"] for e in body["errors"]) == ["ipv4_address", "wan_proto"]

        current = await async_client.get(f"/api/v1/devices/{dev['uuid']}/vars")
        assert current.json() == {}

    @pytest.mark.asyncio
    async def test_delete_device_var(self, async_client: AsyncClient, register_device):
        dev = await register_device()
        await async_client.post(f"/api/v1/devices/{dev['uuid']}/vars", json={"key": "x", "value": "1"})
        response = await async_client.delete(f"/api/v1/devices/{dev['uuid']}/vars/x")
        assert response.status_code == 204
        response = await async_client.delete(f"/api/v1/devices/{dev['uuid']}/vars/x")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_resolved_vars_endpoint(self, async_client: AsyncClient, register_device, create_group):
        dev = await register_device()
        gid = await create_group("site")
        await async_client.post(f"/api/v1/devices/{dev['uuid']}/groups/{gid}")
        await async_client.post(f"/api/v1/groups/{gid}/vars", json={"key": "hostname", "value": "bar"})
        await async_client.post(f"/api/v1/groups/{gid}/vars", json={"key": "ntp_servers", "value": "pool.ntp.org"})
        await async_client.post(f"/api/v1/devices/{dev['uuid']}/vars", json={"key": "hostname", "value": "foo"})

        response = await async_client.get(f"/api/v1/devices/{dev['uuid']}/vars/resolved")
        assert response.json() == {"hostname": "foo", "ntp_servers": "pool.ntp.org"}

    @pytest.mark.asyncio
    async def test_vars_for_unknown_device_is_404(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/devices/nope/vars")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_malformed_single_upsert_is_422(self, async_client: AsyncClient, register_device):
        dev = await register_device()
        response = await async_client.post(f"/api/v1/devices/{dev['uuid']}/vars", json={"value": "1"})
        assert response.status_code == 422
        assert response.json()["errors"][0]["field"] == "key"

    @pytest.mark.asyncio
    async def test_catalog_endpoint(self, async_client: AsyncClient):
        response = await async_client.get("/api/v1/vars/catalog")
        assert response.status_code == 200
        entries = {v["key"]: v for v in response.json()["variables"]}
        assert entries["hostname"]["required"] is True
        assert entries["ipv4_address"]["conditional"] is True
        assert entries["wifi_psk"]["type"] == "string"
