"""
Group and membership tests.

Covers:
- Create-or-get semantics for groups
- Membership add/remove over the service and the API
- Group detail with members and device detail with groups
"""

import pytest
from httpx import AsyncClient

from services import groups
from services.errors import NotFoundError, ValidationError


class TestGroupService:
    @pytest.mark.asyncio
    async def test_create_is_idempotent_by_name(self, db_session):
        first, created = await groups.create_group(db_session, "branch")
        again, created_again = await groups.create_group(db_session, " branch ")
        assert created is True
        assert created_again is False
        assert again.id == first.id

    @pytest.mark.asyncio
    async def test_blank_name(self, db_session):
        with pytest.raises(ValidationError):
            await groups.create_group(db_session, "  ")

    @pytest.mark.asyncio
    async def test_membership(self, db_session, device):
        a, _ = await groups.create_group(db_session, "a")
        b, _ = await groups.create_group(db_session, "b")

        assert await groups.add_member(db_session, device.uuid, b.id) is True
        assert await groups.add_member(db_session, device.uuid, a.id) is True
        assert await groups.add_member(db_session, device.uuid, a.id) is False
        assert await groups.device_group_ids(db_session, device.uuid) == [a.id, b.id]

        await groups.remove_member(db_session, device.uuid, a.id)
        assert await groups.device_group_ids(db_session, device.uuid) == [b.id]

    @pytest.mark.asyncio
    async def test_remove_non_member(self, db_session, device):
        group, _ = await groups.create_group(db_session, "a")
        with pytest.raises(NotFoundError):
            await groups.remove_member(db_session, device.uuid, group.id)

    @pytest.mark.asyncio
    async def test_unknown_group(self, db_session, device):
        with pytest.raises(NotFoundError):
            await groups.add_member(db_session, device.uuid, 999)


class TestGroupsAPI:
    """/api/v1/groups and device membership endpoints."""

    @pytest.mark.asyncio
    async def test_create_then_existing(self, async_client: AsyncClient):
        first = await async_client.post("/api/v1/groups", json={"name": "branch", "description": "Branch APs"})
        assert first.status_code == 201
        again = await async_client.post("/api/v1/groups", json={"name": "branch"})
        assert again.status_code == 200
        assert again.json()["id"] == first.json()["id"]

        listing = await async_client.get("/api/v1/groups")
        assert [g["name"] for g in listing.json()] == ["branch"]

    @pytest.mark.asyncio
    async def test_membership_flow(self, async_client: AsyncClient, register_device, create_group):
        dev = await register_device()
        gid = await create_group("branch")

        added = await async_client.post(f"/api/v1/devices/{dev['uuid']}/groups/{gid}")
        assert added.status_code == 201
        repeated = await async_client.post(f"/api/v1/devices/{dev['uuid']}/groups/{gid}")
        assert repeated.status_code == 200

        detail = await async_client.get(f"/api/v1/groups/{gid}")
        assert [m["uuid"] for m in detail.json()["members"]] == [dev["uuid"]]

        device_groups = await async_client.get(f"/api/v1/devices/{dev['uuid']}/groups")
        assert [g["id"] for g in device_groups.json()] == [gid]

        device_detail = await async_client.get(f"/api/v1/devices/{dev['uuid']}")
        assert [g["name"] for g in device_detail.json()["groups"]] == ["branch"]

        removed = await async_client.delete(f"/api/v1/devices/{dev['uuid']}/groups/{gid}")
        assert removed.status_code == 204
        detail = await async_client.get(f"/api/v1/groups/{gid}")
        assert detail.json()["members"] == []

    @pytest.mark.asyncio
    async def test_unknown_group_is_404(self, async_client: AsyncClient, register_device):
        dev = await register_device()
        response = await async_client.post(f"/api/v1/devices/{dev['uuid']}/groups/999")
        assert response.status_code == 404
        assert response.headers["content-type"].startswith("application/problem+json")

    @pytest.mark.asyncio
    async def test_device_list(self, async_client: AsyncClient, register_device):
        await register_device(mac="aa:bb:cc:dd:ee:01", name="one")
        await register_device(mac="aa:bb:cc:dd:ee:02", name="two")
        response = await async_client.get("/api/v1/devices")
        assert sorted(d["name"] for d in response.json()) == ["one", "two"]
