"""
IP address management.

Prefixes form a forest: roots are created explicitly, children are carved
from their parent by an ascending first-fit scan, and addresses are handed
to devices by an ascending scan of a prefix's usable range. All decisions
inside one tree are serialized by a lock keyed on the tree's root, and the
unique constraints on ``cidr`` and ``address`` back that up across
processes.

Assigned values are written back as ordinary variables so templates can
use them like any other.
"""

import logging
from ipaddress import ip_address, ip_network
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from models import GroupPrefix, IPAllocation, IPPrefix
from services.errors import AllocationExhausted, ConflictError, NotFoundError, ValidationError
from services.groups import get_group
from services.variables import remove_device_variables_if, write_device_variables, write_group_variables
from utils.audit import audit
from utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

_tree_locks = KeyedLocks()
_ROOTS_KEY = "roots"


# ── Address arithmetic ───────────────────────────────────────────────

def _address(net, value: int):
    """Integer to an address of the same family as ``net``."""
    return type(net.network_address)(value)


def parse_cidr(cidr: Optional[str]):
    try:
        return ip_network((cidr or "").strip(), strict=False)
    except ValueError:
        raise ValidationError(
            f"Invalid CIDR '{cidr}'. Expected e.g. 10.0.0.0/16 or 2001:db8::/48",
            field="cidr",
        )


def usable_range(net) -> tuple[int, int]:
    """
    First and last assignable address of a prefix, as integers.

    IPv4 drops the network and broadcast addresses except on /31 and /32.
    IPv6 drops the subnet-router anycast address except on /127 and /128.
    """
    first = int(net.network_address)
    last = int(net.broadcast_address)
    if net.version == 4:
        if net.prefixlen < 31:
            first, last = first + 1, last - 1
    elif net.prefixlen < 127:
        first += 1
    return first, last


def gateway_of(net) -> Optional[str]:
    """Reserved gateway address, when gateway reservation is on."""
    if not settings.IPAM_RESERVE_GATEWAY:
        return None
    first, last = usable_range(net)
    if last <= first:
        return None
    return str(_address(net, first))


def _address_vars(net, address: str) -> dict[str, str]:
    gateway = gateway_of(net)
    if net.version == 4:
        values = {"ipv4_address": address, "ipv4_netmask": str(net.netmask)}
        if gateway:
            values["ipv4_gateway"] = gateway
    else:
        values = {"ipv6_address": address, "ipv6_prefixlen": str(net.prefixlen)}
        if gateway:
            values["ipv6_gateway"] = gateway
    return values


def prefix_to_dict(prefix: IPPrefix) -> dict[str, Any]:
    net = ip_network(prefix.cidr)
    data = {
        "id": prefix.id,
        "cidr": prefix.cidr,
        "family": prefix.family,
        "parent_id": prefix.parent_id,
        "note": prefix.note,
        "prefix_len": net.prefixlen,
        "network": str(net.network_address),
    }
    if net.version == 4:
        data["netmask"] = str(net.netmask)
    gateway = gateway_of(net)
    if gateway:
        data["gateway"] = gateway
    return data


def allocation_to_dict(allocation: IPAllocation, prefix: IPPrefix) -> dict[str, Any]:
    net = ip_network(prefix.cidr)
    return {
        "id": allocation.id,
        "prefix_id": prefix.id,
        "prefix_cidr": prefix.cidr,
        "device_uuid": allocation.device_uuid,
        "address": allocation.address,
        "prefix_len": net.prefixlen,
        "netmask": str(net.netmask) if net.version == 4 else None,
        "gateway": gateway_of(net),
    }


# ── Lookups ──────────────────────────────────────────────────────────

async def get_prefix(db: AsyncSession, prefix_id: int) -> IPPrefix:
    prefix = await db.get(IPPrefix, prefix_id)
    if prefix is None:
        raise NotFoundError("prefix not found", prefix_id=prefix_id)
    return prefix


async def tree_root_id(db: AsyncSession, prefix: IPPrefix) -> int:
    node = prefix
    while node.parent_id is not None:
        node = await get_prefix(db, node.parent_id)
    return node.id


async def list_prefixes(db: AsyncSession) -> list[IPPrefix]:
    result = await db.execute(select(IPPrefix).order_by(IPPrefix.id))
    return list(result.scalars().all())


async def children_of(db: AsyncSession, prefix_id: int) -> list[IPPrefix]:
    result = await db.execute(
        select(IPPrefix).where(IPPrefix.parent_id == prefix_id).order_by(IPPrefix.id)
    )
    children = list(result.scalars().all())
    children.sort(key=lambda p: int(ip_network(p.cidr).network_address))
    return children


async def group_prefixes(db: AsyncSession, group_id: int) -> list[IPPrefix]:
    await get_group(db, group_id)
    result = await db.execute(
        select(IPPrefix)
        .join(GroupPrefix, GroupPrefix.prefix_id == IPPrefix.id)
        .where(GroupPrefix.group_id == group_id)
        .order_by(GroupPrefix.id)
    )
    return list(result.scalars().all())


# ── Prefixes ─────────────────────────────────────────────────────────

async def create_root(db: AsyncSession, cidr: str, note: Optional[str] = None) -> IPPrefix:
    net = parse_cidr(cidr)

    async with _tree_locks.hold(_ROOTS_KEY):
        result = await db.execute(
            select(IPPrefix).where(IPPrefix.parent_id.is_(None), IPPrefix.family == net.version)
        )
        for root in result.scalars().all():
            if ip_network(root.cidr).overlaps(net):
                raise ConflictError(
                    f"{net} overlaps existing prefix {root.cidr}",
                    prefix_id=root.id,
                )

        prefix = IPPrefix(cidr=str(net), family=net.version, parent_id=None, note=note)
        db.add(prefix)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"prefix {net} already exists")
        await db.refresh(prefix)

    logger.info(f"Created root prefix {prefix.id} {prefix.cidr}")
    audit.log_allocation("IPPrefix", str(prefix.id), prefix.cidr, {"root": True})
    return prefix


async def _carve_child(db: AsyncSession, parent: IPPrefix, new_prefix_len: int, note: Optional[str]) -> IPPrefix:
    """First-fit aligned block inside ``parent``. Caller holds the tree lock."""
    pnet = ip_network(parent.cidr)
    if new_prefix_len is None or new_prefix_len < 0 or new_prefix_len > pnet.max_prefixlen:
        raise ValidationError(
            f"prefix length must be between 0 and {pnet.max_prefixlen}",
            field="new_prefix_len",
        )
    if new_prefix_len < pnet.prefixlen:
        raise AllocationExhausted(f"a /{new_prefix_len} does not fit inside {pnet}")
    if new_prefix_len == pnet.prefixlen:
        raise ValidationError(
            f"a child of {pnet} must be longer than /{pnet.prefixlen}",
            field="new_prefix_len",
        )

    size = 1 << (pnet.max_prefixlen - new_prefix_len)
    cursor = int(pnet.network_address)
    end = int(pnet.broadcast_address)

    for child in await children_of(db, parent.id):
        cnet = ip_network(child.cidr)
        child_start = int(cnet.network_address)
        child_end = int(cnet.broadcast_address)
        if cursor + size - 1 < child_start:
            break
        if child_end >= cursor:
            # Next aligned boundary past this child
            cursor = ((child_end + 1 + size - 1) // size) * size

    if cursor + size - 1 > end:
        raise AllocationExhausted(f"no free /{new_prefix_len} left in {pnet}", prefix_id=parent.id)

    child_net = type(pnet)((cursor, new_prefix_len))
    child = IPPrefix(cidr=str(child_net), family=pnet.version, parent_id=parent.id, note=note)
    db.add(child)
    await db.flush()
    return child


async def assign_child(
    db: AsyncSession,
    parent_id: int,
    new_prefix_len: int,
    note: Optional[str] = None,
) -> IPPrefix:
    parent = await get_prefix(db, parent_id)
    root_id = await tree_root_id(db, parent)
    parent_cidr = parent.cidr

    async with _tree_locks.hold(root_id):
        try:
            child = await _carve_child(db, parent, new_prefix_len, note)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"concurrent allocation under prefix {parent_cidr}")

    logger.info(f"Allocated {child.cidr} under {parent_cidr}")
    audit.log_allocation("IPPrefix", str(child.id), child.cidr, {"parent_id": parent_id})
    return child


async def assign_prefix_to_group(
    db: AsyncSession,
    group_id: int,
    parent_id: int,
    new_prefix_len: int,
    note: Optional[str] = None,
) -> IPPrefix:
    """Carve a child prefix, delegate it to a group and publish it as group variables."""
    group = await get_group(db, group_id)
    parent = await get_prefix(db, parent_id)
    root_id = await tree_root_id(db, parent)
    parent_cidr = parent.cidr

    async with _tree_locks.hold(root_id):
        try:
            child = await _carve_child(db, parent, new_prefix_len, note or f"group {group.name}")
            db.add(GroupPrefix(group_id=group_id, prefix_id=child.id))

            net = ip_network(child.cidr)
            values = {
                "ipam_group_prefix_cidr": str(net),
                "ipam_group_prefix_len": str(net.prefixlen),
                "ipam_group_prefix_network": str(net.network_address),
            }
            if net.version == 4:
                values["ipam_group_prefix_netmask"] = str(net.netmask)
            gateway = gateway_of(net)
            if gateway:
                values["ipam_group_prefix_gw"] = gateway
            await write_group_variables(db, group_id, values)
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"concurrent allocation under prefix {parent_cidr}")

    logger.info(f"Delegated {child.cidr} to group {group_id}")
    audit.log_allocation("GroupPrefix", str(group_id), child.cidr, {"prefix_id": child.id})
    return child


# ── Addresses ────────────────────────────────────────────────────────

async def _taken_addresses(db: AsyncSession, net) -> set[int]:
    result = await db.execute(
        select(IPAllocation.address)
        .join(IPPrefix, IPPrefix.id == IPAllocation.prefix_id)
        .where(IPPrefix.family == net.version)
    )
    taken = set()
    for (address,) in result.all():
        addr = ip_address(address)
        if addr in net:
            taken.add(int(addr))
    return taken


async def assign_address(db: AsyncSession, prefix_id: int, device_uuid: str) -> dict[str, Any]:
    prefix = await get_prefix(db, prefix_id)
    net = ip_network(prefix.cidr)
    root_id = await tree_root_id(db, prefix)

    async with _tree_locks.hold(root_id):
        first, last = usable_range(net)
        if gateway_of(net):
            first += 1

        taken = await _taken_addresses(db, net)
        candidate = first
        while candidate <= last and candidate in taken:
            candidate += 1
        if candidate > last:
            raise AllocationExhausted(f"no free address left in {net}", prefix_id=prefix.id)

        address = str(_address(net, candidate))
        allocation = IPAllocation(prefix_id=prefix.id, device_uuid=device_uuid, address=address)
        db.add(allocation)
        try:
            await db.flush()
            await write_device_variables(db, device_uuid, _address_vars(net, address))
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ConflictError(f"address {address} was taken concurrently")
        await db.refresh(allocation)

    logger.info(f"Assigned {address} from {net} to device {device_uuid}")
    audit.log_allocation("IPAllocation", str(allocation.id), address, {"device_uuid": device_uuid})
    return allocation_to_dict(allocation, prefix)


async def assign_address_by_group(db: AsyncSession, group_id: int, device_uuid: str) -> dict[str, Any]:
    """Allocate from the group's first delegated prefix."""
    prefixes = await group_prefixes(db, group_id)
    if not prefixes:
        raise NotFoundError("group has no delegated prefix", group_id=group_id)
    return await assign_address(db, prefixes[0].id, device_uuid)


async def list_device_allocations(db: AsyncSession, device_uuid: str) -> list[dict[str, Any]]:
    result = await db.execute(
        select(IPAllocation, IPPrefix)
        .join(IPPrefix, IPPrefix.id == IPAllocation.prefix_id)
        .where(IPAllocation.device_uuid == device_uuid)
        .order_by(IPAllocation.id)
    )
    return [allocation_to_dict(allocation, prefix) for allocation, prefix in result.all()]


async def release(db: AsyncSession, allocation_id: int, device_uuid: str) -> None:
    """
    Free an address. It is reusable immediately.

    Device variables written at assignment are removed only while they
    still hold the assigned values.
    """
    allocation = await db.get(IPAllocation, allocation_id)
    if allocation is None or allocation.device_uuid != device_uuid:
        raise NotFoundError("allocation not found", allocation_id=allocation_id)
    prefix = await get_prefix(db, allocation.prefix_id)
    net = ip_network(prefix.cidr)
    address = allocation.address
    root_id = await tree_root_id(db, prefix)

    async with _tree_locks.hold(root_id):
        values = _address_vars(net, address)
        address_key = "ipv4_address" if net.version == 4 else "ipv6_address"
        if await remove_device_variables_if(db, device_uuid, {address_key: address}):
            values.pop(address_key)
            await remove_device_variables_if(db, device_uuid, values)
        await db.delete(allocation)
        await db.commit()

    logger.info(f"Released {address} from device {device_uuid}")
    audit.log_release(allocation_id, device_uuid, address)
