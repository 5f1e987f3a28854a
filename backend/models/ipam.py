from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from database import Base


class IPPrefix(Base):
    """
    Node in the prefix tree.

    Children lie inside their parent and siblings never overlap. ``cidr``
    is stored in normalized form (host bits cleared).
    """

    __tablename__ = "ip_prefixes"

    id = Column(Integer, primary_key=True, index=True)
    cidr = Column(String(64), unique=True, nullable=False)
    family = Column(Integer, nullable=False)  # 4 or 6
    parent_id = Column(Integer, ForeignKey("ip_prefixes.id", ondelete="CASCADE"), nullable=True)
    note = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_prefix_parent", "parent_id"),
    )

    def __repr__(self):
        return f"<IPPrefix(id={self.id}, cidr={self.cidr}, parent={self.parent_id})>"


class GroupPrefix(Base):
    """Prefix delegated to a group."""

    __tablename__ = "group_prefixes"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    prefix_id = Column(Integer, ForeignKey("ip_prefixes.id", ondelete="CASCADE"), unique=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_group_prefix_group", "group_id"),
    )

    def __repr__(self):
        return f"<GroupPrefix(group={self.group_id}, prefix={self.prefix_id})>"


class IPAllocation(Base):
    """Address held by a device. The row is deleted on release."""

    __tablename__ = "ip_allocations"

    id = Column(Integer, primary_key=True, index=True)
    prefix_id = Column(Integer, ForeignKey("ip_prefixes.id", ondelete="CASCADE"), nullable=False)
    device_uuid = Column(String(36), ForeignKey("devices.uuid", ondelete="CASCADE"), nullable=False)
    address = Column(String(64), unique=True, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_allocation_prefix", "prefix_id"),
        Index("idx_allocation_device", "device_uuid"),
    )

    def __repr__(self):
        return f"<IPAllocation(address={self.address}, device={self.device_uuid})>"
