from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index, UniqueConstraint
from database import Base


class Group(Base):
    """Named collection of devices. Group ids order variable precedence."""

    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<Group(id={self.id}, name={self.name})>"


class DeviceGroup(Base):
    """Many-to-many membership between devices and groups."""

    __tablename__ = "device_groups"

    id = Column(Integer, primary_key=True, index=True)
    device_uuid = Column(String(36), ForeignKey("devices.uuid", ondelete="CASCADE"), nullable=False)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("device_uuid", "group_id", name="uq_device_group"),
        Index("idx_device_group_group", "group_id"),
    )

    def __repr__(self):
        return f"<DeviceGroup(device={self.device_uuid}, group={self.group_id})>"
