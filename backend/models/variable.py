from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, UniqueConstraint
from database import Base


class DeviceVariable(Base):
    """Device-scoped variable. Always wins over group values."""

    __tablename__ = "device_variables"

    id = Column(Integer, primary_key=True, index=True)
    device_uuid = Column(String(36), ForeignKey("devices.uuid", ondelete="CASCADE"), nullable=False)
    key = Column(String(128), nullable=False)
    value = Column(Text, nullable=False, default="")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("device_uuid", "key", name="uq_device_variable"),
    )

    def __repr__(self):
        return f"<DeviceVariable(device={self.device_uuid}, key={self.key})>"


class GroupVariable(Base):
    """Group-scoped variable."""

    __tablename__ = "group_variables"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    key = Column(String(128), nullable=False)
    value = Column(Text, nullable=False, default="")

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("group_id", "key", name="uq_group_variable"),
    )

    def __repr__(self):
        return f"<GroupVariable(group={self.group_id}, key={self.key})>"
