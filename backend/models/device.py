from uuid import uuid4
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index, UniqueConstraint
from database import Base


class Device(Base):
    """
    A registered device.

    Identity is the natural key (backend, mac_address); uuid and key are
    minted once at first registration and never change afterwards.
    """

    __tablename__ = "devices"

    uuid = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    key = Column(String(64), nullable=False)

    name = Column(String(255), nullable=True)  # Hostname reported by the agent
    backend = Column(String(100), nullable=False)  # e.g. "netjsonconfig.OpenWrt"
    mac_address = Column(String(17), nullable=False)  # Lowercase, colon separated

    # Last report-status from the agent
    status = Column(String(20), default="pending")  # pending | applied | error | deactivating
    last_seen = Column(DateTime, nullable=True)
    last_config_sha = Column(String(64), nullable=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("backend", "mac_address", name="uq_device_backend_mac"),
        Index("idx_device_mac", "mac_address"),
    )

    def __repr__(self):
        return f"<Device(uuid={self.uuid}, name={self.name}, mac={self.mac_address})>"


class DeviceStatusReport(Base):
    """History of report-status calls for a device."""

    __tablename__ = "device_status_reports"

    id = Column(Integer, primary_key=True, index=True)
    device_uuid = Column(String(36), ForeignKey("devices.uuid", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), nullable=False)
    config_sha = Column(String(64), nullable=True)
    error = Column(Text, nullable=True)
    reported_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_status_report_device", "device_uuid"),
    )

    def __repr__(self):
        return f"<DeviceStatusReport(device={self.device_uuid}, status={self.status})>"
