from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, LargeBinary, ForeignKey
from database import Base


class ConfigCache(Base):
    """
    Last rendered bundle per device.

    ``checksum`` doubles as the ETag. Rows are a side-effect cache and can
    be dropped at any time; ``stale`` is set by mutations that may change
    the next render. An empty ``checksum`` marks a row claimed before
    the device's first render finished.
    """

    __tablename__ = "config_cache"

    device_uuid = Column(String(36), ForeignKey("devices.uuid", ondelete="CASCADE"), primary_key=True)
    checksum = Column(String(64), nullable=False)
    bundle = Column(LargeBinary, nullable=False)
    stale = Column(Boolean, nullable=False, default=False)
    # Bumped by every invalidation; a render only clears ``stale`` if this
    # did not move while it ran
    generation = Column(Integer, nullable=False, default=0)
    rendered_at = Column(DateTime, default=datetime.utcnow)

    @property
    def etag(self) -> str:
        return self.checksum

    def __repr__(self):
        return f"<ConfigCache(device={self.device_uuid}, checksum={self.checksum[:12]})>"
