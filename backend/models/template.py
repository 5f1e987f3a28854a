from datetime import datetime
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, ForeignKey, Index, UniqueConstraint
from database import Base


class Template(Base):
    """
    Configuration template.

    ``path`` is where the rendered body lands inside the bundle, stored
    without a leading slash. ``required`` and ``default`` templates are
    included for every device unless the device blocks them.
    """

    __tablename__ = "templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    path = Column(String(512), nullable=False)
    body = Column(Text, nullable=False, default="")
    type = Column(String(20), nullable=False, default="jinja")  # jinja | netjson

    required = Column(Boolean, default=False)
    default = Column(Boolean, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<Template(id={self.id}, name={self.name}, path={self.path})>"


class GroupTemplateAssignment(Base):
    """Template attached to a group, ordered by ``order`` then template id."""

    __tablename__ = "group_template_assignments"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    template_id = Column(Integer, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)
    order = Column(Integer, nullable=False, default=100)
    enabled = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("group_id", "template_id", name="uq_group_template"),
        Index("idx_assignment_template", "template_id"),
    )

    def __repr__(self):
        return (
            f"<GroupTemplateAssignment(group={self.group_id}, "
            f"template={self.template_id}, order={self.order})>"
        )


class DeviceTemplateOverride(Base):
    """Device-level block of a template. Never grants inclusion."""

    __tablename__ = "device_template_overrides"

    id = Column(Integer, primary_key=True, index=True)
    device_uuid = Column(String(36), ForeignKey("devices.uuid", ondelete="CASCADE"), nullable=False)
    template_id = Column(Integer, ForeignKey("templates.id", ondelete="CASCADE"), nullable=False)
    blocked = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("device_uuid", "template_id", name="uq_device_template_override"),
    )

    def __repr__(self):
        return f"<DeviceTemplateOverride(device={self.device_uuid}, template={self.template_id})>"
