from .device import Device, DeviceStatusReport
from .group import Group, DeviceGroup
from .variable import DeviceVariable, GroupVariable
from .template import Template, GroupTemplateAssignment, DeviceTemplateOverride
from .ipam import IPPrefix, GroupPrefix, IPAllocation
from .config_cache import ConfigCache

__all__ = [
    "Device",
    "DeviceStatusReport",
    "Group",
    "DeviceGroup",
    "DeviceVariable",
    "GroupVariable",
    "Template",
    "GroupTemplateAssignment",
    "DeviceTemplateOverride",
    "IPPrefix",
    "GroupPrefix",
    "IPAllocation",
    "ConfigCache",
]
