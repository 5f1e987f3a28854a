from .controller import router as controller_router
from .templates import router as templates_router
from .devices import router as devices_router
from .groups import router as groups_router
from .ipam import router as ipam_router
from .catalog import router as catalog_router

__all__ = [
    "controller_router",
    "templates_router",
    "devices_router",
    "groups_router",
    "ipam_router",
    "catalog_router",
]
