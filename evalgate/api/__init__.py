"""API layer for evalgate."""

from evalgate.api.dependencies import Services, build_services, get_services
from evalgate.api.routes import router

__all__ = [
    "Services",
    "build_services",
    "get_services",
    "router",
]
