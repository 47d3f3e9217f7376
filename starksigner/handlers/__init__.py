"""HTTP route handlers with Litestar.

This package provides controller modules for different API endpoints:
- health: Health check endpoint
- typed_data: Typed data hashing and signature verification
"""

from litestar import Router

from .health import HealthController
from .typed_data import TypedDataController


def get_routers() -> list[Router]:
    """Get all routers for the application."""
    return [
        Router(path="/", route_handlers=[HealthController]),
        Router(path="/", route_handlers=[TypedDataController]),
    ]


__all__ = [
    "HealthController",
    "TypedDataController",
    "get_routers",
]
