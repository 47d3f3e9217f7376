"""ASGI entry point for Granian multi-worker support.

Configuration is loaded from the STARKSIGNER_CONFIG environment variable set
by the main process before Granian starts its workers.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from .config import get_config_from_env
from .server import create_app

if TYPE_CHECKING:
    from collections.abc import Callable

    from litestar import Litestar
    from litestar.types import LifeSpanScope, Scope

logger = logging.getLogger(__name__)

_app_instance: Litestar | None = None


def get_app() -> Litestar:
    """Get or create the Litestar app instance (one per worker)."""
    global _app_instance
    if _app_instance is None:
        try:
            config = get_config_from_env()
        except ValueError as e:
            raise RuntimeError(
                f"Configuration not found ({e}). Use 'starksigner serve' to start the server.",
            ) from e

        logging.basicConfig(
            level=getattr(logging, config.normalized_log_level),
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )

        _app_instance = create_app(config)

    return _app_instance


async def app(
    scope: Scope | LifeSpanScope,
    receive: Callable[..., Any],
    send: Callable[..., Any],
) -> None:
    """ASGI application entry point."""
    litestar_app = get_app()
    await litestar_app(scope, receive, send)
