"""Litestar server setup with Granian ASGI server."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from granian import Granian
from granian.constants import Interfaces
from litestar import Litestar
from litestar.datastructures import State
from litestar.di import Provide

from .config import store_config_in_env
from .handlers import get_routers
from .metrics import MetricsServer, cleanup_multiproc_dir, setup_multiproc_dir
from .rpc import RemoteVerifier, StarknetRpcClient
from .signer import Signer

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from .config import Config

logger = logging.getLogger(__name__)


def provide_signer(state: State) -> Signer:
    """Provide Signer from application state."""
    result: Signer = state["signer"]
    return result


def create_signer(config: Config) -> Signer:
    """Create a Signer, with remote verification when an RPC URL is configured."""
    if config.rpc_url is None:
        logger.info("No RPC URL configured, account verification is disabled")
        return Signer()

    client = StarknetRpcClient(config.rpc_url, timeout=config.rpc_timeout)
    logger.info(f"Account verification via {config.rpc_url} (block {config.block_id})")
    return Signer(RemoteVerifier(client, block_id=config.block_id))


def create_app(
    config: Config | None = None,
    signer: Signer | None = None,
) -> Litestar:
    """Create and configure the Litestar application."""
    if signer is None:
        signer = create_signer(config) if config is not None else Signer()

    @asynccontextmanager
    async def lifespan(_app: Litestar) -> AsyncGenerator[None]:
        logger.info("Starting starksigner server")
        try:
            yield
        finally:
            if signer.remote_verifier is not None:
                await signer.remote_verifier.client.aclose()
            logger.info("Stopping starksigner server")

    return Litestar(
        route_handlers=get_routers(),
        lifespan=[lifespan],
        debug=False,
        state=State({"signer": signer}),
        dependencies={
            "signer": Provide(provide_signer, sync_to_thread=False),
        },
    )


def run_server(config: Config) -> None:
    """Run the Litestar app with Granian, and the metrics server beside it."""
    logger.info(f"Starting starksigner on {config.host}:{config.port}")

    from . import asgi

    if config.workers > 1:
        # STARKSIGNER_WORKERS was set before this module was imported, so the
        # registry is already collecting from PROMETHEUS_MULTIPROC_DIR
        multiproc_dir = setup_multiproc_dir()
        cleanup_multiproc_dir(multiproc_dir)
        logger.info(
            f"Enabled Prometheus multi-process metrics mode "
            f"({config.workers} workers, dir={multiproc_dir})",
        )

    store_config_in_env(config)

    server = Granian(
        target=f"{asgi.__name__}:app",
        address=config.host,
        port=config.port,
        interface=Interfaces.ASGI,
        workers=config.workers,
        log_level=config.log_level.lower(),
    )

    metrics_server = MetricsServer(host=config.metrics_host, port=config.metrics_port)
    metrics_server.start()

    try:
        server.serve()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        metrics_server.stop()
