"""Prometheus metrics for starksigner with standalone HTTP server.

This module defines and exposes all Prometheus metrics used by starksigner.
Metrics are served on a separate port using prometheus_client's built-in HTTP server.

Multi-process support:
When running with multiple Granian workers, each process has its own memory space.
Prometheus client supports multi-process mode via files in PROMETHEUS_MULTIPROC_DIR.
This module detects multi-process mode from STARKSIGNER_WORKERS and configures the
registry accordingly.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    Info,
    start_http_server,
)
from prometheus_client.multiprocess import MultiProcessCollector

from . import __version__
from .config import WORKERS_ENV_VAR

if TYPE_CHECKING:
    from http.server import ThreadingHTTPServer
    from wsgiref.simple_server import WSGIServer

logger = logging.getLogger(__name__)


def setup_multiproc_dir() -> Path | None:
    """Set up Prometheus multi-process directory if needed.

    Returns:
        Path to the multi-process directory, or None if not needed.

    """
    if "PROMETHEUS_MULTIPROC_DIR" in os.environ:
        multiproc_dir = Path(os.environ["PROMETHEUS_MULTIPROC_DIR"])
        logger.debug(f"Using existing PROMETHEUS_MULTIPROC_DIR: {multiproc_dir}")
        return multiproc_dir

    workers = int(os.environ.get(WORKERS_ENV_VAR, "1"))
    if workers <= 1:
        logger.debug("Single worker mode, no multi-process metrics needed")
        return None

    multiproc_dir = Path(tempfile.gettempdir()) / "starksigner_metrics"
    multiproc_dir.mkdir(parents=True, exist_ok=True)
    os.environ["PROMETHEUS_MULTIPROC_DIR"] = str(multiproc_dir)

    logger.info(
        f"Multi-process mode detected ({workers} workers). "
        f"Using PROMETHEUS_MULTIPROC_DIR: {multiproc_dir}",
    )
    return multiproc_dir


def cleanup_multiproc_dir(multiproc_dir: Path | None = None) -> None:
    """Remove metric files left over from a previous run."""
    if multiproc_dir is None:
        env_dir = os.environ.get("PROMETHEUS_MULTIPROC_DIR")
        if not env_dir:
            return
        multiproc_dir = Path(env_dir)
    if not multiproc_dir.exists():
        return

    for file_path in multiproc_dir.glob("*.db"):
        try:
            file_path.unlink()
            logger.debug(f"Cleaned up stale metrics file: {file_path}")
        except OSError as e:
            logger.warning(f"Could not remove stale metrics file {file_path}: {e}")


_MULTIPROC_DIR = setup_multiproc_dir()

REGISTRY = CollectorRegistry()
if _MULTIPROC_DIR is not None:
    # Aggregates the per-worker files written under PROMETHEUS_MULTIPROC_DIR
    MultiProcessCollector(REGISTRY, path=str(_MULTIPROC_DIR))  # type: ignore[no-untyped-call]
    logger.debug("Using MultiProcessCollector for multi-process metrics")


APP_INFO = Info(
    "starksigner_build_info",
    "Build information about starksigner",
    registry=REGISTRY,
)
APP_INFO.info({"version": __version__, "name": "starksigner"})

# Typed-data operations: hash, sign, verify, verify_remote
OPERATIONS_TOTAL = Counter(
    "typed_data_operations_total",
    "Total number of typed data operations",
    ["operation"],
    registry=REGISTRY,
)

OPERATION_DURATION_SECONDS = Histogram(
    "typed_data_operation_duration_seconds",
    "Time spent hashing, signing and verifying typed data",
    ["operation"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

OPERATION_ERRORS_TOTAL = Counter(
    "typed_data_operation_errors_total",
    "Total number of failed typed data operations",
    ["operation", "error_type"],
    registry=REGISTRY,
)

VERIFICATION_RESULTS_TOTAL = Counter(
    "signature_verifications_total",
    "Signature verification outcomes",
    ["method", "result"],
    registry=REGISTRY,
)

RPC_REQUEST_DURATION_SECONDS = Histogram(
    "rpc_request_duration_seconds",
    "Time spent waiting for the Starknet JSON-RPC node",
    ["method"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=REGISTRY,
)


class MetricsServer:
    """Standalone Prometheus metrics HTTP server using prometheus_client.start_http_server.

    Runs in the main process so that, in multi-process mode, it aggregates the
    metrics written by every Granian worker.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 8081) -> None:
        self._host = host
        self._port = port
        self._httpd: WSGIServer | ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Start the metrics server in a background thread."""
        self._thread = threading.Thread(
            target=self._run_server,
            daemon=True,
        )
        self._thread.start()
        logger.info(
            f"Metrics server started at http://{self._host}:{self._port}/metrics",
        )

    def _run_server(self) -> None:
        try:
            server, _ = start_http_server(
                port=self._port,
                addr=self._host,
                registry=REGISTRY,
            )
            self._httpd = server
        except Exception:
            logger.exception("Failed to start metrics server")
            raise

    def stop(self) -> None:
        """Stop the metrics server."""
        if self._httpd is not None:
            try:
                self._httpd.shutdown()
                self._httpd.server_close()
            except Exception:
                logger.exception("Error stopping metrics server")
            finally:
                self._httpd = None

        if self._thread is not None:
            self._thread.join(timeout=2)
            self._thread = None

        logger.info("Metrics server stopped")
