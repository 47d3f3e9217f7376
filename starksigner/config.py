"""Configuration management using msgspec Struct."""

import argparse
import json
import os

import msgspec

CONFIG_ENV_VAR = "STARKSIGNER_CONFIG"
WORKERS_ENV_VAR = "STARKSIGNER_WORKERS"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Config(msgspec.Struct, frozen=True):
    """Application configuration using msgspec Struct."""

    # HTTP server settings
    host: str = "127.0.0.1"
    port: int = 8080
    workers: int = 1

    # Logging
    log_level: str = "INFO"

    # Metrics settings
    metrics_host: str = "127.0.0.1"
    metrics_port: int = 8081

    # Starknet node used for account (remote) verification
    rpc_url: str | None = None
    rpc_timeout: float = 10.0
    block_id: str = "latest"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if self.port < 1 or self.port > 65535:
            raise ValueError(f"port must be between 1 and 65535, got {self.port}")

        if self.metrics_port < 1 or self.metrics_port > 65535:
            raise ValueError(f"metrics_port must be between 1 and 65535, got {self.metrics_port}")

        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {VALID_LOG_LEVELS}, got {self.log_level}")

        if self.rpc_timeout <= 0:
            raise ValueError(f"rpc_timeout must be positive, got {self.rpc_timeout}")

        if self.rpc_url is not None and not self.rpc_url.startswith(("http://", "https://")):
            raise ValueError(f"rpc_url must be an http(s) URL, got {self.rpc_url}")

        if self.block_id not in ("latest", "pending", "pre_confirmed"):
            raise ValueError(f"block_id must be a block tag, got {self.block_id}")

    @property
    def normalized_log_level(self) -> str:
        """Return normalized uppercase log level."""
        return self.log_level.upper()


def add_server_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the server and RPC options shared by ``serve`` and the default command."""
    parser.add_argument("--host", default="127.0.0.1", help="HTTP server host")
    parser.add_argument("-p", "--port", type=int, default=8080, help="HTTP server port")
    parser.add_argument("--workers", type=int, default=1, help="Number of Granian worker processes")
    parser.add_argument(
        "--log-level",
        choices=VALID_LOG_LEVELS,
        default="INFO",
        help="Logging level",
    )
    parser.add_argument("--metrics-host", default="127.0.0.1", help="Host for metrics server")
    parser.add_argument("--metrics-port", type=int, default=8081, help="Port for metrics server")
    add_rpc_arguments(parser)


def add_rpc_arguments(parser: argparse.ArgumentParser, required: bool = False) -> None:
    parser.add_argument(
        "--rpc-url",
        default=os.environ.get("STARKNET_RPC_URL"),
        required=required and not os.environ.get("STARKNET_RPC_URL"),
        help="Starknet JSON-RPC endpoint used for account verification (env: STARKNET_RPC_URL)",
    )
    parser.add_argument(
        "--rpc-timeout",
        type=float,
        default=10.0,
        help="Timeout in seconds for JSON-RPC calls",
    )
    parser.add_argument(
        "--block-id",
        default="latest",
        choices=["latest", "pending", "pre_confirmed"],
        help="Block tag to verify against",
    )


def config_from_args(args: argparse.Namespace) -> Config:
    """Build a Config from parsed arguments.

    Raises:
        ValueError: If the configuration is invalid

    """
    config_dict: dict[str, object] = {
        "host": getattr(args, "host", "127.0.0.1"),
        "port": getattr(args, "port", 8080),
        "workers": getattr(args, "workers", 1),
        "log_level": getattr(args, "log_level", "INFO"),
        "metrics_host": getattr(args, "metrics_host", "127.0.0.1"),
        "metrics_port": getattr(args, "metrics_port", 8081),
        "rpc_url": getattr(args, "rpc_url", None),
        "rpc_timeout": getattr(args, "rpc_timeout", 10.0),
        "block_id": getattr(args, "block_id", "latest"),
    }

    try:
        return msgspec.convert(config_dict, Config)
    except msgspec.ValidationError as e:
        raise ValueError(f"Configuration validation error: {e}") from e


def get_config_from_env() -> Config:
    """Load configuration from the STARKSIGNER_CONFIG environment variable.

    Raises:
        ValueError: If the variable is missing or holds an invalid configuration

    """
    raw = os.environ.get(CONFIG_ENV_VAR)
    if not raw:
        raise ValueError(f"{CONFIG_ENV_VAR} is not set")

    try:
        return msgspec.json.decode(raw, type=Config)
    except (msgspec.ValidationError, msgspec.DecodeError) as e:
        raise ValueError(f"Configuration validation error: {e}") from e


def store_config_in_env(config: Config) -> None:
    """Store configuration in the environment for worker processes."""
    os.environ[CONFIG_ENV_VAR] = json.dumps(msgspec.to_builtins(config))
