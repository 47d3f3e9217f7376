"""Tests for configuration management."""

from collections.abc import Sequence

import pytest

from starksigner.cli import parse_args
from starksigner.config import (
    CONFIG_ENV_VAR,
    Config,
    config_from_args,
    get_config_from_env,
    store_config_in_env,
)


def serve_config(argv: Sequence[str]) -> Config:
    return config_from_args(parse_args(["serve", *argv]))


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    monkeypatch.delenv("STARKNET_RPC_URL", raising=False)


class TestConfigValidation:
    """Tests for Config field validation."""

    def test_defaults(self) -> None:
        config = Config()
        assert config.port == 8080
        assert config.metrics_port == 8081
        assert config.rpc_url is None
        assert config.block_id == "latest"

    @pytest.mark.parametrize(
        ("kwargs", "match"),
        [
            ({"port": 0}, "port must be between"),
            ({"port": 70000}, "port must be between"),
            ({"metrics_port": 0}, "metrics_port must be between"),
            ({"workers": 0}, "workers must be at least 1"),
            ({"log_level": "VERBOSE"}, "log_level must be one of"),
            ({"rpc_timeout": 0}, "rpc_timeout must be positive"),
            ({"rpc_url": "ftp://node"}, "rpc_url must be an http"),
            ({"block_id": "0x123"}, "block_id must be a block tag"),
        ],
    )
    def test_invalid(self, kwargs: dict[str, object], match: str) -> None:
        with pytest.raises(ValueError, match=match):
            Config(**kwargs)  # type: ignore[arg-type]

    def test_log_level_case_insensitive(self) -> None:
        assert Config(log_level="debug").normalized_log_level == "DEBUG"

    def test_rpc_settings(self) -> None:
        config = Config(rpc_url="https://node.example/rpc", rpc_timeout=2.5, block_id="pre_confirmed")
        assert config.rpc_url == "https://node.example/rpc"
        assert config.rpc_timeout == 2.5


class TestConfigLoading:
    """Tests for argument and environment loading."""

    def test_from_args(self) -> None:
        config = serve_config(["--port", "9000", "--rpc-url", "http://localhost:5050", "--block-id", "pending"])
        assert config.port == 9000
        assert config.rpc_url == "http://localhost:5050"
        assert config.block_id == "pending"

    def test_rpc_url_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("STARKNET_RPC_URL", "http://node:9545")
        assert serve_config([]).rpc_url == "http://node:9545"

    def test_invalid_args(self) -> None:
        with pytest.raises(ValueError, match="workers"):
            serve_config(["--workers", "0"])

    def test_env_round_trip(self, monkeypatch: pytest.MonkeyPatch) -> None:
        config = Config(port=9100, workers=4, rpc_url="http://node:9545", block_id="pending")
        store_config_in_env(config)
        try:
            assert get_config_from_env() == config
        finally:
            monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)

    def test_env_missing(self) -> None:
        with pytest.raises(ValueError, match="is not set"):
            get_config_from_env()

    @pytest.mark.parametrize("raw", ["{not json", '{"port": 0}', '{"port": "eighty"}'])
    def test_env_invalid(self, monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
        monkeypatch.setenv(CONFIG_ENV_VAR, raw)
        with pytest.raises(ValueError):
            get_config_from_env()
