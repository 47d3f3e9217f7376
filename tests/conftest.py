"""Test fixtures and utilities."""

import json
from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from litestar.testing import AsyncTestClient

from starksigner.config import Config
from starksigner.rpc import RemoteVerifier, StarknetRpcClient
from starksigner.server import create_app
from starksigner.signer import Signer
from starksigner.typed_data import TypedData

DATA_DIR = Path(__file__).parent / "data"

RPC_URL = "http://starknet-node.test/rpc"

RpcHandler = Callable[[dict[str, Any]], dict[str, Any]]


def load_document(name: str) -> dict[str, Any]:
    data: dict[str, Any] = json.loads((DATA_DIR / name).read_text())
    return data


def rpc_result(request: dict[str, Any], result: Any) -> dict[str, Any]:
    """Build a JSON-RPC success response for ``request``."""
    return {"jsonrpc": "2.0", "id": request["id"], "result": result}


def rpc_error(request: dict[str, Any], code: int, message: str, data: Any = None) -> dict[str, Any]:
    """Build a JSON-RPC error response for ``request``."""
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request["id"], "error": error}


class FakeNode:
    """Records starknet_call requests and answers them with ``handler``."""

    def __init__(self, handler: RpcHandler) -> None:
        self.handler = handler
        self.requests: list[dict[str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body: dict[str, Any] = json.loads(request.content)
        self.requests.append(body)
        return httpx.Response(200, json=self.handler(body))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def private_key() -> int:
    return 0x1234567890987654321


@pytest.fixture
def public_key() -> int:
    return 0x20C29F1C98F3320D56F01C13372C923123C35828BCE54F2153AA1CFE61C44F2


@pytest.fixture
def hello_world() -> dict[str, Any]:
    """The dapp example: a single felt message under the MyDapp domain."""
    return load_document("hello_world.json")


@pytest.fixture
def mail() -> dict[str, Any]:
    """Nested struct example with a shared Person type."""
    return load_document("mail.json")


@pytest.fixture
def hello_world_typed_data(hello_world: dict[str, Any]) -> TypedData:
    return TypedData.from_dict(hello_world)


@pytest.fixture
def config() -> Config:
    """Create a test configuration."""
    return Config(host="127.0.0.1", port=8080, log_level="DEBUG")


@pytest.fixture
async def client(config: Config) -> AsyncGenerator[AsyncTestClient, None]:
    """Create a test client without remote verification."""
    app = create_app(config)
    async with AsyncTestClient(app) as client:
        yield client


def make_remote_signer(node: FakeNode) -> Signer:
    http_client = httpx.AsyncClient(transport=node.transport())
    rpc_client = StarknetRpcClient(RPC_URL, timeout=5.0, http_client=http_client)
    return Signer(RemoteVerifier(rpc_client))


@pytest.fixture
def valid_node() -> FakeNode:
    """A node whose account accepts every signature."""
    return FakeNode(lambda request: rpc_result(request, ["0x56414c4944"]))


@pytest.fixture
async def remote_client(valid_node: FakeNode) -> AsyncGenerator[AsyncTestClient, None]:
    """Create a test client whose signer talks to ``valid_node``."""
    app = create_app(signer=make_remote_signer(valid_node))
    async with AsyncTestClient(app) as client:
        yield client


@pytest.fixture
def fake_node() -> type[FakeNode]:
    return FakeNode


@pytest.fixture
def remote_signer() -> Callable[[FakeNode], Signer]:
    return make_remote_signer


@pytest.fixture
def rpc_responses() -> Any:
    """Helpers building JSON-RPC response bodies."""

    class Responses:
        result = staticmethod(rpc_result)
        error = staticmethod(rpc_error)

    return Responses
