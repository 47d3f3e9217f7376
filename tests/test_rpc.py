"""Tests for remote verification over Starknet JSON-RPC."""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from starksigner.hashing import get_selector_from_name
from starksigner.models import Signature
from starksigner.rpc import (
    AccountNotDeployed,
    RemoteVerifier,
    RpcError,
    StarknetRpcClient,
    TransportError,
    is_entrypoint_missing,
)
from starksigner.signer import Signer
from starksigner.typed_data import TypedData, get_message_hash

from conftest import RPC_URL, FakeNode

ACCOUNT = 0x4A3B2C1D
SIGNATURE = Signature(r=0x123, s=0x456)


def make_verifier(handler: Callable[[httpx.Request], httpx.Response]) -> RemoteVerifier:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RemoteVerifier(StarknetRpcClient(RPC_URL, http_client=http_client))


def node_verifier(node: FakeNode, block_id: str = "latest") -> RemoteVerifier:
    http_client = httpx.AsyncClient(transport=node.transport())
    return RemoteVerifier(StarknetRpcClient(RPC_URL, http_client=http_client), block_id=block_id)


class TestRemoteVerifier:
    """Tests for is_valid_signature calls."""

    async def test_valid(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["0x56414c4944"]))
        assert await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)

    async def test_legacy_true_is_valid(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["0x1"]))
        assert await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)

    @pytest.mark.parametrize("result", [["0x0"], [], ["0x2"]], ids=["zero", "empty", "other"])
    async def test_invalid(self, fake_node: type[FakeNode], rpc_responses: Any, result: list[str]) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, result))
        assert not await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)

    async def test_request_shape(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["0x56414c4944"]))
        await node_verifier(node, block_id="pending").verify(0xABC, ACCOUNT, SIGNATURE)

        assert len(node.requests) == 1
        body = node.requests[0]
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "starknet_call"
        assert body["params"] == {
            "request": {
                "contract_address": hex(ACCOUNT),
                "entry_point_selector": hex(get_selector_from_name("is_valid_signature")),
                "calldata": ["0xabc", "0x2", "0x123", "0x456"],
            },
            "block_id": "pending",
        }

    async def test_request_ids_increase(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["0x0"]))
        verifier = node_verifier(node)
        await verifier.verify(1, ACCOUNT, SIGNATURE)
        await verifier.verify(2, ACCOUNT, SIGNATURE)
        assert node.requests[0]["id"] != node.requests[1]["id"]

    @pytest.mark.parametrize(
        ("code", "message", "data"),
        [
            (21, "Invalid message selector", None),
            (40, "Contract error", {"revert_error": "Entry point EntryPointSelector(0x28) not found in contract."}),
            (40, "Contract error", "ENTRYPOINT_NOT_FOUND"),
        ],
        ids=["invalid-selector", "entry-point-not-found", "entrypoint-not-found-code"],
    )
    async def test_legacy_fallback(
        self,
        fake_node: type[FakeNode],
        rpc_responses: Any,
        code: int,
        message: str,
        data: Any,
    ) -> None:
        legacy_selector = hex(get_selector_from_name("isValidSignature"))

        def handler(request: dict[str, Any]) -> dict[str, Any]:
            if request["params"]["request"]["entry_point_selector"] == legacy_selector:
                return rpc_responses.result(request, ["0x1"])
            return rpc_responses.error(request, code, message, data)

        node = fake_node(handler)
        assert await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)
        assert len(node.requests) == 2
        assert node.requests[1]["params"]["request"]["entry_point_selector"] == legacy_selector
        assert node.requests[1]["params"]["request"]["calldata"] == node.requests[0]["params"]["request"]["calldata"]

    async def test_legacy_fallback_only_once(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.error(request, 21, "Invalid message selector"))
        with pytest.raises(RpcError) as exc_info:
            await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)
        assert exc_info.value.code == 21
        assert len(node.requests) == 2

    async def test_revert_is_invalid(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(
            lambda request: rpc_responses.error(request, 40, "Contract error", {"revert_error": "is invalid"}),
        )
        assert not await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)
        assert len(node.requests) == 1

    async def test_account_not_deployed(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.error(request, 20, "Contract not found"))
        with pytest.raises(AccountNotDeployed) as exc_info:
            await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)
        assert exc_info.value.address == ACCOUNT
        assert hex(ACCOUNT) in str(exc_info.value)

    async def test_other_rpc_error(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.error(request, 24, "Block not found"))
        with pytest.raises(RpcError) as exc_info:
            await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)
        assert exc_info.value.code == 24
        assert "Block not found" in str(exc_info.value)


class TestTransportErrors:
    """Tests for failures that say nothing about the signature."""

    async def test_server_error(self) -> None:
        verifier = make_verifier(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(TransportError, match="HTTP 503"):
            await verifier.verify(0xABC, ACCOUNT, SIGNATURE)

    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError, match="Failed to reach"):
            await make_verifier(handler).verify(0xABC, ACCOUNT, SIGNATURE)

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError, match="Timed out"):
            await make_verifier(handler).verify(0xABC, ACCOUNT, SIGNATURE)

    @pytest.mark.parametrize(
        "content",
        [b"<html>bad gateway</html>", b'{"jsonrpc": "2.0", "id": 1}', b'{"jsonrpc": "2.0", "id": 1, "result": "0x1"}'],
        ids=["not-json", "no-result", "result-not-list"],
    )
    async def test_malformed_response(self, content: bytes) -> None:
        verifier = make_verifier(lambda request: httpx.Response(200, content=content))
        with pytest.raises(TransportError, match="Malformed"):
            await verifier.verify(0xABC, ACCOUNT, SIGNATURE)

    async def test_malformed_felt(self, fake_node: type[FakeNode], rpc_responses: Any) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["VALID"]))
        with pytest.raises(TransportError, match="Malformed"):
            await node_verifier(node).verify(0xABC, ACCOUNT, SIGNATURE)


class TestStarknetRpcClient:
    """Tests for client lifetime."""

    async def test_borrowed_client_left_open(self) -> None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        async with StarknetRpcClient(RPC_URL, http_client=http_client) as client:
            assert client.url == RPC_URL
        assert not http_client.is_closed
        await http_client.aclose()


class TestIsEntrypointMissing:
    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (RpcError(21, "Invalid message selector"), True),
            (RpcError(40, "Contract error", "Entry point 0x1 not found in contract"), True),
            (RpcError(40, "Contract error", {"revert_error": "ENTRYPOINT_NOT_FOUND"}), True),
            (RpcError(40, "Contract error", "Invalid signature"), False),
            (RpcError(20, "Contract not found"), False),
        ],
    )
    def test_is_entrypoint_missing(self, error: RpcError, expected: bool) -> None:
        assert is_entrypoint_missing(error) is expected


class TestRemoteSigner:
    """Tests for Signer.verify_typed_data_remote."""

    async def test_hash_bound_to_account(
        self,
        fake_node: type[FakeNode],
        rpc_responses: Any,
        remote_signer: Callable[[FakeNode], Signer],
        hello_world_typed_data: TypedData,
    ) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["0x56414c4944"]))
        result = await remote_signer(node).verify_typed_data_remote(
            hello_world_typed_data,
            hex(ACCOUNT),
            ["0x123", "0x456", "0x0"],
        )

        expected_hash = get_message_hash(hello_world_typed_data, ACCOUNT)
        assert result.valid
        assert result.message_hash == expected_hash
        calldata = node.requests[0]["params"]["request"]["calldata"]
        assert calldata == [hex(expected_hash), "0x2", "0x123", "0x456"]

    async def test_errors_propagate(
        self,
        fake_node: type[FakeNode],
        rpc_responses: Any,
        remote_signer: Callable[[FakeNode], Signer],
        hello_world_typed_data: TypedData,
    ) -> None:
        node = fake_node(lambda request: rpc_responses.error(request, 20, "Contract not found"))
        with pytest.raises(AccountNotDeployed):
            await remote_signer(node).verify_typed_data_remote(hello_world_typed_data, ACCOUNT, [1, 2])

    async def test_explicit_verifier_overrides_default(
        self,
        fake_node: type[FakeNode],
        rpc_responses: Any,
        hello_world_typed_data: TypedData,
    ) -> None:
        node = fake_node(lambda request: rpc_responses.result(request, ["0x0"]))
        result = await Signer().verify_typed_data_remote(
            hello_world_typed_data,
            ACCOUNT,
            [1, 2],
            verifier=node_verifier(node),
        )
        assert not result.valid


def _timeouts(seconds: float) -> dict[str, float]:
    return {"connect": seconds, "read": seconds, "write": seconds, "pool": seconds}


class TestRemoteCallControl:
    """Tests for per-call timeouts and cancellation."""

    async def test_caller_timeout_reaches_transport(
        self,
        rpc_responses: Any,
        hello_world_typed_data: TypedData,
    ) -> None:
        timeouts: list[dict[str, float]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            timeouts.append(request.extensions["timeout"])
            return httpx.Response(200, json=rpc_responses.result(json.loads(request.content), ["0x56414c4944"]))

        signer = Signer(make_verifier(handler))
        await signer.verify_typed_data_remote(hello_world_typed_data, ACCOUNT, SIGNATURE, timeout=2.5)
        # Without a per-call timeout the client default applies
        await signer.verify_typed_data_remote(hello_world_typed_data, ACCOUNT, SIGNATURE)

        assert timeouts == [_timeouts(2.5), _timeouts(10.0)]

    async def test_cancel_leaves_client_usable(
        self,
        rpc_responses: Any,
        hello_world_typed_data: TypedData,
    ) -> None:
        received = asyncio.Event()
        release = asyncio.Event()
        requests: list[dict[str, Any]] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            body: dict[str, Any] = json.loads(request.content)
            requests.append(body)
            if len(requests) == 1:
                received.set()
                await release.wait()
            return httpx.Response(200, json=rpc_responses.result(body, ["0x56414c4944"]))

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        signer = Signer(RemoteVerifier(StarknetRpcClient(RPC_URL, http_client=http_client)))

        task = asyncio.create_task(signer.verify_typed_data_remote(hello_world_typed_data, ACCOUNT, SIGNATURE))
        await received.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not http_client.is_closed
        result = await signer.verify_typed_data_remote(hello_world_typed_data, ACCOUNT, SIGNATURE)
        assert result.valid
        assert len(requests) == 2
        assert requests[0]["params"] == requests[1]["params"]
        await http_client.aclose()
