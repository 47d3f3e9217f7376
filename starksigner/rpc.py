"""Remote signature verification through an account contract.

A Starknet account decides for itself which signatures it accepts, so remote
verification is a read-only ``starknet_call`` to the account's
``is_valid_signature`` entrypoint over JSON-RPC.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import TYPE_CHECKING, Any

import httpx
import msgspec

from .hashing import encode_short_string, get_selector_from_name
from .metrics import RPC_REQUEST_DURATION_SECONDS
from .models import parse_felt

if TYPE_CHECKING:
    from .models import Signature

logger = logging.getLogger(__name__)

STARKNET_CALL = "starknet_call"

IS_VALID_SIGNATURE = "is_valid_signature"
LEGACY_IS_VALID_SIGNATURE = "isValidSignature"

# Starknet JSON-RPC error codes
CONTRACT_NOT_FOUND = 20
INVALID_MESSAGE_SELECTOR = 21
CONTRACT_ERROR = 40

VALID = encode_short_string("VALID")


class RemoteVerificationError(Exception):
    """Remote verification could not reach a verdict."""


class AccountNotDeployed(RemoteVerificationError):
    """No contract is deployed at the account address."""

    def __init__(self, address: int) -> None:
        super().__init__(f"Contract not found at {address:#x}: the account is not deployed")
        self.address = address


class TransportError(RemoteVerificationError):
    """The node could not be reached or answered with something that is not JSON-RPC."""


class RpcError(RemoteVerificationError):
    """The node answered with a JSON-RPC error."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(
            f"RPC error {code}: {message}" + (f" | data={data}" if data is not None else ""),
        )
        self.code = code
        self.message = message
        self.data = data


class JsonRpcErrorBody(msgspec.Struct, frozen=True):
    code: int
    message: str = ""
    data: Any = None


class JsonRpcResponse(msgspec.Struct, frozen=True):
    """A JSON-RPC 2.0 response envelope."""

    jsonrpc: str = "2.0"
    id: int | str | None = None
    result: Any = msgspec.UNSET
    error: JsonRpcErrorBody | None = None


_response_decoder = msgspec.json.Decoder(JsonRpcResponse)


def _error_text(error: RpcError) -> str:
    return f"{error.message} {error.data}" if error.data is not None else error.message


def is_entrypoint_missing(error: RpcError) -> bool:
    """Whether the call failed because the contract has no such entrypoint."""
    if error.code == INVALID_MESSAGE_SELECTOR:
        return True
    if error.code != CONTRACT_ERROR:
        return False
    text = _error_text(error)
    if "ENTRYPOINT_NOT_FOUND" in text:
        return True
    lowered = text.lower()
    return "not found" in lowered and ("entry point" in lowered or "entrypoint" in lowered)


class StarknetRpcClient:
    """Async Starknet JSON-RPC client.

    Args:
        url: Node endpoint
        timeout: Default request timeout in seconds
        http_client: Client to send requests with. When given, the caller owns
            it and :meth:`aclose` leaves it open

    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._owns_client = http_client is None
        self._http = http_client if http_client is not None else httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    @property
    def url(self) -> str:
        return self._url

    async def __aenter__(self) -> StarknetRpcClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def request(self, method: str, params: Any, timeout: float | None = None) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises:
            TransportError: On timeouts, connection failures, HTTP errors and
                responses that are not JSON-RPC
            RpcError: If the node returned a JSON-RPC error

        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        start_time = time.perf_counter()
        try:
            response = await self._http.post(
                self._url,
                content=msgspec.json.encode(payload),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout if timeout is None else timeout,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out calling {method} on {self._url}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Failed to reach {self._url}: {e}") from e
        finally:
            RPC_REQUEST_DURATION_SECONDS.labels(method=method).observe(time.perf_counter() - start_time)

        if response.status_code >= 500:
            raise TransportError(f"Node returned HTTP {response.status_code} for {method}")

        try:
            body = _response_decoder.decode(response.content)
        except (msgspec.ValidationError, msgspec.DecodeError) as e:
            raise TransportError(
                f"Malformed JSON-RPC response (HTTP {response.status_code}): {e}",
            ) from e

        if body.error is not None:
            raise RpcError(body.error.code, body.error.message, body.error.data)
        if body.result is msgspec.UNSET:
            raise TransportError(f"Malformed JSON-RPC response (HTTP {response.status_code}): no result")
        return body.result

    async def call_contract(
        self,
        contract_address: int,
        entry_point_selector: int,
        calldata: list[int],
        block_id: str = "latest",
        timeout: float | None = None,
    ) -> list[int]:
        """Call a view entrypoint with ``starknet_call``.

        Returns:
            The returned felts
        """
        params = {
            "request": {
                "contract_address": hex(contract_address),
                "entry_point_selector": hex(entry_point_selector),
                "calldata": [hex(value) for value in calldata],
            },
            "block_id": block_id,
        }
        result = await self.request(STARKNET_CALL, params, timeout=timeout)
        if not isinstance(result, list):
            raise TransportError(f"Malformed starknet_call result: {result!r}")
        try:
            return [parse_felt(value) for value in result]
        except (AttributeError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed starknet_call result: {result!r}") from e


class RemoteVerifier:
    """Asks an account contract whether it accepts a signature.

    One round trip per verification, plus one more only when the account
    predates the snake_case entrypoint. Nothing is retried.
    """

    def __init__(self, client: StarknetRpcClient, block_id: str = "latest") -> None:
        self._client = client
        self._block_id = block_id

    @property
    def client(self) -> StarknetRpcClient:
        return self._client

    async def verify(
        self,
        message_hash: int,
        account_address: int,
        signature: Signature,
        timeout: float | None = None,
    ) -> bool:
        """Verify ``signature`` over ``message_hash`` with the account contract.

        Args:
            message_hash: Hash of the typed data, bound to ``account_address``
            account_address: The account contract address
            signature: The normalized (r, s) signature
            timeout: Per-call timeout in seconds, overriding the client default

        Returns:
            True if the contract answered ``VALID`` (or 1), False if it
            answered anything else or reverted

        Raises:
            AccountNotDeployed: If there is no contract at ``account_address``
            TransportError: If the node could not be reached
            RpcError: For any other JSON-RPC error

        """
        calldata = [message_hash, 2, signature.r, signature.s]
        try:
            result = await self._call(IS_VALID_SIGNATURE, account_address, calldata, timeout)
        except RpcError as e:
            if not is_entrypoint_missing(e):
                return self._handle_error(e, account_address)
            logger.debug(
                f"Account {account_address:#x} has no {IS_VALID_SIGNATURE}, "
                f"retrying with {LEGACY_IS_VALID_SIGNATURE}",
            )
            try:
                result = await self._call(LEGACY_IS_VALID_SIGNATURE, account_address, calldata, timeout)
            except RpcError as legacy_error:
                return self._handle_error(legacy_error, account_address)

        valid = bool(result) and result[0] in (VALID, 1)
        logger.debug(f"Account {account_address:#x} returned {valid} for {message_hash:#x}")
        return valid

    async def _call(
        self,
        entrypoint: str,
        account_address: int,
        calldata: list[int],
        timeout: float | None,
    ) -> list[int]:
        return await self._client.call_contract(
            account_address,
            get_selector_from_name(entrypoint),
            calldata,
            block_id=self._block_id,
            timeout=timeout,
        )

    @staticmethod
    def _handle_error(error: RpcError, account_address: int) -> bool:
        if error.code == CONTRACT_NOT_FOUND:
            raise AccountNotDeployed(account_address) from error
        if error.code == CONTRACT_ERROR:
            # The account ran and rejected the signature by reverting
            logger.debug(f"Account {account_address:#x} reverted: {_error_text(error)}")
            return False
        raise error
