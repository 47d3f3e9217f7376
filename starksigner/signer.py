"""Stark ECDSA signing and verification, and typed-data signing orchestration."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, TypeVar

from ecdsa.ellipticcurve import INFINITY
from ecdsa.rfc6979 import generate_k

from .curve import (
    EC_ORDER,
    GENERATOR,
    N_ELEMENT_BITS_ECDSA,
    ec_mult_generator,
    get_key_pair,
    get_y_coordinate,
    is_on_curve,
    to_jacobi,
)
from .metrics import (
    OPERATION_DURATION_SECONDS,
    OPERATION_ERRORS_TOTAL,
    OPERATIONS_TOTAL,
    VERIFICATION_RESULTS_TOTAL,
)
from .models import (
    InvalidSignatureFormat,
    Signature,
    SignedMessage,
    VerificationResult,
    parse_felt,
)
from .typed_data import get_message_hash

if TYPE_CHECKING:
    from .rpc import RemoteVerifier
    from .types import Point
    from .typed_data import TypedData

logger = logging.getLogger(__name__)

MAX_SIGNING_ATTEMPTS = 64

_ECDSA_BOUND = 1 << N_ELEMENT_BITS_ECDSA

T = TypeVar("T")

__all__ = [
    "MAX_SIGNING_ATTEMPTS",
    "InvalidSignatureFormat",
    "RequestState",
    "Signer",
    "SigningError",
    "SigningRequest",
    "check_signature_format",
    "generate_k_rfc6979",
    "sign",
    "verify",
]


class SigningError(Exception):
    """Signing could not produce a valid signature."""


def _int_to_bytes(value: int) -> bytes:
    # Zero still needs one byte; rfc6979 cannot parse empty input
    return value.to_bytes(max(1, math.ceil(value.bit_length() / 8)), "big")


def generate_k_rfc6979(msg_hash: int, private_key: int, seed: int | None = None) -> int:
    """Derive the deterministic nonce for ``(private_key, msg_hash)``.

    Hashes whose bit length is 1-4 bits short of a byte boundary (and at least
    248 bits) are shifted left by 4 bits first, so the nonce matches the one
    other Stark signers derive for the same input.

    Args:
        msg_hash: The message hash
        private_key: The signing key
        seed: Extra entropy for retries, None on the first attempt

    """
    if 1 <= msg_hash.bit_length() % 8 <= 4 and msg_hash.bit_length() >= 248:
        msg_hash *= 16

    extra_entropy = b"" if seed is None else _int_to_bytes(seed)
    return generate_k(
        EC_ORDER,
        private_key,
        hashlib.sha256,
        _int_to_bytes(msg_hash),
        extra_entropy=extra_entropy,
    )


def sign(msg_hash: int, private_key: int) -> Signature:
    """Sign a message hash.

    Args:
        msg_hash: Hash to sign, in ``[0, 2**251)``
        private_key: Key in ``[1, EC_ORDER)``

    Returns:
        The signature (r, s)

    Raises:
        SigningError: If the hash is out of range or no valid signature was
            found within MAX_SIGNING_ATTEMPTS nonces

    """
    if not 0 <= msg_hash < _ECDSA_BOUND:
        raise SigningError(f"Message hash must be below 2**{N_ELEMENT_BITS_ECDSA}")

    seed: int | None = None
    for _ in range(MAX_SIGNING_ATTEMPTS):
        k = generate_k_rfc6979(msg_hash, private_key, seed)
        seed = 1 if seed is None else seed + 1

        point = ec_mult_generator(k)
        if point is None:
            continue
        r = point[0]
        if not 1 <= r < _ECDSA_BOUND:
            continue

        z = (msg_hash + r * private_key) % EC_ORDER
        if z == 0:
            continue

        w = k * pow(z, -1, EC_ORDER) % EC_ORDER
        if not 1 <= w < _ECDSA_BOUND:
            continue

        return Signature(r=r, s=pow(w, -1, EC_ORDER))

    raise SigningError(f"No valid signature found after {MAX_SIGNING_ATTEMPTS} attempts")


def verify(msg_hash: int, signature: Signature | Sequence[int | str], public_key: int | Point) -> bool:
    """Check a signature against a message hash and public key.

    ``public_key`` is either the full point or its x-coordinate; with only the
    x-coordinate both possible points are tried. Malformed or out-of-range
    inputs make the signature invalid rather than raising. A three-element
    signature is checked on its first two values.
    """
    if not isinstance(signature, Signature):
        try:
            signature = Signature.from_sequence(signature)
        except InvalidSignatureFormat:
            return False
    r, s = signature.r, signature.s
    if not 1 <= r < _ECDSA_BOUND or r >= EC_ORDER:
        return False
    if not 1 <= s < EC_ORDER:
        return False
    if not 0 <= msg_hash < _ECDSA_BOUND:
        return False

    w = pow(s, -1, EC_ORDER)
    if not 1 <= w < _ECDSA_BOUND:
        return False

    zg = GENERATOR * (msg_hash * w % EC_ORDER)
    rw = r * w % EC_ORDER
    if isinstance(public_key, int):
        try:
            y = get_y_coordinate(public_key)
        except ValueError:
            return False
        # The other y candidate is -Q, and (r*w)(-Q) is just -(r*w)Q.
        rq = to_jacobi((public_key, y)) * rw
        candidates = (zg + rq, zg + -rq)
    else:
        point = (public_key[0], public_key[1])
        if not is_on_curve(point):
            return False
        candidates = (zg + to_jacobi(point) * rw,)
    return any(candidate != INFINITY and candidate.x() == r for candidate in candidates)


def check_signature_format(signature: Sequence[int | str] | Signature) -> Signature:
    """Normalize a signature and check that its values are in range.

    Unlike :func:`verify`, which only answers valid or not, this reports what
    is wrong with the signature.

    Raises:
        InvalidSignatureFormat: If the signature has the wrong shape or its
            values are out of range

    """
    normalized = signature if isinstance(signature, Signature) else Signature.from_sequence(signature)
    if not 1 <= normalized.r < _ECDSA_BOUND:
        raise InvalidSignatureFormat(f"r must be in [1, 2**{N_ELEMENT_BITS_ECDSA})")
    if not 1 <= normalized.s < EC_ORDER:
        raise InvalidSignatureFormat("s must be in [1, EC_ORDER)")
    return normalized


class RequestState(Enum):
    """Lifecycle of a single sign or verify request."""

    IDLE = "idle"
    HASHING = "hashing"
    SIGNING = "signing"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    RequestState.IDLE: frozenset({RequestState.HASHING, RequestState.FAILED}),
    RequestState.HASHING: frozenset(
        {RequestState.SIGNING, RequestState.VERIFYING, RequestState.DONE, RequestState.FAILED},
    ),
    RequestState.SIGNING: frozenset({RequestState.DONE, RequestState.FAILED}),
    RequestState.VERIFYING: frozenset({RequestState.DONE, RequestState.FAILED}),
    RequestState.DONE: frozenset(),
    RequestState.FAILED: frozenset(),
}


@dataclass(slots=True)
class SigningRequest:
    """Tracks one request through its states. Nothing outlives the request."""

    operation: str
    state: RequestState = RequestState.IDLE
    message_hash: int | None = None
    error_type: str | None = None

    def advance(self, state: RequestState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Invalid {self.operation} request transition: {self.state.value} -> {state.value}",
            )
        logger.debug(f"{self.operation} request: {self.state.value} -> {state.value}")
        self.state = state

    def fail(self, error: BaseException) -> None:
        self.error_type = type(error).__name__
        if self.state not in (RequestState.DONE, RequestState.FAILED):
            self.state = RequestState.FAILED

    @property
    def finished(self) -> bool:
        return self.state in (RequestState.DONE, RequestState.FAILED)


class Signer:
    """Hashes typed data and signs or verifies it.

    The signer holds no key material. A private key passed to
    :meth:`sign_typed_data` is copied into a :class:`~starksigner.models.KeyPair`
    that is zeroed before the call returns.
    """

    def __init__(self, remote_verifier: RemoteVerifier | None = None) -> None:
        self._remote_verifier = remote_verifier

    @property
    def remote_verifier(self) -> RemoteVerifier | None:
        return self._remote_verifier

    def hash_typed_data(self, typed_data: TypedData, account: int | str) -> int:
        """Return the message hash of ``typed_data`` for ``account``."""
        request = SigningRequest(operation="hash")

        def run() -> int:
            message_hash = self._hash(request, typed_data, account)
            request.advance(RequestState.DONE)
            return message_hash

        return self._run(request, run)

    def sign_typed_data(
        self,
        typed_data: TypedData,
        private_key: int,
        account: int | str | None = None,
    ) -> SignedMessage:
        """Hash and sign a typed-data document.

        Args:
            typed_data: The document to sign
            private_key: The signing key; never logged or kept
            account: Account address bound into the hash. Defaults to the
                public key derived from ``private_key``

        Returns:
            The message hash, signature and signer public key

        Raises:
            SchemaError: If the document schema is invalid
            EncodingError: If a value does not fit its type
            InvalidScalarError: If the private key is out of range
            SigningError: If no valid signature could be produced

        """
        request = SigningRequest(operation="sign")

        def run() -> SignedMessage:
            key_pair = get_key_pair(private_key)
            try:
                public_key = key_pair.stark_public_key
                public_point = key_pair.public_key
                message_hash = self._hash(
                    request,
                    typed_data,
                    public_key if account is None else account,
                )
                request.advance(RequestState.SIGNING)
                signature = sign(message_hash, key_pair.private_key)
            finally:
                key_pair.clear()
            request.advance(RequestState.DONE)
            logger.debug(f"Signed {typed_data.primary_type} message {message_hash:#x}")
            return SignedMessage(
                message_hash=message_hash,
                signature=signature,
                public_key=public_key,
                public_point=public_point,
            )

        return self._run(request, run)

    def verify_typed_data(
        self,
        typed_data: TypedData,
        signature: Signature | Sequence[int | str],
        public_key: int | Point,
        account: int | str | None = None,
    ) -> VerificationResult:
        """Verify a signature over a typed-data document against a public key.

        ``account`` defaults to the public key's x-coordinate.

        Raises:
            InvalidSignatureFormat: If the signature array has the wrong length
            SchemaError: If the document schema is invalid
            EncodingError: If a value does not fit its type

        """
        request = SigningRequest(operation="verify")
        normalized = signature if isinstance(signature, Signature) else Signature.from_sequence(signature)
        public_x = public_key if isinstance(public_key, int) else public_key[0]

        def run() -> VerificationResult:
            message_hash = self._hash(request, typed_data, public_x if account is None else account)
            request.advance(RequestState.VERIFYING)
            valid = verify(message_hash, normalized, public_key)
            request.advance(RequestState.DONE)
            VERIFICATION_RESULTS_TOTAL.labels(method="local", result=str(valid).lower()).inc()
            return VerificationResult(valid=valid, message_hash=message_hash)

        return self._run(request, run)

    async def verify_typed_data_remote(
        self,
        typed_data: TypedData,
        account: int | str,
        signature: Signature | Sequence[int | str],
        verifier: RemoteVerifier | None = None,
        timeout: float | None = None,
    ) -> VerificationResult:
        """Verify a signature by asking the account contract.

        The hash is bound to ``account``, then the account contract's
        ``is_valid_signature`` entrypoint decides.

        Raises:
            ValueError: If no remote verifier is configured
            AccountNotDeployed: If no contract is deployed at ``account``
            TransportError: If the node could not be reached
            RpcError: If the node rejected the call

        """
        verifier = verifier or self._remote_verifier
        if verifier is None:
            raise ValueError("Remote verification requires an RPC URL")

        request = SigningRequest(operation="verify_remote")
        normalized = signature if isinstance(signature, Signature) else Signature.from_sequence(signature)
        OPERATIONS_TOTAL.labels(operation=request.operation).inc()
        start_time = time.perf_counter()
        try:
            message_hash = await asyncio.to_thread(self._hash, request, typed_data, account)
            request.advance(RequestState.VERIFYING)
            valid = await verifier.verify(message_hash, parse_felt(account), normalized, timeout=timeout)
            request.advance(RequestState.DONE)
        except Exception as e:
            request.fail(e)
            OPERATION_ERRORS_TOTAL.labels(operation=request.operation, error_type=type(e).__name__).inc()
            raise
        finally:
            OPERATION_DURATION_SECONDS.labels(operation=request.operation).observe(
                time.perf_counter() - start_time,
            )

        VERIFICATION_RESULTS_TOTAL.labels(method="remote", result=str(valid).lower()).inc()
        return VerificationResult(valid=valid, message_hash=message_hash)

    def _hash(self, request: SigningRequest, typed_data: TypedData, account: int | str) -> int:
        request.advance(RequestState.HASHING)
        request.message_hash = get_message_hash(typed_data, account)
        return request.message_hash

    def _run(self, request: SigningRequest, func: Callable[[], T]) -> T:
        OPERATIONS_TOTAL.labels(operation=request.operation).inc()
        start_time = time.perf_counter()
        try:
            return func()
        except Exception as e:
            request.fail(e)
            OPERATION_ERRORS_TOTAL.labels(operation=request.operation, error_type=type(e).__name__).inc()
            logger.debug(f"{request.operation} request failed: {type(e).__name__}")
            raise
        finally:
            OPERATION_DURATION_SECONDS.labels(operation=request.operation).observe(
                time.perf_counter() - start_time,
            )
