"""Typed data hashing and verification endpoints.

Hashing and local verification are CPU-bound and run in a worker thread.
Account verification awaits the Starknet node. There is no signing endpoint:
the service never receives private keys.
"""

import asyncio
import logging

from litestar import Controller, Request, post
from litestar.exceptions import HTTPException, NotFoundException, ValidationException
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from starksigner.models import Signature
from starksigner.rpc import AccountNotDeployed, RpcError, TransportError
from starksigner.schema import SchemaError
from starksigner.signer import Signer
from starksigner.typed_data import EncodingError, TypedData

from .base import (
    HashRequest,
    HashResponse,
    VerifyAccountRequest,
    VerifyRequest,
    VerifyResponse,
    encoding_error_detail,
    parse_body,
    parse_felt_field,
    parse_public_key_field,
    parse_signature,
    parse_typed_data,
)

logger = logging.getLogger(__name__)


def _hash_document(signer: Signer, typed_data: TypedData, account: int) -> HashResponse:
    message_hash = signer.hash_typed_data(typed_data, account)
    return HashResponse(
        message_hash=hex(message_hash),
        domain_hash=hex(typed_data.domain_hash()),
        struct_hash=hex(typed_data.struct_hash()),
    )


class TypedDataController(Controller):  # type: ignore[misc]
    """Typed data API endpoints."""

    path = "/api/v1/typed-data"

    @post("/hash", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def hash(self, request: Request, signer: Signer) -> HashResponse:
        """POST /api/v1/typed-data/hash - Compute the message hash for an account."""
        body = await parse_body(request, HashRequest)
        typed_data = parse_typed_data(body.typed_data)
        account = parse_felt_field("account", body.account)

        try:
            return await asyncio.to_thread(_hash_document, signer, typed_data, account)
        except (SchemaError, EncodingError) as e:
            raise ValidationException(detail=encoding_error_detail(e)) from e

    @post("/verify", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def verify(self, request: Request, signer: Signer) -> VerifyResponse:
        """POST /api/v1/typed-data/verify - Verify a signature against a public key."""
        body = await parse_body(request, VerifyRequest)
        typed_data = parse_typed_data(body.typed_data)
        signature = parse_signature(body.signature)
        public_key = parse_public_key_field(body.public_key)
        account = None if body.account is None else parse_felt_field("account", body.account)

        try:
            result = await asyncio.to_thread(
                signer.verify_typed_data,
                typed_data,
                signature,
                public_key,
                account,
            )
        except (SchemaError, EncodingError) as e:
            raise ValidationException(detail=encoding_error_detail(e)) from e

        return VerifyResponse(valid=result.valid, message_hash=hex(result.message_hash))

    @post("/verify-account", status_code=HTTP_200_OK)  # type: ignore[untyped-decorator]
    async def verify_account(self, request: Request, signer: Signer) -> VerifyResponse:
        """POST /api/v1/typed-data/verify-account - Verify a signature with the account contract."""
        if signer.remote_verifier is None:
            raise HTTPException(
                status_code=HTTP_503_SERVICE_UNAVAILABLE,
                detail="Account verification is not available: no RPC URL configured",
            )

        body = await parse_body(request, VerifyAccountRequest)
        typed_data = parse_typed_data(body.typed_data)
        signature: Signature = parse_signature(body.signature)
        account = parse_felt_field("account", body.account)

        try:
            result = await signer.verify_typed_data_remote(typed_data, account, signature)
        except (SchemaError, EncodingError) as e:
            raise ValidationException(detail=encoding_error_detail(e)) from e
        except AccountNotDeployed as e:
            raise NotFoundException(detail=str(e)) from e
        except (TransportError, RpcError) as e:
            logger.warning(f"Account verification failed for {account:#x}: {e}")
            raise HTTPException(status_code=HTTP_502_BAD_GATEWAY, detail=str(e)) from e

        return VerifyResponse(valid=result.valid, message_hash=hex(result.message_hash))
