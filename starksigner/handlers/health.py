"""Health check endpoints."""

from litestar import Controller, get

from starksigner.signer import Signer

from .base import HealthResponse


class HealthController(Controller):  # type: ignore[misc]
    """Health check endpoints."""

    path = "/"

    @get("/health")  # type: ignore[untyped-decorator]
    async def health(self, signer: Signer) -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy", rpc_configured=signer.remote_verifier is not None)
