"""
FastAPI dependencies.

Services are constructed once in the app lifespan and stored on
``app.state``; these functions hand them to the routes. Tenant identity
comes from the ``X-Tenant-ID`` header set by the authentication layer
in front of this service.
"""

from fastapi import Header, HTTPException, Request

from unibox.core.logging.context import set_request_context
from unibox.domain.services.credential_discovery import CredentialDiscoveryService
from unibox.domain.services.send_orchestrator import SendOrchestrator
from unibox.webhooks.ingestor import WebhookIngestor

TENANT_HEADER = "X-Tenant-ID"


def _is_valid_tenant_id(tenant_id: str) -> bool:
    # Alphanumeric plus "-" and "_" covers UUIDs and slug ids
    if not tenant_id.replace("_", "").replace("-", "").isalnum():
        return False
    return 1 <= len(tenant_id) <= 255


async def get_tenant_id(
    x_tenant_id: str | None = Header(default=None, alias=TENANT_HEADER),
) -> str:
    """Return the authenticated tenant and bind it to the logging context.

    Raises:
        HTTPException: 401 when the header is missing or malformed
    """
    if not x_tenant_id or not _is_valid_tenant_id(x_tenant_id):
        raise HTTPException(status_code=401, detail="Unauthorized")
    set_request_context(tenant_id=x_tenant_id)
    return x_tenant_id


def get_ingestor(request: Request) -> WebhookIngestor:
    return request.app.state.ingestor


def get_discovery(request: Request) -> CredentialDiscoveryService:
    return request.app.state.discovery


def get_orchestrator(request: Request) -> SendOrchestrator:
    return request.app.state.orchestrator
