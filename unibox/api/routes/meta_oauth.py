"""
Meta OAuth routes: connect, callback, status, disconnect, Page selection
and webhook subscriptions.

The callback is hit by the operator's browser, so every outcome ends in a
redirect to the dashboard settings page with a ``meta`` marker.
"""

from dataclasses import asdict
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import JSONResponse, RedirectResponse

from unibox.api.dependencies import get_discovery, get_tenant_id
from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_logger
from unibox.domain.services.credential_discovery import CredentialDiscoveryService
from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    GraphApiError,
    OAuthExchangeError,
    OAuthStateError,
    PageNotFoundError,
    UniboxError,
)
from unibox.schemas.core.types import ChannelType

router = APIRouter(prefix="/api/meta", tags=["Meta OAuth"])

NO_PERMISSIONS_MESSAGE = (
    "No permissions were granted. Please try again and accept all permissions."
)
NOTHING_SAVED_MESSAGE = (
    "Permissions were granted but no connections could be saved. Check server logs."
)
EXPIRED_STATE_MESSAGE = "Authorization expired. Please try again."
INVALID_STATE_MESSAGE = "Invalid authorization state. Please try again."


def settings_url(**params: str) -> str:
    """Dashboard integrations tab, with ``meta`` outcome markers appended."""
    base = f"{settings.app_url.rstrip('/')}/dashboard/settings?tab=integrations"
    extra = "".join(f"&{key}={quote(value, safe='')}" for key, value in params.items())
    return f"{base}{extra}"


def _error_redirect(message: str) -> RedirectResponse:
    return RedirectResponse(url=settings_url(meta="error", message=message), status_code=302)


@router.get("/connect")
async def connect(
    tenant_id: str = Depends(get_tenant_id),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
):
    """Return the Facebook Login dialog URL for this tenant."""
    try:
        return {"url": discovery.build_connect_url(tenant_id)}
    except OAuthExchangeError:
        return JSONResponse(status_code=500, content={"error": "Server configuration error"})


@router.get("/callback")
async def oauth_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
) -> RedirectResponse:
    logger = get_logger(__name__)

    if error:
        logger.warning(f"OAuth denied by user or provider: {error} ({error_description})")
        return _error_redirect(error_description or error)

    if not code or not state:
        return _error_redirect("Missing authorization code or state")

    try:
        report = await discovery.complete_oauth(code, state)
    except OAuthStateError as exc:
        logger.warning(f"OAuth callback rejected: {exc}")
        return _error_redirect(
            EXPIRED_STATE_MESSAGE if exc.is_expired else INVALID_STATE_MESSAGE
        )
    except UniboxError as exc:
        logger.error(f"OAuth callback failed: {exc}")
        return _error_redirect(str(exc))

    if not report.channels:
        return _error_redirect(NO_PERMISSIONS_MESSAGE)
    if report.saved_count == 0:
        return _error_redirect(NOTHING_SAVED_MESSAGE)

    return RedirectResponse(url=settings_url(meta="connected"), status_code=302)


@router.get("/status")
async def connection_status(
    tenant_id: str = Depends(get_tenant_id),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
) -> dict[str, Any]:
    """Per-channel connection status, repairing WhatsApp routing drift first."""
    return {"status": await discovery.check_status(tenant_id)}


@router.post("/disconnect")
async def disconnect(
    payload: dict[str, Any] = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
):
    try:
        channel = ChannelType(payload.get("channel"))
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Invalid channel"})

    deactivated = await discovery.disconnect(tenant_id, channel)
    return {"success": True, "channel": channel.value, "deactivated": deactivated}


@router.get("/pages")
async def list_pages(
    tenant_id: str = Depends(get_tenant_id),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
):
    """Facebook Pages the Messenger grant manages, with ``is_connected`` flags."""
    try:
        pages = await discovery.list_pages(tenant_id)
    except AccountNotConnectedError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except GraphApiError as exc:
        get_logger(__name__).error(f"Listing managed pages failed: {exc}")
        return JSONResponse(status_code=502, content={"error": exc.message})
    return {"pages": [asdict(page) for page in pages]}


@router.post("/pages/select")
async def select_page(
    payload: dict[str, Any] = Body(...),
    tenant_id: str = Depends(get_tenant_id),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
):
    """Bridge Messenger to the chosen Page and subscribe it to webhooks."""
    page_id = str(payload.get("page_id") or "")
    if not page_id:
        return JSONResponse(status_code=400, content={"error": "Missing page_id"})

    try:
        account, subscriptions = await discovery.select_page(tenant_id, page_id)
    except AccountNotConnectedError as exc:
        return JSONResponse(status_code=400, content={"error": str(exc)})
    except PageNotFoundError as exc:
        return JSONResponse(status_code=404, content={"error": str(exc)})
    except GraphApiError as exc:
        get_logger(__name__).error(f"Page selection failed: {exc}")
        return JSONResponse(status_code=502, content={"error": exc.message})

    return {
        "success": True,
        "account_id": account.channel_account_id,
        "account_name": account.channel_account_name,
        "subscriptions": [s.to_dict() for s in subscriptions],
    }


@router.post("/subscribe")
async def subscribe_webhooks(
    tenant_id: str = Depends(get_tenant_id),
    discovery: CredentialDiscoveryService = Depends(get_discovery),
) -> dict[str, Any]:
    """Subscribe the tenant's Pages and Instagram accounts to the app's webhooks."""
    results = await discovery.subscribe_page_webhooks(tenant_id)
    return {"results": [r.to_dict() for r in results]}
