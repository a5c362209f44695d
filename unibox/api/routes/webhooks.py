"""
Meta webhook routes.

One unified endpoint (channel detected from the payload ``object``) plus
per-channel endpoints for apps that subscribe each product separately.
Every accepted delivery is answered with 200 immediately and processed in
the background.
"""

import json

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from unibox.api.dependencies import get_ingestor
from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_logger
from unibox.schemas.core.types import ChannelType
from unibox.webhooks.ingestor import WebhookIngestor
from unibox.webhooks.signature import verify_signature

SIGNATURE_HEADER = "X-Hub-Signature-256"

router = APIRouter(
    prefix="/webhooks",
    tags=["Webhooks"],
    responses={
        400: {"description": "Bad Request - Invalid webhook payload"},
        401: {"description": "Unauthorized - Invalid signature"},
        403: {"description": "Forbidden - Webhook verification failed"},
    },
)


def _verify_subscription(
    hub_mode: str | None, hub_verify_token: str | None, hub_challenge: str | None
) -> PlainTextResponse:
    logger = get_logger(__name__)
    expected = settings.meta_webhook_verify_token

    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info("Webhook subscription verified")
        return PlainTextResponse(content=hub_challenge or "")

    logger.warning(f"Webhook verification failed (mode={hub_mode})")
    raise HTTPException(status_code=403, detail="Forbidden")


async def _accept_delivery(
    request: Request, ingestor: WebhookIngestor, channel: ChannelType | None
) -> dict[str, str]:
    logger = get_logger(__name__)
    raw_body = await request.body()

    if settings.meta_app_secret:
        signature = request.headers.get(SIGNATURE_HEADER)
        if not verify_signature(raw_body, signature, settings.meta_app_secret):
            logger.warning(
                f"Rejected webhook with invalid signature on {request.url.path}"
            )
            raise HTTPException(status_code=401, detail="Invalid signature")
    else:
        logger.warning("META_APP_SECRET not configured - skipping signature validation")

    try:
        payload = json.loads(raw_body)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON") from exc
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON")

    ingestor.schedule(payload, channel)
    logger.debug(
        f"Webhook queued for background processing: {payload.get('object')}"
    )
    return {"status": "ok"}


@router.get("/meta")
async def verify_meta_webhook(
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    """Subscription handshake: echo ``hub.challenge`` when the token matches."""
    return _verify_subscription(hub_mode, hub_verify_token, hub_challenge)


@router.post("/meta")
async def receive_meta_webhook(
    request: Request, ingestor: WebhookIngestor = Depends(get_ingestor)
) -> dict[str, str]:
    """Unified endpoint for WhatsApp, Instagram and Messenger deliveries."""
    return await _accept_delivery(request, ingestor, None)


@router.get("/{channel}")
async def verify_channel_webhook(
    channel: ChannelType,
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
):
    return _verify_subscription(hub_mode, hub_verify_token, hub_challenge)


@router.post("/{channel}")
async def receive_channel_webhook(
    channel: ChannelType,
    request: Request,
    ingestor: WebhookIngestor = Depends(get_ingestor),
) -> dict[str, str]:
    return await _accept_delivery(request, ingestor, channel)
