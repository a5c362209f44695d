"""
Send endpoint used by the dashboard.
"""

from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from unibox.api.dependencies import get_orchestrator, get_tenant_id
from unibox.core.logging.logger import get_logger
from unibox.database.models import Message
from unibox.domain.services.send_orchestrator import SendOrchestrator
from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    ConversationNotFoundError,
    SendValidationError,
)
from unibox.messaging.meta.utils.error_helpers import SendErrorInfo, classify_send_error
from unibox.schemas.meta.outbound import SendMessageRequest

router = APIRouter(prefix="/api/messages", tags=["Messages"])


def serialize_message(message: Message) -> dict[str, Any]:
    data = message.model_dump(mode="json")
    data["metadata"] = data.pop("provider_metadata", {})
    return data


def _error_response(info: SendErrorInfo, message: Message | None = None) -> JSONResponse:
    content: dict[str, Any] = {
        "success": False,
        "code": info.code.value,
        "error": info.error,
        "hint": info.hint,
    }
    if info.fbtrace_id:
        content["fbtrace_id"] = info.fbtrace_id
    if info.retry_after is not None:
        content["retry_after"] = info.retry_after
    if message is not None:
        content["message"] = serialize_message(message)
    return JSONResponse(status_code=info.http_status, content=content)


@router.post("/send")
async def send_message(
    body: SendMessageRequest,
    tenant_id: str = Depends(get_tenant_id),
    orchestrator: SendOrchestrator = Depends(get_orchestrator),
):
    """
    Send one message in an existing conversation.

    Returns the persisted message, or a classified error with a
    remediation hint (``code``, ``error``, ``hint``).
    """
    try:
        outcome = await orchestrator.send(tenant_id, body)
    except ConversationNotFoundError as exc:
        return JSONResponse(
            status_code=404, content={"success": False, "error": str(exc)}
        )
    except (SendValidationError, AccountNotConnectedError) as exc:
        info = classify_send_error(exc)
        get_logger(__name__).warning(f"Send rejected ({info.code.value}): {info.error}")
        return _error_response(info)

    if outcome.error is not None:
        return _error_response(outcome.error, outcome.message)

    return {"success": True, "message": serialize_message(outcome.message)}
