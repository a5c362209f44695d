"""
Request context management using contextvars for automatic propagation.

The tenant (business operator) and the customer being served are set once per
webhook event or API request and picked up by every logger created afterwards
in the same async context.
"""

from contextvars import ContextVar

_tenant_context: ContextVar[str | None] = ContextVar("tenant_id", default=None)
_customer_context: ContextVar[str | None] = ContextVar("customer_id", default=None)
_channel_context: ContextVar[str | None] = ContextVar("channel", default=None)


def set_request_context(
    tenant_id: str | None = None,
    customer_id: str | None = None,
    channel: str | None = None,
) -> None:
    """
    Set the request context for the current async context.

    Args:
        tenant_id: Tenant owning the connected account being served
        customer_id: Channel-native customer identifier (wa_id, PSID, IGSID)
        channel: Channel name (whatsapp, instagram, messenger)
    """
    if tenant_id is not None:
        _tenant_context.set(tenant_id)
    if customer_id is not None:
        _customer_context.set(customer_id)
    if channel is not None:
        _channel_context.set(channel)


def get_current_tenant_context() -> str | None:
    return _tenant_context.get()


def get_current_customer_context() -> str | None:
    return _customer_context.get()


def get_current_channel_context() -> str | None:
    return _channel_context.get()


def clear_request_context() -> None:
    """
    Clear the request context.

    Context is isolated per task already; this exists for batch loops that
    handle events from several tenants in sequence, and for tests.
    """
    _tenant_context.set(None)
    _customer_context.set(None)
    _channel_context.set(None)


def get_context_info() -> dict[str, str | None]:
    """Get current context information for debugging."""
    return {
        "tenant_id": get_current_tenant_context(),
        "customer_id": get_current_customer_context(),
        "channel": get_current_channel_context(),
    }
