"""API routes for Unibox."""

from .health import router as health_router
from .messages import router as messages_router
from .meta_oauth import router as meta_oauth_router
from .webhooks import router as webhooks_router

__all__ = ["health_router", "messages_router", "meta_oauth_router", "webhooks_router"]
