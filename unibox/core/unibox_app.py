"""
FastAPI application factory.

The lifespan builds every shared service once and stores it on
``app.state``:

    http_session -> GraphApiClient -> AdapterRegistry
    repository (SQL or in-memory)
    WebhookIngestor, CredentialDiscoveryService, SendOrchestrator
"""

from contextlib import asynccontextmanager

import aiohttp
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from unibox.api.middleware.error_handler import (
    ErrorHandlerMiddleware,
    ValidationErrorHandler,
)
from unibox.api.routes import (
    health_router,
    messages_router,
    meta_oauth_router,
    webhooks_router,
)
from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_app_logger, setup_app_logging
from unibox.database.session_manager import DatabaseSessionManager
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.domain.senders.message_sender import (
    LiveMessageSender,
    MessageSenderSelector,
    SimulatedMessageSender,
)
from unibox.domain.services.credential_discovery import CredentialDiscoveryService
from unibox.domain.services.profile_service import ProfileService
from unibox.domain.services.send_orchestrator import SendOrchestrator
from unibox.messaging.meta.adapters.factory import AdapterRegistry
from unibox.messaging.meta.client.graph_client import GraphApiClient
from unibox.persistence.memory.inbox_repository import MemoryInboxRepository
from unibox.persistence.sql.inbox_repository import SQLInboxRepository
from unibox.webhooks.ingestor import WebhookIngestor

MEMORY_DATABASE_URL = "memory://"


async def _open_repository(app: FastAPI) -> InboxRepository:
    logger = get_app_logger()
    if settings.database_url == MEMORY_DATABASE_URL:
        logger.info("💾 Using in-memory conversation store")
        return MemoryInboxRepository()

    db = DatabaseSessionManager(settings.database_url, echo=settings.database_echo)
    # Schema migrations are owned elsewhere in production
    await db.initialize(create_schema=settings.is_development)
    app.state.db = db
    logger.info("💾 Database session manager initialized")
    return SQLInboxRepository(db)


def build_services(
    app: FastAPI, http_session: aiohttp.ClientSession, repository: InboxRepository
) -> None:
    """Construct the gateway services and attach them to ``app.state``."""
    client = GraphApiClient(http_session)
    adapters = AdapterRegistry(client)
    simulated = SimulatedMessageSender(repository, step_delay=settings.demo_step_delay)

    app.state.http_session = http_session
    app.state.graph_client = client
    app.state.repository = repository
    app.state.adapters = adapters
    app.state.ingestor = WebhookIngestor(repository, adapters, ProfileService(client))
    app.state.discovery = CredentialDiscoveryService(
        client,
        repository,
        app_id=settings.meta_app_id,
        app_secret=settings.meta_app_secret,
        redirect_uri=settings.oauth_redirect_uri,
        state_ttl=settings.oauth_state_ttl,
        configured_waba_id=settings.whatsapp_business_account_id,
        configured_phone_id=settings.whatsapp_phone_number_id,
    )
    app.state.simulated_sender = simulated
    app.state.orchestrator = SendOrchestrator(
        repository,
        MessageSenderSelector(
            LiveMessageSender(adapters),
            simulated,
            demo_channel=settings.demo_channel,
            demo_token_prefix=settings.demo_token_prefix,
        ),
    )


def create_app(repository: InboxRepository | None = None) -> FastAPI:
    """
    Create the Unibox FastAPI application.

    Args:
        repository: Store to use instead of the one ``DATABASE_URL`` selects
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_app_logging()
        logger = get_app_logger()
        logger.info(f"🚀 Starting Unibox v{settings.version}")
        logger.info(f"📊 Environment: {settings.environment}")
        logger.info(f"📝 Log level: {settings.log_level}")
        logger.info(f"🌐 Graph API: {settings.graph_url}")
        if not settings.has_meta_app:
            logger.warning(
                "⚠️ META_APP_ID / META_APP_SECRET not set - OAuth disabled, "
                "webhook signatures not verified"
            )

        connector = aiohttp.TCPConnector(
            limit=100, keepalive_timeout=30, enable_cleanup_closed=True
        )
        http_session = aiohttp.ClientSession(
            connector=connector,
            timeout=aiohttp.ClientTimeout(total=settings.graph_timeout),
        )
        store = repository or await _open_repository(app)
        build_services(app, http_session, store)
        logger.info("✅ Unibox startup completed")

        try:
            yield
        finally:
            logger.info("🛑 Shutting down Unibox...")
            await app.state.ingestor.drain()
            await app.state.simulated_sender.drain()
            await http_session.close()
            if getattr(app.state, "db", None) is not None:
                await app.state.db.cleanup()
            logger.info("✅ Unibox shutdown completed")

    app = FastAPI(
        title="Unibox",
        description="Unified inbox gateway for WhatsApp, Instagram and Messenger",
        version=settings.version,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(ErrorHandlerMiddleware)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422, content=ValidationErrorHandler.format_validation_error(exc)
        )

    app.include_router(health_router)
    app.include_router(webhooks_router)
    app.include_router(meta_oauth_router)
    app.include_router(messages_router)
    return app
