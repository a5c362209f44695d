"""
Credential & resource discovery for Meta OAuth grants.

Turns an OAuth callback into stored grants and sendable accounts:

1. code -> short-lived token -> long-lived token (+ expiry)
2. ``debug_token`` introspection -> granted scopes, partitioned per channel
3. base OAuthConnection row persisted per granted channel before enrichment
4. best-effort enrichment (WABA/phone-number, Page, IG business account)
5. bridge: ConnectedAccount keyed by the id inbound webhooks reference
6. best-effort ``subscribed_apps`` subscription for Pages and IG accounts

``check_status`` re-validates the WhatsApp bridge row and repairs drift;
``select_page`` re-bridges Messenger to another managed Page.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any
from urllib.parse import urlencode

from unibox.core.config.settings import settings
from unibox.core.logging.logger import get_logger
from unibox.database.models import ConnectedAccount, OAuthConnection
from unibox.domain.interfaces.inbox_repository import InboxRepository
from unibox.domain.services.best_effort import best_effort
from unibox.domain.services.oauth_state import decode_state, encode_state
from unibox.domain.services.waba_resolvers import (
    WabaResolution,
    resolve_whatsapp_account,
)
from unibox.messaging.meta.client.graph_client import GraphApiClient
from unibox.messaging.meta.errors import (
    AccountNotConnectedError,
    GraphApiError,
    OAuthExchangeError,
    PageNotFoundError,
)
from unibox.messaging.meta.utils.payload_helpers import as_list, utc_now
from unibox.schemas.core.types import ChannelType

# Permissions requested in the login dialog, for all three channels
OAUTH_SCOPES = [
    "whatsapp_business_management",
    "whatsapp_business_messaging",
    "instagram_basic",
    "instagram_manage_messages",
    "pages_messaging",
    "pages_manage_metadata",
    "pages_read_engagement",
]

# Scope that marks a channel as granted, and the prefix of its scope group
CHANNEL_REQUIRED_SCOPE = {
    ChannelType.WHATSAPP: "whatsapp_business_management",
    ChannelType.MESSENGER: "pages_messaging",
    ChannelType.INSTAGRAM: "instagram_basic",
}
CHANNEL_SCOPE_PREFIX = {
    ChannelType.WHATSAPP: "whatsapp",
    ChannelType.MESSENGER: "pages_",
    ChannelType.INSTAGRAM: "instagram",
}

DEFAULT_WHATSAPP_NAME = "WhatsApp Business"

# Channels whose accounts receive DMs only once subscribed to the app
PAGE_CHANNELS = (ChannelType.MESSENGER, ChannelType.INSTAGRAM)
SUBSCRIBED_FIELDS = {
    ChannelType.MESSENGER: (
        "messages,messaging_postbacks,messaging_optins,message_deliveries,"
        "message_reads,conversations,standby"
    ),
    ChannelType.INSTAGRAM: "messages",
}
PAGE_LIST_FIELDS = "id,name,category,picture,fan_count"


def partition_scopes(scopes: list[str]) -> dict[ChannelType, list[str]]:
    """Group granted scopes per channel; channels without their key scope are omitted."""
    groups: dict[ChannelType, list[str]] = {}
    for channel, required in CHANNEL_REQUIRED_SCOPE.items():
        if required in scopes:
            prefix = CHANNEL_SCOPE_PREFIX[channel]
            groups[channel] = [s for s in scopes if s.startswith(prefix)]
    return groups


@dataclass(frozen=True)
class WebhookSubscription:
    """Outcome of subscribing one Page or Instagram account to the app."""

    SUBSCRIBED = "subscribed"
    ERROR = "error"
    SKIPPED = "skipped"

    channel: ChannelType
    object_id: str
    status: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == self.SUBSCRIBED

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel.value,
            "id": self.object_id,
            "status": self.status,
            "error": self.error,
        }


@dataclass(frozen=True)
class ManagedPage:
    """A Facebook Page listed for the operator to pick from."""

    id: str
    name: str | None
    category: str
    picture_url: str | None
    follower_count: int
    is_connected: bool

    @classmethod
    def from_graph(cls, page: dict[str, Any], is_connected: bool) -> "ManagedPage":
        picture = (page.get("picture") or {}).get("data") or {}
        return cls(
            id=str(page["id"]),
            name=page.get("name"),
            category=page.get("category") or "Unknown",
            picture_url=picture.get("url"),
            follower_count=int(page.get("fan_count") or 0),
            is_connected=is_connected,
        )


@dataclass
class ChannelDiscovery:
    """Outcome of discovery for one channel."""

    channel: ChannelType
    saved: bool = False
    account: ConnectedAccount | None = None
    strategy: str | None = None
    error: str | None = None
    subscriptions: list[WebhookSubscription] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        return self.account is not None


@dataclass
class DiscoveryReport:
    tenant_id: str
    scopes: list[str] = field(default_factory=list)
    channels: dict[ChannelType, ChannelDiscovery] = field(default_factory=dict)

    @property
    def saved_count(self) -> int:
        return sum(1 for c in self.channels.values() if c.saved)

    @property
    def connected_channels(self) -> list[ChannelType]:
        return [ch for ch, c in self.channels.items() if c.connected]


@dataclass(frozen=True)
class TokenGrant:
    access_token: str
    expires_in: int | None = None

    def expires_at(self) -> datetime | None:
        return utc_now() + timedelta(seconds=self.expires_in) if self.expires_in else None


class CredentialDiscoveryService:
    """OAuth completion, status self-healing and disconnect for Meta channels."""

    def __init__(
        self,
        client: GraphApiClient,
        repository: InboxRepository,
        *,
        app_id: str | None = settings.meta_app_id,
        app_secret: str | None = settings.meta_app_secret,
        redirect_uri: str = settings.oauth_redirect_uri,
        state_ttl: float = settings.oauth_state_ttl,
        configured_waba_id: str | None = settings.whatsapp_business_account_id,
        configured_phone_id: str | None = settings.whatsapp_phone_number_id,
    ):
        self.client = client
        self.repository = repository
        self.app_id = app_id
        self.app_secret = app_secret
        self.redirect_uri = redirect_uri
        self.state_ttl = state_ttl
        self.configured_waba_id = configured_waba_id
        self.configured_phone_id = configured_phone_id

    @property
    def is_configured(self) -> bool:
        return bool(self.app_id and self.app_secret)

    # ==================== CONNECT ====================

    def build_connect_url(self, tenant_id: str) -> str:
        """Facebook Login dialog URL carrying a fresh state for ``tenant_id``."""
        if not self.app_id:
            raise OAuthExchangeError("META_APP_ID is not configured")
        query = urlencode(
            {
                "client_id": self.app_id,
                "redirect_uri": self.redirect_uri,
                "scope": ",".join(OAUTH_SCOPES),
                "response_type": "code",
                "state": encode_state(tenant_id),
            }
        )
        return f"https://www.facebook.com/{self.client.api_version}/dialog/oauth?{query}"

    # ==================== CALLBACK ====================

    async def complete_oauth(self, code: str, state: str) -> DiscoveryReport:
        """
        Complete an OAuth callback.

        Raises:
            OAuthStateError: State malformed or expired (no exchange attempted)
            OAuthExchangeError: App not configured or token exchange failed
        """
        oauth_state = decode_state(state, self.state_ttl)
        if not self.is_configured:
            raise OAuthExchangeError("Server configuration error")
        if not code:
            raise OAuthExchangeError("Missing authorization code")

        tenant_id = oauth_state.tenant_id
        logger = get_logger(__name__)

        grant = await self._exchange_code(code)
        scopes = await self._granted_scopes(grant.access_token)
        logger.info(f"OAuth grant for tenant {tenant_id}: scopes={scopes}")

        report = DiscoveryReport(tenant_id=tenant_id, scopes=scopes)
        for channel, channel_scopes in partition_scopes(scopes).items():
            report.channels[channel] = await self._discover_channel(
                tenant_id, channel, channel_scopes, grant
            )

        logger.info(
            f"Discovery done for tenant {tenant_id}: saved={report.saved_count} "
            f"connected={[c.value for c in report.connected_channels]}"
        )
        return report

    async def _exchange_code(self, code: str) -> TokenGrant:
        try:
            short = await self.client.get(
                "oauth/access_token",
                params={
                    "client_id": self.app_id,
                    "client_secret": self.app_secret,
                    "redirect_uri": self.redirect_uri,
                    "code": code,
                },
                retries=0,
            )
        except GraphApiError as exc:
            raise OAuthExchangeError(exc.message or "Token exchange failed") from exc
        if not short.get("access_token"):
            raise OAuthExchangeError("Token exchange failed")

        try:
            long_lived = await self.client.get(
                "oauth/access_token",
                params={
                    "grant_type": "fb_exchange_token",
                    "client_id": self.app_id,
                    "client_secret": self.app_secret,
                    "fb_exchange_token": short["access_token"],
                },
                retries=0,
            )
        except GraphApiError as exc:
            raise OAuthExchangeError("Failed to get long-lived token") from exc
        if not long_lived.get("access_token"):
            raise OAuthExchangeError("Failed to get long-lived token")

        expires_in = long_lived.get("expires_in")
        return TokenGrant(
            access_token=long_lived["access_token"],
            expires_in=int(expires_in) if expires_in else None,
        )

    async def _granted_scopes(self, access_token: str) -> list[str]:
        try:
            data = await self.client.get(
                "debug_token",
                params={
                    "input_token": access_token,
                    "access_token": f"{self.app_id}|{self.app_secret}",
                },
            )
        except GraphApiError as exc:
            get_logger(__name__).warning(f"Token introspection failed: {exc}")
            return []
        return [str(s) for s in as_list((data.get("data") or {}).get("scopes"))]

    async def _discover_channel(
        self,
        tenant_id: str,
        channel: ChannelType,
        scopes: list[str],
        grant: TokenGrant,
    ) -> ChannelDiscovery:
        logger = get_logger(__name__)
        result = ChannelDiscovery(channel=channel)

        # The token is stored before any enrichment call can fail
        saved = await best_effort(
            self.repository.upsert_oauth_connection(
                tenant_id,
                channel,
                access_token=grant.access_token,
                scopes=scopes,
                token_expires_at=grant.expires_at(),
            ),
            action=f"save {channel.value} OAuth connection",
            logger=logger,
        )
        if not saved.ok:
            result.error = str(saved.error)
            return result
        result.saved = True
        connection = saved.value

        enrich = {
            ChannelType.WHATSAPP: self._enrich_whatsapp,
            ChannelType.MESSENGER: self._enrich_messenger,
            ChannelType.INSTAGRAM: self._enrich_instagram,
        }[channel]
        outcome = await best_effort(
            enrich(tenant_id, connection, grant, result),
            action=f"{channel.value} discovery",
            logger=logger,
        )
        if not outcome.ok:
            result.error = str(outcome.error)

        if result.account is not None and channel in PAGE_CHANNELS:
            subscribed = await best_effort(
                self._subscribe_account(result.account, {}),
                action=f"{channel.value} webhook subscription",
                logger=logger,
            )
            result.subscriptions = subscribed.value_or([])

        if result.account is None:
            logger.warning(
                f"{channel.value} grant saved for tenant {tenant_id} but no sendable "
                f"account id was resolved; channel stays unconnected"
            )
        return result

    async def _enrich_whatsapp(
        self,
        tenant_id: str,
        connection: OAuthConnection,
        grant: TokenGrant,
        result: ChannelDiscovery,
    ) -> None:
        resolution = await resolve_whatsapp_account(
            self.client,
            grant.access_token,
            configured_id=self.configured_waba_id,
            configured_phone_id=self.configured_phone_id,
        )
        if resolution is None:
            return
        result.strategy = resolution.strategy

        await self.repository.update_oauth_connection(
            connection.id,
            account_id=resolution.waba_id,
            account_name=resolution.waba_name,
            provider_metadata={
                "phone_number_id": resolution.phone_number_id,
                "phone_display": resolution.phone_display,
            },
        )
        if not resolution.waba_id:
            get_logger(__name__).warning(
                "Could not determine the WABA id; templates need "
                "WHATSAPP_BUSINESS_ACCOUNT_ID set to a valid WABA id"
            )

        # Inbound webhooks reference the phone-number id, never the WABA id
        if resolution.phone_number_id:
            result.account = await self._bridge_whatsapp(
                tenant_id,
                resolution,
                access_token=grant.access_token,
                token_expires_at=grant.expires_at(),
            )

    async def _bridge_whatsapp(
        self,
        tenant_id: str,
        resolution: WabaResolution,
        *,
        access_token: str | None,
        token_expires_at=None,
    ) -> ConnectedAccount:
        account = await self.repository.upsert_connected_account(
            tenant_id,
            ChannelType.WHATSAPP,
            resolution.phone_number_id,
            access_token=access_token,
            channel_account_name=resolution.waba_name or DEFAULT_WHATSAPP_NAME,
            token_expires_at=token_expires_at,
            provider_metadata={
                "waba_id": resolution.waba_id,
                "phone_number_id": resolution.phone_number_id,
                "phone_display": resolution.phone_display,
            },
        )
        get_logger(__name__).info(
            f"WhatsApp bridged for tenant {tenant_id}: "
            f"channel_account_id={resolution.phone_number_id}"
        )
        return account

    async def _list_pages(self, access_token: str, fields: str) -> list[dict[str, Any]]:
        data = await self.client.get(
            "me/accounts", access_token=access_token, params={"fields": fields}
        )
        return [p for p in as_list(data.get("data")) if isinstance(p, dict) and p.get("id")]

    async def _bridge_page(
        self,
        tenant_id: str,
        connection: OAuthConnection,
        page: dict[str, Any],
        *,
        access_token: str,
        token_expires_at: datetime | None,
    ) -> ConnectedAccount:
        page_id = str(page["id"])
        page_token = page.get("access_token")
        await self.repository.update_oauth_connection(
            connection.id,
            account_id=page_id,
            account_name=page.get("name"),
            page_access_token=page_token,
        )
        account = await self.repository.upsert_connected_account(
            tenant_id,
            ChannelType.MESSENGER,
            page_id,
            access_token=page_token or access_token,
            channel_account_name=page.get("name"),
            token_expires_at=token_expires_at,
            provider_metadata={"page_access_token": page_token} if page_token else {},
        )
        get_logger(__name__).info(f"Messenger bridged for tenant {tenant_id}: page {page_id}")
        return account

    async def _enrich_messenger(
        self,
        tenant_id: str,
        connection: OAuthConnection,
        grant: TokenGrant,
        result: ChannelDiscovery,
    ) -> None:
        # First managed Page; the operator can switch with ``select_page``
        pages = await self._list_pages(grant.access_token, "id,name,access_token")
        if not pages:
            return
        result.strategy = "managed_pages"
        result.account = await self._bridge_page(
            tenant_id,
            connection,
            pages[0],
            access_token=grant.access_token,
            token_expires_at=grant.expires_at(),
        )

    async def _enrich_instagram(
        self,
        tenant_id: str,
        connection: OAuthConnection,
        grant: TokenGrant,
        result: ChannelDiscovery,
    ) -> None:
        pages = await self._list_pages(
            grant.access_token,
            "id,name,access_token,instagram_business_account{id,username,name}",
        )
        for page in pages:
            ig_account = page.get("instagram_business_account") or {}
            if not ig_account.get("id"):
                continue

            page_token = page.get("access_token")
            ig_id = str(ig_account["id"])
            name = ig_account.get("username") or ig_account.get("name")
            result.strategy = "page_instagram_account"

            await self.repository.update_oauth_connection(
                connection.id,
                account_id=ig_id,
                account_name=name,
                page_access_token=page_token,
                provider_metadata={
                    "ig_username": ig_account.get("username"),
                    "page_id": str(page["id"]),
                },
            )
            metadata = {"ig_username": ig_account.get("username"), "page_id": str(page["id"])}
            if page_token:
                metadata["page_access_token"] = page_token
            result.account = await self.repository.upsert_connected_account(
                tenant_id,
                ChannelType.INSTAGRAM,
                ig_id,
                access_token=page_token or grant.access_token,
                channel_account_name=name,
                token_expires_at=grant.expires_at(),
                provider_metadata=metadata,
            )
            get_logger(__name__).info(f"Instagram bridged for tenant {tenant_id}: {ig_id}")
            return

    # ==================== PAGES & WEBHOOK SUBSCRIPTIONS ====================

    async def _messenger_connection(self, tenant_id: str) -> OAuthConnection:
        connection = await self.repository.get_oauth_connection(
            tenant_id, ChannelType.MESSENGER
        )
        if connection is None or not connection.is_active or not connection.access_token:
            raise AccountNotConnectedError("Messenger is not connected")
        return connection

    async def list_pages(self, tenant_id: str) -> list[ManagedPage]:
        """
        Pages the tenant's Messenger grant manages, marking the bridged one.

        Raises:
            AccountNotConnectedError: No active Messenger grant
            GraphApiError: Provider rejected the listing
        """
        connection = await self._messenger_connection(tenant_id)
        pages = await self._list_pages(connection.access_token, PAGE_LIST_FIELDS)
        connected = {
            a.channel_account_id
            for a in await self.repository.list_accounts(tenant_id, ChannelType.MESSENGER)
        }
        return [ManagedPage.from_graph(p, str(p["id"]) in connected) for p in pages]

    async def select_page(
        self, tenant_id: str, page_id: str
    ) -> tuple[ConnectedAccount, list[WebhookSubscription]]:
        """
        Bridge ``page_id`` as the tenant's Messenger account.

        Other Messenger rows of the tenant are deactivated (tokens kept), and
        the chosen Page is subscribed to the app's webhooks best-effort.

        Raises:
            AccountNotConnectedError: No active Messenger grant
            PageNotFoundError: The grant does not manage ``page_id``
        """
        connection = await self._messenger_connection(tenant_id)
        pages = await self._list_pages(connection.access_token, "id,name,access_token")
        page = next((p for p in pages if str(p["id"]) == page_id), None)
        if page is None:
            raise PageNotFoundError(f"Page {page_id} is not managed by this account")

        logger = get_logger(__name__)
        for account in await self.repository.list_accounts(tenant_id, ChannelType.MESSENGER):
            if account.channel_account_id != page_id:
                logger.info(
                    f"Replacing Messenger page {account.channel_account_id} with {page_id}"
                )
                await self.repository.deactivate_account(account.id)

        account = await self._bridge_page(
            tenant_id,
            connection,
            page,
            access_token=connection.access_token,
            token_expires_at=connection.token_expires_at,
        )
        outcome = await best_effort(
            self._subscribe_account(account, {}),
            action="Messenger webhook subscription",
            logger=logger,
        )
        return account, outcome.value_or([])

    async def subscribe_page_webhooks(self, tenant_id: str) -> list[WebhookSubscription]:
        """
        Subscribe every active Page and Instagram account of the tenant to
        the app's webhooks, so customer DMs reach the webhook routes.

        Each subscription is attempted independently; failures are reported
        in the results, never raised.
        """
        accounts = [
            account
            for channel in PAGE_CHANNELS
            for account in await self.repository.list_accounts(tenant_id, channel)
        ]
        page_tokens = {
            a.channel_account_id: a.send_token
            for a in accounts
            if a.channel_type == ChannelType.MESSENGER and a.send_token
        }

        results: list[WebhookSubscription] = []
        seen: set[tuple[ChannelType, str]] = set()
        for account in accounts:
            for subscription in await self._subscribe_account(account, page_tokens):
                key = (subscription.channel, subscription.object_id)
                if key not in seen:
                    seen.add(key)
                    results.append(subscription)
        return results

    async def _subscribe_account(
        self, account: ConnectedAccount, page_tokens: dict[str, str]
    ) -> list[WebhookSubscription]:
        channel = ChannelType(account.channel_type)
        if channel == ChannelType.INSTAGRAM:
            metadata = account.provider_metadata or {}
            token = metadata.get("page_access_token") or page_tokens.get(
                str(metadata.get("page_id"))
            )
            return [await self._subscribe(channel, account.channel_account_id, token)]
        if channel != ChannelType.MESSENGER:
            return []

        page_id = account.channel_account_id
        token = account.send_token
        results = [await self._subscribe(channel, page_id, token)]
        if not token:
            return results

        # The Page's linked Instagram account needs its own subscription
        try:
            data = await self.client.get(
                page_id, access_token=token, params={"fields": "instagram_business_account"}
            )
        except GraphApiError as exc:
            get_logger(__name__).warning(
                f"Could not read the Instagram account linked to page {page_id}: {exc}"
            )
            return results
        ig_id = (data.get("instagram_business_account") or {}).get("id")
        if ig_id:
            results.append(await self._subscribe(ChannelType.INSTAGRAM, str(ig_id), token))
        return results

    async def _subscribe(
        self, channel: ChannelType, object_id: str, page_token: str | None
    ) -> WebhookSubscription:
        if not page_token:
            return WebhookSubscription(
                channel, object_id, WebhookSubscription.SKIPPED, "No page access token"
            )

        logger = get_logger(__name__)
        try:
            data = await self.client.post(
                f"{object_id}/subscribed_apps",
                access_token=page_token,
                body={"subscribed_fields": SUBSCRIBED_FIELDS[channel]},
            )
        except GraphApiError as exc:
            logger.warning(f"Webhook subscription failed for {channel.value} {object_id}: {exc}")
            return WebhookSubscription(
                channel, object_id, WebhookSubscription.ERROR, exc.message
            )

        if not data.get("success"):
            return WebhookSubscription(
                channel, object_id, WebhookSubscription.ERROR, "Subscription not confirmed"
            )
        logger.info(f"Subscribed {channel.value} {object_id} to app webhooks")
        return WebhookSubscription(channel, object_id, WebhookSubscription.SUBSCRIBED)

    # ==================== STATUS & SELF-HEALING ====================

    async def self_heal_whatsapp(
        self, tenant_id: str, connection: OAuthConnection
    ) -> ConnectedAccount | None:
        """
        Make the tenant's active WhatsApp account match the expected phone id.

        A row keyed by any other id (typically a WABA id from an earlier run)
        is deactivated and the correct row upserted. Sends already holding the
        old row finish against it; later sends re-route to the new row.
        """
        if not connection.is_active or not connection.access_token:
            return None

        expected = (connection.provider_metadata or {}).get(
            "phone_number_id"
        ) or self.configured_phone_id
        if not expected:
            return None

        logger = get_logger(__name__)
        active = await self.repository.list_accounts(tenant_id, ChannelType.WHATSAPP)
        current = next((a for a in active if a.channel_account_id == expected), None)
        stale = [a for a in active if a.channel_account_id != expected]

        if current is not None and not stale:
            return current

        for account in stale:
            logger.info(
                f"Self-healing: deactivating WhatsApp account {account.channel_account_id}, "
                f"expected {expected}"
            )
            await self.repository.deactivate_account(account.id)

        if current is not None:
            return current

        metadata = connection.provider_metadata or {}
        account = await self._bridge_whatsapp(
            tenant_id,
            WabaResolution(
                strategy="self_heal",
                waba_id=connection.account_id or self.configured_waba_id,
                waba_name=connection.account_name,
                phone_number_id=str(expected),
                phone_display=metadata.get("phone_display"),
            ),
            access_token=connection.access_token,
            token_expires_at=connection.token_expires_at,
        )
        logger.info(f"Self-healing complete: WhatsApp account {expected} is active")
        return account

    async def check_status(self, tenant_id: str) -> dict[str, dict[str, Any]]:
        """Per-channel connection status, after WhatsApp self-healing."""
        connections = {
            ChannelType(c.channel): c
            for c in await self.repository.list_oauth_connections(tenant_id)
        }

        whatsapp = connections.get(ChannelType.WHATSAPP)
        if whatsapp is not None:
            await best_effort(
                self.self_heal_whatsapp(tenant_id, whatsapp),
                action="WhatsApp self-healing",
                logger=get_logger(__name__),
            )

        status: dict[str, dict[str, Any]] = {}
        for channel in ChannelType:
            connection = connections.get(channel)
            if connection is None:
                status[channel.value] = {"connected": False}
                continue
            accounts = await self.repository.list_accounts(tenant_id, channel)
            status[channel.value] = {
                "connected": connection.is_active and bool(accounts),
                "account_ids": [a.channel_account_id for a in accounts],
                "account_id": connection.account_id,
                "account_name": connection.account_name,
                "scopes": connection.scopes,
                "metadata": connection.provider_metadata,
                "token_expires_at": (
                    connection.token_expires_at.isoformat()
                    if connection.token_expires_at
                    else None
                ),
                "updated_at": connection.updated_at.isoformat(),
            }
        return status

    # ==================== DISCONNECT ====================

    async def disconnect(self, tenant_id: str, channel: ChannelType) -> int:
        """
        Deactivate the tenant's grant and accounts on ``channel``.

        Returns:
            Number of connected accounts deactivated
        """
        connection = await self.repository.get_oauth_connection(tenant_id, channel)
        if connection is not None:
            await self.repository.update_oauth_connection(
                connection.id, is_active=False, access_token=None, page_access_token=None
            )

        accounts = await self.repository.list_accounts(tenant_id, channel)
        for account in accounts:
            await self.repository.deactivate_account(account.id, clear_token=True)

        get_logger(__name__).info(
            f"Disconnected {channel.value} for tenant {tenant_id} "
            f"({len(accounts)} account(s) deactivated)"
        )
        return len(accounts)
