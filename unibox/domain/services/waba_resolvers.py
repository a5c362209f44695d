"""
WhatsApp Business Account (WABA) resolution strategies.

The operator-supplied ``WHATSAPP_BUSINESS_ACCOUNT_ID`` is often a
phone-number id rather than a WABA id, so discovery tries an ordered list of
resolvers. Each resolver is a function of (client, token, candidate id) with
no shared state, returning a ``WabaResolution`` or None.

Order:
    1. owned_waba      - ``me/businesses`` owned WABA edge
    2. configured_waba - configured id queried as a WABA (phone_numbers edge)
    3. phone_owner     - configured id as a phone number, parent via ``owner``
                         or the ``whatsapp_business_account`` field
    4. shared_waba     - WABAs shared directly with the caller
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Any

from unibox.core.logging.logger import get_logger
from unibox.messaging.meta.client.graph_client import GraphApiClient
from unibox.messaging.meta.errors import GraphApiError
from unibox.messaging.meta.utils.payload_helpers import as_list

PHONE_FIELDS = "phone_numbers{id,display_phone_number,verified_name}"


@dataclass(frozen=True)
class WabaResolution:
    """A resolved WhatsApp business account and, ideally, a sendable phone."""

    strategy: str
    waba_id: str | None = None
    waba_name: str | None = None
    phone_number_id: str | None = None
    phone_display: str | None = None

    @property
    def has_phone(self) -> bool:
        return bool(self.phone_number_id)


Resolver = Callable[[GraphApiClient, str, str | None], Awaitable[WabaResolution | None]]


def _first_phone(node: dict[str, Any]) -> tuple[str | None, str | None]:
    phones = as_list((node.get("phone_numbers") or {}).get("data"))
    if phones and isinstance(phones[0], dict) and phones[0].get("id"):
        return str(phones[0]["id"]), phones[0].get("display_phone_number")
    return None, None


async def resolve_owned_waba(
    client: GraphApiClient, access_token: str, candidate_id: str | None = None
) -> WabaResolution | None:
    data = await client.get(
        "me/businesses",
        access_token=access_token,
        params={
            "fields": f"id,name,owned_whatsapp_business_accounts{{id,name,{PHONE_FIELDS}}}"
        },
        retries=0,
    )
    for business in as_list(data.get("data")):
        wabas = as_list((business.get("owned_whatsapp_business_accounts") or {}).get("data"))
        for waba in wabas:
            if not waba.get("id"):
                continue
            phone_id, display = _first_phone(waba)
            return WabaResolution(
                strategy="owned_waba",
                waba_id=str(waba["id"]),
                waba_name=waba.get("name") or business.get("name"),
                phone_number_id=phone_id,
                phone_display=display,
            )
    return None


async def resolve_configured_waba(
    client: GraphApiClient, access_token: str, candidate_id: str | None
) -> WabaResolution | None:
    if not candidate_id:
        return None
    data = await client.get(
        candidate_id,
        access_token=access_token,
        params={"fields": f"id,name,{PHONE_FIELDS}"},
        retries=0,
    )
    # Only a WABA node exposes the phone_numbers edge
    if not data.get("id") or "phone_numbers" not in data:
        return None
    phone_id, display = _first_phone(data)
    return WabaResolution(
        strategy="configured_waba",
        waba_id=str(data["id"]),
        waba_name=data.get("name") or "WhatsApp Business",
        phone_number_id=phone_id,
        phone_display=display,
    )


async def resolve_phone_owner(
    client: GraphApiClient, access_token: str, candidate_id: str | None
) -> WabaResolution | None:
    if not candidate_id:
        return None
    phone = await client.get(
        candidate_id,
        access_token=access_token,
        params={"fields": "id,display_phone_number,verified_name"},
        retries=0,
    )
    if not phone.get("id"):
        return None

    resolution = WabaResolution(
        strategy="phone_owner",
        phone_number_id=str(phone["id"]),
        phone_display=phone.get("display_phone_number"),
    )

    try:
        owner = await client.get(
            f"{phone['id']}/owner", access_token=access_token, retries=0
        )
    except GraphApiError:
        owner = {}
    if owner.get("id"):
        return replace(
            resolution,
            waba_id=str(owner["id"]),
            waba_name=owner.get("name") or "WhatsApp Business",
        )

    try:
        edge = await client.get(
            str(phone["id"]),
            access_token=access_token,
            params={"fields": "whatsapp_business_account"},
            retries=0,
        )
    except GraphApiError:
        edge = {}
    waba = edge.get("whatsapp_business_account") or {}
    if waba.get("id"):
        return replace(
            resolution,
            strategy="phone_waba_edge",
            waba_id=str(waba["id"]),
            waba_name=waba.get("name") or "WhatsApp Business",
        )
    return resolution


async def resolve_shared_waba(
    client: GraphApiClient, access_token: str, candidate_id: str | None = None
) -> WabaResolution | None:
    data = await client.get(
        "me",
        access_token=access_token,
        params={"fields": f"whatsapp_business_accounts{{id,name,{PHONE_FIELDS}}}"},
        retries=0,
    )
    wabas = as_list((data.get("whatsapp_business_accounts") or {}).get("data"))
    for waba in wabas:
        if waba.get("id"):
            phone_id, display = _first_phone(waba)
            return WabaResolution(
                strategy="shared_waba",
                waba_id=str(waba["id"]),
                waba_name=waba.get("name") or "WhatsApp Business",
                phone_number_id=phone_id,
                phone_display=display,
            )
    return None


async def resolve_whatsapp_account(
    client: GraphApiClient,
    access_token: str,
    *,
    configured_id: str | None = None,
    configured_phone_id: str | None = None,
    logger: Any | None = None,
) -> WabaResolution | None:
    """
    Run the resolver chain until one yields a usable phone-number id.

    A resolver that finds only a WABA is remembered; if nothing better turns
    up, that partial result is returned with ``configured_phone_id`` as the
    phone-number fallback.

    Returns:
        The winning resolution, or None when no strategy found anything
    """
    logger = logger or get_logger(__name__)

    phone_candidates = [c for c in (configured_id, configured_phone_id) if c]
    attempts: list[tuple[Resolver, str | None]] = [
        (resolve_owned_waba, None),
        (resolve_configured_waba, configured_id),
        *[(resolve_phone_owner, c) for c in dict.fromkeys(phone_candidates)],
        (resolve_shared_waba, None),
    ]

    partial: WabaResolution | None = None
    for resolver, candidate in attempts:
        try:
            result = await resolver(client, access_token, candidate)
        except GraphApiError as exc:
            logger.info(f"WABA strategy {resolver.__name__} failed: {exc}")
            continue

        if result is None:
            logger.debug(f"WABA strategy {resolver.__name__} found nothing")
            continue

        if result.has_phone:
            if not result.waba_id and partial is not None:
                result = replace(
                    result, waba_id=partial.waba_id, waba_name=partial.waba_name
                )
            logger.info(
                f"WABA resolved by {result.strategy}: waba={result.waba_id} "
                f"phone_number_id={result.phone_number_id}"
            )
            return result

        if partial is None:
            partial = result

    if partial is None:
        if configured_phone_id:
            logger.info("No WABA strategy succeeded; using configured phone-number id")
            return WabaResolution(
                strategy="configured_phone", phone_number_id=configured_phone_id
            )
        logger.warning("No WABA strategy succeeded")
        return None

    if configured_phone_id:
        logger.info(
            f"WABA {partial.waba_id} resolved by {partial.strategy} without a phone "
            f"number; using configured phone-number id {configured_phone_id}"
        )
        return replace(partial, phone_number_id=configured_phone_id)

    logger.warning(
        f"WABA {partial.waba_id} resolved by {partial.strategy} but no phone-number id"
    )
    return partial
