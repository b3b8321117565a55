"""Lemon Squeezy billing: webhook handling and customer-portal links.

Webhook envelope (the fields we read):

    {
      "meta": {"event_name": "subscription_updated",
               "custom_data": {"parent_id": "..."}},
      "data": {"id": "sub_123",
               "attributes": {"status": "active", "variant_name": "Monthly",
                              "total": 999, "customer_id": 42,
                              "custom_data": {"parent_id": "..."}}}
    }

Subscription events are applied as upserts keyed by the provider's
subscription id, so a repeated delivery leaves the same state.
"""

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Optional

import aiosqlite
import httpx

from learnsmart.config import settings
from learnsmart.db import accounts as accounts_db

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = ("subscription_created", "subscription_updated")
CANCEL_EVENT = "subscription_cancelled"


class BillingError(Exception):
    """The payment provider is not configured or its call failed."""


@dataclass
class WebhookEvent:
    event_name: str
    parent_id: str
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    variant_name: Optional[str] = None
    total: Optional[int] = None
    customer_id: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    """Check the hex HMAC-SHA256 of the raw body sent in X-Signature."""
    if not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature.strip())


def _section(container: dict, key: str) -> dict:
    """A nested envelope object; absent means empty, anything but an object is malformed."""
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Webhook field '{key}' must be an object")
    return value


def parse_webhook(payload: dict) -> WebhookEvent:
    """Pull the fields we use out of a webhook body.

    Raises ValueError when the envelope is malformed or parent or event is missing.
    """
    if not isinstance(payload, dict):
        raise ValueError("Webhook body must be a JSON object")
    meta = _section(payload, "meta")
    data = _section(payload, "data")
    attributes = _section(data, "attributes")

    event_name = meta.get("event_name")
    parent_id = _section(meta, "custom_data").get("parent_id") or _section(attributes, "custom_data").get("parent_id")
    if not parent_id or not event_name:
        raise ValueError("Missing parentId or eventType")

    customer_id = attributes.get("customer_id")
    subscription_id = data.get("id")
    return WebhookEvent(
        event_name=event_name,
        parent_id=str(parent_id),
        subscription_id=str(subscription_id) if subscription_id is not None else None,
        status=attributes.get("status"),
        variant_name=attributes.get("variant_name"),
        total=attributes.get("total"),
        customer_id=str(customer_id) if customer_id is not None else None,
    )


async def apply_webhook(db: aiosqlite.Connection, event: WebhookEvent) -> bool:
    """Apply a subscription event. Returns False when the event was ignored."""
    if event.event_name not in SUBSCRIPTION_EVENTS and event.event_name != CANCEL_EVENT:
        logger.info("Ignoring Lemon Squeezy event %s", event.event_name)
        return False

    if await accounts_db.get_parent(db, event.parent_id) is None:
        logger.warning("Webhook %s names unknown parent %s", event.event_name, event.parent_id)
        return False

    if event.event_name in SUBSCRIPTION_EVENTS:
        await accounts_db.set_subscription_status(
            db, event.parent_id, "paid" if event.is_active else "free", event.customer_id
        )
        if event.subscription_id:
            await accounts_db.upsert_subscription(
                db,
                subscription_id=event.subscription_id,
                parent_id=event.parent_id,
                plan_type=event.variant_name,
                price=event.total,
                status=event.status,
                active=event.is_active,
            )
    else:
        await accounts_db.set_subscription_status(db, event.parent_id, "free")
        if event.subscription_id:
            await accounts_db.deactivate_subscription(db, event.subscription_id)

    logger.info("Applied %s for parent %s", event.event_name, event.parent_id)
    return True


async def create_portal_url(customer_id: str, http_client: httpx.AsyncClient | None = None) -> str:
    """Ask Lemon Squeezy for a customer-portal session and return its URL verbatim."""
    if not settings.lemon_squeezy_api_key:
        raise BillingError("LEMON_SQUEEZY_API_KEY is not configured")

    url = f"{settings.lemon_squeezy_api_url.rstrip('/')}/customer_portal"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.lemon_squeezy_api_key}",
    }
    client = http_client or httpx.AsyncClient(timeout=30)
    try:
        response = await client.post(url, headers=headers, json={"customer_id": customer_id})
    except httpx.HTTPError as exc:
        logger.error("Lemon Squeezy request failed: %s", exc)
        raise BillingError(f"Lemon Squeezy request failed: {exc}") from exc
    finally:
        if http_client is None:
            await client.aclose()

    if response.status_code >= 400:
        logger.error("Lemon Squeezy returned %d: %s", response.status_code, response.text)
        raise BillingError(response.text or f"HTTP {response.status_code}")

    try:
        return response.json()["data"]["attributes"]["url"]
    except (ValueError, KeyError, TypeError) as exc:
        raise BillingError("Unexpected customer portal response") from exc
