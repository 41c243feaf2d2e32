# Webhook Delivery Engine: sign, send, record, retry.
# Created: 2026-03-02
#
# dispatch() creates one delivery row per matching subscription and sends
# them concurrently; one slow or failing receiver never holds up another.
# Failures are recorded and retried by retry_failed_deliveries() with
# exponential backoff until max_attempts, after which the row is abandoned.
#
# While an attempt is in flight the row's next_retry_at holds a lease. If
# the process dies mid-attempt the retry sweep picks the row up once the
# lease has passed. Retry runners claim rows with a conditional update, so
# several runners never send the same attempt twice.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx

from tokenwarden import lifecycle
from tokenwarden.oauth2.models import DeliveryStatus, Webhook, WebhookDelivery, utcnow
from tokenwarden.oauth2.protocol import OAuthStoreProtocol
from tokenwarden.webhooks.events import WEBHOOK_EVENTS
from tokenwarden.webhooks.registry import WebhookRegistry
from tokenwarden.webhooks.signing import build_body, build_headers

logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 1024


def backoff_delay(attempts: int, base_delay: timedelta) -> timedelta:
    """Wait after the *attempts*-th failure: base, 2*base, 4*base, ..."""
    return base_delay * (2 ** max(attempts - 1, 0))


class WebhookDeliveryEngine:
    """Sends webhook deliveries over a shared httpx.AsyncClient."""

    def __init__(
        self,
        store: OAuthStoreProtocol,
        registry: WebhookRegistry | None = None,
        *,
        timeout: float = 10.0,
        max_attempts: int = 3,
        base_delay: timedelta = timedelta(seconds=60),
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.registry = registry or WebhookRegistry(store)
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.lease = base_delay + timedelta(seconds=timeout)
        self._transport = transport
        self._clock = clock
        self._http: httpx.AsyncClient | None = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=False,
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
        self._http = None

    # -- dispatch -------------------------------------------------------------

    async def dispatch(
        self, client_id: str, event: str, payload: dict[str, Any]
    ) -> list[WebhookDelivery]:
        """Fan *event* out to every active subscription of *client_id*.

        Returns the delivery rows after their first attempt. Never raises for
        receiver failures.
        """
        if event not in WEBHOOK_EVENTS:
            raise ValueError(f"Unknown webhook event: {event}")

        hooks = self.registry.subscribers(client_id, event)
        if not hooks:
            return []

        now = self._clock()
        pairs: list[tuple[Webhook, WebhookDelivery]] = []
        for hook in hooks:
            delivery = WebhookDelivery(
                webhook_id=hook.id,
                event=event,
                payload=payload,
                next_retry_at=now + self.lease,
                created_at=now,
            )
            self.store.insert_delivery(delivery)
            pairs.append((hook, delivery))

        results = await asyncio.gather(
            *(self._attempt(hook, delivery) for hook, delivery in pairs),
            return_exceptions=True,
        )

        deliveries: list[WebhookDelivery] = []
        for (_, delivery), result in zip(pairs, results, strict=True):
            if isinstance(result, BaseException):
                logger.error(
                    "Webhook delivery %s crashed; left for the retry sweep",
                    delivery.id,
                    exc_info=result,
                )
                deliveries.append(self.store.get_delivery(delivery.id) or delivery)
            else:
                deliveries.append(result)
        return deliveries

    async def _attempt(self, hook: Webhook, delivery: WebhookDelivery) -> WebhookDelivery:
        body = build_body(delivery.event, delivery.payload, delivery.created_at)
        headers = build_headers(hook.secret, body, delivery.event, delivery.id)
        delivery.attempts += 1

        ok = False
        try:
            response = await self._client().post(hook.url, content=body, headers=headers)
            delivery.http_status = response.status_code
            delivery.response_body = response.text[:RESPONSE_BODY_LIMIT]
            ok = response.is_success
        except httpx.HTTPError as exc:
            delivery.http_status = None
            delivery.response_body = (str(exc) or type(exc).__name__)[:RESPONSE_BODY_LIMIT]
            logger.debug("Webhook %s request error: %s", hook.id, exc)

        now = self._clock()
        if ok:
            delivery.status = DeliveryStatus.DELIVERED
            delivery.delivered_at = now
            delivery.next_retry_at = None
        elif delivery.attempts >= self.max_attempts:
            delivery.status = DeliveryStatus.ABANDONED
            delivery.next_retry_at = None
            logger.warning(
                "Abandoned webhook delivery %s (%s -> %s) after %d attempts",
                delivery.id,
                delivery.event,
                hook.url,
                delivery.attempts,
            )
        else:
            delivery.status = DeliveryStatus.FAILED
            delivery.next_retry_at = now + backoff_delay(delivery.attempts, self.base_delay)
            logger.info(
                "Webhook delivery %s failed (attempt %d, status %s), retry at %s",
                delivery.id,
                delivery.attempts,
                delivery.http_status,
                delivery.next_retry_at.isoformat(),
            )

        self.store.save_delivery(delivery)
        return delivery

    # -- retry sweep ----------------------------------------------------------

    def _abandon(self, delivery: WebhookDelivery, reason: str) -> None:
        delivery.status = DeliveryStatus.ABANDONED
        delivery.next_retry_at = None
        self.store.save_delivery(delivery)
        logger.warning("Abandoned webhook delivery %s: %s", delivery.id, reason)

    async def retry_failed_deliveries(self, now: datetime | None = None, limit: int = 100) -> int:
        """Re-attempt due pending/failed deliveries. Returns the number of attempts made."""
        now = now or self._clock()
        attempts = []

        for delivery in self.store.list_due_deliveries(now, limit=limit):
            lease_until = now + self.lease
            if not self.store.claim_delivery(delivery.id, delivery.next_retry_at, lease_until):
                continue
            delivery.status = DeliveryStatus.PENDING
            delivery.next_retry_at = lease_until

            hook = self.store.get_webhook(delivery.webhook_id)
            if hook is None or not hook.is_active:
                self._abandon(delivery, "webhook deleted or inactive")
                continue
            if delivery.attempts >= self.max_attempts:
                self._abandon(delivery, "maximum attempts reached")
                continue
            attempts.append(self._attempt(hook, delivery))

        if not attempts:
            return 0

        results = await asyncio.gather(*attempts, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.error("Webhook retry crashed", exc_info=result)
        logger.debug("Retried %d webhook deliveries", len(attempts))
        return len(attempts)

    def list_deliveries(self, webhook_id: str, limit: int = 50) -> list[WebhookDelivery]:
        return self.store.list_deliveries(webhook_id, limit=limit)


async def emit_event(client_id: str, event: str, payload: dict[str, Any]) -> None:
    """Background-task entry point: dispatch and log, never raise."""
    try:
        await get_delivery_engine().dispatch(client_id, event, payload)
    except Exception:
        logger.exception("Failed to dispatch %s for client %s", event, client_id)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_engine: WebhookDeliveryEngine | None = None


def get_delivery_engine() -> WebhookDeliveryEngine:
    global _engine
    if _engine is None:
        from tokenwarden.config import get_settings
        from tokenwarden.oauth2.storage import get_oauth_store

        settings = get_settings()
        store = get_oauth_store()
        _engine = WebhookDeliveryEngine(
            store,
            WebhookRegistry(store, max_per_client=settings.max_webhooks_per_client),
            timeout=settings.webhook_timeout,
            max_attempts=settings.webhook_max_attempts,
            base_delay=timedelta(seconds=settings.webhook_retry_base_delay),
        )
        lifecycle.register("webhook_engine", shutdown=_engine.close, reset=reset_delivery_engine)
    return _engine


def reset_delivery_engine() -> None:
    global _engine
    _engine = None
