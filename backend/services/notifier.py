"""Resolution notification sinks.

The engine hands every committed resolution to one ``ResolutionNotifier``.
Delivery is best-effort: a sink that fails is logged and never affects the
stored result or the other sinks.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional, Sequence

import httpx

from config import Settings
from interfaces.notifier import ResolutionNotifier
from models.signals import SignalResolvedEvent
from utils.logger import get_logger

logger = get_logger("notifier")

SIGNAL_RESOLVED_EVENT = "signal:resolved"

Subscriber = Callable[[dict], Awaitable[None]]


def event_envelope(event: SignalResolvedEvent) -> dict:
    return {"type": SIGNAL_RESOLVED_EVENT, "data": event.model_dump(mode="json")}


class LoggingNotifier:
    """Writes each resolution to the structured log."""

    async def notify_resolution(self, event: SignalResolvedEvent) -> None:
        logger.info(
            "Signal resolved",
            signal_id=event.signal_id,
            strategy_id=event.strategy_id,
            strategy_name=event.strategy_name,
            result=event.result.value,
            pnl_bps=event.pnl_bps,
            direction=event.direction.value,
            entry_value=event.entry_value,
            resolved_value=event.resolved_value,
        )


class BroadcastNotifier:
    """Fans the event envelope out to in-process async subscribers.

    A live-update transport (websocket manager, SSE hub) subscribes here.
    One subscriber raising does not stop delivery to the rest.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def notify_resolution(self, event: SignalResolvedEvent) -> None:
        message = event_envelope(event)
        for callback in list(self._subscribers):
            try:
                await callback(message)
            except Exception as exc:
                logger.warning(
                    "Broadcast subscriber failed",
                    signal_id=event.signal_id,
                    error=str(exc),
                    exc_info=True,
                )


class WebhookNotifier:
    """POSTs the event envelope as JSON to a configured URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def notify_resolution(self, event: SignalResolvedEvent) -> bool:
        client = await self._get_client()
        try:
            resp = await client.post(self.url, json=event_envelope(event))
        except httpx.TimeoutException:
            logger.warning("Resolution webhook timed out", signal_id=event.signal_id, url=self.url)
            return False
        except httpx.HTTPError as exc:
            logger.warning("Resolution webhook request failed", signal_id=event.signal_id, error=str(exc))
            return False

        if resp.status_code >= 400:
            logger.warning(
                "Resolution webhook rejected event",
                signal_id=event.signal_id,
                status=resp.status_code,
                body=resp.text[:300],
            )
            return False
        return True


class CompositeNotifier:
    """Delivers to several sinks in order, isolating each one."""

    def __init__(self, sinks: Sequence[ResolutionNotifier]):
        self.sinks = list(sinks)

    async def notify_resolution(self, event: SignalResolvedEvent) -> None:
        for sink in self.sinks:
            try:
                await sink.notify_resolution(event)
            except Exception as exc:
                logger.warning(
                    "Resolution sink failed",
                    sink=type(sink).__name__,
                    signal_id=event.signal_id,
                    error=str(exc),
                    exc_info=True,
                )

    async def close(self) -> None:
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if close is not None:
                await close()


def build_notifier(settings: Settings, broadcaster: Optional[BroadcastNotifier] = None) -> CompositeNotifier:
    """Logging always; the broadcaster and webhook when provided/configured."""
    sinks: list[ResolutionNotifier] = [LoggingNotifier()]
    if broadcaster is not None:
        sinks.append(broadcaster)
    if settings.RESOLUTION_WEBHOOK_URL:
        sinks.append(WebhookNotifier(settings.RESOLUTION_WEBHOOK_URL, timeout=settings.WEBHOOK_TIMEOUT_SECONDS))
    return CompositeNotifier(sinks)
