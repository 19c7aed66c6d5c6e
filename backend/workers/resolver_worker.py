"""Resolver worker: owns the signal resolution engine.

Runs as a dedicated process. Builds the store, price oracle, stats
aggregator, notification sinks and engine from settings, runs sweeps until
SIGINT/SIGTERM, then shuts everything down in reverse order.
"""

from __future__ import annotations

import asyncio
import os
import signal
import sys
from dataclasses import dataclass
from typing import Optional

_BACKEND = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _BACKEND not in sys.path:
    sys.path.insert(0, _BACKEND)

from config import Settings, settings as default_settings
from interfaces.signal_store import SignalStore
from services.notifier import BroadcastNotifier, CompositeNotifier, build_notifier
from services.price_oracle import PriceOracle
from services.price_providers import build_price_providers
from services.resolution_engine import ResolutionEngine
from services.signal_service import SignalService
from services.stats_aggregator import StatsAggregator
from services.stores import create_signal_store
from utils.logger import get_logger, setup_logging

logger = get_logger("resolver_worker")


@dataclass
class Runtime:
    settings: Settings
    store: SignalStore
    oracle: PriceOracle
    aggregator: StatsAggregator
    broadcaster: BroadcastNotifier
    notifier: CompositeNotifier
    engine: ResolutionEngine
    service: SignalService

    async def close(self) -> None:
        await self.engine.stop()
        await self.notifier.close()
        await self.oracle.close()
        await self.store.close()


async def build_runtime(settings: Optional[Settings] = None) -> Runtime:
    """Wire every component from ``settings``; nothing is started yet."""
    settings = settings or default_settings

    store = await create_signal_store(settings)
    oracle = PriceOracle(
        build_price_providers(settings),
        supported_symbols=settings.PRICE_SUPPORTED_SYMBOLS,
        cache_ttl_seconds=settings.PRICE_CACHE_TTL_SECONDS,
        fallback_cents=settings.PRICE_FALLBACK_CENTS,
    )
    aggregator = StatsAggregator(store)
    broadcaster = BroadcastNotifier()
    notifier = build_notifier(settings, broadcaster=broadcaster)
    engine = ResolutionEngine(
        store,
        oracle,
        aggregator=aggregator,
        notifier=notifier,
        interval_seconds=settings.RESOLVER_INTERVAL_SECONDS,
        max_concurrency=settings.RESOLVER_MAX_CONCURRENCY,
    )
    service = SignalService(store, oracle, engine, aggregator=aggregator)
    return Runtime(
        settings=settings,
        store=store,
        oracle=oracle,
        aggregator=aggregator,
        broadcaster=broadcaster,
        notifier=notifier,
        engine=engine,
        service=service,
    )


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops do not support signal handlers.
            logger.debug("Signal handler not installed", signal=sig.name)


async def main(settings: Optional[Settings] = None) -> None:
    settings = settings or default_settings
    setup_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON, log_file=settings.LOG_FILE)

    runtime = await build_runtime(settings)
    logger.info(
        "Resolver worker starting",
        store=type(runtime.store).__name__,
        providers=settings.PRICE_PROVIDERS,
        symbols=settings.PRICE_SUPPORTED_SYMBOLS,
        interval_seconds=settings.RESOLVER_INTERVAL_SECONDS,
    )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)
    try:
        if settings.RESOLVER_ENABLED:
            await runtime.engine.start()
        else:
            logger.warning("Resolver disabled by RESOLVER_ENABLED=false; idling")
        await stop_event.wait()
    except asyncio.CancelledError:
        logger.info("Resolver worker cancelled")
    finally:
        logger.info("Resolver worker shutting down", status=runtime.engine.status())
        await runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
