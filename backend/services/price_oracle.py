"""Resilient spot price lookup for settlement.

``PriceOracle.get_price`` never fails for a supported symbol. It walks four
tiers in order: a fresh in-process cache entry, each configured provider in
priority order, the last cached value however old, and finally a configured
per-symbol constant. Only an unsupported symbol raises.
"""

from __future__ import annotations

import asyncio
import re
import time
from typing import Callable, Iterable, Optional, Sequence

from interfaces.price_provider import PriceProvider
from models.prices import PriceQuote
from services.errors import PriceProviderError, UnsupportedSymbolError
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger(__name__)

DEFAULT_SUPPORTED_SYMBOLS = ("BTC", "ETH")

_MARKET_SEPARATORS = re.compile(r"[-/]")


def extract_asset(market: Optional[str], supported: Iterable[str] = DEFAULT_SUPPORTED_SYMBOLS) -> Optional[str]:
    """``"BTC-USD"`` / ``"eth/usd"`` -> ``"BTC"`` / ``"ETH"``; ``None`` if unsupported."""
    if not market:
        return None
    head = _MARKET_SEPARATORS.split(str(market).strip(), maxsplit=1)[0].strip().upper()
    return head if head and head in set(supported) else None


class PriceOracle:
    def __init__(
        self,
        providers: Sequence[PriceProvider],
        supported_symbols: Iterable[str] = DEFAULT_SUPPORTED_SYMBOLS,
        cache_ttl_seconds: float = 10.0,
        fallback_cents: Optional[dict[str, int]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._providers = list(providers)
        self._supported = tuple(s.upper() for s in supported_symbols)
        self._ttl = cache_ttl_seconds
        self._fallback = {k.upper(): int(v) for k, v in (fallback_cents or {}).items()}
        if any(v < 0 for v in self._fallback.values()):
            raise ValueError("fallback prices must not be negative")
        self._clock = clock
        # symbol -> (quote, monotonic fetch time)
        self._cache: dict[str, tuple[PriceQuote, float]] = {}

    @property
    def supported_symbols(self) -> tuple[str, ...]:
        return self._supported

    def extract_asset(self, market: Optional[str]) -> Optional[str]:
        return extract_asset(market, self._supported)

    def _normalize(self, symbol: str) -> str:
        key = str(symbol or "").strip().upper()
        if key not in self._supported:
            raise UnsupportedSymbolError(symbol)
        return key

    async def get_price(self, symbol: str) -> PriceQuote:
        key = self._normalize(symbol)

        cached = self._cache.get(key)
        if cached is not None and self._clock() - cached[1] < self._ttl:
            return cached[0].model_copy(update={"source": "cache"})

        for provider in self._providers:
            try:
                prices = await provider.fetch_spot_prices([key])
            except PriceProviderError as exc:
                logger.warning("Price provider failed", provider=provider.name, symbol=key, error=str(exc))
                continue
            except Exception as exc:
                logger.warning(
                    "Price provider raised unexpectedly",
                    provider=provider.name,
                    symbol=key,
                    error=str(exc),
                    exc_info=True,
                )
                continue

            price = prices.get(key) if isinstance(prices, dict) else None
            if not isinstance(price, int) or isinstance(price, bool) or price <= 0:
                logger.warning("Price provider returned no usable price", provider=provider.name, symbol=key)
                continue

            quote = PriceQuote(symbol=key, price=price, observed_at=utcnow(), source=provider.name)
            self._cache[key] = (quote, self._clock())
            return quote

        if cached is not None:
            logger.warning("All price providers failed, using stale cache", symbol=key)
            return cached[0].model_copy(update={"source": "stale_cache", "stale": True})

        fallback = self._fallback.get(key, 0)
        logger.error("All price providers failed with nothing cached, using fallback", symbol=key, price=fallback)
        return PriceQuote(symbol=key, price=fallback, observed_at=utcnow(), source="fallback", stale=True)

    async def get_prices(self, symbols: Optional[Iterable[str]] = None) -> dict[str, PriceQuote]:
        """Quotes for ``symbols`` (default: every supported symbol), fetched concurrently."""
        keys = [self._normalize(s) for s in (symbols if symbols is not None else self._supported)]
        quotes = await asyncio.gather(*(self.get_price(k) for k in keys))
        return dict(zip(keys, quotes))

    def clear_cache(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()
