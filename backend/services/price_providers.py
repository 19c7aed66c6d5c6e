"""Upstream USD spot price APIs.

Each provider owns one long-lived ``httpx.AsyncClient`` with an explicit
timeout and validates the response shape itself. Any failure, including a
single missing or zero price, surfaces as ``PriceProviderError`` so the
oracle can move on to the next provider.
"""

from __future__ import annotations

import json
import math
from abc import ABC, abstractmethod
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from config import Settings
from services.errors import PriceProviderError
from utils.logger import get_logger

logger = get_logger(__name__)

_CENT = Decimal("0.01")


def usd_to_cents(value: Any) -> Optional[int]:
    """Convert a JSON number or numeric string in dollars to integer cents.

    Returns ``None`` for anything non-numeric, non-finite or not positive.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    try:
        dollars = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not dollars.is_finite() or dollars <= 0:
        return None
    cents = int((dollars / _CENT).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return cents if cents > 0 else None


class HttpPriceProvider(ABC):
    """Shared client lifecycle and request plumbing for JSON price APIs."""

    name = "http"

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _get_json(self, params: dict) -> Any:
        client = await self._get_client()
        try:
            response = await client.get(self.base_url, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as exc:
            raise PriceProviderError(self.name, f"timed out after {self.timeout}s") from exc
        except httpx.HTTPStatusError as exc:
            raise PriceProviderError(self.name, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise PriceProviderError(self.name, f"transport error: {exc}") from exc
        except ValueError as exc:
            raise PriceProviderError(self.name, "response is not JSON") from exc

    def _require(self, symbol: str, raw: Any) -> int:
        cents = usd_to_cents(raw)
        if cents is None:
            raise PriceProviderError(self.name, f"unusable price for {symbol}: {raw!r}")
        return cents

    @abstractmethod
    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, int]:
        """Return cents per symbol or raise ``PriceProviderError``."""


class CryptoCompareProvider(HttpPriceProvider):
    """``/data/pricemulti?fsyms=BTC,ETH&tsyms=USD`` -> ``{"BTC": {"USD": 67012.5}}``."""

    name = "cryptocompare"

    def __init__(self, base_url: str, api_key: Optional[str] = None, **kwargs):
        super().__init__(base_url, **kwargs)
        self.api_key = api_key

    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, int]:
        params = {"fsyms": ",".join(symbols), "tsyms": "USD"}
        if self.api_key:
            params["api_key"] = self.api_key
        data = await self._get_json(params)

        if not isinstance(data, dict):
            raise PriceProviderError(self.name, "expected a JSON object")
        if data.get("Response") == "Error":
            raise PriceProviderError(self.name, str(data.get("Message") or "error response"))

        prices: dict[str, int] = {}
        for symbol in symbols:
            quote = data.get(symbol)
            if not isinstance(quote, dict):
                raise PriceProviderError(self.name, f"no quote for {symbol}")
            prices[symbol] = self._require(symbol, quote.get("USD"))
        return prices


COINGECKO_IDS = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "XRP": "ripple",
}


class CoinGeckoProvider(HttpPriceProvider):
    """``/simple/price?ids=bitcoin&vs_currencies=usd`` -> ``{"bitcoin": {"usd": 67012.5}}``."""

    name = "coingecko"

    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, int]:
        ids = {}
        for symbol in symbols:
            coin_id = COINGECKO_IDS.get(symbol)
            if coin_id is None:
                raise PriceProviderError(self.name, f"no coin id mapping for {symbol}")
            ids[symbol] = coin_id

        data = await self._get_json({"ids": ",".join(ids.values()), "vs_currencies": "usd"})
        if not isinstance(data, dict):
            raise PriceProviderError(self.name, "expected a JSON object")

        prices: dict[str, int] = {}
        for symbol, coin_id in ids.items():
            quote = data.get(coin_id)
            if not isinstance(quote, dict):
                raise PriceProviderError(self.name, f"no quote for {symbol}")
            prices[symbol] = self._require(symbol, quote.get("usd"))
        return prices


class BinanceProvider(HttpPriceProvider):
    """``/ticker/price?symbols=["BTCUSDT"]`` -> ``[{"symbol": "BTCUSDT", "price": "67012.50"}]``.

    USDT pairs are treated as USD.
    """

    name = "binance"

    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, int]:
        pairs = {f"{symbol}USDT": symbol for symbol in symbols}
        data = await self._get_json({"symbols": json.dumps(list(pairs), separators=(",", ":"))})
        if not isinstance(data, list):
            raise PriceProviderError(self.name, "expected a JSON array")

        prices: dict[str, int] = {}
        for item in data:
            if not isinstance(item, dict):
                continue
            symbol = pairs.get(str(item.get("symbol", "")))
            if symbol is not None:
                prices[symbol] = self._require(symbol, item.get("price"))

        missing = [s for s in symbols if s not in prices]
        if missing:
            raise PriceProviderError(self.name, f"no quote for {', '.join(missing)}")
        return prices


def build_price_providers(settings: Settings) -> list[HttpPriceProvider]:
    """Instantiate ``settings.PRICE_PROVIDERS`` in priority order."""
    timeout = settings.PRICE_PROVIDER_TIMEOUT_SECONDS
    factories = {
        "cryptocompare": lambda: CryptoCompareProvider(
            settings.CRYPTOCOMPARE_API_URL,
            api_key=settings.CRYPTOCOMPARE_API_KEY,
            timeout=timeout,
        ),
        "coingecko": lambda: CoinGeckoProvider(settings.COINGECKO_API_URL, timeout=timeout),
        "binance": lambda: BinanceProvider(settings.BINANCE_API_URL, timeout=timeout),
    }

    providers: list[HttpPriceProvider] = []
    for name in settings.PRICE_PROVIDERS:
        factory = factories.get(name)
        if factory is None:
            logger.warning("Unknown price provider ignored", provider=name)
            continue
        providers.append(factory())
    return providers
