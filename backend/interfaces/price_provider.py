"""Upstream spot price source contract."""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class PriceProvider(Protocol):
    """One upstream USD spot price API."""

    name: str

    async def fetch_spot_prices(self, symbols: list[str]) -> dict[str, int]:
        """Return USD prices in cents keyed by upper-case symbol.

        Raises ``PriceProviderError`` on a non-2xx status, timeout, transport
        failure, or a payload that is malformed, non-finite or zero for any
        requested symbol.
        """

    async def close(self) -> None:
        """Release the underlying HTTP client."""
