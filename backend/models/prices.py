from datetime import datetime

from pydantic import BaseModel, Field

from utils.utcnow import utcnow


class PriceQuote(BaseModel):
    """A USD spot price in integer cents.

    ``source`` is the provider name that produced the value, ``cache`` for a
    fresh cache hit, ``stale_cache`` when every provider failed and the last
    known value was reused, or ``fallback`` for the configured constant.
    """

    symbol: str
    price: int = Field(ge=0)  # cents
    observed_at: datetime = Field(default_factory=utcnow)
    source: str
    stale: bool = False

    @property
    def formatted(self) -> str:
        dollars, cents = divmod(self.price, 100)
        return f"${dollars:,}.{cents:02d}"
