from .signal_store import SignalStore
from .price_provider import PriceProvider
from .notifier import ResolutionNotifier

__all__ = [
    "SignalStore",
    "PriceProvider",
    "ResolutionNotifier",
]
