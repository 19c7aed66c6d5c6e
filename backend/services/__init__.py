from importlib import import_module

__all__ = [
    "PriceOracle",
    "ResolutionEngine",
    "SignalService",
    "StatsAggregator",
    "resolve_settlement",
    "create_signal_store",
    "build_notifier",
    "build_price_providers",
]

_LAZY_EXPORTS = {
    "PriceOracle": ("services.price_oracle", "PriceOracle"),
    "ResolutionEngine": ("services.resolution_engine", "ResolutionEngine"),
    "SignalService": ("services.signal_service", "SignalService"),
    "StatsAggregator": ("services.stats_aggregator", "StatsAggregator"),
    "resolve_settlement": ("services.settlement", "resolve_settlement"),
    "create_signal_store": ("services.stores", "create_signal_store"),
    "build_notifier": ("services.notifier", "build_notifier"),
    "build_price_providers": ("services.price_providers", "build_price_providers"),
}


def __getattr__(name):
    if name not in _LAZY_EXPORTS:
        raise AttributeError(f"module 'services' has no attribute {name!r}")

    module_name, attr_name = _LAZY_EXPORTS[name]
    module = import_module(module_name)
    value = getattr(module, attr_name)
    globals()[name] = value
    return value
