from .signals import (
    MarketKind,
    Direction,
    SignalStatus,
    SignalResult,
    ActivityAction,
    Strategist,
    Strategy,
    Signal,
    StrategyStats,
    Follower,
    ActivityLog,
    StrategyWithStats,
    FeedItem,
    GlobalStats,
    CreateStrategistInput,
    CreateStrategyInput,
    CreateSignalInput,
    PublishSignalInput,
    FollowStrategyInput,
    ActivityRecord,
    StrategyFilter,
    SignalResolvedEvent,
)
from .prices import PriceQuote

__all__ = [
    "MarketKind",
    "Direction",
    "SignalStatus",
    "SignalResult",
    "ActivityAction",
    "Strategist",
    "Strategy",
    "Signal",
    "StrategyStats",
    "Follower",
    "ActivityLog",
    "StrategyWithStats",
    "FeedItem",
    "GlobalStats",
    "CreateStrategistInput",
    "CreateStrategyInput",
    "CreateSignalInput",
    "PublishSignalInput",
    "FollowStrategyInput",
    "ActivityRecord",
    "StrategyFilter",
    "SignalResolvedEvent",
    "PriceQuote",
]
