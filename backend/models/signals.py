"""Domain models for strategists, strategies, signals and their derived stats.

These are the shapes every store backend returns and every service consumes.
ORM rows in ``models.database`` are converted into these at the store
boundary so services never hold a live SQLAlchemy object.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from utils.utcnow import to_utc_naive, utcnow

MAX_CONFIDENCE_BPS = 10_000


class _CaseInsensitiveEnum(str, Enum):
    """Accept ``"Crypto"``, ``"CRYPTO"`` or ``"PredictionApp"`` style input."""

    @classmethod
    def _missing_(cls, value: object):
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == key or member.value.replace("_", "") == key:
                    return member
        return None


class MarketKind(_CaseInsensitiveEnum):
    CRYPTO = "crypto"
    SPORTS = "sports"
    PREDICTION_APP = "prediction_app"


class Direction(_CaseInsensitiveEnum):
    UP = "up"
    DOWN = "down"
    OVER = "over"
    UNDER = "under"
    YES = "yes"
    NO = "no"

    @property
    def is_long(self) -> bool:
        return self in (Direction.UP, Direction.OVER, Direction.YES)

    @property
    def is_short(self) -> bool:
        return self in (Direction.DOWN, Direction.UNDER, Direction.NO)


class SignalStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class SignalResult(str, Enum):
    WIN = "win"
    LOSE = "lose"
    PUSH = "push"


class ActivityAction(str, Enum):
    STRATEGIST_REGISTERED = "STRATEGIST_REGISTERED"
    STRATEGY_CREATED = "STRATEGY_CREATED"
    STRATEGY_DELETED = "STRATEGY_DELETED"
    SIGNAL_PUBLISHED = "SIGNAL_PUBLISHED"
    SIGNAL_RESOLVED = "SIGNAL_RESOLVED"
    SIGNAL_CANCELLED = "SIGNAL_CANCELLED"
    STRATEGY_FOLLOWED = "STRATEGY_FOLLOWED"
    STRATEGY_UNFOLLOWED = "STRATEGY_UNFOLLOWED"


def _normalize_wallet(value: str) -> str:
    return str(value).strip().lower()


# ==================== ENTITIES ====================


class Strategist(BaseModel):
    id: int
    wallet_address: str
    display_name: str
    created_at: datetime = Field(default_factory=utcnow)


class Strategy(BaseModel):
    id: int
    onchain_id: Optional[int] = None
    owner_wallet: str
    name: str
    description: str = ""
    market_kind: MarketKind
    base_market: str
    is_public: bool = True
    is_ai_controlled: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Signal(BaseModel):
    """A directional prediction against a strategy's market.

    ``status`` moves ``open -> resolved`` or ``open -> cancelled`` and never
    again. ``result``, ``pnl_bps``, ``resolved_value`` and ``resolved_at`` are
    populated exactly when the signal is resolved.
    """

    id: int
    onchain_id: Optional[int] = None
    strategy_id: int
    direction: Direction
    entry_value: Optional[int] = None  # cents
    confidence_bps: int = Field(ge=0, le=MAX_CONFIDENCE_BPS)
    status: SignalStatus = SignalStatus.OPEN
    result: Optional[SignalResult] = None
    pnl_bps: Optional[int] = None
    resolved_value: Optional[int] = None  # cents
    asset: Optional[str] = None  # e.g. "ETH/USD"; falls back to strategy base market
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    resolved_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_resolution_fields(self) -> "Signal":
        resolved = self.status == SignalStatus.RESOLVED
        populated = [
            self.result is not None,
            self.pnl_bps is not None,
            self.resolved_value is not None,
            self.resolved_at is not None,
        ]
        if resolved and not all(populated):
            raise ValueError("resolved signal is missing result/pnl/resolved_value/resolved_at")
        if not resolved and any(populated):
            raise ValueError(f"{self.status.value} signal carries resolution fields")
        return self

    @property
    def is_open(self) -> bool:
        return self.status == SignalStatus.OPEN


class StrategyStats(BaseModel):
    strategy_id: int
    total_signals: int = 0
    winning_signals: int = 0
    losing_signals: int = 0
    win_rate_bps: int = 0
    avg_pnl_bps: int = 0
    total_pnl_bps: int = 0
    best_win_bps: int = 0
    worst_loss_bps: int = 0
    followers_count: int = 0
    updated_at: datetime = Field(default_factory=utcnow)

    def figures(self) -> dict[str, int]:
        """Computed fields only, for change detection."""
        return self.model_dump(exclude={"strategy_id", "updated_at"})


class Follower(BaseModel):
    id: int
    strategy_id: int
    wallet_address: str
    auto_copy: bool = False
    max_exposure_units: int = 0
    created_at: datetime = Field(default_factory=utcnow)


class ActivityLog(BaseModel):
    id: int
    wallet_address: str
    username: str
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class StrategyWithStats(Strategy):
    stats: StrategyStats


class FeedItem(Signal):
    strategy_name: Optional[str] = None
    base_market: Optional[str] = None
    is_ai_controlled: Optional[bool] = None


class GlobalStats(BaseModel):
    total_strategists: int = 0
    total_strategies: int = 0
    total_signals: int = 0
    total_resolved: int = 0


# ==================== INPUTS ====================


class CreateStrategistInput(BaseModel):
    wallet_address: str = Field(min_length=10)
    display_name: str = Field(min_length=1, max_length=80)

    @field_validator("wallet_address")
    @classmethod
    def _wallet(cls, value: str) -> str:
        return _normalize_wallet(value)


class CreateStrategyInput(BaseModel):
    wallet_address: str = Field(min_length=10)
    onchain_id: Optional[int] = Field(default=None, ge=0)
    name: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=2000)
    market_kind: MarketKind
    base_market: str = Field(min_length=1, max_length=64)
    is_public: bool = True
    is_ai_controlled: bool = False

    @field_validator("wallet_address")
    @classmethod
    def _wallet(cls, value: str) -> str:
        return _normalize_wallet(value)


class CreateSignalInput(BaseModel):
    """Store-level signal creation; expiry already computed."""

    strategy_id: int
    direction: Direction
    entry_value: Optional[int] = Field(default=None, gt=0)
    confidence_bps: int = Field(ge=0, le=MAX_CONFIDENCE_BPS)
    expires_at: datetime
    asset: Optional[str] = None
    onchain_id: Optional[int] = None

    @field_validator("expires_at")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return to_utc_naive(value)


class PublishSignalInput(BaseModel):
    """Caller-facing signal publication with a relative horizon."""

    wallet_address: str = Field(min_length=10)
    strategy_id: int = Field(gt=0)
    direction: Direction
    horizon_secs: int = Field(gt=0)
    confidence_bps: int = Field(ge=0, le=MAX_CONFIDENCE_BPS)
    entry_value: Optional[int] = Field(default=None, gt=0)
    asset: Optional[str] = Field(default=None, max_length=32)
    onchain_id: Optional[int] = None

    @field_validator("wallet_address")
    @classmethod
    def _wallet(cls, value: str) -> str:
        return _normalize_wallet(value)


class FollowStrategyInput(BaseModel):
    wallet_address: str = Field(min_length=10)
    strategy_id: int = Field(gt=0)
    auto_copy: bool = False
    max_exposure_units: int = Field(default=0, ge=0)

    @field_validator("wallet_address")
    @classmethod
    def _wallet(cls, value: str) -> str:
        return _normalize_wallet(value)


class ActivityRecord(BaseModel):
    wallet_address: str
    username: str
    action: str
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("wallet_address")
    @classmethod
    def _wallet(cls, value: str) -> str:
        return _normalize_wallet(value)


class StrategyFilter(BaseModel):
    market_kind: Optional[MarketKind] = None
    base_market: Optional[str] = None
    owner_wallet: Optional[str] = None
    is_public: Optional[bool] = None
    limit: int = Field(default=50, ge=1, le=500)
    offset: int = Field(default=0, ge=0)

    @field_validator("owner_wallet")
    @classmethod
    def _owner(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_wallet(value) if value else None


# ==================== EVENTS ====================


class SignalResolvedEvent(BaseModel):
    """Payload pushed to notification sinks after a committed resolution."""

    signal_id: int
    strategy_id: int
    strategy_name: str
    result: SignalResult
    pnl_bps: int
    direction: Direction
    entry_value: Optional[int] = None
    resolved_value: int
    resolved_at: datetime

    @classmethod
    def from_signal(cls, signal: Signal, strategy_name: str) -> "SignalResolvedEvent":
        return cls(
            signal_id=signal.id,
            strategy_id=signal.strategy_id,
            strategy_name=strategy_name,
            result=signal.result,
            pnl_bps=signal.pnl_bps,
            direction=signal.direction,
            entry_value=signal.entry_value,
            resolved_value=signal.resolved_value,
            resolved_at=signal.resolved_at,
        )
