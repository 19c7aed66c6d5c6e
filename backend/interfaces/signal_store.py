"""Persistence contract shared by the in-memory and SQL backends.

Every method is async and returns domain models from ``models.signals``.
The two transition methods are the only way a signal leaves ``open``; they
are conditioned on the current status and return ``None`` when the signal is
missing or no longer open, so a resolution and a cancellation racing on the
same signal can never both succeed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from models.signals import (
    ActivityLog,
    ActivityRecord,
    CreateSignalInput,
    CreateStrategistInput,
    CreateStrategyInput,
    Follower,
    FollowStrategyInput,
    GlobalStats,
    Signal,
    SignalResult,
    Strategist,
    Strategy,
    StrategyFilter,
    StrategyStats,
)


@runtime_checkable
class SignalStore(Protocol):
    # -- strategists --

    async def create_strategist(self, data: CreateStrategistInput) -> Strategist:
        """Raises ``ConflictError`` if the wallet is already registered."""

    async def get_strategist(self, wallet_address: str) -> Optional[Strategist]: ...

    async def list_strategists(self) -> list[Strategist]: ...

    # -- strategies --

    async def create_strategy(self, data: CreateStrategyInput) -> Strategy:
        """Create the strategy together with a zeroed stats row."""

    async def get_strategy(self, strategy_id: int) -> Optional[Strategy]: ...

    async def get_strategy_by_onchain_id(self, onchain_id: int) -> Optional[Strategy]: ...

    async def list_strategies(self, filters: Optional[StrategyFilter] = None) -> list[Strategy]:
        """Newest first."""

    async def update_strategy_onchain_id(self, strategy_id: int, onchain_id: int) -> Optional[Strategy]: ...

    async def delete_strategy(self, strategy_id: int) -> bool:
        """Delete the strategy with its signals, stats row and followers."""

    # -- signals --

    async def create_signal(self, data: CreateSignalInput) -> Signal: ...

    async def get_signal(self, signal_id: int) -> Optional[Signal]: ...

    async def get_signal_by_onchain_id(self, onchain_id: int) -> Optional[Signal]: ...

    async def list_signals_by_strategy(self, strategy_id: int, limit: Optional[int] = None) -> list[Signal]:
        """Newest first; every status."""

    async def list_open_signals(self, strategy_id: Optional[int] = None) -> list[Signal]:
        """Open signals ordered by ``expires_at`` ascending."""

    async def list_expired_open_signals(self, now: Optional[datetime] = None) -> list[Signal]:
        """Open signals with ``expires_at <= now``, oldest expiry first."""

    async def list_recent_signals(self, limit: int = 50) -> list[Signal]: ...

    async def transition_signal_to_resolved(
        self,
        signal_id: int,
        result: SignalResult,
        pnl_bps: int,
        resolved_value: int,
    ) -> Optional[Signal]:
        """``open -> resolved``; ``None`` when the signal is not open."""

    async def transition_signal_to_cancelled(self, signal_id: int) -> Optional[Signal]:
        """``open -> cancelled``; ``None`` when the signal is not open."""

    # -- stats --

    async def get_strategy_stats(self, strategy_id: int) -> Optional[StrategyStats]: ...

    async def upsert_strategy_stats(self, strategy_id: int, stats: StrategyStats) -> StrategyStats: ...

    async def list_strategy_stats(self) -> list[StrategyStats]: ...

    # -- followers --

    async def add_follower(self, data: FollowStrategyInput) -> Follower:
        """Raises ``ConflictError`` if the wallet already follows the strategy."""

    async def remove_follower(self, strategy_id: int, wallet_address: str) -> bool: ...

    async def is_following(self, strategy_id: int, wallet_address: str) -> bool: ...

    async def list_followers(self, strategy_id: int) -> list[Follower]: ...

    async def list_followed_strategies(self, wallet_address: str) -> list[Strategy]: ...

    async def count_followers(self, strategy_id: int) -> int: ...

    # -- activity --

    async def append_activity(self, record: ActivityRecord) -> ActivityLog: ...

    async def list_activity(self, limit: int = 50) -> list[ActivityLog]:
        """Newest first."""

    async def list_activity_by_wallet(self, wallet_address: str, limit: int = 50) -> list[ActivityLog]: ...

    # -- misc --

    async def global_stats(self) -> GlobalStats: ...

    async def close(self) -> None: ...
