"""Process-local ``SignalStore`` for development and tests.

All state lives in dicts guarded by one ``asyncio.Lock``. When a snapshot
path is configured, mutations mark the state dirty and a background flush
writes it as JSON at most once per ``flush_interval_seconds``; ``close`` and
``flush`` write immediately. The snapshot is read back at construction, so a
restart keeps strategies and signals.
"""

from __future__ import annotations

import asyncio
import json
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

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
    SignalStatus,
    Strategist,
    Strategy,
    StrategyFilter,
    StrategyStats,
)
from services.errors import ConflictError, NotFoundError
from utils.logger import get_logger
from utils.utcnow import to_utc_naive, utcnow

logger = get_logger(__name__)

_COUNTERS = ("strategist", "strategy", "signal", "follower", "activity")


class InMemorySignalStore:
    def __init__(
        self,
        snapshot_path: Optional[str] = None,
        activity_max_entries: int = 1000,
        flush_interval_seconds: float = 30.0,
    ):
        self._snapshot_path = Path(snapshot_path) if snapshot_path else None
        self._activity_max = max(1, int(activity_max_entries))
        self._flush_interval = max(0.0, float(flush_interval_seconds))
        self._lock = asyncio.Lock()
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None
        self._write_lock = asyncio.Lock()

        self._strategists: dict[str, Strategist] = {}
        self._strategies: dict[int, Strategy] = {}
        self._signals: dict[int, Signal] = {}
        self._stats: dict[int, StrategyStats] = {}
        self._followers: dict[tuple[int, str], Follower] = {}
        self._activity: list[ActivityLog] = []  # newest first
        self._next_id: dict[str, int] = {name: 1 for name in _COUNTERS}

        if self._snapshot_path is not None:
            self._load_snapshot()

    # ==================== SNAPSHOT ====================

    def _allocate_id(self, kind: str) -> int:
        value = self._next_id[kind]
        self._next_id[kind] = value + 1
        return value

    def _snapshot(self) -> dict:
        return {
            "strategists": [s.model_dump(mode="json") for s in self._strategists.values()],
            "strategies": [s.model_dump(mode="json") for s in self._strategies.values()],
            "signals": [s.model_dump(mode="json") for s in self._signals.values()],
            "strategy_stats": [s.model_dump(mode="json") for s in self._stats.values()],
            "followers": [f.model_dump(mode="json") for f in self._followers.values()],
            "activity_log": [a.model_dump(mode="json") for a in self._activity],
            "counters": dict(self._next_id),
        }

    def _mark_dirty(self) -> None:
        """Called with the lock held after every mutation."""
        if self._snapshot_path is None:
            return
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.create_task(self._flush_later())

    async def _flush_later(self) -> None:
        await asyncio.sleep(self._flush_interval)
        await self.flush()

    def _write_snapshot(self, payload: dict) -> None:
        try:
            self._snapshot_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._snapshot_path.with_suffix(self._snapshot_path.suffix + ".tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp_path, self._snapshot_path)
        except OSError as exc:
            logger.error("Failed to write memory store snapshot", path=str(self._snapshot_path), error=str(exc))

    async def flush(self, force: bool = False) -> None:
        """Write pending changes to the snapshot file now."""
        if self._snapshot_path is None:
            return
        async with self._write_lock:
            async with self._lock:
                if not (self._dirty or force):
                    return
                payload = self._snapshot()
                self._dirty = False
            await asyncio.to_thread(self._write_snapshot, payload)

    def _load_snapshot(self) -> None:
        if not self._snapshot_path.exists():
            return
        try:
            data = json.loads(self._snapshot_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.error("Failed to read memory store snapshot", path=str(self._snapshot_path), error=str(exc))
            return

        for item in data.get("strategists", []):
            strategist = Strategist.model_validate(item)
            self._strategists[strategist.wallet_address] = strategist
        for item in data.get("strategies", []):
            strategy = Strategy.model_validate(item)
            self._strategies[strategy.id] = strategy
        for item in data.get("signals", []):
            signal = Signal.model_validate(item)
            self._signals[signal.id] = signal
        for item in data.get("strategy_stats", []):
            stats = StrategyStats.model_validate(item)
            self._stats[stats.strategy_id] = stats
        for item in data.get("followers", []):
            follower = Follower.model_validate(item)
            self._followers[(follower.strategy_id, follower.wallet_address)] = follower
        self._activity = [ActivityLog.model_validate(item) for item in data.get("activity_log", [])]

        counters = data.get("counters") or {}
        for name in _COUNTERS:
            self._next_id[name] = max(1, int(counters.get(name, 1)))

        logger.info(
            "Loaded memory store snapshot",
            path=str(self._snapshot_path),
            strategists=len(self._strategists),
            strategies=len(self._strategies),
            signals=len(self._signals),
        )

    # ==================== STRATEGISTS ====================

    async def create_strategist(self, data: CreateStrategistInput) -> Strategist:
        async with self._lock:
            if data.wallet_address in self._strategists:
                raise ConflictError(f"Strategist already registered: {data.wallet_address}")
            strategist = Strategist(
                id=self._allocate_id("strategist"),
                wallet_address=data.wallet_address,
                display_name=data.display_name,
                created_at=utcnow(),
            )
            self._strategists[strategist.wallet_address] = strategist
            self._mark_dirty()
            return strategist.model_copy()

    async def get_strategist(self, wallet_address: str) -> Optional[Strategist]:
        strategist = self._strategists.get(wallet_address.strip().lower())
        return strategist.model_copy() if strategist else None

    async def list_strategists(self) -> list[Strategist]:
        return [s.model_copy() for s in sorted(self._strategists.values(), key=lambda s: s.id)]

    # ==================== STRATEGIES ====================

    async def create_strategy(self, data: CreateStrategyInput) -> Strategy:
        async with self._lock:
            now = utcnow()
            strategy = Strategy(
                id=self._allocate_id("strategy"),
                onchain_id=data.onchain_id,
                owner_wallet=data.wallet_address,
                name=data.name,
                description=data.description,
                market_kind=data.market_kind,
                base_market=data.base_market,
                is_public=data.is_public,
                is_ai_controlled=data.is_ai_controlled,
                created_at=now,
            )
            self._strategies[strategy.id] = strategy
            self._stats[strategy.id] = StrategyStats(strategy_id=strategy.id, updated_at=now)
            self._mark_dirty()
            return strategy.model_copy()

    async def get_strategy(self, strategy_id: int) -> Optional[Strategy]:
        strategy = self._strategies.get(strategy_id)
        return strategy.model_copy() if strategy else None

    async def get_strategy_by_onchain_id(self, onchain_id: int) -> Optional[Strategy]:
        for strategy in self._strategies.values():
            if strategy.onchain_id == onchain_id:
                return strategy.model_copy()
        return None

    async def list_strategies(self, filters: Optional[StrategyFilter] = None) -> list[Strategy]:
        filters = filters or StrategyFilter()
        base_market = filters.base_market.upper() if filters.base_market else None
        matches = [
            s
            for s in self._strategies.values()
            if (filters.market_kind is None or s.market_kind == filters.market_kind)
            and (base_market is None or s.base_market.upper() == base_market)
            and (filters.owner_wallet is None or s.owner_wallet == filters.owner_wallet)
            and (filters.is_public is None or s.is_public == filters.is_public)
        ]
        matches.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        page = matches[filters.offset : filters.offset + filters.limit]
        return [s.model_copy() for s in page]

    async def update_strategy_onchain_id(self, strategy_id: int, onchain_id: int) -> Optional[Strategy]:
        async with self._lock:
            strategy = self._strategies.get(strategy_id)
            if strategy is None:
                return None
            strategy = strategy.model_copy(update={"onchain_id": onchain_id})
            self._strategies[strategy_id] = strategy
            self._mark_dirty()
            return strategy.model_copy()

    async def delete_strategy(self, strategy_id: int) -> bool:
        async with self._lock:
            if self._strategies.pop(strategy_id, None) is None:
                return False
            self._stats.pop(strategy_id, None)
            for signal_id in [sid for sid, s in self._signals.items() if s.strategy_id == strategy_id]:
                del self._signals[signal_id]
            for key in [k for k in self._followers if k[0] == strategy_id]:
                del self._followers[key]
            self._mark_dirty()
            return True

    # ==================== SIGNALS ====================

    async def create_signal(self, data: CreateSignalInput) -> Signal:
        async with self._lock:
            if data.strategy_id not in self._strategies:
                raise NotFoundError("strategy", data.strategy_id)
            signal = Signal(
                id=self._allocate_id("signal"),
                onchain_id=data.onchain_id,
                strategy_id=data.strategy_id,
                direction=data.direction,
                entry_value=data.entry_value,
                confidence_bps=data.confidence_bps,
                asset=data.asset,
                created_at=utcnow(),
                expires_at=data.expires_at,
            )
            self._signals[signal.id] = signal
            self._mark_dirty()
            return signal.model_copy()

    async def get_signal(self, signal_id: int) -> Optional[Signal]:
        signal = self._signals.get(signal_id)
        return signal.model_copy() if signal else None

    async def get_signal_by_onchain_id(self, onchain_id: int) -> Optional[Signal]:
        for signal in self._signals.values():
            if signal.onchain_id == onchain_id:
                return signal.model_copy()
        return None

    async def list_signals_by_strategy(self, strategy_id: int, limit: Optional[int] = None) -> list[Signal]:
        matches = [s for s in self._signals.values() if s.strategy_id == strategy_id]
        matches.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        if limit is not None:
            matches = matches[:limit]
        return [s.model_copy() for s in matches]

    async def list_open_signals(self, strategy_id: Optional[int] = None) -> list[Signal]:
        matches = [
            s
            for s in self._signals.values()
            if s.status == SignalStatus.OPEN and (strategy_id is None or s.strategy_id == strategy_id)
        ]
        matches.sort(key=lambda s: (s.expires_at, s.id))
        return [s.model_copy() for s in matches]

    async def list_expired_open_signals(self, now: Optional[datetime] = None) -> list[Signal]:
        cutoff = to_utc_naive(now) if now is not None else utcnow()
        matches = [s for s in self._signals.values() if s.status == SignalStatus.OPEN and s.expires_at <= cutoff]
        matches.sort(key=lambda s: (s.expires_at, s.id))
        return [s.model_copy() for s in matches]

    async def list_recent_signals(self, limit: int = 50) -> list[Signal]:
        matches = sorted(self._signals.values(), key=lambda s: (s.created_at, s.id), reverse=True)
        return [s.model_copy() for s in matches[:limit]]

    async def transition_signal_to_resolved(
        self,
        signal_id: int,
        result: SignalResult,
        pnl_bps: int,
        resolved_value: int,
    ) -> Optional[Signal]:
        async with self._lock:
            signal = self._signals.get(signal_id)
            if signal is None or signal.status != SignalStatus.OPEN:
                return None
            resolved = Signal.model_validate(
                {
                    **signal.model_dump(),
                    "status": SignalStatus.RESOLVED,
                    "result": SignalResult(result),
                    "pnl_bps": int(pnl_bps),
                    "resolved_value": int(resolved_value),
                    "resolved_at": utcnow(),
                }
            )
            self._signals[signal_id] = resolved
            self._mark_dirty()
            return resolved.model_copy()

    async def transition_signal_to_cancelled(self, signal_id: int) -> Optional[Signal]:
        async with self._lock:
            signal = self._signals.get(signal_id)
            if signal is None or signal.status != SignalStatus.OPEN:
                return None
            cancelled = signal.model_copy(update={"status": SignalStatus.CANCELLED})
            self._signals[signal_id] = cancelled
            self._mark_dirty()
            return cancelled.model_copy()

    # ==================== STATS ====================

    async def get_strategy_stats(self, strategy_id: int) -> Optional[StrategyStats]:
        stats = self._stats.get(strategy_id)
        return stats.model_copy() if stats else None

    async def upsert_strategy_stats(self, strategy_id: int, stats: StrategyStats) -> StrategyStats:
        async with self._lock:
            if strategy_id not in self._strategies:
                raise NotFoundError("strategy", strategy_id)
            stored = stats.model_copy(update={"strategy_id": strategy_id})
            self._stats[strategy_id] = stored
            self._mark_dirty()
            return stored.model_copy()

    async def list_strategy_stats(self) -> list[StrategyStats]:
        return [s.model_copy() for s in self._stats.values()]

    # ==================== FOLLOWERS ====================

    async def add_follower(self, data: FollowStrategyInput) -> Follower:
        async with self._lock:
            if data.strategy_id not in self._strategies:
                raise NotFoundError("strategy", data.strategy_id)
            key = (data.strategy_id, data.wallet_address)
            if key in self._followers:
                raise ConflictError(f"{data.wallet_address} already follows strategy {data.strategy_id}")
            follower = Follower(
                id=self._allocate_id("follower"),
                strategy_id=data.strategy_id,
                wallet_address=data.wallet_address,
                auto_copy=data.auto_copy,
                max_exposure_units=data.max_exposure_units,
                created_at=utcnow(),
            )
            self._followers[key] = follower
            self._mark_dirty()
            return follower.model_copy()

    async def remove_follower(self, strategy_id: int, wallet_address: str) -> bool:
        async with self._lock:
            removed = self._followers.pop((strategy_id, wallet_address.strip().lower()), None)
            if removed is not None:
                self._mark_dirty()
            return removed is not None

    async def is_following(self, strategy_id: int, wallet_address: str) -> bool:
        return (strategy_id, wallet_address.strip().lower()) in self._followers

    async def list_followers(self, strategy_id: int) -> list[Follower]:
        matches = [f for f in self._followers.values() if f.strategy_id == strategy_id]
        matches.sort(key=lambda f: f.id)
        return [f.model_copy() for f in matches]

    async def list_followed_strategies(self, wallet_address: str) -> list[Strategy]:
        wallet = wallet_address.strip().lower()
        ids = [f.strategy_id for f in sorted(self._followers.values(), key=lambda f: f.id) if f.wallet_address == wallet]
        return [self._strategies[i].model_copy() for i in ids if i in self._strategies]

    async def count_followers(self, strategy_id: int) -> int:
        return sum(1 for key in self._followers if key[0] == strategy_id)

    # ==================== ACTIVITY ====================

    async def append_activity(self, record: ActivityRecord) -> ActivityLog:
        async with self._lock:
            entry = ActivityLog(
                id=self._allocate_id("activity"),
                wallet_address=record.wallet_address,
                username=record.username,
                action=record.action,
                details=dict(record.details),
                created_at=utcnow(),
            )
            self._activity.insert(0, entry)
            del self._activity[self._activity_max :]
            self._mark_dirty()
            return entry.model_copy(deep=True)

    async def list_activity(self, limit: int = 50) -> list[ActivityLog]:
        return [a.model_copy(deep=True) for a in self._activity[:limit]]

    async def list_activity_by_wallet(self, wallet_address: str, limit: int = 50) -> list[ActivityLog]:
        wallet = wallet_address.strip().lower()
        return [a.model_copy(deep=True) for a in self._activity if a.wallet_address == wallet][:limit]

    # ==================== MISC ====================

    async def global_stats(self) -> GlobalStats:
        return GlobalStats(
            total_strategists=len(self._strategists),
            total_strategies=len(self._strategies),
            total_signals=len(self._signals),
            total_resolved=sum(1 for s in self._signals.values() if s.status == SignalStatus.RESOLVED),
        )

    async def close(self) -> None:
        task, self._flush_task = self._flush_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.flush(force=True)
