"""Per-strategy performance stats, recomputed from the signal history."""

from __future__ import annotations

import asyncio
from typing import Iterable

from interfaces.signal_store import SignalStore
from models.signals import Signal, SignalResult, SignalStatus, StrategyStats
from services.settlement import BPS, div_round_half_up
from utils.logger import get_logger
from utils.utcnow import utcnow

logger = get_logger(__name__)


def compute_strategy_stats(
    strategy_id: int,
    signals: Iterable[Signal],
    followers_count: int = 0,
) -> StrategyStats:
    """Fold a strategy's full signal history into its stats.

    ``total_signals`` counts every signal regardless of status; the rates and
    P&L figures only look at resolved ones. Pushes count toward the resolved
    denominator but are neither wins nor losses.
    """
    total = 0
    resolved = 0
    wins = 0
    losses = 0
    total_pnl = 0
    best_win = 0
    worst_loss = 0

    for signal in signals:
        total += 1
        if signal.status != SignalStatus.RESOLVED:
            continue
        resolved += 1
        pnl = signal.pnl_bps or 0
        total_pnl += pnl
        if signal.result == SignalResult.WIN:
            wins += 1
            best_win = max(best_win, pnl)
        elif signal.result == SignalResult.LOSE:
            losses += 1
            worst_loss = min(worst_loss, pnl)

    return StrategyStats(
        strategy_id=strategy_id,
        total_signals=total,
        winning_signals=wins,
        losing_signals=losses,
        win_rate_bps=div_round_half_up(wins * BPS, resolved) if resolved else 0,
        avg_pnl_bps=div_round_half_up(total_pnl, resolved) if resolved else 0,
        total_pnl_bps=total_pnl,
        best_win_bps=best_win,
        worst_loss_bps=worst_loss,
        followers_count=followers_count,
    )


class StatsAggregator:
    """Rebuilds and persists ``StrategyStats`` rows.

    A recompute that produces the same figures as the stored row leaves the
    row untouched, so repeated calls return identical stats including
    ``updated_at``. Recomputes for the same strategy run one at a time so an
    older read can never overwrite a newer write.
    """

    def __init__(self, store: SignalStore):
        self._store = store
        self._locks: dict[int, asyncio.Lock] = {}

    async def recompute(self, strategy_id: int) -> StrategyStats:
        lock = self._locks.setdefault(strategy_id, asyncio.Lock())
        async with lock:
            return await self._recompute(strategy_id)

    async def _recompute(self, strategy_id: int) -> StrategyStats:
        signals = await self._store.list_signals_by_strategy(strategy_id)
        followers = await self._store.count_followers(strategy_id)
        computed = compute_strategy_stats(strategy_id, signals, followers)

        existing = await self._store.get_strategy_stats(strategy_id)
        if existing is not None and existing.figures() == computed.figures():
            return existing

        computed.updated_at = utcnow()
        stats = await self._store.upsert_strategy_stats(strategy_id, computed)
        logger.debug(
            "Strategy stats updated",
            strategy_id=strategy_id,
            total_signals=stats.total_signals,
            win_rate_bps=stats.win_rate_bps,
            total_pnl_bps=stats.total_pnl_bps,
        )
        return stats
