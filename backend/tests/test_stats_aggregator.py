import sys
from datetime import timedelta
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from conftest import FOLLOWER_WALLET
from models.signals import (
    Direction,
    FollowStrategyInput,
    Signal,
    SignalResult,
    SignalStatus,
)
from services.stats_aggregator import StatsAggregator, compute_strategy_stats
from utils.utcnow import utcnow

_next_id = iter(range(1, 10_000))


def _signal(status=SignalStatus.RESOLVED, result=None, pnl=None):
    now = utcnow()
    resolved = status == SignalStatus.RESOLVED
    return Signal(
        id=next(_next_id),
        strategy_id=1,
        direction=Direction.UP,
        entry_value=10_000,
        confidence_bps=5_000,
        status=status,
        result=result if resolved else None,
        pnl_bps=pnl if resolved else None,
        resolved_value=10_000 if resolved else None,
        resolved_at=now if resolved else None,
        expires_at=now - timedelta(minutes=1),
    )


def test_compute_stats_mixed_history():
    signals = [
        _signal(result=SignalResult.WIN, pnl=200),
        _signal(result=SignalResult.WIN, pnl=50),
        _signal(result=SignalResult.LOSE, pnl=-100),
        _signal(result=SignalResult.PUSH, pnl=0),
        _signal(status=SignalStatus.OPEN),
        _signal(status=SignalStatus.CANCELLED),
    ]

    stats = compute_strategy_stats(1, signals, followers_count=3)

    assert stats.total_signals == 6
    assert stats.winning_signals == 2
    assert stats.losing_signals == 1
    assert stats.win_rate_bps == 5_000  # 2 of 4 resolved, push included
    assert stats.total_pnl_bps == 150
    assert stats.avg_pnl_bps == 38  # 37.5 rounds half up
    assert stats.best_win_bps == 200
    assert stats.worst_loss_bps == -100
    assert stats.followers_count == 3


def test_compute_stats_empty_history_is_all_zero():
    stats = compute_strategy_stats(7, [])
    assert stats.figures() == {
        "total_signals": 0,
        "winning_signals": 0,
        "losing_signals": 0,
        "win_rate_bps": 0,
        "avg_pnl_bps": 0,
        "total_pnl_bps": 0,
        "best_win_bps": 0,
        "worst_loss_bps": 0,
        "followers_count": 0,
    }


def test_win_rate_rounds_to_nearest_bps():
    one_of_three = [
        _signal(result=SignalResult.WIN, pnl=10),
        _signal(result=SignalResult.LOSE, pnl=-10),
        _signal(result=SignalResult.LOSE, pnl=-10),
    ]
    two_of_three = [
        _signal(result=SignalResult.WIN, pnl=10),
        _signal(result=SignalResult.WIN, pnl=10),
        _signal(result=SignalResult.LOSE, pnl=-10),
    ]
    assert compute_strategy_stats(1, one_of_three).win_rate_bps == 3_333
    assert compute_strategy_stats(1, two_of_three).win_rate_bps == 6_667


def test_negative_average_rounds_half_up_toward_zero():
    signals = [
        _signal(result=SignalResult.LOSE, pnl=-3),
        _signal(result=SignalResult.LOSE, pnl=-2),
    ]
    assert compute_strategy_stats(1, signals).avg_pnl_bps == -2


def test_no_wins_means_zero_best_win_and_no_losses_zero_worst():
    only_losses = [_signal(result=SignalResult.LOSE, pnl=-40)]
    only_wins = [_signal(result=SignalResult.WIN, pnl=40)]
    assert compute_strategy_stats(1, only_losses).best_win_bps == 0
    assert compute_strategy_stats(1, only_wins).worst_loss_bps == 0


@pytest.mark.asyncio
async def test_recompute_persists_and_is_idempotent(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    signal = await make_signal(memory_store, strategy.id)
    await memory_store.transition_signal_to_resolved(signal.id, SignalResult.WIN, 500, 10_500)

    aggregator = StatsAggregator(memory_store)
    first = await aggregator.recompute(strategy.id)
    second = await aggregator.recompute(strategy.id)

    assert first.total_signals == 1
    assert first.win_rate_bps == 10_000
    assert first.total_pnl_bps == 500
    assert second == first
    assert second.updated_at == first.updated_at
    assert await memory_store.get_strategy_stats(strategy.id) == first


@pytest.mark.asyncio
async def test_recompute_reflects_follower_changes(memory_store, make_strategy):
    strategy = await make_strategy(memory_store)
    aggregator = StatsAggregator(memory_store)

    await memory_store.add_follower(FollowStrategyInput(wallet_address=FOLLOWER_WALLET, strategy_id=strategy.id))
    stats = await aggregator.recompute(strategy.id)
    assert stats.followers_count == 1

    await memory_store.remove_follower(strategy.id, FOLLOWER_WALLET)
    stats = await aggregator.recompute(strategy.id)
    assert stats.followers_count == 0
