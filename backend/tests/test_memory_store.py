import asyncio
import json
import sys
from datetime import timedelta
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from conftest import FOLLOWER_WALLET, OWNER_WALLET
from models.signals import (
    ActivityRecord,
    CreateStrategistInput,
    FollowStrategyInput,
    MarketKind,
    SignalResult,
    SignalStatus,
    StrategyFilter,
)
from services.errors import ConflictError, NotFoundError
from services.stores import InMemorySignalStore
from utils.utcnow import utcnow


@pytest.mark.asyncio
async def test_strategist_wallet_is_unique_and_case_insensitive(memory_store):
    await memory_store.create_strategist(CreateStrategistInput(wallet_address=OWNER_WALLET.upper(), display_name="A"))

    with pytest.raises(ConflictError):
        await memory_store.create_strategist(CreateStrategistInput(wallet_address=OWNER_WALLET, display_name="B"))

    found = await memory_store.get_strategist(OWNER_WALLET.upper())
    assert found is not None
    assert found.wallet_address == OWNER_WALLET.lower()


@pytest.mark.asyncio
async def test_create_strategy_seeds_zeroed_stats(memory_store, make_strategy):
    strategy = await make_strategy(memory_store)

    stats = await memory_store.get_strategy_stats(strategy.id)

    assert stats is not None
    assert stats.total_signals == 0
    assert stats.win_rate_bps == 0


@pytest.mark.asyncio
async def test_create_signal_requires_existing_strategy(memory_store, make_signal):
    with pytest.raises(NotFoundError):
        await make_signal(memory_store, 999)


@pytest.mark.asyncio
async def test_expired_open_signals_only_and_ordered_by_expiry(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    later = await make_signal(memory_store, strategy.id, expired_for=10)
    earlier = await make_signal(memory_store, strategy.id, expired_for=120)
    await make_signal(memory_store, strategy.id, expired_for=-3_600)
    cancelled = await make_signal(memory_store, strategy.id, expired_for=60)
    await memory_store.transition_signal_to_cancelled(cancelled.id)

    expired = await memory_store.list_expired_open_signals()

    assert [s.id for s in expired] == [earlier.id, later.id]


@pytest.mark.asyncio
async def test_expired_listing_honours_explicit_now(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    future = await make_signal(memory_store, strategy.id, expired_for=-600)

    assert await memory_store.list_expired_open_signals() == []
    expired = await memory_store.list_expired_open_signals(now=utcnow() + timedelta(hours=1))
    assert [s.id for s in expired] == [future.id]


@pytest.mark.asyncio
async def test_transitions_are_exclusive(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    signal = await make_signal(memory_store, strategy.id)

    resolved = await memory_store.transition_signal_to_resolved(signal.id, SignalResult.WIN, 500, 10_500)
    assert resolved.status == SignalStatus.RESOLVED
    assert resolved.result == SignalResult.WIN
    assert resolved.pnl_bps == 500
    assert resolved.resolved_value == 10_500
    assert resolved.resolved_at is not None

    assert await memory_store.transition_signal_to_resolved(signal.id, SignalResult.LOSE, -1, 1) is None
    assert await memory_store.transition_signal_to_cancelled(signal.id) is None
    assert (await memory_store.get_signal(signal.id)).pnl_bps == 500


@pytest.mark.asyncio
async def test_concurrent_resolve_and_cancel_only_one_wins(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    signal = await make_signal(memory_store, strategy.id)

    results = await asyncio.gather(
        memory_store.transition_signal_to_resolved(signal.id, SignalResult.WIN, 500, 10_500),
        memory_store.transition_signal_to_cancelled(signal.id),
        memory_store.transition_signal_to_resolved(signal.id, SignalResult.LOSE, -500, 9_500),
    )

    assert sum(1 for r in results if r is not None) == 1


@pytest.mark.asyncio
async def test_cancelled_signal_has_no_resolution_fields(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    signal = await make_signal(memory_store, strategy.id)

    cancelled = await memory_store.transition_signal_to_cancelled(signal.id)

    assert cancelled.status == SignalStatus.CANCELLED
    assert cancelled.result is None
    assert cancelled.pnl_bps is None
    assert cancelled.resolved_at is None


@pytest.mark.asyncio
async def test_returned_models_are_copies(memory_store, make_strategy):
    strategy = await make_strategy(memory_store)
    strategy.name = "mutated"
    assert (await memory_store.get_strategy(strategy.id)).name == "BTC Momentum"


@pytest.mark.asyncio
async def test_delete_strategy_cascades(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    signal = await make_signal(memory_store, strategy.id)
    await memory_store.add_follower(FollowStrategyInput(wallet_address=FOLLOWER_WALLET, strategy_id=strategy.id))

    assert await memory_store.delete_strategy(strategy.id) is True
    assert await memory_store.delete_strategy(strategy.id) is False

    assert await memory_store.get_signal(signal.id) is None
    assert await memory_store.get_strategy_stats(strategy.id) is None
    assert await memory_store.count_followers(strategy.id) == 0


@pytest.mark.asyncio
async def test_followers(memory_store, make_strategy):
    first = await make_strategy(memory_store, name="First")
    second = await make_strategy(memory_store, name="Second")

    await memory_store.add_follower(FollowStrategyInput(wallet_address=FOLLOWER_WALLET, strategy_id=second.id))
    await memory_store.add_follower(FollowStrategyInput(wallet_address=FOLLOWER_WALLET, strategy_id=first.id))
    with pytest.raises(ConflictError):
        await memory_store.add_follower(FollowStrategyInput(wallet_address=FOLLOWER_WALLET, strategy_id=first.id))

    assert await memory_store.is_following(first.id, FOLLOWER_WALLET.upper())
    assert [s.name for s in await memory_store.list_followed_strategies(FOLLOWER_WALLET)] == ["Second", "First"]
    assert await memory_store.count_followers(first.id) == 1

    assert await memory_store.remove_follower(first.id, FOLLOWER_WALLET) is True
    assert await memory_store.remove_follower(first.id, FOLLOWER_WALLET) is False
    assert await memory_store.list_followers(first.id) == []


@pytest.mark.asyncio
async def test_activity_is_newest_first_and_trimmed():
    store = InMemorySignalStore(activity_max_entries=3)
    for i in range(5):
        await store.append_activity(
            ActivityRecord(wallet_address=OWNER_WALLET, username="Alice", action="SIGNAL_PUBLISHED", details={"n": i})
        )
    await store.append_activity(ActivityRecord(wallet_address=FOLLOWER_WALLET, username="User", action="STRATEGY_FOLLOWED"))

    activity = await store.list_activity(limit=10)
    assert [a.details.get("n") for a in activity] == [None, 4, 3]

    mine = await store.list_activity_by_wallet(OWNER_WALLET.upper())
    assert [a.details["n"] for a in mine] == [4, 3]


@pytest.mark.asyncio
async def test_list_strategies_filters_and_pages(memory_store, make_strategy):
    await make_strategy(memory_store, name="BTC A", base_market="BTC-USD")
    await make_strategy(memory_store, name="ETH A", base_market="ETH-USD", is_public=False)
    await make_strategy(memory_store, name="Sports", market_kind=MarketKind.SPORTS, base_market="NBA")

    crypto = await memory_store.list_strategies(StrategyFilter(market_kind=MarketKind.CRYPTO))
    assert {s.name for s in crypto} == {"BTC A", "ETH A"}

    public = await memory_store.list_strategies(StrategyFilter(is_public=True))
    assert {s.name for s in public} == {"BTC A", "Sports"}

    eth = await memory_store.list_strategies(StrategyFilter(base_market="eth-usd"))
    assert [s.name for s in eth] == ["ETH A"]

    page = await memory_store.list_strategies(StrategyFilter(limit=2))
    rest = await memory_store.list_strategies(StrategyFilter(limit=2, offset=2))
    assert len(page) == 2
    assert len(rest) == 1


@pytest.mark.asyncio
async def test_global_stats(memory_store, make_strategy, make_signal):
    strategy = await make_strategy(memory_store)
    first = await make_signal(memory_store, strategy.id)
    await make_signal(memory_store, strategy.id)
    await memory_store.transition_signal_to_resolved(first.id, SignalResult.PUSH, 0, 10_000)

    stats = await memory_store.global_stats()

    assert stats.total_strategists == 1
    assert stats.total_strategies == 1
    assert stats.total_signals == 2
    assert stats.total_resolved == 1


@pytest.mark.asyncio
async def test_snapshot_survives_restart(tmp_path, make_strategy, make_signal):
    path = tmp_path / "state" / "signals.json"
    store = InMemorySignalStore(snapshot_path=str(path))
    strategy = await make_strategy(store)
    signal = await make_signal(store, strategy.id)
    await store.transition_signal_to_resolved(signal.id, SignalResult.WIN, 500, 10_500)
    await store.close()

    reloaded = InMemorySignalStore(snapshot_path=str(path))

    restored = await reloaded.get_signal(signal.id)
    assert restored.status == SignalStatus.RESOLVED
    assert restored.pnl_bps == 500
    assert (await reloaded.get_strategist(OWNER_WALLET)).display_name == "Alice"

    next_signal = await make_signal(reloaded, strategy.id)
    await reloaded.close()
    assert next_signal.id == signal.id + 1


@pytest.mark.asyncio
async def test_corrupt_snapshot_starts_empty(tmp_path):
    path = tmp_path / "signals.json"
    path.write_text("{not json", encoding="utf-8")

    store = InMemorySignalStore(snapshot_path=str(path))

    assert await store.list_strategists() == []


@pytest.mark.asyncio
async def test_snapshot_writes_are_debounced(tmp_path, make_strategy):
    path = tmp_path / "signals.json"
    store = InMemorySignalStore(snapshot_path=str(path), flush_interval_seconds=60)
    try:
        await make_strategy(store)
        assert not path.exists()

        await store.flush()
        assert json.loads(path.read_text(encoding="utf-8"))["strategies"][0]["name"] == "BTC Momentum"
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_background_flush_writes_after_interval(tmp_path, make_strategy):
    path = tmp_path / "signals.json"
    store = InMemorySignalStore(snapshot_path=str(path), flush_interval_seconds=0.05)
    try:
        await make_strategy(store)
        for _ in range(40):
            if path.exists():
                break
            await asyncio.sleep(0.05)
        assert path.exists()
    finally:
        await store.close()
