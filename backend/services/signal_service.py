"""Strategist, strategy, signal and follower operations.

This is the layer an HTTP or RPC surface calls. It validates ownership and
existence, keeps strategy stats current after each change, and writes the
matching activity record.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from interfaces.signal_store import SignalStore
from models.signals import (
    ActivityAction,
    ActivityLog,
    ActivityRecord,
    CreateSignalInput,
    CreateStrategistInput,
    CreateStrategyInput,
    FeedItem,
    Follower,
    FollowStrategyInput,
    GlobalStats,
    MarketKind,
    PublishSignalInput,
    Signal,
    Strategist,
    Strategy,
    StrategyFilter,
    StrategyStats,
    StrategyWithStats,
)
from models.prices import PriceQuote
from services.errors import ConflictError, InvalidInputError, NotAuthorizedError, NotFoundError
from services.price_oracle import PriceOracle
from services.resolution_engine import ResolutionEngine
from services.stats_aggregator import StatsAggregator
from utils.logger import get_logger
from utils.utcnow import to_iso, utcnow

logger = get_logger(__name__)


class SignalService:
    def __init__(
        self,
        store: SignalStore,
        oracle: PriceOracle,
        engine: ResolutionEngine,
        aggregator: Optional[StatsAggregator] = None,
    ):
        self._store = store
        self._oracle = oracle
        self._engine = engine
        self._aggregator = aggregator or StatsAggregator(store)

    async def _log(self, wallet: str, username: str, action: ActivityAction, **details) -> ActivityLog:
        return await self._store.append_activity(
            ActivityRecord(wallet_address=wallet, username=username, action=action.value, details=details)
        )

    async def _require_strategy(self, strategy_id: int) -> Strategy:
        strategy = await self._store.get_strategy(strategy_id)
        if strategy is None:
            raise NotFoundError("strategy", strategy_id)
        return strategy

    # ==================== STRATEGISTS ====================

    async def register_strategist(self, data: CreateStrategistInput) -> Strategist:
        if await self._store.get_strategist(data.wallet_address) is not None:
            raise ConflictError(f"Strategist already registered: {data.wallet_address}")
        strategist = await self._store.create_strategist(data)
        await self._log(
            strategist.wallet_address,
            strategist.display_name,
            ActivityAction.STRATEGIST_REGISTERED,
            display_name=strategist.display_name,
        )
        logger.info("Registered strategist", wallet=strategist.wallet_address)
        return strategist

    async def get_strategist(self, wallet_address: str) -> Optional[Strategist]:
        return await self._store.get_strategist(wallet_address)

    # ==================== STRATEGIES ====================

    async def create_strategy(self, data: CreateStrategyInput) -> Strategy:
        strategist = await self._store.get_strategist(data.wallet_address)
        if strategist is None:
            raise NotFoundError("strategist", data.wallet_address)

        strategy = await self._store.create_strategy(data)
        await self._log(
            strategy.owner_wallet,
            strategist.display_name,
            ActivityAction.STRATEGY_CREATED,
            strategy_id=strategy.id,
            strategy_name=strategy.name,
            market_kind=strategy.market_kind.value,
            base_market=strategy.base_market,
        )
        logger.info("Created strategy", strategy_id=strategy.id, market_kind=strategy.market_kind.value)
        return strategy

    async def link_onchain_id(self, strategy_id: int, onchain_id: int) -> Strategy:
        strategy = await self._store.update_strategy_onchain_id(strategy_id, onchain_id)
        if strategy is None:
            raise NotFoundError("strategy", strategy_id)
        return strategy

    async def delete_strategy(self, strategy_id: int, wallet_address: str) -> None:
        strategy = await self._require_strategy(strategy_id)
        if strategy.owner_wallet != wallet_address.strip().lower():
            raise NotAuthorizedError(f"{wallet_address} does not own strategy {strategy_id}")
        await self._store.delete_strategy(strategy_id)
        strategist = await self._store.get_strategist(strategy.owner_wallet)
        await self._log(
            strategy.owner_wallet,
            strategist.display_name if strategist else strategy.name,
            ActivityAction.STRATEGY_DELETED,
            strategy_id=strategy_id,
            strategy_name=strategy.name,
        )

    async def list_strategies(self, filters: Optional[StrategyFilter] = None) -> list[Strategy]:
        return await self._store.list_strategies(filters)

    async def _stats_for(self, strategy_id: int) -> StrategyStats:
        stats = await self._store.get_strategy_stats(strategy_id)
        if stats is None:
            stats = await self._aggregator.recompute(strategy_id)
        return stats

    async def get_strategy_with_stats(self, strategy_id: int) -> StrategyWithStats:
        strategy = await self._require_strategy(strategy_id)
        stats = await self._stats_for(strategy_id)
        return StrategyWithStats(**strategy.model_dump(), stats=stats)

    async def top_strategies(self, limit: int = 10) -> list[StrategyWithStats]:
        """Public strategies by followers, then win rate, then total P&L (all descending)."""
        ranked: list[StrategyWithStats] = []
        offset = 0
        while True:
            page = await self._store.list_strategies(StrategyFilter(is_public=True, limit=500, offset=offset))
            for strategy in page:
                ranked.append(StrategyWithStats(**strategy.model_dump(), stats=await self._stats_for(strategy.id)))
            if len(page) < 500:
                break
            offset += 500

        ranked.sort(
            key=lambda s: (s.stats.followers_count, s.stats.win_rate_bps, s.stats.total_pnl_bps),
            reverse=True,
        )
        return ranked[:limit]

    # ==================== SIGNALS ====================

    async def _entry_price(self, strategy: Strategy, asset: Optional[str]) -> Optional[int]:
        if strategy.market_kind != MarketKind.CRYPTO:
            return None
        symbol = self._oracle.extract_asset(asset or strategy.base_market)
        if symbol is None:
            return None
        quote = await self._oracle.get_price(symbol)
        logger.debug("Entry price from oracle", symbol=symbol, price=quote.price, source=quote.source)
        return quote.price or None

    async def publish_signal(self, data: PublishSignalInput) -> Signal:
        strategy = await self._require_strategy(data.strategy_id)
        if strategy.owner_wallet != data.wallet_address:
            raise NotAuthorizedError(f"{data.wallet_address} does not own strategy {strategy.id}")
        if data.asset and strategy.market_kind == MarketKind.CRYPTO and self._oracle.extract_asset(data.asset) is None:
            raise InvalidInputError(f"Unsupported asset for crypto signal: {data.asset!r}")

        entry_value = data.entry_value
        if entry_value is None:
            entry_value = await self._entry_price(strategy, data.asset)

        signal = await self._store.create_signal(
            CreateSignalInput(
                strategy_id=strategy.id,
                direction=data.direction,
                entry_value=entry_value,
                confidence_bps=data.confidence_bps,
                expires_at=utcnow() + timedelta(seconds=data.horizon_secs),
                asset=data.asset,
                onchain_id=data.onchain_id,
            )
        )
        await self._aggregator.recompute(strategy.id)

        strategist = await self._store.get_strategist(data.wallet_address)
        await self._log(
            data.wallet_address,
            strategist.display_name if strategist else strategy.name,
            ActivityAction.SIGNAL_PUBLISHED,
            signal_id=signal.id,
            strategy_id=signal.strategy_id,
            strategy_name=strategy.name,
            direction=signal.direction.value,
            confidence_bps=signal.confidence_bps,
            entry_value=signal.entry_value,
            expires_at=to_iso(signal.expires_at),
        )
        logger.info(
            "Published signal",
            signal_id=signal.id,
            strategy_id=strategy.id,
            direction=signal.direction.value,
            entry_value=signal.entry_value,
        )
        return signal

    async def cancel_signal(self, signal_id: int, wallet_address: str) -> Signal:
        signal = await self._store.get_signal(signal_id)
        if signal is None:
            raise NotFoundError("signal", signal_id)
        strategy = await self._require_strategy(signal.strategy_id)
        if strategy.owner_wallet != wallet_address.strip().lower():
            raise NotAuthorizedError(f"{wallet_address} does not own signal {signal_id}")

        cancelled = await self._engine.cancel_signal(signal_id)
        if cancelled is None:
            raise ConflictError(f"Signal {signal_id} is no longer open")
        return cancelled

    async def get_signal(self, signal_id: int) -> Signal:
        signal = await self._store.get_signal(signal_id)
        if signal is None:
            raise NotFoundError("signal", signal_id)
        return signal

    async def list_strategy_signals(self, strategy_id: int, limit: Optional[int] = None) -> list[Signal]:
        await self._require_strategy(strategy_id)
        return await self._store.list_signals_by_strategy(strategy_id, limit=limit)

    async def list_open_signals(self) -> list[Signal]:
        return await self._store.list_open_signals()

    async def feed(self, limit: int = 50) -> list[FeedItem]:
        """Recent signals joined with their strategy's name, market and AI flag."""
        items: list[FeedItem] = []
        strategies: dict[int, Optional[Strategy]] = {}
        for signal in await self._store.list_recent_signals(limit):
            if signal.strategy_id not in strategies:
                strategies[signal.strategy_id] = await self._store.get_strategy(signal.strategy_id)
            strategy = strategies[signal.strategy_id]
            items.append(
                FeedItem(
                    **signal.model_dump(),
                    strategy_name=strategy.name if strategy else None,
                    base_market=strategy.base_market if strategy else None,
                    is_ai_controlled=strategy.is_ai_controlled if strategy else None,
                )
            )
        return items

    # ==================== FOLLOWERS ====================

    async def follow_strategy(self, data: FollowStrategyInput) -> Follower:
        strategy = await self._require_strategy(data.strategy_id)
        if await self._store.is_following(data.strategy_id, data.wallet_address):
            raise ConflictError(f"{data.wallet_address} already follows strategy {data.strategy_id}")

        follower = await self._store.add_follower(data)
        await self._aggregator.recompute(strategy.id)

        strategist = await self._store.get_strategist(data.wallet_address)
        await self._log(
            data.wallet_address,
            strategist.display_name if strategist else "User",
            ActivityAction.STRATEGY_FOLLOWED,
            strategy_id=strategy.id,
            strategy_name=strategy.name,
        )
        return follower

    async def unfollow_strategy(self, strategy_id: int, wallet_address: str) -> bool:
        strategy = await self._require_strategy(strategy_id)
        removed = await self._store.remove_follower(strategy_id, wallet_address)
        if not removed:
            return False

        await self._aggregator.recompute(strategy_id)
        wallet = wallet_address.strip().lower()
        strategist = await self._store.get_strategist(wallet)
        await self._log(
            wallet,
            strategist.display_name if strategist else "User",
            ActivityAction.STRATEGY_UNFOLLOWED,
            strategy_id=strategy.id,
            strategy_name=strategy.name,
        )
        return True

    async def is_following(self, strategy_id: int, wallet_address: str) -> bool:
        return await self._store.is_following(strategy_id, wallet_address)

    async def followed_strategies(self, wallet_address: str) -> list[Strategy]:
        return await self._store.list_followed_strategies(wallet_address)

    # ==================== READS ====================

    async def activity_feed(self, limit: int = 50, wallet_address: Optional[str] = None) -> list[ActivityLog]:
        if wallet_address:
            return await self._store.list_activity_by_wallet(wallet_address, limit)
        return await self._store.list_activity(limit)

    async def global_stats(self) -> GlobalStats:
        return await self._store.global_stats()

    async def prices(self) -> dict[str, PriceQuote]:
        return await self._oracle.get_prices()
