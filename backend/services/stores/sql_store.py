"""SQLAlchemy-backed ``SignalStore`` (SQLite via aiosqlite, Postgres via asyncpg)."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import sessionmaker

from models.database import (
    ActivityLogRow,
    FollowerRow,
    SignalRow,
    StrategistRow,
    StrategyRow,
    StrategyStatsRow,
)
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

_STATS_FIELDS = (
    "total_signals",
    "winning_signals",
    "losing_signals",
    "win_rate_bps",
    "avg_pnl_bps",
    "total_pnl_bps",
    "best_win_bps",
    "worst_loss_bps",
    "followers_count",
    "updated_at",
)


def _strategist(row: StrategistRow) -> Strategist:
    return Strategist.model_validate(row, from_attributes=True)


def _strategy(row: StrategyRow) -> Strategy:
    return Strategy.model_validate(row, from_attributes=True)


def _signal(row: SignalRow) -> Signal:
    return Signal.model_validate(row, from_attributes=True)


def _stats(row: StrategyStatsRow) -> StrategyStats:
    return StrategyStats.model_validate(row, from_attributes=True)


def _follower(row: FollowerRow) -> Follower:
    return Follower.model_validate(row, from_attributes=True)


def _activity(row: ActivityLogRow) -> ActivityLog:
    return ActivityLog(
        id=row.id,
        wallet_address=row.wallet_address,
        username=row.username,
        action=row.action,
        details=dict(row.details or {}),
        created_at=row.created_at,
    )


class SqlSignalStore:
    def __init__(self, session_factory: sessionmaker, engine: Optional[AsyncEngine] = None):
        self._session_factory = session_factory
        self._engine = engine

    # ==================== STRATEGISTS ====================

    async def create_strategist(self, data: CreateStrategistInput) -> Strategist:
        async with self._session_factory() as session:
            row = StrategistRow(
                wallet_address=data.wallet_address,
                display_name=data.display_name,
                created_at=utcnow(),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(f"Strategist already registered: {data.wallet_address}") from exc
            return _strategist(row)

    async def get_strategist(self, wallet_address: str) -> Optional[Strategist]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StrategistRow).where(StrategistRow.wallet_address == wallet_address.strip().lower())
            )
            row = result.scalar_one_or_none()
            return _strategist(row) if row else None

    async def list_strategists(self) -> list[Strategist]:
        async with self._session_factory() as session:
            result = await session.execute(select(StrategistRow).order_by(StrategistRow.id))
            return [_strategist(row) for row in result.scalars().all()]

    # ==================== STRATEGIES ====================

    async def create_strategy(self, data: CreateStrategyInput) -> Strategy:
        async with self._session_factory() as session:
            now = utcnow()
            row = StrategyRow(
                onchain_id=data.onchain_id,
                owner_wallet=data.wallet_address,
                name=data.name,
                description=data.description,
                market_kind=data.market_kind.value,
                base_market=data.base_market,
                is_public=data.is_public,
                is_ai_controlled=data.is_ai_controlled,
                created_at=now,
            )
            session.add(row)
            await session.flush()
            session.add(StrategyStatsRow(strategy_id=row.id, updated_at=now))
            await session.commit()
            return _strategy(row)

    async def get_strategy(self, strategy_id: int) -> Optional[Strategy]:
        async with self._session_factory() as session:
            row = await session.get(StrategyRow, strategy_id)
            return _strategy(row) if row else None

    async def get_strategy_by_onchain_id(self, onchain_id: int) -> Optional[Strategy]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StrategyRow).where(StrategyRow.onchain_id == onchain_id).order_by(StrategyRow.id).limit(1)
            )
            row = result.scalar_one_or_none()
            return _strategy(row) if row else None

    async def list_strategies(self, filters: Optional[StrategyFilter] = None) -> list[Strategy]:
        filters = filters or StrategyFilter()
        query = select(StrategyRow)
        if filters.market_kind is not None:
            query = query.where(StrategyRow.market_kind == filters.market_kind.value)
        if filters.base_market:
            query = query.where(func.upper(StrategyRow.base_market) == filters.base_market.upper())
        if filters.owner_wallet:
            query = query.where(StrategyRow.owner_wallet == filters.owner_wallet)
        if filters.is_public is not None:
            query = query.where(StrategyRow.is_public == filters.is_public)
        query = (
            query.order_by(StrategyRow.created_at.desc(), StrategyRow.id.desc())
            .offset(filters.offset)
            .limit(filters.limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_strategy(row) for row in result.scalars().all()]

    async def update_strategy_onchain_id(self, strategy_id: int, onchain_id: int) -> Optional[Strategy]:
        async with self._session_factory() as session:
            row = await session.get(StrategyRow, strategy_id)
            if row is None:
                return None
            row.onchain_id = onchain_id
            await session.commit()
            return _strategy(row)

    async def delete_strategy(self, strategy_id: int) -> bool:
        async with self._session_factory() as session:
            row = await session.get(StrategyRow, strategy_id)
            if row is None:
                return False
            await session.execute(delete(SignalRow).where(SignalRow.strategy_id == strategy_id))
            await session.execute(delete(FollowerRow).where(FollowerRow.strategy_id == strategy_id))
            await session.execute(delete(StrategyStatsRow).where(StrategyStatsRow.strategy_id == strategy_id))
            await session.delete(row)
            await session.commit()
            return True

    # ==================== SIGNALS ====================

    async def create_signal(self, data: CreateSignalInput) -> Signal:
        async with self._session_factory() as session:
            if await session.get(StrategyRow, data.strategy_id) is None:
                raise NotFoundError("strategy", data.strategy_id)
            row = SignalRow(
                onchain_id=data.onchain_id,
                strategy_id=data.strategy_id,
                direction=data.direction.value,
                entry_value=data.entry_value,
                confidence_bps=data.confidence_bps,
                status=SignalStatus.OPEN.value,
                result=None,
                pnl_bps=None,
                resolved_value=None,
                asset=data.asset,
                created_at=utcnow(),
                expires_at=data.expires_at,
                resolved_at=None,
            )
            session.add(row)
            await session.commit()
            return _signal(row)

    async def get_signal(self, signal_id: int) -> Optional[Signal]:
        async with self._session_factory() as session:
            row = await session.get(SignalRow, signal_id)
            return _signal(row) if row else None

    async def get_signal_by_onchain_id(self, onchain_id: int) -> Optional[Signal]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(SignalRow).where(SignalRow.onchain_id == onchain_id).order_by(SignalRow.id).limit(1)
            )
            row = result.scalar_one_or_none()
            return _signal(row) if row else None

    async def list_signals_by_strategy(self, strategy_id: int, limit: Optional[int] = None) -> list[Signal]:
        query = (
            select(SignalRow)
            .where(SignalRow.strategy_id == strategy_id)
            .order_by(SignalRow.created_at.desc(), SignalRow.id.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_signal(row) for row in result.scalars().all()]

    async def list_open_signals(self, strategy_id: Optional[int] = None) -> list[Signal]:
        query = select(SignalRow).where(SignalRow.status == SignalStatus.OPEN.value)
        if strategy_id is not None:
            query = query.where(SignalRow.strategy_id == strategy_id)
        query = query.order_by(SignalRow.expires_at.asc(), SignalRow.id.asc())
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_signal(row) for row in result.scalars().all()]

    async def list_expired_open_signals(self, now: Optional[datetime] = None) -> list[Signal]:
        cutoff = to_utc_naive(now) if now is not None else utcnow()
        query = (
            select(SignalRow)
            .where(SignalRow.status == SignalStatus.OPEN.value, SignalRow.expires_at <= cutoff)
            .order_by(SignalRow.expires_at.asc(), SignalRow.id.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_signal(row) for row in result.scalars().all()]

    async def list_recent_signals(self, limit: int = 50) -> list[Signal]:
        query = select(SignalRow).order_by(SignalRow.created_at.desc(), SignalRow.id.desc()).limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_signal(row) for row in result.scalars().all()]

    async def _transition(self, signal_id: int, values: dict) -> Optional[Signal]:
        """Apply ``values`` only while the row is still open; one statement, one commit."""
        async with self._session_factory() as session:
            result = await session.execute(
                update(SignalRow)
                .where(SignalRow.id == signal_id, SignalRow.status == SignalStatus.OPEN.value)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            await session.commit()

            row = (await session.execute(select(SignalRow).where(SignalRow.id == signal_id))).scalar_one()
            return _signal(row)

    async def transition_signal_to_resolved(
        self,
        signal_id: int,
        result: SignalResult,
        pnl_bps: int,
        resolved_value: int,
    ) -> Optional[Signal]:
        return await self._transition(
            signal_id,
            {
                "status": SignalStatus.RESOLVED.value,
                "result": SignalResult(result).value,
                "pnl_bps": int(pnl_bps),
                "resolved_value": int(resolved_value),
                "resolved_at": utcnow(),
            },
        )

    async def transition_signal_to_cancelled(self, signal_id: int) -> Optional[Signal]:
        return await self._transition(signal_id, {"status": SignalStatus.CANCELLED.value})

    # ==================== STATS ====================

    async def get_strategy_stats(self, strategy_id: int) -> Optional[StrategyStats]:
        async with self._session_factory() as session:
            row = await session.get(StrategyStatsRow, strategy_id)
            return _stats(row) if row else None

    async def upsert_strategy_stats(self, strategy_id: int, stats: StrategyStats) -> StrategyStats:
        async with self._session_factory() as session:
            if await session.get(StrategyRow, strategy_id) is None:
                raise NotFoundError("strategy", strategy_id)
            row = await session.get(StrategyStatsRow, strategy_id)
            if row is None:
                row = StrategyStatsRow(strategy_id=strategy_id)
                session.add(row)
            for field in _STATS_FIELDS:
                setattr(row, field, getattr(stats, field))
            await session.commit()
            return _stats(row)

    async def list_strategy_stats(self) -> list[StrategyStats]:
        async with self._session_factory() as session:
            result = await session.execute(select(StrategyStatsRow))
            return [_stats(row) for row in result.scalars().all()]

    # ==================== FOLLOWERS ====================

    async def add_follower(self, data: FollowStrategyInput) -> Follower:
        async with self._session_factory() as session:
            if await session.get(StrategyRow, data.strategy_id) is None:
                raise NotFoundError("strategy", data.strategy_id)
            row = FollowerRow(
                strategy_id=data.strategy_id,
                wallet_address=data.wallet_address,
                auto_copy=data.auto_copy,
                max_exposure_units=data.max_exposure_units,
                created_at=utcnow(),
            )
            session.add(row)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(
                    f"{data.wallet_address} already follows strategy {data.strategy_id}"
                ) from exc
            return _follower(row)

    async def remove_follower(self, strategy_id: int, wallet_address: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(FollowerRow).where(
                    FollowerRow.strategy_id == strategy_id,
                    FollowerRow.wallet_address == wallet_address.strip().lower(),
                )
            )
            await session.commit()
            return result.rowcount > 0

    async def is_following(self, strategy_id: int, wallet_address: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FollowerRow.id).where(
                    FollowerRow.strategy_id == strategy_id,
                    FollowerRow.wallet_address == wallet_address.strip().lower(),
                )
            )
            return result.first() is not None

    async def list_followers(self, strategy_id: int) -> list[Follower]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(FollowerRow).where(FollowerRow.strategy_id == strategy_id).order_by(FollowerRow.id)
            )
            return [_follower(row) for row in result.scalars().all()]

    async def list_followed_strategies(self, wallet_address: str) -> list[Strategy]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StrategyRow)
                .join(FollowerRow, FollowerRow.strategy_id == StrategyRow.id)
                .where(FollowerRow.wallet_address == wallet_address.strip().lower())
                .order_by(FollowerRow.id)
            )
            return [_strategy(row) for row in result.scalars().all()]

    async def count_followers(self, strategy_id: int) -> int:
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(FollowerRow).where(FollowerRow.strategy_id == strategy_id)
            )
            return int(result.scalar_one())

    # ==================== ACTIVITY ====================

    async def append_activity(self, record: ActivityRecord) -> ActivityLog:
        async with self._session_factory() as session:
            row = ActivityLogRow(
                wallet_address=record.wallet_address,
                username=record.username,
                action=record.action,
                details=dict(record.details),
                created_at=utcnow(),
            )
            session.add(row)
            await session.commit()
            return _activity(row)

    async def list_activity(self, limit: int = 50) -> list[ActivityLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ActivityLogRow).order_by(ActivityLogRow.created_at.desc(), ActivityLogRow.id.desc()).limit(limit)
            )
            return [_activity(row) for row in result.scalars().all()]

    async def list_activity_by_wallet(self, wallet_address: str, limit: int = 50) -> list[ActivityLog]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ActivityLogRow)
                .where(ActivityLogRow.wallet_address == wallet_address.strip().lower())
                .order_by(ActivityLogRow.created_at.desc(), ActivityLogRow.id.desc())
                .limit(limit)
            )
            return [_activity(row) for row in result.scalars().all()]

    # ==================== MISC ====================

    async def global_stats(self) -> GlobalStats:
        async with self._session_factory() as session:
            strategists = await session.scalar(select(func.count()).select_from(StrategistRow))
            strategies = await session.scalar(select(func.count()).select_from(StrategyRow))
            signals = await session.scalar(select(func.count()).select_from(SignalRow))
            resolved = await session.scalar(
                select(func.count()).select_from(SignalRow).where(SignalRow.status == SignalStatus.RESOLVED.value)
            )
        return GlobalStats(
            total_strategists=int(strategists or 0),
            total_strategies=int(strategies or 0),
            total_signals=int(signals or 0),
            total_resolved=int(resolved or 0),
        )

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
