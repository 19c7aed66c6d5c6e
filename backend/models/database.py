from sqlalchemy import (
    Column,
    String,
    Integer,
    BigInteger,
    Boolean,
    DateTime,
    Text,
    JSON,
    ForeignKey,
    Index,
    UniqueConstraint,
    event,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession
from sqlalchemy.orm import declarative_base, sessionmaker
from contextlib import contextmanager
from pathlib import Path
import logging
import os

from utils.utcnow import utcnow

logger = logging.getLogger(__name__)

Base = declarative_base()


# ==================== STRATEGISTS ====================


class StrategistRow(Base):
    """A wallet-identified author of strategies."""

    __tablename__ = "strategists"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


# ==================== STRATEGIES ====================


class StrategyRow(Base):
    __tablename__ = "agent_strategies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    onchain_id = Column(BigInteger, nullable=True)
    owner_wallet = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    market_kind = Column(String, nullable=False)  # crypto | sports | prediction_app
    base_market = Column(String, nullable=False)  # e.g. BTC-USD
    is_public = Column(Boolean, nullable=False, default=True)
    is_ai_controlled = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_agent_strategies_kind_public", "market_kind", "is_public"),)


# ==================== SIGNALS ====================


class SignalRow(Base):
    """A published prediction. Prices are integer cents."""

    __tablename__ = "signals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    onchain_id = Column(BigInteger, nullable=True)
    strategy_id = Column(Integer, ForeignKey("agent_strategies.id", ondelete="CASCADE"), nullable=False)
    direction = Column(String, nullable=False)  # up | down | over | under | yes | no
    entry_value = Column(BigInteger, nullable=True)
    confidence_bps = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="open")  # open | resolved | cancelled
    result = Column(String, nullable=True)  # win | lose | push
    pnl_bps = Column(Integer, nullable=True)
    resolved_value = Column(BigInteger, nullable=True)
    asset = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_signals_status_expires", "status", "expires_at"),
        Index("idx_signals_strategy_created", "strategy_id", "created_at"),
    )


class StrategyStatsRow(Base):
    """Derived performance figures, one row per strategy."""

    __tablename__ = "strategy_stats"

    strategy_id = Column(
        Integer,
        ForeignKey("agent_strategies.id", ondelete="CASCADE"),
        primary_key=True,
    )
    total_signals = Column(Integer, nullable=False, default=0)
    winning_signals = Column(Integer, nullable=False, default=0)
    losing_signals = Column(Integer, nullable=False, default=0)
    win_rate_bps = Column(Integer, nullable=False, default=0)
    avg_pnl_bps = Column(Integer, nullable=False, default=0)
    total_pnl_bps = Column(BigInteger, nullable=False, default=0)
    best_win_bps = Column(Integer, nullable=False, default=0)
    worst_loss_bps = Column(Integer, nullable=False, default=0)
    followers_count = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, default=utcnow, nullable=False)


# ==================== FOLLOWERS ====================


class FollowerRow(Base):
    __tablename__ = "followers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    strategy_id = Column(Integer, ForeignKey("agent_strategies.id", ondelete="CASCADE"), nullable=False)
    wallet_address = Column(String, nullable=False)
    auto_copy = Column(Boolean, nullable=False, default=False)
    max_exposure_units = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("strategy_id", "wallet_address", name="uq_followers_strategy_wallet"),
        Index("idx_followers_wallet", "wallet_address"),
    )


# ==================== ACTIVITY ====================


class ActivityLogRow(Base):
    """Append-only audit trail of user-visible events."""

    __tablename__ = "activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String, nullable=False)
    username = Column(String, nullable=False)
    action = Column(String, nullable=False)  # SIGNAL_RESOLVED, STRATEGY_CREATED, ...
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (Index("idx_activity_log_created", "created_at"),)


# ==================== DATABASE SETUP ====================


def _is_sqlite(url: str) -> bool:
    return str(url).startswith("sqlite")


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite for concurrent access (WAL mode, busy timeout, FKs)."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")  # Allow concurrent reads during writes
    cursor.execute("PRAGMA busy_timeout=30000")  # Wait up to 30s when locked (ms)
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Build an async engine for ``database_url``.

    SQLite connections get WAL and a busy timeout applied on connect; for
    Postgres the asyncpg pool defaults are used.
    """
    engine_kw: dict = {"echo": echo}
    if _is_sqlite(database_url):
        engine_kw["connect_args"] = {"timeout": 30}  # Wait up to 30s when DB is locked

    engine = create_async_engine(database_url, **engine_kw)
    if _is_sqlite(database_url):
        event.listens_for(engine.sync_engine, "connect")(_set_sqlite_pragma)
    return engine


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _run_alembic_upgrade(connection) -> None:
    from alembic import command
    from alembic.config import Config

    backend_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(backend_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(backend_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", str(connection.engine.url))
    alembic_cfg.attributes["connection"] = connection
    command.upgrade(alembic_cfg, "head")


@contextmanager
def _sqlite_migration_lock(database_url: str):
    """Serialize Alembic upgrades across processes for SQLite databases."""
    if not _is_sqlite(database_url) or os.name != "posix":
        yield
        return

    import fcntl

    lock_path = Path(__file__).resolve().parents[1] / ".alembic.sqlite.lock"
    try:
        lock_file = lock_path.open("a", encoding="utf-8")
    except OSError:
        logger.warning("Cannot open migration lock file, proceeding without lock")
        yield
        return

    try:
        fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
    finally:
        lock_file.close()


async def init_database(engine: AsyncEngine) -> None:
    """Apply Alembic migrations up to head."""
    with _sqlite_migration_lock(str(engine.url)):
        async with engine.begin() as conn:
            await conn.run_sync(_run_alembic_upgrade)


async def create_schema(engine: AsyncEngine) -> None:
    """Create every table directly from metadata (tests, throwaway databases)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
