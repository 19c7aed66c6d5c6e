from config import Settings
from interfaces.signal_store import SignalStore
from models.database import create_engine, create_session_factory, init_database
from utils.logger import get_logger

from .memory_store import InMemorySignalStore
from .sql_store import SqlSignalStore

logger = get_logger(__name__)

__all__ = [
    "InMemorySignalStore",
    "SqlSignalStore",
    "create_signal_store",
]


async def create_signal_store(settings: Settings) -> SignalStore:
    """Pick the backend once at startup: SQL when ``DATABASE_URL`` is set."""
    if settings.DATABASE_URL:
        engine = create_engine(settings.DATABASE_URL)
        await init_database(engine)
        logger.info("Using SQL signal store", dialect=engine.dialect.name)
        return SqlSignalStore(create_session_factory(engine), engine=engine)

    logger.info("Using in-memory signal store", snapshot_path=settings.MEMORY_STORE_PATH)
    return InMemorySignalStore(
        snapshot_path=settings.MEMORY_STORE_PATH,
        activity_max_entries=settings.ACTIVITY_LOG_MAX_ENTRIES,
        flush_interval_seconds=settings.MEMORY_STORE_FLUSH_SECONDS,
    )
