import asyncio
import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from config import Settings
from services.notifier import BroadcastNotifier, LoggingNotifier, WebhookNotifier
from services.stores import InMemorySignalStore, SqlSignalStore
from workers import resolver_worker


@pytest.mark.asyncio
async def test_build_runtime_defaults_to_memory_store(tmp_path):
    settings = Settings(
        DATABASE_URL=None,
        MEMORY_STORE_PATH=str(tmp_path / "state.json"),
        PRICE_PROVIDERS=["coingecko", "binance"],
        RESOLUTION_WEBHOOK_URL="https://hooks.example.test/resolved",
    )
    runtime = await resolver_worker.build_runtime(settings)
    try:
        assert isinstance(runtime.store, InMemorySignalStore)
        assert runtime.engine.running is False
        assert [type(s) for s in runtime.notifier.sinks] == [LoggingNotifier, BroadcastNotifier, WebhookNotifier]
        assert runtime.notifier.sinks[1] is runtime.broadcaster
        assert runtime.oracle.supported_symbols == ("BTC", "ETH")
    finally:
        await runtime.close()

    assert (tmp_path / "state.json").exists()


@pytest.mark.asyncio
async def test_build_runtime_uses_sql_store_when_database_configured(tmp_path):
    settings = Settings(DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'signals.db'}", PRICE_PROVIDERS=[])
    runtime = await resolver_worker.build_runtime(settings)
    try:
        assert isinstance(runtime.store, SqlSignalStore)
        assert (await runtime.service.global_stats()).total_signals == 0
    finally:
        await runtime.close()


@pytest.mark.asyncio
async def test_main_idles_when_resolver_disabled_and_stops_on_cancel(monkeypatch):
    monkeypatch.setattr(resolver_worker, "setup_logging", lambda **kwargs: None)
    settings = Settings(DATABASE_URL=None, MEMORY_STORE_PATH=None, PRICE_PROVIDERS=[], RESOLVER_ENABLED=False)

    task = asyncio.create_task(resolver_worker.main(settings))
    await asyncio.sleep(0.05)
    assert not task.done()

    task.cancel()
    await asyncio.wait_for(task, timeout=2)


def test_services_package_exports_resolve_lazily():
    import services
    from services.resolution_engine import ResolutionEngine

    assert services.ResolutionEngine is ResolutionEngine
    with pytest.raises(AttributeError):
        services.missing_export
