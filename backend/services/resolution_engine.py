"""Settles expired signals against live spot prices.

A background task runs one sweep immediately and then every
``interval_seconds`` (measured between sweep starts). A sweep lists every
open signal whose expiry has passed and settles each one independently:

    strategy lookup -> crypto-only gate -> asset derivation -> oracle price
    -> settlement -> conditional open->resolved write -> post-commit hooks

Anything that prevents a settlement leaves the signal open so the next sweep
retries it. The write is conditioned on the signal still being open, which
makes resolution and cancellation mutually exclusive. Post-commit hooks
(stats, notification, activity) run in that order; a failing hook is logged
and never rolls back the write or stops the next hook.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from interfaces.notifier import ResolutionNotifier
from interfaces.signal_store import SignalStore
from models.signals import (
    ActivityAction,
    ActivityRecord,
    MarketKind,
    Signal,
    SignalResolvedEvent,
    Strategy,
)
from services.price_oracle import PriceOracle
from services.settlement import resolve_settlement
from services.stats_aggregator import StatsAggregator
from utils.logger import get_logger
from utils.utcnow import to_iso, utcnow

logger = get_logger("resolution_engine")

_MIN_LOOP_SLEEP_SECONDS = 0.1


class SignalOutcome(str, Enum):
    RESOLVED = "resolved"
    ALREADY_HANDLED = "already_handled"
    SKIPPED_NO_STRATEGY = "skipped_no_strategy"
    SKIPPED_NOT_CRYPTO = "skipped_not_crypto"
    SKIPPED_NO_ASSET = "skipped_no_asset"
    SKIPPED_NO_PRICE = "skipped_no_price"
    FAILED = "failed"


@dataclass
class SweepReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    outcomes: dict[int, SignalOutcome] = field(default_factory=dict)
    aborted: bool = False
    skipped_busy: bool = False
    error: Optional[str] = None

    def count(self, outcome: SignalOutcome) -> int:
        return sum(1 for value in self.outcomes.values() if value == outcome)

    @property
    def examined(self) -> int:
        return len(self.outcomes)

    @property
    def resolved(self) -> int:
        return self.count(SignalOutcome.RESOLVED)

    @property
    def failed(self) -> int:
        return self.count(SignalOutcome.FAILED)

    def to_dict(self) -> dict:
        counts: dict[str, int] = {}
        for outcome in self.outcomes.values():
            counts[outcome.value] = counts.get(outcome.value, 0) + 1
        return {
            "started_at": to_iso(self.started_at),
            "finished_at": to_iso(self.finished_at),
            "examined": self.examined,
            "outcomes": counts,
            "aborted": self.aborted,
            "skipped_busy": self.skipped_busy,
            "error": self.error,
        }


class ResolutionEngine:
    def __init__(
        self,
        store: SignalStore,
        oracle: PriceOracle,
        aggregator: Optional[StatsAggregator] = None,
        notifier: Optional[ResolutionNotifier] = None,
        interval_seconds: float = 10.0,
        max_concurrency: int = 1,
    ):
        self._store = store
        self._oracle = oracle
        self._aggregator = aggregator or StatsAggregator(store)
        self._notifier = notifier
        self._interval = interval_seconds
        self._max_concurrency = max(1, int(max_concurrency))

        self._sweep_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._last_report: Optional[SweepReport] = None
        self._last_error: Optional[str] = None
        self._sweeps_completed = 0

    # ==================== LIFECYCLE ====================

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the timer task; the first sweep runs right away."""
        if self.running:
            logger.warning("Resolution engine already started")
            return
        self._task = asyncio.create_task(self._run_loop(), name="signal-resolver")
        logger.info("Resolution engine started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Let an in-flight sweep finish, then cancel the timer task."""
        task = self._task
        if task is None:
            return
        async with self._sweep_lock:
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Resolution engine stopped", sweeps_completed=self._sweeps_completed)

    async def _run_loop(self) -> None:
        while True:
            started = time.monotonic()
            try:
                await self.run_sweep()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self._last_error = str(exc)
                logger.exception("Resolution sweep crashed", error=str(exc))
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(_MIN_LOOP_SLEEP_SECONDS, self._interval - elapsed))

    def status(self) -> dict:
        return {
            "running": self.running,
            "interval_seconds": self._interval,
            "max_concurrency": self._max_concurrency,
            "sweep_in_progress": self._sweep_lock.locked(),
            "sweeps_completed": self._sweeps_completed,
            "last_run_at": to_iso(self._last_report.started_at) if self._last_report else None,
            "last_report": self._last_report.to_dict() if self._last_report else None,
            "last_error": self._last_error,
        }

    # ==================== SWEEP ====================

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        """Settle every expired open signal once. Overlapping calls are skipped."""
        if self._sweep_lock.locked():
            logger.debug("Resolution sweep already in progress, skipping")
            return SweepReport(started_at=utcnow(), finished_at=utcnow(), skipped_busy=True)

        async with self._sweep_lock:
            report = SweepReport(started_at=utcnow())
            try:
                signals = await self._store.list_expired_open_signals(now)
            except Exception as exc:
                report.aborted = True
                report.error = str(exc)
                report.finished_at = utcnow()
                self._last_error = str(exc)
                self._last_report = report
                logger.error("Could not list expired signals, sweep aborted", error=str(exc), exc_info=True)
                return report

            if signals:
                logger.info("Resolving expired signals", count=len(signals))
                if self._max_concurrency == 1:
                    for signal in signals:
                        report.outcomes[signal.id] = await self._settle_safely(signal)
                else:
                    semaphore = asyncio.Semaphore(self._max_concurrency)

                    async def _bounded(signal: Signal) -> SignalOutcome:
                        async with semaphore:
                            return await self._settle_safely(signal)

                    outcomes = await asyncio.gather(*(_bounded(s) for s in signals))
                    report.outcomes.update({s.id: o for s, o in zip(signals, outcomes)})

            report.finished_at = utcnow()
            self._last_report = report
            self._sweeps_completed += 1
            if report.examined:
                logger.info(
                    "Resolution sweep complete",
                    examined=report.examined,
                    resolved=report.resolved,
                    failed=report.failed,
                )
            return report

    async def _settle_safely(self, signal: Signal) -> SignalOutcome:
        try:
            return await self._settle(signal)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Failed to resolve signal", signal_id=signal.id, error=str(exc), exc_info=True)
            return SignalOutcome.FAILED

    async def _settle(self, signal: Signal) -> SignalOutcome:
        log = logger.with_context(signal_id=signal.id, strategy_id=signal.strategy_id)

        strategy = await self._store.get_strategy(signal.strategy_id)
        if strategy is None:
            log.warning("Strategy not found for expired signal")
            return SignalOutcome.SKIPPED_NO_STRATEGY

        if strategy.market_kind != MarketKind.CRYPTO:
            log.debug("Skipping non-crypto signal", market_kind=strategy.market_kind.value)
            return SignalOutcome.SKIPPED_NOT_CRYPTO

        market = signal.asset or strategy.base_market
        asset = self._oracle.extract_asset(market)
        if asset is None:
            log.warning("Could not derive a priced asset", market=market)
            return SignalOutcome.SKIPPED_NO_ASSET

        quote = await self._oracle.get_price(asset)
        if quote.price == 0:
            log.warning("No usable price, leaving signal open", asset=asset, source=quote.source)
            return SignalOutcome.SKIPPED_NO_PRICE

        settlement = resolve_settlement(signal.direction, signal.entry_value, quote.price)
        resolved = await self._store.transition_signal_to_resolved(
            signal.id, settlement.result, settlement.pnl_bps, quote.price
        )
        if resolved is None:
            log.info("Signal already handled elsewhere")
            return SignalOutcome.ALREADY_HANDLED

        log.info(
            "Resolved signal",
            asset=asset,
            result=resolved.result.value,
            pnl_bps=resolved.pnl_bps,
            entry_value=resolved.entry_value,
            resolved_value=resolved.resolved_value,
            price_source=quote.source,
        )
        await self._run_hooks(
            resolved,
            [
                ("stats", lambda: self._aggregator.recompute(strategy.id)),
                ("notify", lambda: self._notify(resolved, strategy)),
                ("activity", lambda: self._log_resolution(resolved, strategy)),
            ],
        )
        return SignalOutcome.RESOLVED

    # ==================== CANCELLATION ====================

    async def cancel_signal(self, signal_id: int) -> Optional[Signal]:
        """``open -> cancelled``; ``None`` if the signal is missing or not open."""
        cancelled = await self._store.transition_signal_to_cancelled(signal_id)
        if cancelled is None:
            logger.info("Signal not cancellable", signal_id=signal_id)
            return None

        logger.info("Cancelled signal", signal_id=signal_id, strategy_id=cancelled.strategy_id)
        strategy = await self._store.get_strategy(cancelled.strategy_id)
        hooks: list[tuple[str, Callable[[], Awaitable[object]]]] = [
            ("stats", lambda: self._aggregator.recompute(cancelled.strategy_id)),
        ]
        if strategy is not None:
            hooks.append(("activity", lambda: self._log_cancellation(cancelled, strategy)))
        await self._run_hooks(cancelled, hooks)
        return cancelled

    # ==================== HOOKS ====================

    async def _run_hooks(
        self,
        signal: Signal,
        hooks: list[tuple[str, Callable[[], Awaitable[object]]]],
    ) -> None:
        for name, hook in hooks:
            try:
                await hook()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Post-commit hook failed",
                    hook=name,
                    signal_id=signal.id,
                    error=str(exc),
                    exc_info=True,
                )

    async def _notify(self, signal: Signal, strategy: Strategy) -> None:
        if self._notifier is None:
            return
        await self._notifier.notify_resolution(SignalResolvedEvent.from_signal(signal, strategy.name))

    async def _username_for(self, strategy: Strategy) -> str:
        strategist = await self._store.get_strategist(strategy.owner_wallet)
        return strategist.display_name if strategist else strategy.name

    async def _log_resolution(self, signal: Signal, strategy: Strategy) -> None:
        await self._store.append_activity(
            ActivityRecord(
                wallet_address=strategy.owner_wallet,
                username=await self._username_for(strategy),
                action=ActivityAction.SIGNAL_RESOLVED.value,
                details={
                    "signal_id": signal.id,
                    "strategy_id": signal.strategy_id,
                    "strategy_name": strategy.name,
                    "result": signal.result.value,
                    "pnl_bps": signal.pnl_bps,
                    "direction": signal.direction.value,
                },
            )
        )

    async def _log_cancellation(self, signal: Signal, strategy: Strategy) -> None:
        await self._store.append_activity(
            ActivityRecord(
                wallet_address=strategy.owner_wallet,
                username=await self._username_for(strategy),
                action=ActivityAction.SIGNAL_CANCELLED.value,
                details={
                    "signal_id": signal.id,
                    "strategy_id": signal.strategy_id,
                    "strategy_name": strategy.name,
                    "direction": signal.direction.value,
                },
            )
        )
