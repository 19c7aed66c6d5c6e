"""Tests for Pydantic models: enums, Signal, input models, SignalResolvedEvent."""

import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from models.signals import (
    CreateSignalInput,
    CreateStrategyInput,
    Direction,
    FollowStrategyInput,
    MarketKind,
    Signal,
    SignalResolvedEvent,
    SignalResult,
    SignalStatus,
    StrategyFilter,
    StrategyStats,
)
from utils.utcnow import utcnow


# ============================================================================
# Enums
# ============================================================================


class TestEnums:
    @pytest.mark.parametrize("raw", ["crypto", "Crypto", "CRYPTO", " crypto "])
    def test_market_kind_case_insensitive(self, raw):
        assert MarketKind(raw) == MarketKind.CRYPTO

    @pytest.mark.parametrize("raw", ["prediction_app", "PredictionApp", "prediction-app"])
    def test_prediction_app_spellings(self, raw):
        assert MarketKind(raw) == MarketKind.PREDICTION_APP

    def test_unknown_market_kind_rejected(self):
        with pytest.raises(ValueError):
            MarketKind("forex")

    def test_direction_sides(self):
        assert {d for d in Direction if d.is_long} == {Direction.UP, Direction.OVER, Direction.YES}
        assert {d for d in Direction if d.is_short} == {Direction.DOWN, Direction.UNDER, Direction.NO}
        assert Direction("Yes") == Direction.YES


# ============================================================================
# Signal
# ============================================================================


class TestSignal:
    def _base(self, **overrides):
        values = {
            "id": 1,
            "strategy_id": 1,
            "direction": Direction.UP,
            "entry_value": 10_000,
            "confidence_bps": 5_000,
            "expires_at": utcnow(),
        }
        values.update(overrides)
        return values

    def test_open_signal_defaults(self):
        signal = Signal(**self._base())
        assert signal.status == SignalStatus.OPEN
        assert signal.is_open is True
        assert signal.result is None

    def test_resolved_signal_requires_every_resolution_field(self):
        with pytest.raises(ValidationError):
            Signal(**self._base(status=SignalStatus.RESOLVED, result=SignalResult.WIN, pnl_bps=10))

    def test_open_signal_rejects_resolution_fields(self):
        with pytest.raises(ValidationError):
            Signal(**self._base(pnl_bps=10))

    def test_cancelled_signal_rejects_result(self):
        with pytest.raises(ValidationError):
            Signal(**self._base(status=SignalStatus.CANCELLED, result=SignalResult.PUSH))

    def test_confidence_bounds(self):
        with pytest.raises(ValidationError):
            Signal(**self._base(confidence_bps=10_001))
        with pytest.raises(ValidationError):
            Signal(**self._base(confidence_bps=-1))

    def test_resolved_event_from_signal(self):
        now = utcnow()
        signal = Signal(
            **self._base(
                status=SignalStatus.RESOLVED,
                result=SignalResult.LOSE,
                pnl_bps=-250,
                resolved_value=9_750,
                resolved_at=now,
            )
        )
        event = SignalResolvedEvent.from_signal(signal, "BTC Momentum")
        assert event.signal_id == 1
        assert event.strategy_name == "BTC Momentum"
        assert event.result == SignalResult.LOSE
        assert event.pnl_bps == -250
        assert event.resolved_value == 9_750
        assert event.resolved_at == now


# ============================================================================
# Inputs
# ============================================================================


class TestInputs:
    def test_wallets_are_lowercased(self):
        follow = FollowStrategyInput(wallet_address="  0xABCDEF0123456789  ", strategy_id=1)
        assert follow.wallet_address == "0xabcdef0123456789"

    def test_short_wallet_rejected(self):
        with pytest.raises(ValidationError):
            CreateStrategyInput(wallet_address="0x1", name="x", market_kind="crypto", base_market="BTC-USD")

    def test_aware_expiry_is_stored_as_naive_utc(self):
        aware = datetime(2026, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        data = CreateSignalInput(strategy_id=1, direction="up", confidence_bps=0, expires_at=aware)
        assert data.expires_at == datetime(2026, 1, 1, 10, 0)
        assert data.expires_at.tzinfo is None

    def test_entry_value_must_be_positive(self):
        with pytest.raises(ValidationError):
            CreateSignalInput(strategy_id=1, direction="up", confidence_bps=0, expires_at=utcnow(), entry_value=0)

    def test_filter_limits(self):
        assert StrategyFilter().limit == 50
        with pytest.raises(ValidationError):
            StrategyFilter(limit=0)
        with pytest.raises(ValidationError):
            StrategyFilter(limit=501)
        assert StrategyFilter(owner_wallet="0xABCDEF0123").owner_wallet == "0xabcdef0123"


class TestStrategyStats:
    def test_figures_exclude_identity_and_timestamp(self):
        stats = StrategyStats(strategy_id=9, total_signals=3)
        figures = stats.figures()
        assert "strategy_id" not in figures
        assert "updated_at" not in figures
        assert figures["total_signals"] == 3
