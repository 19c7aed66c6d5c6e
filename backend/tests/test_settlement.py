import sys
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from models.signals import Direction, SignalResult
from services.settlement import PUSH, Settlement, div_round_half_up, resolve_settlement


@pytest.mark.parametrize(
    "direction,entry,settle,expected",
    [
        (Direction.UP, 10_000, 10_500, Settlement(SignalResult.WIN, 500)),
        (Direction.DOWN, 10_500, 10_000, Settlement(SignalResult.WIN, 476)),
        (Direction.DOWN, 10_000, 10_500, Settlement(SignalResult.LOSE, -500)),
        (Direction.DOWN, 10_000, 9_500, Settlement(SignalResult.WIN, 500)),
        (Direction.UP, 10_000, 9_900, Settlement(SignalResult.LOSE, -100)),
        (Direction.OVER, 100, 110, Settlement(SignalResult.WIN, 1_000)),
        (Direction.YES, 100, 90, Settlement(SignalResult.LOSE, -1_000)),
        (Direction.UNDER, 100, 90, Settlement(SignalResult.WIN, 1_000)),
        (Direction.NO, 100, 110, Settlement(SignalResult.LOSE, -1_000)),
    ],
)
def test_resolve_settlement_classifies_and_signs_pnl(direction, entry, settle, expected):
    assert resolve_settlement(direction, entry, settle) == expected


def test_unchanged_price_is_push_for_every_direction():
    for direction in Direction:
        assert resolve_settlement(direction, 6_500_000, 6_500_000) == PUSH


@pytest.mark.parametrize("entry,settle", [(None, 10_000), (0, 10_000), (10_000, 0), (10_000, None)])
def test_missing_or_zero_prices_push(entry, settle):
    assert resolve_settlement(Direction.UP, entry, settle) == PUSH


def test_unknown_direction_pushes():
    assert resolve_settlement("sideways", 10_000, 12_000) == PUSH
    assert resolve_settlement(None, 10_000, 12_000) == PUSH


def test_direction_strings_are_case_insensitive_and_accept_long_short():
    assert resolve_settlement("UP", 10_000, 10_100) == Settlement(SignalResult.WIN, 100)
    assert resolve_settlement("long", 10_000, 10_100) == Settlement(SignalResult.WIN, 100)
    assert resolve_settlement(" Short ", 10_000, 10_100) == Settlement(SignalResult.LOSE, -100)


@pytest.mark.parametrize("direction", list(Direction))
def test_every_direction_settles_by_its_side(direction):
    expected = SignalResult.WIN if direction.is_long else SignalResult.LOSE
    assert resolve_settlement(direction, 10_000, 10_100).result == expected
    assert resolve_settlement(direction.value.upper(), 10_000, 10_100).result == expected


def test_pnl_rounds_half_up_on_tiny_moves():
    # +1 cent on $200.00 is exactly 0.5 bps
    assert resolve_settlement(Direction.UP, 20_000, 20_001) == Settlement(SignalResult.WIN, 1)
    # -1 cent rounds toward zero; still classified as a loss
    assert resolve_settlement(Direction.UP, 20_000, 19_999) == Settlement(SignalResult.LOSE, 0)


def test_win_and_loss_magnitudes_are_symmetric():
    up = resolve_settlement(Direction.UP, 3_333, 3_500)
    down = resolve_settlement(Direction.DOWN, 3_333, 3_500)
    assert up.result == SignalResult.WIN
    assert down.result == SignalResult.LOSE
    assert up.pnl_bps == -down.pnl_bps > 0


@pytest.mark.parametrize(
    "numerator,denominator,expected",
    [(5, 2, 3), (-5, 2, -2), (7, 3, 2), (-7, 3, -2), (1, 2, 1), (-1, 2, 0), (5, -2, -2), (0, 9, 0)],
)
def test_div_round_half_up(numerator, denominator, expected):
    assert div_round_half_up(numerator, denominator) == expected
