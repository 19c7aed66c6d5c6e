"""Pure settlement arithmetic for expired signals.

Prices are integer cents, P&L is signed basis points. Nothing here touches
I/O and nothing here raises: an unusable input settles as a push.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

from models.signals import Direction, SignalResult

BPS = 10_000

_LONG_ALIASES = {"long"}
_SHORT_ALIASES = {"short"}


@dataclass(frozen=True)
class Settlement:
    result: SignalResult
    pnl_bps: int


PUSH = Settlement(SignalResult.PUSH, 0)


def div_round_half_up(numerator: int, denominator: int) -> int:
    """Exact integer division rounded to nearest, ties toward +infinity.

    ``5/2 -> 3``, ``-5/2 -> -2``. ``denominator`` must be non-zero.
    """
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    return (2 * numerator + denominator) // (2 * denominator)


def _side(direction: Union[Direction, str, None]) -> Optional[str]:
    if direction is None:
        return None
    if not isinstance(direction, Direction):
        key = str(direction).strip().lower()
        if key in _LONG_ALIASES:
            return "long"
        if key in _SHORT_ALIASES:
            return "short"
        try:
            direction = Direction(key)
        except ValueError:
            return None
    if direction.is_long:
        return "long"
    if direction.is_short:
        return "short"
    return None


def resolve_settlement(
    direction: Union[Direction, str, None],
    entry_value: Optional[int],
    settlement_value: Optional[int],
) -> Settlement:
    """Classify a signal as win/lose/push and compute its P&L.

    The magnitude is ``|round((settlement - entry) * 10000 / entry)|``;
    a win carries it positive, a loss negative. A missing or zero entry or
    settlement price, and any unrecognised direction, settle as a push.
    """
    if not entry_value or not settlement_value:
        return PUSH

    side = _side(direction)
    if side is None:
        return PUSH

    raw = div_round_half_up((settlement_value - entry_value) * BPS, entry_value)
    magnitude = abs(raw)

    if settlement_value == entry_value:
        return PUSH

    went_up = settlement_value > entry_value
    won = went_up if side == "long" else not went_up
    if won:
        return Settlement(SignalResult.WIN, magnitude)
    return Settlement(SignalResult.LOSE, -magnitude)
