"""Higher-timeframe trend confirmation.

Vetoes entries that fight the higher-timeframe trend, measured as the
position of the entry price against the EMA of finished HTF closes.
"""

from typing import Optional

from tradesim.strategy.indicators import ema_of, last_defined
from tradesim.strategy.models import Candle, Direction

# HTF series shorter than this are too thin to judge a trend.
MIN_HTF_CANDLES = 50


def htf_trend_allows(
    direction: Direction,
    htf_history: Optional[list[Candle]],
    ema_period: int = 50,
    price: Optional[float] = None,
) -> tuple[bool, str]:
    """Return ``(allowed, reason)`` for an entry in *direction*.

    Missing or short HTF data never blocks a trade.

    Args:
        direction: Proposed trade direction.
        htf_history: Finished higher-timeframe candles, oldest first.
        ema_period: EMA length applied to the HTF closes.
        price: Price judged against the EMA, normally the current
            lower-timeframe close.  Defaults to the last HTF close.
    """
    if not htf_history or len(htf_history) <= max(MIN_HTF_CANDLES, ema_period):
        return True, "HTF data insufficient; filter skipped"

    closes = [c.close for c in htf_history]
    ema = last_defined(ema_of(closes, ema_period))
    last = closes[-1] if price is None else price
    if direction == Direction.LONG and last < ema:
        return False, f"HTF trend is bearish (price {last:.4f} < EMA {ema:.4f})"
    if direction == Direction.SHORT and last > ema:
        return False, f"HTF trend is bullish (price {last:.4f} > EMA {ema:.4f})"
    return True, "HTF trend confirms"
