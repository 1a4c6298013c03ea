"""Drawdown tracking — pure math, no I/O.

Tracks peak equity and the deepest peak-to-trough drop seen so far.
"""


class DrawdownTracker:
    """Tracks equity peaks and the largest absolute drawdown.

    The first :meth:`update` establishes the peak, so the tracker can be
    fed an equity curve without knowing its starting value.
    """

    def __init__(self) -> None:
        self._peak_equity: float = float("-inf")
        self._max_drawdown: float = 0.0

    def update(self, equity: float) -> None:
        """Update with the latest equity value.

        If *equity* exceeds the current peak, the peak is raised;
        otherwise the drop from peak is compared with the worst so far.
        """
        if equity > self._peak_equity:
            self._peak_equity = equity
            return
        self._max_drawdown = max(self._max_drawdown, self._peak_equity - equity)

    @property
    def max_drawdown(self) -> float:
        """Largest absolute peak-to-trough drop recorded."""
        return self._max_drawdown
