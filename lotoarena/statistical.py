import numpy as np
import pandas as pd
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence
from .config import SIMULATION_CONFIG, NUMBER_RANGE

logger = logging.getLogger(__name__)


def _numbers_of(draw) -> Sequence[int]:
    return getattr(draw, 'numbers', draw)


def moving_average(draws: Sequence, window: int = 6) -> np.ndarray:
    """
    Per-position rolling mean of draw values.
    Row i averages positions over draws max(0, i-window+1)..i (clipped at the start).
    """
    rows = [list(_numbers_of(d)) for d in draws]
    if not rows:
        return np.zeros((0, 0), dtype=np.float32)
    frame = pd.DataFrame(rows, dtype=np.float64)
    return frame.rolling(window=window, min_periods=1).mean().values.astype(np.float32)


@dataclass
class Statistics:
    """Frequency table, hot numbers and moving average derived from draws seen so far."""
    frequency: Dict[int, int]
    hot_numbers: List[int]
    moving_average: np.ndarray = field(default_factory=lambda: np.zeros((0, 0), dtype=np.float32))

    @property
    def latest_moving_average(self) -> np.ndarray:
        if len(self.moving_average) == 0:
            return np.zeros(0, dtype=np.float32)
        return self.moving_average[-1]


class StatisticsTracker:
    """Hot-number and moving-average tracker over the draw history."""

    def __init__(self, hot_count: int = None, ma_window: int = None, number_range: int = NUMBER_RANGE):
        self.hot_count = hot_count if hot_count is not None else SIMULATION_CONFIG.get('hot_count', 5)
        self.ma_window = ma_window if ma_window is not None else SIMULATION_CONFIG.get('moving_average_window', 6)
        self.number_range = number_range

    def update(self, draws: Sequence) -> Statistics:
        """Recompute statistics from every draw passed (no incremental cache)."""
        # 1. Frequency over the whole history
        frequency = self._calculate_frequency(draws)

        # 2. Hot numbers: count desc, number asc
        seen = [n for n, c in frequency.items() if c > 0]
        ranked = sorted(seen, key=lambda n: (-frequency[n], n))
        hot_numbers = ranked[:self.hot_count]

        # 3. Moving average (auxiliary model input)
        averages = moving_average(draws, self.ma_window)

        return Statistics(frequency=frequency, hot_numbers=hot_numbers, moving_average=averages)

    def _calculate_frequency(self, draws: Sequence) -> Dict[int, int]:
        values = [int(num) for draw in draws for num in _numbers_of(draw)]
        counts = np.bincount(np.array(values, dtype=np.int64), minlength=self.number_range + 1)
        return {n: int(counts[n]) for n in range(1, len(counts))}
