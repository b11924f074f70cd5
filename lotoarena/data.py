import pandas as pd
import numpy as np
from dataclasses import dataclass
from datetime import date, datetime
import logging
from typing import List, Optional, Sequence, Tuple, Union
from .config import DATA_FILE, N_NUMBERS, NUMBER_RANGE, FEATURES_PER_STEP
from .errors import DataFormatError, FeedIndexError
from .statistical import moving_average

logger = logging.getLogger(__name__)

DATE_FORMAT = "%d/%m/%Y"
SECONDS_PER_CENTURY = 100 * 365 * 24 * 60 * 60


@dataclass(frozen=True)
class Draw:
    """One realized contest: 15 distinct numbers in 1..25."""
    contest: int
    date: Optional[date]
    numbers: Tuple[int, ...]

    def __post_init__(self):
        numbers = tuple(int(n) for n in self.numbers)
        if len(numbers) != N_NUMBERS:
            raise DataFormatError(f"Contest {self.contest}: expected {N_NUMBERS} numbers, got {len(numbers)}")
        if len(set(numbers)) != N_NUMBERS:
            raise DataFormatError(f"Contest {self.contest}: repeated numbers in {list(numbers)}")
        if any(n < 1 or n > NUMBER_RANGE for n in numbers):
            raise DataFormatError(f"Contest {self.contest}: numbers must be within 1..{NUMBER_RANGE}")
        object.__setattr__(self, "numbers", numbers)

    def to_dict(self) -> dict:
        return {
            "contest": self.contest,
            "date": self.date.strftime(DATE_FORMAT) if self.date else None,
            "numbers": list(self.numbers),
        }

    @classmethod
    def from_dict(cls, payload: Union[dict, Sequence[int]], position: int = 0) -> "Draw":
        """Rebuild a draw from its snapshot form. Bare number lists get a positional contest."""
        if isinstance(payload, dict):
            raw_date = payload.get("date")
            parsed = datetime.strptime(raw_date, DATE_FORMAT).date() if raw_date else None
            return cls(int(payload.get("contest", position + 1)), parsed, tuple(payload["numbers"]))
        return cls(position + 1, None, tuple(payload))


class DrawFeed:
    """Ordered, read-only sequence of historical draws."""

    def __init__(self, draws: Sequence[Draw]):
        self._draws = tuple(draws)

    @classmethod
    def from_csv(cls, file_path: str = str(DATA_FILE)) -> "DrawFeed":
        return cls(load_draws_csv(file_path))

    def __len__(self) -> int:
        return len(self._draws)

    def length(self) -> int:
        return len(self._draws)

    def at(self, index: int) -> Draw:
        if not self._draws:
            raise FeedIndexError("Draw feed is empty")
        if index < 0 or index >= len(self._draws):
            raise FeedIndexError(f"Draw index {index} out of range for feed of {len(self._draws)} draws")
        return self._draws[index]

    def __iter__(self):
        return iter(self._draws)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([
            {'contest': d.contest, 'date': d.date, 'numbers': list(d.numbers)}
            for d in self._draws
        ])


def load_draws_csv(file_path: str) -> List[Draw]:
    """
    Load contests from a CSV export.
    Row layout: contest, dd/mm/yyyy, ball_1 .. ball_15. The header row is discarded.
    """
    try:
        frame = pd.read_csv(file_path, header=0, dtype=str, skipinitialspace=True)
    except pd.errors.EmptyDataError as e:
        raise DataFormatError(f"No draws found in {file_path}") from e
    except pd.errors.ParserError as e:
        raise DataFormatError(f"Malformed CSV {file_path}: {e}") from e

    expected_columns = 2 + N_NUMBERS
    if frame.shape[1] != expected_columns:
        raise DataFormatError(f"Expected {expected_columns} columns, found {frame.shape[1]}")
    if frame.empty:
        raise DataFormatError(f"No draws found in {file_path}")

    draws = []
    for row_number, values in enumerate(frame.itertuples(index=False, name=None), 1):
        if any(pd.isna(v) for v in values):
            raise DataFormatError(f"Row {row_number}: missing values")
        try:
            contest = int(values[0])
            drawn_on = datetime.strptime(values[1].strip(), DATE_FORMAT).date()
            numbers = tuple(int(v) for v in values[2:])
        except ValueError as e:
            raise DataFormatError(f"Row {row_number}: {e}") from e
        try:
            draws.append(Draw(contest, drawn_on, numbers))
        except DataFormatError as e:
            raise DataFormatError(f"Row {row_number}: {e}") from e

    logger.info(f"Successfully loaded {len(draws)} draws.")
    return draws


def encode_target(numbers: Sequence[int]) -> np.ndarray:
    """Sorted numbers scaled to [0, 1]; inverse of the output mapping floor(v*24+1.5)."""
    values = np.array(sorted(numbers)[:N_NUMBERS], dtype=np.float32)
    return (values - 1.0) / (NUMBER_RANGE - 1)


def build_window_features(recent_draws: Sequence[Draw], tick_index: int, max_ticks: int,
                          timestamp: float, window: int, ma_window: int = 6) -> np.ndarray:
    """
    Assemble the (window, FEATURES_PER_STEP) input for one forecast.

    Each step holds the draw's numbers, the moving average of the window up to
    that draw, the normalized contest index and the normalized timestamp.
    Missing history at the start is zero-padded in front.
    """
    draws = list(recent_draws)[-window:] if window > 0 else []
    features = np.zeros((window, FEATURES_PER_STEP), dtype=np.float32)

    if draws:
        numbers = np.array([d.numbers for d in draws], dtype=np.float32) / NUMBER_RANGE
        averages = moving_average(draws, ma_window) / NUMBER_RANGE
        offset = window - len(draws)
        features[offset:, :N_NUMBERS] = numbers
        features[offset:, N_NUMBERS:2 * N_NUMBERS] = averages

    features[:, -2] = tick_index / max_ticks if max_ticks else 0.0
    features[:, -1] = timestamp / SECONDS_PER_CENTURY
    return features


def build_training_sequences(draws: Sequence[Draw], window: int, timestamp: float,
                             ma_window: int = 6) -> Tuple[np.ndarray, np.ndarray]:
    """Create (sequence, next-draw target) pairs over a whole history."""
    draws = list(draws)
    sequences = []
    targets = []
    for i in range(1, len(draws)):
        seq = build_window_features(draws[max(0, i - window):i], i, len(draws), timestamp, window, ma_window)
        sequences.append(seq)
        targets.append(encode_target(draws[i].numbers))
    if not sequences:
        return np.zeros((0, window, FEATURES_PER_STEP), dtype=np.float32), np.zeros((0, N_NUMBERS), dtype=np.float32)
    return np.array(sequences), np.array(targets)
