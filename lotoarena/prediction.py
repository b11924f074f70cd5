import time
import logging
from typing import Callable, Dict, List, Optional, Sequence
import numpy as np
from .agent import PredictorAgent
from .config import SIMULATION_CONFIG, N_NUMBERS, NUMBER_RANGE
from .data import Draw, build_window_features
from .statistical import Statistics

logger = logging.getLogger(__name__)


class PredictionEngine:
    """Turns an agent's model output into a 15-number ticket."""

    def __init__(self, window: int = None, model_budget: int = None, max_known_ticks: int = 0,
                 ma_window: int = None, seed: Optional[int] = None,
                 clock: Callable[[], float] = time.time,
                 telemetry_sink: Optional[Callable[[Dict], None]] = None):
        self.window = window or SIMULATION_CONFIG.get('window', 10)
        self.model_budget = model_budget if model_budget is not None else SIMULATION_CONFIG.get('model_budget', 10)
        self.ma_window = ma_window or SIMULATION_CONFIG.get('moving_average_window', 6)
        self.max_known_ticks = max_known_ticks
        self.max_attempts = SIMULATION_CONFIG.get('random_fill_attempts', 1000)
        self.rng = np.random.default_rng(seed)
        self.clock = clock
        self.telemetry_sink = telemetry_sink

    def build_features(self, recent_draws: Sequence[Draw], tick_index: int) -> np.ndarray:
        return build_window_features(
            recent_draws, tick_index, self.max_known_ticks, self.clock(),
            self.window, self.ma_window
        )

    def predict(self, agent: PredictorAgent, recent_draws: Sequence[Draw], tick_index: int,
                stats: Statistics, features: Optional[np.ndarray] = None) -> List[int]:
        """Return exactly 15 distinct numbers in 1..25 for the agent's next ticket."""
        if features is None:
            features = self.build_features(recent_draws, tick_index)
        raw = agent.model.predict(features)
        numbers = self.assemble(raw, stats.hot_numbers)

        if self.telemetry_sink is not None:
            self.telemetry_sink({
                'agent_id': agent.id,
                'input': features[-1].tolist(),
                'output': list(numbers),
                'weights': [w.ravel().tolist() for w in agent.model.get_weights()],
            })
        return numbers

    def assemble(self, raw_output: np.ndarray, hot_numbers: Sequence[int]) -> List[int]:
        chosen: List[int] = []
        seen = set()

        # 1. Model-derived numbers, in output order
        values = np.clip(np.nan_to_num(np.asarray(raw_output, dtype=np.float64).ravel()), 0.0, 1.0)
        for value in values[:self.model_budget]:
            if len(chosen) >= N_NUMBERS:
                break
            # Halves round up
            num = int(np.floor(value * (NUMBER_RANGE - 1) + 1.5))
            if num not in seen:
                seen.add(num)
                chosen.append(num)

        # 2. Hot numbers
        for num in hot_numbers:
            if len(chosen) >= N_NUMBERS:
                break
            if 1 <= num <= NUMBER_RANGE and num not in seen:
                seen.add(num)
                chosen.append(int(num))

        # 3. Random fill, bounded retries
        if len(chosen) < N_NUMBERS:
            logger.debug(f"Filling {N_NUMBERS - len(chosen)} slots at random")
        attempts = 0
        while len(chosen) < N_NUMBERS and attempts < self.max_attempts:
            num = int(self.rng.integers(1, NUMBER_RANGE + 1))
            if num not in seen:
                seen.add(num)
                chosen.append(num)
            attempts += 1

        if len(chosen) < N_NUMBERS:
            remaining = [n for n in range(1, NUMBER_RANGE + 1) if n not in seen]
            picks = self.rng.choice(remaining, size=N_NUMBERS - len(chosen), replace=False)
            chosen.extend(int(n) for n in picks)

        return chosen
