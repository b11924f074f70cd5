import time
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
import pandas as pd
from .agent import ModelHandle, PredictorAgent
from .config import SIMULATION_CONFIG
from .data import Draw, DrawFeed
from .errors import SimulationError, TrainingError
from .evolution import EvolutionController
from .persistence import SnapshotCodec
from .prediction import PredictionEngine
from .reward import RewardPolicy, get_reward_policy
from .statistical import Statistics, StatisticsTracker
from .trainer import OnlineTrainer

logger = logging.getLogger(__name__)

HISTORY_COLUMNS = ['generation', 'tick', 'contest', 'agent_id', 'matches', 'reward', 'score']


class SimulationStatus(Enum):
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


@dataclass
class SimulationState:
    """Everything a tick mutates. Only the tick loop and explicit operations touch it."""
    generation: int = 1
    tick_index: int = 0
    historical_draws: List[Draw] = field(default_factory=list)
    population: List[PredictorAgent] = field(default_factory=list)


class PopulationManager:
    """
    Drives the arena: one tick consumes one draw for every agent.

    All state mutation happens under a single lock, so a tick never
    interleaves with clone_best, load_snapshot or reset.
    """

    def __init__(self, feed: DrawFeed,
                 model_factory: Optional[Callable[[int], ModelHandle]] = None,
                 model_loader: Optional[Callable[[Dict], ModelHandle]] = None,
                 initial_model: Optional[ModelHandle] = None,
                 population_size: int = None,
                 window: int = None,
                 hot_count: int = None,
                 model_budget: int = None,
                 reward_policy: Union[str, RewardPolicy] = None,
                 hot_bonus: bool = None,
                 infinite_mode: bool = None,
                 clone_inherits_score: bool = None,
                 train_target: str = None,
                 model_family: str = None,
                 seed: int = None,
                 clock: Callable[[], float] = time.time,
                 telemetry_sink: Optional[Callable[[Dict], None]] = None):
        cfg = SIMULATION_CONFIG
        self.feed = feed
        self.population_size = cfg.get('population_size', 10) if population_size is None else population_size
        if self.population_size < 1:
            raise ValueError(f"population_size must be at least 1, got {self.population_size}")
        self.window = cfg.get('window', 10) if window is None else window
        self.infinite_mode = cfg.get('infinite_mode', False) if infinite_mode is None else infinite_mode
        self.model_family = model_family or cfg.get('model_family', 'lstm')
        self.seed = cfg.get('seed', 42) if seed is None else seed

        if isinstance(reward_policy, RewardPolicy):
            self.reward_policy = reward_policy
        else:
            self.reward_policy = get_reward_policy(
                reward_policy or cfg.get('reward_policy', 'strict'),
                cfg.get('hot_bonus', False) if hot_bonus is None else hot_bonus,
            )

        self._telemetry_sink = telemetry_sink
        self.last_telemetry: Optional[Dict] = None
        self.tracker = StatisticsTracker(hot_count=hot_count, ma_window=cfg.get('moving_average_window', 6))
        self.engine = PredictionEngine(
            window=self.window,
            model_budget=model_budget,
            max_known_ticks=len(feed),
            seed=self.seed,
            clock=clock,
            telemetry_sink=self._record_telemetry if telemetry_sink else None,
        )
        self.trainer = OnlineTrainer(train_target)
        self.evolution = EvolutionController(clone_inherits_score)
        self.codec = SnapshotCodec(self.population_size, model_loader)
        self.model_factory = model_factory or self._default_model_factory

        self.state = SimulationState()
        self.status = SimulationStatus.IDLE
        self.history: List[Dict] = []
        self.statistics: Optional[Statistics] = None
        self._lock = threading.RLock()

        self.initialize_population(initial_model)

    def _default_model_factory(self, agent_id: int) -> ModelHandle:
        # Lazy import to avoid loading TensorFlow when a factory is supplied
        from .neural import build_model
        return build_model(self.model_family, self.window, seed=self.seed + agent_id)

    def _record_telemetry(self, payload: Dict):
        self.last_telemetry = payload
        self._telemetry_sink(payload)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize_population(self, initial_model: Optional[ModelHandle] = None):
        """Fresh random-weight models, or independent clones of initial_model."""
        with self._lock:
            population = []
            for agent_id in range(1, self.population_size + 1):
                model = initial_model.clone() if initial_model is not None else self.model_factory(agent_id)
                population.append(PredictorAgent(id=agent_id, model=model))
            self.state.population = population
            source = "initial model" if initial_model is not None else "random weights"
            logger.info(f"Initialized {len(population)} agents from {source}")

    @property
    def is_running(self) -> bool:
        return self.status == SimulationStatus.RUNNING

    def start(self):
        with self._lock:
            if len(self.feed) == 0:
                raise SimulationError("Cannot start: no draws loaded")
            self.status = SimulationStatus.RUNNING
            logger.info(f"Simulation started at generation {self.state.generation}, tick {self.state.tick_index}")

    def pause(self):
        # Read at tick boundaries only; an in-flight tick finishes first
        with self._lock:
            if self.status == SimulationStatus.RUNNING:
                self.status = SimulationStatus.PAUSED
                logger.info("Simulation paused")

    def resume(self):
        with self._lock:
            if self.status == SimulationStatus.PAUSED:
                self.status = SimulationStatus.RUNNING
                logger.info("Simulation resumed")

    def stop(self):
        with self._lock:
            self.status = SimulationStatus.IDLE

    def reset(self, initial_model: Optional[ModelHandle] = None):
        """Back to generation 1, tick 0, empty history and a fresh population."""
        with self._lock:
            self.status = SimulationStatus.IDLE
            self.state = SimulationState()
            self.history = []
            self.statistics = None
            self.last_telemetry = None
            self.initialize_population(initial_model)
            logger.info("Simulation reset")

    # ------------------------------------------------------------------
    # Tick loop
    # ------------------------------------------------------------------

    def tick(self) -> List[Dict]:
        """
        Consume one draw for every agent and commit the results together.
        Returns the history rows recorded for this tick, or [] while paused.
        """
        with self._lock:
            if self.status == SimulationStatus.PAUSED:
                return []
            state = self.state
            feed_length = len(self.feed)
            try:
                draw = self.feed.at(state.tick_index % feed_length if feed_length else 0)
            except IndexError:
                self.status = SimulationStatus.IDLE
                logger.error(f"Tick aborted at tick {state.tick_index}: feed unavailable", exc_info=True)
                raise

            # 1. History and statistics
            recent = state.historical_draws[-self.window:]
            history = state.historical_draws + [draw]
            stats = self.tracker.update(history)
            features = self.engine.build_features(recent, state.tick_index)

            # 2. Predict and score every agent, then train; nothing is committed on failure
            results = []
            trained = []
            try:
                for agent in state.population:
                    prediction = self.engine.predict(agent, recent, state.tick_index, stats, features=features)
                    matches = len(set(prediction) & set(draw.numbers))
                    value = self.reward_policy(matches, stats.hot_numbers, draw.numbers)
                    results.append((agent, prediction, matches, value))

                for agent, prediction, _, _ in results:
                    trained.append((agent, agent.model.get_weights()))
                    try:
                        self.trainer.train_step(agent, features, draw.numbers, prediction, state.tick_index)
                    except TrainingError as e:
                        logger.warning(f"{e}; keeping previous weights")
            except Exception:
                for agent, weights in trained:
                    agent.model.set_weights(weights)
                self.status = SimulationStatus.IDLE
                logger.error(f"Tick aborted at tick {state.tick_index}; weights of "
                             f"{len(trained)} trained agents restored", exc_info=True)
                raise

            # 3. Commit
            state.historical_draws.append(draw)
            self.statistics = stats
            rows = []
            for agent, prediction, matches, value in results:
                agent.score += value
                agent.last_prediction = prediction
                rows.append({
                    'generation': state.generation,
                    'tick': state.tick_index,
                    'contest': draw.contest,
                    'agent_id': agent.id,
                    'matches': matches,
                    'reward': value,
                    'score': agent.score,
                })
            self.history.extend(rows)

            # 4. Advance, roll over on a full pass
            state.tick_index += 1
            if feed_length and state.tick_index >= feed_length:
                state.tick_index = 0
                self.evolution.evolve_generation(state)
                if not self.infinite_mode and self.status == SimulationStatus.RUNNING:
                    self.status = SimulationStatus.PAUSED
                    logger.info("Full pass complete; paused until resumed")

            self._check_invariants()
            if rows:
                top = max(rows, key=lambda r: r["matches"])
                logger.debug(f"Contest {draw.contest}: best matches {top['matches']} (agent {top['agent_id']})")
            return rows

    def run(self, max_ticks: Optional[int] = None) -> int:
        """Tick synchronously while running. Returns the number of ticks performed."""
        if self.status == SimulationStatus.IDLE:
            self.start()
        performed = 0
        while self.is_running and (max_ticks is None or performed < max_ticks):
            self.tick()
            performed += 1
        return performed

    def _check_invariants(self):
        population = self.state.population
        ids = [a.id for a in population]
        if len(population) != self.population_size or len(set(ids)) != len(ids):
            self.status = SimulationStatus.IDLE
            raise SimulationError(
                f"Population invariant broken at tick {self.state.tick_index}: "
                f"size {len(population)} (expected {self.population_size}), ids {ids}"
            )

    # ------------------------------------------------------------------
    # Evolution and persistence
    # ------------------------------------------------------------------

    def best_agent(self) -> PredictorAgent:
        with self._lock:
            return self.evolution.best_agent(self.state.population)

    def evolve_generation(self) -> int:
        with self._lock:
            return self.evolution.evolve_generation(self.state)

    def clone_best(self) -> PredictorAgent:
        """Replace the population with clones of the current best agent; returns that agent."""
        with self._lock:
            best = self.evolution.best_agent(self.state.population)
            self.state.population = self.evolution.clone_best(self.state.population)
            self._check_invariants()
            return best

    def save_snapshot(self, file_path: Union[str, Path, None] = None) -> Dict:
        with self._lock:
            if file_path is not None:
                self.codec.save_file(self.state, file_path)
            return self.codec.save(self.state)

    def load_snapshot(self, data: Union[bytes, str, Dict, Path]):
        """Swap in a restored state. On any error the current state is left as it was."""
        with self._lock:
            if isinstance(data, Path):
                restored = self.codec.load_file(data, self.state)
            else:
                restored = self.codec.load(data, self.state)
            self.state = restored
            self.population_size = len(restored.population)
            self.history = []
            self.last_telemetry = None
            self.statistics = self.tracker.update(restored.historical_draws) if restored.historical_draws else None
            return restored

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def describe(self) -> Dict:
        """Structured view of the current state for an external renderer."""
        with self._lock:
            last = self.state.historical_draws[-1] if self.state.historical_draws else None
            return {
                'status': self.status.value,
                'generation': self.state.generation,
                'tick_index': self.state.tick_index,
                'board_numbers': list(last.numbers) if last else [],
                'contest': last.contest if last else None,
                'hot_numbers': list(self.statistics.hot_numbers) if self.statistics else [],
                'agents': [
                    {'id': a.id, 'score': a.score, 'last_prediction': list(a.last_prediction)}
                    for a in self.state.population
                ],
            }

    def history_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.history, columns=HISTORY_COLUMNS)

    def report(self) -> pd.DataFrame:
        """Per-generation, per-agent summary of the recorded history."""
        df = self.history_frame()
        if df.empty:
            logger.warning("No results to report.")
            return pd.DataFrame(columns=['generation', 'agent_id', 'ticks', 'final_score',
                                         'mean_matches', 'max_matches'])

        summary = df.groupby(['generation', 'agent_id']).agg(
            ticks=('tick', 'count'),
            final_score=('score', 'last'),
            mean_matches=('matches', 'mean'),
            max_matches=('matches', 'max'),
        ).reset_index()

        report_lines = ["=== Arena Report ==="]
        report_lines.append(f"Ticks Recorded: {len(df) // df['agent_id'].nunique()}")
        hit_counts = df['matches'].value_counts().sort_index()
        report_lines.append("Match Distribution:")
        for hits, count in hit_counts.items():
            report_lines.append(f"{hits} Matches: {count} ({count / len(df) * 100:.1f}%)")
        for generation, group in summary.groupby('generation'):
            leader = group.sort_values(['final_score', 'agent_id'], ascending=[False, True]).iloc[0]
            report_lines.append(f"Generation {generation}: leader agent {int(leader['agent_id'])} "
                                f"score {leader['final_score']:.2f}, mean matches {leader['mean_matches']:.2f}")
        logger.info(" | ".join(report_lines))
        return summary
