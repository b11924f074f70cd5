import json
import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Union
from .agent import ModelHandle, PredictorAgent
from .config import SNAPSHOT_FORMAT_VERSION, SIMULATION_CONFIG
from .data import Draw
from .errors import DataFormatError, DeserializationError, SnapshotError
from .evolution import EvolutionController

logger = logging.getLogger(__name__)


def _default_model_loader(payload: Dict) -> ModelHandle:
    # Lazy import to avoid loading TensorFlow when a custom loader is supplied
    from .neural import load_model_handle
    return load_model_handle(payload)


class SnapshotCodec:
    """
    Saves and restores simulation state as one JSON document.

    Only the best agent's model is stored; loading expands it into a
    population of independent clones.
    """

    def __init__(self, population_size: int = None,
                 model_loader: Optional[Callable[[Dict], ModelHandle]] = None):
        if population_size is None:
            population_size = SIMULATION_CONFIG.get('population_size', 10)
        if population_size < 1:
            raise ValueError(f"population_size must be at least 1, got {population_size}")
        self.population_size = population_size
        self.model_loader = model_loader or _default_model_loader

    def save(self, state) -> Dict:
        best = EvolutionController.best_agent(state.population)
        model_payload = best.model.serialize()
        logger.info(f"Saving snapshot: generation {state.generation}, tick {state.tick_index}, best agent {best.id}")
        return {
            'formatVersion': SNAPSHOT_FORMAT_VERSION,
            'modelFamily': model_payload.get('family'),
            'modelArchitecture': model_payload.get('architecture'),
            'modelWeights': model_payload.get('weights', []),
            'learningRate': model_payload.get('learning_rate'),
            'historicalDraws': [d.to_dict() for d in state.historical_draws],
            'generation': state.generation,
            'tickIndex': state.tick_index,
        }

    def dumps(self, state) -> bytes:
        return json.dumps(self.save(state)).encode('utf-8')

    def save_file(self, state, file_path: Union[str, Path]) -> Path:
        path = Path(file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.dumps(state))
        logger.info(f"Snapshot written to {path}")
        return path

    def loads(self, data: Union[bytes, str]) -> Dict:
        try:
            payload = json.loads(data)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DeserializationError(f"Snapshot is not valid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise DeserializationError("Snapshot must be a JSON object")
        return payload

    def load(self, data: Union[bytes, str, Dict], current_state):
        """
        Build a new SimulationState from a snapshot.

        Fields missing from older payloads keep their value from current_state.
        current_state itself is never modified.
        """
        from .population import SimulationState

        payload = data if isinstance(data, dict) else self.loads(data)
        if not payload.get('modelArchitecture'):
            raise DeserializationError("Snapshot lacks a model definition")

        version = payload.get('formatVersion', 0)
        if version > SNAPSHOT_FORMAT_VERSION:
            logger.warning(f"Snapshot format {version} is newer than supported {SNAPSHOT_FORMAT_VERSION}; "
                           f"unknown fields are ignored")

        model_payload = {
            'family': payload.get('modelFamily') or 'lstm',
            'architecture': payload['modelArchitecture'],
            'weights': payload.get('modelWeights'),
        }
        if payload.get('learningRate') is not None:
            model_payload['learning_rate'] = payload['learningRate']
        # ShapeMismatchError / DeserializationError propagate unchanged
        model = self.model_loader(model_payload)

        if 'historicalDraws' in payload:
            try:
                history = [Draw.from_dict(d, i) for i, d in enumerate(payload['historicalDraws'])]
            except (DataFormatError, KeyError, TypeError, ValueError) as e:
                raise DeserializationError(f"Invalid historical draws: {e}") from e
        else:
            history = list(current_state.historical_draws)

        generation = payload.get('generation', current_state.generation)
        tick_index = payload.get('tickIndex', current_state.tick_index)
        if not isinstance(generation, int) or generation < 1:
            raise DeserializationError(f"Invalid generation {generation!r}")
        if not isinstance(tick_index, int) or tick_index < 0:
            raise DeserializationError(f"Invalid tick index {tick_index!r}")

        size = len(current_state.population) or self.population_size
        population = [PredictorAgent(id=1, model=model)]
        population += [PredictorAgent(id=i, model=model.clone()) for i in range(2, size + 1)]

        logger.info(f"Snapshot loaded: generation {generation}, tick {tick_index}, "
                    f"{len(history)} draws, {size} agents")
        return SimulationState(
            generation=generation,
            tick_index=tick_index,
            historical_draws=history,
            population=population,
        )

    def load_file(self, file_path: Union[str, Path], current_state):
        path = Path(file_path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise SnapshotError(f"Could not read snapshot {path}: {e}") from e
        return self.load(data, current_state)
