import logging
from typing import List
from .agent import PredictorAgent
from .config import SIMULATION_CONFIG
from .errors import SimulationError

logger = logging.getLogger(__name__)


class EvolutionController:
    """Selection and cloning of the best-scoring agent."""

    def __init__(self, clone_inherits_score: bool = None):
        if clone_inherits_score is None:
            clone_inherits_score = SIMULATION_CONFIG.get('clone_inherits_score', False)
        self.clone_inherits_score = clone_inherits_score

    @staticmethod
    def best_agent(population: List[PredictorAgent]) -> PredictorAgent:
        """Highest score; ties go to the lowest id."""
        if not population:
            raise SimulationError("Cannot select a best agent from an empty population")
        return min(population, key=lambda a: (-a.score, a.id))

    @staticmethod
    def evolve_generation(state) -> int:
        """Advance the generation counter. Population composition is untouched."""
        state.generation += 1
        logger.info(f"Generation {state.generation} started")
        return state.generation

    def clone_best(self, population: List[PredictorAgent]) -> List[PredictorAgent]:
        """Replace the population with independent copies of the best agent."""
        best = self.best_agent(population)
        start_score = best.score if self.clone_inherits_score else 0.0
        clones = [best.clone(new_id=i, score=start_score) for i in range(1, len(population) + 1)]
        logger.info(f"Cloned agent {best.id} (score {best.score:.2f}) into {len(clones)} agents")
        return clones
