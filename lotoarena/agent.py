from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional
import numpy as np


class ModelHandle(ABC):
    """
    Capability contract every model family implements.
    The engine only talks to models through these methods.
    """

    family = "abstract"

    @abstractmethod
    def predict(self, features: np.ndarray) -> np.ndarray:
        """Raw output vector for a (1, window, features) batch."""

    @abstractmethod
    def fit_step(self, features: np.ndarray, target: np.ndarray) -> float:
        """Fit one step on a single (features, target) pair; returns the loss."""

    @abstractmethod
    def get_weights(self) -> List[np.ndarray]:
        """Copies of the model weights."""

    @abstractmethod
    def set_weights(self, weights: List[np.ndarray]) -> None:
        """Replace every weight array; shapes must match."""

    @abstractmethod
    def serialize(self) -> Dict:
        """JSON-compatible {'family', 'architecture', 'weights'} payload."""

    @classmethod
    @abstractmethod
    def deserialize(cls, payload: Dict) -> "ModelHandle":
        """Rebuild a model from serialize() output."""

    def clone(self) -> "ModelHandle":
        """Independent deep copy (no shared weight buffers)."""
        return type(self).deserialize(self.serialize())


@dataclass
class PredictorAgent:
    """One player: a model plus its running score and last forecast."""
    id: int
    model: ModelHandle
    score: float = 0.0
    last_prediction: List[int] = field(default_factory=list)

    def clone(self, new_id: int, score: Optional[float] = None) -> "PredictorAgent":
        return PredictorAgent(
            id=new_id,
            model=self.model.clone(),
            score=self.score if score is None else score,
        )
