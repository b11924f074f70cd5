import json
from datetime import date, timedelta

import numpy as np
import pytest

from lotoarena.agent import ModelHandle
from lotoarena.config import FEATURES_PER_STEP, N_NUMBERS, NUMBER_RANGE
from lotoarena.data import Draw, DrawFeed
from lotoarena.errors import DeserializationError, ShapeMismatchError
from lotoarena.population import PopulationManager


class StubModel(ModelHandle):
    """Numpy-only model: sigmoid of a linear map over the window mean."""

    family = "stub"

    def __init__(self, seed: int = 0, fail: bool = False):
        rng = np.random.default_rng(seed)
        self.weights = [
            rng.normal(0, 1, size=(FEATURES_PER_STEP, N_NUMBERS)).astype(np.float32),
            rng.normal(0, 1, size=N_NUMBERS).astype(np.float32),
        ]
        self.fail = fail
        self.fit_calls = 0

    def predict(self, features):
        x = np.asarray(features, dtype=np.float32)
        if x.ndim == 3:
            x = x[0]
        z = x.mean(axis=0) @ self.weights[0] + self.weights[1]
        return 1.0 / (1.0 + np.exp(-z))

    def fit_step(self, features, target):
        self.fit_calls += 1
        if self.fail:
            # Corrupt state before failing so rollback is observable
            self.weights[1] = self.weights[1] + 100.0
            raise RuntimeError("fit exploded")
        grad = self.predict(features) - np.asarray(target, dtype=np.float32)
        self.weights[1] = (self.weights[1] - 0.5 * grad).astype(np.float32)
        return float(np.mean(grad ** 2))

    def get_weights(self):
        return [w.copy() for w in self.weights]

    def set_weights(self, weights):
        if len(weights) != len(self.weights):
            raise ShapeMismatchError(f"Expected {len(self.weights)} arrays, got {len(weights)}")
        arrays = [np.asarray(w, dtype=np.float32) for w in weights]
        for new, old in zip(arrays, self.weights):
            if new.shape != old.shape:
                raise ShapeMismatchError(f"Expected shape {old.shape}, got {new.shape}")
        self.weights = [a.copy() for a in arrays]

    def serialize(self):
        return {
            "family": self.family,
            "architecture": json.dumps({"inputs": FEATURES_PER_STEP, "outputs": N_NUMBERS}),
            "weights": [w.tolist() for w in self.weights],
        }

    @classmethod
    def deserialize(cls, payload):
        if not payload.get("architecture"):
            raise DeserializationError("missing architecture")
        model = cls()
        if payload.get("weights") is not None:
            model.set_weights(payload["weights"])
        return model


def make_draws(count: int, seed: int = 0):
    rng = np.random.default_rng(seed)
    start = date(2003, 9, 29)
    return [
        Draw(i + 1, start + timedelta(days=3 * i),
             tuple(int(n) for n in sorted(rng.choice(np.arange(1, NUMBER_RANGE + 1), size=N_NUMBERS, replace=False))))
        for i in range(count)
    ]


@pytest.fixture
def draws():
    return make_draws(30)


@pytest.fixture
def feed(draws):
    return DrawFeed(draws)


@pytest.fixture
def make_manager():
    def _make(feed, **kwargs):
        options = dict(
            model_factory=lambda agent_id: StubModel(seed=agent_id),
            model_loader=StubModel.deserialize,
            population_size=4,
            seed=7,
            clock=lambda: 1.7e9,
        )
        options.update(kwargs)
        return PopulationManager(feed, **options)
    return _make
