import numpy as np
import pytest

tf = pytest.importorskip("tensorflow")

from lotoarena.data import DrawFeed, build_window_features, encode_target
from lotoarena.errors import DeserializationError, ShapeMismatchError
from lotoarena.neural import DenseModel, LSTMSequenceModel, build_model, load_model_handle
from lotoarena.persistence import SnapshotCodec
from lotoarena.population import PopulationManager
from lotoarena.trainer import Pretrainer

from conftest import make_draws

WINDOW = 4
TINY = {'lstm_units': (8, 4), 'dense_units': 8}


@pytest.fixture(params=["lstm", "dense"])
def handle(request):
    return build_model(request.param, WINDOW, params=TINY, seed=1)


@pytest.fixture
def features():
    return build_window_features(make_draws(6), tick_index=6, max_ticks=20, timestamp=0.0, window=WINDOW)


def test_predict_shape_and_range(handle, features):
    out = handle.predict(features)
    assert out.shape == (15,)
    assert np.all((out >= 0) & (out <= 1))
    assert handle.input_shape == (WINDOW, 32)


def test_fit_step_moves_weights(handle, features):
    before = handle.get_weights()
    loss = handle.fit_step(features, encode_target(range(1, 16)))
    assert np.isfinite(loss)
    assert any(not np.array_equal(b, a) for b, a in zip(before, handle.get_weights()))


def test_serialize_round_trip(handle, features):
    payload = handle.serialize()
    restored = load_model_handle(payload)
    assert type(restored) is type(handle)
    for a, b in zip(handle.get_weights(), restored.get_weights()):
        assert np.array_equal(a, b)
    assert np.allclose(handle.predict(features), restored.predict(features), atol=1e-6)


def test_clone_is_independent(handle, features):
    clone = handle.clone()
    clone.fit_step(features, encode_target(range(11, 26)))
    assert any(not np.array_equal(a, b) for a, b in zip(handle.get_weights(), clone.get_weights()))


def test_set_weights_shape_mismatch(handle):
    weights = handle.get_weights()
    with pytest.raises(ShapeMismatchError):
        handle.set_weights(weights[:-1])
    weights[0] = np.zeros((2, 2), dtype=np.float32)
    with pytest.raises(ShapeMismatchError):
        handle.set_weights(weights)


def test_bad_payloads():
    with pytest.raises(DeserializationError):
        load_model_handle({'family': 'lstm', 'architecture': None})
    with pytest.raises(DeserializationError):
        load_model_handle({'family': 'transformer', 'architecture': '{}'})
    with pytest.raises(ValueError):
        build_model('transformer', WINDOW)


def test_families_are_registered():
    assert isinstance(build_model('lstm', WINDOW, params=TINY), LSTMSequenceModel)
    assert isinstance(build_model('dense', WINDOW, params=TINY), DenseModel)


def test_snapshot_with_default_loader():
    feed_draws = make_draws(8)
    manager = PopulationManager(
        DrawFeed(feed_draws),
        model_factory=lambda agent_id: build_model('dense', WINDOW, params=TINY, seed=agent_id),
        population_size=2, window=WINDOW, seed=3, clock=lambda: 0.0,
    )
    manager.run(max_ticks=2)
    restored = SnapshotCodec(population_size=2).load(manager.codec.dumps(manager.state), manager.state)
    assert isinstance(restored.population[0].model, DenseModel)
    assert restored.tick_index == 2


def test_pretrainer_runs():
    draws = make_draws(20)
    model = build_model('dense', WINDOW, params=TINY, seed=5)
    pretrainer = Pretrainer(window=WINDOW, params={'epochs': 2, 'batch_size': 8, 'cv_folds': 2},
                            clock=lambda: 0.0)
    history = pretrainer.train(model, draws)
    assert len(history['loss']) == 2

    cv_loss = pretrainer.cross_validate(lambda: build_model('dense', WINDOW, params=TINY, seed=5), draws)
    assert np.isfinite(cv_loss)


def test_pretrainer_needs_history():
    model = build_model('dense', WINDOW, params=TINY, seed=5)
    with pytest.raises(ValueError):
        Pretrainer(window=WINDOW).train(model, make_draws(2))
