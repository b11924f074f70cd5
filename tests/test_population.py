import pytest

from lotoarena.config import N_NUMBERS, NUMBER_RANGE
from lotoarena.data import DrawFeed
from lotoarena.errors import FeedIndexError, SimulationError
from lotoarena.population import HISTORY_COLUMNS, SimulationStatus

from conftest import StubModel, make_draws


def _valid(numbers):
    return (len(numbers) == N_NUMBERS and len(set(numbers)) == N_NUMBERS
            and all(1 <= n <= NUMBER_RANGE for n in numbers))


def test_every_tick_produces_valid_tickets(feed, make_manager):
    manager = make_manager(feed)
    manager.start()
    for _ in range(12):
        rows = manager.tick()
        assert len(rows) == 4
        for agent in manager.state.population:
            assert _valid(agent.last_prediction)


def test_tick_appends_draw_and_advances(feed, make_manager):
    manager = make_manager(feed)
    manager.start()
    rows = manager.tick()
    assert manager.state.tick_index == 1
    assert manager.state.historical_draws == [feed.at(0)]
    assert {r['contest'] for r in rows} == {feed.at(0).contest}
    assert {r['agent_id'] for r in rows} == {1, 2, 3, 4}
    assert manager.statistics is not None


def test_score_is_sum_of_recorded_rewards(feed, make_manager):
    manager = make_manager(feed, reward_policy="penalized")
    manager.run(max_ticks=15)
    df = manager.history_frame()
    for agent in manager.state.population:
        assert agent.score == pytest.approx(df.loc[df.agent_id == agent.id, 'reward'].sum())


def test_best_agent_dominates_population(feed, make_manager):
    manager = make_manager(feed, reward_policy="exponential")
    manager.run(max_ticks=10)
    best = manager.best_agent()
    assert all(best.score >= a.score for a in manager.state.population)


def test_full_pass_increments_generation_once_and_pauses(make_manager):
    feed = DrawFeed(make_draws(6))
    manager = make_manager(feed)

    performed = manager.run()

    assert performed == 6
    assert manager.state.generation == 2
    assert manager.state.tick_index == 0
    assert manager.status == SimulationStatus.PAUSED
    assert manager.history_frame()['generation'].eq(1).all()

    manager.resume()
    manager.run(max_ticks=2)
    assert manager.state.generation == 2
    assert manager.state.tick_index == 2
    assert len(manager.state.historical_draws) == 8


def test_infinite_mode_keeps_running_across_passes(make_manager):
    feed = DrawFeed(make_draws(5))
    manager = make_manager(feed, infinite_mode=True)
    manager.run(max_ticks=11)
    assert manager.state.generation == 3
    assert manager.state.tick_index == 1
    assert manager.is_running


def test_failing_agent_keeps_weights_and_tick_completes(feed, make_manager):
    models = {1: StubModel(seed=1), 2: StubModel(seed=2, fail=True), 3: StubModel(seed=3), 4: StubModel(seed=4)}
    manager = make_manager(feed, model_factory=lambda agent_id: models[agent_id])
    before = manager.state.population[1].model.get_weights()

    manager.start()
    rows = manager.tick()

    assert len(rows) == 4
    after = manager.state.population[1].model.get_weights()
    assert all((b == a).all() for b, a in zip(before, after))
    assert manager.state.population[0].model.fit_calls == 1


def test_broken_population_raises(feed, make_manager):
    manager = make_manager(feed)
    manager.start()
    manager.state.population.pop()
    with pytest.raises(SimulationError):
        manager.tick()
    assert manager.status == SimulationStatus.IDLE


def test_duplicate_ids_raise(feed, make_manager):
    manager = make_manager(feed)
    manager.state.population[1].id = 1
    with pytest.raises(SimulationError):
        manager.tick()


def test_empty_feed(make_manager):
    manager = make_manager(DrawFeed([]))
    with pytest.raises(SimulationError):
        manager.start()
    with pytest.raises(FeedIndexError):
        manager.tick()
    assert manager.status == SimulationStatus.IDLE


def test_pause_and_resume(feed, make_manager):
    manager = make_manager(feed)
    manager.start()
    manager.pause()
    assert manager.status == SimulationStatus.PAUSED
    assert manager.run(max_ticks=3) == 0
    assert manager.state.tick_index == 0
    manager.resume()
    assert manager.is_running
    manager.stop()
    assert manager.status == SimulationStatus.IDLE


def test_clone_best_replaces_population(feed, make_manager):
    manager = make_manager(feed, reward_policy="exponential")
    manager.run(max_ticks=5)
    best = manager.best_agent()
    best_weights = best.model.get_weights()

    returned = manager.clone_best()

    assert returned is best
    assert [a.id for a in manager.state.population] == [1, 2, 3, 4]
    assert all(a.score == 0.0 for a in manager.state.population)
    for agent in manager.state.population:
        assert all((w == b).all() for w, b in zip(agent.model.get_weights(), best_weights))


def test_initial_model_is_cloned(feed, make_manager):
    seed_model = StubModel(seed=99)
    manager = make_manager(feed, initial_model=seed_model)
    models = [a.model for a in manager.state.population]
    assert len({id(m) for m in models}) == 4
    assert all(m is not seed_model for m in models)


def test_reset(feed, make_manager):
    manager = make_manager(feed)
    manager.run(max_ticks=3)
    manager.reset()
    assert manager.state.generation == 1
    assert manager.state.tick_index == 0
    assert manager.state.historical_draws == []
    assert manager.history == []
    assert manager.status == SimulationStatus.IDLE
    assert all(a.score == 0.0 for a in manager.state.population)


def test_describe(feed, make_manager):
    manager = make_manager(feed)
    manager.start()
    manager.tick()
    view = manager.describe()
    assert view['status'] == 'running'
    assert view['tick_index'] == 1
    assert view['board_numbers'] == list(feed.at(0).numbers)
    assert len(view['hot_numbers']) == 5
    assert [a['id'] for a in view['agents']] == [1, 2, 3, 4]


def test_history_and_report(feed, make_manager):
    manager = make_manager(feed)
    assert manager.report().empty
    manager.run(max_ticks=4)
    df = manager.history_frame()
    assert list(df.columns) == HISTORY_COLUMNS
    assert len(df) == 16
    summary = manager.report()
    assert set(summary['agent_id']) == {1, 2, 3, 4}
    assert summary['ticks'].eq(4).all()


def test_telemetry_sink_receives_each_prediction(feed, make_manager):
    payloads = []
    manager = make_manager(feed, telemetry_sink=payloads.append)
    manager.run(max_ticks=2)
    assert len(payloads) == 8
    assert manager.last_telemetry is payloads[-1]


class BrokenPredictModel(StubModel):
    def predict(self, features):
        raise ValueError("input shape does not match")


def test_failed_prediction_leaves_no_partial_tick(feed, make_manager):
    def factory(agent_id):
        return BrokenPredictModel(seed=agent_id) if agent_id == 3 else StubModel(seed=agent_id)

    manager = make_manager(feed, model_factory=factory)
    before = [a.model.get_weights() for a in manager.state.population]
    manager.start()

    with pytest.raises(ValueError):
        manager.tick()

    for agent, weights in zip(manager.state.population, before):
        assert agent.model.fit_calls == 0
        assert all((w == b).all() for w, b in zip(agent.model.get_weights(), weights))
    assert manager.status == SimulationStatus.IDLE
    assert manager.state.tick_index == 0
    assert manager.state.historical_draws == []
    assert manager.history == []
    assert all(a.score == 0.0 for a in manager.state.population)


def test_unexpected_training_error_restores_trained_agents(feed, make_manager, monkeypatch):
    manager = make_manager(feed)
    before = [a.model.get_weights() for a in manager.state.population]
    original = manager.trainer.train_step

    def train_step(agent, *args):
        if agent.id == 3:
            raise MemoryError("out of memory")
        return original(agent, *args)

    monkeypatch.setattr(manager.trainer, "train_step", train_step)
    manager.start()
    with pytest.raises(MemoryError):
        manager.tick()

    assert manager.state.population[0].model.fit_calls == 1
    for agent, weights in zip(manager.state.population, before):
        assert all((w == b).all() for w, b in zip(agent.model.get_weights(), weights))
    assert manager.status == SimulationStatus.IDLE
    assert manager.state.tick_index == 0


def test_tick_is_a_no_op_while_paused(feed, make_manager):
    manager = make_manager(feed)
    manager.start()
    manager.pause()
    assert manager.tick() == []
    assert manager.state.tick_index == 0
    assert manager.history == []
    manager.resume()
    assert len(manager.tick()) == 4


@pytest.mark.parametrize("size", [0, -2])
def test_population_size_must_be_positive(feed, make_manager, size):
    with pytest.raises(ValueError):
        make_manager(feed, population_size=size)
