import pytest

from crowdsim.sim.core.config import SimulationConfig
from crowdsim.sim.core.world import World
from crowdsim.sim.scenes import corridor_flows, corridor_scene


@pytest.mark.slow
@pytest.mark.parametrize("force_model", ["sfm", "sfm-cp", "sfm-es", "sfm-nes", "moussaid"])
def test_corridor_run_keeps_agents_inside_and_moving(force_model):
    config = SimulationConfig(seed=21, scene=corridor_scene(), flows=corridor_flows(spawn_interval=2.0))
    config.population.force_model = force_model
    config.population.attention_model = "logistic"
    world = World(config)

    metrics = []
    for _ in range(int(60.0 / config.time_step)):
        metrics.append(world.step())

    spawned = sum(m.spawned for m in metrics)
    removed = sum(m.removed for m in metrics)
    average_tick_ms = sum(m.tick_duration_ms for m in metrics) / len(metrics)
    summary = (
        f"model={world.model_label()}, spawned={spawned}, removed={removed}, "
        f"final_pop={metrics[-1].population}, avg_tick_ms={average_tick_ms:.2f}"
    )

    assert spawned > 20, summary
    assert removed > 0, summary
    assert spawned - removed == metrics[-1].population, summary
    for agent in world.agents:
        assert abs(agent.position.y) < 2.7 + agent.radius, summary
        assert agent.velocity.length() <= config.locomotion.speed_cap + 1e-6 or force_model == "moussaid", summary
    assert len(world.records) > 0, summary
