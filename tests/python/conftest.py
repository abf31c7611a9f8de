import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
src_root = ROOT / "src"
if str(src_root) not in sys.path:
    sys.path.insert(0, str(src_root))

from pygame.math import Vector2  # noqa: E402

from crowdsim.sim.core.agent import Agent, AttentionKind, ForceModelKind  # noqa: E402
from crowdsim.sim.core.rng import DeterministicRng  # noqa: E402


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-slow",
        action="store_true",
        default=False,
        help="run long simulation tests",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "slow: marks long-running simulation tests (use --run-slow)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-slow"):
        return

    skip_marker = pytest.mark.skip(reason="Long simulation run (use --run-slow)")

    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_marker)


def build_agent(
    agent_id: int,
    position: tuple[float, float],
    velocity: tuple[float, float] = (0.0, 0.0),
    **overrides,
) -> Agent:
    values = dict(
        id=agent_id,
        name=f"agent-{agent_id}",
        position=Vector2(position),
        velocity=Vector2(velocity),
        destination=Vector2(50.0, 0.0),
        mass=80.0,
        radius=0.3,
        desired_speed=1.5,
        force_model=ForceModelKind.SOCIAL_FORCE,
        attention_model=AttentionKind.NONE,
        rng=DeterministicRng(agent_id + 1),
    )
    values.update(overrides)
    return Agent(**values)


@pytest.fixture
def make_agent():
    return build_agent
