from __future__ import annotations

import logging
import math
from collections import deque
from time import perf_counter
from typing import Any, Dict, List, Optional, Tuple

from pygame.math import Vector2

from .agent import Agent, AgentSpec, AttentionKind, ForceModelKind
from .config import SimulationConfig
from .errors import ConfigurationError
from .geometry import Attractor, Raycaster, SceneRaycaster, WallSegment
from .navigation import Navigator, StraightLineNavigator
from .rng import DeterministicRng, derive_stream_seed
from ..systems import boundary, forces, metrics as metrics_system
from ..systems.attention import AttentionEngine
from ..systems.flows import FlowSpawner
from ..systems.perception import Perception
from ..systems.telemetry import TelemetryRecorder, TelemetrySink
from ..types.metrics import TickMetrics
from ..types.snapshot import Snapshot, SnapshotMetadata, SnapshotScene
from ..types.telemetry import AgentRecord

logger = logging.getLogger("crowdsim.sim.world")

_AGENT_RNG_SALT = 0x5EED_A6E7_0000_0000
_FLOW_RNG_SALT = 0xF10E_5EED_0000_0000


def parse_force_model(value: str | ForceModelKind) -> ForceModelKind:
    try:
        return ForceModelKind(value)
    except ValueError as exc:
        raise ConfigurationError(f"unknown force model {value!r}") from exc


def parse_attention_model(value: str | AttentionKind) -> AttentionKind:
    try:
        return AttentionKind(value)
    except ValueError as exc:
        raise ConfigurationError(f"unknown attention model {value!r}") from exc


def _finite_or_none(value: float) -> Optional[float]:
    # JSON has no encoding for inf or nan.
    return value if math.isfinite(value) else None


def _validate_logistic_models(config: SimulationConfig) -> None:
    config.attention.start_model.validate("start_model")
    config.attention.stop_model.validate("stop_model")


class World:
    """Owns the agent, wall and attractor registries and advances them on a fixed clock."""

    def __init__(
        self,
        config: SimulationConfig,
        navigator: Optional[Navigator] = None,
        raycaster: Optional[Raycaster] = None,
    ) -> None:
        if config.time_step <= 0.0:
            raise ConfigurationError("time_step must be positive")
        self._config = config
        _validate_logistic_models(config)
        self._default_force = parse_force_model(config.population.force_model)
        self._default_attention = parse_attention_model(config.population.attention_model)
        self._navigator: Navigator = navigator if navigator is not None else StraightLineNavigator()

        self._agents: Dict[int, Agent] = {}
        self._walls: Dict[int, WallSegment] = {wall.id: wall for wall in self._build_walls()}
        self._attractors: Dict[int, Attractor] = {
            attractor.id: attractor for attractor in self._build_attractors()
        }
        self.raycaster: Raycaster = (
            raycaster
            if raycaster is not None
            else SceneRaycaster(self._walls.values(), self._attractors.values(), lambda: self._agents.values())
        )
        self._perception = Perception(config.cell_size, self._walls, self._attractors, self.raycaster)
        self._attention = AttentionEngine(
            config.attention,
            config.time_step,
            self._attractors,
            self.raycaster,
            gazing_locomotion=config.gazing_locomotion,
        )
        self._force_models = forces.build_force_models(config.locomotion, config.time_step)
        self._flows = [
            FlowSpawner(flow, DeterministicRng(derive_stream_seed(config.seed, _FLOW_RNG_SALT + index)), config.time_step)
            for index, flow in enumerate(config.flows)
        ]
        self._telemetry = TelemetryRecorder(config.telemetry_interval, config.telemetry_x_bounds)

        self._spawn_queue: List[Agent] = []
        self._removal_queue: List[int] = []
        self._in_tick = False
        self._tick = 0
        self._next_id = 0
        self._spawned = 0
        self._removed = 0
        self._metrics: TickMetrics | None = None
        self.accelerations: Dict[int, Vector2] = {}

    @property
    def config(self) -> SimulationConfig:
        return self._config

    @property
    def tick(self) -> int:
        return self._tick

    @property
    def sim_time(self) -> float:
        return self._tick * self._config.time_step

    @property
    def time_step(self) -> float:
        return self._config.time_step

    @property
    def agents(self) -> List[Agent]:
        return list(self._agents.values())

    @property
    def walls(self) -> Dict[int, WallSegment]:
        return self._walls

    @property
    def attractors(self) -> Dict[int, Attractor]:
        return self._attractors

    @property
    def metrics(self) -> TickMetrics | None:
        return self._metrics

    @property
    def records(self) -> List[AgentRecord]:
        return self._telemetry.records

    @property
    def attention(self) -> AttentionEngine:
        return self._attention

    @property
    def perception(self) -> Perception:
        return self._perception

    def agent(self, agent_id: int) -> Agent:
        return self._agents[agent_id]

    def force_model(self, kind: ForceModelKind) -> forces.ForceModel:
        return self._force_models[kind]

    def model_label(self) -> str:
        population = self._config.population
        return forces.model_label(
            self._default_force, self._default_attention, population.tilt_position, population.tilt_velocity
        )

    def add_sink(self, sink: TelemetrySink) -> None:
        self._telemetry.add_sink(sink)

    def remove_sink(self, sink: TelemetrySink) -> None:
        self._telemetry.remove_sink(sink)

    # Lifecycle

    def spawn(self, spec: AgentSpec) -> int:
        """Create an agent from ``spec`` and return its id.

        Invalid parameters raise ``ConfigurationError`` and nothing is created.
        Inside a tick the agent joins at the next tick boundary.
        """
        agent = self._build_agent(spec)
        if self._in_tick:
            self._spawn_queue.append(agent)
        else:
            self._insert(agent)
        return agent.id

    def remove(self, agent_id: int) -> None:
        if self._in_tick:
            self._removal_queue.append(agent_id)
            return
        self._discard(agent_id)

    def clear_all_agents(self) -> None:
        if self._in_tick:
            self._removal_queue.extend(self._agents.keys())
            return
        count = len(self._agents)
        self._agents.clear()
        self._spawn_queue.clear()
        self._removal_queue.clear()
        self.accelerations.clear()
        logger.info("Cleared %d agents at tick %d", count, self._tick)

    def reboot(self) -> None:
        """Back to tick zero with an empty roster, fresh flows and no recorded telemetry."""
        self._agents.clear()
        self._spawn_queue.clear()
        self._removal_queue.clear()
        self.accelerations.clear()
        self._tick = 0
        self._next_id = 0
        self._metrics = None
        for flow in self._flows:
            flow.reboot()
        self._telemetry.reset()
        logger.info("Rebooted experiment %s", self._config.experiment_name)

    # Queries

    def neighbors_of(self, agent: Agent) -> List[Agent]:
        return self._perception.neighbors_of(agent, self._agents)

    def query_walls(self, agent: Agent, position: Optional[Vector2] = None) -> List[Tuple[Vector2, WallSegment]]:
        return self._perception.query_walls(agent, position)

    def refresh_perception(self) -> None:
        self._perception.refresh(self._agents.values())

    # Clock

    def step(self) -> TickMetrics:
        start = perf_counter()
        config = self._config
        dt = config.time_step
        tick = self._tick
        self._spawned = 0
        self._removed = 0

        self._apply_queues()
        self._in_tick = True
        try:
            self._update_tactical(tick)
            for agent in self._agents.values():
                agent.position = Vector2(self._navigator.snap_to_ground(agent.position))

            self._perception.refresh(self._agents.values())
            agents = list(self._agents.values())
            for agent in agents:
                self._force_models[agent.force_model].prepare(agent)
            for agent in agents:
                self._attention.update(agent, tick)

            accelerations: Dict[int, Vector2] = {}
            for agent in agents:
                model = self._force_models[agent.force_model]
                acceleration = model.compute(self, agent)
                if model.speed_capped:
                    acceleration = forces.cap_acceleration(
                        agent.velocity, acceleration, dt, config.locomotion.speed_cap
                    )
                accelerations[agent.id] = acceleration

            for agent in agents:
                agent.velocity = agent.velocity + accelerations[agent.id] * dt
                agent.position = agent.position + agent.velocity * dt
            self.accelerations = accelerations

            for flow in self._flows:
                for spec in flow.step():
                    self.spawn(spec)
        finally:
            self._in_tick = False

        self._tick += 1
        self._telemetry.sample(self._agents.values(), tick, self.sim_time)

        elapsed_ms = (perf_counter() - start) * 1000.0
        metrics = metrics_system.create_metrics(
            tick,
            self._spawned,
            self._removed,
            self._perception.neighbor_checks,
            elapsed_ms,
            self._agents.values(),
        )
        self._metrics = metrics
        return metrics

    def snapshot(self) -> Snapshot:
        metrics = self._metrics
        if metrics is None:
            metrics = metrics_system.create_metrics(self._tick, 0, 0, 0, 0.0, self._agents.values())
        scene = SnapshotScene(
            walls=[
                {"id": wall.id, "x1": wall.start.x, "y1": wall.start.y, "x2": wall.end.x, "y2": wall.end.y}
                for wall in self._walls.values()
            ],
            attractors=[
                {
                    "id": attractor.id,
                    "name": attractor.name,
                    "left": [attractor.left.x, attractor.left.y],
                    "right": [attractor.right.x, attractor.right.y],
                }
                for attractor in self._attractors.values()
            ],
        )
        metadata = SnapshotMetadata(
            sim_dt=self._config.time_step,
            sim_time=self.sim_time,
            seed=self._config.seed,
            experiment_name=self._config.experiment_name,
            config_version=self._config.config_version,
            model=self.model_label(),
        )
        return Snapshot(
            tick=self._tick,
            metrics=metrics,
            agents=[self._agent_snapshot(agent) for agent in self._agents.values()],
            scene=scene,
            metadata=metadata,
        )

    # Internals

    def _build_walls(self) -> List[WallSegment]:
        surface = self._config.scene.surface
        walls = boundary.extract_boundary_edges(
            surface.vertices, surface.triangles, surface.areas, surface.navigable_area
        )
        for x1, y1, x2, y2 in self._config.scene.walls:
            walls.append(WallSegment(id=len(walls), start=Vector2(x1, y1), end=Vector2(x2, y2)))
        return walls

    def _build_attractors(self) -> List[Attractor]:
        return [
            Attractor(
                id=index,
                name=item.name,
                center=Vector2(item.center),
                left=Vector2(item.left),
                right=Vector2(item.right),
                attractiveness=item.attractiveness,
            )
            for index, item in enumerate(self._config.scene.attractors)
        ]

    def _build_agent(self, spec: AgentSpec) -> Agent:
        config = self._config
        population = config.population
        mass = population.mass if spec.mass is None else spec.mass
        radius = population.radius if spec.radius is None else spec.radius
        if mass <= 0.0:
            raise ConfigurationError(f"agent mass must be positive, got {mass}")
        if radius <= 0.0:
            raise ConfigurationError(f"agent radius must be positive, got {radius}")
        if spec.desired_speed is not None and spec.desired_speed < 0.0:
            raise ConfigurationError(f"desired speed must not be negative, got {spec.desired_speed}")
        force_model = self._default_force if spec.force_model is None else parse_force_model(spec.force_model)
        attention_model = (
            self._default_attention if spec.attention_model is None else parse_attention_model(spec.attention_model)
        )
        if attention_model == AttentionKind.LOGISTIC:
            # The config may have been edited since construction.
            _validate_logistic_models(config)
        tilt_position, tilt_velocity = forces.resolve_tilt(
            force_model,
            population.tilt_position if spec.tilt_position is None else spec.tilt_position,
            population.tilt_velocity if spec.tilt_velocity is None else spec.tilt_velocity,
        )

        agent_id = self._next_id
        self._next_id += 1
        rng = DeterministicRng(derive_stream_seed(config.seed, _AGENT_RNG_SALT + agent_id))
        if spec.desired_speed is None:
            desired_speed = max(0.0, rng.next_gaussian(population.speed_mean, population.speed_std))
        else:
            desired_speed = spec.desired_speed
        attention_config = config.attention
        perception_radius = config.perception_radius
        if force_model == ForceModelKind.VISION_UTILITY:
            perception_radius = forces.VisionUtilityModel.PERCEPTION_RADIUS

        position = Vector2(self._navigator.snap_to_ground(Vector2(spec.origin)))
        agent = Agent(
            id=agent_id,
            name=spec.name or f"agent-{agent_id}",
            position=position,
            velocity=Vector2(),
            destination=Vector2(spec.destination),
            mass=mass,
            radius=radius,
            desired_speed=desired_speed,
            force_model=force_model,
            attention_model=attention_model,
            rng=rng,
            origin_label=spec.origin_label,
            destination_label=spec.destination_label,
            perception_radius=perception_radius,
            tilt_position=tilt_position,
            tilt_velocity=tilt_velocity,
            wall_force_weight=rng.next_float(),
            ideal_angular_speed=rng.next_truncated_gaussian(
                attention_config.mean_ideal_angular_speed, attention_config.std_ideal_angular_speed, 0.0
            ),
        )
        agent.attention.neutral_speed = desired_speed
        for attractor_id in self._attractors:
            agent.preferences[attractor_id] = rng.next_truncated_gaussian(
                attention_config.preference_mean, attention_config.preference_std, 0.0
            )
        agent.path = deque(self._navigator.get_path(agent.position, agent.destination))
        return agent

    def _insert(self, agent: Agent) -> None:
        self._agents[agent.id] = agent
        self._spawned += 1
        logger.debug("Spawned agent %d (%s) at %s", agent.id, agent.name, agent.position)

    def _discard(self, agent_id: int) -> None:
        agent = self._agents.pop(agent_id, None)
        if agent is None:
            return
        agent.active = False
        self.accelerations.pop(agent_id, None)
        self._removed += 1
        logger.debug("Removed agent %d (%s)", agent_id, agent.name)

    def _apply_queues(self) -> None:
        removals, self._removal_queue = self._removal_queue, []
        for agent_id in removals:
            self._discard(agent_id)
        spawns, self._spawn_queue = self._spawn_queue, []
        for agent in spawns:
            self._insert(agent)

    def _update_tactical(self, tick: int) -> None:
        config = self._config
        refresh = max(1, int(config.path_refresh_ticks))
        reach = config.waypoint_reach_distance
        exhausted: List[int] = []
        for agent in self._agents.values():
            if agent.path_timer % refresh == 0:
                agent.path = deque(self._navigator.get_path(agent.position, agent.destination))
            agent.path_timer += 1
            if agent.path and agent.position.distance_to(agent.path[0]) < reach:
                agent.path.popleft()
                if not agent.path:
                    exhausted.append(agent.id)
        for agent_id in exhausted:
            self._discard(agent_id)

    def _agent_snapshot(self, agent: Agent) -> Dict[str, Any]:
        state = agent.attention
        return {
            "id": agent.id,
            "name": agent.name,
            "x": agent.position.x,
            "y": agent.position.y,
            "vx": agent.velocity.x,
            "vy": agent.velocity.y,
            "speed": agent.velocity.length(),
            "desired_speed": agent.desired_speed,
            "radius": agent.radius,
            "force_model": agent.force_model.value,
            "attention_model": agent.attention_model.value,
            "is_attracted": state.is_attracted,
            "noticed_attractor": state.noticed_attractor_id,
            "cumulative_gaze": state.cumulative_gaze,
            "attention": {
                "neutral_speed": state.neutral_speed,
                "max_score": _finite_or_none(state.max_score),
                "visibility": state.visibility,
                "angle": _finite_or_none(state.angle_to_attractor),
                "distance": _finite_or_none(state.distance_to_attractor),
                "sweep_rate": _finite_or_none(state.angular_sweep_rate),
            },
        }
