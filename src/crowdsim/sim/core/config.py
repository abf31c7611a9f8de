from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import yaml

from .errors import ConfigurationError

_FEATURE_COUNT = 5


@dataclass
class LocomotionConfig:
    relaxation_time: float = 0.5
    speed_cap: float = 2.5
    agent_force_weight: float = 1.52
    agent_force_discount: float = 0.19
    wall_force_weight: float = 1.0
    wall_force_discount: float = 0.2
    asymmetry_factor: float = 0.29
    body_collision_force_weight: float = 5000.0
    max_collision_time: float = 4.0
    velocity_bias: float = -0.16
    position_bias: float = 0.16
    noise_scale: float = 10.0
    noise_interval_seconds: float = 0.9


@dataclass
class VisionConfig:
    ray_count: int = 40
    half_angle_deg: float = 70.0
    range: float = 10.0


@dataclass
class LogisticConfig:
    means: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0)
    stds: tuple[float, ...] = (1.0, 1.0, 1.0, 1.0, 1.0)
    weights: tuple[float, ...] = (0.0, 0.0, 0.0, 0.0, 0.0)
    intercept: float = 0.0

    def validate(self, label: str) -> None:
        for name in ("means", "stds", "weights"):
            values = getattr(self, name)
            if len(values) != _FEATURE_COUNT:
                raise ConfigurationError(
                    f"{label}.{name} needs {_FEATURE_COUNT} values, got {len(values)}"
                )
        if any(std <= 0.0 for std in self.stds):
            raise ConfigurationError(f"{label}.stds must be positive")


def _default_start_model() -> LogisticConfig:
    return LogisticConfig(
        means=(1.795, 0.981, 3.534, 1.149, 1.636),
        stds=(0.559, 0.432, 1.873, 1.005, 0.691),
        weights=(-1.2, 0.9, -0.3, 0.2, 0.1),
        intercept=-3.0,
    )


def _default_stop_model() -> LogisticConfig:
    return LogisticConfig(
        means=(1.353, 1.366, 2.084, 2.014, 1.810),
        stds=(0.503, 0.383, 1.469, 1.053, 0.775),
        weights=(0.8, -0.6, 0.2, -0.1, 0.0),
        intercept=-2.5,
    )


@dataclass
class AttentionConfig:
    refresh_interval_seconds: float = 0.2
    mean_ideal_angular_speed: float = 0.3
    std_ideal_angular_speed: float = 0.1
    min_coverage_angle: float = 0.29
    demand_threshold: float = 1.0
    distance_weight: float = 0.5
    preference_mean: float = 1.0
    preference_std: float = 3.0
    vision: VisionConfig = field(default_factory=VisionConfig)
    start_model: LogisticConfig = field(default_factory=_default_start_model)
    stop_model: LogisticConfig = field(default_factory=_default_stop_model)


@dataclass
class PopulationConfig:
    speed_mean: float = 1.5
    speed_std: float = 0.3
    mass: float = 80.0
    radius: float = 0.3
    force_model: str = "sfm"
    attention_model: str = "none"
    tilt_position: bool = False
    tilt_velocity: bool = False


@dataclass
class FlowConfig:
    name: str = "flow"
    origin: tuple[float, float] = (0.0, 0.0)
    destination: tuple[float, float] = (0.0, 0.0)
    destination_label: str = ""
    spawn_interval: float = 10.0
    corridor_width: float = 5.4
    flip: bool = True
    factor_dist_to_wall: float = 10.0
    factor_flow_width: float = 0.3
    factor_max_density: float = 0.3
    factor_wrong_side: float = 0.2
    neutral_speed_weight: float = -5e-5
    neutral_speed_intercept: float = 130.0
    neutral_speed_std: float = 20.0


@dataclass
class SurfaceConfig:
    vertices: List[tuple[float, float, float]] = field(default_factory=list)
    triangles: List[int] = field(default_factory=list)
    areas: List[int] = field(default_factory=list)
    navigable_area: int = 0


@dataclass
class AttractorConfig:
    name: str = "attractor"
    center: tuple[float, float] = (0.0, 0.0)
    left: tuple[float, float] = (0.0, 0.0)
    right: tuple[float, float] = (0.0, 0.0)
    attractiveness: float = 6.0


@dataclass
class SceneConfig:
    surface: SurfaceConfig = field(default_factory=SurfaceConfig)
    walls: List[tuple[float, float, float, float]] = field(default_factory=list)
    attractors: List[AttractorConfig] = field(default_factory=list)


@dataclass
class SimulationConfig:
    time_step: float = 1.0 / 50.0
    duration_seconds: float = 120.0
    seed: int = 42
    experiment_name: str = "default"
    perception_radius: float = 3.0
    gazing_locomotion: bool = True
    path_refresh_ticks: int = 25
    waypoint_reach_distance: float = 2.0
    telemetry_interval: int = 10
    telemetry_x_bounds: tuple[float, float] = (-50.0, 50.0)
    cell_size: float = 2.5
    config_version: str = "v1"
    locomotion: LocomotionConfig = field(default_factory=LocomotionConfig)
    attention: AttentionConfig = field(default_factory=AttentionConfig)
    population: PopulationConfig = field(default_factory=PopulationConfig)
    flows: List[FlowConfig] = field(default_factory=list)
    scene: SceneConfig = field(default_factory=SceneConfig)

    @staticmethod
    def from_yaml(path: Path) -> "SimulationConfig":
        data = yaml.safe_load(Path(path).read_text())
        return load_config(data or {})


def _pair(value: tuple[float, float] | list[float] | None, default: tuple[float, float]) -> tuple[float, float]:
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return (float(value[0]), float(value[1]))
    return default


def _floats(value: object, label: str) -> tuple[float, ...]:
    if not isinstance(value, (tuple, list)):
        raise ConfigurationError(f"{label} must be a list of numbers")
    try:
        return tuple(float(item) for item in value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{label} must be a list of numbers") from exc


def _load_logistic(raw: dict, default: LogisticConfig, label: str) -> LogisticConfig:
    model = LogisticConfig(
        means=_floats(raw.get("means", default.means), f"{label}.means"),
        stds=_floats(raw.get("stds", default.stds), f"{label}.stds"),
        weights=_floats(raw.get("weights", default.weights), f"{label}.weights"),
        intercept=float(raw.get("intercept", default.intercept)),
    )
    model.validate(label)
    return model


def _load_flow(raw: dict) -> FlowConfig:
    default = FlowConfig()
    values = {k: v for k, v in raw.items() if k not in {"origin", "destination"}}
    return FlowConfig(
        origin=_pair(raw.get("origin"), default.origin),
        destination=_pair(raw.get("destination"), default.destination),
        **values,
    )


def _load_scene(raw: dict) -> SceneConfig:
    surface_raw = raw.get("surface", {})
    surface = SurfaceConfig(
        vertices=[tuple(float(c) for c in vertex) for vertex in surface_raw.get("vertices", [])],
        triangles=[int(i) for i in surface_raw.get("triangles", [])],
        areas=[int(a) for a in surface_raw.get("areas", [])],
        navigable_area=int(surface_raw.get("navigable_area", 0)),
    )
    walls = []
    for wall in raw.get("walls", []):
        if len(wall) != 4:
            raise ConfigurationError(f"wall needs x1, y1, x2, y2; got {wall!r}")
        walls.append(tuple(float(c) for c in wall))
    attractors = []
    for attractor in raw.get("attractors", []):
        default = AttractorConfig()
        attractors.append(
            AttractorConfig(
                name=str(attractor.get("name", default.name)),
                center=_pair(attractor.get("center"), default.center),
                left=_pair(attractor.get("left"), default.left),
                right=_pair(attractor.get("right"), default.right),
                attractiveness=float(attractor.get("attractiveness", default.attractiveness)),
            )
        )
    return SceneConfig(surface=surface, walls=walls, attractors=attractors)


def load_config(raw: dict) -> SimulationConfig:
    locomotion = LocomotionConfig(**raw.get("locomotion", {}))

    attention_raw = dict(raw.get("attention", {}))
    vision = VisionConfig(**attention_raw.pop("vision", {}))
    start_model = _load_logistic(attention_raw.pop("start_model", {}), _default_start_model(), "start_model")
    stop_model = _load_logistic(attention_raw.pop("stop_model", {}), _default_stop_model(), "stop_model")
    attention = AttentionConfig(vision=vision, start_model=start_model, stop_model=stop_model, **attention_raw)

    population = PopulationConfig(**raw.get("population", {}))
    flows = [_load_flow(flow) for flow in raw.get("flows", [])]
    scene = _load_scene(raw.get("scene", {}))

    sim_values = {
        k: v
        for k, v in raw.items()
        if k not in {"locomotion", "attention", "population", "flows", "scene", "telemetry_x_bounds"}
    }
    default_bounds = SimulationConfig().telemetry_x_bounds
    return SimulationConfig(
        locomotion=locomotion,
        attention=attention,
        population=population,
        flows=flows,
        scene=scene,
        telemetry_x_bounds=_pair(raw.get("telemetry_x_bounds"), default_bounds),
        **sim_values,
    )
