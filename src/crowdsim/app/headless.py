from __future__ import annotations

import argparse
import csv
import json
import logging
import math
from pathlib import Path
from typing import Optional

from ..sim.core.config import SimulationConfig
from ..sim.core.world import World
from ..sim.scenes import corridor_flows, corridor_scene
from ..sim.systems.telemetry import write_records_csv

logger = logging.getLogger("crowdsim.app.headless")

_METRICS_HEADER = [
    "tick",
    "sim_time",
    "population",
    "spawned",
    "removed",
    "attracted",
    "attracted_ratio",
    "neighbor_checks",
    "neighbor_checks_per_agent",
    "avg_speed",
    "tick_ms",
]


def _format_row(world: World, metrics: object, tick_ms: float) -> list[object]:
    population = metrics.population
    attracted_ratio = metrics.attracted / population if population > 0 else 0.0
    checks_per_agent = metrics.neighbor_checks / population if population > 0 else 0.0
    return [
        metrics.tick,
        f"{(metrics.tick + 1) * world.time_step:.3f}",
        population,
        metrics.spawned,
        metrics.removed,
        metrics.attracted,
        f"{attracted_ratio:.4f}",
        metrics.neighbor_checks,
        f"{checks_per_agent:.4f}",
        f"{metrics.average_speed:.4f}",
        f"{tick_ms:.3f}",
    ]


def _percentile(sorted_values: list[float], percentile: float) -> float:
    if not sorted_values:
        return 0.0
    pos = (len(sorted_values) - 1) * percentile
    low = int(math.floor(pos))
    high = int(math.ceil(pos))
    weight = pos - low
    return float(sorted_values[low] + (sorted_values[high] - sorted_values[low]) * weight)


def _summary_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}
    ordered = sorted(values)
    return {
        "min": float(ordered[0]),
        "max": float(ordered[-1]),
        "avg": float(sum(values) / len(values)),
        "p50": _percentile(ordered, 0.50),
        "p95": _percentile(ordered, 0.95),
    }


def load_run_config(config_path: Optional[Path], seed: Optional[int]) -> SimulationConfig:
    """YAML config when given, otherwise the reference corridor with two opposing flows."""
    if config_path is not None:
        config = SimulationConfig.from_yaml(config_path)
    else:
        config = SimulationConfig(scene=corridor_scene(), flows=corridor_flows())
    if seed is not None:
        config.seed = seed
    return config


def run_headless(
    steps: Optional[int],
    seed: Optional[int],
    log_path: Optional[Path],
    config_path: Optional[Path] = None,
    records_dir: Optional[Path] = None,
    summary_path: Optional[Path] = None,
    deterministic_log: bool = False,
) -> World:
    config = load_run_config(config_path, seed)
    world = World(config)
    if steps is None:
        steps = max(0, int(round(config.duration_seconds / config.time_step)))
    logger.info("Running %s (%s) for %d ticks, seed %d", config.experiment_name, world.model_label(), steps, config.seed)

    writer = None
    csv_file = None
    if log_path:
        csv_file = Path(log_path).open("w", newline="")
        writer = csv.writer(csv_file)
        writer.writerow(_METRICS_HEADER)

    tick_ms_series: list[float] = []
    population_series: list[float] = []
    attracted_series: list[float] = []
    spawned_total = 0
    removed_total = 0
    try:
        for _ in range(steps):
            metrics = world.step()
            tick_ms = 0.0 if deterministic_log else metrics.tick_duration_ms
            tick_ms_series.append(tick_ms)
            population_series.append(float(metrics.population))
            attracted_series.append(float(metrics.attracted))
            spawned_total += metrics.spawned
            removed_total += metrics.removed
            if writer:
                writer.writerow(_format_row(world, metrics, tick_ms))
    finally:
        if csv_file:
            csv_file.close()

    records_path = None
    if records_dir is not None:
        records_dir = Path(records_dir)
        records_dir.mkdir(parents=True, exist_ok=True)
        records_path = records_dir / f"{world.model_label()}-{config.experiment_name}.csv"
        write_records_csv(world.records, records_path)
        logger.info("Wrote %d agent records to %s", len(world.records), records_path)

    if summary_path:
        summary = {
            "steps": steps,
            "seed": config.seed,
            "experiment": config.experiment_name,
            "model": world.model_label(),
            "deterministic_log": deterministic_log,
            "spawned": spawned_total,
            "removed": removed_total,
            "records": len(world.records),
            "records_path": str(records_path) if records_path else None,
            "tick_ms": _summary_stats(tick_ms_series),
            "population": _summary_stats(population_series),
            "attracted": _summary_stats(attracted_series),
        }
        Path(summary_path).write_text(json.dumps(summary, indent=2))
    return world


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Headless pedestrian crowd simulation")
    parser.add_argument("--steps", type=int, default=None, help="Ticks to run (defaults to the configured duration).")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--config", type=Path, default=None, help="YAML simulation config.")
    parser.add_argument("--log", type=Path, default=None, help="CSV file to write per-tick metrics")
    parser.add_argument(
        "--records-dir",
        type=Path,
        default=None,
        help="Directory for the sampled agent records, named <model>-<experiment>.csv.",
    )
    parser.add_argument(
        "--summary",
        type=Path,
        default=None,
        help="Optional JSON file to write summary stats for the run.",
    )
    parser.add_argument(
        "--deterministic-log",
        action="store_true",
        help="Write deterministic CSV (tick_ms is forced to 0.000 so identical seeds match).",
    )
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    run_headless(
        args.steps,
        args.seed,
        args.log,
        config_path=args.config,
        records_dir=args.records_dir,
        summary_path=args.summary,
        deterministic_log=args.deterministic_log,
    )


if __name__ == "__main__":
    main()
