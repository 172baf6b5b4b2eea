"""
Simulation diagnostics: per-interval metrics collection and run summary.

Produces two output files:

``run_diagnostics_N.csv``
    Timeseries, one row per recording interval: flood state, agent counts,
    substep load and memory.  Useful for spotting when the flood starts to
    catch evacuees or when the substep cap starts to bind.

``run_summary_N.json``
    Single-record structured summary of the complete run, designed for bulk
    storage across many runs so you can ask "how many agents got out?",
    "which target took the load?", "does a denser network evacuate faster?"

Usage (inside run.py)::

    monitor = SimulationMonitor(sim, output_dir, batch_number,
                                run_label=config.run_label, config=config)
    while ...:
        sim.tick(frame_dt)
        if monitor.due():
            rec = monitor.record(wall_time_s=elapsed, mem_mb=mem)
            logger.info('... | %s', monitor.format_log_suffix(rec))
    monitor.finalize()
"""

import csv
import importlib.metadata
import json
import logging
import os
import platform
import time
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

#: Schema version for the run_summary JSON; bump when fields are added/removed.
SUMMARY_SCHEMA_VERSION = "1"

#: Substep load (substeps per frame over the cap) above which a run is flagged as throttled.
THROTTLE_FRACTION = 0.9


class SimulationMonitor:
    """
    Metrics collection for a running ``Simulation``.

    Parameters
    ----------
    simulation : flood_evac.simulation.Simulation
        The simulation being observed.
    output_dir : str
        Directory for output files.
    batch_number : int
        Used to name output files (e.g. ``run_diagnostics_1.csv``).
    run_label : str, optional
        Written to the JSON summary.
    config : SimulationConfig, optional
        Fields used: ``name``, ``duration``, ``record_interval``, ``time_multiplier``,
        ``agent_count``, ``max_substeps``.
    """

    CSV_FIELDS = [
        "sim_time_s",
        "wall_time_s",
        "substeps",
        "agents_active",
        "agents_idle",
        "agents_arrived",
        "agents_flooded",
        "agents_failed",
        "wet_cells",
        "wet_fraction",
        "volume_m3",
        "max_depth_m",
        "mean_speed_ms",
        "mem_mb",
    ]

    def __init__(self, simulation, output_dir, batch_number, run_label=None, config=None):
        self.simulation = simulation
        self.output_dir = output_dir
        self.batch_number = int(batch_number)
        self.run_label = run_label or ""
        self.config = config if config is not None else simulation.config
        self.record_interval = float(self.config.record_interval)

        self._csv_path = os.path.join(output_dir, f"run_diagnostics_{batch_number}.csv")
        self._json_path = os.path.join(output_dir, f"run_summary_{batch_number}.json")
        self._records = []
        self._record_ticks = []
        self._prev_substeps = self._substeps_taken()
        self._prev_ticks = simulation.ticks
        self._next_record_at = simulation.elapsed + self.record_interval

        self._start_wall_time = time.time()
        self._started_at = datetime.now(tz=timezone.utc)

        self.network_stats = self._compute_network_stats()
        logger.info("Network diagnostics: %s", self.network_stats["summary"])

        os.makedirs(output_dir, exist_ok=True)
        self._csv_file = open(self._csv_path, "w", newline="")
        self._writer = csv.DictWriter(self._csv_file, fieldnames=self.CSV_FIELDS)
        self._csv_file.write(f"# {self.network_stats['summary']}\n")
        self._writer.writeheader()
        self._csv_file.flush()

    def _substeps_taken(self) -> int:
        flood = self.simulation.flood
        return flood.substeps_taken if flood is not None else 0

    # ------------------------------------------------------------------
    # Network statistics (one-time at startup)
    # ------------------------------------------------------------------

    def _compute_network_stats(self) -> dict:
        graph = self.simulation.graph
        weights = [weight for _, _, weight in graph.edges()]
        n_nodes = len(graph)
        n_edges = len(weights)
        total_km = sum(weights) / 2000.0
        return {
            "n_nodes": n_nodes,
            "n_edges": n_edges,
            "road_km": round(total_km, 2),
            "n_targets": len(self.simulation.targets),
            "summary": (
                f"{n_nodes:,} nodes | {n_edges:,} directed edges | "
                f"{total_km:.1f} km of road | {len(self.simulation.targets)} targets"
            ),
        }

    # ------------------------------------------------------------------
    # Per-interval recording
    # ------------------------------------------------------------------

    def due(self) -> bool:
        """True once the simulation clock has passed the next recording time."""
        return self.simulation.elapsed >= self._next_record_at

    def record(self, wall_time_s: float, mem_mb: float = 0.0) -> dict:
        """
        Record the current state.

        Parameters
        ----------
        wall_time_s : float
            Wall-clock seconds since the run started.
        mem_mb : float
            Current process memory in MB (optional; pass 0 to skip).

        Returns
        -------
        dict
            The recorded metrics row (also written to the CSV).
        """
        sim = self.simulation
        counts = sim.counts

        substeps_now = self._substeps_taken()
        substeps = substeps_now - self._prev_substeps
        self._prev_substeps = substeps_now
        ticks = sim.ticks - self._prev_ticks
        self._prev_ticks = sim.ticks

        flood = sim.flood
        if flood is not None:
            wet_cells = flood.wet_cells()
            wet_fraction = wet_cells / flood.water.size
            volume_m3 = flood.total_volume()
            max_depth_m = flood.max_depth()
        else:
            wet_cells = 0
            wet_fraction = volume_m3 = max_depth_m = 0.0

        rec = {
            "sim_time_s": round(sim.elapsed, 1),
            "wall_time_s": round(wall_time_s, 1),
            "substeps": substeps,
            "agents_active": counts.active,
            "agents_idle": counts.idle,
            "agents_arrived": counts.arrived,
            "agents_flooded": counts.flooded,
            "agents_failed": counts.failed,
            "wet_cells": wet_cells,
            "wet_fraction": round(wet_fraction, 4),
            "volume_m3": round(volume_m3, 1),
            "max_depth_m": round(max_depth_m, 3),
            "mean_speed_ms": round(sim.mean_speed(), 2),
            "mem_mb": round(mem_mb, 1),
        }
        self._records.append(rec)
        self._record_ticks.append(ticks)
        self._writer.writerow(rec)
        self._csv_file.flush()

        while self._next_record_at <= sim.elapsed:
            self._next_record_at += self.record_interval
        return rec

    # ------------------------------------------------------------------
    # Formatting helpers
    # ------------------------------------------------------------------

    def format_log_suffix(self, rec: dict) -> str:
        """
        Return a compact string to append to the main progress log line.

        Example output::

            active=120 idle=4 arrived=71 flooded=5 wet=12% depth=1.42m
        """
        return (
            f"active={rec['agents_active']} "
            f"idle={rec['agents_idle']} "
            f"arrived={rec['agents_arrived']} "
            f"flooded={rec['agents_flooded']} "
            f"wet={rec['wet_fraction'] * 100:.0f}% "
            f"depth={rec['max_depth_m']:.2f}m"
        )

    # ------------------------------------------------------------------
    # Run summary (JSON)
    # ------------------------------------------------------------------

    @property
    def csv_path(self) -> str:
        return self._csv_path

    @property
    def summary_path(self) -> str:
        return self._json_path

    def _outcome(self) -> str:
        sim = self.simulation
        if sim.is_finished:
            return "completed"
        if sim.elapsed >= 0.99 * self.config.duration:
            return "timed_out"
        return "incomplete"

    def _model_section(self, total_wall_s: float) -> dict:
        sim = self.simulation
        cap = self.config.max_substeps
        total_substeps = sum(r["substeps"] for r in self._records)
        per_tick = total_substeps / max(1, sum(self._record_ticks))
        return {
            "duration_s": self.config.duration,
            "final_sim_time_s": round(sim.elapsed, 1),
            "time_multiplier": sim.time_multiplier,
            "ticks": sim.ticks,
            "n_records": len(self._records),
            "sim_per_wall_ratio": round(sim.elapsed / total_wall_s, 3) if total_wall_s > 0 else 0.0,
            "total_substeps": total_substeps,
            "mean_substeps_per_tick": round(per_tick, 2),
            "substep_cap": cap,
            "throttled": per_tick >= THROTTLE_FRACTION * cap,
            "peak_mem_mb": max((r["mem_mb"] for r in self._records), default=0.0),
        }

    def _flood_section(self) -> dict:
        last = self._records[-1] if self._records else {}
        return {
            "final_wet_fraction": last.get("wet_fraction", 0.0),
            "final_volume_m3": last.get("volume_m3", 0.0),
            "max_depth_m": max((r["max_depth_m"] for r in self._records), default=0.0),
            "first_agent_flooded_at_s": next(
                (r["sim_time_s"] for r in self._records if r["agents_flooded"] > 0), None
            ),
        }

    def _evacuation_section(self) -> dict:
        counts = self.simulation.counts
        section = {field: getattr(counts, field) for field in ("arrived", "idle", "active", "flooded", "failed")}
        section["agents"] = counts.total
        section["arrived_fraction"] = round(counts.arrived / counts.total, 4) if counts.total else 0.0
        section["targets"] = [
            {"x": round(float(node.position[0]), 1), "y": round(float(node.position[1]), 1), "arrived": count}
            for node, count in self.simulation.arrivals_per_target.items()
        ]
        return section

    def build_summary(self) -> dict:
        """The run summary as written to ``run_summary_N.json``."""
        now = datetime.now(tz=timezone.utc)
        total_wall_s = time.time() - self._start_wall_time
        return {
            "schema_version": SUMMARY_SCHEMA_VERSION,
            "run": {
                "run_label": self.run_label,
                "name": self.config.name or "",
                "batch_number": self.batch_number,
                "started_at": self._started_at.isoformat(),
                "finished_at": now.isoformat(),
                "total_wall_time_s": round(total_wall_s, 1),
                "outcome": self._outcome(),
            },
            "model": self._model_section(total_wall_s),
            "network": {k: v for k, v in self.network_stats.items() if k != "summary"},
            "flood": self._flood_section(),
            "evacuation": self._evacuation_section(),
            "environment": collect_environment(),
        }

    def finalize(self) -> None:
        """Close the CSV and write the JSON summary."""
        self._csv_file.close()
        summary = self.build_summary()
        with open(self._json_path, "w") as f:
            json.dump(summary, f, indent=2)
        evac = summary["evacuation"]
        logger.info(
            "Run %s: %d/%d arrived, %d flooded, %d failed, max depth %.2fm",
            summary["run"]["outcome"], evac["arrived"], evac["agents"],
            evac["flooded"], evac["failed"], summary["flood"]["max_depth_m"],
        )
        logger.info("Diagnostics in %s, summary in %s", self._csv_path, self._json_path)


def collect_environment() -> dict:
    """Host and package versions for the run summary; hardware counts need psutil."""
    env = {
        "hostname": platform.node(),
        "os": f"{platform.system()}-{platform.release()}-{platform.machine()}",
        "python_version": platform.python_version(),
        "cpu_model": platform.processor() or "unknown",
    }
    for dist in ("flood-evac", "numpy", "pydantic"):
        try:
            version = importlib.metadata.version(dist)
        except importlib.metadata.PackageNotFoundError:
            version = "unknown"
        env[f"{dist.replace('-', '_')}_version"] = version
    try:
        import psutil
    except ImportError:
        logger.debug("psutil not installed; hardware details omitted")
        env.update(cpu_count_logical=None, cpu_count_physical=None, total_ram_gb=None)
    else:
        env.update(
            cpu_count_logical=psutil.cpu_count(logical=True),
            cpu_count_physical=psutil.cpu_count(logical=False),
            total_ram_gb=round(psutil.virtual_memory().total / 1024 ** 3, 2),
        )
    return env
