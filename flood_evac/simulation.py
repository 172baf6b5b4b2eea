"""
Simulation orchestrator: owns the targets, the agents and the tick loop.

Usage::

    sim = Simulation(graph, flood, config)
    sim.add_target(graph.nearest_node((250.0, -40.0, 0.0)))
    sim.spawn_agents(200)
    sim.start()
    while not sim.is_finished:
        counts = sim.tick(frame_dt)

Each tick: clamp the frame time, install any finished route table, advance
the flood, rebuild the spatial index, update every active agent in list
order, then recount.  Agents see the live state of agents updated earlier in
the same tick.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from flood_evac import defaults
from flood_evac.agent import Agent, AgentState
from flood_evac.callbacks import NullCallback, SimulationCallback
from flood_evac.config import SimulationConfig
from flood_evac.flood import FloodField
from flood_evac.graph import Graph, Node, RouteTable
from flood_evac.population import SpawnDistribution
from flood_evac.spatial import SpatialGrid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationCounts:
    """Agent tallies after a tick.  ``active`` excludes idle, arrived and failed agents."""

    total: int = 0
    active: int = 0
    idle: int = 0
    arrived: int = 0
    flooded: int = 0
    failed: int = 0


class RoutePlanner:
    """
    Computes route tables for a graph, inline or on one worker thread.

    In background mode ``request()`` returns immediately and the tick loop
    calls ``collect()`` to install the finished table.  A newer request
    supersedes any pending one.  A table whose graph revision has moved on is
    rejected by ``Graph.install_routes`` and the same targets are requested
    again.
    """

    def __init__(self, graph: Graph, background: bool = False):
        self.graph = graph
        self.background = background
        self._executor: Optional[ThreadPoolExecutor] = None
        self._pending: Optional[Future] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def request(self, targets: Sequence[Node]) -> Optional[RouteTable]:
        """Ask for routes toward *targets*.  Returns the installed table when synchronous."""
        targets = list(targets)
        if not self.background:
            return self.graph.compute_shortest_path(targets)
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="flood_evac-routes")
        if self._pending is not None and self._pending.cancel():
            logger.debug("Discarded superseded route request")
        self._pending = self._executor.submit(self.graph.build_route_table, targets)
        return None

    def collect(self) -> Optional[RouteTable]:
        """
        Install the pending table if it has finished; worker exceptions propagate.

        Returns None while nothing new is installed, including when a stale
        table was discarded and its targets re-requested.
        """
        future = self._pending
        if future is None or not future.done():
            return None
        self._pending = None
        if future.cancelled():
            return None
        table = future.result()
        if self.graph.install_routes(table):
            return table
        # The graph changed while the table was built: start over on the new graph.
        self.request([target for target in table.targets if target in self.graph])
        return None

    def wait(self, timeout: Optional[float] = None) -> Optional[RouteTable]:
        """Block until the pending request finishes, then collect it."""
        if self._pending is not None:
            wait_futures([self._pending], timeout=timeout)
        return self.collect()

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self._pending = None


class Simulation:
    """
    Parameters
    ----------
    graph : Graph
        Pruned road network.
    flood : FloodField or None
        Flood model; ``None`` runs the evacuation on dry land.
    config : SimulationConfig, optional
    callback : SimulationCallback, optional
    rng : numpy.random.Generator, optional
        Defaults to a generator seeded from ``config.seed``.
    """

    def __init__(
        self,
        graph: Graph,
        flood: Optional[FloodField] = None,
        config: Optional[SimulationConfig] = None,
        callback: Optional[SimulationCallback] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        self.graph = graph
        self.flood = flood
        self.config = config or SimulationConfig()
        self.callback = callback or NullCallback()
        self.rng = rng if rng is not None else np.random.default_rng(self.config.seed)

        self.agents: List[Agent] = []
        self.arrivals_per_target: Dict[Node, int] = {}
        self._targets: List[Node] = []
        self.planner = RoutePlanner(graph, background=self.config.background_routing)
        self.spatial_index = SpatialGrid(2.0 * self.config.safe_distance)

        self.running = False
        self._time_multiplier = self.config.time_multiplier
        self.elapsed = 0.0
        self.ticks = 0
        self.last_substeps = 0
        self.counts = SimulationCounts()

    def __repr__(self) -> str:
        return (
            f"Simulation(agents={len(self.agents)}, targets={len(self._targets)}, "
            f"elapsed={self.elapsed:.1f}s, running={self.running})"
        )

    # ------------------------------------------------------------------
    # Targets and routes
    # ------------------------------------------------------------------

    @property
    def targets(self) -> Tuple[Node, ...]:
        return tuple(self._targets)

    @property
    def routes(self) -> Optional[RouteTable]:
        return self.graph.routes

    def add_target(self, node: Node) -> None:
        if node not in self.graph:
            raise ValueError(f"Target {node!r} is not a node of the road graph")
        if node in self._targets:
            return
        self._targets.append(node)
        self.arrivals_per_target.setdefault(node, 0)
        logger.info("Added target %r (%d targets)", node, len(self._targets))
        self._reroute()

    def remove_target(self, node: Node) -> bool:
        if node not in self._targets:
            return False
        self._targets.remove(node)
        logger.info("Removed target %r (%d targets)", node, len(self._targets))
        self._reroute()
        return True

    def _reroute(self) -> None:
        self.planner.request(self._targets)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def spawn_agents(
        self,
        count: Optional[int] = None,
        positions: Optional[Iterable] = None,
        distribution: Optional[SpawnDistribution] = None,
        locate: Optional[Callable[[float, float], Sequence[float]]] = None,
    ) -> List[Agent]:
        """
        Create agents, each heading first for the node nearest its spawn point.

        Spawn points come from *positions* (local ``(x, y, z)``, used as is),
        else from *distribution* draws converted by ``locate(lon, lat)``, else
        from random road nodes.  Drawn points are jittered horizontally by up
        to ``spawn_jitter / 2`` metres.
        """
        if len(self.graph) == 0:
            logger.warning("No navigable roads: no agents spawned")
            self.callback.on_status("no navigable roads")
            return []

        if positions is not None:
            points = [np.asarray(p, dtype=float) for p in positions]
        else:
            count = self.config.agent_count if count is None else count
            points = [self._jitter(self._draw_position(distribution, locate)) for _ in range(count)]

        spawned = []
        agent_kwargs = self.config.agent_kwargs()
        for position in points:
            agent = Agent(
                position,
                self.graph.nearest_node(position),
                agent_id=len(self.agents),
                rng=self.rng,
                **agent_kwargs,
            )
            self.agents.append(agent)
            spawned.append(agent)

        self._recount()
        logger.info("Spawned %d agents (%d total)", len(spawned), len(self.agents))
        self.callback.on_metric("agents_spawned", len(spawned))
        return spawned

    def _draw_position(self, distribution, locate) -> np.ndarray:
        if distribution is not None:
            if locate is None:
                raise ValueError("spawn_agents needs locate(lon, lat) to place distribution draws")
            lon, lat = distribution.sample(self.rng)
            return np.asarray(locate(lon, lat), dtype=float)
        return self.graph.random_node(self.rng).position.copy()

    def _jitter(self, position: np.ndarray) -> np.ndarray:
        offset = (self.rng.random(2) - 0.5) * self.config.spawn_jitter
        position[:2] += offset
        return position

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    @property
    def time_multiplier(self) -> float:
        return self._time_multiplier

    @time_multiplier.setter
    def time_multiplier(self, value: float) -> None:
        if value <= 0:
            raise ValueError(f"time_multiplier must be > 0, got {value}")
        self._time_multiplier = float(value)

    def start(self) -> None:
        if not self._targets:
            logger.warning("Starting without targets: agents will idle at their first node")
        self.running = True
        self.callback.on_status("running")

    def pause(self) -> None:
        self.running = False
        self.callback.on_status("paused")

    @property
    def is_finished(self) -> bool:
        return bool(self.agents) and not any(agent.active for agent in self.agents)

    def tick(self, dt: float) -> SimulationCounts:
        """Advance by one frame of *dt* wall seconds (scaled by ``time_multiplier``)."""
        if dt < 0:
            raise ValueError(f"Frame dt must be >= 0, got {dt}")
        if not self.running:
            return self.counts
        if dt > defaults.MAX_FRAME_DT_S:
            logger.debug("Frame dt %.3fs treated as a stall", dt)
            dt = defaults.STALL_FRAME_DT_S

        self.planner.collect()
        sim_dt = dt * self._time_multiplier
        if self.flood is not None:
            self.last_substeps = self.flood.update(dt, self._time_multiplier)

        active = [agent for agent in self.agents if agent.active]
        self.spatial_index.rebuild(active)
        routes = self.graph.routes
        # Buckets hold start-of-tick positions; neighbours may have moved up to
        # one step since, so the query square grows by the fastest step.
        step = max((max(agent.max_speed, agent.walking_speed) for agent in active), default=0.0) * sim_dt
        reach = 2.0 * self.config.safe_distance + step
        for agent in active:
            neighbours = self.spatial_index.query(agent.position[0], agent.position[1], reach)
            agent.update(sim_dt, routes, self.flood, neighbours)
            if agent.reached_target:
                node = agent.segment_end_node
                self.arrivals_per_target[node] = self.arrivals_per_target.get(node, 0) + 1

        self.elapsed += sim_dt
        self.ticks += 1
        return self._recount()

    def advance(self, duration: float, frame_dt: float) -> SimulationCounts:
        """Tick until *duration* simulated seconds have passed or every agent is done."""
        end = self.elapsed + duration
        while self.running and self.elapsed < end and not self.is_finished:
            self.tick(frame_dt)
        return self.counts

    def _recount(self) -> SimulationCounts:
        arrived = idle = flooded = failed = active = 0
        for agent in self.agents:
            if agent.reached_target:
                arrived += 1
            elif agent.state is AgentState.FAILED:
                failed += 1
            elif agent.is_idle:
                idle += 1
            else:
                active += 1
            if agent.in_flood:
                flooded += 1
        self.counts = SimulationCounts(
            total=len(self.agents),
            active=active,
            idle=idle,
            arrived=arrived,
            flooded=flooded,
            failed=failed,
        )
        return self.counts

    def agent_positions(self) -> np.ndarray:
        """``(n, 3)`` array of agent positions, in agent list order."""
        if not self.agents:
            return np.zeros((0, 3))
        return np.array([agent.position for agent in self.agents])

    def mean_speed(self) -> float:
        speeds = [agent.current_speed for agent in self.agents if agent.active]
        return float(np.mean(speeds)) if speeds else 0.0

    def close(self) -> None:
        self.planner.shutdown()
