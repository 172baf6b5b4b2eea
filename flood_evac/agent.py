"""
Evacuee agent: navigation, collision avoidance and flood exposure.

An agent walks from its spawn point to the nearest road node, then drives
node to node following the installed ``RouteTable`` until its segment ends
on a target.  Per tick::

    REACTION_DELAY --(countdown over)--> MOVING <--> BLOCKED
    MOVING --(segment done)--> next segment | IDLE | ARRIVED | FAILED

Flood exposure is sticky: once an agent stands in water deeper than the
field's ``min_water_height`` it walks for the rest of the run and no longer
yields to other agents.

Agents read the live state of other agents during a tick, so outcomes depend
on the order agents are updated in (list order in ``Simulation``).
"""

from __future__ import annotations

import enum
import itertools
import logging
from typing import Iterable, List, Optional, Tuple

import numpy as np

from flood_evac import defaults
from flood_evac.errors import NoRouteFound
from flood_evac.graph import Node, RouteTable

logger = logging.getLogger(__name__)

_agent_ids = itertools.count()


class AgentState(enum.Enum):
    REACTION_DELAY = "reaction_delay"
    MOVING = "moving"
    BLOCKED = "blocked"
    IDLE = "idle"
    ARRIVED = "arrived"
    FAILED = "failed"


def _draw(rng: np.random.Generator, value_range: Tuple[float, float]) -> float:
    low, high = value_range
    return float(low + rng.random() * (high - low))


class Agent:
    """
    A single evacuee.

    Parameters
    ----------
    position : array-like
        Spawn point ``(x, y, z)`` in local metres.
    first_node : Node
        Road node the agent heads for first, normally the nearest node.
    agent_id : int, optional
        Stable identifier, also the last-resort right-of-way tie-break.
    walking_speed, driving_speed : (float, float)
        Ranges (m/s) the agent's speeds are drawn from.
    reaction_time : (float, float)
        Range (s) of the departure countdown.
    rng : numpy.random.Generator, optional
    safe_distance, stop_distance, cone_threshold : float
        Collision avoidance geometry.
    """

    def __init__(
        self,
        position,
        first_node: Node,
        *,
        agent_id: Optional[int] = None,
        walking_speed: Tuple[float, float] = defaults.WALKING_SPEED_MS,
        driving_speed: Tuple[float, float] = defaults.DRIVING_SPEED_MS,
        reaction_time: Tuple[float, float] = defaults.REACTION_TIME_S,
        rng: Optional[np.random.Generator] = None,
        safe_distance: float = defaults.SAFE_DISTANCE_M,
        stop_distance: float = defaults.STOP_DISTANCE_M,
        cone_threshold: float = defaults.CONE_THRESHOLD,
    ):
        rng = rng if rng is not None else np.random.default_rng()
        self.id = next(_agent_ids) if agent_id is None else agent_id

        self.walking_speed = _draw(rng, walking_speed)
        self.max_speed = _draw(rng, driving_speed)
        self.reaction_time = _draw(rng, reaction_time)
        self.current_speed = self.walking_speed

        self.safe_distance = safe_distance
        self.stop_distance = stop_distance
        self.cone_threshold = cone_threshold

        self.active = True
        self.is_idle = True
        self.reached_target = False
        self.is_driving = False
        self.in_flood = False
        self.off_grid = False
        self.blocked_by: Optional["Agent"] = None
        self.state = AgentState.REACTION_DELAY

        self.position = np.array(position, dtype=float)
        self.segment_start_node: Optional[Node] = None
        self._set_segment(self.position, first_node)

    def __repr__(self) -> str:
        return (
            f"Agent({self.id}, {self.state.value}, "
            f"progress={self.progress:.2f}, end={self.segment_end_node!r})"
        )

    @classmethod
    def on_segment(cls, start_node: Node, end_node: Node, progress: float = 0.0, **kwargs) -> "Agent":
        """Create an agent already travelling the road segment ``start_node -> end_node``."""
        agent = cls(start_node.position, start_node, **kwargs)
        agent.begin_segment(start_node, end_node, progress)
        return agent

    # ------------------------------------------------------------------
    # Segment geometry
    # ------------------------------------------------------------------

    def _set_segment(self, start_position, end_node: Node, progress: float = 0.0) -> None:
        self.segment_start = np.array(start_position, dtype=float)
        self.segment_end_node = end_node
        self.segment_end = end_node.position.copy()
        vector = self.segment_end - self.segment_start
        self.segment_length = float(np.linalg.norm(vector))
        if self.segment_length > 0:
            self.direction = vector / self.segment_length
        else:
            self.direction = np.zeros(3)
        self.progress = float(progress)
        self.position = self.segment_start + vector * self.progress

    def begin_segment(self, start_node: Node, end_node: Node, progress: float = 0.0) -> None:
        """Put the agent on the road ``start_node -> end_node``; on a road it drives unless flooded."""
        self.segment_start_node = start_node
        self._set_segment(start_node.position, end_node, progress)
        self.is_driving = not self.in_flood

    @property
    def nominal_speed(self) -> float:
        return self.max_speed if self.is_driving else self.walking_speed

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def update(
        self,
        dt: float,
        routes: Optional[RouteTable],
        flood=None,
        neighbours: Iterable["Agent"] = (),
    ) -> None:
        """Advance the agent by *dt* simulated seconds."""
        if not self.active:
            return

        if self.reaction_time > 0:
            self.reaction_time -= dt
            self.state = AgentState.REACTION_DELAY
            return
        self.is_idle = False

        if self.reached_target:
            self.active = False
            self.state = AgentState.ARRIVED
            return

        if not self.in_flood and flood is not None:
            sample = flood.sample(self.position[0], self.position[1])
            self.off_grid = not sample.in_bounds
            self.in_flood = sample.depth > flood.min_water_height
            if self.in_flood:
                logger.debug("Agent %d caught by flood at depth %.2fm", self.id, sample.depth)

        neighbours = list(neighbours)
        self._choose_speed(neighbours)
        at_node = self.segment_length <= 0
        self._advance(dt)
        if self._check_node_progress(routes) and at_node:
            # Standing on a node costs no time: spend the tick on the next road.
            self._choose_speed(neighbours)
            self._advance(dt)
            self._check_node_progress(routes)

    def _choose_speed(self, neighbours: List["Agent"]) -> None:
        if self.in_flood:
            self.is_driving = False
            self.current_speed = self.walking_speed
            self.blocked_by = None
            self.state = AgentState.MOVING
        else:
            self.avoid_collisions(neighbours)

    def avoid_collisions(self, neighbours: Iterable["Agent"]) -> None:
        """
        Set ``current_speed`` from the nearest active agent in the forward cone.

        Inside ``stop_distance`` the agent stops; a mutual stop is resolved in
        favour of the agent further along its segment.  Inside
        ``safe_distance`` speed scales down linearly with proximity.
        """
        self.current_speed = self.nominal_speed
        self.blocked_by = None
        self.state = AgentState.MOVING

        reach = 2.0 * self.safe_distance
        ahead = []
        for other in neighbours:
            if other is self or not other.active:
                continue
            offset = other.position - self.position
            distance = float(np.linalg.norm(offset))
            if distance == 0.0 or distance >= reach:
                continue
            if float(np.dot(self.direction, offset / distance)) >= self.cone_threshold:
                ahead.append((distance, other.id, other))
        if not ahead:
            return

        ahead.sort(key=lambda entry: (entry[0], entry[1]))
        distance, _, other = ahead[0]
        if distance < self.stop_distance:
            self.current_speed = 0.0
            self.blocked_by = other
            self.state = AgentState.BLOCKED
            if other.blocked_by is self and self._has_right_of_way(other):
                self.current_speed = self.nominal_speed
                self.blocked_by = None
                self.state = AgentState.MOVING
        elif distance < self.safe_distance:
            slowdown = (distance - self.stop_distance) / (self.safe_distance - self.stop_distance)
            self.current_speed = min(
                self.current_speed,
                self.current_speed * slowdown + defaults.SLOWDOWN_FLOOR_MS,
            )
            self.blocked_by = other
            self.state = AgentState.BLOCKED

    def _has_right_of_way(self, other: "Agent") -> bool:
        return (self.progress, -self.id) > (other.progress, -other.id)

    def _advance(self, dt: float) -> None:
        if self.segment_length <= 0:
            self.progress = 1.0
        else:
            self.progress += self.current_speed * dt / self.segment_length
            if self.progress >= 1.0 - defaults.PROGRESS_EPSILON:
                self.progress = 1.0
        self.position = self.segment_start + (self.segment_end - self.segment_start) * self.progress

    def _check_node_progress(self, routes: Optional[RouteTable]) -> bool:
        """Handle reaching the segment end; True when the agent set off on a new segment."""
        if self.progress < 1.0:
            return False
        node = self.segment_end_node
        if routes is not None and routes.is_target(node):
            self.reached_target = True
            self.active = False
            self.current_speed = 0.0
            self.state = AgentState.ARRIVED
            return False
        if routes is None:
            self._wait()
            return False
        try:
            next_node = routes.step_from(node)
        except NoRouteFound as exc:
            if exc.permanent:
                logger.warning("Agent %d stranded: %s", self.id, exc)
                self.active = False
                self.current_speed = 0.0
                self.state = AgentState.FAILED
            else:
                self._wait()
            return False
        self.begin_segment(node, next_node)
        return True

    def _wait(self) -> None:
        self.is_idle = True
        self.current_speed = 0.0
        self.state = AgentState.IDLE
