"""
Road network graph with multi-target next-hop routing.

Nodes live in an arena addressed by integer index.  A second table maps the
quantized integer coordinates of a position to that index, so two
geometrically coincident points fetched independently resolve to the same
node.  Edges are directed; bidirectional roads are two edges inserted by the
caller.

Routing answers one question for every node at once: *which neighbour do I
step to next to reach the nearest target?*  ``compute_shortest_path`` runs a
single Dijkstra seeded at every target simultaneously and walks the edges
backwards, producing a ``RouteTable``.  Tables are immutable and stamped with
the graph revision they were computed against, so a table computed before a
structural change is never used afterwards.

Usage::

    graph = Graph()
    a = graph.add_node((0.0, 0.0, 0.0))
    b = graph.add_node((10.0, 0.0, 0.0))
    graph.add_edge(a, b, 10.0)
    graph.add_edge(b, a, 10.0)
    routes = graph.compute_shortest_path([b])
    routes.next_hop(a)             # -> b
"""

from __future__ import annotations

import heapq
import itertools
import logging
import math
import time
from collections import deque
from collections.abc import Mapping
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

import numpy as np

from flood_evac import defaults
from flood_evac.errors import NoRouteFound, check_invariant

logger = logging.getLogger(__name__)


def quantize(position, decimals: int = defaults.KEY_DECIMALS) -> Tuple[int, ...]:
    """Return the integer key of *position* at *decimals* places, rounding half up."""
    scale = 10 ** decimals
    return tuple(int(math.floor(float(c) * scale + 0.5)) for c in position)


class Node:
    """A road network vertex with directed, weighted adjacency."""

    __slots__ = ("index", "key", "position", "neighbors")

    def __init__(self, index: int, key: Tuple[int, ...], position: np.ndarray):
        self.index = index
        self.key = key
        self.position = position
        self.neighbors: Dict["Node", float] = {}

    def add_neighbor(self, node: "Node", weight: float) -> None:
        self.neighbors[node] = weight

    def distance_to(self, other: "Node") -> float:
        return float(np.linalg.norm(self.position - other.position))

    def __repr__(self) -> str:
        x, y, z = (round(float(c), 3) for c in self.position)
        return f"Node({self.index}, ({x}, {y}, {z}))"


class RouteTable(Mapping):
    """
    Immutable next-hop mapping toward the nearest member of a target set.

    Maps every node of the graph it was computed for to the neighbour to
    step to next, or to ``None`` when the node is a target or cannot reach
    one.

    Parameters
    ----------
    next_hops : dict
        ``{Node: Node or None}`` for every node in the graph.
    targets : iterable of Node
        The target set, in the order it was requested.
    revision : int
        Graph revision the table was computed against.
    distances : dict
        ``{Node: float}`` shortest distance to the nearest target, for
        reachable nodes only.
    """

    def __init__(self, next_hops, targets, revision: int, distances=None):
        self._next_hops = dict(next_hops)
        self.targets = tuple(targets)
        self._target_set = frozenset(self.targets)
        self.revision = revision
        self._distances = dict(distances or {})

    def __getitem__(self, node: Node) -> Optional[Node]:
        return self._next_hops[node]

    def __iter__(self) -> Iterator[Node]:
        return iter(self._next_hops)

    def __len__(self) -> int:
        return len(self._next_hops)

    def next_hop(self, node: Node) -> Optional[Node]:
        return self._next_hops.get(node)

    def is_target(self, node: Node) -> bool:
        return node in self._target_set

    def distance(self, node: Node) -> float:
        """Shortest distance from *node* to its nearest target (``inf`` if unreachable)."""
        return self._distances.get(node, math.inf)

    def step_from(self, node: Node) -> Node:
        """Return the next hop from *node*, raising ``NoRouteFound`` if there is none."""
        if node not in self._next_hops:
            raise NoRouteFound(node, permanent=True)
        next_node = self._next_hops[node]
        if next_node is None:
            raise NoRouteFound(node)
        return next_node

    def path_from(self, node: Node) -> List[Node]:
        """Follow next hops from *node* until a target; empty if unreachable."""
        path = [node]
        current = node
        while not self.is_target(current):
            current = self._next_hops.get(current)
            if current is None or len(path) > len(self._next_hops):
                return []
            path.append(current)
        return path


class Graph:
    """
    Directed weighted road graph backed by an integer-indexed node arena.

    Parameters
    ----------
    key_decimals : int
        Decimal places kept when quantizing positions into node keys.
    """

    def __init__(self, key_decimals: int = defaults.KEY_DECIMALS):
        self.key_decimals = key_decimals
        self._nodes: Dict[int, Node] = {}
        self._lookup: Dict[Tuple[int, ...], int] = {}
        self._next_index = 0
        self._revision = 0
        self._routes: Optional[RouteTable] = None
        self._position_cache = None

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(list(self._nodes.values()))

    def __contains__(self, node) -> bool:
        return isinstance(node, Node) and self._nodes.get(node.index) is node

    def __repr__(self) -> str:
        return f"Graph(nodes={len(self._nodes)}, edges={self.edge_count()})"

    @property
    def nodes(self) -> List[Node]:
        return list(self._nodes.values())

    @property
    def revision(self) -> int:
        """Counter bumped on every structural change."""
        return self._revision

    def _mutated(self) -> None:
        self._revision += 1
        self._position_cache = None

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def key_for(self, position) -> Tuple[int, ...]:
        return quantize(position, self.key_decimals)

    def add_node(self, position) -> Node:
        """Return the node at *position*, creating it if its key is new."""
        position = np.asarray(position, dtype=float)
        if position.shape != (3,):
            raise ValueError(f"Node position must be (x, y, z), got shape {position.shape}")
        if not np.all(np.isfinite(position)):
            raise ValueError(f"Node position must be finite, got {position.tolist()}")
        key = self.key_for(position)
        index = self._lookup.get(key)
        if index is not None:
            return self._nodes[index]
        node = Node(self._next_index, key, position)
        self._nodes[node.index] = node
        self._lookup[key] = node.index
        self._next_index += 1
        self._mutated()
        return node

    def get_node(self, position) -> Optional[Node]:
        """Return the node whose key matches *position*, or None."""
        index = self._lookup.get(self.key_for(position))
        return None if index is None else self._nodes[index]

    def add_edge(self, source: Node, destination: Node, weight: float = 1.0) -> None:
        """Add the directed edge ``source -> destination``."""
        weight = float(weight)
        if not weight >= 0:
            raise ValueError(f"Edge weight must be >= 0, got {weight}")
        source.add_neighbor(destination, weight)
        self._mutated()

    def edge_weight(self, source: Node, destination: Node) -> Optional[float]:
        return source.neighbors.get(destination)

    def edges(self) -> Iterator[Tuple[Node, Node, float]]:
        for node in self._nodes.values():
            for neighbor, weight in node.neighbors.items():
                yield node, neighbor, weight

    def edge_count(self) -> int:
        return sum(len(node.neighbors) for node in self._nodes.values())

    def remove_node(self, node: Node) -> None:
        """Remove *node* and every edge pointing at it from anywhere in the graph."""
        if node not in self:
            raise KeyError(f"{node!r} is not in the graph")
        self.remove_nodes([node])

    def remove_nodes(self, nodes: Iterable[Node]) -> int:
        """Remove several nodes with a single adjacency purge pass; returns the count removed."""
        doomed = {node for node in nodes if node in self}
        if not doomed:
            return 0
        for node in doomed:
            del self._nodes[node.index]
            del self._lookup[node.key]
            node.neighbors.clear()
        for other in self._nodes.values():
            for node in doomed.intersection(other.neighbors):
                del other.neighbors[node]
        self._mutated()
        return len(doomed)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def _predecessors(self) -> Dict[Node, List[Tuple[Node, float]]]:
        """Reverse adjacency: ``{node: [(predecessor, weight), ...]}``."""
        predecessors = {node: [] for node in self._nodes.values()}
        for node in self._nodes.values():
            for neighbor, weight in node.neighbors.items():
                predecessors[neighbor].append((node, weight))
        return predecessors

    def connected_components(self) -> List[set]:
        """
        Partition the nodes into connected components.

        Breadth-first from each unvisited node in arena order, following
        edges in both directions, so every node lands in exactly one
        component.
        """
        predecessors = self._predecessors()
        visited = set()
        components = []
        for node in self._nodes.values():
            if node in visited:
                continue
            component = {node}
            queue = deque([node])
            while queue:
                current = queue.popleft()
                adjacent = itertools.chain(
                    current.neighbors, (pred for pred, _ in predecessors[current])
                )
                for neighbor in adjacent:
                    if neighbor not in component:
                        component.add(neighbor)
                        queue.append(neighbor)
            visited |= component
            components.append(component)
        return components

    def prune_to_largest_component(self) -> int:
        """Drop every node outside the largest component; returns the number removed."""
        components = self.connected_components()
        if len(components) <= 1:
            return 0
        # max() keeps the first of equally large components.
        largest = max(range(len(components)), key=lambda i: len(components[i]))
        doomed = set()
        for i, component in enumerate(components):
            if i != largest:
                doomed |= component
        removed = self.remove_nodes(doomed)
        logger.info(
            "Pruned %d nodes in %d islands; %d nodes remain",
            removed, len(components) - 1, len(self._nodes),
        )
        return removed

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def build_route_table(self, targets: Iterable[Node]) -> RouteTable:
        """
        Multi-source Dijkstra toward *targets*, without touching graph state.

        Every target is seeded at distance 0 and edges are relaxed from
        destination to source, so ``next_hop[u]`` is the neighbour ``v`` on
        the shortest path from ``u`` to its nearest target.
        """
        start = time.perf_counter()
        revision = self._revision
        targets = list(dict.fromkeys(targets))
        live_targets = [
            target for target in targets
            if check_invariant(target in self, f"target {target!r} is not in the graph")
        ]
        if not live_targets:
            logger.warning("Computing routes with an empty target set; no node is routable")

        next_hops: Dict[Node, Optional[Node]] = {node: None for node in self._nodes.values()}
        distances: Dict[Node, float] = {}
        counter = itertools.count()
        heap = []
        for target in live_targets:
            distances[target] = 0.0
            heapq.heappush(heap, (0.0, next(counter), target))

        predecessors = self._predecessors()
        while heap:
            distance, _, current = heapq.heappop(heap)
            if distance > distances[current]:
                continue
            for predecessor, weight in predecessors[current]:
                candidate = distance + weight
                if candidate < distances.get(predecessor, math.inf):
                    distances[predecessor] = candidate
                    next_hops[predecessor] = current
                    heapq.heappush(heap, (candidate, next(counter), predecessor))

        logger.info(
            "Computed routes to %d targets over %d nodes (%d reachable) in %.1f ms",
            len(live_targets), len(next_hops), len(distances),
            (time.perf_counter() - start) * 1000.0,
        )
        return RouteTable(next_hops, live_targets, revision, distances)

    def compute_shortest_path(self, targets: Iterable[Node]) -> RouteTable:
        """Recompute the next-hop table for *targets* and install it."""
        table = self.build_route_table(targets)
        self.install_routes(table)
        return table

    def install_routes(self, table: RouteTable) -> bool:
        """Install *table* unless the graph changed since it was computed."""
        if table.revision != self._revision:
            logger.warning(
                "Discarding route table for revision %d; graph is at revision %d",
                table.revision, self._revision,
            )
            return False
        self._routes = table
        return True

    @property
    def routes(self) -> Optional[RouteTable]:
        """The installed route table, or None if there is none or it is stale."""
        if self._routes is not None and self._routes.revision == self._revision:
            return self._routes
        return None

    def next_hop(self, node: Node) -> Optional[Node]:
        routes = self.routes
        return None if routes is None else routes.next_hop(node)

    @staticmethod
    def heuristic(node_a: Node, node_b: Node) -> float:
        """Euclidean distance; admissible because road weights are at least that long."""
        return node_a.distance_to(node_b)

    def a_star(self, start: Node, goal: Node) -> Optional[List[Node]]:
        """
        Point-to-point shortest path from *start* to *goal*.

        Ties on ``g + h`` are broken by insertion order.  Returns the node
        sequence including both ends, or None if *goal* is unreachable.
        """
        if start not in self or goal not in self:
            return None
        counter = itertools.count()
        open_heap = [(self.heuristic(start, goal), next(counter), 0.0, start)]
        came_from: Dict[Node, Node] = {}
        g_score: Dict[Node, float] = {start: 0.0}

        while open_heap:
            _, _, g, current = heapq.heappop(open_heap)
            if current is goal:
                return self._reconstruct_path(came_from, current)
            if g > g_score[current]:
                continue
            for neighbor, weight in current.neighbors.items():
                tentative = g + weight
                if tentative < g_score.get(neighbor, math.inf):
                    came_from[neighbor] = current
                    g_score[neighbor] = tentative
                    f = tentative + self.heuristic(neighbor, goal)
                    heapq.heappush(open_heap, (f, next(counter), tentative, neighbor))
        return None

    @staticmethod
    def _reconstruct_path(came_from: Dict[Node, Node], current: Node) -> List[Node]:
        path = [current]
        while current in came_from:
            current = came_from[current]
            path.append(current)
        path.reverse()
        return path

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def nearest_node(self, position) -> Optional[Node]:
        """Return the node closest to *position* (x, y, z), or None if the graph is empty."""
        if not self._nodes:
            return None
        if self._position_cache is None:
            nodes = list(self._nodes.values())
            coords = np.array([node.position for node in nodes])
            self._position_cache = (nodes, coords)
        nodes, coords = self._position_cache
        offsets = coords - np.asarray(position, dtype=float)
        return nodes[int(np.argmin(np.einsum("ij,ij->i", offsets, offsets)))]

    def random_node(self, rng: Optional[np.random.Generator] = None) -> Optional[Node]:
        if not self._nodes:
            return None
        rng = rng or np.random.default_rng()
        nodes = list(self._nodes.values())
        return nodes[int(rng.integers(len(nodes)))]
