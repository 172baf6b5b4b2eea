"""Tests for flood_evac.agent: reaction delay, routing, collisions, flood exposure."""

import numpy as np
import pytest

from flood_evac.agent import Agent, AgentState
from flood_evac.flood import FloodField
from flood_evac.graph import Graph


def _agent(start, end, progress=0.0, speed=1.0, **kwargs):
    kwargs.setdefault("reaction_time", (0.0, 0.0))
    return Agent.on_segment(
        start, end, progress,
        walking_speed=(speed, speed),
        driving_speed=(speed, speed),
        **kwargs,
    )


def _road(length=100.0):
    graph = Graph()
    a = graph.add_node((0.0, 0.0, 0.0))
    b = graph.add_node((length, 0.0, 0.0))
    graph.add_edge(a, b, length)
    graph.add_edge(b, a, length)
    return graph, a, b


class TestConstruction:
    def test_speeds_drawn_from_ranges(self, line_graph, rng):
        _, a, _, _ = line_graph
        agent = Agent(
            (0.0, 0.0, 0.0), a, rng=rng,
            walking_speed=(1.0, 3.0), driving_speed=(10.0, 20.0), reaction_time=(0.0, 300.0),
        )
        assert 1.0 <= agent.walking_speed <= 3.0
        assert 10.0 <= agent.max_speed <= 20.0
        assert 0.0 <= agent.reaction_time <= 300.0

    def test_initial_state(self, line_graph):
        _, a, _, _ = line_graph
        agent = Agent((0.0, -5.0, 0.0), a, reaction_time=(10.0, 10.0))
        assert agent.active
        assert agent.is_idle
        assert not agent.is_driving
        assert not agent.reached_target
        assert agent.state is AgentState.REACTION_DELAY
        assert agent.segment_end_node is a
        np.testing.assert_allclose(agent.position, [0.0, -5.0, 0.0])
        assert agent.segment_length == pytest.approx(5.0)

    def test_ids_are_unique_by_default(self, line_graph):
        _, a, _, _ = line_graph
        first = Agent((0.0, 0.0, 0.0), a)
        second = Agent((0.0, 0.0, 0.0), a)
        assert first.id != second.id

    def test_on_segment_places_agent(self, line_graph):
        _, a, b, _ = line_graph
        agent = _agent(a, b, progress=0.3)
        assert agent.segment_start_node is a
        assert agent.segment_end_node is b
        np.testing.assert_allclose(agent.position, [3.0, 0.0, 0.0])
        np.testing.assert_allclose(agent.direction, [1.0, 0.0, 0.0])


class TestReactionDelay:
    def test_waits_out_countdown(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        agent = _agent(a, b, speed=1.0, reaction_time=(5.0, 5.0))
        for _ in range(5):
            agent.update(1.0, routes)
            assert agent.is_idle
            assert agent.state is AgentState.REACTION_DELAY
            assert agent.progress == 0.0
        agent.update(1.0, routes)
        assert not agent.is_idle
        assert agent.state is AgentState.MOVING
        assert agent.progress == pytest.approx(0.1)


class TestNavigation:
    def test_reaches_target_node_on_schedule(self, line_graph):
        graph, a, b, _ = line_graph
        routes = graph.compute_shortest_path([b])
        agent = _agent(a, b, speed=10.0)
        for _ in range(3):
            agent.update(0.25, routes)
        assert agent.active
        assert agent.progress == pytest.approx(0.75)
        agent.update(0.25, routes)
        assert agent.reached_target
        assert not agent.active
        assert agent.state is AgentState.ARRIVED
        np.testing.assert_allclose(agent.position, b.position)

    def test_arrived_agent_stays_put(self, line_graph):
        graph, a, b, _ = line_graph
        routes = graph.compute_shortest_path([b])
        agent = _agent(a, b, speed=10.0)
        agent.update(1.0, routes)
        position = agent.position.copy()
        agent.update(1.0, routes)
        np.testing.assert_allclose(agent.position, position)

    def test_follows_next_hop_and_starts_driving(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        agent = Agent(
            (0.0, -5.0, 0.0), a,
            walking_speed=(5.0, 5.0), driving_speed=(10.0, 10.0), reaction_time=(0.0, 0.0),
        )
        assert agent.nominal_speed == 5.0
        agent.update(1.0, routes)
        assert agent.segment_start_node is a
        assert agent.segment_end_node is b
        assert agent.is_driving
        assert agent.nominal_speed == 10.0

    def test_spawned_on_node_moves_on_immediately(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        agent = Agent((0.0, 0.0, 0.0), a, reaction_time=(0.0, 0.0))
        assert agent.segment_length == 0.0
        agent.update(0.1, routes)
        assert agent.segment_end_node is b

    @pytest.mark.parametrize("on_road", [True, False], ids=["on_segment", "spawned_on_node"])
    def test_drives_two_roads_on_schedule(self, line_graph, on_road):
        # A -> B -> C, 10 m per road at 10 m/s: B at 1.0 s, C at 2.0 s
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        speeds = dict(walking_speed=(1.0, 1.0), driving_speed=(10.0, 10.0), reaction_time=(0.0, 0.0))
        if on_road:
            agent = Agent.on_segment(a, b, **speeds)
        else:
            agent = Agent((0.0, 0.0, 0.0), a, **speeds)

        agent.update(0.5, routes)
        assert agent.is_driving
        assert agent.segment_end_node is b
        assert agent.progress == pytest.approx(0.5)

        agent.update(0.5, routes)
        assert agent.segment_start_node is b
        assert agent.segment_end_node is c
        assert agent.progress == 0.0
        np.testing.assert_allclose(agent.position, b.position)

        agent.update(0.5, routes)
        assert agent.active
        agent.update(0.5, routes)
        assert agent.reached_target
        assert not agent.active
        np.testing.assert_allclose(agent.position, c.position)

    def test_on_segment_agent_drives(self, line_graph):
        _, a, b, _ = line_graph
        agent = Agent.on_segment(a, b, walking_speed=(1.0, 1.0), driving_speed=(10.0, 10.0))
        assert agent.is_driving
        assert agent.nominal_speed == 10.0

    def test_idles_without_routes_then_resumes(self, line_graph):
        graph, a, b, c = line_graph
        agent = _agent(a, b, speed=10.0)
        agent.update(1.0, None)
        assert agent.active
        assert agent.is_idle
        assert agent.state is AgentState.IDLE
        assert agent.current_speed == 0.0

        routes = graph.compute_shortest_path([c])
        agent.update(0.5, routes)
        assert not agent.is_idle
        assert agent.segment_start_node is b
        assert agent.segment_end_node is c

    def test_idles_when_node_cannot_reach_target(self):
        graph = Graph()
        a = graph.add_node((0.0, 0.0, 0.0))
        b = graph.add_node((10.0, 0.0, 0.0))
        graph.add_edge(a, b, 10.0)
        routes = graph.compute_shortest_path([a])
        agent = _agent(a, b, speed=10.0)
        agent.update(1.0, routes)
        assert agent.active
        assert agent.state is AgentState.IDLE

    def test_fails_when_node_left_the_graph(self, line_graph, caplog):
        graph, a, b, c = line_graph
        other, *_ = _road()
        foreign_routes = other.compute_shortest_path(list(other)[:1])
        agent = _agent(a, b, speed=10.0)
        agent.update(1.0, foreign_routes)
        assert not agent.active
        assert agent.state is AgentState.FAILED
        assert "stranded" in caplog.text

    def test_inactive_agent_ignores_updates(self, line_graph):
        graph, a, b, c = line_graph
        agent = _agent(a, b, speed=10.0)
        agent.active = False
        agent.update(0.5, None)
        assert agent.progress == 0.0


class TestCollisionAvoidance:
    def test_slows_inside_safe_distance(self):
        _, a, b = _road()
        agent = _agent(a, b, speed=2.0)
        ahead = _agent(a, b, progress=0.125, speed=2.0)
        agent.avoid_collisions([ahead])
        # (12.5 - 10) / (15 - 10) = 0.5 of nominal plus the 0.1 m/s floor
        assert agent.current_speed == pytest.approx(1.1)
        assert agent.state is AgentState.BLOCKED
        assert agent.blocked_by is ahead

    def test_stops_inside_stop_distance(self):
        _, a, b = _road()
        agent = _agent(a, b, speed=2.0)
        ahead = _agent(a, b, progress=0.05, speed=2.0)
        agent.avoid_collisions([ahead])
        assert agent.current_speed == 0.0
        assert agent.blocked_by is ahead

    def test_full_speed_beyond_safe_distance(self):
        _, a, b = _road()
        agent = _agent(a, b, speed=2.0)
        ahead = _agent(a, b, progress=0.2, speed=2.0)
        agent.avoid_collisions([ahead])
        assert agent.current_speed == 2.0
        assert agent.state is AgentState.MOVING

    def test_ignores_agents_outside_cone(self):
        _, a, b = _road()
        agent = _agent(a, b, speed=2.0)
        beside = Agent((5.0, 5.0, 0.0), b)
        behind = Agent((-5.0, 0.0, 0.0), a)
        agent.avoid_collisions([beside, behind, agent])
        assert agent.current_speed == 2.0
        assert agent.blocked_by is None

    def test_ignores_inactive_agents(self):
        _, a, b = _road()
        agent = _agent(a, b, speed=2.0)
        ahead = _agent(a, b, progress=0.05, speed=2.0)
        ahead.active = False
        agent.avoid_collisions([ahead])
        assert agent.current_speed == 2.0

    def test_nearest_agent_ahead_decides(self):
        _, a, b = _road()
        agent = _agent(a, b, speed=2.0)
        far = _agent(a, b, progress=0.125, speed=2.0)
        near = _agent(a, b, progress=0.05, speed=2.0)
        agent.avoid_collisions([far, near])
        assert agent.blocked_by is near
        assert agent.current_speed == 0.0

    def test_head_on_face_off_resolves_to_further_along(self):
        _, a, b = _road()
        westbound_start = (b, a)
        first = _agent(a, b, progress=0.45, speed=1.0, agent_id=1)
        second = _agent(*westbound_start, progress=0.50, speed=1.0, agent_id=2)
        for tick in range(1, 7):
            first.update(0.5, None, neighbours=[second])
            second.update(0.5, None, neighbours=[first])
            assert first.position[0] == pytest.approx(45.0)
            assert first.state is AgentState.BLOCKED
            assert second.state is AgentState.MOVING
            assert second.position[0] == pytest.approx(50.0 - 0.5 * tick)

    def test_face_off_tie_goes_to_lower_id(self):
        _, a, b = _road()
        low = _agent(a, b, progress=0.48, speed=1.0, agent_id=3)
        high = _agent(b, a, progress=0.48, speed=1.0, agent_id=7)
        high.avoid_collisions([low])
        low.avoid_collisions([high])
        assert low.current_speed == 1.0
        assert high.current_speed == 0.0


class TestFloodExposure:
    def _flood(self):
        field = FloodField(np.zeros((3, 3)), cell_size=10.0, evaporation_rate=0.0)
        field.water[0, 0] = 1.0
        return field

    def test_flooded_agent_walks(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        agent = _agent(a, b, speed=1.0)
        agent.max_speed = 15.0
        agent.is_driving = True
        agent.update(0.5, routes, flood=self._flood())
        assert agent.in_flood
        assert not agent.is_driving
        assert agent.current_speed == agent.walking_speed

    def test_flood_exposure_is_sticky(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        field = self._flood()
        agent = _agent(a, b, speed=1.0)
        agent.update(0.5, routes, flood=field)
        field.water[:] = 0.0
        agent.update(0.5, routes, flood=field)
        assert agent.in_flood

    def test_flooded_agent_keeps_walking_on_new_segments(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        field = self._flood()
        field.water[:] = 1.0
        agent = _agent(a, b, progress=0.95, speed=1.0)
        agent.update(1.0, routes, flood=field)
        assert agent.segment_end_node is c
        assert not agent.is_driving

    def test_flooded_agent_ignores_traffic(self):
        _, a, b = _road()
        field = FloodField(np.ones((2, 2)), cell_size=200.0, evaporation_rate=0.0)
        field.water[:] = 2.0
        agent = _agent(a, b, speed=1.0)
        blocker = _agent(a, b, progress=0.05, speed=1.0)
        agent.update(1.0, None, flood=field, neighbours=[blocker])
        assert agent.in_flood
        assert agent.blocked_by is None
        assert agent.position[0] == pytest.approx(1.0)

    def test_shallow_water_is_not_exposure(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        field = self._flood()
        field.water[0, 0] = 0.5
        agent = _agent(a, b, speed=1.0)
        agent.update(0.5, routes, flood=field)
        assert not agent.in_flood

    def test_off_grid_flag(self, line_graph):
        graph, a, b, c = line_graph
        routes = graph.compute_shortest_path([c])
        field = FloodField(np.zeros((3, 3)), cell_size=1.0, origin=(500.0, 500.0))
        agent = _agent(a, b, speed=1.0)
        agent.update(0.5, routes, flood=field)
        assert agent.off_grid
        assert not agent.in_flood
