"""
flood_evac: Simulate crowd evacuation over a road network under rising floodwater.

Modules:
    graph          Road network graph, multi-target next-hop routing, A*
    flood          Grid flood field with explicit water transport
    agent          Per-agent navigation / collision / flood-exposure state machine
    spatial        Uniform grid index for collision candidates
    simulation     Tick loop, target set, route planner, aggregate counts
    elevation      Terrain raster sampling and terrain grid generation
    network        Road and building suppliers (Overpass, GeoJSON), graph builder
    population     Building-density spawn distribution
    config         Pydantic SimulationConfig model for scenario.json
    callbacks      SimulationCallback protocol and implementations
    diagnostics    Per-interval metrics collection and run summary
    run            Headless driver (run_sim)
    errors         Exception taxonomy
    _imports       Lazy import helper for optional dependencies
"""

__version__ = "0.3.0"
