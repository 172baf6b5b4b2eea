"""CLI entry point for flood-evac: ``run``, ``validate`` and ``info`` on a scenario package."""
import argparse
import os
import sys

SCENARIO_FILE = "scenario.json"


def resolve_package_dir(path):
    """argparse type: a package directory, or its scenario.json, as an absolute directory."""
    path = os.path.abspath(path)
    if os.path.isdir(path):
        return path
    if not os.path.exists(path):
        raise argparse.ArgumentTypeError(f"Path does not exist: {path}")
    if os.path.basename(path) != SCENARIO_FILE:
        raise argparse.ArgumentTypeError(
            f"Expected {SCENARIO_FILE} or a directory containing it, got: {path}"
        )
    return os.path.dirname(path)


def _load_config(package_dir, error_prefix):
    from pydantic import ValidationError

    from flood_evac.config import SimulationConfig

    try:
        return SimulationConfig.from_package(package_dir)
    except (OSError, ValueError, ValidationError) as e:
        print(f"{error_prefix}: {e}", file=sys.stderr)
        sys.exit(1)


def _fail(message):
    print(f"Invalid: {message}", file=sys.stderr)
    sys.exit(1)


def cmd_validate(args):
    """Check scenario.json parses and its local inputs exist.  Needs no geo stack."""
    config = _load_config(args.package_dir, "Invalid")
    print(f"Valid scenario: {config.run_label}")
    print(f"  Duration: {config.duration}s, agents: {config.agent_count}")
    print(f"  Targets: {len(config.targets)}, water sources: {len(config.water_sources)}")
    local_inputs = [name for name in (config.elevation, config.roads, config.buildings) if name]
    missing = [name for name in local_inputs if not os.path.isfile(os.path.join(args.package_dir, name))]
    if missing:
        _fail(f"missing input files {missing}")
    if config.bounds is None and not config.elevation:
        _fail("'bounds' is required without an elevation raster")


def cmd_info(args):
    config = _load_config(args.package_dir, "Error")
    bounds = list(config.bounds) if config.bounds else "from elevation"
    print(f"Package: {args.package_dir}")
    print(f"Label:   {config.run_label}")
    print(f"Bounds:  {bounds}")
    print(f"Duration: {config.duration}s x{config.time_multiplier}")
    print(f"Agents:  {config.agent_count}")
    print(f"Roads:   {config.roads or 'Overpass'}")

    inputs_dir = os.path.join(args.package_dir, "inputs")
    if not os.path.isdir(inputs_dir):
        return
    print("\nInputs:")
    for name in sorted(os.listdir(inputs_dir)):
        size = os.path.getsize(os.path.join(inputs_dir, name))
        print(f"  {name} ({size:,} bytes)")


def cmd_run(args):
    from flood_evac.callbacks import LoggingCallback
    from flood_evac.errors import FloodEvacError
    from flood_evac.run import run_sim

    try:
        counts = run_sim(args.package_dir, callback=LoggingCallback(), batch_number=args.batch_number)
    except FloodEvacError as e:
        print(f"Run failed: {e}", file=sys.stderr)
        sys.exit(1)
    print(
        f"Arrived: {counts.arrived}/{counts.total}  "
        f"flooded: {counts.flooded}  idle: {counts.idle}  failed: {counts.failed}"
    )


def _add_package_arg(subparser):
    subparser.add_argument(
        "package_dir", type=resolve_package_dir,
        help=f"Path to {SCENARIO_FILE} or the directory containing it",
    )


def main():
    parser = argparse.ArgumentParser(
        prog="flood-evac",
        description="Crowd evacuation under rising floodwater",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run a scenario headless to completion")
    _add_package_arg(run_parser)
    run_parser.add_argument(
        "--batch-number", "-bn", type=int, default=1,
        help="Suffix for this run's log, diagnostics and summary files",
    )

    _add_package_arg(subparsers.add_parser("validate", help="Validate a scenario package"))
    _add_package_arg(subparsers.add_parser("info", help="Show package summary"))

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "run": cmd_run,
        "validate": cmd_validate,
        "info": cmd_info,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
