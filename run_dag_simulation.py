#!/usr/bin/env python3
"""CLI entry point for DAG placement simulation."""

import argparse
import logging
import sys
from pathlib import Path

from dagsim.config import load_config
from dagsim.errors import DagSimError
from dagsim.policies import PolicyKind
from dagsim.simulation import DAGSimulation


def main():
    parser = argparse.ArgumentParser(
        description="Run DAG placement simulation on an edge/cloud cluster",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--dags",
        type=str,
        default="dags",
        help="Directory of DAG JSON files",
    )

    parser.add_argument(
        "--topology",
        type=str,
        default=None,
        help="Path to cluster topology file. If not specified, the built-in topology is used.",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to simulation config JSON",
    )

    parser.add_argument(
        "--policy",
        type=str,
        choices=[k.value for k in PolicyKind],
        default=None,
        help="Placement policy (overrides the config file)",
    )

    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory for CSV logs and JSON summary (overrides the config file)",
    )

    parser.add_argument(
        "--rl-url",
        type=str,
        default=None,
        help="Base URL of the remote decision service",
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for randomised arrival modes",
    )

    parser.add_argument(
        "--arrival-mode",
        type=str,
        choices=["epoch", "uniform", "poisson"],
        default=None,
        help="How DAG submission times are assigned",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    # Validate input paths exist
    for path_arg, name in [(args.dags, "DAG directory"), (args.topology, "topology"), (args.config, "config")]:
        if path_arg and not Path(path_arg).exists():
            print(f"Error: {name} not found: {path_arg}", file=sys.stderr)
            sys.exit(1)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as e:
        print(f"Error reading config: {e}", file=sys.stderr)
        sys.exit(1)

    if args.policy:
        config.policy = args.policy
    if args.output:
        config.output_dir = args.output
    if args.rl_url:
        config.remote.service_url = args.rl_url
    if args.seed is not None:
        config.seed = args.seed
    if args.arrival_mode:
        config.arrival_mode = args.arrival_mode

    sim = DAGSimulation(dags_dir=args.dags, config=config, topology_path=args.topology)

    try:
        sim.run_full()
    except (DagSimError, OSError, ValueError) as e:
        print(f"Error running simulation: {e}", file=sys.stderr)
        logging.getLogger(__name__).debug("Simulation failed", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
