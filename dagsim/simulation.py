"""Main entry point for DAG simulation."""

import logging
from pathlib import Path
from typing import List, Optional

import simpy

from .arrivals import create_spacing
from .config import SimulationConfig
from .executor import SimulatedCluster
from .loaders import load_dags, load_topology
from .metrics import MetricsCollector
from .models import DagRecord
from .policies import SchedulingPolicy, create_policy
from .runtime import DagRuntimeManager
from .topology import ClusterTopology, default_topology

logger = logging.getLogger(__name__)


class DAGSimulation:
    """Orchestrates a DAG placement simulation.

    This class loads the DAGs and the cluster, wires the policy, substrate
    and runtime on one SimPy environment, runs until every event has been
    processed and exports the results.
    """

    def __init__(
        self,
        dags_dir: str,
        config: Optional[SimulationConfig] = None,
        topology_path: Optional[str] = None,
        http_client=None,
    ):
        """Initialize the simulation.

        Args:
            dags_dir: Directory of DAG JSON files
            config: Simulation settings; defaults if omitted
            topology_path: Cluster topology JSON; the built-in one if omitted
            http_client: Optional httpx.Client for the remote policy
        """
        self.dags_dir = dags_dir
        self.config = config or SimulationConfig()
        self.topology_path = topology_path
        self.http_client = http_client

        # Loaded data
        self.dags: List[DagRecord] = []
        self.topology: Optional[ClusterTopology] = None

        # Simulation components
        self.env: Optional[simpy.Environment] = None
        self.metrics: Optional[MetricsCollector] = None
        self.policy: Optional[SchedulingPolicy] = None
        self.substrate: Optional[SimulatedCluster] = None
        self.runtime: Optional[DagRuntimeManager] = None

        # Results
        self.end_time_ms: Optional[float] = None

    def load(self):
        """Load DAGs and topology."""
        self.dags = load_dags(self.dags_dir, spacing=create_spacing(self.config))
        print(f"Loaded {len(self.dags)} DAGs from {self.dags_dir}")

        if self.topology_path:
            self.topology = load_topology(self.topology_path)
            print(f"Loaded {len(self.topology.sites)} sites and {len(self.topology.links)} links from {self.topology_path}")
        else:
            self.topology = default_topology()
            print("Using built-in topology")

    def setup(self):
        """Set up the simulation components."""
        self.env = simpy.Environment()
        self.metrics = MetricsCollector(self.config.output_dir)
        self.policy = create_policy(self.config.policy, self.config, client=self.http_client)
        self.substrate = SimulatedCluster(self.env, self.topology)
        self.runtime = DagRuntimeManager(
            env=self.env,
            dags=self.dags,
            policy=self.policy,
            substrate=self.substrate,
            metrics=self.metrics,
            config=self.config,
        )

    def run(self) -> float:
        """Run the simulation.

        Returns:
            Simulated time at which the last event was processed
        """
        print(f"\nRunning simulation with policy '{self.policy.name}'...")
        try:
            self.runtime.schedule_submissions()
            self.env.run()
        finally:
            self.runtime.shutdown()
            self.policy.close()

        self.end_time_ms = self.env.now
        print(f"Simulation complete at {self.end_time_ms:,.2f} ms")
        return self.end_time_ms

    def print_summary(self):
        """Print simulation summary to console."""
        if self.metrics:
            self.metrics.print_summary(self.policy.name if self.policy else "")

    def export_results(self, output_dir: Optional[str] = None):
        """Export the JSON summary next to the CSV logs.

        Args:
            output_dir: Output directory path; the configured one if omitted
        """
        if not self.metrics:
            print("No metrics to export")
            return

        output_dir = output_dir or self.config.output_dir
        summary = self.metrics.get_summary()
        summary["input_files"] = {
            "dags": self.dags_dir,
            "topology": self.topology_path or "built-in",
        }
        summary["configuration"] = self.config.to_dict()
        summary["end_time_ms"] = self.end_time_ms

        json_path = str(Path(output_dir) / "simulation_results.json")
        self.metrics.export_json(json_path, summary)
        print(f"Exported JSON results to {json_path}")
        print(f"CSV logs written to {self.metrics.output_dir}")

    def run_full(self, export: bool = True) -> float:
        """Run the full simulation pipeline.

        Args:
            export: Whether to write the JSON summary

        Returns:
            Simulated end time in milliseconds
        """
        self.load()
        self.setup()
        self.run()
        self.print_summary()

        if export:
            self.export_results()

        return self.end_time_ms
