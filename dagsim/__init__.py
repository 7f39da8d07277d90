"""Discrete-event simulator for DAG workloads placed on edge and cloud workers."""

from .cluster import ClusterState, WorkerInfo
from .config import SimulationConfig, load_config
from .errors import DagFormatError, DagSimError, LogSinkError, TopologyError
from .executor import SimulatedCluster
from .loaders import build_dag, load_dag_file, load_dags, load_topology
from .metrics import MetricsCollector
from .models import DagRecord, PlacementDecision, TaskContext, TaskRecord, Tier
from .policies import PolicyKind, SchedulingPolicy, create_policy
from .runtime import DagRuntimeManager
from .simulation import DAGSimulation
from .topology import ClusterTopology, default_topology

__all__ = [
    "ClusterState",
    "WorkerInfo",
    "SimulationConfig",
    "load_config",
    "DagFormatError",
    "DagSimError",
    "LogSinkError",
    "TopologyError",
    "SimulatedCluster",
    "build_dag",
    "load_dag_file",
    "load_dags",
    "load_topology",
    "MetricsCollector",
    "DagRecord",
    "PlacementDecision",
    "TaskContext",
    "TaskRecord",
    "Tier",
    "PolicyKind",
    "SchedulingPolicy",
    "create_policy",
    "DagRuntimeManager",
    "DAGSimulation",
    "ClusterTopology",
    "default_topology",
]
