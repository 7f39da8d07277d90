"""JSON parsers for DAG and cluster topology files."""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import networkx as nx

from .arrivals import SubmissionSpacing
from .errors import DagFormatError, TopologyError
from .models import DagRecord, TaskRecord, Tier
from .topology import ClusterTopology, LinkSpec, SiteSpec, WorkerSpec

logger = logging.getLogger(__name__)

REQUIRED_DAG_FIELDS = ("dag_id", "tasks")
REQUIRED_TASK_FIELDS = ("task_id", "task_type", "duration_ms")


def build_dag(
    dag_id: str,
    tasks: Iterable[TaskRecord],
    submission_time_epoch: float = 0.0,
    **metadata,
) -> DagRecord:
    """Assemble a DAG from its tasks.

    Children lists are derived from the tasks' depends_on, and every
    task's remaining dependency counter is reset to its parent count.

    Args:
        dag_id: DAG identifier
        tasks: Tasks of the DAG, each naming its parents in depends_on
        submission_time_epoch: Original submission time in epoch seconds
        **metadata: Workload shape fields of DagRecord

    Returns:
        The assembled DagRecord

    Raises:
        DagFormatError: On duplicate task ids, unknown parents or cycles
    """
    dag = DagRecord(dag_id=dag_id, submission_time_epoch=submission_time_epoch, **metadata)
    for task in tasks:
        try:
            dag.add_task(task)
        except ValueError as e:
            raise DagFormatError(str(e)) from e

    graph = nx.DiGraph()
    graph.add_nodes_from(dag.tasks)
    for task in dag.tasks.values():
        task.children = []
        for parent_id in task.depends_on:
            if parent_id not in dag.tasks:
                raise DagFormatError(f"Task {task.task_id} of DAG {dag_id} depends on unknown task {parent_id}")
            graph.add_edge(parent_id, task.task_id)

    if not nx.is_directed_acyclic_graph(graph):
        cycle = nx.find_cycle(graph)
        raise DagFormatError(f"DAG {dag_id} contains a cycle: {cycle}")

    for task in dag.tasks.values():
        for parent_id in task.depends_on:
            dag.tasks[parent_id].children.append(task.task_id)
        task.remaining_deps = len(task.depends_on)

    return dag


def _parse_task(data: dict, dag_id: str) -> TaskRecord:
    missing = [k for k in REQUIRED_TASK_FIELDS if k not in data]
    if missing:
        raise DagFormatError(f"Task in DAG {dag_id} is missing fields: {missing}")

    depends_on = data.get("depends_on") or []
    if len(set(depends_on)) != len(depends_on):
        raise DagFormatError(f"Task {data['task_id']} of DAG {dag_id} lists a parent twice")

    return TaskRecord(
        task_id=str(data["task_id"]),
        task_type=str(data["task_type"]),
        duration_ms=float(data["duration_ms"]),
        memory_mb=float(data.get("memory_mb", 0.0)),
        gpu_memory_mb=float(data.get("gpu_memory_mb", 0.0)),
        gpu_utilization=float(data.get("gpu_utilization", 0.0)),
        depends_on=[str(p) for p in depends_on],
    )


def parse_dag(data: dict) -> DagRecord:
    """Build a DagRecord from a decoded DAG JSON document."""
    if not isinstance(data, dict):
        raise DagFormatError("DAG document must be a JSON object")
    missing = [k for k in REQUIRED_DAG_FIELDS if k not in data]
    if missing:
        raise DagFormatError(f"DAG document is missing fields: {missing}")

    dag_id = str(data["dag_id"])
    try:
        tasks = [_parse_task(t, dag_id) for t in data["tasks"]]
        return build_dag(
            dag_id,
            tasks,
            submission_time_epoch=float(data.get("submission_time", 0.0)),
            num_inference_steps=int(data.get("num_inference_steps", 0)),
            prompt_length=int(data.get("prompt_length", 0)),
            num_images=int(data.get("num_images", 0)),
            has_lora=bool(data.get("has_lora", False)),
            has_controlnet=bool(data.get("has_controlnet", False)),
        )
    except (TypeError, ValueError) as e:
        raise DagFormatError(f"DAG {dag_id} has an invalid field: {e}") from e


def load_dag_file(filepath: str) -> DagRecord:
    """Load one DAG from a JSON file.

    Raises:
        DagFormatError: If the file is not valid JSON or not a valid DAG
    """
    try:
        with open(filepath, "r") as f:
            data = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DagFormatError(f"{filepath} is not valid JSON: {e}") from e

    return parse_dag(data)


def load_dags(directory: str, spacing: Optional[SubmissionSpacing] = None) -> List[DagRecord]:
    """Load every *.json DAG in a directory.

    Files are read in name order; invalid ones are logged and skipped. The
    result is stably sorted by submission time, then submit offsets are
    assigned by spacing if given.

    Args:
        directory: Directory holding one DAG per JSON file
        spacing: Submission-time strategy

    Returns:
        DAGs in submission order
    """
    path = Path(directory)
    if not path.is_dir():
        raise FileNotFoundError(f"DAG directory not found: {directory}")

    dags: List[DagRecord] = []
    seen: Dict[str, Path] = {}
    for file in sorted(path.glob("*.json")):
        try:
            dag = load_dag_file(str(file))
        except (DagFormatError, OSError) as e:
            logger.error("Skipping DAG file %s: %s", file.name, e)
            continue
        if dag.dag_id in seen:
            logger.error("Skipping DAG file %s: dag_id %s already loaded from %s", file.name, dag.dag_id, seen[dag.dag_id].name)
            continue
        seen[dag.dag_id] = file
        dags.append(dag)

    dags.sort(key=lambda d: d.submission_time_epoch)
    if spacing is not None:
        spacing.assign(dags)

    logger.info("Loaded %d DAGs from %s", len(dags), directory)
    return dags


def load_topology(filepath: str) -> ClusterTopology:
    """Load the cluster topology from a JSON file.

    Expected layout::

        {"sites": [{"tier": "EDGE", "site_id": 0, "cost_per_sec": 0.0001,
                    "workers": [{"worker_id": 0, "mips": 2000}]}],
         "links": [{"source": "gateway", "target": "edge-0",
                    "bandwidth_mbps": 100, "propagation_ms": 2}]}

    Raises:
        TopologyError: If a site or link is malformed
    """
    with open(filepath, "r") as f:
        data = json.load(f)

    sites: List[SiteSpec] = []
    links: List[LinkSpec] = []

    try:
        for site_data in data.get("sites", []):
            workers = [
                WorkerSpec(
                    worker_id=int(w["worker_id"]),
                    mips=float(w["mips"]),
                    memory_mb=float(w.get("memory_mb", 16000.0)),
                    gpu_memory_mb=float(w.get("gpu_memory_mb", 8000.0)),
                )
                for w in site_data.get("workers", [])
            ]
            sites.append(
                SiteSpec(
                    tier=Tier(str(site_data["tier"]).upper()),
                    site_id=int(site_data["site_id"]),
                    workers=workers,
                    cost_per_byte=float(site_data.get("cost_per_byte", 0.0)),
                    cost_per_sec=float(site_data.get("cost_per_sec", 0.0)),
                    cost_per_mb=float(site_data.get("cost_per_mb", 0.0)),
                )
            )

        for link_data in data.get("links", []):
            links.append(
                LinkSpec(
                    source=link_data["source"],
                    target=link_data["target"],
                    bandwidth_mbps=float(link_data["bandwidth_mbps"]),
                    propagation_ms=float(link_data.get("propagation_ms", 0.0)),
                    link_type=link_data.get("type", "lan"),
                )
            )
    except (KeyError, TypeError, ValueError) as e:
        raise TopologyError(f"Invalid topology file {filepath}: {e}") from e

    return ClusterTopology(sites, links)
