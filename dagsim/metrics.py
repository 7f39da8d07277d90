"""Metrics collection and CSV/JSON export for DAG simulation."""

import csv
import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Dict, List, Optional

from .errors import LogSinkError
from .models import DagRecord, ResourceRequest, TaskRecord, Tier

TASK_LOG_FILE = "task_log.csv"
DAG_LOG_FILE = "dag_summary.csv"


def _ms(value: Optional[float]) -> float:
    return round(value, 3) if value is not None else -1.0


@dataclass
class TaskMetrics:
    """One row per finished task."""

    dag_id: str
    task_id: str
    task_type: str
    dag_submit_ms: int
    ready_ms: float
    scheduled_ms: float
    start_ms: float
    finish_ms: float
    tier: str
    site_id: int
    worker_id: int
    duration_ms: float
    length_mi: int
    proj_edge_sec: float
    proj_cloud_sec: float
    input_bytes: int
    output_bytes: int
    gpu_mem_mb: float
    gpu_util: float
    queue_wait_ms: float
    upload_ms: float
    download_ms: float
    net_total_ms: float
    cost: float


@dataclass
class DagMetrics:
    """One row per finished (or force-finalised) DAG."""

    dag_id: str
    submit_ms: int
    finish_ms: float
    makespan_ms: float
    total_tasks: int
    completed_tasks: int
    edge_tasks: int
    cloud_tasks: int
    total_net_ms: float
    total_cost: float
    complete: bool


class MetricsCollector:
    """Writes task and DAG rows to CSV as they happen and keeps them for summaries.

    Both files are opened at construction; every row is flushed immediately
    so a crash loses at most the record being written.
    """

    def __init__(self, output_dir: str):
        """Open the log sinks.

        Args:
            output_dir: Directory for task_log.csv and dag_summary.csv

        Raises:
            LogSinkError: If the files cannot be created
        """
        self.output_dir = Path(output_dir)
        self.task_metrics: List[TaskMetrics] = []
        self.dag_metrics: Dict[str, DagMetrics] = {}
        self._closed = False

        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self._task_file = open(self.output_dir / TASK_LOG_FILE, "w", newline="")
        except OSError as e:
            raise LogSinkError(f"Failed to open DAG log files in {output_dir}: {e}") from e
        try:
            self._dag_file = open(self.output_dir / DAG_LOG_FILE, "w", newline="")
        except OSError as e:
            self._task_file.close()
            raise LogSinkError(f"Failed to open DAG log files in {output_dir}: {e}") from e

        self._task_writer = csv.DictWriter(self._task_file, fieldnames=[f.name for f in fields(TaskMetrics)])
        self._dag_writer = csv.DictWriter(self._dag_file, fieldnames=[f.name for f in fields(DagMetrics)])
        self._task_writer.writeheader()
        self._task_file.flush()
        self._dag_writer.writeheader()
        self._dag_file.flush()

    def record_task_completion(self, task: TaskRecord, dag: DagRecord, request: ResourceRequest):
        """Record and persist a finished task.

        Args:
            task: The completed task
            dag: The DAG it belongs to
            request: The resource request it was submitted with
        """
        metrics = TaskMetrics(
            dag_id=dag.dag_id,
            task_id=task.task_id,
            task_type=task.task_type,
            dag_submit_ms=dag.submit_at_sim_ms,
            ready_ms=_ms(task.ready_time_ms),
            scheduled_ms=_ms(task.scheduled_time_ms),
            start_ms=_ms(task.start_time_ms),
            finish_ms=_ms(task.finish_time_ms),
            tier=task.assigned_tier.value if task.assigned_tier else "NA",
            site_id=task.assigned_site_id if task.assigned_site_id is not None else -1,
            worker_id=task.assigned_worker_id if task.assigned_worker_id is not None else -1,
            duration_ms=task.duration_ms,
            length_mi=request.length_mi,
            proj_edge_sec=round(request.projected_edge_sec, 3),
            proj_cloud_sec=round(request.projected_cloud_sec, 3),
            input_bytes=request.input_bytes,
            output_bytes=request.output_bytes,
            gpu_mem_mb=task.gpu_memory_mb,
            gpu_util=task.gpu_utilization,
            queue_wait_ms=_ms(task.queue_delay_ms),
            upload_ms=_ms(task.upload_delay_ms),
            download_ms=_ms(task.download_delay_ms),
            net_total_ms=_ms(task.network_delay_ms),
            cost=task.actual_cost,
        )
        self.task_metrics.append(metrics)
        self._write(self._task_writer, self._task_file, asdict(metrics))

    def record_dag_completion(self, dag: DagRecord, complete: bool = True):
        """Record and persist a DAG summary row.

        Args:
            dag: DAG with complete_time_ms set
            complete: False when the DAG is being force-finalised
        """
        finish = dag.complete_time_ms if dag.complete_time_ms is not None else float(dag.submit_at_sim_ms)
        tasks = dag.tasks.values()

        metrics = DagMetrics(
            dag_id=dag.dag_id,
            submit_ms=dag.submit_at_sim_ms,
            finish_ms=_ms(finish),
            makespan_ms=_ms(max(0.0, finish - dag.submit_at_sim_ms)),
            total_tasks=dag.total_tasks,
            completed_tasks=dag.completed_tasks,
            edge_tasks=sum(1 for t in tasks if t.assigned_tier is Tier.EDGE),
            cloud_tasks=sum(1 for t in tasks if t.assigned_tier is Tier.CLOUD),
            total_net_ms=_ms(sum(t.network_delay_ms for t in tasks)),
            total_cost=sum(t.actual_cost for t in tasks),
            complete=complete,
        )
        self.dag_metrics[dag.dag_id] = metrics
        self._write(self._dag_writer, self._dag_file, asdict(metrics))

    @staticmethod
    def _write(writer: csv.DictWriter, sink, row: dict):
        try:
            writer.writerow(row)
            sink.flush()
        except (OSError, ValueError, csv.Error) as e:
            raise LogSinkError(f"Failed to write log row to {sink.name}: {e}") from e

    def close(self):
        """Flush and close both sinks; safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        try:
            self._task_file.flush()
            self._task_file.close()
        finally:
            self._dag_file.flush()
            self._dag_file.close()

    def get_summary(self) -> dict:
        """Generate a summary of the simulation results."""
        if not self.dag_metrics:
            return {"num_dags": 0, "num_tasks": len(self.task_metrics)}

        dags = list(self.dag_metrics.values())
        complete = [d for d in dags if d.complete]
        tasks = self.task_metrics

        return {
            "num_dags": len(dags),
            "num_complete_dags": len(complete),
            "num_tasks": len(tasks),
            "edge_tasks": sum(1 for t in tasks if t.tier == Tier.EDGE.value),
            "cloud_tasks": sum(1 for t in tasks if t.tier == Tier.CLOUD.value),
            "total_makespan_ms": sum(d.makespan_ms for d in complete),
            "average_makespan_ms": sum(d.makespan_ms for d in complete) / len(complete) if complete else 0.0,
            "max_makespan_ms": max((d.makespan_ms for d in complete), default=0.0),
            "total_cost": sum(d.total_cost for d in dags),
            "average_queue_wait_ms": sum(t.queue_wait_ms for t in tasks) / len(tasks) if tasks else 0.0,
            "average_network_ms": sum(t.net_total_ms for t in tasks) / len(tasks) if tasks else 0.0,
        }

    def export_json(self, filepath: str, summary: Optional[dict] = None):
        """Export summary, DAG rows and task rows to a JSON file.

        Args:
            filepath: Output file path
            summary: Optional summary to include
        """
        output = {
            "summary": summary or self.get_summary(),
            "dags": [asdict(m) for m in self.dag_metrics.values()],
            "tasks": [asdict(m) for m in self.task_metrics],
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        with open(filepath, "w") as f:
            json.dump(output, f, indent=2)

    def print_summary(self, policy_name: str = ""):
        """Print a human-readable summary to console."""
        summary = self.get_summary()

        print("\n" + "=" * 60)
        print("DAG SIMULATION RESULTS" + (f" ({policy_name})" if policy_name else ""))
        print("=" * 60)

        print(f"\nDAGs logged:     {summary['num_dags']}")
        print(f"Tasks executed:  {summary['num_tasks']}")
        if not summary["num_dags"]:
            print("\n" + "=" * 60)
            return

        print(f"DAGs completed:  {summary['num_complete_dags']}")

        print("\nPLACEMENT:")
        print(f"  Edge tasks:  {summary['edge_tasks']}")
        print(f"  Cloud tasks: {summary['cloud_tasks']}")

        print("\nMAKESPAN (completed DAGs):")
        print(f"  Total:   {summary['total_makespan_ms']:,.2f} ms")
        print(f"  Average: {summary['average_makespan_ms']:,.2f} ms")
        print(f"  Max:     {summary['max_makespan_ms']:,.2f} ms")

        print("\nPER TASK AVERAGES:")
        print(f"  Queue wait: {summary['average_queue_wait_ms']:,.2f} ms")
        print(f"  Network:    {summary['average_network_ms']:,.2f} ms")

        print(f"\nTotal cost: {summary['total_cost']:.6f}")
        print("\n" + "=" * 60)
