"""Shared fixtures: DAG builders and a scripted execution substrate."""

import itertools
import json
from typing import Dict, List, Optional

import pytest
import simpy

from dagsim.cluster import ClusterState, WorkerInfo
from dagsim.loaders import build_dag
from dagsim.metrics import MetricsCollector
from dagsim.models import DagRecord, ObservedMetrics, TaskRecord, Tier
from dagsim.substrate import ExecutionSubstrate


def make_task(task_id: str, depends_on: Optional[List[str]] = None, **kwargs) -> TaskRecord:
    kwargs.setdefault("task_type", "denoise")
    kwargs.setdefault("duration_ms", 100.0)
    return TaskRecord(task_id=task_id, depends_on=list(depends_on or []), **kwargs)


def make_dag(dag_id: str, edges: Dict[str, List[str]], submit_at_ms: int = 0) -> DagRecord:
    """DAG whose tasks are the keys of edges, each mapped to its parents."""
    dag = build_dag(dag_id, [make_task(t, parents) for t, parents in edges.items()])
    dag.submit_at_sim_ms = submit_at_ms
    return dag


def edge_workers(count: int = 2, **kwargs) -> List[WorkerInfo]:
    return [WorkerInfo(tier=Tier.EDGE, site_id=0, worker_id=i, mips=2000.0, **kwargs) for i in range(count)]


def cloud_workers(count: int = 2, **kwargs) -> List[WorkerInfo]:
    return [WorkerInfo(tier=Tier.CLOUD, site_id=0, worker_id=i, mips=4000.0, **kwargs) for i in range(count)]


class ScriptedSubstrate(ExecutionSubstrate):
    """Runs every task immediately for a fixed duration, with no contention."""

    def __init__(self, env: simpy.Environment, workers: List[WorkerInfo], duration_ms: float = 100.0, cost: float = 0.0):
        self.env = env
        self.workers = workers
        self.duration_ms = duration_ms
        self.durations: Dict[str, float] = {}
        self.cost = cost
        self.listener = None
        self.submitted = []
        self._ids = itertools.count(1)

    def bind(self, listener):
        self.listener = listener

    def snapshot(self, now_ms: float) -> ClusterState:
        return ClusterState(current_time_ms=now_ms, workers=tuple(self.workers))

    def submit(self, request, placement):
        handle = next(self._ids)
        self.submitted.append((request, placement))
        self.env.process(self._run(handle, request, placement))
        return handle

    def _run(self, handle, request, placement):
        start = self.env.now
        self.listener.on_task_started(handle, start)
        yield self.env.timeout(self.durations.get(request.task_id, self.duration_ms))
        self.listener.on_task_outcome(
            handle,
            ObservedMetrics(
                start_time_ms=start,
                finish_time_ms=self.env.now,
                tier=placement.tier,
                site_id=placement.site_id,
                worker_id=placement.worker_id,
                cpu_cost=self.cost,
            ),
        )


@pytest.fixture
def env():
    return simpy.Environment()


@pytest.fixture
def metrics(tmp_path):
    collector = MetricsCollector(str(tmp_path / "logs"))
    yield collector
    collector.close()


@pytest.fixture
def dag_dir(tmp_path):
    """Directory with two valid DAG files, submitted out of name order."""
    directory = tmp_path / "dags"
    directory.mkdir()
    documents = {
        "a_late.json": {
            "dag_id": "late",
            "submission_time": 1700000002.5,
            "num_inference_steps": 30,
            "tasks": [
                {"task_id": "encode", "task_type": "text_encode", "duration_ms": 50, "memory_mb": 512},
                {"task_id": "denoise", "task_type": "denoise", "duration_ms": 400, "gpu_memory_mb": 4000, "depends_on": ["encode"]},
                {"task_id": "decode", "task_type": "vae_decode", "duration_ms": 80, "depends_on": ["denoise"]},
            ],
        },
        "b_early.json": {
            "dag_id": "early",
            "submission_time": 1700000000.0,
            "tasks": [
                {"task_id": "encode", "task_type": "text_encode", "duration_ms": 50},
                {"task_id": "denoise", "task_type": "denoise", "duration_ms": 300, "depends_on": ["encode"]},
            ],
        },
    }
    for name, doc in documents.items():
        (directory / name).write_text(json.dumps(doc))
    return directory
