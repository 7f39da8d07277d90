"""Scheduling policies that map a ready task to a worker.

This module provides the tiered placement policies:
- RoundRobinPolicy: rotates over the workers of the preferred tier
- EdgeFirstFeasiblePolicy: first edge worker with room, then cloud
- EFTPolicy: earliest estimated finish time across both tiers

The remote-agent policy lives in ``dagsim.remote``.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from .cluster import ClusterState, WorkerInfo
from .config import SimulationConfig
from .models import PlacementDecision, TaskContext, Tier


class PolicyKind(str, Enum):
    ROUND_ROBIN = "round_robin"
    EDGE_FIRST = "edge_first"
    EFT = "eft"
    REMOTE = "remote"


class SchedulingPolicy(ABC):
    """Base class for placement policies.

    ``decide`` must always return a decision and must not mutate the
    cluster snapshot it is given.
    """

    kind: PolicyKind

    def attach(self, accounting):
        """Receive the runtime's read-only accounting accessor.

        Args:
            accounting: Object exposing get_active_dag_count() and
                get_dag_cost_so_far(dag_id)
        """

    @abstractmethod
    def decide(self, task: TaskContext, cluster: ClusterState) -> PlacementDecision:
        """Choose a worker for a ready task.

        Args:
            task: Context of the task to place
            cluster: Fresh snapshot of the worker pool

        Returns:
            The placement for this task
        """

    @property
    def name(self) -> str:
        return self.kind.value

    def close(self):
        """Release any resources held by the policy."""


def _placement(worker: WorkerInfo, **estimates) -> PlacementDecision:
    return PlacementDecision(
        tier=worker.tier,
        site_id=worker.site_id,
        worker_id=worker.worker_id,
        **estimates,
    )


def first_feasible(workers: List[WorkerInfo], task: TaskContext) -> Optional[WorkerInfo]:
    for worker in workers:
        if worker.can_fit(task.cpu_memory_mb, task.gpu_memory_mb):
            return worker
    return None


def first_available(cluster: ClusterState) -> PlacementDecision:
    """Overflow placement: first edge worker, else first cloud worker."""
    for tier in (Tier.EDGE, Tier.CLOUD):
        workers = cluster.workers_in_tier(tier)
        if workers:
            return _placement(workers[0])
    return PlacementDecision()


class RoundRobinPolicy(SchedulingPolicy):
    """Cycles through the workers of the preferred tier."""

    kind = PolicyKind.ROUND_ROBIN

    def __init__(self):
        self._next_index = 0

    def decide(self, task: TaskContext, cluster: ClusterState) -> PlacementDecision:
        tier = Tier.EDGE if cluster.workers_in_tier(Tier.EDGE) else Tier.CLOUD
        workers = cluster.workers_in_tier(tier)

        index = self._next_index
        self._next_index += 1

        if not workers:
            return PlacementDecision(tier=tier)
        return _placement(workers[index % len(workers)])


class EdgeFirstFeasiblePolicy(SchedulingPolicy):
    """Place on the first edge worker that fits, falling back to cloud."""

    kind = PolicyKind.EDGE_FIRST

    def decide(self, task: TaskContext, cluster: ClusterState) -> PlacementDecision:
        for tier in (Tier.EDGE, Tier.CLOUD):
            worker = first_feasible(cluster.workers_in_tier(tier), task)
            if worker is not None:
                return _placement(worker)

        # Nothing fits anywhere; overflow onto the first edge worker
        return first_available(cluster)


class EFTPolicy(SchedulingPolicy):
    """Earliest Finish Time placement.

    finish = now + queue wait + (length_mi / mips) * 1000 + network penalty,
    where the penalty only applies to cloud workers.
    """

    kind = PolicyKind.EFT

    def __init__(self, cloud_network_penalty_ms: float = 1.0):
        self.cloud_network_penalty_ms = cloud_network_penalty_ms

    def estimate_finish_time(self, task: TaskContext, worker: WorkerInfo, now_ms: float) -> float:
        exec_ms = (task.length_mi / worker.mips) * 1000.0 if worker.mips > 0 else float("inf")
        return now_ms + worker.queue_wait_ms + exec_ms + self.network_penalty(worker.tier)

    def network_penalty(self, tier: Tier) -> float:
        return self.cloud_network_penalty_ms if tier is Tier.CLOUD else 0.0

    def decide(self, task: TaskContext, cluster: ClusterState) -> PlacementDecision:
        best: Optional[PlacementDecision] = None

        for worker in cluster.all_workers():
            if not worker.can_fit(task.cpu_memory_mb, task.gpu_memory_mb):
                continue
            finish = self.estimate_finish_time(task, worker, cluster.current_time_ms)
            if best is None or finish < best.estimated_finish_time_ms:
                best = _placement(
                    worker,
                    estimated_finish_time_ms=finish,
                    estimated_network_delay_ms=self.network_penalty(worker.tier),
                )

        if best is None:
            return first_available(cluster)
        return best


def create_policy(kind, config: Optional[SimulationConfig] = None, client=None) -> SchedulingPolicy:
    """Build a policy by name.

    Args:
        kind: PolicyKind or its string value
        config: Simulation config (EFT penalty, remote agent settings)
        client: Optional httpx.Client for the remote policy

    Returns:
        A new policy instance
    """
    kind = PolicyKind(kind)
    config = config or SimulationConfig()

    if kind is PolicyKind.ROUND_ROBIN:
        return RoundRobinPolicy()
    if kind is PolicyKind.EDGE_FIRST:
        return EdgeFirstFeasiblePolicy()
    if kind is PolicyKind.EFT:
        return EFTPolicy(cloud_network_penalty_ms=config.cloud_network_penalty_ms)

    from .remote import RemoteAgentPolicy

    return RemoteAgentPolicy(
        service_url=config.remote.service_url,
        timeout_ms=config.remote.timeout_ms,
        training_mode=config.remote.training_mode,
        budget=config.reward.budget,
        client=client,
    )
