"""Point-in-time snapshot of the edge/cloud worker pool."""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from .models import Tier

DEFAULT_TIER_MIPS = 1000.0


@dataclass(frozen=True)
class WorkerInfo:
    """Read-only view of one worker at snapshot time."""

    tier: Tier
    site_id: int
    worker_id: int
    mips: float
    free_memory_mb: float = float("inf")
    free_gpu_memory_mb: float = float("inf")
    queued_task_count: int = 0
    queue_wait_ms: float = 0.0  # Estimated wait before a new task starts

    def can_fit(self, memory_mb: float, gpu_memory_mb: float) -> bool:
        return self.free_memory_mb >= memory_mb and self.free_gpu_memory_mb >= gpu_memory_mb

    @property
    def utilization(self) -> float:
        q = self.queued_task_count
        if q <= 0:
            return 0.0
        return min(1.0, q / (q + 1.0))

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.site_id, self.worker_id)


@dataclass(frozen=True)
class ClusterState:
    """Snapshot of every worker, indexed tier -> site -> worker.

    Built fresh for every placement decision; worker occupancy changes
    between calls so snapshots must never be reused.
    """

    current_time_ms: float
    workers: Tuple[WorkerInfo, ...] = field(default_factory=tuple)

    def workers_in_tier(self, tier: Tier) -> List[WorkerInfo]:
        """Workers of one tier in (site, worker) order."""
        return sorted((w for w in self.workers if w.tier is tier), key=lambda w: w.sort_key)

    def all_workers(self) -> List[WorkerInfo]:
        """Edge workers first, then cloud workers."""
        return self.workers_in_tier(Tier.EDGE) + self.workers_in_tier(Tier.CLOUD)

    def sites(self, tier: Tier) -> List[int]:
        return sorted({w.site_id for w in self.workers if w.tier is tier})

    def get_worker(self, tier: Tier, site_id: int, worker_id: int) -> Optional[WorkerInfo]:
        for w in self.workers:
            if w.tier is tier and w.site_id == site_id and w.worker_id == worker_id:
                return w
        return None

    def average_mips(self, tier: Tier) -> float:
        tier_workers = self.workers_in_tier(tier)
        if not tier_workers:
            return DEFAULT_TIER_MIPS
        return sum(w.mips for w in tier_workers) / len(tier_workers)

    @property
    def worker_count(self) -> int:
        return len(self.workers)

    def __str__(self) -> str:
        return (
            f"ClusterState[time={self.current_time_ms:.0f} ms, "
            f"edge={len(self.workers_in_tier(Tier.EDGE))}, cloud={len(self.workers_in_tier(Tier.CLOUD))}]"
        )
