"""SimPy-based execution substrate for placed DAG tasks."""

import itertools
import logging
from typing import Dict, Hashable, List, Optional, Tuple

import simpy

from .cluster import ClusterState, WorkerInfo
from .errors import TopologyError
from .models import ObservedMetrics, PlacementDecision, ResourceRequest, Tier
from .substrate import ExecutionListener, ExecutionSubstrate
from .topology import GATEWAY, ClusterTopology, SiteSpec, WorkerSpec

logger = logging.getLogger(__name__)


class SimulatedWorker:
    """One worker: a single execution slot plus memory accounting."""

    def __init__(self, env: simpy.Environment, site: SiteSpec, spec: WorkerSpec):
        self.env = env
        self.site = site
        self.spec = spec
        self.slot = simpy.Resource(env, capacity=1)

        self.used_memory_mb = 0.0
        self.used_gpu_memory_mb = 0.0
        self.pending_tasks = 0  # Submitted but not yet executing
        self.pending_work_ms = 0.0
        self.running_until: Optional[float] = None

    @property
    def key(self) -> Tuple[Tier, int, int]:
        return (self.site.tier, self.site.site_id, self.spec.worker_id)

    def exec_time_ms(self, length_mi: float) -> float:
        if self.spec.mips <= 0:
            raise TopologyError(f"Worker {self.key} has invalid MIPS: {self.spec.mips}")
        return length_mi / self.spec.mips * 1000.0

    def enqueue(self, exec_ms: float):
        self.pending_tasks += 1
        self.pending_work_ms += exec_ms

    def begin(self, request: ResourceRequest, exec_ms: float):
        self.pending_tasks -= 1
        self.pending_work_ms -= exec_ms
        self.used_memory_mb += request.memory_mb
        self.used_gpu_memory_mb += request.gpu_memory_mb
        self.running_until = self.env.now + exec_ms

    def end(self, request: ResourceRequest):
        self.used_memory_mb -= request.memory_mb
        self.used_gpu_memory_mb -= request.gpu_memory_mb
        self.running_until = None

    def info(self, now_ms: float) -> WorkerInfo:
        remaining = max(0.0, self.running_until - now_ms) if self.running_until is not None else 0.0
        running = 1 if self.running_until is not None else 0
        return WorkerInfo(
            tier=self.site.tier,
            site_id=self.site.site_id,
            worker_id=self.spec.worker_id,
            mips=self.spec.mips,
            free_memory_mb=self.spec.memory_mb - self.used_memory_mb,
            free_gpu_memory_mb=self.spec.gpu_memory_mb - self.used_gpu_memory_mb,
            queued_task_count=self.pending_tasks + running,
            queue_wait_ms=remaining + max(0.0, self.pending_work_ms),
        )


class SimulatedCluster(ExecutionSubstrate):
    """Runs tasks on simulated workers and reports observed metrics.

    Each task goes through upload, queueing on its worker, computation and
    download phases; cost is charged at the site's prices.
    """

    def __init__(self, env: simpy.Environment, topology: ClusterTopology):
        """Initialize the cluster.

        Args:
            env: SimPy environment
            topology: Sites, workers and network links
        """
        self.env = env
        self.topology = topology
        self._listener: Optional[ExecutionListener] = None
        self._handles = itertools.count(1)

        self.workers: Dict[Tuple[Tier, int, int], SimulatedWorker] = {}
        for site in topology.sites:
            for spec in site.workers:
                worker = SimulatedWorker(env, site, spec)
                self.workers[worker.key] = worker

        if not self.workers:
            raise TopologyError("Topology has no workers")

    def bind(self, listener: ExecutionListener):
        self._listener = listener

    def snapshot(self, now_ms: float) -> ClusterState:
        return ClusterState(
            current_time_ms=now_ms,
            workers=tuple(w.info(now_ms) for w in self._ordered_workers()),
        )

    def _ordered_workers(self, tier: Optional[Tier] = None) -> List[SimulatedWorker]:
        workers = [w for w in self.workers.values() if tier is None or w.site.tier is tier]
        return sorted(workers, key=lambda w: (w.site.tier is Tier.CLOUD,) + w.key[1:])

    def resolve(self, placement: PlacementDecision) -> SimulatedWorker:
        """Worker named by a placement, or the nearest sensible substitute."""
        worker = self.workers.get((placement.tier, placement.site_id, placement.worker_id))
        if worker is not None:
            return worker

        tier_workers = self._ordered_workers(placement.tier)
        substitute = tier_workers[0] if tier_workers else self._ordered_workers()[0]
        logger.warning("Unknown placement %s, running on %s instead", placement, substitute.key)
        return substitute

    def submit(self, request: ResourceRequest, placement: PlacementDecision) -> Hashable:
        if self._listener is None:
            raise RuntimeError("SimulatedCluster.submit called before bind()")

        handle = next(self._handles)
        worker = self.resolve(placement)
        exec_ms = worker.exec_time_ms(request.length_mi)
        worker.enqueue(exec_ms)
        self.env.process(self._execute(handle, request, worker, exec_ms))
        return handle

    def _execute(self, handle: Hashable, request: ResourceRequest, worker: SimulatedWorker, exec_ms: float):
        """SimPy process: upload, wait for the worker, compute, download."""
        site = worker.site

        upload_ms = self.topology.get_transfer_time(GATEWAY, site.node_id, request.input_bytes)
        if upload_ms > 0:
            yield self.env.timeout(upload_ms)

        with worker.slot.request() as req:
            yield req
            worker.begin(request, exec_ms)
            start = self.env.now
            self._listener.on_task_started(handle, start)
            yield self.env.timeout(exec_ms)
            worker.end(request)

        download_ms = self.topology.get_transfer_time(site.node_id, GATEWAY, request.output_bytes)
        if download_ms > 0:
            yield self.env.timeout(download_ms)

        bw_cost = (request.input_bytes + request.output_bytes) * site.cost_per_byte
        cpu_cost = (exec_ms / 1000.0) * site.cost_per_sec + request.memory_mb * site.cost_per_mb

        metrics = ObservedMetrics(
            start_time_ms=start,
            finish_time_ms=self.env.now,
            tier=site.tier,
            site_id=site.site_id,
            worker_id=worker.spec.worker_id,
            upload_delay_ms=upload_ms,
            download_delay_ms=download_ms,
            network_delay_ms=upload_ms + download_ms,
            bw_cost=bw_cost,
            cpu_cost=cpu_cost,
        )
        self._listener.on_task_outcome(handle, metrics)
