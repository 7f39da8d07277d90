"""DAG runtime manager.

Drives DAG and task lifecycles on a SimPy timeline:

    DAG_SUBMIT     -> root tasks become READY
    TASK_READY     -> the active policy places the task, the substrate runs it
    TASK_FINISHED  -> children are released, cost and makespan are accounted

Task completion is reported by the execution substrate through
``on_task_outcome``; the TASK_FINISHED transition is then applied
synchronously.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Hashable, Iterable, List, Optional, Set, Tuple

import simpy

from .config import SimulationConfig
from .errors import LogSinkError
from .metrics import MetricsCollector
from .models import (
    DagRecord,
    DagState,
    ObservedMetrics,
    ResourceRequest,
    TaskContext,
    TaskRecord,
    TaskState,
)
from .policies import PolicyKind, SchedulingPolicy
from .remote import ObservationInfo, compute_reward, placeholder_context
from .substrate import ExecutionSubstrate

logger = logging.getLogger(__name__)

MIB = 1024.0 * 1024.0
MIN_TRANSFER_BYTES = 1024


class EventKind(str, Enum):
    DAG_SUBMIT = "DAG_SUBMIT"
    TASK_READY = "TASK_READY"
    TASK_FINISHED = "TASK_FINISHED"


@dataclass(frozen=True)
class RuntimeEvent:
    """An event on the runtime's timeline."""

    kind: EventKind
    dag_id: str
    task_id: Optional[str] = None
    dag: Optional[DagRecord] = None


class DagRuntimeManager:
    """Owns all DAG and task state and reacts to runtime events."""

    def __init__(
        self,
        env: simpy.Environment,
        dags: Iterable[DagRecord],
        policy: SchedulingPolicy,
        substrate: ExecutionSubstrate,
        metrics: MetricsCollector,
        config: Optional[SimulationConfig] = None,
    ):
        """Initialize the runtime.

        Args:
            env: SimPy environment (time unit: milliseconds)
            dags: All DAGs of the run
            policy: Active scheduling policy
            substrate: Execution substrate that runs placed tasks
            metrics: Log sinks for task and DAG rows
            config: Simulation settings
        """
        self.env = env
        self.all_dags: List[DagRecord] = list(dags)
        self.policy = policy
        self.substrate = substrate
        self.metrics = metrics
        self.config = config or SimulationConfig()

        self.active_dags: Dict[str, DagRecord] = {}
        self.completed_dags: Dict[str, DagRecord] = {}
        self._dag_cost: Dict[str, float] = {}

        # Substrate handle -> (dag_id, task_id)
        self._handles: Dict[Hashable, Tuple[str, str]] = {}
        self._requests: Dict[Tuple[str, str], ResourceRequest] = {}

        self.dags_arrived = 0
        self.dags_with_scheduled_tasks: Set[str] = set()
        self.total_makespan_ms = 0.0
        self._shut_down = False

        self.policy.attach(self)
        self.substrate.bind(self)

    # ------------------------------------------------------------------
    # Accounting accessors
    # ------------------------------------------------------------------

    def get_active_dag_count(self) -> int:
        return len(self.active_dags)

    def get_dag_cost_so_far(self, dag_id: str) -> float:
        return self._dag_cost.get(dag_id, 0.0)

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def send(self, delay: float, event: RuntimeEvent):
        """Deliver an event after delay ms; equal times keep send order."""
        timeout = self.env.timeout(delay, value=event)
        timeout.callbacks.append(self._deliver)

    def _deliver(self, timeout: simpy.Event):
        self.process_event(timeout.value)

    def schedule_submissions(self, dags: Optional[Iterable[DagRecord]] = None):
        """Queue a DAG_SUBMIT for every DAG at its submit offset.

        DAGs passed in that the runtime does not know yet are added to the
        run, so shutdown finalises and logs them too.
        """
        if dags is None:
            dags = self.all_dags
        else:
            dags = list(dags)
            known = {d.dag_id for d in self.all_dags}
            for dag in dags:
                if dag.dag_id not in known:
                    self.all_dags.append(dag)
                    known.add(dag.dag_id)

        for dag in dags:
            delay = max(0.0, dag.submit_at_sim_ms - self.env.now)
            self.send(delay, RuntimeEvent(EventKind.DAG_SUBMIT, dag.dag_id, dag=dag))

    def process_event(self, event: RuntimeEvent):
        if event.kind is EventKind.DAG_SUBMIT:
            self.on_dag_submit(event.dag)
            return

        dag = self.active_dags.get(event.dag_id)
        if dag is None:
            logger.error("DAG %s not found for %s of task %s; event dropped", event.dag_id, event.kind.value, event.task_id)
            return
        task = dag.get_task(event.task_id)
        if task is None:
            logger.error("Task %s not found in DAG %s; %s dropped", event.task_id, event.dag_id, event.kind.value)
            return

        if event.kind is EventKind.TASK_READY:
            self.on_task_ready(dag, task)
        elif event.kind is EventKind.TASK_FINISHED:
            self.on_task_finished(dag, task)

    # ------------------------------------------------------------------
    # Lifecycle transitions
    # ------------------------------------------------------------------

    def on_dag_submit(self, dag: DagRecord):
        now = self.env.now
        dag.advance(DagState.SUBMITTED)
        self.active_dags[dag.dag_id] = dag
        self._dag_cost[dag.dag_id] = 0.0
        self.dags_arrived += 1

        logger.info("[%s] [%.2f] DAG submitted: %s with %d tasks", dag.application_name, now, dag.dag_id, dag.total_tasks)

        if dag.total_tasks == 0:
            dag.advance(DagState.RUNNING)
            self._complete_dag(dag, now)
            return

        for task in dag.root_tasks():
            self._mark_ready(dag, task, now)

    def _mark_ready(self, dag: DagRecord, task: TaskRecord, ready_time_ms: float):
        task.ready_time_ms = ready_time_ms
        task.advance(TaskState.READY)
        # Zero delay keeps readiness ordering reproducible
        self.send(0, RuntimeEvent(EventKind.TASK_READY, dag.dag_id, task.task_id))

    def on_task_ready(self, dag: DagRecord, task: TaskRecord):
        now = self.env.now
        task.advance(TaskState.SCHEDULED)
        task.scheduled_time_ms = now
        if dag.state is DagState.SUBMITTED:
            dag.advance(DagState.RUNNING)

        request = self.build_request(dag, task)
        context = self.build_context(dag, task, request)
        cluster = self.substrate.snapshot(now)
        placement = self.policy.decide(context, cluster)

        logger.debug(
            "[%s] [%.2f] Task ready: %s of DAG %s, lengthMI=%d, execEdge=%.3fs, execCloud=%.3fs, in=%dB out=%dB -> %s",
            dag.application_name,
            now,
            task.task_id,
            dag.dag_id,
            request.length_mi,
            request.projected_edge_sec,
            request.projected_cloud_sec,
            request.input_bytes,
            request.output_bytes,
            placement,
        )

        handle = self.substrate.submit(request, placement)
        self._handles[handle] = (dag.dag_id, task.task_id)
        self._requests[(dag.dag_id, task.task_id)] = request
        self.dags_with_scheduled_tasks.add(dag.dag_id)

    def on_task_started(self, handle: Hashable, start_time_ms: float):
        ids = self._handles.get(handle)
        if ids is None:
            return
        dag = self.active_dags.get(ids[0])
        task = dag.get_task(ids[1]) if dag is not None else None
        if task is None:
            logger.error("Start reported for unknown task %s/%s", ids[0], ids[1])
            return
        task.start_time_ms = start_time_ms
        if task.state is TaskState.SCHEDULED:
            task.advance(TaskState.RUNNING)

    def on_task_outcome(self, handle: Hashable, metrics: ObservedMetrics):
        """Entry point for the substrate when a task finishes."""
        ids = self._handles.pop(handle, None)
        if ids is None:
            logger.debug("Ignoring outcome for unknown handle %r", handle)
            return
        dag_id, task_id = ids

        dag = self.active_dags.get(dag_id)
        if dag is None:
            logger.error("DAG %s not found for completed task %s; outcome dropped", dag_id, task_id)
            return
        task = dag.get_task(task_id)
        if task is None:
            logger.error("Task %s not found in DAG %s; outcome dropped", task_id, dag_id)
            return

        task.start_time_ms = metrics.start_time_ms
        task.finish_time_ms = metrics.finish_time_ms
        task.assigned_tier = metrics.tier
        task.assigned_site_id = metrics.site_id
        task.assigned_worker_id = metrics.worker_id
        task.upload_delay_ms = metrics.upload_delay_ms
        task.download_delay_ms = metrics.download_delay_ms
        task.network_delay_ms = metrics.network_delay_ms
        task.queue_delay_ms = max(0.0, metrics.start_time_ms - task.scheduled_time_ms)
        task.actual_cost = metrics.total_cost

        latency = max(0.0, task.finish_time_ms - task.ready_time_ms)
        cost_before = self._dag_cost.get(dag_id, 0.0)
        reward, violated = compute_reward(latency, task.actual_cost, cost_before, self.config.reward)
        cost_so_far = cost_before + task.actual_cost
        self._dag_cost[dag_id] = cost_so_far

        if task.state is TaskState.SCHEDULED:
            task.advance(TaskState.RUNNING)
        self.process_event(RuntimeEvent(EventKind.TASK_FINISHED, dag_id, task_id))

        if self.policy.kind is PolicyKind.REMOTE:
            info = ObservationInfo(
                actual_latency=latency,
                actual_cost=task.actual_cost,
                cost_so_far=cost_so_far,
                budget=self.config.reward.budget,
                budget_violated=violated,
            )
            self._report_outcome(dag, task, reward, info)

    def on_task_finished(self, dag: DagRecord, task: TaskRecord):
        task.advance(TaskState.DONE)
        dag.increment_completed_tasks()

        logger.info(
            "[%s] [%.2f] Task finished: %s of %s (%d/%d)",
            dag.application_name,
            self.env.now,
            task.task_id,
            dag.dag_id,
            dag.completed_tasks,
            dag.total_tasks,
        )

        request = self._requests.pop((dag.dag_id, task.task_id), None) or self.build_request(dag, task)
        try:
            self.metrics.record_task_completion(task, dag, request)
        except LogSinkError as e:
            logger.error("Error logging task %s of DAG %s: %s", task.task_id, dag.dag_id, e)

        for child_id in task.children:
            child = dag.get_task(child_id)
            if child is None:
                logger.error("Child %s of task %s missing from DAG %s", child_id, task.task_id, dag.dag_id)
                continue
            if child.decrement_remaining_deps():
                self._mark_ready(dag, child, task.finish_time_ms)

        if dag.is_complete:
            self._complete_dag(dag, task.finish_time_ms)

    def _complete_dag(self, dag: DagRecord, complete_time_ms: float):
        dag.complete_time_ms = complete_time_ms
        dag.advance(DagState.COMPLETE)
        self.total_makespan_ms += dag.makespan_ms

        logger.info("[%.2f] DAG complete: %s Makespan: %.2f ms", self.env.now, dag.dag_id, dag.makespan_ms)

        try:
            self.metrics.record_dag_completion(dag)
        except LogSinkError as e:
            logger.error("Error logging DAG %s: %s", dag.dag_id, e)
        del self.active_dags[dag.dag_id]
        self._dag_cost.pop(dag.dag_id, None)
        self.completed_dags[dag.dag_id] = dag

    # ------------------------------------------------------------------
    # Task descriptors
    # ------------------------------------------------------------------

    def _transfer_sizes(self, task: TaskRecord) -> Tuple[int, int]:
        profile = self.config.task_profiles.get(task.task_type)

        if profile is not None and profile.input_kb > 0:
            input_bytes = int(profile.input_kb * 1024.0)
        elif task.gpu_memory_mb > 0:
            input_bytes = int(task.gpu_memory_mb * MIB * 0.5)
        else:
            input_bytes = int(task.memory_mb * MIB * 0.2)
        input_bytes = max(MIN_TRANSFER_BYTES, input_bytes)

        if profile is not None and profile.output_kb > 0:
            output_bytes = int(profile.output_kb * 1024.0)
        else:
            output_bytes = int(input_bytes * 0.1)
        return input_bytes, max(MIN_TRANSFER_BYTES, output_bytes)

    def build_request(self, dag: DagRecord, task: TaskRecord) -> ResourceRequest:
        """Turn a task's declared characteristics into a resource request."""
        reference_mips = self.config.reference_mips
        length_mi = max(1, int(task.duration_ms * reference_mips / 1000.0))
        input_bytes, output_bytes = self._transfer_sizes(task)

        return ResourceRequest(
            dag_id=dag.dag_id,
            task_id=task.task_id,
            task_type=task.task_type,
            length_mi=length_mi,
            memory_mb=task.memory_mb,
            gpu_memory_mb=task.gpu_memory_mb,
            input_bytes=input_bytes,
            output_bytes=output_bytes,
            projected_edge_sec=length_mi / self.config.edge_reference_mips,
            projected_cloud_sec=length_mi / reference_mips,
        )

    def build_context(self, dag: DagRecord, task: TaskRecord, request: ResourceRequest) -> TaskContext:
        now = self.env.now
        return TaskContext(
            dag_id=dag.dag_id,
            task_id=task.task_id,
            task_type=task.task_type,
            length_mi=float(request.length_mi),
            cpu_memory_mb=task.memory_mb,
            gpu_memory_mb=task.gpu_memory_mb,
            gpu_utilization=task.gpu_utilization,
            ready_time_ms=task.ready_time_ms if task.ready_time_ms is not None else now,
            current_time_ms=now,
            num_dependencies=len(task.depends_on),
            num_dependents=len(task.children),
        )

    # ------------------------------------------------------------------
    # Remote agent feedback
    # ------------------------------------------------------------------

    @staticmethod
    def find_pending_task(dag: DagRecord) -> Optional[TaskRecord]:
        """A task of the DAG still to run, preferring ones already released."""
        for task in dag.tasks.values():
            if task.state in (TaskState.READY, TaskState.SCHEDULED):
                return task
        for task in dag.tasks.values():
            if task.state is not TaskState.DONE:
                return task
        return None

    def _report_outcome(self, dag: DagRecord, task: TaskRecord, reward: float, info: ObservationInfo):
        if (dag.dag_id, task.task_id) not in self.policy.traces:
            return

        now = self.env.now
        done = dag.dag_id not in self.active_dags
        pending = None if done else self.find_pending_task(dag)
        if pending is None:
            context = placeholder_context(dag.dag_id, now)
        else:
            context = self.build_context(dag, pending, self.build_request(dag, pending))

        next_state = self.policy.encode_state(context, self.substrate.snapshot(now), cost_so_far=info.cost_so_far)
        self.policy.report_outcome(dag.dag_id, task.task_id, next_state, reward, done, info)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def shutdown(self):
        """Finalise in-flight DAGs and close the log sinks."""
        if self._shut_down:
            return
        self._shut_down = True
        now = self.env.now

        try:
            for dag in self.all_dags:
                if dag.state in (DagState.CREATED, DagState.COMPLETE):
                    continue
                try:
                    dag.complete_time_ms = now
                    self.metrics.record_dag_completion(dag, complete=False)
                    logger.warning(
                        "DAG %s finalised at shutdown with %d/%d tasks done",
                        dag.dag_id,
                        dag.completed_tasks,
                        dag.total_tasks,
                    )
                except LogSinkError as e:
                    logger.error("Error logging DAG %s: %s", dag.dag_id, e)
            self._log_run_summary()
        finally:
            self.metrics.close()

    def _log_run_summary(self):
        scheduled = len(self.dags_with_scheduled_tasks)
        logger.info("DAG execution summary")
        logger.info("  Total DAGs configured: %d", len(self.all_dags))
        logger.info("  Total DAGs arrived: %d", self.dags_arrived)
        logger.info("  Total DAGs with >=1 task scheduled: %d", scheduled)
        logger.info("  Total DAG runtime (sum of makespans): %.2f ms", self.total_makespan_ms)
        if scheduled:
            logger.info("  Average DAG makespan: %.2f ms", self.total_makespan_ms / scheduled)
