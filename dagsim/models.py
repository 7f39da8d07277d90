"""Data models for DAG-based task placement simulation."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


class Tier(str, Enum):
    """Resource pool a worker belongs to."""

    EDGE = "EDGE"
    CLOUD = "CLOUD"


class TaskState(str, Enum):
    CREATED = "CREATED"
    READY = "READY"
    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    DONE = "DONE"


class DagState(str, Enum):
    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"


_TASK_ORDER = list(TaskState)
_DAG_ORDER = list(DagState)


class InvalidTransitionError(Exception):
    """Raised when a lifecycle transition skips or regresses a state."""

    def __init__(self, entity: str, current: Enum, target: Enum):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"{entity}: illegal transition {current.value} -> {target.value}")


def _check_step(entity: str, order: list, current: Enum, target: Enum):
    if order.index(target) != order.index(current) + 1:
        raise InvalidTransitionError(entity, current, target)


@dataclass
class TaskRecord:
    """One node of a request DAG."""

    task_id: str
    task_type: str
    duration_ms: float  # Reference execution time
    memory_mb: float = 0.0
    gpu_memory_mb: float = 0.0
    gpu_utilization: float = 0.0
    depends_on: List[str] = field(default_factory=list)
    children: List[str] = field(default_factory=list)

    remaining_deps: int = 0
    state: TaskState = TaskState.CREATED

    ready_time_ms: Optional[float] = None
    scheduled_time_ms: Optional[float] = None
    start_time_ms: Optional[float] = None
    finish_time_ms: Optional[float] = None

    # Observed during execution (filled from substrate metrics)
    queue_delay_ms: float = 0.0
    upload_delay_ms: float = 0.0
    download_delay_ms: float = 0.0
    network_delay_ms: float = 0.0
    actual_cost: float = 0.0

    assigned_tier: Optional[Tier] = None
    assigned_site_id: Optional[int] = None
    assigned_worker_id: Optional[int] = None

    def advance(self, new_state: TaskState):
        """Move to the next lifecycle state."""
        _check_step(f"task {self.task_id}", _TASK_ORDER, self.state, new_state)
        self.state = new_state

    def decrement_remaining_deps(self) -> bool:
        """Record one parent completion.

        Returns:
            True exactly when the counter transitions to zero.
        """
        if self.remaining_deps <= 0:
            return False
        self.remaining_deps -= 1
        return self.remaining_deps == 0


@dataclass
class DagRecord:
    """A single inference request and its task graph."""

    dag_id: str
    submission_time_epoch: float = 0.0
    submit_at_sim_ms: int = 0  # Relative to simulation start

    # Workload shape, consumed by cost/latency heuristics only
    num_inference_steps: int = 0
    prompt_length: int = 0
    num_images: int = 0
    has_lora: bool = False
    has_controlnet: bool = False
    application_name: str = "DAG_App"

    tasks: Dict[str, TaskRecord] = field(default_factory=dict)

    state: DagState = DagState.CREATED
    complete_time_ms: Optional[float] = None
    completed_tasks: int = 0

    @property
    def total_tasks(self) -> int:
        return len(self.tasks)

    @property
    def is_complete(self) -> bool:
        return self.completed_tasks == self.total_tasks

    @property
    def makespan_ms(self) -> Optional[float]:
        """Completion minus submission, only once the DAG is COMPLETE."""
        if self.state is not DagState.COMPLETE or self.complete_time_ms is None:
            return None
        return self.complete_time_ms - self.submit_at_sim_ms

    def add_task(self, task: TaskRecord):
        if task.task_id in self.tasks:
            raise ValueError(f"Duplicate task id {task.task_id} in DAG {self.dag_id}")
        self.tasks[task.task_id] = task

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self.tasks.get(task_id)

    def root_tasks(self) -> List[TaskRecord]:
        return [t for t in self.tasks.values() if t.remaining_deps == 0]

    def increment_completed_tasks(self):
        if self.completed_tasks >= self.total_tasks:
            raise ValueError(f"DAG {self.dag_id} already has all {self.total_tasks} tasks completed")
        self.completed_tasks += 1

    def advance(self, new_state: DagState):
        _check_step(f"dag {self.dag_id}", _DAG_ORDER, self.state, new_state)
        self.state = new_state


@dataclass
class TaskContext:
    """What a scheduling policy sees about a ready task."""

    dag_id: str
    task_id: str
    task_type: str
    length_mi: float  # Million instructions at the reference rate
    cpu_memory_mb: float = 0.0
    gpu_memory_mb: float = 0.0
    gpu_utilization: float = 0.0
    ready_time_ms: float = 0.0
    current_time_ms: float = 0.0
    num_dependencies: int = 0
    num_dependents: int = 0

    @property
    def data_size_bytes(self) -> float:
        return max(1.0, self.cpu_memory_mb * 1024.0 * 1024.0)


@dataclass
class ResourceRequest:
    """Execution descriptor handed to the substrate."""

    dag_id: str
    task_id: str
    task_type: str
    length_mi: int
    memory_mb: float
    gpu_memory_mb: float
    input_bytes: int
    output_bytes: int
    projected_edge_sec: float = 0.0
    projected_cloud_sec: float = 0.0


@dataclass
class ObservedMetrics:
    """Timing and cost figures reported by the substrate for a finished task."""

    start_time_ms: float
    finish_time_ms: float
    tier: Tier
    site_id: int
    worker_id: int
    upload_delay_ms: float = 0.0
    download_delay_ms: float = 0.0
    network_delay_ms: float = 0.0
    bw_cost: float = 0.0
    cpu_cost: float = 0.0

    @property
    def total_cost(self) -> float:
        return self.bw_cost + self.cpu_cost


@dataclass
class PlacementDecision:
    """Where a task should run."""

    tier: Tier = Tier.EDGE
    site_id: int = 0
    worker_id: int = 0
    estimated_finish_time_ms: Optional[float] = None
    estimated_network_delay_ms: Optional[float] = None

    def __str__(self) -> str:
        est = f"{self.estimated_finish_time_ms:.0f} ms" if self.estimated_finish_time_ms is not None else "n/a"
        return f"{self.tier.value} site={self.site_id} worker={self.worker_id} est_finish={est}"
