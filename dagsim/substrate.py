"""Interfaces between the runtime manager and the execution substrate."""

from abc import ABC, abstractmethod
from typing import Hashable, Protocol

from .cluster import ClusterState
from .models import ObservedMetrics, PlacementDecision, ResourceRequest


class AccountingView(Protocol):
    """Read-only accounting exposed by the runtime to policies."""

    def get_active_dag_count(self) -> int:
        ...

    def get_dag_cost_so_far(self, dag_id: str) -> float:
        ...


class ExecutionListener(Protocol):
    """Callbacks the substrate invokes as tasks progress."""

    def on_task_started(self, handle: Hashable, start_time_ms: float):
        ...

    def on_task_outcome(self, handle: Hashable, metrics: ObservedMetrics):
        ...


class ExecutionSubstrate(ABC):
    """Resource model that runs placed tasks and reports their outcome."""

    @abstractmethod
    def bind(self, listener: ExecutionListener):
        """Register the listener notified of starts and completions."""

    @abstractmethod
    def snapshot(self, now_ms: float) -> ClusterState:
        """Build a fresh view of the worker pool."""

    @abstractmethod
    def submit(self, request: ResourceRequest, placement: PlacementDecision) -> Hashable:
        """Start executing a task asynchronously.

        Returns:
            A handle later passed back to the listener
        """
