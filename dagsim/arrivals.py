"""Submission-time assignment for loaded DAGs.

How DAGs are spread over simulated time is a load-generation choice, not
part of the scheduler, so it is pluggable:

- EpochOffsetSpacing: keep the recorded spacing of the request trace
- UniformSpacing: one DAG every fixed interval
- PoissonSpacing: exponential inter-arrival times with a seeded RNG
"""

import random
from abc import ABC, abstractmethod
from typing import List, Optional

from .config import SimulationConfig
from .models import DagRecord


class SubmissionSpacing(ABC):
    """Assigns submit_at_sim_ms to DAGs already sorted by submission time."""

    @abstractmethod
    def assign(self, dags: List[DagRecord]) -> List[DagRecord]:
        """Set submit_at_sim_ms on every DAG, in place.

        Args:
            dags: DAGs in submission order

        Returns:
            The same list, for chaining
        """


class EpochOffsetSpacing(SubmissionSpacing):
    """Submit time = epoch submission time minus the earliest one."""

    def assign(self, dags: List[DagRecord]) -> List[DagRecord]:
        if not dags:
            return dags
        first = min(d.submission_time_epoch for d in dags)
        for dag in dags:
            dag.submit_at_sim_ms = int((dag.submission_time_epoch - first) * 1000.0)
        return dags


class UniformSpacing(SubmissionSpacing):
    def __init__(self, interval_ms: float):
        if interval_ms < 0:
            raise ValueError(f"interval_ms must be non-negative, got {interval_ms}")
        self.interval_ms = interval_ms

    def assign(self, dags: List[DagRecord]) -> List[DagRecord]:
        for i, dag in enumerate(dags):
            dag.submit_at_sim_ms = int(i * self.interval_ms)
        return dags


class PoissonSpacing(SubmissionSpacing):
    """Poisson arrivals; the first DAG is submitted at t=0."""

    def __init__(self, rate_per_s: float, seed: Optional[int] = None):
        if rate_per_s <= 0:
            raise ValueError(f"rate_per_s must be positive, got {rate_per_s}")
        self.rate_per_s = rate_per_s
        self.seed = seed

    def assign(self, dags: List[DagRecord]) -> List[DagRecord]:
        rng = random.Random(self.seed)
        t = 0.0
        for i, dag in enumerate(dags):
            if i > 0:
                t += rng.expovariate(self.rate_per_s) * 1000.0
            dag.submit_at_sim_ms = int(t)
        return dags


def create_spacing(config: SimulationConfig) -> SubmissionSpacing:
    """Build the spacing strategy named by config.arrival_mode."""
    mode = config.arrival_mode
    if mode == "epoch":
        return EpochOffsetSpacing()
    if mode == "uniform":
        return UniformSpacing(config.arrival_interval_ms)
    if mode == "poisson":
        return PoissonSpacing(config.arrival_rate_per_s, seed=config.seed)
    raise ValueError(f"Unknown arrival mode: {mode}")
