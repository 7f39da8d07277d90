"""Simulation configuration.

Settings are plain dataclasses with defaults; a JSON file can override any
of them, and the CLI overrides the file.
"""

import json
from dataclasses import asdict, dataclass, field, fields
from typing import Dict, Optional


@dataclass
class RewardConfig:
    """Reward shaping for the remote agent."""

    alpha_latency: float = 1.0
    alpha_cost: float = 1.0
    latency_norm_ms: float = 1000.0  # L-hat
    cost_norm: float = 1.0  # C-hat
    budget: float = 1.0  # Per-DAG cost budget
    budget_penalty: float = -1.0  # Added to the reward on violation


@dataclass
class RemoteAgentConfig:
    """Connection settings for the external decision service."""

    service_url: str = "http://127.0.0.1:5000"
    timeout_ms: int = 2000
    training_mode: bool = True


@dataclass
class TaskProfile:
    """Transfer sizes for a task type, in KB."""

    input_kb: float = 0.0
    output_kb: float = 0.0


@dataclass
class SimulationConfig:
    """Top-level simulation settings."""

    policy: str = "edge_first"
    reference_mips: float = 4000.0  # Compute rate used to turn durations into MI
    edge_reference_mips: float = 2000.0  # Only used for projected edge runtime
    cloud_network_penalty_ms: float = 1.0
    output_dir: str = "sim_results"
    seed: Optional[int] = None

    arrival_mode: str = "epoch"  # epoch, uniform or poisson
    arrival_interval_ms: float = 1000.0
    arrival_rate_per_s: float = 1.0

    task_profiles: Dict[str, TaskProfile] = field(default_factory=dict)
    remote: RemoteAgentConfig = field(default_factory=RemoteAgentConfig)
    reward: RewardConfig = field(default_factory=RewardConfig)

    @classmethod
    def from_dict(cls, data: dict) -> "SimulationConfig":
        """Build a config from a (possibly partial) dictionary.

        Raises:
            ValueError: If the dictionary contains unknown keys
        """
        data = dict(data)
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        remote = _build(RemoteAgentConfig, data.pop("remote", {}), "remote")
        reward = _build(RewardConfig, data.pop("reward", {}), "reward")
        profiles = {
            name: _build(TaskProfile, profile, f"task_profiles.{name}")
            for name, profile in data.pop("task_profiles", {}).items()
        }
        return cls(remote=remote, reward=reward, task_profiles=profiles, **data)

    def to_dict(self) -> dict:
        return asdict(self)


def _build(kind, values: dict, section: str):
    known = {f.name for f in fields(kind)}
    unknown = set(values) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {sorted(unknown)}")
    return kind(**values)


def load_config(filepath: Optional[str]) -> SimulationConfig:
    """Load a configuration JSON file.

    Args:
        filepath: Path to the JSON file, or None for defaults

    Returns:
        The parsed configuration
    """
    if not filepath:
        return SimulationConfig()

    with open(filepath, "r") as f:
        data = json.load(f)

    return SimulationConfig.from_dict(data)
