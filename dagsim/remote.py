"""Remote-agent placement policy.

Placement decisions are delegated to an external learning agent over
JSON/HTTP:

    POST <base>/act      {state, trainingMode, actionMask} -> {tier, datacenterId, vmId, actionIndex?}
    POST <base>/observe  {state, action, reward, next_state, done, info}

Every decision leaves a (state, action) trace keyed by (dag_id, task_id).
When the task finishes the runtime takes the trace back, computes a reward
and reports the transition. Any failure on the decision path falls back to
edge-first placement; failures on the reporting path are logged and
ignored.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .cluster import ClusterState
from .config import RewardConfig
from .models import PlacementDecision, TaskContext, Tier
from .policies import EdgeFirstFeasiblePolicy, PolicyKind, SchedulingPolicy

logger = logging.getLogger(__name__)

ACT_PATH = "/act"
OBSERVE_PATH = "/observe"

# InvalidURL is raised while building the request and is not an HTTPError
REQUEST_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


class ActRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: Dict[str, Any]
    training_mode: bool = Field(alias="trainingMode")
    action_mask: List[int] = Field(alias="actionMask")


class ActResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tier: str
    site_id: int = Field(alias="datacenterId")
    worker_id: int = Field(alias="vmId")
    action_index: Optional[int] = Field(default=None, alias="actionIndex")

    @property
    def placement_tier(self) -> Tier:
        return Tier.CLOUD if self.tier.strip().upper() == Tier.CLOUD.value else Tier.EDGE

    def to_action(self) -> Dict[str, Any]:
        action = {
            "tier": self.placement_tier.value,
            "datacenterId": self.site_id,
            "vmId": self.worker_id,
        }
        if self.action_index is not None:
            action["actionIndex"] = self.action_index
        return action


class ObservationInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    actual_latency: float = Field(alias="actualLatency")
    actual_cost: float = Field(alias="actualCost")
    cost_so_far: float = Field(alias="costSoFar")
    budget: float
    budget_violated: bool = Field(alias="budgetViolated")


class ObserveRequest(BaseModel):
    state: Dict[str, Any]
    action: Dict[str, Any]
    reward: float
    next_state: Dict[str, Any]
    done: bool
    info: ObservationInfo


@dataclass
class DecisionTrace:
    """State and action of one remote decision, awaiting its outcome."""

    state: Dict[str, Any]
    action: Dict[str, Any]


class DecisionTraceStore:
    """Traces keyed by (dag_id, task_id); each one can be taken once."""

    def __init__(self):
        self._traces: Dict[Tuple[str, str], DecisionTrace] = {}

    def put(self, dag_id: str, task_id: str, trace: DecisionTrace):
        self._traces[(dag_id, task_id)] = trace

    def take(self, dag_id: str, task_id: str) -> Optional[DecisionTrace]:
        return self._traces.pop((dag_id, task_id), None)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._traces

    def __len__(self) -> int:
        return len(self._traces)


def resolve_endpoint(configured_url: str, endpoint_path: str) -> str:
    """Turn a base URL, or a URL already naming an endpoint, into endpoint_path's URL."""
    url = configured_url.strip()
    if url.endswith(endpoint_path):
        return url
    for known in (ACT_PATH, OBSERVE_PATH):
        if url.endswith(known):
            url = url[: -len(known)]
            break
    return url.rstrip("/") + endpoint_path


def compute_reward(latency_ms: float, cost: float, cost_so_far: float, config: RewardConfig) -> Tuple[float, bool]:
    """Reward for one finished task.

    Args:
        latency_ms: Observed ready-to-finish latency
        cost: Observed cost of the task
        cost_so_far: DAG cost accumulated before this task
        config: Reward weights, normalisers and budget

    Returns:
        Tuple of (reward, budget_violated)
    """
    reward = -(
        config.alpha_latency * (latency_ms / max(1e-9, config.latency_norm_ms))
        + config.alpha_cost * (cost / max(1e-9, config.cost_norm))
    )
    violated = cost_so_far + cost > config.budget
    if violated:
        reward += config.budget_penalty
    return reward, violated


def placeholder_context(dag_id: str, now_ms: float) -> TaskContext:
    """Task context used for the next state once a DAG has nothing left to run."""
    return TaskContext(
        dag_id=dag_id,
        task_id="NA",
        task_type="NA",
        length_mi=1.0,
        ready_time_ms=now_ms,
        current_time_ms=now_ms,
    )


def _worker_entry(worker) -> Dict[str, Any]:
    return {
        "dcId": worker.site_id,
        "vmId": worker.worker_id,
        "availableMips": worker.mips,
        "utilization": worker.utilization,
        "queueLen": worker.queued_task_count,
    }


def _tier_aggregate(entries: List[Dict[str, Any]]) -> Dict[str, Any]:
    count = len(entries)
    return {
        "availableMips": sum(e["availableMips"] for e in entries),
        "utilization": sum(e["utilization"] for e in entries) / count if count else 0.0,
        "queueLen": sum(e["queueLen"] for e in entries),
    }


def build_state(
    task: TaskContext,
    cluster: ClusterState,
    cost_so_far: float,
    budget: float,
    active_dag_count: int,
) -> Dict[str, Any]:
    """Encode a task, the cluster and the DAG budget for the agent.

    Worker lists are sorted by (site, worker) so identical cluster
    conditions always produce identical encodings.
    """
    edge = [_worker_entry(w) for w in cluster.workers_in_tier(Tier.EDGE)]
    cloud = [_worker_entry(w) for w in cluster.workers_in_tier(Tier.CLOUD)]

    return {
        "task": {
            "dagId": task.dag_id or "NA",
            "taskId": task.task_id or "NA",
            "taskType": task.task_type or "NA",
            "mi": task.length_mi,
            "dataSizeBytes": task.data_size_bytes,
        },
        "cluster": {
            "edgeVms": edge,
            "cloudVms": cloud,
            "edge": _tier_aggregate(edge),
            "cloud": _tier_aggregate(cloud),
        },
        "budget": {
            "costSoFar": cost_so_far,
            "remainingBudget": budget - cost_so_far,
            "budgetFractionUsed": cost_so_far / budget if budget > 0 else 0.0,
        },
        "queue": {
            "activeDagCount": active_dag_count,
            "totalQueueLen": sum(e["queueLen"] for e in edge + cloud),
        },
        "time": {"simTime": cluster.current_time_ms},
    }


def build_action_mask(cluster: ClusterState) -> List[int]:
    """All-enabled mask with one entry per known worker."""
    actions = cluster.worker_count
    if actions <= 0:
        actions = 2
    return [1] * actions


class RemoteAgentPolicy(SchedulingPolicy):
    """Delegates placement to an external decision service."""

    kind = PolicyKind.REMOTE

    def __init__(
        self,
        service_url: str,
        timeout_ms: int = 2000,
        training_mode: bool = True,
        budget: float = 1.0,
        client: Optional[httpx.Client] = None,
        fallback: Optional[SchedulingPolicy] = None,
        action_mask: Optional[Callable[[ClusterState], List[int]]] = None,
    ):
        """Initialize the policy.

        Args:
            service_url: Base URL of the service (or its /act or /observe URL)
            timeout_ms: Bound applied to every HTTP call
            training_mode: Forwarded to the agent with each request
            budget: Per-DAG cost budget used in the state encoding
            client: HTTP client to use; one is created (and owned) if omitted
            fallback: Policy used when the service fails
            action_mask: Builds the feasibility mask; all-enabled by default
        """
        self.service_url = service_url
        self.act_url = resolve_endpoint(service_url, ACT_PATH)
        self.observe_url = resolve_endpoint(service_url, OBSERVE_PATH)
        self.timeout_ms = timeout_ms
        self.training_mode = training_mode
        self.budget = budget
        self.fallback = fallback or EdgeFirstFeasiblePolicy()
        self.action_mask = action_mask or build_action_mask
        self.traces = DecisionTraceStore()

        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=self._timeout())
        self._accounting = None

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.timeout_ms / 1000.0)

    def attach(self, accounting):
        self._accounting = accounting

    def _cost_so_far(self, dag_id: str) -> float:
        if self._accounting is None or not dag_id:
            return 0.0
        return self._accounting.get_dag_cost_so_far(dag_id)

    def _active_dag_count(self) -> int:
        if self._accounting is None:
            return 0
        return self._accounting.get_active_dag_count()

    def encode_state(self, task: TaskContext, cluster: ClusterState, cost_so_far: Optional[float] = None) -> Dict[str, Any]:
        if cost_so_far is None:
            cost_so_far = self._cost_so_far(task.dag_id)
        return build_state(task, cluster, cost_so_far, self.budget, self._active_dag_count())

    def decide(self, task: TaskContext, cluster: ClusterState) -> PlacementDecision:
        state = self.encode_state(task, cluster)
        request = ActRequest(state=state, training_mode=self.training_mode, action_mask=self.action_mask(cluster))

        try:
            response = self._client.post(
                self.act_url,
                json=request.model_dump(by_alias=True),
                timeout=self._timeout(),
            )
            response.raise_for_status()
            answer = ActResponse.model_validate(response.json())
        except REQUEST_ERRORS + (ValidationError, ValueError) as e:
            logger.warning("Remote policy failed for %s/%s, using fallback: %s", task.dag_id, task.task_id, e)
            return self.fallback.decide(task, cluster)

        if cluster.worker_count and cluster.get_worker(answer.placement_tier, answer.site_id, answer.worker_id) is None:
            logger.warning(
                "Remote policy chose unknown worker %s/%d/%d for %s/%s, using fallback",
                answer.placement_tier.value,
                answer.site_id,
                answer.worker_id,
                task.dag_id,
                task.task_id,
            )
            return self.fallback.decide(task, cluster)

        if task.dag_id and task.task_id:
            self.traces.put(task.dag_id, task.task_id, DecisionTrace(state=state, action=answer.to_action()))

        return PlacementDecision(tier=answer.placement_tier, site_id=answer.site_id, worker_id=answer.worker_id)

    def report_outcome(
        self,
        dag_id: str,
        task_id: str,
        next_state: Dict[str, Any],
        reward: float,
        done: bool,
        info: ObservationInfo,
    ) -> bool:
        """Send the transition for a finished task to the agent.

        Returns:
            True if a trace existed and a report was attempted
        """
        trace = self.traces.take(dag_id, task_id)
        if trace is None:
            return False

        payload = ObserveRequest(
            state=trace.state,
            action=trace.action,
            reward=reward,
            next_state=next_state,
            done=done,
            info=info,
        )
        try:
            response = self._client.post(
                self.observe_url,
                json=payload.model_dump(by_alias=True),
                timeout=self._timeout(),
            )
            response.raise_for_status()
        except REQUEST_ERRORS as e:
            logger.warning("Remote observe failed for %s/%s: %s", dag_id, task_id, e)
        return True

    def close(self):
        if self._owns_client:
            self._client.close()
