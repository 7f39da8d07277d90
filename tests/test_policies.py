from collections import Counter

import pytest

from dagsim.cluster import ClusterState, WorkerInfo
from dagsim.config import SimulationConfig
from dagsim.models import TaskContext, Tier
from dagsim.policies import (
    EdgeFirstFeasiblePolicy,
    EFTPolicy,
    PolicyKind,
    RoundRobinPolicy,
    create_policy,
)

from conftest import cloud_workers, edge_workers


def _task(length_mi: float = 2000.0, memory_mb: float = 0.0, gpu_memory_mb: float = 0.0) -> TaskContext:
    return TaskContext(
        dag_id="d",
        task_id="t",
        task_type="denoise",
        length_mi=length_mi,
        cpu_memory_mb=memory_mb,
        gpu_memory_mb=gpu_memory_mb,
    )


def _cluster(*workers: WorkerInfo, now: float = 0.0) -> ClusterState:
    return ClusterState(current_time_ms=now, workers=tuple(workers))


class TestClusterState:
    def test_all_workers_lists_edge_before_cloud(self):
        cluster = _cluster(*cloud_workers(1), *edge_workers(2))
        assert [w.tier for w in cluster.all_workers()] == [Tier.EDGE, Tier.EDGE, Tier.CLOUD]

    def test_sites_per_tier(self):
        workers = [WorkerInfo(Tier.EDGE, site, 0, 2000.0) for site in (3, 1, 3)]
        cluster = _cluster(*workers, *cloud_workers(2))
        assert cluster.sites(Tier.EDGE) == [1, 3]
        assert cluster.sites(Tier.CLOUD) == [0]

    def test_average_mips_of_empty_tier_has_a_default(self):
        cluster = _cluster(*edge_workers(2))
        assert cluster.average_mips(Tier.EDGE) == 2000.0
        assert cluster.average_mips(Tier.CLOUD) == 1000.0


class TestRoundRobin:
    def test_even_distribution_over_edge_workers(self):
        policy = RoundRobinPolicy()
        workers = [WorkerInfo(Tier.EDGE, site, w, 2000.0) for site in range(2) for w in range(2)]
        cluster = _cluster(*workers, *cloud_workers(2))

        picks = Counter((p.site_id, p.worker_id) for p in (policy.decide(_task(), cluster) for _ in range(8)))

        assert set(picks) == {(0, 0), (0, 1), (1, 0), (1, 1)}
        assert set(picks.values()) == {2}

    def test_uses_cloud_when_there_is_no_edge(self):
        policy = RoundRobinPolicy()
        decisions = [policy.decide(_task(), _cluster(*cloud_workers(2))) for _ in range(3)]
        assert [d.tier for d in decisions] == [Tier.CLOUD] * 3
        assert [d.worker_id for d in decisions] == [0, 1, 0]

    def test_empty_cluster_still_returns_a_placement(self):
        decision = RoundRobinPolicy().decide(_task(), _cluster())
        assert decision.tier is Tier.CLOUD


class TestEdgeFirst:
    def test_picks_first_fitting_edge_worker(self):
        workers = [
            WorkerInfo(Tier.EDGE, 0, 0, 2000.0, free_memory_mb=100.0),
            WorkerInfo(Tier.EDGE, 0, 1, 2000.0, free_memory_mb=1000.0),
        ]
        decision = EdgeFirstFeasiblePolicy().decide(_task(memory_mb=500.0), _cluster(*workers, *cloud_workers(1)))
        assert (decision.tier, decision.worker_id) == (Tier.EDGE, 1)

    def test_overflows_to_cloud(self):
        decision = EdgeFirstFeasiblePolicy().decide(
            _task(gpu_memory_mb=4000.0),
            _cluster(*edge_workers(2, free_gpu_memory_mb=1000.0), *cloud_workers(1)),
        )
        assert decision.tier is Tier.CLOUD

    def test_nothing_fits_falls_back_to_first_edge_worker(self):
        decision = EdgeFirstFeasiblePolicy().decide(
            _task(memory_mb=1e9),
            _cluster(*cloud_workers(1, free_memory_mb=1.0), *edge_workers(2, free_memory_mb=1.0)),
        )
        assert (decision.tier, decision.site_id, decision.worker_id) == (Tier.EDGE, 0, 0)


class TestEFT:
    def test_choice_has_minimal_estimated_finish_time(self):
        policy = EFTPolicy(cloud_network_penalty_ms=5.0)
        workers = [
            WorkerInfo(Tier.EDGE, 0, 0, 2000.0, queue_wait_ms=900.0),
            WorkerInfo(Tier.EDGE, 0, 1, 2000.0, queue_wait_ms=200.0),
            WorkerInfo(Tier.CLOUD, 0, 0, 4000.0, queue_wait_ms=800.0),
        ]
        cluster = _cluster(*workers, now=50.0)
        task = _task(length_mi=2000.0)

        decision = policy.decide(task, cluster)

        best = min(policy.estimate_finish_time(task, w, 50.0) for w in workers)
        assert decision.estimated_finish_time_ms == pytest.approx(best)
        assert (decision.tier, decision.worker_id) == (Tier.EDGE, 1)
        assert decision.estimated_finish_time_ms == pytest.approx(50.0 + 200.0 + 1000.0)

    def test_network_penalty_only_for_cloud(self):
        policy = EFTPolicy(cloud_network_penalty_ms=7.0)
        assert policy.network_penalty(Tier.EDGE) == 0.0
        assert policy.network_penalty(Tier.CLOUD) == 7.0

    def test_ties_go_to_edge(self):
        workers = [WorkerInfo(Tier.CLOUD, 0, 0, 2000.0), WorkerInfo(Tier.EDGE, 0, 0, 2000.0)]
        decision = EFTPolicy(cloud_network_penalty_ms=0.0).decide(_task(), _cluster(*workers))
        assert decision.tier is Tier.EDGE

    def test_skips_workers_without_memory(self):
        workers = [WorkerInfo(Tier.EDGE, 0, 0, 2000.0, free_memory_mb=10.0), WorkerInfo(Tier.CLOUD, 0, 0, 100.0)]
        decision = EFTPolicy().decide(_task(memory_mb=100.0), _cluster(*workers))
        assert decision.tier is Tier.CLOUD


class TestFactory:
    @pytest.mark.parametrize(
        "name,expected",
        [("round_robin", RoundRobinPolicy), ("edge_first", EdgeFirstFeasiblePolicy), ("eft", EFTPolicy)],
    )
    def test_builds_local_policies(self, name, expected):
        assert isinstance(create_policy(name), expected)

    def test_eft_penalty_comes_from_config(self):
        policy = create_policy(PolicyKind.EFT, SimulationConfig(cloud_network_penalty_ms=12.0))
        assert policy.cloud_network_penalty_ms == 12.0

    def test_unknown_policy_rejected(self):
        with pytest.raises(ValueError):
            create_policy("random")
