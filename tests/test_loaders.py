import json
import logging

import pytest

from dagsim.arrivals import EpochOffsetSpacing, PoissonSpacing, UniformSpacing, create_spacing
from dagsim.config import SimulationConfig, load_config
from dagsim.errors import DagFormatError, TopologyError
from dagsim.loaders import build_dag, load_dag_file, load_dags, load_topology
from dagsim.models import Tier

from conftest import make_task


def _write(path, doc):
    path.write_text(json.dumps(doc))
    return path


class TestDagFiles:
    def test_load_single_file(self, dag_dir):
        dag = load_dag_file(str(dag_dir / "a_late.json"))
        assert dag.dag_id == "late"
        assert dag.num_inference_steps == 30
        assert dag.get_task("encode").children == ["denoise"]
        assert dag.get_task("denoise").gpu_memory_mb == 4000.0
        assert dag.get_task("decode").remaining_deps == 1

    def test_directory_sorted_by_submission_time(self, dag_dir):
        dags = load_dags(str(dag_dir), spacing=EpochOffsetSpacing())
        assert [d.dag_id for d in dags] == ["early", "late"]
        assert [d.submit_at_sim_ms for d in dags] == [0, 2500]
        assert all(isinstance(d.submit_at_sim_ms, int) for d in dags)

    @pytest.mark.parametrize(
        "doc",
        [
            {"dag_id": "cyclic", "tasks": [
                {"task_id": "a", "task_type": "x", "duration_ms": 1, "depends_on": ["b"]},
                {"task_id": "b", "task_type": "x", "duration_ms": 1, "depends_on": ["a"]},
            ]},
            {"dag_id": "orphan", "tasks": [{"task_id": "a", "task_type": "x", "duration_ms": 1, "depends_on": ["zz"]}]},
            {"dag_id": "dupe", "tasks": [
                {"task_id": "a", "task_type": "x", "duration_ms": 1},
                {"task_id": "a", "task_type": "x", "duration_ms": 2},
            ]},
            {"dag_id": "incomplete", "tasks": [{"task_id": "a"}]},
            {"tasks": []},
        ],
        ids=["cycle", "unknown-parent", "duplicate-task", "missing-task-fields", "missing-dag-id"],
    )
    def test_invalid_files_are_skipped(self, dag_dir, doc, caplog):
        _write(dag_dir / "c_bad.json", doc)
        with caplog.at_level(logging.ERROR, logger="dagsim.loaders"):
            dags = load_dags(str(dag_dir))
        assert [d.dag_id for d in dags] == ["early", "late"]
        assert "c_bad.json" in caplog.text

    def test_non_json_file_is_skipped(self, dag_dir):
        (dag_dir / "broken.json").write_text("{not json")
        assert len(load_dags(str(dag_dir))) == 2

    def test_duplicate_dag_id_keeps_first_file(self, dag_dir):
        _write(dag_dir / "z_copy.json", {"dag_id": "early", "submission_time": 0, "tasks": []})
        dags = load_dags(str(dag_dir))
        assert len(dags) == 2
        assert dags[0].get_task("encode") is not None

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_dags(str(tmp_path / "nowhere"))

    def test_build_dag_rejects_self_loop(self):
        with pytest.raises(DagFormatError):
            build_dag("d", [make_task("a", ["a"])])


class TestTopologyFile:
    def test_load(self, tmp_path):
        path = _write(tmp_path / "cluster.json", {
            "sites": [
                {"tier": "edge", "site_id": 0, "cost_per_sec": 0.0001, "workers": [{"worker_id": 0, "mips": 1500}]},
                {"tier": "CLOUD", "site_id": 0, "cost_per_byte": 1e-10, "workers": [{"worker_id": 0, "mips": 5000}, {"worker_id": 1, "mips": 5000}]},
            ],
            "links": [
                {"source": "gateway", "target": "edge-0", "bandwidth_mbps": 100, "propagation_ms": 1},
                {"source": "gateway", "target": "cloud-0", "bandwidth_mbps": 10, "propagation_ms": 40, "type": "wan"},
            ],
        })
        topology = load_topology(str(path))
        assert [s.tier for s in topology.sites] == [Tier.EDGE, Tier.CLOUD]
        assert len(topology.get_site(Tier.CLOUD, 0).workers) == 2
        assert topology.get_link("cloud-0", "gateway").link_type == "wan"

    def test_malformed_site(self, tmp_path):
        path = _write(tmp_path / "cluster.json", {"sites": [{"tier": "moon", "site_id": 0}]})
        with pytest.raises(TopologyError):
            load_topology(str(path))


class TestArrivals:
    def _dags(self, count=4):
        return [build_dag(f"d{i}", [], submission_time_epoch=100.0 + i) for i in range(count)]

    def test_uniform(self):
        dags = UniformSpacing(250.0).assign(self._dags())
        assert [d.submit_at_sim_ms for d in dags] == [0, 250, 500, 750]

    def test_poisson_is_seeded_and_monotonic(self):
        first = [d.submit_at_sim_ms for d in PoissonSpacing(2.0, seed=7).assign(self._dags(10))]
        second = [d.submit_at_sim_ms for d in PoissonSpacing(2.0, seed=7).assign(self._dags(10))]
        assert first == second
        assert first[0] == 0
        assert first == sorted(first)

    def test_create_from_config(self):
        assert isinstance(create_spacing(SimulationConfig(arrival_mode="uniform")), UniformSpacing)
        with pytest.raises(ValueError):
            create_spacing(SimulationConfig(arrival_mode="burst"))


class TestConfig:
    def test_defaults_without_file(self):
        config = load_config(None)
        assert config.policy == "edge_first"
        assert config.reward.budget == 1.0

    def test_partial_override(self, tmp_path):
        path = _write(tmp_path / "config.json", {
            "policy": "eft",
            "reward": {"budget": 2.5},
            "remote": {"timeout_ms": 100},
            "task_profiles": {"vae_decode": {"input_kb": 64}},
        })
        config = load_config(str(path))
        assert config.policy == "eft"
        assert config.reward.budget == 2.5
        assert config.reward.alpha_cost == 1.0
        assert config.remote.timeout_ms == 100
        assert config.task_profiles["vae_decode"].input_kb == 64

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValueError):
            SimulationConfig.from_dict({"polcy": "eft"})
        with pytest.raises(ValueError):
            SimulationConfig.from_dict({"reward": {"alpha": 1}})

    def test_round_trip_through_dict(self):
        config = SimulationConfig.from_dict({"seed": 3, "reward": {"budget": 4.0}})
        assert SimulationConfig.from_dict(config.to_dict()) == config
