import json
import sys

import httpx
import pytest

import run_dag_simulation
from dagsim.config import SimulationConfig
from dagsim.errors import LogSinkError
from dagsim.metrics import MetricsCollector
from dagsim.simulation import DAGSimulation


@pytest.mark.parametrize("policy", ["round_robin", "edge_first", "eft"])
def test_full_run_completes_every_dag(dag_dir, tmp_path, policy):
    config = SimulationConfig(policy=policy, output_dir=str(tmp_path / "out"))
    sim = DAGSimulation(str(dag_dir), config=config)

    end_ms = sim.run_full()

    summary = json.loads((tmp_path / "out" / "simulation_results.json").read_text())["summary"]
    assert summary["num_complete_dags"] == 2
    assert summary["num_tasks"] == 5
    assert summary["end_time_ms"] == end_ms
    assert (tmp_path / "out" / "task_log.csv").exists()
    assert all(d.makespan_ms > 0 for d in sim.dags)


def test_remote_policy_with_unreachable_agent_still_completes(dag_dir, tmp_path):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = httpx.Client(transport=httpx.MockTransport(refuse))
    config = SimulationConfig(policy="remote", output_dir=str(tmp_path / "out"))
    sim = DAGSimulation(str(dag_dir), config=config, http_client=client)

    sim.run_full(export=False)

    assert sim.metrics.get_summary()["num_complete_dags"] == 2
    assert sim.metrics.get_summary()["edge_tasks"] == 5


def test_unwritable_output_dir_raises(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("")
    with pytest.raises(LogSinkError):
        MetricsCollector(str(blocker / "logs"))


def test_cli(dag_dir, tmp_path, monkeypatch, capsys):
    out = tmp_path / "cli"
    monkeypatch.setattr(
        sys,
        "argv",
        ["run_dag_simulation.py", "--dags", str(dag_dir), "--policy", "eft", "--output", str(out), "--arrival-mode", "uniform", "--log-level", "WARNING"],
    )

    run_dag_simulation.main()

    assert "DAG SIMULATION RESULTS (eft)" in capsys.readouterr().out
    results = json.loads((out / "simulation_results.json").read_text())
    assert results["summary"]["configuration"]["arrival_mode"] == "uniform"


def test_cli_missing_dag_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["run_dag_simulation.py", "--dags", str(tmp_path / "missing")])
    with pytest.raises(SystemExit) as exc:
        run_dag_simulation.main()
    assert exc.value.code == 1
