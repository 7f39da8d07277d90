import pytest

from dagsim.models import DagRecord, DagState, InvalidTransitionError, PlacementDecision, TaskState, Tier

from conftest import make_dag, make_task


class TestTaskLifecycle:
    def test_forward_one_step_at_a_time(self):
        task = make_task("t")
        for state in (TaskState.READY, TaskState.SCHEDULED, TaskState.RUNNING, TaskState.DONE):
            task.advance(state)
        assert task.state is TaskState.DONE

    def test_skipping_a_state_is_rejected(self):
        task = make_task("t")
        with pytest.raises(InvalidTransitionError) as exc:
            task.advance(TaskState.SCHEDULED)
        assert exc.value.current is TaskState.CREATED
        assert task.state is TaskState.CREATED

    def test_regression_is_rejected(self):
        task = make_task("t")
        task.advance(TaskState.READY)
        with pytest.raises(InvalidTransitionError):
            task.advance(TaskState.CREATED)

    def test_decrement_signals_only_the_transition_to_zero(self):
        task = make_task("t", ["a", "b"])
        task.remaining_deps = 2
        assert task.decrement_remaining_deps() is False
        assert task.decrement_remaining_deps() is True
        assert task.decrement_remaining_deps() is False
        assert task.remaining_deps == 0


class TestDagRecord:
    def test_build_inverts_edges_and_counts_parents(self):
        dag = make_dag("d", {"a": [], "b": ["a"], "c": ["a", "b"]})
        assert dag.get_task("a").children == ["b", "c"]
        assert dag.get_task("b").children == ["c"]
        assert dag.get_task("c").remaining_deps == 2
        assert [t.task_id for t in dag.root_tasks()] == ["a"]

    def test_duplicate_task_rejected(self):
        dag = DagRecord(dag_id="d")
        dag.add_task(make_task("a"))
        with pytest.raises(ValueError):
            dag.add_task(make_task("a"))

    def test_completed_counter_cannot_exceed_total(self):
        dag = make_dag("d", {"a": []})
        dag.increment_completed_tasks()
        assert dag.is_complete
        with pytest.raises(ValueError):
            dag.increment_completed_tasks()

    def test_makespan_only_defined_once_complete(self):
        dag = make_dag("d", {"a": []}, submit_at_ms=100)
        dag.complete_time_ms = 400.0
        assert dag.makespan_ms is None
        for state in (DagState.SUBMITTED, DagState.RUNNING, DagState.COMPLETE):
            dag.advance(state)
        assert dag.makespan_ms == 300.0

    def test_dag_cannot_jump_to_complete(self):
        dag = make_dag("d", {"a": []})
        with pytest.raises(InvalidTransitionError):
            dag.advance(DagState.COMPLETE)


def test_placement_defaults_to_first_edge_worker():
    placement = PlacementDecision()
    assert (placement.tier, placement.site_id, placement.worker_id) == (Tier.EDGE, 0, 0)
    assert "n/a" in str(placement)
