"""Result aggregator unit tests."""

import pytest

from delegation_hub.core.aggregator import AggregationError, ResultAggregator
from delegation_hub.core.graph import TaskGraph, TaskGraphBuilder
from delegation_hub.models import (
    AgentKind,
    DelegationMode,
    DelegationRequest,
    FailureReason,
    ResultStatus,
    TaskOutcome,
    TaskSpec,
    TaskState,
)
from delegation_hub.utils.exceptions import DelegationHubError


def compile_graph() -> TaskGraph:
    return TaskGraphBuilder().compile(
        DelegationRequest(
            requesting_agent=AgentKind.ARCHITECT,
            mode=DelegationMode.PARALLEL,
            return_to=AgentKind.ARCHITECT,
            tasks=[
                TaskSpec(id="one", agent=AgentKind.BACKEND),
                TaskSpec(id="two", agent=AgentKind.FRONTEND),
                TaskSpec(id="three", agent=AgentKind.MOBILE, depends_on=["one"]),
            ],
        )
    )


def outcomes(**states: str) -> dict[str, TaskOutcome]:
    graph = compile_graph()
    result = {}
    for spec in graph.tasks:
        outcome = TaskOutcome(task_id=spec.id, agent=spec.agent)
        state = states.get(spec.id, "succeeded")
        if state == "succeeded":
            outcome.mark_succeeded({"task": spec.id})
        elif state == "failed":
            outcome.mark_failed(FailureReason.WORKER_ERROR, "boom")
        elif state == "upstream":
            outcome.mark_failed(FailureReason.UPSTREAM_FAILURE, "upstream")
        elif state == "running":
            outcome.mark_running()
        result[spec.id] = outcome
    return result


@pytest.fixture
def aggregator() -> ResultAggregator:
    return ResultAggregator()


class TestResultAggregator:
    """Test ResultAggregator."""

    def test_all_succeeded(self, aggregator):
        result = aggregator.aggregate(compile_graph(), outcomes(), "e1")

        assert result.status == ResultStatus.SUCCESS
        assert result.execution_id == "e1"
        assert result.recipient == "architect"
        assert [e.payload for e in result.entries] == [
            {"task": "one"},
            {"task": "two"},
            {"task": "three"},
        ]

    def test_entries_follow_declaration_order(self, aggregator):
        # Completion order is irrelevant; only the graph order counts
        finished = outcomes()
        reordered = {key: finished[key] for key in ("three", "two", "one")}

        result = aggregator.aggregate(compile_graph(), reordered, "e1")

        assert [e.task_id for e in result.entries] == ["one", "two", "three"]

    def test_partial_failure(self, aggregator):
        result = aggregator.aggregate(
            compile_graph(), outcomes(one="failed", three="upstream"), "e1"
        )

        assert result.status == ResultStatus.PARTIAL_FAILURE
        failed = result.entry("one")
        assert failed.status == TaskState.FAILED
        assert failed.reason == FailureReason.WORKER_ERROR
        assert failed.error == "boom"
        assert failed.payload is None
        assert result.entry("three").reason == FailureReason.UPSTREAM_FAILURE
        assert result.entry("two").status == TaskState.SUCCEEDED

    def test_total_failure(self, aggregator):
        result = aggregator.aggregate(
            compile_graph(),
            outcomes(one="failed", two="failed", three="upstream"),
            "e1",
        )

        assert result.status == ResultStatus.FAILURE

    def test_unfinished_tasks_rejected(self, aggregator):
        with pytest.raises(AggregationError) as exc_info:
            aggregator.aggregate(compile_graph(), outcomes(two="running"), "e1")

        assert exc_info.value.task_ids == ["two"]

    def test_unfinished_error_is_hub_error(self, aggregator):
        with pytest.raises(DelegationHubError) as exc_info:
            aggregator.aggregate(compile_graph(), outcomes(three="pending"), "e1")

        assert isinstance(exc_info.value, AggregationError)
        assert exc_info.value.status_code == 409
        assert exc_info.value.to_dict()["details"] == {"task_ids": ["three"]}

    def test_idempotent(self, aggregator):
        graph = compile_graph()
        finished = outcomes(two="failed")

        first = aggregator.aggregate(graph, finished, "e1")
        second = aggregator.aggregate(graph, finished, "e1")

        assert first == second
        assert first.to_json() == second.to_json()
