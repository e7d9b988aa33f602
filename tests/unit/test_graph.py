"""Task graph builder unit tests."""

import pytest

from delegation_hub.core.graph import TaskGraph, TaskGraphBuilder
from delegation_hub.models import (
    AgentKind,
    DelegationMode,
    DelegationRequest,
    TaskSpec,
)
from delegation_hub.utils.exceptions import (
    CompileError,
    CyclicDependencyError,
    InvalidReferenceError,
    MalformedRequestError,
    NestingExceededError,
)


def task(
    task_id: str,
    agent: AgentKind = AgentKind.GENERIC,
    depends_on: list[str] | None = None,
    group: str | None = None,
) -> TaskSpec:
    return TaskSpec(
        id=task_id, agent=agent, depends_on=depends_on or [], parallel_group=group
    )


def request(mode: DelegationMode, *tasks: TaskSpec) -> DelegationRequest:
    return DelegationRequest(mode=mode, tasks=list(tasks))


def assert_valid_waves(graph: TaskGraph) -> None:
    """Every dependency lies in a strictly earlier wave; every task appears once."""
    seen = [task_id for wave in graph.waves for task_id in wave.task_ids]
    assert sorted(seen) == sorted(graph.request.task_ids())
    for spec in graph.tasks:
        for dependency in spec.depends_on:
            assert graph.wave_of(dependency) < graph.wave_of(spec.id)


@pytest.fixture
def builder() -> TaskGraphBuilder:
    return TaskGraphBuilder(max_depth=2)


class TestWavePartitioning:
    """Test how tasks are grouped into waves."""

    def test_single_task(self, builder):
        graph = builder.compile(
            DelegationRequest.single(AgentKind.BACKEND, "Build the API")
        )

        assert len(graph.waves) == 1
        assert graph.waves[0].task_ids == ["backend"]
        assert graph.waves[0].parallel is False

    def test_sequential_chain(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.SEQUENTIAL,
                task("db", AgentKind.DATABASE),
                task("api", AgentKind.BACKEND, ["db"]),
                task("ui", AgentKind.FRONTEND, ["api"]),
            )
        )

        assert [w.task_ids for w in graph.waves] == [["db"], ["api"], ["ui"]]
        assert not any(w.parallel for w in graph.waves)
        assert_valid_waves(graph)

    def test_sequential_mode_without_dependencies_stays_serial(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.SEQUENTIAL,
                task("a"),
                task("b"),
            )
        )

        assert [w.task_ids for w in graph.waves] == [["a"], ["b"]]

    def test_parallel_independent_tasks_share_a_wave(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.PARALLEL,
                task("a", AgentKind.BACKEND),
                task("b", AgentKind.FRONTEND),
                task("c", AgentKind.MOBILE),
            )
        )

        assert len(graph.waves) == 1
        assert graph.waves[0].task_ids == ["a", "b", "c"]
        assert graph.waves[0].parallel is True

    def test_parallel_with_dependency(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.PARALLEL,
                task("a", AgentKind.DATABASE),
                task("b", AgentKind.BACKEND, ["a"]),
                task("c", AgentKind.DESIGN),
            )
        )

        assert [w.task_ids for w in graph.waves] == [["a", "c"], ["b"]]
        assert_valid_waves(graph)

    def test_parallel_group_inside_sequential_request(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.SEQUENTIAL,
                task("db", AgentKind.DATABASE),
                task("api", AgentKind.BACKEND, ["db"], group="g"),
                task("app", AgentKind.MOBILE, ["db"], group="g"),
                task("deploy", AgentKind.DEPLOYMENT, ["api", "app"]),
            )
        )

        assert [w.task_ids for w in graph.waves] == [
            ["db"],
            ["api", "app"],
            ["deploy"],
        ]
        assert graph.waves[1].parallel is True
        assert graph.waves[1].group == "g"
        assert_valid_waves(graph)

    def test_diamond(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.PARALLEL,
                task("top"),
                task("left", depends_on=["top"]),
                task("right", depends_on=["top"]),
                task("bottom", depends_on=["left", "right"]),
            )
        )

        assert [w.task_ids for w in graph.waves] == [
            ["top"],
            ["left", "right"],
            ["bottom"],
        ]

    def test_wave_indices_are_sequential(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.SEQUENTIAL,
                task("a"),
                task("b", depends_on=["a"]),
            )
        )

        assert [w.index for w in graph.waves] == [0, 1]

    def test_depth_recorded(self, builder):
        graph = builder.compile(
            DelegationRequest.single(AgentKind.BACKEND, "x"), depth=2
        )

        assert graph.depth == 2


class TestDependents:
    """Test transitive dependent lookup."""

    def test_transitive_in_declaration_order(self, builder):
        graph = builder.compile(
            request(
                DelegationMode.PARALLEL,
                task("a"),
                task("b", depends_on=["a"]),
                task("c"),
                task("d", depends_on=["b"]),
            )
        )

        assert graph.dependents("a") == ["b", "d"]
        assert graph.dependents("c") == []


class TestValidation:
    """Test compile-time rejection."""

    def test_empty_request(self, builder):
        with pytest.raises(MalformedRequestError):
            builder.compile(request(DelegationMode.PARALLEL))

    def test_single_mode_with_two_tasks(self, builder):
        with pytest.raises(MalformedRequestError):
            builder.compile(request(DelegationMode.SINGLE, task("a"), task("b")))

    def test_duplicate_ids(self, builder):
        with pytest.raises(MalformedRequestError) as exc_info:
            builder.compile(request(DelegationMode.PARALLEL, task("a"), task("a")))

        assert exc_info.value.details["task_ids"] == ["a"]

    def test_unknown_reference(self, builder):
        with pytest.raises(InvalidReferenceError) as exc_info:
            builder.compile(
                request(DelegationMode.PARALLEL, task("a", depends_on=["ghost"]))
            )

        assert exc_info.value.details["kind"] == "invalid_reference"

    def test_self_reference(self, builder):
        with pytest.raises(InvalidReferenceError):
            builder.compile(
                request(DelegationMode.PARALLEL, task("a", depends_on=["a"]))
            )

    def test_cycle(self, builder):
        with pytest.raises(CyclicDependencyError) as exc_info:
            builder.compile(
                request(
                    DelegationMode.PARALLEL,
                    task("free"),
                    task("a", depends_on=["c"]),
                    task("b", depends_on=["a"]),
                    task("c", depends_on=["b"]),
                )
            )

        assert exc_info.value.kind == "cyclic_dependency"
        assert exc_info.value.details["task_ids"] == ["a", "b", "c"]

    def test_two_task_cycle(self, builder):
        with pytest.raises(CyclicDependencyError):
            builder.compile(
                request(
                    DelegationMode.SEQUENTIAL,
                    task("a", depends_on=["b"]),
                    task("b", depends_on=["a"]),
                )
            )

    def test_partition_stops_on_cycle(self, builder):
        cyclic = request(
            DelegationMode.PARALLEL,
            task("free"),
            task("a", depends_on=["b"]),
            task("b", depends_on=["a"]),
        )

        with pytest.raises(CyclicDependencyError) as exc_info:
            builder._partition(cyclic)

        assert exc_info.value.details["task_ids"] == ["a", "b"]


class TestNesting:
    """Test the delegation depth bound."""

    def test_depth_at_limit_allowed(self, builder):
        graph = builder.compile(
            DelegationRequest.single(AgentKind.BACKEND, "x"), depth=2
        )

        assert graph.waves

    def test_depth_beyond_limit_rejected(self, builder):
        with pytest.raises(NestingExceededError) as exc_info:
            builder.compile(DelegationRequest.single(AgentKind.BACKEND, "x"), depth=3)

        assert exc_info.value.details["max_depth"] == 2
        assert isinstance(exc_info.value, CompileError)

    def test_nesting_checked_before_structure(self, builder):
        with pytest.raises(NestingExceededError):
            builder.compile(request(DelegationMode.PARALLEL), depth=5)
