"""Result Aggregator - merges per-task outcomes into one result.

Entries follow task declaration order, never completion order, so the
same finished execution always aggregates to the same result.
"""

from __future__ import annotations

from collections.abc import Mapping

from delegation_hub.models import (
    AggregatedResult,
    ResultEntry,
    ResultStatus,
    TaskOutcome,
    TaskState,
)
from delegation_hub.utils.exceptions import AggregationError

from .graph import TaskGraph


class ResultAggregator:
    """Builds AggregatedResults from a graph and its task outcomes."""

    def aggregate(
        self,
        graph: TaskGraph,
        outcomes: Mapping[str, TaskOutcome],
        execution_id: str,
    ) -> AggregatedResult:
        """Aggregate terminal outcomes.

        Args:
            graph: The compiled graph (gives declaration order and routing).
            outcomes: Task id -> outcome; every task must be terminal.
            execution_id: Execution the outcomes belong to.

        Returns:
            AggregatedResult addressed to the request's ``return_to``.

        Raises:
            AggregationError: If any task has not reached a terminal state.
        """
        unfinished = [
            task.id for task in graph.tasks if not outcomes[task.id].state.is_terminal
        ]
        if unfinished:
            raise AggregationError(unfinished)

        entries = [self._entry(outcomes[task.id]) for task in graph.tasks]
        request = graph.request

        return AggregatedResult(
            execution_id=execution_id,
            requesting_agent=request.requesting_agent,
            return_to=request.return_to,
            status=self._overall_status(entries),
            entries=entries,
        )

    @staticmethod
    def _entry(outcome: TaskOutcome) -> ResultEntry:
        if outcome.state == TaskState.SUCCEEDED:
            return ResultEntry(
                task_id=outcome.task_id,
                agent=outcome.agent,
                status=outcome.state,
                payload=outcome.payload,
            )
        return ResultEntry(
            task_id=outcome.task_id,
            agent=outcome.agent,
            status=outcome.state,
            error=outcome.error,
            reason=outcome.reason,
        )

    @staticmethod
    def _overall_status(entries: list[ResultEntry]) -> ResultStatus:
        failed = sum(1 for entry in entries if entry.status == TaskState.FAILED)
        if failed == 0:
            return ResultStatus.SUCCESS
        if failed == len(entries):
            return ResultStatus.FAILURE
        return ResultStatus.PARTIAL_FAILURE
