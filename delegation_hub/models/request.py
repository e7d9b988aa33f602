"""Delegation request data models.

A delegation request is what a worker produces when it needs other agents'
help. This module also holds the wire codec: ``from_payload`` accepts both
the single shape (``agent | type, reason, prompt, blocking``) and the
compound shape (``type: sequential|parallel, agents[], parallel_groups[][],
return_to``); ``to_payload`` writes a payload that parses back to an equal
request.
"""

from collections import Counter
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from delegation_hub.utils.exceptions import MalformedRequestError

from .agent import AgentKind

COMPOUND_TYPES = {"sequential", "parallel"}


class DelegationMode(str, Enum):
    """How the tasks of a request relate to each other."""

    SINGLE = "single"  # exactly one task
    SEQUENTIAL = "sequential"  # tasks chain in declaration order
    PARALLEL = "parallel"  # independent tasks run concurrently


class TaskSpec(BaseModel):
    """One unit of delegated work."""

    id: str = Field(..., min_length=1, description="Unique id within the request")
    agent: AgentKind = Field(..., description="Agent kind the task is routed to")
    prompt: Any = Field(default=None, description="Opaque instruction payload")
    depends_on: list[str] = Field(
        default_factory=list, description="Ids of tasks that must succeed first"
    )
    parallel_group: str | None = Field(
        default=None, description="Tasks sharing a group run concurrently"
    )
    timeout_seconds: float | None = Field(
        default=None, gt=0, description="Deadline for a single invocation"
    )

    model_config = {"extra": "forbid"}

    @field_validator("depends_on", mode="before")
    @classmethod
    def coerce_depends_on(cls, v: Any) -> Any:
        return _as_list(v)


class DelegationRequest(BaseModel):
    """A structured ask from one agent for other agents' work."""

    requesting_agent: AgentKind = Field(
        default=AgentKind.GENERIC, description="Agent that produced the request"
    )
    mode: DelegationMode = Field(..., description="Single, sequential or parallel")
    tasks: list[TaskSpec] = Field(default_factory=list, description="Ordered tasks")
    return_to: AgentKind | None = Field(
        default=None, description="Recipient of the aggregated result"
    )
    reason: str = Field(default="", description="Why the delegation is needed")
    blocking: bool = Field(
        default=True, description="Whether the requester waits for the result"
    )

    model_config = {"extra": "forbid"}

    def task_ids(self) -> list[str]:
        """Task ids in declaration order."""
        return [task.id for task in self.tasks]

    def get_task(self, task_id: str) -> TaskSpec | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    @classmethod
    def single(
        cls,
        agent: AgentKind,
        prompt: Any,
        *,
        requesting_agent: AgentKind = AgentKind.GENERIC,
        return_to: AgentKind | None = None,
        reason: str = "",
        task_id: str | None = None,
        timeout_seconds: float | None = None,
    ) -> "DelegationRequest":
        """Build a single-task request."""
        task = TaskSpec(
            id=task_id or AgentKind(agent).value,
            agent=agent,
            prompt=prompt,
            timeout_seconds=timeout_seconds,
        )
        return cls(
            requesting_agent=requesting_agent,
            mode=DelegationMode.SINGLE,
            tasks=[task],
            return_to=return_to,
            reason=reason,
        )

    # ------------------------------------------------------------------
    # Wire codec
    # ------------------------------------------------------------------

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "DelegationRequest":
        """Parse a wire payload.

        Raises:
            MalformedRequestError: If the payload has neither shape.
            pydantic.ValidationError: If a field has the wrong type or an
                unknown agent kind.
        """
        if not isinstance(payload, dict):
            raise MalformedRequestError("Delegation payload must be an object")

        if "agents" in payload or payload.get("type") in COMPOUND_TYPES:
            return cls._from_compound(payload)
        return cls._from_single(payload)

    @classmethod
    def _from_single(cls, payload: dict[str, Any]) -> "DelegationRequest":
        agent = payload.get("agent") or payload.get("type")
        if not agent or agent == DelegationMode.SINGLE.value:
            raise MalformedRequestError(
                "Single delegation requires an 'agent' or 'type' field"
            )

        task = TaskSpec(
            id=payload.get("id") or _kind_name(agent),
            agent=agent,
            prompt=payload.get("prompt"),
            timeout_seconds=payload.get("timeout_seconds"),
        )
        return cls(
            requesting_agent=payload.get("requesting_agent") or AgentKind.GENERIC,
            mode=DelegationMode.SINGLE,
            tasks=[task],
            return_to=payload.get("return_to"),
            reason=payload.get("reason") or "",
            blocking=payload.get("blocking", True),
        )

    @classmethod
    def _from_compound(cls, payload: dict[str, Any]) -> "DelegationRequest":
        mode = DelegationMode(payload.get("type") or DelegationMode.SEQUENTIAL.value)
        entries = payload.get("agents") or []
        if not isinstance(entries, list):
            raise MalformedRequestError("'agents' must be a list")

        # Ids default to the kind name, suffixed for repeated kinds
        seen: Counter[str] = Counter()
        drafts: list[dict[str, Any]] = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("agent"):
                raise MalformedRequestError("Each entry in 'agents' needs an 'agent'")
            task_id = entry.get("id")
            if not task_id:
                base = _kind_name(entry["agent"])
                seen[base] += 1
                task_id = base if seen[base] == 1 else f"{base}-{seen[base]}"
            drafts.append({**entry, "id": task_id})

        resolve = _reference_resolver(drafts)

        for index, group in enumerate(payload.get("parallel_groups") or [], start=1):
            for reference in group:
                target = _find_draft(drafts, resolve(reference))
                if target is None:
                    raise MalformedRequestError(
                        f"Parallel group references unknown task '{reference}'",
                        details={"reference": reference},
                    )
                if not target.get("parallel_group"):
                    target["parallel_group"] = f"group-{index}"

        if mode == DelegationMode.SEQUENTIAL:
            _chain_stages(drafts)

        tasks = []
        for draft in drafts:
            depends_on = _as_list(draft.get("depends_on"))
            tasks.append(
                TaskSpec(
                    id=draft["id"],
                    agent=draft["agent"],
                    prompt=draft.get("prompt"),
                    depends_on=[resolve(ref) for ref in depends_on],
                    parallel_group=draft.get("parallel_group"),
                    timeout_seconds=draft.get("timeout_seconds"),
                )
            )

        return cls(
            requesting_agent=payload.get("requesting_agent") or AgentKind.GENERIC,
            mode=mode,
            tasks=tasks,
            return_to=payload.get("return_to"),
            reason=payload.get("reason") or "",
            blocking=payload.get("blocking", True),
        )

    def to_payload(self) -> dict[str, Any]:
        """Serialize to the wire shape."""
        common = {
            "requesting_agent": self.requesting_agent.value,
            "return_to": self.return_to.value if self.return_to else None,
            "reason": self.reason,
            "blocking": self.blocking,
        }

        if self.mode == DelegationMode.SINGLE and len(self.tasks) == 1:
            task = self.tasks[0]
            return {
                "agent": task.agent.value,
                "id": task.id,
                "prompt": task.prompt,
                "timeout_seconds": task.timeout_seconds,
                **common,
            }

        groups: dict[str, list[str]] = {}
        for task in self.tasks:
            if task.parallel_group:
                groups.setdefault(task.parallel_group, []).append(task.id)

        return {
            "type": self.mode.value,
            "agents": [
                {
                    "id": task.id,
                    "agent": task.agent.value,
                    "prompt": task.prompt,
                    "depends_on": list(task.depends_on),
                    "parallel_group": task.parallel_group,
                    "timeout_seconds": task.timeout_seconds,
                }
                for task in self.tasks
            ],
            "parallel_groups": list(groups.values()),
            **common,
        }


def _as_list(value: Any) -> Any:
    """Accept a single reference or a list of references."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return value


def _kind_name(value: Any) -> str:
    if isinstance(value, AgentKind):
        return value.value
    return str(value)


def _find_draft(drafts: list[dict[str, Any]], task_id: str) -> dict[str, Any] | None:
    for draft in drafts:
        if draft["id"] == task_id:
            return draft
    return None


def _reference_resolver(drafts: list[dict[str, Any]]) -> Any:
    """Map a reference to a task id.

    A reference is a task id or, when exactly one task has that kind, an
    agent kind name. Anything else is returned unchanged so the graph
    builder can reject it.
    """
    ids = {draft["id"] for draft in drafts}
    by_kind: dict[str, list[str]] = {}
    for draft in drafts:
        by_kind.setdefault(_kind_name(draft["agent"]), []).append(draft["id"])

    def resolve(reference: Any) -> str:
        reference = _kind_name(reference)
        if reference in ids:
            return reference
        candidates = by_kind.get(reference, [])
        if len(candidates) == 1:
            return candidates[0]
        return reference

    return resolve


def _chain_stages(drafts: list[dict[str, Any]]) -> None:
    """Give implicit dependencies to sequential tasks.

    Consecutive tasks sharing a parallel group form one stage; a task with
    no explicit ``depends_on`` depends on every task of the previous stage.
    """
    stages: list[list[dict[str, Any]]] = []
    for draft in drafts:
        group = draft.get("parallel_group")
        if stages and group and stages[-1][-1].get("parallel_group") == group:
            stages[-1].append(draft)
        else:
            stages.append([draft])

    for previous, stage in zip(stages, stages[1:]):
        for draft in stage:
            if "depends_on" not in draft:
                draft["depends_on"] = [d["id"] for d in previous]
