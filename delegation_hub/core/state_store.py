"""Agent State Store - durable per-kind agent records.

Records are the only memory carried between otherwise stateless worker
invocations of the same kind. Each kind has two locks:

- a record lock guarding read-modify-write in ``update()``;
- a slot lock giving each kind a capacity of one running task. Waiters
  queue in arrival order, across requests.
"""

from __future__ import annotations

import asyncio
import json
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from delegation_hub.models import AgentKind, AgentRecord
from delegation_hub.utils.config import StateStoreBackend, StateStoreConfig
from delegation_hub.utils.exceptions import InvalidConfigurationError
from delegation_hub.utils.logging import get_logger

logger = get_logger(__name__)

RecordMutator = Callable[[AgentRecord], AgentRecord | None]


class AgentStateStore(ABC):
    """Key-value store of AgentRecords with per-key atomic update."""

    def __init__(self) -> None:
        self._record_locks: dict[AgentKind, asyncio.Lock] = {}
        self._slots: dict[AgentKind, asyncio.Lock] = {}

    @abstractmethod
    def _load(self, kind: AgentKind) -> AgentRecord | None:
        """Read a record from the backing medium."""

    @abstractmethod
    def _save(self, record: AgentRecord) -> None:
        """Write a record to the backing medium."""

    @abstractmethod
    def _kinds(self) -> list[AgentKind]:
        """Kinds that have a stored record."""

    def _record_lock(self, kind: AgentKind) -> asyncio.Lock:
        lock = self._record_locks.get(kind)
        if lock is None:
            lock = self._record_locks[kind] = asyncio.Lock()
        return lock

    def slot_lock(self, kind: AgentKind) -> asyncio.Lock:
        """The lock behind ``slot()``, for holders that release it early."""
        kind = AgentKind(kind)
        lock = self._slots.get(kind)
        if lock is None:
            lock = self._slots[kind] = asyncio.Lock()
        return lock

    def _load_or_create(self, kind: AgentKind) -> AgentRecord:
        record = self._load(kind)
        if record is None:
            record = AgentRecord(kind=kind)
            self._save(record)
            logger.debug("Agent record created", agent_kind=kind.value)
        return record

    async def get(self, kind: AgentKind) -> AgentRecord:
        """Get the record for a kind, creating it on first reference.

        Returns:
            A copy of the stored record.
        """
        kind = AgentKind(kind)
        async with self._record_lock(kind):
            return self._load_or_create(kind).model_copy(deep=True)

    async def update(self, kind: AgentKind, mutator: RecordMutator) -> AgentRecord:
        """Apply ``mutator`` to the record atomically.

        The mutator may change the record in place or return a replacement.
        Updates to different kinds never contend.

        Returns:
            A copy of the updated record.
        """
        kind = AgentKind(kind)
        async with self._record_lock(kind):
            record = self._load_or_create(kind)
            replacement = mutator(record)
            if replacement is not None:
                record = replacement
            record.touch()
            self._save(record)
            return record.model_copy(deep=True)

    async def update_notes(self, kind: AgentKind, **notes: Any) -> AgentRecord:
        """Merge ``notes`` into the record's notes."""

        def merge(record: AgentRecord) -> None:
            record.notes.update(notes)

        return await self.update(kind, merge)

    async def all(self) -> list[AgentRecord]:
        """All stored records, ordered by kind declaration."""
        order = list(AgentKind)
        records = []
        for kind in sorted(self._kinds(), key=order.index):
            records.append(await self.get(kind))
        return records

    @asynccontextmanager
    async def slot(self, kind: AgentKind) -> AsyncIterator[None]:
        """Hold the single execution slot of a kind."""
        lock = self.slot_lock(kind)
        async with lock:
            yield

    def is_busy(self, kind: AgentKind) -> bool:
        """Whether the kind's slot is currently held."""
        lock = self._slots.get(AgentKind(kind))
        return lock is not None and lock.locked()


class InMemoryAgentStateStore(AgentStateStore):
    """Records live for the lifetime of the process."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[AgentKind, AgentRecord] = {}

    def _load(self, kind: AgentKind) -> AgentRecord | None:
        return self._records.get(kind)

    def _save(self, record: AgentRecord) -> None:
        self._records[record.kind] = record

    def _kinds(self) -> list[AgentKind]:
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, kind: object) -> bool:
        return kind in self._records


class FileAgentStateStore(AgentStateStore):
    """One JSON document per kind at ``<root>/<kind>/state.json``.

    Records survive process restarts. Writes go through a temporary file
    and ``os.replace`` so a crash never leaves a half-written record.
    """

    FILENAME = "state.json"

    def __init__(self, root: str | Path) -> None:
        super().__init__()
        self.root = Path(root)

    def path_for(self, kind: AgentKind) -> Path:
        return self.root / AgentKind(kind).value / self.FILENAME

    def _load(self, kind: AgentKind) -> AgentRecord | None:
        path = self.path_for(kind)
        if not path.exists():
            return None
        return AgentRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def _save(self, record: AgentRecord) -> None:
        path = self.path_for(record.kind)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        data = record.model_dump(mode="json")
        tmp_path.write_text(
            json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False),
            encoding="utf-8",
        )
        os.replace(tmp_path, path)

    def _kinds(self) -> list[AgentKind]:
        if not self.root.exists():
            return []
        kinds = []
        for kind in AgentKind:
            if self.path_for(kind).exists():
                kinds.append(kind)
        return kinds


def create_state_store(config: StateStoreConfig) -> AgentStateStore:
    """Create the state store selected by configuration."""
    if config.backend == StateStoreBackend.MEMORY:
        return InMemoryAgentStateStore()
    if config.backend == StateStoreBackend.FILE:
        return FileAgentStateStore(config.path)
    raise InvalidConfigurationError("state_store.backend", config.backend)
