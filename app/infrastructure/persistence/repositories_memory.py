"""In-memory repositories for single-process deployments and tests.

Each repository owns its state; nothing here is module-global, so separate
instances never share data.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict, deque
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID

from app.application.interfaces import (
    CounterStoreInterface,
    DocumentRepositoryInterface,
    OwnerRepositoryInterface,
    RenderQueueRepositoryInterface,
    RunRepositoryInterface,
)
from app.domain.models import (
    ACTIVE_QUEUE_STATUSES,
    Owner,
    QueueEntry,
    QueueEntryStatus,
    RunRecord,
    SourceDocument,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRunRepository(RunRepositoryInterface):
    def __init__(self) -> None:
        self._records: dict[UUID, RunRecord] = {}

    async def create(self, record: RunRecord) -> RunRecord:
        if record.id in self._records:
            raise ValueError(f"Run {record.id} already exists")
        now = _now()
        stored = record.model_copy(update={"created_at": now, "updated_at": now}, deep=True)
        self._records[record.id] = stored
        return stored.model_copy(deep=True)

    async def get(self, run_id: UUID) -> Optional[RunRecord]:
        record = self._records.get(run_id)
        return record.model_copy(deep=True) if record else None

    async def save(self, record: RunRecord) -> RunRecord:
        if record.id not in self._records:
            raise LookupError(f"Run {record.id} does not exist")
        stored = record.model_copy(update={"updated_at": _now()}, deep=True)
        self._records[record.id] = stored
        return stored.model_copy(deep=True)


class InMemoryRenderQueueRepository(RenderQueueRepositoryInterface):
    """Queue whose enqueue is serialized by an asyncio lock."""

    def __init__(self) -> None:
        self._entries: dict[UUID, QueueEntry] = {}
        self._lock = asyncio.Lock()

    async def enqueue(
        self,
        run_id: UUID,
        owner_id: int,
        generation_settings: Mapping[str, Any],
    ) -> QueueEntry:
        async with self._lock:
            existing = self._entries.get(run_id)
            if existing is not None:
                return existing.model_copy()
            position = self._count_active() + 1
            entry = QueueEntry(
                run_id=run_id,
                owner_id=owner_id,
                position=position,
                generation_settings=dict(generation_settings),
                created_at=_now(),
            )
            self._entries[run_id] = entry
            return entry.model_copy()

    async def get(self, run_id: UUID) -> Optional[QueueEntry]:
        entry = self._entries.get(run_id)
        return entry.model_copy() if entry else None

    async def count_active(self) -> int:
        return self._count_active()

    def _count_active(self) -> int:
        return sum(1 for entry in self._entries.values() if entry.status in ACTIVE_QUEUE_STATUSES)

    def mark(self, run_id: UUID, status: QueueEntryStatus) -> None:
        """Stand-in for the render worker moving an entry along."""

        entry = self._entries[run_id]
        self._entries[run_id] = entry.model_copy(update={"status": status})

    def seed(self, entries: Iterable[QueueEntry]) -> None:
        for entry in entries:
            self._entries[entry.run_id] = entry


class InMemoryDocumentRepository(DocumentRepositoryInterface):
    def __init__(self, documents: Iterable[SourceDocument] = ()) -> None:
        self._documents: dict[str, SourceDocument] = {doc.id: doc for doc in documents}

    def add(self, document: SourceDocument) -> None:
        self._documents[document.id] = document

    async def list_for_owner(
        self, owner_id: int, document_ids: Sequence[str]
    ) -> List[SourceDocument]:
        found = []
        for doc_id in document_ids:
            doc = self._documents.get(doc_id)
            if doc is not None and doc.owner_id == owner_id:
                found.append(doc)
        return found


class InMemoryOwnerRepository(OwnerRepositoryInterface):
    def __init__(self, owners: Iterable[Owner] = ()) -> None:
        self._owners: dict[int, Owner] = {owner.id: owner for owner in owners}

    def add(self, owner: Owner) -> None:
        self._owners[owner.id] = owner

    async def get_by_id(self, owner_id: int) -> Optional[Owner]:
        return self._owners.get(owner_id)


class InMemoryCounterStore(CounterStoreInterface):
    """LRU-bounded hit log; the least recently touched keys are evicted first."""

    def __init__(self, max_keys: int = 10_000) -> None:
        self._max_keys = max_keys
        self._hits: OrderedDict[str, deque[float]] = OrderedDict()

    async def hits_since(self, key: str, since: float) -> int:
        hits = self._hits.get(key)
        if not hits:
            return 0
        while hits and hits[0] < since:
            hits.popleft()
        return len(hits)

    async def record_hit(self, key: str, at: float) -> None:
        hits = self._hits.setdefault(key, deque())
        hits.append(at)
        self._hits.move_to_end(key)
        while len(self._hits) > self._max_keys:
            self._hits.popitem(last=False)

    async def discard_hit(self, key: str, at: float) -> None:
        hits = self._hits.get(key)
        if hits and at in hits:
            hits.remove(at)


__all__ = [
    "InMemoryCounterStore",
    "InMemoryDocumentRepository",
    "InMemoryOwnerRepository",
    "InMemoryRenderQueueRepository",
    "InMemoryRunRepository",
]
