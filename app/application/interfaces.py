from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Sequence
from uuid import UUID

from app.domain.models import Owner, QueueEntry, RunRecord, SourceDocument, StageName


class RunRepositoryInterface(ABC):
    """Persistence contract for run records"""

    @abstractmethod
    async def create(self, record: RunRecord) -> RunRecord:
        ...

    @abstractmethod
    async def get(self, run_id: UUID) -> Optional[RunRecord]:
        ...

    @abstractmethod
    async def save(self, record: RunRecord) -> RunRecord:
        ...


class RenderQueueRepositoryInterface(ABC):
    """Persistence contract for the render queue.

    ``enqueue`` must run the count-then-insert as one serialized unit.
    """

    @abstractmethod
    async def enqueue(
        self,
        run_id: UUID,
        owner_id: int,
        generation_settings: Mapping[str, Any],
    ) -> QueueEntry:
        ...

    @abstractmethod
    async def get(self, run_id: UUID) -> Optional[QueueEntry]:
        ...

    @abstractmethod
    async def count_active(self) -> int:
        ...


class DocumentRepositoryInterface(ABC):
    """Read access to uploaded source documents"""

    @abstractmethod
    async def list_for_owner(
        self, owner_id: int, document_ids: Sequence[str]
    ) -> List[SourceDocument]:
        ...


class OwnerRepositoryInterface(ABC):
    """Identity lookup for run owners"""

    @abstractmethod
    async def get_by_id(self, owner_id: int) -> Optional[Owner]:
        ...


class CounterStoreInterface(ABC):
    """Timestamped hit store backing the submission rate limiter"""

    @abstractmethod
    async def hits_since(self, key: str, since: float) -> int:
        ...

    @abstractmethod
    async def record_hit(self, key: str, at: float) -> None:
        ...

    @abstractmethod
    async def discard_hit(self, key: str, at: float) -> None:
        ...


class StageClientInterface(ABC):
    """Invokes one content-generation stage"""

    @abstractmethod
    async def invoke(self, stage: StageName, payload: Mapping[str, Any]) -> Any:
        ...
