from typing import Any, AsyncContextManager, Callable, List, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.application.interfaces import (
    DocumentRepositoryInterface,
    OwnerRepositoryInterface,
    RenderQueueRepositoryInterface,
    RunRepositoryInterface,
)
from app.domain.models import (
    ACTIVE_QUEUE_STATUSES,
    Owner,
    QueueEntry,
    RunParameters,
    RunRecord,
    SourceDocument,
    StageArtifact,
)
from app.models.render_queue import RenderQueueEntry, RenderQueueLock
from app.models.script_run import ScriptRun
from app.models.source_document import SourceDocument as SourceDocumentEntity
from app.models.user import User as UserEntity

SessionFactoryType = Callable[[], AsyncContextManager[AsyncSession]]


def _run_to_domain(row: ScriptRun) -> RunRecord:
    return RunRecord(
        id=row.id,
        owner_id=row.owner_id,
        status=row.status,
        parameters=RunParameters(
            title=row.title,
            description=row.description,
            synthesis_style=row.synthesis_style,
            specialty=row.specialty,
            target_duration_minutes=row.target_duration_minutes,
            retention_days=row.retention_days,
        ),
        document_ids=list(row.document_ids or []),
        retrieval_index_id=row.retrieval_index_id,
        retrieval_index_expires_at=row.retrieval_index_expires_at,
        stage_artifacts=[StageArtifact.model_validate(item) for item in row.stage_artifacts or []],
        error_message=row.error_message,
        queue_position=row.queue_position,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _copy_to_row(record: RunRecord, row: ScriptRun) -> None:
    row.status = record.status
    row.retrieval_index_id = record.retrieval_index_id
    row.retrieval_index_expires_at = record.retrieval_index_expires_at
    row.stage_artifacts = [
        artifact.model_dump(mode="json") for artifact in record.stage_artifacts
    ]
    row.error_message = record.error_message
    row.queue_position = record.queue_position


def _entry_to_domain(row: RenderQueueEntry) -> QueueEntry:
    return QueueEntry(
        run_id=row.run_id,
        owner_id=row.owner_id,
        position=row.position,
        status=row.status,
        generation_settings=dict(row.generation_settings or {}),
        created_at=row.created_at,
    )


class SQLAlchemyRunRepository(RunRepositoryInterface):
    """SQLAlchemy implementation of the run repository"""

    def __init__(self, session_factory: SessionFactoryType):
        self.session_factory = session_factory

    async def create(self, record: RunRecord) -> RunRecord:
        params = record.parameters
        row = ScriptRun(
            id=record.id,
            owner_id=record.owner_id,
            title=params.title,
            description=params.description,
            synthesis_style=params.synthesis_style,
            specialty=params.specialty,
            target_duration_minutes=params.target_duration_minutes,
            retention_days=params.retention_days,
            document_ids=list(record.document_ids),
        )
        _copy_to_row(record, row)
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _run_to_domain(row)

    async def get(self, run_id: UUID) -> Optional[RunRecord]:
        async with self.session_factory() as session:
            result = await session.execute(select(ScriptRun).where(ScriptRun.id == run_id))
            row = result.scalar_one_or_none()
            return _run_to_domain(row) if row else None

    async def save(self, record: RunRecord) -> RunRecord:
        async with self.session_factory() as session:
            result = await session.execute(select(ScriptRun).where(ScriptRun.id == record.id))
            row = result.scalar_one_or_none()
            if row is None:
                raise LookupError(f"Run {record.id} does not exist")
            _copy_to_row(record, row)
            await session.commit()
            await session.refresh(row)
            return _run_to_domain(row)


class SQLAlchemyRenderQueueRepository(RenderQueueRepositoryInterface):
    """Render queue whose enqueue holds a row lock for the whole count-then-insert."""

    def __init__(self, session_factory: SessionFactoryType, queue_name: str):
        self.session_factory = session_factory
        self.queue_name = queue_name

    async def _lock_queue(self, session: AsyncSession) -> None:
        result = await session.execute(
            select(RenderQueueLock)
            .where(RenderQueueLock.name == self.queue_name)
            .with_for_update()
        )
        if result.scalar_one_or_none() is None:
            session.add(RenderQueueLock(name=self.queue_name))
            await session.flush()

    async def enqueue(
        self,
        run_id: UUID,
        owner_id: int,
        generation_settings: Mapping[str, Any],
    ) -> QueueEntry:
        try:
            return await self._enqueue_locked(run_id, owner_id, generation_settings)
        except IntegrityError:
            # Lost the race to create the lock row (or the entry); the retry sees it.
            return await self._enqueue_locked(run_id, owner_id, generation_settings)

    async def _enqueue_locked(
        self,
        run_id: UUID,
        owner_id: int,
        generation_settings: Mapping[str, Any],
    ) -> QueueEntry:
        # The session autobegins; everything up to commit runs in one transaction.
        async with self.session_factory() as session:
            await self._lock_queue(session)

            existing = await session.execute(
                select(RenderQueueEntry).where(RenderQueueEntry.run_id == run_id)
            )
            entry = existing.scalar_one_or_none()
            if entry is not None:
                queued = _entry_to_domain(entry)
                await session.commit()
                return queued

            count_result = await session.execute(
                select(func.count(RenderQueueEntry.id)).where(
                    RenderQueueEntry.status.in_(ACTIVE_QUEUE_STATUSES)
                )
            )
            position = int(count_result.scalar_one()) + 1
            entry = RenderQueueEntry(
                run_id=run_id,
                owner_id=owner_id,
                position=position,
                generation_settings=dict(generation_settings),
            )
            session.add(entry)
            await session.flush()
            await session.refresh(entry)
            queued = _entry_to_domain(entry)
            await session.commit()
            return queued

    async def get(self, run_id: UUID) -> Optional[QueueEntry]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RenderQueueEntry).where(RenderQueueEntry.run_id == run_id)
            )
            row = result.scalar_one_or_none()
            return _entry_to_domain(row) if row else None

    async def count_active(self) -> int:
        async with self.session_factory() as session:
            result = await session.execute(
                select(func.count(RenderQueueEntry.id)).where(
                    RenderQueueEntry.status.in_(ACTIVE_QUEUE_STATUSES)
                )
            )
            return int(result.scalar_one())


class SQLAlchemyDocumentRepository(DocumentRepositoryInterface):
    """SQLAlchemy implementation for source document lookups"""

    def __init__(self, session_factory: SessionFactoryType):
        self.session_factory = session_factory

    async def list_for_owner(
        self, owner_id: int, document_ids: Sequence[str]
    ) -> List[SourceDocument]:
        if not document_ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(
                select(SourceDocumentEntity).where(
                    SourceDocumentEntity.id.in_(list(document_ids)),
                    SourceDocumentEntity.owner_id == owner_id,
                )
            )
            rows = result.scalars().all()
            by_id = {
                row.id: SourceDocument(
                    id=row.id,
                    owner_id=row.owner_id,
                    title=row.title,
                    file_ref=row.file_ref,
                    upload_status=row.upload_status.value,
                )
                for row in rows
            }
            # Preserve the caller's ordering.
            return [by_id[doc_id] for doc_id in document_ids if doc_id in by_id]


class SQLAlchemyOwnerRepository(OwnerRepositoryInterface):
    """SQLAlchemy implementation of owner lookups"""

    def __init__(self, session_factory: SessionFactoryType):
        self.session_factory = session_factory

    async def get_by_id(self, owner_id: int) -> Optional[Owner]:
        async with self.session_factory() as session:
            result = await session.execute(select(UserEntity).where(UserEntity.id == owner_id))
            row = result.scalar_one_or_none()
            if row is None:
                return None
            return Owner(id=row.id, email=row.email, status=row.status.value)
