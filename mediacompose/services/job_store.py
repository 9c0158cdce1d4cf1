"""Persistence for composition jobs.

One ``video_compositions`` row per composition request. The step log is a
read-merge-write JSON list, so every mutation of a given job runs under a
per-job asyncio lock (and ``SELECT ... FOR UPDATE`` where supported); two
requests appending to the same job can no longer drop each other's steps.
"""

import asyncio
import logging
import weakref
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mediacompose.exceptions import JobNotFoundError, JobStoreError
from mediacompose.models.base import utcnow
from mediacompose.models.composition import CompositionStatus, VideoComposition
from mediacompose.models.database import SchemaInitializer

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class CompositionJob:
    """Detached snapshot of a composition record."""

    id: str
    status: CompositionStatus
    work_dir: str
    steps: list[str] = field(default_factory=list)
    output_path: str | None = None
    expires_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: VideoComposition) -> "CompositionJob":
        return cls(
            id=row.id,
            status=CompositionStatus(row.status),
            work_dir=row.folder_path,
            steps=list(row.steps or []),
            output_path=row.video_path,
            expires_at=row.expiration_time,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_dict(self) -> dict:
        """Serialize using the persisted column names."""
        return {
            "id": self.id,
            "status": self.status.value,
            "steps": list(self.steps),
            "folder_path": self.work_dir,
            "video_path": self.output_path,
            "expiration_time": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class CompositionJobStore:
    """Async store for composition jobs backed by SQLAlchemy."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        schema: SchemaInitializer | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._schema = schema
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    async def initialize(self) -> None:
        """Ensure the backing table exists. Idempotent."""
        if self._schema is None:
            return
        try:
            await self._schema.ensure()
        except SQLAlchemyError as e:
            logger.error(f"[DB] Failed to initialize video_compositions: {e}")
            raise JobStoreError(f"Could not initialize composition table: {e}") from e

    def _lock_for(self, job_id: str) -> asyncio.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[job_id] = lock
        return lock

    async def create(self, job: CompositionJob) -> CompositionJob:
        """Insert a new job record."""
        row = VideoComposition(
            id=job.id,
            status=job.status.value,
            steps=list(job.steps),
            folder_path=job.work_dir,
            video_path=job.output_path,
            expiration_time=job.expires_at,
        )
        try:
            async with self._session_maker() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
                created = CompositionJob.from_row(row)
        except SQLAlchemyError as e:
            logger.error(f"[DB] Error creating composition record {job.id}: {e}")
            raise JobStoreError(f"Could not create composition record: {e}") from e

        logger.info(f"[DB] Composition record created. ID: {job.id}, status: {job.status.value}")
        return created

    async def get(self, job_id: str) -> CompositionJob | None:
        """Fetch a job by id, or None if it does not exist."""
        try:
            async with self._session_maker() as session:
                row = await session.get(VideoComposition, job_id)
                return CompositionJob.from_row(row) if row else None
        except SQLAlchemyError as e:
            logger.error(f"[DB] Error reading composition {job_id}: {e}")
            raise JobStoreError(f"Could not read composition record: {e}") from e

    async def update(
        self,
        job_id: str,
        *,
        status: CompositionStatus | None = None,
        steps: Iterable[str] = (),
        output_path: str | None | object = _UNSET,
        expires_at: datetime | None | object = _UNSET,
    ) -> CompositionJob:
        """Apply a partial update; ``steps`` are appended to the existing log.

        Status ordering is not checked here. Callers own the forward-only
        invariant (see JobTracker).
        """
        new_steps = list(steps)
        async with self._lock_for(job_id):
            try:
                async with self._session_maker() as session:
                    result = await session.execute(
                        select(VideoComposition)
                        .where(VideoComposition.id == job_id)
                        .with_for_update()
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        raise JobNotFoundError(job_id)

                    if new_steps:
                        row.steps = list(row.steps or []) + new_steps
                    if status is not None:
                        row.status = status.value
                    if output_path is not _UNSET:
                        row.video_path = output_path
                    if expires_at is not _UNSET:
                        row.expiration_time = expires_at
                    row.updated_at = utcnow()

                    await session.commit()
                    updated = CompositionJob.from_row(row)
            except SQLAlchemyError as e:
                logger.error(f"[DB] Error updating composition {job_id}: {e}")
                raise JobStoreError(f"Could not update composition record: {e}") from e

        logger.info(
            f"[DB] Composition {job_id} updated: status={updated.status.value}, "
            f"steps+={new_steps}"
        )
        return updated

    async def append_steps(self, job_id: str, steps: Iterable[str]) -> CompositionJob:
        return await self.update(job_id, steps=steps)

    async def set_status(self, job_id: str, status: CompositionStatus) -> CompositionJob:
        return await self.update(job_id, status=status)

    async def set_output(
        self, job_id: str, output_path: str, expires_at: datetime
    ) -> CompositionJob:
        return await self.update(job_id, output_path=output_path, expires_at=expires_at)

    async def clear_output(self, job_id: str) -> CompositionJob:
        """Null the output path and expiration once an artifact is reclaimed."""
        return await self.update(job_id, output_path=None, expires_at=None)

    async def find_expired(self, now: datetime | None = None) -> list[CompositionJob]:
        """Jobs whose expiration has elapsed and whose artifact is still recorded."""
        now = now or utcnow()
        try:
            async with self._session_maker() as session:
                result = await session.execute(
                    select(VideoComposition)
                    .where(VideoComposition.expiration_time < now)
                    .where(VideoComposition.video_path.is_not(None))
                    .order_by(VideoComposition.expiration_time)
                )
                return [CompositionJob.from_row(row) for row in result.scalars().all()]
        except SQLAlchemyError as e:
            logger.error(f"[DB] Error querying expired compositions: {e}")
            raise JobStoreError(f"Could not query expired compositions: {e}") from e
