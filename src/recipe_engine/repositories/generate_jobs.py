"""Generate job persistence."""

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_engine.core.errors import ConflictError
from recipe_engine.models.generate_job import GenerateJob

logger = logging.getLogger(__name__)


def active_key_for(collection_id: Optional[str]) -> Optional[str]:
    """Unique slot held while a collection job is pending/running."""
    return f"collection:{collection_id}" if collection_id else None


class GenerateJobRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, **fields) -> GenerateJob:
        """Insert a job; the unique active_key makes this an atomic conditional insert."""
        job = GenerateJob(**fields)
        self.db.add(job)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError(
                "This collection already has a pending or running generate job",
                details={"collectionId": fields.get("collection_id")},
            ) from None
        return job

    async def get(self, job_id: str) -> Optional[GenerateJob]:
        result = await self.db.execute(select(GenerateJob).where(GenerateJob.id == job_id))
        return result.scalar_one_or_none()

    async def get_status(self, job_id: str) -> Optional[str]:
        result = await self.db.execute(select(GenerateJob.status).where(GenerateJob.id == job_id))
        return result.scalar_one_or_none()

    async def list(
        self,
        status: Optional[str] = None,
        source_type: Optional[str] = None,
        collection_id: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[GenerateJob], int]:
        query = select(GenerateJob)
        count_query = select(func.count(GenerateJob.id))
        filters = []
        if status:
            filters.append(GenerateJob.status == status)
        if source_type:
            filters.append(GenerateJob.source_type == source_type)
        if collection_id:
            filters.append(GenerateJob.collection_id == collection_id)
        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        result = await self.db.execute(
            query.order_by(GenerateJob.created_at.desc()).offset(offset).limit(limit)
        )
        total = await self.db.execute(count_query)
        return list(result.scalars().all()), total.scalar() or 0

    async def list_ids_with_status(self, statuses: Iterable[str]) -> List[str]:
        result = await self.db.execute(
            select(GenerateJob.id).where(GenerateJob.status.in_(list(statuses)))
        )
        return list(result.scalars().all())

    async def transition(self, job_id: str, from_statuses: Iterable[str], **values) -> bool:
        """Compare-and-set on status. Returns False if the job was not in `from_statuses`."""
        result = await self.db.execute(
            update(GenerateJob)
            .where(GenerateJob.id == job_id)
            .where(GenerateJob.status.in_(list(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def update_progress(self, job_id: str, success_count: int, failed_count: int, results: list) -> None:
        await self.db.execute(
            update(GenerateJob)
            .where(GenerateJob.id == job_id)
            .values(success_count=success_count, failed_count=failed_count, results=results)
            .execution_options(synchronize_session=False)
        )

    async def delete(self, job: GenerateJob) -> None:
        await self.db.delete(job)
        await self.db.flush()
