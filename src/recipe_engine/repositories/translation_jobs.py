"""Translation job persistence."""

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_engine.models.translation_job import (
    TranslationJob,
    TranslationJobStatus,
    tuple_key,
)

logger = logging.getLogger(__name__)


class TranslationJobRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, job_id: str) -> Optional[TranslationJob]:
        result = await self.db.execute(select(TranslationJob).where(TranslationJob.id == job_id))
        return result.scalar_one_or_none()

    async def get_status(self, job_id: str) -> Optional[str]:
        result = await self.db.execute(select(TranslationJob.status).where(TranslationJob.id == job_id))
        return result.scalar_one_or_none()

    async def find_active(self, entity_type: str, entity_id: str, target_lang: str) -> Optional[TranslationJob]:
        result = await self.db.execute(
            select(TranslationJob).where(
                TranslationJob.active_key == tuple_key(entity_type, entity_id, target_lang)
            )
        )
        return result.scalar_one_or_none()

    async def create_or_get(
        self,
        entity_type: str,
        entity_id: str,
        target_lang: str,
        priority: int,
        max_retries: int,
    ) -> Tuple[TranslationJob, bool]:
        """Insert a pending job, or return the one already active for the tuple.

        Returns (job, created). A lost race on the unique active_key rolls the
        session back, so callers commit after each call.
        """
        existing = await self.find_active(entity_type, entity_id, target_lang)
        if existing:
            return existing, False

        job = TranslationJob(
            entity_type=entity_type,
            entity_id=entity_id,
            target_lang=target_lang,
            priority=priority,
            max_retries=max_retries,
            status=TranslationJobStatus.PENDING.value,
            active_key=tuple_key(entity_type, entity_id, target_lang),
        )
        self.db.add(job)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info("Coalesced concurrent translation job for %s", job.active_key)
            existing = await self.find_active(entity_type, entity_id, target_lang)
            if existing is None:
                raise
            return existing, False
        return job, True

    async def list(
        self,
        status: Optional[str] = None,
        entity_type: Optional[str] = None,
        target_lang: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[TranslationJob], int]:
        query = select(TranslationJob)
        count_query = select(func.count(TranslationJob.id))
        filters = []
        if status:
            filters.append(TranslationJob.status == status)
        if entity_type:
            filters.append(TranslationJob.entity_type == entity_type)
        if target_lang:
            filters.append(TranslationJob.target_lang == target_lang)
        for condition in filters:
            query = query.where(condition)
            count_query = count_query.where(condition)

        result = await self.db.execute(
            query.order_by(TranslationJob.priority.asc(), TranslationJob.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        total = await self.db.execute(count_query)
        return list(result.scalars().all()), total.scalar() or 0

    async def next_batch(self, limit: int, now: Optional[datetime] = None) -> List[str]:
        """Pending job ids past their backoff gate: priority asc, then newest first."""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(TranslationJob.id)
            .where(TranslationJob.status == TranslationJobStatus.PENDING.value)
            .where(or_(TranslationJob.available_at.is_(None), TranslationJob.available_at <= now))
            .order_by(TranslationJob.priority.asc(), TranslationJob.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(self, job_id: str, from_statuses: Iterable[str], **values) -> bool:
        """Compare-and-set on status. Returns False if the job was not in `from_statuses`."""
        result = await self.db.execute(
            update(TranslationJob)
            .where(TranslationJob.id == job_id)
            .where(TranslationJob.status.in_(list(from_statuses)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def reset_processing(self) -> int:
        """Return jobs stuck in processing to pending."""
        result = await self.db.execute(
            update(TranslationJob)
            .where(TranslationJob.status == TranslationJobStatus.PROCESSING.value)
            .values(status=TranslationJobStatus.PENDING.value)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_by_status(self) -> dict:
        result = await self.db.execute(
            select(TranslationJob.status, func.count(TranslationJob.id).label("count"))
            .group_by(TranslationJob.status)
        )
        stats = {s.value: 0 for s in TranslationJobStatus}
        for row in result.all():
            stats[row.status] = row.count
        return stats

    async def delete(self, job: TranslationJob) -> None:
        await self.db.delete(job)
        await self.db.flush()

