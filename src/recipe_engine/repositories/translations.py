"""Translated variant persistence."""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_engine.models.translation import EntityTranslation


class TranslationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, entity_type: str, entity_id: str, locale: str) -> Optional[EntityTranslation]:
        result = await self.db.execute(
            select(EntityTranslation)
            .where(EntityTranslation.entity_type == entity_type)
            .where(EntityTranslation.entity_id == entity_id)
            .where(EntityTranslation.locale == locale)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        entity_type: str,
        entity_id: str,
        locale: str,
        content: dict,
        slug: Optional[str],
        trans_method: str = "ai",
        reviewed: bool = False,
    ) -> EntityTranslation:
        """Create or replace the variant keyed by (entity_type, entity_id, locale)."""
        variant = await self.get(entity_type, entity_id, locale)
        if variant is None:
            variant = EntityTranslation(entity_type=entity_type, entity_id=entity_id, locale=locale)
            self.db.add(variant)

        variant.content = content
        variant.slug = slug
        variant.trans_method = trans_method
        variant.is_reviewed = reviewed
        variant.reviewed_at = datetime.utcnow() if reviewed else None
        await self.db.flush()
        return variant
