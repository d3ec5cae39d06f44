"""Recipe persistence."""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import select, func, true
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import ColumnElement

from recipe_engine.models.recipe import Recipe, RecipeTag, RecipeStatus

logger = logging.getLogger(__name__)


class RecipeRepository:
    """Typed CRUD plus predicate-driven count/find for recipes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, recipe_id: str) -> Optional[Recipe]:
        result = await self.db.execute(select(Recipe).where(Recipe.id == recipe_id))
        return result.scalar_one_or_none()

    async def get_many(self, recipe_ids: Iterable[str]) -> Dict[str, Recipe]:
        ids = list(recipe_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(Recipe).where(Recipe.id.in_(ids)))
        return {r.id: r for r in result.scalars().all()}

    async def existing_titles(self, titles: Iterable[str]) -> Set[str]:
        """Titles from `titles` that already exist (exact match)."""
        titles = list(titles)
        if not titles:
            return set()
        result = await self.db.execute(select(Recipe.title).where(Recipe.title.in_(titles)))
        return set(result.scalars().all())

    async def create(self, **fields) -> Recipe:
        recipe = Recipe(**fields)
        self.db.add(recipe)
        await self.db.flush()
        return recipe

    async def add_tags(self, recipe_id: str, tag_ids: Iterable[str]) -> int:
        """Associate tags, skipping ones already linked. Returns the number added."""
        wanted = set(tag_ids)
        if not wanted:
            return 0
        result = await self.db.execute(
            select(RecipeTag.tag_id)
            .where(RecipeTag.recipe_id == recipe_id)
            .where(RecipeTag.tag_id.in_(wanted))
        )
        existing = set(result.scalars().all())
        added = 0
        for tag_id in sorted(wanted - existing):
            self.db.add(RecipeTag(recipe_id=recipe_id, tag_id=tag_id))
            added += 1
        await self.db.flush()
        return added

    async def list_for_job(self, job_id: str) -> List[Recipe]:
        result = await self.db.execute(
            select(Recipe)
            .where(Recipe.generate_job_id == job_id)
            .order_by(Recipe.created_at)
        )
        return list(result.scalars().all())

    async def count_by_status(self, predicate: Optional[ColumnElement] = None) -> Dict[str, int]:
        """Count matches grouped by recipe status."""
        query = select(Recipe.status, func.count(Recipe.id).label("count"))
        query = query.where(predicate if predicate is not None else true())
        result = await self.db.execute(query.group_by(Recipe.status))

        counts = {s.value: 0 for s in RecipeStatus}
        for row in result.all():
            counts[row.status] = row.count
        return counts

    async def count(self, predicate: Optional[ColumnElement] = None) -> int:
        query = select(func.count(Recipe.id))
        if predicate is not None:
            query = query.where(predicate)
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def find(
        self,
        predicate: Optional[ColumnElement] = None,
        status: Optional[str] = None,
        exclude_ids: Sequence[str] = (),
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Recipe]:
        """Matches ordered newest first."""
        query = select(Recipe)
        if predicate is not None:
            query = query.where(predicate)
        if status:
            query = query.where(Recipe.status == status)
        if exclude_ids:
            query = query.where(Recipe.id.not_in(list(exclude_ids)))
        query = query.order_by(Recipe.created_at.desc(), Recipe.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_for_review(
        self,
        review_status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Recipe]:
        query = select(Recipe).where(Recipe.ai_generated == True)  # noqa: E712
        if review_status:
            query = query.where(Recipe.review_status == review_status)
        query = query.order_by(Recipe.created_at.desc()).offset(offset).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())
