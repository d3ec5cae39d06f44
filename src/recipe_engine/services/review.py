"""Review of generated recipes."""

import logging
from typing import Any, Dict, List, Optional

from recipe_engine.core.config import settings
from recipe_engine.core.database import async_session_maker
from recipe_engine.core.errors import NotFoundError, ValidationError
from recipe_engine.models.recipe import Recipe, RecipeStatus, ReviewStatus
from recipe_engine.models.translation_job import EntityType
from recipe_engine.repositories import RecipeRepository

logger = logging.getLogger(__name__)


class ReviewService:
    """Approve (publish + enqueue translations) or reject generated recipes."""

    def __init__(self, translation_service, session_factory=async_session_maker, locales: Optional[List[str]] = None):
        self.translation_service = translation_service
        self.session_factory = session_factory
        self.locales = settings.AUTO_TRANSLATE_LOCALES if locales is None else locales

    async def list(self, review_status: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Recipe]:
        if review_status and review_status not in {s.value for s in ReviewStatus}:
            raise ValidationError(f"Unknown review status: {review_status}")
        async with self.session_factory() as db:
            return await RecipeRepository(db).list_for_review(review_status, limit=limit, offset=offset)

    async def approve(self, recipe_id: str, note: Optional[str] = None) -> Dict[str, Any]:
        async with self.session_factory() as db:
            recipe = await RecipeRepository(db).get(recipe_id)
            if not recipe:
                raise NotFoundError(f"Recipe not found: {recipe_id}")
            recipe.review_status = ReviewStatus.APPROVED.value
            recipe.status = RecipeStatus.PUBLISHED.value
            recipe.review_note = note
            await db.commit()

        jobs = await self.translation_service.enqueue_locales(EntityType.RECIPE.value, recipe_id, self.locales)
        logger.info("Approved recipe %s; %d translation jobs queued", recipe_id, len(jobs))
        return {"recipe": recipe.to_dict(), "translationJobIds": [j.id for j in jobs]}

    async def reject(self, recipe_id: str, note: Optional[str] = None) -> Dict[str, Any]:
        async with self.session_factory() as db:
            recipe = await RecipeRepository(db).get(recipe_id)
            if not recipe:
                raise NotFoundError(f"Recipe not found: {recipe_id}")
            recipe.review_status = ReviewStatus.REJECTED.value
            recipe.status = RecipeStatus.DRAFT.value
            recipe.review_note = note
            await db.commit()

        logger.info("Rejected recipe %s", recipe_id)
        return {"recipe": recipe.to_dict()}
