"""Collection publish gate: live qualification, publish/unpublish, diagnostics."""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import false

from recipe_engine.core.database import async_session_maker
from recipe_engine.core.errors import NotFoundError
from recipe_engine.models.collection import Collection, CollectionStatus
from recipe_engine.models.recipe import RecipeStatus
from recipe_engine.repositories import CollectionRepository, RecipeRepository
from recipe_engine.services.rules import RuleContext, RuleEngine, parse_rule

logger = logging.getLogger(__name__)

NEAR_THRESHOLD = 80
MAX_GENERATE_SUGGESTION = 20


class QualifiedStatus(str, Enum):
    QUALIFIED = "qualified"
    NEAR = "near"
    UNQUALIFIED = "unqualified"


def progress(published: int, target: int) -> int:
    """Percentage of the target reached, capped at 100; 0 without a target."""
    if target <= 0:
        return 0
    return min(100, round(published / target * 100))


def qualified_status(published: int, min_required: int, target: int) -> QualifiedStatus:
    if published >= min_required:
        return QualifiedStatus.QUALIFIED
    if progress(published, target) >= NEAR_THRESHOLD:
        return QualifiedStatus.NEAR
    return QualifiedStatus.UNQUALIFIED


async def count_matches(db, collection: Collection) -> Dict[str, int]:
    """Live per-status counts of recipes matching the collection's rule."""
    if not collection.rules:
        predicate = false()
    else:
        rule = parse_rule(collection.rules)
        predicate = await RuleEngine(db).compile(rule, RuleContext.for_collection(collection))
    return await RecipeRepository(db).count_by_status(predicate)


def _apply_counts(collection: Collection, counts: Dict[str, int], now: datetime) -> None:
    collection.cached_published_count = counts[RecipeStatus.PUBLISHED.value]
    collection.cached_pending_count = counts[RecipeStatus.PENDING.value]
    collection.cached_draft_count = counts[RecipeStatus.DRAFT.value]
    collection.cached_at = now


class PublishGate:
    """Decides and applies collection publish state from live counts."""

    def __init__(self, session_factory=async_session_maker):
        self.session_factory = session_factory

    @staticmethod
    async def _get(db, collection_id: str) -> Collection:
        collection = await CollectionRepository(db).get(collection_id)
        if not collection:
            raise NotFoundError(f"Collection not found: {collection_id}")
        return collection

    async def qualify(self, collection_id: str) -> Dict[str, Any]:
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            counts = await count_matches(db, collection)

        published = counts[RecipeStatus.PUBLISHED.value]
        return {
            "counts": counts,
            "qualifiedStatus": qualified_status(published, collection.min_required, collection.target_count).value,
            "progress": progress(published, collection.target_count),
            "minRequired": collection.min_required,
            "targetCount": collection.target_count,
        }

    async def publish(self, collection_id: str, force: bool = False) -> Dict[str, Any]:
        """Publish regardless of qualification; `force` only silences the warning."""
        now = datetime.utcnow()
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            counts = await count_matches(db, collection)
            published = counts[RecipeStatus.PUBLISHED.value]
            status = qualified_status(published, collection.min_required, collection.target_count)
            already_published = collection.status == CollectionStatus.PUBLISHED.value

            collection.status = CollectionStatus.PUBLISHED.value
            if collection.published_at is None:
                collection.published_at = now
            _apply_counts(collection, counts, now)
            await db.commit()

        if already_published:
            message = "Collection is already published"
        elif status != QualifiedStatus.QUALIFIED and not force:
            message = (
                f"Warning: {published} published recipes is below the minimum of "
                f"{collection.min_required}; consider adding content before publishing"
            )
        else:
            message = "Published"

        logger.info(
            "Published collection %s (%d/%d published, %s, force=%s)",
            collection_id, published, collection.min_required, status.value, force,
        )
        return {
            "published": True,
            "qualifiedStatus": status.value,
            "message": message,
            "publishedCount": published,
            "minRequired": collection.min_required,
            "collection": collection.to_dict(),
        }

    async def unpublish(self, collection_id: str) -> Dict[str, Any]:
        """Back to draft; caches and curation lists are kept."""
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            was_published = collection.status == CollectionStatus.PUBLISHED.value
            collection.status = CollectionStatus.DRAFT.value
            await db.commit()

        if was_published:
            logger.info("Unpublished collection %s", collection_id)
        return {
            "published": False,
            "message": "Unpublished" if was_published else "Collection is not published",
            "collection": collection.to_dict(),
        }

    async def refresh_counts(self, collection_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Recount one collection, or every collection when no id is given."""
        now = datetime.utcnow()
        refreshed = []
        async with self.session_factory() as db:
            if collection_id:
                collections = [await self._get(db, collection_id)]
            else:
                collections = await CollectionRepository(db).list_all()

            for collection in collections:
                counts = await count_matches(db, collection)
                _apply_counts(collection, counts, now)
                published = counts[RecipeStatus.PUBLISHED.value]
                refreshed.append({
                    "id": collection.id,
                    "name": collection.name,
                    "counts": counts,
                    "qualifiedStatus": qualified_status(
                        published, collection.min_required, collection.target_count
                    ).value,
                })
            await db.commit()

        logger.info("Refreshed counts for %d collections", len(refreshed))
        return refreshed

    async def diagnose(self, collection_id: str) -> Dict[str, Any]:
        """Funnel (target/published/pending/draft/gap) with suggested next steps."""
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            counts = await count_matches(db, collection)

        published = counts[RecipeStatus.PUBLISHED.value]
        pending = counts[RecipeStatus.PENDING.value]
        draft = counts[RecipeStatus.DRAFT.value]
        gap = max(0, collection.target_count - published)

        suggestions = []
        if pending > 0:
            suggestions.append({
                "type": "publish_pending",
                "message": f"{pending} recipes await review; approving them brings the total to {published + pending}",
                "count": pending,
            })
        if draft > 0:
            suggestions.append({
                "type": "complete_draft",
                "message": f"{draft} drafts can be completed and published",
                "count": draft,
            })
        if gap > 0:
            suggestions.append({
                "type": "generate",
                "message": f"Generate {gap} recipes to close the gap",
                "count": min(gap, MAX_GENERATE_SUGGESTION),
            })

        return {
            "collection": {
                "id": collection.id,
                "name": collection.name,
                "type": collection.type,
                "minRequired": collection.min_required,
                "targetCount": collection.target_count,
            },
            "funnel": {
                "target": collection.target_count,
                "published": published,
                "pending": pending,
                "draft": draft,
                "gap": gap,
            },
            "status": {
                "isMinReached": published >= collection.min_required,
                "qualifiedStatus": qualified_status(
                    published, collection.min_required, collection.target_count
                ).value,
                "progress": progress(published, collection.target_count),
            },
            "suggestions": suggestions,
        }
