"""Collection management: CRUD, curation (pin/exclude/reorder), rule dry runs."""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, false

from recipe_engine.core.config import settings
from recipe_engine.core.database import async_session_maker
from recipe_engine.core.errors import ConflictError, NotFoundError, ValidationError
from recipe_engine.models.collection import Collection
from recipe_engine.models.recipe import Recipe, RecipeStatus
from recipe_engine.repositories import CollectionRepository, RecipeRepository
from recipe_engine.services.rules import (
    RuleContext,
    RuleEngine,
    describe_rule,
    dump_rule,
    parse_rule,
    validate_rule,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {
    "name", "slug", "path", "type", "description", "seo",
    "cuisine_id", "location_id", "tag_id", "min_required", "target_count",
}

PIN_POSITIONS = ("start", "end")


def _check_thresholds(min_required: int, target_count: int) -> None:
    if min_required < 0 or target_count < 1:
        raise ValidationError("minRequired must be >= 0 and targetCount >= 1")
    if min_required > target_count:
        raise ValidationError("minRequired cannot exceed targetCount")


def _require_ids(recipe_ids: List[str]) -> List[str]:
    ids = [r for r in dict.fromkeys(recipe_ids or []) if r]
    if not ids:
        raise ValidationError("recipeIds must not be empty")
    return ids


class CollectionService:
    """Collections and their editorial overrides."""

    def __init__(self, session_factory=async_session_maker):
        self.session_factory = session_factory

    @staticmethod
    async def _get(db, collection_id: str) -> Collection:
        collection = await CollectionRepository(db).get(collection_id)
        if not collection:
            raise NotFoundError(f"Collection not found: {collection_id}")
        return collection

    # CRUD

    async def create(self, rules: Optional[dict] = None, **fields) -> Collection:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        if not fields.get("name") or not fields.get("slug") or not fields.get("type"):
            raise ValidationError("name, slug and type are required")

        fields.setdefault("min_required", settings.COLLECTION_MIN_REQUIRED)
        fields.setdefault("target_count", settings.COLLECTION_TARGET_COUNT)
        _check_thresholds(fields["min_required"], fields["target_count"])

        async with self.session_factory() as db:
            collection = await CollectionRepository(db).create(
                rules=dump_rule(parse_rule(rules)) if rules else None,
                pinned_recipe_ids=[],
                excluded_recipe_ids=[],
                **fields,
            )
            await db.commit()

        logger.info("Created collection %s (%s)", collection.id, collection.name)
        return collection

    async def get(self, collection_id: str) -> Collection:
        async with self.session_factory() as db:
            return await self._get(db, collection_id)

    async def list(self, status: Optional[str] = None, collection_type: Optional[str] = None) -> List[Collection]:
        async with self.session_factory() as db:
            return await CollectionRepository(db).list_all(status=status, collection_type=collection_type)

    async def update(self, collection_id: str, rules: Any = None, **fields) -> Collection:
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            _check_thresholds(
                fields.get("min_required", collection.min_required),
                fields.get("target_count", collection.target_count),
            )
            if rules is not None:
                collection.rules = dump_rule(parse_rule(rules))
            for name, value in fields.items():
                setattr(collection, name, value)
            await db.commit()
        return collection

    async def delete(self, collection_id: str) -> None:
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            await db.delete(collection)
            await db.commit()
        logger.info("Deleted collection %s", collection_id)

    # Curation

    async def pin(self, collection_id: str, recipe_ids: List[str], position: str = "end") -> Collection:
        """Pin recipes at the start or end; pinned recipes leave the excluded list."""
        ids = _require_ids(recipe_ids)
        if position not in PIN_POSITIONS:
            raise ValidationError("position must be 'start' or 'end'")

        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            found = await RecipeRepository(db).get_many(ids)
            missing = [r for r in ids if r not in found]
            if missing:
                raise ValidationError(f"Recipes not found: {', '.join(missing)}", details={"missingIds": missing})

            current = list(collection.pinned_recipe_ids or [])
            new_ids = [r for r in ids if r not in current]
            collection.pinned_recipe_ids = new_ids + current if position == "start" else current + new_ids
            collection.excluded_recipe_ids = [
                r for r in (collection.excluded_recipe_ids or []) if r not in ids
            ]
            await db.commit()

        logger.info("Pinned %d recipes in collection %s", len(new_ids), collection_id)
        return collection

    async def unpin(self, collection_id: str, recipe_ids: List[str]) -> Collection:
        ids = set(_require_ids(recipe_ids))
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            collection.pinned_recipe_ids = [r for r in (collection.pinned_recipe_ids or []) if r not in ids]
            await db.commit()
        return collection

    async def exclude(self, collection_id: str, recipe_ids: List[str]) -> Collection:
        """Exclude recipes; excluded recipes are also unpinned."""
        ids = _require_ids(recipe_ids)
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            current = list(collection.excluded_recipe_ids or [])
            collection.excluded_recipe_ids = current + [r for r in ids if r not in current]
            collection.pinned_recipe_ids = [r for r in (collection.pinned_recipe_ids or []) if r not in ids]
            await db.commit()

        logger.info("Excluded %d recipes from collection %s", len(ids), collection_id)
        return collection

    async def include(self, collection_id: str, recipe_ids: List[str]) -> Collection:
        ids = set(_require_ids(recipe_ids))
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            collection.excluded_recipe_ids = [r for r in (collection.excluded_recipe_ids or []) if r not in ids]
            await db.commit()
        return collection

    async def reorder(self, collection_id: str, recipe_ids: List[str]) -> Collection:
        """Replace the pinned order; the id set must be exactly the current pinned set."""
        if recipe_ids is None:
            raise ValidationError("recipeIds must be a list")
        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            current = list(collection.pinned_recipe_ids or [])
            if len(recipe_ids) != len(set(recipe_ids)) or set(recipe_ids) != set(current):
                raise ConflictError(
                    "Reorder cannot add or remove recipes; the pinned list has changed",
                    details={"pinnedRecipeIds": current},
                )
            collection.pinned_recipe_ids = list(recipe_ids)
            await db.commit()
        return collection

    # Matching

    async def list_recipes(
        self,
        collection_id: str,
        status: Optional[str] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Member recipes, pinned first (in pinned order), then rule matches newest first."""
        if status and status not in {s.value for s in RecipeStatus}:
            raise ValidationError(f"Unknown recipe status: {status}")

        async with self.session_factory() as db:
            collection = await self._get(db, collection_id)
            repo = RecipeRepository(db)
            excluded = set(collection.excluded_recipe_ids or [])
            pinned_ids = [r for r in (collection.pinned_recipe_ids or []) if r not in excluded]

            found = await repo.get_many(pinned_ids)
            pinned = [
                found[r] for r in pinned_ids
                if r in found and (not status or found[r].status == status)
            ]

            if collection.rules:
                context = RuleContext.for_collection(collection)
                predicate = await RuleEngine(db).compile(parse_rule(collection.rules), context)
            else:
                predicate = false()
            if pinned_ids:
                predicate = and_(predicate, Recipe.id.not_in(pinned_ids))
            if status:
                matched_total = await repo.count(and_(predicate, Recipe.status == status))
            else:
                matched_total = await repo.count(predicate)

            page = pinned[offset:offset + limit]
            remaining = limit - len(page)
            if remaining > 0:
                page += await repo.find(
                    predicate,
                    status=status,
                    limit=remaining,
                    offset=max(0, offset - len(pinned)),
                )

            pinned_set = set(pinned_ids)
            items = [{**r.to_summary(), "pinned": r.id in pinned_set} for r in page]

        return {"items": items, "total": len(pinned) + matched_total, "limit": limit, "offset": offset}

    async def test_rules(
        self,
        rules: Any,
        cuisine_id: Optional[str] = None,
        location_id: Optional[str] = None,
        tag_id: Optional[str] = None,
        excluded_ids: Optional[List[str]] = None,
        sample_size: int = 5,
    ) -> Dict[str, Any]:
        """Dry-run a rule: validation, description, per-status counts and samples."""
        validation = validate_rule(rules)
        if not validation.valid:
            return {"validation": validation.to_dict(), "description": None, "counts": None, "samples": []}

        rule = parse_rule(rules)
        context = RuleContext(
            cuisine_id=cuisine_id,
            location_id=location_id,
            tag_id=tag_id,
            excluded_ids=list(excluded_ids or []),
        )
        async with self.session_factory() as db:
            predicate = await RuleEngine(db).compile(rule, context)
            repo = RecipeRepository(db)
            counts = await repo.count_by_status(predicate)
            samples = await repo.find(predicate, limit=sample_size)

        return {
            "validation": validation.to_dict(),
            "description": describe_rule(rule),
            "counts": {**counts, "total": sum(counts.values())},
            "samples": [r.to_summary() for r in samples],
        }
