"""Taxonomy entries and the collections bound to them.

Creating a cuisine, location or tag also creates its draft collection;
renames flow through to the collection; deleting an entry orphans the
collection (foreign key and rules cleared, back to draft) instead of
deleting it.
"""

import logging
from typing import Any, Dict, Optional

from recipe_engine.core.config import settings
from recipe_engine.core.database import async_session_maker
from recipe_engine.core.errors import ConflictError, NotFoundError, ValidationError
from recipe_engine.models.collection import CollectionStatus
from recipe_engine.models.taxonomy import TagType
from recipe_engine.repositories import CollectionRepository, TaxonomyRepository
from recipe_engine.repositories.taxonomy import MODELS

logger = logging.getLogger(__name__)

# Kinds that own a collection, and the collection foreign key they bind
COLLECTION_SOURCES = {"cuisine": "cuisine_id", "location": "location_id", "tag": "tag_id"}


def collection_type_for(kind: str, tag_type: Optional[str] = None) -> str:
    if kind == "cuisine":
        return "cuisine"
    if kind == "location":
        return "region"
    return tag_type


def collection_path(collection_type: str, slug: str) -> str:
    return f"/recipe/{collection_type}/{slug}"


class TaxonomySync:
    """Taxonomy CRUD that keeps bound collections in step."""

    def __init__(self, session_factory=async_session_maker):
        self.session_factory = session_factory

    @staticmethod
    def _check_kind(kind: str) -> None:
        if kind not in MODELS:
            raise ValidationError(f"Unknown taxonomy kind: {kind}")

    async def create_entry(self, kind: str, name: str, slug: str, **fields) -> Dict[str, Any]:
        self._check_kind(kind)
        if not name or not slug:
            raise ValidationError("name and slug are required")
        unknown = [f for f in fields if not hasattr(MODELS[kind], f)]
        if unknown:
            raise ValidationError(f"Unknown fields for {kind}: {', '.join(unknown)}")
        tag_type = fields.get("type")
        if kind == "tag" and tag_type not in {t.value for t in TagType}:
            raise ValidationError(f"Unknown tag type: {tag_type}")

        async with self.session_factory() as db:
            taxonomy = TaxonomyRepository(db)
            if await taxonomy.get_by_slug(kind, slug, tag_type=tag_type) is not None:
                raise ConflictError(f"{kind} with slug '{slug}' already exists")

            entry = await taxonomy.create(kind, name=name, slug=slug, **fields)
            collection = None
            if kind in COLLECTION_SOURCES:
                collection_type = collection_type_for(kind, tag_type)
                collection = await CollectionRepository(db).create(
                    name=name,
                    slug=slug,
                    path=collection_path(collection_type, slug),
                    type=collection_type,
                    description=fields.get("description"),
                    rules={"type": collection_type, "value": slug},
                    pinned_recipe_ids=[],
                    excluded_recipe_ids=[],
                    min_required=settings.COLLECTION_MIN_REQUIRED,
                    target_count=settings.COLLECTION_TARGET_COUNT,
                    status=CollectionStatus.DRAFT.value,
                    **{COLLECTION_SOURCES[kind]: entry.id},
                )
            await db.commit()

        logger.info("Created %s '%s'%s", kind, slug, " with collection" if collection else "")
        return {"entry": entry.to_dict(), "collection": collection.to_dict() if collection else None}

    async def update_entry(self, kind: str, entry_id: str, **fields) -> Dict[str, Any]:
        """Update an entry; name/slug/description changes are mirrored to its collections."""
        self._check_kind(kind)
        async with self.session_factory() as db:
            taxonomy = TaxonomyRepository(db)
            entry = await taxonomy.get(kind, entry_id)
            if not entry:
                raise NotFoundError(f"{kind} not found: {entry_id}")
            for name, value in fields.items():
                if not hasattr(entry, name) or name in ("id", "created_at"):
                    raise ValidationError(f"Unknown field: {name}")
                setattr(entry, name, value)

            synced = []
            if kind in COLLECTION_SOURCES:
                for collection in await CollectionRepository(db).find_by_source(kind, entry_id):
                    if "name" in fields:
                        collection.name = fields["name"]
                    if "description" in fields:
                        collection.description = fields["description"]
                    if "slug" in fields:
                        collection.slug = fields["slug"]
                        collection.path = collection_path(collection.type, fields["slug"])
                        if collection.rules and collection.rules.get("type") == collection.type:
                            collection.rules = {**collection.rules, "value": fields["slug"]}
                    synced.append(collection.id)
            await db.commit()

        if synced:
            logger.info("Synced %d collections for %s %s", len(synced), kind, entry_id)
        return {"entry": entry.to_dict(), "syncedCollectionIds": synced}

    async def delete_entry(self, kind: str, entry_id: str) -> Dict[str, Any]:
        """Delete an entry, orphaning (not deleting) its collections."""
        self._check_kind(kind)
        async with self.session_factory() as db:
            taxonomy = TaxonomyRepository(db)
            entry = await taxonomy.get(kind, entry_id)
            if not entry:
                raise NotFoundError(f"{kind} not found: {entry_id}")

            orphaned = []
            if kind in COLLECTION_SOURCES:
                for collection in await CollectionRepository(db).find_by_source(kind, entry_id):
                    setattr(collection, COLLECTION_SOURCES[kind], None)
                    collection.rules = None
                    collection.status = CollectionStatus.DRAFT.value
                    orphaned.append(collection.id)
            await db.flush()
            await taxonomy.delete(entry)
            await db.commit()

        if orphaned:
            logger.warning("Orphaned %d collections after deleting %s %s", len(orphaned), kind, entry_id)
        return {"deleted": entry_id, "orphanedCollectionIds": orphaned}
