"""Taxonomy persistence (cuisines, locations, tags, ingredients)."""

from typing import Dict, Iterable, List, Optional, Type, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_engine.models.taxonomy import Cuisine, Location, Tag, Ingredient

TaxonomyModel = Union[Cuisine, Location, Tag, Ingredient]

MODELS: Dict[str, Type] = {
    "cuisine": Cuisine,
    "location": Location,
    "tag": Tag,
    "ingredient": Ingredient,
}


class TaxonomyRepository:
    """Lookup and CRUD for taxonomy entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def model_for(kind: str) -> Type:
        try:
            return MODELS[kind]
        except KeyError:
            raise ValueError(f"Unknown taxonomy kind: {kind}") from None

    async def get(self, kind: str, entry_id: str) -> Optional[TaxonomyModel]:
        model = self.model_for(kind)
        result = await self.db.execute(select(model).where(model.id == entry_id))
        return result.scalar_one_or_none()

    async def get_by_slug(self, kind: str, slug: str, tag_type: Optional[str] = None) -> Optional[TaxonomyModel]:
        """Tag slugs are unique per dimension, so tags also filter on `tag_type`."""
        model = self.model_for(kind)
        query = select(model).where(model.slug == slug)
        if tag_type is not None and model is Tag:
            query = query.where(Tag.type == tag_type)
        result = await self.db.execute(query)
        return result.scalars().first()

    async def create(self, kind: str, **fields) -> TaxonomyModel:
        entry = self.model_for(kind)(**fields)
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def delete(self, entry: TaxonomyModel) -> None:
        await self.db.delete(entry)
        await self.db.flush()

    async def tag_ids_for_slugs(self, tag_type: str, slugs: Iterable[str]) -> List[str]:
        """Resolve tag slugs of one dimension to ids; unknown slugs are dropped."""
        slugs = [s for s in slugs if s]
        if not slugs:
            return []
        result = await self.db.execute(
            select(Tag.id).where(Tag.type == tag_type).where(Tag.slug.in_(slugs))
        )
        return list(result.scalars().all())

    async def tags_by_slug(self, slugs: Iterable[str]) -> Dict[str, Tag]:
        """Active tags keyed by (type, slug) -> Tag, for validating suggestions."""
        slugs = [s for s in slugs if s]
        if not slugs:
            return {}
        result = await self.db.execute(
            select(Tag).where(Tag.slug.in_(slugs)).where(Tag.is_active == True)  # noqa: E712
        )
        return {f"{t.type}:{t.slug}": t for t in result.scalars().all()}

    async def names_for(self, kind: str, ids: Iterable[str]) -> Dict[str, str]:
        ids = list(ids)
        if not ids:
            return {}
        model = self.model_for(kind)
        result = await self.db.execute(select(model.id, model.name).where(model.id.in_(ids)))
        return {row.id: row.name for row in result.all()}
