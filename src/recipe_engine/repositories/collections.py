"""Collection persistence."""

from typing import Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from recipe_engine.models.collection import Collection

# Foreign-key column per taxonomy source
SOURCE_COLUMNS = {
    "cuisine": "cuisine_id",
    "location": "location_id",
    "tag": "tag_id",
}


class CollectionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, collection_id: str) -> Optional[Collection]:
        result = await self.db.execute(select(Collection).where(Collection.id == collection_id))
        return result.scalar_one_or_none()

    async def get_many(self, collection_ids: Iterable[str]) -> Dict[str, Collection]:
        ids = list(collection_ids)
        if not ids:
            return {}
        result = await self.db.execute(select(Collection).where(Collection.id.in_(ids)))
        return {c.id: c for c in result.scalars().all()}

    async def list_all(self, status: Optional[str] = None, collection_type: Optional[str] = None) -> List[Collection]:
        query = select(Collection)
        if status:
            query = query.where(Collection.status == status)
        if collection_type:
            query = query.where(Collection.type == collection_type)
        result = await self.db.execute(query.order_by(Collection.created_at))
        return list(result.scalars().all())

    async def find_by_source(self, source: str, entry_id: str) -> List[Collection]:
        """Collections bound to a taxonomy entry through their foreign key."""
        column = getattr(Collection, SOURCE_COLUMNS[source])
        result = await self.db.execute(select(Collection).where(column == entry_id))
        return list(result.scalars().all())

    async def create(self, **fields) -> Collection:
        collection = Collection(**fields)
        self.db.add(collection)
        await self.db.flush()
        return collection
