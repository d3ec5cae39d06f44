"""Taxonomy endpoints (cuisine, location, tag, ingredient)."""

from typing import Optional

from fastapi import APIRouter, Depends

from recipe_engine.api.deps import CamelModel, get_taxonomy_sync
from recipe_engine.services.taxonomy_sync import TaxonomySync

router = APIRouter()


class CreateEntryRequest(CamelModel):
    name: str
    slug: str
    description: Optional[str] = None
    type: Optional[str] = None  # tags only
    unit: Optional[str] = None  # ingredients only
    sort_order: Optional[int] = None


class UpdateEntryRequest(CamelModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    sort_order: Optional[int] = None
    unit: Optional[str] = None


@router.post("/{kind}")
async def create_entry(
    kind: str,
    request: CreateEntryRequest,
    sync: TaxonomySync = Depends(get_taxonomy_sync),
) -> dict:
    """Create an entry; cuisines, locations and tags also get a draft collection."""
    fields = request.model_dump(exclude_none=True)
    result = await sync.create_entry(kind, fields.pop("name"), fields.pop("slug"), **fields)
    return {"success": True, "data": result}


@router.patch("/{kind}/{entry_id}")
async def update_entry(
    kind: str,
    entry_id: str,
    request: UpdateEntryRequest,
    sync: TaxonomySync = Depends(get_taxonomy_sync),
) -> dict:
    result = await sync.update_entry(kind, entry_id, **request.model_dump(exclude_unset=True))
    return {"success": True, "data": result}


@router.delete("/{kind}/{entry_id}")
async def delete_entry(
    kind: str,
    entry_id: str,
    sync: TaxonomySync = Depends(get_taxonomy_sync),
) -> dict:
    """Delete an entry; bound collections are orphaned, not deleted."""
    result = await sync.delete_entry(kind, entry_id)
    return {"success": True, "data": result}
