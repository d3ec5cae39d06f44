"""Collection endpoints: CRUD, curation, rule dry runs and the publish gate."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from recipe_engine.api.deps import (
    CamelModel,
    get_collection_service,
    get_generation_service,
    get_publish_gate,
)
from recipe_engine.services.collections import CollectionService
from recipe_engine.services.generation import GenerationService
from recipe_engine.services.publishing import PublishGate

router = APIRouter()


# Request Models
class CreateCollectionRequest(CamelModel):
    name: str
    slug: str
    type: str
    path: Optional[str] = None
    description: Optional[str] = None
    seo: Optional[dict] = None
    rules: Optional[dict] = None
    cuisine_id: Optional[str] = None
    location_id: Optional[str] = None
    tag_id: Optional[str] = None
    min_required: Optional[int] = None
    target_count: Optional[int] = None


class UpdateCollectionRequest(CamelModel):
    name: Optional[str] = None
    slug: Optional[str] = None
    type: Optional[str] = None
    path: Optional[str] = None
    description: Optional[str] = None
    seo: Optional[dict] = None
    rules: Optional[dict] = None
    cuisine_id: Optional[str] = None
    location_id: Optional[str] = None
    tag_id: Optional[str] = None
    min_required: Optional[int] = None
    target_count: Optional[int] = None


class PublishRequest(CamelModel):
    force: bool = False


class TestRulesRequest(CamelModel):
    rules: dict
    cuisine_id: Optional[str] = None
    location_id: Optional[str] = None
    tag_id: Optional[str] = None
    excluded_ids: list[str] = []
    sample_size: int = 5


class RecipeIdsRequest(CamelModel):
    recipe_ids: list[str]


class PinRequest(RecipeIdsRequest):
    position: str = "end"  # start, end


class RefreshRequest(CamelModel):
    collection_id: Optional[str] = None


class GenerateForCollectionRequest(CamelModel):
    recipe_names: list[str]
    locked_tags: Optional[dict] = None
    auto_start: bool = True


def _collection(collection) -> dict:
    return {"success": True, "data": collection.to_dict()}


# Endpoints
@router.get("")
async def list_collections(
    status: Optional[str] = Query(None),
    collection_type: Optional[str] = Query(None, alias="type"),
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    collections = await service.list(status=status, collection_type=collection_type)
    return {"success": True, "data": [c.to_dict() for c in collections]}


@router.post("")
async def create_collection(
    request: CreateCollectionRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    fields = request.model_dump(exclude_none=True)
    rules = fields.pop("rules", None)
    collection = await service.create(rules=rules, **fields)
    return _collection(collection)


@router.post("/test-rules")
async def test_rules(
    request: TestRulesRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    """Dry-run a rule without saving it."""
    result = await service.test_rules(
        request.rules,
        cuisine_id=request.cuisine_id,
        location_id=request.location_id,
        tag_id=request.tag_id,
        excluded_ids=request.excluded_ids,
        sample_size=request.sample_size,
    )
    return {"success": True, "data": result}


@router.post("/refresh-counts")
async def refresh_counts(
    request: Optional[RefreshRequest] = None,
    gate: PublishGate = Depends(get_publish_gate),
) -> dict:
    """Recount cached counters for one collection or all of them."""
    refreshed = await gate.refresh_counts(request.collection_id if request else None)
    return {"success": True, "data": {"refreshed": len(refreshed), "items": refreshed}}


@router.get("/{collection_id}")
async def get_collection(
    collection_id: str,
    service: CollectionService = Depends(get_collection_service),
    gate: PublishGate = Depends(get_publish_gate),
) -> dict:
    """Collection with its live qualification."""
    collection = await service.get(collection_id)
    data = collection.to_dict()
    data["qualification"] = await gate.qualify(collection_id)
    return {"success": True, "data": data}


@router.patch("/{collection_id}")
async def update_collection(
    collection_id: str,
    request: UpdateCollectionRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    fields = request.model_dump(exclude_unset=True)
    rules = fields.pop("rules", None)
    collection = await service.update(collection_id, rules=rules, **fields)
    return _collection(collection)


@router.delete("/{collection_id}")
async def delete_collection(
    collection_id: str,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    await service.delete(collection_id)
    return {"success": True, "data": {"deleted": True}}


@router.get("/{collection_id}/recipes")
async def list_collection_recipes(
    collection_id: str,
    status: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    """Member recipes, pinned first."""
    result = await service.list_recipes(collection_id, status=status, limit=limit, offset=offset)
    return {"success": True, "data": result}


@router.get("/{collection_id}/diagnose")
async def diagnose_collection(
    collection_id: str,
    gate: PublishGate = Depends(get_publish_gate),
) -> dict:
    return {"success": True, "data": await gate.diagnose(collection_id)}


@router.post("/{collection_id}/publish")
async def publish_collection(
    collection_id: str,
    request: Optional[PublishRequest] = None,
    gate: PublishGate = Depends(get_publish_gate),
) -> dict:
    result = await gate.publish(collection_id, force=request.force if request else False)
    return {"success": True, "data": result}


@router.post("/{collection_id}/unpublish")
async def unpublish_collection(
    collection_id: str,
    gate: PublishGate = Depends(get_publish_gate),
) -> dict:
    return {"success": True, "data": await gate.unpublish(collection_id)}


@router.post("/{collection_id}/pin")
async def pin_recipes(
    collection_id: str,
    request: PinRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    collection = await service.pin(collection_id, request.recipe_ids, position=request.position)
    return _collection(collection)


@router.post("/{collection_id}/unpin")
async def unpin_recipes(
    collection_id: str,
    request: RecipeIdsRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    collection = await service.unpin(collection_id, request.recipe_ids)
    return _collection(collection)


@router.put("/{collection_id}/pin")
async def reorder_pinned(
    collection_id: str,
    request: RecipeIdsRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    """Reorder pinned recipes; the id set must match the current pinned set."""
    collection = await service.reorder(collection_id, request.recipe_ids)
    return _collection(collection)


@router.post("/{collection_id}/exclude")
async def exclude_recipes(
    collection_id: str,
    request: RecipeIdsRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    collection = await service.exclude(collection_id, request.recipe_ids)
    return _collection(collection)


@router.post("/{collection_id}/include")
async def include_recipes(
    collection_id: str,
    request: RecipeIdsRequest,
    service: CollectionService = Depends(get_collection_service),
) -> dict:
    collection = await service.include(collection_id, request.recipe_ids)
    return _collection(collection)


@router.post("/{collection_id}/generate")
async def generate_for_collection(
    collection_id: str,
    request: GenerateForCollectionRequest,
    generation: GenerationService = Depends(get_generation_service),
) -> dict:
    """Create a generate job with the collection's cuisine/location/tag locked."""
    result = await generation.create_for_collection(
        collection_id,
        request.recipe_names,
        locked_tags=request.locked_tags,
        start=request.auto_start,
    )
    return {
        "success": True,
        "data": {
            "job": result["job"].to_dict(),
            "skipped": result["skipped"],
            "skippedNames": result["skippedNames"],
        },
    }
