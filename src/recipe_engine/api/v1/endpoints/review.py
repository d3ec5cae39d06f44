"""Recipe review endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from recipe_engine.api.deps import CamelModel, get_review_service
from recipe_engine.services.review import ReviewService

router = APIRouter()


class ReviewRequest(CamelModel):
    note: Optional[str] = None


@router.get("/recipes")
async def list_review_recipes(
    review_status: Optional[str] = Query(None, alias="reviewStatus"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: ReviewService = Depends(get_review_service),
) -> dict:
    """Generated recipes, optionally filtered by review status."""
    recipes = await service.list(review_status, limit=limit, offset=offset)
    return {"success": True, "data": [r.to_summary() for r in recipes]}


@router.post("/recipes/{recipe_id}/approve")
async def approve_recipe(
    recipe_id: str,
    request: Optional[ReviewRequest] = None,
    service: ReviewService = Depends(get_review_service),
) -> dict:
    """Publish the recipe and queue its translations."""
    result = await service.approve(recipe_id, note=request.note if request else None)
    return {"success": True, "data": result}


@router.post("/recipes/{recipe_id}/reject")
async def reject_recipe(
    recipe_id: str,
    request: Optional[ReviewRequest] = None,
    service: ReviewService = Depends(get_review_service),
) -> dict:
    result = await service.reject(recipe_id, note=request.note if request else None)
    return {"success": True, "data": result}
