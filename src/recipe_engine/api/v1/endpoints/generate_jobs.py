"""Generate job endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from recipe_engine.api.deps import CamelModel, get_generation_service
from recipe_engine.services.generation import GenerationService

router = APIRouter()


# Request Models
class CreateGenerateJobRequest(CamelModel):
    source_type: str = "manual"
    collection_id: Optional[str] = None
    recipe_names: list[str]
    locked_tags: Optional[dict] = None
    auto_start: bool = True


class ControlRequest(CamelModel):
    action: str  # start, pause, resume, cancel


class RetryRequest(CamelModel):
    auto_start: bool = True


def _created(result: dict) -> dict:
    return {
        "success": True,
        "data": {
            "job": result["job"].to_dict(),
            "skipped": result["skipped"],
            "skippedNames": result["skippedNames"],
        },
    }


# Endpoints
@router.post("")
async def create_generate_job(
    request: CreateGenerateJobRequest,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    """Create a batch generation job (duplicate titles are dropped)."""
    result = await service.create(
        request.source_type,
        request.recipe_names,
        locked_tags=request.locked_tags,
        collection_id=request.collection_id,
        start=request.auto_start,
    )
    return _created(result)


@router.get("")
async def list_generate_jobs(
    status: Optional[str] = Query(None),
    source_type: Optional[str] = Query(None, alias="sourceType"),
    collection_id: Optional[str] = Query(None, alias="collectionId"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    jobs, total = await service.list(
        status=status,
        source_type=source_type,
        collection_id=collection_id,
        limit=limit,
        offset=offset,
    )
    return {
        "success": True,
        "data": {"items": [j.to_dict() for j in jobs], "total": total, "limit": limit, "offset": offset},
    }


@router.get("/{job_id}")
async def get_generate_job(
    job_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    """Job detail with the recipes it produced."""
    job, recipes = await service.get_with_recipes(job_id)
    data = job.to_dict()
    data["recipes"] = [r.to_summary() for r in recipes]
    return {"success": True, "data": data}


@router.post("/{job_id}/control")
async def control_generate_job(
    job_id: str,
    request: ControlRequest,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    job = await service.control(job_id, request.action)
    return {"success": True, "data": job.to_dict()}


@router.post("/{job_id}/retry")
async def retry_generate_job(
    job_id: str,
    request: Optional[RetryRequest] = None,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    """New job containing only the failed (or unprocessed) names."""
    result = await service.retry(job_id, start=request.auto_start if request else True)
    return _created(result)


@router.delete("/{job_id}")
async def delete_generate_job(
    job_id: str,
    service: GenerationService = Depends(get_generation_service),
) -> dict:
    await service.delete(job_id)
    return {"success": True, "data": {"deleted": True}}
