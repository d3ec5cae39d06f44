"""Translation job endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from recipe_engine.api.deps import CamelModel, get_translation_service
from recipe_engine.services.translation import TranslationService

router = APIRouter()


# Request Models
class CreateTranslationJobRequest(CamelModel):
    entity_type: str
    entity_id: str
    target_lang: str
    priority: Optional[int] = None


class BatchTranslationRequest(CamelModel):
    entity_type: str
    entity_ids: list[str]
    target_lang: str
    priority: Optional[int] = None


class RunRequest(CamelModel):
    mode: str = "sync"  # sync, async


class ControlRequest(CamelModel):
    action: str  # retry, cancel, prioritize
    priority: Optional[int] = None


class ProcessQueueRequest(CamelModel):
    limit: Optional[int] = None
    mode: str = "sync"


# Endpoints
@router.post("")
async def create_translation_job(
    request: CreateTranslationJobRequest,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    """Create a job, or return the active one for the same entity and language."""
    job, created = await service.create(
        request.entity_type, request.entity_id, request.target_lang, request.priority,
    )
    return {"success": True, "data": {"job": job.to_dict(), "created": created}}


@router.post("/batch")
async def create_translation_batch(
    request: BatchTranslationRequest,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    result = await service.create_batch(
        request.entity_type, request.entity_ids, request.target_lang, request.priority,
    )
    return {"success": True, "data": result}


@router.post("/process")
async def process_translation_queue(
    request: Optional[ProcessQueueRequest] = None,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    """Sweep pending jobs in priority order."""
    request = request or ProcessQueueRequest()
    result = await service.process_queue(request.limit, mode=request.mode)
    return {"success": True, "data": result}


@router.get("")
async def list_translation_jobs(
    status: Optional[str] = Query(None),
    entity_type: Optional[str] = Query(None, alias="entityType"),
    target_lang: Optional[str] = Query(None, alias="targetLang"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    items, total, stats = await service.list(
        status=status,
        entity_type=entity_type,
        target_lang=target_lang,
        limit=limit,
        offset=offset,
    )
    return {
        "success": True,
        "data": {"items": items, "total": total, "stats": stats, "limit": limit, "offset": offset},
    }


@router.get("/{job_id}")
async def get_translation_job(
    job_id: str,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    job = await service.get(job_id)
    return {"success": True, "data": job.to_dict()}


@router.post("/{job_id}/run")
async def run_translation_job(
    job_id: str,
    request: Optional[RunRequest] = None,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    result = await service.run(job_id, mode=request.mode if request else "sync")
    return {"success": True, "data": result}


@router.post("/{job_id}/control")
async def control_translation_job(
    job_id: str,
    request: ControlRequest,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    job = await service.control(job_id, request.action, priority=request.priority)
    return {"success": True, "data": job.to_dict()}


@router.delete("/{job_id}")
async def delete_translation_job(
    job_id: str,
    service: TranslationService = Depends(get_translation_service),
) -> dict:
    await service.delete(job_id)
    return {"success": True, "data": {"deleted": True}}
