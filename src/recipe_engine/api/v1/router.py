"""Main API router for v1."""

from fastapi import APIRouter, Depends

from recipe_engine.api.v1.endpoints import collections, generate_jobs, review, taxonomy, translation_jobs
from recipe_engine.core.auth import require_operator

api_router = APIRouter(dependencies=[Depends(require_operator)])

# Include all endpoint routers
api_router.include_router(generate_jobs.router, prefix="/generate-jobs", tags=["Generate Jobs"])
api_router.include_router(translation_jobs.router, prefix="/translation-jobs", tags=["Translation Jobs"])
api_router.include_router(collections.router, prefix="/collections", tags=["Collections"])
api_router.include_router(review.router, prefix="/review", tags=["Review"])
api_router.include_router(taxonomy.router, prefix="/taxonomy", tags=["Taxonomy"])
