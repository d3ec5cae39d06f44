"""Recipe Engine - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from recipe_engine.api.v1.router import api_router
from recipe_engine.core.config import settings
from recipe_engine.core.database import async_session_maker, close_db, init_db
from recipe_engine.core.errors import AppError
from recipe_engine.core.jobs import JobKind, JobManager
from recipe_engine.services.collaborators import HTTPGenerationCollaborator, HTTPTranslationCollaborator
from recipe_engine.services.collections import CollectionService
from recipe_engine.services.generation import GenerationService
from recipe_engine.services.publishing import PublishGate
from recipe_engine.services.review import ReviewService
from recipe_engine.services.taxonomy_sync import TaxonomySync
from recipe_engine.services.translation import TranslationService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    generator,
    translator,
    session_factory=async_session_maker,
    job_manager: Optional[JobManager] = None,
) -> JobManager:
    """Build the services onto app.state and register job handlers."""
    job_manager = job_manager or JobManager.get_instance()

    generation = GenerationService(generator, session_factory=session_factory, job_manager=job_manager)
    translation = TranslationService(translator, session_factory=session_factory, job_manager=job_manager)

    app.state.generation_service = generation
    app.state.translation_service = translation
    app.state.collection_service = CollectionService(session_factory=session_factory)
    app.state.publish_gate = PublishGate(session_factory=session_factory)
    app.state.review_service = ReviewService(translation, session_factory=session_factory)
    app.state.taxonomy_sync = TaxonomySync(session_factory=session_factory)
    app.state.job_manager = job_manager

    job_manager.register_handler(JobKind.GENERATE, generation.execute, recover=generation.recover)
    job_manager.register_handler(JobKind.TRANSLATE, translation.execute_queued, recover=translation.recover)
    return job_manager


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting %s v%s", settings.APP_NAME, settings.VERSION)

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    generator = HTTPGenerationCollaborator()
    translator = HTTPTranslationCollaborator()
    job_manager = configure_services(app, generator, translator)

    await job_manager.start()
    logger.info("Job manager started")

    yield

    # Cleanup
    logger.info("Shutting down %s...", settings.APP_NAME)
    await job_manager.stop()
    await generator.close()
    await translator.close()
    await close_db()
    logger.info("Shutdown complete")


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error in the {success: false, error: {...}} envelope."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={
                "success": False,
                "error": {
                    "code": "VALIDATION_ERROR",
                    "message": "Invalid request",
                    "details": {"errors": jsonable_encoder(exc.errors())},
                },
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": {"code": "INTERNAL_ERROR", "message": "Internal server error"}},
        )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.APP_NAME,
        description="Recipe content pipeline: generation, translation and collection publishing",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # Health check endpoint
    @app.get("/health")
    async def health_check(request: Request):
        job_manager = request.app.state.job_manager
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "services": {
                "jobManager": job_manager.is_running,
                "queueSize": job_manager.queue_size(),
                "activeJobs": len(job_manager.active_jobs()),
                "database": True,
            },
        }

    # Include API router
    app.include_router(api_router, prefix="/v1")

    return app


# Create app instance
app = create_app()


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "recipe_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )


if __name__ == "__main__":
    main()
