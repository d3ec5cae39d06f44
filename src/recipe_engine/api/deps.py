"""Shared API dependencies and request model base."""

from fastapi import Request
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from recipe_engine.services.collections import CollectionService
from recipe_engine.services.generation import GenerationService
from recipe_engine.services.publishing import PublishGate
from recipe_engine.services.review import ReviewService
from recipe_engine.services.taxonomy_sync import TaxonomySync
from recipe_engine.services.translation import TranslationService


class CamelModel(BaseModel):
    """Request body accepting camelCase (or snake_case) keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def get_generation_service(request: Request) -> GenerationService:
    return request.app.state.generation_service


def get_translation_service(request: Request) -> TranslationService:
    return request.app.state.translation_service


def get_collection_service(request: Request) -> CollectionService:
    return request.app.state.collection_service


def get_publish_gate(request: Request) -> PublishGate:
    return request.app.state.publish_gate


def get_review_service(request: Request) -> ReviewService:
    return request.app.state.review_service


def get_taxonomy_sync(request: Request) -> TaxonomySync:
    return request.app.state.taxonomy_sync
