"""SQLAlchemy models for Recipe Engine."""

from recipe_engine.models.taxonomy import Cuisine, Location, Tag, Ingredient, TagType
from recipe_engine.models.recipe import Recipe, RecipeTag, RecipeStatus, ReviewStatus
from recipe_engine.models.collection import Collection, CollectionStatus
from recipe_engine.models.generate_job import GenerateJob, GenerateJobStatus
from recipe_engine.models.translation_job import TranslationJob, TranslationJobStatus, EntityType
from recipe_engine.models.translation import EntityTranslation

__all__ = [
    "Cuisine",
    "Location",
    "Tag",
    "Ingredient",
    "TagType",
    "Recipe",
    "RecipeTag",
    "RecipeStatus",
    "ReviewStatus",
    "Collection",
    "CollectionStatus",
    "GenerateJob",
    "GenerateJobStatus",
    "TranslationJob",
    "TranslationJobStatus",
    "EntityType",
    "EntityTranslation",
]
