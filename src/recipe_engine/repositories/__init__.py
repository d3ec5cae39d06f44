"""Entity store repositories (one per aggregate, bound to a session)."""

from recipe_engine.repositories.recipes import RecipeRepository
from recipe_engine.repositories.taxonomy import TaxonomyRepository
from recipe_engine.repositories.collections import CollectionRepository
from recipe_engine.repositories.generate_jobs import GenerateJobRepository
from recipe_engine.repositories.translation_jobs import TranslationJobRepository
from recipe_engine.repositories.translations import TranslationRepository

__all__ = [
    "RecipeRepository",
    "TaxonomyRepository",
    "CollectionRepository",
    "GenerateJobRepository",
    "TranslationJobRepository",
    "TranslationRepository",
]
