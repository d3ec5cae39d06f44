"""Recipe Engine services."""

from recipe_engine.services.rules import RuleEngine
from recipe_engine.services.generation import GenerationService
from recipe_engine.services.translation import TranslationService
from recipe_engine.services.publishing import PublishGate
from recipe_engine.services.collections import CollectionService
from recipe_engine.services.review import ReviewService
from recipe_engine.services.taxonomy_sync import TaxonomySync

__all__ = [
    "RuleEngine",
    "GenerationService",
    "TranslationService",
    "PublishGate",
    "CollectionService",
    "ReviewService",
    "TaxonomySync",
]
