"""Pytest configuration and fixtures."""

import os
import sys
import uuid
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Keep the module-level engine off the filesystem
os.environ.setdefault("RECIPE_DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from recipe_engine import models  # noqa: E402,F401
from recipe_engine.core.database import Base  # noqa: E402
from recipe_engine.core.errors import CollaboratorError  # noqa: E402
from recipe_engine.core.jobs import JobManager  # noqa: E402
from recipe_engine.models import Collection, Cuisine, Location, Recipe, RecipeTag, Tag  # noqa: E402
from recipe_engine.services.collaborators import GeneratedRecipe  # noqa: E402


class FakeGenerator:
    """Generation collaborator double; names in `fail_on` raise an item-level error."""

    def __init__(self, fail_on=(), image_fail=False, tags=None, before_generate=None):
        self.fail_on = set(fail_on)
        self.image_fail = image_fail
        self.tags = tags or {}
        self.before_generate = before_generate
        self.calls = []
        self.image_calls = []

    async def generate(self, dish_name, constraints, token):
        self.calls.append((dish_name, constraints))
        if self.before_generate is not None:
            await self.before_generate(dish_name)
        if dish_name in self.fail_on:
            raise CollaboratorError(f"generation failed for {dish_name}")
        return GeneratedRecipe.model_validate({
            "title": dish_name,
            "description": f"How to cook {dish_name}",
            "ingredients": [{"name": "salt", "amount": 1, "unit": "tsp"}],
            "steps": [{"text": "Mix everything", "photoBrief": "mixing bowl"}],
            "imageShots": [
                {"key": "detail", "prompt": "close-up"},
                {"key": "hero", "prompt": "plated dish"},
            ],
            "tags": self.tags,
            "cookTime": 30,
            "difficulty": 2,
        })

    async def generate_image(self, prompt, dish_name, token):
        self.image_calls.append(prompt)
        if self.image_fail:
            raise CollaboratorError("image service rejected the prompt")
        return f"https://images.test/{dish_name}/{prompt.replace(' ', '-')}.jpg"


class FakeTranslator:
    """Translation collaborator double; echoes string fields with a language marker."""

    def __init__(self, response=None, error=None, before_translate=None):
        self.response = response
        self.error = error
        self.before_translate = before_translate
        self.calls = []

    async def translate(self, source, source_lang, target_lang, prompt_template, token):
        self.calls.append((source, source_lang, target_lang, prompt_template))
        if self.before_translate is not None:
            await self.before_translate()
        if self.error is not None:
            raise self.error
        if self.response is not None:
            return dict(self.response)
        return {k: f"{v} [{target_lang}]" if isinstance(v, str) else v for k, v in source.items()}


@pytest.fixture
async def session_factory():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def job_manager():
    """Job manager that is never started: dispatched jobs only queue up."""
    return JobManager(max_workers=1)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def translator():
    return FakeTranslator()


# Seed helpers

async def seed_cuisine(factory, slug="sichuan", name="Sichuan"):
    async with factory() as db:
        cuisine = Cuisine(name=name, slug=slug)
        db.add(cuisine)
        await db.commit()
        return cuisine


async def seed_location(factory, slug="chengdu", name="Chengdu"):
    async with factory() as db:
        location = Location(name=name, slug=slug)
        db.add(location)
        await db.commit()
        return location


async def seed_tag(factory, tag_type="scene", slug="breakfast", name=None):
    async with factory() as db:
        tag = Tag(type=tag_type, name=name or slug.title(), slug=slug)
        db.add(tag)
        await db.commit()
        return tag


async def seed_recipe(factory, title=None, status="published", tag_ids=(), **fields):
    async with factory() as db:
        recipe = Recipe(
            title=title or f"Recipe {uuid.uuid4().hex[:6]}",
            slug=f"recipe-{uuid.uuid4().hex[:12]}",
            status=status,
            **fields,
        )
        db.add(recipe)
        await db.flush()
        for tag_id in tag_ids:
            db.add(RecipeTag(recipe_id=recipe.id, tag_id=tag_id))
        await db.commit()
        return recipe


async def seed_collection(factory, rules=None, **fields):
    fields.setdefault("name", "Sichuan dishes")
    fields.setdefault("slug", "sichuan")
    fields.setdefault("type", "cuisine")
    async with factory() as db:
        collection = Collection(
            rules=rules,
            pinned_recipe_ids=fields.pop("pinned_recipe_ids", []),
            excluded_recipe_ids=fields.pop("excluded_recipe_ids", []),
            **fields,
        )
        db.add(collection)
        await db.commit()
        return collection
