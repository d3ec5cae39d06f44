"""Tests for the collection publish gate."""

import pytest
from sqlalchemy import select

from conftest import seed_collection, seed_cuisine, seed_recipe
from recipe_engine.core.errors import NotFoundError
from recipe_engine.models import Collection, CollectionStatus, Recipe
from recipe_engine.services.publishing import PublishGate, QualifiedStatus, progress, qualified_status


async def _sichuan_collection(factory, published=0, pending=0, draft=0, **fields):
    cuisine = await seed_cuisine(factory)
    for _ in range(published):
        await seed_recipe(factory, status="published", cuisine_id=cuisine.id)
    for _ in range(pending):
        await seed_recipe(factory, status="pending", cuisine_id=cuisine.id)
    for _ in range(draft):
        await seed_recipe(factory, status="draft", cuisine_id=cuisine.id)
    # Published but from another cuisine
    await seed_recipe(factory, status="published")
    fields.setdefault("min_required", 10)
    fields.setdefault("target_count", 20)
    return await seed_collection(
        factory,
        rules={"type": "cuisine", "value": "sichuan"},
        cuisine_id=cuisine.id,
        **fields,
    )


class TestQualification:
    def test_min_required_is_inclusive(self):
        assert qualified_status(10, 10, 20) == QualifiedStatus.QUALIFIED
        assert qualified_status(9, 10, 20) == QualifiedStatus.UNQUALIFIED

    def test_near_at_eighty_percent_of_target(self):
        assert qualified_status(8, 10, 10) == QualifiedStatus.NEAR
        assert qualified_status(7, 10, 10) == QualifiedStatus.UNQUALIFIED

    def test_progress_is_capped(self):
        assert progress(30, 20) == 100
        assert progress(5, 20) == 25
        assert progress(5, 0) == 0

    def test_zero_target_is_never_near(self):
        assert qualified_status(0, 5, 0) == QualifiedStatus.UNQUALIFIED

    async def test_qualify_counts_live_matches(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=4, pending=2, draft=1)
        result = await PublishGate(session_factory).qualify(collection.id)

        assert result["counts"] == {"published": 4, "pending": 2, "draft": 1}
        assert result["qualifiedStatus"] == "unqualified"
        assert result["progress"] == 20

    async def test_excluded_recipes_do_not_count(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=2, min_required=2, target_count=2)
        gate = PublishGate(session_factory)
        assert (await gate.qualify(collection.id))["qualifiedStatus"] == "qualified"

        async with session_factory() as db:
            stored = await db.get(Collection, collection.id)
            result = await db.execute(select(Recipe.id).where(Recipe.cuisine_id == stored.cuisine_id))
            stored.excluded_recipe_ids = [result.scalars().first()]
            await db.commit()

        result = await gate.qualify(collection.id)
        assert result["counts"]["published"] == 1
        assert result["qualifiedStatus"] == "unqualified"

    async def test_collection_without_rules_matches_nothing(self, session_factory):
        await seed_recipe(session_factory)
        collection = await seed_collection(session_factory)
        result = await PublishGate(session_factory).qualify(collection.id)
        assert result["counts"]["published"] == 0


class TestPublish:
    async def test_unqualified_publish_warns_but_publishes(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=9)
        result = await PublishGate(session_factory).publish(collection.id)

        assert result["published"]
        assert result["qualifiedStatus"] == "unqualified"
        assert result["message"].startswith("Warning: 9 published recipes")
        assert result["publishedCount"] == 9
        assert result["collection"]["status"] == CollectionStatus.PUBLISHED.value
        assert result["collection"]["cachedPublishedCount"] == 9

    async def test_force_only_changes_message(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=3)
        result = await PublishGate(session_factory).publish(collection.id, force=True)
        assert result["published"]
        assert result["message"] == "Published"
        assert result["qualifiedStatus"] == "unqualified"

    async def test_qualified_publish(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=10)
        result = await PublishGate(session_factory).publish(collection.id)
        assert result["qualifiedStatus"] == "qualified"
        assert result["message"] == "Published"

    async def test_published_at_set_once(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=10)
        gate = PublishGate(session_factory)

        first = await gate.publish(collection.id)
        await gate.unpublish(collection.id)
        second = await gate.publish(collection.id)

        assert second["collection"]["publishedAt"] == first["collection"]["publishedAt"]
        again = await gate.publish(collection.id)
        assert again["message"] == "Collection is already published"

    async def test_unpublish_keeps_curation(self, session_factory):
        recipe = await seed_recipe(session_factory)
        collection = await seed_collection(
            session_factory, status="published", pinned_recipe_ids=[recipe.id], excluded_recipe_ids=["gone"],
        )
        gate = PublishGate(session_factory)

        result = await gate.unpublish(collection.id)
        assert not result["published"]
        assert result["message"] == "Unpublished"
        assert result["collection"]["status"] == CollectionStatus.DRAFT.value
        assert result["collection"]["pinnedRecipeIds"] == [recipe.id]
        assert result["collection"]["excludedRecipeIds"] == ["gone"]

        again = await gate.unpublish(collection.id)
        assert again["message"] == "Collection is not published"

    async def test_unknown_collection(self, session_factory):
        with pytest.raises(NotFoundError):
            await PublishGate(session_factory).publish("missing")


class TestRefreshAndDiagnose:
    async def test_refresh_updates_cached_counts(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=3, pending=1)
        other = await seed_collection(session_factory, name="Empty", slug="empty")
        gate = PublishGate(session_factory)

        refreshed = await gate.refresh_counts()
        assert {r["id"] for r in refreshed} == {collection.id, other.id}

        single = await gate.refresh_counts(collection.id)
        assert single[0]["counts"]["published"] == 3
        async with session_factory() as db:
            stored = await db.get(Collection, collection.id)
        assert stored.cached_published_count == 3
        assert stored.cached_pending_count == 1
        assert stored.cached_at is not None

    async def test_diagnose_funnel_and_suggestions(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=4, pending=2, draft=1, target_count=30)
        result = await PublishGate(session_factory).diagnose(collection.id)

        assert result["funnel"] == {"target": 30, "published": 4, "pending": 2, "draft": 1, "gap": 26}
        assert result["status"]["isMinReached"] is False
        assert result["status"]["qualifiedStatus"] == "unqualified"
        types = [s["type"] for s in result["suggestions"]]
        assert types == ["publish_pending", "complete_draft", "generate"]
        assert result["suggestions"][-1]["count"] == 20

    async def test_diagnose_at_target_has_no_suggestions(self, session_factory):
        collection = await _sichuan_collection(session_factory, published=2, min_required=1, target_count=2)
        result = await PublishGate(session_factory).diagnose(collection.id)
        assert result["funnel"]["gap"] == 0
        assert result["status"]["isMinReached"] is True
        assert result["suggestions"] == []
