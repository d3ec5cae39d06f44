"""Tests for the translation job queue."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from conftest import FakeTranslator, seed_cuisine, seed_recipe
from recipe_engine.core.config import settings
from recipe_engine.core.errors import (
    CollaboratorError,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from recipe_engine.core.jobs import JobKind
from recipe_engine.models import TranslationJob, TranslationJobStatus
from recipe_engine.repositories import RecipeRepository, TaxonomyRepository, TranslationRepository
from recipe_engine.services.translation import TranslationService, make_slug, merge_patch


@pytest.fixture
def make_service(session_factory, job_manager):
    def _make(translator=None):
        service = TranslationService(
            translator or FakeTranslator(),
            session_factory=session_factory,
            job_manager=job_manager,
            queue_delay=0,
        )
        job_manager.register_handler(JobKind.TRANSLATE, service.execute_queued, recover=service.recover)
        return service
    return _make


async def _set_created_at(factory, job_id, created_at):
    async with factory() as db:
        await db.execute(update(TranslationJob).where(TranslationJob.id == job_id).values(created_at=created_at))
        await db.commit()


class TestMergePatch:
    def test_missing_and_empty_fields_keep_source(self):
        source = {"title": "麻婆豆腐", "description": "经典川菜", "tips": ["少放盐"], "faq": None}
        translated = {"title": "Mapo Tofu", "description": "", "tips": []}
        assert merge_patch(source, translated) == {
            "title": "Mapo Tofu",
            "description": "经典川菜",
            "tips": ["少放盐"],
            "faq": None,
        }

    def test_nested_objects_are_merged(self):
        source = {"seo": {"title": "麻婆豆腐", "keywords": "豆腐"}}
        translated = {"seo": {"title": "Mapo Tofu"}}
        assert merge_patch(source, translated) == {"seo": {"title": "Mapo Tofu", "keywords": "豆腐"}}

    def test_extra_translated_keys_are_ignored(self):
        assert merge_patch({"name": "川菜"}, {"name": "Sichuan", "note": "x"}) == {"name": "Sichuan"}


class TestSlug:
    def test_english_slug_strips_punctuation(self):
        assert make_slug("Mapo Tofu (Classic)!", "en") == "mapo-tofu-classic"

    def test_other_locales_keep_characters(self):
        assert make_slug("麻婆 豆腐", "ja") == "麻婆-豆腐"


class TestCreate:
    async def test_create_is_idempotent_per_tuple(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()

        first, created = await service.create("recipe", recipe.id, "en")
        second, created_again = await service.create("recipe", recipe.id, "en", priority=1)

        assert created and not created_again
        assert second.id == first.id
        assert first.priority == settings.TRANSLATION_DEFAULT_PRIORITY
        assert first.max_retries == settings.TRANSLATION_MAX_RETRIES

    async def test_other_language_is_a_new_job(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        en, _ = await service.create("recipe", recipe.id, "en")
        ja, created = await service.create("recipe", recipe.id, "ja")
        assert created and ja.id != en.id

    async def test_validation(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        with pytest.raises(ValidationError):
            await service.create("video", recipe.id, "en")
        with pytest.raises(ValidationError):
            await service.create("recipe", recipe.id, "fr")
        with pytest.raises(ValidationError):
            await service.create("recipe", recipe.id, settings.SOURCE_LOCALE)
        with pytest.raises(ValidationError):
            await service.create("recipe", recipe.id, "en", priority=11)
        with pytest.raises(NotFoundError):
            await service.create("recipe", "missing", "en")

    async def test_batch_reports_created_and_skipped(self, make_service, session_factory):
        r1 = await seed_recipe(session_factory)
        r2 = await seed_recipe(session_factory)
        service = make_service()
        await service.create("recipe", r1.id, "en")

        result = await service.create_batch("recipe", [r1.id, r2.id, "missing"], "en")

        assert result["created"] == 1
        assert result["skipped"] == 2
        assert result["missingIds"] == ["missing"]


class TestExecute:
    async def test_success_persists_variant_and_status(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory, title="Mapo Tofu", description="Classic")
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")

        result = await service.run(job.id, mode="sync")

        assert result["success"]
        assert result["qualityScore"] == 0.85
        job = await service.get(job.id)
        assert job.status == TranslationJobStatus.COMPLETED.value
        assert job.active_key is None
        assert job.quality_score == 0.85
        async with session_factory() as db:
            variant = await TranslationRepository(db).get("recipe", recipe.id, "en")
            stored = await RecipeRepository(db).get(recipe.id)
        assert variant.content["title"] == "Mapo Tofu [en]"
        assert variant.slug == "mapo-tofu-en"
        assert not variant.is_reviewed
        assert stored.trans_status == {"en": "pending_review"}

    async def test_empty_translation_never_blanks_source(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory, title="麻婆豆腐", description="经典川菜")
        service = make_service(FakeTranslator(response={"title": "Mapo Tofu", "description": ""}))
        job, _ = await service.create("recipe", recipe.id, "en")
        await service.run(job.id)

        async with session_factory() as db:
            variant = await TranslationRepository(db).get("recipe", recipe.id, "en")
        assert variant.content["title"] == "Mapo Tofu"
        assert variant.content["description"] == "经典川菜"

    async def test_slug_falls_back_to_entity_slug(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory, title="麻婆豆腐")
        service = make_service(FakeTranslator(response={"title": "!!!"}))
        job, _ = await service.create("recipe", recipe.id, "en")
        await service.run(job.id)

        async with session_factory() as db:
            variant = await TranslationRepository(db).get("recipe", recipe.id, "en")
        assert variant.slug == f"{recipe.slug}-en"

    async def test_taxonomy_entity_completes(self, make_service, session_factory):
        cuisine = await seed_cuisine(session_factory, "sichuan", "川菜")
        service = make_service()
        job, _ = await service.create("cuisine", cuisine.id, "ja")
        result = await service.run(job.id)

        assert result["qualityScore"] == 0.9
        async with session_factory() as db:
            stored = await TaxonomyRepository(db).get("cuisine", cuisine.id)
        assert stored.trans_status == {"ja": "completed"}

    async def test_failure_backs_off_then_fails(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service(FakeTranslator(error=CollaboratorError("model overloaded")))
        job, _ = await service.create("recipe", recipe.id, "en")

        before = datetime.utcnow()
        result = await service.run(job.id)
        assert not result["success"]
        job = await service.get(job.id)
        assert job.status == TranslationJobStatus.PENDING.value
        assert job.retry_count == 1
        assert job.error_message == "model overloaded"
        assert job.available_at >= before + timedelta(seconds=settings.TRANSLATION_BACKOFF_SECONDS)

        # The sweep honours the backoff gate
        swept = await service.process_queue(10)
        assert swept["processed"] == 0

        # An explicit run does not
        await service.run(job.id)
        job = await service.get(job.id)
        assert job.retry_count == 2
        assert job.available_at >= before + timedelta(seconds=2 * settings.TRANSLATION_BACKOFF_SECONDS)

        await service.run(job.id)
        job = await service.get(job.id)
        assert job.status == TranslationJobStatus.FAILED.value
        assert job.retry_count == 3
        assert job.active_key is None

    async def test_unexpected_collaborator_exception_is_item_level(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service(FakeTranslator(error=KeyError("choices")))
        job, _ = await service.create("recipe", recipe.id, "en")
        result = await service.run(job.id)
        assert result["status"] == TranslationJobStatus.PENDING.value
        assert "Translation failed" in result["error"]

    async def test_cancel_mid_call_leaves_job_cancelled(self, make_service, session_factory, monkeypatch):
        monkeypatch.setattr(settings, "CANCEL_POLL_INTERVAL", 0.01)
        recipe = await seed_recipe(session_factory)
        holder = {}

        async def cancel_and_hang():
            await holder["service"].control(holder["job_id"], "cancel")
            await asyncio.sleep(30)

        service = make_service(FakeTranslator(before_translate=cancel_and_hang))
        holder["service"] = service
        job, _ = await service.create("recipe", recipe.id, "en")
        holder["job_id"] = job.id

        result = await asyncio.wait_for(service.run(job.id), timeout=5)

        assert result["status"] == TranslationJobStatus.CANCELLED.value
        job = await service.get(job.id)
        assert job.status == TranslationJobStatus.CANCELLED.value
        assert job.retry_count == 0
        async with session_factory() as db:
            assert await TranslationRepository(db).get("recipe", recipe.id, "en") is None

    async def test_run_requires_pending(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")
        await service.run(job.id)
        with pytest.raises(StateError):
            await service.run(job.id)
        with pytest.raises(ValidationError):
            await service.run(job.id, mode="later")

    async def test_async_run_dispatches(self, make_service, session_factory, job_manager):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")
        result = await service.run(job.id, mode="async")
        assert result == {"queued": True, "jobId": job.id}
        assert job_manager.queue_size() == 1


class TestControl:
    async def test_manual_retry_does_not_count(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        translator = FakeTranslator(error=CollaboratorError("down"))
        service = make_service(translator)
        job, _ = await service.create("recipe", recipe.id, "en")
        for _ in range(settings.TRANSLATION_MAX_RETRIES):
            await service.run(job.id)
        assert (await service.get(job.id)).status == TranslationJobStatus.FAILED.value

        job = await service.control(job.id, "retry")
        assert job.status == TranslationJobStatus.PENDING.value
        assert job.retry_count == settings.TRANSLATION_MAX_RETRIES
        assert job.error_message is None

        # Manual retries do not consume the retry budget
        translator.error = None
        result = await service.run(job.id)
        assert result["success"]

    async def test_retry_only_from_failed(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")
        with pytest.raises(StateError):
            await service.control(job.id, "retry")

    async def test_retry_conflicts_with_active_tuple(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service(FakeTranslator(error=CollaboratorError("down")))
        job, _ = await service.create("recipe", recipe.id, "en")
        for _ in range(settings.TRANSLATION_MAX_RETRIES):
            await service.run(job.id)

        replacement, created = await service.create("recipe", recipe.id, "en")
        assert created
        with pytest.raises(ConflictError):
            await service.control(job.id, "retry")

    async def test_cancel_rules(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")

        job = await service.control(job.id, "cancel")
        assert job.status == TranslationJobStatus.CANCELLED.value
        assert job.active_key is None

        # The tuple is free again
        fresh, created = await service.create("recipe", recipe.id, "en")
        assert created
        await service.run(fresh.id)
        with pytest.raises(StateError):
            await service.control(fresh.id, "cancel")

    async def test_prioritize(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")
        job = await service.control(job.id, "prioritize", priority=1)
        assert job.priority == 1
        with pytest.raises(ValidationError):
            await service.control(job.id, "prioritize", priority=0)
        with pytest.raises(ValidationError):
            await service.control(job.id, "reschedule")

    async def test_delete(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")
        await service.delete(job.id)
        with pytest.raises(NotFoundError):
            await service.get(job.id)


class TestQueue:
    async def test_sweep_order_priority_then_newest(self, make_service, session_factory):
        old = await seed_recipe(session_factory, title="Old")
        new = await seed_recipe(session_factory, title="New")
        urgent = await seed_recipe(session_factory, title="Urgent")
        translator = FakeTranslator()
        service = make_service(translator)

        now = datetime.utcnow()
        old_job, _ = await service.create("recipe", old.id, "en")
        new_job, _ = await service.create("recipe", new.id, "en")
        urgent_job, _ = await service.create("recipe", urgent.id, "en", priority=1)
        await _set_created_at(session_factory, old_job.id, now - timedelta(minutes=10))
        await _set_created_at(session_factory, new_job.id, now - timedelta(minutes=5))
        await _set_created_at(session_factory, urgent_job.id, now - timedelta(minutes=20))

        result = await service.process_queue(10)

        assert result["processed"] == 3
        assert result["succeeded"] == 3
        assert [call[0]["title"] for call in translator.calls] == ["Urgent", "New", "Old"]

    async def test_sweep_respects_limit(self, make_service, session_factory):
        service = make_service()
        for _ in range(3):
            recipe = await seed_recipe(session_factory)
            await service.create("recipe", recipe.id, "en")
        result = await service.process_queue(2)
        assert result["processed"] == 2
        with pytest.raises(ValidationError):
            await service.process_queue(-1)

    async def test_list_includes_entity_names(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory, title="Mapo Tofu")
        cuisine = await seed_cuisine(session_factory, "sichuan", "Sichuan")
        service = make_service()
        await service.create("recipe", recipe.id, "en")
        await service.create("cuisine", cuisine.id, "en")

        items, total, stats = await service.list()

        assert total == 2
        assert {i["entityName"] for i in items} == {"Mapo Tofu", "Sichuan"}
        assert stats[TranslationJobStatus.PENDING.value] == 2

    async def test_recover_resets_processing(self, make_service, session_factory):
        recipe = await seed_recipe(session_factory)
        service = make_service()
        job, _ = await service.create("recipe", recipe.id, "en")
        async with session_factory() as db:
            await db.execute(
                update(TranslationJob).where(TranslationJob.id == job.id)
                .values(status=TranslationJobStatus.PROCESSING.value)
            )
            await db.commit()

        assert await service.recover() == []
        assert (await service.get(job.id)).status == TranslationJobStatus.PENDING.value
