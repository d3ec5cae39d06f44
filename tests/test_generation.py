"""Tests for batch generation jobs."""

import asyncio

import pytest

from conftest import FakeGenerator, seed_collection, seed_cuisine, seed_recipe, seed_tag
from recipe_engine.core.config import settings
from recipe_engine.core.errors import ConflictError, NotFoundError, StateError, ValidationError
from recipe_engine.core.jobs import JobKind
from recipe_engine.models import GenerateJobStatus, RecipeStatus, ReviewStatus
from recipe_engine.services.generation import (
    CANCEL_MESSAGE,
    GenerationService,
    LockedTags,
    final_status,
    pick_cover,
)


@pytest.fixture
def make_service(session_factory, job_manager):
    def _make(generator=None, **kwargs):
        service = GenerationService(
            generator or FakeGenerator(),
            session_factory=session_factory,
            job_manager=job_manager,
            **kwargs,
        )
        job_manager.register_handler(JobKind.GENERATE, service.execute, recover=service.recover)
        return service
    return _make


class TestHelpers:
    def test_final_status(self):
        assert final_status(3, 0) == GenerateJobStatus.COMPLETED.value
        assert final_status(2, 1) == GenerateJobStatus.PARTIAL.value
        assert final_status(0, 3) == GenerateJobStatus.FAILED.value

    def test_pick_cover_prefers_hero(self):
        shots = [
            {"key": "detail", "imageUrl": "detail.jpg"},
            {"key": "hero", "imageUrl": "hero.jpg"},
        ]
        assert pick_cover(shots) == "hero.jpg"

    def test_pick_cover_falls_back_to_first_image(self):
        shots = [{"key": "hero"}, {"key": "detail", "imageUrl": "detail.jpg"}]
        assert pick_cover(shots) == "detail.jpg"
        assert pick_cover([{"key": "hero"}]) is None

    def test_locked_tags_reject_unknown_keys(self):
        with pytest.raises(ValueError):
            LockedTags.model_validate({"season": "winter"})

    def test_locked_tags_constraints_use_aliases(self):
        locked = LockedTags.model_validate({"cuisine": "sichuan", "qualityLevel": "medium"})
        assert locked.constraints() == {
            "cuisine": "sichuan",
            "reviewMode": "ai_human",
            "qualityLevel": "medium",
        }


class TestCreate:
    async def test_dedups_against_existing_titles(self, make_service, session_factory):
        await seed_recipe(session_factory, title="Mapo Tofu")
        service = make_service()

        result = await service.create("manual", ["Mapo Tofu", "Kung Pao Chicken", "Kung Pao Chicken"], start=False)

        job = result["job"]
        assert job.recipe_names == ["Kung Pao Chicken"]
        assert job.total_count == 1
        assert result["skipped"] == 2
        assert result["skippedNames"] == ["Mapo Tofu", "Kung Pao Chicken"]

    async def test_all_duplicates_is_validation_error(self, make_service, session_factory):
        await seed_recipe(session_factory, title="Mapo Tofu")
        with pytest.raises(ValidationError):
            await make_service().create("manual", ["Mapo Tofu"], start=False)

    async def test_name_count_bounds(self, make_service):
        service = make_service()
        with pytest.raises(ValidationError):
            await service.create("manual", ["  "], start=False)
        with pytest.raises(ValidationError):
            names = [f"Dish {i}" for i in range(settings.GENERATION_MAX_BATCH + 1)]
            await service.create("manual", names, start=False)

    async def test_invalid_locked_tags(self, make_service):
        with pytest.raises(ValidationError):
            await make_service().create("manual", ["Dish"], locked_tags={"reviewMode": "never"}, start=False)

    async def test_review_and_quality_settings(self, make_service):
        service = make_service()
        result = await service.create(
            "manual", ["Dish A"], locked_tags={"reviewMode": "ai_only", "qualityLevel": "low"}, start=False,
        )
        assert result["job"].locked_tags["reviewMode"] == "ai_only"
        assert result["job"].locked_tags["qualityLevel"] == "low"

        result = await service.create("manual", ["Dish B"], locked_tags={"reviewMode": "auto"}, start=False)
        assert result["job"].locked_tags["reviewMode"] == "auto"
        assert result["job"].locked_tags["qualityLevel"] == "high"

    async def test_unknown_collection(self, make_service):
        with pytest.raises(NotFoundError):
            await make_service().create("collection", ["Dish"], collection_id="missing", start=False)

    async def test_one_active_job_per_collection(self, make_service, session_factory):
        collection = await seed_collection(session_factory)
        service = make_service()

        first = await service.create("collection", ["Dish A"], collection_id=collection.id, start=False)
        with pytest.raises(ConflictError):
            await service.create("collection", ["Dish B"], collection_id=collection.id, start=False)

        # A terminal job frees the slot
        await service.control(first["job"].id, "cancel")
        second = await service.create("collection", ["Dish B"], collection_id=collection.id, start=False)
        assert second["job"].status == GenerateJobStatus.PENDING.value

    async def test_paused_job_frees_collection_slot(self, make_service, session_factory):
        collection = await seed_collection(session_factory)
        service = make_service()

        first = await service.create("collection", ["Dish A"], collection_id=collection.id, start=False)
        await service.control(first["job"].id, "start")
        paused = await service.control(first["job"].id, "pause")
        assert paused.active_key is None

        second = await service.create("collection", ["Dish B"], collection_id=collection.id, start=False)
        assert second["job"].status == GenerateJobStatus.PENDING.value

        # Resuming while another job holds the slot conflicts and leaves the job paused
        with pytest.raises(ConflictError):
            await service.control(first["job"].id, "resume")
        assert (await service.get(first["job"].id)).status == GenerateJobStatus.PAUSED.value

        await service.control(second["job"].id, "cancel")
        resumed = await service.control(first["job"].id, "resume")
        assert resumed.status == GenerateJobStatus.RUNNING.value
        assert resumed.active_key == f"collection:{collection.id}"

    async def test_manual_jobs_do_not_conflict(self, make_service):
        service = make_service()
        await service.create("manual", ["Dish A"], start=False)
        await service.create("manual", ["Dish B"], start=False)
        jobs, total = await service.list()
        assert total == 2

    async def test_start_dispatches_to_job_manager(self, make_service, job_manager):
        result = await make_service().create("manual", ["Dish"])
        assert result["job"].status == GenerateJobStatus.RUNNING.value
        assert job_manager.queue_size() == 1

    async def test_create_for_collection_locks_cuisine(self, make_service, session_factory):
        cuisine = await seed_cuisine(session_factory, "sichuan")
        collection = await seed_collection(session_factory, cuisine_id=cuisine.id)

        result = await make_service().create_for_collection(collection.id, ["Dish"], start=False)

        job = result["job"]
        assert job.source_type == "collection"
        assert job.collection_id == collection.id
        assert job.locked_tags["cuisine"] == "sichuan"


class TestExecute:
    async def test_partial_failure_is_isolated(self, make_service):
        generator = FakeGenerator(fail_on={"Dish B"})
        service = make_service(generator)
        job = (await service.create("manual", ["Dish A", "Dish B", "Dish C"], start=False))["job"]

        await service.execute(job.id)

        job, recipes = await service.get_with_recipes(job.id)
        assert job.status == GenerateJobStatus.PARTIAL.value
        assert job.success_count == 2
        assert job.failed_count == 1
        assert job.progress == 100
        assert job.active_key is None
        assert [r["status"] for r in job.results] == ["success", "failed", "success"]
        assert "Dish B" in job.results[1]["error"]
        assert {r.title for r in recipes} == {"Dish A", "Dish C"}
        for recipe in recipes:
            assert recipe.status == RecipeStatus.DRAFT.value
            assert recipe.review_status == ReviewStatus.PENDING.value
            assert recipe.generate_job_id == job.id
            assert recipe.ai_generated

    async def test_all_success_completes(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A", "Dish B"], start=False))["job"]
        await service.execute(job.id)
        job = await service.get(job.id)
        assert job.status == GenerateJobStatus.COMPLETED.value
        assert job.completed_at is not None

    async def test_all_failures_fail(self, make_service):
        service = make_service(FakeGenerator(fail_on={"Dish A", "Dish B"}))
        job = (await service.create("manual", ["Dish A", "Dish B"], start=False))["job"]
        await service.execute(job.id)
        job = await service.get(job.id)
        assert job.status == GenerateJobStatus.FAILED.value
        assert job.failed_count == 2

    async def test_images_fill_cover_and_steps(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        await service.execute(job.id)

        _, recipes = await service.get_with_recipes(job.id)
        recipe = recipes[0]
        assert recipe.cover_image.endswith("plated-dish.jpg")
        assert recipe.steps[0]["imageUrl"].endswith("mixing-bowl.jpg")

    async def test_image_failure_is_a_warning(self, make_service):
        service = make_service(FakeGenerator(image_fail=True))
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        await service.execute(job.id)

        job, recipes = await service.get_with_recipes(job.id)
        assert job.status == GenerateJobStatus.COMPLETED.value
        assert job.results[0]["status"] == "success"
        assert "Image for" in job.results[0]["warning"]
        assert recipes[0].cover_image is None
        assert recipes[0].trans_status["warnings"]

    async def test_images_can_be_disabled(self, make_service):
        generator = FakeGenerator()
        service = make_service(generator, generate_images=False)
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        await service.execute(job.id)
        assert generator.image_calls == []

    async def test_known_tag_suggestions_are_linked(self, make_service, session_factory):
        breakfast = await seed_tag(session_factory, "scene", "breakfast")
        generator = FakeGenerator(tags={"scenes": ["breakfast"], "taste": ["umami-bomb"]})
        service = make_service(generator)
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        await service.execute(job.id)

        _, recipes = await service.get_with_recipes(job.id)
        assert [t.tag_id for t in recipes[0].tags] == [breakfast.id]

    async def test_locked_cuisine_is_applied(self, make_service, session_factory):
        cuisine = await seed_cuisine(session_factory, "sichuan")
        generator = FakeGenerator()
        service = make_service(generator)
        job = (await service.create("manual", ["Dish A"], locked_tags={"cuisine": "sichuan"}, start=False))["job"]
        await service.execute(job.id)

        _, recipes = await service.get_with_recipes(job.id)
        assert recipes[0].cuisine_id == cuisine.id
        assert generator.calls[0][1]["cuisine"] == "sichuan"

    async def test_pause_stops_before_next_item_and_resume_continues(self, make_service):
        holder = {}

        async def pause_on_b(dish_name):
            if dish_name == "Dish B":
                await holder["service"].control(holder["job_id"], "pause")

        generator = FakeGenerator(before_generate=pause_on_b)
        service = make_service(generator)
        holder["service"] = service
        job = (await service.create("manual", ["Dish A", "Dish B", "Dish C"]))["job"]
        holder["job_id"] = job.id

        await service.execute(job.id)
        job = await service.get(job.id)
        assert job.status == GenerateJobStatus.PAUSED.value
        assert len(job.results) == 2

        await service.control(job.id, "resume")
        await service.execute(job.id)
        job = await service.get(job.id)
        assert job.status == GenerateJobStatus.COMPLETED.value
        assert [c[0] for c in generator.calls] == ["Dish A", "Dish B", "Dish C"]

    async def test_cancel_interrupts_outstanding_call(self, make_service, monkeypatch):
        monkeypatch.setattr(settings, "CANCEL_POLL_INTERVAL", 0.01)
        holder = {}

        async def cancel_and_hang(dish_name):
            await holder["service"].control(holder["job_id"], "cancel")
            await asyncio.sleep(30)

        service = make_service(FakeGenerator(before_generate=cancel_and_hang))
        holder["service"] = service
        job = (await service.create("manual", ["Dish A", "Dish B"]))["job"]
        holder["job_id"] = job.id

        await asyncio.wait_for(service.execute(job.id), timeout=5)

        job, recipes = await service.get_with_recipes(job.id)
        assert job.status == GenerateJobStatus.FAILED.value
        assert job.error_message == CANCEL_MESSAGE
        assert job.results == []
        assert recipes == []

    async def test_execute_skips_terminal_job(self, make_service):
        generator = FakeGenerator()
        service = make_service(generator)
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        await service.control(job.id, "cancel")
        await service.execute(job.id)
        assert generator.calls == []


class TestControl:
    async def test_guards(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A"], start=False))["job"]

        with pytest.raises(StateError):
            await service.control(job.id, "pause")
        with pytest.raises(StateError):
            await service.control(job.id, "resume")

        await service.control(job.id, "start")
        with pytest.raises(StateError):
            await service.control(job.id, "start")

        await service.execute(job.id)
        with pytest.raises(StateError) as exc_info:
            await service.control(job.id, "cancel")
        assert exc_info.value.code == "CONFLICT"

    async def test_unknown_action_and_job(self, make_service):
        service = make_service()
        with pytest.raises(NotFoundError):
            await service.control("missing", "start")
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        with pytest.raises(ValidationError):
            await service.control(job.id, "explode")

    async def test_cancel_marks_failed(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        job = await service.control(job.id, "cancel")
        assert job.status == GenerateJobStatus.FAILED.value
        assert job.error_message == CANCEL_MESSAGE
        assert job.completed_at is not None

    async def test_delete_refused_while_running(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A"]))["job"]
        with pytest.raises(StateError):
            await service.delete(job.id)
        await service.control(job.id, "pause")
        await service.delete(job.id)
        with pytest.raises(NotFoundError):
            await service.get(job.id)


class TestRetry:
    async def test_retry_creates_job_with_failed_names(self, make_service):
        service = make_service(FakeGenerator(fail_on={"Dish B"}))
        job = (await service.create("manual", ["Dish A", "Dish B"], start=False))["job"]
        await service.execute(job.id)

        result = await service.retry(job.id, start=False)

        assert result["job"].id != job.id
        assert result["job"].recipe_names == ["Dish B"]

    async def test_retry_requires_failed_or_partial(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A"], start=False))["job"]
        with pytest.raises(StateError):
            await service.retry(job.id)

    async def test_retry_of_cancelled_job_includes_unprocessed(self, make_service):
        service = make_service()
        job = (await service.create("manual", ["Dish A", "Dish B"], start=False))["job"]
        await service.control(job.id, "cancel")
        result = await service.retry(job.id, start=False)
        assert result["job"].recipe_names == ["Dish A", "Dish B"]

    async def test_recover_lists_running_jobs(self, make_service):
        service = make_service()
        running = (await service.create("manual", ["Dish A"]))["job"]
        await service.create("manual", ["Dish B"], start=False)
        assert await service.recover() == [running.id]
