"""Batch recipe generation jobs."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError

from recipe_engine.core.cancellation import CancelToken
from recipe_engine.core.config import settings
from recipe_engine.core.database import async_session_maker
from recipe_engine.core.errors import (
    CancelledByOperator,
    CollaboratorError,
    CollaboratorUnavailable,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from recipe_engine.core.jobs import JobKind, JobManager
from recipe_engine.models.generate_job import GenerateJob, GenerateJobStatus
from recipe_engine.models.recipe import Recipe, RecipeStatus, ReviewStatus
from recipe_engine.models.taxonomy import TagType
from recipe_engine.repositories import (
    CollectionRepository,
    GenerateJobRepository,
    RecipeRepository,
    TaxonomyRepository,
)
from recipe_engine.repositories.generate_jobs import active_key_for
from recipe_engine.services.collaborators import GeneratedRecipe, GenerationCollaborator

logger = logging.getLogger(__name__)

CANCEL_MESSAGE = "Cancelled by operator"
COVER_KEYS = ("hero", "cover", "cover_main")
TAG_DIMENSIONS = [t.value for t in TagType if t != TagType.INGREDIENT]


class LockedTags(BaseModel):
    """Constraints fixed for every item of a job."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    cuisine: Optional[str] = None
    location: Optional[str] = None
    # manual/auto come from collection jobs
    review_mode: Literal["ai_human", "ai_only", "human_only", "manual", "auto"] = Field(
        default="ai_human", alias="reviewMode"
    )
    quality_level: Literal["high", "medium", "low"] = Field(default="high", alias="qualityLevel")
    scene: Optional[str] = None
    method: Optional[str] = None
    taste: Optional[str] = None
    crowd: Optional[str] = None
    occasion: Optional[str] = None

    def tag_slugs(self) -> Dict[str, List[str]]:
        return {d: [getattr(self, d)] for d in TAG_DIMENSIONS if getattr(self, d)}

    def constraints(self) -> Dict[str, Any]:
        """What the generation collaborator sees."""
        return self.model_dump(by_alias=True, exclude_none=True)


def pick_cover(shots: List[Dict[str, Any]]) -> Optional[str]:
    """Cover image: the hero/cover shot if it has an image, else the first shot that does."""
    for shot in shots:
        if shot.get("key") in COVER_KEYS and shot.get("imageUrl"):
            return shot["imageUrl"]
    for shot in shots:
        if shot.get("imageUrl"):
            return shot["imageUrl"]
    return None


def final_status(success_count: int, failed_count: int) -> str:
    if failed_count == 0:
        return GenerateJobStatus.COMPLETED.value
    if success_count == 0:
        return GenerateJobStatus.FAILED.value
    return GenerateJobStatus.PARTIAL.value


def _normalise_dimension(key: str) -> Optional[str]:
    key = key.lower()
    if key in TAG_DIMENSIONS:
        return key
    if key.endswith("s") and key[:-1] in TAG_DIMENSIONS:
        return key[:-1]
    return None


class GenerationService:
    """Creates, executes and controls GenerateJobs."""

    def __init__(
        self,
        generator: GenerationCollaborator,
        session_factory=async_session_maker,
        job_manager: Optional[JobManager] = None,
        generate_images: Optional[bool] = None,
    ):
        self.generator = generator
        self.session_factory = session_factory
        self.job_manager = job_manager or JobManager.get_instance()
        self.generate_images = settings.GENERATE_IMAGES if generate_images is None else generate_images

    # Creation

    async def create(
        self,
        source_type: str,
        recipe_names: List[str],
        locked_tags: Optional[Dict[str, Any]] = None,
        collection_id: Optional[str] = None,
        start: bool = True,
    ) -> Dict[str, Any]:
        """Create a job from a list of dish names.

        Names already used as recipe titles are dropped (exact match) and
        reported. Raises ConflictError if the collection already has a
        pending/running job.
        """
        if source_type not in ("collection", "manual"):
            raise ValidationError(f"Unknown source type: {source_type}")
        if source_type == "collection" and not collection_id:
            raise ValidationError("collectionId is required for collection jobs")

        names = [n.strip() for n in recipe_names if n and n.strip()]
        if not names:
            raise ValidationError("recipeNames must contain at least one name")
        if len(names) > settings.GENERATION_MAX_BATCH:
            raise ValidationError(
                f"At most {settings.GENERATION_MAX_BATCH} recipe names per job",
                details={"count": len(names)},
            )

        try:
            locked = LockedTags.model_validate(locked_tags or {})
        except ValueError as e:
            raise ValidationError("Invalid lockedTags", details={"errors": str(e)}) from None

        async with self.session_factory() as db:
            if collection_id:
                collection = await CollectionRepository(db).get(collection_id)
                if not collection:
                    raise NotFoundError(f"Collection not found: {collection_id}")

            existing = await RecipeRepository(db).existing_titles(names)
            unique: List[str] = []
            duplicates: List[str] = []
            for name in names:
                if name in existing or name in unique:
                    duplicates.append(name)
                else:
                    unique.append(name)

            if not unique:
                raise ValidationError(
                    "All recipe names already exist",
                    details={"duplicates": duplicates},
                )

            job = await GenerateJobRepository(db).create(
                source_type=source_type,
                collection_id=collection_id,
                active_key=active_key_for(collection_id),
                recipe_names=unique,
                locked_tags=locked.constraints(),
                status=GenerateJobStatus.PENDING.value,
                total_count=len(unique),
                success_count=0,
                failed_count=0,
                results=[],
            )
            await db.commit()
            job_id = job.id

        logger.info(
            "Created generate job %s: %d names (%d duplicates dropped)",
            job_id, len(unique), len(duplicates),
        )

        if start:
            job = await self.control(job_id, "start")
        else:
            job = await self.get(job_id)

        return {
            "job": job,
            "skipped": len(duplicates),
            "skippedNames": duplicates,
        }

    async def create_for_collection(
        self,
        collection_id: str,
        recipe_names: List[str],
        locked_tags: Optional[Dict[str, Any]] = None,
        start: bool = True,
    ) -> Dict[str, Any]:
        """Create a collection job with cuisine/location/tag locked from the collection."""
        async with self.session_factory() as db:
            collection = await CollectionRepository(db).get(collection_id)
            if not collection:
                raise NotFoundError(f"Collection not found: {collection_id}")

            taxonomy = TaxonomyRepository(db)
            locked: Dict[str, Any] = dict(locked_tags or {})
            if collection.cuisine_id:
                cuisine = await taxonomy.get("cuisine", collection.cuisine_id)
                if cuisine:
                    locked["cuisine"] = cuisine.slug
            if collection.location_id:
                location = await taxonomy.get("location", collection.location_id)
                if location:
                    locked["location"] = location.slug
            if collection.tag_id:
                tag = await taxonomy.get("tag", collection.tag_id)
                if tag and tag.type in TAG_DIMENSIONS:
                    locked[tag.type] = tag.slug

        return await self.create("collection", recipe_names, locked, collection_id, start=start)

    # Queries

    async def get(self, job_id: str) -> GenerateJob:
        async with self.session_factory() as db:
            job = await GenerateJobRepository(db).get(job_id)
            if not job:
                raise NotFoundError(f"Generate job not found: {job_id}")
            return job

    async def get_with_recipes(self, job_id: str) -> Tuple[GenerateJob, List[Recipe]]:
        async with self.session_factory() as db:
            job = await GenerateJobRepository(db).get(job_id)
            if not job:
                raise NotFoundError(f"Generate job not found: {job_id}")
            recipes = await RecipeRepository(db).list_for_job(job_id)
            return job, recipes

    async def list(self, **filters) -> Tuple[List[GenerateJob], int]:
        async with self.session_factory() as db:
            return await GenerateJobRepository(db).list(**filters)

    async def delete(self, job_id: str) -> None:
        async with self.session_factory() as db:
            repo = GenerateJobRepository(db)
            job = await repo.get(job_id)
            if not job:
                raise NotFoundError(f"Generate job not found: {job_id}")
            if job.status == GenerateJobStatus.RUNNING.value:
                raise StateError("Cannot delete a running job; pause or cancel it first")
            await repo.delete(job)
            await db.commit()
        logger.info("Deleted generate job %s", job_id)

    # Control

    async def control(self, job_id: str, action: str) -> GenerateJob:
        """Guarded state transitions: start, pause, resume, cancel.

        A paused job gives up its collection slot; resuming takes it back and
        conflicts if another job for the collection became active meanwhile.
        """
        now = datetime.utcnow()
        async with self.session_factory() as db:
            repo = GenerateJobRepository(db)
            job = await repo.get(job_id)
            if job is None:
                raise NotFoundError(f"Generate job not found: {job_id}")
            status = job.status

            transitions = {
                "start": ([GenerateJobStatus.PENDING.value],
                          dict(status=GenerateJobStatus.RUNNING.value, started_at=now)),
                "pause": ([GenerateJobStatus.RUNNING.value],
                          dict(status=GenerateJobStatus.PAUSED.value, active_key=None)),
                "resume": ([GenerateJobStatus.PAUSED.value],
                           dict(status=GenerateJobStatus.RUNNING.value,
                                active_key=active_key_for(job.collection_id))),
                "cancel": ([GenerateJobStatus.PENDING.value, GenerateJobStatus.RUNNING.value,
                            GenerateJobStatus.PAUSED.value],
                           dict(status=GenerateJobStatus.FAILED.value, error_message=CANCEL_MESSAGE,
                                completed_at=now, active_key=None)),
            }
            if action not in transitions:
                raise ValidationError(f"Unknown action: {action}")

            allowed, values = transitions[action]
            try:
                ok = await repo.transition(job_id, allowed, **values)
            except IntegrityError:
                await db.rollback()
                raise ConflictError(
                    "This collection already has a pending or running generate job",
                    details={"collectionId": job.collection_id},
                ) from None
            if not ok:
                raise StateError(
                    f"Cannot {action} a job that is {status}",
                    details={"status": status, "action": action},
                )
            await db.commit()

        logger.info("Generate job %s: %s", job_id, action)

        if action in ("start", "resume"):
            self.job_manager.dispatch(JobKind.GENERATE, job_id)

        return await self.get(job_id)

    async def retry(self, job_id: str, start: bool = True) -> Dict[str, Any]:
        """New job holding only the names that did not produce a recipe."""
        job = await self.get(job_id)
        if job.status not in (GenerateJobStatus.FAILED.value, GenerateJobStatus.PARTIAL.value):
            raise StateError(f"Only failed or partial jobs can be retried (job is {job.status})")

        results = list(job.results or [])
        names = [r["recipeName"] for r in results if r.get("status") == "failed"]
        names.extend(job.recipe_names[len(results):])
        if not names:
            raise ValidationError("Job has no failed items to retry")

        logger.info("Retrying %d names from generate job %s", len(names), job_id)
        return await self.create(
            job.source_type,
            names,
            locked_tags=job.locked_tags,
            collection_id=job.collection_id,
            start=start,
        )

    async def recover(self) -> List[str]:
        """Jobs left running by a previous process, to be re-dispatched."""
        async with self.session_factory() as db:
            return await GenerateJobRepository(db).list_ids_with_status([GenerateJobStatus.RUNNING.value])

    # Execution

    def _token(self, job_id: str) -> CancelToken:
        async def probe() -> Optional[str]:
            async with self.session_factory() as db:
                status = await GenerateJobRepository(db).get_status(job_id)
            if status == GenerateJobStatus.RUNNING.value:
                return None
            return f"job is {status}"

        return CancelToken(probe=probe)

    async def execute(self, job_id: str) -> None:
        """Process the job's names sequentially, one recipe per name.

        Picks up after the last recorded result, so a resumed or recovered
        job continues where it stopped. Pause and cancel are checked before
        each item and interrupt an outstanding collaborator call.
        """
        async with self.session_factory() as db:
            repo = GenerateJobRepository(db)
            job = await repo.get(job_id)
            if not job:
                logger.warning("Generate job %s vanished before execution", job_id)
                return
            if job.status == GenerateJobStatus.PENDING.value:
                await repo.transition(
                    job_id, [GenerateJobStatus.PENDING.value],
                    status=GenerateJobStatus.RUNNING.value, started_at=datetime.utcnow(),
                )
                await db.commit()
            elif job.status != GenerateJobStatus.RUNNING.value:
                logger.info("Generate job %s is %s; nothing to execute", job_id, job.status)
                return

            names = list(job.recipe_names)
            results = list(job.results or [])
            success_count = job.success_count
            failed_count = job.failed_count
            locked = LockedTags.model_validate(job.locked_tags or {})

        for index in range(len(results), len(names)):
            async with self.session_factory() as db:
                status = await GenerateJobRepository(db).get_status(job_id)
            if status != GenerateJobStatus.RUNNING.value:
                logger.info("Generate job %s is %s; stopping before item %d", job_id, status, index + 1)
                return

            name = names[index]
            logger.info("[Job %s] Generating %d/%d: %s", job_id, index + 1, len(names), name)
            try:
                entry = await self._generate_item(job_id, name, locked)
                success_count += 1
            except CancelledByOperator as e:
                logger.info("[Job %s] Interrupted while generating %s: %s", job_id, name, e)
                return
            except CollaboratorError as e:
                logger.warning("[Job %s] Failed to generate %s: %s", job_id, name, e)
                entry = {"recipeName": name, "status": "failed", "error": str(e)}
                failed_count += 1

            results.append(entry)
            async with self.session_factory() as db:
                await GenerateJobRepository(db).update_progress(job_id, success_count, failed_count, results)
                await db.commit()

        status = final_status(success_count, failed_count)
        async with self.session_factory() as db:
            finished = await GenerateJobRepository(db).transition(
                job_id, [GenerateJobStatus.RUNNING.value],
                status=status, completed_at=datetime.utcnow(), active_key=None,
            )
            await db.commit()

        if finished:
            logger.info(
                "Generate job %s finished: %s (%d ok, %d failed)",
                job_id, status, success_count, failed_count,
            )

    async def _generate_item(self, job_id: str, name: str, locked: LockedTags) -> Dict[str, Any]:
        token = self._token(job_id)
        try:
            content: GeneratedRecipe = await token.run(
                self.generator.generate(name, locked.constraints(), token)
            )
        except (CollaboratorError, CollaboratorUnavailable, CancelledByOperator):
            raise
        except Exception as e:
            raise CollaboratorError(f"Generation failed: {e}") from e

        warnings: List[str] = []
        shots = [s.model_dump(by_alias=True, exclude_none=True) for s in content.image_shots]
        steps = [dict(step) for step in content.steps]
        if self.generate_images:
            await self._generate_images(job_id, content.title or name, shots, steps, warnings)

        async with self.session_factory() as db:
            recipe = await self._persist_recipe(db, job_id, content, locked, shots, steps, warnings)
            await db.commit()
            recipe_id = recipe.id

        entry: Dict[str, Any] = {
            "recipeName": name,
            "title": content.title,
            "status": "success",
            "recipeId": recipe_id,
        }
        if warnings:
            entry["warning"] = "; ".join(warnings)
        return entry

    async def _generate_images(
        self,
        job_id: str,
        dish_name: str,
        shots: List[Dict[str, Any]],
        steps: List[Dict[str, Any]],
        warnings: List[str],
    ) -> None:
        """Fill imageUrl on shots and steps. Failures become warnings."""
        requests = [(f"shot {s.get('key') or i}", s, s.get("prompt")) for i, s in enumerate(shots)]
        requests += [(f"step {i + 1}", s, s.get("photoBrief")) for i, s in enumerate(steps)]

        for label, target, prompt in requests:
            if not prompt or target.get("imageUrl"):
                continue
            token = self._token(job_id)
            try:
                target["imageUrl"] = await token.run(self.generator.generate_image(prompt, dish_name, token))
            except CancelledByOperator:
                warnings.append("Image generation interrupted")
                return
            except (CollaboratorError, CollaboratorUnavailable) as e:
                logger.warning("[Job %s] Image for %s failed: %s", job_id, label, e)
                warnings.append(f"Image for {label} failed: {e}")

    async def _persist_recipe(
        self,
        db,
        job_id: str,
        content: GeneratedRecipe,
        locked: LockedTags,
        shots: List[Dict[str, Any]],
        steps: List[Dict[str, Any]],
        warnings: List[str],
    ) -> Recipe:
        taxonomy = TaxonomyRepository(db)
        cuisine_id = location_id = None
        if locked.cuisine:
            cuisine = await taxonomy.get_by_slug("cuisine", locked.cuisine)
            cuisine_id = cuisine.id if cuisine else None
            if not cuisine:
                warnings.append(f"Unknown cuisine '{locked.cuisine}'")
        if locked.location:
            location = await taxonomy.get_by_slug("location", locked.location)
            location_id = location.id if location else None
            if not location:
                warnings.append(f"Unknown location '{locked.location}'")

        recipes = RecipeRepository(db)
        recipe = await recipes.create(
            title=content.title,
            slug=f"recipe-{uuid.uuid4().hex[:12]}",
            description=content.description,
            status=RecipeStatus.DRAFT.value,
            review_status=ReviewStatus.PENDING.value,
            cuisine_id=cuisine_id,
            location_id=location_id,
            cook_time=content.cook_time,
            prep_time=content.prep_time,
            difficulty=content.difficulty,
            servings=content.servings,
            summary=content.summary,
            story=content.story,
            ingredients=content.ingredients,
            steps=steps,
            tips=content.tips,
            faq=content.faq,
            nutrition=content.nutrition,
            seo=content.seo,
            image_shots=shots,
            cover_image=pick_cover(shots),
            ai_generated=True,
            generate_job_id=job_id,
            trans_status={"warnings": list(warnings)} if warnings else None,
        )

        # Suggested tags plus locked tag dimensions; unknown slugs are only logged
        suggested: Dict[str, List[str]] = {}
        for key, slugs in content.tags.items():
            dimension = _normalise_dimension(key)
            if dimension:
                suggested.setdefault(dimension, []).extend(slugs or [])
        for dimension, slugs in locked.tag_slugs().items():
            suggested.setdefault(dimension, []).extend(slugs)

        known = await taxonomy.tags_by_slug(s for slugs in suggested.values() for s in slugs)
        tag_ids = []
        unknown = []
        for dimension, slugs in suggested.items():
            for slug in slugs:
                tag = known.get(f"{dimension}:{slug}")
                if tag:
                    tag_ids.append(tag.id)
                else:
                    unknown.append(f"{dimension}:{slug}")
        await recipes.add_tags(recipe.id, tag_ids)
        if unknown:
            logger.info("[Job %s] %d unknown tag suggestions: %s", job_id, len(unknown), unknown)

        return recipe
