"""Translation jobs: a priority queue with retry and backoff."""

import asyncio
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from recipe_engine.core.cancellation import CancelToken
from recipe_engine.core.config import settings
from recipe_engine.core.database import async_session_maker
from recipe_engine.core.errors import (
    AppError,
    CancelledByOperator,
    CollaboratorError,
    CollaboratorUnavailable,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from recipe_engine.core.jobs import JobKind, JobManager
from recipe_engine.models.translation_job import (
    EntityType,
    TranslationJob,
    TranslationJobStatus,
    tuple_key,
)
from recipe_engine.repositories import (
    CollectionRepository,
    RecipeRepository,
    TaxonomyRepository,
    TranslationJobRepository,
    TranslationRepository,
)

logger = logging.getLogger(__name__)

LOCALE_NAMES = {"zh": "Chinese", "en": "English", "ja": "Japanese", "ko": "Korean"}

# Fields sent for translation, per entity type
SOURCE_FIELDS: Dict[str, List[str]] = {
    "recipe": ["title", "description", "summary", "story", "ingredients", "steps", "tips", "faq"],
    "collection": ["name", "description", "seo"],
    "cuisine": ["name", "description"],
    "location": ["name", "description"],
    "tag": ["name", "description"],
    "ingredient": ["name", "description"],
}

QUALITY_SCORES = {
    "recipe": 0.85,
    "collection": 0.9,
    "cuisine": 0.9,
    "location": 0.9,
    "tag": 0.95,
    "ingredient": 0.95,
}

RECIPE_PROMPT = """You are a professional translator. Translate the following recipe from {source} to {target}, keeping its structure and numbers unchanged.

Rules:
1) Translate text only; keep numbers, durations, ratios and keys unchanged.
2) Do not drop fields or array elements.
3) Do not translate units or iconKey values.
4) Return JSON only, with the same keys as the source."""

ENTITY_PROMPT = """Translate the following {entity} information from {source} to {target}.
Return JSON with the same keys as the source. Return JSON only."""

MODES = ("sync", "async")


def is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_patch(source: Dict[str, Any], translated: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay translated fields on the source; missing or empty fields keep the source value."""
    merged: Dict[str, Any] = {}
    for key, original in source.items():
        value = translated.get(key)
        if is_blank(value):
            merged[key] = original
        elif isinstance(original, dict) and isinstance(value, dict):
            merged[key] = merge_patch(original, value)
        else:
            merged[key] = value
    return merged


def make_slug(text: str, locale: str) -> str:
    text = (text or "").strip().lower()
    if locale == "en":
        text = re.sub(r"[^a-z0-9\s-]", "", text)
    return re.sub(r"\s+", "-", text).strip("-")[:100]


def prompt_for(entity_type: str, target_lang: str) -> str:
    source = LOCALE_NAMES.get(settings.SOURCE_LOCALE, settings.SOURCE_LOCALE)
    target = LOCALE_NAMES.get(target_lang, target_lang)
    if entity_type == EntityType.RECIPE.value:
        return RECIPE_PROMPT.format(source=source, target=target)
    return ENTITY_PROMPT.format(entity=entity_type, source=source, target=target)


class TranslationService:
    """Creates, runs and controls TranslationJobs."""

    def __init__(
        self,
        translator,
        session_factory=async_session_maker,
        job_manager: Optional[JobManager] = None,
        queue_delay: Optional[float] = None,
    ):
        self.translator = translator
        self.session_factory = session_factory
        self.job_manager = job_manager or JobManager.get_instance()
        self.queue_delay = settings.TRANSLATION_QUEUE_DELAY if queue_delay is None else queue_delay

    # Validation helpers

    @staticmethod
    def _check_request(entity_type: str, target_lang: str, priority: Optional[int]) -> int:
        if entity_type not in {e.value for e in EntityType}:
            raise ValidationError(f"Unknown entity type: {entity_type}")
        if target_lang not in settings.TRANSLATION_LOCALES or target_lang == settings.SOURCE_LOCALE:
            raise ValidationError(
                f"Unsupported target language: {target_lang}",
                details={"supported": [l for l in settings.TRANSLATION_LOCALES if l != settings.SOURCE_LOCALE]},
            )
        priority = settings.TRANSLATION_DEFAULT_PRIORITY if priority is None else priority
        if not 1 <= priority <= 10:
            raise ValidationError("priority must be between 1 and 10")
        return priority

    async def _entity_exists(self, db, entity_type: str, entity_id: str) -> bool:
        return await self._load_entity(db, entity_type, entity_id) is not None

    @staticmethod
    async def _load_entity(db, entity_type: str, entity_id: str):
        if entity_type == EntityType.RECIPE.value:
            return await RecipeRepository(db).get(entity_id)
        if entity_type == EntityType.COLLECTION.value:
            return await CollectionRepository(db).get(entity_id)
        return await TaxonomyRepository(db).get(entity_type, entity_id)

    # Creation

    async def create(
        self,
        entity_type: str,
        entity_id: str,
        target_lang: str,
        priority: Optional[int] = None,
    ) -> Tuple[TranslationJob, bool]:
        """Idempotent: returns the active job for the tuple if one exists."""
        priority = self._check_request(entity_type, target_lang, priority)
        async with self.session_factory() as db:
            if not await self._entity_exists(db, entity_type, entity_id):
                raise NotFoundError(f"{entity_type} not found: {entity_id}")
            job, created = await TranslationJobRepository(db).create_or_get(
                entity_type, entity_id, target_lang, priority, settings.TRANSLATION_MAX_RETRIES,
            )
            await db.commit()

        if created:
            logger.info("Created translation job %s for %s", job.id, job.active_key)
        return job, created

    async def create_batch(
        self,
        entity_type: str,
        entity_ids: List[str],
        target_lang: str,
        priority: Optional[int] = None,
    ) -> Dict[str, Any]:
        """One job per entity; tuples with an active job (or no entity) are skipped."""
        priority = self._check_request(entity_type, target_lang, priority)
        created: List[TranslationJob] = []
        skipped = 0
        missing: List[str] = []

        async with self.session_factory() as db:
            repo = TranslationJobRepository(db)
            for entity_id in dict.fromkeys(entity_ids):
                if not await self._entity_exists(db, entity_type, entity_id):
                    missing.append(entity_id)
                    skipped += 1
                    continue
                job, was_created = await repo.create_or_get(
                    entity_type, entity_id, target_lang, priority, settings.TRANSLATION_MAX_RETRIES,
                )
                await db.commit()
                if was_created:
                    created.append(job)
                else:
                    skipped += 1

        logger.info(
            "Batch translation %s -> %s: %d created, %d skipped",
            entity_type, target_lang, len(created), skipped,
        )
        return {
            "created": len(created),
            "skipped": skipped,
            "jobIds": [j.id for j in created],
            "missingIds": missing,
        }

    async def enqueue_locales(self, entity_type: str, entity_id: str, locales: List[str]) -> List[TranslationJob]:
        """Create (or coalesce into) a job per locale."""
        jobs = []
        for locale in locales:
            if locale == settings.SOURCE_LOCALE:
                continue
            job, _ = await self.create(entity_type, entity_id, locale)
            jobs.append(job)
        return jobs

    # Queries

    async def get(self, job_id: str) -> TranslationJob:
        async with self.session_factory() as db:
            job = await TranslationJobRepository(db).get(job_id)
            if not job:
                raise NotFoundError(f"Translation job not found: {job_id}")
            return job

    async def list(self, **filters) -> Tuple[List[Dict[str, Any]], int, Dict[str, int]]:
        """Jobs with their entity display names, plus per-status stats."""
        async with self.session_factory() as db:
            repo = TranslationJobRepository(db)
            jobs, total = await repo.list(**filters)
            stats = await repo.count_by_status()

            ids_by_type: Dict[str, List[str]] = {}
            for job in jobs:
                ids_by_type.setdefault(job.entity_type, []).append(job.entity_id)

            names: Dict[Tuple[str, str], str] = {}
            for entity_type, ids in ids_by_type.items():
                if entity_type == EntityType.RECIPE.value:
                    found = {k: v.title for k, v in (await RecipeRepository(db).get_many(ids)).items()}
                elif entity_type == EntityType.COLLECTION.value:
                    found = {k: v.name for k, v in (await CollectionRepository(db).get_many(ids)).items()}
                else:
                    found = await TaxonomyRepository(db).names_for(entity_type, ids)
                names.update({(entity_type, k): v for k, v in found.items()})

        items = []
        for job in jobs:
            data = job.to_dict()
            data["entityName"] = names.get((job.entity_type, job.entity_id))
            items.append(data)
        return items, total, stats

    async def delete(self, job_id: str) -> None:
        async with self.session_factory() as db:
            repo = TranslationJobRepository(db)
            job = await repo.get(job_id)
            if not job:
                raise NotFoundError(f"Translation job not found: {job_id}")
            if job.status == TranslationJobStatus.PROCESSING.value:
                raise StateError("Cannot delete a job that is processing; cancel it first")
            await repo.delete(job)
            await db.commit()
        logger.info("Deleted translation job %s", job_id)

    # Control

    async def control(self, job_id: str, action: str, priority: Optional[int] = None) -> TranslationJob:
        """retry (failed only), cancel (anything but completed), prioritize."""
        now = datetime.utcnow()
        async with self.session_factory() as db:
            repo = TranslationJobRepository(db)
            job = await repo.get(job_id)
            if not job:
                raise NotFoundError(f"Translation job not found: {job_id}")

            if action == "retry":
                try:
                    ok = await repo.transition(
                        job_id, [TranslationJobStatus.FAILED.value],
                        status=TranslationJobStatus.PENDING.value,
                        error_message=None,
                        completed_at=None,
                        available_at=None,
                        active_key=tuple_key(job.entity_type, job.entity_id, job.target_lang),
                    )
                except IntegrityError:
                    await db.rollback()
                    raise ConflictError(
                        "Another job for this entity and language is already active",
                        details={"entityType": job.entity_type, "entityId": job.entity_id,
                                 "targetLang": job.target_lang},
                    ) from None
                if not ok:
                    raise StateError(f"Only failed jobs can be retried (job is {job.status})")

            elif action == "cancel":
                allowed = [s.value for s in TranslationJobStatus if s != TranslationJobStatus.COMPLETED]
                if not await repo.transition(
                    job_id, allowed,
                    status=TranslationJobStatus.CANCELLED.value, completed_at=now, active_key=None,
                ):
                    raise StateError("Completed jobs cannot be cancelled")

            elif action == "prioritize":
                if priority is None or not 1 <= priority <= 10:
                    raise ValidationError("priority must be between 1 and 10")
                job.priority = priority

            else:
                raise ValidationError(f"Unknown action: {action}")

            await db.commit()

        logger.info("Translation job %s: %s", job_id, action)
        return await self.get(job_id)

    async def recover(self) -> List[str]:
        """Return stuck processing jobs to pending. Nothing is auto-run."""
        async with self.session_factory() as db:
            count = await TranslationJobRepository(db).reset_processing()
            await db.commit()
        if count:
            logger.info("Reset %d processing translation jobs to pending", count)
        return []

    # Execution

    async def run(self, job_id: str, mode: str = "sync") -> Dict[str, Any]:
        """Run one job on the caller's task (sync) or on the worker pool (async)."""
        if mode not in MODES:
            raise ValidationError(f"mode must be one of {', '.join(MODES)}")

        job = await self.get(job_id)
        if job.status != TranslationJobStatus.PENDING.value:
            raise StateError(f"Only pending jobs can run (job is {job.status})")

        if mode == "async":
            self.job_manager.dispatch(JobKind.TRANSLATE, job_id)
            return {"queued": True, "jobId": job_id}

        result = await self.job_manager.run_now(JobKind.TRANSLATE, job_id)
        if result is None:
            raise ConflictError("Job is already executing")
        return result

    async def process_queue(self, limit: Optional[int] = None, mode: str = "sync") -> Dict[str, Any]:
        """Sweep pending jobs: priority ascending, then newest first."""
        if mode not in MODES:
            raise ValidationError(f"mode must be one of {', '.join(MODES)}")
        limit = min(limit or 10, settings.TRANSLATION_SWEEP_MAX)
        if limit < 1:
            raise ValidationError("limit must be positive")

        async with self.session_factory() as db:
            job_ids = await TranslationJobRepository(db).next_batch(limit)

        if mode == "async":
            for job_id in job_ids:
                self.job_manager.dispatch(JobKind.TRANSLATE, job_id)
            return {"queued": len(job_ids), "jobIds": job_ids}

        results = []
        for i, job_id in enumerate(job_ids):
            if i and self.queue_delay:
                await asyncio.sleep(self.queue_delay)
            try:
                result = await self.job_manager.run_now(JobKind.TRANSLATE, job_id)
            except AppError as e:
                logger.info("Skipping translation job %s: %s", job_id, e.message)
                continue
            if result is not None:
                results.append({"jobId": job_id, **result})

        succeeded = sum(1 for r in results if r["success"])
        logger.info("Processed %d translation jobs (%d succeeded)", len(results), succeeded)
        return {
            "processed": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "results": results,
        }

    async def execute_queued(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Worker-pool handler: jobs that are no longer pending are skipped."""
        try:
            return await self.execute(job_id)
        except AppError as e:
            logger.info("Skipping translation job %s: %s", job_id, e.message)
            return None

    def _token(self, job_id: str) -> CancelToken:
        async def probe() -> Optional[str]:
            async with self.session_factory() as db:
                status = await TranslationJobRepository(db).get_status(job_id)
            if status == TranslationJobStatus.CANCELLED.value:
                return "job cancelled"
            return None

        return CancelToken(probe=probe)

    async def execute(self, job_id: str) -> Dict[str, Any]:
        """Translate one entity into one language.

        Item-level failures are recorded on the job (with retry/backoff);
        store or collaborator outages propagate and leave the job in
        processing for manual recovery.
        """
        async with self.session_factory() as db:
            repo = TranslationJobRepository(db)
            job = await repo.get(job_id)
            if not job:
                raise NotFoundError(f"Translation job not found: {job_id}")
            claimed = await repo.transition(
                job_id, [TranslationJobStatus.PENDING.value],
                status=TranslationJobStatus.PROCESSING.value,
                started_at=datetime.utcnow(),
            )
            if not claimed:
                raise StateError(f"Only pending jobs can run (job is {job.status})")
            await db.commit()
            entity_type, entity_id, target_lang = job.entity_type, job.entity_id, job.target_lang
            retry_count, max_retries = job.retry_count, job.max_retries

        logger.info("[TranslationJob %s] %s:%s -> %s", job_id, entity_type, entity_id, target_lang)

        token = self._token(job_id)
        try:
            async with self.session_factory() as db:
                source, base_slug = await self._load_source(db, entity_type, entity_id)
            translated = await token.run(
                self.translator.translate(
                    source, settings.SOURCE_LOCALE, target_lang, prompt_for(entity_type, target_lang), token,
                )
            )
            if not isinstance(translated, dict):
                raise CollaboratorError("Translation response is not an object")
        except CancelledByOperator:
            logger.info("[TranslationJob %s] Cancelled while translating", job_id)
            return {"success": False, "status": TranslationJobStatus.CANCELLED.value, "error": "Job cancelled"}
        except CollaboratorError as e:
            return await self._record_failure(job_id, retry_count, max_retries, str(e))
        except CollaboratorUnavailable:
            raise
        except Exception as e:
            if isinstance(e, AppError):
                raise
            return await self._record_failure(job_id, retry_count, max_retries, f"Translation failed: {e}")

        merged = merge_patch(source, translated)
        title = merged.get("title") or merged.get("name")
        slug = make_slug(str(title), target_lang) if title else ""
        slug = slug or f"{base_slug}-{target_lang}"
        quality = QUALITY_SCORES.get(entity_type, 0.9)

        async with self.session_factory() as db:
            await TranslationRepository(db).upsert(entity_type, entity_id, target_lang, merged, slug)
            entity = await self._load_entity(db, entity_type, entity_id)
            if entity is not None:
                trans_status = dict(entity.trans_status or {})
                trans_status[target_lang] = "pending_review" if entity_type == EntityType.RECIPE.value else "completed"
                entity.trans_status = trans_status

            finished = await TranslationJobRepository(db).transition(
                job_id, [TranslationJobStatus.PROCESSING.value],
                status=TranslationJobStatus.COMPLETED.value,
                completed_at=datetime.utcnow(),
                result=merged,
                quality_score=quality,
                error_message=None,
                active_key=None,
            )
            if not finished:
                # Cancelled after the call returned; discard the variant
                await db.rollback()
                logger.info("[TranslationJob %s] Cancelled before completion was recorded", job_id)
                return {"success": False, "status": TranslationJobStatus.CANCELLED.value, "error": "Job cancelled"}
            await db.commit()

        logger.info("[TranslationJob %s] Completed (quality %.2f)", job_id, quality)
        return {
            "success": True,
            "status": TranslationJobStatus.COMPLETED.value,
            "data": merged,
            "qualityScore": quality,
        }

    async def _load_source(self, db, entity_type: str, entity_id: str) -> Tuple[Dict[str, Any], str]:
        entity = await self._load_entity(db, entity_type, entity_id)
        if entity is None:
            raise CollaboratorError(f"{entity_type} not found: {entity_id}")
        source = {name: getattr(entity, name, None) for name in SOURCE_FIELDS[entity_type]}
        return source, entity.slug

    async def _record_failure(self, job_id: str, retry_count: int, max_retries: int, error: str) -> Dict[str, Any]:
        """Count the attempt; back to pending with backoff until retries run out."""
        retry_count += 1
        now = datetime.utcnow()
        if retry_count < max_retries:
            delay = settings.TRANSLATION_BACKOFF_SECONDS * (2 ** (retry_count - 1))
            values = dict(
                status=TranslationJobStatus.PENDING.value,
                retry_count=retry_count,
                error_message=error,
                available_at=now + timedelta(seconds=delay),
            )
        else:
            values = dict(
                status=TranslationJobStatus.FAILED.value,
                retry_count=retry_count,
                error_message=error,
                completed_at=now,
                active_key=None,
            )

        async with self.session_factory() as db:
            updated = await TranslationJobRepository(db).transition(
                job_id, [TranslationJobStatus.PROCESSING.value], **values,
            )
            await db.commit()

        if not updated:
            return {"success": False, "status": TranslationJobStatus.CANCELLED.value, "error": "Job cancelled"}

        logger.warning(
            "[TranslationJob %s] Failed (%d/%d): %s", job_id, retry_count, max_retries, error,
        )
        return {"success": False, "status": values["status"], "error": error, "retryCount": retry_count}
