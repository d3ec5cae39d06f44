"""Background job dispatch (bounded worker pool over an in-process queue)."""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from recipe_engine.core.config import settings

logger = logging.getLogger(__name__)


class JobKind(str, Enum):
    """Job kind enumeration."""
    GENERATE = "generate"
    TRANSLATE = "translate"


JobHandler = Callable[[str], Awaitable[Any]]
JobRecoverer = Callable[[], Awaitable[List[str]]]


class JobManager:
    """Runs job handlers on a fixed number of workers.

    Only job ids travel through the queue; the job row is the durable state
    and every handler re-reads it. A job id is never executed twice at the
    same time: dispatching an id that is already running marks it for one
    re-run once the current run returns.
    """

    _instance: Optional["JobManager"] = None

    def __init__(self, max_workers: Optional[int] = None):
        self._handlers: Dict[str, JobHandler] = {}
        self._recoverers: Dict[str, JobRecoverer] = {}
        self._queue: "asyncio.Queue[Tuple[str, str]]" = asyncio.Queue()
        self._running = False
        self._workers: List[asyncio.Task] = []
        self._max_workers = max_workers or settings.MAX_CONCURRENT_JOBS
        self._active: Set[Tuple[str, str]] = set()
        self._redispatch: Set[Tuple[str, str]] = set()

    @classmethod
    def get_instance(cls) -> "JobManager":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @property
    def is_running(self) -> bool:
        return self._running

    def register_handler(
        self,
        kind: JobKind,
        handler: JobHandler,
        recover: Optional[JobRecoverer] = None,
    ) -> None:
        """Register a handler (and optional startup recoverer) for a job kind."""
        self._handlers[kind.value] = handler
        if recover is not None:
            self._recoverers[kind.value] = recover
        logger.info("Registered handler for %s", kind.value)

    async def start(self, recover: Optional[bool] = None) -> None:
        """Start the workers, optionally re-dispatching jobs left in flight."""
        if self._running:
            return

        self._running = True

        if settings.RECOVER_JOBS_ON_STARTUP if recover is None else recover:
            for kind, recoverer in self._recoverers.items():
                job_ids = await recoverer()
                for job_id in job_ids:
                    self._queue.put_nowait((kind, job_id))
                logger.info("Recovered %d %s jobs", len(job_ids), kind)

        for i in range(self._max_workers):
            worker = asyncio.create_task(self._worker(i))
            self._workers.append(worker)

        logger.info("Job manager started with %d workers", self._max_workers)

    async def stop(self) -> None:
        """Stop the job manager."""
        self._running = False
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        logger.info("Job manager stopped")

    def dispatch(self, kind: JobKind, job_id: str) -> None:
        """Queue a job for background execution and return immediately."""
        if kind.value not in self._handlers:
            raise ValueError(f"No handler for job kind {kind.value}")
        self._queue.put_nowait((kind.value, job_id))
        logger.info("Dispatched %s job %s (queue size %d)", kind.value, job_id, self._queue.qsize())

    async def run_now(self, kind: JobKind, job_id: str) -> Any:
        """Execute a job inline on the caller's task, honouring the single-run guard."""
        key = (kind.value, job_id)
        if key in self._active:
            self._redispatch.add(key)
            logger.info("Job %s already executing; scheduled a re-run", job_id)
            return None
        return await self._execute(key)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    def queue_size(self) -> int:
        return self._queue.qsize()

    def active_jobs(self) -> List[str]:
        return [job_id for _, job_id in self._active]

    async def _worker(self, worker_id: int) -> None:
        """Worker loop consuming the queue."""
        logger.info("Worker %d started", worker_id)

        while self._running:
            try:
                key = await self._queue.get()
            except asyncio.CancelledError:
                break

            try:
                if key in self._active:
                    self._redispatch.add(key)
                    continue
                logger.info("Worker %d picked up %s job %s", worker_id, key[0], key[1])
                await self._execute(key)
            except asyncio.CancelledError:
                break
            except Exception as e:
                # Job rows keep their last-known status for manual inspection
                logger.exception("Worker %d: %s job %s failed: %s", worker_id, key[0], key[1], e)
            finally:
                self._queue.task_done()

    async def _execute(self, key: Tuple[str, str]) -> Any:
        kind, job_id = key
        handler = self._handlers.get(kind)
        if handler is None:
            raise ValueError(f"No handler for job kind {kind}")

        self._active.add(key)
        try:
            return await handler(job_id)
        finally:
            self._active.discard(key)
            if key in self._redispatch:
                self._redispatch.discard(key)
                self._queue.put_nowait(key)
