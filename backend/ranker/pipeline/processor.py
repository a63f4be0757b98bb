# backend/ranker/pipeline/processor.py
"""
Job processor: drives a job through PENDING -> PROCESSING -> READY | ERROR.

Stages per job:
  1) claim        PENDING -> PROCESSING (conditional; anything else is skipped)
  2) extract      documents with bytes but no PARSED extraction go through the IDP
                  adapter (fixture fallback on provider failure when configured)
  3) grade        resumes in association order, one Score upsert each
  4) finish       PROCESSING -> READY, or ERROR on any failure / zero scores

The worker loop is the error boundary: failures are logged and recorded as
ERROR, never re-raised. Store calls run in threads so the HTTP side keeps
serving while a job is mid-pipeline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Dict, List, Optional, Set

from ..adapters.idp import IdpAdapter
from ..core.errors import NotFoundError, PipelineError, ProviderError
from ..db.models import Document, Extraction, JobStatus
from ..db.store import Store
from .grading import GradingEngine
from .normalizer import DocType, to_job_description, to_resume

logger = logging.getLogger(__name__)


class _Superseded(Exception):
    """The job left PROCESSING (rerun) while this run was still grading."""


class JobProcessor:
    def __init__(
        self,
        store: Store,
        idp: IdpAdapter,
        grader: GradingEngine,
        model_version: str = "v1",
        workers: int = 1,
        fallback_idp: Optional[IdpAdapter] = None,
    ):
        self.store = store
        self.idp = idp
        self.grader = grader
        self.model_version = model_version
        self.workers = max(1, int(workers))
        self.fallback_idp = fallback_idp

        self._queue: Optional[asyncio.Queue[str]] = None
        self._queued: Set[str] = set()
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._tasks: List[asyncio.Task] = []

    # ---------- lifecycle ----------

    def start(self) -> None:
        """Spawn worker tasks on the running loop if none are alive."""
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._tasks = [t for t in self._tasks if not t.done()]
        for n in range(len(self._tasks), self.workers):
            self._tasks.append(asyncio.create_task(self._worker(n), name=f"ranker-worker-{n}"))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        if self._queue is not None:
            await self._queue.join()

    # ---------- queue ----------

    def enqueue(self, job_id: str) -> bool:
        """Queue a job; False when it is already waiting in the queue."""
        self.start()
        if job_id in self._queued:
            logger.debug("job %s already queued", job_id)
            return False
        self._queued.add(job_id)
        self._queue.put_nowait(job_id)
        logger.info("job %s queued", job_id)
        return True

    async def rerun(self, job_id: str) -> int:
        """Reset to PENDING, drop the job's scores and queue it again. Returns scores removed."""
        removed = await asyncio.to_thread(self.store.reset_job, job_id)
        logger.info("job %s reset for rerun (%d scores cleared)", job_id, removed)
        self.enqueue(job_id)
        return removed

    async def schedule(self, job_id: str, rerun_finished: bool = True) -> JobStatus:
        """Queue a PENDING job, rerun a finished one (unless told not to), leave a running one alone."""
        job = await asyncio.to_thread(self.store.get_job, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        if job.status == JobStatus.PENDING:
            self.enqueue(job_id)
        elif job.status in (JobStatus.READY, JobStatus.ERROR):
            if not rerun_finished:
                return job.status
            await self.rerun(job_id)
        return job.status if job.status == JobStatus.PROCESSING else JobStatus.PENDING

    def _acquire_lock(self, job_id: str) -> asyncio.Lock:
        """Per-job lock, shared by every worker currently holding or waiting on the job."""
        self._lock_users[job_id] = self._lock_users.get(job_id, 0) + 1
        return self._locks.setdefault(job_id, asyncio.Lock())

    def _release_lock(self, job_id: str) -> None:
        users = self._lock_users.get(job_id, 0) - 1
        if users > 0:
            self._lock_users[job_id] = users
            return
        self._lock_users.pop(job_id, None)
        self._locks.pop(job_id, None)

    async def _worker(self, n: int) -> None:
        while True:
            job_id = await self._queue.get()
            self._queued.discard(job_id)
            try:
                async with self._acquire_lock(job_id):
                    await self.run_job(job_id)
            except Exception:
                logger.exception("worker %d: unexpected failure on job %s", n, job_id)
            finally:
                self._release_lock(job_id)
                self._queue.task_done()

    # ---------- one job ----------

    async def run_job(self, job_id: str) -> Optional[JobStatus]:
        """Process one job; returns the status it ended in (None when it does not exist)."""
        try:
            claimed = await asyncio.to_thread(
                self.store.update_job_status, job_id, JobStatus.PROCESSING, JobStatus.PENDING
            )
        except NotFoundError:
            logger.warning("job %s not found; skipped", job_id)
            return None
        if not claimed:
            job = await asyncio.to_thread(self.store.get_job, job_id)
            logger.info("job %s is %s, not PENDING; skipped", job_id, job.status.value if job else "gone")
            return job.status if job else None

        logger.info("job %s processing", job_id)
        try:
            written = await self._process(job_id)
        except _Superseded:
            logger.info("job %s was reset while processing; leaving it to the next run", job_id)
            return JobStatus.PENDING
        except Exception as e:
            if isinstance(e, PipelineError):
                logger.error("job %s failed: %s", job_id, e)
            else:
                logger.exception("job %s failed", job_id)
            await self._finish(job_id, JobStatus.ERROR)
            return JobStatus.ERROR

        logger.info("job %s graded %d resumes", job_id, written)
        await self._finish(job_id, JobStatus.READY)
        return JobStatus.READY

    async def _finish(self, job_id: str, status: JobStatus) -> None:
        done = await asyncio.to_thread(self.store.update_job_status, job_id, status, JobStatus.PROCESSING)
        if not done:
            logger.info("job %s no longer PROCESSING; %s not recorded", job_id, status.value)

    async def _process(self, job_id: str) -> int:
        inputs = await asyncio.to_thread(self.store.load_job_inputs, job_id)
        if inputs.jd_document is None:
            raise PipelineError(f"job {job_id} has no job description document")

        jd_ext = inputs.jd_extraction or await self._materialize(inputs.jd_document, DocType.JD)
        if jd_ext is None:
            raise PipelineError(f"job {job_id} has no parsed job description")

        resumes = []
        for r in inputs.resumes:
            ext = r.extraction or await self._materialize(r.document, DocType.RESUME)
            resumes.append((r.document, ext))
        if not any(ext is not None for _, ext in resumes):
            raise PipelineError(f"job {job_id} has no parsed resumes")

        try:
            jd = to_job_description(json.loads(jd_ext.extraction_json))
        except ValueError as e:
            raise PipelineError(f"job {job_id}: job description extraction is not JSON") from e

        written = 0
        for doc, ext in resumes:
            if ext is None:
                logger.info("job %s: resume %s has no parsed extraction; skipped", job_id, doc.id)
                continue
            try:
                data = json.loads(ext.extraction_json)
            except ValueError:
                logger.warning("job %s: resume %s extraction is not JSON; skipped", job_id, doc.id)
                continue

            await self._ensure_processing(job_id)
            resume = to_resume(data)
            result = await self.grader.grade(jd, resume)
            await self._ensure_processing(job_id)
            await asyncio.to_thread(
                self.store.upsert_score,
                job_id,
                doc.id,
                self.model_version,
                result.final_score,
                json.dumps(result.top_reasons),
                result.source,
            )
            written += 1
            logger.debug("job %s: %s scored %d (%s)", job_id, resume.name, result.final_score, result.source)

        if written == 0:
            raise PipelineError(f"job {job_id}: no resumes could be graded")
        return written

    async def _ensure_processing(self, job_id: str) -> None:
        job = await asyncio.to_thread(self.store.get_job, job_id)
        if job is None or job.status != JobStatus.PROCESSING:
            raise _Superseded(job_id)

    async def _materialize(self, doc: Document, doc_type: DocType) -> Optional[Extraction]:
        """Run single-document extraction for stored bytes; None when it cannot be done."""
        if not doc.content:
            return None
        adapter = self.idp
        try:
            data = await adapter.extract_document(doc.content, doc_type, doc.mime_type)
        except ProviderError as e:
            if self.fallback_idp is None:
                logger.warning("extraction of %s failed (%s); document stays unextracted", doc.id, e)
                return None
            logger.warning("extraction of %s failed (%s); using fixture data", doc.id, e)
            adapter = self.fallback_idp
            data = await adapter.extract_document(doc.content, doc_type, doc.mime_type)
        return await asyncio.to_thread(
            self.store.create_extraction, doc.id, f"{adapter.name}_{doc.id}", json.dumps(data)
        )


__all__ = ["JobProcessor"]
