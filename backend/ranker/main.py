# backend/ranker/main.py
"""
FastAPI entrypoint for the resume ranker.
- App factory `create_app(settings, llm, idp_adapter)`; module-level `app` for uvicorn.
- Jobs pair one JD with many resumes; uploads/webhooks feed the store, the
  background JobProcessor extracts + grades, and the rankings endpoints read back.
- Errors leave as JSON {"detail": ..., "kind": ...} with the HTTP code of their kind.

Run locally (from backend/):
  uvicorn ranker.main:app --reload --port 8000

Env (.env):
  DATABASE_URL=sqlite:///./ranker.db
  PARSER=fixture                     # or remote (IDP_START_URL, IDP_API_KEY)
  GEMINI_API_KEY=...                 # optional; heuristic grading without it
  ALLOWED_ORIGINS=http://localhost:5173,http://localhost:3000
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .adapters.idp import FixtureIdpAdapter, IdpAdapter, create_idp_adapter
from .core.config import Settings, configure_logging, load_settings
from .core.errors import InputError, NotFoundError, RankerError
from .core.llm import build_llm
from .db.models import Job, JobStatus
from .db.session import Database
from .db.store import Store
from .pipeline.grading import GradingEngine
from .pipeline.ingest import (
    ProcessResult, coerce_payload, create_job, ingest_extractions, process_idp_callback, upload_document,
)
from .pipeline.normalizer import to_job_description, to_resume
from .pipeline.processor import JobProcessor
from .pipeline.reporting import job_rankings, job_status, list_jobs, resume_detail, resume_file

logger = logging.getLogger(__name__)


# --- Models for request bodies ------------------------------------------------

class RoleIn(BaseModel):
    externalJobRef: str
    title: str
    description: Optional[str] = None


class JobIn(BaseModel):
    externalJobRef: str
    roleId: Optional[str] = None
    jd: Optional[Any] = None
    resumes: List[Any] = Field(default_factory=list)
    autoRun: Optional[bool] = None


class GradeIn(BaseModel):
    jd: Any
    resume: Any


class IdpTriggerIn(BaseModel):
    externalJobRef: str
    jdFolder: str = ""
    resumeFolder: str = ""


# --- Utils ------------------------------------------------------------------

def _job_row(job: Job) -> Dict[str, Any]:
    return {
        "job_id": job.id,
        "external_job_ref": job.external_job_ref,
        "status": job.status.value,
        "role_id": job.role_id,
        "jd_doc_id": job.jd_doc_id,
        "created_at": job.created_at.isoformat() if job.created_at else None,
        "updated_at": job.updated_at.isoformat() if job.updated_at else None,
    }


def _changed(result: ProcessResult) -> bool:
    return bool(result.documents_created or result.job_resumes_created)


def _db_ok(db: Database) -> bool:
    try:
        with db.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.warning("database ping failed: %s", e)
        return False


# --- App factory -------------------------------------------------------------

def create_app(
    settings: Optional[Settings] = None,
    llm: Any = None,
    idp_adapter: Optional[IdpAdapter] = None,
) -> FastAPI:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    db = Database(settings.database_url, echo=settings.db_echo)
    store = Store(db)
    idp = idp_adapter or create_idp_adapter(settings)
    fallback = None
    if settings.fallback_to_fixtures and not isinstance(idp, FixtureIdpAdapter):
        fallback = FixtureIdpAdapter(delay_seconds=settings.fixture_delay_seconds)
    grader = GradingEngine(llm if llm is not None else build_llm(settings), settings.llm_timeout_seconds)
    processor = JobProcessor(
        store,
        idp,
        grader,
        model_version=settings.model_version,
        workers=settings.worker_pool_size,
        fallback_idp=fallback,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.ensure_tables()
        processor.start()
        logger.info("ranker up: parser=%s llm=%s workers=%d", idp.name, grader.llm is not None, processor.workers)
        try:
            yield
        finally:
            await processor.stop()
            await idp.aclose()
            db.dispose()

    app = FastAPI(title="Resume Ranker API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.db = db
    app.state.store = store
    app.state.processor = processor

    @app.exception_handler(RankerError)
    async def _ranker_error(request: Request, exc: RankerError):
        if exc.status_code >= 500:
            logger.error("%s %s failed (%s): %s", request.method, request.url.path, exc.kind.value, exc)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "kind": exc.kind.value})

    mv = settings.model_version

    async def _maybe_run(job_id: str, requested: Optional[bool] = None, changed: bool = True) -> bool:
        """Auto-run hook; finished jobs are only rerun when new documents arrived."""
        if not (settings.auto_run if requested is None else requested):
            return False
        status = await processor.schedule(job_id, rerun_finished=changed)
        return status == JobStatus.PENDING

    # --- Routes -----------------------------------------------------------------

    @app.get("/api/health")
    def health():
        return {
            "ok": True,
            "ts": datetime.now(timezone.utc).isoformat(),
            "db_ok": _db_ok(db),
            "parser": idp.name,
            "llm_enabled": grader.llm is not None,
        }

    @app.get("/api/config")
    def config_view():
        return {
            "parser": settings.parser,
            "model_version": settings.model_version,
            "llm_model": settings.llm_model,
            "llm_enabled": grader.llm is not None,
            "llm_timeout_seconds": settings.llm_timeout_seconds,
            "worker_pool_size": settings.worker_pool_size,
            "auto_run": settings.auto_run,
            "fallback_to_fixtures": settings.fallback_to_fixtures,
            "webhook_verification": settings.webhook_verification_enabled,
            "allowed_origins": settings.allowed_origins,
        }

    # roles

    @app.get("/api/roles")
    def roles_list():
        return [
            {"role_id": r.id, "external_job_ref": r.external_job_ref, "title": r.title, "description": r.description}
            for r in store.list_roles()
        ]

    @app.post("/api/roles")
    def roles_upsert(body: RoleIn):
        if not body.externalJobRef.strip() or not body.title.strip():
            raise InputError("externalJobRef and title are required")
        role = store.upsert_role(body.externalJobRef.strip(), body.title.strip(), body.description)
        return {"role_id": role.id, "external_job_ref": role.external_job_ref, "title": role.title,
                "description": role.description}

    # jobs

    @app.get("/api/jobs")
    def jobs_list():
        return list_jobs(store, mv)

    @app.post("/api/jobs")
    async def jobs_create(body: JobIn):
        """Create (or fetch) a job by externalJobRef; optional pre-extracted JD/resume JSON."""
        job, attached, ready = await asyncio.to_thread(
            create_job, store, body.externalJobRef, body.roleId, body.jd, body.resumes
        )
        queued = await _maybe_run(job.id, body.autoRun, _changed(attached)) if ready else False
        return {"job": _job_row(job), "attached": attached.as_response(), "ready": ready, "queued": queued}

    @app.post("/api/jobs/{job_id}/documents")
    async def jobs_upload(
        job_id: str,
        files: List[UploadFile] = File(...),
        doc_type: str = Form(default="RESUME", alias="type"),
    ):
        """Attach PDFs (all JD or all RESUME) to the job. JD uploads dedup by content hash."""
        documents = []
        for upload in files:
            content = await upload.read()
            result = await asyncio.to_thread(
                upload_document, store, job_id, content, doc_type, upload.filename,
                upload.content_type or "application/pdf",
            )
            documents.append(result.model_dump(mode="json"))
        return {"job_id": job_id, "documents": documents}

    @app.post("/api/jobs/{job_id}/run")
    async def jobs_run(job_id: str):
        status = await processor.schedule(job_id)
        return {"job_id": job_id, "status": status.value}

    @app.post("/api/jobs/{job_id}/rerun")
    async def jobs_rerun(job_id: str):
        removed = await processor.rerun(job_id)
        return {"job_id": job_id, "status": JobStatus.PENDING.value, "scores_cleared": removed}

    @app.get("/api/jobs/{job_id}/status")
    def jobs_status(job_id: str):
        return job_status(store, job_id, mv)

    @app.get("/api/jobs/{job_id}/results")
    @app.get("/api/jobs/{job_id}/rankings")
    def jobs_rankings(job_id: str):
        return job_rankings(store, job_id, mv)

    @app.get("/api/resumes/{doc_id}")
    def resumes_get(doc_id: str):
        return resume_detail(store, doc_id)

    @app.get("/api/resumes/{doc_id}/pdf")
    def resumes_pdf(doc_id: str):
        content, mime_type, filename = resume_file(store, doc_id)
        return Response(
            content=content,
            media_type=mime_type,
            headers={"Content-Disposition": f'inline; filename="{filename}"'},
        )

    # grading

    @app.post("/api/grade")
    async def grade(body: GradeIn):
        """Grade pasted JD/resume JSON without storing anything."""
        jd = to_job_description(coerce_payload(body.jd, "jd"))
        resume = to_resume(coerce_payload(body.resume, "resume"))
        result = await grader.grade(jd, resume)
        return {
            "jd_title": jd.title,
            "candidate": resume.name,
            "final_score": result.final_score,
            "top_reasons": result.top_reasons,
            "source": result.source,
        }

    # extraction provider

    @app.post("/api/idp/trigger")
    async def idp_trigger(body: IdpTriggerIn):
        ref = body.externalJobRef.strip()
        if not ref:
            raise InputError("externalJobRef is required")
        ticket = await idp.process_job(ref, body.jdFolder, body.resumeFolder)
        ingested: Dict[str, Any] = {}
        if ticket.status == "COMPLETED":
            extractions = await idp.get_extractions(ticket.request_id)
            outcomes = await asyncio.to_thread(ingest_extractions, store, extractions, ticket.request_id)
            for key, outcome in outcomes.items():
                if outcome.ready:
                    await _maybe_run(outcome.result.job_id, changed=_changed(outcome.result))
                ingested[key] = outcome.result.as_response()
        return {"request_id": ticket.request_id, "status": ticket.status, "ingested": ingested}

    @app.post("/api/idp/callback")
    async def idp_callback(payload: Dict[str, Any] = Body(...)):
        outcome = await asyncio.to_thread(process_idp_callback, store, payload, settings.callback_hmac_secret)
        if outcome.ready and not outcome.replayed:
            try:
                await _maybe_run(outcome.result.job_id, changed=_changed(outcome.result))
            except NotFoundError:
                logger.warning("callback job %s vanished before it could be queued", outcome.result.job_id)
        return {"status": "success", "result": outcome.result.as_response()}

    return app


app = create_app()

# For local dev convenience
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("ranker.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
