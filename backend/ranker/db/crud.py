# backend/ranker/db/crud.py
"""
CRUD helpers over the ranker tables. Every function takes an open Session;
commit is handled by the caller (Database.session_scope via Store).

Upserts go through `_insert_or_get`: insert inside a SAVEPOINT and, when a
unique key collides with a concurrent writer, re-read the winning row.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

from sqlalchemy import delete, desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.errors import NotFoundError
from .models import (
    Document, DocumentType, Extraction, ExtractionStatus, Job, JobResume, JobStatus,
    JOB_TRANSITIONS, Role, Score, WebhookDelivery,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _insert_or_get(session: Session, row: T, lookup: Callable[[], Optional[T]]) -> Tuple[T, bool]:
    existing = lookup()
    if existing is not None:
        return existing, False
    try:
        with session.begin_nested():
            session.add(row)
        return row, True
    except IntegrityError:
        winner = lookup()
        if winner is None:
            raise
        return winner, False


# ----------------- Documents -----------------

def get_document(session: Session, doc_id: str) -> Optional[Document]:
    return session.get(Document, doc_id)


def find_document(session: Session, doc_key: str) -> Optional[Document]:
    q = select(Document).where(Document.doc_key == doc_key).limit(1)
    return session.execute(q).scalars().first()


def find_jd_by_hash(session: Session, content_hash: str) -> Optional[Document]:
    q = (
        select(Document)
        .where(Document.content_hash == content_hash, Document.type == DocumentType.JD)
        .order_by(Document.uploaded_at)
        .limit(1)
    )
    return session.execute(q).scalars().first()


def create_document(
    session: Session,
    doc_key: str,
    type: DocumentType,
    job_number: Optional[str],
    content_hash: str,
    mime_type: str,
    filename: Optional[str] = None,
    content: Optional[bytes] = None,
) -> Document:
    doc = Document(
        doc_key=doc_key,
        type=DocumentType(type),
        job_number=job_number,
        content_hash=content_hash,
        mime_type=mime_type,
        filename=filename,
        content=content,
    )
    session.add(doc)
    session.flush()
    return doc


def upsert_document(
    session: Session,
    doc_key: str,
    type: DocumentType,
    job_number: Optional[str],
    content_hash: str,
    mime_type: str,
    filename: Optional[str] = None,
    content: Optional[bytes] = None,
) -> Tuple[Document, bool]:
    """
    Idempotent by doc_key. An existing row only gets content_hash/uploaded_at
    refreshed; type and job_number are never rewritten.
    """
    row = Document(
        doc_key=doc_key,
        type=DocumentType(type),
        job_number=job_number,
        content_hash=content_hash,
        mime_type=mime_type,
        filename=filename,
        content=content,
    )
    doc, created = _insert_or_get(session, row, lambda: find_document(session, doc_key))
    if not created:
        doc.content_hash = content_hash
        doc.uploaded_at = func.now()
    session.flush()
    if not created:
        session.refresh(doc)
    return doc, created


# ----------------- Extractions -----------------

def create_extraction(
    session: Session,
    doc_id: str,
    idp_request_id: Optional[str],
    extraction_json: str,
    extraction_version: str = "v1",
    status: ExtractionStatus = ExtractionStatus.PARSED,
) -> Extraction:
    row = Extraction(
        doc_id=doc_id,
        idp_request_id=idp_request_id,
        extraction_json=extraction_json,
        extraction_version=extraction_version,
        status=ExtractionStatus(status),
    )
    session.add(row)
    session.flush()
    return row


def find_extraction(
    session: Session, doc_id: str, status: ExtractionStatus = ExtractionStatus.PARSED
) -> Optional[Extraction]:
    """First extraction with `status` wins (authoritative PARSED record)."""
    q = (
        select(Extraction)
        .where(Extraction.doc_id == doc_id, Extraction.status == ExtractionStatus(status))
        .order_by(Extraction.id)
        .limit(1)
    )
    return session.execute(q).scalars().first()


# ----------------- Roles -----------------

def find_role(session: Session, external_job_ref: str) -> Optional[Role]:
    q = select(Role).where(Role.external_job_ref == external_job_ref).limit(1)
    return session.execute(q).scalars().first()


def get_role(session: Session, role_id: str) -> Optional[Role]:
    return session.get(Role, role_id)


def upsert_role(session: Session, external_job_ref: str, title: str, description: Optional[str] = None) -> Role:
    role, created = _insert_or_get(
        session,
        Role(external_job_ref=external_job_ref, title=title, description=description),
        lambda: find_role(session, external_job_ref),
    )
    if not created:
        role.title = title
        if description is not None:
            role.description = description
    session.flush()
    return role


def list_roles(session: Session) -> List[Role]:
    return list(session.execute(select(Role).order_by(Role.created_at)).scalars().all())


# ----------------- Jobs -----------------

def get_job(session: Session, job_id: str) -> Optional[Job]:
    return session.get(Job, job_id)


def find_job(session: Session, external_job_ref: str) -> Optional[Job]:
    q = select(Job).where(Job.external_job_ref == external_job_ref).limit(1)
    return session.execute(q).scalars().first()


def create_job(
    session: Session,
    external_job_ref: str,
    role_id: Optional[str] = None,
    jd_doc_id: Optional[str] = None,
) -> Job:
    job = Job(external_job_ref=external_job_ref, role_id=role_id, jd_doc_id=jd_doc_id, status=JobStatus.PENDING)
    session.add(job)
    session.flush()
    return job


def get_or_create_job(
    session: Session,
    external_job_ref: str,
    role_id: Optional[str] = None,
    jd_doc_id: Optional[str] = None,
) -> Tuple[Job, bool]:
    """external_job_ref is the idempotency key: never two rows per ref."""
    job, created = _insert_or_get(
        session,
        Job(external_job_ref=external_job_ref, role_id=role_id, jd_doc_id=jd_doc_id, status=JobStatus.PENDING),
        lambda: find_job(session, external_job_ref),
    )
    if not created:
        if role_id and not job.role_id:
            job.role_id = role_id
        if jd_doc_id and not job.jd_doc_id:
            job.jd_doc_id = jd_doc_id
    session.flush()
    return job, created


def _require_job(session: Session, job_id: str) -> Job:
    job = session.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def set_job_jd(session: Session, job_id: str, jd_doc_id: str) -> Job:
    job = _require_job(session, job_id)
    job.jd_doc_id = jd_doc_id
    session.flush()
    return job


def update_job_status(
    session: Session, job_id: str, status: JobStatus, expected: Optional[JobStatus] = None
) -> bool:
    """
    Conditional transition. Without `expected` the current status is used.
    Returns False (and changes nothing) when the row is not in the expected
    state or the transition is not allowed.
    """
    job = _require_job(session, job_id)
    current = JobStatus(expected) if expected is not None else job.status
    status = JobStatus(status)
    if status not in JOB_TRANSITIONS[current]:
        logger.warning("job %s: transition %s -> %s refused", job_id, current.value, status.value)
        return False
    res = session.execute(
        update(Job)
        .where(Job.id == job_id, Job.status == current)
        .values(status=status, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    session.expire(job)
    return res.rowcount == 1


def reset_job(session: Session, job_id: str) -> int:
    """Back to PENDING with its scores cleared; returns the number of scores removed."""
    job = _require_job(session, job_id)
    removed = delete_scores(session, job_id)
    job.status = JobStatus.PENDING
    session.flush()
    return removed


def list_jobs(session: Session) -> List[Job]:
    return list(session.execute(select(Job).order_by(desc(Job.created_at))).scalars().all())


# ----------------- Job <-> resume links -----------------

def upsert_job_resume(session: Session, job_id: str, resume_doc_id: str) -> Tuple[JobResume, bool]:
    def _lookup() -> Optional[JobResume]:
        q = select(JobResume).where(JobResume.job_id == job_id, JobResume.resume_doc_id == resume_doc_id)
        return session.execute(q).scalars().first()

    link, created = _insert_or_get(session, JobResume(job_id=job_id, resume_doc_id=resume_doc_id), _lookup)
    session.flush()
    return link, created


def list_job_resumes(session: Session, job_id: str) -> List[JobResume]:
    q = select(JobResume).where(JobResume.job_id == job_id).order_by(JobResume.id)
    return list(session.execute(q).scalars().all())


# ----------------- Scores -----------------

def upsert_score(
    session: Session,
    job_id: str,
    resume_doc_id: str,
    model_version: str,
    final_score: int,
    reasons_json: str,
    source: str = "heuristic",
) -> Score:
    def _lookup() -> Optional[Score]:
        q = select(Score).where(
            Score.job_id == job_id, Score.resume_doc_id == resume_doc_id, Score.model_version == model_version
        )
        return session.execute(q).scalars().first()

    row, created = _insert_or_get(
        session,
        Score(
            job_id=job_id,
            resume_doc_id=resume_doc_id,
            model_version=model_version,
            final_score=int(final_score),
            reasons_json=reasons_json,
            source=source,
        ),
        _lookup,
    )
    if not created:
        row.final_score = int(final_score)
        row.reasons_json = reasons_json
        row.source = source
    session.flush()
    return row


def delete_scores(session: Session, job_id: str) -> int:
    res = session.execute(delete(Score).where(Score.job_id == job_id))
    return res.rowcount or 0


def list_scores(session: Session, job_id: str, model_version: Optional[str] = None) -> List[Score]:
    q = select(Score).where(Score.job_id == job_id)
    if model_version is not None:
        q = q.where(Score.model_version == model_version)
    return list(session.execute(q.order_by(Score.id)).scalars().all())


def list_scores_for_document(session: Session, resume_doc_id: str) -> List[Score]:
    q = select(Score).where(Score.resume_doc_id == resume_doc_id).order_by(Score.id)
    return list(session.execute(q).scalars().all())


# ----------------- Composite reads -----------------

@dataclass
class ResumeInput:
    link: JobResume
    document: Document
    extraction: Optional[Extraction]


@dataclass
class JobInputs:
    job: Job
    jd_document: Optional[Document]
    jd_extraction: Optional[Extraction]
    resumes: List[ResumeInput] = field(default_factory=list)


def load_job_inputs(session: Session, job_id: str) -> JobInputs:
    """Job + JD + resumes (association order), each with its PARSED extraction if any."""
    job = _require_job(session, job_id)
    jd_doc = session.get(Document, job.jd_doc_id) if job.jd_doc_id else None
    jd_ext = find_extraction(session, jd_doc.id) if jd_doc else None
    resumes: List[ResumeInput] = []
    for link in list_job_resumes(session, job_id):
        doc = session.get(Document, link.resume_doc_id)
        if doc is None:
            continue
        resumes.append(ResumeInput(link=link, document=doc, extraction=find_extraction(session, doc.id)))
    return JobInputs(job=job, jd_document=jd_doc, jd_extraction=jd_ext, resumes=resumes)


def count_job_resumes(session: Session, job_ids: Iterable[str]) -> Dict[str, int]:
    ids = list(job_ids)
    if not ids:
        return {}
    q = select(JobResume.job_id, func.count()).where(JobResume.job_id.in_(ids)).group_by(JobResume.job_id)
    return {jid: n for jid, n in session.execute(q).all()}


def count_scores(session: Session, job_ids: Iterable[str], model_version: str) -> Dict[str, int]:
    ids = list(job_ids)
    if not ids:
        return {}
    q = (
        select(Score.job_id, func.count())
        .where(Score.job_id.in_(ids), Score.model_version == model_version)
        .group_by(Score.job_id)
    )
    return {jid: n for jid, n in session.execute(q).all()}


# ----------------- Webhook deliveries -----------------

def find_webhook_delivery(session: Session, idempotency_key: str) -> Optional[WebhookDelivery]:
    q = select(WebhookDelivery).where(WebhookDelivery.idempotency_key == idempotency_key).limit(1)
    return session.execute(q).scalars().first()


def record_webhook_delivery(
    session: Session, idempotency_key: str, external_job_ref: str, result_json: str
) -> Tuple[WebhookDelivery, bool]:
    row, created = _insert_or_get(
        session,
        WebhookDelivery(idempotency_key=idempotency_key, external_job_ref=external_job_ref, result_json=result_json),
        lambda: find_webhook_delivery(session, idempotency_key),
    )
    session.flush()
    return row, created

