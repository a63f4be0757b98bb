# backend/ranker/pipeline/ingest.py
"""
Getting documents into the store.

Ways in:
  - upload_document        raw PDF bytes attached to an existing job
  - create_job             job by external ref, optionally with pre-extracted JD/resume JSON
  - process_idp_callback   webhook delivery from the extraction provider
  - ingest_extractions     adapter results (normalized, grouped per job key)

Pre-extracted documents get a PARSED extraction immediately; uploaded bytes
are extracted later by the job processor.

Document keys:
  JD JSON       jd_{ref}_{hash16}
  resume JSON   resume_{ref}_{position}_{hash16}
  JD upload     jd_{hash}            (hash dedup)
  resume upload resume_{uuid}        (always new)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from ..core.errors import InputError, NotFoundError, SignatureError
from ..core.utils import canonical_json, content_hash
from ..db import crud
from ..db.models import Document, DocumentType, Job
from ..db.store import Store
from .normalizer import RawExtraction, group_by_job, normalize, validate

logger = logging.getLogger(__name__)

JSON_MIME = "application/json"


# ---------- result shapes ----------

class ProcessResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    documents_created: int = Field(0, alias="documentsCreated")
    extractions_created: int = Field(0, alias="extractionsCreated")
    job_resumes_created: int = Field(0, alias="jobResumesCreated")

    def as_response(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CallbackOutcome(BaseModel):
    result: ProcessResult
    ready: bool = False      # job has a JD and at least one resume
    replayed: bool = False   # idempotency key seen before; nothing was written


class UploadResult(BaseModel):
    document_id: str
    doc_key: str
    type: DocumentType
    duplicate: bool = False


# ---------- helpers ----------

def coerce_payload(value: Any, what: str) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError as e:
            raise InputError(f"{what} is not valid JSON") from e
    if not isinstance(value, dict):
        raise InputError(f"{what} must be a JSON object")
    return value


def _attach_extracted(
    session: Session,
    job_ref: str,
    doc_type: DocumentType,
    doc_key: str,
    data: Dict[str, Any],
    request_id: Optional[str],
) -> Tuple[Document, bool, bool]:
    """Upsert a JSON-only document plus its PARSED extraction -> (doc, doc_created, extraction_created)."""
    payload = canonical_json(data)
    doc, created = crud.upsert_document(
        session,
        doc_key=doc_key,
        type=doc_type,
        job_number=job_ref,
        content_hash=content_hash(payload),
        mime_type=JSON_MIME,
    )
    if crud.find_extraction(session, doc.id) is not None:
        return doc, created, False
    crud.create_extraction(session, doc.id, request_id, payload)
    return doc, created, True


def _persist_job_payload(
    session: Session,
    external_ref: str,
    jd: Optional[Dict[str, Any]],
    resumes: List[Dict[str, Any]],
    request_id: Optional[str] = None,
    role_id: Optional[str] = None,
) -> Tuple[ProcessResult, bool]:
    job, created = crud.get_or_create_job(session, external_ref, role_id=role_id)
    if created:
        logger.info("created job %s for %s", job.id, external_ref)
    result = ProcessResult(job_id=job.id)

    if jd is not None:
        key = f"jd_{external_ref}_{content_hash(canonical_json(jd))[:16]}"
        doc, doc_new, ext_new = _attach_extracted(session, external_ref, DocumentType.JD, key, jd, request_id)
        result.documents_created += int(doc_new)
        result.extractions_created += int(ext_new)
        if job.jd_doc_id != doc.id:
            crud.set_job_jd(session, job.id, doc.id)

    for i, resume in enumerate(resumes):
        key = f"resume_{external_ref}_{i}_{content_hash(canonical_json(resume))[:16]}"
        doc, doc_new, ext_new = _attach_extracted(session, external_ref, DocumentType.RESUME, key, resume, request_id)
        _, link_new = crud.upsert_job_resume(session, job.id, doc.id)
        result.documents_created += int(doc_new)
        result.extractions_created += int(ext_new)
        result.job_resumes_created += int(link_new)

    session.refresh(job)
    ready = job.jd_doc_id is not None and crud.count_job_resumes(session, [job.id]).get(job.id, 0) > 0
    return result, ready


# ---------- uploads ----------

def _upload(
    session: Session,
    job_id: str,
    content: bytes,
    doc_type: DocumentType,
    filename: Optional[str],
    mime_type: str,
) -> UploadResult:
    job = crud.get_job(session, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    digest = content_hash(content)

    if doc_type == DocumentType.JD:
        existing = crud.find_jd_by_hash(session, digest)
        if existing is not None:
            logger.info("JD upload for job %s matches existing document %s", job_id, existing.id)
            crud.set_job_jd(session, job_id, existing.id)
            return UploadResult(document_id=existing.id, doc_key=existing.doc_key, type=doc_type, duplicate=True)
        doc = crud.create_document(
            session, f"jd_{digest}", doc_type, job.external_job_ref, digest, mime_type, filename, content
        )
        crud.set_job_jd(session, job_id, doc.id)
    else:
        doc = crud.create_document(
            session, f"resume_{uuid.uuid4().hex}", doc_type, job.external_job_ref, digest, mime_type, filename, content
        )
        crud.upsert_job_resume(session, job_id, doc.id)

    return UploadResult(document_id=doc.id, doc_key=doc.doc_key, type=doc_type)


def upload_document(
    store: Store,
    job_id: str,
    content: bytes,
    doc_type: DocumentType | str,
    filename: Optional[str] = None,
    mime_type: str = "application/pdf",
) -> UploadResult:
    """
    Store uploaded bytes and link them to the job.
    JD uploads dedup by content hash; every RESUME upload is a new document.
    """
    if not content:
        raise InputError("Uploaded file is empty")
    try:
        doc_type = doc_type if isinstance(doc_type, DocumentType) else DocumentType(str(doc_type).strip().upper())
    except ValueError as e:
        raise InputError(f"Unknown document type: {doc_type}") from e
    return store.run(_upload, job_id, content, doc_type, filename, mime_type or "application/pdf")


# ---------- jobs ----------

def create_job(
    store: Store,
    external_ref: str,
    role_id: Optional[str] = None,
    jd: Any = None,
    resumes: Optional[List[Any]] = None,
) -> Tuple[Job, ProcessResult, bool]:
    """
    Idempotent by external_ref; a second call returns the same job.
    Returns (job, what was attached, whether the job has a JD and resumes).
    """
    external_ref = (external_ref or "").strip()
    if not external_ref:
        raise InputError("externalJobRef is required")
    if role_id and store.get_role(role_id) is None:
        raise NotFoundError(f"Role {role_id} not found")
    jd_data = coerce_payload(jd, "jd") if jd is not None else None
    resume_data = [coerce_payload(r, f"resumes[{i}]") for i, r in enumerate(resumes or [])]

    result, ready = store.run(_persist_job_payload, external_ref, jd_data, resume_data, None, role_id)
    job = store.get_job(result.job_id)
    return job, result, ready


# ---------- webhook ----------

def sign_payload(payload: Dict[str, Any], secret: str) -> str:
    """Hex HMAC-SHA256 over the canonical JSON of every field except `hmac`."""
    body = {k: v for k, v in payload.items() if k != "hmac"}
    return hmac.new(secret.encode("utf-8"), canonical_json(body).encode("utf-8"), hashlib.sha256).hexdigest()


def verify_callback_signature(payload: Dict[str, Any], secret: str) -> None:
    if not secret:
        return
    provided = payload.get("hmac")
    if not isinstance(provided, str) or not provided:
        raise SignatureError("Missing callback signature")
    if not hmac.compare_digest(sign_payload(payload, secret), provided.lower()):
        raise SignatureError("Invalid callback signature")


def process_idp_callback(store: Store, payload: Dict[str, Any], secret: str = "") -> CallbackOutcome:
    if not isinstance(payload, dict):
        raise InputError("Callback body must be a JSON object")
    external_ref = str(payload.get("externalJobRef") or "").strip()
    if not external_ref:
        raise InputError("externalJobRef is required")
    jd = payload.get("jd")
    resumes = payload.get("resumes") or []
    if jd is None and not resumes:
        raise InputError("Either jd or resumes is required")
    if not isinstance(resumes, list):
        raise InputError("resumes must be a list")

    verify_callback_signature(payload, secret)

    key = payload.get("idempotencyKey")
    if key:
        seen = store.find_webhook_delivery(str(key))
        if seen is not None:
            logger.info("callback %s for %s already processed; replaying result", key, external_ref)
            return CallbackOutcome(result=ProcessResult.model_validate_json(seen.result_json), replayed=True)

    jd_data = coerce_payload(jd, "jd") if jd is not None else None
    resume_data = [coerce_payload(r, f"resumes[{i}]") for i, r in enumerate(resumes)]
    request_id = f"callback_{key}" if key else None

    def _tx(session: Session) -> Tuple[ProcessResult, bool]:
        result, ready = _persist_job_payload(session, external_ref, jd_data, resume_data, request_id)
        if key:
            crud.record_webhook_delivery(session, str(key), external_ref, result.model_dump_json(by_alias=True))
        return result, ready

    result, ready = store.run(_tx)
    logger.info(
        "callback for %s: %d documents, %d extractions, %d job resumes",
        external_ref, result.documents_created, result.extractions_created, result.job_resumes_created,
    )
    return CallbackOutcome(result=result, ready=ready)


# ---------- adapter results ----------

def ingest_extractions(
    store: Store, extractions: List[RawExtraction], request_id: Optional[str] = None
) -> Dict[str, CallbackOutcome]:
    """Normalize provider output and persist every job key that has a JD and resumes."""
    grouped = group_by_job(normalize(extractions))
    outcomes: Dict[str, CallbackOutcome] = {}
    for job_key, job_data in grouped.items():
        if not validate(job_data):
            logger.warning("extractions for %s lack a JD or resumes; skipped", job_key)
            continue
        jd = job_data.jd.extraction_data if job_data.jd else None
        resumes = [r.extraction_data for r in job_data.resumes]
        result, ready = store.run(_persist_job_payload, job_key, jd, resumes, request_id)
        outcomes[job_key] = CallbackOutcome(result=result, ready=ready)
    return outcomes


__all__ = [
    "ProcessResult", "CallbackOutcome", "UploadResult",
    "coerce_payload", "upload_document", "create_job", "sign_payload", "verify_callback_signature",
    "process_idp_callback", "ingest_extractions",
]
