# backend/ranker/pipeline/reporting.py
"""
Read model for the UI: job status with phase progress, rankings, dashboard rows.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Tuple

from ..core.errors import NotFoundError, NotReadyError
from ..db.models import JobStatus
from ..db.store import Store
from .normalizer import extract_candidate_name

logger = logging.getLogger(__name__)


def _reasons(raw: str) -> List[str]:
    try:
        reasons = json.loads(raw or "[]")
    except ValueError:
        logger.warning("stored reasons are not JSON: %r", raw[:80])
        return []
    return [str(r) for r in reasons] if isinstance(reasons, list) else []


def _candidate(extraction_json: str | None) -> str:
    if not extraction_json:
        return extract_candidate_name({})
    try:
        data = json.loads(extraction_json)
    except ValueError:
        return extract_candidate_name({})
    return extract_candidate_name(data if isinstance(data, dict) else {})


def job_status(store: Store, job_id: str, model_version: str) -> Dict[str, Any]:
    inputs = store.load_job_inputs(job_id)
    total = len(inputs.resumes)
    extracted = sum(1 for r in inputs.resumes if r.extraction is not None)
    graded = len(store.list_scores(job_id, model_version))
    return {
        "job_id": inputs.job.id,
        "external_job_ref": inputs.job.external_job_ref,
        "status": inputs.job.status.value,
        "phases": {
            "extract_jd": "DONE" if inputs.jd_extraction is not None else "PENDING",
            "extract_resumes": {"done": extracted, "total": total},
            "grade": {"done": graded, "total": total},
        },
    }


def job_rankings(store: Store, job_id: str, model_version: str) -> Dict[str, Any]:
    """Scored resumes by score descending (ties keep association order) plus the ungraded rest."""
    inputs = store.load_job_inputs(job_id)
    if inputs.job.status != JobStatus.READY:
        raise NotReadyError(f"Job {job_id} is {inputs.job.status.value}, rankings are available once READY")

    scores = {s.resume_doc_id: s for s in store.list_scores(job_id, model_version)}
    ranked: List[Dict[str, Any]] = []
    ungraded: List[Dict[str, Any]] = []
    for r in inputs.resumes:
        candidate = _candidate(r.extraction.extraction_json if r.extraction else None)
        score = scores.get(r.document.id)
        if score is None:
            ungraded.append({"resume_doc_id": r.document.id, "candidate": candidate})
            continue
        ranked.append({
            "resume_doc_id": r.document.id,
            "candidate": candidate,
            "score": score.final_score,
            "reasons": _reasons(score.reasons_json),
            "source": score.source,
        })
    ranked.sort(key=lambda row: -row["score"])  # stable: ties stay in association order
    return {"job_id": inputs.job.id, "ranked": ranked, "ungraded": ungraded}


def list_jobs(store: Store, model_version: str) -> List[Dict[str, Any]]:
    jobs = store.list_jobs()
    ids = [j.id for j in jobs]
    resume_counts = store.count_job_resumes(ids)
    score_counts = store.count_scores(ids, model_version)
    roles = {r.id: r for r in store.list_roles()}

    rows: List[Dict[str, Any]] = []
    for j in jobs:
        total = resume_counts.get(j.id, 0)
        graded = score_counts.get(j.id, 0)
        role = roles.get(j.role_id) if j.role_id else None
        rows.append({
            "job_id": j.id,
            "external_job_ref": j.external_job_ref,
            "status": j.status.value,
            "role_id": j.role_id,
            "role_title": role.title if role else None,
            "resume_count": total,
            "graded_count": graded,
            "completion_pct": round(100 * graded / total) if total else 0,
            "created_at": j.created_at.isoformat() if j.created_at else None,
            "updated_at": j.updated_at.isoformat() if j.updated_at else None,
        })
    return rows


def resume_detail(store: Store, doc_id: str) -> Dict[str, Any]:
    doc = store.get_document(doc_id)
    if doc is None:
        raise NotFoundError(f"Resume {doc_id} not found")
    extraction = store.find_extraction(doc_id)
    data: Any = None
    if extraction is not None:
        try:
            data = json.loads(extraction.extraction_json)
        except ValueError:
            data = None
    return {
        "document": {
            "id": doc.id,
            "doc_key": doc.doc_key,
            "type": doc.type.value,
            "job_number": doc.job_number,
            "filename": doc.filename,
            "mime_type": doc.mime_type,
            "content_hash": doc.content_hash,
            "uploaded_at": doc.uploaded_at.isoformat() if doc.uploaded_at else None,
        },
        "candidate": extract_candidate_name(data) if isinstance(data, dict) else extract_candidate_name({}),
        "extraction": data,
        "scores": [
            {
                "job_id": s.job_id,
                "model_version": s.model_version,
                "score": s.final_score,
                "reasons": _reasons(s.reasons_json),
                "source": s.source,
            }
            for s in store.list_scores_for_document(doc_id)
        ],
    }


def resume_file(store: Store, doc_id: str) -> Tuple[bytes, str, str]:
    """Stored upload bytes for a document: (content, mime_type, filename)."""
    doc = store.get_document(doc_id)
    if doc is None:
        raise NotFoundError(f"Resume {doc_id} not found")
    if not doc.content:
        raise NotFoundError(f"Resume {doc_id} has no stored file")
    # header-safe: ascii only, no quotes
    filename = (doc.filename or "").encode("ascii", "ignore").decode().replace('"', "").strip()
    filename = filename or f"{doc.id}.pdf"
    return doc.content, doc.mime_type or "application/pdf", filename


__all__ = ["job_status", "job_rankings", "list_jobs", "resume_detail", "resume_file"]
