# backend/ranker/db/store.py
"""
Persistence interface used by the pipeline and the API.

Each Store method opens one session (one transaction), runs the matching
crud helper and returns detached, fully loaded rows. The job processor calls
these through asyncio.to_thread so the event loop never blocks on the DB.
"""

from __future__ import annotations

import functools
from dataclasses import fields, is_dataclass
from typing import Any, Callable

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from . import crud
from .session import Database


def _load_expired(session: Session, value: Any) -> None:
    """Refresh rows whose server-side defaults were expired by flush."""
    if isinstance(value, (list, tuple)):
        for v in value:
            _load_expired(session, v)
        return
    if is_dataclass(value) and not isinstance(value, type):
        for f in fields(value):
            _load_expired(session, getattr(value, f.name))
        return
    state = inspect(value, raiseerr=False)
    if state is not None and getattr(state, "persistent", False) and state.expired_attributes:
        session.refresh(value)


def _op(fn: Callable[..., Any]) -> Callable[..., Any]:
    @functools.wraps(fn)
    def wrapper(self: "Store", *args: Any, **kwargs: Any) -> Any:
        with self.db.session_scope() as session:
            result = fn(session, *args, **kwargs)
            session.flush()
            _load_expired(session, result)
            return result

    return wrapper


class Store:
    def __init__(self, db: Database):
        self.db = db

    # documents
    get_document = _op(crud.get_document)
    find_document = _op(crud.find_document)
    find_jd_by_hash = _op(crud.find_jd_by_hash)
    create_document = _op(crud.create_document)
    upsert_document = _op(crud.upsert_document)

    # extractions
    create_extraction = _op(crud.create_extraction)
    find_extraction = _op(crud.find_extraction)

    # roles
    find_role = _op(crud.find_role)
    get_role = _op(crud.get_role)
    upsert_role = _op(crud.upsert_role)
    list_roles = _op(crud.list_roles)

    # jobs
    get_job = _op(crud.get_job)
    find_job = _op(crud.find_job)
    create_job = _op(crud.create_job)
    get_or_create_job = _op(crud.get_or_create_job)
    set_job_jd = _op(crud.set_job_jd)
    update_job_status = _op(crud.update_job_status)
    reset_job = _op(crud.reset_job)
    list_jobs = _op(crud.list_jobs)
    load_job_inputs = _op(crud.load_job_inputs)
    count_job_resumes = _op(crud.count_job_resumes)

    # job <-> resume links
    upsert_job_resume = _op(crud.upsert_job_resume)
    list_job_resumes = _op(crud.list_job_resumes)

    # scores
    upsert_score = _op(crud.upsert_score)
    delete_scores = _op(crud.delete_scores)
    list_scores = _op(crud.list_scores)
    list_scores_for_document = _op(crud.list_scores_for_document)
    count_scores = _op(crud.count_scores)

    # webhook deliveries
    find_webhook_delivery = _op(crud.find_webhook_delivery)
    record_webhook_delivery = _op(crud.record_webhook_delivery)

    def run(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run several crud calls in a single transaction: fn(session, ...)."""
        return _op(fn)(self, *args, **kwargs)


__all__ = ["Store"]
