# backend/ranker/db/models.py
"""
SQLAlchemy ORM models.

- Document:        content-addressed artifact (JD or RESUME), unique doc_key
- Extraction:      structured IDP output for one document (append-only)
- Job:             one hiring-campaign run, unique external_job_ref
- JobResume:       job <-> resume document link, unique (job_id, resume_doc_id)
- Score:           grading output, unique (job_id, resume_doc_id, model_version)
- Role:            descriptive metadata for an external_job_ref
- WebhookDelivery: processed callback idempotency keys
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime, Enum, ForeignKey, Integer, LargeBinary, String, Text, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .session import Base


def _uuid() -> str:
    return uuid.uuid4().hex


class DocumentType(str, enum.Enum):
    JD = "JD"
    RESUME = "RESUME"


class ExtractionStatus(str, enum.Enum):
    PARSED = "PARSED"
    FAILED = "FAILED"


class JobStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    ERROR = "ERROR"


# Forward transitions of a run; rerun resets READY/ERROR (or a superseded
# PROCESSING run) back to PENDING through Store.reset_job.
JOB_TRANSITIONS: dict[JobStatus, set[JobStatus]] = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.READY, JobStatus.ERROR},
    JobStatus.READY: set(),
    JobStatus.ERROR: set(),
}


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    doc_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    type: Mapped[DocumentType] = mapped_column(Enum(DocumentType, native_enum=False), index=True, nullable=False)
    job_number: Mapped[str | None] = mapped_column(String(128), index=True, nullable=True)
    content_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/pdf")
    filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    # raw upload bytes; NULL for documents that arrived pre-extracted
    content: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<Document id={self.id} type={self.type.value} key={self.doc_key}>"


class Extraction(Base):
    __tablename__ = "extractions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    doc_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), index=True, nullable=False)
    idp_request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    extraction_json: Mapped[str] = mapped_column(Text, nullable=False)
    extraction_version: Mapped[str] = mapped_column(String(32), nullable=False, default="v1")
    status: Mapped[ExtractionStatus] = mapped_column(
        Enum(ExtractionStatus, native_enum=False), nullable=False, default=ExtractionStatus.PARSED
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<Extraction id={self.id} doc={self.doc_id} status={self.status.value}>"


class Role(Base):
    __tablename__ = "roles"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    external_job_ref: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Job(Base):
    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_uuid)
    external_job_ref: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    role_id: Mapped[str | None] = mapped_column(ForeignKey("roles.id"), nullable=True)
    jd_doc_id: Mapped[str | None] = mapped_column(ForeignKey("documents.id"), nullable=True)
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, native_enum=False), index=True, nullable=False, default=JobStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    def __repr__(self) -> str:
        return f"<Job id={self.id} ref={self.external_job_ref} status={self.status.value}>"


class JobResume(Base):
    __tablename__ = "job_resumes"
    __table_args__ = (UniqueConstraint("job_id", "resume_doc_id", name="uq_job_resume"),)

    # autoincrement id doubles as the association order
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id"), index=True, nullable=False)
    resume_doc_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Score(Base):
    __tablename__ = "scores"
    __table_args__ = (UniqueConstraint("job_id", "resume_doc_id", "model_version", name="uq_score"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id"), index=True, nullable=False)
    resume_doc_id: Mapped[str] = mapped_column(ForeignKey("documents.id"), nullable=False)
    model_version: Mapped[str] = mapped_column(String(64), nullable=False)
    final_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reasons_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    source: Mapped[str] = mapped_column(String(16), nullable=False, default="heuristic")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<Score job={self.job_id} resume={self.resume_doc_id} score={self.final_score}>"


class WebhookDelivery(Base):
    __tablename__ = "webhook_deliveries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    external_job_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    result_json: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
