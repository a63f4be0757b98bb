"""
Pytest configuration.
Temporary SQLite database per test, settings without an LLM key and with no
simulated provider latency, plus sample JD/resume payloads in both schemas.
"""

import json
from typing import Any, Dict, Generator

import pytest

from ranker.core.config import Settings
from ranker.db.models import DocumentType
from ranker.db.session import Database
from ranker.db.store import Store


# ==================== Settings / database ====================

@pytest.fixture(scope="function")
def settings(tmp_path) -> Settings:
    """Fixture parser, no delay, heuristic grading, no auto-run."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'ranker.db'}",
        parser="fixture",
        fixture_delay_seconds=0.0,
        gemini_api_key="",
        auto_run=False,
        log_level="DEBUG",
    )


@pytest.fixture(scope="function")
def db(settings) -> Generator[Database, None, None]:
    database = Database(settings.database_url)
    database.ensure_tables()
    yield database
    database.dispose()


@pytest.fixture(scope="function")
def store(db) -> Store:
    return Store(db)


# ==================== Sample payloads ====================

@pytest.fixture
def simple_jd() -> Dict[str, Any]:
    return {
        "title": "Frontend Engineer",
        "description": "Build customer-facing web apps.",
        "skills": ["React", "Node.js"],
        "experience_level": "3",
        "requirements": ["3+ years building web applications"],
        "education": "BS in Computer Science",
    }


@pytest.fixture
def simple_resume() -> Dict[str, Any]:
    return {
        "name": "Ada Park",
        "email": "ada@example.com",
        "skills": ["JavaScript", "React"],
        "experience": [{"company": "Acme", "position": "Developer", "years": 4, "description": "SPA work"}],
        "education": [{"degree": "BS", "field": "Computer Science", "institution": "State U"}],
    }


@pytest.fixture
def idp_jd() -> Dict[str, Any]:
    return {
        "Job_Title": "Data Analyst",
        "Summary": "Own reporting for the sales team.",
        "Responsibilities": {"Responsibility_Duties": ["Build dashboards"]},
        "Qualifications": {"Qualifications_Required": ["2 years of SQL experience"]},
        "Skills": {"Skills": ["SQL", "Excel"]},
    }


@pytest.fixture
def idp_resume() -> Dict[str, Any]:
    return {
        "Full_Name": "Lee Novak",
        "email": "lee@example.com",
        "skills_core": ["SQL", "Python"],
        "total_years_experience": "4",
        "Work_Experience": [{"Company": "DataCo", "Job_Title": "Analyst", "Employment_Dates": "2020 - 2024"}],
        "Education": [{"Degree": "BSc in Statistics", "Institution": "City College"}],
    }


# ==================== Store helpers ====================

@pytest.fixture
def make_job(store):
    """Build a job with a JSON JD and resumes attached directly through the store."""

    def _make(ref: str, jd: Dict[str, Any] = None, resumes=(), parsed=True):
        job, _ = store.get_or_create_job(ref)
        if jd is not None:
            doc, _ = store.upsert_document(f"jd_{ref}", DocumentType.JD, ref, f"h-jd-{ref}", "application/json")
            store.create_extraction(doc.id, None, json.dumps(jd))
            store.set_job_jd(job.id, doc.id)
        for i, resume in enumerate(resumes):
            doc, _ = store.upsert_document(
                f"resume_{ref}_{i}", DocumentType.RESUME, ref, f"h-r-{ref}-{i}", "application/json"
            )
            if parsed:
                store.create_extraction(doc.id, None, json.dumps(resume))
            store.upsert_job_resume(job.id, doc.id)
        return store.get_job(job.id)

    return _make
