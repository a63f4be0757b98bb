# backend/ranker/pipeline/normalizer.py
"""
Extraction normalizer: makes grading source-agnostic.

Upstream payloads arrive in different shapes:
  - IDP schema     capitalised keys   (Job_Title, Skills.Skills, Full_Name, Work_Experience ...)
  - SIMPLE schema  flat keys          (title, skills, experience_level / name, skills, experience ...)
                   used by fixtures, seed data and manual paste

`detect_schema` picks one, and an explicit adapter per (schema, doc type) maps
it into the canonical `JobDescriptionData` / `ResumeData` records. Adapters
never raise on partial data; missing fields degrade to defaults.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from ..core.utils import estimate_years, parse_years, uniq_preserve, years_min_from

logger = logging.getLogger(__name__)

UNKNOWN_CANDIDATE = "Unknown Candidate"
UNKNOWN_POSITION = "Unknown Position"


# ---------- canonical records ----------

class ExperienceEntry(BaseModel):
    company: str = ""
    position: str = ""
    years: float = 0.0
    description: str = ""


class EducationEntry(BaseModel):
    degree: str = ""
    field: str = ""
    institution: str = ""


class JobDescriptionData(BaseModel):
    title: str = UNKNOWN_POSITION
    description: str = ""
    skills: List[str] = Field(default_factory=list)
    experience_level: Optional[str] = None
    education: Optional[str] = None
    requirements: List[str] = Field(default_factory=list)


class ResumeData(BaseModel):
    name: str = UNKNOWN_CANDIDATE
    email: Optional[str] = None
    phone: Optional[str] = None
    skills: List[str] = Field(default_factory=list)
    experience: List[ExperienceEntry] = Field(default_factory=list)
    education: List[EducationEntry] = Field(default_factory=list)
    summary: Optional[str] = None

    @property
    def total_years(self) -> float:
        return sum(e.years for e in self.experience)


class DocType(str, Enum):
    JD = "JD"
    RESUME = "RESUME"


class RawExtraction(BaseModel):
    job_key: str
    item_id: str
    extraction_json: str
    extraction_version: str = "v1"
    status: str = "PARSED"
    created_at: str = ""


class NormalizedExtraction(BaseModel):
    job_key: str
    item_id: str
    type: DocType
    extraction_data: Dict[str, Any] = Field(default_factory=dict)
    extraction_version: str = "v1"
    status: str = "PARSED"
    created_at: str = ""


class NormalizedJobData(BaseModel):
    job_key: str
    jd: Optional[NormalizedExtraction] = None
    resumes: List[NormalizedExtraction] = Field(default_factory=list)


# ---------- type detection ----------

_JD_MARKERS = ("_jd", "_JD")
_RESUME_MARKERS = ("_resume", "_Resume")
_JD_KEYS = ("Job_Title", "Responsibilities", "Qualifications", "Experience")
_RESUME_KEYS = ("Full_Name", "Email", "email", "Phone", "Education", "name")


def _looks_like_jd(data: Dict[str, Any]) -> bool:
    if any(k in data for k in _JD_KEYS):
        return True
    # flat JD shape: a title plus requirements or an experience level
    return "title" in data and ("requirements" in data or "experience_level" in data)


def determine_type(item_id: str, extraction_json: str) -> DocType:
    item_id = item_id or ""
    if any(m in item_id for m in _JD_MARKERS):
        return DocType.JD
    if any(m in item_id for m in _RESUME_MARKERS):
        return DocType.RESUME
    try:
        data = json.loads(extraction_json)
    except (TypeError, ValueError) as e:
        logger.warning("could not parse extraction %s for type detection: %s", item_id, e)
        return DocType.RESUME
    if isinstance(data, dict):
        if _looks_like_jd(data):
            return DocType.JD
        if any(k in data for k in _RESUME_KEYS):
            return DocType.RESUME
    return DocType.RESUME


def _parse_payload(item_id: str, extraction_json: str) -> Dict[str, Any]:
    try:
        data = json.loads(extraction_json)
    except (TypeError, ValueError):
        logger.warning("extraction %s is not valid JSON; keeping empty payload", item_id)
        return {}
    return data if isinstance(data, dict) else {"value": data}


def normalize(raw_extractions: List[RawExtraction]) -> List[NormalizedExtraction]:
    out: List[NormalizedExtraction] = []
    for raw in raw_extractions:
        out.append(
            NormalizedExtraction(
                job_key=raw.job_key,
                item_id=raw.item_id,
                type=determine_type(raw.item_id, raw.extraction_json),
                extraction_data=_parse_payload(raw.item_id, raw.extraction_json),
                extraction_version=raw.extraction_version,
                status=raw.status,
                created_at=raw.created_at,
            )
        )
    return out


def group_by_job(extractions: List[NormalizedExtraction]) -> Dict[str, NormalizedJobData]:
    """One JD per job key (the last one seen wins), resumes in arrival order."""
    jobs: Dict[str, NormalizedJobData] = {}
    for ext in extractions:
        job = jobs.setdefault(ext.job_key, NormalizedJobData(job_key=ext.job_key))
        if ext.type == DocType.JD:
            if job.jd is not None:
                logger.warning("job %s: multiple JD extractions, keeping %s", ext.job_key, ext.item_id)
            job.jd = ext
        else:
            job.resumes.append(ext)
    return jobs


def validate(job_data: NormalizedJobData) -> bool:
    return job_data.jd is not None and len(job_data.resumes) > 0


# ---------- field helpers (prioritised fallback keys) ----------

def _first_text(data: Dict[str, Any], keys: List[str]) -> Optional[str]:
    for k in keys:
        v = data.get(k)
        if isinstance(v, str) and v.strip():
            return v.strip()
    return None


def _collect_list(data: Dict[str, Any], paths: List[Any]) -> List[str]:
    """Gather strings from several candidate fields; a path is a key or a (key, subkey) pair."""
    items: List[str] = []
    for path in paths:
        if isinstance(path, tuple):
            parent = data.get(path[0])
            value = parent.get(path[1]) if isinstance(parent, dict) else None
        else:
            value = data.get(path)
        if isinstance(value, list):
            items.extend(str(s).strip() for s in value if s is not None and not isinstance(s, (dict, list)))
        elif isinstance(value, str):
            items.append(value.strip())
    return uniq_preserve(items)


def extract_candidate_name(resume_data: Dict[str, Any]) -> str:
    return _first_text(resume_data or {}, ["Full_Name", "name", "Name", "candidate_name", "Candidate_Name"]) or UNKNOWN_CANDIDATE


def extract_job_title(jd_data: Dict[str, Any]) -> str:
    return _first_text(jd_data or {}, ["Job_Title", "title", "Title", "job_title", "position"]) or UNKNOWN_POSITION


def extract_skills(resume_data: Dict[str, Any]) -> List[str]:
    return _collect_list(resume_data or {}, [
        ("Skills", "Skills"), "skills", "Skills", "skills_core", "tools_platforms",
        "technical_skills", "Technical_Skills",
    ])


def extract_required_skills(jd_data: Dict[str, Any]) -> List[str]:
    return _collect_list(jd_data or {}, [
        ("Skills", "Skills"), "skills", "Skills", "required_skills", "Required_Skills",
    ])


# ---------- schema detection + adapters ----------

class SourceSchema(str, Enum):
    IDP = "idp"
    SIMPLE = "simple"


_IDP_KEYS = {
    "Job_Title", "Summary", "Skills", "Responsibilities", "Qualifications", "Experience",
    "Full_Name", "Work_Experience", "Education", "skills_core", "total_years_experience",
}


def detect_schema(data: Dict[str, Any]) -> SourceSchema:
    if isinstance(data, dict) and any(k in data for k in _IDP_KEYS):
        return SourceSchema.IDP
    return SourceSchema.SIMPLE


def _nested_list(data: Dict[str, Any], key: str, sub: str) -> List[str]:
    parent = data.get(key)
    value = parent.get(sub) if isinstance(parent, dict) else None
    if isinstance(value, list):
        return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    return []


def _idp_jd(data: Dict[str, Any]) -> JobDescriptionData:
    description = str(data.get("Summary") or "")
    if data.get("Employment_Type"):
        description += f"\n\nEmployment Type: {data['Employment_Type']}"
    travel = data.get("Travel")
    if travel and travel != "Not Found":
        description += f"\nTravel Required: {travel}"
    duties = _nested_list(data, "Responsibilities", "Responsibility_Duties")
    if duties:
        description += "\n\nKey Responsibilities:\n• " + "\n• ".join(duties)
    compliance = _nested_list(data, "Compliance", "Compliance_Regulatory")
    if compliance:
        description += "\n\nCompliance Requirements:\n• " + "\n• ".join(compliance)

    required_exp = _nested_list(data, "Experience", "Required_Experience")
    requirements = uniq_preserve([
        *required_exp,
        *_nested_list(data, "Qualifications", "Qualifications_Required"),
        *_nested_list(data, "Qualifications", "Qualifications_Preferred"),
    ])
    years = years_min_from(requirements)
    education = _nested_list(data, "Education", "Education")
    if not education and isinstance(data.get("Education"), str):
        education = [data["Education"]]

    return JobDescriptionData(
        title=extract_job_title(data),
        description=description.strip(),
        skills=extract_required_skills(data),
        experience_level=str(years) if years is not None else None,
        education="; ".join(education) or None,
        requirements=requirements,
    )


def _simple_jd(data: Dict[str, Any]) -> JobDescriptionData:
    requirements = data.get("requirements") or []
    if isinstance(requirements, str):
        requirements = [requirements]
    level = data.get("experience_level")
    education = data.get("education")
    if isinstance(education, list):
        education = "; ".join(str(e) for e in education if e)
    return JobDescriptionData(
        title=extract_job_title(data),
        description=str(data.get("description") or data.get("summary") or ""),
        skills=extract_required_skills(data),
        experience_level=str(level) if level not in (None, "") else None,
        education=str(education) if education else None,
        requirements=[str(r) for r in requirements if r],
    )


def _opt_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _split_degree(degree: str) -> tuple[str, str]:
    if " in " in degree:
        head, tail = degree.split(" in ", 1)
        return head.strip(), tail.strip()
    return degree.strip(), ""


def _idp_resume(data: Dict[str, Any]) -> ResumeData:
    name = extract_candidate_name(data)
    total_years = parse_years(data.get("total_years_experience"))
    work = [w for w in (data.get("Work_Experience") or []) if isinstance(w, dict)]
    experience: List[ExperienceEntry] = []
    for w in work:
        if total_years > 0:
            years = float(int(total_years // max(1, len(work))))
        else:
            years = estimate_years(w.get("Employment_Dates"))
        duties = w.get("Responsibilities") or []
        experience.append(ExperienceEntry(
            company=str(w.get("Company") or ""),
            position=str(w.get("Job_Title") or ""),
            years=years,
            description=" • ".join(str(d) for d in duties) if isinstance(duties, list) else str(duties),
        ))
    if not experience and total_years > 0:
        experience.append(ExperienceEntry(years=total_years))

    education: List[EducationEntry] = []
    for edu in data.get("Education") or []:
        if not isinstance(edu, dict):
            continue
        degree = str(edu.get("Degree") or "")
        head, field = _split_degree(degree)
        education.append(EducationEntry(degree=head, field=field, institution=str(edu.get("Institution") or "")))

    skills = extract_skills(data)
    years_text = data.get("total_years_experience") or "several"
    focus = ", ".join(skills[:3]) or "relevant fields"
    return ResumeData(
        name=name,
        email=_opt_text(data.get("email") or data.get("Email")),
        phone=_opt_text(data.get("phone") or data.get("Phone")),
        skills=skills,
        experience=experience,
        education=education,
        summary=f"{name} is a professional with {years_text} years of experience in {focus}.",
    )


def _simple_resume(data: Dict[str, Any]) -> ResumeData:
    experience: List[ExperienceEntry] = []
    for e in data.get("experience") or []:
        if not isinstance(e, dict):
            continue
        experience.append(ExperienceEntry(
            company=str(e.get("company") or ""),
            position=str(e.get("position") or e.get("title") or ""),
            years=parse_years(e.get("years")),
            description=str(e.get("description") or ""),
        ))
    education: List[EducationEntry] = []
    for e in data.get("education") or []:
        if isinstance(e, dict):
            education.append(EducationEntry(
                degree=str(e.get("degree") or ""),
                field=str(e.get("field") or ""),
                institution=str(e.get("institution") or ""),
            ))
        elif isinstance(e, str) and e.strip():
            head, field = _split_degree(e)
            education.append(EducationEntry(degree=head, field=field))
    return ResumeData(
        name=extract_candidate_name(data),
        email=_opt_text(data.get("email")),
        phone=_opt_text(data.get("phone")),
        skills=extract_skills(data),
        experience=experience,
        education=education,
        summary=_opt_text(data.get("summary") or data.get("fullText")),
    )


_JD_ADAPTERS: Dict[SourceSchema, Callable[[Dict[str, Any]], JobDescriptionData]] = {
    SourceSchema.IDP: _idp_jd,
    SourceSchema.SIMPLE: _simple_jd,
}

_RESUME_ADAPTERS: Dict[SourceSchema, Callable[[Dict[str, Any]], ResumeData]] = {
    SourceSchema.IDP: _idp_resume,
    SourceSchema.SIMPLE: _simple_resume,
}


def to_job_description(data: Any) -> JobDescriptionData:
    if not isinstance(data, dict):
        return JobDescriptionData()
    return _JD_ADAPTERS[detect_schema(data)](data)


def to_resume(data: Any) -> ResumeData:
    if not isinstance(data, dict):
        return ResumeData()
    return _RESUME_ADAPTERS[detect_schema(data)](data)


__all__ = [
    "UNKNOWN_CANDIDATE", "UNKNOWN_POSITION",
    "ExperienceEntry", "EducationEntry", "JobDescriptionData", "ResumeData",
    "DocType", "RawExtraction", "NormalizedExtraction", "NormalizedJobData",
    "determine_type", "normalize", "group_by_job", "validate",
    "extract_candidate_name", "extract_job_title", "extract_skills", "extract_required_skills",
    "SourceSchema", "detect_schema", "to_job_description", "to_resume",
]
