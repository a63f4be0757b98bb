# backend/ranker/pipeline/grading.py
"""
Grading engine: one JD + one resume -> score 0..100 and exactly 3 reasons.

Primary path asks the LLM for strict JSON; anything that goes wrong there
(no LLM configured, transport error, timeout, non-JSON, wrong field types)
falls back to the deterministic heuristic below. Callers never see a grading
exception.

Entry:
    await GradingEngine(llm).grade(jd, resume) -> GradeResult
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from typing import Any, List, Optional

from pydantic import BaseModel

from ..core.config import HEURISTIC_WEIGHTS, SENIORITY_YEARS
from ..core.errors import GraderError
from ..core.prompts import GRADING_PROMPT
from ..core.utils import clip, json_loose, uniq_preserve
from .normalizer import EducationEntry, ExperienceEntry, JobDescriptionData, ResumeData

logger = logging.getLogger(__name__)

REASON_COUNT = 3

LLM_PADDING = "Additional qualifications and potential for growth in the role"
GENERIC_REASONS = [
    "Professional presentation and communication skills",
    "Background shows potential for growth in the role",
    "Resume reflects transferable experience worth exploring in an interview",
]


class GradeResult(BaseModel):
    final_score: int
    top_reasons: List[str]
    source: str  # "llm" | "heuristic"


def _fit_reasons(reasons: List[str], padding: List[str]) -> List[str]:
    out = [r for r in reasons if r][:REASON_COUNT]
    for p in padding:
        if len(out) >= REASON_COUNT:
            break
        out.append(p)
    while len(out) < REASON_COUNT:
        out.append(padding[-1])
    return out


def _clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


# ---------- LLM response parsing ----------

def parse_grading_response(content: Any) -> GradeResult:
    """Raises GraderError when the response is not a usable {score, reasons} object."""
    text = content if isinstance(content, str) else str(content or "")
    try:
        parsed = json_loose(text)
    except ValueError as e:
        raise GraderError(f"grading response is not JSON: {clip(text, 120)!r}") from e
    if not isinstance(parsed, dict):
        raise GraderError("grading response is not a JSON object")

    score = parsed.get("score")
    reasons = parsed.get("reasons")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not isinstance(reasons, list):
        raise GraderError("grading response has wrong field types")
    if isinstance(score, float) and not math.isfinite(score):
        raise GraderError(f"grading response score is not finite: {score!r}")

    cleaned = [str(r).strip() for r in reasons if r is not None and str(r).strip()]
    return GradeResult(
        final_score=_clamp_score(score),
        top_reasons=_fit_reasons(cleaned, [LLM_PADDING]),
        source="llm",
    )


# ---------- heuristic fallback ----------

def skill_overlap(jd_skills: List[str], resume_skills: List[str]) -> List[str]:
    """JD skills matched by any resume skill (case-insensitive substring either way)."""
    cv = [s.lower() for s in resume_skills if s]
    matches = []
    for skill in jd_skills:
        s = skill.lower()
        if s and any(s in r or r in s for r in cv):
            matches.append(skill)
    return uniq_preserve(matches)


def required_years(jd: JobDescriptionData) -> Optional[int]:
    """Years threshold implied by the JD experience level ("5", "Senior", "3+ years")."""
    level = (jd.experience_level or "").strip().lower()
    if not level:
        return None
    m = re.search(r"\d+", level)
    if m:
        return int(m.group(0))
    for word, years in SENIORITY_YEARS.items():
        if word in level:
            return years
    return None


def _format_education(edu: EducationEntry) -> str:
    if edu.degree and edu.field:
        return f"{edu.degree} in {edu.field}"
    return edu.degree or edu.field or "a listed credential"


def _fmt_years(years: float) -> str:
    return str(int(years)) if float(years).is_integer() else f"{years:g}"


def heuristic_grade(jd: JobDescriptionData, resume: ResumeData) -> GradeResult:
    w = HEURISTIC_WEIGHTS
    score = float(w["base"])
    reasons: List[str] = []

    matched = skill_overlap(jd.skills, resume.skills)
    if matched:
        score += min(w["skill_cap"], w["per_skill"] * len(matched))
        reasons.append(f"Strong technical skills match: {', '.join(matched)}")

    years = resume.total_years
    needed = required_years(jd)
    if needed is not None and years >= needed and needed >= 5:
        score += w["experience_senior"]
        reasons.append(f"{_fmt_years(years)} years of experience meets senior requirements")
    elif needed is not None and years >= needed and years > 0:
        score += w["experience_met"]
        reasons.append(f"{_fmt_years(years)} years of experience meets the {needed}+ year requirement")
    elif years >= 3:
        score += w["experience_solid"]
        reasons.append(f"{_fmt_years(years)} years of relevant experience")
    elif years >= 1:
        score += w["experience_some"]
        reasons.append(f"{_fmt_years(years)} years of professional experience")

    if resume.education:
        score += w["education"]
        reasons.append(f"Educational background: {_format_education(resume.education[0])}")

    return GradeResult(
        final_score=_clamp_score(score),
        top_reasons=_fit_reasons(reasons, GENERIC_REASONS),
        source="heuristic",
    )


# ---------- prompt formatting ----------

def _format_experience(experience: List[ExperienceEntry]) -> str:
    if not experience:
        return "No experience listed"
    parts = []
    for e in experience:
        line = f"{e.position or 'Role'} at {e.company or 'unknown company'} ({_fmt_years(e.years)} years)"
        if e.description:
            line += f": {clip(e.description, 400)}"
        parts.append(line)
    return "; ".join(parts)


def _format_education_list(education: List[EducationEntry]) -> str:
    if not education:
        return "No education listed"
    return "; ".join(
        _format_education(e) + (f" from {e.institution}" if e.institution else "") for e in education
    )


def prompt_variables(jd: JobDescriptionData, resume: ResumeData) -> dict:
    return {
        "jd_title": jd.title,
        "jd_description": clip(jd.description, 4000) or "Not specified",
        "jd_skills": ", ".join(jd.skills) or "Not specified",
        "jd_experience_level": jd.experience_level or "Not specified",
        "jd_education": jd.education or "Not specified",
        "jd_requirements": ", ".join(jd.requirements) or "None specified",
        "cv_name": resume.name,
        "cv_email": resume.email or "Not provided",
        "cv_phone": resume.phone or "Not provided",
        "cv_skills": ", ".join(resume.skills) or "Not specified",
        "cv_experience": _format_experience(resume.experience),
        "cv_education": _format_education_list(resume.education),
        "cv_summary": resume.summary or "Not provided",
    }


# ---------- engine ----------

class GradingEngine:
    def __init__(self, llm: Any = None, timeout_seconds: float = 60.0):
        self.llm = llm
        self.timeout_seconds = timeout_seconds

    async def _grade_with_llm(self, jd: JobDescriptionData, resume: ResumeData) -> GradeResult:
        messages = GRADING_PROMPT.format_messages(**prompt_variables(jd, resume))
        try:
            raw = await asyncio.wait_for(self.llm.ainvoke(messages), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise GraderError(f"LLM call timed out after {self.timeout_seconds}s") from e
        except Exception as e:
            raise GraderError(f"LLM call failed: {e}") from e
        content = getattr(raw, "content", raw)
        if isinstance(content, list):
            content = "".join(c.get("text", "") if isinstance(c, dict) else str(c) for c in content)
        return parse_grading_response(content)

    async def grade(self, jd: JobDescriptionData, resume: ResumeData) -> GradeResult:
        if self.llm is None:
            return heuristic_grade(jd, resume)
        try:
            return await self._grade_with_llm(jd, resume)
        except GraderError as e:
            logger.warning("LLM grading failed for %s (%s): %s; using heuristic", resume.name, e.kind.value, e)
            return heuristic_grade(jd, resume)


__all__ = [
    "REASON_COUNT", "GradeResult", "GradingEngine",
    "parse_grading_response", "heuristic_grade", "skill_overlap", "required_years", "prompt_variables",
]
