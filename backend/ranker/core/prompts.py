# backend/ranker/core/prompts.py
"""
Prompt templates used by the grading engine.
- LangChain ChatPromptTemplate; literal JSON braces are escaped so only the
  named variables are substituted
"""

from __future__ import annotations

from typing import List

from langchain_core.prompts import ChatPromptTemplate


def _escape_braces_keep_vars(template: str, keep_vars: List[str]) -> str:
    esc = template.replace("{", "{{").replace("}", "}}")
    for v in keep_vars:
        esc = esc.replace("{{" + v + "}}", "{" + v + "}")
    return esc


GRADER_SYSTEM = (
    "You are an expert resume reviewer and HR professional with 15+ years of experience in "
    "talent acquisition. You match candidates to job requirements and explain your reasoning "
    "precisely. You answer with JSON only."
)

_GRADING_VARS = [
    "jd_title", "jd_description", "jd_skills", "jd_experience_level", "jd_education", "jd_requirements",
    "cv_name", "cv_email", "cv_phone", "cv_skills", "cv_experience", "cv_education", "cv_summary",
]

GRADING_USER = _escape_braces_keep_vars(r"""
Grade this resume against the job description.

JOB DESCRIPTION:
Title: {jd_title}
Description: {jd_description}
Required Skills: {jd_skills}
Experience Level: {jd_experience_level}
Education Requirements: {jd_education}
Additional Requirements: {jd_requirements}

CANDIDATE RESUME:
Name: {cv_name}
Email: {cv_email}
Phone: {cv_phone}
Skills: {cv_skills}
Experience: {cv_experience}
Education: {cv_education}
Summary: {cv_summary}

GRADING INSTRUCTIONS:
1. Score the candidate from 0-100 on how well they match the job requirements.
2. Consider skills alignment, experience level, education and overall qualifications.
3. Give exactly 3 reasons for the score, 15-25 words each, citing specifics from the resume.
4. Be fair but thorough; cover technical and soft skills.

RESPONSE FORMAT (JSON only, no other text):
{
  "score": 85,
  "reasons": [
    "Strong skills alignment: JavaScript, React and Node.js match the core frontend requirements directly",
    "Five years of relevant industry experience exceeds the three year minimum with growing responsibility",
    "Bachelor's degree in Computer Science meets the education requirement and supports the technical depth"
  ]
}
""", _GRADING_VARS)

GRADING_PROMPT = ChatPromptTemplate.from_messages([
    ("system", GRADER_SYSTEM),
    ("user", GRADING_USER),
])


__all__ = ["GRADING_PROMPT", "GRADER_SYSTEM", "GRADING_USER"]
