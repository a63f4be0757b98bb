"""
Grading engine tests
LLM path with a fake chat model, response parsing, and the deterministic heuristic.
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from ranker.core.errors import GraderError
from ranker.pipeline.grading import (
    GradingEngine,
    heuristic_grade,
    parse_grading_response,
    prompt_variables,
    required_years,
    skill_overlap,
)
from ranker.pipeline.normalizer import (
    EducationEntry,
    ExperienceEntry,
    JobDescriptionData,
    ResumeData,
    to_job_description,
    to_resume,
)


def _grade(engine, jd, resume):
    return asyncio.run(engine.grade(jd, resume))


def _assert_shape(result):
    assert isinstance(result.final_score, int)
    assert 0 <= result.final_score <= 100
    assert len(result.top_reasons) == 3
    assert all(isinstance(r, str) and r for r in result.top_reasons)


class TestParseGradingResponse:
    def test_plain_json(self):
        result = parse_grading_response('{"score": 82.6, "reasons": ["a", "b", "c"]}')
        assert result.final_score == 83
        assert result.top_reasons == ["a", "b", "c"]
        assert result.source == "llm"

    def test_json_inside_prose_and_fences(self):
        text = 'Sure! ```json\n{"score": 70, "reasons": ["has {braces}", "b"]}\n``` hope that helps'
        result = parse_grading_response(text)
        assert result.final_score == 70
        assert result.top_reasons[0] == "has {braces}"
        assert len(result.top_reasons) == 3

    def test_clamps_and_truncates(self):
        result = parse_grading_response(json.dumps({"score": 140, "reasons": ["1", "2", "3", "4"]}))
        assert result.final_score == 100
        assert result.top_reasons == ["1", "2", "3"]

    def test_negative_score_clamped(self):
        assert parse_grading_response('{"score": -5, "reasons": []}').final_score == 0

    def test_huge_integer_score_clamped(self):
        text = '{"score": 1' + "0" * 400 + ', "reasons": ["a", "b", "c"]}'
        assert parse_grading_response(text).final_score == 100

    @pytest.mark.parametrize("text", [
        "I think this candidate is great.",
        '{"score": "85", "reasons": ["a"]}',
        '{"score": true, "reasons": ["a"]}',
        '{"score": 85, "reasons": "a"}',
        "[1, 2, 3]",
        '{"score": NaN, "reasons": ["a", "b", "c"]}',
        '{"score": Infinity, "reasons": ["a", "b", "c"]}',
        '{"score": 1e400, "reasons": ["a", "b", "c"]}',
    ])
    def test_rejects_unusable_answers(self, text):
        with pytest.raises(GraderError):
            parse_grading_response(text)


class TestHeuristic:
    def test_react_scenario(self):
        jd = JobDescriptionData(title="Frontend", skills=["React", "Node.js"])
        resume = ResumeData(name="Ada", skills=["JavaScript", "React"])
        result = heuristic_grade(jd, resume)
        _assert_shape(result)
        assert result.final_score > 50
        assert any("React" in r for r in result.top_reasons)
        assert result.source == "heuristic"

    def test_deterministic(self, simple_jd, simple_resume):
        jd, resume = to_job_description(simple_jd), to_resume(simple_resume)
        assert heuristic_grade(jd, resume) == heuristic_grade(jd, resume)

    def test_full_marks_breakdown(self, simple_jd, simple_resume):
        # 50 base + 8 (React) + 12 (4y >= 3 required) + 8 (education)
        result = heuristic_grade(to_job_description(simple_jd), to_resume(simple_resume))
        assert result.final_score == 78

    def test_senior_requirement(self):
        jd = JobDescriptionData(experience_level="Senior")
        resume = ResumeData(experience=[ExperienceEntry(years=6)])
        assert heuristic_grade(jd, resume).final_score == 65

    def test_experience_without_requirement(self):
        jd = JobDescriptionData()
        assert heuristic_grade(jd, ResumeData(experience=[ExperienceEntry(years=3)])).final_score == 60
        assert heuristic_grade(jd, ResumeData(experience=[ExperienceEntry(years=1)])).final_score == 55

    def test_skill_bonus_is_capped(self):
        skills = ["a1", "b2", "c3", "d4", "e5", "f6"]
        jd = JobDescriptionData(skills=skills)
        result = heuristic_grade(jd, ResumeData(skills=skills))
        assert result.final_score == 82

    def test_empty_resume_still_has_three_reasons(self):
        result = heuristic_grade(JobDescriptionData(), ResumeData())
        _assert_shape(result)
        assert result.final_score == 50

    def test_education_reason(self):
        resume = ResumeData(education=[EducationEntry(degree="MBA")])
        result = heuristic_grade(JobDescriptionData(), resume)
        assert result.final_score == 58
        assert "MBA" in result.top_reasons[0]

    def test_skill_overlap_either_direction(self):
        assert skill_overlap(["Excel", "SQL"], ["Microsoft Excel", "PostgreSQL"]) == ["Excel", "SQL"]
        assert skill_overlap(["Microsoft Excel"], ["excel"]) == ["Microsoft Excel"]

    @pytest.mark.parametrize("level,years", [
        ("5", 5), ("3+ years", 3), ("Senior", 5), ("Lead engineer", 5),
        ("Mid-level", 3), ("junior", 1), ("Entry", 1), ("", None), ("whatever", None),
    ])
    def test_required_years(self, level, years):
        assert required_years(JobDescriptionData(experience_level=level or None)) == years


class TestGradingEngine:
    def test_no_llm_uses_heuristic(self, simple_jd, simple_resume):
        result = _grade(GradingEngine(None), to_job_description(simple_jd), to_resume(simple_resume))
        _assert_shape(result)
        assert result.source == "heuristic"

    def test_llm_json_answer(self, simple_jd, simple_resume):
        llm = FakeListChatModel(responses=['{"score": 91, "reasons": ["one", "two", "three"]}'])
        result = _grade(GradingEngine(llm), to_job_description(simple_jd), to_resume(simple_resume))
        assert result.final_score == 91
        assert result.top_reasons == ["one", "two", "three"]
        assert result.source == "llm"

    def test_plain_text_answer_falls_back(self, simple_jd, simple_resume):
        llm = FakeListChatModel(responses=["This candidate looks like a strong fit overall."])
        jd, resume = to_job_description(simple_jd), to_resume(simple_resume)
        result = _grade(GradingEngine(llm), jd, resume)
        _assert_shape(result)
        assert result == heuristic_grade(jd, resume)

    @pytest.mark.parametrize("score", ["NaN", "Infinity", "-Infinity", "1e400"])
    def test_non_finite_score_falls_back(self, score, simple_jd, simple_resume):
        llm = FakeListChatModel(responses=['{"score": ' + score + ', "reasons": ["a", "b", "c"]}'])
        jd, resume = to_job_description(simple_jd), to_resume(simple_resume)
        result = _grade(GradingEngine(llm), jd, resume)
        _assert_shape(result)
        assert result == heuristic_grade(jd, resume)

    def test_llm_exception_falls_back(self, simple_jd, simple_resume):
        llm = Mock()
        llm.ainvoke = AsyncMock(side_effect=ConnectionError("network down"))
        result = _grade(GradingEngine(llm), to_job_description(simple_jd), to_resume(simple_resume))
        _assert_shape(result)
        assert result.source == "heuristic"

    def test_llm_timeout_falls_back(self, simple_jd, simple_resume):
        async def _slow(messages):
            await asyncio.sleep(1)
            return Mock(content='{"score": 99, "reasons": ["a", "b", "c"]}')

        llm = Mock()
        llm.ainvoke = _slow
        result = _grade(GradingEngine(llm, timeout_seconds=0.01), to_job_description(simple_jd), to_resume(simple_resume))
        assert result.source == "heuristic"

    def test_prompt_carries_job_and_candidate(self, simple_jd, simple_resume):
        llm = Mock()
        llm.ainvoke = AsyncMock(return_value=Mock(content='{"score": 60, "reasons": ["a", "b", "c"]}'))
        _grade(GradingEngine(llm), to_job_description(simple_jd), to_resume(simple_resume))
        messages = llm.ainvoke.call_args.args[0]
        user_text = messages[-1].content
        assert "Frontend Engineer" in user_text
        assert "Ada Park" in user_text
        assert '"score"' in user_text

    def test_prompt_variables_fill_gaps(self):
        variables = prompt_variables(JobDescriptionData(), ResumeData())
        assert variables["jd_skills"] == "Not specified"
        assert variables["cv_experience"] == "No experience listed"
