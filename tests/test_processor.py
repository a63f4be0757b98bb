"""
Job processor tests
Status machine, skip/error policies, rerun, provider fallback and the queue.
"""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest
from langchain_core.language_models.fake_chat_models import FakeListChatModel

from ranker.adapters.idp import FixtureIdpAdapter
from ranker.core.errors import ProviderError
from ranker.db.models import DocumentType, JobStatus
from ranker.pipeline.grading import GradingEngine
from ranker.pipeline.processor import JobProcessor
from ranker.pipeline.reporting import job_rankings


def _processor(store, idp=None, **kwargs):
    return JobProcessor(store, idp or FixtureIdpAdapter(delay_seconds=0), GradingEngine(None), **kwargs)


class _RecordingGrader(GradingEngine):
    """Heuristic grader that records candidate names and can stall each call."""

    def __init__(self, delay: float = 0.0):
        super().__init__(None)
        self.delay = delay
        self.calls = []

    async def grade(self, jd, resume):
        self.calls.append(resume.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        return await super().grade(jd, resume)


class TestRunJob:
    def test_happy_path(self, store, make_job, simple_jd, simple_resume, idp_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume, idp_resume])
        status = asyncio.run(_processor(store).run_job(job.id))
        assert status == JobStatus.READY
        assert store.get_job(job.id).status == JobStatus.READY
        scores = store.list_scores(job.id, "v1")
        assert len(scores) == 2
        for s in scores:
            assert 0 <= s.final_score <= 100
            assert len(json.loads(s.reasons_json)) == 3
            assert s.source == "heuristic"

    def test_zero_parsed_resumes_is_error(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume], parsed=False)
        status = asyncio.run(_processor(store).run_job(job.id))
        assert status == JobStatus.ERROR
        assert store.get_job(job.id).status == JobStatus.ERROR
        assert store.list_scores(job.id) == []

    def test_missing_jd_is_error(self, store, make_job, simple_resume):
        job = make_job("JOB-1", None, [simple_resume])
        assert asyncio.run(_processor(store).run_job(job.id)) == JobStatus.ERROR

    def test_unparsed_resume_is_skipped(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])
        doc, _ = store.upsert_document("resume_extra", DocumentType.RESUME, "JOB-1", "h-extra", "application/json")
        store.upsert_job_resume(job.id, doc.id)
        assert asyncio.run(_processor(store).run_job(job.id)) == JobStatus.READY
        assert len(store.list_scores(job.id)) == 1
        ranking = job_rankings(store, job.id, "v1")
        assert [u["resume_doc_id"] for u in ranking["ungraded"]] == [doc.id]

    def test_non_pending_job_is_skipped(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])
        processor = _processor(store)
        asyncio.run(processor.run_job(job.id))
        assert asyncio.run(processor.run_job(job.id)) == JobStatus.READY
        assert len(store.list_scores(job.id)) == 1

    def test_unknown_job(self, store):
        assert asyncio.run(_processor(store).run_job("missing")) is None

    def test_llm_failure_still_scores(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])
        llm = AsyncMock()
        llm.ainvoke.return_value = type("Msg", (), {"content": "no json here"})()
        processor = JobProcessor(store, FixtureIdpAdapter(delay_seconds=0), GradingEngine(llm))
        assert asyncio.run(processor.run_job(job.id)) == JobStatus.READY
        [score] = store.list_scores(job.id)
        assert score.source == "heuristic"

    @pytest.mark.parametrize("score", ["NaN", "1e400"])
    def test_non_finite_llm_score_still_scores(self, score, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])
        llm = FakeListChatModel(responses=['{"score": ' + score + ', "reasons": ["a", "b", "c"]}'])
        processor = JobProcessor(store, FixtureIdpAdapter(delay_seconds=0), GradingEngine(llm))
        assert asyncio.run(processor.run_job(job.id)) == JobStatus.READY
        [row] = store.list_scores(job.id)
        assert row.source == "heuristic"
        assert 0 <= row.final_score <= 100

    def test_resumes_graded_in_association_order(self, store, make_job, simple_jd, simple_resume, idp_resume):
        third = dict(simple_resume, name="Kim Ortiz")
        job = make_job("JOB-1", simple_jd, [idp_resume, third, simple_resume])
        expected = [r.document.id for r in store.load_job_inputs(job.id).resumes]
        grader = _RecordingGrader()
        store.upsert_score = Mock(wraps=store.upsert_score)
        processor = JobProcessor(store, FixtureIdpAdapter(delay_seconds=0), grader)
        assert asyncio.run(processor.run_job(job.id)) == JobStatus.READY
        assert grader.calls == ["Lee Novak", "Kim Ortiz", "Ada Park"]
        assert [c.args[1] for c in store.upsert_score.call_args_list] == expected


class TestExtraction:
    def _job_with_uploads(self, store):
        job, _ = store.get_or_create_job("JOB-U")
        jd = store.create_document("jd_u", DocumentType.JD, "JOB-U", "h-jd", "application/pdf", "jd.pdf", b"%PDF jd")
        store.set_job_jd(job.id, jd.id)
        for i in range(2):
            doc = store.create_document(
                f"resume_u{i}", DocumentType.RESUME, "JOB-U", f"h{i}", "application/pdf", "r.pdf", b"%%PDF r%d" % i
            )
            store.upsert_job_resume(job.id, doc.id)
        return job, jd

    def test_uploaded_documents_are_extracted(self, store):
        job, jd = self._job_with_uploads(store)
        assert asyncio.run(_processor(store).run_job(job.id)) == JobStatus.READY
        ext = store.find_extraction(jd.id)
        assert ext is not None
        assert ext.idp_request_id == f"fixture_{jd.id}"
        assert len(store.list_scores(job.id)) == 2

    def test_provider_failure_falls_back_to_fixtures(self, store):
        job, _ = self._job_with_uploads(store)
        remote = FixtureIdpAdapter(delay_seconds=0)
        remote.extract_document = AsyncMock(side_effect=ProviderError("503 from provider", status_code=503))
        processor = _processor(store, remote, fallback_idp=FixtureIdpAdapter(delay_seconds=0))
        assert asyncio.run(processor.run_job(job.id)) == JobStatus.READY
        assert remote.extract_document.await_count == 3

    def test_provider_failure_without_fallback_is_error(self, store):
        job, jd = self._job_with_uploads(store)
        remote = FixtureIdpAdapter(delay_seconds=0)
        remote.extract_document = AsyncMock(side_effect=ProviderError("down"))
        assert asyncio.run(_processor(store, remote).run_job(job.id)) == JobStatus.ERROR
        assert store.find_extraction(jd.id) is None

    def test_existing_extraction_skips_provider(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])
        idp = FixtureIdpAdapter(delay_seconds=0)
        idp.extract_document = AsyncMock()
        asyncio.run(_processor(store, idp).run_job(job.id))
        idp.extract_document.assert_not_awaited()


class TestQueue:
    def test_enqueue_and_drain(self, store, make_job, simple_jd, simple_resume):
        jobs = [make_job(f"JOB-{i}", simple_jd, [simple_resume]) for i in range(3)]

        async def _run():
            processor = _processor(store, workers=2)
            for j in jobs:
                processor.enqueue(j.id)
            await processor.join()
            await processor.stop()

        asyncio.run(_run())
        assert all(store.get_job(j.id).status == JobStatus.READY for j in jobs)

    def test_duplicate_enqueue_is_coalesced(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])

        async def _run():
            processor = _processor(store)
            first = processor.enqueue(job.id)
            second = processor.enqueue(job.id)
            await processor.join()
            await processor.stop()
            return first, second

        assert asyncio.run(_run()) == (True, False)
        assert store.get_job(job.id).status == JobStatus.READY

    def test_rerun_is_idempotent(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])

        async def _run():
            processor = _processor(store)
            await processor.run_job(job.id)
            before = store.list_scores(job.id)
            await processor.rerun(job.id)
            await processor.join()
            await processor.rerun(job.id)
            await processor.join()
            await processor.stop()
            return before

        before = asyncio.run(_run())
        after = store.list_scores(job.id)
        assert store.get_job(job.id).status == JobStatus.READY
        assert len(after) == len(before) == 1
        assert after[0].final_score == before[0].final_score

    def test_rerun_twice_while_processing(self, store, make_job, simple_jd, simple_resume, idp_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume, idp_resume])
        grader = _RecordingGrader(delay=0.2)

        async def _run():
            processor = JobProcessor(store, FixtureIdpAdapter(delay_seconds=0), grader)
            processor.enqueue(job.id)
            while not grader.calls:
                await asyncio.sleep(0.01)
            seen = store.get_job(job.id).status
            await processor.rerun(job.id)
            await processor.rerun(job.id)
            await processor.join()
            await processor.stop()
            return seen

        assert asyncio.run(_run()) == JobStatus.PROCESSING
        assert store.get_job(job.id).status == JobStatus.READY
        scores = store.list_scores(job.id, "v1")
        assert sorted(s.resume_doc_id for s in scores) == sorted(r.document.id for r in store.load_job_inputs(job.id).resumes)
        # the interrupted pass stopped early, the follow-up pass graded both
        assert len(grader.calls) == 3

    def test_locks_released_after_drain(self, store, make_job, simple_jd, simple_resume):
        jobs = [make_job(f"JOB-{i}", simple_jd, [simple_resume]) for i in range(2)]

        async def _run():
            processor = _processor(store, workers=2)
            for j in jobs:
                processor.enqueue(j.id)
            await processor.join()
            await processor.stop()
            return processor

        processor = asyncio.run(_run())
        assert processor._locks == {}
        assert processor._lock_users == {}

    def test_schedule_runs_pending_and_reruns_finished(self, store, make_job, simple_jd, simple_resume):
        job = make_job("JOB-1", simple_jd, [simple_resume])

        async def _run():
            processor = _processor(store)
            first = await processor.schedule(job.id)
            await processor.join()
            left_alone = await processor.schedule(job.id, rerun_finished=False)
            again = await processor.schedule(job.id)
            await processor.join()
            await processor.stop()
            return first, left_alone, again

        first, left_alone, again = asyncio.run(_run())
        assert first == JobStatus.PENDING
        assert left_alone == JobStatus.READY
        assert again == JobStatus.PENDING
        assert store.get_job(job.id).status == JobStatus.READY
