import asyncio
import random

import pytest

import db
from conftest import exam_row, practice_row
from engines.augmentation import AugmentationFallback
from engines.hints import HintService
from engines.question_source import QuestionSourceAdapter, SourceUnavailable
from engines.registries import ReviewRegistry
from engines.session import IllegalTransition, NoQuestionsAvailable, SessionEngine, SessionPhase
from genai import AugmentationFailed, GenerativeClient
from schemas import QuizConfig


def _engine(user, config, generator, **kwargs):
    kwargs.setdefault("rng", random.Random(7))
    return SessionEngine(
        user,
        config,
        augmentation=AugmentationFallback(generator),
        hints=HintService(generator),
        **kwargs,
    )


async def _answer_all(engine, choose):
    while engine.phase != SessionPhase.SUMMARY:
        engine.submit_answer(choose(engine.current_question))
        await engine.advance()


@pytest.mark.anyio("asyncio")
async def test_practice_shortfall_requests_exact_difference(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(6)])
    engine = _engine(user, QuizConfig(topics=["Direito Administrativo"], count=10), fake_generator)

    await engine.load()

    assert [call["count"] for call in fake_generator.question_calls] == [4]
    assert fake_generator.question_calls[0]["difficulty"] == "Médio"
    assert engine.total == 10
    assert engine.phase == SessionPhase.READY
    assert engine.progress == 0.0


@pytest.mark.anyio("asyncio")
async def test_partial_augmentation_caps_at_available(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(6)])
    fake_generator.questions = [
        {"id": "g-1", "category": "Administrativo", "statement": "G", "options": ["a", "b", "c", "d"], "correct_answer": 0}
    ]
    engine = _engine(user, QuizConfig(topics=["Direito Administrativo"], count=10), fake_generator)

    await engine.load()

    assert engine.total == 7


@pytest.mark.anyio("asyncio")
async def test_failed_augmentation_keeps_pool_questions(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(3)])
    fake_generator.question_error = AugmentationFailed("timeout")
    engine = _engine(user, QuizConfig(count=5), fake_generator)

    await engine.load()

    assert engine.total == 3


@pytest.mark.anyio("asyncio")
async def test_shuffle_truncates_to_requested_count(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(20)])
    engine = _engine(user, QuizConfig(count=5), fake_generator)

    await engine.load()

    ids = [q.id for q in engine.questions]
    assert len(ids) == 5
    assert len(set(ids)) == 5
    assert fake_generator.question_calls == []


@pytest.mark.anyio("asyncio")
async def test_empty_exam_pool_fails_without_augmentation(temp_db, user, fake_generator):
    engine = _engine(user, QuizConfig(count=10, is_exam_mode=True), fake_generator)

    with pytest.raises(NoQuestionsAvailable):
        await engine.load()

    assert engine.phase == SessionPhase.FAILED
    assert fake_generator.question_calls == []
    with pytest.raises(IllegalTransition):
        await engine.load()


@pytest.mark.anyio("asyncio")
async def test_source_failure_allows_retry(temp_db, user, fake_generator):
    class _FlakySource(QuestionSourceAdapter):
        calls = 0

        async def fetch(self, ctx, config):
            self.calls += 1
            if self.calls == 1:
                raise SourceUnavailable("offline")
            return await super().fetch(ctx, config)

    db.upsert_exam_questions([exam_row(1)])
    engine = _engine(user, QuizConfig(is_exam_mode=True, count=3), fake_generator, source=_FlakySource())

    with pytest.raises(SourceUnavailable):
        await engine.load()
    assert engine.phase == SessionPhase.FAILED

    await engine.load()
    assert engine.phase == SessionPhase.READY
    assert engine.total == 1


@pytest.mark.anyio("asyncio")
async def test_first_answer_is_permanent(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(2)])
    engine = _engine(user, QuizConfig(count=2), fake_generator)
    await engine.load()

    first = engine.submit_answer(1)
    second = engine.submit_answer(3)

    assert first.accepted is True
    assert first.correct is True
    assert second.accepted is False
    assert second.commit is None
    assert engine.current_question.user_selected_answer == 1
    assert await first.commit is True
    assert len(db.list_attempts(session_id=engine.session_id)) == 1


@pytest.mark.anyio("asyncio")
async def test_out_of_order_transitions_are_rejected(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(1)])
    engine = _engine(user, QuizConfig(count=1), fake_generator)

    with pytest.raises(IllegalTransition):
        engine.submit_answer(0)

    await engine.load()
    with pytest.raises(IllegalTransition):
        await engine.advance()
    with pytest.raises(ValueError):
        engine.submit_answer(9)


@pytest.mark.anyio("asyncio")
async def test_full_session_scores_once_and_completes_tracking(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(4)])
    engine = _engine(user, QuizConfig(count=4), fake_generator)
    await engine.load()

    picks = iter([1, 0, 1, 2])
    seen_progress = []
    while engine.phase != SessionPhase.SUMMARY:
        seen_progress.append(engine.progress)
        engine.submit_answer(next(picks))
        await engine.advance()
    await engine.drain()

    assert seen_progress == [0.0, 0.25, 0.5, 0.75]
    assert engine.progress == 1.0
    assert engine.summary.score == 2
    assert engine.summary.total == 4
    assert engine.summary is engine.summary
    assert db.get_quiz_session(engine.session_id)["status"] == "completed"
    assert db.get_profile_counters(user.user_id) == {"total_correct": 2, "total_incorrect": 2, "points": 2}
    with pytest.raises(IllegalTransition):
        await engine.advance()


@pytest.mark.anyio("asyncio")
async def test_await_commits_drains_before_advancing(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(i) for i in range(2)])
    engine = _engine(user, QuizConfig(count=2), fake_generator, await_commits=True)
    await engine.load()

    engine.submit_answer(1)
    await engine.advance()

    assert engine.commits.pending == 0
    assert len(db.list_attempts(session_id=engine.session_id)) == 1


@pytest.mark.anyio("asyncio")
async def test_bookmark_on_then_off_ends_unbookmarked(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(1)])
    engine = _engine(user, QuizConfig(count=1), fake_generator)
    await engine.load()

    on, first = engine.toggle_bookmark()
    off, second = engine.toggle_bookmark()
    assert await asyncio.gather(first, second) == [True, True]

    assert (on, off) == (True, False)
    assert engine.current_question.is_marked_for_review is False
    assert db.list_bookmarks(user.user_id) == []


@pytest.mark.anyio("asyncio")
async def test_review_mode_keeps_order_and_writes_nothing(temp_db, user, fake_generator):
    registry = ReviewRegistry()
    source_engine = _engine(user, QuizConfig(count=3), fake_generator)
    db.insert_practice_questions([practice_row(i, category=c) for i, c in enumerate(["Penal", "Constitucional"])])
    await source_engine.load()
    for _ in range(source_engine.total):
        source_engine.toggle_bookmark()
        source_engine.submit_answer(0)
        await source_engine.advance()
    await source_engine.drain()
    counters_before = db.get_profile_counters(user.user_id)
    attempts_before = len(db.list_attempts(user_id=user.user_id))

    preloaded = await registry.list_for_user(user)
    engine = _engine(user, QuizConfig(), fake_generator, preloaded=preloaded)
    await engine.load()
    assert [q.id for q in engine.questions] == [q.id for q in preloaded]
    assert engine.session_id is None

    await _answer_all(engine, lambda question: question.correct_index)
    await engine.drain()

    assert engine.summary.review_mode is True
    assert engine.summary.score == engine.total
    assert db.get_profile_counters(user.user_id) == counters_before
    assert len(db.list_attempts(user_id=user.user_id)) == attempts_before


@pytest.mark.anyio("asyncio")
async def test_hint_and_report_from_session(temp_db, user, fake_generator):
    db.upsert_exam_questions([exam_row(1)])
    engine = _engine(user, QuizConfig(count=1, organizations=["PF"]), fake_generator)
    await engine.load()

    assert await engine.get_hint() == fake_generator.hint
    await engine.report("Gabarito divergente")
    await engine.drain()

    assert engine.current_question.ai_hint == fake_generator.hint
    assert [r["question_id"] for r in db.list_reports("exam")] == ["e-1"]
    assert db.list_reports("practice") == []


@pytest.mark.anyio("asyncio")
async def test_abandon_leaves_pending_writes_running(temp_db, user, fake_generator):
    db.insert_practice_questions([practice_row(1)])
    engine = _engine(user, QuizConfig(count=1), fake_generator)
    await engine.load()

    outcome = engine.submit_answer(0)
    engine.abandon()

    assert await outcome.commit is True
    with pytest.raises(IllegalTransition):
        await engine.advance()


@pytest.mark.anyio("asyncio")
async def test_generator_refusal_still_loads_pool_questions(temp_db, user):
    class _RefusingRequests:
        def post(self, url, json=None, headers=None, timeout=None):
            return _NullContentResponse()

    class _NullContentResponse:
        status_code = 200

        def raise_for_status(self):
            pass

        def json(self):
            return {"choices": [{"message": {"content": None}}]}

    db.insert_practice_questions([practice_row(1)])
    client = GenerativeClient("http://gen.local", http=_RefusingRequests())
    engine = SessionEngine(
        user,
        QuizConfig(count=3),
        augmentation=AugmentationFallback(client),
        hints=HintService(client),
        rng=random.Random(3),
    )

    await engine.load()

    assert engine.phase == SessionPhase.READY
    assert engine.total == 1


@pytest.mark.anyio("asyncio")
async def test_failed_report_write_does_not_break_session(temp_db, user, fake_generator, monkeypatch):
    db.insert_practice_questions([practice_row(1)])
    engine = _engine(user, QuizConfig(count=1), fake_generator)
    await engine.load()

    def _disk_full(*args):
        raise db.StorageError("disk full")

    monkeypatch.setattr(db, "insert_report", _disk_full)

    assert await engine.report("Gabarito errado") is None
    assert engine.submit_answer(1).accepted is True
