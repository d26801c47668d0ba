import pytest

import db
from conftest import exam_row, practice_row
from engines.question_source import EXAM_POOL, PRACTICE_POOL, QuestionSourceAdapter, SourceUnavailable
from schemas import QuizConfig


class _BrokenDb:
    StorageError = db.StorageError

    def create_quiz_session(self, *args):
        raise db.StorageError("disk I/O error")


def test_pool_selection():
    assert QuestionSourceAdapter.pool_for(QuizConfig()) == PRACTICE_POOL
    assert QuestionSourceAdapter.pool_for(QuizConfig(is_exam_mode=True)) == EXAM_POOL
    assert QuestionSourceAdapter.pool_for(QuizConfig(boards=["FGV"])) == EXAM_POOL
    assert QuestionSourceAdapter.pool_for(QuizConfig(organizations=["PF"])) == EXAM_POOL


@pytest.mark.anyio("asyncio")
async def test_fetch_practice_pool_matches_slug_spellings(temp_db, user):
    db.insert_practice_questions(
        [
            practice_row(1, category="Constitucional"),
            practice_row(2, category="constitucional"),
            practice_row(3, category="Penal"),
        ]
    )
    config = QuizConfig(topics=["Direito Constitucional"], count=5)

    result = await QuestionSourceAdapter().fetch(user, config)

    assert result.pool == PRACTICE_POOL
    assert sorted(row["id"] for row in result.records) == ["p-1", "p-2"]
    session = db.get_quiz_session(result.session_id)
    assert session["status"] == "in_progress"
    assert session["requested_count"] == 5
    assert session["topics"] == ["Direito Constitucional"]


@pytest.mark.anyio("asyncio")
async def test_fetch_exam_pool_registers_unfiltered_label(temp_db, user):
    db.upsert_exam_questions([exam_row(1), exam_row(2, board="Cebraspe")])

    result = await QuestionSourceAdapter().fetch(user, QuizConfig(boards=["FGV"]))

    assert result.pool == EXAM_POOL
    assert [row["id"] for row in result.records] == ["e-1"]
    assert db.get_quiz_session(result.session_id)["topics"] == ["General/Random"]


@pytest.mark.anyio("asyncio")
async def test_fetch_surfaces_storage_failures(user):
    with pytest.raises(SourceUnavailable):
        await QuestionSourceAdapter(_BrokenDb()).fetch(user, QuizConfig())


@pytest.mark.anyio("asyncio")
async def test_complete_marks_session(temp_db, user):
    adapter = QuestionSourceAdapter()
    result = await adapter.fetch(user, QuizConfig())

    assert await adapter.complete(result.session_id) is True
    assert db.get_quiz_session(result.session_id)["status"] == "completed"


@pytest.mark.anyio("asyncio")
async def test_available_filters(temp_db):
    db.insert_practice_questions([practice_row(1, area="Fiscal"), practice_row(2, area="Controle")])
    db.upsert_exam_questions([exam_row(1)])
    adapter = QuestionSourceAdapter()

    practice = await adapter.available_filters()
    assert practice["areas"] == ["Controle", "Fiscal"]
    assert "Direito Penal" in practice["topics"]

    exam = await adapter.available_filters(exam_mode=True)
    assert exam == {
        "topics": ["Direito Penal"],
        "areas": ["Policial"],
        "boards": ["FGV"],
        "organizations": ["PF"],
    }
