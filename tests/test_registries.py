import asyncio

import pytest

import db
from engines.registries import ReportRegistry, ReviewRegistry
from schemas import Question


def _question(question_id="p-1", topic="Direito Administrativo", **overrides):
    data = dict(
        id=question_id,
        topic=topic,
        category="Administrativo",
        statement=f"Statement {question_id}",
        options=["a", "b", "c", "d"],
        correct_index=2,
        explanation="E",
        difficulty="Médio",
    )
    data.update(overrides)
    return Question(**data)


class _RecordingDb:
    """Slow bookmark store that logs the order in which writes land."""

    StorageError = db.StorageError

    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def add_bookmark(self, snapshot):
        self.calls.append(("add", snapshot["question_id"]))
        if self.fail:
            raise db.StorageError("offline")

    def delete_bookmark(self, user_id, question_id):
        self.calls.append(("delete", question_id))
        if self.fail:
            raise db.StorageError("offline")


@pytest.mark.anyio("asyncio")
async def test_toggle_writes_snapshot_with_answer_letter(temp_db, user):
    registry = ReviewRegistry()
    question = _question(ai_hint="cached")

    marked, write = registry.toggle(user, question)
    assert marked is True
    assert question.is_marked_for_review is True
    assert await write is True

    rows = db.list_bookmarks(user.user_id)
    assert rows[0]["correct_answer_letter"] == "C"
    assert rows[0]["topic"] == "Direito Administrativo"
    assert rows[0]["ai_hint"] == "cached"


@pytest.mark.anyio("asyncio")
async def test_rapid_toggles_end_with_matching_delete(user):
    store = _RecordingDb()
    registry = ReviewRegistry(store)
    question = _question()

    _, first = registry.toggle(user, question)
    _, second = registry.toggle(user, question)
    results = await asyncio.gather(asyncio.ensure_future(first), asyncio.ensure_future(second))

    assert results == [True, True]
    assert question.is_marked_for_review is False
    assert store.calls == [("add", "p-1"), ("delete", "p-1")]


@pytest.mark.anyio("asyncio")
async def test_failed_write_keeps_local_flag(user):
    registry = ReviewRegistry(_RecordingDb(fail=True))
    question = _question()

    marked, write = registry.toggle(user, question)

    assert await write is False
    assert marked is True
    assert question.is_marked_for_review is True


@pytest.mark.anyio("asyncio")
async def test_list_for_user_groups_by_topic(temp_db, user):
    registry = ReviewRegistry()
    for question in (
        _question("p-1", topic="Direito Penal"),
        _question("p-2", topic="Direito Administrativo", ai_hint="hint"),
        _question("p-3", topic="Direito Penal"),
    ):
        _, write = registry.toggle(user, question)
        await write

    questions = await registry.list_for_user(user)

    assert [q.topic for q in questions] == ["Direito Administrativo", "Direito Penal", "Direito Penal"]
    assert all(q.is_marked_for_review for q in questions)
    assert questions[0].ai_hint == "hint"
    assert questions[0].correct_index == 2
    assert questions[0].options == ["a", "b", "c", "d"]


@pytest.mark.anyio("asyncio")
async def test_reports_route_by_pool_and_allow_duplicates(temp_db, user):
    registry = ReportRegistry()

    await registry.submit(user, "p-1", "Alternativa duplicada")
    await registry.submit(user, "p-1", "Alternativa duplicada")
    await registry.submit(user, "e-1", "Gabarito divergente", exam_pool=True)

    assert len(db.list_reports("practice", "p-1")) == 2
    exam = db.list_reports("exam")
    assert exam[0]["reporter_id"] == user.user_id
    assert exam[0]["resolved"] is False


@pytest.mark.anyio("asyncio")
async def test_blank_report_rejected(temp_db, user):
    with pytest.raises(ValueError):
        await ReportRegistry().submit(user, "p-1", "   ")
    assert db.list_reports("practice") == []


@pytest.mark.anyio("asyncio")
async def test_report_write_failure_is_logged_not_raised(user, caplog):
    class _FullDisk:
        def insert_report(self, *args):
            raise db.StorageError("disk full")

    with caplog.at_level("WARNING"):
        report_id = await ReportRegistry(_FullDisk()).submit(user, "p-1", "Gabarito errado")

    assert report_id is None
    assert "Could not store practice report" in caplog.text
