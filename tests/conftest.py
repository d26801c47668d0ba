import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))

    # Reset the connection pool for each test
    monkeypatch.setattr(db, "_pool", db.SQLiteConnectionPool(str(db_path), max_connections=10))
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def user():
    from schemas import UserContext

    return UserContext(user_id="user-1", email="ana@example.com", display_name="Ana")


class FakeGenerator:
    """Stand-in for ``GenerativeClient`` recording every request."""

    def __init__(self, questions=None, hint="**Fundamentação**\nArt. 37."):
        self.questions = questions
        self.hint = hint
        self.question_calls = []
        self.hint_calls = []
        self.question_error = None
        self.hint_error = None

    async def generate_questions(self, topics, areas, count, difficulty="Médio", boards=(), organizations=()):
        self.question_calls.append(
            {
                "topics": list(topics),
                "areas": list(areas),
                "count": count,
                "difficulty": difficulty,
                "boards": list(boards),
                "organizations": list(organizations),
            }
        )
        if self.question_error is not None:
            raise self.question_error
        if self.questions is not None:
            return [dict(item) for item in self.questions][:count]
        return [
            {
                "id": f"gen-1-{index}",
                "category": "Administrativo",
                "discipline": "Direito Administrativo",
                "statement": f"Generated statement {index}",
                "options": ["A1", "B1", "C1", "D1"],
                "correct_answer": 2,
                "explanation": "Generated explanation",
                "difficulty": difficulty,
                "area": "Geral",
                "board": "Simulada",
                "organization": "Geral",
            }
            for index in range(count)
        ]

    async def generate_study_hint(self, topic, statement):
        self.hint_calls.append((topic, statement))
        if self.hint_error is not None:
            raise self.hint_error
        return self.hint


@pytest.fixture
def fake_generator():
    return FakeGenerator()


def practice_row(index, category="Administrativo", **overrides):
    row = {
        "id": f"p-{index}",
        "category": category,
        "area": "Fiscal",
        "statement": f"Practice statement {index}",
        "options": ["Alpha", "Beta", "Gamma", "Delta"],
        "correct_answer": "B",
        "explanation": f"Because {index}",
        "difficulty": "Fácil",
    }
    row.update(overrides)
    return row


def exam_row(index, discipline="Direito Penal", **overrides):
    row = {
        "id": f"e-{index}",
        "discipline": discipline,
        "area": "Policial",
        "board": "FGV",
        "organization": "PF",
        "statement": f"Exam statement {index}",
        "options": {"a": "X", "b": "Y", "c": "Z", "d": "W"},
        "correct_answer": "c",
        "explanation": "Exam comment",
    }
    row.update(overrides)
    return row
