import json
import os
import sqlite3
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from db_pool import SQLiteConnectionPool

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

REPORT_TABLES = {
    "practice": "practice_reports",
    "exam": "exam_reports",
}

_FILTER_COLUMNS = {
    "practice_questions": {"category", "area", "board", "organization", "difficulty"},
    "exam_questions": {"discipline", "area", "board", "organization"},
}


class StorageError(RuntimeError):
    """Raised when the SQLite store rejects a read or a write."""


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, params)
            con.commit()
            return cur
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    try:
        with _pool.get_connection() as con:
            cur = con.execute(sql, params)
            return cur.fetchall()
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def _decode_json_field(value: Optional[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    value = value.strip()
    if not value:
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    # options / correct_answer are declared without a type so SQLite keeps
    # whatever the writer stored (JSON text, integers, letters).
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS practice_questions (
              id              TEXT PRIMARY KEY,
              category        TEXT,
              area            TEXT,
              statement       TEXT,
              options,
              correct_answer,
              explanation     TEXT,
              ai_hint         TEXT,
              difficulty      TEXT,
              board           TEXT,
              organization    TEXT,
              subtopic        TEXT,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_practice_category ON practice_questions(category, area);

            CREATE TABLE IF NOT EXISTS exam_questions (
              id              TEXT PRIMARY KEY,
              discipline      TEXT,
              area            TEXT,
              board           TEXT,
              organization    TEXT,
              statement       TEXT,
              options,
              correct_answer,
              explanation     TEXT,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_exam_discipline ON exam_questions(discipline, area);

            CREATE TABLE IF NOT EXISTS quiz_sessions (
              id              TEXT PRIMARY KEY,
              user_id         TEXT NOT NULL,
              topics          TEXT NOT NULL,
              requested_count INTEGER NOT NULL,
              pool            TEXT NOT NULL,
              status          TEXT NOT NULL DEFAULT 'in_progress',
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              completed_at    TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_quiz_sessions_user ON quiz_sessions(user_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS attempts (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              session_id      TEXT NOT NULL,
              user_id         TEXT NOT NULL,
              question_id     TEXT NOT NULL,
              was_correct     INTEGER NOT NULL,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_session ON attempts(session_id);
            CREATE INDEX IF NOT EXISTS idx_attempts_user ON attempts(user_id, created_at DESC);

            CREATE TABLE IF NOT EXISTS profiles (
              user_id         TEXT PRIMARY KEY,
              total_correct   INTEGER NOT NULL DEFAULT 0,
              total_incorrect INTEGER NOT NULL DEFAULT 0,
              points          INTEGER NOT NULL DEFAULT 0,
              updated_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS bookmarks (
              user_id               TEXT NOT NULL,
              question_id           TEXT NOT NULL,
              topic                 TEXT,
              statement             TEXT,
              options               TEXT,
              correct_answer_letter TEXT,
              ai_hint               TEXT,
              created_at            TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
              PRIMARY KEY (user_id, question_id)
            );

            CREATE TABLE IF NOT EXISTS practice_reports (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              question_id     TEXT NOT NULL,
              reporter_id     TEXT NOT NULL,
              description     TEXT NOT NULL,
              resolved        INTEGER NOT NULL DEFAULT 0,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS exam_reports (
              id              INTEGER PRIMARY KEY AUTOINCREMENT,
              question_id     TEXT NOT NULL,
              reporter_id     TEXT NOT NULL,
              description     TEXT NOT NULL,
              resolved        INTEGER NOT NULL DEFAULT 0,
              created_at      TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        con.commit()


# -------------- question pools --------------
def _in_filter(column: str, values: Optional[Sequence[str]], clauses: list[str], params: list[Any]) -> None:
    wanted = [str(value) for value in (values or ()) if value is not None and str(value) != ""]
    if not wanted:
        return
    placeholders = ",".join("?" for _ in wanted)
    clauses.append(f"{column} IN ({placeholders})")
    params.extend(wanted)


def _select_pool(table: str, filters: Dict[str, Optional[Sequence[str]]]) -> list[Dict[str, Any]]:
    allowed = _FILTER_COLUMNS[table]
    clauses: list[str] = []
    params: list[Any] = []
    for column, values in filters.items():
        if column not in allowed:
            raise ValueError(f"Unsupported filter column for {table}: {column}")
        _in_filter(column, values, clauses, params)

    where = ""
    if clauses:
        where = " WHERE " + " AND ".join(clauses)
    rows = _query(f"SELECT * FROM {table}{where} ORDER BY created_at, id", params)
    return [dict(row) for row in rows]


def query_practice_questions(
    categories: Optional[Sequence[str]] = None,
    areas: Optional[Sequence[str]] = None,
    boards: Optional[Sequence[str]] = None,
    organizations: Optional[Sequence[str]] = None,
) -> list[Dict[str, Any]]:
    """Return raw practice-pool rows; an empty filter list means no restriction."""
    return _select_pool(
        "practice_questions",
        {"category": categories, "area": areas, "board": boards, "organization": organizations},
    )


def query_exam_questions(
    disciplines: Optional[Sequence[str]] = None,
    areas: Optional[Sequence[str]] = None,
    boards: Optional[Sequence[str]] = None,
    organizations: Optional[Sequence[str]] = None,
) -> list[Dict[str, Any]]:
    """Return raw exam-pool rows; an empty filter list means no restriction."""
    return _select_pool(
        "exam_questions",
        {"discipline": disciplines, "area": areas, "board": boards, "organization": organizations},
    )


def _stored_options(value: Any) -> Any:
    if isinstance(value, (list, dict)):
        return json_dumps(value)
    return value


def insert_practice_questions(items: Iterable[Dict[str, Any]]) -> list[Dict[str, Any]]:
    """Insert practice-pool rows in one transaction and return them as stored."""
    to_store = list(items)
    if not to_store:
        return []

    ids: list[str] = []
    try:
        with _conn() as con:
            for item in to_store:
                item_id = str(item.get("id") or uuid4())
                con.execute(
                    """
                    INSERT INTO practice_questions(
                      id, category, area, statement, options, correct_answer,
                      explanation, ai_hint, difficulty, board, organization, subtopic
                    ) VALUES (?,?,?,?,?,?,?,?,?,?,?,?)
                    """,
                    (
                        item_id,
                        item.get("category"),
                        item.get("area"),
                        item.get("statement"),
                        _stored_options(item.get("options")),
                        item.get("correct_answer"),
                        item.get("explanation"),
                        item.get("ai_hint"),
                        item.get("difficulty"),
                        item.get("board"),
                        item.get("organization"),
                        item.get("subtopic"),
                    ),
                )
                ids.append(item_id)
            con.commit()
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc

    placeholders = ",".join("?" for _ in ids)
    rows = _query(f"SELECT * FROM practice_questions WHERE id IN ({placeholders})", ids)
    by_id = {row["id"]: dict(row) for row in rows}
    return [by_id[item_id] for item_id in ids if item_id in by_id]


def upsert_exam_questions(items: Iterable[Dict[str, Any]]) -> None:
    to_store = list(items)
    if not to_store:
        return

    try:
        with _conn() as con:
            for item in to_store:
                con.execute(
                    """
                    INSERT INTO exam_questions(
                      id, discipline, area, board, organization,
                      statement, options, correct_answer, explanation
                    ) VALUES (?,?,?,?,?,?,?,?,?)
                    ON CONFLICT(id) DO UPDATE SET
                      discipline=excluded.discipline,
                      area=excluded.area,
                      board=excluded.board,
                      organization=excluded.organization,
                      statement=excluded.statement,
                      options=excluded.options,
                      correct_answer=excluded.correct_answer,
                      explanation=excluded.explanation
                    """,
                    (
                        str(item.get("id") or uuid4()),
                        item.get("discipline"),
                        item.get("area"),
                        item.get("board"),
                        item.get("organization"),
                        item.get("statement"),
                        _stored_options(item.get("options")),
                        item.get("correct_answer"),
                        item.get("explanation"),
                    ),
                )
            con.commit()
    except sqlite3.Error as exc:
        raise StorageError(str(exc)) from exc


def get_practice_question(question_id: str) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM practice_questions WHERE id = ?", (question_id,))
    return dict(rows[0]) if rows else None


def update_practice_hint(question_id: str, hint: str) -> None:
    _exec("UPDATE practice_questions SET ai_hint = ? WHERE id = ?", (hint, question_id))


def distinct_values(table: str, column: str) -> list[str]:
    if column not in _FILTER_COLUMNS.get(table, set()):
        raise ValueError(f"Unsupported column for {table}: {column}")
    rows = _query(
        f"SELECT DISTINCT {column} AS value FROM {table} WHERE {column} IS NOT NULL AND {column} != '' ORDER BY {column}"
    )
    return [row["value"] for row in rows]


# -------------- tracking sessions --------------
def create_quiz_session(user_id: str, topics: Sequence[str], requested_count: int, pool: str) -> str:
    session_id = str(uuid4())
    _exec(
        """
        INSERT INTO quiz_sessions(id, user_id, topics, requested_count, pool, status)
        VALUES (?,?,?,?,?, 'in_progress')
        """,
        (session_id, user_id, json_dumps(list(topics)), int(requested_count), pool),
    )
    return session_id


def complete_quiz_session(session_id: str) -> None:
    _exec(
        "UPDATE quiz_sessions SET status = 'completed', completed_at = CURRENT_TIMESTAMP WHERE id = ?",
        (session_id,),
    )


def get_quiz_session(session_id: str) -> Optional[Dict[str, Any]]:
    rows = _query("SELECT * FROM quiz_sessions WHERE id = ?", (session_id,))
    if not rows:
        return None
    session = dict(rows[0])
    session["topics"] = _decode_json_field(session.get("topics")) or []
    return session


# -------------- attempts & counters --------------
def insert_attempt(session_id: str, user_id: str, question_id: str, was_correct: bool) -> int:
    cur = _exec(
        "INSERT INTO attempts(session_id, user_id, question_id, was_correct) VALUES (?,?,?,?)",
        (session_id, user_id, question_id, 1 if was_correct else 0),
    )
    return int(cur.lastrowid)


def list_attempts(
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    limit: int = 500,
) -> list[Dict[str, Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if session_id:
        clauses.append("session_id = ?")
        params.append(session_id)
    if user_id:
        clauses.append("user_id = ?")
        params.append(user_id)
    where = " WHERE " + " AND ".join(clauses) if clauses else ""
    params.append(int(limit))
    rows = _query(f"SELECT * FROM attempts{where} ORDER BY id LIMIT ?", params)
    attempts = []
    for row in rows:
        entry = dict(row)
        entry["was_correct"] = bool(entry["was_correct"])
        attempts.append(entry)
    return attempts


def increment_profile_counters(user_id: str, *, correct: int = 0, incorrect: int = 0, points: int = 0) -> None:
    """Atomically add to the aggregate counters, creating the profile row if needed."""
    _exec(
        """
        INSERT INTO profiles(user_id, total_correct, total_incorrect, points, updated_at)
        VALUES (?, ?, ?, ?, CURRENT_TIMESTAMP)
        ON CONFLICT(user_id) DO UPDATE SET
          total_correct = total_correct + excluded.total_correct,
          total_incorrect = total_incorrect + excluded.total_incorrect,
          points = points + excluded.points,
          updated_at = CURRENT_TIMESTAMP
        """,
        (user_id, int(correct), int(incorrect), int(points)),
    )


def get_profile_counters(user_id: str) -> Dict[str, int]:
    rows = _query(
        "SELECT total_correct, total_incorrect, points FROM profiles WHERE user_id = ?",
        (user_id,),
    )
    if not rows:
        return {"total_correct": 0, "total_incorrect": 0, "points": 0}
    row = rows[0]
    return {
        "total_correct": int(row["total_correct"] or 0),
        "total_incorrect": int(row["total_incorrect"] or 0),
        "points": int(row["points"] or 0),
    }


# -------------- bookmarks --------------
def add_bookmark(snapshot: Dict[str, Any]) -> None:
    _exec(
        """
        INSERT INTO bookmarks(user_id, question_id, topic, statement, options, correct_answer_letter, ai_hint)
        VALUES (?,?,?,?,?,?,?)
        ON CONFLICT(user_id, question_id) DO UPDATE SET
          topic=excluded.topic,
          statement=excluded.statement,
          options=excluded.options,
          correct_answer_letter=excluded.correct_answer_letter,
          ai_hint=excluded.ai_hint
        """,
        (
            snapshot["user_id"],
            snapshot["question_id"],
            snapshot.get("topic"),
            snapshot.get("statement"),
            _stored_options(snapshot.get("options")),
            snapshot.get("correct_answer_letter"),
            snapshot.get("ai_hint"),
        ),
    )


def delete_bookmark(user_id: str, question_id: str) -> None:
    _exec("DELETE FROM bookmarks WHERE user_id = ? AND question_id = ?", (user_id, question_id))


def list_bookmarks(user_id: str) -> list[Dict[str, Any]]:
    rows = _query(
        "SELECT * FROM bookmarks WHERE user_id = ? ORDER BY created_at, question_id",
        (user_id,),
    )
    return [dict(row) for row in rows]


def update_bookmark_hint(user_id: str, question_id: str, hint: str) -> None:
    _exec(
        "UPDATE bookmarks SET ai_hint = ? WHERE user_id = ? AND question_id = ?",
        (hint, user_id, question_id),
    )


# -------------- defect reports --------------
def insert_report(kind: str, question_id: str, reporter_id: str, description: str) -> int:
    table = REPORT_TABLES.get(kind)
    if table is None:
        raise ValueError(f"Unknown report collection: {kind}")
    cur = _exec(
        f"INSERT INTO {table}(question_id, reporter_id, description, resolved) VALUES (?,?,?,0)",
        (question_id, reporter_id, description),
    )
    return int(cur.lastrowid)


def list_reports(kind: str, question_id: Optional[str] = None) -> list[Dict[str, Any]]:
    table = REPORT_TABLES.get(kind)
    if table is None:
        raise ValueError(f"Unknown report collection: {kind}")
    if question_id:
        rows = _query(f"SELECT * FROM {table} WHERE question_id = ? ORDER BY id", (question_id,))
    else:
        rows = _query(f"SELECT * FROM {table} ORDER BY id")
    reports = []
    for row in rows:
        entry = dict(row)
        entry["resolved"] = bool(entry["resolved"])
        reports.append(entry)
    return reports
