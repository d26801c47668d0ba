"""Pydantic schemas for canonical quiz records and validated generator output."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

__all__ = [
    "UserContext",
    "QuizConfig",
    "Question",
    "GeneratedQuestion",
    "GeneratedBatch",
    "AttemptRecord",
    "BookmarkRecord",
    "DefectReport",
    "SessionSummary",
    "parse_json_safe",
]


class UserContext(BaseModel):
    """Authenticated caller, created at login and passed into every engine call."""

    user_id: str
    email: str | None = None
    display_name: str | None = None

    model_config = {
        "frozen": True,
    }


class QuizConfig(BaseModel):
    topics: List[str] = Field(
        default_factory=list,
        description="Discipline display names; empty means every discipline.",
    )
    areas: List[str] = Field(
        default_factory=list,
        description="Exam areas (e.g., Policial, Fiscal); empty means every area.",
    )
    boards: List[str] = Field(
        default_factory=list,
        description="Exam boards (bancas). Any value forces the exam pool.",
    )
    organizations: List[str] = Field(
        default_factory=list,
        description="Hiring organizations (órgãos). Any value forces the exam pool.",
    )
    count: int = Field(default=10, ge=1, description="Requested number of questions.")
    is_exam_mode: bool = Field(
        default=False,
        description="Use the curated exam pool instead of the practice pool.",
    )

    @property
    def uses_exam_pool(self) -> bool:
        return bool(self.is_exam_mode or self.boards or self.organizations)


class Question(BaseModel):
    id: str
    topic: str = Field(description="Discipline display name.")
    category: str = Field(description="Storage slug of the discipline.")
    statement: str
    options: List[str] = Field(min_length=1)
    correct_index: int = Field(
        description="Zero-based index of the correct option; not bounds-checked against options.",
    )
    explanation: str
    difficulty: str
    subtopic: str | None = None
    user_selected_answer: int | None = None
    is_marked_for_review: bool = False
    ai_hint: str | None = None
    area: str | None = None
    board: str | None = None
    organization: str | None = None


class GeneratedQuestion(BaseModel):
    statement: str
    options: List[str] = Field(min_length=4, max_length=4)
    correct_index: int
    explanation: str
    discipline: str | None = None
    subtopic: str | None = None
    area: str | None = None
    board: str | None = None
    organization: str | None = None


class GeneratedBatch(BaseModel):
    """Envelope returned by the generator; items are validated one by one."""

    questions: List[Dict[str, Any]] = Field(default_factory=list)


class AttemptRecord(BaseModel):
    session_id: str
    user_id: str
    question_id: str
    was_correct: bool
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = {
        "frozen": True,
    }


class BookmarkRecord(BaseModel):
    user_id: str
    question_id: str
    topic: str
    statement: str
    options: List[str]
    correct_answer_letter: str
    ai_hint: str | None = None


class DefectReport(BaseModel):
    question_id: str
    reporter_id: str
    description: str = Field(min_length=1)
    resolved: bool = False


class SessionSummary(BaseModel):
    score: int
    total: int
    review_mode: bool
    session_id: str | None = None


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{" and (idx == 0 or text[idx - 1] != "\\"):
                depth += 1
            elif char == "}" and (idx == 0 or text[idx - 1] != "\\"):
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except Exception:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model`` with a fallback JSON extraction pass.

    Generators frequently wrap their JSON in prose or code fences; the second
    pass pulls the first balanced object out of the surrounding text.
    """

    first_error: Exception | None = None
    try:
        return model.model_validate_json(text)
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, _ = _find_first_json_object(text)
    except ValueError:
        if first_error:
            raise first_error
        raise

    try:
        return model.model_validate_json(snippet)
    except Exception:
        if first_error:
            raise first_error
        raise
