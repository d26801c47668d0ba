"""Bookmark and defect-report registries."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Awaitable, Dict, List, Optional, Tuple

import db
from engines.normalizer import QuestionNormalizer, index_to_letter
from schemas import BookmarkRecord, DefectReport, Question, UserContext

_LOGGER = logging.getLogger(__name__)


class ReviewRegistry:
    """Mark questions for later review.

    The local flag flips immediately; the matching add or delete runs
    afterwards. Calls for the same question run one at a time in the order
    they were issued, so the last write always matches the visible flag.
    A failed write leaves the flag as the user set it.
    """

    def __init__(self, db_module=db, normalizer: QuestionNormalizer | None = None) -> None:
        self._db = db_module
        self._normalizer = normalizer or QuestionNormalizer()
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = defaultdict(asyncio.Lock)

    def toggle(self, ctx: UserContext, question: Question) -> Tuple[bool, Awaitable[bool]]:
        """Flip the flag and return ``(new_state, write)``.

        ``write`` must be scheduled by the caller. The lock is claimed when
        the coroutine starts, which preserves issue order for tasks spawned
        on the same loop.
        """

        question.is_marked_for_review = not question.is_marked_for_review
        marked = question.is_marked_for_review
        if marked:
            snapshot = BookmarkRecord(
                user_id=ctx.user_id,
                question_id=question.id,
                topic=question.topic,
                statement=question.statement,
                options=list(question.options),
                correct_answer_letter=index_to_letter(question.correct_index),
                ai_hint=question.ai_hint,
            )
            return marked, self._write(ctx, question.id, self._db.add_bookmark, snapshot.model_dump())
        return marked, self._write(ctx, question.id, self._db.delete_bookmark, ctx.user_id, question.id)

    async def _write(self, ctx: UserContext, question_id: str, func, *args) -> bool:
        async with self._locks[(ctx.user_id, question_id)]:
            try:
                await asyncio.to_thread(func, *args)
            except db.StorageError:
                _LOGGER.warning("Bookmark write for %s failed", question_id, exc_info=True)
                return False
        return True

    async def list_for_user(self, ctx: UserContext) -> List[Question]:
        """Bookmarked questions grouped by topic, ready for review mode."""

        rows = await asyncio.to_thread(self._db.list_bookmarks, ctx.user_id)
        grouped: Dict[str, List[Question]] = {}
        for row in rows:
            raw = {
                "id": row.get("question_id"),
                "discipline": row.get("topic"),
                "statement": row.get("statement"),
                "options": row.get("options"),
                "correct_answer": row.get("correct_answer_letter"),
                "ai_hint": row.get("ai_hint"),
                "is_marked_for_review": True,
            }
            question = self._normalizer.normalize(raw)
            grouped.setdefault(question.topic, []).append(question)
        return [question for topic in sorted(grouped) for question in grouped[topic]]


class ReportRegistry:
    """Append defect reports to the practice or exam report collection."""

    def __init__(self, db_module=db) -> None:
        self._db = db_module

    async def submit(
        self, ctx: UserContext, question_id: str, description: str, exam_pool: bool = False
    ) -> Optional[int]:
        """Store a report and return its id, or None when the write failed."""

        text = (description or "").strip()
        if not text:
            raise ValueError("Report description must not be blank")
        report = DefectReport(question_id=question_id, reporter_id=ctx.user_id, description=text)
        kind = "exam" if exam_pool else "practice"
        try:
            report_id = await asyncio.to_thread(
                self._db.insert_report, kind, report.question_id, report.reporter_id, report.description
            )
        except db.StorageError:
            _LOGGER.warning("Could not store %s report for question %s", kind, question_id, exc_info=True)
            return None
        _LOGGER.info("Stored %s report %s for question %s", kind, report_id, question_id)
        return report_id
