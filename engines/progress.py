"""Persist answered questions and the per-account aggregate counters."""

from __future__ import annotations

import asyncio
import logging

import db
from schemas import AttemptRecord, Question, UserContext

_LOGGER = logging.getLogger(__name__)

POINTS_PER_CORRECT = 1


class ProgressRecorder:
    """Append attempt records and bump profile counters outside review mode."""

    def __init__(self, db_module=db) -> None:
        self._db = db_module

    async def record(
        self,
        ctx: UserContext,
        session_id: str | None,
        question: Question,
        choice: int,
        review_mode: bool = False,
    ) -> bool:
        """Return True once both writes landed; storage failures return False."""

        if review_mode or not session_id:
            return True

        attempt = AttemptRecord(
            session_id=session_id,
            user_id=ctx.user_id,
            question_id=question.id,
            was_correct=choice == question.correct_index,
        )
        try:
            await asyncio.to_thread(
                self._db.insert_attempt,
                attempt.session_id,
                attempt.user_id,
                attempt.question_id,
                attempt.was_correct,
            )
            await asyncio.to_thread(
                self._db.increment_profile_counters,
                ctx.user_id,
                correct=1 if attempt.was_correct else 0,
                incorrect=0 if attempt.was_correct else 1,
                points=POINTS_PER_CORRECT if attempt.was_correct else 0,
            )
        except db.StorageError:
            _LOGGER.warning(
                "Could not record attempt on %s for user %s",
                question.id,
                ctx.user_id,
                exc_info=True,
            )
            return False
        return True
