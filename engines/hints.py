"""Study hints generated on demand and cached per question."""

from __future__ import annotations

import asyncio
import logging

import db
from engines.commits import CommitLog
from genai import GenerativeClient, HintGenerationFailed
from schemas import Question, UserContext

_LOGGER = logging.getLogger(__name__)

HINT_FAILURE_MESSAGE = "Could not generate the commentary right now."


class HintService:
    def __init__(self, client: GenerativeClient | None = None, db_module=db) -> None:
        self._client = client or GenerativeClient()
        self._db = db_module

    async def get_hint(
        self,
        ctx: UserContext,
        question: Question,
        review_mode: bool = False,
        exam_pool: bool = False,
        commits: CommitLog | None = None,
    ) -> str:
        """Return the cached hint or generate one.

        Failures return ``HINT_FAILURE_MESSAGE`` and leave the cache empty so
        the next call tries again.
        """

        if question.ai_hint:
            return question.ai_hint

        try:
            hint = await self._client.generate_study_hint(question.topic, question.statement)
        except HintGenerationFailed as exc:
            _LOGGER.warning("Hint generation for %s failed: %s", question.id, exc)
            return HINT_FAILURE_MESSAGE

        question.ai_hint = hint
        write = self._persist(ctx, question.id, hint, review_mode, exam_pool)
        if write is not None:
            if commits is not None:
                commits.spawn(write, f"hint:{question.id}")
            else:
                await write
        return hint

    def _persist(self, ctx: UserContext, question_id: str, hint: str, review_mode: bool, exam_pool: bool):
        if review_mode:
            return self._store(self._db.update_bookmark_hint, ctx.user_id, question_id, hint)
        if exam_pool:
            # exam pool rows are curated and read-only
            return None
        return self._store(self._db.update_practice_hint, question_id, hint)

    async def _store(self, func, *args) -> bool:
        try:
            await asyncio.to_thread(func, *args)
        except db.StorageError:
            _LOGGER.warning("Could not persist hint", exc_info=True)
            return False
        return True
