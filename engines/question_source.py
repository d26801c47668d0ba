"""Query the practice or exam pool for a quiz configuration."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import db
import disciplines
from schemas import QuizConfig, UserContext

logger = logging.getLogger(__name__)

PRACTICE_POOL = "practice"
EXAM_POOL = "exam"
UNFILTERED_TOPICS_LABEL = "General/Random"


class SourceUnavailable(RuntimeError):
    """Raised when the question pool or the tracking store cannot be reached."""


@dataclass
class FetchResult:
    """Raw records plus the tracking session registered for them."""

    records: List[Dict[str, Any]]
    session_id: str
    pool: str


class QuestionSourceAdapter:
    """Select a pool from the config, register a tracking session and fetch raw rows."""

    def __init__(self, db_module=db) -> None:
        self._db = db_module

    @staticmethod
    def pool_for(config: QuizConfig) -> str:
        return EXAM_POOL if config.uses_exam_pool else PRACTICE_POOL

    async def fetch(self, ctx: UserContext, config: QuizConfig) -> FetchResult:
        """Register a tracking session, then return the matching raw records.

        The result may be shorter than ``config.count`` or empty. Failures of
        either step surface as ``SourceUnavailable``.
        """

        pool = self.pool_for(config)
        topics_label = list(config.topics) or [UNFILTERED_TOPICS_LABEL]
        try:
            session_id = await asyncio.to_thread(
                self._db.create_quiz_session, ctx.user_id, topics_label, config.count, pool
            )
        except db.StorageError as exc:
            raise SourceUnavailable(f"Could not register quiz session: {exc}") from exc

        try:
            if pool == EXAM_POOL:
                records = await asyncio.to_thread(
                    self._db.query_exam_questions,
                    list(config.topics),
                    list(config.areas),
                    list(config.boards),
                    list(config.organizations),
                )
            else:
                records = await asyncio.to_thread(
                    self._db.query_practice_questions,
                    disciplines.slug_variants(config.topics),
                    list(config.areas),
                    list(config.boards),
                    list(config.organizations),
                )
        except db.StorageError as exc:
            raise SourceUnavailable(f"Could not query the {pool} pool: {exc}") from exc

        records = list(records or [])
        logger.info(
            "Fetched %d/%d %s questions for session %s",
            len(records),
            config.count,
            pool,
            session_id,
        )
        return FetchResult(records=records, session_id=session_id, pool=pool)

    async def complete(self, session_id: str) -> bool:
        """Mark the tracking session completed; returns False when the write fails."""

        try:
            await asyncio.to_thread(self._db.complete_quiz_session, session_id)
        except db.StorageError:
            logger.warning("Could not close quiz session %s", session_id, exc_info=True)
            return False
        return True

    async def available_filters(self, exam_mode: bool = False) -> Dict[str, List[str]]:
        """Distinct filter values for setup screens."""

        try:
            if not exam_mode:
                areas = await asyncio.to_thread(self._db.distinct_values, "practice_questions", "area")
                return {"topics": disciplines.topic_names(), "areas": areas}

            filters: Dict[str, List[str]] = {}
            for key, column in (
                ("topics", "discipline"),
                ("areas", "area"),
                ("boards", "board"),
                ("organizations", "organization"),
            ):
                filters[key] = await asyncio.to_thread(self._db.distinct_values, "exam_questions", column)
            return filters
        except db.StorageError as exc:
            raise SourceUnavailable(f"Could not load filter values: {exc}") from exc
