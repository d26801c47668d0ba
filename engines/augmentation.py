"""Fill practice-pool shortfalls with generated questions."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Sequence

import db
import disciplines
from engines.events import json_log
from genai import AugmentationFailed, GenerativeClient
from schemas import QuizConfig

_LOGGER = logging.getLogger(__name__)


class AugmentationFallback:
    """Request generated questions for a shortfall and try to keep them for reuse."""

    def __init__(
        self,
        client: GenerativeClient | None = None,
        *,
        db_module=db,
        difficulty: str = disciplines.DEFAULT_DIFFICULTY,
    ) -> None:
        self._client = client or GenerativeClient()
        self._db = db_module
        self.difficulty = difficulty

    @staticmethod
    def shortfall(config: QuizConfig, available: int) -> int:
        """Questions still missing; always zero for the exam pool."""

        if config.uses_exam_pool:
            return 0
        return max(0, int(config.count) - int(available))

    async def request(
        self,
        topics: Sequence[str],
        areas: Sequence[str],
        shortfall: int,
        difficulty: str | None = None,
        boards: Sequence[str] = (),
        organizations: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Return raw practice records for up to ``shortfall`` new questions.

        Generation failures are logged and yield an empty list. Stored rows are
        returned when persisting into the practice pool works, otherwise the
        in-memory records are used for this session only.
        """

        if shortfall <= 0:
            return []
        level = difficulty or self.difficulty
        try:
            generated = await self._client.generate_questions(
                list(topics), list(areas), shortfall, level, list(boards), list(organizations)
            )
        except AugmentationFailed as exc:
            _LOGGER.warning("Question augmentation failed: %s", exc)
            json_log(_LOGGER, "augmentation_failed", {"requested": shortfall, "error": str(exc)})
            return []

        if not generated:
            json_log(_LOGGER, "augmentation_empty", {"requested": shortfall})
            return []

        persisted = True
        try:
            stored = await asyncio.to_thread(self._db.insert_practice_questions, generated)
        except db.StorageError:
            _LOGGER.warning("Generated questions kept in memory only", exc_info=True)
            stored = []
            persisted = False

        if persisted and len(stored) == len(generated):
            # stored rows drop the transient discipline tag; category carries it
            records = stored
        else:
            records = generated
            persisted = False

        json_log(
            _LOGGER,
            "augmentation_filled",
            {
                "requested": shortfall,
                "generated": len(generated),
                "persisted": persisted,
                "difficulty": level,
            },
        )
        return records

    async def fill(self, config: QuizConfig, available: int) -> List[Dict[str, Any]]:
        return await self.request(
            config.topics,
            config.areas,
            self.shortfall(config, available),
            self.difficulty,
            config.boards,
            config.organizations,
        )
