"""Quiz session state machine.

A session loads a question sequence once, then walks it strictly forward::

    LOADING -> READY(0) -> ANSWERED(0) -> READY(1) -> ... -> SUMMARY

Loading failures end in ``FAILED``. Every write triggered by a transition
(attempts, counters, bookmarks, hints, completion of the tracking record) is
scheduled on the session's ``CommitLog`` instead of being awaited, so the
visible state never waits on storage. Sessions built from a preloaded list of
bookmarked questions run in review mode: nothing is tracked and no progress
is written.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence, Tuple

import db
from engines.augmentation import AugmentationFallback
from engines.commits import CommitLog
from engines.events import json_log
from engines.hints import HintService
from engines.normalizer import QuestionNormalizer
from engines.progress import ProgressRecorder
from engines.question_source import QuestionSourceAdapter, SourceUnavailable
from engines.registries import ReportRegistry, ReviewRegistry
from env_validation import get_env_bool
from schemas import Question, QuizConfig, SessionSummary, UserContext

_LOGGER = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    LOADING = "loading"
    READY = "ready"
    ANSWERED = "answered"
    SUMMARY = "summary"
    FAILED = "failed"


class NoQuestionsAvailable(RuntimeError):
    """Raised when loading yields an empty question sequence."""


class IllegalTransition(RuntimeError):
    """Raised when an operation is not allowed in the current phase."""


@dataclass
class AnswerOutcome:
    accepted: bool
    correct: bool
    commit: Optional["asyncio.Task[bool]"] = None


class SessionEngine:
    """Drive one quiz session for one user."""

    def __init__(
        self,
        ctx: UserContext,
        config: QuizConfig,
        *,
        source: QuestionSourceAdapter | None = None,
        normalizer: QuestionNormalizer | None = None,
        augmentation: AugmentationFallback | None = None,
        progress: ProgressRecorder | None = None,
        reviews: ReviewRegistry | None = None,
        reports: ReportRegistry | None = None,
        hints: HintService | None = None,
        commits: CommitLog | None = None,
        await_commits: bool | None = None,
        rng: random.Random | None = None,
        preloaded: Sequence[Question] | None = None,
        db_module=db,
    ) -> None:
        self.ctx = ctx
        self.config = config
        self.normalizer = normalizer or QuestionNormalizer()
        self.source = source or QuestionSourceAdapter(db_module)
        self.augmentation = augmentation or AugmentationFallback(db_module=db_module)
        self.progress_recorder = progress or ProgressRecorder(db_module)
        self.reviews = reviews or ReviewRegistry(db_module, self.normalizer)
        self.reports = reports or ReportRegistry(db_module)
        self.hints = hints or HintService(db_module=db_module)
        self.commits = commits or CommitLog()
        if await_commits is None:
            await_commits = get_env_bool("QUIZ_AWAIT_COMMITS", False)
        self.await_commits = await_commits
        self._rng = rng or random.Random()
        self._preloaded = list(preloaded) if preloaded is not None else None

        self.phase = SessionPhase.LOADING
        self.session_id: Optional[str] = None
        self.current_index = 0
        self.abandoned = False
        self._questions: List[Question] = []
        self._summary: Optional[SessionSummary] = None
        self._terminal = False

    # ------------------------------------------------------------------
    # read-only views
    # ------------------------------------------------------------------
    @property
    def review_mode(self) -> bool:
        return self._preloaded is not None

    @property
    def questions(self) -> Tuple[Question, ...]:
        return tuple(self._questions)

    @property
    def total(self) -> int:
        return len(self._questions)

    @property
    def current_question(self) -> Optional[Question]:
        if self.phase in (SessionPhase.READY, SessionPhase.ANSWERED):
            return self._questions[self.current_index]
        return None

    @property
    def progress(self) -> float:
        if self.phase == SessionPhase.SUMMARY:
            return 1.0
        if not self._questions:
            return 0.0
        return self.current_index / len(self._questions)

    @property
    def summary(self) -> Optional[SessionSummary]:
        return self._summary

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    async def load(self) -> None:
        """Fetch, top up, normalize, shuffle and truncate the sequence.

        ``SourceUnavailable`` leaves the session FAILED but loadable again;
        ``NoQuestionsAvailable`` is terminal.
        """

        self._ensure_alive()
        if self._terminal or self.phase not in (SessionPhase.LOADING, SessionPhase.FAILED):
            raise IllegalTransition(f"Cannot load a session in phase {self.phase.value}")
        self.phase = SessionPhase.LOADING

        if self.review_mode:
            questions = [question.model_copy() for question in self._preloaded]
        else:
            questions = await self._load_from_pool()

        if not questions:
            self.phase = SessionPhase.FAILED
            self._terminal = True
            json_log(
                _LOGGER,
                "session_empty",
                {"user_id": self.ctx.user_id, "session_id": self.session_id, "review_mode": self.review_mode},
            )
            raise NoQuestionsAvailable("No questions match the selected filters")

        self._questions = questions
        self.current_index = 0
        self.phase = SessionPhase.READY
        json_log(
            _LOGGER,
            "session_started",
            {
                "user_id": self.ctx.user_id,
                "session_id": self.session_id,
                "questions": len(questions),
                "requested": self.config.count,
                "review_mode": self.review_mode,
                "exam_pool": self.config.uses_exam_pool,
            },
        )

    async def _load_from_pool(self) -> List[Question]:
        try:
            fetched = await self.source.fetch(self.ctx, self.config)
        except SourceUnavailable:
            self.phase = SessionPhase.FAILED
            _LOGGER.warning("Question source unavailable for user %s", self.ctx.user_id, exc_info=True)
            raise
        self.session_id = fetched.session_id

        records = list(fetched.records)
        shortfall = self.augmentation.shortfall(self.config, len(records))
        if shortfall:
            records.extend(
                await self.augmentation.request(
                    self.config.topics,
                    self.config.areas,
                    shortfall,
                    self.augmentation.difficulty,
                    self.config.boards,
                    self.config.organizations,
                )
            )

        questions = self.normalizer.normalize_many(records)
        self._rng.shuffle(questions)
        return questions[: self.config.count]

    def submit_answer(self, choice: int) -> AnswerOutcome:
        """Record ``choice`` for the current question; only the first choice counts."""

        self._ensure_alive()
        question = self.current_question
        if self.phase == SessionPhase.ANSWERED:
            return AnswerOutcome(
                accepted=False,
                correct=question.user_selected_answer == question.correct_index,
            )
        if self.phase != SessionPhase.READY:
            raise IllegalTransition(f"Cannot answer in phase {self.phase.value}")
        if not 0 <= int(choice) < len(question.options):
            raise ValueError(f"Choice {choice} is outside the {len(question.options)} options")

        question.user_selected_answer = int(choice)
        self.phase = SessionPhase.ANSWERED
        correct = question.user_selected_answer == question.correct_index

        commit = None
        if not self.review_mode:
            commit = self.commits.spawn(
                self.progress_recorder.record(self.ctx, self.session_id, question, question.user_selected_answer),
                f"attempt:{question.id}",
            )
        json_log(
            _LOGGER,
            "answer_recorded",
            {
                "user_id": self.ctx.user_id,
                "session_id": self.session_id,
                "question_id": question.id,
                "index": self.current_index,
                "correct": correct,
            },
        )
        return AnswerOutcome(accepted=True, correct=correct, commit=commit)

    async def advance(self) -> SessionPhase:
        self._ensure_alive()
        if self.phase != SessionPhase.ANSWERED:
            raise IllegalTransition(f"Cannot advance from phase {self.phase.value}")
        index = self.current_index
        if self.await_commits:
            await self.commits.drain()
            if self.phase != SessionPhase.ANSWERED or self.current_index != index:
                raise IllegalTransition("Session advanced while waiting for pending writes")

        if index + 1 < len(self._questions):
            self.current_index = index + 1
            self.phase = SessionPhase.READY
            return self.phase

        self.phase = SessionPhase.SUMMARY
        score = sum(1 for q in self._questions if q.user_selected_answer == q.correct_index)
        self._summary = SessionSummary(
            score=score,
            total=len(self._questions),
            review_mode=self.review_mode,
            session_id=self.session_id,
        )
        if not self.review_mode and self.session_id:
            self.commits.spawn(self.source.complete(self.session_id), f"complete:{self.session_id}")
        json_log(
            _LOGGER,
            "session_completed",
            {
                "user_id": self.ctx.user_id,
                "session_id": self.session_id,
                "score": score,
                "total": len(self._questions),
                "review_mode": self.review_mode,
            },
        )
        return self.phase

    # ------------------------------------------------------------------
    # side actions on the current question
    # ------------------------------------------------------------------
    def toggle_bookmark(self) -> Tuple[bool, "asyncio.Task[bool]"]:
        question = self._active_question("bookmark")
        marked, write = self.reviews.toggle(self.ctx, question)
        return marked, self.commits.spawn(write, f"bookmark:{question.id}")

    async def report(self, description: str) -> Optional[int]:
        question = self._active_question("report")
        return await self.reports.submit(
            self.ctx, question.id, description, exam_pool=self.config.uses_exam_pool
        )

    async def get_hint(self) -> str:
        question = self._active_question("request a hint")
        return await self.hints.get_hint(
            self.ctx,
            question,
            review_mode=self.review_mode,
            exam_pool=self.config.uses_exam_pool,
            commits=self.commits,
        )

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------
    async def drain(self) -> List[bool]:
        return await self.commits.drain()

    def abandon(self) -> None:
        """Drop the session; pending writes keep running."""
        self.abandoned = True
        _LOGGER.info(
            "Session %s abandoned with %d pending writes", self.session_id, self.commits.pending
        )

    def _ensure_alive(self) -> None:
        if self.abandoned:
            raise IllegalTransition("Session was abandoned")

    def _active_question(self, action: str) -> Question:
        self._ensure_alive()
        question = self.current_question
        if question is None:
            raise IllegalTransition(f"Cannot {action} in phase {self.phase.value}")
        return question
