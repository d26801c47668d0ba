# app.py: quiz session API
# - Sessions live in-process, keyed by an opaque session key
# - Persistence runs behind each transition; shutdown drains pending writes

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

import db
from engines.question_source import QuestionSourceAdapter, SourceUnavailable
from engines.registries import ReviewRegistry
from engines.session import IllegalTransition, NoQuestionsAvailable, SessionEngine, SessionPhase
from env_validation import get_env_int
from schemas import QuizConfig, UserContext

logger = logging.getLogger(__name__)

SESSIONS: Dict[str, SessionEngine] = {}
MAX_SESSIONS = max(1, get_env_int("QUIZ_MAX_SESSIONS", 1000))


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        from env_validation import validate_environment
        validate_environment()

        db.init()
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise
    yield
    pending = [engine.drain() for engine in SESSIONS.values()]
    if pending:
        await asyncio.gather(*pending)
    SESSIONS.clear()


app = FastAPI(title="Quiz Sessions", version="1.0.0", lifespan=_lifespan)


# ---------- Request bodies ----------
class StartSessionBody(BaseModel):
    user_id: str = Field(min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None
    config: QuizConfig = Field(default_factory=QuizConfig)
    review: bool = False


class AnswerBody(BaseModel):
    choice: int = Field(ge=0)


class ReportBody(BaseModel):
    description: str


# ---------- Helpers ----------
def _get_session(key: str) -> SessionEngine:
    engine = SESSIONS.get(key)
    if engine is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    return engine


def _store_session(engine: SessionEngine) -> str:
    # oldest first; finished sessions are already gone
    while len(SESSIONS) >= MAX_SESSIONS:
        evicted_key = next(iter(SESSIONS))
        SESSIONS.pop(evicted_key).abandon()
        logger.info("Evicted session %s to stay under %d sessions", evicted_key, MAX_SESSIONS)
    key = uuid4().hex
    SESSIONS[key] = engine
    return key


def _release_if_finished(key: str, engine: SessionEngine) -> None:
    if engine.phase == SessionPhase.SUMMARY:
        SESSIONS.pop(key, None)


def _question_view(engine: SessionEngine) -> Optional[Dict[str, Any]]:
    question = engine.current_question
    if question is None:
        return None
    view = {
        "id": question.id,
        "topic": question.topic,
        "subtopic": question.subtopic,
        "statement": question.statement,
        "options": list(question.options),
        "difficulty": question.difficulty,
        "area": question.area,
        "board": question.board,
        "organization": question.organization,
        "is_marked_for_review": question.is_marked_for_review,
        "ai_hint": question.ai_hint,
        "user_selected_answer": question.user_selected_answer,
    }
    # the answer key is only revealed after answering
    if engine.phase == SessionPhase.ANSWERED:
        view["correct_index"] = question.correct_index
        view["explanation"] = question.explanation
    return view


def _session_view(key: str, engine: SessionEngine) -> Dict[str, Any]:
    summary = engine.summary
    return {
        "session_key": key,
        "session_id": engine.session_id,
        "phase": engine.phase.value,
        "review_mode": engine.review_mode,
        "index": engine.current_index,
        "total": engine.total,
        "progress": engine.progress,
        "question": _question_view(engine),
        "summary": summary.model_dump() if summary else None,
    }


# ---------- Sessions ----------
@app.post("/sessions")
async def start_session(body: StartSessionBody):
    ctx = UserContext(user_id=body.user_id, email=body.email, display_name=body.display_name)
    preloaded = None
    if body.review:
        try:
            preloaded = await ReviewRegistry().list_for_user(ctx)
        except db.StorageError as exc:
            raise HTTPException(status_code=503, detail="Bookmarks unavailable") from exc

    engine = SessionEngine(ctx, body.config, preloaded=preloaded)
    try:
        await engine.load()
    except SourceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except NoQuestionsAvailable as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    key = _store_session(engine)
    return _session_view(key, engine)


@app.get("/sessions/{key}")
def get_session(key: str):
    engine = _get_session(key)
    view = _session_view(key, engine)
    _release_if_finished(key, engine)
    return view


@app.post("/sessions/{key}/answer")
async def answer(key: str, body: AnswerBody):
    engine = _get_session(key)
    try:
        outcome = engine.submit_answer(body.choice)
    except IllegalTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    view = _session_view(key, engine)
    view["accepted"] = outcome.accepted
    view["correct"] = outcome.correct
    return view


@app.post("/sessions/{key}/advance")
async def advance(key: str):
    engine = _get_session(key)
    try:
        await engine.advance()
    except IllegalTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    view = _session_view(key, engine)
    # the summary is delivered with this response
    _release_if_finished(key, engine)
    return view


@app.post("/sessions/{key}/bookmark")
async def bookmark(key: str):
    engine = _get_session(key)
    try:
        marked, _ = engine.toggle_bookmark()
    except IllegalTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"is_marked_for_review": marked}


@app.post("/sessions/{key}/report")
async def report(key: str, body: ReportBody):
    engine = _get_session(key)
    try:
        report_id = await engine.report(body.description)
    except IllegalTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if report_id is None:
        raise HTTPException(status_code=503, detail="Report could not be stored right now")
    return {"status": "ok", "report_id": report_id}


@app.post("/sessions/{key}/hint")
async def hint(key: str):
    engine = _get_session(key)
    try:
        text = await engine.get_hint()
    except IllegalTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return {"hint": text}


@app.delete("/sessions/{key}")
def abandon(key: str):
    engine = SESSIONS.pop(key, None)
    if engine is None:
        raise HTTPException(status_code=404, detail="Unknown session")
    engine.abandon()
    return {"status": "abandoned"}


# ---------- Filters ----------
@app.get("/filters")
async def filters(exam_mode: bool = False) -> Dict[str, List[str]]:
    try:
        return await QuestionSourceAdapter().available_filters(exam_mode=exam_mode)
    except SourceUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
