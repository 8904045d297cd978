"""FastAPI application with all routes."""
from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from dataclasses import replace
from datetime import datetime

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, HTTPException, Request

from vocab_exam.config import Settings, load_settings, save_settings
from vocab_exam.db import Database
from vocab_exam.models import (
    AnswerEditPolicy,
    AssessmentResult,
    Collection,
    VocabularyItem,
)
from vocab_exam.parsers.vocabulary_parser import import_vocabulary_file
from vocab_exam.scoring import (
    exam_grade,
    format_time,
    is_perfect,
    quiz_rating,
    rank_exam_takers,
    rank_learners,
)
from vocab_exam.session import (
    AssessmentSession,
    CountdownTimer,
    InvalidTransition,
    SessionStatus,
)

app = FastAPI(title="Vocab Exam")

_log = logging.getLogger("vocab_exam.app")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None
_active_sessions: dict[str, dict] = {}  # session_id -> {"session": ..., context}

_bg_tasks: set[asyncio.Task] = set()


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


# ── Import ────────────────────────────────────────────────────────────────


def _auto_import_if_changed(db: Database, settings: Settings) -> None:
    """Re-import vocab files whose mtime has changed since the last import."""
    log = logging.getLogger("vocab_exam.import")
    for vf in settings.resolved_vocab_files():
        if not vf.exists():
            continue
        if db.get_file_mtime(str(vf)) == vf.stat().st_mtime_ns:
            continue
        log.info("Changed: %s, re-importing", vf.name)
        n = len(import_vocabulary_file(db, vf))
        log.info("  %d collections imported", n)


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    if not os.environ.get("VOCAB_EXAM_NO_AUTO_IMPORT"):
        _auto_import_if_changed(_db, _settings)


@app.on_event("shutdown")
async def shutdown():
    for entry in _active_sessions.values():
        entry["session"].close()
    if _db:
        _db.close()


# ── Session plumbing ──────────────────────────────────────────────────────


def _persist_result(entry: dict, result: AssessmentResult) -> None:
    """Save a finished exam. Failures are logged; the user still sees the result."""
    if entry["kind"] != "exam":
        return
    db = get_db()
    user_id = entry.get("user_id")
    if user_id:
        try:
            db.save_exam_result(
                user_id, result, entry["settings"], entry.get("public_exam_id")
            )
            _log.info("Exam result saved for user %s", user_id)
        except Exception as e:
            _log.warning("Saving exam result failed: %s", e)
    if entry.get("public_exam_id"):
        try:
            db.update_exam_stats(
                entry["public_exam_id"], result.correct_count, result.total_questions
            )
        except Exception as e:
            _log.warning("Updating public exam stats failed: %s", e)


def _on_session_finished(entry: dict, result: AssessmentResult) -> None:
    _persist_result(entry, result)
    entry["ended_at"] = time.monotonic()


def _prune_sessions() -> int:
    """Drop finished and errored sessions kept longer than the retention window."""
    retention = get_settings().session_retention_seconds
    now = time.monotonic()
    expired = [
        sid for sid, e in _active_sessions.items()
        if e["ended_at"] is not None and now - e["ended_at"] >= retention
    ]
    for sid in expired:
        _active_sessions.pop(sid)["session"].close()
    if expired:
        _log.info("Evicted %d ended sessions", len(expired))
    return len(expired)


def _register_session(
    session: AssessmentSession,
    kind: str,
    settings: dict,
    user_id: str | None = None,
    public_exam_id: str | None = None,
    collection_ids: list[str] | None = None,
) -> str:
    _prune_sessions()
    session_id = uuid.uuid4().hex
    entry = {
        "session": session,
        "kind": kind,
        "settings": settings,
        "user_id": user_id,
        "public_exam_id": public_exam_id,
        "collection_ids": collection_ids or [],
        # Errored sessions stay readable for the retention window too
        "ended_at": time.monotonic() if session.status == SessionStatus.ERRORED else None,
    }
    session.on_finish(lambda result: _on_session_finished(entry, result))
    _active_sessions[session_id] = entry

    if session.status == SessionStatus.READY:
        session.start()
        timer = CountdownTimer(session, get_settings().tick_interval_seconds)
        task = timer.start()
        _bg_tasks.add(task)
        task.add_done_callback(_bg_tasks.discard)
    return session_id


def _get_entry(session_id: str) -> dict:
    entry = _active_sessions.get(session_id)
    if entry is None:
        raise HTTPException(404, "Session not found")
    return entry


def _question_payload(entry: dict, index: int) -> dict:
    session: AssessmentSession = entry["session"]
    q = session.questions[index]
    selected = session.answers.get(index)
    payload = {
        "index": index,
        "prompt": q.prompt,
        "direction": q.direction.value,
        "options": q.options,
        "selected_index": selected,
    }
    finished = session.status == SessionStatus.FINISHED
    locked = session.answer_policy == AnswerEditPolicy.LOCK_FIRST and selected is not None
    if finished or locked:
        payload["correct_index"] = q.correct_index
        payload["correct_answer"] = q.correct_answer
        payload["example_sentence"] = q.item.example_sentence
    return payload


def _session_state(session_id: str) -> dict:
    entry = _get_entry(session_id)
    session: AssessmentSession = entry["session"]
    state = session.snapshot()
    state["session_id"] = session_id
    state["kind"] = entry["kind"]
    if session.questions:
        state["current_question"] = _question_payload(entry, session.current_index)
        state["grid"] = [
            {"index": i, "answered": i in session.answers}
            for i in range(len(session.questions))
        ]
    if session.result is not None:
        result = session.result
        summary = {
            **result.to_dict(),
            "time_spent": format_time(result.elapsed_seconds),
            "time_limit_minutes": session.config.time_limit_minutes,
        }
        if entry["kind"] == "exam":
            summary["grade"] = exam_grade(result.percentage)
        else:
            summary["rating"] = quiz_rating(result.percentage)
            summary["can_mark_learned"] = is_perfect(result)
            user_id = entry.get("user_id")
            summary["learned"] = bool(user_id) and get_db().is_collection_learned(
                user_id, entry["collection_ids"][0]
            )
        state["summary"] = summary
        state["review"] = [
            _question_payload(entry, i) for i in range(len(session.questions))
        ]
    return state


def _body_int(body: dict, key: str) -> int:
    value = body.get(key)
    if not isinstance(value, int):
        raise HTTPException(400, f"'{key}' must be an integer")
    return value


# ── API: Stats ────────────────────────────────────────────────────────────

@app.get("/api/stats")
async def api_stats():
    stats = get_db().get_stats()
    stats["active_sessions"] = sum(
        1 for e in _active_sessions.values()
        if e["session"].status in (SessionStatus.IN_PROGRESS, SessionStatus.CONFIRMING)
    )
    return stats


# ── API: Import ───────────────────────────────────────────────────────────

@app.post("/api/import")
async def api_import():
    db = get_db()
    total = 0
    for vf in get_settings().resolved_vocab_files():
        if not vf.exists():
            continue
        total += len(import_vocabulary_file(db, vf))
    return {
        "collections_imported": total,
        "total_collections": db.get_collection_count(),
        "total_words": db.get_word_count(),
    }


# ── API: Collections ──────────────────────────────────────────────────────

def _collection_dict(c: Collection, with_words: bool = True) -> dict:
    d = {
        "id": c.id,
        "name": c.name,
        "description": c.description,
        "user_id": c.user_id,
        "username": c.username,
        "visibility": c.visibility,
        "rating": c.rating,
        "usage_count": c.usage_count,
        "tags": c.tags,
        "word_count": len(c.words),
    }
    if with_words:
        d["words"] = [w.to_dict() for w in c.words]
    return d


@app.get("/api/collections")
async def api_collections(user_id: str | None = None):
    return [_collection_dict(c, with_words=False) for c in get_db().get_collections(user_id)]


@app.post("/api/collections")
async def api_create_collection(request: Request):
    body = await request.json()
    name = (body.get("name") or "").strip()
    if not name:
        raise HTTPException(400, "Collection name is required")
    words = [VocabularyItem.from_dict(w) for w in body.get("words", [])]
    words = [w for w in words if w.term and w.meaning]
    collection = Collection(
        id=uuid.uuid4().hex,
        name=name,
        words=words,
        description=body.get("description", ""),
        user_id=body.get("user_id", ""),
        username=body.get("username", ""),
        visibility=body.get("visibility", "private"),
        tags=body.get("tags", []),
    )
    db = get_db()
    db.save_collection(collection)
    return _collection_dict(db.get_collection(collection.id))


@app.get("/api/collections/{collection_id}")
async def api_get_collection(collection_id: str):
    c = get_db().get_collection(collection_id)
    if c is None:
        raise HTTPException(404, "Collection not found")
    return _collection_dict(c)


@app.post("/api/collections/{collection_id}/learned")
async def api_mark_learned(collection_id: str, request: Request):
    body = await request.json()
    user_id = body.get("user_id", "")
    if not user_id:
        raise HTTPException(400, "No user_id provided")
    try:
        count = get_db().mark_collection_learned(user_id, collection_id)
    except KeyError:
        raise HTTPException(404, "Collection not found")
    return {"collection_id": collection_id, "learned": True, "perfect_score_count": count}


# ── API: Practice quiz ────────────────────────────────────────────────────

@app.post("/api/quiz/start")
async def api_quiz_start(request: Request):
    body = await request.json()
    db = get_db()
    s = get_settings()
    collection = db.get_collection(body.get("collection_id", ""))
    if collection is None:
        raise HTTPException(404, "Collection not found")
    try:
        config = s.quiz_config(len(collection.words), body.get("direction"))
    except (TypeError, ValueError) as e:
        raise HTTPException(400, str(e))

    session = AssessmentSession(config, answer_policy=AnswerEditPolicy.LOCK_FIRST)
    session.load(collection.words)
    if session.status == SessionStatus.READY:
        db.increment_usage(collection.id)
    session_id = _register_session(
        session,
        kind="quiz",
        settings={"collection_id": collection.id, "direction": config.direction.value},
        user_id=body.get("user_id"),
        collection_ids=[collection.id],
    )
    state = _session_state(session_id)
    state["auto_advance"] = s.auto_advance
    return state


# ── API: Exams ────────────────────────────────────────────────────────────

@app.post("/api/exam/start")
async def api_exam_start(request: Request):
    body = await request.json()
    db = get_db()
    s = get_settings()
    collection_ids = list(body.get("collection_ids", []))
    try:
        config = s.exam_config(
            word_count=body.get("word_count"),
            variant_count=body.get("variant_count"),
            time_limit_minutes=body.get("time_limit_minutes"),
            direction=body.get("direction"),
        )
    except (TypeError, ValueError) as e:
        raise HTTPException(400, str(e))

    exam_settings = {
        "collection_ids": collection_ids,
        "word_count": config.word_count,
        "variant_count": config.variant_count,
        "time_limit_minutes": config.time_limit_minutes,
        "direction": config.direction.value,
    }
    collections = db.get_collections_by_ids(collection_ids)
    user_id = body.get("user_id")

    public_exam_id = None
    if body.get("is_public") and user_id and collections:
        name = (body.get("name") or "").strip() or f"Exam {datetime.now():%Y-%m-%d %H:%M}"
        try:
            public_exam_id = db.save_public_exam(
                user_id, body.get("username", ""), name, exam_settings,
                collections, body.get("description", ""),
            )
            _log.info("Public exam saved: %s", public_exam_id)
        except Exception as e:
            # Don't block the exam if saving the public copy fails
            _log.warning("Saving public exam failed: %s", e)

    session = AssessmentSession(config)
    session.load_collections(collections, collection_ids)
    session_id = _register_session(
        session,
        kind="exam",
        settings=exam_settings,
        user_id=user_id,
        public_exam_id=public_exam_id,
        collection_ids=collection_ids,
    )
    state = _session_state(session_id)
    state["public_exam_id"] = public_exam_id
    return state


@app.get("/api/exams/public")
async def api_public_exams():
    exams = get_db().get_public_exams()
    for e in exams:
        words = e.pop("embedded_words")
        e["word_count"] = len(words) if words is not None else None
    return exams


@app.post("/api/exams/public/{exam_id}/start")
async def api_public_exam_start(exam_id: str, request: Request):
    body = await request.json() if await request.body() else {}
    db = get_db()
    exam = db.get_public_exam(exam_id)
    if exam is None:
        raise HTTPException(404, "Exam not found")
    saved = exam["settings"]
    try:
        config = get_settings().exam_config(
            word_count=saved.get("word_count"),
            variant_count=saved.get("variant_count"),
            time_limit_minutes=saved.get("time_limit_minutes"),
            direction=saved.get("direction"),
        )
    except (TypeError, ValueError) as e:
        raise HTTPException(400, str(e))

    collection_ids = saved.get("collection_ids", [])
    session = AssessmentSession(config)
    if exam["embedded_words"] is not None:
        session.load(exam["embedded_words"])
    else:
        # Exams saved before word snapshots draw from their collections as they are now
        session.load(db.get_pool(collection_ids) if collection_ids else None)
    session_id = _register_session(
        session,
        kind="exam",
        settings=saved,
        user_id=body.get("user_id"),
        public_exam_id=exam_id,
        collection_ids=collection_ids,
    )
    return _session_state(session_id)


# ── API: Session ──────────────────────────────────────────────────────────

@app.get("/api/session/{session_id}")
async def api_session_state(session_id: str):
    return _session_state(session_id)


@app.post("/api/session/{session_id}/answer")
async def api_session_answer(session_id: str, request: Request):
    body = await request.json()
    entry = _get_entry(session_id)
    session: AssessmentSession = entry["session"]
    question_index = _body_int(body, "question_index")
    option_index = _body_int(body, "option_index")
    try:
        accepted = session.select_answer(question_index, option_index)
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    except IndexError as e:
        raise HTTPException(400, str(e))
    state = _session_state(session_id)
    state["accepted"] = accepted
    if session.answer_policy == AnswerEditPolicy.LOCK_FIRST:
        q = session.questions[question_index]
        state["correct"] = session.answers[question_index] == q.correct_index
    return state


@app.post("/api/session/{session_id}/goto")
async def api_session_goto(session_id: str, request: Request):
    body = await request.json()
    session: AssessmentSession = _get_entry(session_id)["session"]
    try:
        session.go_to(_body_int(body, "index"))
    except IndexError as e:
        raise HTTPException(400, str(e))
    return _session_state(session_id)


@app.post("/api/session/{session_id}/submit")
async def api_session_submit(session_id: str):
    session: AssessmentSession = _get_entry(session_id)["session"]
    try:
        session.request_submit()
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return _session_state(session_id)


@app.post("/api/session/{session_id}/confirm")
async def api_session_confirm(session_id: str):
    session: AssessmentSession = _get_entry(session_id)["session"]
    try:
        session.confirm_submit()
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return _session_state(session_id)


@app.post("/api/session/{session_id}/cancel")
async def api_session_cancel(session_id: str):
    session: AssessmentSession = _get_entry(session_id)["session"]
    try:
        session.cancel_submit()
    except InvalidTransition as e:
        raise HTTPException(409, str(e))
    return _session_state(session_id)


@app.delete("/api/session/{session_id}")
async def api_session_close(session_id: str):
    entry = _active_sessions.pop(session_id, None)
    if entry is None:
        raise HTTPException(404, "Session not found")
    entry["session"].close()
    return {"session_id": session_id, "closed": True}


# ── API: Leaderboard ──────────────────────────────────────────────────────

@app.get("/api/leaderboard")
async def api_leaderboard():
    users = get_db().get_leaderboard_users()
    return {
        "exam_takers": rank_exam_takers(users),
        "learners": rank_learners(users),
    }


@app.get("/api/users/{user_id}/exams")
async def api_user_exams(user_id: str):
    return {"results": get_db().get_exam_results(user_id)}


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await request.json()
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    updates = {k: v for k, v in body.items() if k in known}
    try:
        replace(s, **updates).validate()
    except ValueError as e:
        raise HTTPException(400, str(e))
    for k, v in updates.items():
        setattr(s, k, v)
    save_settings(s)
    return s.to_dict()
