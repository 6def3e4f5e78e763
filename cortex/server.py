"""FastAPI server exposing the diagnostic flow.

One orchestrator session per (user, niche) lives in an in-process registry;
every endpoint returns that session's snapshot. Rejected actions come back
with ``successful: false`` and ``error`` populated.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional

import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from cortex.config.settings import BLUEPRINT_PATH, SESSION_CACHE_SIZE
from cortex.engine.errors import StoreError
from cortex.engine.history import build_cycle_report, build_history_items
from cortex.engine.orchestrator import DiagnosticFlowOrchestrator
from cortex.engine.questionnaire import load_blueprint
from cortex.store.diagnostic_store import RedisDiagnosticStore, _get_redis

logger = logging.getLogger(__name__)

app = FastAPI(title="Cortex", description="Structural diagnostic cycles")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Shared State ─────────────────────────────────────────────────────────

_blueprint = load_blueprint(BLUEPRINT_PATH)
_sessions: OrderedDict[tuple[str, str], DiagnosticFlowOrchestrator] = OrderedDict()


def _get_session(user_id: str, niche_id: str) -> Optional[DiagnosticFlowOrchestrator]:
    session = _sessions.get((user_id, niche_id))
    if session is not None:
        _sessions.move_to_end((user_id, niche_id))
    return session


def _remember(session: DiagnosticFlowOrchestrator) -> None:
    _sessions[(session.user_id, session.niche_id)] = session
    while len(_sessions) > SESSION_CACHE_SIZE:
        (user_id, niche_id), _ = _sessions.popitem(last=False)
        logger.info(f"Session evicted for {user_id}/{niche_id}")


def _store() -> RedisDiagnosticStore:
    return RedisDiagnosticStore(_get_redis())


def _session_not_found(user_id: str, niche_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "Sessão de diagnóstico não encontrada", "user_id": user_id, "niche_id": niche_id},
    )


def _respond(session: DiagnosticFlowOrchestrator, successful: bool) -> dict:
    return {
        "successful": successful,
        "error": None if successful else session.error_message,
        "session": session.snapshot(),
    }


# ── REST Endpoints ───────────────────────────────────────────────────────

@app.get("/api/health")
async def health():
    r = _get_redis()
    try:
        await r.ping()
        redis_ok = True
    except redis.RedisError:
        redis_ok = False

    return {
        "status": "ok",
        "redis": redis_ok,
        "sessions": len(_sessions),
        "blueprint": _blueprint.source,
    }


@app.get("/api/blueprint")
async def get_blueprint():
    return _blueprint.to_dict()


@app.post("/api/diagnostic/{user_id}/{niche_id}/open")
async def open_session(user_id: str, niche_id: str):
    """Create (or re-initialize) the session and resume at the derived stage."""
    session = _get_session(user_id, niche_id)
    if session is None:
        store = _store()
        session = DiagnosticFlowOrchestrator(store, store, user_id, niche_id, blueprint=_blueprint)
        _remember(session)
    successful = await session.initialize()
    if successful:
        logger.info(f"Session opened for {user_id}/{niche_id} at stage {session.stage.value}")
    return _respond(session, successful)


@app.get("/api/diagnostic/{user_id}/{niche_id}")
async def get_session(user_id: str, niche_id: str):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return {"session": session.snapshot()}


class ScoreRequest(BaseModel):
    score: int


@app.post("/api/diagnostic/{user_id}/{niche_id}/phase1/answer")
async def answer_phase1(user_id: str, niche_id: str, req: ScoreRequest):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, await session.save_phase1_answer(req.score))


@app.post("/api/diagnostic/{user_id}/{niche_id}/phase1/result")
async def open_phase1_result(user_id: str, niche_id: str):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, session.open_phase1_result())


class TieBreakRequest(BaseModel):
    critical_pillar: Optional[str] = None
    strong_pillar: Optional[str] = None


@app.post("/api/diagnostic/{user_id}/{niche_id}/tie-break")
async def resolve_tie_break(user_id: str, niche_id: str, req: TieBreakRequest):
    """Select the tied pillars and resolve the tie in one call."""
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    if not session.select_tie_break(req.critical_pillar, req.strong_pillar):
        return _respond(session, False)
    return _respond(session, await session.resolve_tie_break())


@app.post("/api/diagnostic/{user_id}/{niche_id}/phase2/start")
async def start_phase2(user_id: str, niche_id: str):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, await session.start_phase2())


@app.post("/api/diagnostic/{user_id}/{niche_id}/phase2/answer")
async def answer_phase2(user_id: str, niche_id: str, req: ScoreRequest):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, await session.save_phase2_answer(req.score))


@app.post("/api/diagnostic/{user_id}/{niche_id}/phase2/result")
async def open_phase2_result(user_id: str, niche_id: str):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, session.open_phase2_result())


@app.post("/api/diagnostic/{user_id}/{niche_id}/protocol/start")
async def start_protocol(user_id: str, niche_id: str):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, await session.start_protocol())


class ReflectionsRequest(BaseModel):
    reflections: list[str]


@app.post("/api/diagnostic/{user_id}/{niche_id}/protocol/reflections")
async def save_reflections(user_id: str, niche_id: str, req: ReflectionsRequest):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, await session.save_protocol_reflections(req.reflections))


class ToggleActionRequest(BaseModel):
    block: int
    action_index: int


@app.post("/api/diagnostic/{user_id}/{niche_id}/protocol/toggle")
async def toggle_action(user_id: str, niche_id: str, req: ToggleActionRequest):
    session = _get_session(user_id, niche_id)
    if session is None:
        return _session_not_found(user_id, niche_id)
    return _respond(session, await session.toggle_protocol_action(req.block, req.action_index))


@app.get("/api/diagnostic/{user_id}/{niche_id}/history")
async def get_history(user_id: str, niche_id: str):
    store = _store()
    try:
        cycles = await store.list_cycles(user_id, niche_id)
        protocols = await store.list_protocols(user_id, niche_id)
    except StoreError as exc:
        return {"error": str(exc), "items": []}
    return {"items": [item.to_dict() for item in build_history_items(cycles, protocols)]}


@app.get("/api/diagnostic/{user_id}/{niche_id}/report")
async def get_report(user_id: str, niche_id: str):
    store = _store()
    try:
        cycles = await store.list_cycles(user_id, niche_id)
    except StoreError as exc:
        return {"error": str(exc)}
    return build_cycle_report(cycles).to_dict()
