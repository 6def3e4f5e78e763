"""Persistence port for the diagnostic flow and its Redis-backed adapter.

Key layout:
  cycle:{cycle_id}              hash   DiagnosticCycle.to_dict()
  cycles:{user_id}:{niche_id}   zset   cycle_id scored by cycle_number
  phase1:{cycle_id}             hash   "{pillar}:{n}" -> score
  phase2:{cycle_id}             hash   "{question_type}:{n}" -> score
  protocol:{cycle_id}           hash   ProtocolProgress.to_dict()
  protocols:{user_id}:{niche_id} set   cycle_ids with a protocol row
  checkpoint:{user_id}:{niche_id} str  CycleCheckpoint JSON (expiring)

Answer hashes are keyed by answer key, so a newer answer for the same
question supersedes the old one.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import uuid4

import redis
import redis.asyncio as aioredis

from cortex.config.settings import CHECKPOINT_TTL_SECONDS, REDIS_URL
from cortex.engine.errors import StoreError
from cortex.models.checkpoint import CycleCheckpoint
from cortex.models.cycle import CycleStatus, DiagnosticCycle
from cortex.models.protocol_progress import DEFAULT_REFLECTION_COUNT, ProtocolProgress

logger = logging.getLogger(__name__)

CYCLE_PREFIX = "cycle:"
CYCLES_INDEX_PREFIX = "cycles:"
PHASE1_PREFIX = "phase1:"
PHASE2_PREFIX = "phase2:"
PROTOCOL_PREFIX = "protocol:"
PROTOCOLS_INDEX_PREFIX = "protocols:"
CHECKPOINT_PREFIX = "checkpoint:"


class DiagnosticStore(Protocol):
    """Read/write operations the orchestrator needs, per entity."""

    async def get_latest_cycle(self, user_id: str, niche_id: str) -> Optional[DiagnosticCycle]: ...

    async def list_cycles(self, user_id: str, niche_id: str) -> list[DiagnosticCycle]: ...

    async def get_cycle(self, cycle_id: str) -> Optional[DiagnosticCycle]: ...

    async def create_cycle(self, user_id: str, niche_id: str, cycle_number: int) -> DiagnosticCycle: ...

    async def update_cycle(self, cycle_id: str, fields: dict) -> DiagnosticCycle: ...

    async def get_phase1_answers(self, cycle_id: str) -> dict[str, int]: ...

    async def save_phase1_answer(self, cycle_id: str, pillar: str, question_number: int, score: int) -> None: ...

    async def get_phase2_answers(self, cycle_id: str) -> dict[str, int]: ...

    async def save_phase2_answer(self, cycle_id: str, question_type: str, question_number: int, score: int) -> None: ...

    async def get_protocol(self, cycle_id: str, reflection_count: int = DEFAULT_REFLECTION_COUNT) -> Optional[ProtocolProgress]: ...

    async def create_protocol(self, cycle: DiagnosticCycle, reflection_count: int = DEFAULT_REFLECTION_COUNT) -> ProtocolProgress: ...

    async def update_protocol(self, cycle_id: str, fields: dict) -> ProtocolProgress: ...

    async def list_protocols(self, user_id: str, niche_id: str) -> list[ProtocolProgress]: ...


class CheckpointStore(Protocol):
    async def load_checkpoint(self, user_id: str, niche_id: str) -> Optional[CycleCheckpoint]: ...

    async def save_checkpoint(self, user_id: str, niche_id: str, checkpoint: CycleCheckpoint) -> None: ...


def _get_redis() -> aioredis.Redis:
    return aioredis.Redis.from_url(REDIS_URL, decode_responses=True)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode(data: dict) -> dict:
    return {
        k.decode() if isinstance(k, bytes) else k:
        v.decode() if isinstance(v, bytes) else v
        for k, v in data.items()
    }


def _to_answers(data: dict) -> dict[str, int]:
    answers = {}
    for key, value in _decode(data).items():
        try:
            answers[key] = int(value)
        except (TypeError, ValueError):
            continue
    return answers


@contextmanager
def _redis_errors(operation: str):
    try:
        yield
    except redis.RedisError as exc:
        logger.error(f"Redis {operation} failed: {exc}")
        raise StoreError("Falha de comunicação com o armazenamento. Tente novamente.") from exc


class RedisDiagnosticStore:
    """``DiagnosticStore`` and ``CheckpointStore`` over ``redis.asyncio``."""

    def __init__(self, r: aioredis.Redis | None = None, checkpoint_ttl: int = CHECKPOINT_TTL_SECONDS):
        self._r = r or _get_redis()
        self._checkpoint_ttl = checkpoint_ttl

    # ── Cycles ────────────────────────────────────────────────────────

    async def _write_cycle(self, cycle: DiagnosticCycle) -> None:
        await self._r.hset(f"{CYCLE_PREFIX}{cycle.cycle_id}", mapping=cycle.to_dict())
        await self._r.zadd(
            f"{CYCLES_INDEX_PREFIX}{cycle.user_id}:{cycle.niche_id}",
            {cycle.cycle_id: cycle.cycle_number},
        )

    async def get_cycle(self, cycle_id: str) -> Optional[DiagnosticCycle]:
        with _redis_errors("get_cycle"):
            data = await self._r.hgetall(f"{CYCLE_PREFIX}{cycle_id}")
        if not data:
            return None
        return DiagnosticCycle.from_dict(_decode(data))

    async def list_cycles(self, user_id: str, niche_id: str) -> list[DiagnosticCycle]:
        """All cycles for the pair, newest (highest cycle number) first."""
        with _redis_errors("list_cycles"):
            ids = await self._r.zrevrange(f"{CYCLES_INDEX_PREFIX}{user_id}:{niche_id}", 0, -1)
        cycles = []
        for cycle_id in ids:
            cycle_id = cycle_id.decode() if isinstance(cycle_id, bytes) else cycle_id
            cycle = await self.get_cycle(cycle_id)
            if cycle:
                cycles.append(cycle)
        return cycles

    async def get_latest_cycle(self, user_id: str, niche_id: str) -> Optional[DiagnosticCycle]:
        with _redis_errors("get_latest_cycle"):
            ids = await self._r.zrevrange(f"{CYCLES_INDEX_PREFIX}{user_id}:{niche_id}", 0, 0)
        if not ids:
            return None
        cycle_id = ids[0].decode() if isinstance(ids[0], bytes) else ids[0]
        return await self.get_cycle(cycle_id)

    async def create_cycle(self, user_id: str, niche_id: str, cycle_number: int) -> DiagnosticCycle:
        cycle = DiagnosticCycle(
            cycle_id=str(uuid4()),
            user_id=user_id,
            niche_id=niche_id,
            cycle_number=cycle_number,
            status=CycleStatus.PHASE1_IN_PROGRESS,
        )
        with _redis_errors("create_cycle"):
            await self._write_cycle(cycle)
        return cycle

    async def update_cycle(self, cycle_id: str, fields: dict) -> DiagnosticCycle:
        cycle = await self.get_cycle(cycle_id)
        if cycle is None:
            raise StoreError("Ciclo diagnóstico não encontrado.")
        updated = cycle.apply({**fields, "updated_at": _now_iso()})
        with _redis_errors("update_cycle"):
            await self._write_cycle(updated)
        return updated

    # ── Answers ───────────────────────────────────────────────────────

    async def get_phase1_answers(self, cycle_id: str) -> dict[str, int]:
        with _redis_errors("get_phase1_answers"):
            return _to_answers(await self._r.hgetall(f"{PHASE1_PREFIX}{cycle_id}"))

    async def save_phase1_answer(self, cycle_id: str, pillar: str, question_number: int, score: int) -> None:
        with _redis_errors("save_phase1_answer"):
            await self._r.hset(f"{PHASE1_PREFIX}{cycle_id}", f"{pillar}:{question_number}", int(score))

    async def get_phase2_answers(self, cycle_id: str) -> dict[str, int]:
        with _redis_errors("get_phase2_answers"):
            return _to_answers(await self._r.hgetall(f"{PHASE2_PREFIX}{cycle_id}"))

    async def save_phase2_answer(self, cycle_id: str, question_type: str, question_number: int, score: int) -> None:
        with _redis_errors("save_phase2_answer"):
            await self._r.hset(f"{PHASE2_PREFIX}{cycle_id}", f"{question_type}:{question_number}", int(score))

    # ── Protocol ──────────────────────────────────────────────────────

    async def get_protocol(self, cycle_id: str, reflection_count: int = DEFAULT_REFLECTION_COUNT) -> Optional[ProtocolProgress]:
        with _redis_errors("get_protocol"):
            data = await self._r.hgetall(f"{PROTOCOL_PREFIX}{cycle_id}")
        if not data:
            return None
        return ProtocolProgress.from_dict(_decode(data), reflection_count)

    async def create_protocol(self, cycle: DiagnosticCycle, reflection_count: int = DEFAULT_REFLECTION_COUNT) -> ProtocolProgress:
        protocol = ProtocolProgress(
            protocol_id=str(uuid4()),
            cycle_id=cycle.cycle_id,
            user_id=cycle.user_id,
            niche_id=cycle.niche_id,
            reflections=[""] * reflection_count,
        )
        with _redis_errors("create_protocol"):
            await self._r.hset(f"{PROTOCOL_PREFIX}{cycle.cycle_id}", mapping=protocol.to_dict())
            await self._r.sadd(f"{PROTOCOLS_INDEX_PREFIX}{cycle.user_id}:{cycle.niche_id}", cycle.cycle_id)
        return protocol

    async def update_protocol(self, cycle_id: str, fields: dict) -> ProtocolProgress:
        protocol = await self.get_protocol(cycle_id)
        if protocol is None:
            raise StoreError("Protocolo não encontrado para este ciclo.")
        reflection_count = len(fields.get("reflections") or protocol.reflections)
        updated = protocol.apply({**fields, "updated_at": _now_iso()})
        with _redis_errors("update_protocol"):
            await self._r.hset(f"{PROTOCOL_PREFIX}{cycle_id}", mapping=updated.to_dict())
        return ProtocolProgress.from_dict(updated.to_dict(), reflection_count)

    async def list_protocols(self, user_id: str, niche_id: str) -> list[ProtocolProgress]:
        with _redis_errors("list_protocols"):
            cycle_ids = await self._r.smembers(f"{PROTOCOLS_INDEX_PREFIX}{user_id}:{niche_id}")
        protocols = []
        for cycle_id in cycle_ids:
            cycle_id = cycle_id.decode() if isinstance(cycle_id, bytes) else cycle_id
            protocol = await self.get_protocol(cycle_id)
            if protocol:
                protocols.append(protocol)
        return protocols

    # ── Checkpoints ───────────────────────────────────────────────────

    async def load_checkpoint(self, user_id: str, niche_id: str) -> Optional[CycleCheckpoint]:
        with _redis_errors("load_checkpoint"):
            raw = await self._r.get(f"{CHECKPOINT_PREFIX}{user_id}:{niche_id}")
        if isinstance(raw, bytes):
            raw = raw.decode()
        return CycleCheckpoint.from_json(raw)

    async def save_checkpoint(self, user_id: str, niche_id: str, checkpoint: CycleCheckpoint) -> None:
        with _redis_errors("save_checkpoint"):
            await self._r.set(
                f"{CHECKPOINT_PREFIX}{user_id}:{niche_id}",
                checkpoint.to_json(),
                ex=self._checkpoint_ttl,
            )
