"""Shared test fixtures for the Cortex test suite."""

import asyncio
import pytest
import fakeredis
from datetime import datetime, timedelta, timezone

from cortex.constants.pillars import Pillar
from cortex.engine.errors import StoreError
from cortex.engine.orchestrator import DiagnosticFlowOrchestrator
from cortex.engine.questionnaire import default_blueprint
from cortex.engine.stage import Stage
from cortex.models.cycle import CycleStatus, DiagnosticCycle
from cortex.models.protocol_progress import ProtocolProgress
from cortex.store.diagnostic_store import RedisDiagnosticStore


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh async fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeAsyncRedis(decode_responses=True)


@pytest.fixture
def store(r):
    return RedisDiagnosticStore(r)


class FlakyStore:
    """Wraps a store; methods named in ``fail_on`` raise, ``hold_on`` block until released."""

    def __init__(self, inner):
        self._inner = inner
        self.fail_on: set[str] = set()
        self.hold_on: set[str] = set()
        self.release = asyncio.Event()
        self.calls: list[str] = []

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        async def _wrapped(*args, **kwargs):
            self.calls.append(name)
            if name in self.hold_on:
                await self.release.wait()
            if name in self.fail_on:
                raise StoreError("Falha simulada no armazenamento.")
            return await attr(*args, **kwargs)

        return _wrapped


@pytest.fixture
def flaky_store(store):
    return FlakyStore(store)


# ── Time Freezing ───────────────────────────────────────────────────────

@pytest.fixture
def frozen_now():
    """Fixed 'now' for deterministic gate tests: 2026-02-15T12:00:00Z."""
    return datetime(2026, 2, 15, 12, 0, 0, tzinfo=timezone.utc)


class _Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, days: float = 0, hours: float = 0) -> None:
        self.now = self.now + timedelta(days=days, hours=hours)


@pytest.fixture
def clock(frozen_now):
    """Mutable clock injected into orchestrators; ``clock.advance(days=46)``."""
    return _Clock(frozen_now)


# ── Factories ───────────────────────────────────────────────────────────

@pytest.fixture
def make_cycle():
    """Factory fixture for DiagnosticCycle instances.

    Usage:
        cycle = make_cycle(protocol_completed_at="2026-01-01T00:00:00+00:00")
    """
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "cycle_id": f"test-cycle-{_counter}",
            "user_id": "user-1",
            "niche_id": "niche-1",
            "cycle_number": _counter,
            "status": CycleStatus.PHASE1_IN_PROGRESS,
        }
        defaults.update(overrides)
        return DiagnosticCycle(**defaults)

    return _factory


@pytest.fixture
def make_protocol():
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "protocol_id": f"test-protocol-{_counter}",
            "cycle_id": f"test-cycle-{_counter}",
            "user_id": "user-1",
            "niche_id": "niche-1",
        }
        defaults.update(overrides)
        return ProtocolProgress(**defaults)

    return _factory


@pytest.fixture
def blueprint():
    return default_blueprint()


@pytest.fixture
def make_orchestrator(store, clock, blueprint):
    """Factory for orchestrators sharing the test store and clock."""

    def _factory(backing=None, user_id="user-1", niche_id="niche-1"):
        backing = backing or store
        return DiagnosticFlowOrchestrator(
            backing, backing, user_id, niche_id, blueprint=blueprint, clock=clock,
        )

    return _factory


# ── Flow drivers ────────────────────────────────────────────────────────

DEFAULT_PHASE1_SCORES = {
    Pillar.CLARITY: 4,
    Pillar.STRUCTURE: 2,
    Pillar.EXECUTION: 3,
    Pillar.EMOTIONAL: 5,
}


@pytest.fixture
def complete_phase1():
    """Answer every remaining phase 1 question; ``scores`` maps pillar → score."""

    async def _complete(orch, scores=None):
        scores = scores or DEFAULT_PHASE1_SCORES
        while orch.stage == Stage.PHASE1 and orch.current_phase1_question is not None:
            question = orch.current_phase1_question
            assert await orch.save_phase1_answer(scores[question.pillar]), orch.error_message

    return _complete


@pytest.fixture
def complete_phase2():
    """Answer every remaining phase 2 question with ``score``."""

    async def _complete(orch, score=3):
        while orch.stage == Stage.PHASE2:
            assert await orch.save_phase2_answer(score), orch.error_message

    return _complete


@pytest.fixture
def complete_protocol():
    """Start the protocol, fill the reflections and check every action."""

    async def _complete(orch):
        assert await orch.start_protocol(), orch.error_message
        reflections = [f"Reflexão {i + 1}" for i in range(orch.reflection_count)]
        assert await orch.save_protocol_reflections(reflections), orch.error_message
        for block in (1, 2, 3):
            for index in range(3):
                assert await orch.toggle_protocol_action(block, index), orch.error_message

    return _complete


@pytest.fixture
def reach_protocol(make_orchestrator, complete_phase1, complete_phase2):
    """Orchestrator initialized and walked through phase 1 and phase 2."""

    async def _reach(backing=None):
        orch = make_orchestrator(backing)
        assert await orch.initialize()
        await complete_phase1(orch)
        assert await orch.start_phase2(), orch.error_message
        await complete_phase2(orch)
        return orch

    return _reach
