"""Seed Redis with a demo user: one finished cycle and one cycle in phase 1.

Run: python -m cortex.scripts.seed_demo
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import redis.asyncio as aioredis

from cortex.constants.pillars import PILLARS
from cortex.engine.questionnaire import default_blueprint
from cortex.engine.scoring import compute_phase1_summary, compute_phase2_summary
from cortex.engine.stage import extract_phase2_scores, to_pillar_score_buckets
from cortex.models.cycle import CycleStatus
from cortex.store.diagnostic_store import (
    CHECKPOINT_PREFIX,
    CYCLE_PREFIX,
    CYCLES_INDEX_PREFIX,
    PHASE1_PREFIX,
    PHASE2_PREFIX,
    PROTOCOL_PREFIX,
    PROTOCOLS_INDEX_PREFIX,
    RedisDiagnosticStore,
    _get_redis,
)

DEMO_USER = "demo-user"
DEMO_NICHE = "demo-niche"

# Per-pillar score patterns for the finished cycle (cycled across questions)
HISTORICAL_SCORES = {
    "clarity": (4, 5, 4),
    "structure": (2, 3, 2),
    "execution": (3, 4, 4),
    "emotional": (5, 5, 6),
}


async def clear_demo(r: aioredis.Redis) -> None:
    """Remove every key belonging to the demo user."""
    index = f"{CYCLES_INDEX_PREFIX}{DEMO_USER}:{DEMO_NICHE}"
    for cycle_id in await r.zrange(index, 0, -1):
        await r.delete(
            f"{CYCLE_PREFIX}{cycle_id}",
            f"{PHASE1_PREFIX}{cycle_id}",
            f"{PHASE2_PREFIX}{cycle_id}",
            f"{PROTOCOL_PREFIX}{cycle_id}",
        )
    await r.delete(
        index,
        f"{PROTOCOLS_INDEX_PREFIX}{DEMO_USER}:{DEMO_NICHE}",
        f"{CHECKPOINT_PREFIX}{DEMO_USER}:{DEMO_NICHE}",
    )


async def seed_finished_cycle(store: RedisDiagnosticStore, now: datetime):
    blueprint = default_blueprint()
    questions = blueprint.phase1_questions()
    cycle = await store.create_cycle(DEMO_USER, DEMO_NICHE, 1)

    answers = {}
    for question in questions:
        pattern = HISTORICAL_SCORES[question.pillar.value]
        score = pattern[(question.question_number - 1) % len(pattern)]
        answers[question.answer_key()] = score
        await store.save_phase1_answer(cycle.cycle_id, question.pillar.value, question.question_number, score)

    phase1 = compute_phase1_summary(to_pillar_score_buckets(questions, answers))
    phase2_questions = blueprint.get_phase2_questions(phase1.critical_pillar)
    phase2_answers = {}
    for index, question in enumerate(phase2_questions):
        score = 2 + index % 3
        phase2_answers[question.answer_key()] = score
        await store.save_phase2_answer(cycle.cycle_id, question.stored_type(), question.question_number, score)
    extraction = extract_phase2_scores(phase2_questions, phase2_answers)
    phase2 = compute_phase2_summary(extraction.technical_scores, extraction.state_scores)

    protocol_done = (now - timedelta(days=60)).isoformat()
    fields = {
        "status": CycleStatus.REEVAL_45_COMPLETED,
        "general_index": phase1.general_index,
        "critical_pillar": phase1.critical_pillar.value,
        "strong_pillar": phase1.strong_pillar.value,
        "phase2_technical_index": phase2.technical_index,
        "phase2_state_index": phase2.state_index,
        "phase2_general_index": phase2.general_index,
        "started_at": (now - timedelta(days=110)).isoformat(),
        "phase1_completed_at": (now - timedelta(days=100)).isoformat(),
        "phase2_completed_at": (now - timedelta(days=98)).isoformat(),
        "protocol_completed_at": protocol_done,
        "reeval_45_completed_at": (now - timedelta(days=12)).isoformat(),
        "reeval_90_completed_at": (now - timedelta(days=5)).isoformat(),
    }
    for pillar in PILLARS:
        fields[f"pillar_{pillar.value}"] = phase1.pillar_percentages[pillar]
    cycle = await store.update_cycle(cycle.cycle_id, fields)

    await store.create_protocol(cycle, blueprint.reflection_count)
    await store.update_protocol(cycle.cycle_id, {
        "reflections": [f"Reflexão de demonstração {i + 1}" for i in range(blueprint.reflection_count)],
        "block1_actions": [True, True, True],
        "block2_actions": [True, True, True],
        "block3_actions": [True, True, True],
        "current_block": 3,
        "completed_at": protocol_done,
    })
    return cycle


async def seed_active_cycle(store: RedisDiagnosticStore):
    questions = default_blueprint().phase1_questions()
    cycle = await store.create_cycle(DEMO_USER, DEMO_NICHE, 2)
    # Halfway through phase 1
    for question in questions[: len(questions) // 2]:
        await store.save_phase1_answer(cycle.cycle_id, question.pillar.value, question.question_number, 4)
    return cycle


async def seed():
    r = _get_redis()
    await clear_demo(r)
    store = RedisDiagnosticStore(r)
    now = datetime.now(timezone.utc)

    finished = await seed_finished_cycle(store, now)
    active = await seed_active_cycle(store)
    print(f"Seeded {DEMO_USER}/{DEMO_NICHE}: cycle {finished.cycle_number} (finished), "
          f"cycle {active.cycle_number} (phase 1 in progress)")
    await r.aclose()


if __name__ == "__main__":
    asyncio.run(seed())
