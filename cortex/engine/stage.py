"""Stage derivation — the orchestrator's pure decision logic.

The stage is re-derived from persisted state on every (re)entry, so the
transition table lives here, apart from any I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional

from cortex.constants.pillars import PILLARS, Pillar
from cortex.engine.protocol import has_reflections_completed
from cortex.engine.questionnaire import Phase1Question, Phase2Question
from cortex.engine.scoring import CriticalPointInput
from cortex.engine.temporal_rules import DiagnosticTemporalRules


class Stage(str, Enum):
    PHASE1 = "phase1"
    PHASE1_TIE = "phase1-tie"
    PHASE1_RESULT = "phase1-result"
    PHASE2 = "phase2"
    PHASE2_RESULT = "phase2-result"
    PROTOCOL_REFLECTIONS = "protocol-reflections"
    PROTOCOL_ACTIONS = "protocol-actions"
    BLOCKED_45 = "blocked-45"
    BLOCKED_90 = "blocked-90"
    COMPLETED = "completed"


@dataclass(frozen=True)
class StageDecision:
    stage: Stage
    reevaluation: bool = False


# ── Checkpoint reconciliation ────────────────────────────────────────────

def reconcile_answers(
    stored: Mapping[str, int],
    checkpoint: Optional[Mapping[str, int]],
    checkpoint_cycle_id: Optional[str],
    cycle_id: str,
) -> dict[str, int]:
    """Pick stored answers unless the checkpoint strictly dominates.

    The checkpoint wins only when it belongs to the same cycle and holds
    more answered keys. Equal counts with different keys keep the stored
    side: server-confirmed progress is never discarded.
    """
    if checkpoint and checkpoint_cycle_id == cycle_id and len(checkpoint) > len(stored):
        return dict(checkpoint)
    return dict(stored)


# ── Phase 1 helpers ──────────────────────────────────────────────────────

def next_phase1_question(
    questions: list[Phase1Question],
    answers: Mapping[str, int],
) -> Optional[Phase1Question]:
    for question in questions:
        if not answers.get(question.answer_key()):
            return question
    return None


def is_phase1_complete(total_questions: int, answers: Mapping[str, int]) -> bool:
    return len(answers) >= total_questions


def to_pillar_score_buckets(
    questions: list[Phase1Question],
    answers: Mapping[str, int],
) -> dict[Pillar, list[int]]:
    buckets: dict[Pillar, list[int]] = {p: [] for p in PILLARS}
    for question in questions:
        score = answers.get(question.answer_key())
        if score:
            buckets[question.pillar].append(score)
    return buckets


# ── Phase 2 helpers ──────────────────────────────────────────────────────

@dataclass
class Phase2Extraction:
    technical_scores: list[int] = field(default_factory=list)
    state_scores: list[int] = field(default_factory=list)
    answered_count: int = 0
    critical_point_inputs: list[CriticalPointInput] = field(default_factory=list)


def extract_phase2_scores(
    questions: list[Phase2Question],
    answers: Mapping[str, int],
) -> Phase2Extraction:
    extraction = Phase2Extraction()
    for question in questions:
        key = question.answer_key()
        score = answers.get(key)
        if not score:
            continue
        extraction.answered_count += 1
        if question.question_type == "technical":
            extraction.technical_scores.append(score)
        else:
            extraction.state_scores.append(score)
        extraction.critical_point_inputs.append(CriticalPointInput(
            id=key,
            question_type=question.question_type,
            question_number=question.question_number,
            score=score,
            title=question.title,
            pillar=question.pillar,
        ))
    return extraction


def next_phase2_index(questions: list[Phase2Question], answers: Mapping[str, int]) -> int:
    """Index of the first unanswered question, or -1 when all are answered."""
    for index, question in enumerate(questions):
        if not answers.get(question.answer_key()):
            return index
    return -1


# ── Stage derivation ─────────────────────────────────────────────────────

def derive_stage(
    cycle,
    *,
    phase1_complete: bool,
    has_tie_break: bool,
    phase2_answered: int,
    phase2_total: int,
    protocol,
    reflection_count: int,
    rules: DiagnosticTemporalRules,
) -> StageDecision:
    """Decide where a user re-enters the flow for ``cycle``.

    ``protocol`` may be None until the protocol row exists; it is only
    consulted once phase 2 is done.
    """
    if not phase1_complete and not cycle.phase1_completed_at:
        return StageDecision(Stage.PHASE1)

    if has_tie_break:
        return StageDecision(Stage.PHASE1_TIE)

    if not cycle.phase2_completed_at:
        if phase2_answered < phase2_total:
            return StageDecision(Stage.PHASE2 if phase2_answered > 0 else Stage.PHASE1_RESULT)
        return StageDecision(Stage.PHASE2_RESULT)

    protocol_done = bool(cycle.protocol_completed_at) or bool(
        protocol is not None and protocol.completed_at
    )
    if protocol_done:
        if rules.phase2_reevaluation.is_locked:
            return StageDecision(Stage.BLOCKED_45)
        if rules.can_run_phase2_reevaluation:
            return StageDecision(Stage.PHASE2, reevaluation=True)
        if rules.new_structural_diagnosis.is_locked:
            return StageDecision(Stage.BLOCKED_90)
        return StageDecision(Stage.PHASE1)

    reflections = protocol.reflections if protocol is not None else []
    if has_reflections_completed(reflections, reflection_count):
        return StageDecision(Stage.PROTOCOL_ACTIONS)
    return StageDecision(Stage.PROTOCOL_REFLECTIONS)


def phase2_gate_error(cycle, rules: DiagnosticTemporalRules, reevaluation: bool) -> Optional[str]:
    """Why phase 2 may not be entered for ``cycle``, or None when it may."""
    if not cycle.phase1_completed_at:
        return "Conclua a Fase 1 antes de acessar a Fase 2."
    if cycle.protocol_completed_at and rules.phase2_reevaluation.is_locked:
        return rules.phase2_reevaluation.message
    if cycle.protocol_completed_at and not reevaluation:
        return "Refaça a Fase 1 para iniciar um novo ciclo antes de acessar a Fase 2."
    if cycle.protocol_completed_at and not rules.can_run_phase2_reevaluation:
        return rules.new_structural_diagnosis.message
    return None
