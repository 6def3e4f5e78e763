"""Scoring engine — pure functions, no persistence dependency.

Converts raw 1-6 answer scores into percentages, pillar rankings with
tie detection, maturity bands and critical-point diagnoses. All functions
are total: absent or empty inputs degrade to zero/empty results, since
"not answered yet" is a normal intermediate state.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

from cortex.constants.pillars import PILLARS, Pillar, to_pillar

PHASE_SCORE_MIN = 1
PHASE_SCORE_MAX = 6

# Answers at or below this score are reported as critical points
CRITICAL_SCORE_THRESHOLD = 2


def round_half_up(value: float) -> int:
    """Round to the nearest integer, .5 going up (never banker's rounding)."""
    return math.floor(value + 0.5)


def percent_from_scores(scores: Iterable[int]) -> int:
    """Average score as a percentage of the maximum score (6)."""
    values = [s for s in (scores or []) if isinstance(s, (int, float))]
    if not values:
        return 0
    average = sum(values) / len(values)
    return round_half_up(average / PHASE_SCORE_MAX * 100)


# ── Tie-break selection ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Resolved:
    pillar: Pillar


@dataclass(frozen=True)
class Unresolved:
    candidates: tuple[Pillar, ...]


PillarSelection = Union[Resolved, Unresolved]


def _select(candidates: list[Pillar], manual: Optional[Pillar]) -> PillarSelection:
    if len(candidates) == 1:
        return Resolved(candidates[0])
    if manual is not None and manual in candidates:
        return Resolved(manual)
    return Unresolved(tuple(candidates))


# ── Phase 1 ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Phase1Summary:
    pillar_percentages: dict[Pillar, int]
    general_index: int
    critical_candidates: tuple[Pillar, ...]
    strong_candidates: tuple[Pillar, ...]
    critical: PillarSelection
    strong: PillarSelection

    @property
    def critical_pillar(self) -> Optional[Pillar]:
        return self.critical.pillar if isinstance(self.critical, Resolved) else None

    @property
    def strong_pillar(self) -> Optional[Pillar]:
        return self.strong.pillar if isinstance(self.strong, Resolved) else None

    @property
    def has_tie_break(self) -> bool:
        return self.critical_pillar is None or self.strong_pillar is None

    def to_dict(self) -> dict:
        return {
            "pillar_percentages": {p.value: v for p, v in self.pillar_percentages.items()},
            "pillar_maturity": {
                p.value: classify_maturity(v).to_dict() for p, v in self.pillar_percentages.items()
            },
            "general_index": self.general_index,
            "critical_candidates": [p.value for p in self.critical_candidates],
            "strong_candidates": [p.value for p in self.strong_candidates],
            "critical_pillar": self.critical_pillar.value if self.critical_pillar else None,
            "strong_pillar": self.strong_pillar.value if self.strong_pillar else None,
            "has_tie_break": self.has_tie_break,
        }


def compute_phase1_summary(
    scores_by_pillar: Mapping,
    manual_critical=None,
    manual_strong=None,
) -> Phase1Summary:
    """Score each pillar and pick the critical (lowest) and strong (highest) one.

    A side with a single candidate resolves automatically. A tied side
    resolves to the manual pick only when that pick is one of the tied
    candidates; otherwise it stays unresolved and a tie-break is required.
    """
    scores_by_pillar = scores_by_pillar or {}
    percentages: dict[Pillar, int] = {}
    for pillar in PILLARS:
        scores = scores_by_pillar.get(pillar)
        if scores is None:
            scores = scores_by_pillar.get(pillar.value, [])
        percentages[pillar] = percent_from_scores(scores)

    lowest = min(percentages.values())
    highest = max(percentages.values())
    critical_candidates = [p for p in PILLARS if percentages[p] == lowest]
    strong_candidates = [p for p in PILLARS if percentages[p] == highest]

    general_index = round_half_up(sum(percentages.values()) / len(PILLARS))

    return Phase1Summary(
        pillar_percentages=percentages,
        general_index=general_index,
        critical_candidates=tuple(critical_candidates),
        strong_candidates=tuple(strong_candidates),
        critical=_select(critical_candidates, to_pillar(manual_critical)),
        strong=_select(strong_candidates, to_pillar(manual_strong)),
    )


# ── Phase 2 ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Phase2Summary:
    technical_index: int
    state_index: int
    general_index: int

    def to_dict(self) -> dict:
        return {
            "technical_index": self.technical_index,
            "state_index": self.state_index,
            "general_index": self.general_index,
        }


def compute_phase2_summary(
    technical_scores: Iterable[int],
    state_scores: Iterable[int],
) -> Phase2Summary:
    technical_index = percent_from_scores(technical_scores)
    state_index = percent_from_scores(state_scores)
    return Phase2Summary(
        technical_index=technical_index,
        state_index=state_index,
        general_index=round_half_up((technical_index + state_index) / 2),
    )


# ── Maturity ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MaturityClassification:
    level: str
    label: str
    description: str

    def to_dict(self) -> dict:
        return {"level": self.level, "label": self.label, "description": self.description}


# (upper bound inclusive, classification)
MATURITY_BANDS: tuple[tuple[float, MaturityClassification], ...] = (
    (40, MaturityClassification(
        "critico", "Crítico",
        "Exige intervenção imediata para evitar bloqueios de conclusão.",
    )),
    (60, MaturityClassification(
        "atencao", "Atenção",
        "Há fragilidade relevante. Priorize ajustes estruturais.",
    )),
    (80, MaturityClassification(
        "consistente", "Consistente",
        "Base funcional. Foque em consistência para ganhar tração.",
    )),
    (math.inf, MaturityClassification(
        "forte", "Forte",
        "Pilar maduro com boa capacidade de sustentação.",
    )),
)


def classify_maturity(percent: float) -> MaturityClassification:
    for upper, classification in MATURITY_BANDS:
        if percent <= upper:
            return classification
    return MATURITY_BANDS[-1][1]


# ── Critical points ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class CriticalPointInput:
    id: str
    question_type: str              # technical | state
    question_number: int
    score: int
    title: str
    pillar: Optional[Pillar] = None


@dataclass(frozen=True)
class CriticalPoint:
    id: str
    question_type: str
    question_number: int
    score: int
    title: str
    diagnosis: str
    pillar: Optional[Pillar] = None
    severity: str = field(default="moderado")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "question_type": self.question_type,
            "question_number": self.question_number,
            "score": self.score,
            "title": self.title,
            "pillar": self.pillar.value if self.pillar else None,
            "severity": self.severity,
            "diagnosis": self.diagnosis,
        }


def _diagnosis(question_type: str, severity: str) -> str:
    if question_type == "technical":
        return (
            f"Risco {severity} no eixo técnico. Este ponto compromete "
            "previsibilidade, priorização e entrega até a conclusão."
        )
    return (
        f"Risco {severity} no estado atual. O padrão emocional/operacional "
        "reduz consistência e aumenta chance de interrupção."
    )


def get_critical_points(items: Iterable[CriticalPointInput]) -> list[CriticalPoint]:
    """Answers scored <= 2, lowest score first, then earliest question."""
    points = []
    for item in items or []:
        if item.score > CRITICAL_SCORE_THRESHOLD:
            continue
        severity = "alto" if item.score <= 1 else "moderado"
        points.append(CriticalPoint(
            id=item.id,
            question_type=item.question_type,
            question_number=item.question_number,
            score=item.score,
            title=item.title,
            pillar=item.pillar,
            severity=severity,
            diagnosis=_diagnosis(item.question_type, severity),
        ))
    points.sort(key=lambda p: (p.score, p.question_number))
    return points
