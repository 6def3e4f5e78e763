"""Diagnostic cycle model.

One full diagnostic iteration (phase 1 → phase 2 → protocol → optional
reevaluation) for a user within a niche. Stored as a flat string mapping;
timestamps are ISO 8601 strings with "" meaning "not yet".
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Optional

from cortex.constants.pillars import PILLARS, Pillar, to_pillar
from cortex.engine.scoring import classify_maturity
from cortex.engine.temporal_rules import parse_iso_date


class CycleStatus:
    PHASE1_IN_PROGRESS = "phase1_in_progress"
    PHASE1_TIE_PENDING = "phase1_tie_pending"
    PHASE2_IN_PROGRESS = "phase2_in_progress"
    PROTOCOL_IN_PROGRESS = "protocol_in_progress"
    PROTOCOL_COMPLETED = "protocol_completed"
    REEVAL_45_COMPLETED = "reeval_45_completed"


STATUS_LABELS = {
    CycleStatus.PHASE1_IN_PROGRESS: "Fase 1 em andamento",
    CycleStatus.PHASE1_TIE_PENDING: "Aguardando desempate",
    CycleStatus.PHASE2_IN_PROGRESS: "Fase 2 em andamento",
    CycleStatus.PROTOCOL_IN_PROGRESS: "Protocolo em andamento",
    CycleStatus.PROTOCOL_COMPLETED: "Ciclo concluído",
    CycleStatus.REEVAL_45_COMPLETED: "Reavaliação concluída",
}

INT_FIELDS = (
    "cycle_number",
    "general_index",
    "phase2_technical_index",
    "phase2_state_index",
    "phase2_general_index",
    "pillar_clarity",
    "pillar_structure",
    "pillar_execution",
    "pillar_emotional",
)

PERCENT_FIELDS = INT_FIELDS[1:]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def to_percent(value) -> int:
    """Clamp a stored score to [0, 100]; garbage reads as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number):
        return 0
    return min(100, max(0, math.floor(number + 0.5)))


def status_label(status: str) -> str:
    return STATUS_LABELS.get(status, "Em andamento")


@dataclass
class DiagnosticCycle:
    cycle_id: str
    user_id: str
    niche_id: str
    cycle_number: int = 1
    status: str = CycleStatus.PHASE1_IN_PROGRESS
    general_index: int = 0
    phase2_technical_index: int = 0
    phase2_state_index: int = 0
    phase2_general_index: int = 0
    pillar_clarity: int = 0
    pillar_structure: int = 0
    pillar_execution: int = 0
    pillar_emotional: int = 0
    critical_pillar: str = ""
    strong_pillar: str = ""
    phase1_completed_at: str = ""   # ISO 8601
    phase2_completed_at: str = ""
    protocol_completed_at: str = ""
    reeval_45_completed_at: str = ""
    reeval_90_completed_at: str = ""
    started_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    # ── Parsed views ──────────────────────────────────────────────────

    @property
    def phase1_completed(self) -> Optional[datetime]:
        return parse_iso_date(self.phase1_completed_at)

    @property
    def phase2_completed(self) -> Optional[datetime]:
        return parse_iso_date(self.phase2_completed_at)

    @property
    def protocol_completed(self) -> Optional[datetime]:
        return parse_iso_date(self.protocol_completed_at)

    @property
    def reeval45_completed(self) -> Optional[datetime]:
        return parse_iso_date(self.reeval_45_completed_at)

    @property
    def reeval90_completed(self) -> Optional[datetime]:
        return parse_iso_date(self.reeval_90_completed_at)

    @property
    def critical(self) -> Optional[Pillar]:
        return to_pillar(self.critical_pillar)

    @property
    def strong(self) -> Optional[Pillar]:
        return to_pillar(self.strong_pillar)

    @property
    def pillars(self) -> dict[Pillar, int]:
        return {p: getattr(self, f"pillar_{p.value}") for p in PILLARS}

    def apply(self, fields: dict) -> DiagnosticCycle:
        """Return a copy with ``fields`` merged in (as written to the store)."""
        known = {k: v for k, v in fields.items() if k in self.__dataclass_fields__}
        return replace(self, **known)

    # ── Serialization ─────────────────────────────────────────────────

    def to_dict(self) -> dict:
        return asdict(self)

    def to_api(self) -> dict:
        d = self.to_dict()
        for key, value in d.items():
            if key.endswith("_at") and value == "":
                d[key] = None
        d["critical_pillar"] = self.critical.value if self.critical else None
        d["strong_pillar"] = self.strong.value if self.strong else None
        d["status_label"] = status_label(self.status)
        d["pillar_maturity"] = (
            {p.value: classify_maturity(v).to_dict() for p, v in self.pillars.items()}
            if self.phase1_completed_at else None
        )
        return d

    @classmethod
    def from_dict(cls, data: dict) -> DiagnosticCycle:
        data = dict(data)
        if "id" in data and "cycle_id" not in data:
            data["cycle_id"] = data.pop("id")
        for key in list(data):
            if data[key] is None:
                data[key] = ""
        for int_field in INT_FIELDS:
            if int_field not in data:
                continue
            if int_field in PERCENT_FIELDS:
                data[int_field] = to_percent(data[int_field])
            else:
                try:
                    data[int_field] = int(data[int_field])
                except (TypeError, ValueError):
                    data[int_field] = 1
        for pillar_field in ("critical_pillar", "strong_pillar"):
            if pillar_field in data:
                pillar = to_pillar(data[pillar_field])
                data[pillar_field] = pillar.value if pillar else ""
        for key, value in data.items():
            if key.endswith("_at") and value and parse_iso_date(value) is None:
                data[key] = ""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
