"""Temporal gate engine — 45-day reevaluation and 90-day new-cycle windows.

Pure functions of three optional completion timestamps and the current
instant. Timestamps are parsed defensively: anything unparseable counts
as absent.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from cortex.constants.pillars import REEVALUATION_WINDOWS

DAY_SECONDS = 24 * 3600


def parse_iso_date(value) -> Optional[datetime]:
    """Parse an ISO 8601 string (or datetime) into an aware UTC-based datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def add_days(date: datetime, days: int) -> datetime:
    return date + timedelta(days=days)


def days_until(target: datetime, reference: datetime) -> int:
    """Whole days until ``target``, rounded up; 0 once it has passed."""
    diff = (target - reference).total_seconds()
    if diff <= 0:
        return 0
    return math.ceil(diff / DAY_SECONDS)


def format_day_label(days: int) -> str:
    return f"{days} {'dia' if days == 1 else 'dias'}"


@dataclass(frozen=True)
class TemporalGate:
    is_locked: bool
    days_remaining: Optional[int]
    available_at: Optional[datetime]
    message: str

    def to_dict(self) -> dict:
        return {
            "is_locked": self.is_locked,
            "days_remaining": self.days_remaining,
            "available_at": self.available_at.isoformat() if self.available_at else None,
            "message": self.message,
        }


@dataclass(frozen=True)
class DiagnosticTemporalRules:
    phase2_reevaluation: TemporalGate
    new_structural_diagnosis: TemporalGate
    can_run_phase2_reevaluation: bool
    can_start_new_cycle: bool

    def to_dict(self) -> dict:
        return {
            "phase2_reevaluation": self.phase2_reevaluation.to_dict(),
            "new_structural_diagnosis": self.new_structural_diagnosis.to_dict(),
            "can_run_phase2_reevaluation": self.can_run_phase2_reevaluation,
            "can_start_new_cycle": self.can_start_new_cycle,
        }


def _gate(
    anchor: Optional[datetime],
    days: int,
    now: datetime,
    not_eligible: str,
    counting_down: str,
    unlocked: str,
) -> TemporalGate:
    if anchor is None:
        return TemporalGate(True, None, None, not_eligible)

    available_at = add_days(anchor, days)
    remaining = days_until(available_at, now)
    if remaining > 0:
        return TemporalGate(
            True, remaining, available_at,
            counting_down.format(days=format_day_label(remaining)),
        )
    return TemporalGate(False, 0, available_at, unlocked)


def compute_diagnostic_temporal_rules(
    phase1_completed_at=None,
    protocol_completed_at=None,
    reeval45_completed_at=None,
    now: Optional[datetime] = None,
) -> DiagnosticTemporalRules:
    """Evaluate both gates for a cycle.

    The reevaluation is only offered in the window between the two gates:
    protocol done, reevaluation not yet run, 45-day gate open and 90-day
    gate still closed. A new cycle may start once the protocol is done and
    the 90-day gate is open, whether or not the reevaluation ran.
    """
    now = parse_iso_date(now) or datetime.now(timezone.utc)
    phase1_at = parse_iso_date(phase1_completed_at)
    protocol_at = parse_iso_date(protocol_completed_at)
    reeval45_at = parse_iso_date(reeval45_completed_at)

    reevaluation = _gate(
        protocol_at,
        REEVALUATION_WINDOWS["first_days"],
        now,
        not_eligible="Reavaliação disponível após concluir o Protocolo de Ação.",
        counting_down="Reavaliação disponível em {days}.",
        unlocked="Reavaliação liberada.",
    )
    new_diagnosis = _gate(
        phase1_at,
        REEVALUATION_WINDOWS["second_days"],
        now,
        not_eligible="Novo diagnóstico estrutural disponível após concluir a Fase 1.",
        counting_down="Novo diagnóstico estrutural disponível em {days}.",
        unlocked="Novo diagnóstico estrutural liberado.",
    )

    return DiagnosticTemporalRules(
        phase2_reevaluation=reevaluation,
        new_structural_diagnosis=new_diagnosis,
        can_run_phase2_reevaluation=(
            protocol_at is not None
            and reeval45_at is None
            and not reevaluation.is_locked
            and new_diagnosis.is_locked
        ),
        can_start_new_cycle=protocol_at is not None and not new_diagnosis.is_locked,
    )
