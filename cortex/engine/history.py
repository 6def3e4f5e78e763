"""Cycle history — per-cycle status rows and the comparison pair for reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from cortex.engine.comparative_report import ComparativeReport, build_comparative_report
from cortex.engine.protocol import ACTIONS_PER_BLOCK, BLOCK_NUMBERS
from cortex.engine.temporal_rules import (
    DiagnosticTemporalRules,
    compute_diagnostic_temporal_rules,
    parse_iso_date,
)
from cortex.models.cycle import DiagnosticCycle, status_label
from cortex.models.protocol_progress import ProtocolProgress, infer_recommended_step


def format_date(value: Optional[datetime]) -> str:
    """dd/mm/yyyy, or "-" when absent."""
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")


def infer_next_action(cycle: DiagnosticCycle, rules: DiagnosticTemporalRules) -> str:
    if not cycle.phase1_completed_at:
        return "Continuar Fase 1"
    if not cycle.phase2_completed_at:
        return "Continuar Fase 2"
    if not cycle.protocol_completed_at:
        return "Continuar Protocolo"
    if rules.can_run_phase2_reevaluation:
        return "Executar reavaliação da Fase 2"
    if not cycle.reeval_45_completed_at and rules.phase2_reevaluation.is_locked:
        return rules.phase2_reevaluation.message
    if not rules.can_start_new_cycle:
        return rules.new_structural_diagnosis.message
    return "Iniciar novo diagnóstico estrutural"


@dataclass
class HistoryTimeline:
    started_at: Optional[datetime]
    protocol_completed_at: Optional[datetime]
    protocol_audit_message: str
    reeval45_available_at: Optional[datetime]
    reeval45_countdown: str
    reeval45_audit_message: str
    new_diagnostic_available_at: Optional[datetime]

    def to_dict(self) -> dict:
        def iso(value):
            return value.isoformat() if value else None

        return {
            "started_at": iso(self.started_at),
            "protocol_completed_at": iso(self.protocol_completed_at),
            "protocol_audit_message": self.protocol_audit_message,
            "reeval45_available_at": iso(self.reeval45_available_at),
            "reeval45_countdown": self.reeval45_countdown,
            "reeval45_audit_message": self.reeval45_audit_message,
            "new_diagnostic_available_at": iso(self.new_diagnostic_available_at),
        }


@dataclass
class DiagnosticHistoryItem:
    cycle: DiagnosticCycle
    status_label: str
    next_action: str
    completed_actions: int
    total_actions: int
    timeline: HistoryTimeline
    recommended_step: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "cycle": self.cycle.to_api(),
            "status_label": self.status_label,
            "next_action": self.next_action,
            "completed_actions": self.completed_actions,
            "total_actions": self.total_actions,
            "timeline": self.timeline.to_dict(),
            "recommended_step": self.recommended_step,
        }


def _latest_protocol_by_cycle(protocols: Iterable[ProtocolProgress]) -> dict[str, ProtocolProgress]:
    by_cycle: dict[str, ProtocolProgress] = {}
    for protocol in protocols:
        existing = by_cycle.get(protocol.cycle_id)
        if existing is None or protocol.updated_at > existing.updated_at:
            by_cycle[protocol.cycle_id] = protocol
    return by_cycle


def build_history_items(
    cycles: Iterable[DiagnosticCycle],
    protocols: Iterable[ProtocolProgress],
    now: Optional[datetime] = None,
) -> list[DiagnosticHistoryItem]:
    """One history row per cycle, newest cycle first."""
    now = now or datetime.now(timezone.utc)
    protocols_by_cycle = _latest_protocol_by_cycle(protocols)
    items = []

    for cycle in sorted(cycles, key=lambda c: c.cycle_number, reverse=True):
        protocol = protocols_by_cycle.get(cycle.cycle_id)
        if protocol is not None:
            progress = protocol.strategic_plan_progress()
            completed_actions, total_actions = progress["completed_actions"], progress["total_actions"]
            recommended_step = (
                None if protocol.completed_at else infer_recommended_step(protocol.current_block)
            )
        else:
            completed_actions, total_actions = 0, ACTIONS_PER_BLOCK * len(BLOCK_NUMBERS)
            recommended_step = None

        rules = compute_diagnostic_temporal_rules(
            phase1_completed_at=cycle.phase1_completed_at,
            protocol_completed_at=cycle.protocol_completed_at,
            reeval45_completed_at=cycle.reeval_45_completed_at,
            now=now,
        )
        reevaluation = rules.phase2_reevaluation
        protocol_at = cycle.protocol_completed

        timeline = HistoryTimeline(
            started_at=parse_iso_date(cycle.started_at),
            protocol_completed_at=protocol_at,
            protocol_audit_message=(
                f"Protocolo concluído em {format_date(protocol_at)}."
                if protocol_at else "Protocolo ainda não concluído."
            ),
            reeval45_available_at=reevaluation.available_at,
            reeval45_countdown=reevaluation.message if reevaluation.is_locked else "Reavaliação liberada",
            reeval45_audit_message=(
                f"Reavaliação Fase 2 disponível em {reevaluation.days_remaining or 0} dias."
                if protocol_at else "Reavaliação Fase 2 disponível após conclusão do protocolo."
            ),
            new_diagnostic_available_at=rules.new_structural_diagnosis.available_at,
        )
        items.append(DiagnosticHistoryItem(
            cycle=cycle,
            status_label=status_label(cycle.status),
            next_action=infer_next_action(cycle, rules),
            completed_actions=completed_actions,
            total_actions=total_actions,
            timeline=timeline,
            recommended_step=recommended_step,
        ))

    return items


def select_comparison_pair(
    cycles: Iterable[DiagnosticCycle],
) -> tuple[Optional[DiagnosticCycle], Optional[DiagnosticCycle]]:
    """Latest two cycles that finished phase 1, newest first.

    Cycles without phase 1 scores are skipped.
    """
    scored = [c for c in sorted(cycles, key=lambda c: c.cycle_number, reverse=True) if c.phase1_completed_at]
    current = scored[0] if scored else None
    previous = scored[1] if len(scored) > 1 else None
    return current, previous


def build_cycle_report(cycles: Iterable[DiagnosticCycle]) -> ComparativeReport:
    current, previous = select_comparison_pair(cycles)
    return build_comparative_report(current, previous)
