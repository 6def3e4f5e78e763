"""Comparative report between the latest two diagnostic cycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from cortex.constants.pillars import PILLARS
from cortex.engine.scoring import round_half_up

# Variation at or below this marks a regression alert
REGRESSION_THRESHOLD = -8


@dataclass(frozen=True)
class ComparativeMetric:
    key: str
    label: str
    current: float
    previous: Optional[float]
    variation: Optional[float]
    interpretation: str
    trend: str                      # up | down | flat
    is_regression: bool

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "current": self.current,
            "previous": self.previous,
            "variation": self.variation,
            "interpretation": self.interpretation,
            "trend": self.trend,
            "is_regression": self.is_regression,
        }


@dataclass(frozen=True)
class ComparativeReport:
    has_baseline: bool
    metrics: list[ComparativeMetric] = field(default_factory=list)
    regression_alerts: list[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict:
        return {
            "has_baseline": self.has_baseline,
            "metrics": [m.to_dict() for m in self.metrics],
            "regression_alerts": list(self.regression_alerts),
            "summary": self.summary,
        }


def _variation(current: float, previous: Optional[float]) -> Optional[float]:
    if previous is None:
        return None
    return round_half_up((current - previous) * 10) / 10


def _interpretation(variation: Optional[float]) -> str:
    if variation is None:
        return "Sem base anterior para comparação."
    if variation >= 10:
        return "Evolução robusta neste indicador."
    if variation >= 3:
        return "Evolução consistente no período."
    if variation <= -10:
        return "Regressão crítica que exige intervenção imediata."
    if variation <= -3:
        return "Regressão relevante. Ajuste seu plano de ação."
    return "Indicador estável em relação ao ciclo anterior."


def _trend(variation: Optional[float]) -> str:
    if variation is None or variation == 0:
        return "flat"
    return "up" if variation > 0 else "down"


def _metric(key: str, label: str, current: float, previous: Optional[float]) -> ComparativeMetric:
    variation = _variation(current, previous)
    return ComparativeMetric(
        key=key,
        label=label,
        current=current,
        previous=previous,
        variation=variation,
        interpretation=_interpretation(variation),
        trend=_trend(variation),
        is_regression=variation is not None and variation <= REGRESSION_THRESHOLD,
    )


def build_comparative_report(current, previous) -> ComparativeReport:
    """Compare two ``DiagnosticCycle`` records metric by metric.

    Without a current cycle there is nothing to report; without a previous
    one every metric is returned with no variation and ``has_baseline`` off.
    """
    if current is None:
        return ComparativeReport(
            has_baseline=False,
            summary="Inicie um diagnóstico para habilitar o relatório comparativo.",
        )

    def prev(attr: str) -> Optional[float]:
        return getattr(previous, attr) if previous is not None else None

    metrics = [
        _metric("general", "Índice Geral", current.general_index, prev("general_index")),
        _metric("phase2", "Índice Refinado", current.phase2_general_index,
                prev("phase2_general_index")),
    ]
    for pillar in PILLARS:
        attr = f"pillar_{pillar.value}"
        metrics.append(_metric(
            f"pillar:{pillar.value}", pillar.display_name, getattr(current, attr), prev(attr),
        ))

    regression_alerts = [
        f"{m.label}: queda de {abs(m.variation):.1f} pontos percentuais."
        for m in metrics if m.is_regression
    ]

    if previous is None:
        summary = "Sem ciclo anterior para comparação direta."
    else:
        positive = sum(1 for m in metrics if (m.variation or 0) > 0)
        negative = sum(1 for m in metrics if (m.variation or 0) < 0)
        if positive > negative:
            summary = "Tendência de evolução geral com avanço na maior parte dos indicadores."
        elif negative > positive:
            summary = "Tendência de regressão em parte relevante dos indicadores."
        else:
            summary = "Oscilação equilibrada entre ganhos e perdas no comparativo."

    return ComparativeReport(
        has_baseline=previous is not None,
        metrics=metrics,
        regression_alerts=regression_alerts,
        summary=summary,
    )
