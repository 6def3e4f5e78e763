"""Tests for the cycle-over-cycle comparative report."""

from cortex.engine.comparative_report import REGRESSION_THRESHOLD, build_comparative_report


class TestComparativeReport:
    def test_no_current_cycle(self):
        report = build_comparative_report(None, None)
        assert not report.has_baseline
        assert report.metrics == []
        assert report.summary == "Inicie um diagnóstico para habilitar o relatório comparativo."

    def test_no_previous_cycle(self, make_cycle):
        report = build_comparative_report(make_cycle(general_index=60), None)
        assert not report.has_baseline
        assert len(report.metrics) == 6
        assert all(m.variation is None for m in report.metrics)
        assert all(m.trend == "flat" for m in report.metrics)
        assert report.regression_alerts == []
        assert report.summary == "Sem ciclo anterior para comparação direta."

    def test_metric_order(self, make_cycle):
        report = build_comparative_report(make_cycle(), make_cycle())
        assert [m.key for m in report.metrics] == [
            "general",
            "phase2",
            "pillar:clarity",
            "pillar:structure",
            "pillar:execution",
            "pillar:emotional",
        ]

    def test_regression_threshold_is_inclusive(self, make_cycle):
        current = make_cycle(general_index=52, pillar_structure=53)
        previous = make_cycle(general_index=60, pillar_structure=60)
        report = build_comparative_report(current, previous)
        metrics = {m.key: m for m in report.metrics}

        assert metrics["general"].variation == REGRESSION_THRESHOLD
        assert metrics["general"].is_regression
        assert metrics["general"].trend == "down"
        assert metrics["pillar:structure"].variation == -7
        assert not metrics["pillar:structure"].is_regression
        assert report.regression_alerts == ["Índice Geral: queda de 8.0 pontos percentuais."]

    def test_interpretations(self, make_cycle):
        current = make_cycle(general_index=70, phase2_general_index=55, pillar_clarity=50, pillar_structure=40)
        previous = make_cycle(general_index=60, phase2_general_index=50, pillar_clarity=50, pillar_structure=52)
        metrics = {m.key: m for m in build_comparative_report(current, previous).metrics}

        assert metrics["general"].interpretation == "Evolução robusta neste indicador."
        assert metrics["phase2"].interpretation == "Evolução consistente no período."
        assert metrics["pillar:clarity"].interpretation == "Indicador estável em relação ao ciclo anterior."
        assert metrics["pillar:structure"].interpretation == "Regressão crítica que exige intervenção imediata."

    def test_summary_evolution(self, make_cycle):
        current = make_cycle(general_index=70, phase2_general_index=60, pillar_clarity=60)
        previous = make_cycle(general_index=50, phase2_general_index=40, pillar_clarity=40)
        report = build_comparative_report(current, previous)
        assert report.has_baseline
        assert report.summary == "Tendência de evolução geral com avanço na maior parte dos indicadores."

    def test_summary_regression(self, make_cycle):
        current = make_cycle(general_index=30, phase2_general_index=30)
        previous = make_cycle(general_index=50, phase2_general_index=50)
        report = build_comparative_report(current, previous)
        assert report.summary == "Tendência de regressão em parte relevante dos indicadores."
        assert len(report.regression_alerts) == 2

    def test_summary_balanced(self, make_cycle):
        report = build_comparative_report(make_cycle(general_index=50), make_cycle(general_index=50))
        assert report.summary == "Oscilação equilibrada entre ganhos e perdas no comparativo."

    def test_to_dict(self, make_cycle):
        d = build_comparative_report(make_cycle(general_index=10), make_cycle(general_index=20)).to_dict()
        assert d["has_baseline"] is True
        assert d["metrics"][0]["variation"] == -10
        assert d["metrics"][0]["is_regression"] is True
