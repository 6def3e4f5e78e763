"""Questionnaire blueprint: phase 1 pillars, phase 2 banks and protocol prompts.

The built-in blueprint is the generic questionnaire. A niche-specific one
can be loaded from JSON; any load or shape problem falls back to the
built-in blueprint.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from cortex.constants.pillars import PILLARS, Pillar, to_pillar
from cortex.engine.protocol import (
    PROTOCOL_ACTION_BLOCKS,
    PROTOCOL_REFLECTION_PROMPTS,
    ProtocolActionBlock,
)

logger = logging.getLogger(__name__)

RESPONSE_OPTIONS: tuple[tuple[int, str], ...] = (
    (1, "Nunca"),
    (2, "Raramente"),
    (3, "Pouco frequente"),
    (4, "Frequentemente"),
    (5, "Quase sempre"),
    (6, "Sempre"),
)

PHASE1_QUESTIONS: dict[Pillar, tuple[str, ...]] = {
    Pillar.CLARITY: (
        "Você define metas claras e mensuráveis para o projeto?",
        "Você consegue explicar o objetivo principal em uma frase?",
        "As prioridades semanais estão alinhadas com o objetivo final?",
        "Você revisa e ajusta a direção estratégica com frequência?",
        "Você sabe exatamente quais entregas definem sucesso do projeto?",
        "Você diferencia tarefas urgentes de tarefas realmente estratégicas?",
        "Você evita iniciar atividades que não contribuem para o objetivo final?",
        "Você revisa indicadores de avanço para corrigir rota rapidamente?",
        "Você possui critérios claros para decidir o que entra ou sai do escopo?",
        "Você comunica a visão do projeto de forma objetiva para outras pessoas?",
        "Você identifica rapidamente quando está desviando da meta principal?",
        "Você mantém foco no resultado final mesmo diante de novas ideias?",
    ),
    Pillar.STRUCTURE: (
        "Você possui um plano com etapas e marcos bem definidos?",
        "As responsabilidades das tarefas estão organizadas de forma clara?",
        "Você usa um sistema de acompanhamento para o andamento do projeto?",
        "Existe uma rotina para revisar prazos e riscos do projeto?",
        "Você possui um cronograma realista com prazos intermediários?",
        "Você registra decisões importantes para evitar retrabalho?",
        "Você define dependências críticas antes de iniciar novas frentes?",
        "Você tem um processo claro para priorizar tarefas do dia?",
        "Você revisa recursos disponíveis antes de assumir novas entregas?",
        "Você antecipa gargalos operacionais com antecedência?",
        "Você mantém documentação mínima para continuidade do trabalho?",
        "Você consegue visualizar rapidamente o estágio atual do projeto?",
    ),
    Pillar.EXECUTION: (
        "Você conclui as tarefas prioritárias com consistência semanal?",
        "Você consegue manter foco nas atividades mais importantes?",
        "Seu ritmo de trabalho sustenta avanço contínuo do projeto?",
        "Você finaliza o que começa antes de abrir novas frentes?",
        "Você inicia o dia pelas tarefas de maior impacto?",
        "Você reduz distrações durante os blocos de execução?",
        "Você mantém disciplina para cumprir o plano mesmo sem motivação?",
        "Você transforma objetivos em ações concretas no mesmo dia?",
        "Você evita acumular pendências pequenas ao longo da semana?",
        "Você revisa resultados e ajusta rapidamente após erros?",
        "Você mantém constância mesmo em semanas mais complexas?",
        "Você encerra ciclos de trabalho com entregas concluídas?",
    ),
    Pillar.EMOTIONAL: (
        "Você lida bem com frustração e imprevistos do processo?",
        "Você retoma o foco rapidamente após interrupções?",
        "Você mantém motivação estável durante fases difíceis?",
        "Você consegue regular ansiedade antes de decisões importantes?",
        "Você consegue agir mesmo quando há insegurança sobre o resultado?",
        "Você evita decisões impulsivas em momentos de pressão?",
        "Você identifica sinais de sobrecarga antes de travar a execução?",
        "Você mantém autoconfiança após falhas pontuais?",
        "Você consegue pedir ajuda quando percebe bloqueio emocional?",
        "Você consegue separar críticas ao projeto de críticas pessoais?",
        "Você mantém energia mental ao longo de ciclos longos?",
        "Você finaliza tarefas mesmo quando o entusiasmo diminui?",
    ),
}

TECHNICAL_QUESTION_BANK: dict[Pillar, tuple[str, ...]] = {
    Pillar.CLARITY: (
        "A meta principal está descrita em formato mensurável?",
        "O objetivo final tem prazo explícito e validado?",
        "Você possui critérios claros de sucesso para a conclusão?",
        "As prioridades da semana convergem para a meta central?",
        "Existe um indicador líder para acompanhar progresso antecipado?",
        "O escopo atual está protegido contra desvios frequentes?",
        "Você revisa semanalmente o alinhamento entre estratégia e execução?",
        "As decisões de prioridade seguem critérios objetivos?",
        "Você tem visibilidade das atividades que não geram valor?",
        "Há clareza sobre o que deve ser descartado neste ciclo?",
        "Os principais riscos estratégicos estão mapeados?",
        "Você consegue comunicar o plano de forma simples para terceiros?",
        "Existe definição explícita do que NÃO faz parte do projeto?",
        "Você converte aprendizado de ciclo anterior em ajuste estratégico?",
    ),
    Pillar.STRUCTURE: (
        "Há um cronograma com marcos e responsáveis definidos?",
        "As dependências críticas entre tarefas estão documentadas?",
        "Você possui rotina fixa de revisão de planejamento?",
        "Existe critério claro para priorização diária de tarefas?",
        "Os riscos operacionais são monitorados ativamente?",
        "Você possui plano de contingência para atrasos relevantes?",
        "As tarefas possuem definição de pronto objetiva?",
        "Existe padronização mínima para registro de decisões?",
        "Você acompanha capacidade real antes de assumir novas demandas?",
        "Há organização clara de backlog por impacto e urgência?",
        "As reuniões (se houver) geram decisões acionáveis?",
        "Você revisa prazos com base em dados e não em expectativa?",
        "Existe processo para reduzir retrabalho recorrente?",
        "Você tem um painel único para visão do andamento do projeto?",
    ),
    Pillar.EXECUTION: (
        "Você mantém blocos de foco profundo durante a semana?",
        "As tarefas prioritárias são concluídas no prazo planejado?",
        "Você evita iniciar novas frentes antes de concluir as atuais?",
        "Existe disciplina para executar o plano mesmo sob pressão?",
        "Você mede produtividade por entregas concluídas?",
        "Você reduz interrupções e trocas de contexto no dia a dia?",
        "Há revisão objetiva dos resultados de cada semana?",
        "Você transforma objetivos em ações no mesmo ciclo de planejamento?",
        "Existe ritmo sustentável de execução sem picos de exaustão?",
        "Você encerra pendências críticas antes de abrir novas tarefas?",
        "Você mantém consistência de entrega em semanas difíceis?",
        "As falhas de execução geram ajustes imediatos de processo?",
        "Você utiliza checkpoints para garantir avanço real?",
        "Há cadência definida para validar progresso e qualidade?",
    ),
    Pillar.EMOTIONAL: (
        "Você reconhece rapidamente gatilhos que travam sua execução?",
        "Você mantém clareza mental sob pressão de prazo?",
        "Você consegue retomar foco após frustrações?",
        "Você evita decisões impulsivas em momentos de ansiedade?",
        "Há rotina para regular energia e evitar sobrecarga?",
        "Você mantém autoconfiança após erros pontuais?",
        "Você consegue separar crítica técnica de crítica pessoal?",
        "Você mantém constância de ação mesmo sem motivação alta?",
        "Você pede apoio quando identifica bloqueio emocional?",
        "Você percebe cedo sinais de autossabotagem?",
        "Você consegue agir com desconforto sem paralisar?",
        "Você protege seu foco contra ruminação e excesso de preocupação?",
        "Você mantém perspectiva estratégica em momentos de tensão?",
        "Você encerra o dia com sensação de avanço, não de dispersão?",
    ),
}

STATE_QUESTIONS: tuple[str, ...] = (
    "Hoje você sente que o projeto está sob controle?",
    "Seu nível atual de energia sustenta a execução diária?",
    "Você percebe progresso real nas últimas duas semanas?",
    "Sua rotina atual favorece consistência de entrega?",
    "Seu ambiente atual apoia foco e tomada de decisão?",
    "Você acredita estar próximo de concluir o projeto?",
)


@dataclass(frozen=True)
class Phase1PillarBlueprint:
    pillar: Pillar
    title: str
    questions: tuple[str, ...]


@dataclass(frozen=True)
class Phase2Question:
    question_type: str              # technical | state
    question_number: int
    title: str
    pillar: Optional[Pillar] = None  # set on technical questions only

    def stored_type(self) -> str:
        """Question type as persisted: technical:<pillar> or state:general."""
        if self.question_type == "technical":
            return f"technical:{self.pillar.value}"
        return "state:general"

    def answer_key(self) -> str:
        return f"{self.stored_type()}:{self.question_number}"

    def to_dict(self) -> dict:
        return {
            "question_type": self.question_type,
            "question_number": self.question_number,
            "title": self.title,
            "pillar": self.pillar.value if self.pillar else None,
            "answer_key": self.answer_key(),
        }


@dataclass(frozen=True)
class Phase1Question:
    pillar_index: int
    question_index: int
    pillar: Pillar
    question_number: int
    title: str

    def answer_key(self) -> str:
        return phase1_answer_key(self.pillar, self.question_number)

    def to_dict(self) -> dict:
        return {
            "pillar": self.pillar.value,
            "pillar_index": self.pillar_index,
            "question_number": self.question_number,
            "title": self.title,
            "answer_key": self.answer_key(),
        }


def phase1_answer_key(pillar: Pillar, question_number: int) -> str:
    return f"{pillar.value}:{question_number}"


@dataclass
class DiagnosticBlueprint:
    source: str = "fallback"        # fallback | file
    niche_name: str = "Genérico"
    phase1_pillars: list[Phase1PillarBlueprint] = field(default_factory=list)
    technical_bank: dict[Pillar, tuple[str, ...]] = field(default_factory=dict)
    state_questions: tuple[str, ...] = ()
    reflection_prompts: tuple[str, ...] = PROTOCOL_REFLECTION_PROMPTS
    action_blocks: tuple[ProtocolActionBlock, ...] = PROTOCOL_ACTION_BLOCKS
    response_options: tuple[tuple[int, str], ...] = RESPONSE_OPTIONS

    @property
    def total_phase1_questions(self) -> int:
        return sum(len(p.questions) for p in self.phase1_pillars)

    @property
    def reflection_count(self) -> int:
        return max(1, len(self.reflection_prompts))

    def phase1_questions(self) -> list[Phase1Question]:
        """Flatten phase 1 in answer order.

        Question numbers are 1-based per pillar and keep counting when the
        same pillar appears in more than one blueprint entry.
        """
        counters: dict[Pillar, int] = {}
        flattened = []
        for pillar_index, entry in enumerate(self.phase1_pillars):
            for question_index, title in enumerate(entry.questions):
                counters[entry.pillar] = counters.get(entry.pillar, 0) + 1
                flattened.append(Phase1Question(
                    pillar_index=pillar_index,
                    question_index=question_index,
                    pillar=entry.pillar,
                    question_number=counters[entry.pillar],
                    title=title,
                ))
        return flattened

    def get_phase2_questions(self, pillar) -> list[Phase2Question]:
        """Technical questions for exactly ``pillar``, then the state questions."""
        pillar = to_pillar(pillar)
        if pillar is None:
            return []
        technical = [
            Phase2Question("technical", index + 1, title, pillar)
            for index, title in enumerate(self.technical_bank.get(pillar, ()))
        ]
        state = [
            Phase2Question("state", index + 1, title)
            for index, title in enumerate(self.state_questions)
        ]
        return technical + state

    def to_dict(self) -> dict:
        return {
            "source": self.source,
            "niche_name": self.niche_name,
            "total_phase1_questions": self.total_phase1_questions,
            "reflection_prompts": list(self.reflection_prompts),
            "action_blocks": [b.to_dict() for b in self.action_blocks],
            "response_options": [{"value": v, "label": l} for v, l in self.response_options],
        }


def default_blueprint() -> DiagnosticBlueprint:
    return DiagnosticBlueprint(
        phase1_pillars=[
            Phase1PillarBlueprint(p, p.display_name, PHASE1_QUESTIONS[p]) for p in PILLARS
        ],
        technical_bank=dict(TECHNICAL_QUESTION_BANK),
        state_questions=STATE_QUESTIONS,
    )


def _parse_blueprint(data: dict) -> DiagnosticBlueprint:
    phase1 = []
    for entry in data["phase1"]:
        pillar = to_pillar(entry.get("pillar"))
        questions = tuple(str(q) for q in entry.get("questions", []) if str(q).strip())
        if pillar is None or not questions:
            continue
        phase1.append(Phase1PillarBlueprint(pillar, entry.get("title") or pillar.display_name, questions))
    if {p.pillar for p in phase1} != set(PILLARS):
        raise ValueError("phase1 must cover all four pillars")

    technical = {}
    for key, questions in data["phase2_technical"].items():
        pillar = to_pillar(key)
        if pillar is not None:
            technical[pillar] = tuple(str(q) for q in questions)
    if set(technical) != set(PILLARS) or not all(technical.values()):
        raise ValueError("phase2_technical must cover all four pillars")

    state = tuple(str(q) for q in data["phase2_state"])
    if not state:
        raise ValueError("phase2_state is empty")

    reflections = tuple(str(q) for q in data.get("reflections") or PROTOCOL_REFLECTION_PROMPTS)
    return DiagnosticBlueprint(
        source="file",
        niche_name=str(data.get("niche_name") or "Genérico"),
        phase1_pillars=phase1,
        technical_bank=technical,
        state_questions=state,
        reflection_prompts=reflections,
    )


def load_blueprint(path: Path | str | None) -> DiagnosticBlueprint:
    """Load a JSON blueprint, falling back to the built-in one on any problem."""
    if not path:
        return default_blueprint()
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
        blueprint = _parse_blueprint(data)
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
        logger.warning(f"Blueprint {path} unusable ({exc}); using built-in questionnaire")
        return default_blueprint()
    logger.info(f"Loaded blueprint '{blueprint.niche_name}' from {path}")
    return blueprint
