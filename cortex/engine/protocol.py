"""Protocol state machine — three sequential action blocks per cycle.

Block 1 is always open; block 2 needs block 1 fully done; block 3 needs
blocks 1 and 2. The protocol is complete when all three are fully done,
and completion is one-way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

ACTIONS_PER_BLOCK = 3
BLOCK_NUMBERS = (1, 2, 3)

PROTOCOL_REFLECTION_PROMPTS: tuple[str, ...] = (
    "Qual é a principal barreira real que está impedindo a conclusão do projeto hoje?",
    "Qual comportamento seu mais atrasa a execução quando surge pressão?",
    "O que você precisa simplificar nesta semana para recuperar tração?",
    "Qual decisão foi adiada e precisa ser tomada nas próximas 24 horas?",
    "Que sinal concreto mostrará que você está no caminho certo?",
)


@dataclass(frozen=True)
class ProtocolActionBlock:
    block: int
    title: str
    actions: tuple[str, ...]

    def to_dict(self) -> dict:
        return {"block": self.block, "title": self.title, "actions": list(self.actions)}


PROTOCOL_ACTION_BLOCKS: tuple[ProtocolActionBlock, ...] = (
    ProtocolActionBlock(1, "Bloco 1 - Diagnóstico de Base", (
        "Definir objetivo final em uma frase mensurável.",
        "Quebrar o projeto em três marcos com prazo.",
        "Eliminar uma frente paralela que drena foco.",
    )),
    ProtocolActionBlock(2, "Bloco 2 - Alinhamento Estrutural", (
        "Priorizar três tarefas críticas da semana.",
        "Reservar bloco diário de execução sem interrupção.",
        "Criar revisão semanal de riscos e ajustes.",
    )),
    ProtocolActionBlock(3, "Bloco 3 - Consolidação de Execução", (
        "Fechar pendência técnica de maior impacto.",
        "Formalizar rotina de acompanhamento de resultados.",
        "Registrar aprendizados e padronizar próximos ciclos.",
    )),
)


def is_action_list_completed(actions: Sequence[bool]) -> bool:
    return len(actions) > 0 and all(actions)


def is_protocol_block_unlocked(
    block: int,
    block1_actions: Sequence[bool],
    block2_actions: Sequence[bool],
) -> bool:
    if block == 1:
        return True
    if block == 2:
        return is_action_list_completed(block1_actions)
    return is_action_list_completed(block1_actions) and is_action_list_completed(block2_actions)


def infer_current_protocol_block(
    block1_actions: Sequence[bool],
    block2_actions: Sequence[bool],
    block3_actions: Sequence[bool],
) -> int:
    """First block not fully done; 3 once everything is done."""
    if not is_action_list_completed(block1_actions):
        return 1
    if not is_action_list_completed(block2_actions):
        return 2
    return 3


def is_protocol_completed(
    block1_actions: Sequence[bool],
    block2_actions: Sequence[bool],
    block3_actions: Sequence[bool],
) -> bool:
    return (
        is_action_list_completed(block1_actions)
        and is_action_list_completed(block2_actions)
        and is_action_list_completed(block3_actions)
    )


def has_reflections_completed(reflections: Sequence[str], expected_count: int) -> bool:
    """All ``expected_count`` prompts answered with non-blank text."""
    if len(reflections) < expected_count:
        return False
    return all(str(value or "").strip() for value in reflections[:expected_count])


def toggle_action(
    block: int,
    action_index: int,
    block1_actions: Sequence[bool],
    block2_actions: Sequence[bool],
    block3_actions: Sequence[bool],
) -> tuple[list[bool], list[bool], list[bool]]:
    """Return copies of the three lists with one action flipped.

    Callers check ``is_protocol_block_unlocked`` first; this only flips.
    """
    lists = [list(block1_actions), list(block2_actions), list(block3_actions)]
    target = lists[block - 1]
    while len(target) <= action_index:
        target.append(False)
    target[action_index] = not target[action_index]
    return lists[0], lists[1], lists[2]
