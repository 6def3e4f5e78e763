"""The four fixed diagnostic pillars and the reevaluation windows."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from cortex.config.settings import REEVALUATION_FIRST_DAYS, REEVALUATION_SECOND_DAYS


class Pillar(str, Enum):
    CLARITY = "clarity"
    STRUCTURE = "structure"
    EXECUTION = "execution"
    EMOTIONAL = "emotional"

    @property
    def display_name(self) -> str:
        return PILLAR_TITLES[self]


# Canonical order: candidate lists and reports always follow it
PILLARS: tuple[Pillar, ...] = (
    Pillar.CLARITY,
    Pillar.STRUCTURE,
    Pillar.EXECUTION,
    Pillar.EMOTIONAL,
)

PILLAR_TITLES: dict[Pillar, str] = {
    Pillar.CLARITY: "Clareza Estratégica",
    Pillar.STRUCTURE: "Estrutura de Projeto",
    Pillar.EXECUTION: "Execução Consistente",
    Pillar.EMOTIONAL: "Autogestão Emocional",
}

REEVALUATION_WINDOWS = {
    "first_days": REEVALUATION_FIRST_DAYS,
    "second_days": REEVALUATION_SECOND_DAYS,
}


def to_pillar(value) -> Optional[Pillar]:
    """Parse a stored pillar tag. Unknown or missing tags yield None."""
    if isinstance(value, Pillar):
        return value
    try:
        return Pillar(value)
    except (ValueError, TypeError):
        return None
