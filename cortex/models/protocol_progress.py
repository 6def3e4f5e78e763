"""Protocol progress model: reflections + three action blocks per cycle."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Optional

from cortex.engine.protocol import ACTIONS_PER_BLOCK, PROTOCOL_REFLECTION_PROMPTS
from cortex.engine.temporal_rules import parse_iso_date

DEFAULT_REFLECTION_COUNT = len(PROTOCOL_REFLECTION_PROMPTS)
LIST_FIELDS = ("reflections", "block1_actions", "block2_actions", "block3_actions")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _empty_actions() -> list[bool]:
    return [False] * ACTIONS_PER_BLOCK


def sanitize_actions(value) -> list[bool]:
    """Exactly ``ACTIONS_PER_BLOCK`` booleans, or a fresh unchecked block."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return _empty_actions()
    if not isinstance(value, (list, tuple)):
        return _empty_actions()
    actions = [bool(v) for v in value][:ACTIONS_PER_BLOCK]
    return actions if len(actions) == ACTIONS_PER_BLOCK else _empty_actions()


def sanitize_reflections(value, count: int = DEFAULT_REFLECTION_COUNT) -> list[str]:
    """Pad/truncate reflections to ``count`` strings."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = None
    if not isinstance(value, (list, tuple)):
        return [""] * count
    reflections = ["" if v is None else str(v) for v in value][:count]
    reflections.extend([""] * (count - len(reflections)))
    return reflections


@dataclass
class ProtocolProgress:
    protocol_id: str
    cycle_id: str
    user_id: str
    niche_id: str
    reflections: list = field(default_factory=lambda: [""] * DEFAULT_REFLECTION_COUNT)
    block1_actions: list = field(default_factory=_empty_actions)
    block2_actions: list = field(default_factory=_empty_actions)
    block3_actions: list = field(default_factory=_empty_actions)
    current_block: int = 1
    completed_at: str = ""          # ISO 8601, "" while open
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)

    @property
    def completed(self) -> Optional[datetime]:
        return parse_iso_date(self.completed_at)

    @property
    def blocks(self) -> tuple[list[bool], list[bool], list[bool]]:
        return self.block1_actions, self.block2_actions, self.block3_actions

    def apply(self, fields: dict) -> ProtocolProgress:
        known = {k: v for k, v in fields.items() if k in self.__dataclass_fields__}
        return replace(self, **known)

    def strategic_plan_progress(self) -> dict:
        actions = [*self.block1_actions, *self.block2_actions, *self.block3_actions]
        completed = sum(1 for a in actions if a)
        total = len(actions)
        return {
            "completed_actions": completed,
            "total_actions": total,
            "ratio_label": f"{completed} / {total}",
        }

    def to_dict(self) -> dict:
        d = asdict(self)
        for list_field in LIST_FIELDS:
            d[list_field] = json.dumps(d[list_field])
        d["current_block"] = int(self.current_block)
        return d

    def to_api(self) -> dict:
        d = asdict(self)
        for key in ("completed_at", "created_at", "updated_at"):
            d[key] = d[key] or None
        d["recommended_step"] = (
            None if self.completed_at else infer_recommended_step(self.current_block)
        )
        return d

    @classmethod
    def from_dict(cls, data: dict, reflection_count: int = DEFAULT_REFLECTION_COUNT) -> ProtocolProgress:
        data = dict(data)
        if "id" in data and "protocol_id" not in data:
            data["protocol_id"] = data.pop("id")
        data["reflections"] = sanitize_reflections(data.get("reflections"), reflection_count)
        for block_field in ("block1_actions", "block2_actions", "block3_actions"):
            data[block_field] = sanitize_actions(data.get(block_field))
        try:
            current_block = int(data.get("current_block", 1))
        except (TypeError, ValueError):
            current_block = 1
        data["current_block"] = current_block if current_block in (2, 3) else 1
        completed_at = data.get("completed_at") or ""
        data["completed_at"] = completed_at if parse_iso_date(completed_at) else ""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def infer_recommended_step(current_block: int) -> str:
    if current_block <= 1:
        return "Iniciar Bloco 1: Diagnóstico de Base"
    if current_block == 2:
        return "Concluir Bloco 2: Alinhamento Estrutural"
    return "Finalizar Bloco 3: Consolidação de Execução"
