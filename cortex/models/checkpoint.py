"""Local checkpoint of in-flight answers, keyed by (user, niche).

Never authoritative: it only fills in progress lost to a dropped write and
is reconciled against stored answers by answered-key count.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional


@dataclass
class CycleCheckpoint:
    cycle_id: str
    phase1_answers: dict = field(default_factory=dict)
    phase2_answers: dict = field(default_factory=dict)
    reflections: list = field(default_factory=list)
    updated_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw) -> Optional[CycleCheckpoint]:
        """Load a stored checkpoint; corrupt payloads read as no checkpoint."""
        if not raw:
            return None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return None
        if not isinstance(data, dict) or not data.get("cycle_id"):
            return None

        def _answers(value) -> dict:
            if not isinstance(value, dict):
                return {}
            answers = {}
            for key, score in value.items():
                if isinstance(score, int) and not isinstance(score, bool) and score > 0:
                    answers[str(key)] = score
            return answers

        reflections = data.get("reflections")
        return cls(
            cycle_id=str(data["cycle_id"]),
            phase1_answers=_answers(data.get("phase1_answers")),
            phase2_answers=_answers(data.get("phase2_answers")),
            reflections=[str(r) for r in reflections] if isinstance(reflections, list) else [],
            updated_at=str(data.get("updated_at") or ""),
        )
