"""Diagnostic flow orchestrator — one session's walk through a cycle.

Holds the in-memory session state (stage, answers, summaries, protocol
draft) for a single (user, niche) pair and drives every transition through
the persistence port. The stage is re-derived from stored state on every
``initialize()``; mutations persist first and only then commit to memory,
so a failed write leaves the session exactly where it was.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from cortex.constants.pillars import PILLARS, Pillar, to_pillar
from cortex.engine.errors import (
    BusinessRuleViolation,
    DiagnosticError,
    InitializationError,
    StoreError,
)
from cortex.engine.protocol import (
    ACTIONS_PER_BLOCK,
    BLOCK_NUMBERS,
    has_reflections_completed,
    infer_current_protocol_block,
    is_protocol_block_unlocked,
    is_protocol_completed,
    toggle_action,
)
from cortex.engine.questionnaire import (
    DiagnosticBlueprint,
    Phase1Question,
    Phase2Question,
    default_blueprint,
)
from cortex.engine.scoring import (
    PHASE_SCORE_MAX,
    PHASE_SCORE_MIN,
    CriticalPoint,
    Phase1Summary,
    Phase2Summary,
    compute_phase1_summary,
    compute_phase2_summary,
    get_critical_points,
    round_half_up,
)
from cortex.engine.stage import (
    Stage,
    derive_stage,
    extract_phase2_scores,
    is_phase1_complete,
    next_phase1_question,
    next_phase2_index,
    phase2_gate_error,
    reconcile_answers,
    to_pillar_score_buckets,
)
from cortex.engine.temporal_rules import (
    DiagnosticTemporalRules,
    compute_diagnostic_temporal_rules,
)
from cortex.models.checkpoint import CycleCheckpoint
from cortex.models.cycle import CycleStatus, DiagnosticCycle
from cortex.models.protocol_progress import ProtocolProgress

logger = logging.getLogger(__name__)

BUSY_MESSAGE = "Aguarde a conclusão da operação em andamento."
NOT_READY_MESSAGE = "Diagnóstico ainda não inicializado."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _filled(reflections) -> int:
    return sum(1 for value in reflections if str(value or "").strip())


def rules_for(cycle: Optional[DiagnosticCycle], now: datetime) -> DiagnosticTemporalRules:
    if cycle is None:
        return compute_diagnostic_temporal_rules(now=now)
    return compute_diagnostic_temporal_rules(
        phase1_completed_at=cycle.phase1_completed_at,
        protocol_completed_at=cycle.protocol_completed_at,
        reeval45_completed_at=cycle.reeval_45_completed_at,
        now=now,
    )


class DiagnosticFlowOrchestrator:
    def __init__(
        self,
        store,
        checkpoints,
        user_id: str,
        niche_id: str,
        blueprint: DiagnosticBlueprint | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._checkpoints = checkpoints
        self.user_id = user_id
        self.niche_id = niche_id
        self.blueprint = blueprint or default_blueprint()
        self._clock = clock or _utcnow
        self._phase1_questions = self.blueprint.phase1_questions()
        self._checkpoint: Optional[CycleCheckpoint] = None

        self.cycle: Optional[DiagnosticCycle] = None
        self.stage: Optional[Stage] = None
        self.phase1_answers: dict[str, int] = {}
        self.phase2_answers: dict[str, int] = {}
        self.phase1_summary: Optional[Phase1Summary] = None
        self.phase2_summary: Optional[Phase2Summary] = None
        self.critical_points: list[CriticalPoint] = []
        self.protocol: Optional[ProtocolProgress] = None
        self.is_reevaluation_mode = False
        self.selected_critical_pillar: Optional[Pillar] = None
        self.selected_strong_pillar: Optional[Pillar] = None

        self.error_message: Optional[str] = None
        self.is_initializing = False
        self.is_saving = False
        self.initialization_failed = False

    # ── Derived views ─────────────────────────────────────────────────

    def now(self) -> datetime:
        return self._clock()

    def _now_iso(self) -> str:
        return self.now().isoformat()

    @property
    def cycle_number(self) -> int:
        return self.cycle.cycle_number if self.cycle else 1

    @property
    def temporal_rules(self) -> DiagnosticTemporalRules:
        return rules_for(self.cycle, self.now())

    @property
    def reflection_count(self) -> int:
        return self.blueprint.reflection_count

    @property
    def resolved_critical_pillar(self) -> Optional[Pillar]:
        if self.phase1_summary and self.phase1_summary.critical_pillar:
            return self.phase1_summary.critical_pillar
        if self.cycle and self.cycle.critical:
            return self.cycle.critical
        return self.selected_critical_pillar

    @property
    def resolved_strong_pillar(self) -> Optional[Pillar]:
        if self.phase1_summary and self.phase1_summary.strong_pillar:
            return self.phase1_summary.strong_pillar
        if self.cycle and self.cycle.strong:
            return self.cycle.strong
        return self.selected_strong_pillar

    @property
    def phase2_questions(self) -> list[Phase2Question]:
        return self.blueprint.get_phase2_questions(self.resolved_critical_pillar)

    @property
    def current_phase1_question(self) -> Optional[Phase1Question]:
        return next_phase1_question(self._phase1_questions, self.phase1_answers)

    @property
    def current_phase2_question(self) -> Optional[Phase2Question]:
        questions = self.phase2_questions
        index = next_phase2_index(questions, self.phase2_answers)
        return questions[index] if index >= 0 else None

    @property
    def phase1_progress(self) -> int:
        total = self.blueprint.total_phase1_questions
        if total == 0:
            return 0
        return round_half_up(min(len(self.phase1_answers), total) / total * 100)

    @property
    def phase2_progress(self) -> int:
        questions = self.phase2_questions
        if not questions:
            return 0
        answered = extract_phase2_scores(questions, self.phase2_answers).answered_count
        return round_half_up(answered / len(questions) * 100)

    @property
    def protocol_completion(self) -> dict:
        if self.protocol is None:
            total = ACTIONS_PER_BLOCK * len(BLOCK_NUMBERS)
            return {"completed_actions": 0, "total_actions": total, "ratio_label": f"0 / {total}"}
        return self.protocol.strategic_plan_progress()

    def tie_break(self) -> Optional[dict]:
        summary = self.phase1_summary
        if summary is None or not summary.has_tie_break:
            return None
        return {
            "critical_candidates": [p.value for p in summary.critical_candidates],
            "strong_candidates": [p.value for p in summary.strong_candidates],
            "needs_critical": len(summary.critical_candidates) > 1,
            "needs_strong": len(summary.strong_candidates) > 1,
            "selected_critical": self.selected_critical_pillar.value if self.selected_critical_pillar else None,
            "selected_strong": self.selected_strong_pillar.value if self.selected_strong_pillar else None,
        }

    def snapshot(self) -> dict:
        phase1_question = self.current_phase1_question
        phase2_question = self.current_phase2_question
        return {
            "user_id": self.user_id,
            "niche_id": self.niche_id,
            "stage": self.stage.value if self.stage else None,
            "cycle": self.cycle.to_api() if self.cycle else None,
            "cycle_number": self.cycle_number,
            "is_reevaluation_mode": self.is_reevaluation_mode,
            "is_saving": self.is_saving,
            "initialization_failed": self.initialization_failed,
            "error_message": self.error_message,
            "temporal_rules": self.temporal_rules.to_dict(),
            "phase1": {
                "progress": self.phase1_progress,
                "answered": len(self.phase1_answers),
                "total": self.blueprint.total_phase1_questions,
                "current_question": phase1_question.to_dict() if phase1_question else None,
                "summary": self.phase1_summary.to_dict() if self.phase1_summary else None,
                "tie_break": self.tie_break(),
            },
            "phase2": {
                "progress": self.phase2_progress,
                "total": len(self.phase2_questions),
                "current_question": phase2_question.to_dict() if phase2_question else None,
                "summary": self.phase2_summary.to_dict() if self.phase2_summary else None,
                "critical_points": [p.to_dict() for p in self.critical_points],
            },
            "protocol": self.protocol.to_api() if self.protocol else None,
            "protocol_completion": self.protocol_completion,
        }

    # ── Mutation plumbing ─────────────────────────────────────────────

    def _reject_if_busy(self, operation: str) -> bool:
        if self.is_saving or self.is_initializing:
            logger.warning(f"{operation} rejected for {self.user_id}/{self.niche_id}: busy")
            self.error_message = BUSY_MESSAGE
            return True
        return False

    async def _run(self, operation: str, action: Callable[[], Awaitable[None]]) -> bool:
        """Run one mutation under the saving flag; errors become ``error_message``."""
        if self._reject_if_busy(operation):
            return False
        if self.cycle is None:
            self.error_message = NOT_READY_MESSAGE
            return False

        self.is_saving = True
        self.error_message = None
        try:
            await action()
            return True
        except BusinessRuleViolation as exc:
            logger.warning(f"{operation} rejected for {self.user_id}/{self.niche_id}: {exc}")
            self.error_message = str(exc)
            if exc.redirect is not None:
                self.stage = exc.redirect
            return False
        except StoreError as exc:
            logger.error(f"{operation} failed for {self.user_id}/{self.niche_id}: {exc}")
            self.error_message = str(exc)
            return False
        finally:
            self.is_saving = False

    @staticmethod
    def _validate_score(score) -> int:
        if isinstance(score, bool) or not isinstance(score, int):
            raise BusinessRuleViolation("Selecione uma resposta válida.")
        if not PHASE_SCORE_MIN <= score <= PHASE_SCORE_MAX:
            raise BusinessRuleViolation(
                f"A resposta deve estar entre {PHASE_SCORE_MIN} e {PHASE_SCORE_MAX}."
            )
        return score

    async def _save_checkpoint(self, cycle_id: str, **changes) -> None:
        """Mirror in-flight answers locally. Failures are logged, never raised."""
        base = self._checkpoint if self._checkpoint and self._checkpoint.cycle_id == cycle_id else None
        checkpoint = CycleCheckpoint(
            cycle_id=cycle_id,
            phase1_answers=changes.get("phase1_answers", base.phase1_answers if base else {}),
            phase2_answers=changes.get("phase2_answers", base.phase2_answers if base else {}),
            reflections=changes.get("reflections", base.reflections if base else []),
            updated_at=self._now_iso(),
        )
        try:
            await self._checkpoints.save_checkpoint(self.user_id, self.niche_id, checkpoint)
        except StoreError as exc:
            logger.warning(f"Checkpoint write skipped for {self.user_id}/{self.niche_id}: {exc}")
            return
        self._checkpoint = checkpoint

    async def _load_checkpoint(self) -> Optional[CycleCheckpoint]:
        try:
            return await self._checkpoints.load_checkpoint(self.user_id, self.niche_id)
        except StoreError as exc:
            logger.warning(f"Checkpoint read skipped for {self.user_id}/{self.niche_id}: {exc}")
            return None

    async def _persist_phase1_summary(
        self,
        cycle: DiagnosticCycle,
        summary: Phase1Summary,
        status: Optional[str] = None,
    ) -> DiagnosticCycle:
        if status is None:
            status = (
                CycleStatus.PHASE1_TIE_PENDING if summary.has_tie_break
                else CycleStatus.PHASE2_IN_PROGRESS
            )
        fields = {
            "status": status,
            "general_index": summary.general_index,
            "critical_pillar": summary.critical_pillar.value if summary.critical_pillar else "",
            "strong_pillar": summary.strong_pillar.value if summary.strong_pillar else "",
            "phase1_completed_at": cycle.phase1_completed_at or self._now_iso(),
        }
        for pillar in PILLARS:
            fields[f"pillar_{pillar.value}"] = summary.pillar_percentages[pillar]
        return await self._store.update_cycle(cycle.cycle_id, fields)

    async def _persist_phase2_summary(
        self,
        cycle: DiagnosticCycle,
        summary: Phase2Summary,
        reevaluation: bool,
    ) -> DiagnosticCycle:
        now_iso = self._now_iso()
        fields = {
            "phase2_technical_index": summary.technical_index,
            "phase2_state_index": summary.state_index,
            "phase2_general_index": summary.general_index,
        }
        if reevaluation:
            fields["status"] = CycleStatus.REEVAL_45_COMPLETED
            fields["reeval_45_completed_at"] = now_iso
        else:
            fields["status"] = CycleStatus.PROTOCOL_IN_PROGRESS
            fields["phase2_completed_at"] = now_iso
        return await self._store.update_cycle(cycle.cycle_id, fields)

    async def _ensure_protocol(self, cycle: DiagnosticCycle) -> ProtocolProgress:
        protocol = await self._store.get_protocol(cycle.cycle_id, self.reflection_count)
        if protocol is None:
            protocol = await self._store.create_protocol(cycle, self.reflection_count)
            logger.info(f"Protocol row created for cycle {cycle.cycle_id}")
        return protocol

    async def _fresh_cycle(self) -> DiagnosticCycle:
        cycle = await self._store.get_cycle(self.cycle.cycle_id)
        if cycle is None:
            raise StoreError("Ciclo diagnóstico não encontrado.")
        return cycle

    def _check_phase2_gate(self, cycle: DiagnosticCycle) -> None:
        rules = rules_for(cycle, self.now())
        message = phase2_gate_error(cycle, rules, self.is_reevaluation_mode)
        if message is None:
            return
        redirect = Stage.PHASE1
        if cycle.protocol_completed_at:
            if rules.phase2_reevaluation.is_locked:
                redirect = Stage.BLOCKED_45
            elif rules.new_structural_diagnosis.is_locked:
                redirect = Stage.BLOCKED_90
        raise BusinessRuleViolation(message, redirect=redirect)

    # ── Initialization ────────────────────────────────────────────────

    async def initialize(self) -> bool:
        """Load or create the active cycle and derive the stage to resume at."""
        if self.is_saving or self.is_initializing:
            self.error_message = BUSY_MESSAGE
            return False

        self.is_initializing = True
        self.error_message = None
        self.initialization_failed = False
        try:
            await self._initialize()
            return True
        except DiagnosticError as exc:
            logger.error(f"Initialization failed for {self.user_id}/{self.niche_id}: {exc}")
            self.stage = None
            self.initialization_failed = True
            self.error_message = str(exc)
            return False
        finally:
            self.is_initializing = False

    async def _establish_cycle(self) -> DiagnosticCycle:
        now = self.now()
        latest = await self._store.get_latest_cycle(self.user_id, self.niche_id)
        if latest is not None and not rules_for(latest, now).can_start_new_cycle:
            return latest

        if latest is not None:
            await self._store.update_cycle(latest.cycle_id, {"reeval_90_completed_at": now.isoformat()})
            logger.info(
                f"Cycle {latest.cycle_number} closed for {self.user_id}/{self.niche_id}; "
                f"starting cycle {latest.cycle_number + 1}"
            )
        number = latest.cycle_number + 1 if latest is not None else 1
        cycle = await self._store.create_cycle(self.user_id, self.niche_id, number)
        if cycle is None:
            raise InitializationError("Não foi possível iniciar o ciclo diagnóstico.")
        logger.info(f"Cycle {number} created for {self.user_id}/{self.niche_id}")
        return cycle

    async def _initialize(self) -> None:
        checkpoint = await self._load_checkpoint()
        cycle = await self._establish_cycle()
        checkpoint_cycle_id = checkpoint.cycle_id if checkpoint else None

        phase1_answers = reconcile_answers(
            await self._store.get_phase1_answers(cycle.cycle_id),
            checkpoint.phase1_answers if checkpoint else None,
            checkpoint_cycle_id,
            cycle.cycle_id,
        )
        phase2_answers = reconcile_answers(
            await self._store.get_phase2_answers(cycle.cycle_id),
            checkpoint.phase2_answers if checkpoint else None,
            checkpoint_cycle_id,
            cycle.cycle_id,
        )

        self._checkpoint = checkpoint if checkpoint_cycle_id == cycle.cycle_id else None
        self.cycle = cycle
        self.phase1_answers = phase1_answers
        self.phase2_answers = phase2_answers
        self.phase1_summary = None
        self.phase2_summary = None
        self.critical_points = []
        self.protocol = None
        self.is_reevaluation_mode = False
        self.selected_critical_pillar = None
        self.selected_strong_pillar = None

        total = self.blueprint.total_phase1_questions
        if not is_phase1_complete(total, phase1_answers) and not cycle.phase1_completed_at:
            self.stage = Stage.PHASE1
            return

        summary = compute_phase1_summary(
            to_pillar_score_buckets(self._phase1_questions, phase1_answers),
            cycle.critical,
            cycle.strong,
        )
        if not cycle.phase1_completed_at:
            cycle = await self._persist_phase1_summary(cycle, summary)
            self.cycle = cycle
        self.phase1_summary = summary
        self.selected_critical_pillar = summary.critical_pillar
        self.selected_strong_pillar = summary.strong_pillar

        if summary.has_tie_break:
            self.stage = Stage.PHASE1_TIE
            return

        questions = self.blueprint.get_phase2_questions(summary.critical_pillar)
        extraction = extract_phase2_scores(questions, phase2_answers)
        if extraction.technical_scores and extraction.state_scores:
            self.phase2_summary = compute_phase2_summary(
                extraction.technical_scores, extraction.state_scores,
            )
            self.critical_points = get_critical_points(extraction.critical_point_inputs)

        if not cycle.phase2_completed_at:
            if extraction.answered_count >= len(questions) and self.phase2_summary:
                self.cycle = await self._persist_phase2_summary(cycle, self.phase2_summary, False)
                self.stage = Stage.PHASE2_RESULT
                return
            self.stage = derive_stage(
                cycle,
                phase1_complete=True,
                has_tie_break=False,
                phase2_answered=extraction.answered_count,
                phase2_total=len(questions),
                protocol=None,
                reflection_count=self.reflection_count,
                rules=rules_for(cycle, self.now()),
            ).stage
            return

        protocol = await self._ensure_protocol(cycle)
        if protocol.completed_at and not cycle.protocol_completed_at:
            cycle = await self._store.update_cycle(cycle.cycle_id, {
                "status": CycleStatus.PROTOCOL_COMPLETED,
                "protocol_completed_at": protocol.completed_at,
            })
            self.cycle = cycle
            logger.info(f"Protocol completion restored on cycle {cycle.cycle_id}")

        if self._checkpoint and _filled(self._checkpoint.reflections) > _filled(protocol.reflections):
            protocol = protocol.apply({"reflections": list(self._checkpoint.reflections)})
        self.protocol = protocol

        decision = derive_stage(
            cycle,
            phase1_complete=True,
            has_tie_break=False,
            phase2_answered=extraction.answered_count,
            phase2_total=len(questions),
            protocol=protocol,
            reflection_count=self.reflection_count,
            rules=rules_for(cycle, self.now()),
        )
        if decision.reevaluation:
            self.is_reevaluation_mode = True
            self.phase2_answers = {}
            self.phase2_summary = None
            self.critical_points = []
            logger.info(f"Reevaluation opened for cycle {cycle.cycle_id}")
        self.stage = decision.stage

    # ── Phase 1 ───────────────────────────────────────────────────────

    async def save_phase1_answer(self, score: int) -> bool:
        return await self._run("save_phase1_answer", lambda: self._save_phase1_answer(score))

    async def _save_phase1_answer(self, score: int) -> None:
        score = self._validate_score(score)
        if self.stage != Stage.PHASE1:
            raise BusinessRuleViolation("A Fase 1 não está aberta para respostas.")
        question = self.current_phase1_question
        if question is None:
            raise BusinessRuleViolation("Todas as perguntas da Fase 1 já foram respondidas.")

        cycle = self.cycle
        await self._store.save_phase1_answer(
            cycle.cycle_id, question.pillar.value, question.question_number, score,
        )
        if cycle.status != CycleStatus.PHASE1_IN_PROGRESS:
            cycle = await self._store.update_cycle(
                cycle.cycle_id, {"status": CycleStatus.PHASE1_IN_PROGRESS},
            )

        answers = {**self.phase1_answers, question.answer_key(): score}
        await self._save_checkpoint(cycle.cycle_id, phase1_answers=answers)

        if next_phase1_question(self._phase1_questions, answers) is not None:
            self.cycle = cycle
            self.phase1_answers = answers
            return

        summary = compute_phase1_summary(to_pillar_score_buckets(self._phase1_questions, answers))
        cycle = await self._persist_phase1_summary(cycle, summary)

        self.cycle = cycle
        self.phase1_answers = answers
        self.phase1_summary = summary
        self.selected_critical_pillar = summary.critical_pillar
        self.selected_strong_pillar = summary.strong_pillar
        self.stage = Stage.PHASE1_TIE if summary.has_tie_break else Stage.PHASE1_RESULT
        logger.info(
            f"Phase 1 completed for cycle {cycle.cycle_id}: index={summary.general_index} "
            f"critical={summary.critical_pillar} strong={summary.strong_pillar}"
        )

    def select_tie_break(self, critical=None, strong=None) -> bool:
        """Record the user's pick among the tied candidates (not persisted yet)."""
        if self._reject_if_busy("select_tie_break"):
            return False
        summary = self.phase1_summary
        if self.stage != Stage.PHASE1_TIE or summary is None:
            self.error_message = "Não há desempate pendente."
            return False

        if critical is not None:
            pillar = to_pillar(critical)
            if pillar not in summary.critical_candidates:
                self.error_message = "Escolha o pilar crítico entre os pilares empatados."
                return False
            self.selected_critical_pillar = pillar
        if strong is not None:
            pillar = to_pillar(strong)
            if pillar not in summary.strong_candidates:
                self.error_message = "Escolha o pilar forte entre os pilares empatados."
                return False
            self.selected_strong_pillar = pillar
        self.error_message = None
        return True

    async def resolve_tie_break(self) -> bool:
        return await self._run("resolve_tie_break", self._resolve_tie_break)

    async def _resolve_tie_break(self) -> None:
        summary = self.phase1_summary
        if self.stage != Stage.PHASE1_TIE or summary is None:
            raise BusinessRuleViolation("Não há desempate pendente.")

        needs_critical = len(summary.critical_candidates) > 1 and self.selected_critical_pillar is None
        needs_strong = len(summary.strong_candidates) > 1 and self.selected_strong_pillar is None
        if needs_critical or needs_strong:
            raise BusinessRuleViolation("Selecione os pilares empatados para continuar.")

        resolved = compute_phase1_summary(
            to_pillar_score_buckets(self._phase1_questions, self.phase1_answers),
            self.selected_critical_pillar,
            self.selected_strong_pillar,
        )
        if resolved.has_tie_break:
            raise BusinessRuleViolation("Não foi possível resolver o desempate. Revise sua escolha.")

        cycle = await self._persist_phase1_summary(
            self.cycle, resolved, status=CycleStatus.PHASE2_IN_PROGRESS,
        )
        self.cycle = cycle
        self.phase1_summary = resolved
        self.stage = Stage.PHASE1_RESULT
        logger.info(
            f"Tie-break resolved for cycle {cycle.cycle_id}: "
            f"critical={resolved.critical_pillar} strong={resolved.strong_pillar}"
        )

    def open_phase1_result(self) -> bool:
        if self._reject_if_busy("open_phase1_result"):
            return False
        if self.phase1_summary is None or self.phase1_summary.has_tie_break:
            self.error_message = "Conclua a Fase 1 para ver o resultado."
            return False
        self.error_message = None
        self.stage = Stage.PHASE1_RESULT
        return True

    # ── Phase 2 ───────────────────────────────────────────────────────

    async def start_phase2(self) -> bool:
        return await self._run("start_phase2", self._start_phase2)

    async def _start_phase2(self) -> None:
        if self.phase1_summary is not None and self.phase1_summary.has_tie_break:
            raise BusinessRuleViolation("Resolva o desempate antes de iniciar a Fase 2.")

        cycle = await self._fresh_cycle()
        self._check_phase2_gate(cycle)
        if cycle.phase2_completed_at and not self.is_reevaluation_mode:
            raise BusinessRuleViolation("A Fase 2 já foi concluída neste ciclo.")

        self.cycle = cycle
        if self.resolved_critical_pillar is None:
            raise BusinessRuleViolation("Defina o pilar crítico para avançar.")
        if not self.phase2_questions:
            raise BusinessRuleViolation("Não há perguntas de Fase 2 para este pilar.")

        self.stage = Stage.PHASE2
        logger.info(
            f"Phase 2 started for cycle {cycle.cycle_id} "
            f"(reevaluation={self.is_reevaluation_mode})"
        )

    async def save_phase2_answer(self, score: int) -> bool:
        return await self._run("save_phase2_answer", lambda: self._save_phase2_answer(score))

    async def _save_phase2_answer(self, score: int) -> None:
        score = self._validate_score(score)
        if self.stage != Stage.PHASE2:
            raise BusinessRuleViolation("A Fase 2 não está aberta para respostas.")

        cycle = await self._fresh_cycle()
        self._check_phase2_gate(cycle)

        questions = self.blueprint.get_phase2_questions(
            self.resolved_critical_pillar or cycle.critical
        )
        index = next_phase2_index(questions, self.phase2_answers)
        if index < 0:
            raise BusinessRuleViolation("Todas as perguntas da Fase 2 já foram respondidas.")
        question = questions[index]

        await self._store.save_phase2_answer(
            cycle.cycle_id, question.stored_type(), question.question_number, score,
        )
        if not self.is_reevaluation_mode and cycle.status != CycleStatus.PHASE2_IN_PROGRESS:
            cycle = await self._store.update_cycle(
                cycle.cycle_id, {"status": CycleStatus.PHASE2_IN_PROGRESS},
            )

        answers = {**self.phase2_answers, question.answer_key(): score}
        await self._save_checkpoint(cycle.cycle_id, phase2_answers=answers)

        if next_phase2_index(questions, answers) >= 0:
            self.cycle = cycle
            self.phase2_answers = answers
            return

        extraction = extract_phase2_scores(questions, answers)
        summary = compute_phase2_summary(extraction.technical_scores, extraction.state_scores)
        critical_points = get_critical_points(extraction.critical_point_inputs)
        cycle = await self._persist_phase2_summary(cycle, summary, self.is_reevaluation_mode)

        self.cycle = cycle
        self.phase2_answers = answers
        self.phase2_summary = summary
        self.critical_points = critical_points
        self.stage = Stage.PHASE2_RESULT
        logger.info(
            f"Phase 2 completed for cycle {cycle.cycle_id}: index={summary.general_index} "
            f"critical_points={len(critical_points)} reevaluation={self.is_reevaluation_mode}"
        )

    def open_phase2_result(self) -> bool:
        if self._reject_if_busy("open_phase2_result"):
            return False
        if self.phase2_summary is None:
            self.error_message = "Conclua a Fase 2 para ver o resultado."
            return False
        self.error_message = None
        self.stage = Stage.PHASE2_RESULT
        return True

    # ── Protocol ──────────────────────────────────────────────────────

    async def start_protocol(self) -> bool:
        return await self._run("start_protocol", self._start_protocol)

    async def _start_protocol(self) -> None:
        cycle = self.cycle
        if self.is_reevaluation_mode or cycle.protocol_completed_at:
            rules = rules_for(cycle, self.now())
            raise BusinessRuleViolation(
                rules.new_structural_diagnosis.message, redirect=Stage.BLOCKED_90,
            )
        if not cycle.phase2_completed_at:
            raise BusinessRuleViolation("Conclua a Fase 2 antes de iniciar o protocolo.")

        protocol = await self._ensure_protocol(cycle)
        if self.protocol is not None and _filled(self.protocol.reflections) > _filled(protocol.reflections):
            protocol = protocol.apply({"reflections": list(self.protocol.reflections)})

        self.protocol = protocol
        if has_reflections_completed(protocol.reflections, self.reflection_count):
            self.stage = Stage.PROTOCOL_ACTIONS
        else:
            self.stage = Stage.PROTOCOL_REFLECTIONS

    async def save_protocol_reflections(self, reflections: list[str]) -> bool:
        return await self._run(
            "save_protocol_reflections", lambda: self._save_protocol_reflections(reflections),
        )

    async def _save_protocol_reflections(self, reflections: list[str]) -> None:
        if self.stage not in (Stage.PROTOCOL_REFLECTIONS, Stage.PROTOCOL_ACTIONS):
            raise BusinessRuleViolation("Inicie o protocolo antes de registrar reflexões.")
        reflections = [str(value or "") for value in (reflections or [])]
        if not has_reflections_completed(reflections, self.reflection_count):
            raise BusinessRuleViolation(
                f"Preencha as {self.reflection_count} reflexões para continuar."
            )
        if self.protocol is not None and self.protocol.completed_at:
            raise BusinessRuleViolation("Protocolo concluído não pode ser alterado.")

        reflections = reflections[:self.reflection_count]
        protocol = self.protocol or await self._ensure_protocol(self.cycle)
        protocol = await self._store.update_protocol(self.cycle.cycle_id, {
            "reflections": reflections,
            "current_block": infer_current_protocol_block(*protocol.blocks),
        })
        await self._save_checkpoint(self.cycle.cycle_id, reflections=reflections)

        self.protocol = protocol
        self.stage = Stage.PROTOCOL_ACTIONS
        logger.info(f"Reflections saved for cycle {self.cycle.cycle_id}")

    async def toggle_protocol_action(self, block: int, action_index: int) -> bool:
        return await self._run(
            "toggle_protocol_action", lambda: self._toggle_protocol_action(block, action_index),
        )

    async def _toggle_protocol_action(self, block: int, action_index: int) -> None:
        protocol = self.protocol
        if protocol is not None and protocol.completed_at:
            raise BusinessRuleViolation("Protocolo concluído não pode ser alterado.")
        if self.stage != Stage.PROTOCOL_ACTIONS or protocol is None:
            raise BusinessRuleViolation("Registre as reflexões antes de executar as ações.")
        if block not in BLOCK_NUMBERS or not 0 <= action_index < ACTIONS_PER_BLOCK:
            raise BusinessRuleViolation("Ação do protocolo inválida.")
        if not is_protocol_block_unlocked(block, protocol.block1_actions, protocol.block2_actions):
            raise BusinessRuleViolation("Conclua o bloco anterior para desbloquear esta etapa.")

        block1, block2, block3 = toggle_action(block, action_index, *protocol.blocks)
        completed = is_protocol_completed(block1, block2, block3)
        completed_at = self._now_iso() if completed else ""

        protocol = await self._store.update_protocol(self.cycle.cycle_id, {
            "block1_actions": block1,
            "block2_actions": block2,
            "block3_actions": block3,
            "current_block": infer_current_protocol_block(block1, block2, block3),
            "completed_at": completed_at,
        })
        cycle_fields = {
            "status": CycleStatus.PROTOCOL_COMPLETED if completed else CycleStatus.PROTOCOL_IN_PROGRESS,
        }
        if completed:
            cycle_fields["protocol_completed_at"] = completed_at
        cycle = await self._store.update_cycle(self.cycle.cycle_id, cycle_fields)

        self.protocol = protocol
        self.cycle = cycle
        if completed:
            self.stage = Stage.COMPLETED
            logger.info(f"Protocol completed for cycle {cycle.cycle_id}")
