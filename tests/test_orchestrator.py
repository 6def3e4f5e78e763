"""Tests for the diagnostic flow orchestrator against a fakeredis-backed store.

Covers the full cycle walk, tie-breaks, temporal blocking, reevaluation,
cycle rollover, checkpoint reconciliation and store-failure injection.
"""

import asyncio

import pytest

from cortex.constants.pillars import PILLARS, Pillar
from cortex.engine.orchestrator import BUSY_MESSAGE
from cortex.engine.stage import Stage
from cortex.models.checkpoint import CycleCheckpoint
from cortex.models.cycle import CycleStatus


# ═══════════════════════════════════════════════════════════════════════════
# Initialization
# ═══════════════════════════════════════════════════════════════════════════


class TestInitialize:
    @pytest.mark.asyncio
    async def test_first_visit_creates_cycle(self, make_orchestrator, store):
        orch = make_orchestrator()
        assert await orch.initialize()
        assert orch.stage == Stage.PHASE1
        assert orch.cycle.cycle_number == 1
        assert orch.phase1_progress == 0
        assert orch.current_phase1_question.answer_key() == "clarity:1"
        assert (await store.get_latest_cycle("user-1", "niche-1")).cycle_id == orch.cycle.cycle_id

    @pytest.mark.asyncio
    async def test_reinitialize_reuses_cycle(self, make_orchestrator):
        first = make_orchestrator()
        await first.initialize()
        await first.save_phase1_answer(4)

        second = make_orchestrator()
        assert await second.initialize()
        assert second.cycle.cycle_id == first.cycle.cycle_id
        assert second.phase1_answers == {"clarity:1": 4}
        assert second.current_phase1_question.answer_key() == "clarity:2"

    @pytest.mark.asyncio
    async def test_initialization_failure_blocks(self, make_orchestrator, flaky_store):
        flaky_store.fail_on.add("get_latest_cycle")
        orch = make_orchestrator(flaky_store)

        assert not await orch.initialize()
        assert orch.stage is None
        assert orch.initialization_failed
        assert orch.error_message == "Falha simulada no armazenamento."
        assert not await orch.save_phase1_answer(4)

    @pytest.mark.asyncio
    async def test_checkpoint_read_failure_is_not_fatal(self, make_orchestrator, flaky_store):
        flaky_store.fail_on.add("load_checkpoint")
        orch = make_orchestrator(flaky_store)
        assert await orch.initialize()
        assert orch.stage == Stage.PHASE1


# ═══════════════════════════════════════════════════════════════════════════
# Phase 1
# ═══════════════════════════════════════════════════════════════════════════


class TestPhase1:
    @pytest.mark.asyncio
    async def test_complete_phase1_persists_summary(self, make_orchestrator, complete_phase1, store):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)

        assert orch.stage == Stage.PHASE1_RESULT
        assert orch.phase1_progress == 100
        assert orch.phase1_summary.general_index == 58
        assert orch.resolved_critical_pillar == Pillar.STRUCTURE
        assert orch.resolved_strong_pillar == Pillar.EMOTIONAL

        cycle = await store.get_cycle(orch.cycle.cycle_id)
        assert cycle.status == CycleStatus.PHASE2_IN_PROGRESS
        assert cycle.general_index == 58
        assert cycle.pillar_structure == 33
        assert cycle.critical_pillar == "structure"
        assert cycle.strong_pillar == "emotional"
        assert cycle.phase1_completed_at
        assert len(await store.get_phase1_answers(cycle.cycle_id)) == 48

    @pytest.mark.asyncio
    @pytest.mark.parametrize("score", [0, 7, -1, 3.5, "4", True, None])
    async def test_invalid_score_rejected(self, make_orchestrator, score, store):
        orch = make_orchestrator()
        await orch.initialize()

        assert not await orch.save_phase1_answer(score)
        assert orch.error_message
        assert orch.phase1_answers == {}
        assert orch.stage == Stage.PHASE1
        assert await store.get_phase1_answers(orch.cycle.cycle_id) == {}

    @pytest.mark.asyncio
    async def test_answer_out_of_sequence_rejected(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)

        assert not await orch.save_phase1_answer(4)
        assert orch.error_message == "A Fase 1 não está aberta para respostas."
        assert orch.stage == Stage.PHASE1_RESULT

    @pytest.mark.asyncio
    async def test_resume_after_phase1_lands_on_result(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)

        again = make_orchestrator()
        await again.initialize()
        assert again.stage == Stage.PHASE1_RESULT
        assert again.phase1_summary.critical_pillar == Pillar.STRUCTURE


# ═══════════════════════════════════════════════════════════════════════════
# Tie-break
# ═══════════════════════════════════════════════════════════════════════════


TIED_SCORES = {p: 4 for p in PILLARS}


class TestTieBreak:
    @pytest.mark.asyncio
    async def test_full_tie_requires_both_picks(self, make_orchestrator, complete_phase1, store):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch, TIED_SCORES)

        assert orch.stage == Stage.PHASE1_TIE
        tie = orch.tie_break()
        assert tie["critical_candidates"] == [p.value for p in PILLARS]
        assert tie["needs_critical"] and tie["needs_strong"]
        assert (await store.get_cycle(orch.cycle.cycle_id)).status == CycleStatus.PHASE1_TIE_PENDING

        assert orch.select_tie_break(critical="structure")
        assert not await orch.resolve_tie_break()
        assert orch.stage == Stage.PHASE1_TIE

        assert orch.select_tie_break(strong="clarity")
        assert await orch.resolve_tie_break()
        assert orch.stage == Stage.PHASE1_RESULT
        assert orch.resolved_critical_pillar == Pillar.STRUCTURE

        cycle = await store.get_cycle(orch.cycle.cycle_id)
        assert cycle.critical_pillar == "structure"
        assert cycle.strong_pillar == "clarity"
        assert cycle.status == CycleStatus.PHASE2_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_pick_outside_candidates_rejected(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        scores = {Pillar.CLARITY: 2, Pillar.STRUCTURE: 2, Pillar.EXECUTION: 4, Pillar.EMOTIONAL: 5}
        await complete_phase1(orch, scores)

        assert orch.stage == Stage.PHASE1_TIE
        assert not orch.select_tie_break(critical="emotional")
        assert not orch.select_tie_break(critical="bogus")
        assert orch.select_tie_break(critical="clarity")
        assert await orch.resolve_tie_break()
        assert orch.resolved_critical_pillar == Pillar.CLARITY
        assert orch.resolved_strong_pillar == Pillar.EMOTIONAL

    @pytest.mark.asyncio
    async def test_pending_tie_survives_reload(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch, TIED_SCORES)

        again = make_orchestrator()
        await again.initialize()
        assert again.stage == Stage.PHASE1_TIE
        assert not await again.start_phase2()

    @pytest.mark.asyncio
    async def test_resolved_tie_survives_reload(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch, TIED_SCORES)
        orch.select_tie_break(critical="execution", strong="emotional")
        await orch.resolve_tie_break()

        again = make_orchestrator()
        await again.initialize()
        assert again.stage == Stage.PHASE1_RESULT
        assert again.resolved_critical_pillar == Pillar.EXECUTION
        assert all(q.pillar == Pillar.EXECUTION for q in again.phase2_questions if q.question_type == "technical")

    @pytest.mark.asyncio
    async def test_tie_break_without_tie(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.initialize()
        assert not orch.select_tie_break(critical="clarity")
        assert not await orch.resolve_tie_break()


# ═══════════════════════════════════════════════════════════════════════════
# Phase 2
# ═══════════════════════════════════════════════════════════════════════════


class TestPhase2:
    @pytest.mark.asyncio
    async def test_phase2_uses_critical_pillar_questions(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)
        assert await orch.start_phase2()

        assert orch.stage == Stage.PHASE2
        technical = [q for q in orch.phase2_questions if q.question_type == "technical"]
        assert len(technical) == 14
        assert all(q.pillar == Pillar.STRUCTURE for q in technical)
        assert orch.current_phase2_question.answer_key() == "technical:structure:1"

    @pytest.mark.asyncio
    async def test_start_phase2_before_phase1_rejected(self, make_orchestrator):
        orch = make_orchestrator()
        await orch.initialize()
        assert not await orch.start_phase2()
        assert orch.error_message == "Conclua a Fase 1 antes de acessar a Fase 2."
        assert orch.stage == Stage.PHASE1

    @pytest.mark.asyncio
    async def test_complete_phase2(self, make_orchestrator, complete_phase1, complete_phase2, store):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)
        await orch.start_phase2()
        await complete_phase2(orch, score=2)

        assert orch.stage == Stage.PHASE2_RESULT
        assert orch.phase2_summary.general_index == 33
        assert len(orch.critical_points) == 20
        assert orch.critical_points[0].severity == "moderado"

        cycle = await store.get_cycle(orch.cycle.cycle_id)
        assert cycle.status == CycleStatus.PROTOCOL_IN_PROGRESS
        assert cycle.phase2_general_index == 33
        assert cycle.phase2_completed_at

    @pytest.mark.asyncio
    async def test_partial_phase2_resumes(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)
        await orch.start_phase2()
        for _ in range(3):
            await orch.save_phase2_answer(5)

        again = make_orchestrator()
        await again.initialize()
        assert again.stage == Stage.PHASE2
        assert again.phase2_progress == 15
        assert again.current_phase2_question.answer_key() == "technical:structure:4"

    @pytest.mark.asyncio
    async def test_answer_without_start_rejected(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)
        assert not await orch.save_phase2_answer(4)
        assert orch.stage == Stage.PHASE1_RESULT


# ═══════════════════════════════════════════════════════════════════════════
# Protocol
# ═══════════════════════════════════════════════════════════════════════════


class TestProtocol:
    @pytest.mark.asyncio
    async def test_incomplete_reflections_rejected(self, reach_protocol):
        orch = await reach_protocol()
        assert await orch.start_protocol()
        assert orch.stage == Stage.PROTOCOL_REFLECTIONS

        assert not await orch.save_protocol_reflections(["a", "", "", "", ""])
        assert orch.error_message == "Preencha as 5 reflexões para continuar."
        assert orch.stage == Stage.PROTOCOL_REFLECTIONS

    @pytest.mark.asyncio
    async def test_start_protocol_before_phase2_rejected(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)
        assert not await orch.start_protocol()
        assert orch.error_message == "Conclua a Fase 2 antes de iniciar o protocolo."

    @pytest.mark.asyncio
    async def test_blocks_unlock_in_order(self, reach_protocol):
        orch = await reach_protocol()
        await orch.start_protocol()
        await orch.save_protocol_reflections(["a", "b", "c", "d", "e"])
        assert orch.stage == Stage.PROTOCOL_ACTIONS

        assert not await orch.toggle_protocol_action(2, 0)
        assert orch.error_message == "Conclua o bloco anterior para desbloquear esta etapa."
        assert orch.snapshot()["protocol"]["recommended_step"].startswith("Iniciar Bloco 1")

        for index in range(3):
            assert await orch.toggle_protocol_action(1, index)
        assert orch.protocol.current_block == 2
        assert orch.snapshot()["protocol"]["recommended_step"].startswith("Concluir Bloco 2")
        assert await orch.toggle_protocol_action(2, 0)
        assert orch.protocol_completion["ratio_label"] == "4 / 9"

    @pytest.mark.asyncio
    async def test_phase2_restart_rejected_during_protocol(self, reach_protocol):
        orch = await reach_protocol()
        await orch.start_protocol()
        await orch.save_protocol_reflections(["a", "b", "c", "d", "e"])

        assert not await orch.start_phase2()
        assert orch.error_message == "A Fase 2 já foi concluída neste ciclo."
        assert orch.stage == Stage.PROTOCOL_ACTIONS
        assert await orch.toggle_protocol_action(1, 0), orch.error_message

    @pytest.mark.asyncio
    async def test_phase2_restart_rejected_on_result(self, reach_protocol):
        orch = await reach_protocol()
        assert orch.stage == Stage.PHASE2_RESULT

        assert not await orch.start_phase2()
        assert orch.stage == Stage.PHASE2_RESULT
        assert await orch.start_protocol(), orch.error_message

    @pytest.mark.asyncio
    async def test_invalid_action_rejected(self, reach_protocol):
        orch = await reach_protocol()
        await orch.start_protocol()
        await orch.save_protocol_reflections(["a", "b", "c", "d", "e"])
        assert not await orch.toggle_protocol_action(4, 0)
        assert not await orch.toggle_protocol_action(1, 3)

    @pytest.mark.asyncio
    async def test_completion_is_one_way(self, reach_protocol, complete_protocol, store):
        orch = await reach_protocol()
        await complete_protocol(orch)

        assert orch.stage == Stage.COMPLETED
        assert orch.protocol.completed_at
        cycle = await store.get_cycle(orch.cycle.cycle_id)
        assert cycle.status == CycleStatus.PROTOCOL_COMPLETED
        assert cycle.protocol_completed_at == orch.protocol.completed_at

        assert not await orch.toggle_protocol_action(3, 2)
        assert orch.error_message == "Protocolo concluído não pode ser alterado."
        assert orch.snapshot()["protocol"]["recommended_step"] is None
        assert (await store.get_protocol(orch.cycle.cycle_id)).block3_actions == [True, True, True]

    @pytest.mark.asyncio
    async def test_reflections_resume_on_actions(self, reach_protocol, make_orchestrator):
        orch = await reach_protocol()
        await orch.start_protocol()
        await orch.save_protocol_reflections(["a", "b", "c", "d", "e"])
        await orch.toggle_protocol_action(1, 0)

        again = make_orchestrator()
        await again.initialize()
        assert again.stage == Stage.PROTOCOL_ACTIONS
        assert again.protocol.block1_actions == [True, False, False]


# ═══════════════════════════════════════════════════════════════════════════
# Temporal gates, reevaluation and rollover
# ═══════════════════════════════════════════════════════════════════════════


class TestCycleLifecycle:
    @pytest.mark.asyncio
    async def test_full_cycle_with_reevaluation_and_rollover(
        self, reach_protocol, complete_protocol, complete_phase2, make_orchestrator, clock, store,
    ):
        orch = await reach_protocol()
        await complete_protocol(orch)
        first_cycle_id = orch.cycle.cycle_id

        # Inside the 45-day window
        clock.advance(days=10)
        blocked = make_orchestrator()
        await blocked.initialize()
        assert blocked.stage == Stage.BLOCKED_45
        assert blocked.temporal_rules.phase2_reevaluation.days_remaining == 35
        assert not await blocked.start_phase2()
        assert blocked.stage == Stage.BLOCKED_45

        # Reevaluation window
        clock.advance(days=36)
        reeval = make_orchestrator()
        await reeval.initialize()
        assert reeval.stage == Stage.PHASE2
        assert reeval.is_reevaluation_mode
        assert reeval.phase2_answers == {}
        assert await reeval.start_phase2(), reeval.error_message
        await complete_phase2(reeval, score=5)
        assert reeval.stage == Stage.PHASE2_RESULT

        cycle = await store.get_cycle(first_cycle_id)
        assert cycle.status == CycleStatus.REEVAL_45_COMPLETED
        assert cycle.reeval_45_completed_at
        assert cycle.phase2_general_index == 83

        assert not await reeval.start_protocol()
        assert reeval.stage == Stage.BLOCKED_90

        # Reevaluation runs once
        after = make_orchestrator()
        await after.initialize()
        assert after.stage == Stage.BLOCKED_90
        assert not after.is_reevaluation_mode

        # 90 days after phase 1: a new cycle
        clock.advance(days=45)
        rolled = make_orchestrator()
        await rolled.initialize()
        assert rolled.stage == Stage.PHASE1
        assert rolled.cycle.cycle_number == 2
        assert rolled.cycle.cycle_id != first_cycle_id
        assert (await store.get_cycle(first_cycle_id)).reeval_90_completed_at

    @pytest.mark.asyncio
    async def test_rollover_without_reevaluation(self, reach_protocol, complete_protocol, make_orchestrator, clock):
        orch = await reach_protocol()
        await complete_protocol(orch)

        clock.advance(days=91)
        rolled = make_orchestrator()
        await rolled.initialize()
        assert rolled.cycle.cycle_number == 2
        assert rolled.stage == Stage.PHASE1

    @pytest.mark.asyncio
    async def test_phase2_reentry_after_protocol_rejected(self, reach_protocol, complete_protocol):
        orch = await reach_protocol()
        await complete_protocol(orch)
        assert not await orch.start_phase2()
        assert orch.stage == Stage.BLOCKED_45


# ═══════════════════════════════════════════════════════════════════════════
# Checkpoint reconciliation
# ═══════════════════════════════════════════════════════════════════════════


class TestCheckpointReconciliation:
    @pytest.mark.asyncio
    async def test_checkpoint_with_more_answers_wins(self, make_orchestrator, store):
        orch = make_orchestrator()
        await orch.initialize()
        for _ in range(3):
            await orch.save_phase1_answer(4)

        answers = {**orch.phase1_answers, "clarity:4": 6, "clarity:5": 6}
        await store.save_checkpoint("user-1", "niche-1", CycleCheckpoint(orch.cycle.cycle_id, answers))

        again = make_orchestrator()
        await again.initialize()
        assert len(again.phase1_answers) == 5
        assert again.current_phase1_question.answer_key() == "clarity:6"

    @pytest.mark.asyncio
    async def test_equal_count_keeps_stored(self, make_orchestrator, store):
        orch = make_orchestrator()
        await orch.initialize()
        await orch.save_phase1_answer(4)

        await store.save_checkpoint("user-1", "niche-1", CycleCheckpoint(orch.cycle.cycle_id, {"clarity:9": 1}))
        again = make_orchestrator()
        await again.initialize()
        assert again.phase1_answers == {"clarity:1": 4}

    @pytest.mark.asyncio
    async def test_checkpoint_for_other_cycle_ignored(self, make_orchestrator, store):
        orch = make_orchestrator()
        await orch.initialize()

        stale = {f"clarity:{n}": 6 for n in range(1, 10)}
        await store.save_checkpoint("user-1", "niche-1", CycleCheckpoint("old-cycle", stale))
        again = make_orchestrator()
        await again.initialize()
        assert again.phase1_answers == {}

    @pytest.mark.asyncio
    async def test_answers_are_mirrored_to_checkpoint(self, make_orchestrator, store):
        orch = make_orchestrator()
        await orch.initialize()
        await orch.save_phase1_answer(3)

        checkpoint = await store.load_checkpoint("user-1", "niche-1")
        assert checkpoint.cycle_id == orch.cycle.cycle_id
        assert checkpoint.phase1_answers == {"clarity:1": 3}


# ═══════════════════════════════════════════════════════════════════════════
# Failure injection and concurrency
# ═══════════════════════════════════════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio
    async def test_failed_answer_keeps_state(self, make_orchestrator, flaky_store):
        orch = make_orchestrator(flaky_store)
        await orch.initialize()
        await orch.save_phase1_answer(4)

        flaky_store.fail_on.add("save_phase1_answer")
        assert not await orch.save_phase1_answer(5)
        assert orch.error_message == "Falha simulada no armazenamento."
        assert orch.phase1_answers == {"clarity:1": 4}
        assert orch.stage == Stage.PHASE1
        assert not orch.is_saving

        flaky_store.fail_on.clear()
        assert await orch.save_phase1_answer(5)
        assert orch.error_message is None
        assert orch.phase1_answers == {"clarity:1": 4, "clarity:2": 5}

    @pytest.mark.asyncio
    async def test_checkpoint_write_failure_does_not_fail_answer(self, make_orchestrator, flaky_store):
        orch = make_orchestrator(flaky_store)
        await orch.initialize()
        flaky_store.fail_on.add("save_checkpoint")
        assert await orch.save_phase1_answer(4)
        assert orch.phase1_answers == {"clarity:1": 4}

    @pytest.mark.asyncio
    async def test_partial_write_at_phase1_end_recovers(self, make_orchestrator, flaky_store, store):
        orch = make_orchestrator(flaky_store)
        await orch.initialize()
        while len(orch.phase1_answers) < 47:
            assert await orch.save_phase1_answer(3)

        flaky_store.fail_on.add("update_cycle")
        assert not await orch.save_phase1_answer(3)
        assert orch.stage == Stage.PHASE1
        assert len(orch.phase1_answers) == 47
        assert len(await store.get_phase1_answers(orch.cycle.cycle_id)) == 48

        again = make_orchestrator()
        await again.initialize()
        assert again.stage == Stage.PHASE1_TIE
        assert (await store.get_cycle(again.cycle.cycle_id)).phase1_completed_at

    @pytest.mark.asyncio
    async def test_partial_write_at_protocol_end_recovers(self, reach_protocol, make_orchestrator, flaky_store, store):
        orch = await reach_protocol(flaky_store)
        await orch.start_protocol()
        await orch.save_protocol_reflections(["a", "b", "c", "d", "e"])
        for block in (1, 2, 3):
            for index in range(3):
                if (block, index) == (3, 2):
                    continue
                assert await orch.toggle_protocol_action(block, index)

        flaky_store.fail_on.add("update_cycle")
        assert not await orch.toggle_protocol_action(3, 2)
        assert orch.stage == Stage.PROTOCOL_ACTIONS
        assert not orch.protocol.completed_at
        assert (await store.get_protocol(orch.cycle.cycle_id)).completed_at

        again = make_orchestrator()
        await again.initialize()
        assert again.cycle.protocol_completed_at
        assert again.cycle.status == CycleStatus.PROTOCOL_COMPLETED
        assert again.stage == Stage.BLOCKED_45

    @pytest.mark.asyncio
    async def test_double_submit_rejected_while_saving(self, make_orchestrator, flaky_store):
        orch = make_orchestrator(flaky_store)
        await orch.initialize()

        flaky_store.hold_on.add("save_phase1_answer")
        first = asyncio.create_task(orch.save_phase1_answer(4))
        await asyncio.sleep(0)
        assert orch.is_saving

        assert not await orch.save_phase1_answer(5)
        assert orch.error_message == BUSY_MESSAGE

        flaky_store.release.set()
        assert await first
        assert orch.phase1_answers == {"clarity:1": 4}
        assert not orch.is_saving

    @pytest.mark.asyncio
    async def test_stage_views_rejected_while_saving(self, make_orchestrator, flaky_store, complete_phase1):
        orch = make_orchestrator(flaky_store)
        await orch.initialize()
        await complete_phase1(orch)
        assert await orch.start_phase2()

        flaky_store.hold_on.add("save_phase2_answer")
        first = asyncio.create_task(orch.save_phase2_answer(4))
        await asyncio.sleep(0)
        assert orch.is_saving

        assert not orch.open_phase1_result()
        assert orch.error_message == BUSY_MESSAGE
        assert not orch.open_phase2_result()
        assert not orch.select_tie_break("structure")
        assert orch.stage == Stage.PHASE2

        flaky_store.release.set()
        assert await first
        assert await orch.save_phase2_answer(4), orch.error_message
        assert len(orch.phase2_answers) == 2


# ═══════════════════════════════════════════════════════════════════════════
# Snapshot
# ═══════════════════════════════════════════════════════════════════════════


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_shape(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        await complete_phase1(orch)

        snap = orch.snapshot()
        assert snap["stage"] == "phase1-result"
        assert snap["cycle"]["critical_pillar"] == "structure"
        assert snap["phase1"]["progress"] == 100
        assert snap["phase1"]["current_question"] is None
        assert snap["phase1"]["summary"]["general_index"] == 58
        maturity = snap["phase1"]["summary"]["pillar_maturity"]
        assert maturity["structure"]["level"] == "critico"
        assert maturity["execution"]["level"] == "atencao"
        assert maturity["clarity"]["level"] == "consistente"
        assert maturity["emotional"]["label"] == "Forte"
        assert snap["cycle"]["pillar_maturity"] == maturity
        assert snap["phase2"]["total"] == 20
        assert snap["protocol"] is None
        assert snap["protocol_completion"]["total_actions"] == 9
        assert snap["temporal_rules"]["can_start_new_cycle"] is False

    @pytest.mark.asyncio
    async def test_open_results(self, make_orchestrator, complete_phase1):
        orch = make_orchestrator()
        await orch.initialize()
        assert not orch.open_phase1_result()
        await complete_phase1(orch)
        assert orch.open_phase1_result()
        assert not orch.open_phase2_result()
