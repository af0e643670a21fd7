"""
Тесты Closing Sequence: два gate согласия, возражения, handoff.
"""

import pytest

from conftest import agreement, make_signals, make_state, objection
from guided_dialogue.closing_sequence import (
    GATE_AGREEMENT_IN_PRINCIPLE,
    GATE_AGREEMENT_TO_OFFERING,
    GATE_REFLECTION,
    ClosingSequence,
    gate_type_for,
)
from guided_dialogue.fallback_templates import default_summary
from guided_dialogue.models import (
    Action,
    ClosingAnalysis,
    ClosingResponseType,
    ClosingSubPhase,
    ConstraintCategory,
    ObjectionType,
    Phase,
    ReadinessLevel,
    ReadinessScores,
    RecommendedPath,
)


@pytest.fixture
def closing():
    return ClosingSequence()


def closing_state(sub_phase=ClosingSubPhase.REFLECT_IMPLICATION, agreed_needs_help=False):
    state = make_state(ConstraintCategory.STRATEGY, 0.8, validated=True, phase=Phase.CLOSING, turns_total=12)
    state.closing_sequence.sub_phase = sub_phase
    state.closing_sequence.agreed_needs_help = agreed_needs_help
    state.closing_sequence.turns_in_closing = 1
    return state


class TestEntry:

    def test_should_enter_after_delivered_diagnosis(self, closing):
        state = make_state(ConstraintCategory.STRATEGY, 0.8, phase=Phase.DIAGNOSIS, diagnosis_delivered=True)
        assert closing.should_enter(state, make_signals()) is True
        assert closing.should_enter(state, make_signals(response_length=0)) is False

        state.diagnosis_delivered = False
        assert closing.should_enter(state, make_signals()) is False

    def test_start(self, closing):
        state = make_state(ConstraintCategory.STRATEGY, 0.8, phase=Phase.DIAGNOSIS, diagnosis_delivered=True)

        step = closing.start(state)

        assert state.phase == Phase.CLOSING
        assert state.closing_sequence.sub_phase == ClosingSubPhase.REFLECT_IMPLICATION
        assert state.closing_sequence.turns_in_closing == 1
        assert step.decision.action == Action.CLOSE
        assert step.decision.overlays == ["closing", "closing_reflect_implication"]
        assert step.decision.rule == "closing"
        assert step.completed is False
        assert closing.is_active(state) is True

    @pytest.mark.parametrize("sub_phase,gate", [
        (ClosingSubPhase.REFLECT_STAKES, GATE_REFLECTION),
        (ClosingSubPhase.ASSERT_AND_ALIGN, GATE_AGREEMENT_IN_PRINCIPLE),
        (ClosingSubPhase.OFFER_SOLUTION, GATE_AGREEMENT_TO_OFFERING),
    ])
    def test_gate_types(self, sub_phase, gate):
        assert gate_type_for(sub_phase) == gate


class TestGates:

    def test_gate_one_agreement(self, closing):
        """Согласие на первом gate не означает согласия на предложение"""
        state = closing_state(ClosingSubPhase.ASSERT_AND_ALIGN)

        step = closing.advance(state, agreement())

        sequence = state.closing_sequence
        assert sequence.sub_phase == ClosingSubPhase.OFFER_SOLUTION
        assert sequence.agreed_needs_help is True
        assert sequence.agreed_to_offering is False
        assert step.decision.focus_area == "offer_solution"
        assert step.completed is False

    def test_tentative_agreement_advances(self, closing):
        state = closing_state(ClosingSubPhase.REFLECT_STAKES)
        closing.advance(state, agreement(clear=False))
        assert state.closing_sequence.sub_phase == ClosingSubPhase.NAME_CAPABILITY_GAP

    def test_full_path_to_facilitate(self, closing):
        state = make_state(ConstraintCategory.STRATEGY, 0.8, validated=True, phase=Phase.DIAGNOSIS, diagnosis_delivered=True)
        state.readiness = ReadinessScores(ReadinessLevel.HIGH, ReadinessLevel.HIGH, ReadinessLevel.MEDIUM)
        closing.start(state)

        steps = [closing.advance(state, agreement()) for _ in range(5)]

        assert [s.completed for s in steps] == [False, False, False, False, True]
        sequence = state.closing_sequence
        assert sequence.sub_phase == ClosingSubPhase.FACILITATE
        assert sequence.agreed_needs_help and sequence.agreed_to_offering
        assert sequence.facilitation_offered is True
        assert sequence.turns_in_closing == 6
        assert state.phase == Phase.COMPLETE

        handoff = steps[-1].handoff
        assert handoff.accepted_offering is True
        assert handoff.category == ConstraintCategory.STRATEGY
        assert handoff.recommended_path == RecommendedPath.SELF_DIRECT
        assert handoff.summary == default_summary(ConstraintCategory.STRATEGY)

    def test_handoff_uses_hypothesis_summary(self, closing):
        state = closing_state(ClosingSubPhase.OFFER_SOLUTION, agreed_needs_help=True)
        state.constraint_hypothesis.summary = "No clear niche"

        step = closing.advance(state, agreement())

        assert step.handoff.summary == "No clear niche"


class TestObjections:

    def test_objection_stays_in_step(self, closing):
        state = closing_state(ClosingSubPhase.OFFER_SOLUTION, agreed_needs_help=True)

        step = closing.advance(state, objection(ObjectionType.CONCERNS_ABOUT_OFFERING))

        assert state.closing_sequence.sub_phase == ClosingSubPhase.OFFER_SOLUTION
        assert state.closing_sequence.objection_attempts == {"concerns_about_offering": 1}
        assert "objection_concerns_about_offering" in step.decision.overlays
        assert "closing_offer_solution" in step.decision.overlays
        assert step.completed is False

    def test_graceful_close_after_limit(self, closing):
        state = closing_state(ClosingSubPhase.OFFER_SOLUTION, agreed_needs_help=True)
        concern = objection(ObjectionType.CONCERNS_ABOUT_OFFERING)

        closing.advance(state, concern)
        closing.advance(state, concern)
        step = closing.advance(state, concern)

        assert step.completed is True
        assert "closing_graceful_exit" in step.decision.overlays
        assert state.phase == Phase.COMPLETE
        assert state.closing_sequence.declined is True
        assert state.closing_sequence.agreed_needs_help is True
        assert step.handoff.accepted_offering is False

    def test_timing_has_single_attempt(self, closing):
        state = closing_state(ClosingSubPhase.ASSERT_AND_ALIGN)
        timing = objection(ObjectionType.TIMING)

        assert closing.advance(state, timing).completed is False
        assert closing.advance(state, timing).completed is True

    def test_hesitation_without_type_counts_as_needs_more_info(self, closing):
        state = closing_state(ClosingSubPhase.ASSERT_AND_ALIGN)
        hesitation = ClosingAnalysis(ClosingResponseType.HESITATION, None, 0.4)

        closing.advance(state, hesitation)

        assert state.closing_sequence.objection_attempts == {"needs_more_info": 1}
        assert state.closing_sequence.last_response_type == "hesitation"

    def test_off_topic_stays_without_penalty(self, closing):
        state = closing_state(ClosingSubPhase.ASSERT_AND_ALIGN)

        step = closing.advance(state, ClosingAnalysis(ClosingResponseType.OFF_TOPIC, None, 0.5))

        assert state.closing_sequence.sub_phase == ClosingSubPhase.ASSERT_AND_ALIGN
        assert state.closing_sequence.objection_attempts == {}
        assert step.decision.trace == ["off_topic"]


class TestAfterCompletion:

    def test_revisit_repeats_final_turn(self, closing):
        state = closing_state(ClosingSubPhase.OFFER_SOLUTION, agreed_needs_help=True)
        closing.advance(state, agreement())
        turns = state.closing_sequence.turns_in_closing

        step = closing.advance(state, objection(ObjectionType.TIMING))

        assert step.completed is True
        assert step.decision.trace == ["complete"]
        assert state.closing_sequence.turns_in_closing == turns
        assert state.closing_sequence.agreed_to_offering is True

    def test_revisit_after_decline(self, closing):
        state = closing_state(ClosingSubPhase.ASSERT_AND_ALIGN)
        closing.advance(state, objection(ObjectionType.DOESNT_NEED_HELP))
        closing.advance(state, objection(ObjectionType.DOESNT_NEED_HELP))

        step = closing.revisit(state)

        assert "closing_graceful_exit" in step.decision.overlays
        assert step.handoff.accepted_offering is False
