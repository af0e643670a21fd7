"""
Тесты Orchestrator: полный ход с фейковыми collaborators.
"""

import pytest

from conftest import (
    FakeClosing,
    FakeInference,
    FakeSignals,
    ScriptedGenerator,
    agreement,
    make_signals,
    make_state,
)
from guided_dialogue.category_mapper import MappingTier
from guided_dialogue.closing_sequence import gate_type_for
from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.fallback_templates import GENERIC_TEMPLATES
from guided_dialogue.models import (
    Action,
    ClosingSubPhase,
    ConstraintCategory,
    ConversationState,
    EmotionalCharge,
    Phase,
    ReadinessLevel,
)
from guided_dialogue.orchestrator import Orchestrator

VALIDATED_STRATEGY = {"category": "strategy", "confidence": 0.8, "hypothesis_validated": True}


def build(signals=None, inference=None, closing=None, generator=None):
    return Orchestrator(
        FakeSignals(signals),
        FakeInference(inference),
        closing or FakeClosing(),
        generator or ScriptedGenerator(),
        config=OrchestratorConfig.default(),
    )


class TestTurnBasics:

    def test_new_conversation(self):
        result = build().process_turn("Hi, I run a small design studio", [], None)

        assert result.state.turns_total == 1
        assert result.state.phase == Phase.CONTEXT
        assert result.decision.action == Action.EXPLORE
        assert result.response == "What feels most important right now?"
        assert result.mapping_tier == MappingTier.NONE
        assert result.state.last_action == Action.EXPLORE

    def test_input_state_not_mutated(self):
        state = make_state(ConstraintCategory.STRATEGY, 0.5)
        snapshot = state.to_dict()

        result = build(inference={"category": "execution", "confidence": 0.7}).process_turn("text", [], state)

        assert state.to_dict() == snapshot
        assert result.state is not state
        assert result.state.constraint_hypothesis.category == ConstraintCategory.EXECUTION

    def test_same_input_same_result(self):
        orchestrator = build(inference={"category": "niche problems", "confidence": 0.6})
        state = make_state(turns_total=2, turns_in_phase=2)

        first = orchestrator.process_turn("I can't pick a niche", [], state)
        second = orchestrator.process_turn("I can't pick a niche", [], state)

        assert first.to_dict() == second.to_dict()

    def test_context_to_exploration(self):
        orchestrator = build()
        state = None
        for _ in range(3):
            state = orchestrator.process_turn("Tell me more", [], state).state

        assert state.phase == Phase.EXPLORATION
        assert state.turns_in_phase == 0
        assert state.turns_total == 3

    def test_to_dict(self):
        data = build().process_turn("hello", [], None).to_dict()
        assert set(data) == {"decision", "state", "response", "handoff", "mapping_tier"}
        assert data["handoff"] is None


class TestHypothesisUpdate:

    def test_free_text_category_mapped(self):
        result = build(inference={"category": "I don't know who to serve", "confidence": 0.6}).process_turn(
            "not sure who my clients are", [], None
        )

        assert result.mapping_tier == MappingTier.KEYWORD
        assert result.state.constraint_hypothesis.category == ConstraintCategory.STRATEGY
        assert result.state.constraint_hypothesis.confidence == 0.6

    def test_category_change_resets_validation(self):
        state = make_state(ConstraintCategory.STRATEGY, 0.7, validated=True, turns_since_validation=2)
        state.constraint_hypothesis.evidence = ["old quote"]

        result = build(inference={"category": "execution", "confidence": 0.6}).process_turn("text", [], state)

        hypothesis = result.state.constraint_hypothesis
        assert hypothesis.category == ConstraintCategory.EXECUTION
        assert hypothesis.validated is False
        assert hypothesis.evidence == []
        assert result.state.turns_since_validation == 3

    def test_newly_validated_resets_clock(self):
        state = make_state(ConstraintCategory.STRATEGY, 0.6, turns_since_validation=4)
        result = build(inference=VALIDATED_STRATEGY).process_turn("yes, that's it", [], state)
        assert result.state.turns_since_validation == 0
        assert result.state.constraint_hypothesis.validated is True

    def test_evidence_capped(self):
        state = make_state(ConstraintCategory.STRATEGY, 0.6)
        state.constraint_hypothesis.evidence = [f"quote {i}" for i in range(9)]
        inference = {"category": "strategy", "confidence": 0.6, "evidence": ["new 1", "new 2", "new 3"]}

        result = build(inference=inference).process_turn("text", [], state)

        evidence = result.state.constraint_hypothesis.evidence
        assert len(evidence) == 10
        assert evidence[-1] == "new 3"
        assert "quote 0" not in evidence


class TestFailingCollaborators:

    def test_signal_classifier_error(self):
        class Broken:
            def classify_signals(self, user_text, recent_history):
                raise RuntimeError("classifier down")

        orchestrator = Orchestrator(
            Broken(), FakeInference(), FakeClosing(), ScriptedGenerator(),
            config=OrchestratorConfig.default(),
        )
        result = orchestrator.process_turn("Just a normal answer here", [], None)

        assert result.decision.action == Action.EXPLORE
        assert result.state.turns_total == 1

    def test_garbage_inference(self):
        result = build(inference="not json at all").process_turn("hello there friend", [], None)
        assert result.state.constraint_hypothesis.category is None

    def test_generator_returns_nothing(self):
        result = build(generator=ScriptedGenerator(None)).process_turn("hello there friend", [], None)
        assert result.response == GENERIC_TEMPLATES["explore"]
        assert result.validation.fallback_used is True


class TestFullFlow:

    def test_diagnosis_then_closing_to_handoff(self, diagnosis_ready_state):
        closing = FakeClosing(agreement())
        orchestrator = build(
            signals=make_signals(clarity_level=ReadinessLevel.HIGH),
            inference=VALIDATED_STRATEGY,
            closing=closing,
        )

        diagnosed = orchestrator.process_turn("I keep changing my offer", [], diagnosis_ready_state)
        assert diagnosed.decision.action == Action.DIAGNOSE
        assert diagnosed.state.phase == Phase.DIAGNOSIS
        assert diagnosed.state.diagnosis_delivered is True

        entered = orchestrator.process_turn("Yes, that's it", [], diagnosed.state)
        assert entered.decision.action == Action.CLOSE
        assert entered.state.phase == Phase.CLOSING
        assert entered.state.closing_sequence.sub_phase == ClosingSubPhase.REFLECT_IMPLICATION

        state = entered.state
        results = []
        for _ in range(5):
            result = orchestrator.process_turn("Yes", [], state)
            results.append(result)
            state = result.state

        assert closing.gates == [
            "reflection", "reflection", "reflection", "agreement_in_principle", "agreement_to_offering",
        ]
        final = results[-1]
        assert final.state.phase == Phase.COMPLETE
        assert final.handoff is not None
        assert final.handoff.accepted_offering is True
        assert final.handoff.category == ConstraintCategory.STRATEGY
        assert all(r.handoff is None for r in results[:-1])

        after = orchestrator.process_turn("Thanks!", [], final.state)
        assert after.handoff is not None
        assert after.state.phase == Phase.COMPLETE

    def test_containment_preempts_closing(self):
        closing = FakeClosing(agreement())
        state = make_state(ConstraintCategory.STRATEGY, 0.8, validated=True, phase=Phase.CLOSING, turns_total=12)
        state.closing_sequence.sub_phase = ClosingSubPhase.ASSERT_AND_ALIGN

        result = build(
            signals=make_signals(negative_overwhelm_detected=True, overwhelm_detected=True),
            inference=VALIDATED_STRATEGY,
            closing=closing,
        ).process_turn("This is all too much, I can't do this", [], state)

        assert result.decision.action == Action.CONTAIN
        assert result.state.closing_sequence.sub_phase == ClosingSubPhase.ASSERT_AND_ALIGN
        assert result.state.turns_since_containment == 0
        assert closing.gates == []


class BrokenClosing:
    """Closing collaborator, который падает или отвечает мусором"""

    def __init__(self, error: Exception = None, payload=None):
        self.error = error
        self.payload = payload
        self.gates = []

    def classify_closing_response(self, user_text, gate_type, recent_context):
        self.gates.append(gate_type)
        if self.error is not None:
            raise self.error
        return self.payload


def closing_at(sub_phase: ClosingSubPhase) -> ConversationState:
    state = make_state(ConstraintCategory.STRATEGY, 0.8, validated=True, phase=Phase.CLOSING, turns_total=12)
    if sub_phase == ClosingSubPhase.OFFER_SOLUTION:
        state.closing_sequence.agreed_needs_help = True
    state.closing_sequence.sub_phase = sub_phase
    return state


GATES = [ClosingSubPhase.ASSERT_AND_ALIGN, ClosingSubPhase.OFFER_SOLUTION]

BROKEN_CLASSIFIERS = [
    pytest.param(lambda: BrokenClosing(error=TimeoutError("closing classifier timed out")), id="timeout"),
    pytest.param(lambda: BrokenClosing(error=RuntimeError("boom")), id="error"),
    pytest.param(lambda: BrokenClosing(payload={"response_type": "YES!!"}), id="malformed"),
    pytest.param(lambda: BrokenClosing(payload="{not json"), id="broken_json"),
    pytest.param(lambda: BrokenClosing(payload=None), id="empty"),
]


class TestClosingClassifierFailure:
    """Сбой классификатора на gate не засчитывается как согласие"""

    @pytest.mark.parametrize("sub_phase", GATES)
    @pytest.mark.parametrize("make_closing", BROKEN_CLASSIFIERS)
    def test_gate_holds(self, sub_phase, make_closing):
        state = closing_at(sub_phase)
        before = state.closing_sequence.to_dict()
        closing = make_closing()

        result = build(inference=VALIDATED_STRATEGY, closing=closing).process_turn("Yes!!", [], state)

        sequence = result.state.closing_sequence
        assert closing.gates == [gate_type_for(sub_phase)]
        assert result.decision.action == Action.CLOSE
        assert sequence.sub_phase == sub_phase
        assert sequence.agreed_needs_help == before["agreed_needs_help"]
        assert sequence.agreed_to_offering is False
        assert sequence.last_response_type == "hesitation"
        assert result.state.phase == Phase.CLOSING
        assert result.handoff is None

    @pytest.mark.parametrize("sub_phase", GATES)
    def test_repeated_failures_never_record_consent(self, sub_phase):
        """Серия сбоев заканчивается мягким закрытием без согласия"""
        orchestrator = build(inference=VALIDATED_STRATEGY, closing=BrokenClosing(error=TimeoutError("slow")))
        state = closing_at(sub_phase)
        needs_help_before = state.closing_sequence.agreed_needs_help

        handoffs = []
        for _ in range(4):
            result = orchestrator.process_turn("Sure", [], state)
            state = result.state
            assert state.closing_sequence.agreed_needs_help == needs_help_before
            assert state.closing_sequence.agreed_to_offering is False
            if result.handoff is not None:
                handoffs.append(result.handoff)

        assert state.phase == Phase.COMPLETE
        assert state.closing_sequence.declined is True
        assert handoffs
        assert all(h.accepted_offering is False for h in handoffs)

    def test_reflection_step_still_advances(self):
        """Вне gate сбой не блокирует рефлексию"""
        state = closing_at(ClosingSubPhase.REFLECT_IMPLICATION)

        result = build(inference=VALIDATED_STRATEGY, closing=BrokenClosing(payload=None)).process_turn("ok", [], state)

        assert result.state.closing_sequence.sub_phase == ClosingSubPhase.REFLECT_STAKES


class TestContainmentExit:

    def test_aftercare_while_charge_remains(self):
        state = make_state(
            phase=Phase.EXPLORATION,
            last_action=Action.CONTAIN,
            turns_since_containment=0,
            emotional_charge=EmotionalCharge.HIGH,
        )

        result = build().process_turn("Okay, I can keep going", [], state)

        assert result.decision.action != Action.CONTAIN
        assert result.state.emotional_charge == EmotionalCharge.MODERATE
        assert "containment_aftercare" in result.decision.overlays
        assert "containment_aftercare" in result.decision.trace

    def test_exit_when_charge_settles(self):
        state = make_state(
            phase=Phase.EXPLORATION,
            last_action=Action.CONTAIN,
            turns_since_containment=0,
            emotional_charge=EmotionalCharge.MODERATE,
        )

        result = build().process_turn("Okay, I can keep going", [], state)

        assert result.state.emotional_charge == EmotionalCharge.NEUTRAL
        assert "containment_aftercare" not in result.decision.overlays


class TestFromLLM:

    def test_wires_collaborators(self, mock_llm):
        orchestrator = Orchestrator.from_llm(mock_llm, config=OrchestratorConfig.default())

        result = orchestrator.process_turn("I'm exhausted and doing everything myself", [], ConversationState())

        assert result.state.turns_total == 1
        assert result.response
        mock_llm.generate.assert_called()
