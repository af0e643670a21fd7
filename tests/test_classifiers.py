"""
Тесты классификаторов: сигналы, гипотеза, delegate категории, closing.
"""

import pytest

from conftest import make_state
from guided_dialogue.classifier.category_delegate import CategoryDelegate
from guided_dialogue.classifier.closing_classifier import (
    ClosingClassifier,
    classify_closing_keywords,
    default_analysis,
)
from guided_dialogue.classifier.schemas import (
    CategoryTokenResult,
    ClosingAnalysisResult,
    SignalsResult,
    StateInferenceResult,
)
from guided_dialogue.classifier.signal_classifier import SignalClassifier, detect_signals_simple
from guided_dialogue.classifier.state_inference import StateInferenceService
from guided_dialogue.feature_flags import flags
from guided_dialogue.models import (
    ClosingResponseType,
    ConstraintCategory,
    ObjectionType,
    ReadinessLevel,
)


# =============================================================================
# Signals
# =============================================================================

class TestDetectSignalsSimple:

    def test_overwhelm(self):
        text = "I'm so overwhelmed, I have no time and I can't handle this"
        signals = detect_signals_simple(text)

        assert signals.response_length == len(text)
        assert "overwhelmed" in signals.emotional_markers
        assert signals.capacity_signal_count == 2
        assert signals.negative_overwhelm_detected is True
        assert signals.overwhelm_detected is True
        assert signals.positive_emotion_detected is False

    def test_breakthrough(self):
        signals = detect_signals_simple("Oh wow, that's exactly it. I just realized the real issue is my offer")

        assert signals.positive_emotion_detected is True
        assert signals.ownership_language is True
        assert signals.insight_articulated is True
        assert signals.positive_markers
        assert signals.confidence_level == ReadinessLevel.HIGH

    def test_vague_answer_is_low_clarity(self):
        assert detect_signals_simple("I guess maybe, not sure").clarity_level == ReadinessLevel.LOW

    def test_validation_seeking(self):
        signals = detect_signals_simple("I should niche down, right?")
        assert signals.validation_seeking is True
        assert signals.confidence_level == ReadinessLevel.LOW

    def test_contradiction_in_single_message(self):
        signals = detect_signals_simple("I want to grow but I can't take on more clients")
        assert signals.contradiction_detected is True

    def test_empty(self):
        signals = detect_signals_simple("   ")
        assert signals.response_length == 0
        assert signals.clarity_level == ReadinessLevel.MEDIUM


class TestSignalClassifier:

    def test_without_llm_uses_regex(self):
        classifier = SignalClassifier()
        signals = classifier.classify_signals("I'm exhausted")
        assert signals.negative_overwhelm_detected is True
        assert classifier.get_stats()["fallback_calls"] == 1

    def test_llm_result_validated(self, mock_llm):
        mock_llm.generate_structured.return_value = SignalsResult(
            emotional_markers=["stuck"], clarity_level="high", negative_overwhelm_detected=True
        )
        classifier = SignalClassifier(llm=mock_llm)

        signals = classifier.classify_signals("Honestly I feel stuck", [])

        assert signals.emotional_markers == ("stuck",)
        assert signals.clarity_level == ReadinessLevel.HIGH
        assert signals.overwhelm_detected is True
        assert signals.response_length == len("Honestly I feel stuck")
        assert classifier.get_stats()["llm_success_rate"] == 100

    def test_llm_none_falls_back(self, mock_llm):
        classifier = SignalClassifier(llm=mock_llm)
        signals = classifier.classify_signals("I'm exhausted")
        assert signals.negative_overwhelm_detected is True
        assert classifier.get_stats() == {
            "llm_calls": 1, "llm_successes": 0, "fallback_calls": 1, "llm_success_rate": 0.0,
        }

    def test_llm_error_falls_back(self, mock_llm):
        mock_llm.generate_structured.side_effect = ConnectionError("down")
        signals = SignalClassifier(llm=mock_llm)("I'm exhausted")
        assert signals.negative_overwhelm_detected is True

    def test_flag_off_skips_llm(self, mock_llm):
        flags.set_override("signal_llm", False)
        SignalClassifier(llm=mock_llm).classify_signals("Hello")
        mock_llm.generate_structured.assert_not_called()


# =============================================================================
# State inference + delegate
# =============================================================================

class TestStateInferenceService:

    def test_returns_raw_result(self, mock_llm):
        payload = StateInferenceResult(category="positioning problems", confidence=0.7)
        mock_llm.generate_structured.return_value = payload
        service = StateInferenceService(mock_llm)

        result = service.infer_state([{"role": "user", "content": "hi"}], make_state(ConstraintCategory.STRATEGY, 0.5))

        assert result is payload
        assert service.get_stats() == {"calls": 1, "failures": 0}

    def test_error_returns_none(self, mock_llm):
        mock_llm.generate_structured.side_effect = TimeoutError()
        service = StateInferenceService(mock_llm)

        assert service.infer_state([], make_state()) is None
        assert service.get_stats()["failures"] == 1


class TestCategoryDelegate:

    def test_token(self, mock_llm):
        mock_llm.generate_structured.return_value = CategoryTokenResult(category="execution")
        assert CategoryDelegate(mock_llm)("too busy with ops") == "execution"

    def test_nothing(self, mock_llm):
        assert CategoryDelegate(mock_llm)("???") is None


# =============================================================================
# Closing
# =============================================================================

class TestClosingKeywords:

    @pytest.mark.parametrize("text,response_type,objection", [
        ("Yes, that makes sense", ClosingResponseType.CLEAR_AGREEMENT, None),
        ("Sounds good", ClosingResponseType.CLEAR_AGREEMENT, None),
        ("I think so", ClosingResponseType.TENTATIVE_AGREEMENT, None),
        ("Yes, but not right now", ClosingResponseType.OBJECTION, ObjectionType.TIMING),
        ("Honestly I'm fine", ClosingResponseType.OBJECTION, ObjectionType.DOESNT_NEED_HELP),
        ("I'd rather figure it out myself", ClosingResponseType.OBJECTION, ObjectionType.PREFERS_SELF_SOLVE),
        ("How much does it cost?", ClosingResponseType.OBJECTION, ObjectionType.CONCERNS_ABOUT_OFFERING),
        ("Tell me more first", ClosingResponseType.HESITATION, ObjectionType.NEEDS_MORE_INFO),
        ("Hmm, not sure", ClosingResponseType.HESITATION, ObjectionType.NEEDS_MORE_INFO),
    ])
    def test_keywords(self, text, response_type, objection):
        analysis = classify_closing_keywords(text)
        assert analysis.response_type == response_type
        assert analysis.objection_type == objection

    def test_no_match(self):
        assert classify_closing_keywords("What's the weather there?") is None

    def test_default_at_gate_is_not_agreement(self):
        assert default_analysis("agreement_to_offering").is_agreement is False
        assert default_analysis("reflection").response_type == ClosingResponseType.TENTATIVE_AGREEMENT


class TestClosingClassifier:

    def test_llm_first(self, mock_llm):
        mock_llm.generate_structured.return_value = ClosingAnalysisResult(
            response_type="objection", objection_type="timing", confidence=0.8
        )
        classifier = ClosingClassifier(llm=mock_llm)

        analysis = classifier.classify_closing_response("Not now", "agreement_in_principle")

        assert analysis.objection_type == ObjectionType.TIMING
        assert analysis.confidence == 0.8
        assert classifier.get_stats() == {"llm": 1, "keywords": 0, "default": 0}

    def test_cascade(self, mock_llm):
        classifier = ClosingClassifier(llm=mock_llm)

        agreed = classifier.classify_closing_response("Yes, absolutely", "agreement_in_principle")
        unclear = classifier.classify_closing_response("What's the weather there?", "agreement_in_principle")

        assert agreed.response_type == ClosingResponseType.CLEAR_AGREEMENT
        assert unclear.response_type == ClosingResponseType.HESITATION
        assert classifier.get_stats() == {"llm": 0, "keywords": 1, "default": 1}

    def test_malformed_llm_output_never_agrees_at_gate(self, mock_llm):
        mock_llm.generate_structured.return_value = {"response_type": "YES!!"}
        classifier = ClosingClassifier(llm=mock_llm)

        analysis = classifier.classify_closing_response("What's the weather there?", "agreement_to_offering")

        assert analysis.response_type == ClosingResponseType.HESITATION
        assert analysis.objection_type == ObjectionType.NEEDS_MORE_INFO
        assert classifier.get_stats() == {"llm": 0, "keywords": 0, "default": 1}

    def test_llm_error_uses_keywords(self, mock_llm):
        mock_llm.generate_structured.side_effect = RuntimeError("boom")
        analysis = ClosingClassifier(llm=mock_llm)("Let's do it", "agreement_to_offering")
        assert analysis.response_type == ClosingResponseType.CLEAR_AGREEMENT
