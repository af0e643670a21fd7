"""
Shared pytest fixtures for Guided Dialogue tests.

Provides fixtures for:
- Фабрики состояний, сигналов и гипотез
- Mock LLM клиенты
- Сброс feature flag overrides
- Фейковые collaborators оркестратора
"""

from typing import Any, Callable, Dict, List, Optional
from unittest.mock import MagicMock

import pytest

from guided_dialogue.feature_flags import flags
from guided_dialogue.models import (
    ClosingAnalysis,
    ClosingResponseType,
    ConstraintCategory,
    ConstraintHypothesis,
    ConversationSignals,
    ConversationState,
    ObjectionType,
    Phase,
    StateInference,
)


# =============================================================================
# Feature flags
# =============================================================================

@pytest.fixture(autouse=True)
def reset_flags():
    flags.clear_all_overrides()
    yield
    flags.clear_all_overrides()


# =============================================================================
# Фабрики
# =============================================================================

def make_signals(**overrides: Any) -> ConversationSignals:
    """Нейтральные сигналы обычного по длине ответа"""
    values: Dict[str, Any] = {"response_length": 80}
    values.update(overrides)
    for key in ("emotional_markers", "positive_markers", "capacity_signals"):
        if key in values:
            values[key] = tuple(values[key])
    return ConversationSignals(**values)


def make_inference(category: Optional[ConstraintCategory] = None, **overrides: Any) -> StateInference:
    values: Dict[str, Any] = {"category": category, "confidence": 0.6 if category else 0.0}
    values.update(overrides)
    if "evidence" in values:
        values["evidence"] = tuple(values["evidence"])
    return StateInference(**values)


def make_state(
    category: Optional[ConstraintCategory] = None,
    confidence: float = 0.0,
    validated: bool = False,
    **overrides: Any,
) -> ConversationState:
    state = ConversationState(
        constraint_hypothesis=ConstraintHypothesis(
            category=category,
            confidence=confidence,
            validated=validated,
        )
    )
    for key, value in overrides.items():
        setattr(state, key, value)
    return state


@pytest.fixture
def diagnosis_ready_state() -> ConversationState:
    """Validated strategy 0.8 на девятом ходу, глубина фазы 6"""
    return make_state(
        ConstraintCategory.STRATEGY,
        0.8,
        validated=True,
        phase=Phase.EXPLORATION,
        turns_total=9,
        turns_in_phase=6,
        turns_since_validation=2,
    )


# =============================================================================
# Mock LLM
# =============================================================================

@pytest.fixture
def mock_llm():
    """LLM, у которого structured output недоступен"""
    llm = MagicMock()
    llm.generate_structured.return_value = None
    llm.generate.return_value = "Can you tell me more about what that looks like?"
    llm.model = "mock-model"
    return llm


# =============================================================================
# Collaborators оркестратора
# =============================================================================

class ScriptedGenerator:
    """Генератор текста: ответы по очереди, последний повторяется"""

    def __init__(self, *responses: Optional[str]):
        self.responses: List[Optional[str]] = list(responses) or ["What feels most important right now?"]
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, decision, overlays, state, correction=None):
        self.calls.append({"decision": decision, "overlays": overlays, "correction": correction})
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        return self.responses[index]


class FakeSignals:
    def __init__(self, signals: Optional[ConversationSignals] = None):
        self.signals = signals or make_signals()

    def classify_signals(self, user_text, recent_history):
        return self.signals


class FakeInference:
    def __init__(self, payload: Any = None):
        self.payload = payload

    def infer_state(self, full_history, current_state):
        return self.payload


class FakeClosing:
    def __init__(self, analysis: Optional[ClosingAnalysis] = None):
        self.analysis = analysis or ClosingAnalysis(ClosingResponseType.CLEAR_AGREEMENT, None, 0.9)
        self.gates: List[str] = []

    def classify_closing_response(self, user_text, gate_type, recent_context):
        self.gates.append(gate_type)
        return self.analysis


def agreement(clear: bool = True) -> ClosingAnalysis:
    response_type = ClosingResponseType.CLEAR_AGREEMENT if clear else ClosingResponseType.TENTATIVE_AGREEMENT
    return ClosingAnalysis(response_type, None, 0.9)


def objection(kind: ObjectionType) -> ClosingAnalysis:
    return ClosingAnalysis(ClosingResponseType.OBJECTION, kind, 0.8)


@pytest.fixture
def scripted_generator() -> Callable[..., ScriptedGenerator]:
    return ScriptedGenerator
