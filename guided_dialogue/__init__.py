"""
Guided Dialogue Core.

Ядро пошагового направляемого диалога: решает, какой ход сделать
ассистенту, ведёт состояние диалога и закрывающую последовательность
с двумя gate согласия.

Key Components:
- ConversationState: Сериализуемое состояние одного диалога
- CategoryMapper: Каскад приведения категории к перечислению
- DecisionEngine: Приоритетная цепочка правил
- ClosingSequence: Автомат closing с двумя gate
- ResponseValidator: Проверка текста, одна перегенерация, шаблон
- Orchestrator: Конвейер одного хода (точка входа хоста)

Usage:
    from guided_dialogue import Orchestrator, ConversationState
    from guided_dialogue.llm import VLLMClient

    orchestrator = Orchestrator.from_llm(VLLMClient())
    result = orchestrator.process_turn("I can't decide which offer to build", [], ConversationState())
"""

from guided_dialogue.category_mapper import CategoryMapper, MappingResult, MappingTier
from guided_dialogue.closing_sequence import ClosingSequence, ClosingStep
from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.decision_engine import DecisionEngine, DecisionRule, default_rules
from guided_dialogue.exceptions import GuidedDialogueError, InvalidStateError, RuleRegistrationError
from guided_dialogue.models import (
    Action,
    ClosingSubPhase,
    ConstraintCategory,
    ConversationSignals,
    ConversationState,
    HandoffPayload,
    OrchestratorDecision,
    Phase,
    ReadinessLevel,
    RecommendedPath,
    StateInference,
)
from guided_dialogue.orchestrator import Orchestrator, TurnResult
from guided_dialogue.overlays import OverlayRegistry
from guided_dialogue.response_validator import ResponseValidator

__all__ = [
    "Action",
    "CategoryMapper",
    "ClosingSequence",
    "ClosingStep",
    "ClosingSubPhase",
    "ConstraintCategory",
    "ConversationSignals",
    "ConversationState",
    "DecisionEngine",
    "DecisionRule",
    "GuidedDialogueError",
    "HandoffPayload",
    "InvalidStateError",
    "MappingResult",
    "MappingTier",
    "Orchestrator",
    "OrchestratorConfig",
    "OrchestratorDecision",
    "OverlayRegistry",
    "Phase",
    "ReadinessLevel",
    "RecommendedPath",
    "ResponseValidator",
    "RuleRegistrationError",
    "StateInference",
    "TurnResult",
    "default_rules",
]
