"""
Orchestrator - конвейер одного хода.

    user text + history + сохранённое состояние
        -> Signal Classifier + State Inference
        -> Schema Validator / Category Mapper
        -> обновление гипотезы, счётчиков, заряда, памяти, readiness
        -> Closing Sequence (если closing) или Decision Engine
        -> переходы фаз
        -> генерация текста -> Response Validator

Переданное состояние никогда не мутируется: ход работает на глубокой
копии, поэтому упавший ход можно повторить с того же состояния.

Использование:
    from guided_dialogue.orchestrator import Orchestrator

    orchestrator = Orchestrator.from_llm(VLLMClient())
    result = orchestrator.process_turn("I'm doing everything myself", history, state)
    save(result.state.to_json())
"""

import copy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from guided_dialogue.category_mapper import CategoryMapper, MappingTier
from guided_dialogue.classifier.category_delegate import CategoryDelegate
from guided_dialogue.classifier.closing_classifier import ClosingClassifier, default_analysis
from guided_dialogue.classifier.prompts import Message, format_history
from guided_dialogue.classifier.signal_classifier import SignalClassifier
from guided_dialogue.classifier.state_inference import StateInferenceService
from guided_dialogue.closing_sequence import ClosingSequence, ClosingStep, gate_type_for
from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.conversation_memory import update_memory
from guided_dialogue.decision_engine import DecisionEngine
from guided_dialogue.generator import TurnTextGenerator
from guided_dialogue.logger import logger
from guided_dialogue.models import (
    Action,
    ClosingAnalysis,
    ConversationSignals,
    ConversationState,
    HandoffPayload,
    OrchestratorDecision,
    Phase,
    StateInference,
)
from guided_dialogue.overlays import OverlayRegistry
from guided_dialogue.readiness import ReadinessScorer
from guided_dialogue.response_validator import ResponseValidator, ValidatedResponse
from guided_dialogue.schema_validator import (
    build_inference,
    validate_closing_analysis,
    validate_inference_payload,
    validate_signals,
)

MAX_EVIDENCE = 10


# =============================================================================
# Интерфейсы внешних collaborators
# =============================================================================

class SignalClassifierProtocol(Protocol):
    def classify_signals(self, user_text: str, recent_history: List[Message]) -> Any: ...


class StateInferenceProtocol(Protocol):
    def infer_state(self, full_history: List[Message], current_state: ConversationState) -> Any: ...


class ClosingClassifierProtocol(Protocol):
    def classify_closing_response(self, user_text: str, gate_type: str, recent_context: str) -> Any: ...


class TextGeneratorProtocol(Protocol):
    def __call__(
        self,
        decision: OrchestratorDecision,
        overlays: List[str],
        state: ConversationState,
        correction: Optional[str] = None,
    ) -> Optional[str]: ...


@dataclass
class TurnResult:
    """
    Результат хода.

    Attributes:
        decision: Решение хода
        state: Новое состояние (хост сохраняет его)
        response: Текст хода после Response Validator
        handoff: Заполнен, когда phase == complete
        validation: Детали проверки текста
        mapping_tier: Какой уровень Category Mapper ответил
    """
    decision: OrchestratorDecision
    state: ConversationState
    response: str
    handoff: Optional[HandoffPayload] = None
    validation: Optional[ValidatedResponse] = None
    mapping_tier: MappingTier = MappingTier.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "decision": self.decision.to_dict(),
            "state": self.state.to_dict(),
            "response": self.response,
            "handoff": self.handoff.to_dict() if self.handoff else None,
            "mapping_tier": self.mapping_tier.value,
        }


class Orchestrator:
    """Конвейер хода поверх компонентов ядра"""

    def __init__(
        self,
        signal_classifier: SignalClassifierProtocol,
        state_inference: StateInferenceProtocol,
        closing_classifier: ClosingClassifierProtocol,
        generate_turn_text: TextGeneratorProtocol,
        config: OrchestratorConfig = None,
        mapper: Optional[CategoryMapper] = None,
        engine: Optional[DecisionEngine] = None,
        overlays: Optional[OverlayRegistry] = None,
    ):
        self.config = config or OrchestratorConfig.from_settings()
        self.overlays = overlays or OverlayRegistry.default()

        self.signal_classifier = signal_classifier
        self.state_inference = state_inference
        self.closing_classifier = closing_classifier
        self.generate_turn_text = generate_turn_text

        self.mapper = mapper or CategoryMapper(default_category=self.config.default_category)
        self.engine = engine or DecisionEngine(self.config, overlays=self.overlays)
        self.closing = ClosingSequence(self.config, self.overlays)
        self.scorer = ReadinessScorer(self.config)
        self.validator = ResponseValidator(max_retries=self.config.response_max_retries)

    @classmethod
    def from_llm(
        cls,
        llm: Any,
        config: OrchestratorConfig = None,
        overlay_texts: Optional[Dict[str, str]] = None,
    ) -> "Orchestrator":
        """Оркестратор, у которого все collaborators работают через один LLM клиент"""
        config = config or OrchestratorConfig.from_settings()
        return cls(
            signal_classifier=SignalClassifier(llm),
            state_inference=StateInferenceService(llm),
            closing_classifier=ClosingClassifier(llm),
            generate_turn_text=TurnTextGenerator(llm, overlay_texts),
            config=config,
            mapper=CategoryMapper(CategoryDelegate(llm), default_category=config.default_category),
        )

    # =========================================================================
    # Ход
    # =========================================================================

    def process_turn(
        self,
        user_text: str,
        history: Optional[List[Message]],
        state: Optional[ConversationState],
        conversation_id: Optional[str] = None,
    ) -> TurnResult:
        """
        Обработать один ход пользователя.

        Args:
            user_text: Сообщение пользователя
            history: История до этого сообщения [{"role", "content"}]
            state: Сохранённое состояние (None - новый диалог)
            conversation_id: Идентификатор для логов

        Returns:
            TurnResult с новым состоянием
        """
        if conversation_id:
            logger.set_conversation(conversation_id)

        state = copy.deepcopy(state) if state is not None else ConversationState()
        history = list(history or [])
        full_history = history + [{"role": "user", "content": user_text}]

        signals = self._classify_signals(user_text, history)
        inference, tier = self._infer(full_history, state)

        self._update_hypothesis(state, inference)
        self._update_counters(state, signals, inference)
        state.emotional_charge = self.engine.containment.update_charge(state.emotional_charge, signals)
        update_memory(
            state.conversation_memory,
            user_text,
            signals,
            state.constraint_hypothesis.exists,
        )
        state.readiness = self.scorer.score(state, signals, inference)

        previous_action = state.last_action
        step = self._decide(user_text, history, state, signals, inference)
        decision = step.decision
        if previous_action == Action.CONTAIN and decision.action != Action.CONTAIN:
            self._after_containment(state, signals, decision)
        state.last_action = decision.action

        validated = self.validator.produce(decision, state, self.generate_turn_text)

        logger.info(
            "Turn processed",
            action=decision.action.value,
            rule=decision.rule,
            phase=state.phase.value,
            turns_total=state.turns_total,
        )
        return TurnResult(
            decision=decision,
            state=state,
            response=validated.response,
            handoff=step.handoff,
            validation=validated,
            mapping_tier=tier,
        )

    # =========================================================================
    # Collaborators
    # =========================================================================

    def _classify_signals(self, user_text: str, history: List[Message]) -> ConversationSignals:
        length = len((user_text or "").strip())
        try:
            raw = self.signal_classifier.classify_signals(user_text, history[-5:])
        except Exception as e:
            logger.error("Signal classifier failed", error=str(e)[:100])
            raw = None
        return validate_signals(raw, response_length=length)

    def _infer(self, full_history: List[Message], state: ConversationState):
        try:
            raw = self.state_inference.infer_state(full_history, state)
        except Exception as e:
            logger.error("State inference failed", error=str(e)[:100])
            raw = None
        payload = validate_inference_payload(raw)
        mapping = self.mapper.map(payload.category)
        return build_inference(payload, mapping.category), mapping.tier

    def _classify_closing(self, user_text: str, history: List[Message], state: ConversationState) -> ClosingAnalysis:
        gate_type = gate_type_for(state.closing_sequence.sub_phase)
        try:
            raw = self.closing_classifier.classify_closing_response(
                user_text, gate_type, format_history(history, 4)
            )
        except Exception as e:
            logger.error("Closing classifier failed", error=str(e)[:100])
            raw = None
        return validate_closing_analysis(raw, default=default_analysis(gate_type))

    # =========================================================================
    # Обновление состояния
    # =========================================================================

    @staticmethod
    def _update_hypothesis(state: ConversationState, inference: StateInference) -> None:
        """
        Перенести гипотезу хода в состояние.

        Смена категории сбрасывает validated. Часы turns_since_validation
        обнуляются на ходу, когда гипотеза впервые стала validated.
        """
        hypothesis = state.constraint_hypothesis
        was_validated = hypothesis.is_validated

        if inference.category is not None:
            if hypothesis.category != inference.category:
                hypothesis.validated = False
                hypothesis.evidence = []
            hypothesis.category = inference.category
            hypothesis.confidence = inference.confidence
            hypothesis.sub_dimension = inference.sub_dimension or hypothesis.sub_dimension
            hypothesis.summary = inference.summary or hypothesis.summary
            if inference.hypothesis_validated:
                hypothesis.validated = True
            for quote in inference.evidence:
                if quote not in hypothesis.evidence:
                    hypothesis.evidence.append(quote)
            hypothesis.evidence = hypothesis.evidence[-MAX_EVIDENCE:]

        if hypothesis.is_validated and not was_validated:
            state.turns_since_validation = 0
        else:
            state.turns_since_validation += 1

    @staticmethod
    def _update_counters(state: ConversationState, signals: ConversationSignals, inference: StateInference) -> None:
        state.turns_total += 1
        state.turns_in_phase += 1
        state.turns_since_containment += 1
        if signals.contradiction_detected:
            state.contradiction_count += 1
        state.overwhelm_detected = signals.overwhelm_detected
        state.complexity_level = inference.complexity

    # =========================================================================
    # Решение
    # =========================================================================

    def _decide(
        self,
        user_text: str,
        history: List[Message],
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> ClosingStep:
        if state.phase == Phase.COMPLETE:
            return self.closing.revisit(state)

        closing_turn = state.phase == Phase.CLOSING or self.closing.should_enter(state, signals)
        if closing_turn:
            if self.engine.containment.needs_containment(state, signals):
                return ClosingStep(self._contain(state, signals))
            if state.phase == Phase.CLOSING:
                analysis = self._classify_closing(user_text, history, state)
                return self.closing.advance(state, analysis)
            return self.closing.start(state)

        decision = self.engine.decide(state, signals, inference)
        self._advance_phase(state, decision)
        return ClosingStep(decision)

    def _contain(self, state: ConversationState, signals: ConversationSignals) -> OrchestratorDecision:
        """Containment внутри closing: под-состояние не двигается"""
        containment = self.engine.containment
        strategy = containment.select_strategy(signals)
        triggers = containment.triggers(state, signals)
        containment.record_containment(state)
        return OrchestratorDecision(
            action=Action.CONTAIN,
            reasoning=f"Emotional overwhelm during closing ({', '.join(triggers)})",
            overlays=self.overlays.tokens_for(Action.CONTAIN, f"containment_{strategy.value}"),
            confidence=0.9,
            rule="contain",
            trace=triggers,
        )

    def _after_containment(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        decision: OrchestratorDecision,
    ) -> None:
        """Первый ход после containment: выход или мягкий темп"""
        if self.engine.containment.should_exit(state, signals):
            logger.event("containment_exited", action=decision.action.value)
            return
        decision.overlays.extend(
            t for t in self.overlays.tokens_for(decision.action, "containment_aftercare")
            if t not in decision.overlays
        )
        decision.trace.append("containment_aftercare")

    def _advance_phase(self, state: ConversationState, decision: OrchestratorDecision) -> None:
        if decision.action == Action.DIAGNOSE:
            state.diagnosis_delivered = True
            if state.advance_phase(Phase.DIAGNOSIS):
                logger.event("phase_changed", phase=state.phase.value)
            return
        if state.phase == Phase.CONTEXT and state.turns_in_phase >= self.config.context_turns:
            state.advance_phase(Phase.EXPLORATION)
            logger.event("phase_changed", phase=state.phase.value)
