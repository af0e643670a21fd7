"""
Closing Sequence - конечный автомат закрытия с двумя gate согласия.

    reflect_implication -> reflect_stakes -> name_capability_gap
        -> assert_and_align (Gate 1: нужна внешняя помощь)
        -> offer_solution   (Gate 2: согласие на конкретное предложение)
        -> facilitate       (терминальный ход, HandoffPayload)

sub_phase - под-состояние, чей ход доставляется пользователю сейчас.
Ответ пользователя классифицируется относительно последнего хода:
    agreement  -> следующий шаг (на gate выставляется флаг согласия)
    hesitation / objection -> обработка возражения в том же шаге
    off_topic  -> остаёмся, без штрафа

Возражения одного типа ограничены по числу попыток. После исчерпания
диалог закрывается мягко (graceful exit): phase = complete,
accepted_offering = False, флаги gate не трогаются.

Использование:
    from guided_dialogue.closing_sequence import ClosingSequence

    closing = ClosingSequence(config)
    if closing.should_enter(state, signals):
        step = closing.start(state)
    else:
        step = closing.advance(state, analysis)
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.fallback_templates import default_summary
from guided_dialogue.logger import logger
from guided_dialogue.models import (
    CLOSING_ORDER,
    Action,
    ClosingAnalysis,
    ClosingSubPhase,
    ConversationSignals,
    ConversationState,
    HandoffPayload,
    ObjectionType,
    OrchestratorDecision,
    Phase,
    ReadinessScores,
)
from guided_dialogue.overlays import OverlayRegistry
from guided_dialogue.readiness import ReadinessScorer


# Тип вопроса, который задан пользователю в под-состоянии
GATE_AGREEMENT_IN_PRINCIPLE = "agreement_in_principle"
GATE_AGREEMENT_TO_OFFERING = "agreement_to_offering"
GATE_REFLECTION = "reflection"

GATE_TYPES: Dict[ClosingSubPhase, str] = {
    ClosingSubPhase.ASSERT_AND_ALIGN: GATE_AGREEMENT_IN_PRINCIPLE,
    ClosingSubPhase.OFFER_SOLUTION: GATE_AGREEMENT_TO_OFFERING,
}


def gate_type_for(sub_phase: ClosingSubPhase) -> str:
    return GATE_TYPES.get(sub_phase, GATE_REFLECTION)


@dataclass(frozen=True)
class ObjectionStrategy:
    """
    Стратегия обработки возражения.

    Attributes:
        overlay: Токен overlay для генератора
        approach: Короткое описание подхода (идёт в reasoning)
        max_attempts: Лимит попыток (None - из конфигурации)
    """
    overlay: str
    approach: str
    max_attempts: Optional[int] = None


OBJECTION_STRATEGIES: Dict[ObjectionType, ObjectionStrategy] = {
    ObjectionType.DOESNT_NEED_HELP: ObjectionStrategy(
        "objection_doesnt_need_help",
        "Reflect the cost of the status quo they described, do not argue",
        max_attempts=1,
    ),
    ObjectionType.PREFERS_SELF_SOLVE: ObjectionStrategy(
        "objection_prefers_self_solve",
        "Honour self-reliance, name what doing it alone has cost so far",
    ),
    ObjectionType.CONCERNS_ABOUT_OFFERING: ObjectionStrategy(
        "objection_concerns_about_offering",
        "Surface the specific concern and answer it plainly",
    ),
    ObjectionType.TIMING: ObjectionStrategy(
        "objection_timing",
        "Separate the decision from the schedule",
        max_attempts=1,
    ),
    ObjectionType.NEEDS_MORE_INFO: ObjectionStrategy(
        "objection_needs_more_info",
        "Give the missing detail and check again",
    ),
}


@dataclass
class ClosingStep:
    """
    Результат одного хода closing sequence.

    Attributes:
        decision: Решение хода (action = close)
        handoff: Заполнен, когда диалог завершён
        analysis: Классификация ответа (None на входе в closing)
    """
    decision: OrchestratorDecision
    handoff: Optional[HandoffPayload] = None
    analysis: Optional[ClosingAnalysis] = None

    @property
    def completed(self) -> bool:
        return self.handoff is not None


class ClosingSequence:
    """Линейный автомат closing с двумя gate согласия"""

    def __init__(
        self,
        config: OrchestratorConfig = None,
        overlays: Optional[OverlayRegistry] = None,
        strategies: Optional[Dict[ObjectionType, ObjectionStrategy]] = None,
    ):
        self.config = config or OrchestratorConfig.default()
        self.overlays = overlays or OverlayRegistry.default()
        self.strategies = strategies if strategies is not None else OBJECTION_STRATEGIES

    # =========================================================================
    # Вход
    # =========================================================================

    @staticmethod
    def is_active(state: ConversationState) -> bool:
        return state.phase in (Phase.CLOSING, Phase.COMPLETE) and state.closing_sequence.started

    @staticmethod
    def should_enter(state: ConversationState, signals: ConversationSignals) -> bool:
        """Диагноз уже доставлен и пользователь ответил на него"""
        return (
            state.phase == Phase.DIAGNOSIS
            and state.diagnosis_delivered
            and not state.closing_sequence.started
            and signals.response_length > 0
        )

    def start(self, state: ConversationState) -> ClosingStep:
        closing = state.closing_sequence
        state.advance_phase(Phase.CLOSING)
        closing.sub_phase = ClosingSubPhase.REFLECT_IMPLICATION
        closing.turns_in_closing = 1
        logger.event("closing_started", category=self._category_value(state))
        return ClosingStep(self._step_decision(
            closing.sub_phase,
            "Diagnosis delivered and acknowledged, entering closing sequence",
            ["entered_closing"],
        ))

    # =========================================================================
    # Переходы
    # =========================================================================

    def advance(self, state: ConversationState, analysis: ClosingAnalysis) -> ClosingStep:
        """
        Обработать ответ пользователя на текущий closing-ход.

        Args:
            state: Состояние (мутируется)
            analysis: Классификация ответа относительно текущего gate

        Returns:
            ClosingStep
        """
        closing = state.closing_sequence
        if state.phase == Phase.COMPLETE or closing.sub_phase == ClosingSubPhase.FACILITATE:
            return self.revisit(state)

        closing.turns_in_closing += 1
        closing.last_response_type = analysis.response_type.value

        if analysis.is_agreement:
            step = self._on_agreement(state, analysis)
        elif analysis.is_resistance:
            step = self._on_resistance(state, analysis)
        else:
            step = ClosingStep(
                self._step_decision(
                    closing.sub_phase,
                    "Off-topic reply, staying in the current closing step",
                    ["off_topic"],
                    confidence=analysis.confidence,
                ),
                analysis=analysis,
            )

        logger.event(
            "closing_step",
            response_type=analysis.response_type.value,
            sub_phase=closing.sub_phase.value,
            agreed_needs_help=closing.agreed_needs_help,
            agreed_to_offering=closing.agreed_to_offering,
        )
        return step

    def _on_agreement(self, state: ConversationState, analysis: ClosingAnalysis) -> ClosingStep:
        closing = state.closing_sequence
        current = closing.sub_phase

        if current == ClosingSubPhase.ASSERT_AND_ALIGN:
            closing.agreed_needs_help = True
        elif current == ClosingSubPhase.OFFER_SOLUTION:
            closing.agreed_to_offering = True

        following = CLOSING_ORDER[CLOSING_ORDER.index(current) + 1]
        closing.sub_phase = following
        decision = self._step_decision(
            following,
            f"User agreed at {current.value}, advancing to {following.value}",
            [analysis.response_type.value],
            confidence=analysis.confidence,
        )

        if following != ClosingSubPhase.FACILITATE:
            return ClosingStep(decision, analysis=analysis)

        closing.facilitation_offered = True
        state.advance_phase(Phase.COMPLETE)
        handoff = self.build_handoff(state)
        logger.event("closing_completed", accepted_offering=handoff.accepted_offering)
        return ClosingStep(decision, handoff=handoff, analysis=analysis)

    def _on_resistance(self, state: ConversationState, analysis: ClosingAnalysis) -> ClosingStep:
        closing = state.closing_sequence
        objection = analysis.objection_type or ObjectionType.NEEDS_MORE_INFO
        strategy = self.strategies[objection]

        attempts = closing.objection_attempts.get(objection.value, 0) + 1
        closing.objection_attempts[objection.value] = attempts
        limit = strategy.max_attempts if strategy.max_attempts is not None else self.config.max_objection_attempts

        if attempts > limit:
            return self._graceful_close(state, objection, analysis)

        decision = OrchestratorDecision(
            action=Action.CLOSE,
            reasoning=f"{analysis.response_type.value} ({objection.value}) at {closing.sub_phase.value}: {strategy.approach}",
            overlays=self.overlays.tokens_for(
                Action.CLOSE, f"closing_{closing.sub_phase.value}", strategy.overlay
            ),
            confidence=analysis.confidence,
            focus_area=closing.sub_phase.value,
            rule="closing",
            trace=[analysis.response_type.value, objection.value, f"attempt_{attempts}"],
        )
        return ClosingStep(decision, analysis=analysis)

    def _graceful_close(
        self,
        state: ConversationState,
        objection: ObjectionType,
        analysis: Optional[ClosingAnalysis],
    ) -> ClosingStep:
        closing = state.closing_sequence
        closing.declined = True
        state.advance_phase(Phase.COMPLETE)

        decision = OrchestratorDecision(
            action=Action.CLOSE,
            reasoning=f"Objection {objection.value} repeated past its limit, closing gracefully",
            overlays=self.overlays.tokens_for(Action.CLOSE, "closing_graceful_exit"),
            confidence=0.8,
            focus_area=closing.sub_phase.value,
            rule="closing",
            trace=["graceful_close", objection.value],
        )
        handoff = self.build_handoff(state)
        logger.event("closing_declined", objection=objection.value, sub_phase=closing.sub_phase.value)
        return ClosingStep(decision, handoff=handoff, analysis=analysis)

    def revisit(self, state: ConversationState) -> ClosingStep:
        """Ход после завершения: повторить финальный ход"""
        closing = state.closing_sequence
        if closing.declined:
            decision = OrchestratorDecision(
                action=Action.CLOSE,
                reasoning="Conversation already closed",
                overlays=self.overlays.tokens_for(Action.CLOSE, "closing_graceful_exit"),
                confidence=0.8,
                focus_area=closing.sub_phase.value,
                rule="closing",
                trace=["complete"],
            )
        else:
            decision = self._step_decision(ClosingSubPhase.FACILITATE, "Conversation already complete", ["complete"])
        return ClosingStep(decision, handoff=self.build_handoff(state))

    # =========================================================================
    # Handoff
    # =========================================================================

    @staticmethod
    def build_handoff(state: ConversationState) -> HandoffPayload:
        hypothesis = state.constraint_hypothesis
        readiness = ReadinessScores.from_dict(state.readiness.to_dict())
        return HandoffPayload(
            category=hypothesis.category,
            summary=hypothesis.summary or default_summary(hypothesis.category),
            readiness=readiness,
            recommended_path=ReadinessScorer.recommend_path(readiness),
            accepted_offering=state.closing_sequence.agreed_to_offering,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _step_decision(
        self,
        sub_phase: ClosingSubPhase,
        reasoning: str,
        trace: List[str],
        confidence: float = 0.8,
    ) -> OrchestratorDecision:
        return OrchestratorDecision(
            action=Action.CLOSE,
            reasoning=reasoning,
            overlays=self.overlays.tokens_for(Action.CLOSE, f"closing_{sub_phase.value}"),
            confidence=confidence,
            focus_area=sub_phase.value,
            rule="closing",
            trace=list(trace),
        )

    @staticmethod
    def _category_value(state: ConversationState) -> Optional[str]:
        category = state.constraint_hypothesis.category
        return category.value if category else None
