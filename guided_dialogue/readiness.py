"""
Readiness Scorer - три порядковые оси и маршрут после диалога.

Оси считаются независимо:
    clarity    - насколько ясно пользователь видит ограничение
    confidence - насколько он уверен в гипотезе
    capacity   - есть ли у него ресурс действовать самому

Маршрут (RecommendedPath) выбирается по таблице от трёх осей.
При равенстве вариантов выбирается self_direct.

Использование:
    from guided_dialogue.readiness import ReadinessScorer

    scorer = ReadinessScorer(config)
    scores = scorer.score(state, signals, inference)
    path = scorer.recommend_path(scores)
"""

from typing import Callable, Dict, Optional

from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.models import (
    ConstraintCategory,
    ConversationSignals,
    ConversationState,
    EmotionalCharge,
    ReadinessLevel,
    ReadinessScores,
    RecommendedPath,
    StateInference,
)

LOW = ReadinessLevel.LOW
MEDIUM = ReadinessLevel.MEDIUM
HIGH = ReadinessLevel.HIGH


def strain_capacity(signals: ConversationSignals, charge: EmotionalCharge) -> ReadinessLevel:
    """
    Общее правило ёмкости по перегрузке и маркерам нехватки ресурса.

    overwhelm -> low; >= 2 маркеров или high charge -> low;
    1 маркер или moderate charge -> medium; иначе high
    """
    if signals.overwhelm_detected:
        return LOW
    if signals.capacity_signal_count >= 2 or charge == EmotionalCharge.HIGH:
        return LOW
    if signals.capacity_signal_count == 1 or charge == EmotionalCharge.MODERATE:
        return MEDIUM
    return HIGH


def _psychology_capacity(signals: ConversationSignals, charge: EmotionalCharge) -> ReadinessLevel:
    return LOW


def _execution_capacity(signals: ConversationSignals, charge: EmotionalCharge) -> ReadinessLevel:
    severe = signals.overwhelm_detected and signals.capacity_signal_count >= 2
    return LOW if severe else MEDIUM


CapacityRule = Callable[[ConversationSignals, EmotionalCharge], ReadinessLevel]

CAPACITY_RULES: Dict[ConstraintCategory, CapacityRule] = {
    ConstraintCategory.PSYCHOLOGY: _psychology_capacity,
    ConstraintCategory.STRATEGY: strain_capacity,
    ConstraintCategory.EXECUTION: _execution_capacity,
}


class ReadinessScorer:
    """Скоринг трёх осей готовности"""

    def __init__(
        self,
        config: OrchestratorConfig = None,
        capacity_rules: Optional[Dict[ConstraintCategory, CapacityRule]] = None,
    ):
        self.config = config or OrchestratorConfig.default()
        self.capacity_rules = capacity_rules if capacity_rules is not None else CAPACITY_RULES

    def score(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> ReadinessScores:
        return ReadinessScores(
            clarity=self.clarity(state, signals, inference),
            confidence=self.confidence(state, signals, inference),
            capacity=self.capacity(state, signals, inference),
        )

    def clarity(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> ReadinessLevel:
        cfg = self.config
        hypothesis = state.constraint_hypothesis
        confidence = max(inference.confidence, hypothesis.confidence if hypothesis.exists else 0.0)

        strong = (
            inference.diagnosis_ready
            or hypothesis.is_validated
            or (
                confidence >= cfg.strong_clarity_confidence
                and state.turns_total >= cfg.strong_clarity_min_turns
            )
        )

        if strong:
            level = HIGH
        else:
            level = signals.clarity_level
            if confidence > cfg.clarity_boost_confidence:
                level = level.raised()
            if signals.contradiction_detected:
                level = level.lowered()

        if level == HIGH and state.turns_total < cfg.early_conversation_turns:
            level = MEDIUM
        return level

    def confidence(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> ReadinessLevel:
        if state.constraint_hypothesis.is_validated:
            return HIGH
        level = signals.confidence_level
        if inference.validation_needed:
            level = level.lowered()
        return level

    def capacity(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> ReadinessLevel:
        category = state.constraint_hypothesis.category or inference.category
        confidence = max(inference.confidence, state.constraint_hypothesis.confidence)

        rule = self.capacity_rules.get(category) if category else None
        if rule is not None and confidence > self.config.category_capacity_confidence:
            return rule(signals, state.emotional_charge)
        return strain_capacity(signals, state.emotional_charge)

    @staticmethod
    def recommend_path(scores: ReadinessScores) -> RecommendedPath:
        """
        Таблица маршрутов:

            clarity high + confidence high + capacity не low -> self_direct
            clarity high + capacity low                      -> done_for_you
            clarity не high или confidence low               -> nurture
            остальное                                        -> self_direct
        """
        if scores.clarity == HIGH and scores.confidence == HIGH and scores.capacity != LOW:
            return RecommendedPath.SELF_DIRECT
        if scores.clarity == HIGH and scores.capacity == LOW:
            return RecommendedPath.DONE_FOR_YOU
        if scores.clarity != HIGH or scores.confidence == LOW:
            return RecommendedPath.NURTURE
        return RecommendedPath.SELF_DIRECT
