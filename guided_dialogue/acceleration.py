"""
Acceleration Detector - ранний выход из exploration.

Счётчик ходов сам по себе либо пускает поверхностные диалоги в диагноз
слишком рано, либо заставляет глубокие диалоги кружить. Поэтому выход
определяется пятью независимыми критериями качества:

    1. user_articulated      - пользователь сам сформулировал ограничение
    2. clarity_increasing    - тренд ясности растёт
    3. ground_covered        - пройденная почва выше порога
    4. topic_repetition      - одна тема обсуждалась 3+ раз
    5. confident_ownership   - уверенность гипотезы + язык ответственности

Ускорение: turns_total >= минимума, фаза exploration, нет перегрузки,
выполнено минимум 2 критерия.

Использование:
    from guided_dialogue.acceleration import AccelerationDetector

    result = AccelerationDetector(config).evaluate(state, signals, inference)
    if result.accelerate:
        print(result.satisfied)
"""

from dataclasses import dataclass, field
from typing import Dict, List

from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.conversation_memory import (
    ClarityTrend,
    detect_clarity_trend,
    detect_topic_repetition,
)
from guided_dialogue.logger import logger
from guided_dialogue.models import (
    ConversationSignals,
    ConversationState,
    EmotionalCharge,
    Phase,
    ReadinessLevel,
    StateInference,
)


CRITERIA = (
    "user_articulated",
    "clarity_increasing",
    "ground_covered",
    "topic_repetition",
    "confident_ownership",
)


@dataclass
class AccelerationResult:
    """
    Attributes:
        accelerate: Выходить ли из exploration
        reason: Объяснение для логов
        satisfied: Выполненные критерии (порядок как в CRITERIA)
    """
    accelerate: bool
    reason: str
    satisfied: List[str] = field(default_factory=list)


class AccelerationDetector:
    """Оценка пяти критериев качества диалога"""

    def __init__(self, config: OrchestratorConfig = None):
        self.config = config or OrchestratorConfig.default()

    def evaluate(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> AccelerationResult:
        cfg = self.config

        if state.turns_total < cfg.acceleration_min_turns:
            return AccelerationResult(
                False, f"Too early (turn {state.turns_total}, need {cfg.acceleration_min_turns})"
            )

        if state.phase != Phase.EXPLORATION:
            return AccelerationResult(False, f"Not in exploration phase ({state.phase.value})")

        if signals.overwhelm_detected or state.emotional_charge == EmotionalCharge.HIGH:
            return AccelerationResult(False, "User in overwhelm")

        checks = self.criteria(state, signals, inference)
        satisfied = [name for name in CRITERIA if checks[name]]
        accelerate = len(satisfied) >= cfg.acceleration_min_criteria

        if accelerate:
            reason = "Acceleration triggered: " + " + ".join(satisfied)
            logger.event("acceleration_triggered", criteria=satisfied, turn=state.turns_total)
        else:
            reason = f"Not enough criteria ({len(satisfied)}/{cfg.acceleration_min_criteria})"

        return AccelerationResult(accelerate, reason, satisfied)

    def criteria(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> Dict[str, bool]:
        cfg = self.config
        memory = state.conversation_memory

        return {
            "user_articulated": self._user_articulated(state, signals, inference),
            "clarity_increasing": detect_clarity_trend(memory) == ClarityTrend.INCREASING,
            "ground_covered": memory.ground_covered_score > cfg.ground_covered_threshold,
            "topic_repetition": detect_topic_repetition(
                memory.topics_explored, cfg.repetition_threshold
            ),
            "confident_ownership": (
                inference.confidence > cfg.acceleration_confidence and signals.ownership_language
            ),
        }

    @staticmethod
    def _user_articulated(
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> bool:
        memory = state.conversation_memory
        if memory.hypothesis_co_created:
            return True
        if (
            signals.ownership_language
            and inference.category is not None
            and signals.clarity_level == ReadinessLevel.HIGH
        ):
            return True
        return len(memory.insights_articulated) >= 2
