"""
Containment / Emotional Hysteresis Manager.

Определяет эмоциональную перегрузку и держит cooldown, чтобы режим
"успокоить пользователя" не срабатывал каждый ход.

Эмоциональный заряд (neutral < moderate < high):
    - high: явная негативная перегрузка или >= 3 негативных маркеров
    - moderate: >= 1 негативный маркер или >= 1 маркер нехватки ресурса
    - позитивный ход не поднимает заряд
    - без новых сигналов заряд снижается ровно на одну ступень за ход

Использование:
    from guided_dialogue.containment import ContainmentManager

    manager = ContainmentManager(config)
    state.emotional_charge = manager.update_charge(state.emotional_charge, signals)
    if manager.needs_containment(state, signals):
        manager.record_containment(state)
"""

from enum import Enum
from typing import Dict, List

from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.logger import logger
from guided_dialogue.models import ConversationSignals, ConversationState, EmotionalCharge


class ContainmentStrategy(str, Enum):
    VALIDATE = "validate"    # Признать чувства, пользователь ищет подтверждения
    SIMPLIFY = "simplify"    # Сузить фокус до одного шага
    PAUSE = "pause"          # Остановиться и дать место


_DECAY: Dict[EmotionalCharge, EmotionalCharge] = {
    EmotionalCharge.HIGH: EmotionalCharge.MODERATE,
    EmotionalCharge.MODERATE: EmotionalCharge.NEUTRAL,
    EmotionalCharge.NEUTRAL: EmotionalCharge.NEUTRAL,
}


def is_positive_turn(signals: ConversationSignals) -> bool:
    """Прорыв или облегчение без негативной перегрузки"""
    return signals.positive_emotion_detected and not signals.negative_overwhelm_detected


class ContainmentManager:
    """Заряд, cooldown и выбор стратегии containment"""

    def __init__(self, config: OrchestratorConfig = None):
        self.config = config or OrchestratorConfig.default()

    def update_charge(self, current: EmotionalCharge, signals: ConversationSignals) -> EmotionalCharge:
        """
        Новый эмоциональный заряд после хода.

        Args:
            current: Заряд до хода
            signals: Сигналы хода

        Returns:
            Заряд после хода
        """
        if is_positive_turn(signals):
            return _DECAY[current]

        if (
            signals.negative_overwhelm_detected
            or signals.negative_marker_count >= self.config.negative_marker_threshold
        ):
            return EmotionalCharge.HIGH

        if signals.negative_marker_count >= 1 or signals.capacity_signal_count >= 1:
            return EmotionalCharge.MODERATE

        return _DECAY[current]

    def cooldown_elapsed(self, state: ConversationState) -> bool:
        return state.turns_since_containment >= self.config.containment_cooldown

    def needs_containment(self, state: ConversationState, signals: ConversationSignals) -> bool:
        """
        Нужен ли containment на этом ходу.

        state.emotional_charge должен быть уже обновлён для текущего хода.
        """
        if not self.cooldown_elapsed(state):
            return False

        if is_positive_turn(signals):
            return False

        return bool(self.triggers(state, signals))

    def triggers(self, state: ConversationState, signals: ConversationSignals) -> List[str]:
        """Какие условия containment выполнены (без учёта cooldown)"""
        cfg = self.config
        markers = signals.negative_marker_count
        fired = []

        if signals.negative_overwhelm_detected:
            fired.append("negative_overwhelm")
        if markers >= cfg.negative_marker_threshold and signals.capacity_signal_count >= cfg.strain_marker_threshold:
            fired.append("markers_with_strain")
        if state.emotional_charge == EmotionalCharge.HIGH and not signals.positive_emotion_detected:
            fired.append("high_charge")
        if signals.contradiction_detected and markers >= cfg.contradiction_marker_threshold:
            fired.append("contradiction_with_markers")
        return fired

    def record_containment(self, state: ConversationState) -> None:
        """Containment сработал: cooldown начинается заново"""
        state.turns_since_containment = 0
        logger.event(
            "containment_triggered",
            charge=state.emotional_charge.value,
            cooldown=self.config.containment_cooldown,
        )

    @staticmethod
    def should_exit(state: ConversationState, signals: ConversationSignals) -> bool:
        """Выход из containment: заряд neutral и нет новой перегрузки"""
        return (
            state.emotional_charge == EmotionalCharge.NEUTRAL
            and not signals.overwhelm_detected
            and signals.negative_marker_count == 0
        )

    @staticmethod
    def select_strategy(signals: ConversationSignals) -> ContainmentStrategy:
        if signals.validation_seeking:
            return ContainmentStrategy.VALIDATE
        if signals.capacity_signal_count >= 2:
            return ContainmentStrategy.SIMPLIFY
        return ContainmentStrategy.PAUSE
