"""
Модели данных Guided Dialogue Core.

ConversationState - долговременная запись одного диалога (сериализуется
хостом между ходами). ConversationSignals и StateInference - неизменяемые
суждения классификаторов за один ход. OrchestratorDecision - результат
Decision Engine.

Использование:
    from guided_dialogue.models import ConversationState, Phase

    state = ConversationState()
    payload = state.to_json()
    restored = ConversationState.from_json(payload)
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from guided_dialogue.exceptions import InvalidStateError


# =============================================================================
# Перечисления
# =============================================================================

class Phase(str, Enum):
    """Фаза диалога. Движется только вперёд."""
    CONTEXT = "context"
    EXPLORATION = "exploration"
    DIAGNOSIS = "diagnosis"
    CLOSING = "closing"
    COMPLETE = "complete"


PHASE_ORDER: List[Phase] = [
    Phase.CONTEXT,
    Phase.EXPLORATION,
    Phase.DIAGNOSIS,
    Phase.CLOSING,
    Phase.COMPLETE,
]


class ConstraintCategory(str, Enum):
    """Корневая категория ограничения (взаимоисключающие корзины)."""
    STRATEGY = "strategy"
    EXECUTION = "execution"
    PSYCHOLOGY = "psychology"


class ReadinessLevel(str, Enum):
    """Порядковая шкала low < medium < high."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _LEVEL_ORDER.index(self)

    def raised(self) -> "ReadinessLevel":
        """На одну ступень выше (high остаётся high)"""
        return _LEVEL_ORDER[min(self.rank + 1, len(_LEVEL_ORDER) - 1)]

    def lowered(self) -> "ReadinessLevel":
        """На одну ступень ниже (low остаётся low)"""
        return _LEVEL_ORDER[max(self.rank - 1, 0)]


_LEVEL_ORDER = [ReadinessLevel.LOW, ReadinessLevel.MEDIUM, ReadinessLevel.HIGH]


class EmotionalCharge(str, Enum):
    NEUTRAL = "neutral"
    MODERATE = "moderate"
    HIGH = "high"


class ComplexityLevel(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


class Action(str, Enum):
    """Действие, которое Decision Engine выбирает на ход."""
    CONTAIN = "contain"
    DIAGNOSE = "diagnose"
    VALIDATE = "validate"
    CROSS_MAP = "cross_map"
    DEEPEN = "deepen"
    EXPLORE = "explore"
    CLOSE = "close"


class ClosingSubPhase(str, Enum):
    """Под-состояния closing sequence (линейно, без пропусков)."""
    NOT_STARTED = "not_started"
    REFLECT_IMPLICATION = "reflect_implication"
    REFLECT_STAKES = "reflect_stakes"
    NAME_CAPABILITY_GAP = "name_capability_gap"
    ASSERT_AND_ALIGN = "assert_and_align"
    OFFER_SOLUTION = "offer_solution"
    FACILITATE = "facilitate"


CLOSING_ORDER: List[ClosingSubPhase] = [
    ClosingSubPhase.NOT_STARTED,
    ClosingSubPhase.REFLECT_IMPLICATION,
    ClosingSubPhase.REFLECT_STAKES,
    ClosingSubPhase.NAME_CAPABILITY_GAP,
    ClosingSubPhase.ASSERT_AND_ALIGN,
    ClosingSubPhase.OFFER_SOLUTION,
    ClosingSubPhase.FACILITATE,
]


class ClosingResponseType(str, Enum):
    CLEAR_AGREEMENT = "clear_agreement"
    TENTATIVE_AGREEMENT = "tentative_agreement"
    HESITATION = "hesitation"
    OBJECTION = "objection"
    OFF_TOPIC = "off_topic"


class ObjectionType(str, Enum):
    DOESNT_NEED_HELP = "doesnt_need_help"
    PREFERS_SELF_SOLVE = "prefers_self_solve"
    CONCERNS_ABOUT_OFFERING = "concerns_about_offering"
    TIMING = "timing"
    NEEDS_MORE_INFO = "needs_more_info"


class RecommendedPath(str, Enum):
    """Маршрут после диалога."""
    SELF_DIRECT = "self_direct"
    DONE_FOR_YOU = "done_for_you"
    NURTURE = "nurture"


def clamp_confidence(value: Any) -> float:
    """Привести уверенность к [0, 1]. Мусор превращается в 0."""
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, value))


# =============================================================================
# Суждения классификаторов (неизменяемые)
# =============================================================================

@dataclass(frozen=True)
class ConversationSignals:
    """
    Сигналы одного хода от Signal Classifier.

    Attributes:
        response_length: Длина ответа пользователя в символах
        emotional_markers: Негативные эмоциональные маркеры
        positive_markers: Позитивные маркеры (прорыв, облегчение)
        clarity_level: Ясность формулировок пользователя
        confidence_level: Уверенность пользователя
        capacity_signals: Маркеры нехватки ресурса (времени, сил)
        contradiction_detected: Противоречие с ранее сказанным
        overwhelm_detected: Любая перегрузка (позитивная или негативная)
        positive_emotion_detected: Ход с позитивной эмоцией
        negative_overwhelm_detected: Явная негативная перегрузка
        validation_seeking: Пользователь ищет подтверждения
        ownership_language: "Я понял", "моя проблема в том..."
        insight_articulated: Пользователь сам сформулировал инсайт
    """
    response_length: int = 0
    emotional_markers: Tuple[str, ...] = ()
    positive_markers: Tuple[str, ...] = ()
    clarity_level: ReadinessLevel = ReadinessLevel.MEDIUM
    confidence_level: ReadinessLevel = ReadinessLevel.MEDIUM
    capacity_signals: Tuple[str, ...] = ()
    contradiction_detected: bool = False
    overwhelm_detected: bool = False
    positive_emotion_detected: bool = False
    negative_overwhelm_detected: bool = False
    validation_seeking: bool = False
    ownership_language: bool = False
    insight_articulated: bool = False

    @property
    def negative_marker_count(self) -> int:
        return len(self.emotional_markers)

    @property
    def capacity_signal_count(self) -> int:
        return len(self.capacity_signals)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response_length": self.response_length,
            "emotional_markers": list(self.emotional_markers),
            "positive_markers": list(self.positive_markers),
            "clarity_level": self.clarity_level.value,
            "confidence_level": self.confidence_level.value,
            "capacity_signals": list(self.capacity_signals),
            "contradiction_detected": self.contradiction_detected,
            "overwhelm_detected": self.overwhelm_detected,
            "positive_emotion_detected": self.positive_emotion_detected,
            "negative_overwhelm_detected": self.negative_overwhelm_detected,
            "validation_seeking": self.validation_seeking,
            "ownership_language": self.ownership_language,
            "insight_articulated": self.insight_articulated,
        }


@dataclass(frozen=True)
class StateInference:
    """
    Гипотеза State Inference Service после Category Mapper.

    Сырая строка категории сюда не попадает: category уже приведена
    к ConstraintCategory (или None, если гипотезы нет).
    """
    category: Optional[ConstraintCategory] = None
    confidence: float = 0.0
    evidence: Tuple[str, ...] = ()
    sub_dimension: Optional[str] = None
    summary: Optional[str] = None
    complexity: ComplexityLevel = ComplexityLevel.MODERATE
    diagnosis_ready: bool = False
    validation_needed: bool = False
    hypothesis_validated: bool = False

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @property
    def evidence_text(self) -> str:
        return " ".join(self.evidence).lower()


@dataclass(frozen=True)
class ClosingAnalysis:
    """Классификация ответа пользователя внутри closing sequence."""
    response_type: ClosingResponseType = ClosingResponseType.TENTATIVE_AGREEMENT
    objection_type: Optional[ObjectionType] = None
    confidence: float = 0.5

    @property
    def is_agreement(self) -> bool:
        return self.response_type in (
            ClosingResponseType.CLEAR_AGREEMENT,
            ClosingResponseType.TENTATIVE_AGREEMENT,
        )

    @property
    def is_resistance(self) -> bool:
        return self.response_type in (
            ClosingResponseType.HESITATION,
            ClosingResponseType.OBJECTION,
        )


# =============================================================================
# Изменяемые части ConversationState
# =============================================================================

@dataclass
class ConstraintHypothesis:
    """
    Текущая гипотеза о корневой категории.

    confidence приводится к [0, 1] при каждой записи.
    """
    category: Optional[ConstraintCategory] = None
    confidence: float = 0.0
    validated: bool = False
    sub_dimension: Optional[str] = None
    evidence: List[str] = field(default_factory=list)
    summary: Optional[str] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "confidence":
            value = clamp_confidence(value)
        object.__setattr__(self, name, value)

    @property
    def exists(self) -> bool:
        return self.category is not None

    @property
    def is_validated(self) -> bool:
        """validated без категории ничего не значит"""
        return self.exists and self.validated

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value if self.category else None,
            "confidence": self.confidence,
            "validated": self.validated,
            "sub_dimension": self.sub_dimension,
            "evidence": list(self.evidence),
            "summary": self.summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConstraintHypothesis":
        category = data.get("category")
        return cls(
            category=ConstraintCategory(category) if category else None,
            confidence=data.get("confidence", 0.0),
            validated=bool(data.get("validated", False)),
            sub_dimension=data.get("sub_dimension"),
            evidence=list(data.get("evidence", [])),
            summary=data.get("summary"),
        )


@dataclass
class ReadinessScores:
    clarity: ReadinessLevel = ReadinessLevel.LOW
    confidence: ReadinessLevel = ReadinessLevel.LOW
    capacity: ReadinessLevel = ReadinessLevel.MEDIUM

    def to_dict(self) -> Dict[str, str]:
        return {
            "clarity": self.clarity.value,
            "confidence": self.confidence.value,
            "capacity": self.capacity.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReadinessScores":
        return cls(
            clarity=ReadinessLevel(data.get("clarity", "low")),
            confidence=ReadinessLevel(data.get("confidence", "low")),
            capacity=ReadinessLevel(data.get("capacity", "medium")),
        )


@dataclass
class ClosingSequenceState:
    """
    Вложенное состояние closing sequence.

    Два gate строго упорядочены: agreed_to_offering не может быть True,
    пока agreed_needs_help равен False. Нарушение поднимает InvalidStateError
    как при прямой записи, так и при десериализации.
    """
    sub_phase: ClosingSubPhase = ClosingSubPhase.NOT_STARTED
    agreed_needs_help: bool = False
    agreed_to_offering: bool = False
    turns_in_closing: int = 0
    facilitation_offered: bool = False
    objection_attempts: Dict[str, int] = field(default_factory=dict)
    last_response_type: Optional[str] = None
    declined: bool = False

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "agreed_to_offering" and value and not getattr(self, "agreed_needs_help", False):
            raise InvalidStateError("agreed_to_offering requires agreed_needs_help")
        if name == "agreed_needs_help" and not value and getattr(self, "agreed_to_offering", False):
            raise InvalidStateError("agreed_needs_help cannot be revoked after agreed_to_offering")
        object.__setattr__(self, name, value)

    @property
    def started(self) -> bool:
        return self.sub_phase != ClosingSubPhase.NOT_STARTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sub_phase": self.sub_phase.value,
            "agreed_needs_help": self.agreed_needs_help,
            "agreed_to_offering": self.agreed_to_offering,
            "turns_in_closing": self.turns_in_closing,
            "facilitation_offered": self.facilitation_offered,
            "objection_attempts": dict(self.objection_attempts),
            "last_response_type": self.last_response_type,
            "declined": self.declined,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClosingSequenceState":
        return cls(
            sub_phase=ClosingSubPhase(data.get("sub_phase", "not_started")),
            agreed_needs_help=bool(data.get("agreed_needs_help", False)),
            agreed_to_offering=bool(data.get("agreed_to_offering", False)),
            turns_in_closing=int(data.get("turns_in_closing", 0)),
            facilitation_offered=bool(data.get("facilitation_offered", False)),
            objection_attempts=dict(data.get("objection_attempts", {})),
            last_response_type=data.get("last_response_type"),
            declined=bool(data.get("declined", False)),
        )


@dataclass
class ConversationMemory:
    """
    Накопленная память диалога (читает только Acceleration Detector).

    topics_explored ограничен последними 10 темами,
    clarity_history - последними 6 значениями,
    insights_articulated - последними 5 инсайтами.
    """
    topics_explored: List[str] = field(default_factory=list)
    clarity_history: List[str] = field(default_factory=list)
    ground_covered_score: float = 0.0
    insights_articulated: List[str] = field(default_factory=list)
    hypothesis_co_created: bool = False

    MAX_TOPICS = 10
    MAX_CLARITY_HISTORY = 6
    MAX_INSIGHTS = 5

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics_explored": list(self.topics_explored),
            "clarity_history": list(self.clarity_history),
            "ground_covered_score": self.ground_covered_score,
            "insights_articulated": list(self.insights_articulated),
            "hypothesis_co_created": self.hypothesis_co_created,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationMemory":
        return cls(
            topics_explored=list(data.get("topics_explored", [])),
            clarity_history=list(data.get("clarity_history", [])),
            ground_covered_score=float(data.get("ground_covered_score", 0.0)),
            insights_articulated=list(data.get("insights_articulated", [])),
            hypothesis_co_created=bool(data.get("hypothesis_co_created", False)),
        )


# =============================================================================
# ConversationState
# =============================================================================

# До первого containment cooldown считается давно истёкшим
INITIAL_TURNS_SINCE_CONTAINMENT = 999


@dataclass
class ConversationState:
    """
    Долговременное состояние одного диалога.

    Хост хранит его между ходами в любом формате (to_dict / to_json),
    Orchestrator никогда не мутирует переданный экземпляр.
    """
    phase: Phase = Phase.CONTEXT
    constraint_hypothesis: ConstraintHypothesis = field(default_factory=ConstraintHypothesis)
    readiness: ReadinessScores = field(default_factory=ReadinessScores)
    emotional_charge: EmotionalCharge = EmotionalCharge.NEUTRAL
    turns_since_containment: int = INITIAL_TURNS_SINCE_CONTAINMENT
    turns_total: int = 0
    turns_in_phase: int = 0
    turns_since_validation: int = 0
    cross_map_applied: bool = False
    closing_sequence: ClosingSequenceState = field(default_factory=ClosingSequenceState)
    conversation_memory: ConversationMemory = field(default_factory=ConversationMemory)
    complexity_level: ComplexityLevel = ComplexityLevel.MODERATE
    contradiction_count: int = 0
    overwhelm_detected: bool = False
    diagnosis_delivered: bool = False
    last_action: Optional[Action] = None

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "turns_since_containment" and value < 0:
            value = 0
        object.__setattr__(self, name, value)

    def advance_phase(self, target: Phase) -> bool:
        """
        Перевести диалог в более позднюю фазу.

        Returns:
            True если фаза изменилась (назад переход не выполняется)
        """
        if PHASE_ORDER.index(target) <= PHASE_ORDER.index(self.phase):
            return False
        self.phase = target
        self.turns_in_phase = 0
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "constraint_hypothesis": self.constraint_hypothesis.to_dict(),
            "readiness": self.readiness.to_dict(),
            "emotional_charge": self.emotional_charge.value,
            "turns_since_containment": self.turns_since_containment,
            "turns_total": self.turns_total,
            "turns_in_phase": self.turns_in_phase,
            "turns_since_validation": self.turns_since_validation,
            "cross_map_applied": self.cross_map_applied,
            "closing_sequence": self.closing_sequence.to_dict(),
            "conversation_memory": self.conversation_memory.to_dict(),
            "complexity_level": self.complexity_level.value,
            "contradiction_count": self.contradiction_count,
            "overwhelm_detected": self.overwhelm_detected,
            "diagnosis_delivered": self.diagnosis_delivered,
            "last_action": self.last_action.value if self.last_action else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversationState":
        """
        Десериализация из словаря.

        Raises:
            InvalidStateError: неизвестное значение перечисления или
                нарушение инварианта двух gate
        """
        try:
            last_action = data.get("last_action")
            return cls(
                phase=Phase(data.get("phase", "context")),
                constraint_hypothesis=ConstraintHypothesis.from_dict(
                    data.get("constraint_hypothesis", {})
                ),
                readiness=ReadinessScores.from_dict(data.get("readiness", {})),
                emotional_charge=EmotionalCharge(data.get("emotional_charge", "neutral")),
                turns_since_containment=int(
                    data.get("turns_since_containment", INITIAL_TURNS_SINCE_CONTAINMENT)
                ),
                turns_total=int(data.get("turns_total", 0)),
                turns_in_phase=int(data.get("turns_in_phase", 0)),
                turns_since_validation=int(data.get("turns_since_validation", 0)),
                cross_map_applied=bool(data.get("cross_map_applied", False)),
                closing_sequence=ClosingSequenceState.from_dict(data.get("closing_sequence", {})),
                conversation_memory=ConversationMemory.from_dict(
                    data.get("conversation_memory", {})
                ),
                complexity_level=ComplexityLevel(data.get("complexity_level", "moderate")),
                contradiction_count=int(data.get("contradiction_count", 0)),
                overwhelm_detected=bool(data.get("overwhelm_detected", False)),
                diagnosis_delivered=bool(data.get("diagnosis_delivered", False)),
                last_action=Action(last_action) if last_action else None,
            )
        except InvalidStateError:
            raise
        except (ValueError, TypeError, AttributeError) as e:
            raise InvalidStateError(f"Cannot deserialize conversation state: {e}") from e

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, payload: str) -> "ConversationState":
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidStateError(f"Invalid state JSON: {e}") from e
        if not isinstance(data, dict):
            raise InvalidStateError("State JSON must be an object")
        return cls.from_dict(data)


# =============================================================================
# Результаты
# =============================================================================

@dataclass
class OrchestratorDecision:
    """
    Решение на ход.

    Attributes:
        action: Выбранное действие
        reasoning: Человекочитаемое объяснение
        overlays: Токены внешнего prompt-контента (ядро их не читает)
        confidence: Уверенность решения
        redirect_to: Upstream категория (только cross_map)
        focus_area: Фокус хода (sub_dimension, под-состояние closing)
        rule: Имя сработавшего правила
        trace: Выполненные критерии (для логов)
    """
    action: Action
    reasoning: str
    overlays: List[str] = field(default_factory=list)
    confidence: float = 0.5
    redirect_to: Optional[ConstraintCategory] = None
    focus_area: Optional[str] = None
    rule: str = ""
    trace: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "reasoning": self.reasoning,
            "overlays": list(self.overlays),
            "confidence": self.confidence,
            "redirect_to": self.redirect_to.value if self.redirect_to else None,
            "focus_area": self.focus_area,
            "rule": self.rule,
            "trace": list(self.trace),
        }


@dataclass
class CrossMapResult:
    should_redirect: bool
    upstream_category: Optional[ConstraintCategory]
    reasoning: str
    confidence: float


@dataclass
class HandoffPayload:
    """Терминальный сигнал для внешних систем (booking, email, CRM)."""
    category: Optional[ConstraintCategory]
    summary: str
    readiness: ReadinessScores
    recommended_path: RecommendedPath
    accepted_offering: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value if self.category else None,
            "summary": self.summary,
            "readiness": self.readiness.to_dict(),
            "recommended_path": self.recommended_path.value,
            "accepted_offering": self.accepted_offering,
        }
