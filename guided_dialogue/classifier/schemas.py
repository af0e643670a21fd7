"""Pydantic schemas для ответов классификаторов."""
from typing import Any, List, Literal, Optional, Tuple, get_args

from pydantic import BaseModel, Field, field_validator

LevelType = Literal["low", "medium", "high"]

ComplexityType = Literal["simple", "moderate", "complex"]

# Единственный токен, который разрешено вернуть delegate-классификатору категории
CategoryToken = Literal["strategy", "execution", "psychology"]

ClosingResponseLiteral = Literal[
    "clear_agreement", "tentative_agreement", "hesitation", "objection", "off_topic"
]

ObjectionLiteral = Literal[
    "doesnt_need_help",          # "Я справлюсь и так"
    "prefers_self_solve",        # "Хочу сам разобраться"
    "concerns_about_offering",   # Сомнения в самом предложении
    "timing",                    # "Не сейчас"
    "needs_more_info",           # "Расскажите подробнее"
]


def _as_string_list(value: Any) -> List[str]:
    """None / строка / список мусора -> список строк"""
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if v is not None and str(v).strip()]
    return []


def _normalize_token(value: Any) -> Any:
    """' High ' -> 'high', 'needs more info' -> 'needs_more_info'; не-строки как есть"""
    if isinstance(value, str):
        return "_".join(value.strip().lower().replace("-", " ").split())
    return value


def _as_choice(value: Any, choices: Tuple[str, ...], default: Optional[str]) -> Optional[str]:
    """Значение вне словаря заменяется default поля, остальная модель живёт"""
    value = _normalize_token(value)
    return value if value in choices else default


def _as_confidence(value: Any) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    if value != value:
        return 0.0
    return max(0.0, min(1.0, value))


class SignalsResult(BaseModel):
    """Сигналы одного хода."""
    emotional_markers: List[str] = Field(default_factory=list, description="Негативные эмоциональные маркеры")
    positive_markers: List[str] = Field(default_factory=list, description="Позитивные маркеры")
    clarity_level: LevelType = Field("medium", description="Ясность формулировок")
    confidence_level: LevelType = Field("medium", description="Уверенность пользователя")
    capacity_signals: List[str] = Field(default_factory=list, description="Маркеры нехватки ресурса")
    contradiction_detected: bool = False
    overwhelm_detected: bool = False
    positive_emotion_detected: bool = False
    negative_overwhelm_detected: bool = False
    validation_seeking: bool = False
    ownership_language: bool = False
    insight_articulated: bool = False

    @field_validator("emotional_markers", "positive_markers", "capacity_signals", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_string_list(v)

    @field_validator("clarity_level", "confidence_level", mode="before")
    @classmethod
    def _levels(cls, v):
        return _as_choice(v, get_args(LevelType), "medium")


class StateInferenceResult(BaseModel):
    """Гипотеза о корневой категории. category - свободный текст до маппинга."""
    category: Optional[str] = Field(None, description="Категория ограничения (свободный текст)")
    confidence: float = Field(0.0, description="Уверенность 0-1")
    evidence: List[str] = Field(default_factory=list, description="Цитаты пользователя")
    sub_dimension: Optional[str] = Field(None, description="Под-измерение категории")
    summary: Optional[str] = Field(None, description="Краткое описание ограничения")
    complexity: ComplexityType = Field("moderate", description="Сложность ситуации")
    diagnosis_ready: bool = False
    validation_needed: bool = False
    hypothesis_validated: bool = False

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _as_confidence(v)

    @field_validator("evidence", mode="before")
    @classmethod
    def _evidence(cls, v):
        return _as_string_list(v)

    @field_validator("complexity", mode="before")
    @classmethod
    def _complexity(cls, v):
        return _as_choice(v, get_args(ComplexityType), "moderate")

    @field_validator("category", "sub_dimension", "summary", mode="before")
    @classmethod
    def _optional_text(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CategoryTokenResult(BaseModel):
    """Ответ delegate-классификатора: ровно одна категория."""
    category: CategoryToken

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, v):
        return _normalize_token(v)


class ClosingAnalysisResult(BaseModel):
    """Классификация ответа внутри closing sequence."""
    response_type: ClosingResponseLiteral
    objection_type: Optional[ObjectionLiteral] = None
    confidence: float = Field(0.5, description="Уверенность 0-1")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, v):
        return _as_confidence(v)

    # Неизвестный response_type не угадывается: модель падает, и вызывающий
    # подставляет default для текущего gate
    @field_validator("response_type", mode="before")
    @classmethod
    def _response_type(cls, v):
        return _normalize_token(v)

    @field_validator("objection_type", mode="before")
    @classmethod
    def _objection_type(cls, v):
        return _as_choice(v, get_args(ObjectionLiteral), None)
