"""
Schema Validator - приведение внешних суждений к строгой форме.

Любой объект, пришедший от классификатора (dict, JSON-строка, pydantic
модель, None, мусор), проходит через pydantic-схему. Если форма не
сходится, подставляется документированный default, ошибка не
пробрасывается: на ход всегда можно ответить.

Defaults:
    signals:   все флаги False, списки пустые, clarity/confidence = medium
    inference: category=None, confidence=0, evidence=[]
    closing:   tentative_agreement, confidence=0.5

Использование:
    from guided_dialogue.schema_validator import validate_signals

    signals = validate_signals(raw_llm_output, response_length=len(text))
"""

import json
from typing import Any, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from guided_dialogue.classifier.schemas import (
    ClosingAnalysisResult,
    SignalsResult,
    StateInferenceResult,
)
from guided_dialogue.logger import logger
from guided_dialogue.models import (
    ClosingAnalysis,
    ClosingResponseType,
    ComplexityLevel,
    ConstraintCategory,
    ConversationSignals,
    ObjectionType,
    ReadinessLevel,
    StateInference,
)

T = TypeVar('T', bound=BaseModel)


DEFAULT_SIGNALS = ConversationSignals()
DEFAULT_INFERENCE_RESULT = StateInferenceResult()
DEFAULT_CLOSING_ANALYSIS = ClosingAnalysis(
    response_type=ClosingResponseType.TENTATIVE_AGREEMENT,
    objection_type=None,
    confidence=0.5,
)


def coerce(raw: Any, schema: Type[T]) -> Optional[T]:
    """
    Привести произвольный объект к pydantic-схеме.

    Returns:
        Экземпляр schema или None, если привести нельзя
    """
    if raw is None:
        return None
    if isinstance(raw, schema):
        return raw
    try:
        if isinstance(raw, BaseModel):
            return schema.model_validate(raw.model_dump())
        if isinstance(raw, (str, bytes)):
            return schema.model_validate_json(raw)
        if isinstance(raw, dict):
            return schema.model_validate(raw)
    except (ValidationError, ValueError, json.JSONDecodeError) as e:
        logger.warning(
            "Schema validation failed, using defaults",
            schema=schema.__name__,
            error=str(e)[:120],
        )
        logger.metric("schema_default_substituted", 1, schema=schema.__name__)
        return None

    logger.warning("Unsupported payload type", schema=schema.__name__, type=type(raw).__name__)
    return None


def validate_readiness_level(value: Any, default: ReadinessLevel = ReadinessLevel.MEDIUM) -> ReadinessLevel:
    if isinstance(value, ReadinessLevel):
        return value
    try:
        return ReadinessLevel(str(value).strip().lower())
    except ValueError:
        return default


def validate_constraint_category(value: Any) -> Optional[ConstraintCategory]:
    """Точное совпадение с перечислением (без каскада)"""
    if isinstance(value, ConstraintCategory):
        return value
    if not isinstance(value, str):
        return None
    try:
        return ConstraintCategory(value.strip().lower())
    except ValueError:
        return None


def validate_signals(raw: Any, response_length: Optional[int] = None) -> ConversationSignals:
    """
    Привести сырые сигналы к ConversationSignals.

    Args:
        raw: Ответ Signal Classifier (любой формы)
        response_length: Длина ответа пользователя (считается локально,
            классификатору не доверяем)

    Returns:
        ConversationSignals (defaults при ошибке)
    """
    if isinstance(raw, ConversationSignals):
        return raw

    result = coerce(raw, SignalsResult)
    length = response_length if response_length is not None else 0
    if result is None:
        return ConversationSignals(response_length=length)

    return ConversationSignals(
        response_length=length,
        emotional_markers=tuple(result.emotional_markers),
        positive_markers=tuple(result.positive_markers),
        clarity_level=validate_readiness_level(result.clarity_level),
        confidence_level=validate_readiness_level(result.confidence_level),
        capacity_signals=tuple(result.capacity_signals),
        contradiction_detected=result.contradiction_detected,
        overwhelm_detected=result.overwhelm_detected or result.negative_overwhelm_detected,
        positive_emotion_detected=result.positive_emotion_detected,
        negative_overwhelm_detected=result.negative_overwhelm_detected,
        validation_seeking=result.validation_seeking,
        ownership_language=result.ownership_language,
        insight_articulated=result.insight_articulated,
    )


def validate_inference_payload(raw: Any) -> StateInferenceResult:
    """
    Привести ответ State Inference Service к схеме.

    category остаётся сырой строкой: дальше её обязан обработать
    CategoryMapper.
    """
    result = coerce(raw, StateInferenceResult)
    return result if result is not None else DEFAULT_INFERENCE_RESULT


def build_inference(
    payload: StateInferenceResult,
    category: Optional[ConstraintCategory],
) -> StateInference:
    """Собрать StateInference из проверенного payload и уже смапленной категории"""
    return StateInference(
        category=category,
        confidence=payload.confidence if category else 0.0,
        evidence=tuple(payload.evidence),
        sub_dimension=payload.sub_dimension,
        summary=payload.summary,
        complexity=ComplexityLevel(payload.complexity),
        diagnosis_ready=payload.diagnosis_ready,
        validation_needed=payload.validation_needed,
        hypothesis_validated=payload.hypothesis_validated and category is not None,
    )


def validate_inference(raw: Any, mapper: Optional[Any] = None) -> StateInference:
    """
    Payload -> маппинг категории -> StateInference.

    Args:
        raw: Ответ State Inference Service
        mapper: Объект с map_category (CategoryMapper); без него
            принимается только точное совпадение
    """
    payload = validate_inference_payload(raw)
    if mapper is not None:
        category = mapper.map_category(payload.category)
    else:
        category = validate_constraint_category(payload.category)
    return build_inference(payload, category)


def validate_closing_analysis(raw: Any, default: Optional[ClosingAnalysis] = None) -> ClosingAnalysis:
    """
    Привести классификацию closing-ответа к ClosingAnalysis.

    Args:
        raw: Ответ Closing Classifier
        default: Замена для пустого или битого ответа. На gate вызывающий
            передаёт hesitation, чтобы сбой не засчитывался как согласие
    """
    if isinstance(raw, ClosingAnalysis):
        return raw

    result = coerce(raw, ClosingAnalysisResult)
    if result is None:
        return default if default is not None else DEFAULT_CLOSING_ANALYSIS

    response_type = ClosingResponseType(result.response_type)
    objection_type = None
    if response_type in (ClosingResponseType.HESITATION, ClosingResponseType.OBJECTION):
        objection_type = ObjectionType(result.objection_type or ObjectionType.NEEDS_MORE_INFO.value)

    return ClosingAnalysis(
        response_type=response_type,
        objection_type=objection_type,
        confidence=result.confidence,
    )


def describe_defaults() -> Dict[str, Any]:
    """Документированные defaults (для логов и отладки хоста)"""
    return {
        "signals": DEFAULT_SIGNALS.to_dict(),
        "inference": DEFAULT_INFERENCE_RESULT.model_dump(),
        "closing": {
            "response_type": DEFAULT_CLOSING_ANALYSIS.response_type.value,
            "objection_type": None,
            "confidence": DEFAULT_CLOSING_ANALYSIS.confidence,
        },
    }
