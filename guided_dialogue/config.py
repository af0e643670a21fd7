"""
Конфигурация порогов оркестратора.

Все пороги - конфигурация, а не инварианты: значения по умолчанию
берутся из settings.yaml (секция orchestrator), пресеты переопределяют
отдельные поля.

Использование:
    from guided_dialogue.config import OrchestratorConfig

    config = OrchestratorConfig.from_settings()
    strict = OrchestratorConfig.prototype()
"""

from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from guided_dialogue.models import ConstraintCategory
from guided_dialogue.settings import DotDict, settings


@dataclass
class OrchestratorConfig:
    """Пороги всех эвристик одного оркестратора"""
    # Containment
    containment_cooldown: int = 4              # Ходов между двумя containment (>= 1)
    negative_marker_threshold: int = 3         # Маркеров для high charge
    strain_marker_threshold: int = 1           # В паре с negative markers
    contradiction_marker_threshold: int = 2    # Противоречие + маркеры

    # Acceleration
    acceleration_min_turns: int = 6
    acceleration_min_criteria: int = 2
    ground_covered_threshold: float = 0.7
    acceleration_confidence: float = 0.65
    repetition_threshold: int = 3

    # Diagnosis (4 critical + N из 5 supportive)
    diagnosis_min_turns: int = 8
    min_turns_since_validation: int = 1
    min_supportive_criteria: int = 2
    diagnosis_high_confidence: float = 0.7
    diagnosis_min_phase_depth: int = 6
    fast_path_min_confidence: float = 0.75

    # Cross-mapping
    cross_map_min_turns_in_phase: int = 4

    # Deepen
    short_response_chars: int = 20
    short_response_max_depth: int = 8
    complex_max_depth: int = 7

    # Readiness
    strong_clarity_confidence: float = 0.8
    strong_clarity_min_turns: int = 5
    clarity_boost_confidence: float = 0.7
    early_conversation_turns: int = 3
    category_capacity_confidence: float = 0.6

    # Фазы и closing
    context_turns: int = 3
    max_objection_attempts: int = 2
    default_category: ConstraintCategory = ConstraintCategory.STRATEGY

    # Response Validator
    response_max_retries: int = 1

    def __post_init__(self):
        if self.containment_cooldown < 1:
            raise ValueError("containment_cooldown must be >= 1")
        if isinstance(self.default_category, str):
            self.default_category = ConstraintCategory(self.default_category)

    # Соответствие полей конфигурации путям в settings.orchestrator
    SETTINGS_PATHS = {
        "containment_cooldown": "containment.cooldown_turns",
        "negative_marker_threshold": "containment.negative_marker_threshold",
        "strain_marker_threshold": "containment.strain_marker_threshold",
        "contradiction_marker_threshold": "containment.contradiction_marker_threshold",
        "acceleration_min_turns": "acceleration.min_turns_total",
        "acceleration_min_criteria": "acceleration.min_criteria",
        "ground_covered_threshold": "acceleration.ground_covered_threshold",
        "acceleration_confidence": "acceleration.confidence_threshold",
        "repetition_threshold": "acceleration.repetition_threshold",
        "diagnosis_min_turns": "diagnosis.min_turns_total",
        "min_turns_since_validation": "diagnosis.min_turns_since_validation",
        "min_supportive_criteria": "diagnosis.min_supportive",
        "diagnosis_high_confidence": "diagnosis.high_confidence",
        "diagnosis_min_phase_depth": "diagnosis.min_phase_depth",
        "fast_path_min_confidence": "diagnosis.fast_path_min_confidence",
        "cross_map_min_turns_in_phase": "cross_mapping.min_turns_in_phase",
        "short_response_chars": "deepen.short_response_chars",
        "short_response_max_depth": "deepen.short_response_max_depth",
        "complex_max_depth": "deepen.complex_max_depth",
        "strong_clarity_confidence": "readiness.strong_clarity_confidence",
        "strong_clarity_min_turns": "readiness.strong_clarity_min_turns",
        "clarity_boost_confidence": "readiness.boost_confidence",
        "early_conversation_turns": "readiness.early_turns",
        "category_capacity_confidence": "readiness.category_capacity_confidence",
        "context_turns": "phases.context_turns",
        "max_objection_attempts": "closing.max_objection_attempts",
        "default_category": "category_mapper.default_category",
        "response_max_retries": "response_validator.max_retries",
    }

    @classmethod
    def default(cls) -> "OrchestratorConfig":
        """Дефолтная конфигурация (без чтения settings)"""
        return cls()

    @classmethod
    def from_settings(cls, source: Optional[DotDict] = None) -> "OrchestratorConfig":
        """
        Собрать конфигурацию из settings.yaml.

        Args:
            source: DotDict настроек (по умолчанию глобальный settings)
        """
        source = source if source is not None else settings
        section = DotDict(source.get_nested("orchestrator", {}) or {})
        names = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for name, path in cls.SETTINGS_PATHS.items():
            value = section.get_nested(path)
            if value is not None and name in names:
                values[name] = value
        return cls(**values)

    @classmethod
    def prototype(cls) -> "OrchestratorConfig":
        """Ранняя конфигурация: короткий cooldown и более быстрый диагноз"""
        return cls(
            containment_cooldown=2,
            diagnosis_min_turns=6,
            min_supportive_criteria=1,
            acceleration_min_turns=5,
        )
