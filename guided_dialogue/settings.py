"""
Загрузчик настроек из settings.yaml

Использование:
    from guided_dialogue.settings import settings

    model = settings.llm.model
    cooldown = settings.orchestrator.containment.cooldown_turns
"""

import yaml
from pathlib import Path
from typing import List, Any


# Путь к файлу настроек
SETTINGS_FILE = Path(__file__).parent / "settings.yaml"

# Значения по умолчанию (используются если параметр не указан в YAML)
DEFAULTS = {
    "llm": {
        "model": "Qwen/Qwen3-4B-AWQ",
        "base_url": "http://localhost:8000/v1",
        "timeout": 30,
        "max_retries": 2,
    },
    "logging": {
        "level": "INFO",
        "log_llm_requests": False,
    },
    "orchestrator": {
        "containment": {
            "cooldown_turns": 4,
            "negative_marker_threshold": 3,
            "strain_marker_threshold": 1,
            "contradiction_marker_threshold": 2,
        },
        "acceleration": {
            "min_turns_total": 6,
            "min_criteria": 2,
            "ground_covered_threshold": 0.7,
            "confidence_threshold": 0.65,
            "repetition_threshold": 3,
        },
        "diagnosis": {
            "min_turns_total": 8,
            "min_turns_since_validation": 1,
            "min_supportive": 2,
            "high_confidence": 0.7,
            "min_phase_depth": 6,
            "fast_path_min_confidence": 0.75,
        },
        "cross_mapping": {
            "min_turns_in_phase": 4,
        },
        "deepen": {
            "short_response_chars": 20,
            "short_response_max_depth": 8,
            "complex_max_depth": 7,
        },
        "readiness": {
            "strong_clarity_confidence": 0.8,
            "strong_clarity_min_turns": 5,
            "boost_confidence": 0.7,
            "early_turns": 3,
            "category_capacity_confidence": 0.6,
        },
        "phases": {
            "context_turns": 3,
        },
        "category_mapper": {
            "default_category": "strategy",
        },
        "closing": {
            "max_objection_attempts": 2,
        },
        "response_validator": {
            "max_retries": 1,
        },
    },
    "development": {
        "debug": False,
    },
}


class DotDict(dict):
    """Словарь с доступом через точку: d.key вместо d['key']"""

    def __getattr__(self, key: str) -> Any:
        try:
            value = self[key]
            if isinstance(value, dict):
                return DotDict(value)
            return value
        except KeyError:
            raise AttributeError(f"Настройка '{key}' не найдена")

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value

    def get_nested(self, path: str, default: Any = None) -> Any:
        """Получить значение по пути: 'orchestrator.containment.cooldown_turns'"""
        keys = path.split('.')
        value = self
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Глубокое слияние словарей (override перезаписывает base)"""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(filepath: Path = None) -> DotDict:
    """
    Загрузить настройки из YAML файла.

    Порядок приоритета:
    1. Значения из YAML файла (высший приоритет)
    2. Значения по умолчанию (DEFAULTS)

    Args:
        filepath: Путь к файлу настроек (по умолчанию settings.yaml)

    Returns:
        DotDict с настройками
    """
    filepath = filepath or SETTINGS_FILE

    config = _deep_merge({}, DEFAULTS)

    if filepath.exists():
        with open(filepath, "r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}
        config = _deep_merge(config, yaml_config)
    else:
        print(f"[settings] Файл настроек не найден: {filepath}")
        print("[settings] Используются значения по умолчанию")

    return DotDict(config)


def validate_settings(settings: DotDict) -> List[str]:
    """
    Валидация настроек.

    Returns:
        Список ошибок (пустой если всё OK)
    """
    errors = []

    # LLM
    if not settings.llm.model:
        errors.append("llm.model не указан")
    if not settings.llm.base_url:
        errors.append("llm.base_url не указан")
    if settings.llm.timeout <= 0:
        errors.append("llm.timeout должен быть > 0")

    # Containment cooldown обязан быть хотя бы в один ход
    if settings.get_nested("orchestrator.containment.cooldown_turns", 0) < 1:
        errors.append("orchestrator.containment.cooldown_turns должен быть >= 1")

    # Пороги уверенности
    for path in [
        "orchestrator.acceleration.ground_covered_threshold",
        "orchestrator.acceleration.confidence_threshold",
        "orchestrator.diagnosis.high_confidence",
        "orchestrator.diagnosis.fast_path_min_confidence",
        "orchestrator.readiness.strong_clarity_confidence",
        "orchestrator.readiness.boost_confidence",
        "orchestrator.readiness.category_capacity_confidence",
    ]:
        value = settings.get_nested(path, 0)
        if not (0 <= value <= 1):
            errors.append(f"{path} должен быть от 0 до 1")

    if settings.get_nested("orchestrator.response_validator.max_retries", 0) < 0:
        errors.append("orchestrator.response_validator.max_retries должен быть >= 0")

    default_category = settings.get_nested("orchestrator.category_mapper.default_category")
    if default_category not in ("strategy", "execution", "psychology"):
        errors.append("orchestrator.category_mapper.default_category должен быть strategy/execution/psychology")

    return errors


# Глобальный экземпляр настроек (ленивая загрузка)
_settings = None


def get_settings() -> DotDict:
    """Получить глобальные настройки (singleton)"""
    global _settings
    if _settings is None:
        _settings = load_settings()
        errors = validate_settings(_settings)
        if errors:
            print("[settings] Ошибки в настройках:")
            for err in errors:
                print(f"  - {err}")
    return _settings


def reload_settings() -> DotDict:
    """Перезагрузить настройки из файла"""
    global _settings
    _settings = None
    return get_settings()


# Для удобного импорта: from guided_dialogue.settings import settings
settings = get_settings()
