"""
Feature Flags для Guided Dialogue Core.

Позволяют отключить отдельный уровень каскада (LLM, fast path, шаблоны)
без изменения кода.

Использование:
    from guided_dialogue.feature_flags import flags

    if flags.acceleration_fast_path:
        ...

    if flags.is_enabled("category_delegate"):
        ...
"""

import os
from typing import Dict, List, Set

from guided_dialogue.settings import settings


class FeatureFlags:
    """
    Система feature flags.

    Особенности:
    - Загрузка из settings.yaml (секция feature_flags)
    - Override через environment variables (FF_<NAME>)
    - Runtime overrides для тестов
    - Группы флагов
    """

    DEFAULTS: Dict[str, bool] = {
        # Decision Engine
        "acceleration_fast_path": True,     # Ранний выход из exploration
        "cross_mapping": True,              # Перенаправление на upstream категорию

        # Каскады классификации
        "signal_llm": True,                 # LLM tier для сигналов (иначе только regex)
        "category_delegate": True,          # Tier 2 в Category Mapper

        # Response Validator
        "response_validator": True,         # Структурная проверка текста
        "response_validator_retry": True,   # Одна корректирующая перегенерация
        "closing_fallback_templates": True, # Шаблоны для критичных closing-ходов
    }

    GROUPS: Dict[str, List[str]] = {
        "llm": ["signal_llm", "category_delegate"],
        "validation": ["response_validator", "response_validator_retry", "closing_fallback_templates"],
        "heuristics": ["acceleration_fast_path", "cross_mapping"],
    }

    def __init__(self):
        self._flags: Dict[str, bool] = {}
        self._overrides: Dict[str, bool] = {}
        self._load_flags()

    def _load_flags(self) -> None:
        """Загрузить флаги из settings и environment"""
        self._flags = self.DEFAULTS.copy()

        settings_flags = settings.get_nested("feature_flags", {})
        if isinstance(settings_flags, dict):
            for key, value in settings_flags.items():
                if isinstance(value, bool):
                    self._flags[key] = value

        for key in self._flags:
            env_value = os.environ.get(f"FF_{key.upper()}")
            if env_value is not None:
                self._flags[key] = env_value.lower() in ("true", "1", "yes", "on")

    def reload(self) -> None:
        """Перезагрузить флаги из settings"""
        self._overrides.clear()
        self._load_flags()

    def is_enabled(self, flag: str) -> bool:
        """
        Проверить включён ли флаг.

        Args:
            flag: Имя флага

        Returns:
            True если флаг включён, False иначе
        """
        if flag in self._overrides:
            return self._overrides[flag]
        return self._flags.get(flag, False)

    def set_override(self, flag: str, value: bool) -> None:
        """Установить runtime override для флага (тесты, ручное управление)"""
        self._overrides[flag] = value

    def clear_override(self, flag: str) -> None:
        """Убрать runtime override для флага"""
        self._overrides.pop(flag, None)

    def clear_all_overrides(self) -> None:
        """Убрать все runtime overrides"""
        self._overrides.clear()

    def get_all_flags(self) -> Dict[str, bool]:
        """Получить все флаги с текущими значениями"""
        result = self._flags.copy()
        result.update(self._overrides)
        return result

    def get_enabled_flags(self) -> Set[str]:
        return {k for k, v in self.get_all_flags().items() if v}

    def disable_group(self, group: str) -> None:
        """Выключить все флаги в группе (через overrides)"""
        for flag in self.GROUPS.get(group, []):
            self.set_override(flag, False)

    # =========================================================================
    # Типизированные property
    # =========================================================================

    @property
    def acceleration_fast_path(self) -> bool:
        return self.is_enabled("acceleration_fast_path")

    @property
    def cross_mapping(self) -> bool:
        return self.is_enabled("cross_mapping")

    @property
    def signal_llm(self) -> bool:
        return self.is_enabled("signal_llm")

    @property
    def category_delegate(self) -> bool:
        return self.is_enabled("category_delegate")

    @property
    def response_validator(self) -> bool:
        return self.is_enabled("response_validator")

    @property
    def response_validator_retry(self) -> bool:
        return self.is_enabled("response_validator_retry")

    @property
    def closing_fallback_templates(self) -> bool:
        return self.is_enabled("closing_fallback_templates")


# Singleton экземпляр
flags = FeatureFlags()
