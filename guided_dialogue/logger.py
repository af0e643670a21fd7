"""
Structured Logging для Guided Dialogue Core.

JSON-логи для production, readable для dev.
Включает conversation_id для трейсинга каждого хода.

Использование:
    from guided_dialogue.logger import logger

    logger.set_conversation("conv_123")
    logger.info("Turn started", phase="exploration")
    logger.metric("category_mapping_tier", 2, category="strategy")
    logger.event("decision_made", action="contain", rule="contain")
"""

import logging
import json
import os
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from guided_dialogue.settings import settings


# Context-local storage: разные диалоги могут обрабатываться параллельно
_conversation_id_var: ContextVar[Optional[str]] = ContextVar('conversation_id', default=None)
_extra_context_var: ContextVar[Optional[Dict[str, Any]]] = ContextVar('extra_context', default=None)


class StructuredLogger:
    """
    Структурированный логгер с поддержкой JSON и conversation tracing.

    Особенности:
    - JSON формат для production (LOG_FORMAT=json)
    - Readable формат для development (по умолчанию)
    - Автоматический conversation_id в каждом логе
    - Методы metric() и event() для аналитики
    """

    def __init__(self, name: str):
        self.name = name
        self.logger = logging.getLogger(name)

        if not self.logger.handlers:
            self._setup_logger()

    def _setup_logger(self) -> None:
        """Настройка логгера на основе settings и environment"""
        level_name = settings.get_nested("logging.level", "INFO")
        level = getattr(logging, level_name.upper(), logging.INFO)
        self.logger.setLevel(level)

        handler = logging.StreamHandler()
        handler.setLevel(level)

        log_format = os.environ.get("LOG_FORMAT", "readable")

        if log_format == "json":
            formatter = logging.Formatter("%(message)s")
        else:
            formatter = logging.Formatter(
                "[%(asctime)s] %(levelname)s - %(message)s",
                datefmt="%H:%M:%S"
            )

        handler.setFormatter(formatter)
        self.logger.addHandler(handler)
        self.logger.propagate = False

    @property
    def conversation_id(self) -> Optional[str]:
        """Context-local conversation_id"""
        return _conversation_id_var.get()

    def set_conversation(self, conv_id: str) -> None:
        """Set conversation_id (context-local)"""
        _conversation_id_var.set(conv_id)

    def clear_conversation(self) -> None:
        """Clear conversation_id"""
        _conversation_id_var.set(None)

    @property
    def _extra_context(self) -> Dict[str, Any]:
        ctx = _extra_context_var.get()
        if ctx is None:
            ctx = {}
            _extra_context_var.set(ctx)
        return ctx

    def set_context(self, **kwargs: Any) -> None:
        """Set extra context (context-local)"""
        ctx = dict(self._extra_context)
        ctx.update(kwargs)
        _extra_context_var.set(ctx)

    def clear_context(self) -> None:
        """Clear extra context"""
        _extra_context_var.set({})

    def _format_structured(self, level: str, message: str, **kwargs: Any) -> Dict[str, Any]:
        """Форматирование структурированного лога"""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "logger": self.name,
            "message": message,
        }

        if self.conversation_id:
            log_entry["conversation_id"] = self.conversation_id

        if self._extra_context:
            log_entry.update(self._extra_context)

        if kwargs:
            log_entry.update(kwargs)

        return log_entry

    def _should_use_json(self) -> bool:
        return os.environ.get("LOG_FORMAT", "readable") == "json"

    def _readable(self, message: str, **kwargs: Any) -> str:
        if kwargs:
            extras = ", ".join(f"{k}={v}" for k, v in kwargs.items())
            message = f"{message} [{extras}]"
        if self.conversation_id:
            message = f"[{self.conversation_id}] {message}"
        return message

    def _log(self, level: str, message: str, log_method, **kwargs: Any) -> None:
        """Общий метод логирования"""
        if self._should_use_json():
            structured = self._format_structured(level, message, **kwargs)
            log_method(json.dumps(structured, ensure_ascii=False, default=str))
        else:
            log_method(self._readable(message, **kwargs))

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message"""
        self._log("DEBUG", message, self.logger.debug, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message"""
        self._log("INFO", message, self.logger.info, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message"""
        self._log("WARNING", message, self.logger.warning, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message"""
        self._log("ERROR", message, self.logger.error, **kwargs)

    def metric(self, name: str, value: Any, **kwargs: Any) -> None:
        """
        Structured metric for analytics.

        Args:
            name: Название метрики (например, "category_mapping_tier")
            value: Значение метрики
            **kwargs: Дополнительные измерения (action, phase, etc.)

        Example:
            logger.metric("category_mapping_tier", 3, category="execution")
            logger.metric("response_fallback_used", 1, sub_phase="offer_solution")
        """
        self._log("METRIC", name, self.logger.info, value=value, **kwargs)

    def event(self, event_type: str, **kwargs: Any) -> None:
        """
        Log business event for analytics.

        Args:
            event_type: Тип события (например, "decision_made", "phase_transition")
            **kwargs: Данные события

        Example:
            logger.event("phase_transition", from_phase="exploration", to_phase="diagnosis")
            logger.event("closing_gate_passed", gate="assert_and_align")
        """
        self._log("EVENT", event_type, self.logger.info, **kwargs)


# Singleton экземпляр логгера
logger = StructuredLogger("guided_dialogue")


# =============================================================================
# Decision Logging Helpers
# =============================================================================

def log_decision(action: str, rule: str, confidence: float, trace: List[str]) -> None:
    """
    Логирование решения Decision Engine.

    Args:
        action: Выбранное действие
        rule: Имя сработавшего правила
        confidence: Уверенность решения
        trace: Выполненные критерии
    """
    logger.event(
        "decision_made",
        action=action,
        rule=rule,
        confidence=round(confidence, 2),
        trace=trace,
    )


def log_fallback_used(component: str, tier: str, reason: str) -> None:
    """
    Логирование перехода на более дешёвый уровень fallback.

    Args:
        component: Компонент (category_mapper, signal_classifier, ...)
        tier: Уровень, который дал ответ
        reason: Почему предыдущий уровень не сработал
    """
    logger.warning(
        "Fallback tier used",
        component=component,
        tier=tier,
        reason=reason,
    )
    logger.metric("fallback_used", 1, component=component, tier=tier)


# =============================================================================
# Утилиты для тестирования
# =============================================================================

def create_test_logger(name: str = "test") -> StructuredLogger:
    """Создать изолированный логгер для тестов"""
    return StructuredLogger(f"guided_dialogue.{name}")
