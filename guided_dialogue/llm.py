"""
vLLM Client для Guided Dialogue Core.

Default backend для всех внешних классификаторов и генератора текста.
Использует OpenAI-compatible API с native structured output.

Возможности:
- Native Structured Output: response_format с json_schema
- Circuit Breaker: open/closed/half-open состояния
- LLMStats: success_rate, avg_response_time
- Retry: exponential backoff при ошибках
- Таймаут на каждый запрос: по истечении возвращается None,
  вызывающий переходит на следующий (более дешёвый) уровень каскада

Запуск vLLM сервера:
    vllm serve Qwen/Qwen3-4B-AWQ --port 8000 --quantization awq
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Type, TypeVar

import requests
from pydantic import BaseModel, ValidationError

from guided_dialogue.logger import logger
from guided_dialogue.settings import settings

T = TypeVar('T', bound=BaseModel)


@dataclass
class CircuitBreakerState:
    """Состояние circuit breaker"""
    failures: int = 0
    last_failure_time: float = 0.0
    is_open: bool = False
    open_until: float = 0.0


@dataclass
class LLMStats:
    """Статистика LLM клиента"""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    circuit_rejections: int = 0
    total_retries: int = 0
    circuit_breaker_trips: int = 0
    total_response_time_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        """Процент успешных запросов"""
        if self.total_requests == 0:
            return 100.0
        return (self.successful_requests / self.total_requests) * 100

    @property
    def average_response_time_ms(self) -> float:
        """Среднее время ответа"""
        if self.successful_requests == 0:
            return 0.0
        return self.total_response_time_ms / self.successful_requests


class VLLMClient:
    """
    vLLM клиент.

    Оба публичных метода никогда не бросают исключений: при ошибке,
    таймауте или открытом circuit breaker возвращают None.
    """

    # Настройки retry
    INITIAL_DELAY: float = 0.5
    MAX_DELAY: float = 4.0
    BACKOFF_MULTIPLIER: float = 2.0

    # Настройки circuit breaker
    CIRCUIT_BREAKER_THRESHOLD: int = 5
    CIRCUIT_BREAKER_TIMEOUT: int = 60

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[int] = None,
        max_retries: Optional[int] = None,
        enable_circuit_breaker: bool = True,
        enable_retry: bool = True
    ):
        """
        Инициализация vLLM клиента.

        Args:
            model: Название модели (из settings если не указано)
            base_url: URL vLLM API (из settings если не указано)
            timeout: Таймаут запроса в секундах
            max_retries: Количество попыток на один вызов
            enable_circuit_breaker: Включить circuit breaker
            enable_retry: Включить retry с exponential backoff
        """
        self.model = model or settings.llm.model
        self.base_url = base_url or settings.llm.base_url
        self.timeout = timeout or settings.llm.timeout
        self.max_retries = max_retries or settings.get_nested("llm.max_retries", 2)

        self._enable_circuit_breaker = enable_circuit_breaker
        self._enable_retry = enable_retry

        self._circuit_breaker = CircuitBreakerState()
        self._stats = LLMStats()

    def reset_circuit_breaker(self) -> None:
        """Сбросить circuit breaker"""
        self._circuit_breaker = CircuitBreakerState()
        logger.info("Circuit breaker reset")

    @property
    def stats(self) -> LLMStats:
        return self._stats

    @property
    def is_circuit_open(self) -> bool:
        return self._is_circuit_open()

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def generate_structured(
        self,
        prompt: str,
        schema: Type[T],
        system: Optional[str] = None,
    ) -> Optional[T]:
        """
        Генерация с JSON по схеме через vLLM native structured output.

        Args:
            prompt: Промпт для LLM
            schema: Pydantic модель для валидации
            system: Системное сообщение

        Returns:
            Экземпляр schema или None при ошибке
        """
        payload = {
            "temperature": 0.1,
            "max_tokens": 512,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": schema.__name__,
                    "schema": schema.model_json_schema(),
                    "strict": True,
                },
            },
        }
        content = self._request(self._messages(prompt, system), payload, kind="structured")
        if content is None:
            return None
        try:
            return schema.model_validate_json(content)
        except ValidationError as e:
            logger.warning(
                "Structured output failed schema validation",
                schema=schema.__name__,
                error=str(e)[:100],
            )
            return None

    def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 400,
    ) -> Optional[str]:
        """
        Свободная генерация текста.

        Returns:
            Текст ответа или None при ошибке
        """
        payload = {"temperature": temperature, "max_tokens": max_tokens}
        return self._request(self._messages(prompt, system), payload, kind="text")

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    @staticmethod
    def _messages(prompt: str, system: Optional[str]) -> List[Dict[str, str]]:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _request(self, messages: List[Dict[str, str]], payload: Dict[str, Any], kind: str) -> Optional[str]:
        """Запрос с retry, backoff и circuit breaker"""
        self._stats.total_requests += 1
        start_time = time.time()

        if self._enable_circuit_breaker and self._is_circuit_open():
            logger.warning("Circuit breaker open, skipping LLM call", kind=kind)
            self._stats.circuit_rejections += 1
            return None

        last_error: Optional[Exception] = None
        delay = self.INITIAL_DELAY
        max_attempts = self.max_retries if self._enable_retry else 1

        for attempt in range(max_attempts):
            try:
                content = self._call_llm(messages, payload)

                elapsed_ms = (time.time() - start_time) * 1000
                self._stats.successful_requests += 1
                self._stats.total_response_time_ms += elapsed_ms
                self._reset_failures()

                logger.debug(
                    "vLLM request successful",
                    kind=kind,
                    attempt=attempt + 1,
                    elapsed_ms=round(elapsed_ms, 1)
                )
                return content

            except requests.exceptions.Timeout as e:
                last_error = e
                logger.warning(f"vLLM timeout (attempt {attempt + 1}/{max_attempts})", kind=kind)
            except requests.exceptions.RequestException as e:
                last_error = e
                logger.warning(
                    f"vLLM request failed (attempt {attempt + 1}/{max_attempts})",
                    kind=kind,
                    error=str(e)[:100],
                )
            except (ValueError, KeyError) as e:
                last_error = e
                logger.warning(
                    f"vLLM malformed response (attempt {attempt + 1}/{max_attempts})",
                    kind=kind,
                    error=str(e)[:100],
                )

            if attempt < max_attempts - 1:
                self._stats.total_retries += 1
                time.sleep(delay)
                delay = min(delay * self.BACKOFF_MULTIPLIER, self.MAX_DELAY)

        self._stats.failed_requests += 1
        if self._enable_circuit_breaker:
            self._record_failure()

        logger.error(
            "vLLM all retries failed",
            kind=kind,
            error=str(last_error)[:100] if last_error else "unknown",
        )
        return None

    def _call_llm(self, messages: List[Dict[str, str]], payload: Dict[str, Any]) -> str:
        """
        Один вызов vLLM API без retry/circuit breaker.

        Тесты мокают этот метод.
        """
        if settings.get_nested("logging.log_llm_requests", False):
            logger.debug("vLLM request", messages=messages)

        response = requests.post(
            f"{self.base_url.rstrip('/')}/chat/completions",
            json={"model": self.model, "messages": messages, **payload},
            timeout=self.timeout
        )
        response.raise_for_status()

        data = response.json()
        choices = data.get("choices", [])
        if not choices:
            raise ValueError("Empty response from vLLM")

        content = choices[0].get("message", {}).get("content", "")
        if not content:
            raise ValueError("Empty content in response from vLLM")

        return content

    # =========================================================================
    # CIRCUIT BREAKER
    # =========================================================================

    def _is_circuit_open(self) -> bool:
        if not self._circuit_breaker.is_open:
            return False

        if time.time() >= self._circuit_breaker.open_until:
            logger.info("Circuit breaker attempting recovery (half-open state)")
            self._circuit_breaker.is_open = False
            return False

        return True

    def _record_failure(self) -> None:
        self._circuit_breaker.failures += 1
        self._circuit_breaker.last_failure_time = time.time()

        if self._circuit_breaker.failures >= self.CIRCUIT_BREAKER_THRESHOLD:
            self._circuit_breaker.is_open = True
            self._circuit_breaker.open_until = time.time() + self.CIRCUIT_BREAKER_TIMEOUT
            self._stats.circuit_breaker_trips += 1

            logger.error(
                "Circuit breaker opened",
                failures=self._circuit_breaker.failures,
                timeout=self.CIRCUIT_BREAKER_TIMEOUT
            )

    def _reset_failures(self) -> None:
        self._circuit_breaker.failures = 0
        if self._circuit_breaker.is_open:
            logger.info("Circuit breaker closed after successful request")
            self._circuit_breaker.is_open = False

    # =========================================================================
    # STATS
    # =========================================================================

    def get_stats_dict(self) -> Dict[str, Any]:
        """Получить статистику в виде словаря"""
        return {
            "total_requests": self._stats.total_requests,
            "successful_requests": self._stats.successful_requests,
            "failed_requests": self._stats.failed_requests,
            "circuit_rejections": self._stats.circuit_rejections,
            "total_retries": self._stats.total_retries,
            "circuit_breaker_trips": self._stats.circuit_breaker_trips,
            "success_rate": round(self._stats.success_rate, 1),
            "average_response_time_ms": round(self._stats.average_response_time_ms, 1),
            "circuit_breaker_open": self._circuit_breaker.is_open,
        }
