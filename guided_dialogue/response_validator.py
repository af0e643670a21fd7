"""
Response Validator - структурная проверка сгенерированного текста.

Слои:
1. Проверка текста по контракту хода (вопрос в конце, число
   предложений, запрещённые фразы, плейсхолдеры в скобках)
2. Одна корректирующая перегенерация со строгой директивой
3. Критичный ход: детерминированный шаблон
   Некритичный ход: принимается неидеальный текст

Ход никогда не блокируется: в худшем случае он шаблонный.

Использование:
    from guided_dialogue.response_validator import ResponseValidator

    validator = ResponseValidator()
    result = validator.produce(decision, state, generate_turn_text)
    print(result.response)
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from guided_dialogue.fallback_templates import fallback_for
from guided_dialogue.feature_flags import flags
from guided_dialogue.logger import logger
from guided_dialogue.models import ConversationState, OrchestratorDecision
from guided_dialogue.response_contracts import (
    FORBIDDEN_PATTERNS,
    PLACEHOLDER_PATTERNS,
    ResponseContract,
    contract_for,
    contract_key,
)

# generate(decision, overlays, state, correction=None) -> str
TextGenerator = Callable[..., Optional[str]]

SENTENCE_SPLIT = re.compile(r"[.!?]+")


def count_sentences(text: str) -> int:
    return len([s for s in SENTENCE_SPLIT.split(text) if s.strip()])


@dataclass
class ResponseValidationMetrics:
    total: int = 0
    violations_by_type: Dict[str, int] = field(default_factory=dict)
    retry_used: int = 0
    fallback_used: int = 0
    accepted_imperfect: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response_validation.total": self.total,
            "response_validation.violations_by_type": dict(self.violations_by_type),
            "response_validation.retry_used": self.retry_used,
            "response_validation.fallback_used": self.fallback_used,
            "response_validation.accepted_imperfect": self.accepted_imperfect,
        }


@dataclass
class ValidationResult:
    valid: bool
    violations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class ValidatedResponse:
    response: str
    valid: bool
    violations: List[str] = field(default_factory=list)
    retry_used: bool = False
    fallback_used: bool = False


class ResponseValidator:
    """Проверка, одна перегенерация, шаблон"""

    def __init__(self, max_retries: int = 1) -> None:
        self.max_retries = max_retries
        self._metrics = ResponseValidationMetrics()

    def reset_metrics(self) -> None:
        self._metrics = ResponseValidationMetrics()

    def get_metrics(self) -> Dict[str, Any]:
        return self._metrics.to_dict()

    # =========================================================================
    # Проверка
    # =========================================================================

    def validate(self, text: Optional[str], contract: Optional[ResponseContract]) -> ValidationResult:
        """
        Проверить текст по контракту.

        Returns:
            ValidationResult; violations - коды нарушений
        """
        if not text or not text.strip():
            return ValidationResult(False, ["empty_response"])

        violations: List[str] = []
        warnings: List[str] = []

        if any(p.search(text) for p in PLACEHOLDER_PATTERNS):
            violations.append("bracketed_placeholder")

        if contract is None:
            return ValidationResult(not violations, violations)

        if contract.question_required and not text.strip().endswith("?"):
            violations.append("missing_question")

        for group in contract.forbidden:
            if any(p.search(text) for p in FORBIDDEN_PATTERNS.get(group, [])):
                violations.append(f"forbidden_{group}")

        sentences = count_sentences(text)
        if sentences > contract.max_sentences + contract.sentence_tolerance:
            violations.append("too_many_sentences")
        elif sentences > contract.max_sentences:
            warnings.append(f"{sentences} sentences (recommended {contract.max_sentences})")

        return ValidationResult(not violations, violations, warnings)

    def build_correction(self, violations: List[str], decision: OrchestratorDecision) -> str:
        """Корректирующая директива для единственной перегенерации"""
        contract = contract_for(decision)
        key = contract_key(decision)
        lines = [
            f"Your previous response did not match the required structure for {key}.",
            "",
            "Issues:",
        ]
        lines.extend(f"- {v}" for v in violations)
        lines.extend(["", "Regenerate your response:"])
        if contract is not None:
            if contract.question_required:
                lines.append("- It MUST end with a question mark (?)")
            else:
                lines.append("- Do not end with a question")
            lines.append(f"- Use {contract.max_sentences} sentences or fewer")
            if contract.forbidden:
                lines.append(f"- Do not use any {', '.join(contract.forbidden)} language")
            if contract.purpose:
                lines.append(f"- Remember: {contract.purpose}")
        lines.append("- Never include bracketed placeholders")
        return "\n".join(lines)

    # =========================================================================
    # Полный цикл
    # =========================================================================

    def produce(
        self,
        decision: OrchestratorDecision,
        state: ConversationState,
        generate: TextGenerator,
    ) -> ValidatedResponse:
        """
        Сгенерировать текст хода и довести его до контракта.

        Args:
            decision: Решение хода
            state: Состояние после решения
            generate: Внешний генератор текста

        Returns:
            ValidatedResponse (response никогда не пустой)
        """
        contract = contract_for(decision)
        key = contract_key(decision)
        critical = contract is not None and contract.critical
        category = state.constraint_hypothesis.category

        text = self._generate(generate, decision, state)

        if not flags.response_validator:
            if text:
                return ValidatedResponse(text, True)
            return self._fallback(key, category, ["empty_response"], retry_used=False)

        result = self.validate(text, contract)
        if result.valid:
            return ValidatedResponse(text, True)

        self._metrics.total += 1
        self._count(result.violations)
        logger.warning("Response failed validation", contract=key, violations=result.violations)

        retry_used = False
        if flags.response_validator_retry and self.max_retries > 0:
            for _ in range(self.max_retries):
                retry_used = True
                self._metrics.retry_used += 1
                correction = self.build_correction(result.violations, decision)
                retried = self._generate(generate, decision, state, correction)
                retried_result = self.validate(retried, contract)
                if retried_result.valid:
                    logger.info("Response fixed by retry", contract=key)
                    return ValidatedResponse(retried, True, retry_used=True)
                if retried:
                    text, result = retried, retried_result

        use_template = critical and flags.closing_fallback_templates
        if use_template or not text:
            return self._fallback(key, category, result.violations, retry_used, imperfect=text)

        self._metrics.accepted_imperfect += 1
        logger.info("Accepting imperfect response", contract=key, violations=result.violations)
        return ValidatedResponse(text, False, result.violations, retry_used=retry_used)

    def _fallback(
        self,
        key: str,
        category,
        violations: List[str],
        retry_used: bool,
        imperfect: Optional[str] = None,
    ) -> ValidatedResponse:
        template = fallback_for(key, category)
        if template is None:
            template = imperfect or fallback_for("explore")
        self._metrics.fallback_used += 1
        logger.metric("response_fallback_used", 1, contract=key)
        return ValidatedResponse(template, False, violations, retry_used=retry_used, fallback_used=True)

    @staticmethod
    def _generate(
        generate: TextGenerator,
        decision: OrchestratorDecision,
        state: ConversationState,
        correction: Optional[str] = None,
    ) -> Optional[str]:
        try:
            if correction is None:
                return generate(decision, list(decision.overlays), state)
            return generate(decision, list(decision.overlays), state, correction=correction)
        except Exception as e:
            logger.error("Text generation failed", error=str(e)[:100], action=decision.action.value)
            return None

    def _count(self, violations: List[str]) -> None:
        for violation in violations:
            self._metrics.violations_by_type[violation] = self._metrics.violations_by_type.get(violation, 0) + 1
