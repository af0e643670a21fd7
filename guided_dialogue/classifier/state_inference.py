"""
State Inference Service - гипотеза о корневой категории по всей истории.

Возвращает сырой StateInferenceResult: category - свободный текст,
приводить её к перечислению обязан Category Mapper. При любой ошибке
возвращается None, и Schema Validator подставляет default.
"""

from typing import Any, Dict, List, Optional

from guided_dialogue.classifier.prompts import STATE_INFERENCE_SYSTEM, Message, build_state_inference_prompt
from guided_dialogue.classifier.schemas import StateInferenceResult
from guided_dialogue.logger import logger
from guided_dialogue.models import ConversationState


class StateInferenceService:
    """LLM-вывод гипотезы о категории ограничения"""

    def __init__(self, llm: Any):
        self.llm = llm
        self._calls = 0
        self._failures = 0

    def infer_state(
        self,
        full_history: Optional[List[Message]],
        current_state: ConversationState,
    ) -> Optional[StateInferenceResult]:
        self._calls += 1
        hypothesis = current_state.constraint_hypothesis
        described = None
        if hypothesis.exists:
            described = f"{hypothesis.category.value} ({hypothesis.confidence:.2f})"

        try:
            result = self.llm.generate_structured(
                build_state_inference_prompt(full_history, current_state.phase.value, described),
                StateInferenceResult,
                system=STATE_INFERENCE_SYSTEM,
            )
        except Exception as e:
            self._failures += 1
            logger.error("State inference error", error=str(e)[:100])
            return None

        if result is None:
            self._failures += 1
            logger.warning("State inference returned None")
        return result

    __call__ = infer_state

    def get_stats(self) -> Dict[str, int]:
        return {"calls": self._calls, "failures": self._failures}
