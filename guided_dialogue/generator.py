"""
Генератор текста хода - собирает промпт из решения и вызывает LLM.

Ядро не хранит текст overlay: хост передаёт словарь token -> текст,
токены без текста просто называются в промпте.

Использование:
    from guided_dialogue.generator import TurnTextGenerator

    generator = TurnTextGenerator(llm, overlay_texts={"exploration": "..."})
    text = generator(decision, decision.overlays, state)
"""

import re
from typing import Any, Dict, List, Optional

from guided_dialogue.logger import logger
from guided_dialogue.models import ConversationState, OrchestratorDecision


class SafeDict(dict):
    """Пустая строка вместо KeyError при format_map"""

    def __missing__(self, key: str) -> str:
        logger.debug("SafeDict: missing key, returning empty string", key=key)
        return ""


BASE_SYSTEM_PROMPT = """You are a warm, sharp business advisor guiding a founder to see the one constraint holding their business back.
Speak plainly. One idea per turn. Never use bracketed placeholders.
Current phase: {phase}. Hypothesis: {hypothesis}."""

DIRECTIVE_TEMPLATE = """ACTION: {action}
REASONING: {reasoning}
FOCUS: {focus}

{overlays}

Write your next message to the user."""

_WHITESPACE_RE = re.compile(r"\n{3,}")


class TurnTextGenerator:
    """Вызываемый генератор для Orchestrator (generate_turn_text)"""

    def __init__(
        self,
        llm: Any,
        overlay_texts: Optional[Dict[str, str]] = None,
        temperature: float = 0.7,
        max_tokens: int = 400,
    ):
        self.llm = llm
        self.overlay_texts = dict(overlay_texts or {})
        self.temperature = temperature
        self.max_tokens = max_tokens

    def build_system(self, state: ConversationState) -> str:
        hypothesis = state.constraint_hypothesis
        described = "none yet"
        if hypothesis.exists:
            described = hypothesis.summary or hypothesis.category.value
        return BASE_SYSTEM_PROMPT.format_map(SafeDict(phase=state.phase.value, hypothesis=described))

    def build_prompt(
        self,
        decision: OrchestratorDecision,
        overlays: List[str],
        correction: Optional[str] = None,
    ) -> str:
        blocks = []
        for token in overlays:
            text = self.overlay_texts.get(token)
            blocks.append(text if text else f"[overlay: {token}]")
        prompt = DIRECTIVE_TEMPLATE.format_map(SafeDict(
            action=decision.action.value,
            reasoning=decision.reasoning,
            focus=decision.focus_area or "-",
            overlays="\n\n".join(blocks),
        ))
        if correction:
            prompt = f"{prompt}\n\n{correction}"
        return prompt

    def __call__(
        self,
        decision: OrchestratorDecision,
        overlays: List[str],
        state: ConversationState,
        correction: Optional[str] = None,
    ) -> Optional[str]:
        text = self.llm.generate(
            self.build_prompt(decision, overlays, correction),
            system=self.build_system(state),
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if text is None:
            return None
        return self._clean(text)

    @staticmethod
    def _clean(text: str) -> str:
        return _WHITESPACE_RE.sub("\n\n", text).strip()
