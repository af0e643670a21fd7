"""
Signal Classifier - сигналы одного хода.

Два уровня:
    1. LLM (structured output по SignalsResult)
    2. Regex детектор (detect_signals_simple), если LLM недоступен,
       выключен флагом signal_llm или вернул мусор

Использование:
    from guided_dialogue.classifier.signal_classifier import SignalClassifier

    classifier = SignalClassifier(llm=VLLMClient())
    signals = classifier.classify_signals("I'm so overwhelmed", history)
"""

import re
from typing import Any, Dict, List, Optional

from guided_dialogue.classifier.prompts import SIGNALS_SYSTEM, Message, build_signals_prompt
from guided_dialogue.classifier.schemas import SignalsResult
from guided_dialogue.feature_flags import flags
from guided_dialogue.logger import log_fallback_used, logger
from guided_dialogue.models import ConversationSignals, ReadinessLevel
from guided_dialogue.schema_validator import validate_signals


EMOTIONAL_RE = re.compile(r"\b(overwhelm\w*|exhausted?|frustrated?|stuck|drained?|burned out|burnt out)\b", re.I)
CAPACITY_RE = re.compile(r"\b(no time|too busy|burned out|can'?t handle|don'?t have (the )?bandwidth)\b", re.I)
OVERWHELM_RE = re.compile(r"\b(overwhelm\w*|too much|can'?t handle|exhausted?|so many)\b", re.I)
NEGATIVE_OVERWHELM_RE = re.compile(
    r"\b(overwhelm(ed|ing)?|drowning|too much|can'?t handle|exhausted?|burnt out|can'?t do this|give up|breaking down)\b",
    re.I,
)
VALIDATION_RE = re.compile(r"(right\?|does that make sense|am i wrong|is that correct)", re.I)
OWNERSHIP_RE = re.compile(
    r"(that'?s (exactly )?it|\bi know\b|\bdefinitely\b|\bclearly\b|i see (it|that) now|\bexactly\b|\bprecisely\b)",
    re.I,
)
BREAKTHROUGH_RE = re.compile(
    r"(\boh!|\baha!|i see now|that'?s exactly it|that makes sense|i hadn'?t thought of it that way|"
    r"now i understand|that clicks|that resonates|i (just )?realized)",
    re.I,
)
INSIGHT_RE = re.compile(r"(i (just )?realized|it'?s (really )?about|the (real )?issue is|what i'?m (really )?seeing)", re.I)
POSITIVE_RE = re.compile(
    r"(\bexactly\b|\byes!|that'?s (exactly )?it|i see (it|now)|oh wow|\baha\b|i just realized|\bexcited\b|"
    r"\bconfident\b|that clicks|that resonates)",
    re.I,
)
CONTRADICTION_RE = re.compile(
    r"(but (also|at the same time)|on one hand.*on the other|i (want|need) to.*but i (can'?t|don'?t))", re.I
)
LOW_CLARITY_RE = re.compile(r"\b(kind of|sort of|maybe|i guess|not sure)\b", re.I)

SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def detect_signals_simple(user_text: str, history: Optional[List[Message]] = None) -> ConversationSignals:
    """
    Детерминированный детектор сигналов на регулярках.

    contradiction_detected считается только по текущему сообщению:
    сравнения с историей этот уровень не делает.
    """
    text = user_text or ""
    words = len(text.split())

    markers = tuple(m.group(0).lower() for m in EMOTIONAL_RE.finditer(text))
    capacity = tuple(m.group(0).lower() for m in CAPACITY_RE.finditer(text))
    breakthroughs = tuple(
        s for s in SENTENCE_RE.split(text) if len(s) >= 15 and BREAKTHROUGH_RE.search(s)
    )

    validation_seeking = bool(VALIDATION_RE.search(text))
    ownership = bool(OWNERSHIP_RE.search(text))
    negative_overwhelm = bool(NEGATIVE_OVERWHELM_RE.search(text))
    positive = bool(POSITIVE_RE.search(text)) and not negative_overwhelm

    if LOW_CLARITY_RE.search(text):
        clarity = ReadinessLevel.LOW
    elif 0 < words < 30:
        clarity = ReadinessLevel.HIGH
    else:
        clarity = ReadinessLevel.MEDIUM

    if validation_seeking:
        confidence = ReadinessLevel.LOW
    elif ownership:
        confidence = ReadinessLevel.HIGH
    else:
        confidence = ReadinessLevel.MEDIUM

    return ConversationSignals(
        response_length=len(text.strip()),
        emotional_markers=markers,
        positive_markers=breakthroughs,
        clarity_level=clarity,
        confidence_level=confidence,
        capacity_signals=capacity,
        contradiction_detected=bool(CONTRADICTION_RE.search(text)),
        overwhelm_detected=bool(OVERWHELM_RE.search(text)) or negative_overwhelm,
        positive_emotion_detected=positive,
        negative_overwhelm_detected=negative_overwhelm,
        validation_seeking=validation_seeking,
        ownership_language=ownership,
        insight_articulated=bool(breakthroughs) or bool(INSIGHT_RE.search(text)),
    )


class SignalClassifier:
    """
    Классификатор сигналов на базе LLM с fallback на regex.
    """

    def __init__(self, llm: Optional[Any] = None):
        """
        Args:
            llm: Клиент с generate_structured (None - только regex)
        """
        self.llm = llm
        self._llm_calls = 0
        self._llm_successes = 0
        self._fallback_calls = 0

    def classify_signals(self, user_text: str, recent_history: Optional[List[Message]] = None) -> ConversationSignals:
        """
        Сигналы хода.

        Returns:
            ConversationSignals (никогда не бросает)
        """
        length = len((user_text or "").strip())
        if self.llm is None or not flags.signal_llm:
            return self._use_fallback(user_text, recent_history, "llm_disabled")

        self._llm_calls += 1
        try:
            result = self.llm.generate_structured(
                build_signals_prompt(user_text, recent_history),
                SignalsResult,
                system=SIGNALS_SYSTEM,
            )
        except Exception as e:
            logger.error("Signal classifier error", error=str(e)[:100])
            return self._use_fallback(user_text, recent_history, "llm_error")

        if result is None:
            logger.warning("Signal classifier returned None, using fallback")
            return self._use_fallback(user_text, recent_history, "llm_none")

        self._llm_successes += 1
        return validate_signals(result, response_length=length)

    __call__ = classify_signals

    def _use_fallback(self, user_text: str, history: Optional[List[Message]], reason: str) -> ConversationSignals:
        self._fallback_calls += 1
        if reason != "llm_disabled":
            log_fallback_used("signal_classifier", "regex", reason)
        return detect_signals_simple(user_text, history)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "llm_calls": self._llm_calls,
            "llm_successes": self._llm_successes,
            "fallback_calls": self._fallback_calls,
            "llm_success_rate": (
                self._llm_successes / self._llm_calls * 100 if self._llm_calls > 0 else 0
            ),
        }
