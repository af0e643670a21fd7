"""
Closing Classifier - классификация ответа внутри closing sequence.

Ответ трактуется относительно того, что было спрошено (gate_type):
    agreement_in_principle - Gate 1
    agreement_to_offering  - Gate 2
    reflection             - остальные шаги

Уровни:
    1. LLM (ClosingAnalysisResult)
    2. Ключевые фразы (classify_closing_keywords)
    3. Default: на gate - hesitation/needs_more_info (gate без явного
       согласия не проходится), иначе tentative_agreement

Использование:
    from guided_dialogue.classifier.closing_classifier import ClosingClassifier

    classifier = ClosingClassifier(llm=VLLMClient())
    analysis = classifier.classify_closing_response(
        "Yes, that makes sense", "agreement_in_principle", context
    )
"""

import re
from typing import Any, Dict, List, Optional, Pattern, Tuple

from guided_dialogue.classifier.prompts import build_closing_prompt
from guided_dialogue.classifier.schemas import ClosingAnalysisResult
from guided_dialogue.logger import log_fallback_used, logger
from guided_dialogue.models import ClosingAnalysis, ClosingResponseType, ObjectionType
from guided_dialogue.schema_validator import coerce, validate_closing_analysis

GATE_TYPES = ("agreement_in_principle", "agreement_to_offering")


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p, re.I) for p in patterns]


# Порядок важен: сначала возражения, потом согласие ("yes but not now" - timing)
OBJECTION_PATTERNS: List[Tuple[ObjectionType, List[Pattern]]] = [
    (ObjectionType.TIMING, _compile(
        r"\bnot (right )?now\b", r"\btoo busy\b", r"\bmaybe later\b", r"\bnext (week|month|year)\b",
        r"\bnot the right time\b", r"\bdown the (road|line)\b",
    )),
    (ObjectionType.DOESNT_NEED_HELP, _compile(
        r"\bdon'?t (think i )?need (help|that|it|this)\b", r"\bi'?m (fine|good|ok)\b",
        r"\bi can handle (it|this)\b", r"\bno need\b",
    )),
    (ObjectionType.PREFERS_SELF_SOLVE, _compile(
        r"\b(figure|work|sort) (it|this|that) out (myself|on my own)\b", r"\bon my own\b",
        r"\brather (do|figure|find|handle)\b", r"\bby myself\b",
    )),
    (ObjectionType.CONCERNS_ABOUT_OFFERING, _compile(
        r"\bhow much\b", r"\b(cost|price|pricing|expensive|afford)\b", r"\bsales pitch\b",
        r"\bwhat'?s the catch\b", r"\bsell(ing)? me\b",
    )),
    (ObjectionType.NEEDS_MORE_INFO, _compile(
        r"\bwhat (would|does|will) (that|it|this) (involve|look like)\b",
        r"\bhow (does|would|will) (that|it|this) work\b", r"\btell me more\b", r"\bmore (details|info)\b",
    )),
]

HESITATION_PATTERNS = _compile(
    r"\bnot sure\b", r"\bmaybe\b", r"\blet me think\b", r"\bi don'?t know\b", r"\bhmm+\b",
)

TENTATIVE_PATTERNS = _compile(
    r"\bi think so\b", r"\bprobably\b", r"\bi guess\b", r"\bworth (exploring|a try|a shot)\b",
    r"\bi suppose\b", r"\bkind of\b",
)

CLEAR_PATTERNS = _compile(
    r"^\s*(yes|yeah|yep|yup|absolutely|definitely|sure|of course|totally)\b",
    r"\bthat makes sense\b", r"\bexactly\b", r"\bthat would be (great|helpful|good)\b",
    r"\blet'?s do (it|this|that)\b", r"\bsounds (good|great)\b", r"\bi'?m (in|ready)\b",
    r"\bthat (lands|resonates)\b",
)


def classify_closing_keywords(user_text: str) -> Optional[ClosingAnalysis]:
    """
    Классификация по ключевым фразам.

    Returns:
        ClosingAnalysis или None, если ничего не совпало
    """
    text = user_text or ""

    for objection, patterns in OBJECTION_PATTERNS:
        if any(p.search(text) for p in patterns):
            response_type = (
                ClosingResponseType.HESITATION
                if objection == ObjectionType.NEEDS_MORE_INFO
                else ClosingResponseType.OBJECTION
            )
            return ClosingAnalysis(response_type, objection, 0.6)

    if any(p.search(text) for p in HESITATION_PATTERNS):
        return ClosingAnalysis(ClosingResponseType.HESITATION, ObjectionType.NEEDS_MORE_INFO, 0.55)
    if any(p.search(text) for p in TENTATIVE_PATTERNS):
        return ClosingAnalysis(ClosingResponseType.TENTATIVE_AGREEMENT, None, 0.6)
    if any(p.search(text) for p in CLEAR_PATTERNS):
        return ClosingAnalysis(ClosingResponseType.CLEAR_AGREEMENT, None, 0.7)
    return None


def default_analysis(gate_type: str) -> ClosingAnalysis:
    if gate_type in GATE_TYPES:
        return ClosingAnalysis(ClosingResponseType.HESITATION, ObjectionType.NEEDS_MORE_INFO, 0.3)
    return ClosingAnalysis(ClosingResponseType.TENTATIVE_AGREEMENT, None, 0.5)


class ClosingClassifier:
    """LLM-классификатор closing-ответов с fallback на ключевые фразы"""

    def __init__(self, llm: Optional[Any] = None):
        self.llm = llm
        self._method_counts: Dict[str, int] = {"llm": 0, "keywords": 0, "default": 0}

    def classify_closing_response(
        self,
        user_text: str,
        gate_type: str,
        recent_context: str = "",
    ) -> ClosingAnalysis:
        analysis = self._ask_llm(user_text, gate_type, recent_context)
        if analysis is not None:
            self._method_counts["llm"] += 1
            return analysis

        analysis = classify_closing_keywords(user_text)
        if analysis is not None:
            self._method_counts["keywords"] += 1
            log_fallback_used("closing_classifier", "keywords", "llm_unavailable")
            return analysis

        self._method_counts["default"] += 1
        log_fallback_used("closing_classifier", "default", "no_keyword_match")
        return default_analysis(gate_type)

    __call__ = classify_closing_response

    def _ask_llm(self, user_text: str, gate_type: str, recent_context: str) -> Optional[ClosingAnalysis]:
        if self.llm is None:
            return None
        try:
            result = self.llm.generate_structured(
                build_closing_prompt(user_text, gate_type, recent_context),
                ClosingAnalysisResult,
            )
        except Exception as e:
            logger.error("Closing classifier error", error=str(e)[:100])
            return None
        # Битый ответ LLM уходит на следующий уровень, а не в default
        result = coerce(result, ClosingAnalysisResult)
        if result is None:
            return None
        analysis = validate_closing_analysis(result)
        logger.debug(
            "Closing response classified",
            gate_type=gate_type,
            response_type=analysis.response_type.value,
            objection_type=analysis.objection_type.value if analysis.objection_type else None,
        )
        return analysis

    def get_stats(self) -> Dict[str, int]:
        return dict(self._method_counts)
