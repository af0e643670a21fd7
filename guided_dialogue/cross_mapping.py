"""
Cross-Mapping Resolver - не является ли видимая категория симптомом.

Фиксированный 3-цикл upstream-кандидатов:
    execution  -> strategy   (хаос в тактиках из-за неясного позиционирования)
    strategy   -> psychology (паралич решений из-за страха или выгорания)
    psychology -> execution  (выгорание из-за неустойчивых систем)

Каждое направление проверяется своим предикатом по накопленному тексту
evidence и тегу sub_dimension. Применяется не более одного раза за
диалог и только после минимальной глубины фазы.

Использование:
    from guided_dialogue.cross_mapping import CrossMappingResolver

    resolver = CrossMappingResolver(config)
    if resolver.should_attempt(state):
        result = resolver.resolve(category, evidence_text, sub_dimension, signals)
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.models import (
    ConstraintCategory,
    ConversationSignals,
    ConversationState,
    CrossMapResult,
)


SCATTERED_RE = re.compile(
    r"scattered|trying everything|inconsistent|all over the place|don't know what to focus on",
    re.I,
)
UNCLEAR_AUDIENCE_RE = re.compile(r"not clear|don't know who|can't name who|who (this|it) is for", re.I)
PARALYSIS_RE = re.compile(
    r"paralyzed|can't decide|overthinking|analysis paralysis|stuck in my head|afraid|scared|fear",
    re.I,
)
SYSTEMS_OVERLOAD_RE = re.compile(
    r"doing everything myself|no time|too much on my plate|working all the time|can't keep up",
    re.I,
)

STRATEGY_SUB_DIMENSIONS = {"offer_clarity", "positioning"}
EXECUTION_SUB_DIMENSIONS = {"delegation", "systems", "capacity"}

# Уверенность, когда перенаправление не требуется
NO_REDIRECT_CONFIDENCE = 0.6


@dataclass(frozen=True)
class CrossMapRule:
    """Одно направление 3-цикла"""
    apparent: ConstraintCategory
    upstream: ConstraintCategory
    confidence: float
    redirect_reasoning: str
    keep_reasoning: str
    predicate: Callable[[str, Optional[str], ConversationSignals], bool]


def _execution_from_strategy(evidence: str, sub_dimension: Optional[str], signals: ConversationSignals) -> bool:
    suggests_strategy = sub_dimension in STRATEGY_SUB_DIMENSIONS or bool(UNCLEAR_AUDIENCE_RE.search(evidence))
    return bool(SCATTERED_RE.search(evidence)) and suggests_strategy


def _strategy_from_psychology(evidence: str, sub_dimension: Optional[str], signals: ConversationSignals) -> bool:
    psychology_markers = (
        signals.negative_marker_count > 2
        or signals.overwhelm_detected
        or signals.capacity_signal_count > 0
    )
    return psychology_markers and bool(PARALYSIS_RE.search(evidence))


def _psychology_from_execution(evidence: str, sub_dimension: Optional[str], signals: ConversationSignals) -> bool:
    return (
        signals.capacity_signal_count > 1
        and bool(SYSTEMS_OVERLOAD_RE.search(evidence))
        and sub_dimension in EXECUTION_SUB_DIMENSIONS
    )


DEFAULT_RULES: Dict[ConstraintCategory, CrossMapRule] = {
    ConstraintCategory.EXECUTION: CrossMapRule(
        apparent=ConstraintCategory.EXECUTION,
        upstream=ConstraintCategory.STRATEGY,
        confidence=0.8,
        redirect_reasoning="Scattered execution stems from unclear positioning",
        keep_reasoning="Execution issues look like genuine systems or capacity problems",
        predicate=_execution_from_strategy,
    ),
    ConstraintCategory.STRATEGY: CrossMapRule(
        apparent=ConstraintCategory.STRATEGY,
        upstream=ConstraintCategory.PSYCHOLOGY,
        confidence=0.75,
        redirect_reasoning="Strategy paralysis stems from fear or burnout",
        keep_reasoning="Strategy issues look like genuine positioning problems",
        predicate=_strategy_from_psychology,
    ),
    ConstraintCategory.PSYCHOLOGY: CrossMapRule(
        apparent=ConstraintCategory.PSYCHOLOGY,
        upstream=ConstraintCategory.EXECUTION,
        confidence=0.7,
        redirect_reasoning="Burnout is driven by unsustainable systems",
        keep_reasoning="Psychology issues look like genuine internal blocks",
        predicate=_psychology_from_execution,
    ),
}


class CrossMappingResolver:
    """Проверка upstream-категории по таблице правил"""

    def __init__(
        self,
        config: OrchestratorConfig = None,
        rules: Optional[Dict[ConstraintCategory, CrossMapRule]] = None,
    ):
        self.config = config or OrchestratorConfig.default()
        self.rules = rules if rules is not None else DEFAULT_RULES

    def should_attempt(self, state: ConversationState) -> bool:
        return (
            state.turns_in_phase >= self.config.cross_map_min_turns_in_phase
            and not state.cross_map_applied
        )

    def resolve(
        self,
        apparent: Optional[ConstraintCategory],
        evidence_text: str,
        sub_dimension: Optional[str],
        signals: ConversationSignals,
    ) -> CrossMapResult:
        rule = self.rules.get(apparent) if apparent else None
        if rule is None:
            return CrossMapResult(False, None, "No cross-mapping needed", 0.0)

        if rule.predicate(evidence_text.lower(), sub_dimension, signals):
            return CrossMapResult(True, rule.upstream, rule.redirect_reasoning, rule.confidence)

        return CrossMapResult(False, None, rule.keep_reasoning, NO_REDIRECT_CONFIDENCE)
