"""
Decision Engine - приоритетная цепочка правил.

По (state, signals, inference) возвращает ровно одно OrchestratorDecision.
Правила - упорядоченный список DecisionRule, передаётся в конструктор.
Первое правило, чей предикат истинен, выигрывает; если не сработало
ни одно, возвращается explore.

Порядок по умолчанию:
    1. contain   - перегрузка при истёкшем cooldown
    2. diagnose  - fast path (acceleration) или standard path
    3. validate  - гипотеза есть, нужна проверка, ещё не подтверждена
    4. cross_map - глубина фазы, ещё не применялся, resolver за redirect
    5. deepen    - короткий ответ, противоречие, сложность без глубины
    6. explore   - по умолчанию

Побочные эффекты выигравшего правила:
    contain   -> turns_since_containment = 0
    cross_map -> cross_map_applied = True
    validate  -> turns_since_validation = 0

Использование:
    from guided_dialogue.decision_engine import DecisionEngine

    engine = DecisionEngine(config=config)
    decision = engine.decide(state, signals, inference)
"""

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from guided_dialogue.acceleration import AccelerationDetector, AccelerationResult
from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.containment import ContainmentManager, ContainmentStrategy
from guided_dialogue.cross_mapping import CrossMappingResolver
from guided_dialogue.diagnosis import DiagnosisDetector, DiagnosisReadiness
from guided_dialogue.exceptions import RuleRegistrationError
from guided_dialogue.feature_flags import flags
from guided_dialogue.logger import log_decision
from guided_dialogue.models import (
    Action,
    ComplexityLevel,
    ConversationSignals,
    ConversationState,
    CrossMapResult,
    OrchestratorDecision,
    StateInference,
)
from guided_dialogue.overlays import OverlayRegistry


# =============================================================================
# Контекст и правила
# =============================================================================

@dataclass
class DecisionContext:
    """Всё, что нужно предикатам: входы хода + посчитанные эвристики"""
    state: ConversationState
    signals: ConversationSignals
    inference: StateInference
    overlays: OverlayRegistry
    acceleration: AccelerationResult
    diagnosis: DiagnosisReadiness
    cooldown_elapsed: bool
    containment_triggers: List[str]
    containment_strategy: ContainmentStrategy
    needs_containment: bool
    needs_validation: bool
    cross_map: Optional[CrossMapResult]
    deepen_reasons: List[str] = field(default_factory=list)


Predicate = Callable[[DecisionContext], bool]
Builder = Callable[[DecisionContext], OrchestratorDecision]
Effect = Callable[[ConversationState], None]


@dataclass(frozen=True)
class DecisionRule:
    name: str
    predicate: Predicate
    build: Builder
    effect: Optional[Effect] = None


def _reset_containment(state: ConversationState) -> None:
    state.turns_since_containment = 0


def _mark_cross_mapped(state: ConversationState) -> None:
    state.cross_map_applied = True


def _reset_validation_clock(state: ConversationState) -> None:
    state.turns_since_validation = 0


# --- contain ---------------------------------------------------------------

def _build_contain(ctx: DecisionContext) -> OrchestratorDecision:
    strategy = ctx.containment_strategy
    return OrchestratorDecision(
        action=Action.CONTAIN,
        reasoning=f"Emotional overwhelm ({', '.join(ctx.containment_triggers)}), strategy {strategy.value}",
        overlays=ctx.overlays.tokens_for(Action.CONTAIN, f"containment_{strategy.value}"),
        confidence=0.9,
        trace=list(ctx.containment_triggers),
    )


# --- diagnose --------------------------------------------------------------

def _build_diagnose(ctx: DecisionContext) -> OrchestratorDecision:
    diagnosis = ctx.diagnosis
    modifiers = ["acceleration"] if diagnosis.path == "fast" else []
    trace = ctx.acceleration.satisfied if diagnosis.path == "fast" else diagnosis.satisfied
    category = ctx.state.constraint_hypothesis.category
    return OrchestratorDecision(
        action=Action.DIAGNOSE,
        reasoning=f"Diagnosis ready via {diagnosis.path} path: {diagnosis.reason}",
        overlays=ctx.overlays.tokens_for(Action.DIAGNOSE, *modifiers),
        confidence=diagnosis.confidence,
        focus_area=category.value if category else None,
        trace=list(trace),
    )


# --- validate --------------------------------------------------------------

def _build_validate(ctx: DecisionContext) -> OrchestratorDecision:
    category = ctx.state.constraint_hypothesis.category
    return OrchestratorDecision(
        action=Action.VALIDATE,
        reasoning=f"Hypothesis {category.value} needs validation",
        overlays=ctx.overlays.tokens_for(Action.VALIDATE),
        confidence=0.8,
        focus_area=category.value,
        trace=["has_hypothesis", "validation_needed", "not_validated"],
    )


# --- cross_map -------------------------------------------------------------

def _wants_cross_map(ctx: DecisionContext) -> bool:
    return (
        ctx.cross_map is not None
        and ctx.cross_map.should_redirect
        and ctx.state.constraint_hypothesis.exists
    )


def _build_cross_map(ctx: DecisionContext) -> OrchestratorDecision:
    result = ctx.cross_map
    apparent = ctx.state.constraint_hypothesis.category
    return OrchestratorDecision(
        action=Action.CROSS_MAP,
        reasoning=result.reasoning,
        overlays=ctx.overlays.tokens_for(Action.CROSS_MAP),
        confidence=result.confidence,
        redirect_to=result.upstream_category,
        focus_area=f"{apparent.value}_from_{result.upstream_category.value}",
        trace=[f"{apparent.value}->{result.upstream_category.value}"],
    )


# --- deepen ----------------------------------------------------------------

def _build_deepen(ctx: DecisionContext) -> OrchestratorDecision:
    return OrchestratorDecision(
        action=Action.DEEPEN,
        reasoning=f"Need more depth: {', '.join(ctx.deepen_reasons)}",
        overlays=ctx.overlays.tokens_for(Action.DEEPEN),
        confidence=0.7,
        focus_area=ctx.inference.sub_dimension,
        trace=list(ctx.deepen_reasons),
    )


# --- explore ---------------------------------------------------------------

def _build_explore(ctx: DecisionContext) -> OrchestratorDecision:
    modifiers = []
    if ctx.state.complexity_level == ComplexityLevel.COMPLEX:
        modifiers.append("depth_inquiry")
    hypothesis = ctx.state.constraint_hypothesis
    if hypothesis.exists and hypothesis.confidence > 0.5:
        modifiers.append("hypothesis_forming")
    return OrchestratorDecision(
        action=Action.EXPLORE,
        reasoning="Continue exploration",
        overlays=ctx.overlays.tokens_for(Action.EXPLORE, *modifiers),
        confidence=0.6,
        trace=modifiers,
    )


EXPLORE_RULE = DecisionRule("explore", lambda ctx: True, _build_explore)


def default_rules() -> List[DecisionRule]:
    """Стандартная цепочка (новый список на каждый вызов)"""
    return [
        DecisionRule("contain", lambda ctx: ctx.needs_containment, _build_contain, _reset_containment),
        DecisionRule("diagnose", lambda ctx: ctx.diagnosis.ready, _build_diagnose),
        DecisionRule("validate", lambda ctx: ctx.needs_validation, _build_validate, _reset_validation_clock),
        DecisionRule("cross_map", _wants_cross_map, _build_cross_map, _mark_cross_mapped),
        DecisionRule("deepen", lambda ctx: bool(ctx.deepen_reasons), _build_deepen),
        EXPLORE_RULE,
    ]


# =============================================================================
# Engine
# =============================================================================

class DecisionEngine:
    """
    Приоритетная цепочка правил.

    Все эвристики считаются заранее (они чистые и дешёвые), затем
    правила проверяются сверху вниз.
    """

    def __init__(
        self,
        config: OrchestratorConfig = None,
        rules: Optional[List[DecisionRule]] = None,
        overlays: Optional[OverlayRegistry] = None,
        default_rule: DecisionRule = EXPLORE_RULE,
    ):
        self.config = config or OrchestratorConfig.default()
        self.rules = list(rules) if rules is not None else default_rules()
        self.overlays = overlays or OverlayRegistry.default()
        self.default_rule = default_rule

        self.containment = ContainmentManager(self.config)
        self.acceleration = AccelerationDetector(self.config)
        self.diagnosis = DiagnosisDetector(self.config)
        self.cross_mapping = CrossMappingResolver(self.config)

        self._validate_rules()

    def _validate_rules(self) -> None:
        names = [rule.name for rule in self.rules]
        duplicates = {name for name in names if names.count(name) > 1}
        if duplicates:
            raise RuleRegistrationError(f"Duplicate decision rules: {sorted(duplicates)}")

    def build_context(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> DecisionContext:
        acceleration = self.acceleration.evaluate(state, signals, inference)
        diagnosis = self.diagnosis.evaluate(
            state,
            signals,
            inference,
            acceleration if flags.acceleration_fast_path else None,
        )

        cross_map = None
        if flags.cross_mapping and self.cross_mapping.should_attempt(state):
            hypothesis = state.constraint_hypothesis
            evidence = " ".join(list(hypothesis.evidence) + list(inference.evidence))
            cross_map = self.cross_mapping.resolve(
                hypothesis.category,
                evidence,
                inference.sub_dimension or hypothesis.sub_dimension,
                signals,
            )

        return DecisionContext(
            state=state,
            signals=signals,
            inference=inference,
            overlays=self.overlays,
            acceleration=acceleration,
            diagnosis=diagnosis,
            cooldown_elapsed=self.containment.cooldown_elapsed(state),
            containment_triggers=self.containment.triggers(state, signals),
            containment_strategy=self.containment.select_strategy(signals),
            needs_containment=self.containment.needs_containment(state, signals),
            needs_validation=self.diagnosis.needs_validation(state, inference),
            cross_map=cross_map,
            deepen_reasons=self.diagnosis.should_deepen(state, signals),
        )

    def decide(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
    ) -> OrchestratorDecision:
        """
        Выбрать действие на ход (мутирует state побочными эффектами правила).

        Args:
            state: Состояние диалога (гипотеза уже обновлена на этот ход)
            signals: Сигналы хода
            inference: Гипотеза хода после Category Mapper

        Returns:
            OrchestratorDecision
        """
        ctx = self.build_context(state, signals, inference)

        winner = self.default_rule
        for rule in self.rules:
            if rule.predicate(ctx):
                winner = rule
                break

        decision = winner.build(ctx)
        decision.rule = winner.name
        if winner.effect is not None:
            winner.effect(state)

        log_decision(decision.action.value, winner.name, decision.confidence, decision.trace)
        return decision
