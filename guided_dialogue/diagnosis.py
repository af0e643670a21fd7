"""
Diagnosis Readiness - готов ли диалог к выдаче диагноза.

Два равноправных пути:
    fast path - сработал Acceleration Detector и гипотеза существует
    standard  - все 4 critical критерия + минимум N из 5 supportive

Critical: есть гипотеза, гипотеза подтверждена, набран минимум ходов,
после подтверждения прошёл хотя бы один ход.
Supportive: высокая уверенность, высокая ясность, нет противоречия,
достаточная глубина фазы, нет перегрузки.

Здесь же лежат предикаты validate и deepen Decision Engine.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from guided_dialogue.acceleration import AccelerationResult
from guided_dialogue.config import OrchestratorConfig
from guided_dialogue.models import (
    ComplexityLevel,
    ConversationSignals,
    ConversationState,
    ReadinessLevel,
    StateInference,
)


@dataclass
class DiagnosisReadiness:
    ready: bool
    confidence: float
    path: str                      # "fast", "standard" или "none"
    critical: Dict[str, bool] = field(default_factory=dict)
    supportive: Dict[str, bool] = field(default_factory=dict)
    reason: str = ""

    @property
    def satisfied(self) -> List[str]:
        return [k for k, v in {**self.critical, **self.supportive}.items() if v]


class DiagnosisDetector:
    """Критерии готовности к диагнозу"""

    def __init__(self, config: OrchestratorConfig = None):
        self.config = config or OrchestratorConfig.default()

    def evaluate(
        self,
        state: ConversationState,
        signals: ConversationSignals,
        inference: StateInference,
        acceleration: Optional[AccelerationResult] = None,
    ) -> DiagnosisReadiness:
        cfg = self.config
        hypothesis = state.constraint_hypothesis

        if acceleration is not None and acceleration.accelerate and hypothesis.exists:
            return DiagnosisReadiness(
                ready=True,
                confidence=max(cfg.fast_path_min_confidence, hypothesis.confidence),
                path="fast",
                reason=acceleration.reason,
            )

        critical = {
            "has_hypothesis": hypothesis.exists,
            "hypothesis_validated": hypothesis.is_validated,
            "min_turns": state.turns_total >= cfg.diagnosis_min_turns,
            "turn_since_validation": state.turns_since_validation >= cfg.min_turns_since_validation,
        }
        clarity_high = (
            signals.clarity_level == ReadinessLevel.HIGH
            or state.readiness.clarity == ReadinessLevel.HIGH
        )
        supportive = {
            "high_confidence": hypothesis.confidence > cfg.diagnosis_high_confidence,
            "high_clarity": clarity_high,
            "no_contradiction": not signals.contradiction_detected,
            "phase_depth": state.turns_in_phase >= cfg.diagnosis_min_phase_depth,
            "no_overwhelm": not signals.overwhelm_detected,
        }

        critical_met = sum(critical.values())
        supportive_met = sum(supportive.values())
        ready = critical_met == len(critical) and supportive_met >= cfg.min_supportive_criteria
        confidence = critical_met / len(critical) * 0.7 + supportive_met / len(supportive) * 0.3

        return DiagnosisReadiness(
            ready=ready,
            confidence=round(confidence, 2),
            path="standard" if ready else "none",
            critical=critical,
            supportive=supportive,
            reason=f"critical {critical_met}/{len(critical)}, supportive {supportive_met}/{len(supportive)}",
        )

    @staticmethod
    def needs_validation(state: ConversationState, inference: StateInference) -> bool:
        hypothesis = state.constraint_hypothesis
        return hypothesis.exists and inference.validation_needed and not hypothesis.validated

    def should_deepen(self, state: ConversationState, signals: ConversationSignals) -> List[str]:
        """Причины для deepen (пустой список - не нужно)"""
        cfg = self.config
        reasons = []
        if (
            signals.response_length < cfg.short_response_chars
            and state.turns_in_phase < cfg.short_response_max_depth
        ):
            reasons.append("short_response")
        if signals.contradiction_detected:
            reasons.append("contradiction")
        if (
            state.complexity_level == ComplexityLevel.COMPLEX
            and state.turns_in_phase < cfg.complex_max_depth
        ):
            reasons.append("complex_shallow")
        return reasons
