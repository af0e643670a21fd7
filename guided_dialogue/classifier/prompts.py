"""Промпты для LLM-классификаторов."""
from typing import Dict, List, Optional

Message = Dict[str, str]


SIGNALS_SYSTEM = """You are a conversation analyzer. Analyze the CURRENT user message in the context of the conversation history.

Look for patterns across the conversation, not just the current message:
- Is their clarity improving or getting more confused?
- Is overwhelm building or settling down?
- Does the current message contradict something said earlier?
- Are they seeking validation or owning their insights?

Fields:
- emotional_markers: negative words in the CURRENT message ("overwhelmed", "exhausted", "frustrated", "stuck")
- positive_markers: breakthrough phrases ("oh!", "I see now", "that's exactly it")
- clarity_level: can they state their issue clearly now? vague = low, some clarity = medium, precise = high
- confidence_level: hesitant = low, curious = medium, convicted = high
- capacity_signals: "no time", "too busy", "burned out", "can't handle"
- contradiction_detected: current message contradicts earlier statements
- overwhelm_detected: any emotional flooding
- positive_emotion_detected: excitement, clarity, breakthrough emotion
- negative_overwhelm_detected: distress, drowning, can't cope
- validation_seeking: "right?", "does that make sense?", "am I wrong?"
- ownership_language: "that's exactly it", "I know", "definitely"
- insight_articulated: a realization in their own words

Return JSON only."""


STATE_INFERENCE_SYSTEM = """Extract the state of this coaching conversation by looking at PATTERNS across all messages.

Constraint categories:
- strategy: unclear WHAT to do (which offer, who to serve, what to say, which path)
- execution: needs systems or help (doing everything alone, can't delegate, no team)
- psychology: internal blocks (fear of judgment, imposter syndrome, self-doubt, burnout, avoidance)

If someone KNOWS what to do but does not do it because of fear or self-doubt, that is psychology.

Key distinction:
- "which offer should I build?" = strategy
- "I'm doing everything myself, need help" = execution
- "I know what to do but I'm afraid of being judged" = psychology
- "exhausted and burned out" = psychology

evidence: actual quotes from the user that support the hypothesis.
sub_dimension: offer_clarity, positioning, delegation, capacity, systems, internal_blocks or null.
summary: one sentence naming the constraint in plain language.

hypothesis_validated = true only when the user OWNS the insight ("Yes, exactly, the real issue is...").
A bare "yeah" without elaboration is not validation.
validation_needed = true when a hypothesis exists but the user has not confirmed it.
diagnosis_ready = true when the hypothesis is validated, the user can articulate it and no contradictions remain.

Return JSON only."""


CATEGORY_SYSTEM = """Map the constraint description to exactly ONE word: strategy, execution or psychology.

- strategy: unclear what to do, offer, audience, positioning, direction
- execution: needs systems, help, delegation, operations, capacity
- psychology: fear, self-doubt, burnout, permission, avoidance

Return JSON only."""


CLOSING_QUESTIONS = {
    "agreement_in_principle": (
        '"Does that land for you? Would you want to explore getting that sort of help?"',
        "whether they want to explore getting external help from someone who specializes in their issue",
    ),
    "agreement_to_offering": (
        '"Would you want me to arrange that for you?"',
        "whether they want us to arrange a free exploratory call with our specialists",
    ),
    "reflection": (
        "a reflective question about their situation",
        "whether the reflection resonates with them",
    ),
}


def format_history(history: Optional[List[Message]], limit: int, user_label: str = "USER") -> str:
    """Последние limit сообщений в виде 'ROLE: text'"""
    lines = []
    for message in (history or [])[-limit:]:
        role = user_label if message.get("role") == "user" else "ADVISOR"
        lines.append(f"{role}: {message.get('content', '')}")
    return "\n".join(lines)


def build_signals_prompt(user_text: str, history: Optional[List[Message]]) -> str:
    return f"""Current message: "{user_text}"

Conversation history (last 5 messages):
{format_history(history, 5) or "(none)"}

Analyze and return JSON."""


def build_state_inference_prompt(history: Optional[List[Message]], phase: str, hypothesis: Optional[str]) -> str:
    current = hypothesis or "none yet"
    return f"""Analyze this conversation:

{format_history(history, 10) or "(empty)"}

Current phase: {phase}
Current hypothesis: {current}

Extract the state as JSON."""


def build_category_prompt(raw_category: str) -> str:
    return f"""Constraint description: "{raw_category}"

Which category is it?"""


def build_closing_prompt(user_text: str, gate_type: str, recent_context: str) -> str:
    question, checking = CLOSING_QUESTIONS.get(gate_type, CLOSING_QUESTIONS["reflection"])
    return f"""You are analyzing a user's response during a coaching conversation's closing sequence.

CONTEXT (recent conversation):
{recent_context or "(none)"}

WE JUST ASKED THE USER: {question}
This question was checking: {checking}

USER'S RESPONSE:
"{user_text}"

Classify the response:
- clear_agreement: clearly yes ("Yes, that makes sense", "Absolutely")
- tentative_agreement: agreed with hedging ("I think so", "Yeah, I guess")
- hesitation: uncertain or asking questions ("I'm not sure", "What would that involve?")
- objection: pushed back or declined ("I don't think I need that", "Not right now")
- off_topic: does not address the question

For hesitation or objection also give objection_type:
doesnt_need_help, prefers_self_solve, concerns_about_offering, timing, needs_more_info.

Return JSON only."""
