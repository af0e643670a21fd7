"""
Детерминированные шаблоны ходов.

Используются, когда генерация дважды не прошла структурную проверку
на критичном closing-ходе, или когда генератор не вернул текст вовсе.
Шаблоны намеренно общие: их задача - сохранить структуру хода.
"""

from typing import Dict, Optional

from guided_dialogue.models import Action, ClosingSubPhase, ConstraintCategory
from guided_dialogue.response_contracts import GRACEFUL_EXIT


CATEGORY_HELP: Dict[ConstraintCategory, str] = {
    ConstraintCategory.STRATEGY: (
        "strategic clarity, helping you figure out exactly who you serve "
        "and what makes you different"
    ),
    ConstraintCategory.EXECUTION: (
        "operational systems, helping you build the processes and support "
        "so you're not the bottleneck"
    ),
    ConstraintCategory.PSYCHOLOGY: (
        "working through the internal patterns that keep showing up "
        "even when you know what to do"
    ),
}

CATEGORY_SUMMARY: Dict[ConstraintCategory, str] = {
    ConstraintCategory.STRATEGY: "You need clarity on direction: who you serve and what makes you different.",
    ConstraintCategory.EXECUTION: "You need systems and support so you're not the bottleneck.",
    ConstraintCategory.PSYCHOLOGY: "You're held back by internal patterns rather than by strategy or systems.",
}

DEFAULT_SUMMARY = "We identified the main constraint holding your business back."


def assert_and_align_template(category: Optional[ConstraintCategory]) -> str:
    description = CATEGORY_HELP.get(category, "this kind of focused support")
    return (
        "Based on everything we've talked through, what you really need is someone "
        f"who specializes in {description}. "
        "Does that land for you?"
    )


def offer_solution_template() -> str:
    return (
        "You could find someone on your own who does this kind of work. "
        "We also have specialists who focus on exactly this, and I can set up a free "
        "exploratory call with no obligation. "
        "Would you want me to arrange that for you?"
    )


def facilitate_template() -> str:
    return (
        "Perfect. The free session gives you a chance to talk this through with someone "
        "who sees this all the time. "
        "Your summary with everything we covered is ready, along with the link to book that call."
    )


def graceful_exit_template() -> str:
    return (
        "That makes complete sense, and there's no pressure at all. "
        "You have a much clearer picture of what's in the way now, and that clarity is yours to keep."
    )


# Для некритичных ходов, когда генератор не вернул ничего
GENERIC_TEMPLATES: Dict[str, str] = {
    Action.EXPLORE.value: "Can you tell me a bit more about what that looks like day to day?",
    Action.DEEPEN.value: "Can you give me a specific example of when that happened recently?",
    Action.VALIDATE.value: "Here's what I'm noticing so far. Does that feel accurate to you?",
    Action.DIAGNOSE.value: "Here's what I'm seeing as the core constraint. Does that resonate?",
    Action.CONTAIN.value: (
        "That sounds like a lot to carry right now. Let's slow down and focus on just one thing. "
        "What feels most pressing?"
    ),
    Action.CROSS_MAP.value: (
        "I wonder if something upstream is driving this. Can we look at that for a moment?"
    ),
    ClosingSubPhase.REFLECT_IMPLICATION.value: (
        "When we put this together, it shapes a lot of what you've described. Does that resonate?"
    ),
    ClosingSubPhase.REFLECT_STAKES.value: "So staying where you are has a real cost. Does that land?",
    ClosingSubPhase.NAME_CAPABILITY_GAP.value: (
        "What's missing is a specific capability rather than more effort. Does that make sense?"
    ),
}


def fallback_for(key: str, category: Optional[ConstraintCategory] = None) -> Optional[str]:
    """
    Шаблон по ключу контракта.

    Returns:
        Текст шаблона или None, если шаблона нет
    """
    if key == ClosingSubPhase.ASSERT_AND_ALIGN.value:
        return assert_and_align_template(category)
    if key == ClosingSubPhase.OFFER_SOLUTION.value:
        return offer_solution_template()
    if key == ClosingSubPhase.FACILITATE.value:
        return facilitate_template()
    if key == GRACEFUL_EXIT:
        return graceful_exit_template()
    return GENERIC_TEMPLATES.get(key)


def default_summary(category: Optional[ConstraintCategory]) -> str:
    return CATEGORY_SUMMARY.get(category, DEFAULT_SUMMARY)
