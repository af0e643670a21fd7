"""
Структурные контракты ответов.

Контракт не проверяет смысл, только форму: должен ли текст кончаться
вопросом, сколько в нём предложений и какие группы фраз запрещены.
Ключ контракта - action основного потока, под-состояние closing или
graceful_exit.

Добавить новое под-состояние = добавить строку в таблицу.
"""

import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from guided_dialogue.models import Action, ClosingSubPhase, OrchestratorDecision

GRACEFUL_EXIT = "graceful_exit"


FORBIDDEN_PATTERNS: Dict[str, List[Pattern]] = {
    # Прощание раньше последнего хода
    "goodbye": [re.compile(p, re.I) for p in (
        r"good luck", r"take care", r"best of luck", r"you'?ve got this", r"you got this",
        r"i hope you find", r"best wishes", r"all the best", r"farewell",
    )],
    # Призыв к действию вне финального хода
    "cta": [re.compile(p, re.I) for p in (
        r"book (a|your) (call|time|session)", r"schedule a (call|time|session)",
        r"click (below|here|the button)", r"calendly", r"i'?ll send", r"i'?m sending",
        r"sends?.{0,20}to your email",
    )],
    # Конкретное предложение раньше Gate 1
    "offering": [re.compile(p, re.I) for p in (
        r"our (team|staff|specialists?|experts?|people)", r"someone (from |on )?(our|the) team",
        r"exploratory call", r"free (call|session)", r"my (coaching )?program",
        r"work with me", r"i can help you (work through|with)", r"i specialize in",
    )],
    # Содержимое финального хода (резюме, запись)
    "facilitation": [re.compile(p, re.I) for p in (
        r"your (breakthrough )?summary is ready", r"i'?ve captured everything",
        r"i'?ve put together", r"take the next step", r"see your personalized",
    )],
}

# Проверяется всегда
PLACEHOLDER_PATTERNS: List[Pattern] = [re.compile(p, re.I) for p in (
    r"\[[^\]]*(summary|click|book|next steps|button|cta|call to action)[^\]]*\]",
    r"\[(your|see your|view your) ",
)]

_MAIN_FORBIDDEN = ("goodbye", "cta", "offering")
_PRE_GATE_FORBIDDEN = ("goodbye", "cta", "offering", "facilitation")


@dataclass(frozen=True)
class ResponseContract:
    """
    Attributes:
        question_required: Текст обязан кончаться '?'
        max_sentences: Максимум предложений
        forbidden: Группы запрещённых фраз (ключи FORBIDDEN_PATTERNS)
        critical: Есть детерминированный шаблон, несоответствие не принимается
        sentence_tolerance: Сколько предложений сверх max допускается
        purpose: Назначение хода (для корректирующей директивы)
    """
    question_required: bool
    max_sentences: int
    forbidden: Tuple[str, ...] = ()
    critical: bool = False
    sentence_tolerance: int = 0
    purpose: str = ""


RESPONSE_CONTRACTS: Dict[str, ResponseContract] = {
    Action.EXPLORE.value: ResponseContract(
        True, 5, _MAIN_FORBIDDEN, sentence_tolerance=2,
        purpose="Ask one insightful question based on what they shared"),
    Action.DEEPEN.value: ResponseContract(
        True, 4, _MAIN_FORBIDDEN, sentence_tolerance=2,
        purpose="Ask for more specificity or examples"),
    Action.VALIDATE.value: ResponseContract(
        True, 6, _MAIN_FORBIDDEN, sentence_tolerance=2,
        purpose="Present the hypothesis and ask if it resonates"),
    Action.DIAGNOSE.value: ResponseContract(
        True, 6, _MAIN_FORBIDDEN, sentence_tolerance=2,
        purpose="Share the diagnosis clearly and ask if it lands"),
    Action.CONTAIN.value: ResponseContract(
        True, 5, _MAIN_FORBIDDEN, sentence_tolerance=2,
        purpose="Create safety and simplify focus"),
    Action.CROSS_MAP.value: ResponseContract(
        True, 5, _MAIN_FORBIDDEN, sentence_tolerance=2,
        purpose="Redirect to the upstream constraint"),

    ClosingSubPhase.REFLECT_IMPLICATION.value: ResponseContract(
        True, 6, _PRE_GATE_FORBIDDEN,
        purpose="Reflect the diagnosis with its structural implication"),
    ClosingSubPhase.REFLECT_STAKES.value: ResponseContract(
        True, 4, _PRE_GATE_FORBIDDEN,
        purpose="Mirror back the stakes as a statement, then a brief check-in"),
    ClosingSubPhase.NAME_CAPABILITY_GAP.value: ResponseContract(
        True, 6, _PRE_GATE_FORBIDDEN,
        purpose="Name what is missing mechanically"),
    ClosingSubPhase.ASSERT_AND_ALIGN.value: ResponseContract(
        True, 5, _PRE_GATE_FORBIDDEN, critical=True,
        purpose="Assert what kind of help would be useful without naming a specific offering"),
    ClosingSubPhase.OFFER_SOLUTION.value: ResponseContract(
        True, 6, ("goodbye", "cta", "facilitation"), critical=True,
        purpose="Name the specific offering and ask if they want it"),
    ClosingSubPhase.FACILITATE.value: ResponseContract(
        False, 6, (), critical=True,
        purpose="Lay out the path forward as a continuation"),
    GRACEFUL_EXIT: ResponseContract(
        False, 5, ("cta", "offering"), critical=True,
        purpose="Close warmly without pushing the offering"),
}


def contract_key(decision: OrchestratorDecision) -> str:
    """Ключ контракта для решения"""
    if decision.action == Action.CLOSE:
        if "closing_graceful_exit" in decision.overlays:
            return GRACEFUL_EXIT
        return decision.focus_area or ClosingSubPhase.REFLECT_IMPLICATION.value
    return decision.action.value


def contract_for(decision: OrchestratorDecision) -> Optional[ResponseContract]:
    return RESPONSE_CONTRACTS.get(contract_key(decision))
