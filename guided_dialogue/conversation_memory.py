"""
Conversation Memory - накопленные темы, тренд ясности, "пройденная почва".

Память читает только Acceleration Detector. Обновляется оркестратором
один раз за ход через update_memory().

Использование:
    from guided_dialogue.conversation_memory import update_memory, detect_clarity_trend

    update_memory(state.conversation_memory, user_text, signals, has_hypothesis=True)
    trend = detect_clarity_trend(state.conversation_memory)
"""

import re
from enum import Enum
from typing import Dict, List, Optional, Pattern, Set, Tuple

from guided_dialogue.models import ConversationMemory, ConversationSignals, ReadinessLevel


class ClarityTrend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# Шаблоны тем: первая совпавшая даёт метку темы хода
TOPIC_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"what'?s (stopping|preventing|holding|in the way)|stuck|holding me back|blocked", re.I),
     "blockers"),
    (re.compile(r"\b(tried|attempted|used to|already did|gave up on)\b", re.I), "past attempts"),
    (re.compile(r"\b(i want|my goal|goals|hoping to|i'd love to|vision|in a year)\b", re.I), "goals"),
    (re.compile(r"\b(struggl\w*|challenge\w*|problem|hard part|difficult)\b", re.I), "challenges"),
    (re.compile(r"\b(my business|my company|my practice|revenue|customers|i run|i own)\b", re.I),
     "business context"),
    (re.compile(r"\b(pipeline|marketing|clients|leads)\b", re.I), "pipeline marketing"),
    (re.compile(r"\b(systems|processes|automation|delegat\w*)\b", re.I), "systems processes"),
    (re.compile(r"\b(time|capacity|bandwidth)\b", re.I), "time capacity"),
    (re.compile(r"\b(energy|motivation|burnout|burned out)\b", re.I), "energy motivation"),
    (re.compile(r"\b(clarity|direction|focus|niche|offer)\b", re.I), "clarity direction"),
]

DEFAULT_TOPIC = "general response"

KEY_AREAS = ["business context", "challenges", "blockers", "past attempts", "goals"]

_LEVEL_VALUES: Dict[str, int] = {"low": 0, "medium": 1, "high": 2}


def extract_topic(user_text: str) -> str:
    """Метка темы хода (regex, без внешних вызовов)"""
    for pattern, label in TOPIC_PATTERNS:
        if pattern.search(user_text or ""):
            return label
    return DEFAULT_TOPIC


def significant_words(topic: str) -> Set[str]:
    return {w for w in topic.lower().split() if len(w) > 3}


def topics_similar(first: str, second: str) -> bool:
    """Темы похожи, если делят хотя бы одно значимое слово (длиннее 3 символов)"""
    words_a = significant_words(first)
    words_b = significant_words(second)
    if not words_a or not words_b:
        return False
    return bool(words_a & words_b)


def count_topic_groups(topics: List[str]) -> Dict[str, int]:
    """Сгруппировать темы по пересечению слов. Ключ - первая тема группы."""
    groups: Dict[str, int] = {}
    for topic in topics:
        normalized = topic.lower()
        for key in groups:
            if topics_similar(key, normalized):
                groups[key] += 1
                break
        else:
            groups[normalized] = 1
    return groups


def detect_topic_repetition(topics: List[str], threshold: int = 3) -> bool:
    if len(topics) < threshold:
        return False
    return any(count >= threshold for count in count_topic_groups(topics).values())


def detect_clarity_trend(memory: ConversationMemory) -> ClarityTrend:
    """
    Тренд ясности по последним 4 значениям.

    Меньше 3 значений - stable. increasing: минимум 2 роста и ни одного
    падения; decreasing - симметрично.
    """
    history = memory.clarity_history
    if len(history) < 3:
        return ClarityTrend.STABLE

    values = [_LEVEL_VALUES.get(level, 1) for level in history[-4:]]
    increases = sum(1 for prev, cur in zip(values, values[1:]) if cur > prev)
    decreases = sum(1 for prev, cur in zip(values, values[1:]) if cur < prev)

    if increases >= 2 and decreases == 0:
        return ClarityTrend.INCREASING
    if decreases >= 2 and increases == 0:
        return ClarityTrend.DECREASING
    return ClarityTrend.STABLE


def calculate_ground_covered(memory: ConversationMemory, has_hypothesis: bool) -> float:
    """
    Оценка пройденной почвы 0..1.

    темы (до 0.5) + гипотеза (0.2) + ключевые области (до 0.3)
    + 0.1 если прошлая оценка уже выше 0.5
    """
    topic_score = min(len(memory.topics_explored) / 8, 0.5)
    hypothesis_bonus = 0.2 if has_hypothesis else 0.0

    topics_lower = [t.lower() for t in memory.topics_explored]
    covered = sum(
        1 for area in KEY_AREAS
        if any(area in topic or topic in area for topic in topics_lower)
    )
    area_score = covered / len(KEY_AREAS) * 0.3

    carry = 0.1 if memory.ground_covered_score > 0.5 else 0.0

    return round(min(topic_score + hypothesis_bonus + area_score + carry, 1.0), 2)


def update_memory(
    memory: ConversationMemory,
    user_text: str,
    signals: ConversationSignals,
    has_hypothesis: bool,
    insight: Optional[str] = None,
) -> str:
    """
    Обновить память после хода пользователя (мутирует memory).

    Args:
        memory: Память диалога
        user_text: Сообщение пользователя
        signals: Сигналы хода
        has_hypothesis: Есть ли гипотеза после этого хода
        insight: Сформулированный пользователем инсайт (если был)

    Returns:
        Метка темы хода
    """
    topic = extract_topic(user_text)
    memory.topics_explored = (memory.topics_explored + [topic])[-ConversationMemory.MAX_TOPICS:]

    level = signals.clarity_level
    level_value = level.value if isinstance(level, ReadinessLevel) else str(level)
    memory.clarity_history = (
        memory.clarity_history + [level_value]
    )[-ConversationMemory.MAX_CLARITY_HISTORY:]

    if signals.insight_articulated:
        memory.insights_articulated = (
            memory.insights_articulated + [insight or user_text[:120]]
        )[-ConversationMemory.MAX_INSIGHTS:]
        if has_hypothesis and signals.ownership_language:
            memory.hypothesis_co_created = True

    memory.ground_covered_score = calculate_ground_covered(memory, has_hypothesis)
    return topic
