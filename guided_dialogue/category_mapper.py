"""
Category Mapper - каскад приведения свободного текста к ConstraintCategory.

Классификатор гипотез возвращает категорию свободным текстом
("unclear positioning", "Execution", "burnout"...). Строка живёт только
здесь: наружу выходит ConstraintCategory или None.

Каскад (каждый уровень дешевле предыдущего и вызывается только при
неудаче предыдущего):
    1. exact  - точное совпадение без учёта регистра, без внешних вызовов
    2. delegate - внешний классификатор, обязанный вернуть один токен
    3. keyword - таблица ключевых фраз
    4. default - документированная категория по умолчанию

Использование:
    from guided_dialogue.category_mapper import CategoryMapper

    mapper = CategoryMapper(delegate=CategoryDelegate())
    result = mapper.map("I don't know who to serve")
    result.category  # ConstraintCategory.STRATEGY
    result.tier      # MappingTier.KEYWORD
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from guided_dialogue.feature_flags import flags
from guided_dialogue.logger import log_fallback_used, logger
from guided_dialogue.models import ConstraintCategory
from guided_dialogue.schema_validator import validate_constraint_category


class MappingTier(str, Enum):
    NONE = "none"          # На входе нет категории
    EXACT = "exact"
    DELEGATE = "delegate"
    KEYWORD = "keyword"
    DEFAULT = "default"


@dataclass(frozen=True)
class MappingResult:
    category: Optional[ConstraintCategory]
    tier: MappingTier


# Delegate принимает сырую строку и возвращает что угодно (строку,
# CategoryTokenResult, None). Результат всё равно проверяется.
Delegate = Callable[[str], Any]


class CategoryMapper:
    """
    3-уровневый каскад + hard default.

    Порядок проверки ключевых фраз фиксирован: strategy, execution,
    psychology. Первое совпадение выигрывает.
    """

    KEYWORDS: List[Tuple[ConstraintCategory, Tuple[str, ...]]] = [
        (ConstraintCategory.STRATEGY, (
            "unclear", "undefined", "don't know what", "which offer", "which path",
            "positioning", "who to serve", "niche", "messaging", "clarity",
            "audience", "market", "offer", "service offering", "direction",
        )),
        (ConstraintCategory.EXECUTION, (
            "doing everything", "bottleneck", "no team", "can't delegate",
            "no systems", "falling through", "overwhelmed with tasks", "need help",
            "can't scale", "too much on my plate", "operations", "process",
            "capacity", "delegation", "systems",
        )),
        (ConstraintCategory.PSYCHOLOGY, (
            "burnout", "depleted", "exhausted", "can't sustain", "boundary",
            "over-giving", "drained", "tired", "overwhelmed", "too much", "fear",
            "afraid", "imposter", "self-doubt", "who am i", "permission", "judged",
            "judgment", "scared", "anxious", "avoidance", "avoiding", "mindset",
            "confidence",
        )),
    ]

    def __init__(
        self,
        delegate: Optional[Delegate] = None,
        default_category: ConstraintCategory = ConstraintCategory.STRATEGY,
    ):
        """
        Args:
            delegate: Tier 2 классификатор (None - уровень пропускается)
            default_category: Hard default, если ничего не совпало
        """
        self.delegate = delegate
        self.default_category = default_category
        self._tier_counts: Dict[str, int] = {tier.value: 0 for tier in MappingTier}

    def map(self, raw_category: Any) -> MappingResult:
        """
        Привести сырую категорию к перечислению.

        Args:
            raw_category: Свободный текст от классификатора (или None)

        Returns:
            MappingResult; category равна None только если на входе
            не было категории
        """
        if raw_category is None or (isinstance(raw_category, str) and not raw_category.strip()):
            return self._result(None, MappingTier.NONE)

        if isinstance(raw_category, ConstraintCategory):
            return self._result(raw_category, MappingTier.EXACT)

        text = str(raw_category).strip()

        # Tier 1
        exact = validate_constraint_category(text)
        if exact is not None:
            return self._result(exact, MappingTier.EXACT)

        # Tier 2
        delegated = self._ask_delegate(text)
        if delegated is not None:
            return self._result(delegated, MappingTier.DELEGATE)

        # Tier 3
        keyword = self.match_keywords(text)
        if keyword is not None:
            log_fallback_used("category_mapper", MappingTier.KEYWORD.value, "delegate_unavailable_or_invalid")
            return self._result(keyword, MappingTier.KEYWORD)

        # Tier 4
        logger.warning(
            "Category unmapped, using default",
            raw=text[:60],
            default=self.default_category.value,
        )
        return self._result(self.default_category, MappingTier.DEFAULT)

    def map_category(self, raw_category: Any) -> Optional[ConstraintCategory]:
        return self.map(raw_category).category

    def _ask_delegate(self, text: str) -> Optional[ConstraintCategory]:
        if self.delegate is None or not flags.category_delegate:
            return None
        try:
            answer = self.delegate(text)
        except Exception as e:
            logger.warning("Category delegate failed", error=str(e)[:100])
            return None

        token = getattr(answer, "category", answer)
        category = validate_constraint_category(token)
        if category is None:
            logger.warning("Category delegate returned invalid token", token=str(token)[:40])
        return category

    def match_keywords(self, text: str) -> Optional[ConstraintCategory]:
        lowered = text.lower()
        for category, keywords in self.KEYWORDS:
            if any(keyword in lowered for keyword in keywords):
                return category
        return None

    def _result(self, category: Optional[ConstraintCategory], tier: MappingTier) -> MappingResult:
        self._tier_counts[tier.value] += 1
        if tier != MappingTier.NONE:
            logger.metric(
                "category_mapping_tier",
                tier.value,
                category=category.value if category else None,
            )
        return MappingResult(category=category, tier=tier)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._tier_counts)
