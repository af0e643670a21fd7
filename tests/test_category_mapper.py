"""
Тесты каскада Category Mapper.
"""

from unittest.mock import MagicMock

import pytest

from guided_dialogue.category_mapper import CategoryMapper, MappingTier
from guided_dialogue.classifier.schemas import CategoryTokenResult
from guided_dialogue.feature_flags import flags
from guided_dialogue.models import ConstraintCategory


class TestExactTier:
    """Tier 1: точное совпадение без внешних вызовов"""

    @pytest.mark.parametrize("raw,expected", [
        ("strategy", ConstraintCategory.STRATEGY),
        ("Execution", ConstraintCategory.EXECUTION),
        ("  PSYCHOLOGY ", ConstraintCategory.PSYCHOLOGY),
    ])
    def test_exact_match_case_insensitive(self, raw, expected):
        delegate = MagicMock()
        mapper = CategoryMapper(delegate=delegate)

        result = mapper.map(raw)

        assert result.category == expected
        assert result.tier == MappingTier.EXACT
        delegate.assert_not_called()

    def test_enum_passes_through(self):
        delegate = MagicMock()
        result = CategoryMapper(delegate=delegate).map(ConstraintCategory.EXECUTION)
        assert result.category == ConstraintCategory.EXECUTION
        delegate.assert_not_called()

    def test_mapping_is_idempotent(self):
        """Повторный маппинг результата даёт тот же результат"""
        mapper = CategoryMapper()
        first = mapper.map_category("I don't know who to serve")
        assert mapper.map_category(first.value) == first


class TestEmptyInput:

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_no_category_means_no_hypothesis(self, raw):
        delegate = MagicMock()
        result = CategoryMapper(delegate=delegate).map(raw)
        assert result.category is None
        assert result.tier == MappingTier.NONE
        delegate.assert_not_called()


class TestDelegateTier:
    """Tier 2: delegate обязан вернуть один валидный токен"""

    def test_delegate_answer_used(self):
        delegate = MagicMock(return_value="psychology")
        result = CategoryMapper(delegate=delegate).map("fear of being seen")
        assert result.category == ConstraintCategory.PSYCHOLOGY
        assert result.tier == MappingTier.DELEGATE
        delegate.assert_called_once_with("fear of being seen")

    def test_delegate_structured_answer_used(self):
        delegate = MagicMock(return_value=CategoryTokenResult(category="execution"))
        result = CategoryMapper(delegate=delegate).map("bottlenecked founder")
        assert result.category == ConstraintCategory.EXECUTION
        assert result.tier == MappingTier.DELEGATE

    def test_invalid_delegate_token_falls_to_keywords(self):
        delegate = MagicMock(return_value="marketing")
        result = CategoryMapper(delegate=delegate).map("unclear positioning")
        assert result.category == ConstraintCategory.STRATEGY
        assert result.tier == MappingTier.KEYWORD

    def test_delegate_exception_never_raises(self):
        delegate = MagicMock(side_effect=TimeoutError("slow"))
        result = CategoryMapper(delegate=delegate).map("burnout")
        assert result.category == ConstraintCategory.PSYCHOLOGY
        assert result.tier == MappingTier.KEYWORD

    def test_delegate_disabled_by_flag(self):
        flags.set_override("category_delegate", False)
        delegate = MagicMock(return_value="execution")
        result = CategoryMapper(delegate=delegate).map("no systems at all")
        delegate.assert_not_called()
        assert result.tier == MappingTier.KEYWORD


class TestKeywordTier:
    """Tier 3: фиксированный порядок strategy -> execution -> psychology"""

    @pytest.mark.parametrize("raw,expected", [
        ("unclear positioning", ConstraintCategory.STRATEGY),
        ("I am the bottleneck, no team", ConstraintCategory.EXECUTION),
        ("burnout and exhaustion", ConstraintCategory.PSYCHOLOGY),
        ("imposter feelings", ConstraintCategory.PSYCHOLOGY),
    ])
    def test_keywords(self, raw, expected):
        result = CategoryMapper().map(raw)
        assert result.category == expected
        assert result.tier == MappingTier.KEYWORD

    def test_strategy_checked_first(self):
        """Совпадение нескольких категорий: выигрывает strategy"""
        result = CategoryMapper().map("unclear offer and burnout")
        assert result.category == ConstraintCategory.STRATEGY


class TestDefaultTier:

    def test_unknown_maps_to_default(self):
        result = CategoryMapper().map("something entirely different")
        assert result.category == ConstraintCategory.STRATEGY
        assert result.tier == MappingTier.DEFAULT

    def test_default_is_configurable(self):
        mapper = CategoryMapper(default_category=ConstraintCategory.EXECUTION)
        assert mapper.map_category("zzz") == ConstraintCategory.EXECUTION

    @pytest.mark.parametrize("raw", [42, 3.5, ["a"], {"x": 1}])
    def test_garbage_never_raises(self, raw):
        assert isinstance(CategoryMapper().map_category(raw), ConstraintCategory)


class TestStats:

    def test_tier_counts(self):
        mapper = CategoryMapper()
        mapper.map("strategy")
        mapper.map("burnout")
        mapper.map(None)
        stats = mapper.get_stats()
        assert stats["exact"] == 1
        assert stats["keyword"] == 1
        assert stats["none"] == 1
