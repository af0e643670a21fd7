"""Tier 2 Category Mapper: LLM, которому разрешено ответить одним словом."""
from typing import Any, Optional

from guided_dialogue.classifier.prompts import CATEGORY_SYSTEM, build_category_prompt
from guided_dialogue.classifier.schemas import CategoryTokenResult
from guided_dialogue.logger import logger


class CategoryDelegate:
    """
    Вызываемый объект для CategoryMapper(delegate=...).

    Схема CategoryTokenResult допускает только три токена, поэтому
    ответ вне перечисления отбрасывается ещё на уровне pydantic.
    """

    def __init__(self, llm: Any):
        self.llm = llm

    def __call__(self, raw_category: str) -> Optional[str]:
        result = self.llm.generate_structured(
            build_category_prompt(raw_category),
            CategoryTokenResult,
            system=CATEGORY_SYSTEM,
        )
        if result is None:
            logger.debug("Category delegate returned nothing", raw=raw_category[:60])
            return None
        return result.category
