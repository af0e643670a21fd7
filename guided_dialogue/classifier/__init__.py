"""
Классификаторы по умолчанию (LLM + дешёвые fallback).

Каждый классификатор - внешний collaborator ядра: оркестратор видит
только его интерфейс и прогоняет любой ответ через Schema Validator.

Модули:
    signal_classifier  - сигналы хода (LLM, затем regex)
    state_inference    - гипотеза о категории (LLM)
    closing_classifier - ответ внутри closing (LLM, затем ключевые фразы)
    category_delegate  - Tier 2 для Category Mapper
    schemas            - pydantic-схемы ответов
"""
