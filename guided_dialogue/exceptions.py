"""
Исключения Guided Dialogue Core.

Ошибки классификаторов и генерации наружу не пробрасываются (их гасят
каскады fallback). Эти исключения сигнализируют только о неправильном
использовании библиотеки хостом.
"""


class GuidedDialogueError(Exception):
    """Базовое исключение пакета."""
    pass


class InvalidStateError(GuidedDialogueError):
    """Состояние диалога нарушает инвариант или не может быть десериализовано."""
    pass


class RuleRegistrationError(GuidedDialogueError):
    """Некорректный набор правил Decision Engine (дубликаты, нет default)."""
    pass
