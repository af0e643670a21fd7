"""
Overlay Registry - токены внешнего prompt-контента.

Ядро не читает текст overlay: токен только называет, какой контент
должен подключить генератор. Реестр собирается явно и передаётся в
Decision Engine при создании, глобальной регистрации нет.

Использование:
    from guided_dialogue.overlays import OverlayRegistry

    registry = OverlayRegistry.default()
    registry.tokens_for(Action.EXPLORE, "depth_inquiry")  # ['exploration', 'depth_inquiry']
"""

from typing import Dict, Iterable, List, Optional, Set

from guided_dialogue.models import Action, ClosingSubPhase, ObjectionType


class UnknownOverlayError(KeyError):
    pass


class OverlayRegistry:
    """
    Отображение action -> базовые токены + множество допустимых
    модификаторов.
    """

    DEFAULT_BASE: Dict[Action, List[str]] = {
        Action.CONTAIN: ["containment"],
        Action.DIAGNOSE: ["diagnosis"],
        Action.VALIDATE: ["validation"],
        Action.CROSS_MAP: ["cross_map"],
        Action.DEEPEN: ["depth_inquiry"],
        Action.EXPLORE: ["exploration"],
        Action.CLOSE: ["closing"],
    }

    DEFAULT_MODIFIERS: List[str] = (
        ["depth_inquiry", "hypothesis_forming", "acceleration"]
        + [f"containment_{name}" for name in ("validate", "simplify", "pause")]
        + [f"closing_{sub.value}" for sub in ClosingSubPhase if sub != ClosingSubPhase.NOT_STARTED]
        + [f"objection_{obj.value}" for obj in ObjectionType]
        + ["closing_graceful_exit", "containment_aftercare"]
    )

    def __init__(self, base: Dict[Action, List[str]], modifiers: Iterable[str] = ()):
        self._base = {action: list(tokens) for action, tokens in base.items()}
        self._modifiers: Set[str] = set(modifiers)

    @classmethod
    def default(cls) -> "OverlayRegistry":
        return cls(cls.DEFAULT_BASE, cls.DEFAULT_MODIFIERS)

    def register(self, action: Action, tokens: List[str]) -> None:
        self._base[action] = list(tokens)

    def register_modifier(self, token: str) -> None:
        self._modifiers.add(token)

    def known(self, token: str) -> bool:
        return token in self._modifiers or any(token in t for t in self._base.values())

    def tokens_for(self, action: Action, *modifiers: Optional[str]) -> List[str]:
        """
        Токены для действия.

        Raises:
            UnknownOverlayError: модификатор не зарегистрирован
        """
        tokens = list(self._base.get(action, []))
        for modifier in modifiers:
            if not modifier:
                continue
            if modifier not in self._modifiers:
                raise UnknownOverlayError(modifier)
            if modifier not in tokens:
                tokens.append(modifier)
        return tokens
