"""Scene entry, choice resolution and atomic transitions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .conditions import describe, evaluate
from .content import ContentStore, Effect, Scene
from .effects import EffectResult, apply_effects, check_effects
from .errors import InvalidChoiceSelection
from .state import GameState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChoiceView:
    index: int
    label: str
    next_scene: str
    enabled: bool
    disabled_hint: Optional[str] = None


@dataclass(frozen=True)
class StateChanged:
    """One batched notification per scene entry."""

    scene_id: str
    state: GameState
    effects: Tuple[EffectResult, ...] = ()
    choice_index: Optional[int] = None


StateChangeHandler = Callable[[StateChanged], None]


def resolve_choices(scene: Scene, state: GameState) -> List[ChoiceView]:
    views: List[ChoiceView] = []
    for index, choice in enumerate(scene.choices):
        enabled = evaluate(choice.condition, state)
        hint = None
        if not enabled:
            hint = choice.disabled_hint or describe(choice.condition) or None
        views.append(ChoiceView(index, choice.label, choice.next_scene, enabled, hint))
    return views


class SceneResolver:
    """Drive one playthrough over a shared content store."""

    def __init__(self, content: ContentStore, state: Optional[GameState] = None) -> None:
        self.content = content
        self._state = state if state is not None else content.new_state()
        self._handlers: List[StateChangeHandler] = []

    @property
    def state(self) -> GameState:
        return self._state

    @property
    def current_scene(self) -> Optional[str]:
        return self._state.current_scene

    # ---------- Events ----------
    def subscribe(self, handler: StateChangeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def _emit(self, event: StateChanged) -> None:
        for handler in list(self._handlers):
            handler(event)

    # ---------- Transitions ----------
    def start(self) -> List[ChoiceView]:
        return self.enter_scene(self._state.current_scene or self.content.start_scene)

    def enter_scene(self, scene_id: str) -> List[ChoiceView]:
        self._check_transition((), scene_id)
        draft = self._state.copy()
        results = self._enter(draft, scene_id)
        return self._commit(draft, results, None)

    def select_choice(self, index: int) -> List[ChoiceView]:
        scene_id = self._state.current_scene
        if scene_id is None:
            raise InvalidChoiceSelection("No scene has been entered yet.")
        scene = self.content.scene(scene_id)
        if not 0 <= index < len(scene.choices):
            raise InvalidChoiceSelection(
                f"Choice {index} does not exist in scene '{scene_id}'."
            )
        choice = scene.choices[index]
        if not evaluate(choice.condition, self._state):
            hint = choice.disabled_hint or describe(choice.condition)
            raise InvalidChoiceSelection(
                f"Choice {index} ('{choice.label}') in scene '{scene_id}' is disabled: {hint}"
            )

        self._check_transition(choice.effects, choice.next_scene)
        draft = self._state.copy()
        results = apply_effects(choice.effects, draft, self.content.stat_bounds)
        results.extend(self._enter(draft, choice.next_scene))
        return self._commit(draft, results, index)

    def _check_transition(self, effects: Tuple[Effect, ...], scene_id: str) -> None:
        """Reject malformed effects before any state is copied or touched."""
        scene = self.content.scene(scene_id)
        check_effects(tuple(effects) + scene.effects_on_enter, self.content.stat_bounds)

    def _enter(self, draft: GameState, scene_id: str) -> List[EffectResult]:
        scene = self.content.scene(scene_id)
        results = apply_effects(scene.effects_on_enter, draft, self.content.stat_bounds)
        draft.scene_history.append(scene_id)
        draft.current_scene = scene_id
        visits = draft.visited_count(scene_id)
        logger.debug("[Resolver] Entered '%s' (visit %d)", scene_id, visits)
        return results

    def _commit(
        self, draft: GameState, results: List[EffectResult], choice_index: Optional[int]
    ) -> List[ChoiceView]:
        self._state.assign(draft)
        scene_id = self._state.current_scene
        self._emit(StateChanged(scene_id, self._state.copy(), tuple(results), choice_index))
        return self.resolve_choices()

    # ---------- Introspection ----------
    def resolve_choices(self, scene_id: Optional[str] = None) -> List[ChoiceView]:
        scene_id = scene_id or self._state.current_scene
        if scene_id is None:
            return []
        return resolve_choices(self.content.scene(scene_id), self._state)

    def available_choices(self) -> List[ChoiceView]:
        return [view for view in self.resolve_choices() if view.enabled]

    def visit_counts(self) -> Dict[str, int]:
        return dict(self._state.visit_counts())

    def is_ending(self, scene_id: Optional[str] = None) -> bool:
        return self.content.is_ending(scene_id or self._state.current_scene)

    def restore(self, state: GameState) -> List[ChoiceView]:
        """Adopt a loaded state without re-running the current scene's entry effects."""
        if state.current_scene is not None:
            self.content.scene(state.current_scene)
        self._state.assign(state)
        return self.resolve_choices()
