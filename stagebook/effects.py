"""Effect application with silent clamping."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

from .content import (
    AddItem,
    Effect,
    ModifyFaction,
    ModifyStat,
    RemoveFlag,
    RemoveItem,
    SetFlag,
    SetStat,
    UnknownEffect,
)
from .errors import ContentConfigurationError
from .state import FACTION_MAX, FACTION_MIN, GameState, StatBounds, clamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EffectResult:
    effect: Effect
    old_value: Any
    new_value: Any
    attempted: Any = None

    @property
    def clamped(self) -> bool:
        return self.attempted is not None and self.attempted != self.new_value


def check_effect(effect: Effect, stat_bounds: Mapping[str, StatBounds]) -> None:
    if isinstance(effect, UnknownEffect):
        raise ContentConfigurationError(f"Cannot apply unknown effect type {effect.kind!r}.")
    if isinstance(effect, (SetStat, ModifyStat)) and effect.stat not in stat_bounds:
        raise ContentConfigurationError(f"Effect targets undeclared stat '{effect.stat}'.")
    if isinstance(effect, (AddItem, RemoveItem)) and effect.qty < 1:
        raise ContentConfigurationError(
            f"Item effect on '{effect.item}' needs a positive quantity, got {effect.qty}."
        )


def check_effects(effects: Iterable[Effect], stat_bounds: Mapping[str, StatBounds]) -> None:
    for effect in effects:
        check_effect(effect, stat_bounds)


def _log_clamp(result: EffectResult, target: str) -> None:
    if result.clamped:
        logger.debug("[Effects] %s clamped from %s to %s", target, result.attempted, result.new_value)


def apply_effect(
    effect: Effect, state: GameState, stat_bounds: Optional[Mapping[str, StatBounds]] = None
) -> EffectResult:
    stat_bounds = stat_bounds or {}
    check_effect(effect, stat_bounds)

    if isinstance(effect, (SetStat, ModifyStat)):
        old = state.stats.get(effect.stat, stat_bounds[effect.stat].initial)
        attempted = effect.value if isinstance(effect, SetStat) else old + effect.delta
        state.stats[effect.stat] = stat_bounds[effect.stat].clamp(attempted)
        result = EffectResult(effect, old, state.stats[effect.stat], attempted)
        _log_clamp(result, f"stat '{effect.stat}'")
        return result
    if isinstance(effect, SetFlag):
        old = effect.flag in state.flags
        state.flags.add(effect.flag)
        return EffectResult(effect, old, True)
    if isinstance(effect, RemoveFlag):
        old = effect.flag in state.flags
        state.flags.discard(effect.flag)
        return EffectResult(effect, old, False)
    if isinstance(effect, AddItem):
        old = state.item_count(effect.item)
        state.inventory[effect.item] = old + effect.qty
        return EffectResult(effect, old, old + effect.qty)
    if isinstance(effect, RemoveItem):
        old = state.item_count(effect.item)
        remaining = max(old - effect.qty, 0)
        if remaining:
            state.inventory[effect.item] = remaining
        else:
            state.inventory.pop(effect.item, None)
        return EffectResult(effect, old, remaining)
    if isinstance(effect, ModifyFaction):
        old = state.factions.get(effect.faction, 0)
        attempted = old + effect.delta
        state.factions[effect.faction] = clamp(attempted, FACTION_MIN, FACTION_MAX)
        result = EffectResult(effect, old, state.factions[effect.faction], attempted)
        _log_clamp(result, f"faction '{effect.faction}'")
        return result
    raise TypeError(f"Not an effect: {effect!r}")


def apply_effects(
    effects: Iterable[Effect], state: GameState, stat_bounds: Optional[Mapping[str, StatBounds]] = None
) -> List[EffectResult]:
    return [apply_effect(effect, state, stat_bounds) for effect in effects]
