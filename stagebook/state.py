"""Mutable per-playthrough game state."""

from __future__ import annotations

import copy
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

from .save_migrations import SAVE_FORMAT_VERSION

FACTION_MIN = 0
FACTION_MAX = 10


def clamp(n: int, lo: int, hi: int) -> int:
    return lo if n < lo else hi if n > hi else n


@dataclass(frozen=True)
class StatBounds:
    """Inclusive range a stat is held to, plus its starting value."""

    minimum: int
    maximum: int
    default: Optional[int] = None

    def clamp(self, value: int) -> int:
        return clamp(int(value), self.minimum, self.maximum)

    @property
    def initial(self) -> int:
        if self.default is None:
            return self.minimum
        return self.clamp(self.default)


@dataclass
class SaveMeta:
    version: int = SAVE_FORMAT_VERSION
    saved_at: Optional[str] = None


@dataclass
class GameState:
    stats: Dict[str, int] = field(default_factory=dict)
    flags: Set[str] = field(default_factory=set)
    inventory: Dict[str, int] = field(default_factory=dict)
    factions: Dict[str, int] = field(default_factory=dict)
    current_scene: Optional[str] = None
    scene_history: List[str] = field(default_factory=list)
    meta: SaveMeta = field(default_factory=SaveMeta)

    @classmethod
    def new(
        cls,
        *,
        stat_bounds: Optional[Mapping[str, StatBounds]] = None,
        factions: Iterable[str] = (),
        stats: Optional[Mapping[str, int]] = None,
        flags: Iterable[str] = (),
        inventory: Union[Mapping[str, int], Iterable[str], None] = None,
        faction_levels: Optional[Mapping[str, int]] = None,
        current_scene: Optional[str] = None,
    ) -> "GameState":
        stat_bounds = stat_bounds or {}
        state_stats = {stat_id: bounds.initial for stat_id, bounds in stat_bounds.items()}
        for stat_id, value in (stats or {}).items():
            bounds = stat_bounds.get(stat_id)
            state_stats[stat_id] = bounds.clamp(value) if bounds else int(value)

        state_factions = {faction: FACTION_MIN for faction in factions}
        for faction, value in (faction_levels or {}).items():
            state_factions[faction] = clamp(int(value), FACTION_MIN, FACTION_MAX)

        if inventory is None:
            inventory = {}
        elif not isinstance(inventory, Mapping):
            if isinstance(inventory, str):
                raise TypeError("inventory must be a mapping or a list of item ids, not a string.")
            # repeated ids count as quantity
            inventory = Counter(inventory)
        state_inventory = {item: int(qty) for item, qty in inventory.items() if int(qty) > 0}
        return cls(
            stats=state_stats,
            flags=set(flags),
            inventory=state_inventory,
            factions=state_factions,
            current_scene=current_scene,
        )

    def copy(self) -> "GameState":
        return copy.deepcopy(self)

    def assign(self, other: "GameState") -> None:
        """Replace every field with ``other``'s, keeping this object's identity."""
        fresh = other.copy()
        self.stats = fresh.stats
        self.flags = fresh.flags
        self.inventory = fresh.inventory
        self.factions = fresh.factions
        self.current_scene = fresh.current_scene
        self.scene_history = fresh.scene_history
        self.meta = fresh.meta

    def item_count(self, item: str) -> int:
        return self.inventory.get(item, 0)

    def has_item(self, item: str, qty: int = 1) -> bool:
        return self.item_count(item) >= qty

    def visit_counts(self) -> Counter:
        return Counter(self.scene_history)

    def visited_count(self, scene_id: str) -> int:
        return self.scene_history.count(scene_id)

    def progress_signature(self) -> Tuple[Any, ...]:
        return (
            tuple(sorted(self.flags)),
            tuple(sorted(self.inventory.items())),
            tuple(sorted(self.stats.items())),
            tuple(sorted(self.factions.items())),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats": dict(self.stats),
            "flags": sorted(self.flags),
            "inventory": dict(self.inventory),
            "factions": dict(self.factions),
            "currentScene": self.current_scene,
            "sceneHistory": list(self.scene_history),
            "meta": {"version": self.meta.version, "savedAt": self.meta.saved_at},
        }
