"""Typed, read-only gamebook content and its loader."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from .errors import ContentConfigurationError
from .scene_schema import (
    canonical_condition,
    canonical_effect,
    choice_condition,
    choice_effects,
    choice_target,
    normalize_scenes,
    scene_effects,
)
from .schema import validate_content
from .state import GameState, StatBounds

logger = logging.getLogger(__name__)


# ---------- Conditions ----------
@dataclass(frozen=True)
class StatCheck:
    stat: str
    op: str
    value: int


@dataclass(frozen=True)
class FlagCheck:
    flag: str
    mode: str = "has"


@dataclass(frozen=True)
class HasItem:
    item: str
    qty: int = 1


@dataclass(frozen=True)
class FactionCheck:
    faction: str
    op: str
    value: int


@dataclass(frozen=True)
class AllOf:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class AnyOf:
    conditions: Tuple["Condition", ...] = ()


@dataclass(frozen=True)
class Not:
    condition: "Condition"


@dataclass(frozen=True)
class UnknownCondition:
    """Condition with a tag this engine does not understand; never satisfied."""

    kind: Any
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


Condition = Union[StatCheck, FlagCheck, HasItem, FactionCheck, AllOf, AnyOf, Not, UnknownCondition]


# ---------- Effects ----------
@dataclass(frozen=True)
class SetStat:
    stat: str
    value: int


@dataclass(frozen=True)
class ModifyStat:
    stat: str
    delta: int


@dataclass(frozen=True)
class SetFlag:
    flag: str


@dataclass(frozen=True)
class RemoveFlag:
    flag: str


@dataclass(frozen=True)
class AddItem:
    item: str
    qty: int = 1


@dataclass(frozen=True)
class RemoveItem:
    item: str
    qty: int = 1


@dataclass(frozen=True)
class ModifyFaction:
    faction: str
    delta: int


@dataclass(frozen=True)
class UnknownEffect:
    """Effect with a tag this engine cannot apply."""

    kind: Any
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False)


Effect = Union[SetStat, ModifyStat, SetFlag, RemoveFlag, AddItem, RemoveItem, ModifyFaction, UnknownEffect]


@dataclass(frozen=True)
class Choice:
    label: str
    next_scene: str
    condition: Optional[Condition] = None
    disabled_hint: Optional[str] = None
    effects: Tuple[Effect, ...] = ()


@dataclass(frozen=True)
class Scene:
    id: str
    title: str = ""
    text: str = ""
    effects_on_enter: Tuple[Effect, ...] = ()
    choices: Tuple[Choice, ...] = ()
    ending: Optional[str] = None

    @property
    def is_ending(self) -> bool:
        return self.ending is not None


# ---------- Parsing ----------
def parse_condition(raw: Any) -> Optional[Condition]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise ContentConfigurationError(f"Condition must be an object, got {raw!r}.")
    data = canonical_condition(raw)
    kind = data.get("type")
    if kind == "stat_check":
        return StatCheck(data["stat"], data["op"], int(data["value"]))
    if kind == "flag_check":
        return FlagCheck(data["flag"], data.get("mode", "has"))
    if kind == "has_item":
        return HasItem(data["item"], int(data.get("qty", 1)))
    if kind == "faction_check":
        return FactionCheck(data["faction"], data["op"], int(data["value"]))
    if kind == "and":
        return AllOf(tuple(parse_condition(c) for c in data.get("conditions", [])))
    if kind == "or":
        return AnyOf(tuple(parse_condition(c) for c in data.get("conditions", [])))
    if kind == "not":
        return Not(parse_condition(data["condition"]))
    logger.warning("[Content] Keeping unknown condition type %r as unsatisfiable.", kind)
    return UnknownCondition(kind, MappingProxyType(dict(raw)))


def parse_effect(raw: Any) -> Effect:
    if not isinstance(raw, Mapping):
        raise ContentConfigurationError(f"Effect must be an object, got {raw!r}.")
    data = canonical_effect(raw)
    kind = data.get("type")
    if kind == "set_stat":
        return SetStat(data["stat"], int(data["value"]))
    if kind == "modify_stat":
        return ModifyStat(data["stat"], int(data["delta"]))
    if kind == "set_flag":
        return SetFlag(data["flag"])
    if kind == "remove_flag":
        return RemoveFlag(data["flag"])
    if kind == "add_item":
        return AddItem(data["item"], int(data.get("qty", 1)))
    if kind == "remove_item":
        return RemoveItem(data["item"], int(data.get("qty", 1)))
    if kind == "modify_faction":
        return ModifyFaction(data["faction"], int(data["delta"]))
    logger.warning("[Content] Keeping unknown effect type %r; applying it will fail.", kind)
    return UnknownEffect(kind, MappingProxyType(dict(raw)))


def parse_effects(raw: Any) -> Tuple[Effect, ...]:
    return tuple(parse_effect(effect) for effect in raw or ())


def parse_choice(raw: Mapping[str, Any]) -> Choice:
    return Choice(
        label=raw.get("label", ""),
        next_scene=choice_target(raw),
        condition=parse_condition(choice_condition(raw)),
        disabled_hint=raw.get("disabledHint"),
        effects=parse_effects(choice_effects(raw)),
    )


def parse_scene(scene_id: str, raw: Mapping[str, Any]) -> Scene:
    ending = raw.get("ending")
    if ending is True:
        ending = raw.get("title") or scene_id
    elif ending is False:
        ending = None
    return Scene(
        id=scene_id,
        title=raw.get("title", ""),
        text=raw.get("text", ""),
        effects_on_enter=parse_effects(scene_effects(raw)),
        choices=tuple(parse_choice(choice) for choice in raw.get("choices") or ()),
        ending=ending,
    )


# ---------- Store ----------
@dataclass(frozen=True)
class ContentStore:
    """Read-only scene graph shared by every playthrough."""

    scenes: Mapping[str, Scene]
    start_scene: str
    stat_bounds: Mapping[str, StatBounds] = field(default_factory=dict)
    factions: Tuple[str, ...] = ()
    title: str = ""
    content_version: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "scenes", MappingProxyType(dict(self.scenes)))
        object.__setattr__(self, "stat_bounds", MappingProxyType(dict(self.stat_bounds)))
        object.__setattr__(self, "factions", tuple(self.factions))

    @classmethod
    def from_scenes(cls, scenes: Iterable[Scene], start_scene: str, **kwargs: Any) -> "ContentStore":
        return cls(scenes={scene.id: scene for scene in scenes}, start_scene=start_scene, **kwargs)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], *, strict: bool = True) -> "ContentStore":
        if not isinstance(data, Mapping):
            raise ContentConfigurationError("Content data must be a JSON object.")
        errors = validate_content(data, strict=strict)
        if errors:
            raise ContentConfigurationError("Invalid content:", errors)

        scenes, _ = normalize_scenes(data.get("scenes"))
        stat_bounds = {
            stat_id: StatBounds(spec["min"], spec["max"], spec.get("default"))
            for stat_id, spec in (data.get("stats") or {}).items()
        }
        return cls(
            scenes={scene_id: parse_scene(scene_id, raw) for scene_id, raw in scenes.items()},
            start_scene=data["startScene"],
            stat_bounds=stat_bounds,
            factions=tuple(data.get("factions") or ()),
            title=data.get("title", ""),
            content_version=data.get("contentVersion"),
        )

    def scene(self, scene_id: str) -> Scene:
        try:
            return self.scenes[scene_id]
        except KeyError:
            raise ContentConfigurationError(f"Unknown scene '{scene_id}'.") from None

    def is_ending(self, scene_id: Optional[str]) -> bool:
        scene = self.scenes.get(scene_id) if scene_id else None
        return scene is not None and scene.is_ending

    @property
    def endings(self) -> Dict[str, str]:
        return {scene_id: scene.ending for scene_id, scene in self.scenes.items() if scene.ending}

    def new_state(self, **overrides: Any) -> GameState:
        return GameState.new(stat_bounds=self.stat_bounds, factions=self.factions, **overrides)


def _merge_content_modules(content: Dict[str, Any], content_path: Path) -> Dict[str, Any]:
    modules = content.get("modules")
    if not modules:
        return content
    if not isinstance(modules, list):
        raise ContentConfigurationError("Invalid content:", ["modules: must be a list of module file paths."])

    base_scenes, scene_errors = normalize_scenes(content.get("scenes"))
    if scene_errors:
        raise ContentConfigurationError("Invalid content:", scene_errors)
    combined = dict(base_scenes)
    base_dir = Path(content_path).resolve().parent
    errors: List[str] = []

    for module_ref in modules:
        if not isinstance(module_ref, str) or not module_ref.strip():
            errors.append("modules: module entries must be non-empty strings.")
            continue
        module_path = (base_dir / module_ref).resolve()
        try:
            with module_path.open("r", encoding="utf-8") as handle:
                module = json.load(handle)
        except (OSError, json.JSONDecodeError) as exc:
            errors.append(f"modules: failed to load '{module_ref}': {exc}")
            continue
        raw_scenes = module.get("scenes") if isinstance(module, dict) else None
        module_scenes, module_errors = normalize_scenes(raw_scenes)
        errors.extend(f"{module_ref}: {message}" for message in module_errors)
        for scene_id, scene in module_scenes.items():
            if scene_id in combined:
                errors.append(f"{module_ref}: duplicate scene ID '{scene_id}'.")
                continue
            combined[scene_id] = scene
    if errors:
        raise ContentConfigurationError("Invalid content:", errors)

    merged = dict(content)
    merged.pop("modules")
    merged["scenes"] = combined
    return merged


def load_content(path: Path | str, *, strict: bool = True) -> ContentStore:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except json.JSONDecodeError as exc:
        raise ContentConfigurationError(f"Failed to parse JSON from {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ContentConfigurationError("Content data must be a JSON object.")
    data = _merge_content_modules(data, path)
    return ContentStore.from_dict(data, strict=strict)
