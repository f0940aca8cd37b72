"""Machine-readable schema specs for Stagebook content."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Sequence, Tuple

ConditionValidator = Callable[[Mapping[str, Any], str], List[str]]
EffectValidator = Callable[[Mapping[str, Any], str, Mapping[str, Any]], List[str]]

COMPARISON_OPS = ("gte", "lte", "eq", "gt", "lt")
FLAG_MODES = ("has", "not_has")

CONDITION_ALIASES = {
    "stat": "stat_check",
    "flag": "flag_check",
    "item": "has_item",
    "faction": "faction_check",
}

EFFECT_ALIASES = {
    "set-stat": "set_stat",
    "modify-stat": "modify_stat",
    "set-flag": "set_flag",
    "clear-flag": "remove_flag",
    "remove-flag": "remove_flag",
    "add-item": "add_item",
    "remove-item": "remove_item",
    "modify-faction": "modify_faction",
}


def path(*parts: object) -> str:
    path_str = ""
    for part in parts:
        if isinstance(part, int):
            path_str = f"{path_str}[{part}]"
            continue
        if not isinstance(part, str):
            part = str(part)
        if part.isidentifier():
            path_str = f"{path_str}.{part}" if path_str else part
        else:
            path_str = f'{path_str}[{json.dumps(part)}]'
    return path_str


def format_validation_message(path_str: str, context: str, message: str) -> str:
    if context:
        return f"{path_str}: {context}: {message}"
    return f"{path_str}: {message}"


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_list(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def canonical_condition(condition: Mapping[str, Any]) -> Dict[str, Any]:
    """Rewrite legacy condition tags and field names into the canonical shape."""
    data = dict(condition)
    legacy = data.get("type")
    data["type"] = CONDITION_ALIASES.get(legacy, legacy)
    if "operator" in data and "op" not in data:
        data["op"] = data.pop("operator")
    if legacy == "flag":
        data.setdefault("mode", "has")
    if "itemCount" in data and "qty" not in data:
        data["qty"] = data.pop("itemCount")
    if "factionLevel" in data and "value" not in data:
        data["value"] = data.pop("factionLevel")
        data.setdefault("op", "gte")
    if data["type"] == "not" and "condition" not in data:
        nested = data.get("conditions")
        if is_list(nested) and len(nested) == 1:
            data["condition"] = nested[0]
            data.pop("conditions")
    return data


def canonical_effect(effect: Mapping[str, Any]) -> Dict[str, Any]:
    """Rewrite legacy effect tags and field names into the canonical shape."""
    data = dict(effect)
    legacy = data.get("type")
    data["type"] = EFFECT_ALIASES.get(legacy, legacy)
    if legacy == "modify-stat" and "delta" not in data and "value" in data:
        data["delta"] = data.pop("value")
    if "count" in data and "qty" not in data:
        data["qty"] = data.pop("count")
    if "amount" in data and "delta" not in data:
        data["delta"] = data.pop("amount")
    return data


def normalize_scenes(
    raw_scenes: Any, ctx: Any | None = None
) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
    scenes: Dict[str, Dict[str, Any]] = {}
    errors: List[str] = []
    scene_ids: List[str] = []

    def add_error(context: str, path_parts: Sequence[object], message: str) -> None:
        path_str = path(*path_parts)
        errors.append(format_validation_message(path_str, context, message))
        if ctx is not None:
            ctx.add(context, path_str, message)

    if isinstance(raw_scenes, dict):
        for scene_id, payload in raw_scenes.items():
            if not is_non_empty_str(scene_id):
                add_error("Scenes", ("scenes",), "scene identifiers must be non-empty strings.")
                continue
            if not isinstance(payload, dict):
                add_error("Scenes", ("scenes", scene_id), f"scene '{scene_id}' must be an object.")
                continue
            scenes[scene_id] = payload
    elif isinstance(raw_scenes, list):
        for idx, entry in enumerate(raw_scenes, start=1):
            if not isinstance(entry, MutableMapping):
                add_error(f"Scene entry {idx}", ("scenes", idx - 1), "must be an object.")
                continue
            scene_id = entry.get("id")
            if not is_non_empty_str(scene_id):
                add_error(f"Scene entry {idx}", ("scenes", idx - 1, "id"), "is missing a valid 'id'.")
                continue
            scene_ids.append(scene_id)
            payload = dict(entry)
            payload.pop("id", None)
            scenes[scene_id] = payload
    else:
        add_error(
            "Content",
            ("scenes",),
            "must be an object mapping IDs to scene definitions or a list of scene entries.",
        )

    duplicates = [scene_id for scene_id, count in Counter(scene_ids).items() if count > 1]
    if duplicates:
        add_error("Scenes", ("scenes",), f"duplicate scene IDs found: {', '.join(sorted(duplicates))}.")

    return scenes, errors


def scene_effects(scene: Mapping[str, Any]) -> Any:
    if "effectsOnEnter" in scene:
        return scene.get("effectsOnEnter")
    return scene.get("effects")


def choice_target(choice: Mapping[str, Any]) -> Any:
    if "nextScene" in choice:
        return choice.get("nextScene")
    return choice.get("to")


def choice_effects(choice: Mapping[str, Any]) -> Any:
    if "effects" in choice:
        return choice.get("effects")
    return choice.get("onChoose")


def choice_condition(choice: Mapping[str, Any]) -> Any:
    if "condition" in choice:
        return choice.get("condition")
    conditions = choice.get("conditions")
    if conditions is None:
        return None
    if is_list(conditions):
        return {"type": "and", "conditions": list(conditions)}
    return conditions


@dataclass(frozen=True)
class ConditionSpec:
    required_fields: Tuple[str, ...]
    optional_fields: Tuple[str, ...]
    field_rules: Mapping[str, str]
    validate: ConditionValidator


@dataclass(frozen=True)
class EffectSpec:
    required_fields: Tuple[str, ...]
    optional_fields: Tuple[str, ...]
    field_rules: Mapping[str, str]
    validate: EffectValidator


def _validate_comparison(condition: Mapping[str, Any], context: str, name: str, key: str) -> List[str]:
    errors: List[str] = []
    if not is_non_empty_str(condition.get(key)):
        errors.append(f"{context}: '{name}' requires a non-empty string '{key}'.")
    if condition.get("op") not in COMPARISON_OPS:
        errors.append(f"{context}: '{name}' requires 'op' to be one of {', '.join(COMPARISON_OPS)}.")
    if not is_int(condition.get("value")):
        errors.append(f"{context}: '{name}' requires an integer 'value'.")
    return errors


def _validate_flag_check(condition: Mapping[str, Any], context: str) -> List[str]:
    errors: List[str] = []
    if not is_non_empty_str(condition.get("flag")):
        errors.append(f"{context}: 'flag_check' requires a non-empty string 'flag'.")
    if condition.get("mode", "has") not in FLAG_MODES:
        errors.append(f"{context}: 'flag_check' mode must be 'has' or 'not_has'.")
    return errors


def _validate_has_item(condition: Mapping[str, Any], context: str) -> List[str]:
    errors: List[str] = []
    if not is_non_empty_str(condition.get("item")):
        errors.append(f"{context}: 'has_item' requires a non-empty string 'item'.")
    qty = condition.get("qty", 1)
    if not is_int(qty) or qty < 1:
        errors.append(f"{context}: 'has_item' quantity must be a positive integer.")
    return errors


def _validate_group(condition: Mapping[str, Any], context: str, name: str) -> List[str]:
    if not is_list(condition.get("conditions")):
        return [f"{context}: '{name}' requires a 'conditions' list."]
    return []


def _validate_not(condition: Mapping[str, Any], context: str) -> List[str]:
    if not isinstance(condition.get("condition"), Mapping):
        return [f"{context}: 'not' requires exactly one nested 'condition'."]
    return []


def _validate_stat_effect(effect: Mapping[str, Any], context: str, declared: Mapping[str, Any], name: str, key: str) -> List[str]:
    errors: List[str] = []
    stat = effect.get("stat")
    if not is_non_empty_str(stat):
        errors.append(f"{context}: '{name}' requires a non-empty string 'stat'.")
    elif stat not in declared.get("stats", ()):
        errors.append(f"{context}: '{name}' targets undeclared stat '{stat}'.")
    if not is_int(effect.get(key)):
        errors.append(f"{context}: '{name}' requires an integer '{key}'.")
    return errors


def _validate_flag_effect(effect: Mapping[str, Any], context: str, declared: Mapping[str, Any], name: str) -> List[str]:
    if not is_non_empty_str(effect.get("flag")):
        return [f"{context}: '{name}' requires a non-empty string 'flag'."]
    return []


def _validate_item_effect(effect: Mapping[str, Any], context: str, declared: Mapping[str, Any], name: str) -> List[str]:
    errors: List[str] = []
    if not is_non_empty_str(effect.get("item")):
        errors.append(f"{context}: '{name}' requires a non-empty string 'item'.")
    qty = effect.get("qty", 1)
    if not is_int(qty) or qty < 1:
        errors.append(f"{context}: '{name}' quantity must be a positive integer.")
    return errors


def _validate_modify_faction(effect: Mapping[str, Any], context: str, declared: Mapping[str, Any]) -> List[str]:
    errors: List[str] = []
    faction = effect.get("faction")
    known = declared.get("factions", ())
    if not is_non_empty_str(faction):
        errors.append(f"{context}: 'modify_faction' requires a non-empty string 'faction'.")
    elif known and faction not in known:
        errors.append(f"{context}: 'modify_faction' targets undeclared faction '{faction}'.")
    if not is_int(effect.get("delta")):
        errors.append(f"{context}: 'modify_faction' requires an integer 'delta'.")
    return errors


CONDITION_SPECS: Dict[str, ConditionSpec] = {
    "stat_check": ConditionSpec(
        required_fields=("stat", "op", "value"),
        optional_fields=(),
        field_rules={"stat": "non-empty string", "op": "gte|lte|eq|gt|lt", "value": "integer"},
        validate=lambda condition, context: _validate_comparison(condition, context, "stat_check", "stat"),
    ),
    "flag_check": ConditionSpec(
        required_fields=("flag",),
        optional_fields=("mode",),
        field_rules={"flag": "non-empty string", "mode": "has|not_has (default has)"},
        validate=_validate_flag_check,
    ),
    "has_item": ConditionSpec(
        required_fields=("item",),
        optional_fields=("qty",),
        field_rules={"item": "non-empty string", "qty": "positive integer (default 1)"},
        validate=_validate_has_item,
    ),
    "faction_check": ConditionSpec(
        required_fields=("faction", "op", "value"),
        optional_fields=(),
        field_rules={"faction": "non-empty string", "op": "gte|lte|eq|gt|lt", "value": "integer"},
        validate=lambda condition, context: _validate_comparison(condition, context, "faction_check", "faction"),
    ),
    "and": ConditionSpec(
        required_fields=("conditions",),
        optional_fields=(),
        field_rules={"conditions": "list of conditions (empty list is true)"},
        validate=lambda condition, context: _validate_group(condition, context, "and"),
    ),
    "or": ConditionSpec(
        required_fields=("conditions",),
        optional_fields=(),
        field_rules={"conditions": "list of conditions (empty list is false)"},
        validate=lambda condition, context: _validate_group(condition, context, "or"),
    ),
    "not": ConditionSpec(
        required_fields=("condition",),
        optional_fields=(),
        field_rules={"condition": "single nested condition"},
        validate=_validate_not,
    ),
}


EFFECT_SPECS: Dict[str, EffectSpec] = {
    "set_stat": EffectSpec(
        required_fields=("stat", "value"),
        optional_fields=(),
        field_rules={"stat": "declared stat id", "value": "integer, clamped to the stat bounds"},
        validate=lambda effect, context, declared: _validate_stat_effect(effect, context, declared, "set_stat", "value"),
    ),
    "modify_stat": EffectSpec(
        required_fields=("stat", "delta"),
        optional_fields=(),
        field_rules={"stat": "declared stat id", "delta": "integer, result clamped to the stat bounds"},
        validate=lambda effect, context, declared: _validate_stat_effect(effect, context, declared, "modify_stat", "delta"),
    ),
    "set_flag": EffectSpec(
        required_fields=("flag",),
        optional_fields=(),
        field_rules={"flag": "non-empty string"},
        validate=lambda effect, context, declared: _validate_flag_effect(effect, context, declared, "set_flag"),
    ),
    "remove_flag": EffectSpec(
        required_fields=("flag",),
        optional_fields=(),
        field_rules={"flag": "non-empty string; absent flags are ignored"},
        validate=lambda effect, context, declared: _validate_flag_effect(effect, context, declared, "remove_flag"),
    ),
    "add_item": EffectSpec(
        required_fields=("item",),
        optional_fields=("qty",),
        field_rules={"item": "non-empty string", "qty": "positive integer (default 1)"},
        validate=lambda effect, context, declared: _validate_item_effect(effect, context, declared, "add_item"),
    ),
    "remove_item": EffectSpec(
        required_fields=("item",),
        optional_fields=("qty",),
        field_rules={"item": "non-empty string; absent items are ignored", "qty": "positive integer (default 1)"},
        validate=lambda effect, context, declared: _validate_item_effect(effect, context, declared, "remove_item"),
    ),
    "modify_faction": EffectSpec(
        required_fields=("faction", "delta"),
        optional_fields=(),
        field_rules={"faction": "faction id", "delta": "integer, result clamped to 0..10"},
        validate=_validate_modify_faction,
    ),
}
