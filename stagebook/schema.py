"""Content validation for Stagebook gamebooks."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence

from .scene_schema import (
    CONDITION_SPECS,
    EFFECT_SPECS,
    canonical_condition,
    canonical_effect,
    choice_condition,
    choice_effects,
    choice_target,
    format_validation_message,
    is_int,
    is_list,
    is_non_empty_str,
    normalize_scenes,
    path,
    scene_effects,
)


class ValidationContext:
    """Utility container for accumulating validation errors."""

    def __init__(self, *, strict: bool = True) -> None:
        self.errors: List[str] = []
        self.strict = strict

    def add(self, context: str, path_str: str, message: str) -> None:
        self.errors.append(format_validation_message(path_str, context, message))

    def extend_with_path(self, messages: Iterable[str], path_str: str) -> None:
        for message in messages:
            self.errors.append(f"{path_str}: {message}")

    def ok(self) -> bool:
        return not self.errors


def validate_condition(
    condition: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if condition is None:
        return
    if not isinstance(condition, Mapping):
        ctx.add(context, path(*path_parts), "condition must be an object or null.")
        return

    data = canonical_condition(condition)
    cond_type = data.get("type")
    spec = CONDITION_SPECS.get(cond_type)
    if spec is None:
        if ctx.strict:
            ctx.add(context, path(*path_parts, "type"), f"unsupported condition type '{cond_type}'.")
        return
    ctx.extend_with_path(spec.validate(data, context), path(*path_parts))

    if cond_type in ("and", "or") and is_list(data.get("conditions")):
        for idx, sub in enumerate(data["conditions"]):
            validate_condition(
                sub, f"{context} ({cond_type} entry {idx + 1})", (*path_parts, "conditions", idx), ctx
            )
    elif cond_type == "not" and isinstance(data.get("condition"), Mapping):
        validate_condition(data["condition"], f"{context} (not)", (*path_parts, "condition"), ctx)


def validate_effect(
    effect: Any,
    context: str,
    declared: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    if not isinstance(effect, Mapping):
        ctx.add(context, path(*path_parts), "effect must be an object.")
        return

    data = canonical_effect(effect)
    effect_type = data.get("type")
    spec = EFFECT_SPECS.get(effect_type)
    if spec is None:
        if ctx.strict:
            ctx.add(context, path(*path_parts, "type"), f"unsupported effect type '{effect_type}'.")
        return
    ctx.extend_with_path(spec.validate(data, context, declared), path(*path_parts))


def validate_effect_list(
    effects: Any,
    context: str,
    declared: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    if effects is None:
        return
    if not is_list(effects):
        ctx.add(context, path(*path_parts), "effects must be a list of effect objects if present.")
        return
    for index, effect in enumerate(effects):
        validate_effect(effect, f"{context}, effect {index + 1}", declared, (*path_parts, index), ctx)


def validate_choice(
    choice: Any,
    scene_id: str,
    index: int,
    scenes: Mapping[str, Any],
    declared: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    context = f"Choice {index} in scene '{scene_id}'"
    if not isinstance(choice, Mapping):
        ctx.add(context, path(*path_parts), "must be an object.")
        return

    if not is_non_empty_str(choice.get("label")):
        ctx.add(context, path(*path_parts, "label"), "requires a non-empty 'label'.")

    target = choice_target(choice)
    if target is None:
        ctx.add(context, path(*path_parts, "nextScene"), "is missing a 'nextScene'.")
    elif not is_non_empty_str(target):
        ctx.add(context, path(*path_parts, "nextScene"), "must use a non-empty string 'nextScene'.")
    elif target not in scenes:
        ctx.add(context, path(*path_parts, "nextScene"), f"targets unknown scene '{target}'.")

    hint = choice.get("disabledHint")
    if hint is not None and not isinstance(hint, str):
        ctx.add(context, path(*path_parts, "disabledHint"), "must be a string if present.")

    condition = choice_condition(choice)
    validate_condition(condition, context, (*path_parts, "condition"), ctx)
    validate_effect_list(choice_effects(choice), context, declared, (*path_parts, "effects"), ctx)


def _validate_stats(raw_stats: Any, ctx: ValidationContext) -> Dict[str, Any]:
    if raw_stats is None:
        return {}
    if not isinstance(raw_stats, Mapping):
        ctx.add("Content", path("stats"), "'stats' must map stat IDs to {min, max, default}.")
        return {}
    for stat_id, spec in raw_stats.items():
        context = f"Stat '{stat_id}'"
        if not isinstance(spec, Mapping):
            ctx.add(context, path("stats", stat_id), "must be an object with 'min' and 'max'.")
            continue
        lo, hi, default = spec.get("min"), spec.get("max"), spec.get("default")
        if not is_int(lo) or not is_int(hi):
            ctx.add(context, path("stats", stat_id), "requires integer 'min' and 'max'.")
            continue
        if lo > hi:
            ctx.add(context, path("stats", stat_id), f"min {lo} exceeds max {hi}.")
        if default is not None and (not is_int(default) or not lo <= default <= hi):
            ctx.add(context, path("stats", stat_id, "default"), f"default must be an integer within [{lo}, {hi}].")
    return dict(raw_stats)


def validate_content(content: Mapping[str, Any], *, strict: bool = True) -> List[str]:
    ctx = ValidationContext(strict=strict)

    title = content.get("title")
    if title is not None and not is_non_empty_str(title):
        ctx.add("Content", path("title"), "'title' must be a non-empty string if present.")
    if "scenes" not in content:
        ctx.add("Content", path("scenes"), "must include a 'scenes' section.")

    stats = _validate_stats(content.get("stats"), ctx)
    factions = content.get("factions")
    if factions is None:
        factions = []
    elif not is_list(factions) or not all(is_non_empty_str(f) for f in factions):
        ctx.add("Content", path("factions"), "'factions' must be a list of faction IDs.")
        factions = []
    declared = {"stats": set(stats), "factions": set(factions)}

    scenes, _scene_errors = normalize_scenes(content.get("scenes"), ctx)

    start = content.get("startScene")
    if not is_non_empty_str(start):
        ctx.add("Content", path("startScene"), "requires a non-empty 'startScene'.")
    elif scenes and start not in scenes:
        ctx.add("Content", path("startScene"), f"references unknown scene '{start}'.")

    for scene_id, scene in scenes.items():
        context = f"Scene '{scene_id}'"
        for key in ("title", "text"):
            if scene.get(key) is not None and not isinstance(scene.get(key), str):
                ctx.add(context, path("scenes", scene_id, key), f"'{key}' must be a string.")
        ending = scene.get("ending")
        if ending is not None and not isinstance(ending, (str, bool)):
            ctx.add(context, path("scenes", scene_id, "ending"), "'ending' must be a string or boolean.")
        validate_effect_list(
            scene_effects(scene),
            f"{context} on-enter",
            declared,
            ("scenes", scene_id, "effectsOnEnter"),
            ctx,
        )
        choices = scene.get("choices")
        if choices is None:
            continue
        if not is_list(choices):
            ctx.add(context, path("scenes", scene_id, "choices"), "choices must be provided as a list.")
            continue
        for index, choice in enumerate(choices):
            validate_choice(
                choice,
                scene_id,
                index + 1,
                scenes,
                declared,
                ("scenes", scene_id, "choices", index),
                ctx,
            )

    return ctx.errors
