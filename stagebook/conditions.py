"""Condition evaluation against a game state."""

from __future__ import annotations

import logging
import operator
from typing import Callable, Dict, Optional, Set, Tuple

from .content import (
    AllOf,
    AnyOf,
    Condition,
    FactionCheck,
    FlagCheck,
    HasItem,
    Not,
    StatCheck,
    UnknownCondition,
)
from .state import GameState

logger = logging.getLogger(__name__)

OPERATORS: Dict[str, Callable[[int, int], bool]] = {
    "gte": operator.ge,
    "lte": operator.le,
    "eq": operator.eq,
    "gt": operator.gt,
    "lt": operator.lt,
}

_OP_SYMBOLS = {"gte": ">=", "lte": "<=", "eq": "=", "gt": ">", "lt": "<"}


def evaluate(condition: Optional[Condition], state: GameState) -> bool:
    if condition is None:
        return True
    if isinstance(condition, StatCheck):
        return OPERATORS[condition.op](state.stats.get(condition.stat, 0), condition.value)
    if isinstance(condition, FlagCheck):
        held = condition.flag in state.flags
        return not held if condition.mode == "not_has" else held
    if isinstance(condition, HasItem):
        return state.has_item(condition.item, condition.qty)
    if isinstance(condition, FactionCheck):
        return OPERATORS[condition.op](state.factions.get(condition.faction, 0), condition.value)
    if isinstance(condition, AllOf):
        return all(evaluate(sub, state) for sub in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(evaluate(sub, state) for sub in condition.conditions)
    if isinstance(condition, Not):
        return not evaluate(condition.condition, state)
    if isinstance(condition, UnknownCondition):
        logger.warning("[Conditions] Unknown condition type %r evaluated as false.", condition.kind)
        return False
    raise TypeError(f"Not a condition: {condition!r}")


def describe(condition: Optional[Condition]) -> str:
    if condition is None:
        return ""
    if isinstance(condition, StatCheck):
        return f"Requires {condition.stat} {_OP_SYMBOLS[condition.op]} {condition.value}"
    if isinstance(condition, FlagCheck):
        if condition.mode == "not_has":
            return f"Requires not {condition.flag}"
        return f"Requires {condition.flag}"
    if isinstance(condition, HasItem):
        if condition.qty > 1:
            return f"Requires {condition.item} x{condition.qty}"
        return f"Requires {condition.item}"
    if isinstance(condition, FactionCheck):
        return f"Requires {condition.faction} {_OP_SYMBOLS[condition.op]} {condition.value}"
    if isinstance(condition, Not):
        inner = describe(condition.condition).removeprefix("Requires ")
        return f"Requires not ({inner})"
    if isinstance(condition, (AllOf, AnyOf)):
        joiner = " and " if isinstance(condition, AllOf) else " or "
        parts = [describe(sub).removeprefix("Requires ") for sub in condition.conditions]
        return "Requires " + joiner.join(parts) if parts else ""
    return "Unavailable"


def references(condition: Optional[Condition]) -> Set[Tuple[str, str]]:
    """Collect the (kind, id) pairs a condition reads."""
    found: Set[Tuple[str, str]] = set()
    if condition is None:
        return found
    if isinstance(condition, StatCheck):
        found.add(("stat", condition.stat))
    elif isinstance(condition, FlagCheck):
        found.add(("flag", condition.flag))
    elif isinstance(condition, HasItem):
        found.add(("item", condition.item))
    elif isinstance(condition, FactionCheck):
        found.add(("faction", condition.faction))
    elif isinstance(condition, (AllOf, AnyOf)):
        for sub in condition.conditions:
            found |= references(sub)
    elif isinstance(condition, Not):
        found |= references(condition.condition)
    return found
