"""Save migration registry for Stagebook saves."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping

from .errors import StructuralLoadError, VersionMismatch

logger = logging.getLogger(__name__)

SAVE_FORMAT_VERSION = 2

Migration = Callable[[Dict], Dict]


def _legacy_timestamp(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).isoformat()
    return value


def _migrate_v0_to_v1(payload: Dict) -> Dict:
    # Legacy snapshots wrap the state in "gameState" and keep history as entries.
    state = payload.get("gameState")
    if not isinstance(state, dict):
        state = payload
    if "currentSceneId" not in state:
        raise StructuralLoadError("Legacy save is missing 'currentSceneId'.")

    history = []
    for entry in state.get("history") or []:
        if isinstance(entry, Mapping):
            history.append(entry.get("sceneId"))
        else:
            history.append(entry)

    inventory = []
    for entry in state.get("inventory") or []:
        if isinstance(entry, (list, tuple)) and len(entry) == 2:
            item, count = entry
            if isinstance(count, int) and not isinstance(count, bool):
                inventory.extend([item] * max(count, 0))
                continue
        inventory.append(entry)

    return {
        "stats": state.get("stats", {}),
        "flags": state.get("flags", []),
        "inventory": inventory,
        "factions": state.get("factions", {}),
        "currentScene": state.get("currentSceneId"),
        "sceneHistory": history,
        "meta": {
            "version": 1,
            "savedAt": _legacy_timestamp(payload.get("timestamp", state.get("timestamp"))),
        },
    }


def _migrate_v1_to_v2(payload: Dict) -> Dict:
    counts: Dict[Any, int] = {}
    inventory = payload.get("inventory")
    if not isinstance(inventory, list):
        raise StructuralLoadError("inventory: expected a list of item ids.")
    for item in inventory:
        if not isinstance(item, str):
            raise StructuralLoadError(f"inventory: item id {item!r} is not a string.")
        counts[item] = counts.get(item, 0) + 1

    meta = payload.get("meta")
    meta = dict(meta) if isinstance(meta, dict) else {}
    meta["version"] = 2
    upgraded = dict(payload)
    upgraded["inventory"] = [{"id": item, "qty": qty} for item, qty in counts.items()]
    upgraded["meta"] = meta
    return upgraded


MIGRATIONS: Dict[int, Migration] = {
    0: _migrate_v0_to_v1,
    1: _migrate_v1_to_v2,
}


def read_version(payload: Mapping[str, Any]) -> int:
    meta = payload.get("meta")
    if meta is None:
        return 0
    if not isinstance(meta, Mapping):
        raise StructuralLoadError("meta: expected an object.")
    version = meta.get("version", 0)
    if isinstance(version, str) and version.strip().isdigit():
        version = int(version.strip())
    if isinstance(version, bool) or not isinstance(version, int):
        raise StructuralLoadError(f"meta.version: invalid save version {version!r}.")
    return version


def migrate_save_payload(
    payload: Dict,
    target_version: int = SAVE_FORMAT_VERSION,
    migrations: Mapping[int, Migration] = MIGRATIONS,
) -> Dict:
    if not isinstance(payload, dict):
        raise StructuralLoadError("Save payload was not an object.")

    version = read_version(payload)
    if version > target_version:
        raise VersionMismatch(
            f"Save version {version} is newer than supported {target_version}."
        )

    current = copy.deepcopy(payload)
    while version < target_version:
        migrator = migrations.get(version)
        if migrator is None:
            raise VersionMismatch(f"No migration available for save version {version}.")
        logger.info("[Save] Migrating save from v%s to v%s", version, version + 1)
        current = migrator(current)
        next_version = read_version(current)
        if next_version <= version:
            raise VersionMismatch(
                f"Migration from save version {version} did not advance the version."
            )
        version = next_version

    return current
