"""Save/load contract and file-backed save slots."""

from __future__ import annotations

import json
import logging
import shutil
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from .errors import SaveError, StructuralLoadError
from .save_migrations import SAVE_FORMAT_VERSION, migrate_save_payload
from .scene_schema import is_int
from .state import GameState, SaveMeta

logger = logging.getLogger(__name__)


def save(state: GameState, *, saved_at: Optional[str] = None) -> Dict[str, Any]:
    return {
        "stats": dict(state.stats),
        "flags": sorted(state.flags),
        "inventory": [{"id": item, "qty": qty} for item, qty in sorted(state.inventory.items())],
        "factions": dict(state.factions),
        "currentScene": state.current_scene,
        "sceneHistory": list(state.scene_history),
        "meta": {
            "version": SAVE_FORMAT_VERSION,
            "savedAt": saved_at or datetime.now(timezone.utc).isoformat(),
        },
    }


def _int_mapping_errors(value: Any, key: str) -> List[str]:
    if not isinstance(value, Mapping):
        return [f"{key}: expected an object of integers."]
    return [
        f"{key}.{name}: expected an integer, got {amount!r}."
        for name, amount in value.items()
        if not isinstance(name, str) or not is_int(amount)
    ]


def _validate_payload(payload: Mapping[str, Any]) -> None:
    errors: List[str] = []
    for key in ("stats", "flags", "inventory", "factions", "currentScene", "sceneHistory", "meta"):
        if key not in payload:
            errors.append(f"{key}: missing.")
    if errors:
        raise StructuralLoadError("Malformed save:\n- " + "\n- ".join(errors))

    errors.extend(_int_mapping_errors(payload["stats"], "stats"))
    errors.extend(_int_mapping_errors(payload["factions"], "factions"))

    flags = payload["flags"]
    if not isinstance(flags, list) or not all(isinstance(flag, str) for flag in flags):
        errors.append("flags: expected a list of strings.")

    inventory = payload["inventory"]
    if not isinstance(inventory, list):
        errors.append("inventory: expected a list of {id, qty} records.")
    else:
        for index, entry in enumerate(inventory):
            if (
                not isinstance(entry, Mapping)
                or not isinstance(entry.get("id"), str)
                or not is_int(entry.get("qty"))
                or entry["qty"] < 1
            ):
                errors.append(f"inventory[{index}]: expected {{id: string, qty: positive integer}}.")

    current = payload["currentScene"]
    if current is not None and not isinstance(current, str):
        errors.append("currentScene: expected a string or null.")

    history = payload["sceneHistory"]
    if not isinstance(history, list) or not all(isinstance(entry, str) for entry in history):
        errors.append("sceneHistory: expected a list of scene ids.")

    meta = payload["meta"]
    if not isinstance(meta, Mapping):
        errors.append("meta: expected an object.")
    elif meta.get("savedAt") is not None and not isinstance(meta.get("savedAt"), str):
        errors.append("meta.savedAt: expected an ISO-8601 string.")

    if errors:
        raise StructuralLoadError("Malformed save:\n- " + "\n- ".join(errors))


def load(blob: Mapping[str, Any]) -> GameState:
    if not isinstance(blob, Mapping):
        raise TypeError(f"load() expects a mapping, got {type(blob).__name__}.")
    payload = migrate_save_payload(dict(blob), SAVE_FORMAT_VERSION)
    _validate_payload(payload)

    inventory: Dict[str, int] = {}
    for entry in payload["inventory"]:
        inventory[entry["id"]] = inventory.get(entry["id"], 0) + entry["qty"]
    return GameState(
        stats=dict(payload["stats"]),
        flags=set(payload["flags"]),
        inventory=inventory,
        factions=dict(payload["factions"]),
        current_scene=payload["currentScene"],
        scene_history=list(payload["sceneHistory"]),
        meta=SaveMeta(version=SAVE_FORMAT_VERSION, saved_at=payload["meta"].get("savedAt")),
    )


def dumps(state: GameState, **kwargs: Any) -> str:
    return json.dumps(save(state, **kwargs), indent=2)


def loads(text: str) -> GameState:
    try:
        blob = json.loads(text)
    except json.JSONDecodeError as exc:
        raise StructuralLoadError(f"Invalid JSON: {exc}") from exc
    if not isinstance(blob, dict):
        raise StructuralLoadError("Save payload was not an object.")
    return load(blob)


@dataclass
class SlotMetadata:
    slot: str
    saved_at: Optional[str] = None
    current_scene: Optional[str] = None
    version: Optional[int] = None


class SaveSlots:
    """File-backed save slots with a rolling backup per slot."""

    SAVE_FILENAME = "save.json"
    BACKUP_FILENAME = "save.bak"
    AUTOSAVE_SLOT = "autosave"
    _VALID_SLOT_CHARS = set(string.ascii_lowercase + string.digits + "-_")

    def __init__(self, base_path: Path | str = "saves") -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    # ---------- Public API ----------
    def save(self, slot: str, state: GameState) -> Path:
        normalized = self._normalize_slot(slot)
        return self._store(normalized, state)

    def autosave(self, state: GameState) -> Optional[Path]:
        if state.current_scene is None:
            return None
        return self._store(self.AUTOSAVE_SLOT, state)

    def load(self, slot: str, *, prefer_backup: bool = False) -> GameState:
        normalized = self._normalize_slot(slot, allow_reserved=True)
        slot_path = self._slot_path(normalized)
        save_path = slot_path / self.SAVE_FILENAME
        backup_path = slot_path / self.BACKUP_FILENAME

        target = backup_path if prefer_backup and backup_path.exists() else save_path
        if not target.exists():
            if backup_path.exists():
                target = backup_path
            else:
                raise SaveError(f"No save found for slot '{normalized}'.")

        try:
            state = self._read(target)
        except SaveError as err:
            if target == backup_path or not backup_path.exists():
                raise
            logger.warning("[Save] Slot '%s' failed to load (%s); restoring backup.", normalized, err)
            state = self._read(backup_path)
            self._write(save_path, backup_path, save(state, saved_at=state.meta.saved_at), make_backup=False)
        logger.info("[Save] Loaded slot '%s' from %s.", normalized, target)
        return state

    def delete(self, slot: str) -> bool:
        slot_path = self._slot_path(self._normalize_slot(slot, allow_reserved=True))
        if not slot_path.exists():
            return False
        shutil.rmtree(slot_path)
        return True

    def list_slots(self, *, include_special: bool = False) -> List[SlotMetadata]:
        slots: List[SlotMetadata] = []
        for child in sorted(self.base_path.iterdir()):
            if not child.is_dir():
                continue
            if not include_special and child.name == self.AUTOSAVE_SLOT:
                continue
            save_path = child / self.SAVE_FILENAME
            if not save_path.exists():
                continue
            slots.append(self._read_metadata(child.name, save_path))
        return slots

    # ---------- Internal helpers ----------
    def _normalize_slot(self, slot: str, *, allow_reserved: bool = False) -> str:
        slot = (slot or "").strip().lower()
        cleaned = "".join(ch for ch in slot if ch in self._VALID_SLOT_CHARS)
        if not cleaned:
            raise SaveError("Slot names must contain letters or numbers.")
        if cleaned == self.AUTOSAVE_SLOT and not allow_reserved:
            raise SaveError("The autosave slot is reserved.")
        return cleaned

    def _slot_path(self, slot: str) -> Path:
        return self.base_path / slot

    def _store(self, slot: str, state: GameState) -> Path:
        slot_path = self._slot_path(slot)
        slot_path.mkdir(parents=True, exist_ok=True)
        save_path = slot_path / self.SAVE_FILENAME
        self._write(save_path, slot_path / self.BACKUP_FILENAME, save(state), make_backup=True)
        logger.debug("[Save] Slot '%s' written to %s.", slot, save_path)
        return save_path

    def _write(self, save_path: Path, backup_path: Path, payload: Dict, *, make_backup: bool) -> None:
        tmp_path = save_path.with_suffix(save_path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
        if make_backup and save_path.exists():
            shutil.copy2(save_path, backup_path)
        tmp_path.replace(save_path)

    def _read(self, path: Path) -> GameState:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SaveError("Save file missing.") from exc
        return loads(text)

    def _read_metadata(self, slot: str, path: Path) -> SlotMetadata:
        try:
            state = self._read(path)
        except SaveError:
            return SlotMetadata(slot=slot)
        return SlotMetadata(
            slot=slot,
            saved_at=state.meta.saved_at,
            current_scene=state.current_scene,
            version=state.meta.version,
        )
