import json
from dataclasses import replace
from pathlib import Path

import pytest

from stagebook import save_manager
from stagebook.errors import SaveError, StructuralLoadError, VersionMismatch
from stagebook.save_manager import SAVE_FORMAT_VERSION, SaveSlots
from stagebook.save_migrations import MIGRATIONS, migrate_save_payload
from stagebook.state import GameState, SaveMeta, StatBounds


def sample_state() -> GameState:
    state = GameState.new(
        stat_bounds={"stage_presence": StatBounds(1, 4, 2), "improv": StatBounds(1, 4)},
        factions=["preservationist", "revisionist"],
        flags=["path_direct", "met_director"],
        inventory={"wings_pass": 1, "rose": 3},
        faction_levels={"revisionist": 7},
        current_scene="sc_1_0_002",
    )
    state.scene_history = ["sc_1_0_001", "sc_1_0_002", "sc_1_0_001", "sc_1_0_002"]
    return state


def without_saved_at(state: GameState) -> GameState:
    clone = state.copy()
    clone.meta = replace(clone.meta, saved_at=None)
    return clone


def test_round_trip_preserves_everything_but_saved_at() -> None:
    state = sample_state()
    blob = save_manager.save(state)

    assert blob["meta"]["version"] == SAVE_FORMAT_VERSION
    assert blob["flags"] == ["met_director", "path_direct"]
    assert {"id": "rose", "qty": 3} in blob["inventory"]

    restored = save_manager.load(blob)
    assert without_saved_at(restored) == without_saved_at(state)
    assert restored.meta.saved_at == blob["meta"]["savedAt"]


def test_text_round_trip() -> None:
    state = sample_state()
    restored = save_manager.loads(save_manager.dumps(state))
    assert without_saved_at(restored) == without_saved_at(state)


def test_newer_save_is_rejected() -> None:
    blob = save_manager.save(sample_state())
    blob["meta"]["version"] = SAVE_FORMAT_VERSION + 1
    with pytest.raises(VersionMismatch, match="newer"):
        save_manager.load(blob)


def test_missing_migration_step_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    blob = save_manager.save(sample_state())
    blob["meta"]["version"] = 1
    blob["inventory"] = ["wings_pass"]
    monkeypatch.delitem(MIGRATIONS, 1)
    with pytest.raises(VersionMismatch, match="No migration available for save version 1"):
        save_manager.load(blob)


def test_version_one_inventory_is_migrated() -> None:
    blob = {
        "stats": {"stage_presence": 3},
        "flags": ["path_direct"],
        "inventory": ["rose", "wings_pass", "rose"],
        "factions": {"revisionist": 2},
        "currentScene": "sc_1_0_002",
        "sceneHistory": ["sc_1_0_001", "sc_1_0_002"],
        "meta": {"version": "1", "savedAt": "2026-01-01T00:00:00+00:00"},
    }
    state = save_manager.load(blob)
    assert state.inventory == {"rose": 2, "wings_pass": 1}
    assert state.meta == SaveMeta(version=SAVE_FORMAT_VERSION, saved_at="2026-01-01T00:00:00+00:00")
    assert blob["inventory"] == ["rose", "wings_pass", "rose"]


def test_legacy_snapshot_without_meta_is_migrated() -> None:
    legacy = {
        "version": 1,
        "timestamp": 1767225600000,
        "contentVersion": "0.9.0",
        "gameState": {
            "currentSceneId": "sc_1_0_002",
            "history": [
                {"sceneId": "sc_1_0_001", "timestamp": 1, "visitedCount": 1},
                {"sceneId": "sc_1_0_002", "timestamp": 2, "visitedCount": 1},
            ],
            "stats": {"stage_presence": 2},
            "flags": ["path_direct"],
            "inventory": [["wings_pass", 1], ["rose", 2]],
            "factions": {"preservationist": 1},
        },
    }
    state = save_manager.load(legacy)
    assert state.current_scene == "sc_1_0_002"
    assert state.scene_history == ["sc_1_0_001", "sc_1_0_002"]
    assert state.inventory == {"wings_pass": 1, "rose": 2}
    assert state.meta.saved_at.startswith("2026-01-01")


@pytest.mark.parametrize(
    ("mutate", "match"),
    [
        (lambda blob: blob.pop("stats"), "stats: missing"),
        (lambda blob: blob.update(flags="path_direct"), "flags"),
        (lambda blob: blob.update(inventory=[{"id": "rose", "qty": 0}]), r"inventory\[0\]"),
        (lambda blob: blob["stats"].update(improv="high"), "stats.improv"),
        (lambda blob: blob.update(sceneHistory=[1, 2]), "sceneHistory"),
        (lambda blob: blob.update(meta="v2"), "meta"),
    ],
)
def test_structural_errors_are_reported(mutate, match: str) -> None:
    blob = save_manager.save(sample_state())
    mutate(blob)
    with pytest.raises(StructuralLoadError, match=match):
        save_manager.load(blob)


def test_invalid_json_and_non_objects() -> None:
    with pytest.raises(StructuralLoadError, match="Invalid JSON"):
        save_manager.loads("{not json")
    with pytest.raises(StructuralLoadError):
        save_manager.loads("[1, 2]")
    with pytest.raises(TypeError):
        save_manager.load(["not", "a", "mapping"])


def test_migration_registry_does_not_mutate_input() -> None:
    payload = {"gameState": {"currentSceneId": "a", "inventory": [["x", 2]]}}
    migrated = migrate_save_payload(payload)
    assert payload == {"gameState": {"currentSceneId": "a", "inventory": [["x", 2]]}}
    assert migrated["inventory"] == [{"id": "x", "qty": 2}]


def test_slots_write_backups_and_list(tmp_path: Path) -> None:
    slots = SaveSlots(tmp_path)
    state = sample_state()
    first = slots.save("Act One!", state)
    assert first == tmp_path / "actone" / "save.json"

    state.flags.add("intermission")
    slots.save("actone", state)
    assert (tmp_path / "actone" / "save.bak").exists()
    slots.autosave(state)

    listed = slots.list_slots()
    assert [meta.slot for meta in listed] == ["actone"]
    assert listed[0].current_scene == "sc_1_0_002"
    assert {meta.slot for meta in slots.list_slots(include_special=True)} == {"actone", "autosave"}

    assert "intermission" in slots.load("actone").flags
    assert "intermission" not in slots.load("actone", prefer_backup=True).flags


def test_corrupt_slot_falls_back_to_backup(tmp_path: Path) -> None:
    slots = SaveSlots(tmp_path)
    state = sample_state()
    slots.save("main", state)
    slots.save("main", state)
    (tmp_path / "main" / "save.json").write_text("{broken", encoding="utf-8")

    restored = slots.load("main")

    assert without_saved_at(restored) == without_saved_at(state)
    assert json.loads((tmp_path / "main" / "save.json").read_text(encoding="utf-8"))["currentScene"] == "sc_1_0_002"


def test_slot_errors(tmp_path: Path) -> None:
    slots = SaveSlots(tmp_path)
    with pytest.raises(SaveError, match="reserved"):
        slots.save("autosave", sample_state())
    with pytest.raises(SaveError, match="letters or numbers"):
        slots.save("!!!", sample_state())
    with pytest.raises(SaveError, match="No save found"):
        slots.load("empty")
    assert slots.autosave(GameState()) is None
    assert not slots.delete("empty")
