from pathlib import Path

from stagebook.settings import EngineSettings, load_settings, save_settings


def test_settings_round_trip_and_clamp(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    settings = EngineSettings(max_scene_revisits=500, log_level="chatty", halt_on_softlock=True)

    saved = save_settings(settings, path)
    loaded = load_settings(path)

    assert saved.max_scene_revisits == 100
    assert saved.log_level == "WARNING"
    assert loaded == saved
    policy = loaded.softlock_policy()
    assert policy.max_scene_revisits == 100
    assert policy.halt_on_detection


def test_bad_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    assert load_settings(path) == EngineSettings()

    path.write_text("{oops", encoding="utf-8")
    assert load_settings(path) == EngineSettings()

    path.write_text('{"halt_on_softlock": "yes", "max_steps_without_progress": "many"}', encoding="utf-8")
    loaded = load_settings(path)
    assert loaded.halt_on_softlock is True
    assert loaded.max_steps_without_progress == 15
