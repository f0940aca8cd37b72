"""Engine settings persistence for Stagebook."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict

from .softlock import (
    DEFAULT_MAX_SCENE_REVISITS,
    DEFAULT_MAX_STEPS_WITHOUT_PROGRESS,
    SoftlockPolicy,
)

logger = logging.getLogger(__name__)

_BASE_DIR = Path(__file__).resolve().parent.parent
SETTINGS_PATH = _BASE_DIR / "settings.json"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


def _clamp(value: int, minimum: int, maximum: int) -> int:
    return max(minimum, min(maximum, value))


@dataclass
class EngineSettings:
    """Engine toggles that persist between sessions."""

    strict_content: bool = True
    max_scene_revisits: int = DEFAULT_MAX_SCENE_REVISITS
    max_steps_without_progress: int = DEFAULT_MAX_STEPS_WITHOUT_PROGRESS
    halt_on_softlock: bool = False
    log_level: str = "WARNING"

    def clamp(self) -> "EngineSettings":
        self.strict_content = bool(self.strict_content)
        self.max_scene_revisits = _clamp(int(self.max_scene_revisits), 1, 100)
        self.max_steps_without_progress = _clamp(int(self.max_steps_without_progress), 1, 1000)
        self.halt_on_softlock = bool(self.halt_on_softlock)
        level = str(self.log_level).upper()
        self.log_level = level if level in _LOG_LEVELS else "WARNING"
        return self

    def copy(self) -> "EngineSettings":
        return EngineSettings.from_dict(self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def softlock_policy(self) -> SoftlockPolicy:
        return SoftlockPolicy(
            max_scene_revisits=self.max_scene_revisits,
            max_steps_without_progress=self.max_steps_without_progress,
            halt_on_detection=self.halt_on_softlock,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any] | None) -> "EngineSettings":
        if not isinstance(data, dict):
            return cls()

        def _as_int(key: str, default: int) -> int:
            try:
                return int(data.get(key, default))
            except (TypeError, ValueError):
                return default

        def _as_bool(key: str, default: bool) -> bool:
            value = data.get(key, default)
            if isinstance(value, bool):
                return value
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in {"true", "1", "yes", "on"}:
                    return True
                if lowered in {"false", "0", "no", "off"}:
                    return False
            return bool(value) if value is not None else default

        settings = cls(
            strict_content=_as_bool("strict_content", True),
            max_scene_revisits=_as_int("max_scene_revisits", DEFAULT_MAX_SCENE_REVISITS),
            max_steps_without_progress=_as_int(
                "max_steps_without_progress", DEFAULT_MAX_STEPS_WITHOUT_PROGRESS
            ),
            halt_on_softlock=_as_bool("halt_on_softlock", False),
            log_level=str(data.get("log_level", "WARNING")),
        )
        return settings.clamp()


def load_settings(path: Path | str = SETTINGS_PATH) -> EngineSettings:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        return EngineSettings()
    except (OSError, json.JSONDecodeError, TypeError) as exc:
        logger.warning("[Settings] Ignoring unreadable settings file %s: %s", path, exc)
        return EngineSettings()
    return EngineSettings.from_dict(data)


def save_settings(settings: EngineSettings, path: Path | str = SETTINGS_PATH) -> EngineSettings:
    path = Path(path)
    sanitized = settings.copy().clamp()
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            "w", delete=False, dir=path.parent, prefix=path.name, suffix=".tmp", encoding="utf-8"
        ) as tmp_file:
            json.dump(sanitized.to_dict(), tmp_file, indent=2)
            tmp_file.write("\n")
            tmp_path = Path(tmp_file.name)
        os.replace(str(tmp_path), str(path))
    except OSError as exc:
        logger.error("[Settings] Failed to save settings: %s", exc)
        if tmp_path is not None:
            try:
                tmp_path.unlink()
            except OSError:
                pass
    return sanitized
