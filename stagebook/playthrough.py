"""Headless playthrough runner for scripted regression tests."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from . import save_manager
from .conditions import evaluate
from .content import ContentStore
from .errors import InvalidChoiceSelection, SaveError, SoftlockDetected, StagebookError
from .resolver import SceneResolver
from .softlock import SoftlockFinding, SoftlockMonitor, SoftlockPolicy
from .state import GameState

logger = logging.getLogger(__name__)


@dataclass
class StepFailure:
    step: int
    reason: str
    expected: Any = None
    actual: Any = None


@dataclass
class PlaythroughResult:
    name: str
    status: str
    steps: int = 0
    snapshots: List[str] = field(default_factory=list)
    failure: Optional[StepFailure] = None
    softlock: Optional[SoftlockFinding] = None

    @property
    def passed(self) -> bool:
        return self.status == "passed"


class _StepFailed(Exception):
    def __init__(self, failure: StepFailure) -> None:
        super().__init__(failure.reason)
        self.failure = failure


def load_script(path: Path | str) -> Dict[str, Any]:
    with Path(path).open("r", encoding="utf-8") as handle:
        script = json.load(handle)
    if not isinstance(script, dict) or not isinstance(script.get("steps"), list):
        raise ValueError(f"Playthrough script {path} must be an object with a 'steps' list.")
    return script


def check_assertions(
    assertions: Mapping[str, Any], resolver: SceneResolver, step: int
) -> Optional[StepFailure]:
    state = resolver.state
    for flag in assertions.get("flagsSet", []):
        if flag not in state.flags:
            return StepFailure(step, f"Expected flag '{flag}' to be set", flag, sorted(state.flags))
    for flag in assertions.get("flagsCleared", []):
        if flag in state.flags:
            return StepFailure(step, f"Expected flag '{flag}' to be cleared", None, flag)
    for item in assertions.get("inventoryContains", []):
        if not state.has_item(item):
            return StepFailure(step, f"Expected inventory to contain '{item}'", item, dict(state.inventory))
    for item in assertions.get("inventoryExcludes", []):
        if state.has_item(item):
            return StepFailure(step, f"Expected inventory to exclude '{item}'", None, item)
    for stat, expected in (assertions.get("stats") or {}).items():
        actual = state.stats.get(stat)
        if actual != expected:
            return StepFailure(step, f"Expected stat '{stat}' = {expected}, got {actual}", expected, actual)
    for faction, expected in (assertions.get("factions") or {}).items():
        actual = state.factions.get(faction, 0)
        if actual != expected:
            return StepFailure(
                step, f"Expected faction '{faction}' = {expected}, got {actual}", expected, actual
            )
    expected_scene = assertions.get("currentScene")
    if expected_scene is not None and state.current_scene != expected_scene:
        return StepFailure(
            step, f"Expected current scene '{expected_scene}'", expected_scene, state.current_scene
        )
    for scene_id, expected in (assertions.get("visitedCount") or {}).items():
        actual = state.visited_count(scene_id)
        if actual != expected:
            return StepFailure(
                step, f"Expected scene '{scene_id}' visited {expected} times, got {actual}", expected, actual
            )
    minimum = assertions.get("choicesAvailable")
    if minimum is not None:
        available = len(resolver.available_choices())
        if available < minimum:
            return StepFailure(
                step,
                f"Expected at least {minimum} choices available, but got {available}",
                minimum,
                available,
            )
    if assertions.get("disabledChoicesValidated"):
        failure = _check_disabled_choices(resolver, step)
        if failure is not None:
            return failure
    return None


def _check_disabled_choices(resolver: SceneResolver, step: int) -> Optional[StepFailure]:
    """Choices carrying a disabled hint must be locked exactly when their condition fails."""
    if resolver.current_scene is None:
        return None
    scene = resolver.content.scene(resolver.current_scene)
    for view, choice in zip(resolver.resolve_choices(), scene.choices):
        if not choice.disabled_hint:
            continue
        expected = evaluate(choice.condition, resolver.state)
        if view.enabled != expected:
            state_word = "enabled" if expected else "disabled"
            return StepFailure(
                step,
                f"Expected choice {view.index} ('{view.label}') to be {state_word}",
                expected,
                view.enabled,
            )
        if not view.enabled and view.disabled_hint != choice.disabled_hint:
            return StepFailure(
                step,
                f"Expected choice {view.index} to show hint '{choice.disabled_hint}'",
                choice.disabled_hint,
                view.disabled_hint,
            )
    return None


def check_ending(criteria: Mapping[str, Any], state: GameState, step: int) -> Optional[StepFailure]:
    scene_id = criteria.get("sceneId")
    if scene_id is not None and state.current_scene != scene_id:
        return StepFailure(step, f"Expected to end at '{scene_id}'", scene_id, state.current_scene)
    for flag in criteria.get("flagsRequired", []):
        if flag not in state.flags:
            return StepFailure(step, f"Ending requires flag '{flag}'", flag, None)
    for item in criteria.get("inventoryRequired", []):
        if not state.has_item(item):
            return StepFailure(step, f"Ending requires item '{item}'", item, None)
    for stat, minimum in (criteria.get("statsRequired") or {}).items():
        actual = state.stats.get(stat, 0)
        if actual < minimum:
            return StepFailure(step, f"Ending requires {stat} >= {minimum}, got {actual}", minimum, actual)
    return None


class PlaythroughRunner:
    """Run playthrough scripts against a content store without any UI."""

    def __init__(
        self,
        content: ContentStore,
        *,
        policy: Optional[SoftlockPolicy] = None,
        snapshot_dir: Path | str | None = None,
    ) -> None:
        self.content = content
        self.policy = policy or SoftlockPolicy(halt_on_detection=True)
        self.snapshot_dir = Path(snapshot_dir) if snapshot_dir is not None else None
        self._snapshots: Dict[str, Dict[str, Any]] = {}

    def starting_state(self, script: Mapping[str, Any]) -> GameState:
        start = script.get("startingState") or {}
        try:
            return self.content.new_state(
                stats=start.get("stats"),
                flags=start.get("flags", ()),
                inventory=start.get("inventory"),
                faction_levels=start.get("factions"),
                current_scene=start.get("currentScene"),
            )
        except (AttributeError, TypeError, ValueError) as exc:
            raise _StepFailed(StepFailure(0, f"Invalid startingState: {exc}")) from exc

    def run(self, script: Mapping[str, Any]) -> PlaythroughResult:
        name = (script.get("meta") or {}).get("name", "unnamed playthrough")
        result = PlaythroughResult(name=name, status="passed")
        policy = SoftlockPolicy.from_dict(script.get("softlockDetection"), base=self.policy)
        monitor = SoftlockMonitor(policy)
        self._snapshots = {}

        try:
            resolver = SceneResolver(self.content, self.starting_state(script))
            resolver.start()
            for step_number, step in enumerate(script.get("steps", []), start=1):
                result.steps = step_number
                finding = monitor.observe(
                    resolver.state, resolver.resolve_choices(), is_ending=resolver.is_ending()
                )
                if finding is not None and result.softlock is None:
                    result.softlock = finding
                self._execute(step, step_number, resolver, result)
            criteria = script.get("endingCriteria")
            if criteria:
                failure = check_ending(criteria, resolver.state, result.steps)
                if failure is not None:
                    raise _StepFailed(failure)
        except _StepFailed as exc:
            result.failure = exc.failure
        except SoftlockDetected as exc:
            result.softlock = exc.findings[0]
            result.failure = StepFailure(result.steps, str(exc))
            result.status = "softlocked"
            logger.warning("[Playthrough] '%s' halted: %s", name, exc)
            return result
        except StagebookError as exc:
            result.failure = StepFailure(result.steps, str(exc))

        if result.failure is not None:
            result.status = "failed"
        elif result.softlock is not None:
            result.status = "softlocked"
        return result

    def _execute(
        self, step: Mapping[str, Any], number: int, resolver: SceneResolver, result: PlaythroughResult
    ) -> None:
        action = step.get("action")
        if action == "start":
            pass
        elif action == "choose":
            self._choose(step, number, resolver)
        elif action == "checkpoint":
            if step.get("saveSnapshot"):
                self._save_snapshot(step["saveSnapshot"], resolver, result)
        elif action == "save_snapshot":
            self._save_snapshot(step.get("snapshotName", f"step-{number}"), resolver, result)
        elif action == "load_snapshot":
            self._load_snapshot(step.get("snapshotName"), number, resolver)
        else:
            raise _StepFailed(StepFailure(number, f"Unknown action type: {action}"))

        failure = check_assertions(step.get("assertions") or {}, resolver, number)
        if failure is not None:
            raise _StepFailed(failure)

    def _choose(self, step: Mapping[str, Any], number: int, resolver: SceneResolver) -> None:
        index = step.get("choiceIndex")
        try:
            resolver.select_choice(index if isinstance(index, int) else -1)
        except InvalidChoiceSelection as exc:
            raise _StepFailed(StepFailure(number, str(exc), "enabled choice", index)) from exc
        expected = step.get("expectedScene")
        if expected and resolver.current_scene != expected:
            raise _StepFailed(
                StepFailure(
                    number,
                    f"Expected scene {expected}, got {resolver.current_scene}",
                    expected,
                    resolver.current_scene,
                )
            )

    def _save_snapshot(self, name: str, resolver: SceneResolver, result: PlaythroughResult) -> None:
        blob = save_manager.save(resolver.state)
        self._snapshots[name] = blob
        result.snapshots.append(name)
        if self.snapshot_dir is not None:
            self.snapshot_dir.mkdir(parents=True, exist_ok=True)
            target = self.snapshot_dir / f"{name}.json"
            target.write_text(json.dumps(blob, indent=2) + "\n", encoding="utf-8")

    def _load_snapshot(self, name: Optional[str], number: int, resolver: SceneResolver) -> None:
        blob = self._snapshots.get(name) if name else None
        if blob is None:
            raise _StepFailed(StepFailure(number, f"Snapshot '{name}' not found", name, sorted(self._snapshots)))
        try:
            resolver.restore(save_manager.load(blob))
        except SaveError as exc:
            raise _StepFailed(StepFailure(number, f"Snapshot '{name}' failed to load: {exc}")) from exc
